import io
import json
import logging
import os
import tempfile
import unittest
import wave
from unittest import mock
from datetime import date, datetime, timedelta
from pathlib import Path

from cryptography.hazmat.primitives.ciphers.aead import AESGCM

import medreminder  # noqa: F401
from medreminder import audio as a
from medreminder.adherence import AdherenceLog
from medreminder.classifier import DoseStatus, classify_dose, classify_doses
from medreminder.config import Settings
from medreminder.device import ALARM_PATTERN, TAKE_PATTERN
from medreminder.engine import NotificationEngine
from medreminder.errors import (AudioPlaybackError, InvalidMedicine, InvalidSchedule,
                                StorageReadError, UnknownMedicine)
from medreminder.logs import _FileAndRingHandler, configure_logging, logger, ring_text
from medreminder.projector import format_minutes_until, upcoming_doses
from medreminder.schedule import (DoseInstance, Frequency, Medicine, daily_doses,
                                  new_medicine, next_dose_time, parse_time,
                                  slot_minutes, validate_schedule)
from medreminder.store import DOSE_LOG, MEDICINES, EncryptedStore, get_or_create_key
from medreminder.tracker import MedicineTracker

DAY = date(2026, 3, 10)


def at(hh, mm, ss=0, day=DAY):
    return datetime(day.year, day.month, day.day, hh, mm, ss)


def med(name="M", freq="twice-daily", times=("08:00", "20:00")):
    return new_medicine(name, "10mg", freq, list(times), start_date="2026-01-01")


class FakeEvent:
    def __init__(self):
        self.cancelled = False

    def cancel(self):
        self.cancelled = True


class FakeClock:
    def __init__(self):
        self.intervals = []
        self.once = []

    def schedule_interval(self, cb, interval):
        ev = FakeEvent()
        self.intervals.append((cb, interval, ev))
        return ev

    def schedule_once(self, cb, timeout=0):
        ev = FakeEvent()
        self.once.append((cb, timeout, ev))
        return ev

    def drain(self):
        while self.once:
            pending, self.once = self.once, []
            for cb, timeout, ev in pending:
                if not ev.cancelled:
                    cb(timeout)


class FakeAudio:
    def __init__(self, fail=False):
        self.calls = []
        self.fail = fail

    def _play(self, name):
        self.calls.append(name)
        if self.fail:
            raise AudioPlaybackError("autoplay denied")
        return True

    def play_alarm_pattern(self):
        return self._play("alarm")

    def play_success_pattern(self):
        return self._play("success")

    def play_gentle_pattern(self):
        return self._play("gentle")


class FakeBackend:
    def __init__(self, fail_at=None):
        self.played = []
        self.fail_at = fail_at
        self.closed = False

    def play_tone(self, seg):
        if self.fail_at is not None and len(self.played) == self.fail_at:
            raise AudioPlaybackError("device busy")
        self.played.append(seg)

    def close(self):
        self.closed = True


class MemoryStore:
    def __init__(self):
        self.data = {}
        self.writes = 0

    def read(self, name):
        raw = self.data.get(name)
        return None if raw is None else json.loads(raw)

    def write(self, name, data):
        self.data[name] = json.dumps(data)
        self.writes += 1


class BrokenStore(MemoryStore):
    def read(self, name):
        raise StorageReadError(name, "malformed")


class TestSchedule(unittest.TestCase):
    def test_parse_time(self):
        self.assertEqual(parse_time("00:00"), 0)
        self.assertEqual(parse_time("08:05"), 485)
        self.assertEqual(parse_time("23:59"), 1439)
        for bad in ("24:00", "12:60", "8:00", "ab:cd", "", "0800"):
            with self.assertRaises(InvalidSchedule):
                parse_time(bad)

    def test_slot_count_must_match_frequency(self):
        with self.assertRaises(InvalidSchedule):
            validate_schedule("twice-daily", ["08:00"])
        with self.assertRaises(InvalidSchedule):
            validate_schedule("as-needed", ["08:00"])
        with self.assertRaises(InvalidSchedule):
            validate_schedule("every-hour", [])
        self.assertIs(validate_schedule("four-times-daily", ["06:00", "12:00", "18:00", "22:00"]),
                      Frequency.FOUR_TIMES_DAILY)

    def test_new_medicine_rejects_bad_fields(self):
        with self.assertRaises(InvalidMedicine):
            new_medicine("", "10mg", "once-daily", ["08:00"])
        with self.assertRaises(InvalidMedicine):
            new_medicine("Aspirin", " ", "once-daily", ["08:00"])
        with self.assertRaises(InvalidMedicine):
            new_medicine("Aspirin", "10mg", "once-daily", ["08:00"], start_date="10/03/2026")
        with self.assertRaises(InvalidMedicine):
            new_medicine("Aspirin", "10mg", "once-daily", ["08:00"],
                         start_date="2026-03-10", end_date="2026-03-01")
        with self.assertRaises(InvalidSchedule):
            new_medicine("Aspirin", "10mg", "once-daily", ["25:00"])

    def test_new_medicine_defaults(self):
        m = new_medicine("Ibuprofen", "200mg", "as-needed", ["08:00"], today=DAY)
        self.assertEqual(m.times, ())
        self.assertTrue(m.as_needed)
        self.assertEqual(m.start_date, "2026-03-10")
        self.assertTrue(m.id)
        self.assertNotEqual(m.id, med().id)

    def test_slots_sorted_and_as_needed_empty(self):
        m = med(times=("20:00", "08:00"))
        self.assertEqual(slot_minutes(m), [480, 1200])
        self.assertEqual([d.time for d in daily_doses(m)], ["08:00", "20:00"])
        self.assertEqual(slot_minutes(med(freq="as-needed", times=())), [])

    def test_dose_identity(self):
        m = med()
        d = DoseInstance(m, "08:00")
        self.assertEqual(d.id, f"{m.id}-08:00")
        self.assertEqual(d.key, (m.id, "08:00"))
        self.assertEqual(d.at(at(13, 7, 42)), at(8, 0))

    def test_next_dose_wraps_to_first_slot(self):
        m = med()
        self.assertEqual(next_dose_time(m, at(7, 0)), "08:00")
        self.assertEqual(next_dose_time(m, at(8, 0)), "20:00")
        self.assertEqual(next_dose_time(m, at(21, 0)), "08:00")
        self.assertIsNone(next_dose_time(med(freq="as-needed", times=()), at(7, 0)))

    def test_record_round_trip(self):
        m = med()
        self.assertEqual(Medicine.from_dict(m.to_dict()), m)
        with self.assertRaises(InvalidSchedule):
            Medicine.from_dict(dict(m.to_dict(), times=["08:00"]))

    def test_labels(self):
        self.assertEqual(Frequency.TWICE_DAILY.label, "Twice Daily")
        self.assertEqual(Frequency.AS_NEEDED.slots, 0)


class TestProjector(unittest.TestCase):
    def test_twice_daily_at_seven(self):
        m = med()
        out = upcoming_doses([m], at(7, 0))
        self.assertEqual([(u.medicine, u.time, u.minutes_until) for u in out],
                         [(m, "08:00", 60), (m, "20:00", 780)])

    def test_never_zero_or_negative(self):
        m = med()
        for minute in range(0, 24 * 60, 7):
            now = at(minute // 60, minute % 60, 30)
            for u in upcoming_doses([m], now):
                self.assertGreater(u.minutes_until, 0)
        self.assertEqual([u.time for u in upcoming_doses([m], at(8, 0, 45))], ["20:00"])

    def test_sorted_with_stable_ties(self):
        a_ = med("A", "once-daily", ("09:00",))
        b_ = med("B", "twice-daily", ("09:00", "10:00"))
        c_ = med("C", "once-daily", ("08:30",))
        out = upcoming_doses([a_, b_, c_], at(8, 0))
        self.assertEqual([(u.medicine.name, u.time) for u in out],
                         [("C", "08:30"), ("A", "09:00"), ("B", "09:00"), ("B", "10:00")])
        out = upcoming_doses([b_, a_], at(8, 0))
        self.assertEqual([u.medicine.name for u in out][:2], ["B", "A"])

    def test_no_wrap_past_midnight(self):
        self.assertEqual(upcoming_doses([med()], at(23, 30)), [])

    def test_as_needed_excluded_and_limit(self):
        prn = med("PRN", "as-needed", ())
        out = upcoming_doses([prn, med()], at(0, 0), limit=1)
        self.assertEqual(len(out), 1)
        self.assertEqual(out[0].time, "08:00")
        for minute in range(0, 24 * 60, 30):
            self.assertEqual(upcoming_doses([prn], at(minute // 60, minute % 60)), [])

    def test_format(self):
        self.assertEqual(format_minutes_until(65), "in 1h 5m")
        self.assertEqual(format_minutes_until(780), "in 13h 0m")


class TestClassifier(unittest.TestCase):
    def setUp(self):
        self.m = med()
        self.morning = DoseInstance(self.m, "08:00")
        self.evening = DoseInstance(self.m, "20:00")

    def test_due_now_and_future(self):
        now = at(8, 3)
        self.assertIs(classify_dose(self.morning, now, set()), DoseStatus.DUE_NOW)
        self.assertIs(classify_dose(self.evening, now, set()), DoseStatus.FUTURE)

    def test_overdue(self):
        self.assertIs(classify_dose(self.morning, at(8, 20), set()), DoseStatus.OVERDUE)

    def test_window_edges(self):
        self.assertIs(classify_dose(self.morning, at(7, 45), set()), DoseStatus.DUE_NOW)
        self.assertIs(classify_dose(self.morning, at(7, 44, 59), set()), DoseStatus.FUTURE)
        self.assertIs(classify_dose(self.morning, at(8, 15), set()), DoseStatus.DUE_NOW)
        self.assertIs(classify_dose(self.morning, at(8, 15, 1), set()), DoseStatus.OVERDUE)

    def test_taken_is_terminal_for_the_day(self):
        log = AdherenceLog(lookup=lambda mid: self.m if mid == self.m.id else None)
        log.record_taken(self.m.id, None, "08:00", at(8, 5))
        for now in (at(8, 5), at(8, 30), at(12, 0), at(23, 59)):
            taken = log.taken_slots(now.date())
            self.assertIs(classify_dose(self.morning, now, taken), DoseStatus.TAKEN)
        tomorrow = at(8, 20, day=DAY + timedelta(days=1))
        self.assertIs(classify_dose(self.morning, tomorrow, log.taken_slots(tomorrow.date())),
                      DoseStatus.OVERDUE)

    def test_as_needed_never_classified(self):
        prn = med("PRN", "as-needed", ())
        out = classify_doses([prn, self.m], at(8, 0), set())
        self.assertEqual([d.medicine_id for d, _ in out], [self.m.id, self.m.id])

    def test_no_wrap_across_midnight(self):
        late = DoseInstance(med("Late", "once-daily", ("23:55",)), "23:55")
        after_midnight = at(0, 5, day=DAY + timedelta(days=1))
        self.assertIs(classify_dose(late, after_midnight, set()), DoseStatus.FUTURE)


class TestAdherenceLog(unittest.TestCase):
    def setUp(self):
        self.m = med("Metformin")
        self.log = AdherenceLog(lookup=lambda mid: self.m if mid == self.m.id else None)

    def test_unknown_medicine(self):
        with self.assertRaises(UnknownMedicine):
            self.log.record_taken("nope", "Ghost", "08:00", at(8, 0))
        self.assertEqual(len(self.log), 0)

    def test_record_fields(self):
        e = self.log.record_taken(self.m.id, None, "08:00", at(8, 5, 33))
        self.assertEqual((e.medicine_id, e.medicine_name, e.time, e.taken_at, e.date),
                         (self.m.id, "Metformin", "08:00", "08:05", "2026-03-10"))

    def test_entries_for_date_in_insertion_order(self):
        self.log.record_taken(self.m.id, None, "20:00", at(20, 1))
        self.log.record_taken(self.m.id, None, "08:00", at(8, 2, day=DAY + timedelta(days=1)))
        self.log.record_taken(self.m.id, None, "08:00", at(20, 30))
        today = self.log.entries_for_date(DAY)
        self.assertEqual([e.time for e in today], ["20:00", "08:00"])
        self.assertEqual(self.log.entries_for_date("2026-03-11")[0].taken_at, "08:02")
        self.assertEqual(self.log.entries_for_date("2026-03-12"), [])

    def test_duplicates_are_kept(self):
        self.log.record_taken(self.m.id, None, "08:00", at(8, 1))
        self.log.record_taken(self.m.id, None, "08:00", at(8, 2))
        self.assertEqual(len(self.log.entries_for_date(DAY)), 2)
        self.assertEqual(self.log.taken_slots(DAY), {(self.m.id, "08:00")})

    def test_summary(self):
        self.assertEqual(self.log.adherence_summary([], DAY)["adherence_pct"], None)
        self.log.record_taken(self.m.id, None, "08:00", at(8, 1))
        s = self.log.adherence_summary([self.m, med("PRN", "as-needed", ())], DAY)
        self.assertEqual(s, {"scheduled": 2, "taken": 1, "adherence_pct": 50.0})


class TestNotificationEngine(unittest.TestCase):
    def setUp(self):
        self.now = at(7, 0)
        self.tracker = MedicineTracker(MemoryStore(), now=lambda: self.now)
        self.m = self.tracker.add_medicine("Lisinopril", "10mg", "twice-daily", ["08:00", "20:00"])
        self.audio = FakeAudio()
        self.buzz = []
        self.triggered = []
        self.retired = []
        self.engine = self._engine(self.audio)

    def _engine(self, audio, **kw):
        e = NotificationEngine(
            audio, clock=FakeClock(), now=lambda: self.now,
            taken=self.tracker.taken_slots, take=self.tracker.take_medicine,
            haptics=self.buzz.append, **kw)
        e.on_trigger(lambda d: self.triggered.append(d.id))
        e.on_retire(lambda d: self.retired.append(d.id))
        e.set_medicines(self.tracker.medicines)
        return e

    def _tick(self, hh, mm, ss=0):
        self.now = at(hh, mm, ss)
        return self.engine.tick()

    @property
    def nid(self):
        return f"{self.m.id}-08:00"

    def test_five_minute_window(self):
        self.assertEqual(self._tick(7, 54, 59), {})
        self.assertIn(self.nid, self._tick(7, 55))
        self.assertIn(self.nid, self._tick(8, 5))
        self.assertEqual(self._tick(8, 5, 1), {})
        self.assertEqual(self.triggered, [self.nid])
        self.assertEqual(self.retired, [self.nid])

    def test_alarm_plays_once_per_instance(self):
        for mm in range(55, 60):
            self._tick(7, mm)
        for mm in range(0, 6):
            self._tick(8, mm)
        self.assertEqual(self.audio.calls, ["alarm"])
        self.assertEqual(self.engine.sound_played, {self.nid})
        self.assertEqual(self.buzz, [ALARM_PATTERN])

    def test_dismiss(self):
        self._tick(8, 0)
        self.engine.dismiss_notification(self.nid)
        self.assertEqual(self.engine.due, {})
        self.assertEqual(self._tick(8, 1), {})
        self.assertEqual(len(self.tracker.log), 0)

    def test_take_from_notification(self):
        self._tick(8, 2)
        entry = self.engine.take_from_notification(self.nid)
        self.assertEqual((entry.medicine_id, entry.time, entry.taken_at), (self.m.id, "08:00", "08:02"))
        self.assertIn(self.nid, self.engine.dismissed)
        self.assertEqual(self.engine.due, {})
        self.assertEqual(self.audio.calls, ["alarm", "success"])
        self.assertEqual(self.buzz[-1], TAKE_PATTERN)
        for hh, mm in ((8, 3), (8, 30), (23, 0)):
            self.now = at(hh, mm)
            statuses = dict((d.time, s) for d, s in self.tracker.statuses())
            self.assertIs(statuses["08:00"], DoseStatus.TAKEN)

    def test_take_unknown_notification(self):
        self.assertIsNone(self.engine.take_from_notification("missing-08:00"))
        self.assertEqual(len(self.tracker.log), 0)

    def test_taken_from_card_leaves_due_set(self):
        self._tick(8, 0)
        self.tracker.take_medicine(self.m.id, "08:00")
        self.assertEqual(self.engine.tick(), {})

    def test_replay_ignores_sound_played(self):
        self._tick(8, 0)
        self.assertTrue(self.engine.replay_alert_sound())
        self.assertTrue(self.engine.replay_alert_sound())
        self.assertEqual(self.audio.calls, ["alarm", "alarm", "alarm"])

    def test_sound_disabled_then_enabled(self):
        self.engine.set_sound_enabled(False)
        self._tick(8, 0)
        self.assertEqual(self.audio.calls, [])
        self.assertEqual(self.engine.sound_played, set())
        self.engine.set_sound_enabled(True)
        self.assertEqual(self.audio.calls, ["alarm"])

    def test_audio_failure_is_swallowed(self):
        self.audio.fail = True
        self.assertIn(self.nid, self._tick(8, 0))
        entry = self.engine.take_from_notification(self.nid)
        self.assertIsNotNone(entry)
        self.assertIn(self.nid, self.engine.dismissed)

    def test_due_set_is_inside_card_window(self):
        statin = self.tracker.add_medicine("Statin", "20mg", "once-daily", ["08:04"])
        self.engine.set_medicines(self.tracker.medicines)
        t = at(7, 40)
        while t <= at(8, 30):
            self.now = t
            taken = self.tracker.taken_slots()
            for dose in self.engine.tick().values():
                self.assertIn(classify_dose(dose, t, taken), (DoseStatus.DUE_NOW, DoseStatus.OVERDUE))
            t += timedelta(seconds=30)
        self.assertIn(f"{statin.id}-08:04", self.triggered)

    def test_as_needed_never_due(self):
        prn = self.tracker.add_medicine("Paracetamol", "500mg", "as-needed", [])
        self.engine.set_medicines(self.tracker.medicines)
        for mm in range(0, 60, 5):
            ids = self._tick(8, mm)
            self.assertFalse(any(i.startswith(prn.id) for i in ids))

    def test_reminders_rearm_next_day(self):
        self._tick(8, 1)
        self.engine.dismiss_notification(self.nid)
        self.assertEqual(self._tick(8, 2), {})
        self.now = at(8, 1, day=DAY + timedelta(days=1))
        self.assertIn(self.nid, self.engine.tick())
        self.assertEqual(self.audio.calls, ["alarm", "alarm"])
        self.assertEqual(self.triggered, [self.nid, self.nid])
        self.assertEqual(self.engine.dismissed, set())

    def test_take_not_recorded_keeps_reminder(self):
        self._tick(8, 0)
        self.tracker.delete_medicine(self.m.id)
        self.assertIsNone(self.engine.take_from_notification(self.nid))
        self.assertNotIn(self.nid, self.engine.dismissed)
        self.assertIn(self.nid, self.engine.due)
        self.assertEqual(self.audio.calls, ["alarm"])
        self.assertNotIn(TAKE_PATTERN, self.buzz)

    def test_medicines_follow_date_range(self):
        strict = Settings(base_dir=Path("."), respect_dates=True)
        t = MedicineTracker(MemoryStore(), strict, now=lambda: self.now)
        m = t.add_medicine("Amoxicillin", "500mg", "once-daily", ["08:00"], end_date="2026-03-10")
        e = NotificationEngine(FakeAudio(), clock=FakeClock(), now=lambda: self.now,
                               medicines=t.scheduled_medicines, taken=t.taken_slots,
                               haptics=self.buzz.append)
        self.assertIn(f"{m.id}-08:00", e.tick(at(8, 0)))
        self.assertEqual(t.stats(at(9, 0)).active, 1)
        next_day = DAY + timedelta(days=1)
        self.assertEqual(e.tick(at(8, 0, day=next_day)), {})
        self.assertEqual(t.stats(at(9, 0, day=next_day)).active, 0)

    def test_restart_rearms_dismissed(self):
        self._tick(8, 0)
        self.engine.dismiss_notification(self.nid)
        self.engine.stop()
        fresh = self._engine(FakeAudio())
        self.assertIn(self.nid, fresh.due)

    def test_start_and_stop(self):
        clock = FakeClock()
        engine = NotificationEngine(FakeAudio(), clock=clock, now=lambda: self.now,
                                    haptics=self.buzz.append, interval=60)
        engine.set_medicines(self.tracker.medicines)
        self.now = at(8, 0)
        engine.start()
        self.assertTrue(engine.running)
        self.assertIn(self.nid, engine.due)
        cb, interval, event = clock.intervals[0]
        self.assertEqual(interval, 60)
        self.now = at(8, 10)
        cb(60)
        self.assertEqual(engine.due, {})
        engine.start()
        self.assertEqual(len(clock.intervals), 1)
        engine.stop()
        engine.stop()
        self.assertTrue(event.cancelled)
        self.assertFalse(engine.running)


class TestAudioHandle(unittest.TestCase):
    def setUp(self):
        self.td = tempfile.TemporaryDirectory()
        self.clock = FakeClock()
        self.backend = FakeBackend()
        self.made = 0

        def factory():
            self.made += 1
            return self.backend
        self.handle = a.AudioHandle(Path(self.td.name), clock=self.clock, backend_factory=factory)

    def tearDown(self):
        self.td.cleanup()

    def test_lazy_backend_and_sequence(self):
        self.assertFalse(self.handle.active)
        self.assertEqual(self.made, 0)
        self.assertTrue(self.handle.play_alarm_pattern())
        self.assertEqual(self.backend.played, [a.ALARM_PATTERN[0]])
        self.assertAlmostEqual(self.clock.once[0][1], 0.4)
        self.clock.drain()
        self.assertEqual(self.backend.played, list(a.ALARM_PATTERN))
        self.handle.play_success_pattern()
        self.clock.drain()
        self.assertEqual(self.made, 1)
        self.assertEqual(self.backend.played[3:], list(a.SUCCESS_PATTERN))

    def test_failure_interrupts_sequence(self):
        self.backend.fail_at = 1
        self.assertTrue(self.handle.play_gentle_pattern())
        self.clock.drain()
        self.assertEqual(self.backend.played, [a.GENTLE_PATTERN[0]])
        self.assertEqual(self.clock.once, [])

    def test_backend_unavailable(self):
        def broken():
            raise RuntimeError("no audio device")
        handle = a.AudioHandle(Path(self.td.name), clock=self.clock, backend_factory=broken)
        self.assertFalse(handle.play_alarm_pattern())

    def test_dispose(self):
        self.handle.play_alarm_pattern()
        self.handle.dispose()
        self.clock.drain()
        self.assertTrue(self.backend.closed)
        self.assertEqual(len(self.backend.played), 1)
        self.assertFalse(self.handle.play_alarm_pattern())

    def test_render_tone(self):
        seg = a.ALARM_PATTERN[2]
        path = a.render_tone(Path(self.td.name), seg)
        with wave.open(str(path), "rb") as w:
            self.assertEqual(w.getframerate(), a.SAMPLE_RATE)
            self.assertEqual(w.getnframes(), int(a.SAMPLE_RATE * seg.duration))
        self.assertEqual(a.render_tone(Path(self.td.name), seg), path)
        peak = max(abs(s) for s in a.tone_samples(seg))
        self.assertLessEqual(peak, int(32767 * seg.volume) + 1)


class TestStore(unittest.TestCase):
    def setUp(self):
        self.td = tempfile.TemporaryDirectory()
        self.base = Path(self.td.name)
        self.key = AESGCM.generate_key(bit_length=256)
        self.store = EncryptedStore(self.base, self.key)

    def tearDown(self):
        self.td.cleanup()

    def test_roundtrip(self):
        self.assertIsNone(self.store.read(MEDICINES))
        payload = [{"id": "1", "name": "Aspirin"}]
        self.store.write(MEDICINES, payload)
        self.assertEqual(self.store.read(MEDICINES), payload)
        self.assertNotIn(b"Aspirin", self.store.path_for(MEDICINES).read_bytes())

    def test_corrupt_record(self):
        self.store.path_for(DOSE_LOG).write_bytes(os.urandom(40))
        with self.assertRaises(StorageReadError):
            self.store.read(DOSE_LOG)

    def test_wrong_key(self):
        self.store.write(MEDICINES, [])
        other = EncryptedStore(self.base, AESGCM.generate_key(bit_length=256))
        with self.assertRaises(StorageReadError):
            other.read(MEDICINES)

    def test_records_cannot_be_swapped(self):
        self.store.write(MEDICINES, [])
        self.store.path_for(DOSE_LOG).write_bytes(self.store.path_for(MEDICINES).read_bytes())
        with self.assertRaises(StorageReadError):
            self.store.read(DOSE_LOG)

    def test_key_file(self):
        kp = self.base / ".enc_key"
        k1 = get_or_create_key(kp)
        self.assertEqual(len(k1), 32)
        self.assertEqual(get_or_create_key(kp), k1)


class TestTracker(unittest.TestCase):
    def setUp(self):
        self.td = tempfile.TemporaryDirectory()
        self.settings = Settings(base_dir=Path(self.td.name))
        self.now = at(7, 0)
        self.store = EncryptedStore.open(self.settings)

    def tearDown(self):
        self.td.cleanup()

    def _tracker(self, store=None, settings=None):
        t = MedicineTracker(store or self.store, settings or self.settings, now=lambda: self.now)
        t.load()
        return t

    def test_persists_across_reload(self):
        t = self._tracker()
        m = t.add_medicine("Aspirin", "81mg", "once-daily", ["08:00"], notes="with food")
        self.now = at(8, 3)
        t.take_medicine(m.id, "08:00")
        again = self._tracker(EncryptedStore.open(self.settings))
        self.assertEqual(again.medicines, (m,))
        self.assertEqual([e.time for e in again.todays_log()], ["08:00"])

    def test_invalid_medicine_not_saved(self):
        store = MemoryStore()
        t = self._tracker(store)
        with self.assertRaises(InvalidSchedule):
            t.add_medicine("Aspirin", "81mg", "twice-daily", ["08:00"])
        self.assertEqual(store.writes, 0)
        self.assertEqual(t.medicines, ())

    def test_unreadable_store_starts_empty(self):
        t = self._tracker(BrokenStore())
        self.assertEqual(t.medicines, ())
        self.assertEqual(len(t.log), 0)
        store = MemoryStore()
        store.data[MEDICINES] = json.dumps({"not": "a list"})
        store.data[DOSE_LOG] = json.dumps([{"medicine_id": "x"}])
        t = self._tracker(store)
        self.assertEqual(t.medicines, ())
        self.assertEqual(len(t.log), 0)

    def test_unknown_ids_are_ignored(self):
        t = self._tracker(MemoryStore())
        self.assertIsNone(t.take_medicine("deleted", "08:00"))
        self.assertFalse(t.delete_medicine("deleted"))
        self.assertEqual(len(t.log), 0)

    def test_delete_then_take(self):
        t = self._tracker(MemoryStore())
        m = t.add_medicine("Aspirin", "81mg", "once-daily", ["08:00"])
        self.assertTrue(t.delete_medicine(m.id))
        self.assertIsNone(t.take_medicine(m.id, "08:00"))

    def test_subscribers_and_stats(self):
        t = self._tracker(MemoryStore())
        calls = []
        t.subscribe(lambda: calls.append(1))
        m = t.add_medicine("Aspirin", "81mg", "twice-daily", ["08:00", "20:00"])
        t.add_medicine("Ibuprofen", "200mg", "as-needed", [])
        self.now = at(8, 5)
        t.take_medicine(m.id, "08:00")
        self.assertEqual(len(calls), 3)
        st = t.stats()
        self.assertEqual((st.active, st.taken_today, st.upcoming, st.adherence_pct), (2, 1, 1, 50.0))
        self.assertEqual([e.time for e in t.recent_log()], ["08:00"])

    def test_date_range_is_opt_in(self):
        future = {"start_date": "2026-04-01"}
        t = self._tracker(MemoryStore())
        t.add_medicine("Later", "5mg", "once-daily", ["09:00"], **future)
        self.assertEqual(len(t.upcoming()), 1)

        strict = Settings(base_dir=Path(self.td.name), respect_dates=True)
        t = self._tracker(MemoryStore(), strict)
        t.add_medicine("Later", "5mg", "once-daily", ["09:00"], **future)
        self.assertEqual(t.upcoming(), [])
        self.assertEqual(t.statuses(), [])


class TestConfigAndLogs(unittest.TestCase):
    def setUp(self):
        self.td = tempfile.TemporaryDirectory()

    def tearDown(self):
        for h in list(logger.handlers):
            if isinstance(h, _FileAndRingHandler):
                logger.removeHandler(h)
        logger.setLevel(logging.INFO)
        self.td.cleanup()

    def test_from_env(self):
        s = Settings.from_env({
            "MEDREMINDER_HOME": self.td.name,
            "MEDREMINDER_POLL_SECONDS": "30",
            "MEDREMINDER_SOUND": "off",
            "MEDREMINDER_RESPECT_DATES": "1",
        })
        self.assertEqual(s.base_dir, Path(self.td.name))
        self.assertEqual(s.poll_interval, 30)
        self.assertFalse(s.sound_enabled)
        self.assertTrue(s.respect_dates)
        self.assertEqual(s.key_path, Path(self.td.name) / ".enc_key")

    def test_defaults(self):
        s = Settings.from_env({"MEDREMINDER_HOME": self.td.name, "MEDREMINDER_POLL_SECONDS": "soon"})
        self.assertEqual(s.poll_interval, 60)
        self.assertTrue(s.sound_enabled)
        self.assertFalse(s.respect_dates)

    def test_file_and_ring(self):
        s = Settings(base_dir=Path(self.td.name))
        configure_logging(s)
        configure_logging(s)
        self.assertEqual(sum(isinstance(h, _FileAndRingHandler) for h in logger.handlers), 1)
        logger.info("dose log: test line")
        self.assertIn("dose log: test line", ring_text())
        self.assertIn("dose log: test line", s.log_path.read_text(encoding="utf-8"))

    def test_unwritable_log_file_reports_and_keeps_ring(self):
        s = Settings(base_dir=Path(self.td.name))
        s.log_path.mkdir(parents=True)
        configure_logging(s)
        with mock.patch("sys.stderr", new=io.StringIO()) as err:
            logger.info("dose log: unwritable line")
        self.assertIn("dose log: unwritable line", ring_text())
        self.assertIn("Logging error", err.getvalue())


if __name__ == "__main__":
    unittest.main(verbosity=2)

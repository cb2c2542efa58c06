# medreminder/tracker.py
from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime
from typing import Any, Callable, Dict, List, Optional, Set, Tuple

from .adherence import AdherenceLog, LogEntry
from .classifier import DoseStatus, classify_doses
from .errors import InvalidMedicine, StorageReadError, UnknownMedicine
from .logs import logger
from .projector import UpcomingDose, upcoming_doses
from .schedule import DoseInstance, Medicine, new_medicine
from .store import DOSE_LOG, MEDICINES


@dataclass(frozen=True)
class TodayStats:
    active: int
    taken_today: int
    upcoming: int
    adherence_pct: Optional[float]


class MedicineTracker:
    """
    In-memory medicines and dose log, written back to the store after every
    change. The store is read once, by ``load()``.
    """

    def __init__(self, store, settings=None, now: Callable[[], datetime] = datetime.now):
        self.store = store
        self.respect_dates = bool(getattr(settings, "respect_dates", False))
        self._now = now
        self._medicines: List[Medicine] = []
        self.log = AdherenceLog(lookup=self.get)
        self._listeners: List[Callable[[], None]] = []

    # -------------------------
    # Persistence
    # -------------------------
    def _read_list(self, name: str) -> List[Dict[str, Any]]:
        try:
            data = self.store.read(name)
        except StorageReadError:
            logger.exception(f"{name} unreadable; starting empty")
            return []
        if data is None:
            return []
        if not isinstance(data, list):
            logger.error(f"{name} is not a list; starting empty")
            return []
        return data

    def load(self):
        meds: List[Medicine] = []
        try:
            meds = [Medicine.from_dict(d) for d in self._read_list(MEDICINES)]
        except (InvalidMedicine, KeyError, TypeError, AttributeError):
            logger.exception("medicine records malformed; starting empty")
            meds = []

        entries: List[LogEntry] = []
        try:
            entries = [LogEntry.from_dict(d) for d in self._read_list(DOSE_LOG)]
        except (InvalidMedicine, KeyError, TypeError, AttributeError):
            logger.exception("dose log malformed; starting empty")
            entries = []

        self._medicines = meds
        self.log = AdherenceLog(entries, lookup=self.get)
        logger.info(f"loaded {len(meds)} medicines, {len(entries)} log entries")
        self._changed()

    def _save_medicines(self):
        try:
            self.store.write(MEDICINES, [m.to_dict() for m in self._medicines])
        except Exception:
            logger.exception("saving medicines failed")

    def _save_log(self):
        try:
            self.store.write(DOSE_LOG, [e.to_dict() for e in self.log.entries])
        except Exception:
            logger.exception("saving dose log failed")

    def subscribe(self, callback: Callable[[], None]):
        self._listeners.append(callback)

    def _changed(self):
        for cb in list(self._listeners):
            try:
                cb()
            except Exception:
                logger.exception("tracker listener failed")

    # -------------------------
    # Mutations
    # -------------------------
    def add_medicine(self, name: str, dosage: str, frequency: Any, times=(),
                     start_date: Optional[str] = None, end_date: Optional[str] = None,
                     notes: Optional[str] = None, color: Optional[str] = None) -> Medicine:
        med = new_medicine(name, dosage, frequency, times, start_date=start_date,
                           end_date=end_date, notes=notes, color=color,
                           today=self._now().date())
        self._medicines.append(med)
        self._save_medicines()
        logger.info(f"added medicine id={med.id} {med.name} {med.frequency.value} times={list(med.times)}")
        self._changed()
        return med

    def delete_medicine(self, medicine_id: str) -> bool:
        before = len(self._medicines)
        self._medicines = [m for m in self._medicines if m.id != medicine_id]
        if len(self._medicines) == before:
            logger.warning(f"delete ignored: unknown medicine id={medicine_id}")
            return False
        self._save_medicines()
        logger.info(f"deleted medicine id={medicine_id}")
        self._changed()
        return True

    def take_medicine(self, medicine_id: str, time: str,
                      now: Optional[datetime] = None) -> Optional[LogEntry]:
        now = now or self._now()
        try:
            entry = self.log.record_taken(medicine_id, None, time, now)
        except UnknownMedicine as e:
            logger.warning(f"take ignored: {e}")
            return None
        self._save_log()
        logger.info(f"dose taken: med_id={medicine_id} sched={time} at={entry.taken_at}")
        self._changed()
        return entry

    # -------------------------
    # Queries
    # -------------------------
    @property
    def medicines(self) -> Tuple[Medicine, ...]:
        return tuple(self._medicines)

    def get(self, medicine_id: str) -> Optional[Medicine]:
        return next((m for m in self._medicines if m.id == medicine_id), None)

    def scheduled_medicines(self, day: Optional[date] = None) -> List[Medicine]:
        if not self.respect_dates:
            return list(self._medicines)
        day = day or self._now().date()
        return [m for m in self._medicines if m.active_on(day)]

    def taken_slots(self, day: Optional[date] = None) -> Set[Tuple[str, str]]:
        return self.log.taken_slots(day or self._now().date())

    def upcoming(self, now: Optional[datetime] = None, limit: Optional[int] = None) -> List[UpcomingDose]:
        now = now or self._now()
        return upcoming_doses(self.scheduled_medicines(now.date()), now, limit=limit)

    def statuses(self, now: Optional[datetime] = None) -> List[Tuple[DoseInstance, DoseStatus]]:
        now = now or self._now()
        return classify_doses(self.scheduled_medicines(now.date()), now, self.taken_slots(now.date()))

    def todays_log(self, now: Optional[datetime] = None) -> List[LogEntry]:
        now = now or self._now()
        return self.log.entries_for_date(now.date())

    def recent_log(self, now: Optional[datetime] = None, limit: int = 10) -> List[LogEntry]:
        return list(reversed(self.todays_log(now)[-limit:]))

    def stats(self, now: Optional[datetime] = None) -> TodayStats:
        now = now or self._now()
        summary = self.log.adherence_summary(self.scheduled_medicines(now.date()), now.date())
        return TodayStats(
            active=len(self.scheduled_medicines(now.date())),
            taken_today=len(self.todays_log(now)),
            upcoming=len(self.upcoming(now)),
            adherence_pct=summary["adherence_pct"],
        )

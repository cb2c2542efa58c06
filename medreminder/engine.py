# medreminder/engine.py
from __future__ import annotations

from datetime import date, datetime, timedelta
from typing import AbstractSet, Callable, Dict, Iterable, List, Optional, Set, Tuple

from . import device
from .classifier import within
from .config import DEFAULT_POLL_SECONDS, NOTIFY_WINDOW_MINUTES
from .logs import logger
from .schedule import DoseInstance, Medicine, scheduled_doses

NOTIFY_WINDOW = timedelta(minutes=NOTIFY_WINDOW_MINUTES)

TakenProvider = Callable[[date], AbstractSet[Tuple[str, str]]]
MedicineProvider = Callable[[date], Iterable[Medicine]]
TakeAction = Callable[[str, str, datetime], object]
Listener = Callable[[DoseInstance], None]


class NotificationEngine:
    """
    Polls the schedule and keeps the set of doses whose reminder is showing.

    The due set is recomputed from scratch on every tick. ``dismissed`` and
    ``sound_played`` hold ids for the current day only and live as long as the
    engine, so a restart inside a dose's window raises its reminder again.
    When ``medicines`` is given it is asked for the day's medicines on every
    tick; otherwise the list passed to ``set_medicines`` is used.
    """

    def __init__(self, audio, clock=None, now: Callable[[], datetime] = datetime.now,
                 taken: Optional[TakenProvider] = None, take: Optional[TakeAction] = None,
                 medicines: Optional[MedicineProvider] = None,
                 haptics: Callable = device.vibrate, interval: float = DEFAULT_POLL_SECONDS,
                 sound_enabled: bool = True):
        self.audio = audio
        self._clock = clock
        self._now = now
        self._taken = taken
        self._take = take
        self._provider = medicines
        self._haptics = haptics
        self.interval = float(interval)
        self._sound_enabled = bool(sound_enabled)

        self._medicines: List[Medicine] = []
        self.due: Dict[str, DoseInstance] = {}
        self.dismissed: Set[str] = set()
        self.sound_played: Set[str] = set()
        self._day: Optional[date] = None

        self._event = None
        self._trigger_listeners: List[Listener] = []
        self._retire_listeners: List[Listener] = []

    # -------------------------
    # Lifecycle
    # -------------------------
    @property
    def running(self) -> bool:
        return self._event is not None

    def start(self):
        if self._event is not None:
            return
        if self._clock is None:
            self._clock = device.kivy_clock()
        self.tick()
        self._event = self._clock.schedule_interval(self._on_interval, self.interval)
        logger.info(f"notification engine started interval={self.interval:g}s")

    def stop(self):
        event, self._event = self._event, None
        if event is not None:
            event.cancel()
            logger.info("notification engine stopped")

    def _on_interval(self, dt):
        self.tick()

    # -------------------------
    # Inputs
    # -------------------------
    def on_trigger(self, callback: Listener):
        self._trigger_listeners.append(callback)

    def on_retire(self, callback: Listener):
        self._retire_listeners.append(callback)

    def set_medicines(self, medicines: Iterable[Medicine]):
        self._medicines = list(medicines)
        self.tick()

    @property
    def sound_enabled(self) -> bool:
        return self._sound_enabled

    def set_sound_enabled(self, enabled: bool):
        self._sound_enabled = bool(enabled)
        logger.info(f"alert sound {'on' if self._sound_enabled else 'off'}")
        self.tick()

    # -------------------------
    # Evaluation
    # -------------------------
    def compute_due(self, now: datetime) -> Dict[str, DoseInstance]:
        today = now.date()
        taken = self._taken(today) if self._taken else frozenset()
        meds = self._provider(today) if self._provider else self._medicines
        fresh: Dict[str, DoseInstance] = {}
        for dose in scheduled_doses(meds):
            if dose.id in self.dismissed or dose.key in taken:
                continue
            if within(dose, now, NOTIFY_WINDOW):
                fresh[dose.id] = dose
        return fresh

    def tick(self, now: Optional[datetime] = None) -> Dict[str, DoseInstance]:
        now = now or self._now()
        self._roll_day(now.date())
        try:
            fresh = self.compute_due(now)
        except Exception:
            logger.exception("due set computation failed")
            return dict(self.due)

        previous, self.due = self.due, fresh
        for nid, dose in previous.items():
            if nid not in fresh:
                self._emit(self._retire_listeners, dose)
        for nid, dose in fresh.items():
            if nid not in previous:
                self._emit(self._trigger_listeners, dose)

        if self._sound_enabled:
            unplayed = [nid for nid in fresh if nid not in self.sound_played]
            if unplayed:
                self._alarm()
                self.sound_played.update(unplayed)
        return dict(fresh)

    def _roll_day(self, today: date):
        if self._day is not None and today != self._day:
            logger.info(f"new day {today}: re-arming {len(self.dismissed)} dismissed reminders")
            self.dismissed.clear()
            self.sound_played.clear()
        self._day = today

    def _emit(self, listeners: List[Listener], dose: DoseInstance):
        for cb in list(listeners):
            try:
                cb(dose)
            except Exception:
                logger.exception(f"listener failed for {dose.id}")

    def _alarm(self):
        try:
            self.audio.play_alarm_pattern()
        except Exception:
            logger.exception("alarm playback failed")
        self._buzz(device.ALARM_PATTERN)

    def _buzz(self, pattern):
        try:
            self._haptics(pattern)
        except Exception:
            logger.exception("haptics failed")

    # -------------------------
    # User actions
    # -------------------------
    def take_from_notification(self, notification_id: str, now: Optional[datetime] = None):
        dose = self.due.get(notification_id)
        if dose is None:
            logger.warning(f"take ignored: {notification_id} is not showing")
            return None
        now = now or self._now()
        entry = None
        if self._take is not None:
            try:
                entry = self._take(dose.medicine_id, dose.time, now)
            except Exception:
                logger.exception(f"take failed for {notification_id}")
        if entry is None:
            logger.warning(f"take not recorded for {notification_id}; reminder kept")
            return None
        self.dismissed.add(notification_id)
        logger.info(f"taken from reminder {notification_id}")
        if self._sound_enabled:
            try:
                self.audio.play_success_pattern()
            except Exception:
                logger.exception("success playback failed")
        self._buzz(device.TAKE_PATTERN)
        self.tick(now)
        return entry

    def dismiss_notification(self, notification_id: str):
        self.dismissed.add(notification_id)
        logger.info(f"dismissed reminder {notification_id}")
        self.tick()

    def replay_alert_sound(self) -> bool:
        """User-requested replay; not limited by ``sound_played``."""
        played = False
        if self._sound_enabled:
            try:
                played = bool(self.audio.play_alarm_pattern())
            except Exception:
                logger.exception("alarm replay failed")
        self._buzz(device.ALARM_PATTERN)
        return played

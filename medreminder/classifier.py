# medreminder/classifier.py
from __future__ import annotations

from datetime import datetime, timedelta
from enum import Enum
from typing import AbstractSet, Iterable, List, Tuple

from .config import DUE_WINDOW_MINUTES
from .schedule import DoseInstance, Medicine, scheduled_doses

TakenSet = AbstractSet[Tuple[str, str]]

DUE_WINDOW = timedelta(minutes=DUE_WINDOW_MINUTES)


class DoseStatus(str, Enum):
    FUTURE = "future"
    DUE_NOW = "due-now"
    OVERDUE = "overdue"
    TAKEN = "taken"


def within(dose: DoseInstance, now: datetime, window: timedelta) -> bool:
    """Absolute wall-clock distance to today's slot is inside the window."""
    return abs(now - dose.at(now)) <= window


def classify_dose(dose: DoseInstance, now: datetime, taken: TakenSet) -> DoseStatus:
    # Taken wins for the rest of the day, whatever the clock says.
    if dose.key in taken:
        return DoseStatus.TAKEN
    if within(dose, now, DUE_WINDOW):
        return DoseStatus.DUE_NOW
    if now > dose.at(now):
        return DoseStatus.OVERDUE
    return DoseStatus.FUTURE


def classify_doses(medicines: Iterable[Medicine], now: datetime,
                   taken: TakenSet) -> List[Tuple[DoseInstance, DoseStatus]]:
    return [(d, classify_dose(d, now, taken)) for d in scheduled_doses(medicines)]

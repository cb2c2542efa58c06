# medreminder/projector.py
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Iterable, List, Optional

from .schedule import Medicine, daily_doses, minute_of_day


@dataclass(frozen=True)
class UpcomingDose:
    medicine: Medicine
    time: str
    minutes_until: int


def upcoming_doses(medicines: Iterable[Medicine], now: datetime,
                   limit: Optional[int] = None) -> List[UpcomingDose]:
    """
    Doses still ahead today, soonest first.

    Slots at or before now's minute of day are left out rather than wrapped
    to tomorrow, so the list can be empty late in the evening. Ties keep the
    order the medicines were given in.
    """
    current = minute_of_day(now)
    out: List[UpcomingDose] = []
    for med in medicines:
        for dose in daily_doses(med):
            slot = dose.minute
            if slot > current:
                out.append(UpcomingDose(med, dose.time, slot - current))
    out.sort(key=lambda u: u.minutes_until)
    if limit is not None:
        return out[:max(0, int(limit))]
    return out


def format_minutes_until(minutes: int) -> str:
    return f"in {minutes // 60}h {minutes % 60}m"

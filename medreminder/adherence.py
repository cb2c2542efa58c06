# medreminder/adherence.py
from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime
from typing import Any, Callable, Dict, Iterable, List, Optional, Set, Tuple, Union

from .errors import UnknownMedicine
from .schedule import YMD, Medicine, parse_time, slot_minutes

Lookup = Callable[[str], Optional[Medicine]]
DayLike = Union[str, date, datetime]


def day_key(day: DayLike) -> str:
    if isinstance(day, (date, datetime)):
        return day.strftime(YMD)
    return str(day)


@dataclass(frozen=True)
class LogEntry:
    medicine_id: str
    medicine_name: str
    time: str
    taken_at: str
    date: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "medicine_id": self.medicine_id,
            "medicine_name": self.medicine_name,
            "time": self.time,
            "taken_at": self.taken_at,
            "date": self.date,
        }

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "LogEntry":
        parse_time(d["time"])
        return cls(
            medicine_id=str(d["medicine_id"]),
            medicine_name=str(d.get("medicine_name") or ""),
            time=str(d["time"]),
            taken_at=str(d.get("taken_at") or ""),
            date=str(d["date"]),
        )


class AdherenceLog:
    """Append-only record of take actions."""

    def __init__(self, entries: Iterable[LogEntry] = (), lookup: Optional[Lookup] = None):
        self._entries: List[LogEntry] = list(entries)
        self._lookup = lookup

    def __len__(self):
        return len(self._entries)

    @property
    def entries(self) -> Tuple[LogEntry, ...]:
        return tuple(self._entries)

    def record_taken(self, medicine_id: str, medicine_name: Optional[str],
                     scheduled_time: str, now: datetime) -> LogEntry:
        med = self._lookup(medicine_id) if self._lookup else None
        if med is None:
            raise UnknownMedicine(medicine_id)
        entry = LogEntry(
            medicine_id=med.id,
            medicine_name=medicine_name or med.name,
            time=scheduled_time,
            taken_at=now.strftime("%H:%M"),
            date=now.strftime(YMD),
        )
        self._entries.append(entry)
        return entry

    def entries_for_date(self, day: DayLike) -> List[LogEntry]:
        key = day_key(day)
        return [e for e in self._entries if e.date == key]

    def taken_slots(self, day: DayLike) -> Set[Tuple[str, str]]:
        return {(e.medicine_id, e.time) for e in self.entries_for_date(day)}

    def adherence_summary(self, medicines: Iterable[Medicine], day: DayLike) -> Dict[str, Any]:
        """Scheduled slots for the day against the ones marked taken."""
        meds = [m for m in medicines if not m.as_needed]
        scheduled = sum(len(slot_minutes(m)) for m in meds)
        if not scheduled:
            return {"scheduled": 0, "taken": 0, "adherence_pct": None}
        known = {(m.id, t) for m in meds for t in m.times}
        taken = len(self.taken_slots(day) & known)
        pct = round(100.0 * taken / scheduled, 1)
        return {"scheduled": scheduled, "taken": taken, "adherence_pct": pct}

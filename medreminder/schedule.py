# medreminder/schedule.py
from __future__ import annotations

import itertools
import re
import uuid
from dataclasses import dataclass
from datetime import date, datetime
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from .errors import InvalidMedicine, InvalidSchedule

HHMM = re.compile(r"^(\d{2}):(\d{2})$")
YMD = "%Y-%m-%d"

PALETTE = (
    "#ef4444", "#f97316", "#eab308", "#22c55e",
    "#06b6d4", "#3b82f6", "#8b5cf6", "#ec4899",
)

_palette_cycle = itertools.cycle(PALETTE)


class Frequency(str, Enum):
    ONCE_DAILY = "once-daily"
    TWICE_DAILY = "twice-daily"
    THREE_TIMES_DAILY = "three-times-daily"
    FOUR_TIMES_DAILY = "four-times-daily"
    AS_NEEDED = "as-needed"

    @property
    def slots(self) -> int:
        return _SLOTS[self]

    @property
    def label(self) -> str:
        return _LABELS[self]

    @classmethod
    def parse(cls, value: Any) -> "Frequency":
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip())
        except ValueError:
            raise InvalidSchedule(f"unknown frequency {value!r}") from None


_SLOTS = {
    Frequency.ONCE_DAILY: 1,
    Frequency.TWICE_DAILY: 2,
    Frequency.THREE_TIMES_DAILY: 3,
    Frequency.FOUR_TIMES_DAILY: 4,
    Frequency.AS_NEEDED: 0,
}

_LABELS = {
    Frequency.ONCE_DAILY: "Once Daily",
    Frequency.TWICE_DAILY: "Twice Daily",
    Frequency.THREE_TIMES_DAILY: "3x Daily",
    Frequency.FOUR_TIMES_DAILY: "4x Daily",
    Frequency.AS_NEEDED: "As Needed",
}


def parse_time(value: str) -> int:
    """Return the minute of day for an ``HH:MM`` string (24-hour)."""
    m = HHMM.match(str(value or "").strip())
    if not m:
        raise InvalidSchedule(f"bad time {value!r}, expected HH:MM")
    h, mi = int(m.group(1)), int(m.group(2))
    if not (0 <= h <= 23 and 0 <= mi <= 59):
        raise InvalidSchedule(f"time out of range: {value!r}")
    return h * 60 + mi


def format_time(minute: int) -> str:
    return f"{minute // 60:02d}:{minute % 60:02d}"


def minute_of_day(now: datetime) -> int:
    return now.hour * 60 + now.minute


def validate_schedule(frequency: Any, times: Sequence[str]) -> Frequency:
    freq = Frequency.parse(frequency)
    times = list(times or [])
    if len(times) != freq.slots:
        raise InvalidSchedule(
            f"{freq.value} needs {freq.slots} time(s), got {len(times)}"
        )
    for t in times:
        parse_time(t)
    return freq


def _check_date(value: Optional[str], what: str, required: bool) -> Optional[str]:
    value = (value or "").strip()
    if not value:
        if required:
            raise InvalidMedicine(f"{what} is required")
        return None
    try:
        datetime.strptime(value, YMD)
    except ValueError:
        raise InvalidMedicine(f"{what} must be YYYY-MM-DD, got {value!r}") from None
    return value


@dataclass(frozen=True)
class Medicine:
    id: str
    name: str
    dosage: str
    frequency: Frequency
    times: Tuple[str, ...]
    start_date: str
    end_date: Optional[str] = None
    notes: Optional[str] = None
    color: str = PALETTE[0]

    @property
    def as_needed(self) -> bool:
        return self.frequency is Frequency.AS_NEEDED

    def active_on(self, day: date) -> bool:
        d = day.strftime(YMD)
        if self.start_date and d < self.start_date:
            return False
        if self.end_date and d > self.end_date:
            return False
        return True

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "dosage": self.dosage,
            "frequency": self.frequency.value,
            "times": list(self.times),
            "start_date": self.start_date,
            "end_date": self.end_date,
            "notes": self.notes,
            "color": self.color,
        }

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "Medicine":
        freq = validate_schedule(d.get("frequency"), d.get("times") or [])
        if not d.get("id"):
            raise InvalidMedicine("medicine record without id")
        return cls(
            id=str(d["id"]),
            name=str(d.get("name") or ""),
            dosage=str(d.get("dosage") or ""),
            frequency=freq,
            times=tuple(d.get("times") or ()),
            start_date=str(d.get("start_date") or ""),
            end_date=d.get("end_date") or None,
            notes=d.get("notes") or None,
            color=str(d.get("color") or PALETTE[0]),
        )


@dataclass(frozen=True)
class DoseInstance:
    medicine: Medicine
    time: str

    @property
    def medicine_id(self) -> str:
        return self.medicine.id

    @property
    def id(self) -> str:
        return f"{self.medicine_id}-{self.time}"

    @property
    def key(self) -> Tuple[str, str]:
        return (self.medicine_id, self.time)

    @property
    def minute(self) -> int:
        return parse_time(self.time)

    def at(self, now: datetime) -> datetime:
        """The slot's wall-clock datetime on now's calendar day."""
        m = self.minute
        return now.replace(hour=m // 60, minute=m % 60, second=0, microsecond=0)


def new_medicine(name: str, dosage: str, frequency: Any, times: Sequence[str],
                 start_date: Optional[str] = None, end_date: Optional[str] = None,
                 notes: Optional[str] = None, color: Optional[str] = None,
                 today: Optional[date] = None) -> Medicine:
    name = (name or "").strip()
    dosage = (dosage or "").strip()
    if not name:
        raise InvalidMedicine("name is required")
    if not dosage:
        raise InvalidMedicine("dosage is required")

    freq = Frequency.parse(frequency)
    times = [] if freq is Frequency.AS_NEEDED else [str(t).strip() for t in (times or [])]
    validate_schedule(freq, times)

    if not (start_date or "").strip():
        start_date = (today or date.today()).strftime(YMD)
    start = _check_date(start_date, "start date", required=True)
    end = _check_date(end_date, "end date", required=False)
    if end and end < start:
        raise InvalidMedicine("end date is before start date")

    return Medicine(
        id=uuid.uuid4().hex,
        name=name,
        dosage=dosage,
        frequency=freq,
        times=tuple(times),
        start_date=start,
        end_date=end,
        notes=(notes or "").strip() or None,
        color=color or next(_palette_cycle),
    )


def slot_minutes(medicine: Medicine) -> List[int]:
    if medicine.as_needed:
        return []
    return sorted(parse_time(t) for t in medicine.times)


def daily_doses(medicine: Medicine) -> List[DoseInstance]:
    if medicine.as_needed:
        return []
    return [DoseInstance(medicine, format_time(m)) for m in slot_minutes(medicine)]


def scheduled_doses(medicines: Iterable[Medicine]) -> List[DoseInstance]:
    out: List[DoseInstance] = []
    for med in medicines:
        out.extend(daily_doses(med))
    return out


def next_dose_time(medicine: Medicine, now: datetime) -> Optional[str]:
    slots = slot_minutes(medicine)
    if not slots:
        return None
    current = minute_of_day(now)
    for m in slots:
        if m > current:
            return format_time(m)
    # Nothing left today; the first slot comes round tomorrow.
    return format_time(slots[0])

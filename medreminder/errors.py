# medreminder/errors.py


class ReminderError(Exception):
    """Base class for every error raised by the reminder core."""


class InvalidMedicine(ReminderError):
    pass


class InvalidSchedule(InvalidMedicine):
    """Slot count or time format does not match the medicine's frequency."""


class UnknownMedicine(ReminderError):
    def __init__(self, medicine_id: str):
        super().__init__(f"unknown medicine id={medicine_id}")
        self.medicine_id = medicine_id


class StorageReadError(ReminderError):
    def __init__(self, name: str, reason: str = ""):
        msg = f"cannot read record {name!r}"
        if reason:
            msg += f": {reason}"
        super().__init__(msg)
        self.name = name


class AudioPlaybackError(ReminderError):
    pass

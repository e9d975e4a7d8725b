# simtemp/errors.py
from typing import Optional


class SimTempError(Exception):
    """Base class for every request the simulated device rejects."""
    errno_name = "EINVAL"


class InvalidMode(SimTempError, ValueError):
    def __init__(self, name):
        self.name = name
        super().__init__(f"Invalid mode {name!r}. Must be one of normal, noisy, ramp")


class InvalidValue(SimTempError, ValueError):
    def __init__(self, entry: str, raw):
        self.entry = entry
        self.raw = raw
        super().__init__(f"Invalid value for {entry}: {raw!r}")


class BufferTooSmall(SimTempError):
    def __init__(self, capacity: int, required: int):
        self.capacity = capacity
        self.required = required
        super().__init__(f"Buffer too small: {capacity} bytes, need {required}")


class CopyFault(SimTempError):
    errno_name = "EFAULT"

    def __init__(self, reason: Optional[str] = None):
        super().__init__(f"Cannot write sample to destination: {reason or 'not writable'}")


class UnknownEntry(SimTempError, KeyError):
    errno_name = "ENOENT"

    def __init__(self, entry: str):
        self.entry = entry
        super().__init__(entry)

    def __str__(self):
        return f"No such control entry: {self.entry!r}"


class AccessDenied(SimTempError, PermissionError):
    errno_name = "EACCES"

    def __init__(self, entry: str, access: str):
        self.entry = entry
        self.access = access
        super().__init__(f"Control entry {entry!r} is not {access}able")

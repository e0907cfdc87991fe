class AttendanceError(ValueError):
    """Base class for every failure that aborts a report run."""


class ConfigurationError(AttendanceError):
    pass


class SourceSelectionError(AttendanceError):
    pass


class DecodeError(AttendanceError):
    pass


class RowFormatError(AttendanceError):
    pass


class WriteError(AttendanceError):
    pass

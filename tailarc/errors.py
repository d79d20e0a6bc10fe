class TailarcError(Exception):
    """Base class for tailarc-specific errors."""


# Validation (never retried)
class ValidationError(TailarcError, ValueError):
    pass


class SettingsError(ValidationError):
    pass


class CompressionMismatchError(ValidationError):
    """Requested compression mode differs from the archive's fixed mode."""


# File access
class ArchiveIOError(TailarcError, OSError):
    """Raised when a file could not be opened after all retry attempts."""


# Format
class FormatError(TailarcError):
    pass


class CorruptArchiveError(FormatError):
    pass

"""Errors raised while turning raw plan text into a canonical plan."""


class PlanError(Exception):
    """Base class for plan input errors."""


class ParseFailure(PlanError):
    """Raised when plan text is malformed or has no root operator."""


class UnsupportedFormat(PlanError):
    """Raised when no registered parser recognizes the plan text."""


class CancellationRequested(Exception):
    """Raised when a caller cancelled the work before it started.

    Not a ``PlanError`` subclass.
    """

    def __init__(self, stage: str = ""):
        self.stage = stage
        msg = f"Cancelled before {stage}" if stage else "Cancelled"
        super().__init__(msg)

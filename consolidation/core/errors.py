class ConsolidationError(Exception):
    """Base class for every error raised by the consolidation engine."""


class InvalidBatchError(ConsolidationError, ValueError):
    """The caller supplied no candidates or no grouping context."""


class ClassifierUnavailableError(ConsolidationError):
    """The classification backend raised, timed out or could not be reached."""


class ClassificationParseError(ConsolidationError):
    """The classification backend answered, but not with the expected structure."""

    def __init__(self, message: str, raw_output: str = ""):
        super().__init__(message)
        self.raw_output = raw_output

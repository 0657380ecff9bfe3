"""Exception hierarchy for the memory and dispatch core."""


class MindcoreError(Exception):
    """Base class for all mindcore errors."""
    pass


class ConfigurationError(MindcoreError):
    """Raised when a provider or profile cannot be resolved at session start."""
    pass


class BackendError(MindcoreError):
    """Raised when a model backend request fails (network or provider error)."""

    def __init__(self, message: str, *, provider: str = None, model: str = None):
        super().__init__(message)
        self.provider = provider
        self.model = model


class ParseError(MindcoreError):
    """Raised when a model response cannot be parsed into the expected shape.

    Only used internally by goal setting, which catches it and returns None.
    """

    def __init__(self, message: str, *, raw: str = ""):
        super().__init__(message)
        self.raw = raw


class PersistenceError(MindcoreError):
    """Raised when the session file cannot be read or written."""
    pass

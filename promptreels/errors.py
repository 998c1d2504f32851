"""Error taxonomy shared by the optimization engine and the job queue."""


class PromptReelsError(Exception):
    """Base class for all promptreels errors."""
    pass


class ProviderError(PromptReelsError):
    """Raised when a generation or synthesis provider fails.

    Recovered locally: the Evaluator turns it into a zero score and the
    Evolution Engine into a skipped evolution step.
    """

    def __init__(self, message: str, provider: str = "unknown"):
        super().__init__(message)
        self.provider = provider


class StorageUnavailable(PromptReelsError):
    """Raised when the backing store cannot be read or written.

    Fatal to the calling operation. ``summary`` carries the partial run
    summary when an FPO run is aborted.
    """

    def __init__(self, message: str, summary=None):
        super().__init__(message)
        self.summary = summary


class InvalidConfiguration(PromptReelsError):
    """Raised for configuration rejected before any work starts."""
    pass

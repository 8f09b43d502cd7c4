class TubeLinksError(Exception):
    """Base class for errors raised by this package."""


class StoreError(TubeLinksError):
    pass


class StoreUnavailable(StoreError):
    """The key-value backend is missing, unconfigured or failing."""


class StoreTimeout(StoreError):
    """A store operation ran past its time bound."""

    def __init__(self, operation: str, timeout: float):
        super().__init__(f"KV operation timeout: {operation} exceeded {timeout:g}s")
        self.operation = operation
        self.timeout = timeout


class StoreCorrupt(StoreError):
    """The stored blob could not be decoded."""


class MalformedInput(TubeLinksError):
    pass


class RemoteError(TubeLinksError):
    """A call to the links API failed (network, timeout, bad status or body)."""

    def __init__(self, message: str, status: int | None = None):
        super().__init__(message)
        self.status = status

"""Error taxonomy for the relay pipeline."""


class ProxyError(Exception):
    """Base class for failures raised by the relay pipeline."""

    status_code = 502


class ProxyInputError(ProxyError):
    """The request itself is unusable; answered with a 400 and the message."""

    status_code = 400


class MissingTargetError(ProxyInputError):
    def __init__(self, message: str = "Missing target URL"):
        super().__init__(message)


class InvalidTargetError(ProxyInputError):
    pass


class LoopDetectedError(ProxyInputError):
    def __init__(
        self, message: str = "Refusing to proxy this origin (loop protection)."
    ):
        super().__init__(message)


class UpstreamFetchError(ProxyError):
    status_code = 502


class VersionLookupError(ProxyError):
    """Raised internally while reading the version artifact; never surfaced."""

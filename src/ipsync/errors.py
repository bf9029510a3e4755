"""Base exceptions for ipsync."""


class IpsyncError(Exception):
    """Base exception for all ipsync errors."""

    pass


class AuthError(IpsyncError):
    """An Authentication header was rejected.

    Raised by Verifier.check with the failed gate as the message. The
    HTTP route only sees Verifier.verify, which turns it into a bare 404.
    """

    pass


class ActionError(IpsyncError):
    """The external update action failed."""

    pass


class StorageError(IpsyncError):
    """Cached address file could not be read or written."""

    pass


class StartupError(IpsyncError):
    """Error during listener or reporter startup."""

    pass


class KeyLoadError(StartupError):
    """Key file is missing, malformed, or not an EC key."""

    pass


class ReportError(IpsyncError):
    """Reporting the address to the listener failed."""

    pass

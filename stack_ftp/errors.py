"""Error hierarchy for the STACK bridge.

The pyftpdlib glue translates these into OSError/errno values; the core never
raises protocol-level errors itself.
"""

from typing import Optional


class StackError(Exception):
    """Base class for all bridge errors."""


class AuthenticationFailed(StackError):
    """Login handshake rejected, identity malformed, or transport failure during login."""

    def __init__(self, username: str, reason: str = "login rejected"):
        self.username = username
        self.reason = reason
        super().__init__(f"STACK login failed for user '{username}': {reason}")


class RemoteApiError(StackError):
    """A post-authentication call to the STACK API failed."""

    def __init__(self, operation: str, path: str, status_code: Optional[int] = None,
                 detail: Optional[str] = None):
        self.operation = operation
        self.path = path
        self.status_code = status_code
        self.detail = detail
        message = f"{operation} {path} failed"
        if status_code is not None:
            message += f" (HTTP {status_code})"
        if detail:
            message += f": {detail}"
        super().__init__(message)


class SessionExpired(RemoteApiError):
    """The remote API stopped accepting this connection's cookies/CSRF token.

    Sessions are never refreshed; the FTP client has to log in again.
    """


class Unsupported(StackError):
    """Operation has no STACK public-share equivalent."""

    def __init__(self, operation: str, path: str = ""):
        self.operation = operation
        self.path = path
        target = f" {path}" if path else ""
        super().__init__(f"{operation}{target}: operation not supported")


class PathResolutionError(StackError, ValueError):
    """Path input cannot be resolved against the working directory."""

    def __init__(self, path, reason: str = "malformed path"):
        self.path = path
        self.reason = reason
        super().__init__(f"Cannot resolve path {path!r}: {reason}")

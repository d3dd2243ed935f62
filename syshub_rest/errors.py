"""
sysHUB REST SDK Error Classes

Every error carries a machine readable code next to its message so that
callers using the error-as-value style can branch on it.
"""

from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any, Dict, Optional

if TYPE_CHECKING:
    from .types import RestResponse


class SyshubError(Exception):
    """Base error class for the sysHUB REST SDK."""

    def __init__(
        self,
        code: str,
        message: str,
        status_code: int = 0,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.code = code
        self.message = message
        self.status_code = status_code
        self.details = details or {}
        self.timestamp = datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for logging/serialization."""
        return {
            "name": self.__class__.__name__,
            "code": self.code,
            "message": self.message,
            "status_code": self.status_code,
            "details": self.details,
            "timestamp": self.timestamp,
        }

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(code={self.code!r}, message={self.message!r})"


class ConfigurationError(SyshubError):
    """
    Invalid client configuration.

    ``code`` holds the numbered variant (``E1`` .. ``E11``, ``E15`` .. ``E17``) of the failed check.
    """

    def __init__(self, code: str, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(code, f"{code} - {message}", 0, details)


class CapabilityError(SyshubError):
    """The configured scope does not grant access to the requested API surface."""

    def __init__(self, scope: str):
        super().__init__(
            "MISSING_SCOPE",
            f"The endpoint must not be called due to missing scope '{scope}' "
            "in the configuration.",
            0,
            {"scope": scope},
        )
        self.scope = scope


class AuthenticationRequiredError(SyshubError):
    """The user is not logged in."""

    def __init__(self) -> None:
        super().__init__(
            "NOT_LOGGED_IN",
            "The user is not logged in therefore this endpoint must not be called.",
            401,
        )


class NetworkUnreachableError(SyshubError):
    """The transport could not reach the server (status 0)."""

    def __init__(self, details: Optional[Dict[str, Any]] = None):
        super().__init__(
            "NETWORK_ERROR",
            "Unable to connect to the server. Check that the server is running and available.",
            0,
            details,
        )


class UnexpectedStatusError(SyshubError):
    """The server replied with a status code other than the expected one."""

    def __init__(self, expected: int, response: "RestResponse"):
        super().__init__(
            "STATUS_NOT_EXPECTED",
            f"The server did not reply with the expected HTTP status code {expected}.",
            response.status,
            {"expected": expected, "actual": response.status},
        )
        self.expected = expected
        self.response = response


class UnauthorizedError(SyshubError):
    """The server refused the current session."""

    def __init__(self) -> None:
        super().__init__(
            "UNAUTHORIZED",
            "The server refused the current session. The session will be renewed or removed automatically.",
            401,
        )


class UsageError(SyshubError):
    """The SDK was used in a way the configuration does not allow."""

    def __init__(self, message: str):
        super().__init__("USAGE_ERROR", message, 0)


def is_syshub_error(error: Any) -> bool:
    """Check if error is a SyshubError."""
    return isinstance(error, SyshubError)

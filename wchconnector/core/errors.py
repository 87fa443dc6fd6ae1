"""Error types and error-handling policy for the connector.

Every failure surfaced by the connector derives from :class:`WchError`.
Components receive an :class:`ErrorPolicy` at construction and route each
terminal failure through it instead of consulting a global debug flag.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, Optional

import httpx


class WchError(Exception):
    """Base class for all connector errors."""


class AuthenticationError(WchError):
    """Login failed, or the session was rejected twice in a row."""

    def __init__(self, message: str, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class ValidationError(WchError):
    """The caller supplied an incomplete or inconsistent request.

    Raised before any network call is issued.
    """


class RemoteRequestError(WchError):
    """A request outside the login path did not succeed.

    ``status_code`` is ``None`` when the request never produced a response
    (connection refused, timeout, ...).
    """

    def __init__(
        self,
        message: str,
        *,
        status_code: Optional[int] = None,
        method: Optional[str] = None,
        url: Optional[str] = None,
        body: Any = None,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.method = method
        self.url = url
        self.body = body

    @classmethod
    def from_response(cls, response: httpx.Response) -> "RemoteRequestError":
        """Build an error from a non-2xx response."""
        try:
            body: Any = response.json()
        except ValueError:
            body = response.text
        request = response.request
        return cls(
            f"{request.method} {request.url} failed with status {response.status_code}",
            status_code=response.status_code,
            method=request.method,
            url=str(request.url),
            body=body,
        )

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "error_type": self.__class__.__name__,
            "message": str(self),
            "status_code": self.status_code,
            "method": self.method,
            "url": self.url,
        }


class PolicyKind(Enum):
    """How a component reacts to a terminal failure."""

    RETHROW = "rethrow"
    LOG_AND_RETHROW = "log_and_rethrow"
    CUSTOM = "custom"


@dataclass(frozen=True)
class ErrorPolicy:
    """Error-handling policy handed to each component.

    Use the constructors :meth:`rethrow`, :meth:`log_and_rethrow` and
    :meth:`custom` rather than instantiating directly. A custom handler may
    return a substitute value (which becomes the result of the failed call)
    or raise.
    """

    kind: PolicyKind = PolicyKind.RETHROW
    logger: Optional[logging.Logger] = field(default=None, compare=False)
    handler: Optional[Callable[[Exception], Any]] = field(default=None, compare=False)

    @classmethod
    def rethrow(cls) -> "ErrorPolicy":
        return cls(PolicyKind.RETHROW)

    @classmethod
    def log_and_rethrow(cls, logger: Optional[logging.Logger] = None) -> "ErrorPolicy":
        return cls(PolicyKind.LOG_AND_RETHROW, logger=logger or logging.getLogger("wchconnector"))

    @classmethod
    def custom(cls, handler: Callable[[Exception], Any]) -> "ErrorPolicy":
        if not callable(handler):
            raise ValidationError("custom error policy requires a callable handler")
        return cls(PolicyKind.CUSTOM, handler=handler)

    def handle(self, exc: Exception) -> Any:
        """Apply the policy to ``exc``.

        Raises ``exc`` unless the policy is custom and its handler returns.
        """
        if self.kind is PolicyKind.CUSTOM and self.handler is not None:
            return self.handler(exc)
        if self.kind is PolicyKind.LOG_AND_RETHROW and self.logger is not None:
            self.logger.error("Error: %s", exc, exc_info=exc)
        raise exc

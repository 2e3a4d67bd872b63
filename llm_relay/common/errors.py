"""
Error Definitions

Defines the relay's exception classes.

- Malformed inbound fields are never errors: the normalizer drops or defaults them.
- ProtocolParseError is raised for one unparseable SSE line and always recovered locally.
- UpstreamTransportError is fatal to the in-flight response.
- ConfigurationError covers configuration the relay cannot fall back from.
"""

from typing import Any, Optional


class AppError(Exception):
    """
    Application Base Exception

    Base class for all custom exceptions, containing error message, type, and code.
    """

    def __init__(
        self,
        message: str,
        error_type: str = "app_error",
        code: str = "internal_error",
        details: Optional[dict[str, Any]] = None,
        status_code: int = 500,
    ):
        """
        Initialize exception

        Args:
            message: Error message
            error_type: Error type
            code: Error code
            details: Extra error details
            status_code: HTTP status code
        """
        super().__init__(message)
        self.message = message
        self.error_type = error_type
        self.code = code
        self.details = details or {}
        self.status_code = status_code

    def to_dict(self, include_details: bool = True) -> dict[str, Any]:
        """
        Convert to dictionary format (for API response)

        Args:
            include_details: Whether to include the details mapping

        Returns:
            dict: Error information dictionary
        """
        result = {
            "error": {
                "message": self.message,
                "type": self.error_type,
                "code": self.code,
            }
        }
        if include_details and self.details:
            result["error"]["details"] = self.details
        return result


class InvalidRequestError(AppError):
    """
    Invalid Request Error

    Raised when the inbound body is not a JSON object at all. Individual
    malformed fields never raise.
    """

    def __init__(
        self,
        message: str = "Request body must be a JSON object",
        code: str = "invalid_request",
        details: Optional[dict[str, Any]] = None,
    ):
        super().__init__(
            message=message,
            error_type="invalid_request_error",
            code=code,
            details=details,
            status_code=400,
        )


class UpstreamTransportError(AppError):
    """
    Upstream Transport Error

    Raised when the upstream byte source fails (connect, timeout, read).
    """

    def __init__(
        self,
        message: str = "Upstream transport error",
        code: str = "upstream_error",
        details: Optional[dict[str, Any]] = None,
        status_code: int = 502,
    ):
        super().__init__(
            message=message,
            error_type="upstream_error",
            code=code,
            details=details,
            status_code=status_code,
        )


class ConfigurationError(AppError):
    """
    Configuration Error

    Raised when configuration names something the relay does not support.
    """

    def __init__(
        self,
        message: str = "Invalid configuration",
        code: str = "configuration_error",
        details: Optional[dict[str, Any]] = None,
    ):
        super().__init__(
            message=message,
            error_type="configuration_error",
            code=code,
            details=details,
            status_code=500,
        )


class CredentialRefreshError(AppError):
    """
    Credential Refresh Error

    Raised when the token-issuance endpoint cannot provide a fresh credential.
    """

    def __init__(
        self,
        message: str = "Credential refresh failed",
        code: str = "credential_refresh_failed",
        details: Optional[dict[str, Any]] = None,
    ):
        super().__init__(
            message=message,
            error_type="credential_error",
            code=code,
            details=details,
            status_code=502,
        )


class ProtocolParseError(Exception):
    """One SSE data line could not be parsed as a JSON object."""

    def __init__(self, message: str, line: str = ""):
        super().__init__(message)
        self.message = message
        self.line = line

"""
Custom Exception Classes

Defines suite-specific exceptions for Salesforce REST, streaming and fixture errors.
"""

from typing import Any, Dict, Optional


class StreamingSuiteException(Exception):
    """Base exception for all suite errors"""

    def __init__(
        self,
        message: str,
        error_code: str = "STREAMING_SUITE_ERROR",
        details: Optional[Dict[str, Any]] = None,
    ):
        self.message = message
        self.error_code = error_code
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for logging"""
        return {
            "error_code": self.error_code,
            "message": self.message,
            "details": self.details,
        }


class SalesforceException(StreamingSuiteException):
    """Salesforce API related errors"""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, error_code="SALESFORCE_ERROR", details=details)


class SalesforceAuthException(SalesforceException):
    """Salesforce OAuth authentication errors"""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(
            message,
            details={**(details or {}), "auth_failed": True},
        )


class SalesforceAPIException(SalesforceException):
    """Salesforce REST API call errors"""

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        details = details or {}
        if status_code:
            details["status_code"] = status_code
        super().__init__(message, details=details)

    @property
    def status_code(self) -> Optional[int]:
        return self.details.get("status_code")


class StreamingException(StreamingSuiteException):
    """Streaming API related errors"""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, error_code="STREAMING_ERROR", details=details)


class BayeuxException(StreamingException):
    """Bayeux protocol errors (handshake, connect, HTTP failures on the cometd endpoint)"""

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        details = details or {}
        if status_code:
            details["status_code"] = status_code
        super().__init__(message, details=details)

    @property
    def status_code(self) -> Optional[int]:
        return self.details.get("status_code")

    @property
    def is_auth_failure(self) -> bool:
        return self.status_code in (401, 403)


class SubscriptionException(StreamingException):
    """Subscribe request rejected by the server"""

    def __init__(self, message: str, channel: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, details={**(details or {}), "channel": channel})


class UnexpectedMessageException(StreamingException):
    """A handler received a message it cannot correlate to the running scenario"""

    def __init__(self, message: str, channel: Optional[str] = None, details: Optional[Dict[str, Any]] = None):
        details = details or {}
        if channel:
            details["channel"] = channel
        super().__init__(message, details=details)


class DeliveryTimeoutException(StreamingException):
    """No message arrived within the allotted time"""

    def __init__(self, message: str, timeout: float, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, details={**(details or {}), "timeout": timeout})


class FixtureCleanupException(StreamingSuiteException):
    """Fixture teardown found nothing to delete"""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, error_code="FIXTURE_CLEANUP_ERROR", details=details)


class ConfigurationException(StreamingSuiteException):
    """Configuration or environment errors"""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, error_code="CONFIG_ERROR", details=details)


class ValidationException(StreamingSuiteException):
    """Data validation errors"""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, error_code="VALIDATION_ERROR", details=details)


class DeliveryTimeoutWarning(UserWarning):
    """Best-effort delivery timed out; the scenario was skipped instead of failed"""

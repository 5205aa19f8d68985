"""
Exception hierarchy for the identity session library.

This module defines structured exceptions with error codes, context information,
and recovery suggestions so that callers can react to session failures consistently.
"""

from datetime import datetime
from typing import Optional, Dict, Any, List
from enum import Enum


class ErrorCode(Enum):
    """Standardized error codes for the identity session library."""

    # Remote identity service errors (1000-1099)
    REMOTE_REQUEST_FAILED = "REMOTE_1001"
    REMOTE_MALFORMED_RESPONSE = "REMOTE_1002"

    # Local precondition errors (2000-2099)
    REQUEST_MISSING_OOB_CODE = "REQUEST_2001"
    REQUEST_MISSING_PENDING_EMAIL = "REQUEST_2002"
    REQUEST_NO_IDENTITY = "REQUEST_2003"
    REQUEST_INVALID_TOKEN = "REQUEST_2004"

    # Network and communication errors (3000-3099)
    NETWORK_CONNECTION_FAILED = "NETWORK_3001"
    NETWORK_TIMEOUT = "NETWORK_3002"

    # Storage errors (4000-4099)
    STORAGE_READ_FAILED = "STORAGE_4001"
    STORAGE_WRITE_FAILED = "STORAGE_4002"
    STORAGE_REMOVE_FAILED = "STORAGE_4003"
    STORAGE_CORRUPT_RECORD = "STORAGE_4004"

    # Configuration errors (5000-5099)
    CONFIG_FILE_NOT_FOUND = "CONFIG_5001"
    CONFIG_INVALID_FORMAT = "CONFIG_5002"
    CONFIG_MISSING_REQUIRED_SETTING = "CONFIG_5003"
    CONFIG_INVALID_VALUE = "CONFIG_5004"


class ErrorSeverity(Enum):
    """Error severity levels for logging and handling."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class RecoveryAction(Enum):
    """Suggested recovery actions for errors."""
    RETRY = "retry"
    REAUTHENTICATE = "reauthenticate"
    SIGN_OUT = "sign_out"
    USER_INTERVENTION = "user_intervention"
    CHECK_STORAGE = "check_storage"
    CHECK_CONFIGURATION = "check_configuration"


class IdentitySessionError(Exception):
    """
    Base exception class for all identity session errors.

    Provides structured error information including error codes, context,
    and recovery suggestions for consistent error handling.
    """

    def __init__(
        self,
        message: str,
        error_code: ErrorCode,
        severity: ErrorSeverity = ErrorSeverity.MEDIUM,
        context: Optional[Dict[str, Any]] = None,
        recovery_actions: Optional[List[RecoveryAction]] = None,
        cause: Optional[Exception] = None,
        user_message: Optional[str] = None
    ):
        super().__init__(message)

        self.message = message
        self.error_code = error_code
        self.severity = severity
        self.context = context or {}
        self.recovery_actions = recovery_actions or []
        self.cause = cause
        self.user_message = user_message or message
        self.timestamp = datetime.now()

        # Add cause information to context if available
        if cause:
            self.context['cause_type'] = type(cause).__name__
            self.context['cause_message'] = str(cause)

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary format for serialization."""
        return {
            'error': {
                'code': self.error_code.value,
                'message': self.message,
                'user_message': self.user_message,
                'severity': self.severity.value,
                'timestamp': self.timestamp.isoformat(),
                'context': self.context,
                'recovery_actions': [action.value for action in self.recovery_actions],
                'cause': {
                    'type': self.context.get('cause_type'),
                    'message': self.context.get('cause_message')
                } if self.cause else None
            }
        }


class RemoteError(IdentitySessionError):
    """
    The identity service answered with a non-success status.

    Carries the parsed response body so callers can inspect the service's
    own error description (e.g. ``EMAIL_EXISTS``, ``INVALID_REFRESH_TOKEN``).
    """

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        body: Optional[Dict[str, Any]] = None,
        **kwargs
    ):
        context = kwargs.pop('context', {})
        context['status_code'] = status_code

        error_code = kwargs.pop('error_code', ErrorCode.REMOTE_REQUEST_FAILED)
        severity = kwargs.pop('severity', ErrorSeverity.MEDIUM)
        recovery_actions = kwargs.pop(
            'recovery_actions', [RecoveryAction.RETRY, RecoveryAction.REAUTHENTICATE]
        )

        super().__init__(
            message=message,
            error_code=error_code,
            severity=severity,
            recovery_actions=recovery_actions,
            context=context,
            **kwargs
        )
        self.status_code = status_code
        self.body = body if body is not None else {}

    @property
    def remote_message(self) -> Optional[str]:
        """Error message reported by the service, if the body carries one."""
        error = self.body.get('error') if isinstance(self.body, dict) else None
        if isinstance(error, dict):
            return error.get('message')
        if isinstance(error, str):
            return error
        return None


class RequestError(IdentitySessionError):
    """A local precondition failed before any network call was made."""

    def __init__(self, message: str, error_code: ErrorCode, **kwargs):
        super().__init__(
            message=message,
            error_code=error_code,
            severity=ErrorSeverity.LOW,
            recovery_actions=[RecoveryAction.USER_INTERVENTION],
            **kwargs
        )


class NetworkError(IdentitySessionError):
    """Network and communication related errors."""

    def __init__(self, message: str, error_code: ErrorCode = ErrorCode.NETWORK_CONNECTION_FAILED, **kwargs):
        super().__init__(
            message=message,
            error_code=error_code,
            severity=ErrorSeverity.MEDIUM,
            recovery_actions=[RecoveryAction.RETRY],
            **kwargs
        )


class StorageError(IdentitySessionError):
    """Errors raised by the bundled storage backends."""

    def __init__(self, message: str, error_code: ErrorCode, key: Optional[str] = None, **kwargs):
        context = kwargs.pop('context', {})
        if key:
            context['key'] = key

        super().__init__(
            message=message,
            error_code=error_code,
            severity=ErrorSeverity.HIGH,
            recovery_actions=[RecoveryAction.CHECK_STORAGE, RecoveryAction.SIGN_OUT],
            context=context,
            **kwargs
        )


class ConfigurationError(IdentitySessionError):
    """Configuration related errors."""

    def __init__(self, message: str, error_code: ErrorCode, config_key: Optional[str] = None, **kwargs):
        context = kwargs.pop('context', {})
        if config_key:
            context['config_key'] = config_key

        super().__init__(
            message=message,
            error_code=error_code,
            severity=ErrorSeverity.HIGH,
            recovery_actions=[RecoveryAction.CHECK_CONFIGURATION],
            context=context,
            **kwargs
        )

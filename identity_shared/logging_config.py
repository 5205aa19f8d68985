"""
Logging configuration for the identity session library.

This module provides structured logging with an audit trail of identity
events and configurable output formats. Tokens are never written to logs.
"""

import json
import logging
import logging.handlers
import sys
from datetime import datetime
from pathlib import Path
from typing import Dict, Any, Optional
from enum import Enum

from identity_shared.exceptions import IdentitySessionError


class LogLevel(Enum):
    """Log level enumeration."""
    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class LogFormat(Enum):
    """Log format enumeration."""
    STANDARD = "standard"
    JSON = "json"
    DETAILED = "detailed"


class AuditEventType(Enum):
    """Identity events that are audited."""
    SIGN_UP = "sign_up"
    SIGN_IN = "sign_in"
    SIGN_OUT = "sign_out"
    ACCOUNT_DELETE = "account_delete"
    TOKEN_REFRESH = "token_refresh"
    EMAIL_LINK = "email_link"
    PASSWORD_RESET = "password_reset"
    ERROR_EVENT = "error_event"


class StructuredFormatter(logging.Formatter):
    """One JSON object per record, carrying structured error and audit details."""

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as structured JSON."""
        log_entry = {
            'timestamp': datetime.fromtimestamp(record.created).isoformat(),
            'level': record.levelname,
            'logger': record.name,
            'message': record.getMessage(),
            'module': record.module,
            'function': record.funcName,
            'line': record.lineno
        }

        session_name = getattr(record, 'session_name', None)
        if session_name is not None:
            log_entry['session_name'] = session_name

        if record.exc_info:
            log_entry['exception'] = {
                'type': record.exc_info[0].__name__ if record.exc_info[0] else None,
                'message': str(record.exc_info[1]) if record.exc_info[1] else None,
                'traceback': self.formatException(record.exc_info)
            }

        # Add structured error information if available
        error = getattr(record, 'error_info', None)
        if isinstance(error, IdentitySessionError):
            log_entry['error'] = {
                'code': error.error_code.value,
                'severity': error.severity.value,
                'context': error.context,
                'recovery_actions': [action.value for action in error.recovery_actions],
                'user_message': error.user_message
            }

        if hasattr(record, 'audit_info'):
            log_entry['audit'] = record.audit_info

        return json.dumps(log_entry, default=str, ensure_ascii=False)


class DetailedFormatter(logging.Formatter):
    """Human-readable lines followed by any error and audit details."""

    def __init__(self):
        super().__init__(
            fmt='%(asctime)s | %(levelname)-8s | %(name)-20s | %(funcName)-15s:%(lineno)-4d | %(message)s',
            datefmt='%Y-%m-%d %H:%M:%S'
        )

    def format(self, record: logging.LogRecord) -> str:
        """Format log record with detailed information."""
        formatted = super().format(record)

        error = getattr(record, 'error_info', None)
        if isinstance(error, IdentitySessionError):
            formatted += f"\n  Error Code: {error.error_code.value}"
            formatted += f"\n  Severity: {error.severity.value}"
            if error.context:
                formatted += f"\n  Context: {json.dumps(error.context, indent=2, default=str)}"
            if error.recovery_actions:
                actions = [action.value for action in error.recovery_actions]
                formatted += f"\n  Recovery Actions: {', '.join(actions)}"

        if hasattr(record, 'audit_info'):
            formatted += f"\n  Audit: {json.dumps(record.audit_info, indent=2, default=str)}"

        return formatted


class AuditLogger:
    """
    Specialized logger for identity events with structured information.
    """

    def __init__(self, logger_name: str = "identity.audit"):
        self.logger = logging.getLogger(logger_name)

    def log_event(
        self,
        event_type: AuditEventType,
        message: str,
        session_name: Optional[str] = None,
        local_id: Optional[str] = None,
        result: Optional[str] = None,
        additional_context: Optional[Dict[str, Any]] = None
    ):
        """
        Log an audit event with structured information.

        Args:
            event_type: Type of audit event
            message: Human-readable message
            session_name: Name of the session the event belongs to
            local_id: Subject identifier involved, if any
            result: Result of the operation (success, failure, etc.)
            additional_context: Additional context information
        """
        audit_info = {
            'event_type': event_type.value,
            'timestamp': datetime.now().isoformat(),
            'session_name': session_name,
            'local_id': local_id,
            'result': result,
            'context': additional_context or {}
        }

        # Remove None values
        audit_info = {k: v for k, v in audit_info.items() if v is not None}

        self.logger.info(message, extra={'audit_info': audit_info})

    def log_identity_change(
        self,
        event_type: AuditEventType,
        session_name: str,
        local_id: Optional[str] = None,
        success: bool = True,
        failure_reason: Optional[str] = None
    ):
        """Log sign-up, sign-in, sign-out, deletion and email link events."""
        context = {'failure_reason': failure_reason} if failure_reason else None
        self.log_event(
            event_type=event_type,
            message=f"{event_type.value} {'succeeded' if success else 'failed'} for session '{session_name}'",
            session_name=session_name,
            local_id=local_id,
            result="success" if success else "failure",
            additional_context=context
        )

    def log_token_refresh(
        self,
        session_name: str,
        local_id: Optional[str],
        success: bool = True,
        failure_reason: Optional[str] = None
    ):
        """Log bearer token refresh exchanges."""
        self.log_identity_change(
            AuditEventType.TOKEN_REFRESH,
            session_name,
            local_id=local_id,
            success=success,
            failure_reason=failure_reason
        )

    def log_error(self, error: IdentitySessionError, session_name: Optional[str] = None):
        """Log error events."""
        self.log_event(
            event_type=AuditEventType.ERROR_EVENT,
            message=f"Error occurred: {error.message}",
            session_name=session_name,
            result="error",
            additional_context={
                'error_code': error.error_code.value,
                'severity': error.severity.value,
                'context': error.context,
                'recovery_actions': [action.value for action in error.recovery_actions]
            }
        )


def setup_logging(
    log_level: LogLevel = LogLevel.INFO,
    log_format: LogFormat = LogFormat.STANDARD,
    log_file: Optional[str] = None,
    max_file_size: int = 10 * 1024 * 1024,  # 10MB
    backup_count: int = 5,
    enable_console: bool = True,
    audit_file: Optional[str] = None
) -> Dict[str, logging.Logger]:
    """
    Set up logging for applications embedding the session manager.

    Args:
        log_level: Minimum log level to capture
        log_format: Format for log output
        log_file: Path to main log file (optional)
        max_file_size: Maximum size of log files before rotation
        backup_count: Number of backup files to keep
        enable_console: Whether to enable console logging
        audit_file: Path to a separate JSON audit log file (optional)

    Returns:
        Dictionary of configured loggers
    """
    root_logger = logging.getLogger()
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    root_logger.setLevel(getattr(logging, log_level.value))

    if log_format == LogFormat.JSON:
        formatter = StructuredFormatter()
    elif log_format == LogFormat.DETAILED:
        formatter = DetailedFormatter()
    else:  # STANDARD
        formatter = logging.Formatter(
            fmt='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
            datefmt='%Y-%m-%d %H:%M:%S'
        )

    handlers = []

    if enable_console:
        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setFormatter(formatter)
        handlers.append(console_handler)

    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)

        file_handler = logging.handlers.RotatingFileHandler(
            log_file,
            maxBytes=max_file_size,
            backupCount=backup_count,
            encoding='utf-8'
        )
        file_handler.setFormatter(formatter)
        handlers.append(file_handler)

    for handler in handlers:
        root_logger.addHandler(handler)

    audit_logger = logging.getLogger('identity.audit')
    for handler in audit_logger.handlers[:]:
        audit_logger.removeHandler(handler)
        handler.close()

    if audit_file:
        audit_path = Path(audit_file)
        audit_path.parent.mkdir(parents=True, exist_ok=True)

        audit_handler = logging.handlers.RotatingFileHandler(
            audit_file,
            maxBytes=max_file_size,
            backupCount=backup_count,
            encoding='utf-8'
        )
        # Audit records are always JSON
        audit_handler.setFormatter(StructuredFormatter())
        audit_logger.addHandler(audit_handler)

    return {
        'root': root_logger,
        'client': logging.getLogger('identity_client'),
        'audit': audit_logger
    }


def log_structured_error(logger: logging.Logger, error: IdentitySessionError, session_name: Optional[str] = None):
    """
    Log a structured error with full context information.

    Args:
        logger: Logger instance to use
        error: The structured error to log
        session_name: Optional session name for context
    """
    logger.error(error.message, extra={'error_info': error, 'session_name': session_name})

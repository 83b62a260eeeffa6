"""Structured error taxonomy for agent operations.

Every failure an agent action can hit is described by an ``ErrorCode``. The
code determines a severity, a recovery action, whether a retry makes sense,
the message shown to the end user and the HTTP status used by the API.
Explicit values passed to ``AgentError`` win over the table.
"""
from __future__ import annotations

import functools
import inspect
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Dict, Iterable, Optional, Union

logger = logging.getLogger(__name__)


class ErrorCode(str, Enum):
    """Agent error codes grouped by failure family."""

    # Permission
    PERMISSION_DENIED = "PERMISSION_DENIED"
    FEATURE_DISABLED = "FEATURE_DISABLED"
    TEAM_POLICY_BLOCKED = "TEAM_POLICY_BLOCKED"
    USER_SETTINGS_BLOCKED = "USER_SETTINGS_BLOCKED"

    # Confirmation flow
    CONFIRMATION_REQUIRED = "CONFIRMATION_REQUIRED"
    ACTION_EXPIRED = "ACTION_EXPIRED"
    ACTION_ALREADY_PROCESSED = "ACTION_ALREADY_PROCESSED"

    # Confidence
    LOW_CONFIDENCE = "LOW_CONFIDENCE"
    AMBIGUOUS_REQUEST = "AMBIGUOUS_REQUEST"

    # Execution
    EXECUTION_FAILED = "EXECUTION_FAILED"
    EXTERNAL_SERVICE_ERROR = "EXTERNAL_SERVICE_ERROR"
    RATE_LIMITED = "RATE_LIMITED"
    TIMEOUT = "TIMEOUT"

    # Validation
    INVALID_PARAMETERS = "INVALID_PARAMETERS"
    MISSING_REQUIRED_FIELD = "MISSING_REQUIRED_FIELD"
    INVALID_ACTION_TYPE = "INVALID_ACTION_TYPE"

    # Resources
    RESOURCE_NOT_FOUND = "RESOURCE_NOT_FOUND"
    INSUFFICIENT_RESOURCES = "INSUFFICIENT_RESOURCES"

    # System
    INTERNAL_ERROR = "INTERNAL_ERROR"
    DATABASE_ERROR = "DATABASE_ERROR"
    CONFIGURATION_ERROR = "CONFIGURATION_ERROR"


class ErrorSeverity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class RecoveryAction(str, Enum):
    RETRY = "retry"
    ASK_USER = "ask_user"
    REQUEST_CONFIRMATION = "request_confirmation"
    FALLBACK = "fallback"
    ESCALATE = "escalate"
    ABORT = "abort"


# =============================================================================
# Classification tables
# =============================================================================

_SEVERITY: Dict[ErrorCode, ErrorSeverity] = {
    ErrorCode.INTERNAL_ERROR: ErrorSeverity.CRITICAL,
    ErrorCode.DATABASE_ERROR: ErrorSeverity.CRITICAL,
    ErrorCode.CONFIGURATION_ERROR: ErrorSeverity.CRITICAL,
    ErrorCode.PERMISSION_DENIED: ErrorSeverity.HIGH,
    ErrorCode.TEAM_POLICY_BLOCKED: ErrorSeverity.HIGH,
    ErrorCode.EXECUTION_FAILED: ErrorSeverity.HIGH,
    ErrorCode.EXTERNAL_SERVICE_ERROR: ErrorSeverity.MEDIUM,
    ErrorCode.RATE_LIMITED: ErrorSeverity.MEDIUM,
    ErrorCode.TIMEOUT: ErrorSeverity.MEDIUM,
}

_RECOVERY: Dict[ErrorCode, RecoveryAction] = {
    ErrorCode.CONFIRMATION_REQUIRED: RecoveryAction.REQUEST_CONFIRMATION,
    ErrorCode.LOW_CONFIDENCE: RecoveryAction.ASK_USER,
    ErrorCode.AMBIGUOUS_REQUEST: RecoveryAction.ASK_USER,
    ErrorCode.RATE_LIMITED: RecoveryAction.RETRY,
    ErrorCode.TIMEOUT: RecoveryAction.RETRY,
    ErrorCode.EXTERNAL_SERVICE_ERROR: RecoveryAction.RETRY,
    ErrorCode.PERMISSION_DENIED: RecoveryAction.ABORT,
    ErrorCode.TEAM_POLICY_BLOCKED: RecoveryAction.ABORT,
    ErrorCode.USER_SETTINGS_BLOCKED: RecoveryAction.ABORT,
    ErrorCode.INTERNAL_ERROR: RecoveryAction.ESCALATE,
    ErrorCode.DATABASE_ERROR: RecoveryAction.ESCALATE,
}

_RETRYABLE = frozenset(
    {ErrorCode.RATE_LIMITED, ErrorCode.TIMEOUT, ErrorCode.EXTERNAL_SERVICE_ERROR}
)

_STATUS: Dict[ErrorCode, int] = {
    ErrorCode.PERMISSION_DENIED: 403,
    ErrorCode.TEAM_POLICY_BLOCKED: 403,
    ErrorCode.USER_SETTINGS_BLOCKED: 403,
    ErrorCode.RESOURCE_NOT_FOUND: 404,
    ErrorCode.RATE_LIMITED: 429,
    ErrorCode.INVALID_PARAMETERS: 400,
    ErrorCode.MISSING_REQUIRED_FIELD: 400,
    ErrorCode.INVALID_ACTION_TYPE: 400,
    ErrorCode.CONFIRMATION_REQUIRED: 400,
    ErrorCode.TIMEOUT: 504,
    ErrorCode.EXTERNAL_SERVICE_ERROR: 502,
    ErrorCode.INTERNAL_ERROR: 500,
    ErrorCode.DATABASE_ERROR: 500,
    ErrorCode.CONFIGURATION_ERROR: 500,
}

_USER_MESSAGES: Dict[ErrorCode, str] = {
    ErrorCode.PERMISSION_DENIED: "You don't have permission to perform this action.",
    ErrorCode.FEATURE_DISABLED: "This feature is currently disabled.",
    ErrorCode.TEAM_POLICY_BLOCKED: "This action is restricted by your team policy.",
    ErrorCode.USER_SETTINGS_BLOCKED: "This action is disabled in your settings.",
    ErrorCode.CONFIRMATION_REQUIRED: "This action requires your confirmation before proceeding.",
    ErrorCode.ACTION_EXPIRED: "This action has expired. Please request it again.",
    ErrorCode.ACTION_ALREADY_PROCESSED: "This action has already been processed.",
    ErrorCode.LOW_CONFIDENCE: "I'm not confident about this action. Could you clarify?",
    ErrorCode.AMBIGUOUS_REQUEST: "Your request is ambiguous. Could you be more specific?",
    ErrorCode.EXECUTION_FAILED: "The action could not be completed. Please try again.",
    ErrorCode.EXTERNAL_SERVICE_ERROR: "An external service is temporarily unavailable.",
    ErrorCode.RATE_LIMITED: "You've made too many requests. Please wait a moment.",
    ErrorCode.TIMEOUT: "The request took too long. Please try again.",
    ErrorCode.INVALID_PARAMETERS: "The provided parameters are invalid.",
    ErrorCode.MISSING_REQUIRED_FIELD: "Some required information is missing.",
    ErrorCode.INVALID_ACTION_TYPE: "This action type is not recognized.",
    ErrorCode.RESOURCE_NOT_FOUND: "The requested resource was not found.",
    ErrorCode.INSUFFICIENT_RESOURCES: "Insufficient resources to complete this action.",
    ErrorCode.INTERNAL_ERROR: "An internal error occurred. Please try again later.",
    ErrorCode.DATABASE_ERROR: "A database error occurred. Please try again.",
    ErrorCode.CONFIGURATION_ERROR: "A configuration issue was detected.",
}

UNKNOWN_ERROR_MESSAGE = "An unexpected error occurred."


@dataclass(slots=True, frozen=True)
class ErrorClassification:
    """Everything the taxonomy knows about one error code."""

    code: str
    severity: ErrorSeverity
    recovery_action: RecoveryAction
    retryable: bool
    user_message: str
    status_code: int

    def to_api_dict(self) -> Dict[str, Any]:
        return {
            "code": self.code,
            "severity": self.severity.value,
            "recoveryAction": self.recovery_action.value,
            "retryable": self.retryable,
            "userMessage": self.user_message,
            "statusCode": self.status_code,
        }


def _coerce_code(code: Union[ErrorCode, str]) -> Optional[ErrorCode]:
    if isinstance(code, ErrorCode):
        return code
    try:
        return ErrorCode(str(code).strip().upper())
    except ValueError:
        return None


def classify_error(code: Union[ErrorCode, str]) -> ErrorClassification:
    """Look up the classification for an error code.

    Unknown codes are not an error: they get the default row (low severity,
    fallback recovery, not retryable, HTTP 400) and a generic user message.
    """
    known = _coerce_code(code)
    if known is None:
        return ErrorClassification(
            code=str(code),
            severity=ErrorSeverity.LOW,
            recovery_action=RecoveryAction.FALLBACK,
            retryable=False,
            user_message=UNKNOWN_ERROR_MESSAGE,
            status_code=400,
        )
    return ErrorClassification(
        code=known.value,
        severity=_SEVERITY.get(known, ErrorSeverity.LOW),
        recovery_action=_RECOVERY.get(known, RecoveryAction.FALLBACK),
        retryable=known in _RETRYABLE,
        user_message=_USER_MESSAGES.get(known, UNKNOWN_ERROR_MESSAGE),
        status_code=_STATUS.get(known, 400),
    )


class AgentError(RuntimeError):
    """Raised when an agent operation fails in a classified way."""

    def __init__(
        self,
        code: Union[ErrorCode, str],
        message: str,
        *,
        user_message: Optional[str] = None,
        severity: Optional[ErrorSeverity] = None,
        recovery_action: Optional[RecoveryAction] = None,
        context: Optional[Dict[str, Any]] = None,
        retryable: Optional[bool] = None,
        cause: Optional[BaseException] = None,
    ) -> None:
        super().__init__(message)
        classification = classify_error(code)
        self.code = classification.code
        self.message = message
        self.severity = severity or classification.severity
        self.recovery_action = recovery_action or classification.recovery_action
        self.user_message = user_message or classification.user_message
        self.retryable = classification.retryable if retryable is None else retryable
        self.context: Dict[str, Any] = context or {}
        self.timestamp = datetime.now(timezone.utc).isoformat()
        self.status_code = classification.status_code
        if cause is not None:
            self.__cause__ = cause

    def to_dict(self) -> Dict[str, Any]:
        """Full representation for logs."""
        return {
            "name": "AgentError",
            "code": self.code,
            "message": self.message,
            "userMessage": self.user_message,
            "severity": self.severity.value,
            "recoveryAction": self.recovery_action.value,
            "context": self.context,
            "retryable": self.retryable,
            "timestamp": self.timestamp,
        }

    def to_response(self) -> Dict[str, Any]:
        """Safe payload for API callers; internal details are left out."""
        return {
            "success": False,
            "error": {
                "code": self.code,
                "message": self.user_message,
                "retryable": self.retryable,
                "recoveryAction": self.recovery_action.value,
            },
        }


def _error_text(error: Any) -> Any:
    if isinstance(error, BaseException):
        return str(error)
    return error


class AgentErrors:
    """Factories for the errors raised most often."""

    @staticmethod
    def permission_denied(context: Optional[Dict[str, Any]] = None) -> AgentError:
        return AgentError(
            ErrorCode.PERMISSION_DENIED,
            "Permission denied for action",
            context=context,
        )

    @staticmethod
    def feature_disabled(feature: str) -> AgentError:
        return AgentError(
            ErrorCode.FEATURE_DISABLED,
            f"Feature disabled: {feature}",
            user_message=f"The {feature} feature is currently disabled.",
            context={"feature": feature},
        )

    @staticmethod
    def team_policy_blocked(action: str, team_id: Optional[str] = None) -> AgentError:
        return AgentError(
            ErrorCode.TEAM_POLICY_BLOCKED,
            f"Team policy blocks action: {action}",
            context={"action": action, "teamId": team_id},
        )

    @staticmethod
    def user_settings_blocked(setting: str, message: Optional[str] = None) -> AgentError:
        return AgentError(
            ErrorCode.USER_SETTINGS_BLOCKED,
            f"Blocked by user setting: {setting}",
            user_message=message,
            context={"setting": setting},
        )

    @staticmethod
    def confirmation_required(
        action_id: str, action_type: str, proposed_action: Any
    ) -> AgentError:
        return AgentError(
            ErrorCode.CONFIRMATION_REQUIRED,
            "User confirmation required",
            context={
                "actionId": action_id,
                "actionType": action_type,
                "proposedAction": proposed_action,
            },
        )

    @staticmethod
    def action_expired(action_id: str) -> AgentError:
        return AgentError(
            ErrorCode.ACTION_EXPIRED,
            f"Action expired: {action_id}",
            context={"actionId": action_id},
        )

    @staticmethod
    def action_already_processed(action_id: str, status: str) -> AgentError:
        return AgentError(
            ErrorCode.ACTION_ALREADY_PROCESSED,
            f"Action {action_id} already has status {status}",
            user_message=f"This action has already been {status}.",
            context={"actionId": action_id, "status": status},
        )

    @staticmethod
    def low_confidence(score: float, threshold: float) -> AgentError:
        return AgentError(
            ErrorCode.LOW_CONFIDENCE,
            f"Confidence score {score} below threshold {threshold}",
            context={"score": score, "threshold": threshold},
        )

    @staticmethod
    def execution_failed(action: str, reason: str) -> AgentError:
        return AgentError(
            ErrorCode.EXECUTION_FAILED,
            f"Action execution failed: {action} - {reason}",
            context={"action": action, "reason": reason},
        )

    @staticmethod
    def external_service_error(service: str, error: Any) -> AgentError:
        return AgentError(
            ErrorCode.EXTERNAL_SERVICE_ERROR,
            f"External service error: {service}",
            context={"service": service, "error": _error_text(error)},
            retryable=True,
            cause=error if isinstance(error, BaseException) else None,
        )

    @staticmethod
    def rate_limited(limit: int, window_seconds: int, retry_after: Optional[int] = None) -> AgentError:
        context: Dict[str, Any] = {"limit": limit, "windowSeconds": window_seconds}
        if retry_after is not None:
            context["retryAfter"] = retry_after
        return AgentError(
            ErrorCode.RATE_LIMITED,
            "Rate limit exceeded",
            context=context,
            retryable=True,
        )

    @staticmethod
    def invalid_parameters(params: Dict[str, Any], issues: Iterable[str]) -> AgentError:
        issues = list(issues)
        return AgentError(
            ErrorCode.INVALID_PARAMETERS,
            f"Invalid parameters: {', '.join(issues)}",
            context={"params": params, "issues": issues},
        )

    @staticmethod
    def missing_required_field(*fields: str) -> AgentError:
        return AgentError(
            ErrorCode.MISSING_REQUIRED_FIELD,
            f"Missing required field(s): {', '.join(fields)}",
            context={"fields": list(fields)},
        )

    @staticmethod
    def resource_not_found(resource_type: str, resource_id: str) -> AgentError:
        return AgentError(
            ErrorCode.RESOURCE_NOT_FOUND,
            f"{resource_type} not found: {resource_id}",
            user_message=f"The {resource_type} you're looking for couldn't be found.",
            context={"resourceType": resource_type, "resourceId": resource_id},
        )

    @staticmethod
    def internal_error(message: str, cause: Optional[BaseException] = None) -> AgentError:
        return AgentError(ErrorCode.INTERNAL_ERROR, message, cause=cause)

    @staticmethod
    def database_error(operation: str, error: Any) -> AgentError:
        return AgentError(
            ErrorCode.DATABASE_ERROR,
            f"Database error during {operation}",
            context={"operation": operation, "error": _error_text(error)},
            cause=error if isinstance(error, BaseException) else None,
        )

    @staticmethod
    def configuration_error(setting: str) -> AgentError:
        return AgentError(
            ErrorCode.CONFIGURATION_ERROR,
            f"Missing or invalid configuration: {setting}",
            context={"setting": setting},
        )


# =============================================================================
# Wrappers
# =============================================================================

def _handle(
    exc: Exception,
    *,
    fallback: Any,
    log_errors: bool,
    rethrow: bool,
) -> Any:
    if isinstance(exc, AgentError):
        error = exc
        if log_errors:
            logger.warning("Agent error: %s", error.to_dict())
    else:
        error = AgentErrors.internal_error(str(exc) or exc.__class__.__name__, exc)
        if log_errors:
            logger.exception("Unhandled error in agent operation")
    if rethrow:
        if error is exc:
            raise error
        raise error from exc
    return fallback if fallback is not None else error.to_response()


def with_error_handling(
    func: Optional[Callable[..., Any]] = None,
    *,
    fallback: Any = None,
    log_errors: bool = True,
    rethrow: bool = False,
):
    """Decorate a sync or async callable with agent error handling.

    AgentErrors keep their classification; any other exception is wrapped as
    INTERNAL_ERROR. With ``rethrow`` the (wrapped) error is raised, otherwise
    ``fallback`` or the error's response payload is returned.
    """

    def decorator(fn: Callable[..., Any]) -> Callable[..., Any]:
        if inspect.iscoroutinefunction(fn):

            @functools.wraps(fn)
            async def async_wrapper(*args: Any, **kwargs: Any) -> Any:
                try:
                    return await fn(*args, **kwargs)
                except Exception as exc:
                    return _handle(exc, fallback=fallback, log_errors=log_errors, rethrow=rethrow)

            return async_wrapper

        @functools.wraps(fn)
        def wrapper(*args: Any, **kwargs: Any) -> Any:
            try:
                return fn(*args, **kwargs)
            except Exception as exc:
                return _handle(exc, fallback=fallback, log_errors=log_errors, rethrow=rethrow)

        return wrapper

    if func is not None:
        return decorator(func)
    return decorator


# =============================================================================
# FastAPI integration
# =============================================================================

def agent_error_response(error: AgentError, headers: Optional[Dict[str, str]] = None):
    """Render an AgentError as a JSON response with the mapped status code."""
    from fastapi.responses import JSONResponse

    response_headers = dict(headers or {})
    retry_after = error.context.get("retryAfter")
    if error.code == ErrorCode.RATE_LIMITED.value and retry_after is not None:
        response_headers.setdefault("Retry-After", str(retry_after))
    return JSONResponse(
        status_code=error.status_code,
        content=error.to_response(),
        headers=response_headers or None,
    )


def register_error_handlers(app) -> None:
    """Install the AgentError handler on a FastAPI application."""

    async def _agent_error_handler(request, exc: AgentError):
        if error_is_severe(exc):
            logger.error("Agent error on %s: %s", request.url.path, exc.to_dict())
        else:
            logger.info("Agent error on %s: %s", request.url.path, exc.code)
        return agent_error_response(exc)

    app.add_exception_handler(AgentError, _agent_error_handler)


def error_is_severe(error: AgentError) -> bool:
    return error.severity in (ErrorSeverity.HIGH, ErrorSeverity.CRITICAL)

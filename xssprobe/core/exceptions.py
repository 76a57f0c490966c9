"""
xssprobe Exception Hierarchy

Structured exceptions for the probe pipeline. Each class declares whether it
is transient (``retry_eligible``) so the dispatcher can decide between a
retry and a drop without inspecting messages.

Exception Categories:
- ClassificationFailure: Context classification could not complete (degrades to unknown context)
- TransportFailure: Probe transport failed or timed out (transient - retry)
- AccessDenied: Probe rejected by access control (permanent - never executes)
- AnalysisFailure: A probe result could not be analysed (contributes no evidence)
- GenerationError: Payload selection / transform errors (permanent)
- ConfigError: Configuration issues (permanent)
- NotificationError: Vulnerability sink delivery failed (logged, never retried)

Usage:
    from xssprobe.core.exceptions import TransportFailure, AccessDenied

    try:
        body = await transport.send(request)
    except TransportFailure as e:
        if e.retry_eligible:
            dispatcher.requeue(request)
"""

from typing import Optional, Dict, Any


class XSSProbeException(Exception):
    """Base exception for all xssprobe errors.

    Attributes:
        message: Human-readable error description
        retry_eligible: Whether this error type is transient and worth retrying
        error_code: Optional error code for logging
        context: Additional context about the error
    """

    retry_eligible: bool = False
    error_code: Optional[str] = None

    def __init__(
        self,
        message: str,
        *,
        context: Optional[Dict[str, Any]] = None,
        cause: Optional[Exception] = None
    ):
        super().__init__(message)
        self.message = message
        self.context = context or {}
        self.cause = cause

    def __str__(self) -> str:
        base = self.message
        if self.error_code:
            base = f"[{self.error_code}] {base}"
        if self.context:
            base = f"{base} | context={self.context}"
        return base


# =============================================================================
# CLASSIFICATION ERRORS (Degrade to unknown context)
# =============================================================================

class ClassificationFailure(XSSProbeException):
    """Context classification failed on malformed markup."""
    error_code = "CLS"


# =============================================================================
# TRANSPORT ERRORS (Transient - should retry)
# =============================================================================

class TransportFailure(XSSProbeException):
    """Probe could not be delivered or the response could not be read."""
    retry_eligible = True
    error_code = "NET"

    def __init__(
        self,
        message: str,
        *,
        url: Optional[str] = None,
        status: Optional[int] = None,
        **kwargs
    ):
        context = dict(kwargs.pop("context", None) or {})
        if url:
            context["url"] = url
        if status is not None:
            context["status"] = status
        super().__init__(message, context=context, **kwargs)


class ProbeTimeout(TransportFailure):
    """Probe exceeded its per-request timeout."""
    error_code = "NET_TIMEOUT"

    def __init__(
        self,
        message: str,
        *,
        timeout_seconds: Optional[float] = None,
        **kwargs
    ):
        context = dict(kwargs.pop("context", None) or {})
        if timeout_seconds:
            context["timeout_seconds"] = timeout_seconds
        super().__init__(message, context=context, **kwargs)


# =============================================================================
# ACCESS CONTROL (Permanent - request never executes)
# =============================================================================

class AccessDenied(XSSProbeException):
    """Probe rejected by method allow-list, auth requirement or size cap."""
    retry_eligible = False
    error_code = "ACL"

    def __init__(
        self,
        message: str,
        *,
        reason: Optional[str] = None,
        **kwargs
    ):
        context = dict(kwargs.pop("context", None) or {})
        if reason:
            context["reason"] = reason
        super().__init__(message, context=context, **kwargs)
        self.reason = reason


# =============================================================================
# ANALYSIS / GENERATION ERRORS (Permanent)
# =============================================================================

class AnalysisFailure(XSSProbeException):
    """A probe result was malformed and could not be scored."""
    error_code = "ANA"


class GenerationError(XSSProbeException):
    """Invalid payload class, encoding method or obfuscation method."""
    error_code = "GEN"

    def __init__(
        self,
        message: str,
        *,
        method: Optional[str] = None,
        **kwargs
    ):
        context = dict(kwargs.pop("context", None) or {})
        if method:
            context["method"] = method
        super().__init__(message, context=context, **kwargs)


# =============================================================================
# CONFIG ERRORS (Permanent - fix config and restart)
# =============================================================================

class ConfigError(XSSProbeException):
    """Base class for configuration errors. Permanent."""
    error_code = "CFG"


class InvalidConfigError(ConfigError):
    """Configuration document failed validation."""
    error_code = "CFG_INVALID"

    def __init__(self, message: str, *, errors: Optional[list] = None, **kwargs):
        context = dict(kwargs.pop("context", None) or {})
        if errors:
            context["errors"] = errors
        super().__init__(message, context=context, **kwargs)
        self.errors = errors or []


# =============================================================================
# NOTIFICATION ERRORS (Logged, never retried)
# =============================================================================

class NotificationError(XSSProbeException):
    """Vulnerability sink delivery failed."""
    error_code = "SINK"


# =============================================================================
# HELPER FUNCTIONS
# =============================================================================

def is_transient(exc: Exception) -> bool:
    """Check if an exception is transient (worth retrying).

    Args:
        exc: The exception to check

    Returns:
        True if the exception is transient and retry might succeed
    """
    if isinstance(exc, XSSProbeException):
        return exc.retry_eligible

    import asyncio
    import httpx

    transient_types = (
        asyncio.TimeoutError,
        httpx.TransportError,
        OSError,
    )

    return isinstance(exc, transient_types)


def wrap_exception(
    exc: Exception,
    wrapper_class: type,
    message: Optional[str] = None
) -> XSSProbeException:
    """Wrap a standard exception in an XSSProbeException.

    Args:
        exc: The original exception
        wrapper_class: The XSSProbeException subclass to wrap with
        message: Optional custom message (defaults to str(exc))

    Returns:
        An XSSProbeException wrapping the original
    """
    return wrapper_class(
        message or str(exc),
        cause=exc
    )


__all__ = [
    "XSSProbeException",
    "ClassificationFailure",
    "TransportFailure",
    "ProbeTimeout",
    "AccessDenied",
    "AnalysisFailure",
    "GenerationError",
    "ConfigError",
    "InvalidConfigError",
    "NotificationError",
    "is_transient",
    "wrap_exception",
]

"""Error taxonomy, severity-tagged handling, retry/recovery routing.

Categories:
  temporary  timeouts, rate limits, 5xx/429   → retried with exponential backoff
  quota      provider quota exhausted          → retried like temporary, then reported
  auth       invalid key / permission          → never retried
  data       corrupt / malformed / not found   → recovery (restore) handler, no retry
  system     everything else                   → logged only

Components catch their own errors and call ErrorHandler.handle(); callers always
receive a well-formed result object. User-facing text comes from user_message(),
never from the raw exception.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable

from tenacity import (
    Retrying,
    before_sleep_log,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

logger = logging.getLogger(__name__)


class ErrorCategory(str, Enum):
    TEMPORARY = "temporary"
    QUOTA = "quota"
    AUTH = "auth"
    DATA = "data"
    SYSTEM = "system"


class Severity(str, Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    CRITICAL = "CRITICAL"


_SEVERITY_LEVEL: dict[Severity, int] = {
    Severity.LOW: logging.INFO,
    Severity.MEDIUM: logging.WARNING,
    Severity.HIGH: logging.ERROR,
    Severity.CRITICAL: logging.CRITICAL,
}


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------


class SiftError(Exception):
    """Base class for errors raised inside Sift.

    Attributes:
        code: Stable machine-readable error code for response envelopes.
        status: HTTP-equivalent status code.
        category: Error category used for retry / recovery routing.
    """

    code: str = "internal_error"
    status: int = 500
    category: ErrorCategory = ErrorCategory.SYSTEM

    def __init__(
        self,
        message: str,
        *,
        code: str | None = None,
        category: ErrorCategory | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code
        if category is not None:
            self.category = category


class ValidationError(SiftError):
    code = "invalid_request"
    status = 400
    category = ErrorCategory.DATA


class AuthError(SiftError):
    code = "forbidden"
    status = 403
    category = ErrorCategory.AUTH


class NotFoundError(SiftError):
    code = "not_found"
    status = 404
    category = ErrorCategory.DATA


class StorageError(SiftError):
    code = "storage_error"
    category = ErrorCategory.DATA


class ModelError(SiftError):
    code = "model_error"
    category = ErrorCategory.TEMPORARY


# ---------------------------------------------------------------------------
# Classification
# ---------------------------------------------------------------------------

_TEMPORARY_CUES = (
    "timeout",
    "timed out",
    "rate limit",
    "ratelimit",
    "too many requests",
    "temporarily",
    "unavailable",
    "connection reset",
    "try again",
)
_QUOTA_CUES = ("quota", "limit exceeded", "insufficient_quota", "billing")
_AUTH_CUES = (
    "invalid api key",
    "invalid key",
    "unauthorized",
    "permission",
    "forbidden",
    "authentication",
    "access denied",
)
_DATA_CUES = ("corrupt", "malformed", "not found", "decode", "invalid json", "integrity")


def classify_error(exc: BaseException) -> ErrorCategory:
    """Map *exc* to an ErrorCategory from its type, status code and message."""
    if isinstance(exc, SiftError):
        return exc.category
    if isinstance(exc, (TimeoutError, ConnectionError)):
        return ErrorCategory.TEMPORARY
    if isinstance(exc, PermissionError):
        return ErrorCategory.AUTH

    status = getattr(exc, "status_code", None)
    message = str(exc).lower()

    if any(cue in message for cue in _QUOTA_CUES):
        return ErrorCategory.QUOTA
    if status in (401, 403) or any(cue in message for cue in _AUTH_CUES):
        return ErrorCategory.AUTH
    if status == 429 or (isinstance(status, int) and status >= 500):
        return ErrorCategory.TEMPORARY
    if any(cue in message for cue in _TEMPORARY_CUES) or "429" in message:
        return ErrorCategory.TEMPORARY
    if isinstance(exc, (ValueError, KeyError, LookupError)) or any(
        cue in message for cue in _DATA_CUES
    ):
        return ErrorCategory.DATA
    return ErrorCategory.SYSTEM


def is_retryable(exc: BaseException) -> bool:
    return classify_error(exc) in (ErrorCategory.TEMPORARY, ErrorCategory.QUOTA)


def backoff_delay(attempt: int, base: float = 2.0) -> float:
    """Delay in seconds before retry *attempt* (1-based): base**attempt."""
    return float(base**attempt)


def retry_policy(
    *,
    max_attempts: int,
    base: float = 2.0,
    first_retry: int = 1,
    sleep: Callable[[float], None] = time.sleep,
) -> Retrying:
    """Tenacity policy retrying temporary/quota errors.

    The wait before retry *n* (counted from *first_retry*) is ``base**n``
    seconds. Other categories and the final failure are re-raised as-is.
    """
    return Retrying(
        retry=retry_if_exception(is_retryable),
        wait=wait_exponential(multiplier=base**first_retry, exp_base=base),
        stop=stop_after_attempt(max(1, max_attempts)),
        sleep=sleep,
        before_sleep=before_sleep_log(logger, logging.INFO),
        reraise=True,
    )


def with_backoff(
    fn: Callable[[], Any],
    *,
    max_retries: int = 3,
    base: float = 2.0,
    sleep: Callable[[float], None] = time.sleep,
) -> Any:
    """Call *fn*, retrying temporary/quota failures with exponential backoff.

    Auth, data and system errors propagate immediately.
    """
    return retry_policy(max_attempts=max_retries + 1, base=base, sleep=sleep)(fn)


# ---------------------------------------------------------------------------
# Handler
# ---------------------------------------------------------------------------


@dataclass
class ErrorReport:
    """Outcome of ErrorHandler.handle()."""

    operation: str
    category: ErrorCategory
    severity: Severity
    message: str
    context: dict[str, Any] = field(default_factory=dict)
    recovered: bool = False
    result: Any = None


RetryHandler = Callable[[dict[str, Any]], Any]
Notifier = Callable[[ErrorReport], None]


class ErrorHandler:
    """Central severity-tagged error logging with bounded recovery.

    Recovery is attempted only for HIGH severity with ``retry=True``:
      - temporary / quota errors re-enter the registered retry handler with
        exponential backoff, up to ``max_retries`` attempts;
      - data errors call the registered restore handler once;
      - auth and system errors are never retried.

    CRITICAL reports are additionally passed to the notifier.
    """

    def __init__(
        self,
        *,
        max_retries: int = 3,
        backoff_base: float = 2.0,
        notifier: Notifier | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.max_retries = max_retries
        self.backoff_base = backoff_base
        self._notifier = notifier
        self._sleep = sleep
        self._retry_handlers: dict[str, RetryHandler] = {}
        self._restore_handlers: dict[str, RetryHandler] = {}

    def register_retry_handler(self, operation: str, handler: RetryHandler) -> None:
        """Register the re-entry point for *operation* (called with the saved context)."""
        self._retry_handlers[operation] = handler

    def register_restore_handler(self, operation: str, handler: RetryHandler) -> None:
        """Register the data-recovery (restore from backup) path for *operation*."""
        self._restore_handlers[operation] = handler

    def handle(
        self,
        exc: BaseException,
        *,
        operation: str,
        context: dict[str, Any] | None = None,
        severity: Severity = Severity.MEDIUM,
        retry: bool = False,
    ) -> ErrorReport:
        """Log *exc* with its severity tag and attempt recovery when allowed."""
        ctx = dict(context or {})
        report = ErrorReport(
            operation=operation,
            category=classify_error(exc),
            severity=severity,
            message=str(exc),
            context=ctx,
        )
        logger.log(
            _SEVERITY_LEVEL[severity],
            "[%s] %s failed (%s): %s",
            severity.value,
            operation,
            report.category.value,
            exc,
            extra={"severity": severity.value, "operation": operation, "context": ctx},
        )

        if severity is Severity.CRITICAL and self._notifier is not None:
            try:
                self._notifier(report)
            except Exception as notify_exc:
                logger.warning("Notifier failed for %s: %s", operation, notify_exc)

        if severity is Severity.HIGH and retry:
            self._recover(report)
        return report

    def _recover(self, report: ErrorReport) -> None:
        category = report.category
        if category in (ErrorCategory.TEMPORARY, ErrorCategory.QUOTA):
            handler = self._retry_handlers.get(report.operation)
            if handler is None:
                logger.info("No retry handler registered for %s", report.operation)
                return
            if self.max_retries < 1:
                return
            # The original failure counts as the first attempt.
            self._sleep(backoff_delay(1, self.backoff_base))
            policy = retry_policy(
                max_attempts=self.max_retries,
                base=self.backoff_base,
                first_retry=2,
                sleep=self._sleep,
            )
            try:
                for attempt in policy:
                    with attempt:
                        report.result = handler(report.context)
            except Exception as exc:
                if is_retryable(exc):
                    logger.warning("%s retries exhausted: %s", report.operation, exc)
                else:
                    logger.warning("%s retry aborted: %s", report.operation, exc)
                return
            report.recovered = True
            logger.info("%s recovered on retry %d", report.operation, attempt.retry_state.attempt_number)
        elif category is ErrorCategory.DATA:
            handler = self._restore_handlers.get(report.operation)
            if handler is None:
                logger.info("No restore handler registered for %s", report.operation)
                return
            try:
                report.result = handler(report.context)
                report.recovered = True
            except Exception as exc:
                logger.error("%s restore failed: %s", report.operation, exc)


# ---------------------------------------------------------------------------
# User-facing messages
# ---------------------------------------------------------------------------


@dataclass
class UserMessage:
    message: str
    action: str


_MESSAGES: dict[str, dict[ErrorCategory, tuple[str, str]]] = {
    "en": {
        ErrorCategory.TEMPORARY: (
            "The service is busy right now.",
            "Please wait a moment and try again.",
        ),
        ErrorCategory.QUOTA: (
            "The usage limit for the language model has been reached.",
            "Try again later or contact your administrator.",
        ),
        ErrorCategory.AUTH: (
            "You do not have permission to perform this action.",
            "Check your API key or ask an administrator for access.",
        ),
        ErrorCategory.DATA: (
            "Some stored data could not be read.",
            "Try a different query; if the problem persists, re-ingest the document.",
        ),
        ErrorCategory.SYSTEM: (
            "An unexpected error occurred.",
            "Please try again. If it keeps happening, contact your administrator.",
        ),
    },
    "ja": {
        ErrorCategory.TEMPORARY: (
            "現在サービスが混み合っています。",
            "しばらく待ってから再度お試しください。",
        ),
        ErrorCategory.QUOTA: (
            "言語モデルの利用上限に達しました。",
            "時間をおいて再度お試しいただくか、管理者にお問い合わせください。",
        ),
        ErrorCategory.AUTH: (
            "この操作を実行する権限がありません。",
            "APIキーを確認するか、管理者に権限を依頼してください。",
        ),
        ErrorCategory.DATA: (
            "保存されているデータを読み込めませんでした。",
            "別の検索語をお試しください。解決しない場合はドキュメントを再登録してください。",
        ),
        ErrorCategory.SYSTEM: (
            "予期しないエラーが発生しました。",
            "再度お試しください。繰り返し発生する場合は管理者にお問い合わせください。",
        ),
    },
}

_CRITICAL_SUFFIX = {
    "en": " The administrator has been notified.",
    "ja": "管理者に通知しました。",
}

_GENERIC = {
    "en": UserMessage("Something went wrong.", "Please try again later."),
    "ja": UserMessage("エラーが発生しました。", "後ほど再度お試しください。"),
}


def user_message(
    exc: BaseException,
    language: str = "en",
    severity: Severity = Severity.MEDIUM,
) -> UserMessage:
    """Return a localized message + suggested action for *exc*.

    The raw exception text is never included.
    """
    lang = language if language in _MESSAGES else "en"
    try:
        message, action = _MESSAGES[lang][classify_error(exc)]
        if severity is Severity.CRITICAL:
            message += _CRITICAL_SUFFIX[lang]
        return UserMessage(message=message, action=action)
    except Exception:
        return _GENERIC[lang]

"""AI availability latch.

A single process-wide breaker guards every AI scope. One failure that looks
like an outage (connection error, timeout, 404/429/5xx, or a configured
message signature) opens it; while open, callers skip the provider and use
their deterministic fallback.

States:
- CLOSED: calls go through
- OPEN: calls are blocked until the cooldown elapses
- HALF_OPEN: one trial call is allowed; success closes, failure reopens

``AI_UNAVAILABLE_COOLDOWN_SECONDS <= 0`` keeps the breaker open until
``reset()`` or a restart.
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable

import httpx

from finbot.core.config import get_settings
from finbot.services.errors import AIServiceError, AIUnavailableError

from .audit import log_ai_run
from .providers.base import ProviderResult
from .router import resolve

logger = logging.getLogger(__name__)

CLOSED = "CLOSED"
OPEN = "OPEN"
HALF_OPEN = "HALF_OPEN"


def is_unavailable_error(exc: BaseException, signatures: list[str] | None = None) -> bool:
    """Return True when *exc* indicates the AI service is down or misconfigured."""
    if isinstance(exc, AIUnavailableError):
        return True
    if isinstance(exc, (httpx.ConnectError, httpx.TimeoutException)):
        return True
    if isinstance(exc, httpx.HTTPStatusError):
        status = exc.response.status_code
        if status in (404, 429) or status >= 500:
            return True
    if signatures is None:
        signatures = get_settings().ai_unavailable_signatures
    text = str(exc)
    return any(sig and sig in text for sig in signatures)


class AIAvailability:
    def __init__(
        self,
        cooldown_seconds: float | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._cooldown_override = cooldown_seconds
        self._clock = clock
        self._lock = threading.Lock()
        self.state = CLOSED
        self.opened_at = 0.0
        self.last_error: str | None = None

    @property
    def cooldown_seconds(self) -> float:
        if self._cooldown_override is not None:
            return self._cooldown_override
        return get_settings().ai_unavailable_cooldown_seconds

    def can_proceed(self) -> bool:
        """Check if an AI call should be attempted."""
        with self._lock:
            if self.state == CLOSED:
                return True
            if self.state == OPEN:
                cooldown = self.cooldown_seconds
                if cooldown > 0 and self._clock() - self.opened_at >= cooldown:
                    self.state = HALF_OPEN
                    logger.info("AI availability HALF_OPEN, allowing a trial call")
                    return True
                return False
            # HALF_OPEN: a trial call is already in flight
            return False

    @property
    def is_available(self) -> bool:
        with self._lock:
            if self.state != OPEN:
                return self.state == CLOSED
            cooldown = self.cooldown_seconds
            return cooldown > 0 and self._clock() - self.opened_at >= cooldown

    def record_success(self) -> None:
        with self._lock:
            if self.state != CLOSED:
                logger.info("AI availability restored")
            self.state = CLOSED
            self.last_error = None

    def record_failure(self, exc: BaseException) -> bool:
        """Record a failed call; returns True when it opened the breaker."""
        if not is_unavailable_error(exc):
            with self._lock:
                if self.state == HALF_OPEN:
                    # Trial call failed for an unrelated reason; let the next call retry.
                    self.state = CLOSED
            return False
        with self._lock:
            self.state = OPEN
            self.opened_at = self._clock()
            self.last_error = str(exc)[:200]
        logger.warning("AI availability OPEN: %s", self.last_error)
        return True

    def abandon_trial(self) -> None:
        """Re-open the breaker when a half-open trial ends without an outcome."""
        with self._lock:
            if self.state == HALF_OPEN:
                self.state = OPEN
                self.opened_at = self._clock()
                logger.info("AI availability trial abandoned, back to OPEN")

    def mark_unavailable(self, reason: str = "manual") -> None:
        with self._lock:
            self.state = OPEN
            self.opened_at = self._clock()
            self.last_error = reason

    def reset(self) -> None:
        with self._lock:
            self.state = CLOSED
            self.opened_at = 0.0
            self.last_error = None


_availability = AIAvailability()


def get_availability() -> AIAvailability:
    return _availability


async def guarded_generate(
    scope: str,
    prompt: str,
    *,
    system_prompt: str | None = None,
    caller_id: str | None = None,
) -> ProviderResult:
    """Resolve *scope*, call its provider and keep the breaker up to date.

    Raises ``AIUnavailableError`` without calling out while the breaker is
    open, and ``AIServiceError`` for any provider failure.
    """
    config = resolve(scope)
    availability = get_availability()
    if not availability.can_proceed():
        raise AIUnavailableError(f"AI service unavailable ({scope})")

    try:
        result = await config.provider.generate(
            prompt,
            system_prompt=system_prompt,
            model=config.model,
            temperature=config.temperature,
            max_tokens=config.max_tokens,
            timeout_seconds=config.timeout_seconds,
        )
    except Exception as exc:
        opened = availability.record_failure(exc)
        logger.warning("AI %s call failed (%s): %s", scope, type(exc).__name__, exc)
        if opened:
            raise AIUnavailableError(str(exc)) from exc
        raise AIServiceError(str(exc)) from exc
    except BaseException:
        # Cancelled mid-call: neither outcome was recorded.
        availability.abandon_trial()
        raise

    availability.record_success()
    log_ai_run(scope=scope, provider_result=result, prompt_text=prompt, caller_id=caller_id)
    return result

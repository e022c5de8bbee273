"""Failed-authentication counter and lockout window for a hosting period."""
from __future__ import annotations
import logging
import time
from typing import Callable, Optional

logger = logging.getLogger("companion_remote.shared.auth_guard")

MAX_FAILED_AUTH_ATTEMPTS = 5
AUTH_LOCKOUT_SECONDS = 30.0


class AuthGuard:
    """
    Shared across every connection attempt during one hosting period.
    A lockout is only ever lifted by time passing; a success resets the
    counter but does not end an active lockout.
    """

    def __init__(self, max_attempts: int = MAX_FAILED_AUTH_ATTEMPTS,
                 lockout_seconds: float = AUTH_LOCKOUT_SECONDS,
                 clock: Callable[[], float] = time.monotonic):
        self.max_attempts = max_attempts
        self.lockout_seconds = lockout_seconds
        self._clock = clock
        self.failed_attempts = 0
        self.lockout_until: Optional[float] = None

    def record_failure(self) -> None:
        self.failed_attempts += 1
        if self.failed_attempts >= self.max_attempts:
            self.lockout_until = self._clock() + self.lockout_seconds
            logger.warning("Too many failed auth attempts, locked out for %.0fs", self.lockout_seconds)

    def record_success(self) -> None:
        self.failed_attempts = 0

    def is_locked_out(self) -> bool:
        return self.lockout_until is not None and self._clock() < self.lockout_until

    @property
    def lockout_remaining(self) -> float:
        if not self.is_locked_out():
            return 0.0
        return self.lockout_until - self._clock()

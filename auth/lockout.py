"""
auth/lockout.py -- Brute-force lockout decisions.

LockoutGuard owns no state. It reads (failed_attempts, locked_until) off a
User record and answers two questions for the service:

  is_locked(state, now)        -- reject the attempt before comparing passwords?
  lock_deadline(state, now)    -- after a recorded failure, lock until when?

State machine:
  Open   --failure, attempts < max-->  Open   (counter incremented by the store)
  Open   --failure, attempts >= max--> Locked (locked_until = now + duration)
  Locked --any attempt-->              Locked (rejected, counter untouched)
  *      --success-->                  Open   (counter 0, lock cleared)

The counter is only reset by a successful login, so once a lock expires a
single further failure locks the account again.

Counter updates happen in the store as separate statements, so two concurrent
failures may both read the same count. Lockout is best-effort.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta

MAX_FAILED_ATTEMPTS = 3
LOCKOUT_DURATION = timedelta(minutes=15)


@dataclass(frozen=True)
class LockState:
    failed_attempts: int = 0
    locked_until: datetime | None = None


class LockoutGuard:
    def __init__(
        self,
        max_failed_attempts: int = MAX_FAILED_ATTEMPTS,
        lockout_duration: timedelta = LOCKOUT_DURATION,
    ) -> None:
        self.max_failed_attempts = max_failed_attempts
        self.lockout_duration = lockout_duration

    def is_locked(self, state: LockState, now: datetime) -> bool:
        return state.locked_until is not None and state.locked_until > now

    def lock_deadline(self, state: LockState, now: datetime) -> datetime | None:
        """Return the lock expiry to set for a post-failure state, or None."""
        if state.failed_attempts >= self.max_failed_attempts:
            return now + self.lockout_duration
        return None

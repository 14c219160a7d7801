from dataclasses import dataclass


def backoff_delay(attempt: int, backoff_seconds: float) -> float:
    """Exponential backoff after the given 1-based attempt: backoff_seconds * 2 ** (attempt - 1), i.e. 2s, 4s, 8s, 16s... for a 2s base."""
    return backoff_seconds * (2 ** max(attempt - 1, 0))


@dataclass(frozen=True)
class RetryPolicy:
    """Job retry policy: total attempts and exponential backoff base.
    Why available: The queue consults it after every failed attempt to decide between rescheduling and finalizing the job."""

    attempts: int = 5
    backoff_seconds: float = 2.0

    def delay_for(self, attempt: int) -> float:
        return backoff_delay(attempt, self.backoff_seconds)

    def has_attempts_left(self, attempts_made: int) -> bool:
        return attempts_made < self.attempts

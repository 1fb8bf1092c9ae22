"""
Bounded retry policy shared by the transcription and classification calls.
"""
import logging
from dataclasses import dataclass, field
from typing import Callable, Optional, Sequence, Tuple, Type, TypeVar

from tenacity import Retrying, retry_if_exception_type, stop_after_attempt, wait_fixed

from hookreel.config import settings
from hookreel.errors import ExternalServiceError

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class RetryPolicy:
    """
    max_attempts calls at most, `delay_seconds` apart. When `candidates` is set
    (e.g. a list of model names), attempt n uses candidates[(n - 1) % len].
    """
    max_attempts: int = 3
    delay_seconds: float = 2.0
    candidates: Tuple[str, ...] = field(default_factory=tuple)
    retry_on: Tuple[Type[BaseException], ...] = (ExternalServiceError,)

    @classmethod
    def from_settings(cls, candidates: Sequence[str] = ()) -> "RetryPolicy":
        return cls(
            max_attempts=settings.RETRY_MAX_ATTEMPTS,
            delay_seconds=settings.RETRY_DELAY_SECONDS,
            candidates=tuple(candidates),
        )

    def candidate_for(self, attempt_number: int) -> Optional[str]:
        if not self.candidates:
            return None
        return self.candidates[(attempt_number - 1) % len(self.candidates)]

    def run(self, call: Callable[[int, Optional[str]], T], label: str = "call") -> T:
        """
        Invoke `call(attempt_number, candidate)` until it succeeds or the attempts
        run out. The last exception is re-raised.
        """
        retrying = Retrying(
            stop=stop_after_attempt(self.max_attempts),
            wait=wait_fixed(self.delay_seconds),
            retry=retry_if_exception_type(self.retry_on),
            reraise=True,
        )
        for attempt in retrying:
            with attempt:
                number = attempt.retry_state.attempt_number
                candidate = self.candidate_for(number)
                suffix = f" ({candidate})" if candidate else ""
                logger.info(f"{label} attempt {number}/{self.max_attempts}{suffix}")
                try:
                    return call(number, candidate)
                except self.retry_on as e:
                    logger.warning(f"{label} attempt {number} failed: {e}")
                    raise

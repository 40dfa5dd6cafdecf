"""Rolling-window circuit breaker guarding new retries."""
import logging
import time
from collections import deque
from collections.abc import Callable

logger = logging.getLogger(__name__)


class CircuitBreaker:
    """Refuses retries while the recent failure rate is too high.

    Outcomes older than ``window`` seconds fall out of the calculation, so
    the breaker closes on its own once the rate recovers. At least
    ``min_samples`` outcomes must be in the window before it can open.
    """

    def __init__(
        self,
        window: float = 300.0,
        failure_threshold: float = 0.8,
        min_samples: int = 5,
        clock: Callable[[], float] | None = None,
    ):
        if window <= 0:
            raise ValueError("window must be greater than zero")
        if not 0.0 < failure_threshold <= 1.0:
            raise ValueError("failure_threshold must be in (0, 1]")
        if min_samples < 1:
            raise ValueError("min_samples must be >= 1")
        self.window = window
        self.failure_threshold = failure_threshold
        self.min_samples = min_samples
        self._clock = clock or time.monotonic
        self._outcomes: deque[tuple[float, bool]] = deque()
        self._was_open = False

    def record_success(self) -> None:
        self._record(False)

    def record_failure(self) -> None:
        self._record(True)

    def _record(self, failed: bool) -> None:
        now = self._clock()
        self._outcomes.append((now, failed))
        self._prune(now)
        is_open = self._evaluate()
        if is_open != self._was_open:
            if is_open:
                logger.warning(
                    "Circuit opened: failure rate %.0f%% over last %.0fs",
                    self.failure_rate * 100,
                    self.window,
                )
            else:
                logger.info("Circuit closed: failure rate recovered")
            self._was_open = is_open

    def _prune(self, now: float) -> None:
        cutoff = now - self.window
        while self._outcomes and self._outcomes[0][0] < cutoff:
            self._outcomes.popleft()

    def _evaluate(self) -> bool:
        if len(self._outcomes) < self.min_samples:
            return False
        return self.failure_rate > self.failure_threshold

    @property
    def failure_rate(self) -> float:
        self._prune(self._clock())
        if not self._outcomes:
            return 0.0
        failures = sum(1 for _, failed in self._outcomes if failed)
        return failures / len(self._outcomes)

    @property
    def is_open(self) -> bool:
        self._prune(self._clock())
        return self._evaluate()

    def allow_retry(self) -> bool:
        return not self.is_open

    def reset(self) -> None:
        self._outcomes.clear()
        self._was_open = False

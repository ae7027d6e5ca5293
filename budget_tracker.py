"""
Tracks wall-clock runtime of one invocation against the host's quotas
"""
import logging
import time
from dataclasses import dataclass
from typing import Callable, Optional

logger = logging.getLogger(__name__)

MINUTE = 60.0
ONE_DAY_MINUTES = 24 * 60


@dataclass(frozen=True)
class BudgetProfile:
    """Runtime limits for one deployment type (all values in seconds)"""

    name: str
    max_runtime: float
    max_runtime_per_day: float
    pause: float = 6 * MINUTE


# Consumer accounts allow 90 minutes per day and 6 minutes per execution;
# both ceilings keep some padding.
PERSONAL_PROFILE = BudgetProfile(
    name='personal',
    max_runtime=4.7 * MINUTE,
    max_runtime_per_day=(90 - 2) * MINUTE,
)

WORKSPACE_PROFILE = BudgetProfile(
    name='workspace',
    max_runtime=28 * MINUTE,
    max_runtime_per_day=(6 * 60 - 5) * MINUTE,
)


class BudgetTracker:
    """Decides whether the current invocation may keep working"""

    def __init__(self, profile: BudgetProfile,
                 stop_requested: Optional[Callable[[], bool]] = None,
                 clock: Callable[[], float] = time.monotonic):
        """
        Initialize budget tracker

        Args:
            profile: Runtime limits to enforce
            stop_requested: Callable returning True once a user asked the job to stop
            clock: Time source in seconds
        """
        self.profile = profile
        self.stop_requested = stop_requested or (lambda: False)
        self.clock = clock
        self.start_time = None
        self.time_is_up = False
        self.stopped = False

    def start(self):
        """Capture the reference time for this invocation"""
        self.start_time = self.clock()
        self.time_is_up = False
        self.stopped = False

    def elapsed(self) -> float:
        """Seconds since start()"""
        if self.start_time is None:
            return 0.0
        return self.clock() - self.start_time

    def can_continue(self) -> bool:
        if self.start_time is None:
            self.start()

        self.time_is_up = self.elapsed() >= self.profile.max_runtime
        if not self.stopped and self.stop_requested():
            logger.info("Stop requested by user")
            self.stopped = True

        return not self.time_is_up and not self.stopped

    def recommended_delay(self, daily_budget_exhausted: bool) -> float:
        """Minutes the scheduler should wait before the next invocation"""
        if daily_budget_exhausted:
            return ONE_DAY_MINUTES
        return self.profile.pause / MINUTE

"""
Retry and backoff policy for fetch outcomes.
"""

import logging
import random
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from .fetcher import FetchOutcome, OutcomeKind
from .url_frontier import CrawlTask, TaskState


class TerminalStatus(Enum):
    """Final status of a task, as recorded for persistence and reporting."""
    SUCCEEDED = 'succeeded'
    FAILED = 'failed'          # permanent failure
    EXHAUSTED = 'exhausted'    # transient failures until out of attempts
    MALFORMED = 'malformed'    # protocol violation or unparseable URL
    DROPPED = 'dropped'        # retry refused by a full frontier


@dataclass
class RetryDecision:
    """Either a terminal status or a delay before the next attempt."""
    terminal: Optional[TerminalStatus] = None
    delay: Optional[float] = None
    reason: str = ''

    @property
    def is_terminal(self) -> bool:
        return self.terminal is not None

    @classmethod
    def finish(cls, status: TerminalStatus, reason: str = '') -> 'RetryDecision':
        return cls(terminal=status, reason=reason)

    @classmethod
    def retry_after(cls, delay: float, reason: str = '') -> 'RetryDecision':
        return cls(delay=delay, reason=reason)


class RetryController:
    """
    Classifies fetch outcomes into terminal or retry-after decisions.

    Transient failures back off exponentially:
    ``base_backoff * backoff_multiplier ** (attempt - 1)``, scaled by a random
    factor in ``[1, 1 + backoff_jitter]`` and capped at ``max_backoff``. With
    ``backoff_jitter < backoff_multiplier - 1`` every retry waits strictly
    longer than the previous one (below the cap). A Retry-After hint on a 429
    or 503 replaces the computed backoff.

    ``task.attempts`` counts dispatches, so a task that keeps failing becomes
    terminal (``EXHAUSTED``) on its ``max_retry_attempts``-th failure.
    """

    def __init__(self, max_retry_attempts: int = 5, base_backoff: float = 1.0,
                 backoff_multiplier: float = 2.0, backoff_jitter: float = 0.5,
                 max_backoff: float = 600.0, max_retry_after: float = 3600.0,
                 retry_priority_demotion: int = 1,
                 rng: Optional[random.Random] = None):
        self.max_retry_attempts = max_retry_attempts
        self.base_backoff = base_backoff
        self.backoff_multiplier = backoff_multiplier
        self.backoff_jitter = backoff_jitter
        self.max_backoff = max_backoff
        self.max_retry_after = max_retry_after
        self.retry_priority_demotion = retry_priority_demotion
        self.rng = rng or random.Random()
        self.logger = logging.getLogger(__name__)

    @classmethod
    def from_config(cls, config, rng: Optional[random.Random] = None) -> 'RetryController':
        f = config.frontier
        return cls(
            max_retry_attempts=f.max_retry_attempts,
            base_backoff=f.base_backoff,
            backoff_multiplier=f.backoff_multiplier,
            backoff_jitter=f.backoff_jitter,
            max_backoff=f.max_backoff,
            max_retry_after=f.max_retry_after,
            retry_priority_demotion=f.retry_priority_demotion,
            rng=rng
        )

    def backoff(self, attempt: int) -> float:
        """Backoff before retrying after the ``attempt``-th failed attempt."""
        delay = self.base_backoff * (self.backoff_multiplier ** (max(1, attempt) - 1))
        delay *= 1.0 + self.rng.uniform(0.0, self.backoff_jitter)
        return min(delay, self.max_backoff)

    def classify(self, task: CrawlTask, outcome: FetchOutcome) -> RetryDecision:
        """Decide what happens to ``task`` after ``outcome``."""
        if outcome.kind == OutcomeKind.SUCCESS:
            return RetryDecision.finish(TerminalStatus.SUCCEEDED, f"HTTP {outcome.status_code}")

        if outcome.kind == OutcomeKind.PERMANENT:
            return RetryDecision.finish(TerminalStatus.FAILED, outcome.error or 'permanent failure')

        if outcome.kind == OutcomeKind.PROTOCOL_VIOLATION:
            return RetryDecision.finish(TerminalStatus.MALFORMED, outcome.error or 'protocol violation')

        reason = outcome.error or 'transient failure'
        if task.attempts >= self.max_retry_attempts:
            return RetryDecision.finish(
                TerminalStatus.EXHAUSTED,
                f"{reason} (after {task.attempts} attempts)"
            )

        if outcome.retry_after is not None and outcome.status_code in (429, 503):
            delay = min(outcome.retry_after, self.max_retry_after)
            return RetryDecision.retry_after(delay, f"{reason}, Retry-After {delay:.0f}s")

        return RetryDecision.retry_after(self.backoff(task.attempts), reason)

    def apply(self, task: CrawlTask, decision: RetryDecision, now: float):
        """Re-arm ``task`` for another attempt according to ``decision``."""
        if decision.is_terminal:
            raise ValueError("Cannot re-queue a task with a terminal decision")
        task.state = TaskState.RETRYING
        task.eligible_at = now + decision.delay
        task.deadline = None
        task.priority = max(0, task.priority - self.retry_priority_demotion)
        self.logger.debug(
            f"Retrying {task.url} in {decision.delay:.2f}s "
            f"(attempt {task.attempts}/{self.max_retry_attempts}): {decision.reason}"
        )

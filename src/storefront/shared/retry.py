"""Retry policies for writes that can lose a race to another worker.

In-process locks only serialise threads of one process. Across workers the
aggregate version check decides, and the loser gets ``ExpectedVersionError``.
That is transient: reload the aggregate and apply the change again.
"""

import structlog
from protean.exceptions import ExpectedVersionError
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_random_exponential

logger = structlog.get_logger(__name__)


def _log_conflict(retry_state):
    logger.warning(
        "version_conflict_retrying",
        operation=retry_state.fn.__name__ if retry_state.fn else None,
        attempt=retry_state.attempt_number,
    )


def version_conflict_retry():
    return retry(
        reraise=True,
        stop=stop_after_attempt(5),
        wait=wait_random_exponential(multiplier=0.05, max=1),
        retry=retry_if_exception_type(ExpectedVersionError),
        before_sleep=_log_conflict,
    )

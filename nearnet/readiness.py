from __future__ import annotations

import logging
import time
from typing import Callable

from .errors import NearnetError, ReadinessTimeoutError
from .models import EXEC_COMMAND_SUCCESS_EXIT_CODE, RetryPolicy

logger = logging.getLogger(__name__)

# A probe reports (exit_code, output); exit code 0 means ready.
Probe = Callable[[], tuple[int, str]]


def wait_until_ready(
    probe: Probe,
    policy: RetryPolicy,
    description: str = "Service",
    sleep: Callable[[float], None] = time.sleep,
) -> int:
    """Block until ``probe`` reports success or the policy's attempts run out.

    A failed attempt (probe error or non-zero exit code) is only logged;
    the loop keeps going because services are expected to be unavailable for
    a while after their container starts. There is no sleep after the final
    attempt.

    Returns the number of attempts it took.
    Raises ReadinessTimeoutError when every attempt failed.
    """
    for attempt in range(1, policy.max_attempts + 1):
        try:
            exit_code, output = probe()
        except NearnetError as e:
            logger.debug("%s availability attempt %d/%d returned error:\n%s", description, attempt, policy.max_attempts, e)
        else:
            if exit_code == EXEC_COMMAND_SUCCESS_EXIT_CODE:
                logger.debug("%s became available after %d attempt(s)", description, attempt)
                return attempt
            logger.debug(
                "%s availability attempt %d/%d exited with code %d and logs:\n%s",
                description,
                attempt,
                policy.max_attempts,
                exit_code,
                output,
            )
        if attempt < policy.max_attempts:
            sleep(policy.delay_s)
    raise ReadinessTimeoutError(description, policy.max_attempts, policy.delay_s)

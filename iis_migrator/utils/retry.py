"""
Bounded retry wrapper used by interactive prompts and cloud calls.

Unlike the HTTP backoff in :mod:`iis_migrator.migrators.smoke_check`, this
executor never sleeps between attempts: the unit of work itself usually blocks
on operator input or on a network call.  The attempt index is passed to the
work so that it can ask for a new value (for example a different resource
name) on every retry.
"""

from __future__ import annotations

from typing import Callable, Optional, TypeVar

from .errors import FatalError, RetryExhausted

T = TypeVar("T")

# Retry ceiling for loops that only end once the operator gets it right.
UNTIL_SUCCESS: Optional[int] = None


def _print_log(message: str, level: str = "INFO") -> None:
    print(f"[{level}] {message}")


def run_with_retries(
    work: Callable[[int], T],
    *,
    max_retries: Optional[int],
    description: str,
    log: Callable[..., None] = _print_log,
) -> T:
    """
    Execute ``work`` until it succeeds or the retry ceiling is reached.

    :param work: A callable receiving the zero-based attempt index.
    :param max_retries: Number of retries after the first attempt, so at most
        ``max_retries + 1`` attempts are made.  ``None`` retries forever.
    :param description: Human readable name of the work, used in log lines
        and in the :class:`RetryExhausted` message.
    :param log: ``log(message, level)`` callable receiving every failure.
    :return: Whatever ``work`` returns on its first successful attempt.
    :raises RetryExhausted: once ``max_retries`` retries have failed.
    :raises FatalError: immediately, without retrying.
    """
    attempt = 0
    while True:
        try:
            return work(attempt)
        except FatalError:
            raise
        except Exception as exc:
            log(f"{description} failed on attempt {attempt + 1}: {exc}", "WARNING")
            if max_retries is not None and attempt >= max_retries:
                raise RetryExhausted(description, attempt + 1, exc) from exc
            attempt += 1

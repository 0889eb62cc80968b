"""
Retry wrapper for remote provider calls.

Only the known transient RPC fault (by HRESULT) is retried; every other
exception, and exceptions without an HRESULT, propagate on the first
attempt.
"""

from __future__ import annotations

import logging
import time
from typing import Callable, Iterable, Optional, TypeVar

from cmadmin.domain.config import RPC_S_CALL_FAILED, RetryPolicy
from cmadmin.domain.errors import normalize_hresult

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_MAX_RETRIES = 3


def error_hresult(exc: BaseException) -> Optional[int]:
    """HRESULT carried by an exception, if any."""
    return normalize_hresult(getattr(exc, "hresult", None))


def is_transient(exc: BaseException, transient_codes: Iterable[int]) -> bool:
    code = error_hresult(exc)
    if code is None:
        return False
    return code in {c & 0xFFFFFFFF for c in transient_codes}


def call_with_retry(
    action: Callable[[], T],
    *,
    max_retries: int = DEFAULT_MAX_RETRIES,
    transient_codes: Iterable[int] = (RPC_S_CALL_FAILED,),
    delay_seconds: float = 0.0,
    description: str = "remote call",
) -> T:
    """
    Run `action`, re-running it while it fails with a transient fault.

    At most `max_retries` retries follow the first attempt. The last
    exception is re-raised unchanged.
    """
    codes = tuple(transient_codes)
    retries = 0
    while True:
        try:
            return action()
        except Exception as exc:  # pylint: disable=broad-except
            if retries >= max_retries or not is_transient(exc, codes):
                raise
            retries += 1
            logger.warning(
                "%s failed with transient error 0x%08X, retry %d of %d",
                description,
                error_hresult(exc),
                retries,
                max_retries,
            )
            if delay_seconds:
                time.sleep(delay_seconds)


def retry_with_policy(action: Callable[[], T], policy: RetryPolicy, description: str = "remote call") -> T:
    return call_with_retry(
        action,
        max_retries=policy.max_retries,
        transient_codes=policy.transient_hresults,
        delay_seconds=policy.delay_seconds,
        description=description,
    )

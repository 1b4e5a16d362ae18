# AirSensor: normalise, enrich and reshape low-cost air sensor data
# Copyright (C) 2025 Ruaraidh Dobson, South London Scientific

# This program is free software: you can redistribute it and/or modify
# it under the terms of the GNU General Public License as published by
# the Free Software Foundation, either version 3 of the License, or
# (at your option) any later version.

# This program is distributed in the hope that it will be useful,
# but WITHOUT ANY WARRANTY; without even the implied warranty of
# MERCHANTABILITY or FITNESS FOR A PARTICULAR PURPOSE.  See the
# GNU General Public License for more details.

# You should have received a copy of the GNU General Public License
# along with this program.  If not, see <https://www.gnu.org/licenses/>.

"""
Decorators shared by the HTTP client and the pipeline entry points.

``with_vendor_retry`` wraps a single vendor GET; ``with_logging`` wraps the
user-facing functions in ``airsensor.api``.
"""

import logging
import time
from functools import wraps
from typing import Any, Callable, TypeVar

import requests
from tenacity import (
    RetryCallState,
    before_sleep_log,
    retry,
    retry_if_exception_type,
    retry_if_result,
    stop_after_attempt,
    wait_exponential,
)

F = TypeVar("F", bound=Callable)

logger = logging.getLogger(__name__)

TRANSIENT_ERRORS = (requests.exceptions.ConnectionError, requests.exceptions.Timeout)


def is_server_error(response: requests.Response | None) -> bool:
    """True for a 5xx response; 4xx responses are never retried."""
    return response is not None and 500 <= response.status_code < 600


def _last_outcome(retry_state: RetryCallState):
    # Final response, or re-raise the final transport error
    return retry_state.outcome.result()


def with_vendor_retry(
    max_attempts: int = 3,
    min_wait: float = 1.0,
    max_wait: float = 10.0,
    multiplier: float = 2.0,
) -> Callable[[F], F]:
    """
    Retry a function that returns a ``requests.Response``.

    Connection errors, timeouts and 5xx responses are retried with exponential
    backoff. Once the attempts run out the last response is handed back
    unchanged (or the last transport error re-raised), so the caller can still
    report the vendor's own error message.

    Args:
        max_attempts: Maximum number of attempts (default: 3)
        min_wait: Minimum wait between attempts in seconds (default: 1.0)
        max_wait: Maximum wait between attempts in seconds (default: 10.0)
        multiplier: Multiplier for exponential backoff (default: 2.0)

    Example:
        >>> @with_vendor_retry(max_attempts=5)
        ... def send(url):
        ...     return requests.get(url, timeout=60)
    """

    def decorator(func: F) -> F:
        return retry(
            retry=retry_if_exception_type(TRANSIENT_ERRORS) | retry_if_result(is_server_error),
            stop=stop_after_attempt(max_attempts),
            wait=wait_exponential(multiplier=multiplier, min=min_wait, max=max_wait),
            before_sleep=before_sleep_log(logger, logging.WARNING),
            retry_error_callback=_last_outcome,
        )(func)

    return decorator


def _describe(result: Any) -> str:
    ids = getattr(result, "device_deployment_ids", None)
    if ids is not None:
        return f" ({len(ids)} sensors)"
    if hasattr(result, "__len__"):
        return f" ({len(result)} rows)"
    return ""


def with_logging(logger_name: str | None = None) -> Callable[[F], F]:
    """
    Log the start, completion and failure of a pipeline function.

    Completion is logged at INFO with the elapsed time and the size of the
    result; failures at ERROR before being re-raised. Argument values are not
    logged since configs carry API keys.

    Args:
        logger_name: Name of logger to use. If None, uses the module name.
    """

    def decorator(func: F) -> F:
        func_logger = logging.getLogger(logger_name or func.__module__)

        @wraps(func)
        def wrapper(*args, **kwargs):
            func_logger.info(
                f"Starting {func.__name__}",
                extra={"function": func.__name__, "kwargs_keys": list(kwargs)},
            )
            started = time.perf_counter()

            try:
                result = func(*args, **kwargs)
            except Exception as e:
                func_logger.error(
                    f"{func.__name__} failed after "
                    f"{time.perf_counter() - started:.1f}s: {e}",
                    extra={"function": func.__name__, "error_type": type(e).__name__},
                )
                raise

            func_logger.info(
                f"Completed {func.__name__} in "
                f"{time.perf_counter() - started:.1f}s{_describe(result)}",
                extra={"function": func.__name__},
            )
            return result

        return wrapper

    return decorator


# Vendor request policy: 3 attempts, 1-10 s backoff
retry_vendor_request = with_vendor_retry(
    max_attempts=3, min_wait=1.0, max_wait=10.0, multiplier=2.0
)

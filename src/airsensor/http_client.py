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
HTTP client used by the vendor fetchers.

``get()`` returns the response on success and raises ``FetchError`` for
anything else. Connection errors, timeouts and 5xx responses are retried with
backoff first.
"""

from logging import getLogger

import requests

from .config import DEFAULT_TIMEOUT
from .decorators import retry_vendor_request
from .exceptions import FetchError
from .types import ErrorMessageParser

logger = getLogger(__name__)


@retry_vendor_request
def _send(url: str, headers: dict, query: dict, timeout: float) -> requests.Response:
    return requests.get(url, headers=headers, params=query, timeout=timeout)


def default_error_message(response: requests.Response) -> str:
    """Use the response text, or the reason phrase when the body is empty."""
    text = (response.text or "").strip()
    return text or str(response.reason)


def get(
    url: str,
    headers: dict[str, str] | None = None,
    query: dict | None = None,
    timeout: float = DEFAULT_TIMEOUT,
    error_message: ErrorMessageParser | None = None,
) -> requests.Response:
    """
    GET a URL.

    Args:
        url: URL to request
        headers: Request headers (authentication goes here)
        query: Query-string parameters; None values are dropped
        timeout: Request timeout in seconds
        error_message: Callable extracting the vendor's error text from a
            failed response

    Returns:
        requests.Response: The successful (2xx) response

    Raises:
        FetchError: On a non-2xx response or a transport failure
    """
    query = {k: v for k, v in (query or {}).items() if v is not None}
    parse_error = error_message or default_error_message

    try:
        response = _send(url, headers or {}, query, timeout)
    except requests.RequestException as e:
        logger.error(f"Web service failed to respond: {url}")
        raise FetchError(None, str(e), url) from e

    if not response.ok:
        message = parse_error(response)
        logger.error(f"Web service failed to respond: {url}")
        logger.error(message)
        raise FetchError(response.status_code, message, url)

    return response


def get_json(
    url: str,
    headers: dict[str, str] | None = None,
    query: dict | None = None,
    timeout: float = DEFAULT_TIMEOUT,
    error_message: ErrorMessageParser | None = None,
):
    """Like ``get()`` but returns the decoded JSON body."""
    response = get(url, headers, query, timeout, error_message)
    try:
        return response.json()
    except ValueError as e:
        raise FetchError(response.status_code, f"Invalid JSON response: {e}", url) from e

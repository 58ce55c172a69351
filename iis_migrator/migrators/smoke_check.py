"""
Post-deployment smoke check of the migrated site.

Fetches the environment URL once it has converged and reports whether the
site answers.  The result is informational; the health polling in
:mod:`iis_migrator.migrators.deployment` decides success.
"""

from __future__ import annotations

import time
from typing import Callable, Optional

import requests


def with_retries(
    fn: Callable[[], requests.Response],
    *,
    max_attempts: int = 5,
    base_delay: float = 0.7,
    sleep_fn: Callable[[float], None] = time.sleep,
) -> requests.Response:
    """
    Execute a function returning a ``requests.Response``, retrying on
    transient HTTP errors.  Retries are attempted on status codes 429
    (too many requests) and 5xx server errors, with exponential backoff.

    :param fn: A zero-argument callable that performs the HTTP request.
    :param max_attempts: Maximum number of attempts before giving up.
    :param base_delay: Base delay in seconds for exponential backoff.
    :param sleep_fn: Sleep function, replaced in tests.
    :return: The successful ``requests.Response``.
    :raises requests.HTTPError: if all attempts fail.
    """
    attempt = 0
    while True:
        try:
            resp = fn()
            resp.raise_for_status()
            return resp
        except requests.HTTPError as e:
            status = e.response.status_code if e.response is not None else 0
            if status not in (429, 500, 502, 503, 504) or attempt >= max_attempts - 1:
                raise
            retry_after = e.response.headers.get("Retry-After")
            wait = float(retry_after) if retry_after and retry_after.isdigit() else base_delay * (2 ** attempt)
            sleep_fn(wait)
            attempt += 1
        except requests.RequestException:
            if attempt >= max_attempts - 1:
                raise
            sleep_fn(base_delay * (2 ** attempt))
            attempt += 1


def check_site_responds(
    url: str,
    *,
    session: Optional[requests.Session] = None,
    timeout: float = 15,
    sleep_fn: Callable[[float], None] = time.sleep,
) -> Optional[int]:
    """
    Request ``url`` and return the final status code, or ``None`` when the
    site could not be reached at all.
    """
    if not url:
        return None
    if not url.startswith(("http://", "https://")):
        url = f"http://{url}"
    http = session or requests.Session()

    def do_request() -> requests.Response:
        return http.get(url, timeout=timeout)

    try:
        return with_retries(do_request, sleep_fn=sleep_fn).status_code
    except requests.HTTPError as e:
        return e.response.status_code if e.response is not None else None
    except requests.RequestException:
        return None

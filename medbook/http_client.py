"""HTTP session factory for the record store.

Purpose: Centralize HTTP configuration (timeouts, pooling, retries).

Pattern: requests.Session with a pooled adapter and a tenacity wrapper
around GET. tenacity is the only retry layer; the adapter itself never
retries, so READ_RETRIES=2 means at most three attempts.

Writes (POST/PATCH/DELETE) are sent exactly once: a failed write is
reported to the caller, who decides whether to try again.
"""
import logging

import requests
from requests.adapters import HTTPAdapter
from tenacity import (
    before_sleep_log,
    retry,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)
from urllib3.util.retry import Retry

from medbook import config

logger = logging.getLogger(__name__)

RETRYABLE_STATUS = (429, 500, 502, 503, 504)


def is_transient_error(exc: BaseException) -> bool:
    """True for failures worth retrying on an idempotent read."""
    if isinstance(exc, (requests.exceptions.ConnectionError, requests.exceptions.Timeout)):
        return True
    if isinstance(exc, requests.exceptions.HTTPError):
        response = exc.response
        return response is not None and response.status_code in RETRYABLE_STATUS
    return False


def create_http_session(
    read_retries: int = config.READ_RETRIES,
    timeout: float = config.HTTP_TIMEOUT_SECONDS,
    backoff_multiplier: float = 1.0,
) -> requests.Session:
    """
    Create HTTP session with read retries and connection pooling.

    Args:
        read_retries: Retry attempts for GET requests (0 disables)
        timeout: Request timeout in seconds applied to every method
        backoff_multiplier: Exponential backoff multiplier for GET retries
                            (delays 1s, 2s, 4s... capped at 8s)

    Returns:
        Configured requests.Session whose methods raise on HTTP errors
    """
    session = requests.Session()

    # Retries happen in get_with_retry only
    no_adapter_retries = Retry(total=0, raise_on_status=False)
    adapter = HTTPAdapter(
        max_retries=no_adapter_retries,
        pool_connections=10,
        pool_maxsize=10,
    )
    session.mount("http://", adapter)
    session.mount("https://", adapter)

    original_get = session.get
    original_post = session.post
    original_patch = session.patch
    original_delete = session.delete

    @retry(
        stop=stop_after_attempt(read_retries + 1),
        wait=wait_exponential(multiplier=backoff_multiplier, min=0, max=8),
        retry=retry_if_exception(is_transient_error),
        before_sleep=before_sleep_log(logger, logging.WARNING),
        reraise=True
    )
    def get_with_retry(*args, **kwargs):
        kwargs.setdefault("timeout", timeout)
        response = original_get(*args, **kwargs)
        response.raise_for_status()
        return response

    def _send_once(method):
        def send(*args, **kwargs):
            kwargs.setdefault("timeout", timeout)
            response = method(*args, **kwargs)
            response.raise_for_status()
            return response
        return send

    session.get = get_with_retry
    session.post = _send_once(original_post)
    session.patch = _send_once(original_patch)
    session.delete = _send_once(original_delete)

    return session

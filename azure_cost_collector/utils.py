# Utility functions for the Azure cost collection job

import logging
import random
import threading
import time
from datetime import datetime, timezone

import requests

RETRYABLE_STATUS_CODES = {429, 500, 502, 503, 504}


def setup_logging(log_file='azure_cost_collector.log', level=logging.INFO):
    """Setup logging configuration for the collection job"""
    handlers = [logging.StreamHandler()]
    if log_file:
        handlers.append(logging.FileHandler(log_file))
    logging.basicConfig(
        level=level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=handlers
    )
    # The Azure SDK logs every HTTP request at INFO
    logging.getLogger('azure').setLevel(logging.WARNING)
    return logging.getLogger(__name__)


def safe_divide(numerator, denominator):
    """Safe division that returns None if denominator is missing or 0"""
    if not denominator:
        return None
    return numerator / denominator


def format_currency(amount, currency='USD'):
    """Format an amount for log output"""
    if amount is None:
        return "n/a"
    return f"{amount:,.2f} {currency}"


def utc_now():
    return datetime.now(timezone.utc)


def get_timestamp():
    """Get current UTC timestamp for file naming"""
    return utc_now().strftime("%Y%m%d_%H%M%S")


def _retry_after_seconds(response):
    """Read Retry-After / retry-after-ms headers, returns None when absent or unparseable"""
    if response is None:
        return None
    retry_after_ms = response.headers.get('retry-after-ms')
    if retry_after_ms:
        try:
            return float(retry_after_ms) / 1000.0
        except ValueError:
            return None
    retry_after = response.headers.get('Retry-After')
    if retry_after:
        try:
            return float(retry_after)
        except ValueError:
            return None
    return None


def http_with_backoff(method, url, *, headers=None, params=None, data=None, json_body=None,
                      timeout=60.0, max_retries=3, base_delay=0.5, max_delay=8.0):
    """
    Send an HTTP request, retrying 429/5xx responses and connection errors
    with exponential backoff.

    Returns the final requests.Response. Raises the last
    requests.RequestException when every attempt failed without a response.
    """
    logger = logging.getLogger(__name__)
    attempt = 0
    while True:
        response = None
        error = None
        try:
            response = requests.request(method, url, headers=headers, params=params, data=data,
                                        json=json_body, timeout=timeout)
        except requests.RequestException as e:
            error = e

        if response is not None and response.status_code not in RETRYABLE_STATUS_CODES:
            return response
        if attempt >= max_retries:
            if response is not None:
                return response
            raise error

        delay = _retry_after_seconds(response)
        if delay is None:
            delay = min(max_delay, base_delay * (2 ** attempt)) + random.uniform(0, 0.25)
        status = response.status_code if response is not None else type(error).__name__
        logger.debug(f"{method} {url.split('?')[0]} -> {status}, retrying in {delay:.2f}s "
                     f"(attempt {attempt + 1}/{max_retries})")
        time.sleep(delay)
        attempt += 1


class RateLimiter:
    """Spaces out call starts across threads by at least min_interval seconds"""

    def __init__(self, min_interval):
        self.min_interval = max(0.0, float(min_interval or 0))
        self._lock = threading.Lock()
        self._next_slot = 0.0

    def acquire(self):
        if self.min_interval <= 0:
            return
        with self._lock:
            now = time.monotonic()
            wait = self._next_slot - now
            self._next_slot = max(now, self._next_slot) + self.min_interval
        if wait > 0:
            time.sleep(wait)

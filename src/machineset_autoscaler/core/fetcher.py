#!/usr/bin/env python3
"""
Authenticated GET with a bounded retry on gateway timeouts
"""

import logging
import threading
from typing import Optional

import requests

from .exceptions import FetchCancelledError, FetchError, MaxRetriesExceededError, RequestFailedError

logger = logging.getLogger(__name__)


class RetryingFetcher:
    """Issues one bearer-authenticated GET per logical query"""

    def __init__(
        self,
        token: str,
        timeout: float = 30.0,
        max_attempts: int = 5,
        backoff: float = 2.0,
        retry_status: int = 504,
        session: Optional[requests.Session] = None,
        stop_event: Optional[threading.Event] = None,
    ):
        """
        Args:
            token: Bearer token sent with every request
            timeout: Per-attempt request timeout in seconds
            max_attempts: Total attempts, including the first one
            backoff: Seconds to wait between attempts
            retry_status: The only HTTP status that is retried
            session: requests session to reuse
            stop_event: Set on shutdown; interrupts the wait between attempts
        """
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.token = token
        self.timeout = timeout
        self.max_attempts = max_attempts
        self.backoff = backoff
        self.retry_status = retry_status
        self.session = session or requests.Session()
        self.stop_event = stop_event or threading.Event()

    def get(self, url: str) -> bytes:
        """
        Fetch url and return the raw response body

        Raises:
            RequestFailedError: on any non-200 status other than the retry status
            MaxRetriesExceededError: when every attempt got the retry status
            FetchCancelledError: when shutdown was requested during a backoff wait
            FetchError: on transport errors (not retried)
        """
        headers = {"Authorization": f"Bearer {self.token}"}

        for attempt in range(1, self.max_attempts + 1):
            try:
                response = self.session.get(url, headers=headers, timeout=self.timeout)
            except requests.exceptions.RequestException as e:
                logger.error(f"Error sending request to {url}: {e}")
                raise FetchError(f"error sending request: {e}", url=url) from e

            if response.status_code == 200:
                return response.content

            if response.status_code != self.retry_status:
                response.close()
                raise RequestFailedError(response.status_code, url=url, reason=response.reason or "")

            response.close()
            if attempt == self.max_attempts:
                break

            logger.warning(f"Gateway timeout. Retrying ({attempt}/{self.max_attempts})...")
            if self.stop_event.wait(self.backoff):
                raise FetchCancelledError("shutdown requested while waiting to retry", url=url)

        raise MaxRetriesExceededError(self.max_attempts, url=url)

    def close(self) -> None:
        self.session.close()

"""Fetcher for upstream iCalendar feeds."""
import logging
import time
from typing import Callable, Optional

import requests

logger = logging.getLogger(__name__)


class FetchError(Exception):
    """Raised when a feed could not be retrieved after all attempts."""

    def __init__(self, url: str, attempts: int, last_cause: Optional[BaseException]):
        self.url = url
        self.attempts = attempts
        self.last_cause = last_cause
        super().__init__(
            f"Failed to fetch {url} after {attempts} attempts: {last_cause}"
        )


class FeedFetcher:
    """Retrieves feed documents over HTTP with a bounded number of retries."""

    def __init__(
        self,
        timeout: int = 30,
        max_attempts: int = 3,
        retry_delay: float = 10,
        sleep: Callable[[float], None] = time.sleep
    ):
        """
        Initialize the feed fetcher.

        Args:
            timeout: HTTP request timeout in seconds (default: 30)
            max_attempts: Number of attempts before giving up (default: 3)
            retry_delay: Fixed delay between attempts in seconds (default: 10)
            sleep: Function used to wait between attempts
        """
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.timeout = timeout
        self.max_attempts = max_attempts
        self.retry_delay = retry_delay
        self._sleep = sleep

    def fetch(self, url: str) -> str:
        """
        Fetch a feed document, retrying on transport errors and non-2xx responses.

        Args:
            url: Feed URL

        Returns:
            Response body as text

        Raises:
            FetchError: If all attempts fail
        """
        last_cause = None

        for attempt in range(1, self.max_attempts + 1):
            try:
                logger.info(
                    f"Fetching feed {url} (attempt {attempt}/{self.max_attempts})"
                )
                response = requests.get(url, timeout=self.timeout)
                response.raise_for_status()
                return response.text

            except requests.RequestException as e:
                last_cause = e
                if attempt < self.max_attempts:
                    logger.warning(
                        f"Request failed (attempt {attempt}/{self.max_attempts}): {e}. "
                        f"Retrying in {self.retry_delay} seconds..."
                    )
                    self._sleep(self.retry_delay)

        logger.error(
            f"All {self.max_attempts} attempts to fetch {url} failed. "
            f"Last error: {last_cause}"
        )
        raise FetchError(url, self.max_attempts, last_cause)

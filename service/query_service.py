"""Range queries over stored events."""
import logging
import math
from typing import List, Optional

from botocore.exceptions import BotoCoreError, ClientError

from processor.feed_normalizer import parse_timestamp
from service.result_cache import ResultCache
from storage.event_store import EventStore

logger = logging.getLogger(__name__)

MISSING_RANGE_MESSAGE = 'Start and end query parameters are required'


class BadRequest(Exception):
    """Raised when a query is missing or has invalid range bounds."""


class StorageReadError(Exception):
    """Raised when stored events could not be read."""


class QueryService:
    """Answers range queries from storage through a result cache."""

    def __init__(self, store: EventStore, cache: ResultCache):
        self.store = store
        self.cache = cache

    def query(self, range_start: Optional[str], range_end: Optional[str]) -> List[dict]:
        """
        Return stored events that start at or after range_start and end at or before range_end.

        Args:
            range_start: Lower bound, ISO-8601
            range_end: Upper bound, ISO-8601

        Returns:
            List of event dictionaries ordered by start time

        Raises:
            BadRequest: If a bound is missing or not a timestamp
            StorageReadError: If storage could not be scanned
        """
        if not range_start or not range_end:
            raise BadRequest(MISSING_RANGE_MESSAGE)

        key = (range_start, range_end)
        cached = self.cache.get(key)
        if cached is not None:
            logger.debug(f"Returning cached events for {range_start} - {range_end}")
            return cached

        try:
            start_ts = math.ceil(parse_timestamp(range_start).timestamp())
            end_ts = math.floor(parse_timestamp(range_end).timestamp())
        except ValueError as e:
            raise BadRequest(f"Invalid start or end value: {e}") from e

        try:
            events = self.store.scan_range(start_ts, end_ts)
        except (ClientError, BotoCoreError) as e:
            logger.error(f"Error reading events from storage: {e}")
            raise StorageReadError(str(e)) from e

        result = [event.to_dict() for event in events]
        self.cache.set(key, result)
        logger.info(f"Loaded {len(result)} events for {range_start} - {range_end}")
        return result

"""Ingestion pass for a single calendar feed source."""
import logging
import time
from typing import Optional

from fetcher.feed_fetcher import FeedFetcher, FetchError
from processor.feed_normalizer import FeedNormalizer, ParseError
from processor.models import FeedSource, ReconcileResult
from processor.reconciler import Reconciler

logger = logging.getLogger(__name__)


class IngestionPipeline:
    """Fetches, normalizes and reconciles one feed source at a time."""

    def __init__(self, fetcher: FeedFetcher, normalizer: FeedNormalizer, reconciler: Reconciler):
        self.fetcher = fetcher
        self.normalizer = normalizer
        self.reconciler = reconciler

    def run(self, source: FeedSource) -> Optional[ReconcileResult]:
        """
        Run one ingestion pass for a source.

        Fetch and parse failures abort the pass before anything is written
        and are logged rather than raised.

        Args:
            source: Feed source to ingest

        Returns:
            ReconcileResult, or None if the pass was aborted
        """
        start_time = time.time()
        logger.info(
            f"Ingestion started for [{source.prefix}]",
            extra={'source': source.prefix, 'url': source.url}
        )

        try:
            document = self.fetcher.fetch(source.url)
        except FetchError as e:
            logger.error(
                f"Skipping [{source.prefix}] ingestion, feed unavailable: {e}",
                extra={
                    'source': source.prefix,
                    'attempts': e.attempts,
                    'error_type': type(e.last_cause).__name__
                }
            )
            return None

        try:
            records = self.normalizer.normalize(document, source.prefix)
        except ParseError as e:
            logger.error(
                f"Skipping [{source.prefix}] ingestion, feed could not be parsed: {e}",
                extra={'source': source.prefix}
            )
            return None

        result = self.reconciler.reconcile(records)

        logger.info(
            f"Ingestion completed for [{source.prefix}]",
            extra={
                'source': source.prefix,
                'duration_seconds': round(time.time() - start_time, 2),
                'events_added': result.added,
                'events_updated': result.updated,
                'errors': len(result.errors)
            }
        )
        return result

"""Entry point for the calendar feed sync service."""
import json
import logging
import os
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional

from aiohttp import web
from dotenv import load_dotenv

from api.server import create_app
from fetcher.feed_fetcher import FeedFetcher
from processor.feed_normalizer import FeedNormalizer
from processor.ingestion import IngestionPipeline
from processor.models import FeedSource
from processor.reconciler import UPDATE_POLICIES, Reconciler
from scheduler.ingest_scheduler import IngestScheduler
from service.query_service import QueryService
from service.result_cache import ResultCache
from storage.event_store import EventStore

logger = logging.getLogger(__name__)

# Environment variable holding each source's feed URL, keyed by title prefix
SOURCE_URL_VARIABLES = {
    'Sonarr': 'SONARR_ICS',
    'Radarr': 'RADARR_ICS',
}

_RESERVED_LOG_ATTRIBUTES = set(
    logging.LogRecord('', 0, '', 0, '', (), None).__dict__
) | {'message', 'asctime'}


class JsonFormatter(logging.Formatter):
    """Custom JSON formatter for structured logging."""

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as JSON, including any extra fields."""
        log_data = {
            'timestamp': self.formatTime(record),
            'level': record.levelname,
            'message': record.getMessage(),
            'logger': record.name
        }

        for key, value in record.__dict__.items():
            if key not in _RESERVED_LOG_ATTRIBUTES and not key.startswith('_'):
                log_data[key] = value

        if record.exc_info:
            log_data['exception'] = self.formatException(record.exc_info)

        return json.dumps(log_data, default=str)


def setup_logging(log_level: str = 'INFO') -> None:
    """
    Configure logging with JSON formatter.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
    """
    root_logger = logging.getLogger()

    # Remove existing handlers
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    handler = logging.StreamHandler()
    handler.setFormatter(JsonFormatter())
    root_logger.addHandler(handler)

    root_logger.setLevel(getattr(logging, log_level.upper(), logging.INFO))


def _parse_bool(value: str) -> bool:
    return value.strip().lower() in ('1', 'true', 'yes', 'on')


@dataclass
class Settings:
    """Runtime configuration read from the environment."""
    sources: List[FeedSource] = field(default_factory=list)
    table_name: str = 'calendar-events'
    aws_region: str = 'us-east-1'
    dynamodb_endpoint_url: Optional[str] = None
    create_table: bool = False
    host: str = '0.0.0.0'
    port: int = 9999
    log_level: str = 'INFO'
    sync_interval_seconds: float = 60
    cache_ttl_seconds: float = 60
    fetch_max_attempts: int = 3
    fetch_retry_delay_seconds: float = 10
    timeout_seconds: int = 30
    update_policy: str = 'color'
    invalidate_on_ingest: bool = False
    html_file_path: str = 'index.html'

    @classmethod
    def from_env(cls, environ: Mapping[str, str] = os.environ) -> 'Settings':
        """
        Read settings from environment variables.

        Raises:
            ValueError: If a numeric value or the update policy is invalid
        """
        sources = []
        for prefix, variable in SOURCE_URL_VARIABLES.items():
            url = environ.get(variable, '').strip()
            if url:
                sources.append(FeedSource(prefix=prefix, url=url))
            else:
                logger.warning(f"{variable} is not set, [{prefix}] feed will not be ingested")

        update_policy = environ.get('UPDATE_POLICY', 'color').strip().lower()
        if update_policy not in UPDATE_POLICIES:
            raise ValueError(
                f"UPDATE_POLICY must be one of {sorted(UPDATE_POLICIES)}, got '{update_policy}'"
            )

        return cls(
            sources=sources,
            table_name=environ.get('TABLE_NAME', 'calendar-events'),
            aws_region=environ.get('AWS_REGION', 'us-east-1'),
            dynamodb_endpoint_url=environ.get('DYNAMODB_ENDPOINT_URL') or None,
            create_table=_parse_bool(environ.get('CREATE_TABLE', 'false')),
            host=environ.get('HOST', '0.0.0.0'),
            port=int(environ.get('PORT', '9999')),
            log_level=environ.get('LOG_LEVEL', 'INFO'),
            sync_interval_seconds=float(environ.get('SYNC_INTERVAL_SECONDS', '60')),
            cache_ttl_seconds=float(environ.get('CACHE_TTL_SECONDS', '60')),
            fetch_max_attempts=int(environ.get('FETCH_MAX_ATTEMPTS', '3')),
            fetch_retry_delay_seconds=float(environ.get('FETCH_RETRY_DELAY_SECONDS', '10')),
            timeout_seconds=int(environ.get('TIMEOUT_SECONDS', '30')),
            update_policy=update_policy,
            invalidate_on_ingest=_parse_bool(environ.get('INVALIDATE_ON_INGEST', 'false')),
            html_file_path=environ.get('HTML_FILE_PATH', 'index.html')
        )

    def summary(self) -> Dict[str, Any]:
        return {
            'sources': [source.prefix for source in self.sources],
            'table_name': self.table_name,
            'port': self.port,
            'sync_interval_seconds': self.sync_interval_seconds,
            'cache_ttl_seconds': self.cache_ttl_seconds,
            'update_policy': self.update_policy
        }


def build_application(settings: Settings, store: Optional[EventStore] = None) -> web.Application:
    """
    Wire storage, ingestion and the read API into an aiohttp application.

    The ingestion scheduler starts with the application, before the
    listener accepts connections, and stops on shutdown.

    Args:
        settings: Runtime configuration
        store: Event storage, created from settings when omitted

    Returns:
        Configured web.Application
    """
    if store is None:
        store = EventStore(
            table_name=settings.table_name,
            region_name=settings.aws_region,
            endpoint_url=settings.dynamodb_endpoint_url
        )
        if settings.create_table:
            store.create_table()

    cache = ResultCache(ttl_seconds=settings.cache_ttl_seconds)
    reconciler = Reconciler(store, update_policy=settings.update_policy)
    if settings.invalidate_on_ingest:
        reconciler.add_completion_hook(cache.invalidate)

    pipeline = IngestionPipeline(
        fetcher=FeedFetcher(
            timeout=settings.timeout_seconds,
            max_attempts=settings.fetch_max_attempts,
            retry_delay=settings.fetch_retry_delay_seconds
        ),
        normalizer=FeedNormalizer(),
        reconciler=reconciler
    )
    scheduler = IngestScheduler(
        pipeline,
        settings.sources,
        interval_seconds=settings.sync_interval_seconds
    )

    app = create_app(QueryService(store, cache), settings.html_file_path)

    async def run_scheduler(_app: web.Application):
        scheduler.start()
        yield
        await scheduler.stop()

    app.cleanup_ctx.append(run_scheduler)
    return app


def main() -> None:
    """Load configuration and serve until interrupted."""
    load_dotenv()
    setup_logging(os.environ.get('LOG_LEVEL', 'INFO'))

    settings = Settings.from_env()
    logger.info("Starting calendar feed sync", extra=settings.summary())

    app = build_application(settings)
    web.run_app(app, host=settings.host, port=settings.port, print=None)


if __name__ == '__main__':
    main()

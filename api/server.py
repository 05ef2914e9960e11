"""HTTP read API for stored calendar events."""
import asyncio
import logging
import os

from aiohttp import web

from service.query_service import BadRequest, QueryService, StorageReadError

logger = logging.getLogger(__name__)

QUERY_SERVICE_KEY = web.AppKey('query_service', QueryService)
HTML_PATH_KEY = web.AppKey('html_file_path', str)


async def events_handler(request: web.Request) -> web.Response:
    """Serve events within the ?start=&end= range as JSON."""
    query_service = request.app[QUERY_SERVICE_KEY]
    range_start = request.query.get('start')
    range_end = request.query.get('end')

    try:
        events = await asyncio.to_thread(query_service.query, range_start, range_end)
    except BadRequest as e:
        return web.json_response({'error': str(e)}, status=400)
    except StorageReadError:
        return web.json_response({'error': 'Failed to load events'}, status=500)

    return web.json_response(events)


async def index_handler(request: web.Request) -> web.StreamResponse:
    """Serve the browser calendar page when it exists on disk."""
    html_file_path = request.app[HTML_PATH_KEY]
    if not os.path.isfile(html_file_path):
        return web.Response(text='HTML file not found', status=404)
    return web.FileResponse(html_file_path)


def create_app(query_service: QueryService, html_file_path: str) -> web.Application:
    """
    Build the aiohttp application.

    Args:
        query_service: Service answering range queries
        html_file_path: Path of the page served at /

    Returns:
        Configured web.Application
    """
    app = web.Application()
    app[QUERY_SERVICE_KEY] = query_service
    app[HTML_PATH_KEY] = html_file_path
    app.router.add_get('/events.json', events_handler)
    app.router.add_get('/', index_handler)
    return app

"""
HTTP query endpoint.

``POST /`` takes ``{"keywords": ..., "searchType": "or" | "and"}`` and answers
with a JSON array of ``{url, description, rank}``; ``503`` while the index is
still being built.
"""

import json
import logging
from typing import Any, List, Optional

from aiohttp import web

from .engine import IndexNotReadyError, SearchEngine, SearchMode, ValidationError
from ..utils.monitoring import CrawlerMonitor, initialize_monitoring


logger = logging.getLogger(__name__)

ENGINE_KEY = web.AppKey("engine", SearchEngine)
MONITOR_KEY = web.AppKey("monitor", CrawlerMonitor)
ORIGIN_KEY = web.AppKey("allowed_origin", str)


def normalize_keywords(raw: Any) -> List[str]:
    """
    Lower-case and trim keywords, dropping empty entries.

    A string is split on commas; a list must contain only strings.
    """
    if isinstance(raw, str):
        raw = raw.split(',')
    elif not isinstance(raw, list) or not all(isinstance(item, str) for item in raw):
        raise ValidationError("keywords must be a string or a list of strings")
    keywords = (keyword.strip().lower() for keyword in raw)
    return [keyword for keyword in keywords if keyword]


def _error(status: int, message: str) -> web.Response:
    return web.json_response({'error': message}, status=status)


@web.middleware
async def cors_middleware(request: web.Request, handler):
    headers = {
        'Access-Control-Allow-Origin': request.app[ORIGIN_KEY],
        'Access-Control-Allow-Methods': 'GET, POST, OPTIONS',
        'Access-Control-Allow-Headers': 'Content-Type',
    }
    try:
        response = await handler(request)
    except web.HTTPException as exc:
        exc.headers.update(headers)
        raise
    response.headers.update(headers)
    return response


async def handle_preflight(request: web.Request) -> web.Response:
    return web.Response(status=204)


async def handle_search(request: web.Request) -> web.Response:
    engine = request.app[ENGINE_KEY]
    monitor = request.app[MONITOR_KEY]

    body = await request.read()

    if engine.coordinator.is_building:
        logger.info("Search rejected: index is being built")
        monitor.record_search('not_ready')
        return web.Response(status=503, text="Database is being built, please wait.")

    try:
        data = json.loads(body)
    except (ValueError, UnicodeDecodeError):
        monitor.record_search('invalid')
        return _error(400, "Invalid JSON in request body")

    if not isinstance(data, dict):
        monitor.record_search('invalid')
        return _error(400, "Request body must be a JSON object")

    keywords = data.get('keywords')
    search_type = data.get('searchType')
    if keywords is None or not search_type:
        monitor.record_search('invalid')
        return _error(400, "Keywords and searchType are required in the request body")

    try:
        keywords = normalize_keywords(keywords)
        if search_type not in ('or', 'and'):
            raise ValidationError("searchType must be 'or' or 'and'")
        results = await engine.search(keywords, SearchMode(search_type))
    except ValidationError as e:
        logger.info(f"Rejected search request: {e}")
        monitor.record_search('invalid')
        return _error(400, str(e))
    except IndexNotReadyError as e:
        monitor.record_search('not_ready')
        return web.Response(status=503, text=str(e))
    except Exception:
        logger.exception("Error performing search")
        monitor.record_search('error')
        return _error(500, "Error performing search")

    monitor.record_search('ok')
    return web.json_response(results)


def create_app(engine: SearchEngine, allowed_origin: str = '*',
               monitor: Optional[CrawlerMonitor] = None) -> web.Application:
    """Build the aiohttp application serving the query endpoint."""
    app = web.Application(middlewares=[cors_middleware])
    app[ENGINE_KEY] = engine
    app[MONITOR_KEY] = monitor or initialize_monitoring()
    app[ORIGIN_KEY] = allowed_origin
    app.router.add_post('/', handle_search)
    app.router.add_route('OPTIONS', '/', handle_preflight)
    return app


async def start_server(app: web.Application, host: str, port: int) -> web.AppRunner:
    """Start serving ``app``; the caller owns the returned runner's cleanup."""
    runner = web.AppRunner(app)
    await runner.setup()
    site = web.TCPSite(runner, host, port)
    await site.start()
    logger.info(f"Query server running at http://{host}:{port}/")
    return runner

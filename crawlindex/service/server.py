"""
HTTP transport for the Searcher service: JSON request/response bodies on
aiohttp.web routes.
"""

import asyncio
import json
import logging

from aiohttp import web

from .messages import (
    IndexRequest, IndexResponse, SearchRequest, SearchResponse, MessageError
)
from .searcher import SearcherService


INDEX_PATH = '/searcher.Searcher/Index'
SEARCH_PATH = '/searcher.Searcher/Search'

SERVICE_KEY = web.AppKey('searcher_service', SearcherService)

logger = logging.getLogger(__name__)


async def _read_json(request: web.Request):
    try:
        return await request.json()
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise MessageError(f"Request body is not valid JSON: {e}") from e


async def handle_index(request: web.Request) -> web.Response:
    service = request.app[SERVICE_KEY]
    try:
        index_request = IndexRequest.from_dict(await _read_json(request))
    except MessageError as e:
        return web.json_response(IndexResponse.error(str(e)).to_dict(), status=400)

    response = await service.index(index_request)
    return web.json_response(response.to_dict())


async def handle_search(request: web.Request) -> web.Response:
    service = request.app[SERVICE_KEY]
    try:
        search_request = SearchRequest.from_dict(await _read_json(request))
    except MessageError as e:
        return web.json_response(SearchResponse.error(str(e)).to_dict(), status=400)

    response = await service.search(search_request)
    return web.json_response(response.to_dict())


async def handle_health(request: web.Request) -> web.Response:
    return web.json_response({'status': 'ok'})


async def handle_metrics(request: web.Request) -> web.Response:
    metrics = request.app[SERVICE_KEY].monitor.metrics
    return web.Response(body=metrics.export(), headers={'Content-Type': metrics.content_type})


def create_app(service: SearcherService, close_service: bool = False) -> web.Application:
    """
    Build the aiohttp application for ``service``.

    Args:
        service: the SearcherService to expose
        close_service: close the service's index and HTTP session on app cleanup
    """
    app = web.Application()
    app[SERVICE_KEY] = service
    app.router.add_post(INDEX_PATH, handle_index)
    app.router.add_post(SEARCH_PATH, handle_search)
    app.router.add_get('/health', handle_health)
    if service.config.monitoring.metrics_enabled:
        app.router.add_get('/metrics', handle_metrics)

    if close_service:
        async def _close(app: web.Application):
            await app[SERVICE_KEY].close()
        app.on_cleanup.append(_close)

    return app


async def run_server(service: SearcherService, host: str, port: int):
    """Serve until cancelled."""
    runner = web.AppRunner(create_app(service, close_service=True))
    await runner.setup()
    site = web.TCPSite(runner, host, port)
    await site.start()
    logger.info(f"Searcher service listening on http://{host}:{port}")
    try:
        await asyncio.Event().wait()
    finally:
        await runner.cleanup()

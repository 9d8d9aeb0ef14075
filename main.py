""" main.py: FastAPI application entry point and runtime wiring of the Giphy connector.

This module builds the connector's components (database, platform client, GIF client, Giphy
provider, connector service), mounts the signed callback router, the health endpoint and the
Prometheus metrics endpoint, and ties the background workers to the application lifecycle:

- startup: optional database migration, registry restore from the database, event relay
  thread, provider (action worker thread and polling scheduler),
- shutdown: provider stop (scheduler, action queue, event channel), relay join.

When executed directly it parses a few command line flags and starts Uvicorn with host/port
values from configuration.
"""

import argparse
import logging
import time
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from prometheus_client import make_asgi_app
from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PublicKey

from config import CONFIG, ENV

from api import callbacks as callbacks_router
from api import health as health_router
from gif_api import create_gif_client
from monitoring.metrics import REQUEST_COUNT, REQUEST_LATENCY
from platform_api.client import PlatformClient
from provider_api.giphy_provider import GiphyProvider
from services.connector_service import ConnectorService
from services.database import Database
from shared.errors import ConnectorError, InternalServerError
from shared.signing import load_public_key
from version import __version__

logger = logging.getLogger(__name__)


def build_connector_service(config: dict = CONFIG) -> ConnectorService:
    """Create the connector service and its collaborators from configuration."""
    giphy_cfg = config['giphy']
    gif_client = create_gif_client(
        giphy_cfg.get('client', 'giphy'),
        base_url=giphy_cfg.get('base_url'),
        timeout=float(giphy_cfg.get('timeout_seconds', 10.0)),
        rating=giphy_cfg.get('rating', 'g'),
    )
    provider = GiphyProvider(
        gif_client,
        poll_interval_seconds=float(giphy_cfg.get('poll_interval_seconds', 60)),
        search_limit=int(giphy_cfg.get('search_limit', 1)),
        action_queue_capacity=int(config['provider'].get('action_queue_capacity', 5)),
        event_channel_capacity=int(config['provider'].get('event_channel_capacity', 5)),
    )
    platform_client = PlatformClient(
        base_url=config['platform']['base_url'],
        timeout=float(config['platform'].get('timeout_seconds', 10.0)),
    )
    database = Database(config['database']['path'])
    return ConnectorService(database, platform_client, provider)


async def connector_error_handler(request: Request, exc: ConnectorError) -> JSONResponse:
    return JSONResponse(status_code=exc.status, content=exc.to_dict())


async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.error("Unhandled error on %s %s: %s", request.method, request.url.path, exc.__class__.__name__)
    error = InternalServerError()
    return JSONResponse(status_code=error.status, content=error.to_dict())


async def record_request_metrics(request: Request, call_next):
    start_time = time.time()
    response = await call_next(request)
    route = request.scope.get("route")
    endpoint = getattr(route, "path", request.url.path)
    REQUEST_LATENCY.labels(method=request.method, endpoint=endpoint).observe(time.time() - start_time)
    REQUEST_COUNT.labels(method=request.method, endpoint=endpoint, status=response.status_code).inc()
    return response


def create_app(
    connector_service: Optional[ConnectorService] = None,
    public_key: Optional[Ed25519PublicKey] = None,
    callback_host: Optional[str] = None,
    migrate_on_startup: Optional[bool] = None,
) -> FastAPI:
    """
    Create and configure the FastAPI application.

    Args:
        connector_service (ConnectorService, optional): Service to use; built from CONFIG if omitted.
        public_key (Ed25519PublicKey, optional): Callback verification key; read from
            GIPHY_CONNECTOR_PUBLIC_KEY if omitted.
        callback_host (str, optional): Fixed external host for signature validation; defaults to
            `callbacks.host` from configuration (None means forwarded headers are used).
        migrate_on_startup (bool, optional): Run database migrations on startup; defaults to
            `database.migrate_on_startup`.

    Returns:
        FastAPI: The configured application. Background workers start with the app's startup event.
    """
    if connector_service is None:
        connector_service = build_connector_service(CONFIG)
    if public_key is None:
        public_key = load_public_key(ENV['GIPHY_CONNECTOR_PUBLIC_KEY'])
    if callback_host is None:
        callback_host = CONFIG['callbacks'].get('host')
    if migrate_on_startup is None:
        migrate_on_startup = bool(CONFIG['database'].get('migrate_on_startup', True))

    app = FastAPI(title="Giphy Connector", version=__version__)
    app.state.connector_service = connector_service
    app.state.provider = connector_service.provider
    app.state.public_key = public_key
    app.state.callback_host = callback_host

    app.include_router(health_router.router, tags=["Health"])
    app.include_router(callbacks_router.router, prefix=CONFIG['callbacks']['prefix'], tags=["Callbacks"])

    app.add_exception_handler(ConnectorError, connector_error_handler)
    app.add_exception_handler(Exception, unhandled_error_handler)
    app.middleware("http")(record_request_metrics)

    # Add Prometheus metrics endpoint
    app.mount("/metrics", make_asgi_app())

    @app.on_event("startup")
    def _on_startup() -> None:
        service = app.state.connector_service
        if migrate_on_startup:
            service.database.migrate()
        service.init()
        service.start_event_relay()
        service.provider.start()
        logger.info("Giphy connector %s started", __version__)

    @app.on_event("shutdown")
    def _on_shutdown() -> None:
        service = app.state.connector_service
        service.provider.stop()
        service.stop_event_relay()
        logger.info("Giphy connector stopped")

    return app


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Giphy connector for the Things platform")
    parser.add_argument(
        '--migrate',
        action='store_true',
        help='Create the database tables before starting the server'
    )
    parser.add_argument(
        '--migrate-only',
        action='store_true',
        help='Create the database tables and exit'
    )
    parser.add_argument('--host', default=CONFIG['server']['host'], help='Bind address')
    parser.add_argument('--port', type=int, default=CONFIG['server']['port'], help='Bind port')
    return parser.parse_args(argv)


def main(argv=None) -> None:
    args = parse_args(argv)

    if args.migrate or args.migrate_only:
        Database(CONFIG['database']['path']).migrate()
        if args.migrate_only:
            return

    import uvicorn
    logger.info("[__main__] Starting Uvicorn server on %s:%s", args.host, args.port)
    uvicorn.run(create_app(), host=args.host, port=args.port)


if __name__ == '__main__':
    main()

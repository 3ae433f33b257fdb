"""
REST API Module
aiohttp application serving procurement invoice queries.

Routes:
- GET /api/health
- GET /api/procurement/invoices
- GET /api/procurement/stats
- GET /api/procurement/categories
- GET /api/procurement/cities
- GET /api/procurement/units
"""

import json
import logging
import time
from datetime import date, datetime, timezone
from decimal import Decimal
from functools import partial
from typing import Any, Awaitable, Callable, Optional

from aiohttp import web

from .config import ApiSettings
from .database import InvoiceRepository
from .query_service import InvoiceFilters, InvoiceQueryService

logger = logging.getLogger(__name__)

QUERY_SERVICE_KEY = web.AppKey("query_service", InvoiceQueryService)
REPOSITORY_KEY = web.AppKey("repository", InvoiceRepository)
SETTINGS_KEY = web.AppKey("api_settings", ApiSettings)

Handler = Callable[[web.Request], Awaitable[web.StreamResponse]]


def _json_default(value: Any) -> Any:
    if isinstance(value, Decimal):
        return float(value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


_dumps = partial(json.dumps, default=_json_default, ensure_ascii=False)


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def json_response(payload: dict, status: int = 200) -> web.Response:
    return web.json_response(payload, status=status, dumps=_dumps)


@web.middleware
async def request_logging_middleware(request: web.Request, handler: Handler) -> web.StreamResponse:
    start = time.monotonic()
    response = await handler(request)
    duration_ms = (time.monotonic() - start) * 1000
    logger.info(f"{request.method} {request.path} - {response.status} ({duration_ms:.0f}ms)")
    return response


@web.middleware
async def error_middleware(request: web.Request, handler: Handler) -> web.StreamResponse:
    try:
        return await handler(request)
    except web.HTTPNotFound:
        return json_response(
            {"success": False, "error": "Not found", "path": request.path}, status=404
        )
    except web.HTTPException:
        raise
    except ValueError as e:
        return json_response({"success": False, "error": str(e)}, status=400)
    except Exception:
        logger.exception(f"Unhandled error for {request.method} {request.path}")
        return json_response(
            {"success": False, "error": "Internal server error"}, status=500
        )


async def health(request: web.Request) -> web.Response:
    """Health check with database statistics."""
    try:
        stats = await request.app[REPOSITORY_KEY].get_statistics()
    except Exception as e:
        logger.error(f"Health check failed: {e}")
        return json_response({"status": "unhealthy", "error": str(e)}, status=500)

    return json_response({
        "status": "healthy",
        "timestamp": _now(),
        "database": {"connected": True, **stats},
    })


async def list_invoices(request: web.Request) -> web.Response:
    settings = request.app[SETTINGS_KEY]
    filters = InvoiceFilters.from_query(
        request.query,
        default_limit=settings.default_limit,
        max_limit=settings.max_limit,
    )
    result = await request.app[QUERY_SERVICE_KEY].list_invoices(filters)

    return json_response({"success": True, **result, "timestamp": _now()})


async def statistics(request: web.Request) -> web.Response:
    year_param = request.query.get("year")
    year: Optional[int] = None
    if year_param:
        try:
            year = int(year_param)
        except ValueError:
            raise ValueError(f"Invalid integer for year: {year_param!r}") from None

    stats = await request.app[QUERY_SERVICE_KEY].get_statistics(year)

    return json_response({
        "success": True,
        "data": stats,
        "year": year if year is not None else "all",
        "timestamp": _now(),
    })


def _distinct_handler(kind: str) -> Handler:
    async def handler(request: web.Request) -> web.Response:
        values = await request.app[QUERY_SERVICE_KEY].list_distinct(kind)
        return json_response({
            "success": True,
            "data": values,
            "count": len(values),
            "timestamp": _now(),
        })
    return handler


def create_app(
    query_service: InvoiceQueryService,
    repository: InvoiceRepository,
    settings: Optional[ApiSettings] = None
) -> web.Application:
    """
    Build the aiohttp application.

    Args:
        query_service: Read query service
        repository: Invoice repository used for health statistics
        settings: API settings (pagination limits)
    """
    app = web.Application(middlewares=[request_logging_middleware, error_middleware])
    app[QUERY_SERVICE_KEY] = query_service
    app[REPOSITORY_KEY] = repository
    app[SETTINGS_KEY] = settings or ApiSettings()

    app.router.add_get("/api/health", health)
    app.router.add_get("/api/procurement/invoices", list_invoices)
    app.router.add_get("/api/procurement/stats", statistics)
    app.router.add_get("/api/procurement/categories", _distinct_handler("categories"))
    app.router.add_get("/api/procurement/cities", _distinct_handler("cities"))
    app.router.add_get("/api/procurement/units", _distinct_handler("units"))

    return app

import logging
from typing import Callable, Optional

import httpx
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, Response
from starlette.exceptions import HTTPException as StarletteHTTPException

from api import deals as deals_routes
from api import payments as payment_routes
from booking_schemas import Booking
from config import Settings, configure_logging, load_settings
from deals.cache import DealCache, DealSource
from deals.sources import AmadeusDealSource, MinPriceDealService
from errors import BookingError
from payments.channels import default_adapters
from payments.checkout import StripeCheckout
from payments.fx import CurrencyConverter
from payments.txn_ids import TransactionIdGenerator
from persistence.crud import BookingRecordStore, DealRecordStore
from persistence.db import init_db, make_engine, make_session_factory
from txn_manager import BookingOrchestrator
from webhooks import webhooks as webhook_routes

logger = logging.getLogger(__name__)

CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Headers": "authorization, x-client-info, apikey, content-type",
}


def _json(status_code: int, content) -> JSONResponse:
    return JSONResponse(status_code=status_code, content=content, headers=CORS_HEADERS)


def _describe(errors) -> str:
    parts = []
    for err in errors:
        loc = ".".join(str(p) for p in err.get("loc", ()) if p != "body")
        parts.append(f"{loc}: {err.get('msg')}" if loc else str(err.get("msg")))
    return "; ".join(parts)


def register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(BookingError)
    async def booking_error_handler(request: Request, exc: BookingError) -> JSONResponse:
        if exc.status_code >= 500:
            logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
        return _json(exc.status_code, exc.to_dict())

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
        return _json(400, {"error": "Missing required fields", "details": _describe(exc.errors())})

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
        message = exc.detail if isinstance(exc.detail, str) else "HTTP error"
        return _json(exc.status_code, {"error": message})


def create_app(
    settings: Optional[Settings] = None,
    *,
    live_deals: Optional[DealSource] = None,
    fx_http: Optional[httpx.Client] = None,
    on_confirmed: Optional[Callable[[Booking], None]] = None,
) -> FastAPI:
    """
    Wire settings, storage and services into a FastAPI app.
    Services hang off `app.state` and reach the routes through dependencies.
    """
    settings = settings or load_settings()
    configure_logging(settings.log_level)

    engine = make_engine(settings.database_url)
    init_db(engine)
    sessions = make_session_factory(engine)

    store = BookingRecordStore(sessions)
    orchestrator = BookingOrchestrator(
        store,
        default_adapters(settings),
        TransactionIdGenerator(),
        settings,
        checkout=StripeCheckout(settings),
        on_confirmed=on_confirmed,
    )
    deal_service = MinPriceDealService(DealRecordStore(sessions), live_deals or AmadeusDealSource(settings))

    app = FastAPI(title="Booking payments")
    app.state.settings = settings
    app.state.booking_store = store
    app.state.orchestrator = orchestrator
    app.state.deal_cache = DealCache(deal_service, ttl=settings.deals_cache_ttl)
    app.state.converter = CurrencyConverter(settings, http=fx_http)

    @app.middleware("http")
    async def cors_and_errors(request: Request, call_next):
        if request.method == "OPTIONS":
            return Response(status_code=200, headers=CORS_HEADERS)
        try:
            response = await call_next(request)
        except Exception:
            logger.exception("Unhandled error on %s %s", request.method, request.url.path)
            return _json(500, {"error": "Internal server error"})
        response.headers.update(CORS_HEADERS)
        return response

    register_exception_handlers(app)
    app.include_router(payment_routes.router)
    app.include_router(deals_routes.router)
    app.include_router(webhook_routes.router)
    return app

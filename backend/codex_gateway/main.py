from contextlib import asynccontextmanager
from typing import Optional

import sentry_sdk
import structlog
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import JSONResponse
from fastapi.routing import APIRoute
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.middleware.cors import CORSMiddleware

from codex_gateway import __version__
from codex_gateway.agent.loop import make_agent_factory
from codex_gateway.api.main import api_router
from codex_gateway.core.config import Settings, settings as default_settings
from codex_gateway.core.logging import configure_logging
from codex_gateway.middleware.request_id import RequestIdMiddleware
from codex_gateway.observability import MetricsMiddleware, metrics_router
from codex_gateway.providers.openai_provider import OpenAIProvider
from codex_gateway.services.gateway import SessionGateway
from codex_gateway.services.model_cache import ModelCache, ProviderCredentials
from codex_gateway.services.router import ProviderRouter

logger = structlog.get_logger()


def custom_generate_unique_id(route: APIRoute) -> str:
    return f"{route.tags[0]}-{route.name}"


async def validate_model(app: FastAPI, settings: Settings) -> None:
    provider, _ = app.state.providers.resolve(settings.MODEL)
    # the model list comes from the OpenAI credential; other backends are not checked
    if not isinstance(provider, OpenAIProvider):
        return
    credentials = ProviderCredentials.from_settings(settings)
    if not await app.state.model_cache.is_model_supported(settings.MODEL, credentials):
        logger.error("configured_model_unsupported", model=settings.MODEL)


def build_lifespan(settings: Settings):
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        providers = ProviderRouter(settings)
        model_cache = ModelCache(timeout=settings.MODEL_LIST_TIMEOUT_SECONDS)
        model_cache.preload_models(ProviderCredentials.from_settings(settings))
        app.state.providers = providers
        app.state.model_cache = model_cache
        app.state.gateway = SessionGateway(
            make_agent_factory(providers, settings.WORKDIR, settings.AGENT_MAX_ITERATIONS),
            model=settings.MODEL,
            instructions=settings.INSTRUCTIONS,
        )
        await validate_model(app, settings)
        logger.info(
            "server_started",
            host=settings.HOST,
            port=settings.PORT,
            model=settings.MODEL,
            mode="read-only",
        )
        yield
        app.state.gateway.shutdown()
        logger.info("server_stopped")

    return lifespan


async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    # routing misses (unknown path, wrong method) carry the bare status phrase
    if exc.status_code == 405 or (exc.status_code == 404 and exc.detail == "Not Found"):
        return JSONResponse(status_code=404, content={"error": "Not found"})
    return JSONResponse(status_code=exc.status_code, content={"error": str(exc.detail)})


def jsonable_errors(exc: RequestValidationError):
    return [
        {"loc": list(err.get("loc", ())), "msg": err.get("msg", ""), "type": err.get("type", "")}
        for err in exc.errors()
    ]


async def validation_exception_handler(request: Request, exc: RequestValidationError):
    return JSONResponse(
        status_code=400,
        content={"error": "Invalid request body", "details": jsonable_errors(exc)},
    )


async def unhandled_exception_handler(request: Request, exc: Exception):
    logger.exception("unhandled_error", path=request.url.path)
    return JSONResponse(status_code=500, content={"error": "Internal server error"})


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    settings = settings or default_settings
    configure_logging(settings)

    if settings.SENTRY_DSN and settings.ENVIRONMENT != "local":
        sentry_sdk.init(dsn=str(settings.SENTRY_DSN), enable_tracing=True)

    app = FastAPI(
        title=settings.PROJECT_NAME,
        version=__version__,
        openapi_url=f"{settings.API_V1_STR}/openapi.json",
        generate_unique_id_function=custom_generate_unique_id,
        lifespan=build_lifespan(settings),
    )

    app.add_middleware(RequestIdMiddleware)
    app.add_middleware(MetricsMiddleware)
    app.add_middleware(GZipMiddleware, minimum_size=512)

    # Set all CORS enabled origins
    if settings.all_cors_origins:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=settings.all_cors_origins,
            allow_methods=["GET", "POST", "DELETE", "OPTIONS"],
            allow_headers=["Content-Type"],
        )

    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)

    app.include_router(api_router, prefix=settings.API_V1_STR)
    app.include_router(metrics_router)
    return app


app = create_app()

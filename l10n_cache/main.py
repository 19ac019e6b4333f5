"""
Localization cache - FastAPI application
Serves Tolgee translations out of Redis / S3, refreshed by webhook
"""
import logging
import time
from contextlib import asynccontextmanager
from typing import Optional, Tuple

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse, PlainTextResponse, Response
from starlette.concurrency import run_in_threadpool

from config.settings import Settings, settings as default_settings
from l10n_cache.cache import EMPTY_PAYLOAD, Deadline, OutputMode
from l10n_cache.cache.manager import CacheOrchestrator
from l10n_cache.deps import build_orchestrator
from l10n_cache.errors import SignatureInvalid
from l10n_cache.languages import (
    available_languages,
    find_lang,
    parse_accept_language,
    pick_language,
)
from l10n_cache.webhook import SIGNATURE_HEADER, require_valid_signature

APP_NAME = "l10n-cache"
APP_VERSION = "0.3.0"

JSON_MEDIA_TYPE = "application/json; charset=utf-8"
CATCH_ALL_METHODS = ["GET", "POST", "PUT", "PATCH", "DELETE"]

logger = logging.getLogger("api")


def parse_bool(raw: Optional[str], default: bool = False) -> bool:
    """Lenient boolean query flag ("1", "t", "true", "yes" ...)."""
    if raw is None or raw == "":
        return default
    value = raw.strip().lower()
    if value in ("1", "t", "true", "yes", "y", "on"):
        return True
    if value in ("0", "f", "false", "no", "n", "off"):
        return False
    return default


def create_app(
    orchestrator: Optional[CacheOrchestrator] = None,
    settings: Settings = default_settings,
) -> FastAPI:
    """
    Build the application.

    When no orchestrator is given one is built from settings at startup,
    warmed up, and shut down with the app.
    """
    app_key = settings.tolgee_app_key.strip()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        owned = app.state.orchestrator is None
        if owned:
            app.state.orchestrator = build_orchestrator(settings)
        if not app_key:
            logger.error("TOLGEE_APP_KEY is not set; every lookup will return an empty payload")
        elif settings.warmup_on_startup:
            logger.info(f"[startup] warmup: fetching languages and translations for app={app_key}")
            summary = await run_in_threadpool(app.state.orchestrator.prime, app_key)
            logger.info(f"[startup] warmup done refreshed={summary.refreshed} failures={len(summary.failures)}")
        yield
        if owned:
            app.state.orchestrator.shutdown()

    app = FastAPI(
        title=APP_NAME,
        description="Read-through cache in front of Tolgee",
        version=APP_VERSION,
        lifespan=lifespan,
    )
    app.state.orchestrator = orchestrator

    def request_deadline() -> Deadline:
        return Deadline(settings.request_timeout_seconds)

    def negotiate_language(request: Request, requested: str, deadline: Deadline) -> Tuple[str, str]:
        """
        Pick the language to serve.

        Requested tag if available, else Accept-Language match, else the
        default. Returns (tag, default tag), both spelled as in the
        language list so they hit the keys a rebuild wrote.
        """
        orch: CacheOrchestrator = request.app.state.orchestrator
        available = available_languages(orch.get_languages(app_key, deadline=deadline))
        default_tag = find_lang(available, settings.default_language) or settings.default_language

        target = find_lang(available, requested)
        if target:
            return target, default_tag

        preferred = parse_accept_language(request.headers.get("accept-language"))
        fallback = pick_language(preferred, available) or default_tag
        if requested:
            logger.info(f"[api][translations] fallback target={fallback} (requested={requested!r} available={available})")
        return fallback, default_tag

    def translations_response(
        request: Request,
        lang: str,
        default_tag: str,
        mode: OutputMode,
        status_code: int,
        deadline: Deadline,
    ) -> Response:
        orch: CacheOrchestrator = request.app.state.orchestrator
        try:
            data, served = orch.get_translations(app_key, lang, mode, default_lang=default_tag, deadline=deadline)
        except ValueError as e:
            logger.warning(f"[api][translations] no usable cache key for lang={lang!r}: {e}")
            data, served = EMPTY_PAYLOAD, default_tag
        return Response(
            content=data,
            status_code=status_code,
            media_type=JSON_MEDIA_TYPE,
            headers={"Content-Language": served},
        )

    @app.middleware("http")
    async def server_timing(request: Request, call_next):
        start = time.perf_counter()
        response = await call_next(request)
        duration_ms = int((time.perf_counter() - start) * 1000)
        response.headers.append("Server-Timing", f"app;dur={duration_ms}ms")
        return response

    @app.exception_handler(SignatureInvalid)
    async def signature_invalid_handler(request: Request, exc: SignatureInvalid):
        logger.warning(f"[webhook] reject: {exc}")
        return JSONResponse(status_code=401, content={"error": "invalid webhook signature"})

    @app.get("/api/healthz")
    def healthz():
        """Health check endpoint."""
        return PlainTextResponse("ok")

    @app.get("/cache/stats")
    def cache_stats(request: Request):
        """Get cache statistics."""
        return request.app.state.orchestrator.get_stats()

    @app.api_route("/api/update", methods=["GET", "POST", "PUT"])
    async def update(request: Request):
        """
        Tolgee webhook: verify the signature, then force-refresh every
        language in both output modes.
        """
        body = await request.body()
        require_valid_signature(
            settings.webhook_secret,
            request.headers.get(SIGNATURE_HEADER),
            body,
            tolerance_seconds=settings.webhook_window_seconds,
        )
        logger.info(f"[webhook] accepted -> refresh app={app_key}")
        summary = await run_in_threadpool(request.app.state.orchestrator.rebuild, app_key)
        return JSONResponse(status_code=200, content=summary.to_dict())

    @app.get("/api/languages")
    def languages(request: Request):
        """Cached Tolgee language list."""
        data = request.app.state.orchestrator.get_languages(app_key, deadline=request_deadline())
        return Response(content=data, media_type=JSON_MEDIA_TYPE)

    @app.get("/api/{lang}")
    def translations(request: Request, lang: str, nested: Optional[str] = None):
        """Translations for one language, flat unless ?nested=true."""
        mode = OutputMode.from_nested(parse_bool(nested))
        deadline = request_deadline()
        target, default_tag = negotiate_language(request, lang, deadline)
        return translations_response(request, target, default_tag, mode, status_code=200, deadline=deadline)

    @app.api_route("/{path:path}", methods=CATCH_ALL_METHODS)
    def not_found(request: Request, path: str):
        """Unknown path: 404 carrying the best-matching flat translations."""
        deadline = request_deadline()
        target, default_tag = negotiate_language(request, "", deadline)
        logger.info(f"[api][fallback] 404 path=/{path} -> lang={target}")
        return translations_response(request, target, default_tag, OutputMode.FLAT, status_code=404, deadline=deadline)

    return app


logging.basicConfig(level=default_settings.log_level)

app = create_app()

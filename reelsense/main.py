"""Entry point for the FastAPI-powered recommendation service."""

from __future__ import annotations

import json
import logging
from contextlib import AsyncExitStack, asynccontextmanager
from typing import Any

import httpx
from fastapi import FastAPI, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ValidationError

from .config import MAX_RECOMMENDATIONS, settings
from .database import Database
from .models import AccountLink, ConsumptionRequest, ContentType, SaveRequest
from .services.recommender import RecommendationService
from .services.repository import SignalRepository
from .services.tmdb import TMDBClient

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

app: FastAPI

ACCESS_TOKEN_HEADER = "x-tmdb-access-token"
ACCOUNT_ID_HEADER = "x-tmdb-account-id"


@asynccontextmanager
async def lifespan(_: FastAPI):
    exit_stack = AsyncExitStack()
    tmdb_http_client = await exit_stack.enter_async_context(
        httpx.AsyncClient(
            base_url=str(settings.tmdb_api_url),
            timeout=httpx.Timeout(15.0, connect=5.0),
        )
    )
    database = Database(settings.database_url)
    await database.create_all()

    catalog = TMDBClient(settings, tmdb_http_client)
    service = RecommendationService(
        settings, catalog, SignalRepository(database.session_factory)
    )

    app.state.recommendation_service = service
    app.state.database = database
    logger.info(
        "Recommendation service ready (database %s)",
        database.engine.url.render_as_string(hide_password=True),
    )

    try:
        yield
    finally:  # pragma: no cover - teardown path exercised at runtime
        await database.dispose()
        await exit_stack.aclose()


def create_app() -> FastAPI:
    fastapi_app = FastAPI(
        title=settings.app_name,
        description="Personalized movie and series recommendations from viewing signals",
        version="1.0.0",
        lifespan=lifespan,
    )

    fastapi_app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["GET", "POST", "DELETE"],
        allow_headers=["*"],
    )

    register_routes(fastapi_app)
    return fastapi_app


def get_recommendation_service(app: FastAPI) -> RecommendationService:
    service = getattr(app.state, "recommendation_service", None)
    if not isinstance(service, RecommendationService):
        raise RuntimeError("Recommendation service not initialised")
    return service


def _account_from_headers(request: Request) -> AccountLink | None:
    token = (request.headers.get(ACCESS_TOKEN_HEADER) or "").strip()
    account_id = (request.headers.get(ACCOUNT_ID_HEADER) or "").strip()
    if token and account_id:
        return AccountLink(access_token=token, account_id=account_id)
    return None


async def _parse_body(request: Request, model: type[BaseModel]) -> Any:
    try:
        payload = await request.json()
    except json.JSONDecodeError as exc:
        raise HTTPException(status_code=400, detail="Invalid JSON payload") from exc
    if not isinstance(payload, dict):
        raise HTTPException(status_code=400, detail="Invalid payload")
    try:
        return model.model_validate(payload)
    except ValidationError as exc:
        raise HTTPException(
            status_code=400, detail=exc.errors(include_context=False, include_url=False)
        ) from exc


def _parse_content_type(value: str) -> ContentType:
    if value == "movie":
        return "movie"
    if value == "series":
        return "series"
    raise HTTPException(status_code=400, detail="Unsupported content type")


def _write_response(success: bool) -> JSONResponse:
    if not success:
        return JSONResponse(
            {"success": False, "detail": "Signal storage is unavailable, retry later."},
            status_code=503,
        )
    return JSONResponse({"success": True})


def register_routes(fastapi_app: FastAPI) -> None:
    @fastapi_app.get("/healthz")
    async def healthcheck() -> dict[str, str]:
        return {"status": "ok"}

    @fastapi_app.get("/users/{user_id}/recommendations")
    async def recommendations(
        request: Request,
        user_id: str,
        limit: int | None = Query(default=None, ge=1, le=MAX_RECOMMENDATIONS),
    ) -> JSONResponse:
        service = get_recommendation_service(fastapi_app)
        report = await service.recommend(
            user_id, limit, account=_account_from_headers(request)
        )
        return JSONResponse(report.model_dump(mode="json"))

    @fastapi_app.get("/users/{user_id}/stats")
    async def stats(user_id: str) -> JSONResponse:
        service = get_recommendation_service(fastapi_app)
        summary = await service.get_stats(user_id)
        return JSONResponse(summary.model_dump(mode="json"))

    @fastapi_app.get("/users/{user_id}/history")
    async def list_history(user_id: str) -> JSONResponse:
        store = get_recommendation_service(fastapi_app).store_for(user_id)
        records = await store.list_consumption()
        return JSONResponse(
            {"items": [record.model_dump(mode="json") for record in records]}
        )

    @fastapi_app.post("/users/{user_id}/history")
    async def record_history(request: Request, user_id: str) -> JSONResponse:
        body: ConsumptionRequest = await _parse_body(request, ConsumptionRequest)
        store = get_recommendation_service(fastapi_app).store_for(user_id)
        success = await store.record_consumption(
            body.item, user_rating=body.user_rating, completion_pct=body.completion_pct
        )
        return _write_response(success)

    @fastapi_app.get("/users/{user_id}/watchlist")
    async def list_watchlist(user_id: str) -> JSONResponse:
        store = get_recommendation_service(fastapi_app).store_for(user_id)
        items = await store.list_saved()
        return JSONResponse({"items": [item.model_dump(mode="json") for item in items]})

    @fastapi_app.post("/users/{user_id}/watchlist")
    async def add_to_watchlist(request: Request, user_id: str) -> JSONResponse:
        body: SaveRequest = await _parse_body(request, SaveRequest)
        store = get_recommendation_service(fastapi_app).store_for(user_id)
        return _write_response(await store.record_saved(body.item, priority=body.priority))

    @fastapi_app.get("/users/{user_id}/watchlist/{content_type}/{content_id}")
    async def watchlist_status(
        user_id: str, content_type: str, content_id: int
    ) -> dict[str, bool]:
        resolved_type = _parse_content_type(content_type)
        store = get_recommendation_service(fastapi_app).store_for(user_id)
        return {"saved": await store.is_saved(content_id, resolved_type)}

    @fastapi_app.delete("/users/{user_id}/watchlist/{content_type}/{content_id}")
    async def remove_from_watchlist(
        user_id: str, content_type: str, content_id: int
    ) -> JSONResponse:
        resolved_type = _parse_content_type(content_type)
        store = get_recommendation_service(fastapi_app).store_for(user_id)
        return _write_response(await store.remove_saved(content_id, resolved_type))

    @fastapi_app.delete("/users/{user_id}/signals")
    async def clear_signals(user_id: str) -> JSONResponse:
        store = get_recommendation_service(fastapi_app).store_for(user_id)
        return _write_response(await store.clear_all())


app = create_app()

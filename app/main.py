"""Entry point for the FastAPI-powered Top Picks service."""

from __future__ import annotations

import json
import logging
from contextlib import AsyncExitStack, asynccontextmanager
from typing import Any

import httpx
from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ValidationError

from .config import settings
from .database import Database
from .models import MEDIA_TYPES, PreviewCountsParams, PreviewRequest
from .services.config_store import TopPicksConfigStore
from .services.library import LibraryRepository
from .services.mdblist import MDBListClient
from .services.popularity import PopularityService
from .services.telemetry import TelemetryRepository
from .services.tmdb import TMDBClient

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

app: FastAPI


@asynccontextmanager
async def lifespan(fastapi_app: FastAPI):
    exit_stack = AsyncExitStack()
    tmdb_http_client = await exit_stack.enter_async_context(
        httpx.AsyncClient(
            base_url=str(settings.tmdb_api_url),
            timeout=httpx.Timeout(20.0, connect=10.0),
        )
    )
    mdblist_http_client = await exit_stack.enter_async_context(
        httpx.AsyncClient(
            base_url=str(settings.mdblist_api_url),
            timeout=httpx.Timeout(30.0, connect=10.0),
        )
    )
    database = Database(settings.database_url)
    await database.create_all()

    popularity_service = PopularityService(
        TopPicksConfigStore(database.session_factory),
        TelemetryRepository(database.session_factory),
        LibraryRepository(database.session_factory),
        TMDBClient(settings, tmdb_http_client),
        MDBListClient(settings, mdblist_http_client),
    )
    if not settings.tmdb_configured:
        logger.warning("TMDB_API_KEY is not set, TMDB sources will return no items")
    if not settings.mdblist_configured:
        logger.warning("MDBLIST_API_KEY is not set, MDBList sources will return no items")

    fastapi_app.state.popularity_service = popularity_service
    fastapi_app.state.database = database

    try:
        yield
    finally:  # pragma: no cover - teardown path exercised at runtime
        await database.dispose()
        await exit_stack.aclose()


def create_app() -> FastAPI:
    fastapi_app = FastAPI(
        title=settings.app_name,
        description="Top Picks rankings from local viewing history, TMDB and MDBList",
        version="1.0.0",
        lifespan=lifespan,
    )

    fastapi_app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["GET", "POST", "PUT"],
        allow_headers=["*"],
    )

    register_routes(fastapi_app)
    return fastapi_app


def get_popularity_service(app: FastAPI) -> PopularityService:
    service = getattr(app.state, "popularity_service", None)
    if not isinstance(service, PopularityService):
        raise RuntimeError("Popularity service not initialised")
    return service


def _dump(value: BaseModel | list[BaseModel]) -> Any:
    if isinstance(value, list):
        return [item.model_dump(mode="json", by_alias=True) for item in value]
    return value.model_dump(mode="json", by_alias=True)


def _validation_detail(exc: ValidationError) -> list[dict[str, Any]]:
    return exc.errors(include_url=False, include_context=False)


async def _read_json_object(request: Request) -> dict[str, Any]:
    body = await request.body()
    if not body:
        return {}
    try:
        payload = json.loads(body)
    except json.JSONDecodeError as exc:
        raise HTTPException(status_code=400, detail="Invalid JSON payload") from exc
    if not isinstance(payload, dict):
        raise HTTPException(status_code=400, detail="Invalid payload")
    return payload


def _check_media_type(media_type: str) -> str:
    if media_type not in MEDIA_TYPES:
        raise HTTPException(status_code=404, detail=f"Unknown media type: {media_type}")
    return media_type


def register_routes(fastapi_app: FastAPI) -> None:
    @fastapi_app.exception_handler(httpx.HTTPError)
    async def upstream_error_handler(_: Request, exc: httpx.HTTPError) -> JSONResponse:
        logger.warning("Upstream provider request failed: %s", exc)
        return JSONResponse(
            status_code=502,
            content={"error": "upstream_error", "description": str(exc)},
        )

    async def _ranking(media_type: str, overrides: dict[str, Any] | None) -> JSONResponse:
        service = get_popularity_service(fastapi_app)
        try:
            if media_type == "movies":
                results = await service.get_top_movies(overrides)
            else:
                results = await service.get_top_series(overrides)
        except ValidationError as exc:
            raise HTTPException(status_code=400, detail=_validation_detail(exc)) from exc
        return JSONResponse(_dump(results))

    @fastapi_app.get("/healthz")
    async def healthcheck() -> dict[str, str]:
        return {"status": "ok"}

    @fastapi_app.get("/api/top-picks")
    async def top_picks() -> JSONResponse:
        service = get_popularity_service(fastapi_app)
        return JSONResponse(_dump(await service.get_top_picks()))

    @fastapi_app.get("/api/top-picks/config")
    async def top_picks_config() -> JSONResponse:
        service = get_popularity_service(fastapi_app)
        return JSONResponse(_dump(await service.get_config()))

    @fastapi_app.put("/api/top-picks/config")
    async def update_top_picks_config(request: Request) -> JSONResponse:
        service = get_popularity_service(fastapi_app)
        changes = await _read_json_object(request)
        try:
            config = await service.save_config(changes)
        except ValidationError as exc:
            raise HTTPException(status_code=400, detail=_validation_detail(exc)) from exc
        return JSONResponse(_dump(config))

    @fastapi_app.post("/api/top-picks/preview-counts")
    async def preview_counts(request: Request) -> JSONResponse:
        service = get_popularity_service(fastapi_app)
        payload = await _read_json_object(request)
        try:
            params = PreviewCountsParams.model_validate(payload)
        except ValidationError as exc:
            raise HTTPException(status_code=400, detail=_validation_detail(exc)) from exc
        return JSONResponse(_dump(await service.get_preview_counts(params)))

    @fastapi_app.get("/api/top-picks/{media_type}")
    async def top_picks_for_media(media_type: str) -> JSONResponse:
        return await _ranking(_check_media_type(media_type), None)

    @fastapi_app.post("/api/top-picks/{media_type}")
    async def top_picks_with_overrides(media_type: str, request: Request) -> JSONResponse:
        media_type = _check_media_type(media_type)
        overrides = await _read_json_object(request)
        return await _ranking(media_type, overrides)

    @fastapi_app.post("/api/top-picks/{media_type}/preview")
    async def top_picks_preview(media_type: str, request: Request) -> JSONResponse:
        media_type = _check_media_type(media_type)
        service = get_popularity_service(fastapi_app)
        payload = await _read_json_object(request)
        try:
            preview_request = PreviewRequest.model_validate(payload)
        except ValidationError as exc:
            raise HTTPException(status_code=400, detail=_validation_detail(exc)) from exc

        if media_type == "movies":
            result = await service.get_top_movies_preview(
                preview_request.source, preview_request
            )
        else:
            result = await service.get_top_series_preview(
                preview_request.source, preview_request
            )
        return JSONResponse(_dump(result))


app = create_app()


if __name__ == "__main__":  # pragma: no cover - manual execution
    import uvicorn

    uvicorn.run(
        "app.main:app",
        host=settings.server_host,
        port=settings.server_port,
        reload=settings.environment == "development",
    )

from __future__ import annotations

from contextlib import asynccontextmanager

import httpx
from fastapi import Depends, FastAPI, Request
from fastapi.responses import JSONResponse, StreamingResponse
from loguru import logger
from starlette.background import BackgroundTask

from ev_advisor.config import SETTINGS, Settings
from ev_advisor.dify import DifyClient
from ev_advisor.forms import build_chat_payload, normalize_parameters

MISSING_KEY_ERROR = "DIFY_EV_AGENT environment variable is not set"


@asynccontextmanager
async def lifespan(app: FastAPI):
    app.state.http = httpx.AsyncClient(timeout=httpx.Timeout(SETTINGS.request_timeout, connect=10.0))
    try:
        yield
    finally:
        await app.state.http.aclose()


app = FastAPI(title="EV Advisor Chat Proxy", version="0.1", lifespan=lifespan)


def get_settings() -> Settings:
    return SETTINGS


def get_dify(request: Request, settings: Settings = Depends(get_settings)) -> DifyClient:
    return DifyClient.from_settings(settings, request.app.state.http)


def _error(status: int, error: str, details: str = "") -> JSONResponse:
    body = {"error": error}
    if details:
        body["details"] = details
    return JSONResponse(body, status_code=status)


@app.post("/api/dify/chat-messages")
async def chat_messages(
    request: Request,
    settings: Settings = Depends(get_settings),
    dify: DifyClient = Depends(get_dify),
):
    """
    Forward one chat turn to the agent and pass its SSE stream through untouched.
    """
    if not settings.dify_api_key:
        return _error(500, MISSING_KEY_ERROR)

    try:
        body = await request.json()
    except ValueError:
        return _error(400, "Invalid JSON request body")

    try:
        payload = build_chat_payload(body)
    except ValueError as e:
        return _error(400, str(e))

    try:
        upstream = await dify.open_chat_stream(payload.model_dump())
    except httpx.HTTPError as e:
        logger.error("chat-messages upstream request failed: {}", e)
        return _error(500, "Unexpected error while requesting Dify chat-messages", str(e) or "UNKNOWN_ERROR")

    if not upstream.is_success:
        details = (await upstream.aread()).decode("utf-8", errors="replace")
        await upstream.aclose()
        logger.error("chat-messages upstream returned {}", upstream.status_code)
        return _error(upstream.status_code, "Failed to request Dify chat-messages", details[:1000])

    return StreamingResponse(
        upstream.aiter_bytes(),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache, no-transform", "Connection": "keep-alive"},
        background=BackgroundTask(upstream.aclose),
    )


@app.get("/api/dify/parameters")
async def parameters(
    settings: Settings = Depends(get_settings),
    dify: DifyClient = Depends(get_dify),
):
    """Agent input form + opening statement, normalized for the front end."""
    if not settings.dify_api_key:
        return _error(500, MISSING_KEY_ERROR)

    try:
        upstream = await dify.get_parameters()
    except httpx.HTTPError as e:
        logger.error("parameters upstream request failed: {}", e)
        return _error(500, "Unexpected error while requesting Dify parameters", str(e) or "UNKNOWN_ERROR")

    if not upstream.is_success:
        logger.error("parameters upstream returned {}", upstream.status_code)
        return _error(upstream.status_code, "Failed to fetch Dify parameters", upstream.text[:500])

    try:
        payload = upstream.json()
    except ValueError as e:
        return _error(502, "Unexpected error while requesting Dify parameters", str(e))

    result = normalize_parameters(payload)
    return JSONResponse(
        {
            "userInputForm": [f.model_dump(by_alias=True, exclude_none=True) for f in result.user_input_form],
            "openingStatement": result.opening_statement,
        }
    )

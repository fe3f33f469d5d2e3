from __future__ import annotations

import logging
import os
from typing import Any, Dict, Optional

import httpx
from fastapi import FastAPI, HTTPException
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import JSONResponse, Response
from pydantic import BaseModel, Field

from stride_analyzer.agents.orchestrator import Orchestrator
from stride_analyzer.clients.errors import (
    ExhaustedRetries,
    PipelineError,
    RemoteCallError,
    RemoteServiceFault,
)
from stride_analyzer.clients.llm_factory import build_llm_client
from stride_analyzer.telemetry import init_telemetry
from stride_analyzer.utils.config import load_settings

logger = logging.getLogger(__name__)

app = FastAPI(title="STRIDE Threat Analysis")
_ORCHESTRATOR: Optional[Orchestrator] = None


class AnalyzeSecurityRequest(BaseModel):
    text: Optional[str] = Field(None, description="Architecture description to analyze")


class ProcessTextRequest(BaseModel):
    text: Optional[str] = Field(None, description="Text to split into chunks")
    query: Optional[str] = Field(None, description="Rank chunks against this query")


def _settings_path() -> str:
    return os.environ.get("STRIDE_SETTINGS", "config/settings.yaml")


def set_orchestrator(orchestrator: Optional[Orchestrator]) -> None:
    global _ORCHESTRATOR
    _ORCHESTRATOR = orchestrator


def get_orchestrator() -> Orchestrator:
    global _ORCHESTRATOR
    if _ORCHESTRATOR is None:
        settings = load_settings(_settings_path())
        init_telemetry(settings)
        _ORCHESTRATOR = Orchestrator(settings, llm_client=build_llm_client(settings))
    return _ORCHESTRATOR


def _remote_error(exc: RemoteCallError, message: str, stage: Optional[str] = None) -> HTTPException:
    detail: Dict[str, Any] = {"error": message}
    if stage:
        detail["stage"] = stage
    if isinstance(exc, ExhaustedRetries):
        return HTTPException(status_code=429, detail={**detail, "details": str(exc)})
    if isinstance(exc, RemoteServiceFault):
        return HTTPException(
            status_code=exc.status_code or 502,
            detail={**detail, "details": exc.detail if exc.detail is not None else str(exc)},
        )
    return HTTPException(status_code=500, detail={**detail, "details": str(exc)})


@app.get("/healthz")
def healthz() -> Dict[str, Any]:
    orchestrator = get_orchestrator()
    return {"status": "ok", "llm_configured": orchestrator.llm_client is not None}


@app.post("/api/analyze-security")
async def analyze_security(payload: AnalyzeSecurityRequest):
    if not payload.text or not payload.text.strip():
        raise HTTPException(status_code=400, detail={"error": "Text is required"})
    orchestrator = get_orchestrator()
    if orchestrator.llm_client is None:
        raise HTTPException(status_code=503, detail={"error": "LLM client is not configured"})
    try:
        outcome = await run_in_threadpool(orchestrator.analyze_security, payload.text)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail={"error": str(exc)}) from exc
    except PipelineError as exc:
        logger.error("Security analysis failed in %s: %s", exc.stage, exc.cause)
        if isinstance(exc.cause, RemoteCallError):
            raise _remote_error(exc.cause, "Failed to process security analysis", stage=exc.stage) from exc
        raise HTTPException(status_code=500, detail={"error": str(exc), "stage": exc.stage}) from exc
    return outcome.to_response()


@app.post("/api/process-text")
async def process_text(payload: ProcessTextRequest):
    if not payload.text:
        raise HTTPException(status_code=400, detail={"error": "Text is required"})
    orchestrator = get_orchestrator()
    return await run_in_threadpool(orchestrator.process_text, payload.text, payload.query)


def _paced_call(orchestrator: Orchestrator, payload: Dict[str, Any]) -> httpx.Response:
    with orchestrator.pacer.slot():
        return orchestrator.llm_client.call(payload)


@app.post("/api/openai")
async def openai_passthrough(payload: Dict[str, Any]):
    orchestrator = get_orchestrator()
    if orchestrator.llm_client is None:
        raise HTTPException(status_code=503, detail={"error": "LLM client is not configured"})
    try:
        response = await run_in_threadpool(_paced_call, orchestrator, payload)
    except RemoteCallError as exc:
        logger.error("Passthrough request failed: %s", exc)
        raise _remote_error(exc, "Failed to process request") from exc
    try:
        content = response.json()
    except ValueError:
        return Response(
            content=response.content,
            status_code=response.status_code,
            media_type=response.headers.get("content-type"),
        )
    return JSONResponse(status_code=response.status_code, content=content)

from __future__ import annotations

"""
FastAPI surface over the pipeline.

- GET  /health  liveness of this process
- POST /ask     one question -> answer + cited titles

Services are bootstrapped once in the lifespan hook; the resulting Runtime
lives on app.state and is handed to each request.
"""

from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException, Request
from loguru import logger

from .config import AskRequest, AskResponse, HealthResponse
from .errors import EowkitError, GenerationRequestFailed
from .orchestrator import Orchestrator
from .runtime import build_runtime, configure_logging


@asynccontextmanager
async def lifespan(app: FastAPI):
    configure_logging()
    runtime = build_runtime()
    app.state.runtime = runtime
    try:
        yield
    finally:
        runtime.close()
        app.state.runtime = None


app = FastAPI(title="eowkit", version="0.1.0", lifespan=lifespan)


def _orchestrator(request: Request) -> Orchestrator:
    runtime = getattr(request.app.state, "runtime", None)
    if runtime is None:
        raise HTTPException(status_code=503, detail="services are not initialised")
    return runtime.orchestrator


@app.get("/health", response_model=HealthResponse)
def health() -> HealthResponse:
    return HealthResponse(status="healthy")


@app.post("/ask", response_model=AskResponse)
def ask(body: AskRequest, request: Request) -> AskResponse:
    orchestrator = _orchestrator(request)
    try:
        answer = orchestrator.answer(body.question)
    except GenerationRequestFailed as e:
        logger.error("Generation failed for {!r}: {}", body.question, e)
        raise HTTPException(status_code=502, detail=str(e))
    except EowkitError as e:
        logger.exception("Pipeline failed for {!r}", body.question)
        raise HTTPException(status_code=500, detail=str(e))
    return AskResponse(answer=answer.render(), sources=answer.sources, state=answer.state.value)

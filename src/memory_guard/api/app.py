from __future__ import annotations

import time
from typing import Any, Dict, List, Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse, Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from pydantic import BaseModel, Field

from memory_guard import __version__
from memory_guard.core.client import UnifiedClient
from memory_guard.core.registry import BackendRegistry
from memory_guard.errors import BackendError, ConfigurationError
from memory_guard.metrics import LAT, mark
from memory_guard.models.reports import RecallResult


class RetainRequest(BaseModel):
    content: str
    metadata: Dict[str, Any] = Field(default_factory=dict)


class RetainResponse(BaseModel):
    ok: bool
    succeeded: List[str]
    failures: Dict[str, str]


class RecallRequest(BaseModel):
    query: str
    backends: Optional[List[str]] = None
    limit: Optional[int] = Field(default=None, ge=0)
    fallback_on_error: Optional[bool] = None


class SearchRequest(BaseModel):
    query: str
    strategy: Optional[str] = Field(default=None, pattern="^(parallel|cascade)$")
    min_score: Optional[float] = Field(default=None, ge=0.0, le=1.0)
    limit: Optional[int] = Field(default=None, ge=0)
    backends: Optional[List[str]] = None


class ResultOut(BaseModel):
    content: str
    score: float
    source: str
    metadata: Dict[str, Any] = Field(default_factory=dict)


class RecallResponse(BaseModel):
    results: List[ResultOut]
    consulted: List[str]
    failures: Dict[str, str]


class ReflectRequest(BaseModel):
    topic: str


class ReflectResponse(BaseModel):
    insights: List[Any]
    failures: Dict[str, str]


def _failures(f: Dict[str, BackendError]) -> Dict[str, str]:
    return {bid: str(err) for bid, err in f.items()}


def _recall_out(got: RecallResult) -> RecallResponse:
    return RecallResponse(
        results=[ResultOut(**r.to_dict()) for r in got.results],
        consulted=list(got.consulted),
        failures=_failures(got.failures),
    )


def create_app(client: UnifiedClient, registry: BackendRegistry) -> FastAPI:
    app = FastAPI(
        title="memory-guard",
        description="Unified memory operations over every registered backend.",
        version=__version__,
    )

    @app.exception_handler(ConfigurationError)
    async def _bad_config(request: Request, exc: ConfigurationError):
        # e.g. an unknown backend id in the request
        return JSONResponse(status_code=400, content={"detail": str(exc)})

    @app.post("/retain", response_model=RetainResponse)
    async def retain(req: RetainRequest):
        mark("retain")
        t0 = time.perf_counter()
        try:
            try:
                rep = await client.retain(req.content, req.metadata)
            except BackendError as exc:
                # a required backend failed
                return JSONResponse(
                    status_code=502,
                    content={"detail": str(exc), "backend": exc.backend_id},
                )
            return RetainResponse(
                ok=rep.ok, succeeded=list(rep.succeeded), failures=_failures(rep.failures)
            )
        finally:
            LAT.labels(op="api_retain").observe((time.perf_counter() - t0) * 1000.0)

    @app.post("/recall", response_model=RecallResponse)
    async def recall(req: RecallRequest):
        mark("recall")
        t0 = time.perf_counter()
        try:
            got = await client.recall(
                req.query,
                backends=req.backends,
                limit=req.limit,
                fallback_on_error=req.fallback_on_error,
            )
            return _recall_out(got)
        finally:
            LAT.labels(op="api_recall").observe((time.perf_counter() - t0) * 1000.0)

    @app.post("/search", response_model=RecallResponse)
    async def search(req: SearchRequest):
        mark("search")
        got = await client.search(
            req.query,
            strategy=req.strategy,
            min_score=req.min_score,
            limit=req.limit,
            backends=req.backends,
        )
        return _recall_out(got)

    @app.post("/reflect", response_model=ReflectResponse)
    async def reflect(req: ReflectRequest):
        mark("reflect")
        got = await client.reflect(req.topic)
        return ReflectResponse(insights=list(got.insights), failures=_failures(got.failures))

    @app.get("/health")
    async def health():
        rep = await registry.health()
        body = {"status": "ok" if rep.ok else "degraded", "version": __version__}
        body.update(rep.to_dict())
        return JSONResponse(status_code=200 if rep.ok else 503, content=body)

    @app.get("/metrics")
    def metrics():
        return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)

    return app

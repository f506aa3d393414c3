from __future__ import annotations

import time
from typing import List, Optional
from uuid import uuid4

from fastapi import FastAPI, Header, Request, Response
from fastapi.responses import JSONResponse
from prometheus_client import Counter, Histogram, generate_latest
from prometheus_client.exposition import CONTENT_TYPE_LATEST
from pydantic import BaseModel, Field

from dbrecreate.audit.logger import ensure_audit_log_ready, read_audit_logs
from dbrecreate.core.exceptions import RecreateError, ServicesUnavailableError
from dbrecreate.core.interfaces import Services, StaticConfirmation
from dbrecreate.core.logging import log_stdout, set_run_context
from dbrecreate.core.models import AuditRecord, CheckResult, RunSummary
from dbrecreate.core.security import verify_bearer_token
from dbrecreate.core.utils import utc_timestamp
from dbrecreate.orchestrator.workflow import RecreationWorkflow, raise_for_blocked


app = FastAPI(title="Database Recreation Gate", version="1.0.0")

REQUEST_COUNT = Counter(
    "db_recreate_requests_total",
    "Total API requests",
    ["endpoint", "status"],
)
REQUEST_LATENCY = Histogram(
    "db_recreate_request_duration_seconds",
    "Request latency in seconds",
    ["endpoint"],
)


class PrecheckRequest(BaseModel):
    allow_missing_statistics: bool = False
    allow_safety_window: bool = False


class RecreateRequest(PrecheckRequest):
    confirm: bool = False


class PrecheckResponse(BaseModel):
    entity: str
    passed: bool
    checks: List[CheckResult] = Field(default_factory=list)
    safety_window_days: Optional[float] = None
    max_lag_days: Optional[float] = None
    copies: List[str] = Field(default_factory=list)
    timestamp: str


def configure_services(target: FastAPI, services: Services | None, workflow: RecreationWorkflow | None = None) -> None:
    target.state.services = services
    target.state.workflow = workflow


@app.middleware("http")
async def request_summary_logger(request: Request, call_next):
    request_id = str(uuid4())
    request.state.request_id = request_id
    start = time.time()
    response = await call_next(request)
    duration_ms = int((time.time() - start) * 1000)
    REQUEST_LATENCY.labels(endpoint=str(request.url.path)).observe(duration_ms / 1000.0)
    REQUEST_COUNT.labels(endpoint=str(request.url.path), status=str(response.status_code)).inc()
    log_stdout(
        {
            "timestamp": utc_timestamp(),
            "level": "WARN" if response.status_code >= 400 else "INFO",
            "service": "db-recreate",
            "log_type": "request",
            "request_id": request_id,
            "endpoint": str(request.url.path),
            "client": request.headers.get("user-agent"),
            "status": response.status_code,
            "duration_ms": duration_ms,
        }
    )
    return response


@app.get("/healthz")
async def healthz() -> dict:
    return {"status": "ok"}


@app.get("/readyz")
async def readyz(request: Request) -> JSONResponse:
    if getattr(request.app.state, "services", None) is None:
        return JSONResponse(status_code=503, content={"status": "unconfigured"})
    workflow = getattr(request.app.state, "workflow", None)
    try:
        ensure_audit_log_ready(getattr(workflow, "audit_path", None))
    except OSError as exc:
        log_stdout(
            {
                "timestamp": utc_timestamp(),
                "level": "ERROR",
                "service": "db-recreate",
                "log_type": "readiness",
                "error": str(exc),
            }
        )
        return JSONResponse(status_code=503, content={"status": "audit_unavailable"})
    return JSONResponse(content={"status": "ok"})


@app.get("/metrics")
async def metrics():
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)


@app.exception_handler(RecreateError)
async def handle_recreate_error(request: Request, exc: RecreateError) -> JSONResponse:
    content = {"code": exc.code, "message": exc.message}
    phase = getattr(exc, "phase", None)
    if phase:
        content["phase"] = phase
    check = getattr(exc, "check", None)
    if check:
        content["check"] = check
    return JSONResponse(status_code=exc.http_status, content=content)


@app.post("/api/v1/entities/{name}/precheck")
def precheck_endpoint(
    name: str,
    payload: PrecheckRequest,
    request: Request,
    authorization: str | None = Header(default=None),
) -> PrecheckResponse:
    verify_bearer_token(authorization)
    workflow = _workflow(request)
    set_run_context(run_id=request.state.request_id, entity=name, phase="precheck")
    confirm = StaticConfirmation(
        allow_missing_statistics=payload.allow_missing_statistics,
        allow_safety_window=payload.allow_safety_window,
    )
    verdict = workflow.precheck(name, confirm)
    context = verdict.context
    return PrecheckResponse(
        entity=name,
        passed=verdict.passed,
        checks=verdict.results,
        safety_window_days=context.safety_window_days if context else None,
        max_lag_days=context.max_lag_days if context else None,
        copies=[copy.name for copy in context.snapshot.copies] if context else [],
        timestamp=utc_timestamp(),
    )


@app.post("/api/v1/entities/{name}/recreate")
def recreate_endpoint(
    name: str,
    payload: RecreateRequest,
    request: Request,
    authorization: str | None = Header(default=None),
) -> RunSummary:
    verify_bearer_token(authorization)
    workflow = _workflow(request)
    confirm = StaticConfirmation(
        allow_missing_statistics=payload.allow_missing_statistics,
        allow_safety_window=payload.allow_safety_window,
        confirm_destructive=payload.confirm,
    )
    return raise_for_blocked(workflow.run(name, confirm))


@app.get("/api/v1/audit/logs")
async def get_audit_logs(
    limit: Optional[int] = None,
    decision: Optional[str] = None,
    entity: Optional[str] = None,
    authorization: str | None = Header(default=None),
) -> List[AuditRecord]:
    verify_bearer_token(authorization)
    return read_audit_logs(limit=limit, decision=decision, entity=entity)


def _workflow(request: Request) -> RecreationWorkflow:
    workflow = getattr(request.app.state, "workflow", None)
    if workflow is not None:
        return workflow
    services = getattr(request.app.state, "services", None)
    if services is None:
        raise ServicesUnavailableError()
    return RecreationWorkflow(services)

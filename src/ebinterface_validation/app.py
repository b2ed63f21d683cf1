"""FastAPI application exposing the ebInterface validation pipeline.

Quick start (run the server)::

    EBINTERFACE_SCHEMA_DIR=/srv/schemas uvicorn ebinterface_validation.app:app --reload

Core endpoints (REST):

    GET  /health                         Basic health probe
    GET  /versions                       Known dialects and their schemas
    POST /validate                       Structure + signature check of an XML body
    GET  /rulesets                       Available rule-set references
    GET  /rulesets/{reference}           Rules of one rule set (not compiled)
    POST /rulesets/{reference}/evaluate  Findings of one rule set for an XML body
    POST /render                         HTML rendering of an XML body
    GET  /metrics/*                      Performance + cache metrics suite

Validation example::

    curl -X POST http://localhost:8000/validate \
         -H "Content-Type: application/xml" \
         --data-binary @invoice.xml | jq .

Rule-set example::

    curl -X POST http://localhost:8000/rulesets/government-4p0/evaluate \
         -H "Content-Type: application/xml" \
         --data-binary @invoice.xml | jq .summary

Error handling:
    * Unknown dialect (terminal) and per-document processing faults are 422.
    * Unknown rule sets are 404.
    * Missing or broken schema / rule-set / stylesheet resources are 503.
    * Anything else is wrapped in a JSON 500 payload.

A document that fails its schema or its rules is *not* an error: those
outcomes are returned as data with status 200.
"""

from __future__ import annotations

import time
from datetime import datetime
from functools import lru_cache
from typing import Any, Dict, List, Optional

import psutil
from fastapi import Depends, FastAPI, Query, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import HTMLResponse, JSONResponse
from pydantic import BaseModel, Field

from . import __version__
from .exceptions import (
    ConfigurationError,
    ProcessingError,
    RuleSetNotFoundError,
    UnknownNamespaceError,
    ValidationServiceError,
)
from .models import DocumentVersion
from .monitoring import get_monitor
from .pipeline import ValidationPipeline

app = FastAPI(
    title="ebInterface Validation API",
    version=__version__,
    description="Schema, signature and business-rule validation for ebInterface invoices",
    docs_url="/docs",
    redoc_url="/redoc",
)


@app.middleware("http")
async def monitor_requests(request: Request, call_next):
    """Middleware to monitor API request performance."""
    start_time = time.time()

    response = await call_next(request)

    response_time = time.time() - start_time
    monitor = get_monitor()
    endpoint = f"{request.method} {request.url.path}"
    monitor.record_endpoint_request(endpoint, response_time, response.status_code)

    response.headers["X-Response-Time"] = f"{response_time:.3f}s"
    response.headers["X-API-Version"] = __version__
    return response


class HealthResponse(BaseModel):
    """Response model for the health probe."""

    status: str = Field(..., description="healthy or unhealthy")
    dialects: List[str] = Field(
        default_factory=list, description="Dialect labels with a loaded schema"
    )
    signature_service: bool = Field(
        False, description="Whether a signature-verification service is configured"
    )
    error: Optional[str] = Field(None, description="Why the pipeline could not be built")


class VersionInfo(BaseModel):
    """One detectable document version."""

    name: str = Field(..., description="Version identifier, e.g. E4P0_SIGNED")
    dialect: str = Field(..., description="Dialect label, e.g. 4p0")
    namespace: str = Field(..., description="Root element namespace")
    signed: bool = Field(..., description="Whether the document carries a signature")
    signature_prefix: Optional[str] = Field(
        None, description="Namespace prefix of the signature element"
    )
    schema_file: str = Field(..., description="Schema the dialect validates against")


class RuleSetListResponse(BaseModel):
    """Response model for the rule-set listing."""

    rulesets: List[str] = Field(..., description="Rule-set references")
    count: int = Field(..., description="Number of rule sets")


@lru_cache(maxsize=1)
def get_pipeline() -> ValidationPipeline:
    # schemas load on the first /validate, so rule sets work without them
    return ValidationPipeline.from_settings(load_schemas=False)


def _error(status_code: int, error: str, exc: Exception, request: Request, **extra: Any) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={
            "error": error,
            "detail": str(exc),
            "path": str(request.url.path),
            **extra,
        },
    )


@app.exception_handler(UnknownNamespaceError)
async def unknown_namespace_handler(request: Request, exc: UnknownNamespaceError):
    return _error(422, "Unknown Document Version", exc, request, namespace=exc.namespace)


@app.exception_handler(ProcessingError)
async def processing_error_handler(request: Request, exc: ProcessingError):
    return _error(422, "Processing Error", exc, request)


@app.exception_handler(RuleSetNotFoundError)
async def ruleset_not_found_handler(request: Request, exc: RuleSetNotFoundError):
    return _error(404, "Not Found", exc, request, reference=exc.reference)


@app.exception_handler(ConfigurationError)
async def configuration_error_handler(request: Request, exc: ConfigurationError):
    return _error(503, "Service Misconfigured", exc, request)


@app.exception_handler(404)
async def not_found_handler(request, exc):
    """Custom 404 handler with more helpful error messages."""
    return JSONResponse(
        status_code=404,
        content={
            "error": "Not Found",
            "detail": (
                str(exc.detail)
                if hasattr(exc, "detail")
                else "The requested resource was not found"
            ),
            "path": str(request.url.path),
        },
    )


@app.exception_handler(500)
async def internal_error_handler(request, exc):
    """Custom 500 handler for internal errors."""
    return JSONResponse(
        status_code=500,
        content={
            "error": "Internal Server Error",
            "detail": "An unexpected error occurred processing your request",
        },
    )


@app.get("/health")
def health() -> HealthResponse:
    """Health check endpoint."""
    try:
        pipeline = get_pipeline()
        dialects = [v.label for v in pipeline.registry.get_available_versions()]
    except ValidationServiceError as e:
        return HealthResponse(status="unhealthy", error=str(e))
    return HealthResponse(
        status="healthy",
        dialects=dialects,
        signature_service=pipeline.signature_adapter.configured,
    )


@app.get("/versions")
def versions(pipeline: ValidationPipeline = Depends(get_pipeline)) -> List[VersionInfo]:
    """Known document versions and the schema each dialect validates against."""
    entries = []
    for version in DocumentVersion:
        info = pipeline.registry.get_schema_info(version)
        entries.append(
            VersionInfo(
                name=version.name,
                dialect=version.label,
                namespace=version.namespace,
                signed=version.signed,
                signature_prefix=version.signature_namespace_prefix,
                schema_file=info.path.name,
            )
        )
    return entries


@app.post("/validate")
async def validate(
    request: Request, pipeline: ValidationPipeline = Depends(get_pipeline)
) -> Dict[str, Any]:
    """Validate the XML request body against its schema and signature.

    Example::

        curl -X POST http://localhost:8000/validate --data-binary @invoice.xml
    """
    data = await request.body()
    result = await run_in_threadpool(pipeline.validate, data)
    if result.detection_failed:
        raise UnknownNamespaceError(result.error, namespace=result.namespace)
    return result.to_dict()


@app.get("/rulesets")
def rulesets(pipeline: ValidationPipeline = Depends(get_pipeline)) -> RuleSetListResponse:
    references = pipeline.list_rule_sets()
    return RuleSetListResponse(rulesets=references, count=len(references))


@app.get("/rulesets/{reference}")
def ruleset_detail(
    reference: str, pipeline: ValidationPipeline = Depends(get_pipeline)
) -> Dict[str, Any]:
    """Patterns, rules and assertions of a rule set, without compiling it."""
    return pipeline.describe_rule_set(reference)


@app.post("/rulesets/{reference}/evaluate")
async def evaluate_ruleset(
    reference: str,
    request: Request,
    pipeline: ValidationPipeline = Depends(get_pipeline),
) -> Dict[str, Any]:
    """Evaluate one rule set against the XML request body.

    Failing rules come back as ``fail`` findings with status 200.
    """
    data = await request.body()
    report = await run_in_threadpool(pipeline.evaluate_rule_set, data, reference)
    return report.to_dict()


@app.post("/render", response_class=HTMLResponse)
async def render(
    request: Request,
    dialect: Optional[str] = Query(None, description="Dialect label, e.g. 4p0 (detected if omitted)"),
    pipeline: ValidationPipeline = Depends(get_pipeline),
) -> HTMLResponse:
    data = await request.body()
    version = None
    if dialect:
        matches = [v for v in DocumentVersion.dialects() if v.label == dialect]
        if not matches:
            raise UnknownNamespaceError(f"Unknown dialect: {dialect}")
        version = matches[0]
    html = await run_in_threadpool(pipeline.render, data, version)
    return HTMLResponse(content=html)


# Performance monitoring endpoints


@app.get("/metrics/performance")
def get_performance_metrics():
    """Get comprehensive performance metrics and analytics."""
    monitor = get_monitor()
    return monitor.get_performance_summary()


@app.get("/metrics/cache")
def get_cache_metrics():
    """Get detailed rule-set cache analytics."""
    monitor = get_monitor()
    return monitor.get_cache_analytics()


@app.get("/metrics/system")
def get_system_metrics():
    """Get system-level performance metrics."""
    monitor = get_monitor()
    summary = monitor.get_performance_summary()
    memory_info = psutil.virtual_memory()

    pools: Dict[str, Any] = {}
    cache_stats: Dict[str, Any] = {}
    try:
        pipeline = get_pipeline()
        cache_stats = pipeline.compiler.cache.get_cache_stats()
        pools = pipeline.registry.pool_stats()
    except ValidationServiceError as e:
        pools = {"error": str(e)}

    return {
        "uptime_seconds": summary["uptime_seconds"],
        "total_requests": summary["api"]["total_requests"],
        "memory_usage_mb": round(memory_info.used / (1024 * 1024), 2),
        "cpu_usage_percent": round(psutil.cpu_percent(), 2),
        "schema_pools": pools,
        "cache_stats": cache_stats,
    }


@app.post("/metrics/reset")
def reset_metrics():
    """Reset all performance metrics (useful for testing)."""
    monitor = get_monitor()
    monitor.reset_metrics()
    return {
        "message": "All metrics have been reset",
        "timestamp": datetime.now().isoformat(),
    }

"""FastAPI application for invoice operations.

Production-ready API with:
- Health and readiness checks for Kubernetes
- Per-client and per-company invoice generation
- Backfill and duplicate reconciliation, queued to arq or run inline
- Prometheus metrics for monitoring

Based on FastAPI best practices:
https://fastapi.tiangolo.com/
"""

import logging
import time
import uuid
from typing import Any

from fastapi import FastAPI, HTTPException, Query, Request, Response, status
from pydantic import BaseModel

from services.api import metrics
from services.invoicing.errors import ClientNotFoundError, CompanyNotFoundError
from services.invoicing.periods import month_name, parse_month_key
from services.invoicing.schema import BackfillResult, Invoice, ReconciliationResult
from services.invoicing.service import InvoicingService
from services.shared.config import get_settings
from services.store.base import StoreError

settings = get_settings()

logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(
    title="Fleet Invoicing",
    description="Invoice generation and duplicate reconciliation for fuel-delivery orders",
    version=settings.service_version,
)

invoicing_service = InvoicingService.from_settings(settings)

_arq_pool: Any = None


async def get_arq_pool() -> Any:
    """Lazily create the arq connection pool used to enqueue batch jobs."""
    global _arq_pool
    if _arq_pool is None:
        from arq import create_pool

        from services.queue.tasks import WorkerSettings

        _arq_pool = await create_pool(WorkerSettings.get_redis_settings())
    return _arq_pool


@app.middleware("http")
async def metrics_middleware(request: Request, call_next):  # type: ignore[no-untyped-def]
    """Middleware to collect request metrics.

    Tracks:
    - Request count by method, endpoint, and status
    - Request duration by method and endpoint

    Endpoints are labelled with the route template so identities in the
    path do not create new series.
    """
    # Skip metrics for /metrics endpoint itself
    if request.url.path == "/metrics":
        return await call_next(request)

    start_time = time.time()
    response = await call_next(request)
    duration = time.time() - start_time

    route = request.scope.get("route")
    endpoint = getattr(route, "path", request.url.path)

    metrics.http_requests_total.labels(
        method=request.method,
        endpoint=endpoint,
        status=response.status_code,
    ).inc()

    metrics.http_request_duration_seconds.labels(
        method=request.method,
        endpoint=endpoint,
    ).observe(duration)

    return response


class HealthResponse(BaseModel):
    """Health check response."""

    status: str
    version: str
    service: str


class ReadinessResponse(BaseModel):
    """Readiness check response."""

    ready: bool
    store: str


class BackfillResponse(BaseModel):
    """Backfill response: a queued job id, or the finished run's summary."""

    status: str  # queued, completed
    job_id: str | None = None
    result: BackfillResult | None = None


class ReconcileResponse(BaseModel):
    """Reconciliation response: a queued job id, or the finished run's summary."""

    status: str  # queued, completed
    job_id: str | None = None
    result: ReconciliationResult | None = None


class ClientInvoicesResponse(BaseModel):
    """Invoices created for one client."""

    client: str
    invoice_ids: list[str]
    count: int


class CompanyInvoiceResponse(BaseModel):
    """Outcome of invoicing one company for one month."""

    company: str
    month_name: str
    invoice_id: str | None = None
    created: bool


@app.get("/health", response_model=HealthResponse, tags=["Health"])
def health_check() -> HealthResponse:
    """Health check endpoint for liveness probe.

    Returns:
        Health status information
    """
    return HealthResponse(
        status="healthy", version=settings.service_version, service=settings.service_name
    )


@app.get("/ready", response_model=ReadinessResponse, tags=["Health"])
async def readiness_check(response: Response) -> ReadinessResponse:
    """Readiness check endpoint for Kubernetes readiness probe.

    Reports not ready (503) while the record store is unreachable.

    Returns:
        Readiness status
    """
    ready = await invoicing_service.health_check()
    if not ready:
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    return ReadinessResponse(ready=ready, store=invoicing_service.gateway.store.backend_name)


@app.get("/metrics", tags=["Monitoring"])
def get_metrics() -> Response:
    """Prometheus metrics endpoint.

    Returns:
        Prometheus metrics in text format
    """
    metrics_data, content_type = metrics.get_metrics()
    return Response(content=metrics_data, media_type=content_type)


async def _enqueue(function: str, **kwargs: Any) -> str:
    job_id = str(uuid.uuid4())
    try:
        pool = await get_arq_pool()
        await pool.enqueue_job(function, _job_id=job_id, **kwargs)
    except Exception as e:
        logger.exception(f"Failed to enqueue {function}: {e}")
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=f"Failed to enqueue job: {e}",
        ) from e
    logger.info(f"Queued {function} as job {job_id}")
    return job_id


@app.post("/api/v1/invoices/backfill", response_model=BackfillResponse, tags=["Batch"])
async def run_backfill() -> BackfillResponse:
    """Generate invoices for every order that has none.

    With the queue enabled the run is handed to the arq worker and the
    response carries the job id. Otherwise the backfill runs inline and the
    response carries its summary.

    ## Usage Example

    ```bash
    curl -X POST "http://localhost:8000/api/v1/invoices/backfill"
    ```

    Returns:
        Queued job id or the backfill summary (created counts and errors)
    """
    if settings.queue_enabled:
        metrics.batch_jobs_total.labels(job="backfill", mode="queued").inc()
        job_id = await _enqueue("run_backfill_job")
        return BackfillResponse(status="queued", job_id=job_id)

    metrics.batch_jobs_total.labels(job="backfill", mode="inline").inc()
    result = await invoicing_service.run_backfill()
    return BackfillResponse(status="completed", result=result)


@app.post("/api/v1/invoices/reconcile", response_model=ReconcileResponse, tags=["Batch"])
async def reconcile_invoices(
    dry_run: bool = Query(False, description="Report duplicate groups without deleting"),
) -> ReconcileResponse:
    """Delete duplicate monthly invoices, keeping the newest per company and month.

    Args:
        dry_run: Only report what would be deleted

    Returns:
        Queued job id or the reconciliation summary
    """
    if settings.queue_enabled:
        metrics.batch_jobs_total.labels(job="reconcile", mode="queued").inc()
        job_id = await _enqueue("reconcile_job", dry_run=dry_run)
        return ReconcileResponse(status="queued", job_id=job_id)

    metrics.batch_jobs_total.labels(job="reconcile", mode="inline").inc()
    result = await invoicing_service.reconcile_monthly_invoices(dry_run=dry_run)
    return ReconcileResponse(status="completed", result=result)


@app.post(
    "/api/v1/clients/{identity}/invoices",
    response_model=ClientInvoicesResponse,
    tags=["Invoices"],
)
async def process_client_orders(identity: str) -> ClientInvoicesResponse:
    """Invoice every not-yet-invoiced order of a client.

    Safe to call repeatedly: already invoiced orders are skipped.

    Args:
        identity: Client email, uid, or id

    Returns:
        Ids of the invoices created by this call

    Raises:
        HTTPException: 404 if the client is unknown, 503 if the store is unavailable
    """
    try:
        await invoicing_service.require_client(identity)
        invoice_ids = await invoicing_service.process_client_orders(identity)
    except ClientNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e)) from e
    except StoreError as e:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=f"Store unavailable: {e}"
        ) from e

    return ClientInvoicesResponse(client=identity, invoice_ids=invoice_ids, count=len(invoice_ids))


@app.post(
    "/api/v1/companies/{identity}/invoices/{month}",
    response_model=CompanyInvoiceResponse,
    tags=["Invoices"],
)
async def process_company_month(identity: str, month: str) -> CompanyInvoiceResponse:
    """Create the monthly invoice of a company.

    Args:
        identity: Company uid, email, or id
        month: Billed month as YYYY-MM

    Returns:
        The new invoice id, or created=false when the month is already
        invoiced or has no orders

    Raises:
        HTTPException: 400 for a malformed month, 404 if the company is unknown,
            503 if the store is unavailable
    """
    try:
        billed_month = parse_month_key(month)
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e)) from e

    try:
        await invoicing_service.require_company(identity)
        invoice_id = await invoicing_service.process_company_monthly_invoices(identity, billed_month)
    except CompanyNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e)) from e
    except StoreError as e:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=f"Store unavailable: {e}"
        ) from e

    return CompanyInvoiceResponse(
        company=identity,
        month_name=month_name(billed_month),
        invoice_id=invoice_id,
        created=invoice_id is not None,
    )


@app.get("/api/v1/invoices/{invoice_id}", response_model=Invoice, tags=["Invoices"])
async def get_invoice(invoice_id: str) -> Invoice:
    """Fetch one invoice by its store id.

    Raises:
        HTTPException: 404 if no invoice has this id
    """
    try:
        invoice = await invoicing_service.fetch_invoice_by_id(invoice_id)
    except StoreError as e:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=f"Store unavailable: {e}"
        ) from e

    if invoice is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND, detail=f"Invoice not found: {invoice_id}"
        )
    return invoice

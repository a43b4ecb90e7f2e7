"""HTTP API for the martlink dashboard backend."""

import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Callable, Generator, Optional, Union

from fastapi import Depends, FastAPI, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from sqlalchemy.orm import Session

from martlink import __version__
from martlink.clients.airbridge import AirbridgeClient
from martlink.clients.google_sheets import GoogleSheetsClient
from martlink.config import Settings, get_settings
from martlink.exceptions import (
    AirbridgeError,
    AuthorizationError,
    ConfigurationError,
    DatabaseError,
    MartLinkError,
    SheetsError,
    ValidationError,
)
from martlink.serializers import (
    LINK_FIELDS,
    LINK_HISTORY_FIELDS,
    MART_FIELDS,
    serialize_batch_error,
    serialize_model,
)
from martlink.services.link_service import LinkService
from martlink.services.mart_service import MartService
from martlink.services.report_service import ReportService
from martlink.storage.database import get_db

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Create missing tables before serving requests."""
    get_db().create_tables()
    yield


# Create FastAPI app
app = FastAPI(
    title="martlink",
    description="Trackable short links per mart/creative, mart sync and click reports",
    version=__version__,
    lifespan=lifespan,
)

STATUS_BY_ERROR = {
    ValidationError: 400,
    ConfigurationError: 400,
    AuthorizationError: 401,
    AirbridgeError: 502,
    SheetsError: 500,
    DatabaseError: 500,
}


class CreateLinkBody(BaseModel):
    mart_code: Optional[str] = None
    ad_creative: Optional[str] = None


class BulkCreateLinkBody(BaseModel):
    mart_codes: Union[list[str], str, None] = None
    ad_creatives: Union[list[str], str, None] = None


class AdminKeyBody(BaseModel):
    key: Optional[str] = None


def fail(status_code: int, message: str, **extra: Any) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"success": False, "message": message, **extra})


@app.exception_handler(MartLinkError)
async def handle_service_error(request: Request, exc: MartLinkError) -> JSONResponse:
    status_code = next(
        (code for error_type, code in STATUS_BY_ERROR.items() if isinstance(exc, error_type)),
        500,
    )
    extra: dict[str, Any] = {}
    if isinstance(exc, ValidationError) and exc.field:
        extra["field"] = exc.field
    if isinstance(exc, ConfigurationError) and exc.missing_keys:
        extra["missing_keys"] = exc.missing_keys
    if status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc}")
    return fail(status_code, str(exc), **extra)


@app.exception_handler(RequestValidationError)
async def handle_request_validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
    return fail(400, "잘못된 요청 본문입니다.", detail=str(exc.errors()))


@app.exception_handler(Exception)
async def handle_unexpected_error(request: Request, exc: Exception) -> JSONResponse:
    logger.exception(f"Unexpected error handling {request.method} {request.url.path}")
    return fail(500, f"Internal error: {str(exc)}")


# Dependencies
def get_session() -> Generator[Session, None, None]:
    with get_db().session() as session:
        yield session


def get_airbridge_client(settings: Settings = Depends(get_settings)) -> AirbridgeClient:
    return AirbridgeClient(timeout=settings.airbridge_timeout)


def get_sheets_factory() -> Callable[[Settings], Any]:
    return GoogleSheetsClient


def get_link_service(
    session: Session = Depends(get_session),
    airbridge: AirbridgeClient = Depends(get_airbridge_client),
    settings: Settings = Depends(get_settings),
) -> LinkService:
    return LinkService(session, airbridge=airbridge, settings=settings)


def get_mart_service(
    session: Session = Depends(get_session),
    settings: Settings = Depends(get_settings),
    sheets_factory: Callable[[Settings], Any] = Depends(get_sheets_factory),
) -> MartService:
    return MartService(session, settings=settings, sheets_factory=sheets_factory)


def get_report_service(
    session: Session = Depends(get_session),
    airbridge: AirbridgeClient = Depends(get_airbridge_client),
    settings: Settings = Depends(get_settings),
) -> ReportService:
    return ReportService(session, airbridge=airbridge, settings=settings)


def is_flag(value: Optional[str]) -> bool:
    return value in ("1", "true")


# Links
@app.post("/api/create-link")
async def create_link(
    body: CreateLinkBody,
    service: LinkService = Depends(get_link_service),
):
    """Create one tracking link."""
    link = await service.create_link(body.mart_code, body.ad_creative)
    return {"success": True, "data": serialize_model(link, LINK_FIELDS)}


@app.post("/api/create-link/bulk")
async def bulk_create_links(
    body: BulkCreateLinkBody,
    service: LinkService = Depends(get_link_service),
):
    """Create links for every mart/creative combination."""
    result = await service.bulk_create_links(body.mart_codes, body.ad_creatives)
    errors = [serialize_batch_error(error) for error in result.errors]
    summary = {
        "requested": len(result.created) + len(result.errors),
        "created": len(result.created),
        "failed": len(result.errors),
    }

    if not result.created:
        return fail(500, "대량 링크 생성에 실패했습니다.", summary=summary, errors=errors)

    return {
        "success": not errors,
        "summary": summary,
        "data": [serialize_model(link, LINK_FIELDS) for link in result.created],
        "errors": errors,
    }


@app.get("/api/links")
async def list_links(
    mart_code: Optional[str] = Query(None),
    limit: Optional[str] = Query(None),
    service: LinkService = Depends(get_link_service),
):
    """Recent link history."""
    links = service.list_links(mart_code=mart_code, limit=limit)
    return {"success": True, "data": [serialize_model(link, LINK_HISTORY_FIELDS) for link in links]}


@app.post("/api/admin/clear-links")
async def clear_links(
    body: Optional[AdminKeyBody] = None,
    service: LinkService = Depends(get_link_service),
):
    """Delete the whole link history."""
    deleted = service.clear_links(body.key if body else None)
    return {"success": True, "summary": {"deleted": deleted}}


# Marts
@app.get("/api/marts")
async def search_marts(
    q: Optional[str] = Query(None),
    offset: Optional[str] = Query(None),
    limit: Optional[str] = Query(None),
    include_disabled: Optional[str] = Query(None),
    service: MartService = Depends(get_mart_service),
):
    """Search marts by name."""
    result = service.search_marts(
        q=q, offset=offset, limit=limit, include_disabled=is_flag(include_disabled)
    )
    return {
        "success": True,
        "data": [serialize_model(mart, MART_FIELDS) for mart in result["items"]],
        "paging": result["paging"],
    }


@app.get("/api/marts/stats")
async def mart_stats(service: MartService = Depends(get_mart_service)):
    """Mart counts."""
    return {"success": True, "data": service.get_stats()}


@app.post("/api/marts/sync")
def sync_marts(service: MartService = Depends(get_mart_service)):
    """Sync marts from the spreadsheet."""
    return {"success": True, "summary": service.sync_marts()}


# Reports
@app.get("/api/link-report")
async def link_report(
    short_url: Optional[str] = Query(None),
    airbridge_link_id: Optional[str] = Query(None),
    task_id: Optional[str] = Query(None),
    refresh: Optional[str] = Query(None),
    service: ReportService = Depends(get_report_service),
):
    """Click report for one tracking link."""
    result = await service.get_link_report(
        short_url=short_url,
        airbridge_link_id=airbridge_link_id,
        task_id=task_id,
        refresh=refresh == "1",
    )
    response = {"success": True, "data": result["data"]}
    if result["cached"]:
        response["cached"] = True
    return response


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "healthy", "service": "martlink"}


if __name__ == "__main__":
    import uvicorn

    logging.basicConfig(level=get_settings().log_level.upper())
    uvicorn.run(app, host="0.0.0.0", port=8005)

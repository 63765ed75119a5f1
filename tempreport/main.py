import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from tempreport.api import reports
from tempreport.config.settings import get_settings
from tempreport.core.query_guard import DuplicateQueryError, QueryInProgressError
from tempreport.core.rpc_client import close_http_client, get_http_client
from tempreport.services.report_service import (
    ReportPipelineError,
    reset_report_service,
)

logging.basicConfig(level=get_settings().log_level)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    await get_http_client()
    logger.info("Temperature report service started")
    yield
    await close_http_client()
    reset_report_service()
    logger.info("Temperature report service stopped")


app = FastAPI(title="Temperature Report", version="1.0.0", lifespan=lifespan)

app.include_router(reports.router, prefix="/reports", tags=["reports"])


@app.get("/health")
async def health_check():
    return {"status": "healthy", "service": "tempreport"}


@app.exception_handler(ValueError)
async def value_error_handler(request: Request, exc: ValueError):
    return JSONResponse(status_code=400, content={"error": str(exc)})


@app.exception_handler(QueryInProgressError)
async def in_progress_handler(request: Request, exc: QueryInProgressError):
    return JSONResponse(status_code=409, content={"error": str(exc)})


@app.exception_handler(DuplicateQueryError)
async def duplicate_query_handler(request: Request, exc: DuplicateQueryError):
    return JSONResponse(status_code=409, content={"error": str(exc)})


@app.exception_handler(ReportPipelineError)
async def pipeline_error_handler(request: Request, exc: ReportPipelineError):
    return JSONResponse(status_code=500, content={"error": str(exc)})

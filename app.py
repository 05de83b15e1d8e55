import logging
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any, Optional

from fastapi import FastAPI, Query
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse
from pydantic import BaseModel, Field

from tally_sales import config
from tally_sales.client import TallyClient, build_sales_voucher_request
from tally_sales.date_ranges import date_range_options, resolve_date_range
from tally_sales.errors import ParseError, TransportError, ValidationError, VoucherNotFound
from tally_sales.logging_config import setup_logging
from tally_sales.models import QueryWindow
from tally_sales.service import SalesService

logger = logging.getLogger("TallyAPI")

# ============================================================================
# RESPONSE MODEL
# ============================================================================

class APIResponse(BaseModel):
    success: bool
    data: Any = None
    error: Optional[str] = None
    count: Optional[int] = None
    timestamp: str = Field(default_factory=lambda: datetime.now().isoformat())


class InvalidateRequest(BaseModel):
    from_date: str
    to_date: str
    company: str

# ============================================================================
# SERVICE SINGLETON
# ============================================================================

_client: Optional[TallyClient] = None
_service: Optional[SalesService] = None

def get_client() -> TallyClient:
    global _client
    if _client is None:
        _client = TallyClient(url=config.TALLY_URL)
    return _client

def get_service() -> SalesService:
    global _service
    if _service is None:
        client = get_client()
        _service = SalesService(
            fetch_raw=client.fetch_sales_vouchers, fetch_detail=client.fetch_voucher_detail
        )
    return _service

def set_service(service: Optional[SalesService]) -> None:
    global _service
    _service = service

# ============================================================================
# APP
# ============================================================================

@asynccontextmanager
async def lifespan(app: FastAPI):
    setup_logging()
    logger.info("Starting Tally Sales API | tally=%s", config.TALLY_URL)
    yield
    await get_service().drain_prefetch()
    logger.info("Shutting down.")

app = FastAPI(
    title="Tally Sales Register API",
    description="Paginated, cached sales vouchers reconstructed from Tally collection exports.",
    version="1.0.0",
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
)

app.add_middleware(CORSMiddleware, allow_origins=["*"], allow_credentials=True,
                   allow_methods=["*"], allow_headers=["*"])

def api_response(data, count=None):
    return APIResponse(
        success=True, data=data,
        count=count if count is not None else (len(data) if isinstance(data, list) else None),
    )

def error_response(status_code: int, message: str):
    return JSONResponse(status_code=status_code, content=APIResponse(success=False, error=message).model_dump())

def handle_error(exc, context):
    if isinstance(exc, ValidationError):
        logger.info("Rejected %s: %s", context, exc)
        return error_response(400, str(exc))
    if isinstance(exc, VoucherNotFound):
        logger.info("Not found in %s: %s", context, exc)
        return error_response(404, str(exc))
    if isinstance(exc, TransportError):
        logger.warning("Tally unreachable in %s: %s", context, exc)
        return error_response(502, f"Could not reach Tally: {exc}")
    if isinstance(exc, ParseError):
        logger.warning("Unparseable Tally data in %s: %s", context, exc)
        return error_response(502, f"Tally returned unparseable data: {exc}")
    logger.exception("Error in %s: %s", context, exc)
    return error_response(500, f"{context}: {exc}")

def window_from_query(company, from_date, to_date, page_size=config.SALES_PAGE_SIZE, search="", date_range=None):
    # a named range wins over explicit dates, except "custom" which uses them
    if date_range and date_range != "custom":
        resolved = resolve_date_range(date_range)
        from_date, to_date = resolved.tally_from, resolved.tally_to
    return QueryWindow(
        from_date=from_date or config.TALLY_FY_START,
        to_date=to_date or config.TALLY_FY_END,
        company_name=company or config.TALLY_COMPANY,
        page_size=page_size,
        search_filter=search or "",
    )

# ============================================================================
# HEALTH
# ============================================================================

@app.get("/", tags=["Health"])
async def root():
    return {"api": "Tally Sales Register", "version": "1.0.0", "docs": "/docs"}

@app.get("/health", tags=["Health"])
async def health_check():
    return {
        "status": "healthy",
        "tally_url": config.TALLY_URL,
        "company": config.TALLY_COMPANY,
        "cache": get_service().cache_stats(),
    }

# ============================================================================
# SALES
# ============================================================================

@app.get("/sales/vouchers", tags=["Sales"])
async def get_sales_vouchers(
    company: Optional[str] = Query(None, description="Tally company name"),
    from_date: Optional[str] = Query(None, description="YYYYMMDD"),
    to_date: Optional[str] = Query(None, description="YYYYMMDD"),
    page: int = Query(1, ge=1),
    page_size: int = Query(config.SALES_PAGE_SIZE, ge=1, le=1000),
    search: Optional[str] = Query(None),
    date_range: Optional[str] = Query(None, description="currentMonth, lastMonth, last3months, currentYear, lastYear, custom"),
):
    """One page of Tax Invoice vouchers with items, GST breakdown and discounts."""
    try:
        window = window_from_query(company, from_date, to_date, page_size, search, date_range)
        result = await get_service().get_page(window, page)
        return api_response(result.model_dump(), count=len(result.vouchers))
    except Exception as exc:
        return handle_error(exc, "get_sales_vouchers")

@app.get("/sales/statistics", tags=["Sales"])
async def get_sales_statistics(
    company: Optional[str] = Query(None),
    from_date: Optional[str] = Query(None, description="YYYYMMDD"),
    to_date: Optional[str] = Query(None, description="YYYYMMDD"),
    date_range: Optional[str] = Query(None),
):
    try:
        window = window_from_query(company, from_date, to_date, date_range=date_range)
        return api_response((await get_service().get_statistics(window)).model_dump())
    except Exception as exc:
        return handle_error(exc, "get_sales_statistics")

@app.get("/sales/vouchers/{guid}", tags=["Sales"])
async def get_sales_voucher(guid: str, company: Optional[str] = Query(None)):
    """A single voucher with its items and per-item GST rates."""
    try:
        vch = await get_service().get_voucher(company or config.TALLY_COMPANY, guid)
        return api_response(vch.model_dump())
    except Exception as exc:
        return handle_error(exc, "get_sales_voucher")

@app.get("/sales/date-ranges", tags=["Sales"])
async def get_date_ranges():
    return api_response(date_range_options())

# ============================================================================
# CACHE
# ============================================================================

@app.get("/cache/stats", tags=["Cache"])
async def cache_stats():
    return api_response(get_service().cache_stats())

@app.post("/cache/invalidate", tags=["Cache"])
async def invalidate_cache(body: InvalidateRequest):
    removed = get_service().invalidate(body.from_date, body.to_date, body.company)
    return api_response({"removed": removed})

@app.delete("/cache", tags=["Cache"])
async def clear_cache():
    get_service().clear_cache()
    return api_response({"cleared": True})

# ============================================================================
# DEBUG
# ============================================================================

@app.get("/debug/raw-voucher-xml", tags=["Debug"])
async def debug_raw_voucher_xml(
    company: Optional[str] = Query(None),
    from_date: str = Query("20250401"), to_date: str = Query("20250401"),
):
    """See raw XML that Tally returns for the sales voucher collection."""
    try:
        window = window_from_query(company, from_date, to_date)
        window.validate_for_fetch()
        raw = get_client().fetch_raw(build_sales_voucher_request(window))
    except (ValidationError, TransportError) as exc:
        return handle_error(exc, "debug_raw_voucher_xml")
    return PlainTextResponse(raw[:20000], media_type="application/xml")



if __name__ == "__main__":
    import uvicorn
    uvicorn.run("app:app", host="0.0.0.0", port=8001, reload=True, log_level="info")

"""
FastAPI Routes for the Service Write-Off Portal
"""
import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, HTTPException, Query
from fastapi.responses import HTMLResponse, Response

from ..actions import create_request_ledger, dispatch
from ..config import get_settings
from ..ledger import LedgerError, RecordNotFoundError, RecordType, SqlQueryRunner
from ..models.schemas import LoadDataResponse, MasterListReport, PortalActionRequest
from ..reports import build_load_data, build_master_list, run_portal_query
from ..reports.export import XLSX_MEDIA_TYPE, build_workbook, export_filename
from ..reports.queries import search_customer_summary, search_service_transactions
from ..reports.views import render_master_list_page, render_portal_page

logger = logging.getLogger(__name__)
router = APIRouter()


def load_master_list(balance_as_of: Optional[str] = None) -> MasterListReport:
    settings = get_settings()
    balance_as_of = balance_as_of or settings.default_balance_as_of
    runner = SqlQueryRunner()

    result = search_service_transactions(runner, balance_as_of, settings)
    customers = search_customer_summary(runner, balance_as_of, settings)
    return build_master_list(balance_as_of, result["rows"], result["aggregate"], customers)


@router.get("/master-list", response_class=HTMLResponse)
async def master_list(balance_as_of: Optional[str] = Query(default=None, alias="balanceAsOf")):
    """
    Read-only report of open invoices and unapplied credits for the
    service population, as of the given date.
    """
    report = load_master_list(balance_as_of)
    logger.info(
        f"Master list as of {report.balance_as_of}: {len(report.rows)} row(s), "
        f"{len(report.customers)} customer(s)"
    )
    return render_master_list_page(report)


@router.get("/master-list/export")
async def master_list_export(balance_as_of: Optional[str] = Query(default=None, alias="balanceAsOf")):
    """Same report as a spreadsheet download"""
    report = load_master_list(balance_as_of)
    return Response(
        content=build_workbook(report),
        media_type=XLSX_MEDIA_TYPE,
        headers={"Content-Disposition": f'attachment; filename="{export_filename(report)}"'},
    )


@router.get("/portal")
async def portal(load_data: bool = Query(default=False, alias="loadData")):
    """
    Without loadData the page shell is returned; with loadData=true the
    unbilled sales order rows and summary figures come back as JSON.
    """
    if not load_data:
        return HTMLResponse(render_portal_page())

    try:
        orders = run_portal_query(SqlQueryRunner(), get_settings())
        return build_load_data(orders).to_response()
    except Exception as e:
        logger.exception(f"Error loading portal data: {e}")
        return LoadDataResponse(success=False, message=str(e)).to_response()


@router.post("/portal")
async def portal_action(request: PortalActionRequest) -> Dict[str, Any]:
    """Run one queue/unqueue/close/auto-bill/CBSI/note action, or a bulk batch"""
    settings = get_settings()
    ledger, meter = create_request_ledger(settings)
    response = await dispatch(request, ledger, meter, settings)
    logger.info(f"Portal action finished: success={response.get('success')} (governance used {meter.used})")
    return response


@router.get("/records/{record_type}/{record_id}")
async def get_record(record_type: RecordType, record_id: int) -> Dict[str, Any]:
    """Read-only view of a ledger record, target of the portal and report links"""
    ledger, _ = create_request_ledger()
    try:
        document = ledger.load(record_type, record_id)
    except RecordNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except LedgerError as e:
        raise HTTPException(status_code=400, detail=str(e))

    return {
        "recordType": document.record_type.value,
        "id": document.id,
        "fields": document.fields,
        "sublists": document.sublists,
    }

"""
Read queries behind the master list and the portal

Every public function degrades to an empty result when the query fails:
the page still renders, just without data.
"""
import logging
from typing import Any, Dict, List, Optional

from ..config import Settings, get_settings
from ..ledger.base import QueryError, QueryRunner
from ..models.schemas import MasterListTotals

logger = logging.getLogger(__name__)


def _id_list(values: List[int]) -> str:
    return ", ".join(str(int(v)) for v in values)


def service_population(settings: Settings) -> str:
    """WHERE clause shared by the master list detail, aggregate and roll-up queries"""
    categories = settings.service_customer_categories
    category_test = f"c.category_id IN ({_id_list(categories)})" if categories else "1 = 0"
    return (
        "t.trandate <= :as_of "
        "AND t.status = 'A' "
        "AND t.type IN ('CustInvc', 'CustCred') "
        "AND ( "
        "    EXISTS ( "
        "        SELECT 1 FROM transaction_lines sl "
        "        WHERE sl.transaction_id = t.id "
        "        AND sl.department_id = :service_department "
        "    ) "
        f"    OR {category_test} "
        ")"
    )


def master_list_detail_sql(settings: Settings) -> str:
    # One row per line: multi-line documents repeat and are collapsed by id later
    categories = settings.service_customer_categories
    category_flag = f"c.category_id IN ({_id_list(categories)})" if categories else "1 = 0"
    return (
        "SELECT "
        "t.id, t.tranid, t.externalid, t.trandate, t.type, "
        "c.name AS customer_name, "
        "CASE "
        "    WHEN t.type = 'CustInvc' THEN t.amount_unpaid "
        "    WHEN t.type = 'CustCred' THEN -1 * t.amount_unused "
        "END AS amount_remaining, "
        "t.status_text AS status_name, "
        "c.category_name AS customer_category, "
        "d.name AS department_name, "
        "CASE WHEN EXISTS ( "
        "    SELECT 1 FROM transaction_lines sl "
        "    WHERE sl.transaction_id = t.id AND sl.department_id = :service_department "
        ") THEN 'Y' ELSE 'N' END AS has_service_line, "
        f"CASE WHEN {category_flag} THEN 'Y' ELSE 'N' END AS has_service_category "
        "FROM transactions t "
        "INNER JOIN customers c ON t.entity_id = c.id "
        "LEFT JOIN transaction_lines tl ON tl.transaction_id = t.id "
        "LEFT JOIN departments d ON tl.department_id = d.id "
        f"WHERE {service_population(settings)} "
        "ORDER BY t.trandate, t.tranid, t.id, tl.line_sequence"
    )


def master_list_aggregate_sql(settings: Settings) -> str:
    return (
        "SELECT "
        "COUNT(DISTINCT t.id) AS total_count, "
        "SUM(CASE WHEN t.type = 'CustInvc' THEN 1 ELSE 0 END) AS invoice_count, "
        "SUM(CASE WHEN t.type = 'CustInvc' THEN t.amount_unpaid ELSE 0 END) AS invoice_total, "
        "SUM(CASE WHEN t.type = 'CustCred' THEN 1 ELSE 0 END) AS credit_count, "
        "SUM(CASE WHEN t.type = 'CustCred' THEN t.amount_unused ELSE 0 END) AS credit_total, "
        "SUM(CASE "
        "    WHEN t.type = 'CustInvc' THEN t.amount_unpaid "
        "    WHEN t.type = 'CustCred' THEN -1 * t.amount_unused "
        "    ELSE 0 "
        "END) AS net_total "
        "FROM transactions t "
        "INNER JOIN customers c ON t.entity_id = c.id "
        f"WHERE {service_population(settings)}"
    )


def customer_summary_sql(settings: Settings) -> str:
    return (
        "SELECT "
        "t.entity_id AS customer_id, "
        "MAX(c.name) AS customer_name, "
        "SUM(CASE WHEN t.type = 'CustInvc' THEN 1 ELSE 0 END) AS invoice_count, "
        "SUM(CASE WHEN t.type = 'CustCred' THEN 1 ELSE 0 END) AS credit_count, "
        "SUM(CASE "
        "    WHEN t.type = 'CustInvc' THEN t.amount_unpaid "
        "    WHEN t.type = 'CustCred' THEN -1 * t.amount_unused "
        "    ELSE 0 "
        "END) AS net_amount "
        "FROM transactions t "
        "INNER JOIN customers c ON t.entity_id = c.id "
        f"WHERE {service_population(settings)} "
        "GROUP BY t.entity_id "
        "ORDER BY net_amount DESC"
    )


# Unbilled = open service item line on a pending-billing order that no invoice line was created from
UNBILLED_LINE_FILTER = (
    "so.type = 'SalesOrd' "
    "AND so.status = 'F' "
    "AND l.department_id = :service_department "
    "AND l.item_id IS NOT NULL "
    "AND l.quantity != 0 "
    "AND l.is_closed = :closed "
    "AND NOT EXISTS ( "
    "    SELECT 1 FROM transaction_lines il "
    "    INNER JOIN transactions inv ON il.transaction_id = inv.id "
    "    WHERE il.created_from_line_id = l.id "
    "    AND inv.type = 'CustInvc' "
    ")"
)

PORTAL_ORDER_COLUMNS = (
    "so.id", "so.tranid", "so.trandate", "so.entity_id", "so.status", "so.job_id",
    "so.queued_for_write_off", "so.warranty_type", "so.epic_auth", "so.ship_date", "so.est_ship_date",
    "so.job_details", "so.billing_completed_by", "so.job_state", "so.scheduled_date", "so.job_started",
    "so.job_completed", "so.research_notes", "so.research_follow_up", "so.parts_status",
)

PORTAL_ORDERS_SQL = (
    "SELECT "
    "so.id AS so_id, "
    "so.tranid AS so_number, "
    "so.trandate AS so_date, "
    "so.entity_id AS customer_id, "
    "MAX(c.name) AS customer_name, "
    "so.status AS so_status, "
    "MAX(so.status_text) AS so_status_text, "
    "so.job_id AS job_id, "
    "so.queued_for_write_off AS queued_date, "
    "so.warranty_type AS warranty_type, "
    "so.epic_auth AS epic_auth, "
    "so.ship_date AS ship_date, "
    "so.est_ship_date AS est_ship_date, "
    "so.job_details AS job_details, "
    "so.billing_completed_by AS billing_completed_by, "
    "so.job_state AS job_state, "
    "so.scheduled_date AS scheduled_date, "
    "so.job_started AS job_started, "
    "so.job_completed AS job_completed, "
    "so.research_notes AS research_notes, "
    "so.research_follow_up AS follow_up_date, "
    "so.parts_status AS parts_status, "
    "COUNT(l.item_id) AS unbilled_line_count, "
    "SUM(l.net_amount) AS total_unbilled_amount "
    "FROM transactions so "
    "INNER JOIN transaction_lines l ON l.transaction_id = so.id "
    "LEFT JOIN customers c ON so.entity_id = c.id "
    f"WHERE {UNBILLED_LINE_FILTER} "
    f"GROUP BY {', '.join(PORTAL_ORDER_COLUMNS)} "
    "ORDER BY so.tranid"
)

PORTAL_LINES_SQL = (
    "SELECT "
    "l.transaction_id AS so_id, "
    "COALESCE(i.itemid, 'Item #' || l.item_id) AS item_name, "
    "l.quantity AS quantity, "
    "l.net_amount AS net_amount "
    "FROM transaction_lines l "
    "INNER JOIN transactions so ON l.transaction_id = so.id "
    "LEFT JOIN items i ON l.item_id = i.id "
    f"WHERE {UNBILLED_LINE_FILTER} "
    "ORDER BY l.transaction_id, l.line_sequence"
)


def _to_totals(row: Optional[Dict[str, Any]]) -> MasterListTotals:
    row = row or {}
    return MasterListTotals(
        total_count=int(row.get("total_count") or 0),
        invoice_count=int(row.get("invoice_count") or 0),
        invoice_total=float(row.get("invoice_total") or 0.0),
        credit_count=int(row.get("credit_count") or 0),
        credit_total=float(row.get("credit_total") or 0.0),
        net_total=float(row.get("net_total") or 0.0),
    )


def search_service_transactions(
    runner: QueryRunner,
    balance_as_of: str,
    settings: Optional[Settings] = None
) -> Dict[str, Any]:
    """
    Raw detail rows (up to the row budget, duplicates included) plus the
    population-wide aggregate.
    """
    settings = settings or get_settings()
    params = {"as_of": balance_as_of, "service_department": settings.service_department_id}
    result: Dict[str, Any] = {"rows": [], "aggregate": MasterListTotals()}

    try:
        aggregate_rows = runner.run(master_list_aggregate_sql(settings), params)
        result["aggregate"] = _to_totals(aggregate_rows[0] if aggregate_rows else None)

        rows: List[Dict[str, Any]] = []
        page_count = 0
        for page in runner.run_paged(master_list_detail_sql(settings), params, page_size=settings.query_page_size):
            page_count += 1
            rows.extend(page)
            if len(rows) >= settings.master_list_max_rows:
                rows = rows[:settings.master_list_max_rows]
                logger.info(f"Row budget of {settings.master_list_max_rows} reached after {page_count} page(s)")
                break
        result["rows"] = rows
        logger.debug(
            f"Service transactions as of {balance_as_of}: {len(rows)} row(s) loaded, "
            f"{result['aggregate'].total_count} in population"
        )
    except QueryError as e:
        logger.error(f"Error searching service transactions: {e}")
        return {"rows": [], "aggregate": MasterListTotals()}

    return result


def search_customer_summary(
    runner: QueryRunner,
    balance_as_of: str,
    settings: Optional[Settings] = None
) -> List[Dict[str, Any]]:
    settings = settings or get_settings()
    params = {"as_of": balance_as_of, "service_department": settings.service_department_id}
    try:
        summary = runner.run(customer_summary_sql(settings), params)
    except QueryError as e:
        logger.error(f"Error searching service transaction summary: {e}")
        return []
    logger.debug(f"Customer summary: {len(summary)} customer(s)")
    return summary


def run_portal_query(runner: QueryRunner, settings: Optional[Settings] = None) -> List[Dict[str, Any]]:
    """
    One row per sales order with unbilled service lines; each row carries
    its unbilled line items under 'unbilled_items' in line order.
    """
    settings = settings or get_settings()
    params = {"service_department": settings.service_department_id, "closed": False}
    try:
        orders = runner.run(PORTAL_ORDERS_SQL, params)
        lines = runner.run(PORTAL_LINES_SQL, params)
    except QueryError as e:
        logger.error(f"Error running unbilled sales order query: {e}")
        return []

    items_by_order: Dict[Any, List[Dict[str, Any]]] = {}
    for line in lines:
        items_by_order.setdefault(line["so_id"], []).append({
            "item_name": line["item_name"],
            "quantity": line["quantity"],
            "net_amount": line["net_amount"],
        })
    for order in orders:
        order["unbilled_items"] = items_by_order.get(order["so_id"], [])

    logger.info(f"Found {len(orders)} Sales Orders with unbilled items")
    return orders

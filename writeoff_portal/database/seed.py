"""
Helpers for loading reference data and sample documents into the ledger
"""
import logging
from datetime import date, datetime
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from .models import CustomerModel, DepartmentModel, ItemModel, TransactionModel, TransactionLineModel

logger = logging.getLogger(__name__)

STATUS_TEXT = {
    ("SalesOrd", "F"): "Sales Order : Pending Billing",
    ("SalesOrd", "G"): "Sales Order : Billed",
    ("SalesOrd", "H"): "Sales Order : Closed",
    ("CustInvc", "A"): "Invoice : Open",
    ("CustInvc", "B"): "Invoice : Paid In Full",
    ("CustCred", "A"): "Credit Memo : Open",
    ("CustCred", "B"): "Credit Memo : Fully Applied",
}

TRANID_PREFIX = {
    "SalesOrd": "SO",
    "CustInvc": "INV",
    "CustCred": "CM",
    "Journal": "JE",
    "CustPymt": "PYMT",
}


def status_text(txn_type: str, status: str) -> str:
    return STATUS_TEXT.get((txn_type, status), status or "")


def assign_tranid(txn: TransactionModel) -> str:
    """Document numbers follow the internal id; call after flush."""
    txn.tranid = f"{TRANID_PREFIX.get(txn.type, 'TXN')}{txn.id:05d}"
    return txn.tranid


def ensure_customer(session: Session, customer_id: int, name: str,
                    category_id: Optional[int] = None, category_name: Optional[str] = None) -> CustomerModel:
    customer = session.get(CustomerModel, customer_id)
    if customer is None:
        customer = CustomerModel(id=customer_id, name=name, category_id=category_id, category_name=category_name)
        session.add(customer)
        session.flush()
    return customer


def ensure_department(session: Session, department_id: int, name: str) -> DepartmentModel:
    department = session.get(DepartmentModel, department_id)
    if department is None:
        department = DepartmentModel(id=department_id, name=name)
        session.add(department)
        session.flush()
    return department


def ensure_item(session: Session, item_id: int, itemid: str) -> ItemModel:
    item = session.get(ItemModel, item_id)
    if item is None:
        item = ItemModel(id=item_id, itemid=itemid, display_name=itemid)
        session.add(item)
        session.flush()
    return item


def create_sales_order(
    session: Session,
    entity_id: int,
    lines: List[Dict[str, Any]],
    trandate: Optional[date] = None,
    department_id: Optional[int] = None,
    status: str = "F",
    **attributes: Any
) -> TransactionModel:
    """
    Create a sales order. Each line dict takes item_id, quantity, rate,
    net_amount (defaults to quantity * rate) and department_id.
    """
    order = TransactionModel(
        type="SalesOrd",
        trandate=trandate or date.today(),
        entity_id=entity_id,
        status=status,
        status_text=status_text("SalesOrd", status),
        department_id=department_id,
        **attributes
    )
    for sequence, line in enumerate(lines, start=1):
        quantity = line.get("quantity", 1)
        rate = line.get("rate", 0.0)
        order.lines.append(TransactionLineModel(
            line_sequence=sequence,
            item_id=line.get("item_id"),
            quantity=quantity,
            rate=rate,
            net_amount=line.get("net_amount", round(quantity * rate, 2)),
            department_id=line.get("department_id", department_id),
            is_closed=line.get("is_closed", False),
        ))
    order.total = round(sum(l.net_amount for l in order.lines), 2)
    session.add(order)
    session.flush()
    assign_tranid(order)
    return order


def create_open_document(
    session: Session,
    txn_type: str,
    entity_id: int,
    amount: float,
    trandate: date,
    line_departments: Optional[List[Optional[int]]] = None,
    department_id: Optional[int] = None,
    externalid: Optional[str] = None,
) -> TransactionModel:
    """
    Create an open invoice (CustInvc) or credit memo (CustCred) with one
    item line per entry in line_departments, splitting the amount evenly.
    """
    departments = line_departments or [department_id]
    txn = TransactionModel(
        type=txn_type,
        trandate=trandate,
        entity_id=entity_id,
        status="A",
        status_text=status_text(txn_type, "A"),
        total=amount,
        amount_unpaid=amount if txn_type == "CustInvc" else 0.0,
        amount_unused=amount if txn_type == "CustCred" else 0.0,
        department_id=department_id,
        externalid=externalid,
    )
    share = round(amount / len(departments), 2)
    for sequence, line_department in enumerate(departments, start=1):
        txn.lines.append(TransactionLineModel(
            line_sequence=sequence,
            quantity=1,
            rate=share,
            net_amount=share,
            department_id=line_department,
        ))
    session.add(txn)
    session.flush()
    assign_tranid(txn)
    return txn


def seed_demo_data(session: Session, cbsi_entity_id: int = 335, service_department_id: int = 13) -> Dict[str, Any]:
    """Load a small, self-consistent data set for the demo and local runs"""
    logger.info("Seeding demo data...")

    ensure_department(session, service_department_id, "Service")
    ensure_department(session, 1, "Retail")
    ensure_customer(session, cbsi_entity_id, "CBSI", category_id=2, category_name="Service Vendor")
    ensure_customer(session, 1001, "Harbor Dental Group", category_id=1, category_name="Retail")
    ensure_customer(session, 1002, "Old Vendor Supply", category_id=4, category_name="Old Vendor")
    ensure_item(session, 501, "SVC-LABOR")
    ensure_item(session, 502, "SVC-TRIP")
    ensure_item(session, 503, "PART-COMPRESSOR")

    orders = [
        create_sales_order(
            session, 1001,
            [{"item_id": 501, "quantity": 2, "rate": 50.0}],
            trandate=date(2024, 3, 4), department_id=service_department_id,
            job_id="J-1001", warranty_type="Manufacturer", epic_auth="AUTH-77",
            job_details="Replace compressor", job_state="Completed",
            scheduled_date=date(2024, 3, 6), job_started=date(2024, 3, 6), job_completed=date(2024, 3, 7),
        ),
        create_sales_order(
            session, 1001,
            [{"item_id": 502, "quantity": 1, "rate": 150.75}, {"item_id": 503, "quantity": 1, "rate": 100.0}],
            trandate=date(2024, 4, 12), department_id=service_department_id,
            job_id="J-1002", warranty_type="Extended",
            queued_for_write_off=datetime(2024, 5, 1, 9, 30),
        ),
        create_sales_order(
            session, 1002,
            [{"item_id": 501, "quantity": 1, "rate": 0.0}],
            trandate=date(2024, 6, 20), department_id=service_department_id,
            job_id="J-1003", research_notes="Waiting on manufacturer claim", research_follow_up="7/15/2024",
        ),
    ]

    documents = [
        create_open_document(session, "CustInvc", 1001, 420.00, date(2024, 2, 1),
                             line_departments=[service_department_id, 1]),
        create_open_document(session, "CustInvc", 1002, 1234.50, date(2024, 8, 15), line_departments=[1]),
        create_open_document(session, "CustCred", 1001, 75.25, date(2024, 9, 30),
                             line_departments=[service_department_id]),
        create_open_document(session, "CustInvc", 1001, 999.99, date(2025, 1, 15),
                             line_departments=[service_department_id]),
    ]

    logger.info(f"Seeded {len(orders)} sales orders and {len(documents)} open documents")
    return {"sales_orders": [o.id for o in orders], "documents": [d.id for d in documents]}

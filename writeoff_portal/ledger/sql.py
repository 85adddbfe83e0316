"""
SQLAlchemy implementations of the QueryRunner and Ledger capabilities
"""
import logging
import re
from contextlib import contextmanager
from datetime import date
from typing import Any, Dict, Iterator, List, Optional

from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..database import Database, get_db
from ..database.models import ApplicationModel, CustomerModel, TransactionModel, TransactionLineModel
from ..database.seed import assign_tranid, status_text
from .base import (
    Document, Ledger, LedgerError, QueryError, QueryRunner, RecordNotFoundError, RecordType, TYPE_CODES
)
from .governance import GovernanceMeter

logger = logging.getLogger(__name__)

PHONE_PATTERN = re.compile(r"\(?\b\d{3}\)?[-.\s]?\d{3}[-.\s]\d{4}\b")

BODY_FIELDS = (
    "tranid", "externalid", "trandate", "entity_id", "status", "status_text", "memo", "total",
    "amount_unpaid", "amount_unused", "created_from_id", "department_id", "payment_method_id",
    "payment", "ship_address",
)

SALES_ORDER_FIELDS = (
    "job_id", "queued_for_write_off", "warranty_type", "epic_auth", "ship_date", "est_ship_date",
    "job_details", "billing_completed_by", "job_state", "scheduled_date", "job_started",
    "job_completed", "research_notes", "research_follow_up", "parts_status",
)

SUBMITTABLE_FIELDS = {
    RecordType.SALES_ORDER: set(SALES_ORDER_FIELDS) | {"memo", "ship_address"},
    RecordType.INVOICE: {"memo", "externalid"},
}

MANDATORY_FIELDS = {
    RecordType.SALES_ORDER: {"entity_id": "Customer"},
    RecordType.INVOICE: {"entity_id": "Customer", "trandate": "Date"},
    RecordType.CUSTOMER_PAYMENT: {"entity_id": "Customer", "trandate": "Date"},
    RecordType.JOURNAL_ENTRY: {"trandate": "Date"},
}

CENT = 0.005

# Largest id an INTEGER primary key can hold
MAX_RECORD_ID = 2 ** 63 - 1


class SqlQueryRunner(QueryRunner):
    """Runs raw SQL through a Database session and maps rows to dicts"""

    def __init__(self, db: Optional[Database] = None):
        self.db = db or get_db()

    def run(self, statement: str, params: Optional[Dict[str, Any]] = None) -> List[Dict[str, Any]]:
        try:
            with self.db.get_session() as session:
                result = session.execute(text(statement), params or {})
                return [dict(row) for row in result.mappings().all()]
        except SQLAlchemyError as e:
            raise QueryError(str(e)) from e

    def run_paged(
        self,
        statement: str,
        params: Optional[Dict[str, Any]] = None,
        page_size: int = 1000
    ) -> Iterator[List[Dict[str, Any]]]:
        """Yield pages of rows; the statement must not carry its own LIMIT"""
        paged_statement = f"{statement} LIMIT :page_limit OFFSET :page_offset"
        offset = 0
        while True:
            page = self.run(paged_statement, {**(params or {}), "page_limit": page_size, "page_offset": offset})
            if not page:
                return
            yield page
            if len(page) < page_size:
                return
            offset += page_size


class SqlLedger(Ledger):
    """
    Ledger over the relational store. Every public call spends governance
    units from the meter before it touches the database.
    """

    def __init__(self, db: Optional[Database] = None, meter: Optional[GovernanceMeter] = None):
        self.db = db or get_db()
        self.meter = meter or GovernanceMeter(limit=None)

    # ------------------------------------------------------------------
    # Public operations
    # ------------------------------------------------------------------

    def load(self, record_type: RecordType, record_id: int) -> Document:
        self.meter.consume("load")
        with self._session() as session:
            txn = self._get(session, record_type, record_id)
            return self._to_document(session, record_type, txn)

    def create(self, record_type: RecordType) -> Document:
        self.meter.consume("create")
        if record_type == RecordType.JOURNAL_ENTRY:
            return Document(record_type=record_type, fields={"trandate": date.today()}, sublists={"line": []})
        if record_type == RecordType.INVOICE:
            return Document(record_type=record_type, fields={"trandate": date.today()}, sublists={"item": []})
        raise LedgerError(f"Creating {record_type.value} records is not supported")

    def transform(self, from_type: RecordType, from_id: int, to_type: RecordType) -> Document:
        self.meter.consume("transform")
        with self._session() as session:
            if (from_type, to_type) == (RecordType.SALES_ORDER, RecordType.INVOICE):
                return self._order_to_invoice(session, self._get(session, from_type, from_id))
            if (from_type, to_type) == (RecordType.INVOICE, RecordType.CUSTOMER_PAYMENT):
                return self._invoice_to_payment(session, self._get(session, from_type, from_id))
        raise LedgerError(f"Invalid transform: {from_type.value} to {to_type.value}")

    def save(self, document: Document, ignore_mandatory_fields: bool = False) -> int:
        self.meter.consume("save")
        if not ignore_mandatory_fields:
            self._check_mandatory(document)

        savers = {
            RecordType.SALES_ORDER: self._save_sales_order,
            RecordType.INVOICE: self._save_invoice,
            RecordType.JOURNAL_ENTRY: self._save_journal_entry,
            RecordType.CUSTOMER_PAYMENT: self._save_payment,
        }
        saver = savers.get(document.record_type)
        if saver is None:
            raise LedgerError(f"Saving {document.record_type.value} records is not supported")

        with self._session() as session:
            txn = saver(session, document)
            session.flush()
            saved = {"id": txn.id, "tranid": txn.tranid, "total": txn.total, "status": txn.status}

        # Only a committed save is reflected on the caller's document
        document.id = saved.pop("id")
        document.fields.update(saved)

        logger.debug(f"Saved {document.record_type.value} {document.id} ({document.get('tranid')})")
        return document.id

    def delete(self, record_type: RecordType, record_id: int) -> None:
        self.meter.consume("delete")
        with self._session() as session:
            txn = self._get(session, record_type, record_id)
            applications = session.query(ApplicationModel)
            if record_type == RecordType.CUSTOMER_PAYMENT:
                # Applications already posted stay on the documents they touched
                applications.filter(ApplicationModel.payment_id == txn.id).update(
                    {"payment_id": None}, synchronize_session=False
                )
            elif applications.filter(ApplicationModel.doc_id == txn.id).count():
                raise LedgerError("This record cannot be deleted because it has dependent records.")
            session.delete(txn)

    def submit_fields(self, record_type: RecordType, record_id: int, values: Dict[str, Any]) -> int:
        self.meter.consume("submit_fields")
        allowed = SUBMITTABLE_FIELDS.get(record_type, set())
        unknown = sorted(name for name in values if name not in allowed)
        if unknown:
            raise LedgerError(f"Invalid field(s) for {record_type.value}: {', '.join(unknown)}")

        with self._session() as session:
            txn = self._get(session, record_type, record_id)
            for name, value in values.items():
                setattr(txn, name, value)
            return txn.id

    @contextmanager
    def _session(self) -> Iterator[Session]:
        """Database session whose driver errors surface as ledger rejections"""
        try:
            with self.db.get_session() as session:
                yield session
        except SQLAlchemyError as e:
            logger.error(f"Ledger database error: {e}")
            raise LedgerError(f"Database error: {e}") from e

    # ------------------------------------------------------------------
    # Loading
    # ------------------------------------------------------------------

    def _get(self, session: Session, record_type: RecordType, record_id: Any) -> TransactionModel:
        try:
            record_id = int(record_id)
        except (TypeError, ValueError):
            raise RecordNotFoundError(f"Invalid {record_type.value} reference key {record_id}.")
        if not 0 < record_id <= MAX_RECORD_ID:
            raise RecordNotFoundError(f"That record does not exist. ({record_type.value} {record_id})")
        txn = session.get(TransactionModel, record_id)
        if txn is None or txn.type != TYPE_CODES[record_type]:
            raise RecordNotFoundError(f"That record does not exist. ({record_type.value} {record_id})")
        return txn

    def _to_document(self, session: Session, record_type: RecordType, txn: TransactionModel) -> Document:
        fields = {name: getattr(txn, name) for name in BODY_FIELDS}
        if record_type == RecordType.SALES_ORDER:
            fields.update({name: getattr(txn, name) for name in SALES_ORDER_FIELDS})
        document = Document(record_type=record_type, id=txn.id, fields=fields)

        if record_type == RecordType.JOURNAL_ENTRY:
            document.sublists["line"] = [
                {
                    "line_id": line.id,
                    "account": line.account_id,
                    "debit": line.debit,
                    "credit": line.credit,
                    "department": line.department_id,
                    "entity": line.entity_id,
                    "memo": line.memo,
                }
                for line in txn.lines
            ]
        elif record_type == RecordType.CUSTOMER_PAYMENT:
            applications = session.query(ApplicationModel).filter(ApplicationModel.payment_id == txn.id).all()
            for application in applications:
                document.add_line(application.side, doc=application.doc_id, apply=True, amount=application.amount)
        else:
            document.sublists["item"] = [self._item_line(line) for line in txn.lines]
        return document

    @staticmethod
    def _item_line(line: TransactionLineModel) -> Dict[str, Any]:
        return {
            "line_id": line.id,
            "item": line.item_id,
            "item_name": line.item.itemid if line.item else None,
            "quantity": line.quantity,
            "rate": line.rate,
            "amount": line.net_amount,
            "department": line.department_id,
            "is_closed": bool(line.is_closed),
            "created_from_line": line.created_from_line_id,
        }

    # ------------------------------------------------------------------
    # Transforms
    # ------------------------------------------------------------------

    def _unbilled_lines(self, session: Session, order: TransactionModel) -> List[TransactionLineModel]:
        line_ids = [line.id for line in order.lines]
        billed = {
            row[0]
            for row in session.query(TransactionLineModel.created_from_line_id)
            .join(TransactionModel, TransactionLineModel.transaction_id == TransactionModel.id)
            .filter(
                TransactionModel.type == TYPE_CODES[RecordType.INVOICE],
                TransactionLineModel.created_from_line_id.in_(line_ids),
            )
            .all()
        }
        return [
            line for line in order.lines
            if not line.is_closed and line.item_id is not None and line.id not in billed
        ]

    def _order_to_invoice(self, session: Session, order: TransactionModel) -> Document:
        if order.status != "F":
            raise LedgerError(
                f"You can not initialize invoice: invalid reference {order.id}. "
                f"Sales order {order.tranid} is {order.status_text}."
            )
        lines = self._unbilled_lines(session, order)
        if not lines:
            raise LedgerError(
                f"You can not initialize invoice: invalid reference {order.id}. Nothing left to bill."
            )

        document = Document(
            record_type=RecordType.INVOICE,
            fields={
                "entity_id": order.entity_id,
                "trandate": date.today(),
                "created_from_id": order.id,
                "department_id": order.department_id,
                "memo": order.memo,
                "ship_address": order.ship_address,
                "total": round(sum(line.net_amount or 0.0 for line in lines), 2),
            },
        )
        for line in lines:
            document.add_line(
                "item",
                item=line.item_id,
                item_name=line.item.itemid if line.item else None,
                quantity=line.quantity,
                rate=line.rate,
                amount=line.net_amount,
                department=line.department_id,
                created_from_line=line.id,
            )
        return document

    def _invoice_to_payment(self, session: Session, invoice: TransactionModel) -> Document:
        if (invoice.amount_unpaid or 0.0) <= CENT:
            raise LedgerError(
                f"You can not initialize customerpayment: invoice {invoice.tranid} has no amount due."
            )

        document = Document(
            record_type=RecordType.CUSTOMER_PAYMENT,
            fields={
                "entity_id": invoice.entity_id,
                "trandate": date.today(),
                "created_from_id": invoice.id,
                "payment": invoice.amount_unpaid,
                "payment_method_id": None,
                "memo": None,
            },
            sublists={"apply": [], "credit": []},
        )

        open_invoices = (
            session.query(TransactionModel)
            .filter(
                TransactionModel.type == TYPE_CODES[RecordType.INVOICE],
                TransactionModel.entity_id == invoice.entity_id,
                TransactionModel.amount_unpaid > CENT,
            )
            .order_by(TransactionModel.trandate, TransactionModel.id)
            .all()
        )
        for open_invoice in open_invoices:
            is_source = open_invoice.id == invoice.id
            document.add_line(
                "apply",
                doc=open_invoice.id,
                refnum=open_invoice.tranid,
                trandate=open_invoice.trandate,
                total=open_invoice.total,
                due=open_invoice.amount_unpaid,
                apply=is_source,
                amount=open_invoice.amount_unpaid if is_source else 0.0,
            )

        credits = (
            session.query(TransactionModel)
            .filter(
                TransactionModel.type.in_([TYPE_CODES[RecordType.CREDIT_MEMO], TYPE_CODES[RecordType.JOURNAL_ENTRY]]),
                TransactionModel.entity_id == invoice.entity_id,
                TransactionModel.amount_unused > CENT,
            )
            .order_by(TransactionModel.trandate, TransactionModel.id)
            .all()
        )
        for credit in credits:
            document.add_line(
                "credit",
                doc=credit.id,
                refnum=credit.tranid,
                type=credit.type,
                trandate=credit.trandate,
                total=credit.total,
                due=credit.amount_unused,
                apply=False,
                amount=0.0,
            )
        return document

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    @staticmethod
    def _check_mandatory(document: Document) -> None:
        required = MANDATORY_FIELDS.get(document.record_type, {})
        missing = [label for name, label in required.items() if document.get(name) in (None, "")]
        if missing:
            raise LedgerError(f"Please enter value(s) for: {', '.join(missing)}")

    @staticmethod
    def _check_address(document: Document) -> None:
        address = document.get("ship_address") or ""
        if PHONE_PATTERN.search(address):
            raise LedgerError(
                "Address Validation Failed: the shipping address contains a phone number.\n"
                f"Address: {address}"
            )

    @staticmethod
    def _check_entity(session: Session, entity_id: Optional[int]) -> None:
        if entity_id is not None and session.get(CustomerModel, entity_id) is None:
            raise LedgerError(f"Invalid entity reference key {entity_id}.")

    # ------------------------------------------------------------------
    # Saving
    # ------------------------------------------------------------------

    def _refresh_order_status(self, session: Session, order: TransactionModel) -> None:
        if order.lines and all(line.is_closed for line in order.lines):
            order.status = "H"
        elif not self._unbilled_lines(session, order):
            order.status = "G"
        order.status_text = status_text(order.type, order.status)

    def _save_sales_order(self, session: Session, document: Document) -> TransactionModel:
        if document.id is None:
            raise LedgerError("New sales orders cannot be entered through the ledger")
        self._check_address(document)
        order = self._get(session, RecordType.SALES_ORDER, document.id)

        for name in SALES_ORDER_FIELDS + ("memo", "ship_address"):
            if name in document.fields:
                setattr(order, name, document.get(name))

        lines_by_id = {line.id: line for line in order.lines}
        for row in document.sublists.get("item", []):
            line = lines_by_id.get(row.get("line_id"))
            if line is not None:
                line.is_closed = bool(row.get("is_closed"))

        self._refresh_order_status(session, order)
        return order

    def _save_invoice(self, session: Session, document: Document) -> TransactionModel:
        self._check_address(document)
        self._check_entity(session, document.get("entity_id"))

        if document.id is not None:
            invoice = self._get(session, RecordType.INVOICE, document.id)
            invoice.entity_id = document.get("entity_id")
            invoice.memo = document.get("memo")
            return invoice

        rows = document.sublists.get("item", [])
        if not rows:
            raise LedgerError("You must enter at least one line item for this transaction.")

        total = round(sum(float(row.get("amount") or 0.0) for row in rows), 2)
        status = "A" if total > CENT else "B"
        invoice = TransactionModel(
            type=TYPE_CODES[RecordType.INVOICE],
            trandate=document.get("trandate") or date.today(),
            entity_id=document.get("entity_id"),
            status=status,
            status_text=status_text(TYPE_CODES[RecordType.INVOICE], status),
            memo=document.get("memo"),
            total=total,
            amount_unpaid=total,
            created_from_id=document.get("created_from_id"),
            department_id=document.get("department_id"),
            ship_address=document.get("ship_address"),
        )
        for sequence, row in enumerate(rows, start=1):
            invoice.lines.append(TransactionLineModel(
                line_sequence=sequence,
                item_id=row.get("item"),
                quantity=row.get("quantity") or 0.0,
                rate=row.get("rate") or 0.0,
                net_amount=row.get("amount") or 0.0,
                department_id=row.get("department"),
                created_from_line_id=row.get("created_from_line"),
            ))
        session.add(invoice)
        session.flush()
        assign_tranid(invoice)

        if invoice.created_from_id:
            order = session.get(TransactionModel, invoice.created_from_id)
            if order is not None and order.type == TYPE_CODES[RecordType.SALES_ORDER]:
                self._refresh_order_status(session, order)
        return invoice

    def _save_journal_entry(self, session: Session, document: Document) -> TransactionModel:
        if document.id is not None:
            raise LedgerError("Posted journal entries cannot be edited through the ledger")

        rows = document.sublists.get("line", [])
        if len(rows) < 2:
            raise LedgerError("You must enter at least two lines for a journal entry.")
        if any(row.get("account") is None for row in rows):
            raise LedgerError("Please enter value(s) for: Account")

        total_debit = round(sum(float(row.get("debit") or 0.0) for row in rows), 2)
        total_credit = round(sum(float(row.get("credit") or 0.0) for row in rows), 2)
        if abs(total_debit - total_credit) > CENT:
            raise LedgerError("The total debit and credit amounts must be equal.")

        for row in rows:
            self._check_entity(session, row.get("entity"))

        # Credit lines posted against a customer become credit that customer can apply
        customer_credit_rows = [row for row in rows if row.get("entity") is not None and row.get("credit")]
        customer_credit = round(sum(float(row["credit"]) for row in customer_credit_rows), 2)
        credit_entity = customer_credit_rows[0]["entity"] if customer_credit_rows else None

        journal = TransactionModel(
            type=TYPE_CODES[RecordType.JOURNAL_ENTRY],
            trandate=document.get("trandate") or date.today(),
            entity_id=credit_entity,
            status="B",
            status_text="Journal : Approved for Posting",
            memo=document.get("memo"),
            total=total_debit,
            amount_unused=customer_credit,
        )
        for sequence, row in enumerate(rows, start=1):
            journal.lines.append(TransactionLineModel(
                line_sequence=sequence,
                account_id=row.get("account"),
                debit=row.get("debit"),
                credit=row.get("credit"),
                department_id=row.get("department"),
                entity_id=row.get("entity"),
                memo=row.get("memo"),
            ))
        session.add(journal)
        session.flush()
        assign_tranid(journal)
        return journal

    def _save_payment(self, session: Session, document: Document) -> TransactionModel:
        if document.id is not None:
            raise LedgerError("Customer payments cannot be edited through the ledger")

        entity_id = document.get("entity_id")

        def selected(sublist_id: str) -> List[Dict[str, Any]]:
            return [
                row for row in document.sublists.get(sublist_id, [])
                if row.get("apply") and float(row.get("amount") or 0.0) > 0
            ]

        applied, credits = selected("apply"), selected("credit")
        if not applied and not credits:
            raise LedgerError("You must enter at least one line item for this transaction.")

        apply_total = round(sum(float(row["amount"]) for row in applied), 2)
        credit_total = round(sum(float(row["amount"]) for row in credits), 2)
        if credit_total - apply_total > CENT:
            raise LedgerError("The total of applied credits cannot exceed the total of applied invoices.")

        postings = []
        for row in applied:
            target = session.get(TransactionModel, row.get("doc"))
            if target is None or target.type != TYPE_CODES[RecordType.INVOICE] or target.entity_id != entity_id:
                raise LedgerError(f"Invalid apply reference key {row.get('doc')}.")
            amount = round(float(row["amount"]), 2)
            if amount - (target.amount_unpaid or 0.0) > CENT:
                raise LedgerError(f"The amount applied to {target.tranid} exceeds the amount due.")
            postings.append((target, "apply", amount))

        credit_types = (TYPE_CODES[RecordType.CREDIT_MEMO], TYPE_CODES[RecordType.JOURNAL_ENTRY])
        for row in credits:
            target = session.get(TransactionModel, row.get("doc"))
            if target is None or target.type not in credit_types or target.entity_id != entity_id:
                raise LedgerError(f"Invalid credit reference key {row.get('doc')}.")
            amount = round(float(row["amount"]), 2)
            if amount - (target.amount_unused or 0.0) > CENT:
                raise LedgerError(f"The credit applied from {target.tranid} exceeds the credit available.")
            postings.append((target, "credit", amount))

        # The payment amount is derived from what was applied, whatever the document said
        payment_amount = round(apply_total - credit_total, 2)
        payment = TransactionModel(
            type=TYPE_CODES[RecordType.CUSTOMER_PAYMENT],
            trandate=document.get("trandate") or date.today(),
            entity_id=entity_id,
            status="C",
            status_text="Payment : Deposited",
            memo=document.get("memo"),
            payment_method_id=document.get("payment_method_id"),
            payment=payment_amount,
            total=payment_amount,
            created_from_id=document.get("created_from_id"),
        )
        session.add(payment)
        session.flush()
        assign_tranid(payment)

        for target, side, amount in postings:
            if side == "apply":
                target.amount_unpaid = round((target.amount_unpaid or 0.0) - amount, 2)
                if target.amount_unpaid <= CENT:
                    target.status = "B"
            else:
                target.amount_unused = round((target.amount_unused or 0.0) - amount, 2)
                if target.type == TYPE_CODES[RecordType.CREDIT_MEMO] and target.amount_unused <= CENT:
                    target.status = "B"
            target.status_text = status_text(target.type, target.status) if target.type != "Journal" else target.status_text
            session.add(ApplicationModel(payment_id=payment.id, doc_id=target.id, side=side, amount=amount))
        return payment

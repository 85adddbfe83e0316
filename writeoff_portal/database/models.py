"""
SQLAlchemy ORM Models for the accounting ledger
"""
from sqlalchemy import Column, String, Float, Date, DateTime, Text, Boolean, Integer, ForeignKey
from sqlalchemy.orm import declarative_base, relationship
from datetime import datetime

Base = declarative_base()


class CustomerModel(Base):
    __tablename__ = "customers"

    id = Column(Integer, primary_key=True)
    name = Column(String, nullable=False)
    category_id = Column(Integer, nullable=True)
    category_name = Column(String, nullable=True)


class DepartmentModel(Base):
    __tablename__ = "departments"

    id = Column(Integer, primary_key=True)
    name = Column(String, nullable=False)


class ItemModel(Base):
    __tablename__ = "items"

    id = Column(Integer, primary_key=True)
    itemid = Column(String, nullable=True)
    display_name = Column(String, nullable=True)


class TransactionModel(Base):
    """
    Every document type lives here, discriminated by `type`:
    SalesOrd, CustInvc, CustCred, Journal, CustPymt
    """
    __tablename__ = "transactions"

    id = Column(Integer, primary_key=True, autoincrement=True)
    type = Column(String, index=True, nullable=False)
    tranid = Column(String, index=True)
    externalid = Column(String, nullable=True)
    trandate = Column(Date, index=True)
    entity_id = Column(Integer, ForeignKey("customers.id"), nullable=True)
    status = Column(String, index=True)
    status_text = Column(String)
    memo = Column(Text, nullable=True)
    total = Column(Float, default=0.0)
    amount_unpaid = Column(Float, default=0.0)
    amount_unused = Column(Float, default=0.0)
    created_from_id = Column(Integer, ForeignKey("transactions.id"), nullable=True)
    department_id = Column(Integer, ForeignKey("departments.id"), nullable=True)
    payment_method_id = Column(Integer, nullable=True)
    payment = Column(Float, nullable=True)
    ship_address = Column(Text, nullable=True)

    # Sales order custom attributes
    job_id = Column(String, nullable=True)
    queued_for_write_off = Column(DateTime, nullable=True)
    warranty_type = Column(String, nullable=True)
    epic_auth = Column(String, nullable=True)
    ship_date = Column(Date, nullable=True)
    est_ship_date = Column(Date, nullable=True)
    job_details = Column(Text, nullable=True)
    billing_completed_by = Column(String, nullable=True)
    job_state = Column(String, nullable=True)
    scheduled_date = Column(Date, nullable=True)
    job_started = Column(Date, nullable=True)
    job_completed = Column(Date, nullable=True)
    research_notes = Column(Text, nullable=True)
    research_follow_up = Column(String, nullable=True)  # M/D/YYYY
    parts_status = Column(String, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    customer = relationship("CustomerModel")
    lines = relationship(
        "TransactionLineModel",
        back_populates="transaction",
        order_by="TransactionLineModel.line_sequence",
        cascade="all, delete-orphan",
    )


class TransactionLineModel(Base):
    __tablename__ = "transaction_lines"

    id = Column(Integer, primary_key=True, autoincrement=True)
    transaction_id = Column(Integer, ForeignKey("transactions.id"), index=True, nullable=False)
    line_sequence = Column(Integer, default=0)

    # Item lines
    item_id = Column(Integer, ForeignKey("items.id"), nullable=True)
    quantity = Column(Float, default=0.0)
    rate = Column(Float, default=0.0)
    net_amount = Column(Float, default=0.0)
    is_closed = Column(Boolean, default=False)
    created_from_line_id = Column(Integer, ForeignKey("transaction_lines.id"), nullable=True, index=True)

    # Ledger lines
    account_id = Column(Integer, nullable=True)
    debit = Column(Float, nullable=True)
    credit = Column(Float, nullable=True)
    entity_id = Column(Integer, ForeignKey("customers.id"), nullable=True)

    department_id = Column(Integer, ForeignKey("departments.id"), nullable=True)
    memo = Column(Text, nullable=True)

    transaction = relationship("TransactionModel", back_populates="lines")
    item = relationship("ItemModel")


class ApplicationModel(Base):
    """
    A credit application recorded when a payment is saved. Outlives the
    payment: payment_id is cleared when the payment document is deleted.
    """
    __tablename__ = "applications"

    id = Column(Integer, primary_key=True, autoincrement=True)
    payment_id = Column(Integer, nullable=True, index=True)
    doc_id = Column(Integer, ForeignKey("transactions.id"), index=True, nullable=False)
    side = Column(String, nullable=False)  # apply / credit
    amount = Column(Float, nullable=False)
    applied_at = Column(DateTime, default=datetime.utcnow)

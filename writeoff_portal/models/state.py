"""
LangGraph State Definition for the CBSI bill-and-JE workflow
"""
from typing import TypedDict, Optional, List

from ..ledger.base import Document


class BillAndJEState(TypedDict, total=False):
    """State passed through every node of the CBSI bill-and-JE graph"""

    # Input
    so_id: str
    current_stage: str

    # CREATE_INVOICE outputs
    invoice_id: int
    invoice_tranid: str
    invoice_total: float

    # CREATE_JOURNAL_ENTRY outputs
    je_id: int
    je_tranid: str

    # PREPARE_APPLICATION / SELECT_LINES outputs
    payment: Document
    credit_line_found: bool
    apply_line_found: bool
    credit_amount: float
    apply_amount: float

    # VALIDATE outputs
    validated: bool
    validation_errors: List[str]

    # SAVE_APPLICATION / CLEANUP outputs
    payment_id: Optional[int]
    payment_deleted: bool
    cleanup_error: Optional[str]

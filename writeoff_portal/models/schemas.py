"""
Pydantic schemas for API requests/responses

Field names are snake_case in Python and camelCase on the wire.
"""
from enum import Enum
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


class Action(str, Enum):
    QUEUE = "queue"
    UNQUEUE = "unqueue"
    CLOSE = "close"
    AUTO_BILL = "auto-bill"
    CBSI_BILL_JE = "cbsi-bill-je"
    ADD_NOTE = "add-note"


BULK_ACTIONS = (Action.QUEUE, Action.CLOSE, Action.AUTO_BILL, Action.CBSI_BILL_JE)


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_response(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)


class PortalActionRequest(CamelModel):
    """
    Body of POST /portal. Single-item requests carry action + soId,
    bulk requests carry selectedSOIds (+ bulkAction).
    """
    action: Optional[str] = None
    so_id: Optional[str] = None
    note: Optional[str] = None
    follow_up_date: Optional[str] = None
    selected_so_ids: Optional[List[str]] = Field(default=None, alias="selectedSOIds")
    bulk_action: Optional[str] = None

    @field_validator("so_id", mode="before")
    @classmethod
    def _so_id_to_str(cls, value: Any) -> Any:
        if value is None or value == "":
            return None
        return str(value)

    @field_validator("selected_so_ids", mode="before")
    @classmethod
    def _split_ids(cls, value: Union[str, List[Any], None]) -> Optional[List[str]]:
        if value is None:
            return None
        if isinstance(value, str):
            value = value.split(",")
        return [str(v).strip() for v in value if str(v).strip()]

    @property
    def is_bulk(self) -> bool:
        return self.selected_so_ids is not None


class ActionResponse(CamelModel):
    success: bool
    message: str
    invoice_tranid: Optional[str] = None
    invoice_id: Optional[int] = None
    je_tranid: Optional[str] = None
    amount: Optional[float] = None


class BulkActionResponse(CamelModel):
    success: bool
    message: str
    processed_ids: List[str] = []
    failed_ids: List[str] = []
    governance_stopped: bool = False
    count: int = 0
    remaining_ids: List[str] = []
    failure_details: Optional[Dict[str, str]] = None
    invoice_details: Optional[List[Dict[str, Any]]] = None
    cbsi_details: Optional[List[Dict[str, Any]]] = None


class PortalSummary(CamelModel):
    summary_total: int = 0
    summary_total_lines: int = 0
    summary_total_amount: float = 0.0
    queued_total: int = 0
    queued_total_lines: int = 0
    queued_total_amount: float = 0.0


class LoadDataResponse(PortalSummary):
    success: bool = True
    table_body_html: str = ""
    message: Optional[str] = None


class MasterListTotals(BaseModel):
    total_count: int = 0
    invoice_count: int = 0
    invoice_total: float = 0.0
    credit_count: int = 0
    credit_total: float = 0.0
    net_total: float = 0.0


class CustomerSummary(BaseModel):
    customer_id: Optional[int] = None
    customer_name: str = ""
    invoice_count: int = 0
    credit_count: int = 0
    net_amount: float = 0.0


class MasterListReport(BaseModel):
    """Everything the master list page and export render from"""
    balance_as_of: str
    rows: List[Dict[str, Any]] = []
    totals: MasterListTotals = MasterListTotals()
    customers: List[CustomerSummary] = []
    truncated: bool = False
    duplicate_count: int = 0

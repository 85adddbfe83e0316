"""
Capability interfaces over the accounting ledger

The portal never talks to storage directly: reads go through a QueryRunner,
record work goes through a Ledger. Both can be swapped for another backend.
"""
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterator, List, Optional


class RecordType(str, Enum):
    SALES_ORDER = "salesorder"
    INVOICE = "invoice"
    CREDIT_MEMO = "creditmemo"
    JOURNAL_ENTRY = "journalentry"
    CUSTOMER_PAYMENT = "customerpayment"


# Transaction type codes as stored on the transaction table
TYPE_CODES = {
    RecordType.SALES_ORDER: "SalesOrd",
    RecordType.INVOICE: "CustInvc",
    RecordType.CREDIT_MEMO: "CustCred",
    RecordType.JOURNAL_ENTRY: "Journal",
    RecordType.CUSTOMER_PAYMENT: "CustPymt",
}


class LedgerError(Exception):
    """The ledger rejected an operation (validation, missing fields, bad reference)"""


class RecordNotFoundError(LedgerError):
    pass


class UsageLimitExceededError(LedgerError):
    pass


class ApplicationValidationError(LedgerError):
    """The payment application did not balance and was not saved"""


class QueryError(Exception):
    pass


@dataclass
class Document:
    """
    In-memory copy of a ledger record: body fields plus named sublists of
    line dicts. Changes are only persisted by Ledger.save().
    """
    record_type: RecordType
    id: Optional[int] = None
    fields: Dict[str, Any] = field(default_factory=dict)
    sublists: Dict[str, List[Dict[str, Any]]] = field(default_factory=dict)

    def get(self, field_id: str, default: Any = None) -> Any:
        return self.fields.get(field_id, default)

    def set(self, field_id: str, value: Any) -> None:
        self.fields[field_id] = value

    def line_count(self, sublist_id: str) -> int:
        return len(self.sublists.get(sublist_id, []))

    def _line(self, sublist_id: str, line: int) -> Dict[str, Any]:
        lines = self.sublists.get(sublist_id, [])
        if line < 0 or line >= len(lines):
            raise LedgerError(f"Invalid sublist operation: line {line} of '{sublist_id}' does not exist")
        return lines[line]

    def get_line(self, sublist_id: str, line: int, field_id: str, default: Any = None) -> Any:
        return self._line(sublist_id, line).get(field_id, default)

    def set_line(self, sublist_id: str, line: int, field_id: str, value: Any) -> None:
        row = self._line(sublist_id, line)
        # Applied amounts are capped at what the line has open
        if field_id == "amount" and "due" in row and value is not None:
            value = min(float(value), float(row["due"]))
        row[field_id] = value

    def add_line(self, sublist_id: str, **values: Any) -> int:
        lines = self.sublists.setdefault(sublist_id, [])
        lines.append(dict(values))
        return len(lines) - 1


class QueryRunner(ABC):
    """Read-only query execution returning row dicts"""

    @abstractmethod
    def run(self, statement: Any, params: Optional[Dict[str, Any]] = None) -> List[Dict[str, Any]]:
        ...

    @abstractmethod
    def run_paged(
        self,
        statement: Any,
        params: Optional[Dict[str, Any]] = None,
        page_size: int = 1000
    ) -> Iterator[List[Dict[str, Any]]]:
        ...


class Ledger(ABC):
    """Record CRUD and document transformation, each call metered"""

    @abstractmethod
    def load(self, record_type: RecordType, record_id: int) -> Document:
        ...

    @abstractmethod
    def create(self, record_type: RecordType) -> Document:
        ...

    @abstractmethod
    def transform(self, from_type: RecordType, from_id: int, to_type: RecordType) -> Document:
        ...

    @abstractmethod
    def save(self, document: Document, ignore_mandatory_fields: bool = False) -> int:
        ...

    @abstractmethod
    def delete(self, record_type: RecordType, record_id: int) -> None:
        ...

    @abstractmethod
    def submit_fields(self, record_type: RecordType, record_id: int, values: Dict[str, Any]) -> int:
        ...

# Ledger package
from .base import (
    ApplicationValidationError, Document, Ledger, LedgerError, QueryError, QueryRunner,
    RecordNotFoundError, RecordType, UsageLimitExceededError, TYPE_CODES
)
from .governance import GovernanceMeter, OPERATION_COSTS
from .sql import SqlLedger, SqlQueryRunner

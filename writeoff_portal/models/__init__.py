# Models package
from .state import BillAndJEState
from .schemas import (
    Action, BULK_ACTIONS, PortalActionRequest, ActionResponse, BulkActionResponse,
    PortalSummary, LoadDataResponse, MasterListTotals, CustomerSummary, MasterListReport
)

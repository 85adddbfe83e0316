"""
Execution budget for one request

Each ledger operation spends units from a fixed allowance. Bulk loops read
the remaining budget before every item and stop early when it runs low.
"""
import logging
import math
from typing import Dict, Optional

from .base import UsageLimitExceededError

logger = logging.getLogger(__name__)

OPERATION_COSTS: Dict[str, int] = {
    "load": 10,
    "create": 10,
    "transform": 10,
    "submit_fields": 10,
    "save": 20,
    "delete": 20,
}


class GovernanceMeter:
    def __init__(self, limit: Optional[int] = 1000, costs: Optional[Dict[str, int]] = None):
        self.limit = limit
        self.costs = dict(OPERATION_COSTS)
        if costs:
            self.costs.update(costs)
        self.used = 0

    def remaining(self) -> float:
        if self.limit is None:
            return math.inf
        return self.limit - self.used

    def consume(self, operation: str) -> int:
        cost = self.costs.get(operation, 0)
        if self.limit is not None and cost > self.remaining():
            raise UsageLimitExceededError(
                f"Script execution usage limit exceeded: '{operation}' needs {cost} units, "
                f"{self.remaining()} remaining"
            )
        self.used += cost
        return cost

    def has_budget(self, threshold: int) -> bool:
        return self.remaining() >= threshold

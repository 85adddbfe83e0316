"""
LangGraph CBSI Bill-and-JE Workflow

Bills a sales order to the CBSI counterparty, posts a balancing journal
entry and applies the entry's credit to the new invoice through a payment
document that is deleted once saved.
"""
import logging
from typing import Any, Dict, Literal, Optional

from langgraph.graph import StateGraph, END

from ..config import Settings, get_settings
from ..ledger.base import ApplicationValidationError, Ledger
from ..models.state import BillAndJEState
from ..nodes import (
    create_invoice_node,
    create_journal_entry_node,
    prepare_application_node,
    select_lines_node,
    validate_node,
    save_application_node,
    cleanup_node
)

logger = logging.getLogger(__name__)


def should_save_application(state: BillAndJEState) -> Literal["save_application", "end"]:
    """
    Conditional edge: only a validated application reaches the ledger
    """
    if state.get("validated"):
        logger.info("Routing to SAVE_APPLICATION (validation passed)")
        return "save_application"
    logger.warning("Validation failed - payment will not be saved")
    return "end"


def create_bill_and_je_graph() -> StateGraph:
    """
    Flow:
    CREATE_INVOICE -> CREATE_JOURNAL_ENTRY -> PREPARE_APPLICATION -> SELECT_LINES -> VALIDATE
        -> (if validated) SAVE_APPLICATION -> CLEANUP -> END
        -> (otherwise) END
    """
    workflow = StateGraph(BillAndJEState)

    workflow.add_node("create_invoice", create_invoice_node)
    workflow.add_node("create_journal_entry", create_journal_entry_node)
    workflow.add_node("prepare_application", prepare_application_node)
    workflow.add_node("select_lines", select_lines_node)
    workflow.add_node("validate", validate_node)
    workflow.add_node("save_application", save_application_node)
    workflow.add_node("cleanup", cleanup_node)

    workflow.set_entry_point("create_invoice")

    workflow.add_edge("create_invoice", "create_journal_entry")
    workflow.add_edge("create_journal_entry", "prepare_application")
    workflow.add_edge("prepare_application", "select_lines")
    workflow.add_edge("select_lines", "validate")

    workflow.add_conditional_edges(
        "validate",
        should_save_application,
        {
            "save_application": "save_application",
            "end": END
        }
    )

    workflow.add_edge("save_application", "cleanup")
    workflow.add_edge("cleanup", END)

    return workflow


class BillAndJEGraph:
    """
    Compiled once, invoked per sales order with that request's ledger
    """

    def __init__(self):
        self.graph = create_bill_and_je_graph()
        self.compiled = self.graph.compile()

    async def run(self, so_id: Any, ledger: Ledger, settings: Optional[Settings] = None) -> Dict[str, Any]:
        """
        Run the workflow for one sales order and return the result payload.

        Ledger rejections propagate unchanged; an unbalanced application
        raises ApplicationValidationError with the first failure reason.
        """
        initial_state: BillAndJEState = {
            "so_id": str(so_id),
            "current_stage": "START",
        }
        config = {"configurable": {"ledger": ledger, "settings": settings or get_settings()}}

        logger.info(f"CBSI Bill and JE started for SO {so_id}")
        final_state = await self.compiled.ainvoke(initial_state, config=config)

        if not final_state.get("validated"):
            errors = final_state.get("validation_errors") or ["VALIDATION FAILED"]
            raise ApplicationValidationError(errors[0])

        result = {
            "invoice_tranid": final_state.get("invoice_tranid"),
            "invoice_id": final_state.get("invoice_id"),
            "je_tranid": final_state.get("je_tranid"),
            "je_id": final_state.get("je_id"),
            "amount": final_state.get("invoice_total"),
            "payment_deleted": final_state.get("payment_deleted", False),
        }
        logger.info(
            f"CBSI Bill and JE complete: invoice {result['invoice_tranid']}, "
            f"JE {result['je_tranid']}, amount ${result['amount']:.2f}"
        )
        return result


# Global graph instance
_graph_instance = None


def get_bill_and_je_graph() -> BillAndJEGraph:
    global _graph_instance
    if _graph_instance is None:
        _graph_instance = BillAndJEGraph()
    return _graph_instance

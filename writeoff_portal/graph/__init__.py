# Graph package
from .bill_and_je import (
    ApplicationValidationError, BillAndJEGraph, create_bill_and_je_graph, get_bill_and_je_graph,
    should_save_application
)

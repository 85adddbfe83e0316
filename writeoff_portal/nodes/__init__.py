# Nodes package
from .create_invoice import create_invoice_node
from .create_journal_entry import create_journal_entry_node
from .prepare_application import prepare_application_node
from .select_lines import select_lines_node
from .validate import validate_node
from .save_application import save_application_node
from .cleanup import cleanup_node

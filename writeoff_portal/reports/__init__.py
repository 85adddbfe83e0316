# Reports package
from .builder import build_load_data, build_master_list, dedupe_rows, summarize_portal, summarize_transactions
from .formatting import format_amount, format_currency, format_date, picker_to_display_date, to_input_date
from .queries import run_portal_query, search_customer_summary, search_service_transactions

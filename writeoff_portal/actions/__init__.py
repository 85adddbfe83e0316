# Actions package
from .errors import clean_error_message
from .dispatcher import NO_SELECTION_MESSAGE, create_request_ledger, dispatch

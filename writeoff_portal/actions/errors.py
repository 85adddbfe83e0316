"""
Turning ledger exceptions into short messages for the portal
"""
import re
from typing import Optional

MAX_MESSAGE_LENGTH = 200
ADDRESS_VALIDATION_MESSAGE = (
    "Address validation error: Shipping address contains phone number. "
    "Please fix the address on this Sales Order."
)
MISSING_FIELD = re.compile(r"Please enter value\(s\) for: (.+?)(?:\n|$)")


def clean_error_message(error: Optional[BaseException]) -> str:
    """
    Known ledger patterns become one fixed sentence; anything else is cut to
    its first line and at most 200 characters.
    """
    if error is None:
        return "Unknown error"

    message = str(error) or error.__class__.__name__

    if "Address Validation Failed" in message:
        return ADDRESS_VALIDATION_MESSAGE

    if "Please enter value(s) for:" in message:
        match = MISSING_FIELD.search(message)
        if match:
            return f"Missing required field: {match.group(1)}"
        return message

    if len(message) > MAX_MESSAGE_LENGTH or "\n" in message:
        first_line = message.split("\n")[0]
        if len(first_line) > MAX_MESSAGE_LENGTH:
            return first_line[:MAX_MESSAGE_LENGTH] + "..."
        return first_line

    return message

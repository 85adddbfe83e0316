"""
Runtime configuration read from the environment (.env supported)
"""
import os
from dataclasses import dataclass, field
from typing import List, Optional


def _int_list(value: str) -> List[int]:
    return [int(part) for part in value.split(",") if part.strip()]


def _optional_int(value: Optional[str]) -> Optional[int]:
    if value is None or value.strip() == "" or value.strip().lower() == "none":
        return None
    return int(value)


@dataclass
class Settings:
    database_url: str = field(default_factory=lambda: os.getenv("DATABASE_URL", "sqlite:///./writeoff.db"))
    log_level: str = field(default_factory=lambda: os.getenv("LOG_LEVEL", "INFO"))
    seed_demo_data: bool = field(
        default_factory=lambda: os.getenv("SEED_DEMO_DATA", "false").lower() in ("1", "true", "yes")
    )

    # Execution budget per request, and the floor below which bulk loops stop
    governance_limit: Optional[int] = field(
        default_factory=lambda: _optional_int(os.getenv("GOVERNANCE_LIMIT", "1000"))
    )
    governance_threshold: int = field(default_factory=lambda: int(os.getenv("GOVERNANCE_THRESHOLD", "50")))
    cbsi_governance_threshold: int = field(
        default_factory=lambda: int(os.getenv("CBSI_GOVERNANCE_THRESHOLD", "150"))
    )

    # Report population
    service_department_id: int = field(default_factory=lambda: int(os.getenv("SERVICE_DEPARTMENT_ID", "13")))
    service_customer_categories: List[int] = field(
        default_factory=lambda: _int_list(os.getenv("SERVICE_CUSTOMER_CATEGORIES", "2,4"))
    )
    default_balance_as_of: str = field(default_factory=lambda: os.getenv("DEFAULT_BALANCE_AS_OF", "2024-12-31"))
    master_list_max_rows: int = field(default_factory=lambda: int(os.getenv("MASTER_LIST_MAX_ROWS", "5000")))
    query_page_size: int = field(default_factory=lambda: int(os.getenv("QUERY_PAGE_SIZE", "1000")))

    # CBSI bill-and-JE postings
    cbsi_entity_id: int = field(default_factory=lambda: int(os.getenv("CBSI_ENTITY_ID", "335")))
    cbsi_write_off_account_id: int = field(
        default_factory=lambda: int(os.getenv("CBSI_WRITE_OFF_ACCOUNT_ID", "470"))
    )
    cbsi_clearing_account_id: int = field(
        default_factory=lambda: int(os.getenv("CBSI_CLEARING_ACCOUNT_ID", "119"))
    )
    cbsi_payment_method_id: int = field(default_factory=lambda: int(os.getenv("CBSI_PAYMENT_METHOD_ID", "15")))
    amount_tolerance: float = field(default_factory=lambda: float(os.getenv("AMOUNT_TOLERANCE", "0.01")))


# Global settings instance
_settings_instance = None


def get_settings() -> Settings:
    global _settings_instance
    if _settings_instance is None:
        _settings_instance = Settings()
    return _settings_instance

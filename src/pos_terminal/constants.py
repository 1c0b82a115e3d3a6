"""Enumerations and shared constants for the POS terminal.

Keeps identifiers used by the data access layer (DAL), the transaction engine
and the operator-facing CLI in one place.
"""

from __future__ import annotations

from enum import Enum


# Schema version expected in config.ini before any store is touched.
EXPECTED_SCHEMA_VERSION = "1.0.0"

# Report dates and receipt file names derive from the commit timestamp.
REPORT_DATE_FORMAT = "%d/%m/%Y %H:%M:%S"
RECEIPT_FILE_FORMAT = "receipt_%Y%m%d_%H%M%S.txt"

DEFAULT_CURRENCY_SYMBOL = "Rp"
DEFAULT_CURRENCY_DECIMALS = 0

# Item id prompt sentinels used by the interactive transaction loop.
FINISH_ITEM_ID = 0
REMOVE_ITEM_ID = -1


class SessionState(str, Enum):
    """Lifecycle states of a single transaction session."""

    BROWSING = "Browsing"
    FINALIZING = "Finalizing"
    COMMITTED = "Committed"
    ABANDONED = "Abandoned"


class MenuOption(str, Enum):
    """Choices offered by the interactive main menu."""

    START_TRANSACTION = "a"
    VIEW_HISTORY = "b"
    QUIT = "q"


LEDGER_EXPORT_COLUMNS = (
    "Date",
    "ItemID",
    "ItemName",
    "UnitPrice",
    "Quantity",
    "Subtotal",
    "ReportTotal",
)


__all__ = [
    "EXPECTED_SCHEMA_VERSION",
    "REPORT_DATE_FORMAT",
    "RECEIPT_FILE_FORMAT",
    "DEFAULT_CURRENCY_SYMBOL",
    "DEFAULT_CURRENCY_DECIMALS",
    "FINISH_ITEM_ID",
    "REMOVE_ITEM_ID",
    "SessionState",
    "MenuOption",
    "LEDGER_EXPORT_COLUMNS",
]

"""Business logic layer for the POS terminal.

This module holds the transaction engine: it loads the catalog through the
Data Access Layer (DAL), reconciles cart operations against stock, and turns a
finished cart into a Sales Ledger report. All file access goes through
:mod:`pos_terminal.data_manager`.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime
from decimal import Decimal
from pathlib import Path
from typing import Any, Dict, List, Optional

from . import data_manager, log
from .cart import Cart, CartIndexError, CartLine
from .constants import (
    EXPECTED_SCHEMA_VERSION,
    RECEIPT_FILE_FORMAT,
    REPORT_DATE_FORMAT,
    SessionState,
)


class BusinessRuleViolation(Exception):
    """Raised when a requested operation violates a domain constraint."""


class ItemNotFoundError(BusinessRuleViolation):
    """Raised when no catalog item carries the requested id."""


class OutOfStockError(BusinessRuleViolation):
    """Raised when the selected item has no stock left."""


class InsufficientStockError(BusinessRuleViolation):
    """Raised when the requested quantity exceeds the available stock."""


class InvalidQuantityError(BusinessRuleViolation, ValueError):
    """Raised when a selection asks for fewer than one unit."""


class SessionStateError(BusinessRuleViolation):
    """Raised when an operation is attempted after the session has ended."""


@dataclass(frozen=True)
class RuntimeContext:
    """Container for the configuration shared by every session."""

    settings: data_manager.ConfigSettings


@dataclass
class TransactionSession:
    """State of one operator transaction, from first selection to finalize.

    The session owns the loaded catalog list exclusively. ``_positions`` maps
    item ids to their index in ``items`` and every stock change goes through
    it, replacing the entry at that position with an updated copy.
    """

    context: RuntimeContext
    items: List[data_manager.Item]
    cart: Cart = field(default_factory=Cart)
    state: SessionState = SessionState.BROWSING
    report: Optional[data_manager.Report] = None
    receipt_path: Optional[Path] = None
    persistence_errors: List[Exception] = field(default_factory=list)
    _positions: Dict[int, int] = field(default_factory=dict, repr=False, compare=False)

    def __post_init__(self) -> None:
        if not self._positions:
            self._positions = {item.item_id: position for position, item in enumerate(self.items)}


def _resolve_timestamp(candidate: Optional[datetime]) -> datetime:
    """Return ``candidate`` or the current local time when it is ``None``.

    Report dates and receipt names are printed without a zone, so the
    default is an aware datetime in the terminal's local zone. A given
    timestamp is formatted in its own zone.
    """

    return candidate if candidate is not None else datetime.now().astimezone()


def load_runtime_context(config_path: Optional[Path] = None) -> RuntimeContext:
    """Resolve ``config.ini`` and build the context used by every session.

    Args:
        config_path (Path | None): Optional override path for the configuration
            file. When omitted the data layer searches upward from the current
            working directory.

    Returns:
        RuntimeContext: Context holding the parsed settings.

    Raises:
        FileNotFoundError: If the configuration file cannot be located.
        KeyError: When mandatory configuration options are missing.
    """
    located_config = data_manager.find_config_file(config_path)
    resolved_config = Path(located_config).expanduser().resolve()
    parser = data_manager.read_config(resolved_config)
    settings = data_manager.parse_settings(parser, base_path=resolved_config.parent)
    log.info("Loaded runtime context from '%s' (catalog '%s')", resolved_config, settings.catalog_file)
    return RuntimeContext(settings=settings)


def ensure_schema_version(context: RuntimeContext) -> None:
    """Refuse to run against a configuration written for another schema.

    Raises:
        RuntimeError: If the configured schema version does not match
            ``EXPECTED_SCHEMA_VERSION``.
    """
    if context.settings.schema_version != EXPECTED_SCHEMA_VERSION:
        log.error(
            "Store schema mismatch: expected %s, found %s",
            EXPECTED_SCHEMA_VERSION,
            context.settings.schema_version,
        )
        raise RuntimeError(
            "Store schema mismatch: expected %s, found %s"
            % (EXPECTED_SCHEMA_VERSION, context.settings.schema_version)
        )

    log.debug("Schema version '%s' validated", context.settings.schema_version)


def open_session(context: RuntimeContext) -> TransactionSession:
    """Load the catalog and start a fresh session in the ``BROWSING`` state.

    Catalog load failures are not recoverable for the session and propagate
    to the caller unchanged.

    Raises:
        OSError: If the catalog file is missing or unreadable.
        data_manager.FormatError: If the catalog content is malformed.
    """
    items = data_manager.load_catalog(context.settings.catalog_file)
    session = TransactionSession(context=context, items=items)
    log.info("Opened transaction session with %d catalog items", len(items))
    return session


def list_catalog(session: TransactionSession) -> List[data_manager.Item]:
    """Return the session's catalog in file order, including live stock."""
    return list(session.items)


def get_item(session: TransactionSession, item_id: int) -> data_manager.Item:
    """Resolve a catalog item through the session's id index.

    Raises:
        ItemNotFoundError: If ``item_id`` is absent from the catalog.
    """
    try:
        return session.items[session._positions[item_id]]
    except KeyError as exc:
        log.warning("Item lookup failed for id %s", item_id)
        raise ItemNotFoundError(f"Unknown item id: {item_id}") from exc


def require_in_stock(session: TransactionSession, item_id: int) -> data_manager.Item:
    """Return the item for ``item_id`` if at least one unit is available.

    Front ends call this before asking the operator for a quantity.

    Raises:
        ItemNotFoundError: If the id is unknown.
        OutOfStockError: If the item's stock is zero.
    """
    item = get_item(session, item_id)
    if item.stock <= 0:
        log.warning("Item %s ('%s') is out of stock", item.item_id, item.name)
        raise OutOfStockError(f"Item '{item.name}' is out of stock")
    return item


def select_item(session: TransactionSession, item_id: int, quantity: int) -> CartLine:
    """Reserve ``quantity`` units of an item and place them in the cart.

    Stock is decremented in the session catalog and written back right away,
    before the sale is finalized. The cart receives a snapshot of the item
    taken after the decrement, so later catalog changes never alter the line's
    recorded name or price. A failed check leaves both catalog and cart
    untouched.

    Args:
        session (TransactionSession): Active session in ``BROWSING``.
        item_id (int): Catalog id of the item to sell.
        quantity (int): Number of units requested.

    Returns:
        CartLine: The new or merged cart line.

    Raises:
        SessionStateError: If the session already ended.
        ItemNotFoundError: If the id is unknown.
        OutOfStockError: If the item has no stock.
        InvalidQuantityError: If ``quantity`` is lower than one.
        InsufficientStockError: If ``quantity`` exceeds the available stock.
    """
    require_browsing(session)
    item = require_in_stock(session, item_id)
    require_positive_quantity(quantity)
    if quantity > item.stock:
        log.warning(
            "Insufficient stock for item %s: requested %s, available %s",
            item.item_id,
            quantity,
            item.stock,
        )
        raise InsufficientStockError(
            f"Only {item.stock} of '{item.name}' left, cannot take {quantity}"
        )

    updated = _adjust_stock(session, item_id, -quantity)
    _persist_catalog(session)
    line = session.cart.add_or_merge(updated, quantity)
    log.info(
        "Selected %s x %s ('%s'); stock now %s",
        quantity,
        item_id,
        updated.name,
        updated.stock,
    )
    return line


def remove_line(session: TransactionSession, index: int) -> CartLine:
    """Remove the cart line at the 0-based ``index`` and restore its stock.

    Restitution adds the removed quantity back to the catalog item with the
    same id and persists the catalog. This is the inverse of
    :func:`select_item`, so stock is conserved across any sequence of
    selections and removals.

    Raises:
        SessionStateError: If the session already ended.
        CartIndexError: If ``index`` does not reference a cart line.
    """
    require_browsing(session)
    try:
        line = session.cart.remove_at(index)
    except CartIndexError:
        log.warning("Cart line %s does not exist (cart has %d lines)", index, len(session.cart))
        raise

    if line.item.item_id in session._positions:
        restored = _adjust_stock(session, line.item.item_id, line.quantity)
        log.info(
            "Removed cart line %s ('%s' x %s); stock restored to %s",
            index,
            line.item.name,
            line.quantity,
            restored.stock,
        )
    else:
        log.warning("Removed line for item %s which is no longer in the catalog", line.item.item_id)
    _persist_catalog(session)
    return line


def finalize(session: TransactionSession, *, timestamp: Optional[datetime] = None) -> Optional[data_manager.Report]:
    """Close the session, turning a non-empty cart into a ledger report.

    An empty cart moves the session to ``ABANDONED`` without touching any
    store; stock decremented by earlier selections stays committed. A
    non-empty cart goes through ``FINALIZING``: the catalog is saved, a
    :class:`~pos_terminal.data_manager.Report` is built with the cart total,
    the receipt is written when a receipt directory is configured, the report
    is appended to the Sales Ledger, and the session ends ``COMMITTED``.

    Save failures are logged and collected in ``session.persistence_errors``;
    they never roll back the in-memory state.

    Args:
        session (TransactionSession): Active session in ``BROWSING``.
        timestamp (datetime | None): Commit time. Defaults to local now.

    Returns:
        Report | None: The committed report, or ``None`` when abandoned.

    Raises:
        SessionStateError: If the session already ended.
    """
    require_browsing(session)
    if session.cart.is_empty():
        session.state = SessionState.ABANDONED
        log.info("Finalize on empty cart; session abandoned")
        return None

    session.state = SessionState.FINALIZING
    total = session.cart.total()
    _persist_catalog(session)

    when = _resolve_timestamp(timestamp)
    report = build_report(session.cart, timestamp=when, total=total)
    session.report = report

    settings = session.context.settings
    if settings.receipt_dir is not None:
        try:
            session.receipt_path = data_manager.write_receipt(
                report,
                settings.receipt_dir,
                file_name=when.strftime(RECEIPT_FILE_FORMAT),
                store_name=settings.store_name,
                currency_symbol=settings.currency_symbol,
                currency_decimals=settings.currency_decimals,
            )
        except OSError as error:
            _record_persistence_error(session, "receipt", error)

    try:
        data_manager.append_report(report, settings.ledger_file)
    except (OSError, data_manager.FormatError) as error:
        _record_persistence_error(session, "ledger", error)

    session.state = SessionState.COMMITTED
    log.info(
        "Committed transaction dated '%s': %d lines, total %s",
        report.date,
        len(report.items_sold),
        report.total_sales,
    )
    return report


def build_report(cart: Cart, *, timestamp: datetime, total: Optional[Decimal] = None) -> data_manager.Report:
    """Snapshot ``cart`` into an immutable report.

    Cart lines are frozen, so the report shares them safely.
    """
    return data_manager.Report(
        date=timestamp.strftime(REPORT_DATE_FORMAT),
        items_sold=cart.lines(),
        total_sales=cart.total() if total is None else total,
    )


def list_reports(context: RuntimeContext) -> List[data_manager.Report]:
    """Return the Sales Ledger, oldest report first."""
    return data_manager.load_ledger(context.settings.ledger_file)


def summarize_history(reports: List[data_manager.Report]) -> Dict[str, Any]:
    """Aggregate the ledger into report count, units sold, and grand total.

    Returns:
        dict[str, Any]: ``report_count`` and ``units_sold`` as ints,
            ``grand_total`` as :class:`~decimal.Decimal`.
    """
    grand_total = Decimal("0")
    units_sold = 0
    for report in reports:
        grand_total += report.total_sales
        units_sold += sum(line.quantity for line in report.items_sold)
    log.debug(
        "Summarized %d reports: units=%s total=%s",
        len(reports),
        units_sold,
        grand_total,
    )
    return {
        "report_count": len(reports),
        "units_sold": units_sold,
        "grand_total": grand_total,
    }


def export_history(context: RuntimeContext, destination: Path) -> Path:
    """Write the complete Sales Ledger to an ``.xlsx`` workbook."""
    reports = list_reports(context)
    return data_manager.export_ledger_workbook(reports, destination)


def require_browsing(session: TransactionSession) -> None:
    """Ensure ``session`` still accepts cart operations.

    Raises:
        SessionStateError: If the session reached a terminal state.
    """
    if session.state is not SessionState.BROWSING:
        log.error("Operation rejected: session is %s", session.state.value)
        raise SessionStateError(f"Session is {session.state.value}, no further changes allowed")


def require_positive_quantity(quantity: int) -> None:
    """Validate that a selection asks for at least one unit.

    Raises:
        InvalidQuantityError: If ``quantity`` is zero or negative.
    """
    if quantity < 1:
        log.warning("Quantity validation failed: %s", quantity)
        raise InvalidQuantityError("Quantity must be at least 1")


def _adjust_stock(session: TransactionSession, item_id: int, delta: int) -> data_manager.Item:
    position = session._positions[item_id]
    current = session.items[position]
    updated = replace(current, stock=current.stock + delta)
    session.items[position] = updated
    return updated


def _persist_catalog(session: TransactionSession) -> None:
    try:
        data_manager.save_catalog(session.items, session.context.settings.catalog_file)
    except OSError as error:
        _record_persistence_error(session, "catalog", error)


def _record_persistence_error(session: TransactionSession, target: str, error: Exception) -> None:
    # In-memory state stays as is; the operator reconciles the files by hand.
    log.error("Failed to save %s: %s", target, error)
    session.persistence_errors.append(error)


__all__ = [
    "BusinessRuleViolation",
    "ItemNotFoundError",
    "OutOfStockError",
    "InsufficientStockError",
    "InvalidQuantityError",
    "SessionStateError",
    "CartIndexError",
    "RuntimeContext",
    "TransactionSession",
    "load_runtime_context",
    "ensure_schema_version",
    "open_session",
    "list_catalog",
    "get_item",
    "require_in_stock",
    "select_item",
    "remove_line",
    "finalize",
    "build_report",
    "list_reports",
    "summarize_history",
    "export_history",
]

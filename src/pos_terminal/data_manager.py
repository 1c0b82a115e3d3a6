"""Data access layer for the POS terminal.

This module reads and writes the JSON files that back the terminal. Business
rules belong in :mod:`pos_terminal.core_logic`.

The public API is designed around four responsibilities:

1. Configuration handling: finding and parsing ``config.ini``.
2. Catalog Store: loading and atomically rewriting the item catalog.
3. Sales Ledger: loading the report history and appending finalized reports.
4. Output artifacts: receipt text files and the spreadsheet export of the
   ledger.
"""


from __future__ import annotations

import configparser
import json
import os
import stat
import tempfile
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any, Iterable, List, Mapping, Optional, Sequence

import openpyxl
from openpyxl.styles import Font

from . import log
from .constants import (
    DEFAULT_CURRENCY_DECIMALS,
    DEFAULT_CURRENCY_SYMBOL,
    LEDGER_EXPORT_COLUMNS,
)


CONFIG_FILE_NAME = "config.ini"

# Mode given to store files that do not exist yet.
DEFAULT_FILE_MODE = 0o644

# Key names written by the previous terminal, accepted when reading history.
_LEGACY_REPORT_KEYS = {"date": "Date", "itemsSold": "ItemsSold", "totalSales": "TotalSales"}
_LEGACY_LINE_KEYS = {"item": "Item", "quantity": "Quantity"}


class FormatError(ValueError):
    """Raised when a persisted file does not contain well-formed data."""


@dataclass(frozen=True)
class ConfigSettings:
    """Typed representation of the ``config.ini`` settings we care about."""

    catalog_file: Path
    ledger_file: Path
    receipt_dir: Optional[Path]
    store_name: str
    schema_version: str
    currency_symbol: str = DEFAULT_CURRENCY_SYMBOL
    currency_decimals: int = DEFAULT_CURRENCY_DECIMALS


@dataclass(frozen=True)
class Item:
    """One sellable catalog entry."""

    item_id: int
    name: str
    price: Decimal
    stock: int


@dataclass(frozen=True)
class CartLine:
    """An item snapshot paired with the quantity placed in the cart."""

    item: Item
    quantity: int

    @property
    def subtotal(self) -> Decimal:
        return self.item.price * self.quantity


@dataclass(frozen=True)
class Report:
    """Record of one finalized transaction as stored in the Sales Ledger."""

    date: str
    items_sold: tuple[CartLine, ...]
    total_sales: Decimal


def find_config_file(explicit_path: Optional[Path] = None) -> Path:
    """Locate the configuration file that controls where the stores live.

    If the caller provides ``explicit_path`` the value is returned immediately
    without any verification. Otherwise the function walks up from the current
    working directory toward the filesystem root looking for a file named
    ``CONFIG_FILE_NAME``; the first match wins.

    Args:
        explicit_path (Path | None): Optional path to use instead of performing
            the upward search.

    Returns:
        Path: The path provided by the caller or the discovered configuration
            file.

    Raises:
        FileNotFoundError: If no parent directory holds ``CONFIG_FILE_NAME``.
    """

    if explicit_path:
        return explicit_path

    current = Path.cwd()
    for p in (current, *current.parents):
        candidate = p / CONFIG_FILE_NAME
        if candidate.exists():
            return candidate

    raise FileNotFoundError(
        f"Configuration file not found: {CONFIG_FILE_NAME}")


def read_config(config_path: Path) -> configparser.ConfigParser:
    """Load ``config.ini`` and return a populated ``ConfigParser`` instance.

    Args:
        config_path (Path): Path to the configuration file, relative or
            absolute. ``~`` is expanded.

    Returns:
        configparser.ConfigParser: Parser containing the raw configuration.

    Raises:
        FileNotFoundError: If ``config_path`` does not exist.
    """

    config_path = config_path.expanduser().resolve()
    if not config_path.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    parser = configparser.ConfigParser()
    parser.read(config_path, encoding="utf-8")
    return parser


def _resolve_path(raw: str, base_path: Path) -> Path:
    path = Path(raw).expanduser()
    if not path.is_absolute():
        path = base_path / path
    return path.resolve()


def parse_settings(parser: configparser.ConfigParser, *, base_path: Optional[Path] = None) -> ConfigSettings:
    """Convert a ``ConfigParser`` into strongly typed :class:`ConfigSettings`.

    Required options live in the ``[System]`` section. The ``[Display]``
    section is optional and falls back to the package defaults. Relative file
    locations are anchored to ``base_path`` (or the working directory) and
    resolved. An empty ``ReceiptDir`` disables receipt files.

    Args:
        parser (configparser.ConfigParser): Parsed configuration data.
        base_path (Path | None): Directory used as the anchor for relative
            paths. Defaults to :func:`Path.cwd` when omitted.

    Returns:
        ConfigSettings: Immutable settings container.

    Raises:
        KeyError: If a required section or option is missing.
        ValueError: If ``CurrencyDecimals`` is not a non-negative integer.
    """

    try:
        catalog_raw = parser.get("System", "CatalogFile")
        ledger_raw = parser.get("System", "LedgerFile")
        store_name = parser.get("System", "StoreName")
        schema_version = parser.get("System", "SchemaVersion")
    except (configparser.NoSectionError, configparser.NoOptionError) as exc:
        raise KeyError(f"Missing required configuration entry: {exc}") from exc

    if base_path is None:
        base_path = Path.cwd()

    receipt_raw = parser.get("System", "ReceiptDir", fallback="").strip()
    currency_symbol = parser.get("Display", "CurrencySymbol", fallback=DEFAULT_CURRENCY_SYMBOL)
    currency_decimals = parser.getint("Display", "CurrencyDecimals", fallback=DEFAULT_CURRENCY_DECIMALS)
    if currency_decimals < 0:
        raise ValueError("CurrencyDecimals must be zero or positive")

    return ConfigSettings(
        catalog_file=_resolve_path(catalog_raw, base_path),
        ledger_file=_resolve_path(ledger_raw, base_path),
        receipt_dir=_resolve_path(receipt_raw, base_path) if receipt_raw else None,
        store_name=store_name,
        schema_version=schema_version,
        currency_symbol=currency_symbol,
        currency_decimals=currency_decimals,
    )


def load_catalog(path: Path) -> List[Item]:
    """Read the catalog file and return its items in file order.

    A missing catalog is not special-cased: the terminal cannot operate
    without one, so the ``FileNotFoundError`` propagates like any other
    ``OSError``.

    Raises:
        OSError: If the file cannot be opened or read.
        FormatError: If the content is not a list of well-formed items or
            contains duplicate ids.
    """

    payload = _read_json(path)
    if not isinstance(payload, list):
        raise FormatError(f"Catalog must be a JSON array: {path}")

    items = [deserialize_item(raw) for raw in payload]
    seen: set[int] = set()
    for item in items:
        if item.item_id in seen:
            raise FormatError(f"Duplicate item id {item.item_id} in catalog: {path}")
        seen.add(item.item_id)

    log.debug("Loaded %d catalog items from '%s'", len(items), path)
    return items


def save_catalog(items: Iterable[Item], path: Path) -> None:
    """Overwrite the catalog file with ``items``.

    The content is written to a temporary sibling and moved into place, so a
    reader never observes a half-written catalog.
    """

    payload = [serialize_item(item) for item in items]
    write_json_atomic(payload, path)
    log.debug("Saved %d catalog items to '%s'", len(payload), path)


def load_ledger(path: Path) -> List[Report]:
    """Read the Sales Ledger, oldest report first.

    A ledger that does not exist yet is the normal "no history" case and
    yields an empty list.

    Raises:
        OSError: If an existing file cannot be read.
        FormatError: If the content is not a list of well-formed reports.
    """

    try:
        payload = _read_json(path)
    except FileNotFoundError:
        log.debug("No ledger at '%s'; starting with empty history", path)
        return []

    if not isinstance(payload, list):
        raise FormatError(f"Ledger must be a JSON array: {path}")
    return [deserialize_report(raw) for raw in payload]


def append_report(report: Report, path: Path) -> List[Report]:
    """Append ``report`` to the ledger by rewriting the whole history.

    The cost grows with the size of the history since every call reloads and
    rewrites the complete file.

    Returns:
        list[Report]: The history including the new report.
    """

    reports = load_ledger(path)
    reports.append(report)
    write_json_atomic([serialize_report(entry) for entry in reports], path)
    log.info("Appended report dated '%s' to ledger '%s' (%d entries)", report.date, path, len(reports))
    return reports


def write_json_atomic(payload: Any, destination: Path) -> None:
    """Serialize ``payload`` as indented JSON and replace ``destination``.

    Parent directories are created on demand. The file keeps the permission
    bits of the file it replaces, or gets :data:`DEFAULT_FILE_MODE` when it
    is new. The temporary file is removed when anything fails before the
    final rename.
    """

    dest = Path(destination).expanduser().resolve()
    dest.parent.mkdir(parents=True, exist_ok=True)
    try:
        mode = stat.S_IMODE(dest.stat().st_mode)
    except FileNotFoundError:
        mode = DEFAULT_FILE_MODE
    fd, tmp_name = tempfile.mkstemp(prefix=f".{dest.name}.", suffix=".tmp", dir=dest.parent)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as handle:
            json.dump(payload, handle, indent=2)
            handle.write("\n")
        os.chmod(tmp_name, mode)
        os.replace(tmp_name, dest)
    except BaseException:
        Path(tmp_name).unlink(missing_ok=True)
        raise


def write_receipt(
    report: Report,
    directory: Path,
    *,
    file_name: str,
    store_name: str,
    currency_symbol: str = DEFAULT_CURRENCY_SYMBOL,
    currency_decimals: int = DEFAULT_CURRENCY_DECIMALS,
) -> Path:
    """Write a human-readable receipt for ``report`` and return its path.

    Receipts are write-only artifacts; nothing in the terminal reads them
    back.
    """

    directory = Path(directory).expanduser().resolve()
    directory.mkdir(parents=True, exist_ok=True)
    destination = directory / file_name

    lines = [
        f"===== {store_name} =====",
        report.date,
        "-" * 25,
    ]
    for line in report.items_sold:
        subtotal = format_money(line.subtotal, currency_symbol, currency_decimals)
        lines.append(f"{line.item.name} x{line.quantity} = {subtotal}")
    lines.append("")
    lines.append(f"TOTAL: {format_money(report.total_sales, currency_symbol, currency_decimals)}")
    lines.append("=" * 25)

    destination.write_text("\n".join(lines) + "\n", encoding="utf-8")
    log.info("Receipt written to '%s'", destination)
    return destination


def export_ledger_workbook(reports: Sequence[Report], destination: Path) -> Path:
    """Write the ledger to an Excel workbook, one row per sold line.

    The sheet starts with a bold header row named after
    :data:`~pos_terminal.constants.LEDGER_EXPORT_COLUMNS`. Monetary cells keep
    their :class:`~decimal.Decimal` values.
    """

    dest = Path(destination).expanduser().resolve()
    dest.parent.mkdir(parents=True, exist_ok=True)

    workbook = openpyxl.Workbook()
    sheet = workbook.active
    sheet.title = "Sales"

    bold_font = Font(bold=True)
    for column_index, column_name in enumerate(LEDGER_EXPORT_COLUMNS, start=1):
        cell = sheet.cell(row=1, column=column_index)
        cell.value = column_name
        cell.font = bold_font

    for report in reports:
        for line in report.items_sold:
            sheet.append(
                [
                    report.date,
                    line.item.item_id,
                    line.item.name,
                    line.item.price,
                    line.quantity,
                    line.subtotal,
                    report.total_sales,
                ]
            )

    workbook.save(dest)
    log.info("Exported %d reports to '%s'", len(reports), dest)
    return dest


def format_money(amount: Decimal, symbol: str = DEFAULT_CURRENCY_SYMBOL, decimals: int = DEFAULT_CURRENCY_DECIMALS) -> str:
    """Render ``amount`` as ``"<symbol> <number>"`` with fixed decimals."""

    return f"{symbol} {amount:.{decimals}f}"


def serialize_item(record: Item) -> dict[str, Any]:
    """Convert an item into its JSON object form."""

    return {
        "id": record.item_id,
        "name": record.name,
        "price": _decimal_to_json(record.price),
        "stock": record.stock,
    }


def serialize_line(record: CartLine) -> dict[str, Any]:
    """Convert a cart line into its JSON object form."""

    return {"item": serialize_item(record.item), "quantity": record.quantity}


def serialize_report(record: Report) -> dict[str, Any]:
    """Convert a report into its JSON object form."""

    return {
        "date": record.date,
        "itemsSold": [serialize_line(line) for line in record.items_sold],
        "totalSales": _decimal_to_json(record.total_sales),
    }


def deserialize_item(raw: object) -> Item:
    """Validate a decoded JSON object and convert it into an :class:`Item`.

    Ids must be positive integers, stock a non-negative integer and price a
    non-negative number. Prices are normalized into
    :class:`~decimal.Decimal` through their string form so ``10.5`` stays
    ``Decimal("10.5")``.

    Raises:
        FormatError: If a key is missing or holds an unusable value.
    """

    if not isinstance(raw, Mapping):
        raise FormatError(f"Catalog item must be an object, got {type(raw).__name__}")

    try:
        item_id = raw["id"]
        name = raw["name"]
        price_raw = raw["price"]
        stock = raw["stock"]
    except KeyError as exc:
        raise FormatError(f"Catalog item is missing key {exc}") from exc

    if not _is_int(item_id) or item_id <= 0:
        raise FormatError(f"Item id must be a positive integer, got {item_id!r}")
    if not isinstance(name, str):
        raise FormatError(f"Item {item_id} name must be a string")
    if not _is_int(stock) or stock < 0:
        raise FormatError(f"Item {item_id} stock must be a non-negative integer, got {stock!r}")

    price = _json_to_decimal(price_raw, field_name=f"item {item_id} price")
    if price < 0:
        raise FormatError(f"Item {item_id} price must be non-negative, got {price}")

    return Item(item_id=item_id, name=name, price=price, stock=stock)


def deserialize_line(raw: object) -> CartLine:
    """Convert a decoded ``{item, quantity}`` object into a :class:`CartLine`."""

    if not isinstance(raw, Mapping):
        raise FormatError(f"Sold line must be an object, got {type(raw).__name__}")

    item_raw = _lookup(raw, "item", _LEGACY_LINE_KEYS)
    quantity = _lookup(raw, "quantity", _LEGACY_LINE_KEYS)
    if not _is_int(quantity) or quantity < 1:
        raise FormatError(f"Sold line quantity must be a positive integer, got {quantity!r}")
    return CartLine(item=deserialize_item(item_raw), quantity=quantity)


def deserialize_report(raw: object) -> Report:
    """Convert a decoded ledger entry into a :class:`Report`.

    Both the current camelCase keys and the capitalised keys of older ledger
    files are accepted.
    """

    if not isinstance(raw, Mapping):
        raise FormatError(f"Ledger entry must be an object, got {type(raw).__name__}")

    date = _lookup(raw, "date", _LEGACY_REPORT_KEYS)
    lines_raw = _lookup(raw, "itemsSold", _LEGACY_REPORT_KEYS)
    total_raw = _lookup(raw, "totalSales", _LEGACY_REPORT_KEYS)

    if not isinstance(date, str):
        raise FormatError("Ledger entry date must be a string")
    if lines_raw is None:
        lines_raw = []
    if not isinstance(lines_raw, list):
        raise FormatError("Ledger entry itemsSold must be an array")

    return Report(
        date=date,
        items_sold=tuple(deserialize_line(line) for line in lines_raw),
        total_sales=_json_to_decimal(total_raw, field_name="totalSales"),
    )


def _read_json(path: Path) -> Any:
    path = Path(path).expanduser().resolve()
    with path.open("r", encoding="utf-8") as handle:
        try:
            return json.load(handle)
        except json.JSONDecodeError as exc:
            raise FormatError(f"Malformed JSON in '{path}': {exc}") from exc
        except UnicodeDecodeError as exc:
            raise FormatError(f"File '{path}' is not valid UTF-8: {exc}") from exc


def _lookup(raw: Mapping[str, Any], key: str, legacy: Mapping[str, str]) -> Any:
    if key in raw:
        return raw[key]
    legacy_key = legacy.get(key)
    if legacy_key is not None and legacy_key in raw:
        return raw[legacy_key]
    raise FormatError(f"Missing key '{key}'")


def _is_int(value: object) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def _json_to_decimal(value: object, *, field_name: str) -> Decimal:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise FormatError(f"{field_name} must be a number, got {value!r}")
    try:
        result = Decimal(str(value))
    except InvalidOperation as exc:
        raise FormatError(f"{field_name} is not a valid number: {value!r}") from exc
    if not result.is_finite():
        raise FormatError(f"{field_name} must be finite, got {value!r}")
    return result


def _decimal_to_json(value: Decimal) -> int | float:
    # Integral amounts stay integers so catalogs keep "price": 10.
    if value == value.to_integral_value():
        return int(value)
    return float(value)

"""Utility for initializing the POS terminal's JSON stores.

The module doubles as a script (``python setup_store.py``) and as a library
used by tests. It reads ``config.ini``, then creates the catalog and sales
ledger files the terminal expects. The catalog starts empty or is seeded from
the first sheet of an Excel workbook with ``ID, Name, Price, Stock`` columns.
"""

from __future__ import annotations

import argparse
from pathlib import Path
from typing import List, Optional, Sequence
import sys

import openpyxl

from pos_terminal import data_manager
from pos_terminal.constants import (
    DEFAULT_CURRENCY_DECIMALS,
    DEFAULT_CURRENCY_SYMBOL,
    EXPECTED_SCHEMA_VERSION,
)

# Header expected on the first row of a seed workbook.
SEED_COLUMNS: Sequence[str] = ("ID", "Name", "Price", "Stock")

CONFIG_FILE = "config.ini"

CONFIG_TEMPLATE = (
    "[System]\n"
    "CatalogFile = {catalog_file}\n"
    "LedgerFile = {ledger_file}\n"
    "ReceiptDir = {receipt_dir}\n"
    "StoreName = {store_name}\n"
    "SchemaVersion = {schema_version}\n\n"
    "[Display]\n"
    "CurrencySymbol = {currency_symbol}\n"
    "CurrencyDecimals = {currency_decimals}\n"
)


def write_config(
    config_path: Path,
    *,
    catalog_file: str = "items.json",
    ledger_file: str = "report.json",
    receipt_dir: str = "receipts",
    store_name: str = "POS Terminal",
    schema_version: str = EXPECTED_SCHEMA_VERSION,
    currency_symbol: str = DEFAULT_CURRENCY_SYMBOL,
    currency_decimals: int = DEFAULT_CURRENCY_DECIMALS,
    overwrite: bool = False,
) -> Path:
    """Write a ``config.ini`` from :data:`CONFIG_TEMPLATE`.

    Raises:
        FileExistsError: If ``config_path`` exists and ``overwrite`` is
            ``False``.
    """

    config_path = config_path.expanduser().resolve()
    if config_path.exists() and not overwrite:
        raise FileExistsError(f"Refusing to overwrite existing configuration: {config_path}")

    config_path.parent.mkdir(parents=True, exist_ok=True)
    config_path.write_text(
        CONFIG_TEMPLATE.format(
            catalog_file=catalog_file,
            ledger_file=ledger_file,
            receipt_dir=receipt_dir,
            store_name=store_name,
            schema_version=schema_version,
            currency_symbol=currency_symbol,
            currency_decimals=currency_decimals,
        ),
        encoding="utf-8",
    )
    return config_path


def load_settings(config_path: Path) -> data_manager.ConfigSettings:
    """Read ``config.ini`` with relative paths anchored to its directory."""

    config_path = config_path.expanduser().resolve()
    parser = data_manager.read_config(config_path)
    return data_manager.parse_settings(parser, base_path=config_path.parent)


def read_seed_workbook(source: Path) -> List[data_manager.Item]:
    """Read catalog items from the first sheet of ``source``.

    The header row must match :data:`SEED_COLUMNS`; fully empty rows are
    skipped. Each row goes through the same validation as catalog files.

    Raises:
        FileNotFoundError: If ``source`` does not exist.
        data_manager.FormatError: If the header or a row is unusable.
    """

    source = source.expanduser().resolve()
    if not source.exists():
        raise FileNotFoundError(f"Seed workbook not found: {source}")

    workbook = openpyxl.load_workbook(source, read_only=True, data_only=True)
    try:
        sheet = workbook.worksheets[0]
        rows = sheet.iter_rows(values_only=True)
        header = next(rows, None)
        if header is None or tuple(header[: len(SEED_COLUMNS)]) != tuple(SEED_COLUMNS):
            raise data_manager.FormatError(
                f"Seed workbook header must be {', '.join(SEED_COLUMNS)}: {source}"
            )

        items: List[data_manager.Item] = []
        for raw in rows:
            if not any(cell is not None for cell in raw):
                continue
            item_id, name, price, stock = raw[: len(SEED_COLUMNS)]
            items.append(
                data_manager.deserialize_item(
                    {"id": item_id, "name": name, "price": price, "stock": stock}
                )
            )
    finally:
        workbook.close()

    seen = set()
    for item in items:
        if item.item_id in seen:
            raise data_manager.FormatError(f"Duplicate item id {item.item_id} in seed workbook")
        seen.add(item.item_id)
    return items


def create_stores(
    catalog_file: Path,
    ledger_file: Path,
    *,
    items: Sequence[data_manager.Item] = (),
    overwrite: bool = False,
) -> tuple[Path, Path]:
    """Write the catalog (``items``) and an empty ledger.

    When ``overwrite`` is ``False`` (the default) this function raises
    ``FileExistsError`` if either target already exists, leaving both files
    untouched.
    """

    catalog_file = catalog_file.expanduser().resolve()
    ledger_file = ledger_file.expanduser().resolve()
    if not overwrite:
        for target in (catalog_file, ledger_file):
            if target.exists():
                raise FileExistsError(f"Refusing to overwrite existing store file: {target}")

    data_manager.save_catalog(items, catalog_file)
    data_manager.write_json_atomic([], ledger_file)
    return catalog_file, ledger_file


def run_from_config(
    config_path: Path,
    *,
    seed_workbook: Optional[Path] = None,
    overwrite: bool = False,
) -> tuple[Path, Path]:
    """Create the stores named in ``config_path``."""

    settings = load_settings(config_path)
    items = read_seed_workbook(seed_workbook) if seed_workbook is not None else []
    return create_stores(
        settings.catalog_file,
        settings.ledger_file,
        items=items,
        overwrite=overwrite,
    )


def parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    """Parse CLI arguments for the setup script."""

    parser = argparse.ArgumentParser(description="Initialize POS terminal store files")
    parser.add_argument(
        "--config",
        default=CONFIG_FILE,
        help="Path to configuration file (default: config.ini)",
    )
    parser.add_argument(
        "--seed-workbook",
        type=Path,
        default=None,
        help="Excel workbook whose first sheet lists ID, Name, Price, Stock.",
    )
    parser.add_argument(
        "--init-config",
        action="store_true",
        help="Write a default configuration file first when none exists.",
    )
    parser.add_argument(
        "--force",
        action="store_true",
        help="Overwrite existing store files.",
    )
    return parser.parse_args(argv)


def main(argv: Sequence[str] | None = None) -> int:
    """Entry point for the CLI script."""

    args = parse_args(argv)
    config_path = Path(args.config).expanduser().resolve()

    print("--- POS Terminal Setup Script ---")
    print(f"Using configuration: {config_path}")

    try:
        if args.init_config and not config_path.exists():
            write_config(config_path)
            print(f"Wrote default configuration: {config_path}")
        catalog_file, ledger_file = run_from_config(
            config_path,
            seed_workbook=args.seed_workbook,
            overwrite=args.force,
        )
    except FileNotFoundError as exc:
        print(f"\n[ERROR] {exc}")
        return 1
    except KeyError as exc:
        print(f"\n[ERROR] {exc}")
        return 1
    except data_manager.FormatError as exc:
        print(f"\n[ERROR] {exc}")
        return 1
    except FileExistsError as exc:
        print(f"\n[ERROR] {exc}")
        print("Run with --force to overwrite the existing files if appropriate.")
        return 1
    except OSError as exc:
        print(f"\n[ERROR] Unable to write store files: {exc}")
        return 1

    print(f"\n[SUCCESS] Catalog: '{catalog_file}'")
    print(f"[SUCCESS] Ledger:  '{ledger_file}'")
    return 0


if __name__ == "__main__":  # pragma: no cover - exercised via manual runs
    sys.exit(main())

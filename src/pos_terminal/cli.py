"""Command-line entry points for the POS terminal.

The module wires argparse sub-commands to the transaction engine and hosts
the interactive operator loop. Everything here is prompting and printing;
stock rules and persistence live in :mod:`pos_terminal.core_logic`.
"""

from __future__ import annotations

import argparse
from dataclasses import dataclass
from decimal import Decimal
from pathlib import Path
from typing import Callable, Dict, Iterable, Mapping, MutableMapping, Optional, Sequence

from . import core_logic, data_manager, log
from .cart import Cart
from .constants import FINISH_ITEM_ID, REMOVE_ITEM_ID, MenuOption


@dataclass(frozen=True)
class CommandSpec:
    """Describe how a CLI sub-command is configured and executed."""

    name: str
    help_text: str
    register: Callable[[argparse._SubParsersAction[argparse.ArgumentParser]], argparse.ArgumentParser]
    execute: Callable[[core_logic.RuntimeContext, argparse.Namespace], int]


def build_parser() -> argparse.ArgumentParser:
    """Construct the top-level CLI argument parser."""
    parser = argparse.ArgumentParser(
        prog="pos-cli",
        description="Point-of-sale terminal for the shop catalog and sales ledger.",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Optional path to config.ini (defaults to a search from the working directory).",
    )
    return parser


def configure_subcommands(
    parser: argparse.ArgumentParser,
) -> Mapping[str, CommandSpec]:
    """Wire all CLI sub-commands onto the supplied parser."""
    subparsers = parser.add_subparsers(dest="command", required=True, title="commands")
    session_specs = register_session_commands(subparsers)
    read_specs = register_read_commands(subparsers)
    return build_command_table([*session_specs.values(), *read_specs.values()])


def register_session_commands(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> Dict[str, CommandSpec]:
    """Declare the interactive commands that open transaction sessions."""
    specs = {
        "menu": register_menu_command(subparsers),
        "sell": register_sell_command(subparsers),
    }
    for spec in specs.values():
        spec.register(subparsers)
    return specs


def register_read_commands(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> Dict[str, CommandSpec]:
    """Declare read-only commands over the catalog and the ledger."""
    specs = {
        "history": register_history_command(subparsers),
        "catalog": register_catalog_command(subparsers),
        "export-history": register_export_history_command(subparsers),
    }
    for spec in specs.values():
        spec.register(subparsers)
    return specs


def _simple_registrar(name: str, help_text: str) -> Callable[[argparse._SubParsersAction[argparse.ArgumentParser]], argparse.ArgumentParser]:
    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.set_defaults(command=name)
        return parser

    return registrar


def register_menu_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``menu``."""
    name = "menu"
    help_text = "Open the interactive main menu."
    return CommandSpec(name=name, help_text=help_text, register=_simple_registrar(name, help_text), execute=run_menu)


def register_sell_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``sell``."""
    name = "sell"
    help_text = "Run a single interactive transaction."
    return CommandSpec(name=name, help_text=help_text, register=_simple_registrar(name, help_text), execute=run_sell)


def register_history_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``history``."""
    name = "history"
    help_text = "Display the sales ledger."
    return CommandSpec(name=name, help_text=help_text, register=_simple_registrar(name, help_text), execute=run_history)


def register_catalog_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``catalog``."""
    name = "catalog"
    help_text = "Display catalog items with price and stock."
    return CommandSpec(name=name, help_text=help_text, register=_simple_registrar(name, help_text), execute=run_catalog)


def register_export_history_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``export-history``."""
    name = "export-history"
    help_text = "Export the sales ledger to an Excel workbook."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--output", type=Path, required=True, help="Destination .xlsx file.")
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_export_history)


def load_runtime_context(config_path: Optional[Path] = None) -> core_logic.RuntimeContext:
    """Resolve the runtime context for CLI operations."""
    context = core_logic.load_runtime_context(config_path)
    core_logic.ensure_schema_version(context)
    return context


def dispatch_command(
    context: core_logic.RuntimeContext,
    args: argparse.Namespace,
    command_table: Mapping[str, CommandSpec],
) -> int:
    """Dispatch the parsed arguments to the configured executor."""
    if not hasattr(args, "command") or args.command is None:
        raise KeyError("No command specified")
    spec = command_table.get(args.command)
    if spec is None:
        raise KeyError(f"Unknown command: {args.command}")
    return spec.execute(context, args)


def build_command_table(
    specs: Iterable[CommandSpec],
) -> MutableMapping[str, CommandSpec]:
    """Build an index of command specifications keyed by command name."""
    table: Dict[str, CommandSpec] = {}
    for spec in specs:
        if spec.name in table:
            raise ValueError(f"Duplicate command name: {spec.name}")
        table[spec.name] = spec
    return table


# ---------------------------------------------------------------------------
# Rendering
# ---------------------------------------------------------------------------


def format_amount(amount: Decimal, settings: data_manager.ConfigSettings) -> str:
    """Format ``amount`` with the configured currency symbol and decimals."""
    return data_manager.format_money(amount, settings.currency_symbol, settings.currency_decimals)


def render_catalog(items: Sequence[data_manager.Item], settings: data_manager.ConfigSettings) -> None:
    print("===== ITEMS =====")
    for item in items:
        print(f"{item.item_id}. {item.name} - {format_amount(item.price, settings)} (Stock: {item.stock})")
    print("=================")


def render_cart(cart: Cart, settings: data_manager.ConfigSettings) -> None:
    if cart.is_empty():
        print("Cart is empty.")
        return
    print("--- Current cart ---")
    for number, line in enumerate(cart.lines(), start=1):
        print(f"[{number}] {line.item.name} x{line.quantity} = {format_amount(line.subtotal, settings)}")
    print("--------------------")


def render_report(report: data_manager.Report, settings: data_manager.ConfigSettings) -> None:
    print("===== PURCHASE SUMMARY =====")
    for line in report.items_sold:
        print(f"{line.item.name} x{line.quantity} = {format_amount(line.subtotal, settings)}")
    print(f"\nTOTAL: {format_amount(report.total_sales, settings)}")


def render_history(reports: Sequence[data_manager.Report], settings: data_manager.ConfigSettings) -> None:
    """Print the ledger: grand total first, then one row per sold line."""
    if not reports:
        print("No purchase history yet.")
        return

    summary = core_logic.summarize_history(list(reports))
    print(f"Total sales: {format_amount(summary['grand_total'], settings)}")
    print(f"Transactions: {summary['report_count']}  Units sold: {summary['units_sold']}")
    print("-" * 32)
    for report in reports:
        for line in report.items_sold:
            print(
                f"{report.date} ({line.item.name}) x{line.quantity} - "
                f"[{format_amount(line.subtotal, settings)}]"
            )
        print()
    print("-" * 32)


# ---------------------------------------------------------------------------
# Interactive flows
# ---------------------------------------------------------------------------


def prompt_int(message: str) -> int:
    """Ask until the operator types a whole number.

    ``EOFError`` from :func:`input` propagates so a closed stdin ends the
    command instead of looping forever.
    """
    while True:
        raw = input(message)
        try:
            return int(raw.strip())
        except ValueError:
            print("Please enter a whole number.")


def _announce_persistence_errors(session: core_logic.TransactionSession, already_seen: int) -> int:
    for error in session.persistence_errors[already_seen:]:
        print(f"Warning: changes could not be saved ({error}). Reconcile the store files manually.")
    return len(session.persistence_errors)


def _remove_line_flow(session: core_logic.TransactionSession) -> None:
    settings = session.context.settings
    if session.cart.is_empty():
        print("Cart is empty, nothing to remove.")
        return
    render_cart(session.cart, settings)
    number = prompt_int("Line number to remove (1, 2, ...): ")
    try:
        line = core_logic.remove_line(session, number - 1)
    except core_logic.CartIndexError:
        print("Invalid line number!")
        return
    print(f"Returned {line.quantity} x {line.item.name} to stock.")
    render_cart(session.cart, settings)


def run_transaction(context: core_logic.RuntimeContext) -> Optional[data_manager.Report]:
    """Drive one transaction session from the terminal.

    The operator enters item ids until ``0`` finalizes the sale; ``-1`` opens
    the removal prompt. Rule violations are printed and the loop continues.

    Returns:
        Report | None: The committed report, or ``None`` when the cart was
            empty at finalize.

    Raises:
        OSError: If the catalog cannot be read.
        data_manager.FormatError: If the catalog is malformed.
    """
    session = core_logic.open_session(context)
    settings = context.settings
    reported = 0

    while True:
        render_catalog(core_logic.list_catalog(session), settings)
        item_id = prompt_int(f"Item id ({FINISH_ITEM_ID} to finish, {REMOVE_ITEM_ID} to remove a line): ")

        if item_id == FINISH_ITEM_ID:
            break

        if item_id == REMOVE_ITEM_ID:
            _remove_line_flow(session)
            reported = _announce_persistence_errors(session, reported)
            continue

        try:
            core_logic.require_in_stock(session, item_id)
            quantity = prompt_int("Quantity: ")
            core_logic.select_item(session, item_id, quantity)
        except core_logic.BusinessRuleViolation as error:
            print(f"{error}")
            continue

        print("Item added to cart!")
        render_cart(session.cart, settings)
        reported = _announce_persistence_errors(session, reported)
        print()

    report = core_logic.finalize(session)
    if report is None:
        print("Cart is empty. Transaction cancelled.")
        return None

    render_report(report, settings)
    if session.receipt_path is not None:
        print(f"Receipt saved as: {session.receipt_path}")
    _announce_persistence_errors(session, reported)
    print("Transaction complete. Thank you!")
    return report


def run_menu(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Loop over the main menu until the operator quits."""
    while True:
        print("===== MENU =====")
        print(f"[{MenuOption.START_TRANSACTION.value}] Cashier")
        print(f"[{MenuOption.VIEW_HISTORY.value}] Purchase history")
        print(f"[{MenuOption.QUIT.value}] Quit")
        choice = input("Choose: ").strip().lower()

        if choice == MenuOption.START_TRANSACTION.value:
            run_transaction(context)
        elif choice == MenuOption.VIEW_HISTORY.value:
            render_history(core_logic.list_reports(context), context.settings)
        elif choice == MenuOption.QUIT.value:
            print("Thank you!")
            return 0
        else:
            print("Invalid menu choice!")


def run_sell(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute a single interactive transaction."""
    run_transaction(context)
    return 0


def run_history(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Render the sales ledger."""
    render_history(core_logic.list_reports(context), context.settings)
    return 0


def run_catalog(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Render the catalog as currently stored."""
    items = data_manager.load_catalog(context.settings.catalog_file)
    render_catalog(items, context.settings)
    return 0


def run_export_history(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Export the ledger to the workbook named by ``--output``."""
    destination = core_logic.export_history(context, args.output)
    print(f"Sales history exported to: {destination}")
    return 0


def handle_cli_error(error: Exception) -> int:
    """Convert raised exceptions into user-friendly exit codes."""
    if isinstance(error, core_logic.BusinessRuleViolation):
        log.error("%s", error)
        return 2
    if isinstance(error, FileNotFoundError):
        log.error("%s", error)
        return 3
    if isinstance(error, data_manager.FormatError):
        log.error("Malformed store file: %s", error)
        return 4
    log.error("%s", error)
    return 1


def main(argv: Sequence[str] | None = None) -> int:
    """CLI entry point that orchestrates parsing and execution."""
    parser = build_parser()
    command_table = configure_subcommands(parser)
    args = parser.parse_args(argv)
    try:
        context = load_runtime_context(getattr(args, "config", None))
        return dispatch_command(context, args, command_table)
    except Exception as error:  # pragma: no cover - centralised error handler tested separately
        return handle_cli_error(error)


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())

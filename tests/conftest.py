"""Shared pytest fixtures and utilities for POS terminal tests."""

from __future__ import annotations

import argparse
import sys
import uuid
from dataclasses import dataclass
from decimal import Decimal
from pathlib import Path
from typing import Callable, Iterator, Sequence

import pytest

# Ensure source packages are importable without installation.
PROJECT_ROOT = Path(__file__).resolve().parents[1]
SRC_DIR = PROJECT_ROOT / "src"

for candidate in (SRC_DIR, PROJECT_ROOT):
    candidate_str = str(candidate)
    if candidate_str not in sys.path:
        sys.path.insert(0, candidate_str)

from pos_terminal import cli, constants, core_logic, data_manager  # noqa: E402
from setup_store import create_stores, write_config  # noqa: E402

DEFAULT_STORE_NAME = "Test Shop"


@dataclass(frozen=True)
class StoreBundle:
    """Container bundling together config and store paths for tests."""

    directory: Path
    config_path: Path
    catalog_path: Path
    ledger_path: Path
    receipt_dir: Path


def make_item(item_id: int, name: str, price: str | int, stock: int) -> data_manager.Item:
    """Build an item with a Decimal price from a compact literal."""

    return data_manager.Item(item_id=item_id, name=name, price=Decimal(str(price)), stock=stock)


@pytest.fixture(scope="session", autouse=True)
def _restore_sys_path() -> Iterator[None]:
    """Ensure sys.path modifications are undone after the test session."""

    original = sys.path.copy()
    try:
        yield
    finally:
        sys.path[:] = original


@pytest.fixture(scope="session")
def project_root() -> Path:
    """Return the repository root path."""

    return PROJECT_ROOT


@pytest.fixture
def sample_items() -> list[data_manager.Item]:
    """A small catalog with one item already sold out."""

    return [
        make_item(1, "Bread", 10, 5),
        make_item(2, "Milk", 15, 2),
        make_item(3, "Eggs", "22.5", 0),
    ]


@pytest.fixture
def store_factory(tmp_path: Path) -> Callable[..., StoreBundle]:
    """Factory that creates a config.ini plus catalog and ledger in a temp folder."""

    def _create_store(
        *,
        items: Sequence[data_manager.Item] = (),
        receipt_dir: str = "receipts",
        schema_version: str = constants.EXPECTED_SCHEMA_VERSION,
    ) -> StoreBundle:
        bundle_dir = tmp_path / f"store_{uuid.uuid4().hex}"
        bundle_dir.mkdir(parents=True)
        config_path = write_config(
            bundle_dir / "config.ini",
            store_name=DEFAULT_STORE_NAME,
            receipt_dir=receipt_dir,
            schema_version=schema_version,
        )
        catalog_path, ledger_path = create_stores(
            bundle_dir / "items.json",
            bundle_dir / "report.json",
            items=items,
        )
        return StoreBundle(
            directory=bundle_dir,
            config_path=config_path,
            catalog_path=catalog_path,
            ledger_path=ledger_path,
            receipt_dir=(bundle_dir / receipt_dir).resolve(),
        )

    return _create_store


@pytest.fixture
def store(store_factory: Callable[..., StoreBundle], sample_items: list[data_manager.Item]) -> StoreBundle:
    """A store seeded with :func:`sample_items`."""

    return store_factory(items=sample_items)


@pytest.fixture
def runtime_context(store: StoreBundle) -> core_logic.RuntimeContext:
    """Load the runtime context for tests through the public API."""

    context = core_logic.load_runtime_context(store.config_path)
    core_logic.ensure_schema_version(context)
    return context


@pytest.fixture
def settings(tmp_path: Path) -> data_manager.ConfigSettings:
    """Settings pointing at files that do not exist yet."""

    return data_manager.ConfigSettings(
        catalog_file=tmp_path / "items.json",
        ledger_file=tmp_path / "report.json",
        receipt_dir=tmp_path / "receipts",
        store_name=DEFAULT_STORE_NAME,
        schema_version=constants.EXPECTED_SCHEMA_VERSION,
    )


@pytest.fixture
def context(settings: data_manager.ConfigSettings) -> core_logic.RuntimeContext:
    """Assemble a runtime context from injected settings."""

    return core_logic.RuntimeContext(settings=settings)


# ---------------------------------------------------------------------------
# CLI layer fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def cli_parser() -> argparse.ArgumentParser:
    """Return a fresh CLI parser instance for tests."""

    return argparse.ArgumentParser(prog="pos-cli", description="POS CLI")


@pytest.fixture
def subparsers_action(
    cli_parser: argparse.ArgumentParser,
) -> argparse._SubParsersAction[argparse.ArgumentParser]:
    """Return the subparser action used to register commands."""

    return cli_parser.add_subparsers(dest="command")


@pytest.fixture
def feed_input(monkeypatch: pytest.MonkeyPatch) -> Callable[..., list[str]]:
    """Replace ``input`` with a scripted sequence of operator answers.

    Returns the list of prompts that were shown, in order. Running out of
    answers raises ``EOFError`` like a closed stdin.
    """

    def _apply(*answers: str) -> list[str]:
        pending = list(answers)
        prompts: list[str] = []

        def fake_input(prompt: str = "") -> str:
            prompts.append(prompt)
            if not pending:
                raise EOFError("no more scripted input")
            return pending.pop(0)

        monkeypatch.setattr("builtins.input", fake_input)
        return prompts

    return _apply

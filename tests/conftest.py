"""Shared pytest fixtures and utilities for territory ledger tests."""

from __future__ import annotations

import sys
import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Iterator, Sequence

import pytest

# Ensure source packages are importable without installation.
PROJECT_ROOT = Path(__file__).resolve().parents[1]
SRC_DIR = PROJECT_ROOT / "src"

candidate_str = str(SRC_DIR)
if candidate_str not in sys.path:
    sys.path.insert(0, candidate_str)

from territory_ledger import core_logic, data_manager  # noqa: E402
from territory_ledger.constants import TransactionType  # noqa: E402

_CONFIG_TEMPLATE = (
    "[Ledger]\n"
    "EntityCount = {count}\n\n"
    "[Files]\n"
    "Balances = {balances}\n"
    "Transactions = {transactions}\n"
    "Territories = {territories}\n"
)


@dataclass(frozen=True)
class LedgerBundle:
    """Container bundling together the files of one batch run."""

    directory: Path
    balance_file: Path
    transaction_file: Path
    territory_file: Path
    count: int

    @property
    def settings(self) -> data_manager.ConfigSettings:
        return data_manager.ConfigSettings(
            entity_count=self.count,
            balance_file=self.balance_file,
            transaction_file=self.transaction_file,
            territory_file=self.territory_file,
        )


@pytest.fixture(scope="session", autouse=True)
def _restore_sys_path() -> Iterator[None]:
    """Ensure sys.path modifications are undone after the test session."""

    original = sys.path.copy()
    try:
        yield
    finally:
        sys.path[:] = original


def balance_line(representative_id: int, territory_id: int, amount: int) -> str:
    """Render a representative record in the fixed-width layout."""

    return f"{representative_id:04d},{territory_id:05d},{amount:07d}"


def transaction_line(transaction_id: int, representative_id: int, kind: TransactionType, amount: int) -> str:
    return f"{transaction_id},{representative_id},{int(kind)},{amount}"


@pytest.fixture
def ledger_factory(tmp_path: Path) -> Callable[..., LedgerBundle]:
    """Factory that writes balance and transaction files into a temp folder."""

    def _create(
        *,
        balances: Sequence[str],
        transactions: Sequence[str] = (),
        count: int = 5,
        trailing_newline: bool = True,
    ) -> LedgerBundle:
        directory = tmp_path / f"ledger_{uuid.uuid4().hex}"
        directory.mkdir(parents=True)
        balance_file = directory / "salereps.txt"
        transaction_file = directory / "transactions.txt"
        territory_file = directory / "territories.txt"

        balance_text = "\n".join(balances)
        transaction_text = "\n".join(transactions)
        if trailing_newline:
            balance_text += "\n" if balances else ""
            transaction_text += "\n" if transactions else ""
        balance_file.write_bytes(balance_text.encode("ascii"))
        transaction_file.write_bytes(transaction_text.encode("ascii"))

        return LedgerBundle(
            directory=directory,
            balance_file=balance_file,
            transaction_file=transaction_file,
            territory_file=territory_file,
            count=count,
        )

    return _create


@pytest.fixture
def config_factory(tmp_path: Path) -> Callable[..., Path]:
    """Provide a callable that writes config.ini next to a ledger bundle."""

    def _create(bundle: LedgerBundle, *, make_relative: bool = True, extra: str = "") -> Path:
        def _entry(path: Path) -> str:
            return path.name if make_relative else str(path)

        config_path = bundle.directory / "config.ini"
        config_path.write_text(
            _CONFIG_TEMPLATE.format(
                count=bundle.count,
                balances=_entry(bundle.balance_file),
                transactions=_entry(bundle.transaction_file),
                territories=_entry(bundle.territory_file),
            )
            + extra
        )
        return config_path

    return _create


@pytest.fixture
def registry() -> core_logic.Registry:
    """Registry with three loaded representatives spread over two territories."""

    registry = core_logic.Registry.initialize(4)
    for rep_id, territory_id, amount in ((1, 1, 100), (2, 1, 200), (3, 2, 50)):
        representative = registry.find(rep_id)
        representative.territory_id = territory_id
        representative.amount = amount
        representative.source_offset = (rep_id - 1) * 19
        representative.source_length = 18
    return registry

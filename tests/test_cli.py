"""Unit tests describing the CLI presentation layer contract."""

from __future__ import annotations

import argparse
from pathlib import Path
from unittest.mock import Mock

import pytest

from territory_ledger import cli, core_logic, data_manager, report
from territory_ledger.errors import (
    ConfigurationError,
    EncodingOverflow,
    MalformedRecord,
    NotFoundError,
    UnknownRepresentative,
)


COMMANDS = {"run", "report"}


def _registered_choices(parser: argparse.ArgumentParser) -> set[str]:
    for action in parser._actions:
        if isinstance(action, argparse._SubParsersAction):
            return set(action.choices)
    return set()


# ---------------------------------------------------------------------------
# Parser construction
# ---------------------------------------------------------------------------


def test_build_parser_sets_program_metadata():
    parser = cli.build_parser()
    assert isinstance(parser, argparse.ArgumentParser)
    assert parser.prog == "territory-ledger"


def test_configure_subcommands_registers_commands():
    parser = cli.build_parser()
    command_table = cli.configure_subcommands(parser)

    assert set(command_table) == COMMANDS
    assert _registered_choices(parser) == COMMANDS


def test_run_command_parses_overrides():
    parser = cli.build_parser()
    cli.configure_subcommands(parser)

    args = parser.parse_args(
        [
            "run",
            "--count",
            "3",
            "--balances",
            "b.txt",
            "--transactions",
            "t.txt",
            "--territories",
            "o.txt",
        ]
    )

    assert args.command == "run"
    assert args.count == 3
    assert args.balances == Path("b.txt")
    assert args.report is None


def test_build_command_table_rejects_duplicates():
    spec = cli.CommandSpec("dup", "help", lambda subparsers: subparsers.add_parser("dup"), lambda *_: 0)

    with pytest.raises(ValueError):
        cli.build_command_table([spec, spec])


def test_dispatch_command_invokes_executor():
    execute = Mock(return_value=0)
    spec = cli.CommandSpec("probe", "help", Mock(), execute)
    args = argparse.Namespace(command="probe")

    assert cli.dispatch_command(args, {"probe": spec}) == 0
    execute.assert_called_once_with(args)


def test_dispatch_command_unknown_raises():
    with pytest.raises(KeyError):
        cli.dispatch_command(argparse.Namespace(command="nope"), {})


# ---------------------------------------------------------------------------
# Settings resolution
# ---------------------------------------------------------------------------


def _run_args(**overrides) -> argparse.Namespace:
    values = {
        "config": None,
        "count": None,
        "balances": None,
        "transactions": None,
        "territories": None,
        "report": None,
        "command": "run",
    }
    values.update(overrides)
    return argparse.Namespace(**values)


def test_resolve_settings_from_command_line_only(tmp_path, monkeypatch):
    find_config = Mock(side_effect=AssertionError("config should not be consulted"))
    monkeypatch.setattr(data_manager, "find_config_file", find_config)
    args = _run_args(
        count=2,
        balances=tmp_path / "b.txt",
        transactions=tmp_path / "t.txt",
        territories=tmp_path / "o.txt",
    )

    settings = cli.resolve_settings(args)

    assert settings.entity_count == 2
    assert settings.territory_file == tmp_path / "o.txt"
    find_config.assert_not_called()


def test_resolve_settings_merges_config_and_overrides(ledger_factory, config_factory):
    bundle = ledger_factory(balances=["0001,00001,0000100"], count=4)
    config_path = config_factory(bundle)

    settings = cli.resolve_settings(_run_args(config=config_path, count=9))

    assert settings.entity_count == 9
    assert settings.balance_file == bundle.balance_file.resolve()


def test_resolve_settings_without_config_or_options(monkeypatch):
    monkeypatch.setattr(data_manager, "find_config_file", Mock(side_effect=FileNotFoundError("none")))

    with pytest.raises(ConfigurationError):
        cli.resolve_settings(_run_args(count=1))


# ---------------------------------------------------------------------------
# Executors and error handling
# ---------------------------------------------------------------------------


def test_run_batch_command_writes_report_when_requested(monkeypatch, tmp_path):
    registry = core_logic.Registry.initialize(1)
    result = Mock(registry=registry)
    run_batch = Mock(return_value=result)
    write_report = Mock()
    monkeypatch.setattr(core_logic, "run_batch", run_batch)
    monkeypatch.setattr(report, "write_balance_report", write_report)
    args = _run_args(
        count=1,
        balances=tmp_path / "b.txt",
        transactions=tmp_path / "t.txt",
        territories=tmp_path / "o.txt",
        report=tmp_path / "r.xlsx",
    )

    assert cli.run_batch_command(args) == 0
    write_report.assert_called_once_with(registry, tmp_path / "r.xlsx")


def test_run_batch_command_skips_report_by_default(monkeypatch, tmp_path):
    monkeypatch.setattr(core_logic, "run_batch", Mock())
    write_report = Mock()
    monkeypatch.setattr(report, "write_balance_report", write_report)
    args = _run_args(
        count=1,
        balances=tmp_path / "b.txt",
        transactions=tmp_path / "t.txt",
        territories=tmp_path / "o.txt",
    )

    cli.run_batch_command(args)

    write_report.assert_not_called()


@pytest.mark.parametrize(
    ("error", "expected"),
    [
        (UnknownRepresentative("x"), 2),
        (NotFoundError("x"), 2),
        (ConfigurationError("x"), 3),
        (FileNotFoundError("x"), 3),
        (MalformedRecord("x"), 4),
        (EncodingOverflow("x"), 5),
        (RuntimeError("x"), 1),
    ],
)
def test_handle_cli_error_maps_exit_codes(error, expected):
    assert cli.handle_cli_error(error) == expected


def test_main_returns_zero_on_success(ledger_factory):
    bundle = ledger_factory(balances=["0001,00001,0000100"], transactions=["1,1,1,50"], count=1)

    exit_code = cli.main(
        [
            "run",
            "--count",
            "1",
            "--balances",
            str(bundle.balance_file),
            "--transactions",
            str(bundle.transaction_file),
            "--territories",
            str(bundle.territory_file),
        ]
    )

    assert exit_code == 0
    assert bundle.balance_file.read_bytes() == b"0001,00001,0000150\n"


def test_main_reports_missing_input_as_configuration_error(tmp_path):
    exit_code = cli.main(
        [
            "run",
            "--count",
            "1",
            "--balances",
            str(tmp_path / "missing.txt"),
            "--transactions",
            str(tmp_path / "missing_too.txt"),
            "--territories",
            str(tmp_path / "out.txt"),
        ]
    )

    assert exit_code == 3

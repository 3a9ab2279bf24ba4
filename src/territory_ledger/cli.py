"""Command-line entry points for the territory ledger.

All orchestration in this module is limited to argparse wiring and
translating command-line arguments into settings consumed by the business
layer. Keeping the CLI thin means tests and scripts can drive the same batch
through :func:`core_logic.run_batch` directly.
"""

from __future__ import annotations

import argparse
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, Mapping, MutableMapping, Optional, Sequence

from . import core_logic, data_manager, log, report
from .errors import ConfigurationError, EncodingOverflow, MalformedRecord, NotFoundError


@dataclass(frozen=True)
class CommandSpec:
    """Describe how a CLI sub-command is configured and executed."""

    name: str
    help_text: str
    register: Callable[[argparse._SubParsersAction[argparse.ArgumentParser]], argparse.ArgumentParser]
    execute: Callable[[argparse.Namespace], int]


def build_parser() -> argparse.ArgumentParser:
    """Construct the top-level CLI argument parser."""
    parser = argparse.ArgumentParser(
        prog="territory-ledger",
        description="Apply sales transactions to representative and territory balances.",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Optional path to config.ini (searched upward from the working directory otherwise).",
    )
    return parser


def configure_subcommands(
    parser: argparse.ArgumentParser,
) -> Mapping[str, CommandSpec]:
    """Wire all CLI sub-commands onto the supplied parser."""
    subparsers = parser.add_subparsers(dest="command", required=True, title="commands")
    specs = {
        "run": register_run_command(subparsers),
        "report": register_report_command(subparsers),
    }
    for spec in specs.values():
        spec.register(subparsers)
    return build_command_table(specs.values())


def register_run_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``run``."""
    name = "run"
    help_text = "Apply the transaction file and rewrite the balance and territory files."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--count", type=int, default=None, help="Number of representative and territory ids.")
        parser.add_argument("--balances", type=Path, default=None, help="Representative balance file (rewritten in place).")
        parser.add_argument("--transactions", type=Path, default=None, help="Transaction file to apply.")
        parser.add_argument("--territories", type=Path, default=None, help="Territory output file.")
        parser.add_argument("--report", type=Path, default=None, help="Optional .xlsx balance report.")
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_batch_command)


def register_report_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``report``."""
    name = "report"
    help_text = "Export the current balance file as a ranked .xlsx report."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--count", type=int, required=True)
        parser.add_argument("--balances", type=Path, required=True)
        parser.add_argument("--output", type=Path, required=True)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_report_command)


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


def dispatch_command(
    args: argparse.Namespace,
    command_table: Mapping[str, CommandSpec],
) -> int:
    """Dispatch the parsed arguments to the configured executor."""
    if not hasattr(args, "command") or args.command is None:
        raise KeyError("No command specified")
    spec = command_table.get(args.command)
    if spec is None:
        raise KeyError(f"Unknown command: {args.command}")
    return spec.execute(args)


def translate_overrides(args: argparse.Namespace) -> Dict[str, Any]:
    """Collect the ``run`` options the caller actually supplied."""
    candidates = {
        "entity_count": getattr(args, "count", None),
        "balance_file": getattr(args, "balances", None),
        "transaction_file": getattr(args, "transactions", None),
        "territory_file": getattr(args, "territories", None),
        "report_file": getattr(args, "report", None),
    }
    return {key: value for key, value in candidates.items() if value is not None}


REQUIRED_SETTINGS = ("entity_count", "balance_file", "transaction_file", "territory_file")


def resolve_settings(args: argparse.Namespace) -> data_manager.ConfigSettings:
    """Merge command-line options over ``config.ini``.

    The configuration file is consulted only when an explicit ``--config`` is
    given or a required option is missing from the command line.

    Raises:
        ConfigurationError: If a required value is available from neither
            source.
    """
    overrides = translate_overrides(args)
    config_path: Optional[Path] = getattr(args, "config", None)
    if config_path is None and all(key in overrides for key in REQUIRED_SETTINGS):
        return data_manager.ConfigSettings(**overrides)

    try:
        located = data_manager.find_config_file(config_path)
    except FileNotFoundError as exc:
        missing = [key for key in REQUIRED_SETTINGS if key not in overrides]
        raise ConfigurationError(
            f"No {data_manager.CONFIG_FILE_NAME} found and missing options: {', '.join(missing)}"
        ) from exc

    resolved = Path(located).expanduser().resolve()
    parser = data_manager.read_config(resolved)
    settings = data_manager.parse_settings(parser, base_path=resolved.parent)
    log.info("Loaded settings from '%s'", resolved)
    return replace(settings, **overrides)


def run_batch_command(args: argparse.Namespace) -> int:
    """Execute a full batch and the optional report."""
    settings = resolve_settings(args)
    result = core_logic.run_batch(settings)
    if settings.report_file is not None:
        report.write_balance_report(result.registry, settings.report_file)
    return 0


def run_report_command(args: argparse.Namespace) -> int:
    """Export the balance file without applying any transaction."""
    registry = report.load_balance_snapshot(args.count, args.balances)
    report.write_balance_report(registry, args.output, include_territories=False)
    return 0


def handle_cli_error(error: Exception) -> int:
    """Convert raised exceptions into distinguishable exit codes."""
    log.error("%s", error)
    if isinstance(error, NotFoundError):
        return 2
    if isinstance(error, (ConfigurationError, FileNotFoundError)):
        return 3
    if isinstance(error, MalformedRecord):
        return 4
    if isinstance(error, EncodingOverflow):
        return 5
    return 1


def main(argv: Sequence[str] | None = None) -> int:
    """CLI entry point that orchestrates parsing and execution."""
    parser = build_parser()
    command_table = configure_subcommands(parser)
    args = parser.parse_args(argv)
    try:
        return dispatch_command(args, command_table)
    except Exception as error:  # pragma: no cover - centralised error handler tested separately
        return handle_cli_error(error)

"""Command-line entry points for the Venue Ledger toolkit.

All orchestration in this module is limited to argparse wiring and translating
command-line arguments into calls on the business layer. Keeping the CLI thin
ensures the same parser configuration can be reused by tests, scripts, or any
alternative front-end that wants to expose the package capabilities.
"""

from __future__ import annotations

import argparse
import json
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, Mapping, MutableMapping, Optional, Sequence, TextIO
import sys

from . import core_logic, log
from .constants import DeleteScope, Period, TimelineGrouping


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
        prog="venue-ledger",
        description="Command-line tools for the Venue Ledger workbook.",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Optional path to config.ini (defaults to ./config.ini).",
    )
    return parser


def configure_subcommands(
    parser: argparse.ArgumentParser,
) -> Mapping[str, CommandSpec]:
    """Wire all CLI sub-commands onto the supplied parser."""
    subparsers = parser.add_subparsers(dest="command", required=True, title="commands")
    write_specs = register_write_commands(subparsers)
    read_specs = register_read_commands(subparsers)
    return build_command_table([*write_specs.values(), *read_specs.values()])


def register_write_commands(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> Dict[str, CommandSpec]:
    """Declare mutating CLI commands such as sales and deletions."""
    specs = {
        "sale": register_sale_command(subparsers),
        "loyalty-add": register_loyalty_add_command(subparsers),
        "loyalty-remove": register_loyalty_remove_command(subparsers),
        "delete": register_delete_command(subparsers),
    }
    for spec in specs.values():
        spec.register(subparsers)
    return specs


def register_read_commands(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> Dict[str, CommandSpec]:
    """Declare read-only CLI commands such as reports."""
    specs = {
        "overview": _simple_spec("overview", "Display headline revenue figures.", run_overview, ranged=True),
        "products": _simple_spec("products", "Display per-product statistics.", run_product_stats, ranged=True),
        "timeline": register_timeline_command(subparsers),
        "rush-hour": _simple_spec("rush-hour", "Display revenue by hour of day.", run_rush_hour, ranged=True),
        "top-products": _simple_spec(
            "top-products", "Display best sellers by quantity.", run_top_products, with_period=True
        ),
        "snapshot": _simple_spec("snapshot", "Display running product totals.", run_snapshot),
        "loyalty": _simple_spec("loyalty", "Display loyalty balances and statistics.", run_loyalty_report),
        "daily": _simple_spec("daily", "Display sales grouped by day.", run_daily_sales),
    }
    for spec in specs.values():
        spec.register(subparsers)
    return specs


def _add_range_arguments(parser: argparse.ArgumentParser) -> None:
    _add_period_argument(parser)
    parser.add_argument("--start", type=date.fromisoformat, default=None, help="First day (YYYY-MM-DD).")
    parser.add_argument("--end", type=date.fromisoformat, default=None, help="Last day (YYYY-MM-DD).")


def _add_period_argument(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--period",
        choices=[member.value for member in Period],
        default=Period.ALL.value,
    )


def _simple_spec(
    name: str,
    help_text: str,
    execute: Callable[[core_logic.RuntimeContext, argparse.Namespace], int],
    *,
    ranged: bool = False,
    with_period: bool = False,
) -> CommandSpec:
    """Build a spec for a report command that takes at most a date filter."""

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        if ranged:
            _add_range_arguments(parser)
        elif with_period:
            _add_period_argument(parser)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=execute)


def register_sale_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``sale``."""
    name = "sale"
    help_text = "Record a sale from a free-text description."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--description", required=True, help='e.g. "2x Pop UP + 1x Burn UP | Essen"')
        parser.add_argument("--amount", required=True)
        parser.add_argument("--timestamp", default=None, help="ISO-8601 time of sale (defaults to now).")
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_sale)


def register_loyalty_add_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``loyalty-add``."""
    name = "loyalty-add"
    help_text = "Add (or subtract) loyalty points for a customer."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--name", required=True)
        parser.add_argument("--points", required=True)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_loyalty_add)


def register_loyalty_remove_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``loyalty-remove``."""
    name = "loyalty-remove"
    help_text = "Remove a customer's loyalty account."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--name", required=True)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_loyalty_remove)


def register_delete_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``delete``."""
    name = "delete"
    help_text = "Bulk-delete transactions or product totals by scope."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--scope", required=True, choices=[member.value for member in DeleteScope])
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_delete)


def register_timeline_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``timeline``."""
    name = "timeline"
    help_text = "Display revenue grouped by day, week, or month."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument(
            "--group-by",
            choices=[member.value for member in TimelineGrouping],
            default=TimelineGrouping.DAY.value,
        )
        _add_range_arguments(parser)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_timeline)


def load_runtime_context(config_path: Optional[Path] = None) -> core_logic.RuntimeContext:
    """Resolve the runtime context for CLI operations."""
    target = Path(config_path) if config_path is not None else Path.cwd() / "config.ini"
    return core_logic.load_runtime_context(target)


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


def _json_default(value: Any) -> Any:
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, date):
        return value.isoformat()
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


def emit(payload: Any, stream: TextIO | None = None) -> None:
    """Write ``payload`` as indented JSON."""
    print(json.dumps(payload, default=_json_default, indent=2, ensure_ascii=False), file=stream or sys.stdout)


def run_sale(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the sale workflow via the BLL."""
    emit(core_logic.record_sale(context, args.description, args.amount, args.timestamp))
    return 0


def run_loyalty_add(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    emit(core_logic.add_loyalty_points(context, args.name, args.points))
    return 0


def run_loyalty_remove(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    emit(core_logic.remove_loyalty_account(context, args.name))
    return 0


def run_delete(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    emit(core_logic.delete_by_scope(context, args.scope))
    return 0


def run_overview(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    emit(core_logic.get_statistics_overview(context, args.period, args.start, args.end))
    return 0


def run_product_stats(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    emit(core_logic.get_product_statistics(context, args.period, args.start, args.end))
    return 0


def run_timeline(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    emit(core_logic.get_timeline(context, args.group_by, args.period, args.start, args.end))
    return 0


def run_rush_hour(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    emit(core_logic.get_rush_hour(context, args.period, args.start, args.end))
    return 0


def run_top_products(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    emit(core_logic.get_top_products(context, args.period))
    return 0


def run_snapshot(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    emit(core_logic.get_aggregate_snapshot(context))
    return 0


def run_loyalty_report(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    emit(
        {
            "accounts": core_logic.list_loyalty_accounts(context),
            "statistics": core_logic.get_loyalty_statistics(context),
        }
    )
    return 0


def run_daily_sales(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    emit(core_logic.get_daily_sales(context))
    return 0


def handle_cli_error(error: Exception) -> int:
    """Convert raised exceptions into user-friendly exit codes."""
    if isinstance(error, core_logic.BusinessRuleViolation):
        log.error("%s", error)
        return 2
    if isinstance(error, FileNotFoundError):
        log.error("%s", error)
        return 3
    if isinstance(error, core_logic.PersistenceUnavailable):
        log.error("%s", error)
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
        core_logic.ensure_schema_version(context)
        return dispatch_command(context, args, command_table)
    except Exception as error:  # pragma: no cover - centralised error handler tested separately
        return handle_cli_error(error)

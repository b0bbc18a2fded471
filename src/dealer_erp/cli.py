"""Command-line entry points for the Dealer ERP toolkit.

All orchestration in this module is limited to argparse wiring, translating
command-line arguments into the command objects consumed by the business
layer, and printing results. The business layer is asynchronous; each
invocation runs exactly one command inside :func:`asyncio.run`.
"""

from __future__ import annotations

import argparse
import asyncio
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path
from typing import Awaitable, Callable, Dict, Iterable, Mapping, MutableMapping, Optional, Sequence

from . import core_logic, filters, log
from .constants import (
    EmployeeRole,
    ExpenseCategory,
    ExpenseStatus,
    PaymentMethod,
    Transmission,
    VehicleStatus,
)
from .errors import AuthorizationError, ConflictError, NotFoundError, StoreError, ValidationError
from .models import BuyerInfo, to_decimal
from .pricing import format_compact


Executor = Callable[[core_logic.RuntimeContext, argparse.Namespace], Awaitable[int]]
SubParsers = argparse._SubParsersAction


@dataclass(frozen=True)
class CommandSpec:
    """Describe how a CLI sub-command is configured and executed."""

    name: str
    help_text: str
    register: Callable[[SubParsers], argparse.ArgumentParser]
    execute: Executor
    mutates: bool = False


def build_parser() -> argparse.ArgumentParser:
    """Construct the top-level CLI argument parser."""
    parser = argparse.ArgumentParser(
        prog="dealer-cli",
        description="Command-line tools for the Dealer ERP workbook.",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Optional path to config.ini (defaults to ./config.ini).",
    )
    return parser


def configure_subcommands(parser: argparse.ArgumentParser) -> Mapping[str, CommandSpec]:
    """Wire all CLI sub-commands onto the supplied parser."""
    subparsers = parser.add_subparsers(dest="command", required=True, title="commands")
    write_specs = register_write_commands(subparsers)
    read_specs = register_read_commands(subparsers)
    return build_command_table([*write_specs.values(), *read_specs.values()])


def register_write_commands(subparsers: SubParsers) -> Dict[str, CommandSpec]:
    """Declare mutating CLI commands. The workbook is saved after each one succeeds."""
    specs = {
        "add-vehicle": register_add_vehicle_command(),
        "edit-vehicle": register_edit_vehicle_command(),
        "delete-vehicle": register_id_command(
            "delete-vehicle", "Delete an unsold vehicle (admin).", "--vehicle-id", run_delete_vehicle
        ),
        "sell": register_sell_command(),
        "add-expense": register_add_expense_command(),
        "approve-expense": register_id_command(
            "approve-expense", "Approve a pending expense (admin).", "--expense-id", run_approve_expense
        ),
        "reject-expense": register_id_command(
            "reject-expense", "Reject a pending expense (admin).", "--expense-id", run_reject_expense
        ),
        "delete-expense": register_id_command(
            "delete-expense", "Delete an expense.", "--expense-id", run_delete_expense
        ),
        "add-employee": register_add_employee_command(),
        "set-employee-active": register_set_employee_active_command(),
        "delete-employee": register_id_command(
            "delete-employee", "Delete an employee (admin).", "--employee-id", run_delete_employee
        ),
    }
    for spec in specs.values():
        spec.register(subparsers)
    return specs


def register_read_commands(subparsers: SubParsers) -> Dict[str, CommandSpec]:
    """Declare read-only CLI commands such as listings and reports."""
    specs = {
        "vehicles": register_vehicles_command(),
        "sales": register_sales_command(),
        "expenses": register_expenses_command(),
        "employees": register_employees_command(),
        "report": register_report_command(),
        "dashboard": register_dashboard_command(),
    }
    for spec in specs.values():
        spec.register(subparsers)
    return specs


def _add_vehicle_fields(parser: argparse.ArgumentParser, *, required: bool) -> None:
    parser.add_argument("--make", required=required)
    parser.add_argument("--model", required=required)
    parser.add_argument("--year", type=int, required=required)
    parser.add_argument("--purchase-price", required=required)
    parser.add_argument("--extra-costs", default=None)
    parser.add_argument("--color", default=None)
    parser.add_argument("--mileage", type=int, default=None)
    parser.add_argument("--engine-size", default=None)
    parser.add_argument("--transmission", choices=[member.value for member in Transmission], default=None)
    parser.add_argument(
        "--status",
        choices=[VehicleStatus.AVAILABLE.value, VehicleStatus.PENDING.value],
        default=None,
    )
    parser.add_argument("--notes", default=None)


def register_add_vehicle_command() -> CommandSpec:
    """Register the parser and executor for ``add-vehicle``."""
    name = "add-vehicle"
    help_text = "Add a vehicle to inventory."

    def registrar(action: SubParsers) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        _add_vehicle_fields(parser, required=True)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_add_vehicle, mutates=True)


def register_edit_vehicle_command() -> CommandSpec:
    """Register the parser and executor for ``edit-vehicle``."""
    name = "edit-vehicle"
    help_text = "Edit fields of an unsold vehicle."

    def registrar(action: SubParsers) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--vehicle-id", required=True)
        _add_vehicle_fields(parser, required=False)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_edit_vehicle, mutates=True)


def register_id_command(name: str, help_text: str, flag: str, execute: Executor) -> CommandSpec:
    """Register a write command whose only argument is a record id."""

    def registrar(action: SubParsers) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument(flag, dest="record_id", required=True)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=execute, mutates=True)


def register_sell_command() -> CommandSpec:
    """Register the parser and executor for ``sell``."""
    name = "sell"
    help_text = "Sell a vehicle and record the sale."

    def registrar(action: SubParsers) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--vehicle-id", required=True)
        parser.add_argument("--buyer-name", required=True)
        parser.add_argument("--buyer-phone", default="")
        parser.add_argument("--buyer-passport", default=None)
        parser.add_argument("--sale-price", required=True)
        parser.add_argument(
            "--payment-method",
            choices=[member.value for member in PaymentMethod],
            required=True,
        )
        parser.add_argument("--contract-number", default=None)
        parser.add_argument("--notes", default=None)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_sell, mutates=True)


def register_add_expense_command() -> CommandSpec:
    """Register the parser and executor for ``add-expense``."""
    name = "add-expense"
    help_text = "Record an expense awaiting review."

    def registrar(action: SubParsers) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--category", choices=[member.value for member in ExpenseCategory], required=True)
        parser.add_argument("--amount", required=True)
        parser.add_argument("--description", default="")
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_add_expense, mutates=True)


def register_add_employee_command() -> CommandSpec:
    """Register the parser and executor for ``add-employee``."""
    name = "add-employee"
    help_text = "Register an employee (admin)."

    def registrar(action: SubParsers) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--name", required=True)
        parser.add_argument("--email", required=True)
        parser.add_argument("--phone", default="")
        parser.add_argument("--role", choices=[member.value for member in EmployeeRole], default="staff")
        parser.add_argument("--position", default="")
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_add_employee, mutates=True)


def register_set_employee_active_command() -> CommandSpec:
    """Register the parser and executor for ``set-employee-active``."""
    name = "set-employee-active"
    help_text = "Activate or deactivate an employee (admin)."

    def registrar(action: SubParsers) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--employee-id", required=True)
        parser.add_argument("--inactive", action="store_true", help="Deactivate instead of activating.")
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(
        name=name,
        help_text=help_text,
        register=registrar,
        execute=run_set_employee_active,
        mutates=True,
    )


def register_vehicles_command() -> CommandSpec:
    """Register the parser and executor for ``vehicles``."""
    name = "vehicles"
    help_text = "List vehicles, newest first."

    def registrar(action: SubParsers) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--status", choices=[member.value for member in VehicleStatus], default=None)
        parser.add_argument("--query", default="")
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_vehicles)


def register_sales_command() -> CommandSpec:
    """Register the parser and executor for ``sales``."""
    name = "sales"
    help_text = "List sales, newest first."

    def registrar(action: SubParsers) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--payment-method", choices=[member.value for member in PaymentMethod], default=None)
        parser.add_argument("--query", default="")
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_sales)


def register_expenses_command() -> CommandSpec:
    """Register the parser and executor for ``expenses``."""
    name = "expenses"
    help_text = "List expenses, newest first, with their total."

    def registrar(action: SubParsers) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--status", choices=[member.value for member in ExpenseStatus], default=None)
        parser.add_argument("--category", choices=[member.value for member in ExpenseCategory], default=None)
        parser.add_argument("--query", default="")
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_expenses)


def register_employees_command() -> CommandSpec:
    """Register the parser and executor for ``employees``."""
    name = "employees"
    help_text = "List employees."

    def registrar(action: SubParsers) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_employees)


def register_report_command() -> CommandSpec:
    """Register the parser and executor for ``report``."""
    name = "report"
    help_text = "Display the yearly financial report."

    def registrar(action: SubParsers) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--year", type=int, default=None, help="Defaults to the current year.")
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_report)


def register_dashboard_command() -> CommandSpec:
    """Register the parser and executor for ``dashboard``."""
    name = "dashboard"
    help_text = "Display the current month's dashboard."

    def registrar(action: SubParsers) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_dashboard)


def load_runtime_context(config_path: Optional[Path] = None) -> core_logic.RuntimeContext:
    """Resolve the runtime context for CLI operations."""
    target = Path(config_path) if config_path is not None else Path.cwd() / "config.ini"
    return core_logic.load_runtime_context(target)


async def dispatch_command(
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
    return await spec.execute(context, args)


def build_command_table(specs: Iterable[CommandSpec]) -> MutableMapping[str, CommandSpec]:
    """Build an index of command specifications keyed by command name."""
    table: Dict[str, CommandSpec] = {}
    for spec in specs:
        if spec.name in table:
            raise ValueError(f"Duplicate command name: {spec.name}")
        table[spec.name] = spec
    return table


# ---------------------------------------------------------------------------
# Translators
# ---------------------------------------------------------------------------


def _optional_decimal(value: Optional[str], field: str):
    return None if value is None else to_decimal(value, field=field)


def translate_add_vehicle(args: argparse.Namespace) -> core_logic.VehicleCommand:
    """Translate CLI args into a vehicle command object."""
    return core_logic.VehicleCommand(
        make=args.make,
        model=args.model,
        year=args.year,
        purchase_price=to_decimal(args.purchase_price, field="purchasePrice"),
        extra_costs=to_decimal(args.extra_costs, field="extraCosts"),
        color=args.color or "",
        mileage=args.mileage or 0,
        engine_size=to_decimal(args.engine_size, field="engineSize"),
        transmission=Transmission(args.transmission or Transmission.AUTOMATIC.value),
        status=VehicleStatus(args.status or VehicleStatus.AVAILABLE.value),
        notes=args.notes or "",
    )


def translate_edit_vehicle(args: argparse.Namespace) -> core_logic.VehicleUpdate:
    """Translate CLI args into a partial vehicle edit. Omitted flags stay unchanged."""
    return core_logic.VehicleUpdate(
        make=args.make,
        model=args.model,
        year=args.year,
        color=args.color,
        mileage=args.mileage,
        engine_size=_optional_decimal(args.engine_size, "engineSize"),
        transmission=Transmission(args.transmission) if args.transmission else None,
        purchase_price=_optional_decimal(args.purchase_price, "purchasePrice"),
        extra_costs=_optional_decimal(args.extra_costs, "extraCosts"),
        status=VehicleStatus(args.status) if args.status else None,
        notes=args.notes,
    )


def translate_sell(args: argparse.Namespace) -> core_logic.SaleCommand:
    """Translate CLI args into a sale command object."""
    return core_logic.SaleCommand(
        vehicle_id=args.vehicle_id,
        buyer=BuyerInfo(name=args.buyer_name, phone=args.buyer_phone, passport=args.buyer_passport),
        sale_price=to_decimal(args.sale_price, field="salePrice"),
        payment_method=PaymentMethod(args.payment_method),
        contract_number=args.contract_number,
        notes=args.notes,
    )


def translate_add_expense(args: argparse.Namespace) -> core_logic.ExpenseCommand:
    return core_logic.ExpenseCommand(
        category=ExpenseCategory(args.category),
        amount=to_decimal(args.amount, field="amount"),
        description=args.description,
    )


def translate_add_employee(args: argparse.Namespace) -> core_logic.EmployeeCommand:
    return core_logic.EmployeeCommand(
        name=args.name,
        email=args.email,
        phone=args.phone,
        role=EmployeeRole(args.role),
        position=args.position,
    )


# ---------------------------------------------------------------------------
# Executors
# ---------------------------------------------------------------------------


async def run_add_vehicle(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the add-vehicle workflow in the BLL."""
    vehicle = await core_logic.add_vehicle(context, translate_add_vehicle(args))
    print(vehicle.vehicle_id)
    return 0


async def run_edit_vehicle(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    await core_logic.edit_vehicle(context, args.vehicle_id, translate_edit_vehicle(args))
    return 0


async def run_delete_vehicle(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    await core_logic.delete_vehicle(context, args.record_id)
    return 0


async def run_sell(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the sale workflow via the BLL and print the new sale id."""
    sale_id = await core_logic.commit_sale_with_retry(context, translate_sell(args))
    print(sale_id)
    return 0


async def run_add_expense(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    expense = await core_logic.add_expense(context, translate_add_expense(args))
    print(expense.expense_id)
    return 0


async def run_approve_expense(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    await core_logic.review_expense(context, args.record_id, approve=True)
    return 0


async def run_reject_expense(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    await core_logic.review_expense(context, args.record_id, approve=False)
    return 0


async def run_delete_expense(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    await core_logic.delete_expense(context, args.record_id)
    return 0


async def run_add_employee(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    employee = await core_logic.add_employee(context, translate_add_employee(args))
    print(employee.employee_id)
    return 0


async def run_set_employee_active(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    await core_logic.set_employee_active(context, args.employee_id, not args.inactive)
    return 0


async def run_delete_employee(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    await core_logic.delete_employee(context, args.record_id)
    return 0


async def run_vehicles(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    status = VehicleStatus(args.status) if args.status else None
    vehicles = filters.filter_vehicles(await core_logic.list_vehicles(context), args.query, status)
    for vehicle in vehicles:
        print(
            f"{vehicle.vehicle_id}\t{vehicle.display_name}\t{vehicle.color}\t"
            f"{vehicle.status.value}\tcost={vehicle.cost_price}"
        )
    return 0


async def run_sales(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    method = PaymentMethod(args.payment_method) if args.payment_method else None
    sales = filters.filter_sales(await core_logic.list_sales(context), args.query, method)
    for sale in sales:
        print(
            f"{sale.sale_id}\t{sale.date.date().isoformat()}\t{sale.car_name}\t{sale.buyer.name}\t"
            f"price={sale.price}\tprofit={sale.profit}\t{sale.employee.name}"
        )
    return 0


async def run_expenses(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    status = ExpenseStatus(args.status) if args.status else None
    category = ExpenseCategory(args.category) if args.category else None
    expenses = filters.filter_expenses(await core_logic.list_expenses(context), args.query, status, category)
    for expense in expenses:
        print(
            f"{expense.expense_id}\t{expense.date.date().isoformat()}\t{expense.category.value}\t"
            f"{expense.amount}\t{expense.status.value}\t{expense.description}"
        )
    print(f"Total: {filters.total_amount(expenses)}")
    return 0


async def run_employees(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    for employee in await core_logic.list_employees(context):
        state = "active" if employee.active else "inactive"
        print(f"{employee.employee_id}\t{employee.name}\t{employee.email}\t{employee.role.value}\t{state}")
    return 0


async def run_report(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the yearly report workflow. A stale report exits with code 6."""
    year = args.year or datetime.now(UTC).year
    result = await core_logic.load_report(context, year)
    report = result.report
    print(f"Report {report.year}")
    print(
        f"Sales: {report.total_sales}  Revenue: {format_compact(report.total_revenue)}  "
        f"Profit: {format_compact(report.total_profit)}  Expenses: {format_compact(report.total_expenses)}"
    )
    for month, (revenue, profit, spent) in enumerate(
        zip(report.monthly_revenue, report.monthly_profit, report.monthly_expenses), start=1
    ):
        print(f"{month:02d}\trevenue={revenue}\tprofit={profit}\texpenses={spent}")
    for stat in report.employee_stats:
        print(f"Employee\t{stat.name}\t{stat.count}\tprofit={stat.profit}")
    for model in report.top_models:
        print(f"Model\t{model.name}\t{model.count}")
    for category in report.category_expenses:
        print(f"Category\t{category.category}\t{category.amount}\t{category.percent}%")
    return 6 if result.stale else 0


async def run_dashboard(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    result = await core_logic.load_dashboard(context)
    summary = result.summary
    print(
        f"Month sales: {summary.month_sales}  Month profit: {format_compact(summary.month_profit)}  "
        f"Available: {summary.available_vehicles}  Month expenses: {format_compact(summary.month_expenses)}"
    )
    print("Monthly sales: " + " ".join(str(count) for count in summary.monthly_sales))
    for stat in summary.top_employees:
        print(f"Top\t{stat.name}\t{stat.count}")
    for sale in summary.recent_sales:
        print(f"Recent\t{sale.date.date().isoformat()}\t{sale.car_name}\t{sale.buyer.name}\t{sale.price}")
    return 6 if result.stale else 0


def handle_cli_error(error: Exception) -> int:
    """Convert raised exceptions into user-friendly exit codes."""
    if isinstance(error, (ValidationError, ConflictError)):
        log.error("%s", error)
        return 2
    if isinstance(error, FileNotFoundError):
        log.error("%s", error)
        return 3
    if isinstance(error, NotFoundError):
        log.error("%s", error)
        return 4
    if isinstance(error, AuthorizationError):
        log.error("%s", error)
        return 5
    if isinstance(error, StoreError):
        log.error("%s", error)
        return 6
    log.error("%s", error)
    return 1


def persist_workbook(context: core_logic.RuntimeContext) -> None:
    """Persist workbook changes after successful execution."""
    try:
        core_logic.persist_context(context)
    except PermissionError as error:
        raise RuntimeError(str(error)) from error


def main(argv: Sequence[str] | None = None) -> int:
    """CLI entry point that orchestrates parsing and execution."""
    parser = build_parser()
    command_table = configure_subcommands(parser)
    args = parser.parse_args(argv)
    try:
        context = load_runtime_context(getattr(args, "config", None))
        core_logic.ensure_schema_version(context)
        exit_code = asyncio.run(dispatch_command(context, args, command_table))
        if exit_code == 0 and command_table[args.command].mutates:
            persist_workbook(context)
        return exit_code
    except Exception as error:  # pragma: no cover - centralised error handler tested separately
        return handle_cli_error(error)


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())

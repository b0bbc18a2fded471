"""Business logic layer for Dealer ERP.

This module owns every rule that keeps inventory and sales consistent. It
consumes the document store for all I/O and never assumes a particular
backing database; the same code runs against the in-memory store used by
tests and the workbook store used by the command line.

The central workflow is :func:`commit_sale`. A vehicle can be sold at most
once, so the status flip on the vehicle and the creation of the sale record
must succeed or fail together. Stores that can apply several writes as one
unit do both in a single batch. Other stores claim the vehicle with a
compare-and-set update first and release it again if the sale insert fails.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field, replace
from datetime import UTC, datetime, timedelta
from decimal import Decimal
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

from . import data_manager, log, pricing
from .aggregation import (
    DashboardSummary,
    Report,
    build_dashboard,
    build_report,
    empty_dashboard,
    empty_report,
)
from .constants import (
    EXPECTED_SCHEMA_VERSION,
    Collection,
    EmployeeRole,
    ExpenseCategory,
    ExpenseStatus,
    PaymentMethod,
    Transmission,
    VehicleStatus,
)
from .errors import (
    AuthorizationError,
    ConflictError,
    NotFoundError,
    StoreError,
    ValidationError,
    WriteError,
)
from .models import (
    Actor,
    BuyerInfo,
    Employee,
    EmployeeRef,
    Expense,
    Sale,
    Vehicle,
    to_decimal,
    to_enum,
)
from .store import DocumentStore, Record, Subscription, WriteOperation


MAX_CLAIM_ATTEMPTS = 3


@dataclass(frozen=True)
class RuntimeContext:
    """Container for configuration, the store, and the acting identity."""

    settings: data_manager.ConfigSettings
    store: DocumentStore
    actor: Actor
    _clock: Dict[str, datetime] = field(default_factory=dict, repr=False, compare=False)


# ---------------------------------------------------------------------------
# Command objects
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class VehicleCommand:
    """User intent for adding a vehicle to inventory."""

    make: str
    model: str
    year: int
    purchase_price: Decimal
    extra_costs: Decimal = Decimal("0")
    color: str = ""
    mileage: int = 0
    engine_size: Decimal = Decimal("0")
    transmission: Transmission = Transmission.AUTOMATIC
    status: VehicleStatus = VehicleStatus.AVAILABLE
    notes: str = ""


@dataclass(frozen=True)
class VehicleUpdate:
    """Partial edit of a vehicle. ``None`` leaves a field unchanged."""

    make: Optional[str] = None
    model: Optional[str] = None
    year: Optional[int] = None
    color: Optional[str] = None
    mileage: Optional[int] = None
    engine_size: Optional[Decimal] = None
    transmission: Optional[Transmission] = None
    purchase_price: Optional[Decimal] = None
    extra_costs: Optional[Decimal] = None
    status: Optional[VehicleStatus] = None
    notes: Optional[str] = None

    def changes(self) -> Dict[str, Any]:
        return {name: value for name, value in vars(self).items() if value is not None}


@dataclass(frozen=True)
class SaleCommand:
    """User intent for selling one vehicle."""

    vehicle_id: str
    buyer: BuyerInfo
    sale_price: Decimal
    payment_method: PaymentMethod
    employee: Optional[EmployeeRef] = None
    contract_number: Optional[str] = None
    notes: Optional[str] = None
    timestamp: Optional[datetime] = None


@dataclass(frozen=True)
class ExpenseCommand:
    category: ExpenseCategory
    amount: Decimal
    description: str = ""
    date: Optional[datetime] = None


@dataclass(frozen=True)
class EmployeeCommand:
    name: str
    email: str
    phone: str = ""
    role: EmployeeRole = EmployeeRole.STAFF
    position: str = ""


@dataclass(frozen=True)
class ReportResult:
    """Outcome of :func:`load_report`.

    ``stale`` is ``True`` when the store could not be read and ``report`` is
    either the previously loaded view or an all-zero one.
    """

    report: Report
    stale: bool = False
    error: Optional[str] = None


@dataclass(frozen=True)
class DashboardResult:
    summary: DashboardSummary
    stale: bool = False
    error: Optional[str] = None


# ---------------------------------------------------------------------------
# Context lifecycle
# ---------------------------------------------------------------------------


def _resolve_timestamp(candidate: Optional[datetime]) -> datetime:
    """Return ``candidate`` as an aware datetime, or the current UTC time."""

    if candidate is None:
        return datetime.now(UTC)
    if candidate.tzinfo is None:
        return candidate.replace(tzinfo=UTC)
    return candidate


def _next_date_added(context: RuntimeContext, collection: Collection) -> datetime:
    """Return a creation timestamp strictly later than the previous one.

    Wall clocks can step backwards; records created through one context must
    still sort in creation order.
    """

    candidate = datetime.now(UTC)
    previous = context._clock.get(collection.value)
    if previous is not None and candidate <= previous:
        candidate = previous + timedelta(microseconds=1)
    context._clock[collection.value] = candidate
    return candidate


def load_runtime_context(config_path: Optional[Path] = None, *, actor: Optional[Actor] = None) -> RuntimeContext:
    """Load configuration settings and open the workbook-backed store.

    Args:
        config_path (Path | None): Optional override path for the configuration
            file. When omitted the data layer performs its upward search from
            the current working directory.
        actor (Actor | None): Identity issuing the writes. Defaults to the
            ``[Defaults]`` identity from ``config.ini``.

    Returns:
        RuntimeContext: Fully populated context ready for orchestration
            functions.

    Raises:
        FileNotFoundError: If the configuration file or workbook cannot be
            located.
        KeyError: When mandatory configuration options or worksheets are
            missing.
    """
    located_config = data_manager.find_config_file(config_path)
    resolved_config = Path(located_config).expanduser().resolve()
    parser = data_manager.read_config(resolved_config)
    settings = data_manager.parse_settings(parser, base_path=resolved_config.parent)
    store = data_manager.WorkbookStore.open(settings.data_file)
    store.validate_sheets()
    if actor is None:
        actor = Actor(
            actor_id=settings.default_employee_id,
            name=settings.default_employee_name,
            role=settings.default_role,
        )
    log.info("Loaded runtime context for workbook '%s' as '%s'", settings.data_file, actor.name)
    return RuntimeContext(settings=settings, store=store, actor=actor)


def ensure_schema_version(context: RuntimeContext) -> None:
    """Validate workbook compatibility before mutating state.

    Raises:
        RuntimeError: If the schema version declared in the configuration does
            not match ``EXPECTED_SCHEMA_VERSION``.
    """
    if context.settings.schema_version != EXPECTED_SCHEMA_VERSION:
        log.error(
            "Workbook schema mismatch: expected %s, found %s",
            EXPECTED_SCHEMA_VERSION,
            context.settings.schema_version,
        )
        raise RuntimeError(
            "Workbook schema mismatch: expected %s, found %s"
            % (EXPECTED_SCHEMA_VERSION, context.settings.schema_version)
        )

    log.debug("Schema version '%s' validated", context.settings.schema_version)


def persist_context(context: RuntimeContext) -> None:
    """Persist in-memory workbook changes to the configured data file.

    Stores without a file behind them have nothing to persist.
    """
    if not isinstance(context.store, data_manager.WorkbookStore):
        log.debug("Store %s has nothing to persist", type(context.store).__name__)
        return
    context.store.save(context.settings.data_file)


def refresh_context(context: RuntimeContext) -> RuntimeContext:
    """Reload the workbook to discard unsaved modifications.

    Returns:
        RuntimeContext: Fresh context with a newly opened store and the same
            settings and actor.

    Raises:
        FileNotFoundError: If the backing workbook cannot be reloaded.
    """
    store = data_manager.WorkbookStore(
        data_manager.refresh_workbook(context.settings.data_file),
        context.settings.data_file,
    )
    log.info("Reloaded workbook '%s'", context.settings.data_file)
    return RuntimeContext(settings=context.settings, store=store, actor=context.actor)


def require_admin(context: RuntimeContext, action: str = "perform this operation") -> None:
    """Raise :class:`AuthorizationError` unless the actor holds the admin role."""
    if not context.actor.is_admin:
        log.warning("Actor '%s' (%s) is not allowed to %s", context.actor.name, context.actor.role.value, action)
        raise AuthorizationError(
            f"Only admins may {action}",
            details={"actor": context.actor.actor_id, "role": context.actor.role.value},
        )


# ---------------------------------------------------------------------------
# Validation helpers
# ---------------------------------------------------------------------------


def require_text(value: Optional[str], *, field: str) -> str:
    text = (value or "").strip()
    if not text:
        log.error("Required field '%s' is blank", field)
        raise ValidationError(f"{field} is required", details={"field": field})
    return text


def require_positive_money(amount: Any, *, field: str) -> Decimal:
    """Validate that a monetary value is strictly positive.

    Raises:
        ValidationError: If ``amount`` is not a number, zero, or negative.
    """
    value = to_decimal(amount, field=field)
    if value <= Decimal("0"):
        log.error("Monetary value validation failed for %s: %s", field, value)
        raise ValidationError(f"{field} must be greater than zero", details={"field": field, "value": str(value)})
    return value


def require_nonnegative_int(value: int, *, field: str) -> None:
    if value < 0:
        log.error("Integer validation failed for %s: %s", field, value)
        raise ValidationError(f"{field} must be zero or positive", details={"field": field, "value": value})


def validate_vehicle(vehicle: Vehicle) -> None:
    """Check the fields every stored vehicle must satisfy.

    Raises:
        ValidationError: If make or model is blank, the year is not positive,
            mileage is negative, or a money field is negative.
    """
    require_text(vehicle.make, field="make")
    require_text(vehicle.model, field="model")
    if vehicle.year <= 0:
        log.error("Vehicle year validation failed: %s", vehicle.year)
        raise ValidationError("year must be a positive integer", details={"field": "year", "value": vehicle.year})
    require_nonnegative_int(vehicle.mileage, field="mileage")
    pricing.require_nonnegative_money(vehicle.engine_size, field="engineSize")
    pricing.require_nonnegative_money(vehicle.purchase_price, field="purchasePrice")
    pricing.require_nonnegative_money(vehicle.extra_costs, field="extraCosts")


def generate_contract_number(*, when: Optional[datetime] = None) -> str:
    """Generate a sortable contract number from a UTC timestamp.

    Returns:
        str: Identifier formed as ``C{YYYYMMDDHHMMSSffffff}``. Microseconds
            keep numbers issued within the same second distinct.
    """
    when = _resolve_timestamp(when).astimezone(UTC)
    return f"C{when.strftime('%Y%m%d%H%M%S%f')}"


def _newest_first(items: List[Any], key: Callable[[Any], datetime]) -> List[Any]:
    return sorted(items, key=key, reverse=True)


# ---------------------------------------------------------------------------
# Vehicles
# ---------------------------------------------------------------------------


async def get_vehicle(context: RuntimeContext, vehicle_id: str) -> Vehicle:
    """Resolve a vehicle by id.

    Raises:
        NotFoundError: If no vehicle carries ``vehicle_id``.
    """
    record = await context.store.get(Collection.VEHICLES, vehicle_id)
    if record is None:
        log.warning("Vehicle '%s' not found", vehicle_id)
        raise NotFoundError(f"Unknown vehicle id: {vehicle_id}", details={"id": vehicle_id})
    return Vehicle.from_record(record)


async def list_vehicles(context: RuntimeContext, status: Optional[VehicleStatus] = None) -> List[Vehicle]:
    """Return vehicles, newest first, optionally limited to one status."""
    where = {"status": to_enum(VehicleStatus, status, field="status").value} if status is not None else None
    records = await context.store.query(Collection.VEHICLES, where=where)
    return _newest_first([Vehicle.from_record(record) for record in records], key=lambda v: v.date_added)


async def list_sellable_vehicles(context: RuntimeContext) -> List[Vehicle]:
    """Return every vehicle that has not been sold yet, newest first."""
    return [vehicle for vehicle in await list_vehicles(context) if not vehicle.is_sold]


def watch_vehicles(
    context: RuntimeContext,
    listener: Callable[[List[Vehicle]], None],
    status: Optional[VehicleStatus] = None,
) -> Subscription:
    """Subscribe ``listener`` to the live vehicle list.

    The listener receives the full, newest-first list right away and again
    after every change to the vehicles collection.
    """
    where = {"status": to_enum(VehicleStatus, status, field="status").value} if status is not None else None

    def deliver(records: List[Dict[str, Any]]) -> None:
        vehicles = [Vehicle.from_record(record) for record in records]
        listener(_newest_first(vehicles, key=lambda v: v.date_added))

    return context.store.subscribe(Collection.VEHICLES, deliver, where=where)


async def add_vehicle(context: RuntimeContext, command: VehicleCommand) -> Vehicle:
    """Validate and insert a new vehicle.

    Args:
        context (RuntimeContext): Runtime context providing the store and the
            acting identity.
        command (VehicleCommand): Structured intent describing the vehicle.

    Returns:
        Vehicle: The stored vehicle with its generated id.

    Raises:
        ValidationError: When a field is malformed or the requested status is
            ``sold``. Vehicles only become sold through :func:`commit_sale`.
    """
    status = to_enum(VehicleStatus, command.status, field="status")
    if status is VehicleStatus.SOLD:
        log.error("Rejected new vehicle created directly as sold")
        raise ValidationError("New vehicles cannot be created as sold", details={"field": "status"})

    vehicle = Vehicle(
        vehicle_id="",
        make=command.make.strip(),
        model=command.model.strip(),
        year=command.year,
        color=command.color.strip(),
        mileage=command.mileage,
        engine_size=to_decimal(command.engine_size, field="engineSize"),
        transmission=to_enum(Transmission, command.transmission, field="transmission"),
        purchase_price=to_decimal(command.purchase_price, field="purchasePrice"),
        extra_costs=to_decimal(command.extra_costs, field="extraCosts"),
        status=status,
        added_by=context.actor.name,
        date_added=_next_date_added(context, Collection.VEHICLES),
        notes=command.notes,
    )
    validate_vehicle(vehicle)
    vehicle_id = await context.store.insert(Collection.VEHICLES, vehicle.to_record())
    log.info(
        "Added vehicle '%s' (%s, cost=%s)",
        vehicle_id,
        vehicle.display_name,
        vehicle.cost_price,
    )
    return replace(vehicle, vehicle_id=vehicle_id)


async def edit_vehicle(context: RuntimeContext, vehicle_id: str, update: VehicleUpdate) -> Vehicle:
    """Apply a partial edit to an unsold vehicle.

    The write only lands if the vehicle still has the status observed here,
    so an edit cannot silently undo a sale committed in the meantime. The
    stored ``costPrice`` is recomputed from the edited inputs.

    Raises:
        ValidationError: If the edit sets the status to ``sold`` or leaves an
            invalid field.
        ConflictError: If the vehicle is sold, either already or concurrently.
        NotFoundError: If ``vehicle_id`` is unknown.
    """
    changes = update.changes()
    if "status" in changes:
        changes["status"] = to_enum(VehicleStatus, changes["status"], field="status")
        if changes["status"] is VehicleStatus.SOLD:
            log.error("Rejected direct status change to sold for vehicle '%s'", vehicle_id)
            raise ValidationError("Vehicles can only be marked sold by a sale", details={"field": "status"})
    if "transmission" in changes:
        changes["transmission"] = to_enum(Transmission, changes["transmission"], field="transmission")
    for name in ("engine_size", "purchase_price", "extra_costs"):
        if name in changes:
            changes[name] = to_decimal(changes[name], field=name)

    current = await get_vehicle(context, vehicle_id)
    if current.is_sold:
        log.warning("Attempted edit of sold vehicle '%s'", vehicle_id)
        raise ConflictError(f"Vehicle '{vehicle_id}' is already sold", details={"id": vehicle_id})

    edited = replace(current, **changes)
    validate_vehicle(edited)
    record = edited.to_record()
    del record["addedBy"], record["dateAdded"]
    await context.store.update(
        Collection.VEHICLES,
        vehicle_id,
        record,
        expected={"status": current.status.value},
    )
    log.info("Edited vehicle '%s' fields=%s", vehicle_id, sorted(changes))
    return edited


async def delete_vehicle(context: RuntimeContext, vehicle_id: str) -> None:
    """Remove an unsold vehicle. Admin only.

    Raises:
        AuthorizationError: If the actor is not an admin.
        ConflictError: If the vehicle is sold, either already or concurrently.
        NotFoundError: If ``vehicle_id`` is unknown.
    """
    require_admin(context, "delete vehicles")
    current = await get_vehicle(context, vehicle_id)
    if current.is_sold:
        log.warning("Attempted deletion of sold vehicle '%s'", vehicle_id)
        raise ConflictError(f"Vehicle '{vehicle_id}' is sold and cannot be deleted", details={"id": vehicle_id})
    await context.store.delete(Collection.VEHICLES, vehicle_id, expected={"status": current.status.value})
    log.info("Deleted vehicle '%s' (%s)", vehicle_id, current.display_name)


# ---------------------------------------------------------------------------
# Sales
# ---------------------------------------------------------------------------


async def get_sale(context: RuntimeContext, sale_id: str) -> Sale:
    record = await context.store.get(Collection.SALES, sale_id)
    if record is None:
        log.warning("Sale '%s' not found", sale_id)
        raise NotFoundError(f"Unknown sale id: {sale_id}", details={"id": sale_id})
    return Sale.from_record(record)


async def list_sales(context: RuntimeContext) -> List[Sale]:
    records = await context.store.query(Collection.SALES)
    return _newest_first([Sale.from_record(record) for record in records], key=lambda s: s.date)


def _prepare_sale_command(context: RuntimeContext, command: SaleCommand) -> SaleCommand:
    """Validate ``command`` and fill in its defaults.

    Raises:
        ValidationError: If the vehicle id or buyer name is blank, the price is
            not positive, or the payment method is unknown.
    """
    require_text(command.vehicle_id, field="vehicleId")
    buyer = replace(command.buyer, name=require_text(command.buyer.name, field="buyerName"))
    price = require_positive_money(command.sale_price, field="salePrice")
    payment_method = to_enum(PaymentMethod, command.payment_method, field="paymentMethod")
    timestamp = _resolve_timestamp(command.timestamp)
    employee = command.employee or EmployeeRef(employee_id=context.actor.actor_id, name=context.actor.name)
    return replace(
        command,
        buyer=buyer,
        sale_price=price,
        payment_method=payment_method,
        timestamp=timestamp,
        employee=employee,
        contract_number=command.contract_number or generate_contract_number(when=timestamp),
    )


def build_sale(command: SaleCommand, vehicle: Vehicle) -> Sale:
    """Snapshot ``vehicle`` into a new sale. Cost and profit come from this read."""
    cost = vehicle.cost_price
    return Sale(
        sale_id="",
        vehicle_id=vehicle.vehicle_id,
        car_name=vehicle.display_name,
        buyer=command.buyer,
        price=command.sale_price,
        cost=cost,
        profit=pricing.profit(command.sale_price, cost),
        payment_method=command.payment_method,
        employee=command.employee,
        date=command.timestamp,
        contract_number=command.contract_number or "",
        notes=command.notes or "",
    )


async def _release_vehicle(store: DocumentStore, vehicle: Vehicle) -> None:
    """Undo a claim whose sale insert failed, restoring the previous status."""
    try:
        await store.update(
            Collection.VEHICLES,
            vehicle.vehicle_id,
            {"status": vehicle.status.value},
            expected={"status": VehicleStatus.SOLD.value},
        )
    except (StoreError, ConflictError, NotFoundError) as exc:
        log.critical(
            "Vehicle '%s' is marked sold without a sale record and could not be released: %s",
            vehicle.vehicle_id,
            exc,
        )
    else:
        log.warning("Released vehicle '%s' back to '%s' after failed sale insert", vehicle.vehicle_id, vehicle.status.value)


async def _write_sale(store: DocumentStore, vehicle: Vehicle, sale: Sale) -> str:
    """Claim ``vehicle`` and insert ``sale`` so that both land or neither does.

    Raises:
        ConflictError: If the vehicle's status or cost inputs changed since
            they were read.
        WriteError: If the store failed. Nothing remains applied.
    """
    claim = {"status": VehicleStatus.SOLD.value}
    expected = {
        "status": vehicle.status.value,
        "purchasePrice": vehicle.purchase_price,
        "extraCosts": vehicle.extra_costs,
    }
    if store.supports_atomic_write:
        results = await store.atomic_write(
            [
                WriteOperation.update(Collection.VEHICLES, vehicle.vehicle_id, claim, expected=expected),
                WriteOperation.insert(Collection.SALES, sale.to_record()),
            ]
        )
        return results[1]

    await store.update(Collection.VEHICLES, vehicle.vehicle_id, claim, expected=expected)
    try:
        return await store.insert(Collection.SALES, sale.to_record())
    except StoreError as exc:
        log.error("Sale insert for vehicle '%s' failed: %s", vehicle.vehicle_id, exc)
        await _release_vehicle(store, vehicle)
        raise WriteError(
            f"Sale of vehicle '{vehicle.vehicle_id}' was not recorded",
            details={"vehicleId": vehicle.vehicle_id},
        ) from exc


async def commit_sale(context: RuntimeContext, command: SaleCommand) -> str:
    """Sell a vehicle: mark it sold and record the sale as one outcome.

    The vehicle is re-read on every attempt and the claim is conditional on
    the status and cost inputs of that read, so the stored profit always
    matches the cost the vehicle had when it was sold. A claim that loses a
    race is retried against a fresh read unless the vehicle is now sold.

    The write phase is shielded from cancellation: cancelling the caller
    after the claim has started leaves the commit to finish on its own.

    Args:
        context (RuntimeContext): Runtime context providing the store and the
            acting identity.
        command (SaleCommand): Structured intent describing the sale request.

    Returns:
        str: Identifier of the new sale record.

    Raises:
        ValidationError: If the command is malformed. Nothing is read or
            written.
        NotFoundError: If the vehicle does not exist.
        ConflictError: If the vehicle is already sold.
        WriteError: If the store failed or the vehicle kept changing. The
            sale was not recorded and the vehicle is not left sold.
    """
    command = _prepare_sale_command(context, command)

    for attempt in range(1, MAX_CLAIM_ATTEMPTS + 1):
        vehicle = await get_vehicle(context, command.vehicle_id)
        if vehicle.is_sold:
            log.warning("Attempted sale of already sold vehicle '%s'", vehicle.vehicle_id)
            raise ConflictError(
                f"Vehicle '{vehicle.vehicle_id}' is already sold",
                details={"id": vehicle.vehicle_id},
            )
        sale = build_sale(command, vehicle)
        try:
            sale_id = await asyncio.shield(_write_sale(context.store, vehicle, sale))
        except ConflictError:
            log.warning(
                "Vehicle '%s' changed during sale commit (attempt %d/%d)",
                vehicle.vehicle_id,
                attempt,
                MAX_CLAIM_ATTEMPTS,
            )
            continue
        log.info(
            "Committed sale '%s' of vehicle '%s' to '%s' (price=%s, cost=%s, profit=%s)",
            sale_id,
            vehicle.vehicle_id,
            sale.buyer.name,
            sale.price,
            sale.cost,
            sale.profit,
        )
        return sale_id

    log.error("Gave up committing sale of vehicle '%s' after %d attempts", command.vehicle_id, MAX_CLAIM_ATTEMPTS)
    raise WriteError(
        f"Vehicle '{command.vehicle_id}' kept changing during the sale",
        details={"vehicleId": command.vehicle_id, "attempts": MAX_CLAIM_ATTEMPTS},
    )


async def commit_sale_with_retry(
    context: RuntimeContext,
    command: SaleCommand,
    *,
    attempts: int = 3,
    backoff_base: float = 0.1,
) -> str:
    """Run :func:`commit_sale`, retrying transient store failures.

    Only :class:`WriteError` is retried; it guarantees nothing was applied.
    The timestamp and contract number are fixed before the first attempt so
    every retry describes the same sale.
    """
    command = _prepare_sale_command(context, command)
    for attempt in range(attempts):
        try:
            return await commit_sale(context, command)
        except WriteError as exc:
            if attempt >= attempts - 1:
                raise
            delay = backoff_base * (2 ** attempt)
            log.warning("Sale commit failed (%s); retrying in %.2fs", exc, delay)
            await asyncio.sleep(delay)
    raise WriteError("Sale commit was not attempted", details={"attempts": attempts})


# ---------------------------------------------------------------------------
# Expenses
# ---------------------------------------------------------------------------


async def get_expense(context: RuntimeContext, expense_id: str) -> Expense:
    record = await context.store.get(Collection.EXPENSES, expense_id)
    if record is None:
        log.warning("Expense '%s' not found", expense_id)
        raise NotFoundError(f"Unknown expense id: {expense_id}", details={"id": expense_id})
    return Expense.from_record(record)


async def list_expenses(context: RuntimeContext, status: Optional[ExpenseStatus] = None) -> List[Expense]:
    where = {"status": to_enum(ExpenseStatus, status, field="status").value} if status is not None else None
    records = await context.store.query(Collection.EXPENSES, where=where)
    return _newest_first([Expense.from_record(record) for record in records], key=lambda e: e.date)


async def add_expense(context: RuntimeContext, command: ExpenseCommand) -> Expense:
    """Record a new expense awaiting review.

    Raises:
        ValidationError: If the category is unknown or the amount is not
            positive.
    """
    expense = Expense(
        expense_id="",
        category=to_enum(ExpenseCategory, command.category, field="category"),
        amount=require_positive_money(command.amount, field="amount"),
        date=_resolve_timestamp(command.date),
        added_by=context.actor.name,
        description=command.description.strip(),
        status=ExpenseStatus.PENDING,
    )
    expense_id = await context.store.insert(Collection.EXPENSES, expense.to_record())
    log.info("Added %s expense '%s' (amount=%s)", expense.category.value, expense_id, expense.amount)
    return replace(expense, expense_id=expense_id)


async def review_expense(context: RuntimeContext, expense_id: str, *, approve: bool) -> Expense:
    """Approve or reject a pending expense. Admin only.

    Raises:
        AuthorizationError: If the actor is not an admin.
        ConflictError: If the expense was already reviewed.
        NotFoundError: If ``expense_id`` is unknown.
    """
    require_admin(context, "review expenses")
    current = await get_expense(context, expense_id)
    if current.status is not ExpenseStatus.PENDING:
        log.warning("Expense '%s' was already %s", expense_id, current.status.value)
        raise ConflictError(
            f"Expense '{expense_id}' was already {current.status.value}",
            details={"id": expense_id, "status": current.status.value},
        )
    status = ExpenseStatus.APPROVED if approve else ExpenseStatus.REJECTED
    await context.store.update(
        Collection.EXPENSES,
        expense_id,
        {"status": status.value},
        expected={"status": ExpenseStatus.PENDING.value},
    )
    log.info("Expense '%s' %s by '%s'", expense_id, status.value, context.actor.name)
    return replace(current, status=status)


async def delete_expense(context: RuntimeContext, expense_id: str) -> None:
    await context.store.delete(Collection.EXPENSES, expense_id)
    log.info("Deleted expense '%s'", expense_id)


# ---------------------------------------------------------------------------
# Employees
# ---------------------------------------------------------------------------


async def list_employees(context: RuntimeContext) -> List[Employee]:
    records = await context.store.query(Collection.EMPLOYEES)
    return sorted((Employee.from_record(record) for record in records), key=lambda e: e.name.casefold())


async def get_employee(context: RuntimeContext, employee_id: str) -> Employee:
    record = await context.store.get(Collection.EMPLOYEES, employee_id)
    if record is None:
        log.warning("Employee '%s' not found", employee_id)
        raise NotFoundError(f"Unknown employee id: {employee_id}", details={"id": employee_id})
    return Employee.from_record(record)


async def add_employee(context: RuntimeContext, command: EmployeeCommand) -> Employee:
    """Register a staff member. Admin only; new employees start active."""
    require_admin(context, "manage employees")
    employee = Employee(
        employee_id="",
        name=require_text(command.name, field="name"),
        email=require_text(command.email, field="email"),
        phone=command.phone.strip(),
        role=to_enum(EmployeeRole, command.role, field="role"),
        position=command.position.strip(),
        active=True,
        date_added=_next_date_added(context, Collection.EMPLOYEES),
    )
    employee_id = await context.store.insert(Collection.EMPLOYEES, employee.to_record())
    log.info("Added employee '%s' (%s, %s)", employee_id, employee.name, employee.role.value)
    return replace(employee, employee_id=employee_id)


async def set_employee_active(context: RuntimeContext, employee_id: str, active: bool) -> Employee:
    require_admin(context, "manage employees")
    current = await get_employee(context, employee_id)
    await context.store.update(Collection.EMPLOYEES, employee_id, {"active": active})
    log.info("Employee '%s' marked %s", employee_id, "active" if active else "inactive")
    return replace(current, active=active)


async def delete_employee(context: RuntimeContext, employee_id: str) -> None:
    """Remove an employee. Past sales keep the denormalized name and id."""
    require_admin(context, "manage employees")
    await context.store.delete(Collection.EMPLOYEES, employee_id)
    log.info("Deleted employee '%s'", employee_id)


# ---------------------------------------------------------------------------
# Reports
# ---------------------------------------------------------------------------


def _readable(records: List[Record], entity: Any, collection: Collection) -> List[Any]:
    """Convert records for reporting, skipping the ones that cannot be read."""
    rows = []
    for record in records:
        try:
            rows.append(entity.from_record(record))
        except ValidationError as exc:
            log.warning("Skipping unreadable %s record '%s': %s", collection.value, record.get("id"), exc)
    return rows


async def _report_rows(context: RuntimeContext, collection: Collection, entity: Any) -> List[Any]:
    return _readable(await context.store.query(collection), entity, collection)


async def load_report(
    context: RuntimeContext,
    year: int,
    *,
    previous: Optional[Report] = None,
) -> ReportResult:
    """Fetch sales and expenses and fold them into the report for ``year``.

    Args:
        context (RuntimeContext): Runtime context providing the store.
        year (int): Calendar year to report on.
        previous (Report | None): Last successfully loaded report, returned
            again when the store cannot be read.

    Returns:
        ReportResult: The fresh report, or a stale one flagged ``stale=True``
            when the store failed. Store failures never propagate.

    Records that cannot be converted are logged and left out of the totals.
    """
    try:
        sales, expenses = await asyncio.gather(
            _report_rows(context, Collection.SALES, Sale),
            _report_rows(context, Collection.EXPENSES, Expense),
        )
    except StoreError as exc:
        fallback = previous if previous is not None and previous.year == year else empty_report(year)
        log.warning(
            "Report for %d served from %s data: %s",
            year,
            "previous" if fallback is previous else "empty",
            exc,
        )
        return ReportResult(report=fallback, stale=True, error=str(exc))

    report = build_report(sales, expenses, year, expense_scope=context.settings.expense_scope)
    log.debug("Built report for %d from %d sales and %d expenses", year, len(sales), len(expenses))
    return ReportResult(report=report)


async def load_dashboard(
    context: RuntimeContext,
    *,
    now: Optional[datetime] = None,
    previous: Optional[DashboardSummary] = None,
) -> DashboardResult:
    """Fetch every collection the dashboard needs and summarize it.

    Degrades like :func:`load_report` when the store cannot be read.
    """
    now = _resolve_timestamp(now)
    try:
        sales, expenses, vehicles = await asyncio.gather(
            _report_rows(context, Collection.SALES, Sale),
            _report_rows(context, Collection.EXPENSES, Expense),
            _report_rows(context, Collection.VEHICLES, Vehicle),
        )
    except StoreError as exc:
        log.warning("Dashboard served from %s data: %s", "previous" if previous is not None else "empty", exc)
        fallback = previous if previous is not None else empty_dashboard()
        return DashboardResult(summary=fallback, stale=True, error=str(exc))

    summary = build_dashboard(
        sales,
        expenses,
        vehicles,
        now=now,
        expense_scope=context.settings.expense_scope,
    )
    return DashboardResult(summary=summary)


__all__ = [
    "DashboardResult",
    "EmployeeCommand",
    "ExpenseCommand",
    "ReportResult",
    "RuntimeContext",
    "SaleCommand",
    "VehicleCommand",
    "VehicleUpdate",
    "add_employee",
    "add_expense",
    "add_vehicle",
    "build_sale",
    "commit_sale",
    "commit_sale_with_retry",
    "delete_employee",
    "delete_expense",
    "delete_vehicle",
    "edit_vehicle",
    "ensure_schema_version",
    "generate_contract_number",
    "get_employee",
    "get_expense",
    "get_sale",
    "get_vehicle",
    "list_employees",
    "list_expenses",
    "list_sales",
    "list_sellable_vehicles",
    "list_vehicles",
    "load_dashboard",
    "load_report",
    "load_runtime_context",
    "persist_context",
    "refresh_context",
    "require_admin",
    "review_expense",
    "set_employee_active",
    "watch_vehicles",
    "validate_vehicle",
]

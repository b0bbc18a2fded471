"""Entity model for vehicles, sales, expenses, and employees.

Each entity is a frozen dataclass with a pair of translators:
``from_record`` turns a raw store record (a ``dict`` keyed by the persisted
field names) into a typed instance, and ``to_record`` produces the field
mapping written back to the store. Records may come from the in-memory store
with native Python types or from a workbook where numbers arrive as floats and
timestamps as ISO strings, so every converter accepts both shapes.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, datetime
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any, Mapping, Optional, Type, TypeVar

from . import log, pricing
from .constants import (
    EmployeeRole,
    ExpenseCategory,
    ExpenseStatus,
    PaymentMethod,
    Transmission,
    VehicleStatus,
)
from .errors import ValidationError


E = TypeVar("E", bound=Enum)


# ---------------------------------------------------------------------------
# Field converters
# ---------------------------------------------------------------------------


def to_decimal(value: Any, *, field: str = "value") -> Decimal:
    """Normalize numeric cell values into :class:`~decimal.Decimal`.

    ``None`` and empty strings become zero: blank numeric cells read as
    missing amounts. ``NaN`` and infinities are rejected.
    """
    if value is None or value == "":
        return Decimal("0")
    if isinstance(value, Decimal):
        number = value
    else:
        try:
            number = Decimal(str(value))
        except InvalidOperation as exc:
            raise ValidationError(f"{field} is not a number: {value!r}", details={"field": field}) from exc
    if not number.is_finite():
        raise ValidationError(f"{field} must be a finite number: {value!r}", details={"field": field})
    return number


def to_datetime(value: Any, *, field: str = "date") -> datetime:
    """Normalize timestamps into timezone-aware datetimes (naive means UTC)."""
    if isinstance(value, datetime):
        moment = value
    elif isinstance(value, str) and value:
        try:
            moment = datetime.fromisoformat(value)
        except ValueError as exc:
            raise ValidationError(f"{field} is not an ISO timestamp: {value!r}", details={"field": field}) from exc
    else:
        raise ValidationError(f"{field} is missing", details={"field": field})
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=UTC)
    return moment


def to_enum(enum_type: Type[E], value: Any, *, field: str) -> E:
    if isinstance(value, enum_type):
        return value
    try:
        return enum_type(value)
    except ValueError as exc:
        allowed = ", ".join(member.value for member in enum_type)
        raise ValidationError(
            f"Unsupported {field}: {value!r} (expected one of: {allowed})",
            details={"field": field, "value": value},
        ) from exc


def to_text(value: Any) -> str:
    return "" if value is None else str(value)


def to_optional_text(value: Any) -> Optional[str]:
    if value is None or value == "":
        return None
    return str(value)


def to_int(value: Any, *, field: str) -> int:
    if value is None or value == "":
        return 0
    try:
        return int(value)
    except (TypeError, ValueError) as exc:
        raise ValidationError(f"{field} is not an integer: {value!r}", details={"field": field}) from exc


# ---------------------------------------------------------------------------
# Value objects
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Actor:
    """Identity of the caller as supplied by the identity provider."""

    actor_id: str
    name: str
    role: EmployeeRole = EmployeeRole.STAFF

    @property
    def is_admin(self) -> bool:
        return self.role is EmployeeRole.ADMIN


@dataclass(frozen=True)
class BuyerInfo:
    name: str
    phone: str = ""
    passport: Optional[str] = None


@dataclass(frozen=True)
class EmployeeRef:
    """Denormalized employee identity stamped onto sales."""

    employee_id: str
    name: str


# ---------------------------------------------------------------------------
# Entities
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Vehicle:
    """One car tracked from acquisition to sale.

    ``cost_price`` is never stored on the instance; it is derived from
    ``purchase_price`` and ``extra_costs`` every time it is read, and
    :meth:`to_record` writes the freshly derived value alongside its inputs.
    """

    vehicle_id: str
    make: str
    model: str
    year: int
    color: str
    mileage: int
    engine_size: Decimal
    transmission: Transmission
    purchase_price: Decimal
    extra_costs: Decimal
    status: VehicleStatus
    added_by: str
    date_added: datetime
    notes: str = ""

    @property
    def cost_price(self) -> Decimal:
        return pricing.cost_price(self.purchase_price, self.extra_costs)

    @property
    def display_name(self) -> str:
        return f"{self.make} {self.model} ({self.year})"

    @property
    def is_sold(self) -> bool:
        return self.status is VehicleStatus.SOLD

    @classmethod
    def from_record(cls, record: Mapping[str, Any]) -> "Vehicle":
        vehicle = cls(
            vehicle_id=to_text(record.get("id")),
            make=to_text(record.get("make")),
            model=to_text(record.get("model")),
            year=to_int(record.get("year"), field="year"),
            color=to_text(record.get("color")),
            mileage=to_int(record.get("mileage"), field="mileage"),
            engine_size=to_decimal(record.get("engineSize"), field="engineSize"),
            transmission=to_enum(Transmission, record.get("transmission"), field="transmission"),
            purchase_price=to_decimal(record.get("purchasePrice"), field="purchasePrice"),
            extra_costs=to_decimal(record.get("extraCosts"), field="extraCosts"),
            status=to_enum(VehicleStatus, record.get("status"), field="status"),
            added_by=to_text(record.get("addedBy")),
            date_added=to_datetime(record.get("dateAdded"), field="dateAdded"),
            notes=to_text(record.get("notes")),
        )
        stored_cost = record.get("costPrice")
        if stored_cost is not None and to_decimal(stored_cost, field="costPrice") != vehicle.cost_price:
            log.warning(
                "Vehicle '%s' stored costPrice %s disagrees with derived %s; using derived value",
                vehicle.vehicle_id,
                stored_cost,
                vehicle.cost_price,
            )
        return vehicle

    def to_record(self) -> dict[str, Any]:
        return {
            "make": self.make,
            "model": self.model,
            "year": self.year,
            "color": self.color,
            "mileage": self.mileage,
            "engineSize": self.engine_size,
            "transmission": self.transmission.value,
            "purchasePrice": self.purchase_price,
            "extraCosts": self.extra_costs,
            "costPrice": self.cost_price,
            "status": self.status.value,
            "addedBy": self.added_by,
            "dateAdded": self.date_added,
            "notes": self.notes,
        }


@dataclass(frozen=True)
class Sale:
    """Immutable record of a completed sale.

    ``car_name`` and ``cost`` are snapshots of the vehicle taken at commit
    time, and ``profit`` is frozen alongside them. Later edits to the vehicle
    never flow back into an existing sale.
    """

    sale_id: str
    vehicle_id: str
    car_name: str
    buyer: BuyerInfo
    price: Decimal
    cost: Decimal
    profit: Decimal
    payment_method: PaymentMethod
    employee: EmployeeRef
    date: datetime
    contract_number: str = ""
    notes: str = ""

    @classmethod
    def from_record(cls, record: Mapping[str, Any]) -> "Sale":
        return cls(
            sale_id=to_text(record.get("id")),
            vehicle_id=to_text(record.get("carId")),
            car_name=to_text(record.get("carName")),
            buyer=BuyerInfo(
                name=to_text(record.get("buyerName")),
                phone=to_text(record.get("buyerPhone")),
                passport=to_optional_text(record.get("buyerPassport")),
            ),
            price=to_decimal(record.get("price"), field="price"),
            cost=to_decimal(record.get("cost"), field="cost"),
            profit=to_decimal(record.get("profit"), field="profit"),
            payment_method=to_enum(PaymentMethod, record.get("paymentType"), field="paymentType"),
            employee=EmployeeRef(
                employee_id=to_text(record.get("employeeId")),
                name=to_text(record.get("employeeName")),
            ),
            date=to_datetime(record.get("date")),
            contract_number=to_text(record.get("contractNumber")),
            notes=to_text(record.get("notes")),
        )

    def to_record(self) -> dict[str, Any]:
        return {
            "carId": self.vehicle_id,
            "carName": self.car_name,
            "buyerName": self.buyer.name,
            "buyerPhone": self.buyer.phone,
            "buyerPassport": self.buyer.passport,
            "price": self.price,
            "cost": self.cost,
            "profit": self.profit,
            "paymentType": self.payment_method.value,
            "employeeName": self.employee.name,
            "employeeId": self.employee.employee_id,
            "date": self.date,
            "contractNumber": self.contract_number,
            "notes": self.notes,
        }


@dataclass(frozen=True)
class Expense:
    expense_id: str
    category: ExpenseCategory
    amount: Decimal
    date: datetime
    added_by: str
    description: str
    status: ExpenseStatus

    @classmethod
    def from_record(cls, record: Mapping[str, Any]) -> "Expense":
        return cls(
            expense_id=to_text(record.get("id")),
            category=to_enum(ExpenseCategory, record.get("category"), field="category"),
            amount=to_decimal(record.get("amount"), field="amount"),
            date=to_datetime(record.get("date")),
            added_by=to_text(record.get("addedBy")),
            description=to_text(record.get("description")),
            status=to_enum(ExpenseStatus, record.get("status"), field="status"),
        )

    def to_record(self) -> dict[str, Any]:
        return {
            "category": self.category.value,
            "amount": self.amount,
            "date": self.date,
            "addedBy": self.added_by,
            "description": self.description,
            "status": self.status.value,
        }


@dataclass(frozen=True)
class Employee:
    """Staff member. Only used as a reporting dimension by the core."""

    employee_id: str
    name: str
    email: str
    phone: str
    role: EmployeeRole
    position: str
    active: bool
    date_added: datetime

    @classmethod
    def from_record(cls, record: Mapping[str, Any]) -> "Employee":
        return cls(
            employee_id=to_text(record.get("id")),
            name=to_text(record.get("name")),
            email=to_text(record.get("email")),
            phone=to_text(record.get("phone")),
            role=to_enum(EmployeeRole, record.get("role"), field="role"),
            position=to_text(record.get("position")),
            active=bool(record.get("active")),
            date_added=to_datetime(record.get("dateAdded"), field="dateAdded"),
        )

    def to_record(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "email": self.email,
            "phone": self.phone,
            "role": self.role.value,
            "position": self.position,
            "active": self.active,
            "dateAdded": self.date_added,
        }


__all__ = [
    "Actor",
    "BuyerInfo",
    "EmployeeRef",
    "Vehicle",
    "Sale",
    "Expense",
    "Employee",
    "to_decimal",
    "to_datetime",
    "to_enum",
]

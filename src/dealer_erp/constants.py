"""Enumerations shared across Dealer ERP modules.

Centralises domain constants so that the store adapters, the business logic
layer (BLL), the reporting pipeline, and the CLI agree on the exact values
persisted in every record.
"""

from __future__ import annotations

from enum import Enum


# Central schema version expected by all layers when validating workbooks.
EXPECTED_SCHEMA_VERSION = "2.0.0"

# Sentinel labels used when a grouping key is missing from a record.
UNKNOWN_EMPLOYEE = "Unknown"
OTHER_MODEL = "Other"


class Collection(str, Enum):
    """Enumerate the record collections exposed by the document store."""

    VEHICLES = "vehicles"
    SALES = "sales"
    EXPENSES = "expenses"
    EMPLOYEES = "employees"


class VehicleStatus(str, Enum):
    """Lifecycle states of an inventory vehicle. ``SOLD`` is terminal."""

    AVAILABLE = "available"
    PENDING = "pending"
    SOLD = "sold"


class Transmission(str, Enum):
    AUTOMATIC = "automatic"
    MANUAL = "manual"


class PaymentMethod(str, Enum):
    """Enumerate supported payment mechanisms for vehicle sales."""

    CASH = "cash"
    INSTALLMENT = "installment"
    BANK_TRANSFER = "bank-transfer"


class ExpenseCategory(str, Enum):
    """Closed set of expense categories."""

    RENT = "Rent"
    SALARY = "Salary"
    REPAIR = "Repair"
    ADVERTISING = "Advertising"
    FUEL = "Fuel"
    UTILITIES = "Utilities"
    OTHER = "Other"


class ExpenseStatus(str, Enum):
    """Approval states of an expense. Approved and rejected are terminal."""

    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class EmployeeRole(str, Enum):
    ADMIN = "admin"
    STAFF = "staff"


# Role granted to the configured identity when config.ini omits one.
DEFAULT_ROLE = EmployeeRole.STAFF


class ExpenseScope(str, Enum):
    """Which expenses the dashboard and reports include in their sums."""

    ALL = "all"
    APPROVED = "approved"


__all__ = [
    "EXPECTED_SCHEMA_VERSION",
    "UNKNOWN_EMPLOYEE",
    "OTHER_MODEL",
    "Collection",
    "VehicleStatus",
    "Transmission",
    "PaymentMethod",
    "ExpenseCategory",
    "ExpenseStatus",
    "EmployeeRole",
    "ExpenseScope",
]

"""In-memory search and filtering over already loaded entity lists.

Filters never reorder their input and never go back to the store.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Iterable, List, Optional

from .constants import ExpenseCategory, ExpenseStatus, PaymentMethod, VehicleStatus
from .models import Expense, Sale, Vehicle


def vehicle_text(vehicle: Vehicle) -> str:
    return " ".join((vehicle.make, vehicle.model, vehicle.color))


def sale_text(sale: Sale) -> str:
    return " ".join((sale.car_name, sale.buyer.name, sale.employee.name))


def expense_text(expense: Expense) -> str:
    return " ".join((expense.category.value, expense.description, expense.added_by))


def matches_query(text: str, query: str) -> bool:
    """Lower-cased substring match. The empty query matches everything."""
    return query.lower() in text.lower()


def filter_vehicles(
    vehicles: Iterable[Vehicle],
    query: str = "",
    status: Optional[VehicleStatus] = None,
) -> List[Vehicle]:
    return [
        vehicle
        for vehicle in vehicles
        if (status is None or vehicle.status is status) and matches_query(vehicle_text(vehicle), query)
    ]


def filter_sales(
    sales: Iterable[Sale],
    query: str = "",
    payment_method: Optional[PaymentMethod] = None,
) -> List[Sale]:
    return [
        sale
        for sale in sales
        if (payment_method is None or sale.payment_method is payment_method)
        and matches_query(sale_text(sale), query)
    ]


def filter_expenses(
    expenses: Iterable[Expense],
    query: str = "",
    status: Optional[ExpenseStatus] = None,
    category: Optional[ExpenseCategory] = None,
) -> List[Expense]:
    """Apply the text query and the optional status and category filters.

    All conditions must hold. The relative order of ``expenses`` is kept.
    """
    return [
        expense
        for expense in expenses
        if (status is None or expense.status is status)
        and (category is None or expense.category is category)
        and matches_query(expense_text(expense), query)
    ]


def total_amount(expenses: Iterable[Expense]) -> Decimal:
    return sum((expense.amount for expense in expenses), Decimal("0"))


__all__ = [
    "expense_text",
    "filter_expenses",
    "filter_sales",
    "filter_vehicles",
    "matches_query",
    "sale_text",
    "total_amount",
    "vehicle_text",
]

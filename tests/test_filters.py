"""Unit tests for the in-memory search and filter helpers."""

from __future__ import annotations

from datetime import UTC, datetime
from decimal import Decimal

import pytest

from dealer_erp import filters
from dealer_erp.constants import ExpenseCategory, ExpenseStatus, PaymentMethod, Transmission, VehicleStatus
from dealer_erp.models import BuyerInfo, EmployeeRef, Expense, Sale, Vehicle


def _vehicle(vehicle_id: str, make: str, model: str, color: str, status: VehicleStatus) -> Vehicle:
    return Vehicle(
        vehicle_id=vehicle_id,
        make=make,
        model=model,
        year=2021,
        color=color,
        mileage=1000,
        engine_size=Decimal("2.0"),
        transmission=Transmission.AUTOMATIC,
        purchase_price=Decimal("9000"),
        extra_costs=Decimal("0"),
        status=status,
        added_by="Dana Admin",
        date_added=datetime(2024, 1, 1, tzinfo=UTC),
    )


def _sale(sale_id: str, car_name: str, buyer: str, employee: str, method: PaymentMethod) -> Sale:
    return Sale(
        sale_id=sale_id,
        vehicle_id=f"v-{sale_id}",
        car_name=car_name,
        buyer=BuyerInfo(name=buyer),
        price=Decimal("10000"),
        cost=Decimal("9000"),
        profit=Decimal("1000"),
        payment_method=method,
        employee=EmployeeRef(employee_id="E1", name=employee),
        date=datetime(2024, 2, 1, tzinfo=UTC),
    )


def _expense(expense_id: str, category: ExpenseCategory, amount: str, description: str, status: ExpenseStatus) -> Expense:
    return Expense(
        expense_id=expense_id,
        category=category,
        amount=Decimal(amount),
        date=datetime(2024, 2, 1, tzinfo=UTC),
        added_by="Ali",
        description=description,
        status=status,
    )


@pytest.fixture
def vehicles():
    return [
        _vehicle("v1", "Toyota", "Camry", "White", VehicleStatus.AVAILABLE),
        _vehicle("v2", "Kia", "Rio", "Red", VehicleStatus.SOLD),
        _vehicle("v3", "Toyota", "Corolla", "Red", VehicleStatus.PENDING),
    ]


@pytest.fixture
def expenses():
    return [
        _expense("x1", ExpenseCategory.FUEL, "200", "Diesel for the tow truck", ExpenseStatus.PENDING),
        _expense("x2", ExpenseCategory.RENT, "100", "March rent", ExpenseStatus.APPROVED),
        _expense("x3", ExpenseCategory.FUEL, "50", "Petrol", ExpenseStatus.APPROVED),
    ]


@pytest.mark.parametrize(
    "text, query, expected",
    [
        ("Toyota Camry White", "camry", True),
        ("Toyota Camry White", "TOYOTA", True),
        ("Toyota Camry White", "camry ", True),
        ("Toyota Camry White", "  TOYOTA ", False),
        ("Toyota Camry White", "", True),
        ("Toyota Camry White", "   ", False),
        ("Toyota Camry White", "kia", False),
    ],
)
def test_matches_query(text, query, expected):
    """Queries are lower-cased substring matches and are not trimmed."""

    assert filters.matches_query(text, query) is expected


def test_filter_vehicles_by_text_and_status(vehicles):
    """Vehicles match on make, model, or color, combined with status."""

    assert [v.vehicle_id for v in filters.filter_vehicles(vehicles, "red")] == ["v2", "v3"]
    assert [v.vehicle_id for v in filters.filter_vehicles(vehicles, "toyota", VehicleStatus.PENDING)] == ["v3"]
    assert filters.filter_vehicles(vehicles) == vehicles


def test_filter_sales_by_buyer_employee_or_car():
    """Sales match on car name, buyer, or employee, and on payment method."""

    sales = [
        _sale("s1", "Toyota Camry (2020)", "Sam", "Ali", PaymentMethod.CASH),
        _sale("s2", "Kia Rio (2019)", "Noor", "Rami", PaymentMethod.INSTALLMENT),
    ]
    assert [s.sale_id for s in filters.filter_sales(sales, "noor")] == ["s2"]
    assert [s.sale_id for s in filters.filter_sales(sales, "ali")] == ["s1"]
    assert [s.sale_id for s in filters.filter_sales(sales, payment_method=PaymentMethod.CASH)] == ["s1"]


def test_filter_expenses_combines_conditions(expenses):
    """Text, status, and category filters must all hold."""

    fuel = filters.filter_expenses(expenses, category=ExpenseCategory.FUEL)
    assert [e.expense_id for e in fuel] == ["x1", "x3"]
    approved_fuel = filters.filter_expenses(expenses, status=ExpenseStatus.APPROVED, category=ExpenseCategory.FUEL)
    assert [e.expense_id for e in approved_fuel] == ["x3"]
    assert [e.expense_id for e in filters.filter_expenses(expenses, "rent")] == ["x2"]


def test_total_amount_sums_filtered_view(expenses):
    """Totals reflect exactly the filtered expenses."""

    approved = filters.filter_expenses(expenses, status=ExpenseStatus.APPROVED)
    assert filters.total_amount(approved) == Decimal("150")
    assert filters.total_amount([]) == Decimal("0")

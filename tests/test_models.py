"""Unit tests for the entity model translators."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta, timezone
from decimal import Decimal

import pytest

from dealer_erp import constants, models
from dealer_erp.errors import ValidationError


def _vehicle_record(**overrides):
    record = {
        "id": "v1",
        "make": "Toyota",
        "model": "Camry",
        "year": 2020,
        "color": "White",
        "mileage": 42000,
        "engineSize": 2.5,
        "transmission": "automatic",
        "purchasePrice": 8000.0,
        "extraCosts": 500,
        "costPrice": 8500,
        "status": "available",
        "addedBy": "Dana Admin",
        "dateAdded": "2024-03-01T09:30:00+00:00",
        "notes": None,
    }
    record.update(overrides)
    return record


# ---------------------------------------------------------------------------
# Converters
# ---------------------------------------------------------------------------


def test_to_decimal_treats_missing_values_as_zero():
    """Missing numeric fields read as zero."""

    assert models.to_decimal(None) == Decimal("0")
    assert models.to_decimal("") == Decimal("0")


def test_to_decimal_uses_the_string_form_of_floats():
    """Floats coming back from a workbook do not leak binary noise."""

    assert models.to_decimal(0.1) == Decimal("0.1")


def test_to_decimal_rejects_garbage():
    """Non-numeric text raises a validation error naming the field."""

    with pytest.raises(ValidationError) as excinfo:
        models.to_decimal("twelve", field="price")
    assert excinfo.value.details == {"field": "price"}


def test_to_datetime_parses_iso_strings_and_assumes_utc():
    """Naive timestamps are interpreted as UTC."""

    assert models.to_datetime("2024-03-01T09:30:00") == datetime(2024, 3, 1, 9, 30, tzinfo=UTC)


def test_to_datetime_keeps_explicit_offsets():
    """Offsets present on the input are preserved."""

    moment = models.to_datetime("2024-03-01T09:30:00+03:00")
    assert moment.utcoffset() == timedelta(hours=3)


def test_to_datetime_requires_a_value():
    """A missing timestamp is a validation error."""

    with pytest.raises(ValidationError):
        models.to_datetime(None)


def test_to_enum_lists_allowed_values():
    """Unknown enum values raise with the accepted choices in the message."""

    with pytest.raises(ValidationError, match="cash"):
        models.to_enum(constants.PaymentMethod, "barter", field="paymentType")


# ---------------------------------------------------------------------------
# Entities
# ---------------------------------------------------------------------------


def test_vehicle_from_record_normalizes_workbook_values():
    """Floats and ISO strings become decimals and aware datetimes."""

    vehicle = models.Vehicle.from_record(_vehicle_record())
    assert vehicle.purchase_price == Decimal("8000.0")
    assert vehicle.cost_price == Decimal("8500")
    assert vehicle.status is constants.VehicleStatus.AVAILABLE
    assert vehicle.date_added.tzinfo is not None
    assert vehicle.notes == ""


def test_vehicle_cost_price_is_derived_not_stored(caplog):
    """A stale stored costPrice is ignored in favor of the derived value."""

    caplog.set_level("WARNING")
    vehicle = models.Vehicle.from_record(_vehicle_record(costPrice=9999))
    assert vehicle.cost_price == Decimal("8500")
    assert any("disagrees" in record.getMessage() for record in caplog.records)


def test_vehicle_display_name_includes_year():
    """Sales snapshot the vehicle under "Make Model (Year)"."""

    vehicle = models.Vehicle.from_record(_vehicle_record())
    assert vehicle.display_name == "Toyota Camry (2020)"


def test_vehicle_to_record_writes_fresh_cost_price():
    """Serialized vehicles always carry costPrice computed from their inputs."""

    vehicle = models.Vehicle.from_record(_vehicle_record(costPrice=1))
    record = vehicle.to_record()
    assert record["costPrice"] == Decimal("8500")
    assert record["status"] == "available"
    assert "id" not in record


def test_vehicle_from_record_rejects_unknown_status():
    """Statuses outside the closed set are rejected."""

    with pytest.raises(ValidationError):
        models.Vehicle.from_record(_vehicle_record(status="reserved"))


def test_sale_round_trips_buyer_and_employee():
    """Sale records keep buyer and employee snapshots."""

    sale = models.Sale(
        sale_id="s1",
        vehicle_id="v1",
        car_name="Toyota Camry (2020)",
        buyer=models.BuyerInfo(name="Sam Buyer", phone="555", passport=None),
        price=Decimal("10000"),
        cost=Decimal("8500"),
        profit=Decimal("1500"),
        payment_method=constants.PaymentMethod.CASH,
        employee=models.EmployeeRef(employee_id="E1", name="Ali"),
        date=datetime(2024, 3, 2, tzinfo=timezone.utc),
        contract_number="C1",
    )
    restored = models.Sale.from_record({**sale.to_record(), "id": "s1"})
    assert restored == sale


def test_expense_from_record_reads_status():
    """Expenses keep their review status."""

    expense = models.Expense.from_record(
        {
            "id": "x1",
            "category": "Fuel",
            "amount": 400,
            "date": "2024-03-03T00:00:00+00:00",
            "addedBy": "Ali",
            "description": "Diesel",
            "status": "approved",
        }
    )
    assert expense.category is constants.ExpenseCategory.FUEL
    assert expense.status is constants.ExpenseStatus.APPROVED


def test_actor_is_admin():
    """Only the admin role counts as admin."""

    assert models.Actor("a", "A", constants.EmployeeRole.ADMIN).is_admin
    assert not models.Actor("b", "B").is_admin

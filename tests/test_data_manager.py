"""Unit tests documenting the expected behavior of the data access layer."""

from __future__ import annotations

import configparser
from datetime import UTC, datetime, timedelta, timezone
from decimal import Decimal
from pathlib import Path

import openpyxl
from openpyxl.workbook import Workbook as OpenpyxlWorkbook
import pytest

from dealer_erp import constants, data_manager  # noqa: E402
from dealer_erp.constants import Collection
from dealer_erp.errors import ConflictError
from dealer_erp.store import WriteOperation


# ---------------------------------------------------------------------------
# Configuration handling
# ---------------------------------------------------------------------------


def test_find_config_file_respects_explicit_path(config_file: Path):
    """Supplying an explicit path should be treated as the winning answer."""

    result = data_manager.find_config_file(config_file)
    assert result == config_file


def test_find_config_file_discovers_in_cwd(tmp_path, monkeypatch):
    """Auto-discovery should locate config.ini in the working directory tree."""

    config_dir = tmp_path / "nested"
    config_dir.mkdir(parents=True)
    config_file = config_dir / "config.ini"
    config_file.write_text("[System]\nDataFile=dealership.xlsx")
    monkeypatch.chdir(config_dir)

    result = data_manager.find_config_file()
    assert result == config_file


def test_find_config_file_raises_when_missing(tmp_path, monkeypatch):
    """Absent configuration should surface a clear FileNotFoundError."""

    monkeypatch.chdir(tmp_path)
    with pytest.raises(FileNotFoundError):
        data_manager.find_config_file()


def test_read_config_loads_sections(config_file: Path):
    """read_config should return a populated ConfigParser."""

    parser = data_manager.read_config(config_file)
    assert parser.get("System", "DealershipName") == "Test Motors"
    assert parser.get("Defaults", "EmployeeId") == "E-DEFAULT"


def test_read_config_missing_file_raises(tmp_path):
    """Missing files should propagate a FileNotFoundError."""

    with pytest.raises(FileNotFoundError):
        data_manager.read_config(tmp_path / "not_there.ini")


def test_parse_settings_resolves_relative_paths(config_factory):
    """Relative DataFile entries should be anchored to the config location."""

    parser = configparser.ConfigParser()
    bundle = config_factory(make_relative=True, role="staff", expense_scope="approved")
    parser.read(bundle.config_path)
    settings = data_manager.parse_settings(parser, base_path=bundle.config_path.parent)
    assert settings.data_file == (bundle.config_path.parent / bundle.workbook_path.name).resolve()
    assert settings.default_employee_id == "E-DEFAULT"
    assert settings.default_role is constants.EmployeeRole.STAFF
    assert settings.expense_scope is constants.ExpenseScope.APPROVED


def test_parse_settings_defaults_role_and_scope(tmp_path):
    """Role and ExpenseScope are optional."""

    parser = configparser.ConfigParser()
    parser.read_string(
        "[System]\nDataFile=d.xlsx\nDealershipName=X\nSchemaVersion=2.0.0\n"
        "[Defaults]\nEmployeeId=E1\nEmployeeName=Ali\n"
    )
    settings = data_manager.parse_settings(parser, base_path=tmp_path)
    assert settings.default_role is constants.EmployeeRole.STAFF
    assert settings.expense_scope is constants.ExpenseScope.ALL


def test_parse_settings_requires_expected_sections(tmp_path):
    """Missing keys should result in a descriptive KeyError."""

    parser = configparser.ConfigParser()
    parser.read_string("[Other]\nvalue=1")
    with pytest.raises(KeyError):
        data_manager.parse_settings(parser, base_path=tmp_path)


def test_parse_settings_rejects_unknown_role(tmp_path):
    """An unknown role is a ValueError rather than a silent downgrade."""

    parser = configparser.ConfigParser()
    parser.read_string(
        "[System]\nDataFile=d.xlsx\nDealershipName=X\nSchemaVersion=2.0.0\n"
        "[Defaults]\nEmployeeId=E1\nEmployeeName=Ali\nRole=owner\n"
    )
    with pytest.raises(ValueError):
        data_manager.parse_settings(parser, base_path=tmp_path)


# ---------------------------------------------------------------------------
# Workbook lifecycle
# ---------------------------------------------------------------------------


def test_open_workbook_returns_openpyxl_instance(master_workbook_path):
    """open_workbook should hand back a loaded Workbook object."""

    workbook = data_manager.open_workbook(master_workbook_path)
    assert isinstance(workbook, OpenpyxlWorkbook)


def test_open_workbook_missing_file_raises(tmp_path):
    """Missing workbook files should yield FileNotFoundError."""

    with pytest.raises(FileNotFoundError):
        data_manager.open_workbook(tmp_path / "missing.xlsx")


def test_save_workbook_with_destination_creates_copy(master_workbook_path, tmp_path):
    """Providing a destination should create a new file independent of the source."""

    workbook = data_manager.open_workbook(master_workbook_path)
    workbook["Employees"].append(["E2", "Jordan"])
    copy_path = tmp_path / "nested" / "copy.xlsx"
    data_manager.save_workbook(workbook, destination=copy_path)

    copy = openpyxl.load_workbook(copy_path)
    rows = list(copy["Employees"].iter_rows(min_row=2, max_col=2, values_only=True))
    assert ("E2", "Jordan") in rows


def test_refresh_workbook_returns_new_instance(master_workbook_path):
    """refresh_workbook should discard in-memory edits by reloading from disk."""

    workbook = data_manager.open_workbook(master_workbook_path)
    workbook["Vehicles"].append(["v-unsaved"])
    refreshed = data_manager.refresh_workbook(master_workbook_path)
    assert refreshed is not workbook
    assert data_manager.locate_row(refreshed, "Vehicles", "id", "v-unsaved") is None


# ---------------------------------------------------------------------------
# Row helpers
# ---------------------------------------------------------------------------


def test_header_map_indexes_columns(master_workbook_path):
    """Header titles map to 1-based column indices."""

    headers = data_manager.header_map(data_manager.open_workbook(master_workbook_path), "Expenses")
    assert headers["id"] == 1
    assert set(headers) == {"id", "category", "amount", "date", "addedBy", "description", "status"}


def test_locate_row_returns_row_index(master_workbook_path):
    """locate_row should find data rows by key."""

    workbook = data_manager.open_workbook(master_workbook_path)
    workbook["Vehicles"].append(["v1"])
    workbook["Vehicles"].append(["v2"])
    assert data_manager.locate_row(workbook, "Vehicles", "id", "v2") == 3


def test_locate_row_unknown_column_raises(master_workbook_path):
    """Asking for a column the sheet does not have is a KeyError."""

    workbook = data_manager.open_workbook(master_workbook_path)
    with pytest.raises(KeyError):
        data_manager.locate_row(workbook, "Vehicles", "vin", "x")


def test_serialize_cell_converts_datetimes_to_utc_iso():
    """Datetimes are stored as UTC ISO strings; enums as their values."""

    moment = datetime(2024, 3, 1, 12, tzinfo=timezone(timedelta(hours=2)))
    assert data_manager.serialize_cell(moment) == "2024-03-01T10:00:00+00:00"
    assert data_manager.serialize_cell(constants.VehicleStatus.SOLD) == "sold"
    assert data_manager.serialize_cell(Decimal("1.5")) == Decimal("1.5")


def test_serialize_row_orders_by_header_and_rejects_unknown_fields():
    """Rows follow the sheet's column order; unknown fields raise."""

    headers = {"id": 1, "amount": 3, "category": 2}
    assert data_manager.serialize_row(headers, "x1", {"amount": 5, "category": "Fuel"}) == ["x1", "Fuel", 5]
    with pytest.raises(KeyError):
        data_manager.serialize_row(headers, "x1", {"colour": "red"})


def test_deserialize_row_coerces_ids_to_text():
    """Excel may hand numeric ids back; they are always strings in records."""

    record = data_manager.deserialize_row({"id": 1, "amount": 2}, (42, 10.0))
    assert record == {"id": "42", "amount": 10.0}


# ---------------------------------------------------------------------------
# Workbook-backed store
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_workbook_store_crud_round_trip(master_workbook_path):
    """Records written through the store can be read, updated and deleted."""

    store = data_manager.WorkbookStore.open(master_workbook_path)
    store.validate_sheets()
    expense_id = await store.insert(
        Collection.EXPENSES,
        {"category": "Fuel", "amount": Decimal("400"), "date": datetime(2024, 3, 1, tzinfo=UTC), "status": "pending"},
    )
    record = await store.get(Collection.EXPENSES, expense_id)
    assert record["date"] == "2024-03-01T00:00:00+00:00"
    assert record["status"] == "pending"

    await store.update(Collection.EXPENSES, expense_id, {"status": "approved"}, expected={"status": "pending"})
    assert (await store.get(Collection.EXPENSES, expense_id))["status"] == "approved"

    await store.delete(Collection.EXPENSES, expense_id)
    assert await store.query(Collection.EXPENSES) == []


@pytest.mark.asyncio
async def test_workbook_store_rejects_unknown_fields(master_workbook_path):
    """Fields without a column are rejected before anything is written."""

    store = data_manager.WorkbookStore.open(master_workbook_path)
    with pytest.raises(KeyError):
        await store.insert(Collection.VEHICLES, {"vin": "123"})
    assert await store.query(Collection.VEHICLES) == []


@pytest.mark.asyncio
async def test_workbook_store_atomic_write_is_all_or_nothing(master_workbook_path):
    """A failed precondition inside a batch leaves every sheet untouched."""

    store = data_manager.WorkbookStore.open(master_workbook_path)
    assert store.supports_atomic_write
    vehicle_id = await store.insert(Collection.VEHICLES, {"status": "sold", "purchasePrice": 8000})

    with pytest.raises(ConflictError):
        await store.atomic_write(
            [
                WriteOperation.insert(Collection.SALES, {"carId": vehicle_id, "price": 10000}),
                WriteOperation.update(
                    Collection.VEHICLES, vehicle_id, {"status": "sold"}, expected={"status": "available"}
                ),
            ]
        )
    assert await store.query(Collection.SALES) == []


@pytest.mark.asyncio
async def test_workbook_store_atomic_write_applies_batch(master_workbook_path):
    """A valid batch applies every operation and returns the generated ids."""

    store = data_manager.WorkbookStore.open(master_workbook_path)
    vehicle_id = await store.insert(Collection.VEHICLES, {"status": "available"})
    results = await store.atomic_write(
        [
            WriteOperation.update(Collection.VEHICLES, vehicle_id, {"status": "sold"}, expected={"status": "available"}),
            WriteOperation.insert(Collection.SALES, {"carId": vehicle_id}),
        ]
    )
    assert results[0] == vehicle_id
    sale = await store.get(Collection.SALES, results[1])
    assert sale["carId"] == vehicle_id
    assert (await store.get(Collection.VEHICLES, vehicle_id))["status"] == "sold"


@pytest.mark.asyncio
async def test_workbook_store_save_persists(master_workbook_path):
    """save() writes the in-memory workbook to disk."""

    store = data_manager.WorkbookStore.open(master_workbook_path)
    employee_id = await store.insert(Collection.EMPLOYEES, {"name": "Ali", "active": True})
    store.save()

    reopened = data_manager.WorkbookStore.open(master_workbook_path)
    assert (await reopened.get(Collection.EMPLOYEES, employee_id))["name"] == "Ali"


def test_validate_sheets_reports_missing_sheet(master_workbook_path):
    """Workbooks lacking a collection sheet are rejected."""

    workbook = data_manager.open_workbook(master_workbook_path)
    workbook.remove(workbook["Sales"])
    with pytest.raises(KeyError, match="Sales"):
        data_manager.WorkbookStore(workbook).validate_sheets()

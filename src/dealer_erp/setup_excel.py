"""Utility for initializing the Dealer ERP workbook.

The module doubles as a script (``dealer-setup``) and as a library used by
tests or other tooling. Shared helpers keep the workbook bootstrap logic
consistent regardless of the execution path.
"""

from __future__ import annotations

import argparse
import configparser
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path
from typing import Any, Mapping, Optional, Sequence
import sys

import openpyxl
from openpyxl.styles import Font

from .constants import DEFAULT_ROLE, EmployeeRole
from .models import to_enum


# One worksheet per store collection; row 1 holds the persisted field names.
SHEET_COLUMNS: Mapping[str, Sequence[str]] = {
    "Vehicles": [
        "id",
        "make",
        "model",
        "year",
        "color",
        "mileage",
        "engineSize",
        "transmission",
        "purchasePrice",
        "extraCosts",
        "costPrice",
        "status",
        "addedBy",
        "dateAdded",
        "notes",
    ],
    "Sales": [
        "id",
        "carId",
        "carName",
        "buyerName",
        "buyerPhone",
        "buyerPassport",
        "price",
        "cost",
        "profit",
        "paymentType",
        "employeeName",
        "employeeId",
        "date",
        "contractNumber",
        "notes",
    ],
    "Expenses": [
        "id",
        "category",
        "amount",
        "date",
        "addedBy",
        "description",
        "status",
    ],
    "Employees": [
        "id",
        "name",
        "email",
        "phone",
        "role",
        "position",
        "active",
        "dateAdded",
    ],
}

CONFIG_FILE = "config.ini"


@dataclass(frozen=True)
class SetupSettings:
    """Type-safe representation of configuration values used during setup."""

    data_file: Path
    employee_id: str
    employee_name: str
    role: EmployeeRole


def load_settings(config_path: Path) -> SetupSettings:
    """Read ``config.ini`` and produce :class:`SetupSettings`.

    Relative paths inside the config file are resolved against the config file's
    directory.
    """

    if not config_path.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    parser = configparser.ConfigParser()
    parser.read(config_path)

    try:
        data_file_raw = parser.get("System", "DataFile")
        employee_id = parser.get("Defaults", "EmployeeId")
        employee_name = parser.get("Defaults", "EmployeeName")
    except (configparser.NoSectionError, configparser.NoOptionError) as exc:
        raise KeyError(f"Missing required configuration entry: {exc}") from exc

    data_file_path = Path(data_file_raw)
    if not data_file_path.is_absolute():
        data_file_path = (config_path.parent / data_file_path).resolve()

    return SetupSettings(
        data_file=data_file_path,
        employee_id=employee_id,
        employee_name=employee_name,
        role=to_enum(
            EmployeeRole,
            parser.get("Defaults", "Role", fallback=DEFAULT_ROLE.value).strip().lower(),
            field="Role",
        ),
    )


def create_master_workbook(
    destination: Path,
    *,
    default_employee: Optional[Mapping[str, Any]] = None,
    sheet_columns: Mapping[str, Sequence[str]] = SHEET_COLUMNS,
    overwrite: bool = False,
) -> Path:
    """Create the dealership workbook at ``destination``.

    When ``default_employee`` is given it is written as the first row of the
    ``Employees`` sheet, keyed by column name. When ``overwrite`` is ``False``
    (the default) this function raises ``FileExistsError`` if the target
    already exists.
    """

    destination = destination.expanduser().resolve()
    if destination.exists() and not overwrite:
        raise FileExistsError(
            f"Refusing to overwrite existing workbook: {destination}"
        )

    destination.parent.mkdir(parents=True, exist_ok=True)

    workbook = openpyxl.Workbook()

    # Remove the default sheet openpyxl generates so we can create ours.
    if workbook.active and workbook.active.title == "Sheet":
        workbook.remove(workbook.active)

    bold_font = Font(bold=True)

    for sheet_name, columns in sheet_columns.items():
        worksheet = workbook.create_sheet(title=sheet_name)
        for column_index, column_name in enumerate(columns, start=1):
            cell = worksheet.cell(row=1, column=column_index)
            cell.value = column_name
            cell.font = bold_font

    if default_employee is not None:
        employee_columns = sheet_columns["Employees"]
        workbook["Employees"].append([default_employee.get(column) for column in employee_columns])

    workbook.save(destination)
    return destination


def run_from_config(config_path: Path, *, overwrite: bool = False) -> Path:
    """Create the workbook named by ``config.ini`` and seed its default employee."""

    settings = load_settings(config_path)
    return create_master_workbook(
        settings.data_file,
        default_employee={
            "id": settings.employee_id,
            "name": settings.employee_name,
            "email": "",
            "phone": "",
            "role": settings.role.value,
            "position": "",
            "active": True,
            "dateAdded": datetime.now(UTC).isoformat(),
        },
        overwrite=overwrite,
    )


def parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    """Parse CLI arguments for the setup script."""

    parser = argparse.ArgumentParser(prog="dealer-setup", description="Initialize the Dealer ERP workbook")
    parser.add_argument(
        "--config",
        default=CONFIG_FILE,
        help="Path to configuration file (default: config.ini)",
    )
    parser.add_argument(
        "--force",
        action="store_true",
        help="Overwrite the target workbook if it already exists.",
    )
    return parser.parse_args(argv)


def main(argv: Sequence[str] | None = None) -> int:
    """Entry point for the ``dealer-setup`` script."""

    args = parse_args(argv)
    config_path = Path(args.config).expanduser().resolve()

    print("--- Dealer ERP Setup ---")
    print(f"Using configuration: {config_path}")

    try:
        output_path = run_from_config(config_path, overwrite=args.force)
    except FileNotFoundError as exc:
        print(f"\n[ERROR] {exc}")
        return 1
    except KeyError as exc:
        print(f"\n[ERROR] {exc}")
        return 1
    except ValueError as exc:
        print(f"\n[ERROR] Invalid configuration value: {exc}")
        return 1
    except FileExistsError as exc:
        print(f"\n[ERROR] {exc}")
        print("Run with --force to overwrite the existing file if appropriate.")
        return 1
    except (PermissionError, OSError) as exc:
        print(f"\n[ERROR] Unable to write workbook: {exc}")
        return 1

    print(f"\n[SUCCESS] Created workbook at '{output_path}'.")
    return 0


if __name__ == "__main__":  # pragma: no cover - exercised via manual runs
    sys.exit(main())

"""Data access layer for Dealer ERP.

This module provides low-level helpers that read from and write to the
dealership workbook. Business logic belongs elsewhere.

The public API is designed around three responsibilities:

1. Configuration handling: finding and parsing ``config.ini``.
2. Workbook lifecycle: opening, validating, and persisting the Excel file.
3. Record operations: exposing each worksheet as a document-store
   collection through :class:`WorkbookStore`, so the business layer sees the
   same capability set it would get from a remote document database.
"""


from __future__ import annotations

import configparser
from dataclasses import dataclass
from datetime import UTC, datetime
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence

from openpyxl.workbook import Workbook
import openpyxl

from . import log
from .constants import DEFAULT_ROLE, Collection, EmployeeRole, ExpenseScope
from .models import to_enum
from .store import DocumentStore, Record, WriteOperation


CONFIG_FILE_NAME = "config.ini"
ID_COLUMN = "id"

COLLECTION_SHEETS: Mapping[Collection, str] = {
    Collection.VEHICLES: "Vehicles",
    Collection.SALES: "Sales",
    Collection.EXPENSES: "Expenses",
    Collection.EMPLOYEES: "Employees",
}


@dataclass(frozen=True)
class ConfigSettings:
    """Typed representation of the ``config.ini`` settings we care about."""

    data_file: Path
    dealership_name: str
    schema_version: str
    default_employee_id: str
    default_employee_name: str
    default_role: EmployeeRole = EmployeeRole.STAFF
    expense_scope: ExpenseScope = ExpenseScope.ALL


def find_config_file(explicit_path: Optional[Path] = None) -> Path:
    """Locate the configuration file that controls how the data layer behaves.

    If the caller provides ``explicit_path`` the value is returned immediately
    without any verification, which allows the caller to deliberately target a
    non-standard location. When no explicit path is given the function walks up
    from the current working directory toward the filesystem root looking for a
    file named ``CONFIG_FILE_NAME``. The first match that exists on disk is
    considered authoritative.

    Args:
        explicit_path (Path | None): Optional path to use instead of performing
            the upward search. May be relative to the current working directory.

    Returns:
        Path: The path provided by the caller or the discovered configuration
            file.

    Raises:
        FileNotFoundError: If the search exhausts all parent directories without
            finding ``CONFIG_FILE_NAME``.
    """

    if explicit_path:
        return explicit_path

    current = Path.cwd()
    for p in (current, *current.parents):
        candidate = p / CONFIG_FILE_NAME
        if candidate.exists():
            return candidate

    raise FileNotFoundError(
        f"Configuration file not found: {CONFIG_FILE_NAME}")


def read_config(config_path: Path) -> configparser.ConfigParser:
    """Load ``config.ini`` and return a populated ``ConfigParser`` instance.

    Args:
        config_path (Path): Path to the configuration file, relative or
            absolute.

    Returns:
        configparser.ConfigParser: Initialized parser containing the raw
            configuration data. Validation of required entries happens in
            :func:`parse_settings`.

    Raises:
        FileNotFoundError: If ``config_path`` does not exist after expansion and
            resolution.
    """

    config_path = config_path.expanduser().resolve()
    if not config_path.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    parser = configparser.ConfigParser()
    parser.read(config_path)
    return parser


def parse_settings(parser: configparser.ConfigParser, *, base_path: Optional[Path] = None) -> ConfigSettings:
    """Convert a ``ConfigParser`` into strongly typed :class:`ConfigSettings`.

    Relative ``DataFile`` entries are expanded against ``base_path`` when
    provided, or against the current working directory as a fallback.
    ``Role`` and ``ExpenseScope`` are optional and default to ``staff`` and
    ``all``.

    Args:
        parser (configparser.ConfigParser): Parsed configuration data.
        base_path (Path | None): Directory to use as the anchor for relative
            ``DataFile`` entries.

    Returns:
        ConfigSettings: Immutable settings container.

    Raises:
        KeyError: If one of the required sections or options is missing.
        ValueError: If ``Role`` or ``ExpenseScope`` holds an unknown value.
    """

    try:
        data_file_raw = parser.get("System", "DataFile")
        dealership_name = parser.get("System", "DealershipName")
        schema_version = parser.get("System", "SchemaVersion")
        employee_id = parser.get("Defaults", "EmployeeId")
        employee_name = parser.get("Defaults", "EmployeeName")
    except (configparser.NoSectionError, configparser.NoOptionError) as exc:
        raise KeyError(f"Missing required configuration entry: {exc}") from exc

    role = to_enum(
        EmployeeRole,
        parser.get("Defaults", "Role", fallback=DEFAULT_ROLE.value).strip().lower(),
        field="Role",
    )
    scope = to_enum(
        ExpenseScope,
        parser.get("Defaults", "ExpenseScope", fallback="all").strip().lower(),
        field="ExpenseScope",
    )

    data_file_path = Path(data_file_raw)
    if not data_file_path.is_absolute():
        if base_path is None:
            base_path = Path.cwd()
        data_file_path = (base_path / data_file_path).resolve()

    return ConfigSettings(
        data_file=data_file_path,
        dealership_name=dealership_name,
        schema_version=schema_version,
        default_employee_id=employee_id,
        default_employee_name=employee_name,
        default_role=role,
        expense_scope=scope,
    )


def open_workbook(data_file: Path) -> Workbook:
    """Open the dealership workbook and return a live ``openpyxl`` workbook.

    Raises:
        FileNotFoundError: If ``data_file`` does not exist after expansion and
            resolution.
    """

    data_file = Path(data_file).expanduser().resolve()
    if not data_file.exists():
        raise FileNotFoundError(f"Workbook not found: {data_file}")

    wb = openpyxl.load_workbook(data_file)
    return wb


def save_workbook(workbook: Workbook, destination: Path) -> None:
    """Persist the workbook to disk, creating parent directories on demand."""

    dest = Path(destination).expanduser().resolve()
    dest.parent.mkdir(parents=True, exist_ok=True)
    workbook.save(dest)


def refresh_workbook(data_file: Path) -> Workbook:
    """Reload the workbook from disk, discarding any unsaved in-memory changes."""

    return open_workbook(data_file)


def header_map(workbook: Workbook, sheet_name: str) -> Dict[str, int]:
    """Map header titles on row 1 to their 1-based column indices."""

    sheet = workbook[sheet_name]
    return {cell.value: idx + 1 for idx, cell in enumerate(sheet[1]) if cell.value is not None}


def locate_row(workbook: Workbook, sheet_name: str, key_column: str, key_value: str) -> Optional[int]:
    """Find a row by matching a key value within the specified worksheet.

    Args:
        workbook (Workbook): Workbook providing access to ``sheet_name``.
        sheet_name (str): Name of the worksheet to search.
        key_column (str): Header title identifying the column that stores the
            lookup key.
        key_value (str): Value to match within the key column.

    Returns:
        int | None: 1-based Excel row index when a match is found, otherwise
            ``None``.

    Raises:
        KeyError: If ``key_column`` is not present in the worksheet header.
    """

    headers = header_map(workbook, sheet_name)
    if key_column not in headers:
        raise KeyError(f"Unknown column: {key_column}")

    key_col_index = headers[key_column]
    sheet = workbook[sheet_name]
    for row_idx, row in enumerate(sheet.iter_rows(min_row=2, values_only=True), start=2):
        if row[key_col_index - 1] == key_value:
            return row_idx

    return None


def iter_records(workbook: Workbook, sheet_name: str) -> Iterable[Record]:
    """Yield each populated data row of ``sheet_name`` as a header-keyed dict.

    Header and fully empty rows are skipped.
    """

    headers = header_map(workbook, sheet_name)
    sheet = workbook[sheet_name]
    for raw in sheet.iter_rows(min_row=2, values_only=True):
        if any(cell is not None for cell in raw):
            yield deserialize_row(headers, raw)


def serialize_cell(value: Any) -> Any:
    """Convert a record value into something a worksheet cell can hold.

    Datetimes become UTC ISO-8601 strings so they sort lexically in the same
    order as chronologically; enums become their values. Decimals are kept as
    :class:`~decimal.Decimal` to preserve precision when the workbook is saved.
    """

    if isinstance(value, Enum):
        return value.value
    if isinstance(value, datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=UTC)
        return value.astimezone(UTC).isoformat()
    return value


def serialize_row(headers: Mapping[str, int], record_id: str, fields: Mapping[str, Any]) -> List[Any]:
    """Arrange ``fields`` in the worksheet's column order.

    Raises:
        KeyError: If ``fields`` names a column the worksheet does not have.
    """

    unknown = [name for name in fields if name not in headers]
    if unknown:
        raise KeyError(f"Unknown field(s): {', '.join(sorted(unknown))}")
    row: List[Any] = [None] * max(headers.values())
    for name, column in headers.items():
        if name == ID_COLUMN:
            row[column - 1] = record_id
        elif name in fields:
            row[column - 1] = serialize_cell(fields[name])
    return row


def deserialize_row(headers: Mapping[str, int], raw_row: Sequence[object]) -> Record:
    """Convert a raw worksheet row into a record keyed by header titles.

    Identifiers are coerced to ``str`` to avoid surprises caused by Excel
    automatically interpreting numbers; all other values are returned as
    stored and left for the entity model to normalize.
    """

    record: Record = {}
    for name, column in headers.items():
        value = raw_row[column - 1] if column - 1 < len(raw_row) else None
        record[name] = str(value) if name == ID_COLUMN and value is not None else value
    return record


class WorkbookStore(DocumentStore):
    """Document store backed by an in-memory ``openpyxl`` workbook.

    Every collection lives on its own worksheet whose first row holds the
    field names. Writes touch only the in-memory workbook; :meth:`save`
    persists them. Because nothing reaches disk until then, batches applied
    through :meth:`atomic_write` are all-or-nothing.
    """

    supports_atomic_write = True

    def __init__(self, workbook: Workbook, data_file: Optional[Path] = None) -> None:
        super().__init__()
        self.workbook = workbook
        self.data_file = data_file

    @classmethod
    def open(cls, data_file: Path) -> "WorkbookStore":
        return cls(open_workbook(data_file), Path(data_file).expanduser().resolve())

    def save(self, destination: Optional[Path] = None) -> None:
        target = destination or self.data_file
        if target is None:
            raise ValueError("WorkbookStore has no destination to save to")
        save_workbook(self.workbook, target)
        log.info("Persisted workbook '%s'", target)

    def validate_sheets(self) -> None:
        """Ensure each collection has a worksheet with an ``id`` column.

        Raises:
            KeyError: If a worksheet or its ``id`` header is missing.
        """
        for collection, sheet_name in COLLECTION_SHEETS.items():
            if sheet_name not in self.workbook.sheetnames:
                raise KeyError(f"Workbook is missing the '{sheet_name}' sheet for {collection.value}")
            if ID_COLUMN not in header_map(self.workbook, sheet_name):
                raise KeyError(f"Sheet '{sheet_name}' has no '{ID_COLUMN}' column")

    async def atomic_write(self, operations: Sequence[WriteOperation]) -> List[Optional[str]]:
        return await self._apply_batch(operations)

    def _raw_validate(self, collection: Collection, fields: Mapping[str, Any]) -> None:
        headers = header_map(self.workbook, COLLECTION_SHEETS[collection])
        unknown = [name for name in fields if name not in headers]
        if unknown:
            raise KeyError(f"Unknown {collection.value} field(s): {', '.join(sorted(unknown))}")

    def _raw_get(self, collection: Collection, record_id: str) -> Optional[Record]:
        sheet_name = COLLECTION_SHEETS[collection]
        row_index = locate_row(self.workbook, sheet_name, ID_COLUMN, record_id)
        if row_index is None:
            return None
        headers = header_map(self.workbook, sheet_name)
        raw = next(self.workbook[sheet_name].iter_rows(min_row=row_index, max_row=row_index, values_only=True))
        return deserialize_row(headers, raw)

    def _raw_all(self, collection: Collection) -> List[Record]:
        return list(iter_records(self.workbook, COLLECTION_SHEETS[collection]))

    def _raw_insert(self, collection: Collection, record_id: str, fields: Mapping[str, Any]) -> None:
        sheet_name = COLLECTION_SHEETS[collection]
        headers = header_map(self.workbook, sheet_name)
        self.workbook[sheet_name].append(serialize_row(headers, record_id, fields))

    def _raw_update(self, collection: Collection, record_id: str, changes: Mapping[str, Any]) -> None:
        sheet_name = COLLECTION_SHEETS[collection]
        row_index = locate_row(self.workbook, sheet_name, ID_COLUMN, record_id)
        if row_index is None:
            raise KeyError(f"{collection.value} record not found: {record_id}")

        headers = header_map(self.workbook, sheet_name)
        sheet = self.workbook[sheet_name]
        for name, value in changes.items():
            if name == ID_COLUMN:
                continue
            sheet.cell(row=row_index, column=headers[name], value=serialize_cell(value))

    def _raw_delete(self, collection: Collection, record_id: str) -> None:
        sheet_name = COLLECTION_SHEETS[collection]
        row_index = locate_row(self.workbook, sheet_name, ID_COLUMN, record_id)
        if row_index is None:
            raise KeyError(f"{collection.value} record not found: {record_id}")
        self.workbook[sheet_name].delete_rows(row_index)

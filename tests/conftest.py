"""Shared pytest fixtures and utilities for Dealer ERP tests."""

from __future__ import annotations

import argparse
import sys
import uuid
from dataclasses import dataclass, replace
from datetime import UTC, datetime
from decimal import Decimal
from pathlib import Path
from typing import Any, Callable, Iterator, Mapping, Optional

import pytest

# Ensure source packages are importable without installation.
PROJECT_ROOT = Path(__file__).resolve().parents[1]
SRC_DIR = PROJECT_ROOT / "src"

for candidate in (SRC_DIR, PROJECT_ROOT):
    candidate_str = str(candidate)
    if candidate_str not in sys.path:
        sys.path.insert(0, candidate_str)

from dealer_erp import cli, constants, core_logic, data_manager  # noqa: E402
from dealer_erp.errors import ReadError, WriteError  # noqa: E402
from dealer_erp.models import Actor  # noqa: E402
from dealer_erp.setup_excel import create_master_workbook  # noqa: E402
from dealer_erp.store import InMemoryStore  # noqa: E402

DEFAULT_SCHEMA_VERSION = constants.EXPECTED_SCHEMA_VERSION
DEFAULT_EMPLOYEE_ID = "E-DEFAULT"
DEFAULT_EMPLOYEE_NAME = "Dana Admin"
_CONFIG_TEMPLATE = (
    "[System]\n"
    "DataFile = {data_file}\n"
    "DealershipName = {dealership_name}\n"
    "SchemaVersion = {schema_version}\n\n"
    "[Defaults]\n"
    "EmployeeId = {employee_id}\n"
    "EmployeeName = {employee_name}\n"
    "Role = {role}\n"
    "ExpenseScope = {expense_scope}\n"
)


@dataclass(frozen=True)
class ConfigBundle:
    """Container bundling together config metadata for tests."""

    directory: Path
    config_path: Path
    workbook_path: Path
    employee_id: str
    schema_version: str
    dealership_name: str


@pytest.fixture(scope="session", autouse=True)
def _restore_sys_path() -> Iterator[None]:
    """Ensure sys.path modifications are undone after the test session."""

    original = sys.path.copy()
    try:
        yield
    finally:
        sys.path[:] = original


@pytest.fixture(scope="session")
def project_root() -> Path:
    """Return the repository root path."""

    return PROJECT_ROOT


@pytest.fixture
def workbook_factory(tmp_path: Path) -> Callable[..., Path]:
    """Factory that creates an initialized dealership workbook in a temp folder."""

    def _create_workbook(
        *,
        subdir: str | None = None,
        filename: str = "dealership.xlsx",
        default_employee: Optional[Mapping[str, Any]] = None,
    ) -> Path:
        base_dir = tmp_path if subdir is None else tmp_path / subdir
        base_dir.mkdir(parents=True, exist_ok=True)
        workbook_path = base_dir / filename
        create_master_workbook(workbook_path, default_employee=default_employee, overwrite=True)
        return workbook_path

    return _create_workbook


@pytest.fixture
def master_workbook_path(workbook_factory: Callable[..., Path]) -> Path:
    """Return a fresh dealership workbook ready for use in a test."""

    return workbook_factory(subdir=f"workbook_{uuid.uuid4().hex}")


@pytest.fixture
def config_factory(tmp_path: Path, workbook_factory: Callable[..., Path]) -> Callable[..., ConfigBundle]:
    """Provide a callable that creates config/workbook bundles on demand."""

    def _create_config(
        *,
        make_relative: bool = False,
        dealership_name: str = "Test Motors",
        schema_version: str = DEFAULT_SCHEMA_VERSION,
        employee_id: str = DEFAULT_EMPLOYEE_ID,
        employee_name: str = DEFAULT_EMPLOYEE_NAME,
        role: str = "admin",
        expense_scope: str = "all",
    ) -> ConfigBundle:
        bundle_id = uuid.uuid4().hex
        bundle_dir = tmp_path / f"bundle_{bundle_id}"
        bundle_dir.mkdir(parents=True, exist_ok=True)
        workbook_path = workbook_factory(subdir=f"bundle_{bundle_id}")
        data_file_entry = workbook_path.name if make_relative else str(workbook_path)
        config_path = bundle_dir / "config.ini"
        config_path.write_text(
            _CONFIG_TEMPLATE.format(
                data_file=data_file_entry,
                dealership_name=dealership_name,
                schema_version=schema_version,
                employee_id=employee_id,
                employee_name=employee_name,
                role=role,
                expense_scope=expense_scope,
            )
        )
        return ConfigBundle(
            directory=bundle_dir,
            config_path=config_path,
            workbook_path=workbook_path,
            employee_id=employee_id,
            schema_version=schema_version,
            dealership_name=dealership_name,
        )

    return _create_config


@pytest.fixture
def config_file(config_factory: Callable[..., ConfigBundle]) -> Path:
    """Convenience fixture returning only the config path."""

    return config_factory().config_path


@pytest.fixture
def runtime_context(config_file: Path) -> core_logic.RuntimeContext:
    """Load a workbook-backed runtime context through the public API."""

    context = core_logic.load_runtime_context(config_file)
    core_logic.ensure_schema_version(context)
    return context


# ---------------------------------------------------------------------------
# CLI layer fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def cli_parser() -> argparse.ArgumentParser:
    """Return a fresh CLI parser instance for tests."""

    return argparse.ArgumentParser(prog="dealer-cli", description="Dealer CLI")


@pytest.fixture
def subparsers_action(cli_parser: argparse.ArgumentParser) -> argparse._SubParsersAction:
    """Return the subparser action used to register commands."""

    return cli_parser.add_subparsers(dest="command")


@pytest.fixture
def command_spec_iterable() -> list[cli.CommandSpec]:
    """Provide a list of command specs for indexing tests."""

    async def _noop(*_: object) -> int:
        return 0

    def _make_spec(name: str) -> cli.CommandSpec:
        return cli.CommandSpec(name, f"{name} help", lambda subparsers: subparsers.add_parser(name), _noop)

    return [_make_spec("alpha"), _make_spec("beta"), _make_spec("gamma")]


# ---------------------------------------------------------------------------
# Core logic fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def settings(tmp_path: Path) -> data_manager.ConfigSettings:
    """Provide default configuration settings for in-memory contexts."""

    return data_manager.ConfigSettings(
        data_file=tmp_path / "dealership.xlsx",
        dealership_name="Test Motors",
        schema_version=constants.EXPECTED_SCHEMA_VERSION,
        default_employee_id=DEFAULT_EMPLOYEE_ID,
        default_employee_name=DEFAULT_EMPLOYEE_NAME,
        default_role=constants.EmployeeRole.ADMIN,
    )


@pytest.fixture
def admin() -> Actor:
    return Actor(actor_id="E-ADMIN", name="Dana Admin", role=constants.EmployeeRole.ADMIN)


@pytest.fixture
def staff() -> Actor:
    return Actor(actor_id="E-STAFF", name="Ali", role=constants.EmployeeRole.STAFF)


@pytest.fixture
def store() -> InMemoryStore:
    return InMemoryStore()


@pytest.fixture
def context_factory(settings: data_manager.ConfigSettings, store: InMemoryStore) -> Callable[..., core_logic.RuntimeContext]:
    """Build contexts sharing one store, one per acting identity."""

    def _create(actor: Actor, *, backing_store=None, **overrides: Any) -> core_logic.RuntimeContext:
        effective_settings = replace(settings, **overrides) if overrides else settings
        return core_logic.RuntimeContext(
            settings=effective_settings,
            store=backing_store if backing_store is not None else store,
            actor=actor,
        )

    return _create


@pytest.fixture
def context(context_factory: Callable[..., core_logic.RuntimeContext], admin: Actor) -> core_logic.RuntimeContext:
    """Admin context over a fresh in-memory store."""

    return context_factory(admin)


@pytest.fixture
def staff_context(context_factory: Callable[..., core_logic.RuntimeContext], staff: Actor) -> core_logic.RuntimeContext:
    return context_factory(staff)


def vehicle_command(**overrides: Any) -> core_logic.VehicleCommand:
    """Return a vehicle command for an 8000 + 500 Toyota Camry."""

    fields: dict[str, Any] = {
        "make": "Toyota",
        "model": "Camry",
        "year": 2020,
        "purchase_price": Decimal("8000"),
        "extra_costs": Decimal("500"),
        "color": "White",
        "mileage": 42000,
        "engine_size": Decimal("2.5"),
    }
    fields.update(overrides)
    return core_logic.VehicleCommand(**fields)


class FlakyStore(InMemoryStore):
    """In-memory store whose inserts into chosen collections fail on demand."""

    def __init__(self, *, failing_inserts: int = 0, collection: constants.Collection = constants.Collection.SALES):
        super().__init__()
        self.failing_inserts = failing_inserts
        self.failing_collection = collection
        self.insert_attempts = 0

    async def insert(self, collection, fields):
        if collection == self.failing_collection:
            self.insert_attempts += 1
            if self.failing_inserts > 0:
                self.failing_inserts -= 1
                raise WriteError("simulated insert failure")
        return await super().insert(collection, fields)


@pytest.fixture
def fixed_now() -> datetime:
    return datetime(2024, 3, 15, 12, 0, tzinfo=UTC)


class UnreadableStore(InMemoryStore):
    """In-memory store whose queries fail, used to exercise degraded reports."""

    async def query(self, collection, **kwargs):
        raise ReadError(f"simulated read failure on {collection.value}")


@pytest.fixture
def make_vehicle_command() -> Callable[..., core_logic.VehicleCommand]:
    return vehicle_command


@pytest.fixture
def flaky_store_class() -> type[FlakyStore]:
    return FlakyStore


@pytest.fixture
def unreadable_store() -> UnreadableStore:
    return UnreadableStore()

"""Aggregation pipeline turning sale and expense ledgers into report views.

Every function here is pure: inputs are never mutated, nothing is cached
between calls, and the same inputs always produce equal outputs. All ordering
is computed explicitly because the store makes no promise about the order in
which it delivers records.

Ordering rules
--------------
* Employee rankings sort by sale count, descending. Ties keep the order in
  which each employee was first encountered while scanning ``sales``.
* Model rankings follow the same rule and are truncated to the top five.
* Category breakdowns sort by amount, descending, ties in discovery order.
* Recent sales sort by commit timestamp, descending, ties in input order.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, tzinfo
from decimal import ROUND_HALF_UP, Decimal
from typing import Callable, Dict, Iterable, List, Optional, Sequence, Tuple, TypeVar

from .constants import (
    OTHER_MODEL,
    UNKNOWN_EMPLOYEE,
    ExpenseScope,
    ExpenseStatus,
    VehicleStatus,
)
from .models import Expense, Sale, Vehicle


T = TypeVar("T")

MONTHS_PER_YEAR = 12
TOP_MODEL_LIMIT = 5
DASHBOARD_EMPLOYEE_LIMIT = 3
RECENT_SALES_LIMIT = 8
ZERO = Decimal("0")
PERCENT_QUANTUM = Decimal("0.01")


@dataclass(frozen=True)
class EmployeeStat:
    name: str
    count: int
    profit: Decimal


@dataclass(frozen=True)
class ModelStat:
    name: str
    count: int


@dataclass(frozen=True)
class CategoryExpense:
    category: str
    amount: Decimal
    percent: Decimal


@dataclass(frozen=True)
class Report:
    """Yearly financial report. Monthly tuples always hold twelve entries."""

    year: int
    monthly_revenue: Tuple[Decimal, ...]
    monthly_profit: Tuple[Decimal, ...]
    monthly_expenses: Tuple[Decimal, ...]
    employee_stats: Tuple[EmployeeStat, ...]
    top_models: Tuple[ModelStat, ...]
    category_expenses: Tuple[CategoryExpense, ...]

    @property
    def total_sales(self) -> int:
        return sum(stat.count for stat in self.employee_stats)

    @property
    def total_revenue(self) -> Decimal:
        return sum(self.monthly_revenue, ZERO)

    @property
    def total_profit(self) -> Decimal:
        return sum(self.monthly_profit, ZERO)

    @property
    def total_expenses(self) -> Decimal:
        return sum(self.monthly_expenses, ZERO)


@dataclass(frozen=True)
class DashboardSummary:
    """Current-month tiles plus the all-time leaderboard and recent sales."""

    month_sales: int
    month_profit: Decimal
    available_vehicles: int
    month_expenses: Decimal
    monthly_sales: Tuple[int, ...]
    top_employees: Tuple[EmployeeStat, ...]
    recent_sales: Tuple[Sale, ...]


def _local(moment: datetime, tz: Optional[tzinfo]) -> datetime:
    return moment.astimezone(tz) if tz is not None else moment


def included_expenses(expenses: Iterable[Expense], scope: ExpenseScope) -> List[Expense]:
    """Return the expenses counted under ``scope``."""
    if scope is ExpenseScope.APPROVED:
        return [expense for expense in expenses if expense.status is ExpenseStatus.APPROVED]
    return list(expenses)


def monthly_totals(
    records: Iterable[T],
    year: int,
    *,
    date_of: Callable[[T], datetime],
    value_of: Callable[[T], Decimal],
    tz: Optional[tzinfo] = None,
) -> Tuple[Decimal, ...]:
    """Sum ``value_of`` per calendar month of ``year``; empty months are zero."""
    buckets = [ZERO] * MONTHS_PER_YEAR
    for record in records:
        moment = _local(date_of(record), tz)
        if moment.year != year:
            continue
        buckets[moment.month - 1] += value_of(record)
    return tuple(buckets)


def employee_key(sale: Sale) -> str:
    name = sale.employee.name
    return name if name.strip() else UNKNOWN_EMPLOYEE


def model_key(car_name: str) -> str:
    """Normalize a sale's car name to its first two tokens, e.g. ``"Toyota Camry"``."""
    tokens = car_name.split()
    if not tokens:
        return OTHER_MODEL
    return " ".join(tokens[:2])


def rank_employees(
    sales: Iterable[Sale],
    *,
    limit: Optional[int] = None,
    skip_unknown: bool = False,
) -> Tuple[EmployeeStat, ...]:
    """Group sales by employee name and rank by sale count.

    Python's sort is stable, so employees with equal counts stay in the order
    they were first seen in ``sales``. With ``skip_unknown`` sales without an
    employee name are left out instead of grouped under ``"Unknown"``.
    """
    counts: Dict[str, int] = {}
    profits: Dict[str, Decimal] = {}
    for sale in sales:
        if skip_unknown and not sale.employee.name.strip():
            continue
        name = employee_key(sale)
        counts[name] = counts.get(name, 0) + 1
        profits[name] = profits.get(name, ZERO) + sale.profit
    ranked = sorted(
        (EmployeeStat(name=name, count=count, profit=profits[name]) for name, count in counts.items()),
        key=lambda stat: stat.count,
        reverse=True,
    )
    return tuple(ranked if limit is None else ranked[:limit])


def rank_models(sales: Iterable[Sale], *, limit: int = TOP_MODEL_LIMIT) -> Tuple[ModelStat, ...]:
    counts: Dict[str, int] = {}
    for sale in sales:
        key = model_key(sale.car_name)
        counts[key] = counts.get(key, 0) + 1
    ranked = sorted(
        (ModelStat(name=name, count=count) for name, count in counts.items()),
        key=lambda stat: stat.count,
        reverse=True,
    )
    return tuple(ranked[:limit])


def percent_of(amount: Decimal, total: Decimal) -> Decimal:
    if total == 0:
        return ZERO
    return (amount / total * 100).quantize(PERCENT_QUANTUM, rounding=ROUND_HALF_UP)


def category_breakdown(expenses: Iterable[Expense]) -> Tuple[CategoryExpense, ...]:
    """Sum expenses per category with each category's share of the total."""
    amounts: Dict[str, Decimal] = {}
    for expense in expenses:
        key = expense.category.value
        amounts[key] = amounts.get(key, ZERO) + expense.amount
    total = sum(amounts.values(), ZERO)
    ranked = sorted(amounts.items(), key=lambda item: item[1], reverse=True)
    return tuple(
        CategoryExpense(category=category, amount=amount, percent=percent_of(amount, total))
        for category, amount in ranked
    )


def recent_sales(sales: Sequence[Sale], *, limit: int = RECENT_SALES_LIMIT) -> Tuple[Sale, ...]:
    return tuple(sorted(sales, key=lambda sale: sale.date, reverse=True)[:limit])


def build_report(
    sales: Sequence[Sale],
    expenses: Sequence[Expense],
    year: int,
    *,
    expense_scope: ExpenseScope = ExpenseScope.ALL,
    tz: Optional[tzinfo] = None,
) -> Report:
    """Fold the full sale and expense history into the report for ``year``.

    Args:
        sales (Sequence[Sale]): Every sale known to the store, in any order.
        expenses (Sequence[Expense]): Every expense known to the store.
        year (int): Calendar year to report on.
        expense_scope (ExpenseScope): Whether every expense or only approved
            ones count towards the expense figures.
        tz (tzinfo | None): Zone used to decide which month a timestamp falls
            in. ``None`` uses each timestamp's own zone.

    Returns:
        Report: Monthly revenue/profit/expense series, employee leaderboard,
            top five models, and category breakdown.
    """
    year_sales = [sale for sale in sales if _local(sale.date, tz).year == year]
    year_expenses = [
        expense
        for expense in included_expenses(expenses, expense_scope)
        if _local(expense.date, tz).year == year
    ]
    return Report(
        year=year,
        monthly_revenue=monthly_totals(year_sales, year, date_of=lambda s: s.date, value_of=lambda s: s.price, tz=tz),
        monthly_profit=monthly_totals(year_sales, year, date_of=lambda s: s.date, value_of=lambda s: s.profit, tz=tz),
        monthly_expenses=monthly_totals(
            year_expenses, year, date_of=lambda e: e.date, value_of=lambda e: e.amount, tz=tz
        ),
        employee_stats=rank_employees(year_sales),
        top_models=rank_models(year_sales),
        category_expenses=category_breakdown(year_expenses),
    )


def build_dashboard(
    sales: Sequence[Sale],
    expenses: Sequence[Expense],
    vehicles: Sequence[Vehicle],
    *,
    now: datetime,
    expense_scope: ExpenseScope = ExpenseScope.ALL,
    tz: Optional[tzinfo] = None,
) -> DashboardSummary:
    """Build the dashboard tiles for the month containing ``now``.

    The leaderboard and the recent-sales list cover all time; the tiles and
    the monthly sale-count series cover the current month and year.
    """
    current = _local(now, tz)
    month_sales = 0
    month_profit = ZERO
    monthly_sales = [0] * MONTHS_PER_YEAR
    for sale in sales:
        moment = _local(sale.date, tz)
        if moment.year != current.year:
            continue
        monthly_sales[moment.month - 1] += 1
        if moment.month == current.month:
            month_sales += 1
            month_profit += sale.profit

    month_expenses = sum(
        (
            expense.amount
            for expense in included_expenses(expenses, expense_scope)
            if (_local(expense.date, tz).year, _local(expense.date, tz).month) == (current.year, current.month)
        ),
        ZERO,
    )

    return DashboardSummary(
        month_sales=month_sales,
        month_profit=month_profit,
        available_vehicles=sum(1 for vehicle in vehicles if vehicle.status is VehicleStatus.AVAILABLE),
        month_expenses=month_expenses,
        monthly_sales=tuple(monthly_sales),
        top_employees=rank_employees(sales, limit=DASHBOARD_EMPLOYEE_LIMIT, skip_unknown=True),
        recent_sales=recent_sales(sales),
    )


def empty_report(year: int) -> Report:
    return build_report((), (), year)


def empty_dashboard() -> DashboardSummary:
    return DashboardSummary(
        month_sales=0,
        month_profit=ZERO,
        available_vehicles=0,
        month_expenses=ZERO,
        monthly_sales=(0,) * MONTHS_PER_YEAR,
        top_employees=(),
        recent_sales=(),
    )


__all__ = [
    "EmployeeStat",
    "ModelStat",
    "CategoryExpense",
    "Report",
    "DashboardSummary",
    "build_report",
    "build_dashboard",
    "category_breakdown",
    "empty_dashboard",
    "empty_report",
    "included_expenses",
    "model_key",
    "monthly_totals",
    "percent_of",
    "rank_employees",
    "rank_models",
    "recent_sales",
]

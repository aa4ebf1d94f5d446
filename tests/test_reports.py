"""Unit tests for the derived reports."""

from __future__ import annotations

from dataclasses import replace
from datetime import UTC, datetime, timedelta, timezone
from decimal import Decimal

import pytest

from wholesale_pos import core_logic, reports
from wholesale_pos.data_manager import CustomerRow, ItemRow


@pytest.fixture
def two_item_context(context):
    """Context with a second item B (cost 20, price 30, stock 60)."""

    context.state = replace(
        context.state,
        items=context.state.items + (ItemRow("B", "bolts", Decimal("20"), Decimal("30"), 60, 5),),
    )
    return context


def _sell(context, item_id: str, quantity: int, *, customer_id: str = "C", when: datetime | None = None):
    line = core_logic.price_item(context, customer_id, item_id, quantity)
    return core_logic.post_sale(context, customer_id, [line], timestamp=when)


def test_profit_summary_for_plain_sale(context):
    """Three units at 150 with cost 100 yield 450 revenue and 150 profit."""

    _sell(context, "A", 3)

    summary = reports.calculate_profit_summary(context.state)

    assert summary == {
        "total_revenue": Decimal("450"),
        "total_cost": Decimal("300"),
        "profit": Decimal("150"),
    }


def test_profit_accounts_for_discount(context):
    core_logic.upsert_discount(context, "C", "A", 10)
    _sell(context, "A", 2)

    assert reports.calculate_revenue(context.state) == Decimal("270")
    assert reports.calculate_profit(context.state) == Decimal("70")


def test_profit_uses_current_cost_price(context):
    _sell(context, "A", 1)
    core_logic.update_item(context, replace(core_logic.get_item(context, "A"), cost_price=Decimal("120")))

    assert reports.calculate_profit(context.state) == Decimal("30")


def test_profit_costs_missing_items_at_zero(context):
    _sell(context, "A", 1)
    context.state = replace(context.state, items=())

    assert reports.calculate_profit(context.state) == Decimal("150")


def test_empty_ledger_reports_zero(small_state):
    summary = reports.calculate_profit_summary(small_state)
    assert summary["total_revenue"] == summary["profit"] == Decimal("0")
    assert reports.sales_history(small_state) == []
    assert reports.reconcile_balances(small_state) == []


def test_item_wise_sales_orders_by_revenue(two_item_context):
    _sell(two_item_context, "B", 4)
    _sell(two_item_context, "A", 1)
    _sell(two_item_context, "B", 2)

    rows = reports.item_wise_sales(two_item_context.state)

    assert [(row.item_id, row.quantity, row.revenue) for row in rows] == [
        ("B", 6, Decimal("180")),
        ("A", 1, Decimal("150")),
    ]
    assert rows[0].stock == 54
    assert rows[0].target == 5


def test_item_wise_sales_includes_unsold_items_in_catalog_order(two_item_context):
    rows = reports.item_wise_sales(two_item_context.state)

    assert [row.item_id for row in rows] == ["A", "B"]
    assert all(row.revenue == Decimal("0") for row in rows)


def test_sales_vs_target_mirrors_item_sales(two_item_context):
    _sell(two_item_context, "A", 3)

    rows = reports.sales_vs_target(two_item_context.state)

    assert rows[0] == reports.TargetRow(item_id="A", name="Item A", target=20, sold=3, stock=7)


def test_credit_report_after_sale_and_payment(context):
    """A 450 sale followed by a 200 payment leaves 250 outstanding."""

    _sell(context, "A", 3)
    core_logic.post_payment(context, "C", 200)

    (row,) = reports.credit_report(context.state)

    assert (row.total_purchases, row.total_payments, row.balance) == (
        Decimal("450"),
        Decimal("200"),
        Decimal("250"),
    )


def test_credit_report_sorts_by_balance(context):
    core_logic.add_customer(context, CustomerRow("D", "Customer D", Decimal("0")))
    core_logic.add_customer(context, CustomerRow("E", "Customer E", Decimal("0")))
    _sell(context, "A", 1, customer_id="E")

    rows = reports.credit_report(context.state)

    assert [row.customer_id for row in rows] == ["E", "C", "D"]


def test_reconcile_balances_flags_manual_edit(context):
    _sell(context, "A", 2)
    assert reports.reconcile_balances(context.state) == []

    core_logic.update_customer(context, replace(core_logic.get_customer(context, "C"), credit_balance=Decimal("100")))

    (drift,) = reports.reconcile_balances(context.state)
    assert drift.expected_balance == Decimal("300")
    assert drift.difference == Decimal("-200")


def test_sales_history_newest_first_with_unknown_names(context):
    start = datetime(2025, 1, 1, tzinfo=UTC)
    first = _sell(context, "A", 1, when=start)
    second = _sell(context, "A", 1, customer_id="ghost", when=start + timedelta(days=1))

    rows = reports.sales_history(context.state)

    assert [row.sale_id for row in rows] == [second.sale_id, first.sale_id]
    assert rows[0].customer_name == "Unknown"
    assert rows[1].customer_name == "Customer C"
    assert rows[1].profit == Decimal("50")


def test_purchase_history_newest_first(context):
    start = datetime(2025, 1, 1, tzinfo=UTC)
    core_logic.post_purchase(context, "A", 5, timestamp=start + timedelta(hours=2))
    core_logic.post_purchase(context, "Z", 1, timestamp=start)

    rows = reports.purchase_history(context.state)

    assert [(row.item_name, row.quantity) for row in rows] == [("Item A", 5), ("Unknown", 1)]


def test_histories_order_by_instant_across_timezones(context):
    """10:00 at +05:00 is earlier than 06:00 UTC and must sort after it."""

    earlier = datetime(2025, 1, 1, 10, 0, tzinfo=timezone(timedelta(hours=5)))
    later = datetime(2025, 1, 1, 6, 0, tzinfo=UTC)
    first_sale = _sell(context, "A", 1, when=earlier)
    second_sale = _sell(context, "A", 1, when=later)
    core_logic.post_purchase(context, "A", 2, timestamp=earlier)
    core_logic.post_purchase(context, "A", 9, timestamp=later)

    assert [row.sale_id for row in reports.sales_history(context.state)] == [
        second_sale.sale_id,
        first_sale.sale_id,
    ]
    assert [row.quantity for row in reports.purchase_history(context.state)] == [9, 2]


def test_stock_report_is_alphabetical_and_flags_low_stock(two_item_context):
    rows = reports.stock_report(two_item_context.state, low_stock_threshold=50)

    assert [row.name for row in rows] == ["bolts", "Item A"]
    assert [row.low_stock for row in rows] == [False, True]


def test_reports_are_reproducible(two_item_context):
    """Identical states always produce identical report output."""

    _sell(two_item_context, "A", 2)
    _sell(two_item_context, "B", 7)
    core_logic.post_payment(two_item_context, "C", 55)
    state = two_item_context.state

    for report in (
        reports.calculate_profit_summary,
        reports.item_wise_sales,
        reports.sales_vs_target,
        reports.credit_report,
        reports.sales_history,
        reports.purchase_history,
        reports.stock_report,
    ):
        assert report(state) == report(state)

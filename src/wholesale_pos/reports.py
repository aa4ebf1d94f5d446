"""Derived reports over the ledger state.

Every function here is a pure fold over a
:class:`~wholesale_pos.data_manager.LedgerState`: no report keeps its own
state, and identical inputs always produce identical outputs. Logs are
folded in insertion order and sorts are stable, so ties keep catalog or
directory order.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, datetime
from decimal import Decimal
from typing import Dict, List

from . import log
from .constants import DEFAULT_LOW_STOCK_THRESHOLD, UNKNOWN_LABEL
from .core_logic import line_total
from .data_manager import LedgerState, SaleRow


@dataclass(frozen=True)
class ItemSalesRow:
    """Quantity and revenue sold for one catalog item."""

    item_id: str
    name: str
    quantity: int
    revenue: Decimal
    stock: int
    target: int


@dataclass(frozen=True)
class TargetRow:
    """Target, sold quantity and current stock of one item, for charting."""

    item_id: str
    name: str
    target: int
    sold: int
    stock: int


@dataclass(frozen=True)
class CreditRow:
    """Gross purchases, gross payments and stored balance for one customer."""

    customer_id: str
    name: str
    total_purchases: Decimal
    total_payments: Decimal
    balance: Decimal


@dataclass(frozen=True)
class SaleSummaryRow:
    """One sale as shown in the sales history."""

    sale_id: str
    date: str
    customer_id: str
    customer_name: str
    total_amount: Decimal
    profit: Decimal


@dataclass(frozen=True)
class PurchaseSummaryRow:
    purchase_id: str
    date: str
    item_id: str
    item_name: str
    quantity: int


@dataclass(frozen=True)
class StockRow:
    item_id: str
    name: str
    stock: int
    low_stock: bool


@dataclass(frozen=True)
class BalanceDrift:
    """A customer whose stored balance disagrees with the logs."""

    customer_id: str
    name: str
    stored_balance: Decimal
    expected_balance: Decimal

    @property
    def difference(self) -> Decimal:
        return self.stored_balance - self.expected_balance


def _posted_at(date: str) -> datetime:
    """Parse a record date; naive values are taken as UTC."""
    moment = datetime.fromisoformat(date)
    return moment if moment.tzinfo is not None else moment.replace(tzinfo=UTC)


def _cost_prices(state: LedgerState) -> Dict[str, Decimal]:
    return {item.item_id: item.cost_price for item in state.items}


def _sale_profit(sale: SaleRow, cost_prices: Dict[str, Decimal]) -> Decimal:
    profit = Decimal("0")
    for line in sale.items:
        cost = cost_prices.get(line.item_id, Decimal("0"))
        profit += (line.unit_price - line.discount - cost) * line.quantity
    return profit


def calculate_revenue(state: LedgerState) -> Decimal:
    """Sum the stored ``total_amount`` of every sale."""
    total = Decimal("0")
    for sale in state.sales:
        total += sale.total_amount
    return total


def calculate_profit(state: LedgerState) -> Decimal:
    """Return the gross profit across all sales.

    Each line contributes ``(unit_price - discount - cost_price) * quantity``
    where ``cost_price`` is the item's *current* catalog cost; historical
    profit therefore moves when a cost price is edited. Lines for items no
    longer in the catalog are costed at zero.
    """
    cost_prices = _cost_prices(state)
    total = Decimal("0")
    for sale in state.sales:
        total += _sale_profit(sale, cost_prices)
    return total


def calculate_profit_summary(state: LedgerState) -> Dict[str, Decimal]:
    """Produce revenue, cost of goods sold and profit in one mapping.

    Returns:
        dict[str, Decimal]: ``total_revenue``, ``total_cost`` and ``profit``,
            where ``profit == total_revenue - total_cost``.
    """
    total_revenue = calculate_revenue(state)
    profit = calculate_profit(state)
    total_cost = total_revenue - profit
    log.debug(
        "Calculated profit summary: revenue=%s cost=%s profit=%s",
        total_revenue,
        total_cost,
        profit,
    )
    return {
        "total_revenue": total_revenue,
        "total_cost": total_cost,
        "profit": profit,
    }


def item_wise_sales(state: LedgerState) -> List[ItemSalesRow]:
    """Aggregate quantity and revenue per catalog item.

    Every catalog item appears, including those never sold, merged with its
    current stock and target. Sale lines for items missing from the catalog
    are ignored. Rows are ordered by revenue, highest first.
    """
    quantities: Dict[str, int] = {item.item_id: 0 for item in state.items}
    revenues: Dict[str, Decimal] = {item.item_id: Decimal("0") for item in state.items}
    for sale in state.sales:
        for line in sale.items:
            if line.item_id not in quantities:
                continue
            quantities[line.item_id] += line.quantity
            revenues[line.item_id] += line_total(line)

    rows = [
        ItemSalesRow(
            item_id=item.item_id,
            name=item.name,
            quantity=quantities[item.item_id],
            revenue=revenues[item.item_id],
            stock=item.stock,
            target=item.target_sale,
        )
        for item in state.items
    ]
    rows.sort(key=lambda row: row.revenue, reverse=True)
    return rows


def sales_vs_target(state: LedgerState) -> List[TargetRow]:
    """Return target, sold quantity and stock per item, in item-wise sales order."""
    return [
        TargetRow(
            item_id=row.item_id,
            name=row.name,
            target=row.target,
            sold=row.quantity,
            stock=row.stock,
        )
        for row in item_wise_sales(state)
    ]


def credit_report(state: LedgerState) -> List[CreditRow]:
    """Summarize each customer's account, highest balance first.

    ``balance`` is the balance stored on the customer record, not one
    recomputed from the logs, so any drift shows up as a mismatch with
    ``total_purchases - total_payments`` (see :func:`reconcile_balances`).
    """
    purchases: Dict[str, Decimal] = {}
    for sale in state.sales:
        purchases[sale.customer_id] = purchases.get(sale.customer_id, Decimal("0")) + sale.total_amount
    payments: Dict[str, Decimal] = {}
    for payment in state.payments:
        payments[payment.customer_id] = payments.get(payment.customer_id, Decimal("0")) + payment.amount

    rows = [
        CreditRow(
            customer_id=customer.customer_id,
            name=customer.name,
            total_purchases=purchases.get(customer.customer_id, Decimal("0")),
            total_payments=payments.get(customer.customer_id, Decimal("0")),
            balance=customer.credit_balance,
        )
        for customer in state.customers
    ]
    rows.sort(key=lambda row: row.balance, reverse=True)
    return rows


def reconcile_balances(state: LedgerState) -> List[BalanceDrift]:
    """Find customers whose stored balance differs from sales minus payments.

    An empty list means the directory is consistent with the logs.
    """
    drifts = [
        BalanceDrift(
            customer_id=row.customer_id,
            name=row.name,
            stored_balance=row.balance,
            expected_balance=row.total_purchases - row.total_payments,
        )
        for row in credit_report(state)
        if row.balance != row.total_purchases - row.total_payments
    ]
    if drifts:
        log.warning("Balance reconciliation found %d drifting customer(s)", len(drifts))
    return drifts


def sales_history(state: LedgerState) -> List[SaleSummaryRow]:
    """List sales newest first with customer names and per-sale profit."""
    names = {customer.customer_id: customer.name for customer in state.customers}
    cost_prices = _cost_prices(state)
    rows = [
        SaleSummaryRow(
            sale_id=sale.sale_id,
            date=sale.date,
            customer_id=sale.customer_id,
            customer_name=names.get(sale.customer_id, UNKNOWN_LABEL),
            total_amount=sale.total_amount,
            profit=_sale_profit(sale, cost_prices),
        )
        for sale in state.sales
    ]
    rows.sort(key=lambda row: _posted_at(row.date), reverse=True)
    return rows


def purchase_history(state: LedgerState) -> List[PurchaseSummaryRow]:
    """List purchases newest first with item names."""
    names = {item.item_id: item.name for item in state.items}
    rows = [
        PurchaseSummaryRow(
            purchase_id=purchase.purchase_id,
            date=purchase.date,
            item_id=purchase.item_id,
            item_name=names.get(purchase.item_id, UNKNOWN_LABEL),
            quantity=purchase.quantity,
        )
        for purchase in state.purchases
    ]
    rows.sort(key=lambda row: _posted_at(row.date), reverse=True)
    return rows


def stock_report(state: LedgerState, low_stock_threshold: int = DEFAULT_LOW_STOCK_THRESHOLD) -> List[StockRow]:
    """List items alphabetically with their stock and a low-stock flag."""
    rows = [
        StockRow(
            item_id=item.item_id,
            name=item.name,
            stock=item.stock,
            low_stock=item.stock < low_stock_threshold,
        )
        for item in state.items
    ]
    rows.sort(key=lambda row: row.name.casefold())
    return rows


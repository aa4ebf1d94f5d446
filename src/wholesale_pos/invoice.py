"""Plain-text invoice rendering.

The renderer only reads immutable snapshots (a sale and the customer as they
were before the sale was posted) and never feeds anything back into the
ledger. Amounts are rounded to two decimals here, at display time only.
"""

from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal
from typing import List

from .constants import DEFAULT_CURRENCY
from .core_logic import line_total
from .data_manager import CustomerRow, SaleRow

CENTS = Decimal("0.01")
RULE_WIDTH = 72


def format_money(amount: Decimal, currency: str = DEFAULT_CURRENCY) -> str:
    """Render ``amount`` as ``"{currency} 1,234.50"``."""
    rounded = amount.quantize(CENTS, rounding=ROUND_HALF_UP)
    return f"{currency} {rounded:,.2f}"


def render_invoice(
    sale: SaleRow,
    customer: CustomerRow,
    *,
    store_name: str,
    currency: str = DEFAULT_CURRENCY,
) -> str:
    """Render a sales invoice as text.

    ``customer`` must be the snapshot taken before the sale was posted; its
    balance is shown as the previous balance and the new balance adds the
    sale total to it.
    """
    previous_balance = customer.credit_balance
    new_balance = previous_balance + sale.total_amount

    lines: List[str] = [
        store_name,
        "Sales Invoice",
        "=" * RULE_WIDTH,
        f"Invoice #: {sale.sale_id}",
        f"Date: {sale.date[:10]}",
        "",
        "Bill To:",
        customer.name,
    ]
    if customer.phone:
        lines.append(f"Phone: {customer.phone}")
    lines.extend(
        [
            "",
            f"{'Item Description':<28}{'Qty':>6}{'Unit Price':>13}{'Discount':>12}{'Total':>13}",
            "-" * RULE_WIDTH,
        ]
    )
    for item in sale.items:
        lines.append(
            f"{item.item_name[:27]:<28}"
            f"{item.quantity:>6}"
            f"{format_money(item.unit_price, currency):>13}"
            f"{format_money(item.discount, currency):>12}"
            f"{format_money(line_total(item), currency):>13}"
        )
    lines.extend(
        [
            "-" * RULE_WIDTH,
            f"{'Previous Balance:':<40}{format_money(previous_balance, currency):>32}",
            f"{'Current Sale:':<40}{format_money(sale.total_amount, currency):>32}",
            f"{'New Balance:':<40}{format_money(new_balance, currency):>32}",
            "",
            "Thank you for your business!",
            "All sales are final. Please check your items before leaving.",
        ]
    )
    return "\n".join(lines)

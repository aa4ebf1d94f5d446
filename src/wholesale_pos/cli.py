"""Command-line entry points for the wholesale POS ledger.

All orchestration in this module is limited to argparse wiring, translating
command-line arguments into calls on the business layer, and printing the
results. Keeping the CLI thin lets tests, scripts, or any alternative
front-end reuse the same parser configuration.
"""

from __future__ import annotations

import argparse
from dataclasses import dataclass, replace
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Mapping, MutableMapping, Optional, Sequence, Tuple

from . import core_logic, log, reports
from .data_manager import ConcurrentModificationError, CustomerRow, ItemRow
from .invoice import format_money, render_invoice


@dataclass(frozen=True)
class CommandSpec:
    """Describe how a CLI sub-command is configured and executed."""

    name: str
    help_text: str
    register: Callable[[argparse._SubParsersAction[argparse.ArgumentParser]], argparse.ArgumentParser]
    execute: Callable[[core_logic.RuntimeContext, argparse.Namespace], int]
    mutates: bool = False


def decimal_arg(raw: str) -> Decimal:
    """argparse ``type`` converting text into a :class:`~decimal.Decimal`."""
    try:
        return Decimal(raw)
    except InvalidOperation as exc:
        raise argparse.ArgumentTypeError(f"invalid amount: {raw!r}") from exc


def cart_line_arg(raw: str) -> Tuple[str, int]:
    """argparse ``type`` converting ``ITEM_ID:QTY`` into a tuple."""
    item_id, sep, quantity = raw.rpartition(":")
    if not sep or not item_id:
        raise argparse.ArgumentTypeError(f"expected ITEM_ID:QTY, got {raw!r}")
    try:
        return item_id, int(quantity)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"invalid quantity in {raw!r}") from exc


def build_parser() -> argparse.ArgumentParser:
    """Construct the top-level CLI argument parser."""
    parser = argparse.ArgumentParser(
        prog="pos-cli",
        description="Command-line tools for the wholesale POS ledger.",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Optional path to config.ini (defaults to ./config.ini).",
    )
    return parser


def configure_subcommands(
    parser: argparse.ArgumentParser,
) -> Mapping[str, CommandSpec]:
    """Wire all CLI sub-commands onto the supplied parser."""
    subparsers = parser.add_subparsers(dest="command", required=True, title="commands")
    write_specs = register_write_commands(subparsers)
    read_specs = register_read_commands(subparsers)
    return build_command_table([*write_specs.values(), *read_specs.values()])


def register_write_commands(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> Dict[str, CommandSpec]:
    """Declare mutating CLI commands such as sales and purchases."""
    specs = {
        "add-item": register_add_item_command(subparsers),
        "update-item": register_update_item_command(subparsers),
        "add-customer": register_add_customer_command(subparsers),
        "update-customer": register_update_customer_command(subparsers),
        "set-discount": register_set_discount_command(subparsers),
        "sale": register_sale_command(subparsers),
        "purchase": register_purchase_command(subparsers),
        "payment": register_payment_command(subparsers),
    }
    for spec in specs.values():
        spec.register(subparsers)
    return specs


def register_read_commands(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> Dict[str, CommandSpec]:
    """Declare read-only CLI commands such as reports."""
    specs = {
        "stock": _simple_read_command("stock", "Display current stock levels.", run_stock_report),
        "profit": _simple_read_command("profit", "Display revenue, cost, and profit.", run_profit_report),
        "item-sales": _simple_read_command("item-sales", "Display item-wise sales.", run_item_sales_report),
        "targets": _simple_read_command("targets", "Display sales against targets.", run_targets_report),
        "credit": _simple_read_command("credit", "Display customer credit balances.", run_credit_report),
        "sales-log": _simple_read_command("sales-log", "Display recorded sales.", run_sales_log),
        "purchases-log": _simple_read_command("purchases-log", "Display recorded purchases.", run_purchases_log),
        "reconcile": _simple_read_command(
            "reconcile", "Check stored balances against the logs.", run_reconcile_report
        ),
    }
    for spec in specs.values():
        spec.register(subparsers)
    return specs


def _simple_read_command(
    name: str,
    help_text: str,
    execute: Callable[[core_logic.RuntimeContext, argparse.Namespace], int],
) -> CommandSpec:
    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=execute)


def _add_item_fields(parser: argparse.ArgumentParser, *, required: bool) -> None:
    parser.add_argument("--item-id", required=True)
    parser.add_argument("--name", required=required)
    parser.add_argument("--cost-price", type=decimal_arg, required=required)
    parser.add_argument("--selling-price", type=decimal_arg, required=required)
    parser.add_argument("--stock", type=int, required=required)
    parser.add_argument("--target-sale", type=int, required=required)


def _add_customer_fields(parser: argparse.ArgumentParser, *, required: bool) -> None:
    parser.add_argument("--customer-id", required=True)
    parser.add_argument("--name", required=required)
    parser.add_argument("--phone", default=None)
    parser.add_argument("--credit-balance", type=decimal_arg, default=None)


def register_add_item_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``add-item``."""
    name = "add-item"
    help_text = "Add a new item to the catalog."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        _add_item_fields(parser, required=True)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_add_item, mutates=True)


def register_update_item_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``update-item``."""
    name = "update-item"
    help_text = "Edit fields of an existing catalog item."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        _add_item_fields(parser, required=False)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_update_item, mutates=True)


def register_add_customer_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``add-customer``."""
    name = "add-customer"
    help_text = "Add a new customer to the directory."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        _add_customer_fields(parser, required=True)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_add_customer, mutates=True)


def register_update_customer_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``update-customer``."""
    name = "update-customer"
    help_text = "Edit fields of an existing customer."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        _add_customer_fields(parser, required=False)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(
        name=name, help_text=help_text, register=registrar, execute=run_update_customer, mutates=True
    )


def register_set_discount_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``set-discount``."""
    name = "set-discount"
    help_text = "Set a customer's discount percentage on an item."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--customer-id", required=True)
        parser.add_argument("--item-id", required=True)
        parser.add_argument("--percentage", type=decimal_arg, required=True)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_set_discount, mutates=True)


def register_sale_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``sale``."""
    name = "sale"
    help_text = "Record a sale and print its invoice."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--customer-id", required=True)
        parser.add_argument(
            "--line",
            dest="lines",
            type=cart_line_arg,
            action="append",
            required=True,
            metavar="ITEM_ID:QTY",
            help="Item and quantity; repeat for several lines.",
        )
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_sale, mutates=True)


def register_purchase_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``purchase``."""
    name = "purchase"
    help_text = "Record a stock purchase."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--item-id", required=True)
        parser.add_argument("--quantity", type=int, required=True)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_purchase, mutates=True)


def register_payment_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``payment``."""
    name = "payment"
    help_text = "Record a payment received from a customer."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--customer-id", required=True)
        parser.add_argument("--amount", type=decimal_arg, required=True)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_payment, mutates=True)


def load_runtime_context(config_path: Optional[Path] = None) -> core_logic.RuntimeContext:
    """Resolve the runtime context for CLI operations."""
    target = Path(config_path) if config_path is not None else Path.cwd() / "config.ini"
    context = core_logic.load_runtime_context(target)
    core_logic.ensure_schema_version(context)
    return context


def dispatch_command(
    context: core_logic.RuntimeContext,
    args: argparse.Namespace,
    command_table: Mapping[str, CommandSpec],
) -> int:
    """Dispatch the parsed arguments to the configured executor."""
    if not hasattr(args, "command") or args.command is None:
        raise KeyError("No command specified")
    spec = command_table.get(args.command)
    if spec is None:
        raise KeyError(f"Unknown command: {args.command}")
    return spec.execute(context, args)


def build_command_table(
    specs: Iterable[CommandSpec],
) -> MutableMapping[str, CommandSpec]:
    """Build an index of command specifications keyed by command name."""
    table: Dict[str, CommandSpec] = {}
    for spec in specs:
        if spec.name in table:
            raise ValueError(f"Duplicate command name: {spec.name}")
        table[spec.name] = spec
    return table


def translate_add_item(args: argparse.Namespace) -> ItemRow:
    """Translate CLI args into a new catalog record."""
    return ItemRow(
        item_id=args.item_id,
        name=args.name,
        cost_price=args.cost_price,
        selling_price=args.selling_price,
        stock=args.stock,
        target_sale=args.target_sale,
    )


def translate_update_item(args: argparse.Namespace, current: ItemRow) -> ItemRow:
    """Overlay the fields given on the command line onto ``current``."""
    overrides: Dict[str, Any] = {
        "name": args.name,
        "cost_price": args.cost_price,
        "selling_price": args.selling_price,
        "stock": args.stock,
        "target_sale": args.target_sale,
    }
    return replace(current, **{key: value for key, value in overrides.items() if value is not None})


def translate_add_customer(args: argparse.Namespace) -> CustomerRow:
    """Translate CLI args into a new directory record."""
    return CustomerRow(
        customer_id=args.customer_id,
        name=args.name,
        credit_balance=args.credit_balance if args.credit_balance is not None else Decimal("0"),
        phone=args.phone,
    )


def translate_update_customer(args: argparse.Namespace, current: CustomerRow) -> CustomerRow:
    """Overlay the fields given on the command line onto ``current``."""
    overrides: Dict[str, Any] = {
        "name": args.name,
        "phone": args.phone,
        "credit_balance": args.credit_balance,
    }
    return replace(current, **{key: value for key, value in overrides.items() if value is not None})


def run_add_item(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the add-item workflow in the BLL."""
    item = core_logic.add_item(context, translate_add_item(args))
    print(f"Added item {item.item_id}: {item.name}")
    return 0


def run_update_item(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the update-item workflow in the BLL."""
    current = core_logic.get_item(context, args.item_id)
    item = core_logic.update_item(context, translate_update_item(args, current))
    print(f"Updated item {item.item_id}: {item.name}")
    return 0


def run_add_customer(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the add-customer workflow in the BLL."""
    customer = core_logic.add_customer(context, translate_add_customer(args))
    print(f"Added customer {customer.customer_id}: {customer.name}")
    return 0


def run_update_customer(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the update-customer workflow in the BLL."""
    current = core_logic.get_customer(context, args.customer_id)
    customer = core_logic.update_customer(context, translate_update_customer(args, current))
    print(f"Updated customer {customer.customer_id}: {customer.name}")
    return 0


def run_set_discount(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the discount upsert in the BLL."""
    core_logic.get_customer(context, args.customer_id)
    core_logic.get_item(context, args.item_id)
    discount = core_logic.upsert_discount(context, args.customer_id, args.item_id, args.percentage)
    print(
        f"Discount for {discount.customer_id} on {discount.item_id} "
        f"set to {discount.discount_percentage}%"
    )
    return 0


def run_sale(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Build a cart from ``--line`` arguments, post it, and print the invoice."""
    customer_before = core_logic.get_customer(context, args.customer_id)
    cart = core_logic.start_cart(context, args.customer_id)
    for item_id, quantity in args.lines:
        cart = core_logic.add_to_cart(context, cart, item_id, quantity)
    sale = core_logic.checkout(context, cart)
    print(
        render_invoice(
            sale,
            customer_before,
            store_name=context.settings.store_name,
            currency=context.settings.currency,
        )
    )
    return 0


def run_purchase(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the purchase posting via the BLL."""
    purchase = core_logic.post_purchase(context, args.item_id, args.quantity)
    item = core_logic.get_item(context, args.item_id)
    print(f"Recorded {purchase.purchase_id}: +{purchase.quantity} {item.name} (stock {item.stock})")
    return 0


def run_payment(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the payment posting via the BLL."""
    core_logic.get_customer(context, args.customer_id)
    payment = core_logic.post_payment(context, args.customer_id, args.amount)
    customer = core_logic.get_customer(context, args.customer_id)
    currency = context.settings.currency
    print(
        f"Recorded {payment.payment_id}: {format_money(payment.amount, currency)} from {customer.name} "
        f"(balance {format_money(customer.credit_balance, currency)})"
    )
    return 0


def print_table(headers: Sequence[str], rows: Iterable[Sequence[object]]) -> None:
    """Print ``rows`` as left-aligned text columns."""
    materialized: List[List[str]] = [[str(cell) for cell in row] for row in rows]
    widths = [len(header) for header in headers]
    for row in materialized:
        widths = [max(width, len(cell)) for width, cell in zip(widths, row)]
    print("  ".join(header.ljust(width) for header, width in zip(headers, widths)))
    print("  ".join("-" * width for width in widths))
    for row in materialized:
        print("  ".join(cell.ljust(width) for cell, width in zip(row, widths)))


def run_stock_report(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Print items alphabetically with their stock."""
    rows = reports.stock_report(context.state, context.settings.low_stock_threshold)
    print_table(
        ["Item", "Name", "Stock", "Status"],
        ([row.item_id, row.name, row.stock, "LOW" if row.low_stock else "ok"] for row in rows),
    )
    return 0


def run_profit_report(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Print total revenue, cost of goods sold, and profit."""
    summary = reports.calculate_profit_summary(context.state)
    currency = context.settings.currency
    print(f"Total revenue: {format_money(summary['total_revenue'], currency)}")
    print(f"Cost of goods: {format_money(summary['total_cost'], currency)}")
    print(f"Total profit:  {format_money(summary['profit'], currency)}")
    return 0


def run_item_sales_report(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    currency = context.settings.currency
    print_table(
        ["Item", "Name", "Sold", "Revenue", "Stock", "Target"],
        (
            [row.item_id, row.name, row.quantity, format_money(row.revenue, currency), row.stock, row.target]
            for row in reports.item_wise_sales(context.state)
        ),
    )
    return 0


def run_targets_report(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    print_table(
        ["Item", "Name", "Target", "Sold", "Stock"],
        (
            [row.item_id, row.name, row.target, row.sold, row.stock]
            for row in reports.sales_vs_target(context.state)
        ),
    )
    return 0


def run_credit_report(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    currency = context.settings.currency
    print_table(
        ["Customer", "Name", "Purchases", "Payments", "Balance"],
        (
            [
                row.customer_id,
                row.name,
                format_money(row.total_purchases, currency),
                format_money(row.total_payments, currency),
                format_money(row.balance, currency),
            ]
            for row in reports.credit_report(context.state)
        ),
    )
    return 0


def run_sales_log(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    currency = context.settings.currency
    print_table(
        ["Sale", "Date", "Customer", "Total", "Profit"],
        (
            [
                row.sale_id,
                row.date,
                row.customer_name,
                format_money(row.total_amount, currency),
                format_money(row.profit, currency),
            ]
            for row in reports.sales_history(context.state)
        ),
    )
    return 0


def run_purchases_log(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    print_table(
        ["Purchase", "Date", "Item", "Quantity"],
        (
            [row.purchase_id, row.date, row.item_name, row.quantity]
            for row in reports.purchase_history(context.state)
        ),
    )
    return 0


def run_reconcile_report(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Print customers whose stored balance drifted; exit 5 if any did."""
    drifts = reports.reconcile_balances(context.state)
    if not drifts:
        print("All customer balances match the transaction logs.")
        return 0
    currency = context.settings.currency
    print_table(
        ["Customer", "Name", "Stored", "Expected", "Difference"],
        (
            [
                drift.customer_id,
                drift.name,
                format_money(drift.stored_balance, currency),
                format_money(drift.expected_balance, currency),
                format_money(drift.difference, currency),
            ]
            for drift in drifts
        ),
    )
    return 5


def handle_cli_error(error: Exception) -> int:
    """Convert raised exceptions into user-friendly exit codes."""
    if isinstance(error, core_logic.BusinessRuleViolation):
        log.error("%s", error)
        return 2
    if isinstance(error, FileNotFoundError):
        log.error("%s", error)
        return 3
    if isinstance(error, ConcurrentModificationError):
        log.error("%s; reload and retry the command", error)
        return 4
    log.error("%s", error)
    return 1


def persist_state(context: core_logic.RuntimeContext) -> None:
    """Persist ledger changes after successful execution."""
    try:
        core_logic.persist_context(context)
    except PermissionError as error:
        raise RuntimeError(str(error)) from error


def main(argv: Sequence[str] | None = None) -> int:
    """CLI entry point that orchestrates parsing and execution."""
    parser = build_parser()
    command_table = configure_subcommands(parser)
    args = parser.parse_args(argv)
    try:
        context = load_runtime_context(getattr(args, "config", None))
        exit_code = dispatch_command(context, args, command_table)
        if exit_code == 0 and command_table[args.command].mutates:
            persist_state(context)
        return exit_code
    except Exception as error:  # pragma: no cover - centralised error handler tested separately
        return handle_cli_error(error)

"""Business logic layer for the wholesale POS ledger.

This module holds the rules that keep the catalog, the customer directory and
the append-only transaction logs consistent with one another. It consumes
the data access layer for all I/O. Every mutation is expressed as a pure
transition from one :class:`~wholesale_pos.data_manager.LedgerState` to the
next, and is committed to the :class:`RuntimeContext` in a single step.
"""

from __future__ import annotations

import threading
import uuid
from dataclasses import dataclass, field, replace
from datetime import UTC, datetime
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Iterable, List, Optional, Sequence, Tuple, Union

from . import data_manager, log
from .constants import EXPECTED_SCHEMA_VERSION, MAX_DISCOUNT_PERCENTAGE, RecordPrefix
from .data_manager import (
    CartItem,
    CustomerRow,
    DiscountRow,
    ItemRow,
    LedgerState,
    PaymentRow,
    PurchaseRow,
    SaleRow,
)
from .setup_workbook import build_seed_state


Number = Union[Decimal, int, str]


class BusinessRuleViolation(Exception):
    """Raised when a requested operation violates a domain constraint."""


class MissingReferenceError(BusinessRuleViolation):
    """Raised when a referenced item or customer is unknown."""


class InsufficientStockError(BusinessRuleViolation):
    """Raised when a requested quantity exceeds the item's current stock."""


class InvalidInputError(BusinessRuleViolation, ValueError):
    """Raised when an argument is outside its accepted range or empty."""


@dataclass
class RuntimeContext:
    """Container for configuration and the live ledger state.

    ``state`` is only ever replaced wholesale, while holding ``lock``, so a
    reader always observes either the state before a posting or the state
    after it.
    """

    settings: data_manager.ConfigSettings
    state: LedgerState
    lock: threading.RLock = field(default_factory=threading.RLock, repr=False, compare=False)


@dataclass(frozen=True)
class Cart:
    """Sale being assembled for one customer; never persisted."""

    customer_id: str
    lines: Tuple[CartItem, ...] = ()


def _resolve_timestamp(candidate: Optional[datetime]) -> datetime:
    """Return ``candidate`` or, when ``None``, the current UTC datetime."""

    return candidate if candidate is not None else datetime.now(UTC)


def generate_record_id(prefix: Union[RecordPrefix, str], *, when: Optional[datetime] = None) -> str:
    """Generate a unique identifier that sorts by creation time.

    Args:
        prefix (RecordPrefix | str): Record kind, such as ``sale``.
        when (datetime | None): Creation moment. Defaults to now (UTC).

    Returns:
        str: Identifier formed as ``{prefix}-{YYYYMMDDHHMMSSffffff}-{hex6}``.

    The random suffix keeps identifiers unique when two records are created
    within the same microsecond.
    """
    when = when or _resolve_timestamp(None)
    label = prefix.value if isinstance(prefix, RecordPrefix) else prefix
    return f"{label}-{when.strftime('%Y%m%d%H%M%S%f')}-{uuid.uuid4().hex[:6]}"


# ---------------------------------------------------------------------------
# Context lifecycle
# ---------------------------------------------------------------------------


def load_runtime_context(config_path: Optional[Path] = None) -> RuntimeContext:
    """Load configuration settings and the whole ledger state.

    The helper resolves ``config.ini``, parses settings and reads every slot
    of the master workbook. A missing workbook yields the seed state (see
    :func:`~wholesale_pos.setup_workbook.build_seed_state`).

    Args:
        config_path (Path | None): Optional override path for the configuration
            file. When omitted the data layer performs its upward search from
            the current working directory.

    Returns:
        RuntimeContext: Fully populated context ready for ledger operations.

    Raises:
        FileNotFoundError: If the configuration file cannot be located.
        KeyError: When mandatory configuration options are missing.
        RuntimeError: If the workbook declares an unsupported schema version.
    """
    located_config = data_manager.find_config_file(config_path)
    resolved_config = Path(located_config).expanduser().resolve()
    parser = data_manager.read_config(resolved_config)
    settings = data_manager.parse_settings(parser, base_path=resolved_config.parent)
    state = data_manager.load_state(settings.data_file, defaults=build_seed_state)
    log.info("Loaded runtime context for workbook '%s' (revision %d)", settings.data_file, state.revision)
    return RuntimeContext(settings=settings, state=state)


def ensure_schema_version(context: RuntimeContext) -> None:
    """Validate that ``config.ini`` targets the schema this code understands.

    Raises:
        RuntimeError: If the configured schema version does not match
            ``EXPECTED_SCHEMA_VERSION``.
    """
    if context.settings.schema_version != EXPECTED_SCHEMA_VERSION:
        log.error(
            "Workbook schema mismatch: expected %s, found %s",
            EXPECTED_SCHEMA_VERSION,
            context.settings.schema_version,
        )
        raise RuntimeError(
            "Workbook schema mismatch: expected %s, found %s"
            % (EXPECTED_SCHEMA_VERSION, context.settings.schema_version)
        )

    log.debug("Schema version '%s' validated", context.settings.schema_version)


def persist_context(context: RuntimeContext) -> None:
    """Write the whole state to the configured workbook.

    The save is guarded by the state's revision, so a concurrent save by
    another process surfaces as
    :class:`~wholesale_pos.data_manager.ConcurrentModificationError` instead of
    silently discarding that process's postings. On success the context
    adopts the bumped revision.
    """
    with context.lock:
        saved = data_manager.save_state(context.state, context.settings.data_file)
        context.state = saved
    log.info("Persisted workbook '%s' at revision %d", context.settings.data_file, saved.revision)


def refresh_context(context: RuntimeContext) -> RuntimeContext:
    """Reload the state from disk, discarding unsaved modifications.

    Returns:
        RuntimeContext: Fresh context sharing the original settings.
    """
    state = data_manager.load_state(context.settings.data_file, defaults=build_seed_state)
    log.info("Reloaded workbook '%s'", context.settings.data_file)
    return RuntimeContext(settings=context.settings, state=state)


def _commit(context: RuntimeContext, next_state: LedgerState) -> None:
    context.state = next_state


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------


def require_identifier(value: Optional[str], label: str) -> str:
    """Validate that an identifier is a non-empty string.

    Raises:
        InvalidInputError: If ``value`` is ``None`` or blank.
    """
    if value is None or not str(value).strip():
        log.error("Identifier validation failed: empty %s", label)
        raise InvalidInputError(f"{label} must not be empty")
    return str(value)


def require_positive_quantity(quantity: int) -> int:
    """Validate that a quantity is a strictly positive integer.

    Raises:
        InvalidInputError: If ``quantity`` is not an integer or is zero or
            negative.
    """
    if isinstance(quantity, bool) or not isinstance(quantity, int):
        log.error("Quantity validation failed: %r is not an integer", quantity)
        raise InvalidInputError("Quantity must be a whole number")
    if quantity <= 0:
        log.error("Quantity validation failed: %s", quantity)
        raise InvalidInputError("Quantity must be greater than zero")
    return quantity


def to_money(value: Number) -> Decimal:
    """Coerce ``value`` into a :class:`~decimal.Decimal`.

    Floats are converted through ``str`` so ``0.1`` becomes ``Decimal("0.1")``.

    Raises:
        InvalidInputError: If ``value`` is not numeric.
    """
    if isinstance(value, Decimal):
        amount = value
    else:
        try:
            amount = Decimal(str(value))
        except (InvalidOperation, ValueError) as exc:
            log.error("Monetary value validation failed: %r", value)
            raise InvalidInputError(f"Not a valid amount: {value!r}") from exc
    if not amount.is_finite():
        log.error("Monetary value validation failed: %r", value)
        raise InvalidInputError(f"Not a valid amount: {value!r}")
    return amount


def require_positive_money(amount: Number) -> Decimal:
    """Validate that a monetary value is strictly positive.

    Raises:
        InvalidInputError: If ``amount`` is zero, negative or not numeric.
    """
    value = to_money(amount)
    if value <= Decimal("0"):
        log.error("Monetary value validation failed: %s", value)
        raise InvalidInputError("Amount must be greater than zero")
    return value


def require_nonnegative_money(amount: Number) -> Decimal:
    """Validate that a monetary value is zero or positive.

    Raises:
        InvalidInputError: If ``amount`` is negative or not numeric.
    """
    value = to_money(amount)
    if value < Decimal("0"):
        log.error("Monetary value validation failed: %s", value)
        raise InvalidInputError("Amount must be zero or positive")
    return value


def require_percentage(percentage: Number) -> Decimal:
    """Validate that a discount percentage lies within ``[0, 100]``.

    Raises:
        InvalidInputError: If the value is outside the range or not numeric.
    """
    value = to_money(percentage)
    if value < Decimal("0") or value > MAX_DISCOUNT_PERCENTAGE:
        log.error("Discount percentage validation failed: %s", value)
        raise InvalidInputError("Discount percentage must be between 0 and 100")
    return value


def validate_item(item: ItemRow) -> ItemRow:
    """Check an item record before it enters the catalog.

    Prices must be nonnegative and the stock/target fields must be integers.
    Stock itself may be negative, since admin corrections are allowed to
    mirror a transiently oversold shelf.
    """
    require_identifier(item.item_id, "Item id")
    require_nonnegative_money(item.cost_price)
    require_nonnegative_money(item.selling_price)
    for label, value in (("Stock", item.stock), ("Target sale", item.target_sale)):
        if isinstance(value, bool) or not isinstance(value, int):
            log.error("%s validation failed: %r is not an integer", label, value)
            raise InvalidInputError(f"{label} must be a whole number")
    return replace(
        item,
        cost_price=to_money(item.cost_price),
        selling_price=to_money(item.selling_price),
    )


def validate_customer(customer: CustomerRow) -> CustomerRow:
    """Check a customer record before it enters the directory."""
    require_identifier(customer.customer_id, "Customer id")
    return replace(customer, credit_balance=to_money(customer.credit_balance))


# ---------------------------------------------------------------------------
# Lookups
# ---------------------------------------------------------------------------


def find_item(state: LedgerState, item_id: str) -> Optional[ItemRow]:
    return next((item for item in state.items if item.item_id == item_id), None)


def find_customer(state: LedgerState, customer_id: str) -> Optional[CustomerRow]:
    return next((customer for customer in state.customers if customer.customer_id == customer_id), None)


def get_item(context: RuntimeContext, item_id: str) -> ItemRow:
    """Resolve a catalog item by its identifier.

    Raises:
        MissingReferenceError: If ``item_id`` is not in the catalog.
    """
    item = find_item(context.state, item_id)
    if item is None:
        log.warning("Item lookup failed for id '%s'", item_id)
        raise MissingReferenceError(f"Unknown item id: {item_id}")
    return item


def get_customer(context: RuntimeContext, customer_id: str) -> CustomerRow:
    """Resolve a customer by its identifier.

    Raises:
        MissingReferenceError: If ``customer_id`` is not in the directory.
    """
    customer = find_customer(context.state, customer_id)
    if customer is None:
        log.warning("Customer lookup failed for id '%s'", customer_id)
        raise MissingReferenceError(f"Unknown customer id: {customer_id}")
    return customer


def list_items(context: RuntimeContext) -> List[ItemRow]:
    return list(context.state.items)


def list_customers(context: RuntimeContext) -> List[CustomerRow]:
    return list(context.state.customers)


def list_sales(context: RuntimeContext) -> List[SaleRow]:
    """Return the sales log in posting order."""
    return list(context.state.sales)


def list_purchases(context: RuntimeContext) -> List[PurchaseRow]:
    """Return the purchases log in posting order."""
    return list(context.state.purchases)


def list_payments(context: RuntimeContext) -> List[PaymentRow]:
    """Return the payments log in posting order."""
    return list(context.state.payments)


def list_customer_discounts(context: RuntimeContext, customer_id: str) -> List[DiscountRow]:
    """Return every discount override recorded for ``customer_id``."""
    return [discount for discount in context.state.discounts if discount.customer_id == customer_id]


# ---------------------------------------------------------------------------
# Pricing
# ---------------------------------------------------------------------------


def get_discount_percentage(discounts: Iterable[DiscountRow], customer_id: str, item_id: str) -> Decimal:
    """Return the discount percentage for a customer/item pair, ``0`` if none."""
    for discount in discounts:
        if discount.customer_id == customer_id and discount.item_id == item_id:
            return discount.discount_percentage
    return Decimal("0")


def price_line(
    item: ItemRow,
    discounts: Iterable[DiscountRow],
    customer_id: str,
    quantity: int,
) -> CartItem:
    """Price one line item for a customer.

    The line snapshots the item's name and selling price as they are now;
    later catalog edits never reach back into carts or posted sales. The
    per-unit discount is ``selling_price * percentage / 100`` at full
    precision. Stock is checked against the item as given, without any
    reservation.

    Args:
        item (ItemRow): Catalog item being sold.
        discounts (Iterable[DiscountRow]): Discount table to consult.
        customer_id (str): Buyer, used to resolve the discount.
        quantity (int): Units requested.

    Returns:
        CartItem: Priced line ready for a cart.

    Raises:
        InvalidInputError: If ``customer_id`` is empty or ``quantity`` is not
            a positive integer.
        InsufficientStockError: If ``quantity`` exceeds ``item.stock``.
    """
    require_identifier(customer_id, "Customer id")
    require_positive_quantity(quantity)
    if quantity > item.stock:
        log.warning(
            "Insufficient stock for item '%s': requested %d, available %d",
            item.item_id,
            quantity,
            item.stock,
        )
        raise InsufficientStockError(
            f"Insufficient stock for '{item.name}': requested {quantity}, available {item.stock}"
        )

    percentage = get_discount_percentage(discounts, customer_id, item.item_id)
    discount = item.selling_price * percentage / Decimal("100")
    return CartItem(
        item_id=item.item_id,
        item_name=item.name,
        quantity=quantity,
        unit_price=item.selling_price,
        discount=discount,
    )


def price_item(context: RuntimeContext, customer_id: str, item_id: str, quantity: int) -> CartItem:
    """Resolve ``item_id`` from the catalog and price it with :func:`price_line`.

    Raises:
        MissingReferenceError: If the item is not in the catalog.
    """
    state = context.state
    return price_line(get_item(context, item_id), state.discounts, customer_id, quantity)


def line_total(line: CartItem) -> Decimal:
    """Return ``(unit_price - discount) * quantity`` for one line."""
    return (line.unit_price - line.discount) * line.quantity


def cart_total(lines: Iterable[CartItem]) -> Decimal:
    """Sum :func:`line_total` over ``lines`` in order."""
    total = Decimal("0")
    for line in lines:
        total += line_total(line)
    return total


# ---------------------------------------------------------------------------
# Cart
# ---------------------------------------------------------------------------


def start_cart(context: RuntimeContext, customer_id: str) -> Cart:
    """Open an empty cart for an existing customer.

    Raises:
        InvalidInputError: If ``customer_id`` is empty.
        MissingReferenceError: If the customer is unknown.
    """
    require_identifier(customer_id, "Customer id")
    get_customer(context, customer_id)
    return Cart(customer_id=customer_id)


def add_to_cart(context: RuntimeContext, cart: Cart, item_id: str, quantity: int) -> Cart:
    """Price ``item_id`` for the cart's customer and return the extended cart.

    An item can appear only once per cart; remove the line and add it again
    to change its quantity.

    Raises:
        InvalidInputError: If the item is already in the cart, or the
            quantity is invalid.
        MissingReferenceError: If the item is unknown.
        InsufficientStockError: If stock cannot cover ``quantity``.
    """
    if any(line.item_id == item_id for line in cart.lines):
        log.warning("Item '%s' is already in the cart", item_id)
        raise InvalidInputError(f"Item '{item_id}' is already in the cart")
    line = price_item(context, cart.customer_id, item_id, quantity)
    log.debug("Added %d x '%s' to cart for '%s'", quantity, item_id, cart.customer_id)
    return replace(cart, lines=cart.lines + (line,))


def remove_from_cart(cart: Cart, item_id: str) -> Cart:
    """Return ``cart`` without the line for ``item_id`` (unchanged if absent)."""
    return replace(cart, lines=tuple(line for line in cart.lines if line.item_id != item_id))


def checkout(context: RuntimeContext, cart: Cart, *, timestamp: Optional[datetime] = None) -> SaleRow:
    """Post the cart as a sale; see :func:`post_sale`."""
    return post_sale(context, cart.customer_id, cart.lines, timestamp=timestamp)


# ---------------------------------------------------------------------------
# Record builders
# ---------------------------------------------------------------------------


def build_sale(
    customer_id: str,
    items: Sequence[CartItem],
    *,
    sale_id: str,
    timestamp: datetime,
) -> SaleRow:
    """Materialize a sale record with its stored ``total_amount``.

    The total is computed once here and never re-derived from the lines.
    """
    return SaleRow(
        sale_id=sale_id,
        customer_id=customer_id,
        date=timestamp.isoformat(),
        items=tuple(items),
        total_amount=cart_total(items),
    )


def build_purchase(item_id: str, quantity: int, *, purchase_id: str, timestamp: datetime) -> PurchaseRow:
    return PurchaseRow(
        purchase_id=purchase_id,
        item_id=item_id,
        quantity=quantity,
        date=timestamp.isoformat(),
    )


def build_payment(customer_id: str, amount: Decimal, *, payment_id: str, timestamp: datetime) -> PaymentRow:
    return PaymentRow(
        payment_id=payment_id,
        customer_id=customer_id,
        amount=amount,
        date=timestamp.isoformat(),
    )


# ---------------------------------------------------------------------------
# State transitions
# ---------------------------------------------------------------------------


def _adjust_stock(items: Tuple[ItemRow, ...], item_id: str, delta: int) -> Tuple[ItemRow, ...]:
    if not any(item.item_id == item_id for item in items):
        log.warning("Stock adjustment skipped: item '%s' is not in the catalog", item_id)
        return items
    return tuple(
        replace(item, stock=item.stock + delta) if item.item_id == item_id else item
        for item in items
    )


def _adjust_balance(
    customers: Tuple[CustomerRow, ...],
    customer_id: str,
    delta: Decimal,
) -> Tuple[CustomerRow, ...]:
    if not any(customer.customer_id == customer_id for customer in customers):
        log.warning("Balance adjustment skipped: customer '%s' is not in the directory", customer_id)
        return customers
    return tuple(
        replace(customer, credit_balance=customer.credit_balance + delta)
        if customer.customer_id == customer_id
        else customer
        for customer in customers
    )


def apply_sale(state: LedgerState, sale: SaleRow) -> LedgerState:
    """Return the state after posting ``sale``.

    Appends the sale, takes each line's quantity out of stock and adds the
    sale total to the customer's balance. Lines or customers that no longer
    exist are skipped.
    """
    items = state.items
    for line in sale.items:
        items = _adjust_stock(items, line.item_id, -line.quantity)
    customers = _adjust_balance(state.customers, sale.customer_id, sale.total_amount)
    return replace(state, items=items, customers=customers, sales=state.sales + (sale,))


def apply_purchase(state: LedgerState, purchase: PurchaseRow) -> LedgerState:
    """Return the state after posting ``purchase``: log appended, stock increased."""
    return replace(
        state,
        items=_adjust_stock(state.items, purchase.item_id, purchase.quantity),
        purchases=state.purchases + (purchase,),
    )


def apply_payment(state: LedgerState, payment: PaymentRow) -> LedgerState:
    """Return the state after posting ``payment``: log appended, balance reduced.

    The balance is not clamped; overpayment leaves a credit in the customer's
    favour.
    """
    return replace(
        state,
        customers=_adjust_balance(state.customers, payment.customer_id, -payment.amount),
        payments=state.payments + (payment,),
    )


def apply_discount_upsert(state: LedgerState, discount: DiscountRow) -> LedgerState:
    """Return the state with ``discount`` replacing or appending its pair's record."""
    key = (discount.customer_id, discount.item_id)
    if any((row.customer_id, row.item_id) == key for row in state.discounts):
        discounts = tuple(
            discount if (row.customer_id, row.item_id) == key else row
            for row in state.discounts
        )
    else:
        discounts = state.discounts + (discount,)
    return replace(state, discounts=discounts)


# ---------------------------------------------------------------------------
# Posting
# ---------------------------------------------------------------------------


def post_sale(
    context: RuntimeContext,
    customer_id: str,
    items: Sequence[CartItem],
    *,
    timestamp: Optional[datetime] = None,
) -> SaleRow:
    """Record a sale together with its stock and balance effects.

    The lines are taken as priced; stock is not re-checked here. The log
    append, the stock decrements and the balance increment are computed as
    one next state and committed in a single swap.

    Args:
        context (RuntimeContext): Runtime context holding the ledger state.
        customer_id (str): Buyer.
        items (Sequence[CartItem]): Priced lines, at least one.
        timestamp (datetime | None): Creation moment; defaults to now (UTC).

    Returns:
        SaleRow: The appended sale.

    Raises:
        InvalidInputError: If ``customer_id`` is empty or ``items`` is empty.
    """
    require_identifier(customer_id, "Customer id")
    if not items:
        log.error("Sale rejected for '%s': cart is empty", customer_id)
        raise InvalidInputError("A sale needs at least one line item")

    when = _resolve_timestamp(timestamp)
    sale = build_sale(
        customer_id,
        items,
        sale_id=generate_record_id(RecordPrefix.SALE, when=when),
        timestamp=when,
    )
    with context.lock:
        _commit(context, apply_sale(context.state, sale))
    log.info(
        "Recorded sale '%s' for customer '%s' (%d lines, total=%s)",
        sale.sale_id,
        customer_id,
        len(sale.items),
        sale.total_amount,
    )
    return sale


def post_purchase(
    context: RuntimeContext,
    item_id: str,
    quantity: int,
    *,
    timestamp: Optional[datetime] = None,
) -> PurchaseRow:
    """Record a stock purchase and add its quantity to the item's stock.

    Raises:
        InvalidInputError: If ``item_id`` is empty or ``quantity`` is not a
            positive integer.
    """
    require_identifier(item_id, "Item id")
    require_positive_quantity(quantity)

    when = _resolve_timestamp(timestamp)
    purchase = build_purchase(
        item_id,
        quantity,
        purchase_id=generate_record_id(RecordPrefix.PURCHASE, when=when),
        timestamp=when,
    )
    with context.lock:
        _commit(context, apply_purchase(context.state, purchase))
    log.info(
        "Recorded purchase '%s' for item '%s' (quantity=%d)",
        purchase.purchase_id,
        item_id,
        quantity,
    )
    return purchase


def post_payment(
    context: RuntimeContext,
    customer_id: str,
    amount: Number,
    *,
    timestamp: Optional[datetime] = None,
) -> PaymentRow:
    """Record a customer payment and deduct it from their credit balance.

    Amounts above the outstanding balance are accepted and leave the
    customer in credit.

    Raises:
        InvalidInputError: If ``customer_id`` is empty or ``amount`` is not
            strictly positive.
    """
    require_identifier(customer_id, "Customer id")
    value = require_positive_money(amount)

    when = _resolve_timestamp(timestamp)
    payment = build_payment(
        customer_id,
        value,
        payment_id=generate_record_id(RecordPrefix.PAYMENT, when=when),
        timestamp=when,
    )
    with context.lock:
        customer = find_customer(context.state, customer_id)
        if customer is not None and value > customer.credit_balance:
            log.info(
                "Payment of %s exceeds outstanding balance %s for customer '%s'",
                value,
                customer.credit_balance,
                customer_id,
            )
        _commit(context, apply_payment(context.state, payment))
    log.info(
        "Recorded payment '%s' from customer '%s' (amount=%s)",
        payment.payment_id,
        customer_id,
        value,
    )
    return payment


# ---------------------------------------------------------------------------
# Administration
# ---------------------------------------------------------------------------


def add_item(context: RuntimeContext, item: ItemRow) -> ItemRow:
    """Append a new catalog item.

    Raises:
        BusinessRuleViolation: If the id is already in the catalog.
        InvalidInputError: If the record fails :func:`validate_item`.
    """
    record = validate_item(item)
    with context.lock:
        if find_item(context.state, record.item_id) is not None:
            log.warning("Attempted to add duplicate item '%s'", record.item_id)
            raise BusinessRuleViolation(f"Item '{record.item_id}' already exists")
        _commit(context, replace(context.state, items=context.state.items + (record,)))
    log.info("Added item '%s' (%s)", record.item_id, record.name)
    return record


def update_item(context: RuntimeContext, item: ItemRow) -> ItemRow:
    """Replace the catalog record with the same id.

    Every field is overwritten, stock included; the caller is responsible
    for the values it writes.

    Raises:
        MissingReferenceError: If no item has ``item.item_id``.
        InvalidInputError: If the record fails :func:`validate_item`.
    """
    record = validate_item(item)
    with context.lock:
        if find_item(context.state, record.item_id) is None:
            log.warning("Attempted to update unknown item '%s'", record.item_id)
            raise MissingReferenceError(f"Unknown item id: {record.item_id}")
        items = tuple(record if row.item_id == record.item_id else row for row in context.state.items)
        _commit(context, replace(context.state, items=items))
    log.info("Updated item '%s'", record.item_id)
    return record


def add_customer(context: RuntimeContext, customer: CustomerRow) -> CustomerRow:
    """Append a new customer to the directory.

    Raises:
        BusinessRuleViolation: If the id is already taken.
    """
    record = validate_customer(customer)
    with context.lock:
        if find_customer(context.state, record.customer_id) is not None:
            log.warning("Attempted to add duplicate customer '%s'", record.customer_id)
            raise BusinessRuleViolation(f"Customer '{record.customer_id}' already exists")
        _commit(context, replace(context.state, customers=context.state.customers + (record,)))
    log.info("Added customer '%s' (%s)", record.customer_id, record.name)
    return record


def update_customer(context: RuntimeContext, customer: CustomerRow) -> CustomerRow:
    """Replace the directory record with the same id, balance included.

    Raises:
        MissingReferenceError: If no customer has ``customer.customer_id``.
    """
    record = validate_customer(customer)
    with context.lock:
        if find_customer(context.state, record.customer_id) is None:
            log.warning("Attempted to update unknown customer '%s'", record.customer_id)
            raise MissingReferenceError(f"Unknown customer id: {record.customer_id}")
        customers = tuple(
            record if row.customer_id == record.customer_id else row
            for row in context.state.customers
        )
        _commit(context, replace(context.state, customers=customers))
    log.info("Updated customer '%s'", record.customer_id)
    return record


def upsert_discount(context: RuntimeContext, customer_id: str, item_id: str, percentage: Number) -> DiscountRow:
    """Set the discount percentage for a customer/item pair.

    An existing record for the pair is overwritten in place; otherwise a new
    record is appended. Applying the same upsert twice leaves one record.

    Raises:
        InvalidInputError: If either id is empty or the percentage lies
            outside ``[0, 100]``.
    """
    discount = DiscountRow(
        customer_id=require_identifier(customer_id, "Customer id"),
        item_id=require_identifier(item_id, "Item id"),
        discount_percentage=require_percentage(percentage),
    )
    with context.lock:
        _commit(context, apply_discount_upsert(context.state, discount))
    log.info(
        "Set discount for customer '%s' on item '%s' to %s%%",
        customer_id,
        item_id,
        discount.discount_percentage,
    )
    return discount

"""Data access layer for the wholesale POS ledger.

This module owns the entity records and the master workbook that stores
them. Business rules belong in :mod:`wholesale_pos.core_logic`.

The public API is designed around three responsibilities:

1. Configuration handling: finding and parsing ``config.ini``.
2. Workbook lifecycle: opening, validating, and persisting the Excel file.
3. Slot operations: every entity collection lives in its own worksheet and
   is always read and written as a whole.
"""


from __future__ import annotations

import configparser
import json
import os
from dataclasses import dataclass, replace
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, Mapping, Optional, Sequence, Tuple
from zipfile import BadZipFile

import openpyxl
from openpyxl.styles import Font
from openpyxl.utils.exceptions import InvalidFileException
from openpyxl.workbook import Workbook

from . import log
from .constants import (
    DEFAULT_CURRENCY,
    DEFAULT_LOW_STOCK_THRESHOLD,
    EXPECTED_SCHEMA_VERSION,
    META_SHEET,
    SlotName,
)


CONFIG_FILE_NAME = "config.ini"

SLOT_COLUMNS: Mapping[SlotName, Sequence[str]] = {
    SlotName.ITEMS: ["id", "name", "costPrice", "sellingPrice", "stock", "targetSale"],
    SlotName.CUSTOMERS: ["id", "name", "creditBalance", "phone"],
    SlotName.DISCOUNTS: ["customerId", "itemId", "discountPercentage"],
    SlotName.SALES: ["id", "customerId", "date", "items", "totalAmount"],
    SlotName.PURCHASES: ["id", "itemId", "quantity", "date"],
    SlotName.PAYMENTS: ["id", "customerId", "amount", "date"],
}

META_COLUMNS: Sequence[str] = ["SchemaVersion", "Revision"]

# Errors raised by openpyxl/zipfile when a workbook cannot be read at all.
UNREADABLE_WORKBOOK_ERRORS = (InvalidFileException, BadZipFile, OSError, KeyError)
# Errors raised while converting a single cell or JSON payload.
ROW_CONVERSION_ERRORS = (ValueError, TypeError, InvalidOperation, KeyError)


class SlotFormatError(ValueError):
    """Raised when a worksheet exists but does not hold the expected layout."""


class ConcurrentModificationError(RuntimeError):
    """Raised when the workbook changed on disk since the state was loaded."""


@dataclass(frozen=True)
class ConfigSettings:
    """Typed representation of the ``config.ini`` settings we care about."""

    data_file: Path
    store_name: str
    schema_version: str
    currency: str = DEFAULT_CURRENCY
    low_stock_threshold: int = DEFAULT_LOW_STOCK_THRESHOLD


@dataclass(frozen=True)
class ItemRow:
    """Catalog entry from the ``items`` slot."""

    item_id: str
    name: str
    cost_price: Decimal
    selling_price: Decimal
    stock: int
    target_sale: int


@dataclass(frozen=True)
class CustomerRow:
    """Customer directory entry; a positive balance means the customer owes us."""

    customer_id: str
    name: str
    credit_balance: Decimal
    phone: Optional[str] = None


@dataclass(frozen=True)
class DiscountRow:
    """Discount override for one customer/item pair."""

    customer_id: str
    item_id: str
    discount_percentage: Decimal


@dataclass(frozen=True)
class CartItem:
    """Priced line item.

    ``item_name`` and ``unit_price`` are snapshots taken when the line was
    priced; ``discount`` is an absolute amount per unit.
    """

    item_id: str
    item_name: str
    quantity: int
    unit_price: Decimal
    discount: Decimal


@dataclass(frozen=True)
class SaleRow:
    """Immutable sale record from the ``sales`` slot."""

    sale_id: str
    customer_id: str
    date: str
    items: Tuple[CartItem, ...]
    total_amount: Decimal


@dataclass(frozen=True)
class PurchaseRow:
    """Immutable stock purchase record from the ``purchases`` slot."""

    purchase_id: str
    item_id: str
    quantity: int
    date: str


@dataclass(frozen=True)
class PaymentRow:
    """Immutable customer payment record from the ``payments`` slot."""

    payment_id: str
    customer_id: str
    amount: Decimal
    date: str


@dataclass(frozen=True)
class LedgerState:
    """Whole-state snapshot of every slot.

    Collections are tuples kept in insertion order. ``revision`` is the
    workbook revision this snapshot was loaded at, or last saved as.
    """

    items: Tuple[ItemRow, ...] = ()
    customers: Tuple[CustomerRow, ...] = ()
    discounts: Tuple[DiscountRow, ...] = ()
    sales: Tuple[SaleRow, ...] = ()
    purchases: Tuple[PurchaseRow, ...] = ()
    payments: Tuple[PaymentRow, ...] = ()
    revision: int = 0


def find_config_file(explicit_path: Optional[Path] = None) -> Path:
    """Locate the configuration file that controls how the data layer behaves.

    If the caller provides ``explicit_path`` the value is returned immediately
    without any verification. Otherwise the function walks up from the
    current working directory looking for ``CONFIG_FILE_NAME``.

    Args:
        explicit_path (Path | None): Optional path to use instead of performing
            the upward search.

    Returns:
        Path: The path provided by the caller or the discovered configuration
            file.

    Raises:
        FileNotFoundError: If no parent directory holds ``CONFIG_FILE_NAME``.
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
            configuration data.

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

    ``[System]`` entries are mandatory. The ``[Defaults]`` section is
    optional; missing entries fall back to the package defaults. Relative
    ``DataFile`` values are expanded against ``base_path`` (or the current
    working directory) and resolved.

    Args:
        parser (configparser.ConfigParser): Parsed configuration data.
        base_path (Path | None): Directory used to anchor a relative
            ``DataFile`` entry.

    Returns:
        ConfigSettings: Immutable settings container.

    Raises:
        KeyError: If a required section or option is missing.
        ValueError: If ``LowStockThreshold`` is not an integer.
    """

    try:
        data_file_raw = parser.get("System", "DataFile")
        store_name = parser.get("System", "StoreName")
        schema_version = parser.get("System", "SchemaVersion")
    except (configparser.NoSectionError, configparser.NoOptionError) as exc:
        raise KeyError(f"Missing required configuration entry: {exc}") from exc

    currency = parser.get("Defaults", "Currency", fallback=DEFAULT_CURRENCY)
    low_stock_threshold = parser.getint(
        "Defaults", "LowStockThreshold", fallback=DEFAULT_LOW_STOCK_THRESHOLD)

    data_file_path = Path(data_file_raw)
    if not data_file_path.is_absolute():
        if base_path is None:
            base_path = Path.cwd()
        data_file_path = (base_path / data_file_path).resolve()

    return ConfigSettings(
        data_file=data_file_path,
        store_name=store_name,
        schema_version=schema_version,
        currency=currency,
        low_stock_threshold=low_stock_threshold,
    )


def open_workbook(data_file: Path) -> Workbook:
    """Open the master Excel workbook and return a live ``openpyxl`` workbook.

    Raises:
        FileNotFoundError: If ``data_file`` does not exist after expansion and
            resolution.
    """

    data_file = Path(data_file).expanduser().resolve()
    if not data_file.exists():
        raise FileNotFoundError(f"Workbook not found: {data_file}")

    return openpyxl.load_workbook(data_file)


def save_workbook(workbook: Workbook, destination: Path) -> None:
    """Persist the workbook to ``destination`` as a single file replacement.

    The workbook is first written next to the destination and then moved
    over it, so readers never observe a half-written file. Parent
    directories are created on demand.
    """

    dest = Path(destination).expanduser().resolve()
    dest.parent.mkdir(parents=True, exist_ok=True)
    staging = dest.with_name(f".{dest.name}.tmp")
    workbook.save(staging)
    os.replace(staging, dest)


def build_workbook(state: LedgerState, *, schema_version: str = EXPECTED_SCHEMA_VERSION) -> Workbook:
    """Render a whole :class:`LedgerState` into a fresh workbook.

    One worksheet is created per slot (bold header row of field names) plus
    the ``Meta`` sheet holding the schema version and revision.
    """

    workbook = openpyxl.Workbook()
    if workbook.active and workbook.active.title == "Sheet":
        workbook.remove(workbook.active)

    bold_font = Font(bold=True)
    for slot, columns in SLOT_COLUMNS.items():
        sheet = workbook.create_sheet(title=slot.value)
        _write_header(sheet, columns, bold_font)
        serializer = SLOT_SERIALIZERS[slot]
        for record in getattr(state, slot.value):
            sheet.append(serializer(record))

    meta = workbook.create_sheet(title=META_SHEET)
    _write_header(meta, META_COLUMNS, bold_font)
    meta.append([schema_version, state.revision])
    return workbook


def _write_header(sheet: Any, columns: Sequence[str], font: Font) -> None:
    for column_index, column_name in enumerate(columns, start=1):
        cell = sheet.cell(row=1, column=column_index)
        cell.value = column_name
        cell.font = font


def read_meta(workbook: Workbook) -> Tuple[Optional[str], int]:
    """Return ``(schema_version, revision)`` stored in the ``Meta`` sheet.

    Workbooks without a ``Meta`` sheet report ``(None, 0)``.
    """

    if META_SHEET not in workbook.sheetnames:
        return None, 0
    sheet = workbook[META_SHEET]
    for raw in sheet.iter_rows(min_row=2, max_row=2, values_only=True):
        schema_version = str(raw[0]) if raw[0] is not None else None
        revision = int(raw[1]) if len(raw) > 1 and raw[1] is not None else 0
        return schema_version, revision
    return None, 0


def read_slot(workbook: Workbook, slot: SlotName) -> Tuple[Any, ...]:
    """Read every record of ``slot`` from its worksheet.

    Fully empty rows are skipped.

    Raises:
        SlotFormatError: If the sheet is missing, its header does not match
            :data:`SLOT_COLUMNS`, or any row fails to convert.
    """

    if slot.value not in workbook.sheetnames:
        raise SlotFormatError(f"Missing sheet: {slot.value}")

    sheet = workbook[slot.value]
    expected = list(SLOT_COLUMNS[slot])
    header = [cell.value for cell in sheet[1]][: len(expected)]
    if header != expected:
        raise SlotFormatError(f"Unexpected header in sheet '{slot.value}': {header}")

    deserializer = SLOT_DESERIALIZERS[slot]
    records = []
    for row_idx, raw in enumerate(sheet.iter_rows(min_row=2, values_only=True), start=2):
        if not any(cell is not None for cell in raw):
            continue
        try:
            cells = tuple(raw[: len(expected)])
            cells += (None,) * (len(expected) - len(cells))
            records.append(deserializer(cells))
        except ROW_CONVERSION_ERRORS as exc:
            raise SlotFormatError(
                f"Invalid row {row_idx} in sheet '{slot.value}': {exc}") from exc
    return tuple(records)


def load_state(data_file: Path, *, defaults: Callable[[], LedgerState]) -> LedgerState:
    """Load the whole ledger state from the master workbook.

    An absent or unreadable workbook yields ``defaults()`` entirely. A
    readable workbook is read slot by slot; any slot that is missing or
    malformed falls back to the matching collection of ``defaults()``.

    Args:
        data_file (Path): Location of the master workbook.
        defaults (Callable[[], LedgerState]): Factory for the seed state.

    Returns:
        LedgerState: Loaded state carrying the workbook revision.

    Raises:
        RuntimeError: If the workbook declares a schema version other than
            :data:`EXPECTED_SCHEMA_VERSION`.
    """

    data_file = Path(data_file).expanduser().resolve()
    if not data_file.exists():
        log.warning("Workbook '%s' not found; starting from seed data", data_file)
        return defaults()

    try:
        workbook = open_workbook(data_file)
    except UNREADABLE_WORKBOOK_ERRORS as exc:
        log.warning("Workbook '%s' is unreadable (%s); starting from seed data", data_file, exc)
        return defaults()

    schema_version, revision = read_meta(workbook)
    if schema_version is not None and schema_version != EXPECTED_SCHEMA_VERSION:
        log.error(
            "Workbook schema mismatch: expected %s, found %s",
            EXPECTED_SCHEMA_VERSION,
            schema_version,
        )
        raise RuntimeError(
            "Workbook schema mismatch: expected %s, found %s"
            % (EXPECTED_SCHEMA_VERSION, schema_version)
        )

    fallback: Optional[LedgerState] = None
    slots: Dict[str, Tuple[Any, ...]] = {}
    for slot in SlotName:
        try:
            slots[slot.value] = read_slot(workbook, slot)
        except SlotFormatError as exc:
            log.warning("Slot '%s' unusable (%s); using default records", slot.value, exc)
            if fallback is None:
                fallback = defaults()
            slots[slot.value] = getattr(fallback, slot.value)

    state = LedgerState(revision=revision, **slots)
    log.debug(
        "Loaded ledger state revision %d (%d items, %d customers, %d sales)",
        revision,
        len(state.items),
        len(state.customers),
        len(state.sales),
    )
    return state


def peek_revision(data_file: Path) -> int:
    """Return the revision currently stored on disk, or ``0`` if none is readable."""

    data_file = Path(data_file).expanduser().resolve()
    if not data_file.exists():
        return 0
    try:
        workbook = openpyxl.load_workbook(data_file, read_only=True)
    except UNREADABLE_WORKBOOK_ERRORS:
        return 0
    try:
        _, revision = read_meta(workbook)
    finally:
        workbook.close()
    return revision


def save_state(state: LedgerState, data_file: Path) -> LedgerState:
    """Write the whole state to disk and return it with the bumped revision.

    The write only happens when the on-disk revision still equals
    ``state.revision``; otherwise another writer saved in between.

    Raises:
        ConcurrentModificationError: On a revision mismatch.
    """

    on_disk = peek_revision(data_file)
    if on_disk != state.revision:
        log.error(
            "Refusing to save '%s': loaded revision %d but disk holds %d",
            data_file,
            state.revision,
            on_disk,
        )
        raise ConcurrentModificationError(
            f"Workbook changed on disk (expected revision {state.revision}, found {on_disk})"
        )

    saved = replace(state, revision=state.revision + 1)
    save_workbook(build_workbook(saved), data_file)
    return saved


def _money(raw: object) -> Decimal:
    return Decimal(str(raw)) if raw is not None else Decimal("0")


def _integer(raw: object) -> int:
    if raw is None:
        return 0
    value = Decimal(str(raw))
    if value != value.to_integral_value():
        raise ValueError(f"Expected an integer, got {raw!r}")
    return int(value)


def _required_text(raw: object) -> str:
    if raw is None or str(raw) == "":
        raise ValueError("Missing required text value")
    return str(raw)


def serialize_item(record: ItemRow) -> list[object]:
    """Arrange an item as ``[id, name, costPrice, sellingPrice, stock, targetSale]``.

    Money cells hold decimal text, never Excel numbers, so values reload
    at full precision.
    """

    return [
        record.item_id,
        record.name,
        str(record.cost_price),
        str(record.selling_price),
        record.stock,
        record.target_sale,
    ]


def serialize_customer(record: CustomerRow) -> list[object]:
    """Arrange a customer as ``[id, name, creditBalance, phone]``."""

    return [record.customer_id, record.name, str(record.credit_balance), record.phone]


def serialize_discount(record: DiscountRow) -> list[object]:
    return [record.customer_id, record.item_id, str(record.discount_percentage)]


def serialize_cart_items(items: Iterable[CartItem]) -> str:
    """Encode sale lines as a JSON array using the persisted field names.

    Money is written as decimal strings so no precision is lost.
    """

    return json.dumps(
        [
            {
                "itemId": line.item_id,
                "quantity": line.quantity,
                "unitPrice": str(line.unit_price),
                "discount": str(line.discount),
                "itemName": line.item_name,
            }
            for line in items
        ]
    )


def serialize_sale(record: SaleRow) -> list[object]:
    return [
        record.sale_id,
        record.customer_id,
        record.date,
        serialize_cart_items(record.items),
        str(record.total_amount),
    ]


def serialize_purchase(record: PurchaseRow) -> list[object]:
    return [record.purchase_id, record.item_id, record.quantity, record.date]


def serialize_payment(record: PaymentRow) -> list[object]:
    return [record.payment_id, record.customer_id, str(record.amount), record.date]


def deserialize_item(raw_row: Sequence[object]) -> ItemRow:
    """Convert a raw ``items`` row into an :class:`ItemRow`."""

    item_id, name, cost_raw, price_raw, stock_raw, target_raw = raw_row
    return ItemRow(
        item_id=_required_text(item_id),
        name=str(name) if name is not None else "",
        cost_price=_money(cost_raw),
        selling_price=_money(price_raw),
        stock=_integer(stock_raw),
        target_sale=_integer(target_raw),
    )


def deserialize_customer(raw_row: Sequence[object]) -> CustomerRow:
    """Convert a raw ``customers`` row into a :class:`CustomerRow`.

    Blank phone cells stay ``None``; phone numbers Excel stored as numbers
    are coerced back to text.
    """

    customer_id, name, balance_raw, phone = raw_row
    return CustomerRow(
        customer_id=_required_text(customer_id),
        name=str(name) if name is not None else "",
        credit_balance=_money(balance_raw),
        phone=str(phone) if phone not in (None, "") else None,
    )


def deserialize_discount(raw_row: Sequence[object]) -> DiscountRow:
    customer_id, item_id, percentage_raw = raw_row
    return DiscountRow(
        customer_id=_required_text(customer_id),
        item_id=_required_text(item_id),
        discount_percentage=_money(percentage_raw),
    )


def deserialize_cart_items(payload: object) -> Tuple[CartItem, ...]:
    """Decode the JSON ``items`` cell of a sale row."""

    if payload is None:
        raise ValueError("Sale row has no line items")
    decoded = json.loads(str(payload))
    if not isinstance(decoded, list):
        raise ValueError("Sale line items must be a JSON array")
    return tuple(
        CartItem(
            item_id=_required_text(entry["itemId"]),
            item_name=str(entry.get("itemName", "")),
            quantity=_integer(entry["quantity"]),
            unit_price=_money(entry["unitPrice"]),
            discount=_money(entry.get("discount")),
        )
        for entry in decoded
    )


def deserialize_sale(raw_row: Sequence[object]) -> SaleRow:
    sale_id, customer_id, date, items_raw, total_raw = raw_row
    return SaleRow(
        sale_id=_required_text(sale_id),
        customer_id=_required_text(customer_id),
        date=_required_text(date),
        items=deserialize_cart_items(items_raw),
        total_amount=_money(total_raw),
    )


def deserialize_purchase(raw_row: Sequence[object]) -> PurchaseRow:
    purchase_id, item_id, quantity_raw, date = raw_row
    return PurchaseRow(
        purchase_id=_required_text(purchase_id),
        item_id=_required_text(item_id),
        quantity=_integer(quantity_raw),
        date=_required_text(date),
    )


def deserialize_payment(raw_row: Sequence[object]) -> PaymentRow:
    payment_id, customer_id, amount_raw, date = raw_row
    return PaymentRow(
        payment_id=_required_text(payment_id),
        customer_id=_required_text(customer_id),
        amount=_money(amount_raw),
        date=_required_text(date),
    )


SLOT_SERIALIZERS: Mapping[SlotName, Callable[[Any], list[object]]] = {
    SlotName.ITEMS: serialize_item,
    SlotName.CUSTOMERS: serialize_customer,
    SlotName.DISCOUNTS: serialize_discount,
    SlotName.SALES: serialize_sale,
    SlotName.PURCHASES: serialize_purchase,
    SlotName.PAYMENTS: serialize_payment,
}

SLOT_DESERIALIZERS: Mapping[SlotName, Callable[[Sequence[object]], Any]] = {
    SlotName.ITEMS: deserialize_item,
    SlotName.CUSTOMERS: deserialize_customer,
    SlotName.DISCOUNTS: deserialize_discount,
    SlotName.SALES: deserialize_sale,
    SlotName.PURCHASES: deserialize_purchase,
    SlotName.PAYMENTS: deserialize_payment,
}

"""Seed data and bootstrap script for the wholesale POS master workbook.

The module doubles as a script (``pos-setup``) and as a library used by the
ledger when no workbook exists yet, and by tests. Shared helpers keep the
seed data consistent regardless of the execution path.
"""

from __future__ import annotations

import argparse
import sys
from decimal import Decimal
from pathlib import Path
from typing import Sequence, Tuple

from . import data_manager, log
from .data_manager import CustomerRow, DiscountRow, ItemRow, LedgerState

CONFIG_FILE = "config.ini"

# (id, name, costPrice, sellingPrice, stock, targetSale)
SEED_ITEMS: Sequence[Tuple[str, str, int, int, int, int]] = (
    ("item-1", "Premium Grade A Rice (50kg)", 2000, 2500, 500, 400),
    ("item-2", "Sunflower Oil (15L Tin)", 1500, 1800, 300, 250),
    ("item-3", "Whole Wheat Flour (25kg)", 800, 1000, 800, 600),
    ("item-4", "Refined Sugar (50kg Sack)", 2200, 2600, 400, 300),
    ("item-5", "Toor Dal (30kg Bag)", 2800, 3200, 250, 200),
    ("item-6", "Basmati Rice (25kg)", 3000, 3500, 200, 150),
    ("item-7", "Groundnut Oil (15L Tin)", 2100, 2400, 280, 220),
    ("item-8", "Tea Powder (10kg Pack)", 1800, 2200, 150, 100),
    ("item-9", "Cashew Nuts (10kg Box)", 6000, 7000, 100, 80),
    ("item-10", "Ghee (5L Tin)", 2500, 2900, 180, 150),
)

SEED_CUSTOMER_COUNT = 50


def seed_items() -> Tuple[ItemRow, ...]:
    return tuple(
        ItemRow(
            item_id=item_id,
            name=name,
            cost_price=Decimal(cost),
            selling_price=Decimal(price),
            stock=stock,
            target_sale=target,
        )
        for item_id, name, cost, price, stock, target in SEED_ITEMS
    )


def seed_customers(count: int = SEED_CUSTOMER_COUNT) -> Tuple[CustomerRow, ...]:
    return tuple(
        CustomerRow(
            customer_id=f"cust-{number}",
            name=f"Retail Store #{number}",
            credit_balance=Decimal("0"),
            phone=f"9230012345{number:02d}",
        )
        for number in range(1, count + 1)
    )


def seed_discount_percentage(customer_id: str, item_id: str) -> Decimal:
    """Return the deterministic 1-10% seed discount for a customer/item pair.

    The percentage is derived from the sixth character of each id, so the
    same pair always receives the same value.
    """

    customer_digit = ord(customer_id[5]) - ord("0")
    item_digit = ord(item_id[5]) - ord("0")
    return Decimal(((customer_digit + item_digit) % 10) + 1)


def seed_discounts(
    customers: Sequence[CustomerRow],
    items: Sequence[ItemRow],
) -> Tuple[DiscountRow, ...]:
    return tuple(
        DiscountRow(
            customer_id=customer.customer_id,
            item_id=item.item_id,
            discount_percentage=seed_discount_percentage(customer.customer_id, item.item_id),
        )
        for customer in customers
        for item in items
    )


def build_seed_state() -> LedgerState:
    """Return the default state: seed catalog, customers and discounts, empty logs."""

    items = seed_items()
    customers = seed_customers()
    return LedgerState(
        items=items,
        customers=customers,
        discounts=seed_discounts(customers, items),
    )


def create_master_workbook(
    destination: Path,
    *,
    state: LedgerState | None = None,
    overwrite: bool = False,
) -> Path:
    """Create the master workbook at ``destination``.

    ``state`` defaults to :func:`build_seed_state`. When ``overwrite`` is
    ``False`` (the default) this function raises ``FileExistsError`` if the
    target already exists.
    """

    destination = Path(destination).expanduser().resolve()
    if destination.exists() and not overwrite:
        raise FileExistsError(
            f"Refusing to overwrite existing master workbook: {destination}"
        )

    workbook = data_manager.build_workbook(state if state is not None else build_seed_state())
    data_manager.save_workbook(workbook, destination)
    log.info("Created master workbook '%s'", destination)
    return destination


def run_from_config(config_path: Path, *, overwrite: bool = False) -> Path:
    """Create the workbook named by ``DataFile`` in ``config_path``."""

    resolved = Path(config_path).expanduser().resolve()
    parser = data_manager.read_config(resolved)
    settings = data_manager.parse_settings(parser, base_path=resolved.parent)
    return create_master_workbook(settings.data_file, overwrite=overwrite)


def parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    """Parse CLI arguments for the setup script."""

    parser = argparse.ArgumentParser(prog="pos-setup", description="Initialize the wholesale POS data file")
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
    """Entry point for the setup script."""

    args = parse_args(argv)
    config_path = Path(args.config).expanduser().resolve()

    print("--- Wholesale POS Setup ---")
    print(f"Using configuration: {config_path}")

    try:
        output_path = run_from_config(config_path, overwrite=args.force)
    except (FileNotFoundError, KeyError) as exc:
        print(f"\n[ERROR] {exc}")
        return 1
    except FileExistsError as exc:
        print(f"\n[ERROR] {exc}")
        print("Run with --force to overwrite the existing file if appropriate.")
        return 1
    except (PermissionError, OSError) as exc:
        print(f"\n[ERROR] Unable to write workbook: {exc}")
        return 1

    print(f"\n[SUCCESS] Created master workbook at '{output_path}'.")
    return 0


if __name__ == "__main__":  # pragma: no cover - exercised via manual runs
    sys.exit(main())

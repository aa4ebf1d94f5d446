"""Unit tests describing the CLI presentation layer contract."""

from __future__ import annotations

import argparse
from decimal import Decimal
from pathlib import Path
from typing import Iterable
from unittest.mock import Mock

import pytest

from wholesale_pos import cli, core_logic, data_manager
from wholesale_pos.data_manager import CustomerRow, ItemRow, LedgerState


WRITE_COMMANDS = {
    "add-item",
    "update-item",
    "add-customer",
    "update-customer",
    "set-discount",
    "sale",
    "purchase",
    "payment",
}

READ_COMMANDS = {
    "stock",
    "profit",
    "item-sales",
    "targets",
    "credit",
    "sales-log",
    "purchases-log",
    "reconcile",
}


def _registered_choices(parser: argparse.ArgumentParser) -> Iterable[str]:
    for action in parser._actions:
        if isinstance(action, argparse._SubParsersAction):
            return action.choices.keys()
    return ()


def _parse(register, argv):
    parser = argparse.ArgumentParser(prog="cli")
    subparsers = parser.add_subparsers(dest="command")
    spec = register(subparsers)
    spec.register(subparsers)
    return spec, parser.parse_args(argv)


def _load(path: Path) -> LedgerState:
    return data_manager.load_state(path, defaults=LedgerState)


# ---------------------------------------------------------------------------
# Parser construction
# ---------------------------------------------------------------------------


def test_build_parser_sets_program_metadata():
    """build_parser should set user-facing program metadata."""

    parser = cli.build_parser()
    assert isinstance(parser, argparse.ArgumentParser)
    assert parser.prog == "pos-cli"
    assert "POS" in (parser.description or "")


def test_configure_subcommands_registers_every_command(cli_parser):
    command_table = cli.configure_subcommands(cli_parser)

    assert set(command_table) == WRITE_COMMANDS | READ_COMMANDS
    assert set(_registered_choices(cli_parser)) == WRITE_COMMANDS | READ_COMMANDS


def test_only_write_commands_mutate(subparsers_action):
    write_specs = cli.register_write_commands(subparsers_action)
    read_specs = cli.register_read_commands(subparsers_action)

    assert set(write_specs) == WRITE_COMMANDS
    assert set(read_specs) == READ_COMMANDS
    assert all(spec.mutates for spec in write_specs.values())
    assert not any(spec.mutates for spec in read_specs.values())


def test_build_command_table_indexes_by_name(command_spec_iterable):
    table = cli.build_command_table(command_spec_iterable)
    assert list(table) == ["alpha", "beta", "gamma"]


def test_build_command_table_rejects_duplicates(command_spec_iterable):
    with pytest.raises(ValueError):
        cli.build_command_table(command_spec_iterable + command_spec_iterable[:1])


def test_dispatch_command_unknown_name(context, command_spec_iterable):
    table = cli.build_command_table(command_spec_iterable)
    with pytest.raises(KeyError):
        cli.dispatch_command(context, argparse.Namespace(command="delta"), table)


def test_dispatch_command_calls_executor(context):
    execute = Mock(return_value=0)
    spec = cli.CommandSpec("alpha", "help", Mock(), execute)
    args = argparse.Namespace(command="alpha")

    assert cli.dispatch_command(context, args, {"alpha": spec}) == 0
    execute.assert_called_once_with(context, args)


# ---------------------------------------------------------------------------
# Argument types and registrations
# ---------------------------------------------------------------------------


def test_cart_line_arg_parses_item_and_quantity():
    assert cli.cart_line_arg("item-1:3") == ("item-1", 3)


@pytest.mark.parametrize("raw", ["item-1", ":3", "item-1:three"])
def test_cart_line_arg_rejects_malformed(raw):
    with pytest.raises(argparse.ArgumentTypeError):
        cli.cart_line_arg(raw)


def test_decimal_arg_rejects_text():
    assert cli.decimal_arg("12.50") == Decimal("12.50")
    with pytest.raises(argparse.ArgumentTypeError):
        cli.decimal_arg("twelve")


def test_register_sale_command_collects_repeated_lines():
    spec, namespace = _parse(
        cli.register_sale_command,
        ["sale", "--customer-id", "cust-1", "--line", "item-1:2", "--line", "item-3:5"],
    )

    assert spec.name == "sale"
    assert namespace.customer_id == "cust-1"
    assert namespace.lines == [("item-1", 2), ("item-3", 5)]


def test_register_add_item_command_configures_arguments():
    spec, namespace = _parse(
        cli.register_add_item_command,
        [
            "add-item",
            "--item-id",
            "item-11",
            "--name",
            "Salt (25kg)",
            "--cost-price",
            "300",
            "--selling-price",
            "360.50",
            "--stock",
            "40",
            "--target-sale",
            "30",
        ],
    )

    item = cli.translate_add_item(namespace)
    assert spec.mutates
    assert item == ItemRow("item-11", "Salt (25kg)", Decimal("300"), Decimal("360.50"), 40, 30)


def test_update_item_translation_keeps_unspecified_fields(small_state):
    _, namespace = _parse(cli.register_update_item_command, ["update-item", "--item-id", "A", "--stock", "4"])

    updated = cli.translate_update_item(namespace, small_state.items[0])

    assert updated.stock == 4
    assert updated.selling_price == Decimal("150")
    assert updated.name == "Item A"


def test_add_customer_translation_defaults_balance_to_zero():
    _, namespace = _parse(
        cli.register_add_customer_command,
        ["add-customer", "--customer-id", "cust-51", "--name", "Corner Shop"],
    )

    assert cli.translate_add_customer(namespace) == CustomerRow("cust-51", "Corner Shop", Decimal("0"), None)


def test_update_customer_translation_overrides_phone(small_state):
    _, namespace = _parse(
        cli.register_update_customer_command,
        ["update-customer", "--customer-id", "C", "--phone", "555"],
    )

    updated = cli.translate_update_customer(namespace, small_state.customers[0])

    assert updated.phone == "555"
    assert updated.name == "Customer C"


def test_register_payment_command_parses_amount():
    _, namespace = _parse(
        cli.register_payment_command,
        ["payment", "--customer-id", "C", "--amount", "200.25"],
    )
    assert namespace.amount == Decimal("200.25")


# ---------------------------------------------------------------------------
# Error handling
# ---------------------------------------------------------------------------


@pytest.mark.parametrize(
    ("error", "code"),
    [
        (core_logic.InsufficientStockError("short"), 2),
        (core_logic.InvalidInputError("bad"), 2),
        (core_logic.MissingReferenceError("who"), 2),
        (FileNotFoundError("config.ini"), 3),
        (data_manager.ConcurrentModificationError("stale"), 4),
        (RuntimeError("boom"), 1),
    ],
)
def test_handle_cli_error_exit_codes(error, code):
    assert cli.handle_cli_error(error) == code


# ---------------------------------------------------------------------------
# End-to-end through main()
# ---------------------------------------------------------------------------


def test_main_sale_prints_invoice_and_persists(small_config, capsys):
    exit_code = cli.main(
        ["--config", str(small_config.config_path), "sale", "--customer-id", "C", "--line", "A:3"]
    )

    assert exit_code == 0
    output = capsys.readouterr().out
    assert "Sales Invoice" in output
    assert "RS 450.00" in output
    state = _load(small_config.workbook_path)
    assert state.items[0].stock == 7
    assert state.customers[0].credit_balance == Decimal("450")
    assert state.revision == 1


def test_main_rejects_oversell_without_writing(small_config):
    exit_code = cli.main(
        ["--config", str(small_config.config_path), "sale", "--customer-id", "C", "--line", "A:11"]
    )

    assert exit_code == 2
    assert _load(small_config.workbook_path).revision == 0


def test_main_purchase_and_payment(small_config, capsys):
    config = str(small_config.config_path)

    assert cli.main(["--config", config, "purchase", "--item-id", "A", "--quantity", "20"]) == 0
    assert cli.main(["--config", config, "payment", "--customer-id", "C", "--amount", "50"]) == 0

    output = capsys.readouterr().out
    assert "stock 30" in output
    assert "balance RS -50.00" in output
    state = _load(small_config.workbook_path)
    assert state.items[0].stock == 30
    assert state.revision == 2


def test_main_set_discount_requires_known_item(small_config):
    exit_code = cli.main(
        [
            "--config",
            str(small_config.config_path),
            "set-discount",
            "--customer-id",
            "C",
            "--item-id",
            "Z",
            "--percentage",
            "5",
        ]
    )
    assert exit_code == 2


def test_main_read_commands_do_not_persist(small_config, capsys):
    config = str(small_config.config_path)

    for command in sorted(READ_COMMANDS):
        assert cli.main(["--config", config, command]) == 0

    output = capsys.readouterr().out
    assert "Item A" in output
    assert "All customer balances match" in output
    assert _load(small_config.workbook_path).revision == 0


def test_main_reconcile_reports_drift(config_factory, small_state, capsys):
    customer = CustomerRow("C", "Customer C", Decimal("99"), None)
    bundle = config_factory(state=LedgerState(items=small_state.items, customers=(customer,)))

    assert cli.main(["--config", str(bundle.config_path), "reconcile"]) == 5
    assert "RS 99.00" in capsys.readouterr().out


def test_main_missing_config_exit_code(tmp_path):
    assert cli.main(["--config", str(tmp_path / "absent.ini"), "stock"]) == 3


def test_main_reports_concurrent_modification(small_config, monkeypatch):
    monkeypatch.setattr(
        core_logic,
        "persist_context",
        Mock(side_effect=data_manager.ConcurrentModificationError("stale")),
    )

    exit_code = cli.main(["--config", str(small_config.config_path), "purchase", "--item-id", "A", "--quantity", "1"])

    assert exit_code == 4

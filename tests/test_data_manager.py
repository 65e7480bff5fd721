"""Unit tests documenting the expected behavior of the data access layer."""

from __future__ import annotations

import configparser
import json
from decimal import Decimal
from pathlib import Path

import openpyxl
from openpyxl.workbook import Workbook as OpenpyxlWorkbook
import pytest

from dealer_dms import constants, data_manager  # noqa: E402


def _sample_snapshot() -> data_manager.StoreSnapshot:
    history = data_manager.HistoryEntry("tx_1", "2025-03-14", "tradein", Decimal("20000.50"))
    return data_manager.StoreSnapshot(
        discount_rule=data_manager.DiscountRule(Decimal("45000"), "Free detailing"),
        session=data_manager.Session("alex", "sales"),
        vehicles=(
            data_manager.VehicleRecord("veh_1", "VIN-1", "Toyota", "Camry", 2024, "family", "new", 0, Decimal("40000.50"), 2),
            data_manager.VehicleRecord("veh_2", "TRADE-ABC", "Kia", "Unknown", 2025, "family", "trade-in", 91000, Decimal("20000"), 1),
        ),
        customers=(
            data_manager.CustomerRecord(
                customer_id="cust_1",
                license="DL1234567",
                first="Amina",
                middle="K",
                last="Hassan",
                address="123 Main St, Columbia, SC",
                phone1="+1 555 111 2222",
                phone2="+1 555 999 0000",
                credit_score=720,
                tx_history=(history,),
            ),
            data_manager.CustomerRecord(customer_id="cust_2", license="DL7654321", first="Zaid", last="Mohamed"),
        ),
        transactions=(
            data_manager.TransactionRecord(
                transaction_id="tx_1",
                transaction_type="tradein",
                date="2025-03-14",
                customer_id="cust_1",
                salesperson="alex",
                vehicle_vin="VIN-1",
                vehicle_price_usd=Decimal("40000.50"),
                trade_in_value_usd=Decimal("20000"),
                final_purchase_usd=Decimal("20000.50"),
                invoice_number="INV-M8ABC",
                trade_in=data_manager.TradeInDetails("Kia", "", None, 91000, "dent", Decimal("20000")),
            ),
        ),
        invoices={"tx_1": "TEST MOTORS\nINVOICE\nFinal purchase:      $20,000.50"},
    )


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------


def test_find_config_file_respects_explicit_path(config_file: Path):
    """Supplying an explicit path should be treated as the winning answer."""

    result = data_manager.find_config_file(config_file)
    assert result == config_file


def test_find_config_file_discovers_in_parent_directories(tmp_path, monkeypatch):
    """Auto-discovery should walk up from the working directory."""

    config_file = tmp_path / "config.ini"
    config_file.write_text("[System]\nDataFile=dealership.xlsx")
    nested = tmp_path / "a" / "b"
    nested.mkdir(parents=True)
    monkeypatch.chdir(nested)

    result = data_manager.find_config_file()
    assert result.resolve() == config_file.resolve()


def test_find_config_file_raises_when_missing(tmp_path, monkeypatch):
    """Absent configuration should surface a clear FileNotFoundError."""

    isolated = tmp_path / "isolated"
    isolated.mkdir()
    monkeypatch.chdir(isolated)
    monkeypatch.setattr(data_manager, "CONFIG_FILE_NAME", "dealer-test-config-that-does-not-exist.ini")
    with pytest.raises(FileNotFoundError):
        data_manager.find_config_file()


def test_read_config_loads_sections(config_file: Path):
    """read_config should return a populated ConfigParser."""

    parser = data_manager.read_config(config_file)
    assert parser.get("System", "DealershipName") == "Test Motors"
    assert parser.get("Defaults", "DiscountThresholdUSD") == "50000"


def test_read_config_missing_file_raises(tmp_path):
    """Missing files should propagate a FileNotFoundError."""

    with pytest.raises(FileNotFoundError):
        data_manager.read_config(tmp_path / "not_there.ini")


def test_parse_settings_resolves_relative_paths(config_factory):
    """Relative DataFile entries should be anchored to the config location."""

    bundle = config_factory(make_relative=True, threshold="30000", perk_text="Free mats")
    parser = data_manager.read_config(bundle.config_path)
    settings = data_manager.parse_settings(parser, base_path=bundle.config_path.parent)

    assert settings.data_file == (bundle.config_path.parent / bundle.workbook_path.name).resolve()
    assert settings.dealership_name == "Test Motors"
    assert settings.discount_threshold_usd == Decimal("30000")
    assert settings.discount_perk_text == "Free mats"


def test_parse_settings_defaults_section_is_optional(tmp_path):
    parser = configparser.ConfigParser(interpolation=None)
    parser.read_string("[System]\nDataFile = d.xlsx\nDealershipName = Lot\nSchemaVersion = 1.0.0\n")

    settings = data_manager.parse_settings(parser, base_path=tmp_path)

    assert data_manager.default_discount_rule(settings) == data_manager.default_discount_rule()


def test_parse_settings_requires_expected_sections(tmp_path):
    """Missing keys should result in a descriptive KeyError."""

    parser = configparser.ConfigParser()
    parser.read_string("[Other]\nvalue=1")
    with pytest.raises(KeyError):
        data_manager.parse_settings(parser, base_path=tmp_path)


def test_parse_settings_rejects_negative_threshold(tmp_path):
    parser = configparser.ConfigParser(interpolation=None)
    parser.read_string(
        "[System]\nDataFile = d.xlsx\nDealershipName = Lot\nSchemaVersion = 1.0.0\n"
        "[Defaults]\nDiscountThresholdUSD = -10\n"
    )
    with pytest.raises(ValueError):
        data_manager.parse_settings(parser, base_path=tmp_path)


# ---------------------------------------------------------------------------
# Field coercion and snapshot documents
# ---------------------------------------------------------------------------


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("32000", Decimal("32000")),
        (" 12.50 ", Decimal("12.50")),
        (7, Decimal("7")),
        (0.1, Decimal("0.1")),
        (Decimal("3"), Decimal("3")),
        ("", None),
        (None, None),
        (True, None),
        ("abc", None),
        ("Infinity", None),
        (float("nan"), None),
    ],
)
def test_parse_money(raw, expected):
    assert data_manager.parse_money(raw) == expected


def test_vehicle_from_dict_defaults_malformed_fields():
    """Malformed fields default individually instead of rejecting the record."""

    record = data_manager.vehicle_from_dict({"vin": " VIN-9 ", "year": "not a year", "price": None, "stock": -4})

    assert record == data_manager.VehicleRecord(vehicle_id="", vin="VIN-9", stock=0)


@pytest.mark.parametrize(
    "builder, raw",
    [
        (data_manager.vehicle_from_dict, {"make": "Toyota"}),
        (data_manager.customer_from_dict, {"first": "Amina", "license": "  "}),
        (data_manager.transaction_from_dict, {"type": "purchase"}),
        (data_manager.vehicle_from_dict, ["not", "a", "mapping"]),
    ],
)
def test_records_without_natural_key_are_rejected(builder, raw):
    assert builder(raw) is None


def test_snapshot_document_round_trip():
    """snapshot_to_dict and snapshot_from_dict should be inverses."""

    snapshot = _sample_snapshot()
    document = json.loads(data_manager.dump_json_document(data_manager.snapshot_to_dict(snapshot)))

    assert document["settings"]["discountRule"] == {"thresholdUSD": "45000", "perkText": "Free detailing"}
    assert document["transactions"][0]["vehicleVinBuy"] == "VIN-1"
    assert data_manager.snapshot_from_dict(document) == snapshot


def test_snapshot_from_dict_tolerates_missing_collections():
    snapshot = data_manager.snapshot_from_dict({"invoices": {"tx": 5, "ok": "text"}})

    assert snapshot.vehicles == () and snapshot.customers == () and snapshot.transactions == ()
    assert snapshot.invoices == {"ok": "text"}
    assert snapshot.discount_rule == data_manager.default_discount_rule()


@pytest.mark.parametrize("text", ["", "{", "[1, 2]", "null"])
def test_parse_backup_document_rejects_non_objects(text):
    with pytest.raises(ValueError):
        data_manager.parse_backup_document(text)


# ---------------------------------------------------------------------------
# Workbook lifecycle
# ---------------------------------------------------------------------------


def test_create_master_workbook_lays_out_sheets(workbook_factory):
    """A fresh workbook should hold every sheet with its header row."""

    workbook = data_manager.open_workbook(workbook_factory())

    assert isinstance(workbook, OpenpyxlWorkbook)
    assert workbook.sheetnames == [member.value for member in constants.SheetName]
    headers = [cell.value for cell in workbook[constants.SheetName.VEHICLES.value][1]]
    assert headers == list(data_manager.VEHICLE_COLUMNS)


def test_open_workbook_missing_file_raises(tmp_path):
    """Missing workbook files should yield FileNotFoundError."""

    with pytest.raises(FileNotFoundError):
        data_manager.open_workbook(tmp_path / "missing.xlsx")


def test_save_workbook_replaces_destination_without_leftovers(workbook_factory):
    """save_workbook should persist changes and leave no temporary files behind."""

    path = workbook_factory()
    workbook = data_manager.open_workbook(path)
    workbook[constants.SheetName.SETTINGS.value].append(["Key", "Value"])
    data_manager.save_workbook(workbook, path)

    reloaded = openpyxl.load_workbook(path)
    rows = list(reloaded[constants.SheetName.SETTINGS.value].iter_rows(min_row=2, values_only=True))
    assert ("Key", "Value") in rows
    assert sorted(entry.name for entry in path.parent.iterdir()) == [path.name]


def test_save_workbook_failure_keeps_original(workbook_factory, monkeypatch):
    """A failed write must not corrupt or remove the existing workbook."""

    path = workbook_factory()
    original_bytes = path.read_bytes()
    workbook = data_manager.open_workbook(path)

    def _fail(self, filename):
        raise OSError("disk full")

    monkeypatch.setattr(OpenpyxlWorkbook, "save", _fail)
    with pytest.raises(OSError):
        data_manager.save_workbook(workbook, path)

    assert path.read_bytes() == original_bytes
    assert sorted(entry.name for entry in path.parent.iterdir()) == [path.name]


def test_iter_sheet_rows_skips_blank_rows_and_missing_sheets(workbook_factory):
    path = workbook_factory()
    workbook = data_manager.open_workbook(path)
    sheet = workbook[constants.SheetName.INVOICES.value]
    sheet.append([None, None])
    sheet.append(["tx_1", "text"])

    rows = list(data_manager.iter_sheet_rows(workbook, constants.SheetName.INVOICES.value))

    assert rows == [{"TransactionID": "tx_1", "InvoiceText": "text"}]
    assert list(data_manager.iter_sheet_rows(workbook, "Nope")) == []


# ---------------------------------------------------------------------------
# Storage backends
# ---------------------------------------------------------------------------


def test_workbook_storage_missing_file_loads_none(tmp_path):
    storage = data_manager.WorkbookStorage(tmp_path / "absent.xlsx")
    assert storage.load() is None


def test_workbook_storage_round_trip(tmp_path):
    """Saving then loading a workbook should reproduce the snapshot."""

    storage = data_manager.WorkbookStorage(tmp_path / "store" / "dealership.xlsx")
    snapshot = _sample_snapshot()

    storage.save(snapshot)
    loaded = storage.load()

    assert loaded == snapshot


def test_workbook_storage_invalid_rule_falls_back(tmp_path):
    """A corrupt discount rule in the workbook loads as the default rule."""

    path = tmp_path / "dealership.xlsx"
    storage = data_manager.WorkbookStorage(path)
    storage.save(_sample_snapshot())
    workbook = data_manager.open_workbook(path)
    settings_sheet = workbook[constants.SheetName.SETTINGS.value]
    settings_sheet.cell(row=2, column=2).value = "not money"
    data_manager.save_workbook(workbook, path)

    loaded = storage.load()

    assert loaded.discount_rule == data_manager.default_discount_rule()
    assert len(loaded.vehicles) == 2


def test_workbook_storage_tolerates_missing_sheets(tmp_path):
    path = tmp_path / "partial.xlsx"
    data_manager.save_workbook(
        data_manager.new_workbook({constants.SheetName.VEHICLES.value: list(data_manager.VEHICLE_COLUMNS)}),
        path,
    )

    loaded = data_manager.WorkbookStorage(path).load()

    assert loaded == data_manager.empty_snapshot()


def test_memory_storage_counts_saves():
    storage = data_manager.MemoryStorage()
    snapshot = data_manager.empty_snapshot()

    storage.save(snapshot)

    assert storage.load() is snapshot
    assert storage.save_count == 1

"""Tests for ImportService: read, detect, map, number."""

from datetime import date
from decimal import Decimal

import pytest

from ledger_ingestion import ImportService, Institution
from ledger_ingestion.mapping import FieldMapping
from ledger_kernel.exceptions import FieldMappingError, UnsupportedSourceError

FIDELITY_EXPORT = """\

Brokerage

Run Date,Action,Symbol,Description,Type,Quantity,Price ($),Amount ($),Cash Balance ($),Settlement Date
03/04/2024,YOU BOUGHT SPDR S&P500 ETF (SPY) (Cash),SPY,SPDR S&P500 ETF,Cash,4,504.81,-2019.24,,03/06/2024
03/04/2024,,,No Description,Cash,0,,2019.24,46175.80,
03/05/2024,ELECTRONIC FUNDS TRANSFER RECEIVED (Cash),,No Description,Cash,0,,52264,98439.80,


"The data and information in this spreadsheet is provided to you solely for your use."
"Date downloaded 03/10/2024 4:12 pm"
"""


@pytest.fixture
def service():
    return ImportService()


@pytest.fixture
def fidelity_csv(tmp_path):
    path = tmp_path / "History_for_Account.csv"
    path.write_text(FIDELITY_EXPORT, encoding="utf-8")
    return path


class TestImportFile:
    def test_fidelity_export(self, service, fidelity_csv):
        result = service.import_file(fidelity_csv, "csv")

        assert result.institution.institution == Institution.FIDELITY
        assert result.mapping.date == "Run Date"
        assert [r.global_ordinal for r in result.rows] == [0, 1, 2]
        assert [r.file_ordinal for r in result.rows] == [1, 2, 3]
        assert result.dropped_records == (4, 5)
        assert result.total_records == 5

        buy, settle, transfer = (r.mapped for r in result.rows)
        assert buy.date == date(2024, 3, 4)
        assert buy.amount == Decimal("-2019.24")
        assert buy.quantity == Decimal("4")
        assert buy.settlement_date == date(2024, 3, 6)
        assert buy.balance is None
        assert settle.balance == Decimal("46175.80")
        assert settle.action == ""
        assert transfer.amount == Decimal("52264")

    def test_raw_cells_kept_for_audit(self, service, fidelity_csv):
        result = service.import_file(fidelity_csv, "csv")

        first = result.rows[0]
        assert first.raw["Description"] == "SPDR S&P500 ETF"
        assert first.batch_id == result.batch_id

    def test_ordinals_continue_across_files(self, service, fidelity_csv):
        first = service.import_file(fidelity_csv)
        second = service.import_file(fidelity_csv, start_ordinal=first.next_ordinal)

        assert [r.global_ordinal for r in second.rows] == [3, 4, 5]
        assert second.batch_id != first.batch_id

    def test_unsupported_format(self, service, fidelity_csv):
        with pytest.raises(UnsupportedSourceError):
            service.import_file(fidelity_csv, "qif")

    def test_preview(self, service, fidelity_csv):
        preview = service.preview_source(fidelity_csv)
        assert preview.columns[0] == "Run Date"


class TestImportRecords:
    def test_auto_detected_mapping(self, service):
        records = [
            {"Date": "2024-01-02", "Action": "DEPOSIT", "Amount": "100", "Balance": "100"},
            {"Date": "2024-01-03", "Action": "FEE", "Amount": "-1", "Balance": "99"},
        ]
        result = service.import_records(records)

        assert result.mapping.balance == "Balance"
        assert [r.mapped.balance for r in result.rows] == [Decimal("100"), Decimal("99")]

    def test_explicit_mapping_wins(self, service):
        records = [{"When": "2024-01-02", "Net": "5", "Amount": "999"}]
        mapping = FieldMapping(date="When", amount="Net")

        result = service.import_records(records, mapping=mapping)

        assert result.rows[0].mapped.amount == Decimal("5")

    def test_distribution_without_amount_is_numbered(self, service):
        records = [
            {"Date": "03/04/2024", "Action": "YOU BOUGHT", "Symbol": "SPY", "Quantity": "4", "Amount": "-2019.24"},
            {"Date": "03/05/2024", "Action": "DISTRIBUTION", "Symbol": "SPY", "Quantity": "4", "Amount": ""},
            {"Date": "Date downloaded 03/10/2024 4:12 pm", "Action": "", "Symbol": "", "Quantity": "", "Amount": ""},
        ]

        result = service.import_records(records)

        assert [r.global_ordinal for r in result.rows] == [0, 1]
        distribution = result.rows[1].mapped
        assert distribution.action == "DISTRIBUTION"
        assert distribution.quantity == Decimal("4")
        assert distribution.amount is None
        assert result.dropped_records == (3,)

    def test_unmappable_headers(self, service):
        with pytest.raises(FieldMappingError):
            service.import_records([{"Posted": "x", "Memo": "y"}])

    def test_batch_logs_carry_batch_id(self, service, captured_logs):
        result = service.import_records([{"Date": "2024-01-02", "Amount": "1"}], batch_id="batch-7")

        record = next(r for r in captured_logs() if r["message"] == "import_batch_mapped")
        assert record["batch_id"] == "batch-7"
        assert record["row_count"] == 1
        assert result.batch_id == "batch-7"

"""Tests for the CSV and XLSX source adapters."""

from datetime import date, datetime

import openpyxl
import pytest

from ledger_ingestion.adapters import CsvSourceAdapter, XlsxSourceAdapter, get_adapter
from ledger_ingestion.adapters.xlsx_adapter import cell_text
from ledger_kernel.exceptions import UnsupportedSourceError

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
def fidelity_csv(tmp_path):
    path = tmp_path / "History_for_Account.csv"
    path.write_text(FIDELITY_EXPORT, encoding="utf-8")
    return path


class TestCsvSourceAdapter:
    def test_read_with_header_yields_dicts(self, tmp_path):
        path = tmp_path / "plain.csv"
        path.write_text("a,b,c\n1,2,3\n4,5,6\n")

        rows = list(CsvSourceAdapter().read(path, {}))

        assert rows == [{"a": "1", "b": "2", "c": "3"}, {"a": "4", "b": "5", "c": "6"}]

    def test_preamble_skipped_by_header_detection(self, fidelity_csv):
        rows = list(CsvSourceAdapter().read(fidelity_csv, {}))

        assert rows[0]["Run Date"] == "03/04/2024"
        assert rows[0]["Symbol"] == "SPY"
        assert rows[1]["Cash Balance ($)"] == "46175.80"
        # Footer lines come through as records; the import service drops them.
        assert len(rows) == 5
        assert rows[3]["Run Date"].startswith("The data")

    def test_preview_reports_detected_header(self, fidelity_csv):
        preview = CsvSourceAdapter().preview(fidelity_csv, {})

        assert preview.header_row == 3
        assert preview.columns[0] == "Run Date"
        assert "Cash Balance ($)" in preview.columns
        assert preview.row_count == 5
        assert len(preview.sample_rows) == 5

    def test_bom_stripped(self, tmp_path):
        path = tmp_path / "bom.csv"
        path.write_bytes("\ufeffDate,Amount\n2024-01-02,5\n".encode("utf-8"))

        rows = list(CsvSourceAdapter().read(path, {}))

        assert rows == [{"Date": "2024-01-02", "Amount": "5"}]

    def test_skip_rows_and_fixed_header(self, tmp_path):
        path = tmp_path / "skip.csv"
        path.write_text("comment\n# skip\nh1,h2\n1,2\n")

        rows = list(CsvSourceAdapter().read(path, {"skip_rows": 2}))

        assert rows == [{"h1": "1", "h2": "2"}]

    def test_custom_delimiter(self, tmp_path):
        path = tmp_path / "semi.csv"
        path.write_text("a;b;c\n1;2;3\n")

        assert list(CsvSourceAdapter().read(path, {"delimiter": ";"})) == [{"a": "1", "b": "2", "c": "3"}]

    def test_duplicate_headers_suffixed(self, tmp_path):
        path = tmp_path / "dup.csv"
        path.write_text("Date,Amount,Amount\n2024-01-02,1,2\n")

        rows = list(CsvSourceAdapter().read(path, {}))

        assert rows == [{"Date": "2024-01-02", "Amount": "1", "Amount_1": "2"}]

    def test_empty_file(self, tmp_path):
        path = tmp_path / "empty.csv"
        path.write_text("")
        assert list(CsvSourceAdapter().read(path, {})) == []


class TestXlsxSourceAdapter:
    def _workbook(self, tmp_path):
        wb = openpyxl.Workbook()
        ws = wb.active
        ws.title = "History"
        ws.append(["Account summary"])
        ws.append(["Date", "Action", "Symbol", "Quantity", "Amount", "Balance"])
        ws.append([datetime(2024, 3, 4), "YOU BOUGHT", "SPY", 4, -2019.24, None])
        ws.append([datetime(2024, 3, 4), None, None, 0, 2019.24, 46175.8])
        path = tmp_path / "history.xlsx"
        wb.save(path)
        return path

    def test_read_detects_header_below_preamble(self, tmp_path):
        rows = list(XlsxSourceAdapter().read(self._workbook(tmp_path), {}))

        assert len(rows) == 2
        first = rows[0]
        assert first["Date"] == date(2024, 3, 4)
        assert first["Quantity"] == "4"
        assert first["Amount"] == "-2019.24"
        assert first["Balance"] == ""
        assert rows[1]["Balance"] == "46175.8"

    def test_sheet_by_name(self, tmp_path):
        rows = list(XlsxSourceAdapter().read(self._workbook(tmp_path), {"sheet": "History"}))
        assert rows[0]["Symbol"] == "SPY"

    def test_preview(self, tmp_path):
        preview = XlsxSourceAdapter().preview(self._workbook(tmp_path), {})

        assert preview.columns == ("Date", "Action", "Symbol", "Quantity", "Amount", "Balance")
        assert preview.row_count == 2
        assert preview.header_row == 1


class TestAdapterLookup:
    def test_known_formats(self):
        assert isinstance(get_adapter("CSV"), CsvSourceAdapter)
        assert isinstance(get_adapter("xlsx"), XlsxSourceAdapter)

    def test_unknown_format(self):
        with pytest.raises(UnsupportedSourceError):
            get_adapter("ofx")


class TestCellText:
    @pytest.mark.parametrize(
        "value, expected",
        [
            (None, ""),
            (4.0, "4"),
            (-2019.24, "-2019.24"),
            (12, "12"),
            ("  SPY ", "SPY"),
            (datetime(2024, 3, 4, 16, 30), date(2024, 3, 4)),
        ],
    )
    def test_normalized(self, value, expected):
        assert cell_text(value) == expected

    def test_fixed_header_row(self, tmp_path):
        path = tmp_path / "fixed.csv"
        path.write_text("x,y\nDate,Amount\n2024-01-02,5\n")

        rows = list(CsvSourceAdapter().read(path, {"auto_detect_header": False, "header_row": 1}))

        assert rows == [{"Date": "2024-01-02", "Amount": "5"}]

import json
from datetime import datetime

import pytest

import logger
from main import main


@pytest.fixture(autouse=True)
def quiet_logging(monkeypatch):
    """main() configures logging; keep the root logger untouched between tests"""
    monkeypatch.setattr(logger, "_configured", True)


class TestCommandLine:
    """Tests for main.main"""

    def test_init(self, db, capsys):
        assert main(["init"]) == 0
        assert db.db_path in capsys.readouterr().out

    def test_convert_quote(self, db, quote_id, capsys):
        assert main(["convert-quote", str(quote_id)]) == 0
        assert f"FAC-{datetime.now().year}-0001" in capsys.readouterr().out

    def test_convert_missing_quote(self, db, capsys):
        assert main(["convert-quote", "999"]) == 1
        assert "Devis non trouvé" in capsys.readouterr().err

    def test_invoice_sale(self, db, sale_id):
        assert main(["invoice-sale", str(sale_id)]) == 0
        assert main(["invoice-sale", str(sale_id)]) == 1

    def test_dashboard_json(self, db, sale_id, capsys):
        assert main(["dashboard", "--range", "7", "--json"]) == 0
        stats = json.loads(capsys.readouterr().out)
        assert stats["total_sales"] == 1

    def test_pdf(self, db, quote_id, tmp_path):
        output = tmp_path / "devis.pdf"

        assert main(["pdf", "devis", str(quote_id), str(output)]) == 0
        assert output.read_bytes().startswith(b"%PDF")

    def test_excel_clients(self, db, client, tmp_path):
        output = tmp_path / "clients.xlsx"

        assert main(["excel", "clients", str(output)]) == 0
        assert output.exists()

    def test_movements_bad_date(self, db, tmp_path, capsys):
        assert main(["movements", "hier", "2026-01-01", str(tmp_path / "m.xlsx")]) == 1
        assert "AAAA-MM-JJ" in capsys.readouterr().err

    def test_export_db(self, db, capsys):
        assert main(["export-db"]) == 0
        assert "Base exportée" in capsys.readouterr().out

    def test_unknown_command(self, db):
        with pytest.raises(SystemExit):
            main(["frobnicate"])

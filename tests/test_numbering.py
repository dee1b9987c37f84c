from datetime import datetime

import pytest

from database import DOCUMENT_NUMBERING


YEAR = datetime.now().year


# =============================================================================
# Document numbering
# =============================================================================

class TestDocumentNumbering:
    """Tests for DatabaseManager.generate_document_number"""

    @pytest.mark.parametrize("kind, expected", [
        ("invoice", f"FAC-{YEAR}-0001"),
        ("credit_note", f"AV-{YEAR}-0001"),
        ("purchase_order", f"BC-{YEAR}-0001"),
        ("quote", f"DEV-{YEAR}-001"),
        ("reception_note", f"BR-{YEAR}-0001"),
        ("delivery_receipt", f"BL-{YEAR}-0001"),
        ("supplier_order", f"PO-{YEAR}-0001"),
    ])
    def test_first_number_of_the_year(self, db, kind, expected):
        """Empty tables start the sequence at 1."""
        assert db.generate_document_number(kind) == expected

    def test_every_kind_is_configured(self):
        assert set(DOCUMENT_NUMBERING) == {
            "invoice", "credit_note", "purchase_order", "quote",
            "reception_note", "delivery_receipt", "supplier_order",
        }

    def test_continues_after_highest_number(self, db, client):
        db.insert_invoice(f"FAC-{YEAR}-0007", client, 100, 19, 119)
        db.insert_invoice(f"FAC-{YEAR}-0003", client, 100, 19, 119)

        assert db.generate_document_number("invoice") == f"FAC-{YEAR}-0008"

    def test_sequence_restarts_each_year(self, db, client):
        db.insert_invoice(f"FAC-{YEAR - 1}-0042", client, 100, 19, 119)

        assert db.generate_document_number("invoice") == f"FAC-{YEAR}-0001"
        assert db.generate_document_number("invoice", YEAR - 1) == f"FAC-{YEAR - 1}-0043"

    def test_unparsable_numbers_are_skipped(self, db, client):
        db.insert_invoice(f"FAC-{YEAR}-ABCD", client, 100, 19, 119)
        db.insert_invoice(f"FAC-{YEAR}-0002", client, 100, 19, 119)

        assert db.generate_document_number("invoice") == f"FAC-{YEAR}-0003"

    def test_quote_numbers_use_three_digits(self, business, client, product):
        business.create_quote({'client_id': client, 'items': [
            {'product_id': product, 'quantity': 1, 'unit_price': 10.0}]})
        ok, _, second = business.create_quote({'client_id': client, 'items': [
            {'product_id': product, 'quantity': 1, 'unit_price': 10.0}]})

        assert ok
        assert business.db.get_quote_by_id(second)['number'] == f"DEV-{YEAR}-002"

    def test_caller_number_is_kept_and_duplicates_rejected(self, business, client, product):
        items = [{'product_id': product, 'quantity': 1, 'unit_price': 10.0}]
        ok, _, quote_id = business.create_quote({'client_id': client, 'number': 'DEV-SPECIAL', 'items': items})
        assert ok
        assert business.db.get_quote_by_id(quote_id)['number'] == 'DEV-SPECIAL'

        ok, message, _ = business.create_quote({'client_id': client, 'number': 'DEV-SPECIAL', 'items': items})
        assert not ok
        assert message == "Un devis avec ce numéro existe déjà"

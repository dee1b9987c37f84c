from datetime import datetime

import pytest


YEAR = datetime.now().year


@pytest.fixture
def invoice_id(business, sale_id):
    """Invoice generated from the 3 x Clavier sale"""
    ok, message, data = business.generate_invoice_from_sale(sale_id)
    assert ok, message
    return data['invoice_id']


class TestCreditNotes:
    """Tests for credit note creation and confirmation"""

    def test_credit_note_from_invoice_copies_totals(self, business, db, invoice_id):
        ok, message, data = business.generate_credit_note_from_invoice(invoice_id)

        assert ok, message
        assert data['credit_note_number'] == f"AV-{YEAR}-0001"
        note = db.get_credit_note_by_id(data['credit_note_id'])
        assert note['total_amount'] == pytest.approx(357.0)
        assert note['original_invoice_number'] == f"FAC-{YEAR}-0001"
        assert note['reason'] == f"Avoir sur facture FAC-{YEAR}-0001"
        assert len(business.get_credit_note_items(data['credit_note_id'])) == 1

    def test_partial_credit_note_with_reason(self, business, db, invoice_id, product):
        ok, _, note_id = business.create_credit_note({
            'original_invoice_id': invoice_id,
            'reason': 'Article défectueux',
            'items': [{'product_id': product, 'quantity': 1, 'unit_price': 100.0}],
        })

        assert ok
        note = db.get_credit_note_by_id(note_id)
        assert note['amount'] == pytest.approx(100.0)
        assert note['total_amount'] == pytest.approx(119.0)
        assert note['status'] == 'En attente'

    def test_reason_is_required(self, business, invoice_id, product):
        ok, message, _ = business.create_credit_note({
            'original_invoice_id': invoice_id, 'reason': '  ',
            'items': [{'product_id': product, 'quantity': 1}]})

        assert not ok
        assert message == "Le motif de l'avoir est requis"

    def test_unknown_invoice(self, business):
        ok, message, _ = business.generate_credit_note_from_invoice(404)

        assert not ok
        assert message == "Facture non trouvée"

    def test_confirmation_returns_goods_once(self, business, db, invoice_id, product):
        _, _, data = business.generate_credit_note_from_invoice(invoice_id)

        business.update_credit_note_status(data['credit_note_id'], 'Confirmée')
        business.update_credit_note_status(data['credit_note_id'], 'Confirmée')

        assert db.get_product_by_id(product)['stock'] == 10
        movement = db.get_stock_movements(product)[0]
        assert movement['source_type'] == 'credit_note'
        assert movement['movement_type'] == 'IN'

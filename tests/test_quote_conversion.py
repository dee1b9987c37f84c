from datetime import datetime

import pytest


YEAR = datetime.now().year


def _stock(db, product_id):
    return db.get_product_by_id(product_id)['stock']


# =============================================================================
# Quote -> invoice conversion
# =============================================================================

class TestGenerateInvoiceFromQuote:
    """Tests for BusinessLogic.generate_invoice_from_quote"""

    def test_conversion_creates_sale_and_invoice(self, business, db, quote_id, product, fodec_product):
        ok, message, data = business.generate_invoice_from_quote(quote_id)

        assert ok, message
        assert message == "Facture générée avec succès"
        assert data['invoice_number'] == f"FAC-{YEAR}-0001"

        invoice = db.get_invoice_by_id(data['invoice_id'])
        assert invoice['quote_id'] == quote_id
        assert invoice['sale_id'] == data['sale_id']
        assert invoice['status'] == 'En attente'
        assert invoice['amount'] == pytest.approx(230.0)
        assert invoice['fodec_amount'] == pytest.approx(0.5)
        assert invoice['tax_amount'] == pytest.approx(43.795)
        assert invoice['total_amount'] == pytest.approx(274.295)
        assert len(db.get_items("invoices", data['invoice_id'])) == 2

        sale = db.get_sale_by_id(data['sale_id'])
        assert sale['status'] == 'Facturée'
        assert sale['total_amount'] == pytest.approx(274.295)
        assert sale['discount_amount'] == pytest.approx(20.0)

        assert db.get_quote_by_id(quote_id)['status'] == 'Accepté'

    def test_stock_is_decremented_with_movements(self, business, db, quote_id, product, fodec_product):
        ok, _, data = business.generate_invoice_from_quote(quote_id)
        assert ok

        assert _stock(db, product) == 8
        assert _stock(db, fodec_product) == 4

        movements = db.get_stock_movements(product)
        assert len(movements) == 1
        assert movements[0]['movement_type'] == 'OUT'
        assert movements[0]['quantity'] == 2
        assert movements[0]['stock_before'] == 10
        assert movements[0]['stock_after'] == 8
        assert movements[0]['source_type'] == 'sale'
        assert movements[0]['source_id'] == data['sale_id']
        assert movements[0]['reference'] == data['invoice_number']

    def test_due_date_uses_configured_delay(self, business, db, quote_id):
        ok, _, data = business.generate_invoice_from_quote(quote_id)
        assert ok

        due = datetime.strptime(db.get_invoice_by_id(data['invoice_id'])['due_date'], "%Y-%m-%d %H:%M:%S")
        assert (due - datetime.now()).days in (29, 30)

    def test_second_conversion_is_refused(self, business, db, quote_id, product):
        business.generate_invoice_from_quote(quote_id)

        ok, message, data = business.generate_invoice_from_quote(quote_id)

        assert not ok
        assert message == "Ce devis a déjà été converti en facture"
        assert data is None
        assert len(db.get_all_invoices()) == 1
        assert _stock(db, product) == 8

    def test_missing_quote(self, business):
        ok, message, _ = business.generate_invoice_from_quote(999)

        assert not ok
        assert message == "Devis non trouvé"

    def test_insufficient_stock_persists_nothing(self, business, db, client, product):
        ok, _, quote_id = business.create_quote({'client_id': client, 'items': [
            {'product_id': product, 'quantity': 25, 'unit_price': 100.0}]})
        assert ok

        ok, message, _ = business.generate_invoice_from_quote(quote_id)

        assert not ok
        assert message == "Stock insuffisant pour Clavier. Stock actuel: 10"
        assert db.get_all_sales() == []
        assert db.get_all_invoices() == []
        assert db.get_stock_movements() == []
        assert db.get_quote_by_id(quote_id)['status'] == 'En attente'

    def test_services_do_not_move_stock(self, business, db, client, service):
        ok, _, quote_id = business.create_quote({'client_id': client, 'items': [
            {'product_id': service, 'quantity': 3}]})
        assert ok

        ok, message, data = business.generate_invoice_from_quote(quote_id)

        assert ok, message
        assert db.get_stock_movements() == []
        assert _stock(db, service) == 0
        assert db.get_invoice_by_id(data['invoice_id'])['total_amount'] == pytest.approx(714.0)

    def test_empty_quote_is_refused(self, business, db, client):
        quote_id = db.insert_quote("DEV-VIDE", client, 0, 0, 0)

        ok, message, _ = business.generate_invoice_from_quote(quote_id)

        assert not ok
        assert message == "Le devis ne contient aucun article"

    def test_failure_midway_rolls_everything_back(self, business, db, quote_id, product, monkeypatch):
        def broken_insert_invoice(*args, **kwargs):
            raise RuntimeError("disk I/O error")

        monkeypatch.setattr(db, "insert_invoice", broken_insert_invoice)

        ok, message, _ = business.generate_invoice_from_quote(quote_id)

        assert not ok
        assert message == "Erreur lors de la génération de la facture à partir du devis"
        assert db.get_all_sales() == []
        assert db.get_stock_movements() == []
        assert _stock(db, product) == 10
        assert db.get_quote_by_id(quote_id)['status'] == 'En attente'

    def test_conversion_is_audited(self, business, db, quote_id):
        business.generate_invoice_from_quote(quote_id)

        actions = [log['action'] for log in db.get_audit_logs()]
        assert "Conversion devis" in actions


# =============================================================================
# Quote lifecycle
# =============================================================================

class TestQuoteLifecycle:
    """Tests for quote update / status / delete rules"""

    def test_update_recomputes_totals(self, business, db, quote_id, product):
        ok, _, _ = business.update_quote(quote_id, {'items': [
            {'product_id': product, 'quantity': 1, 'unit_price': 100.0}]})

        assert ok
        quote = db.get_quote_by_id(quote_id)
        assert quote['total_amount'] == pytest.approx(119.0)
        assert len(business.get_quote_items(quote_id)) == 1

    def test_accepted_quote_is_frozen(self, business, quote_id):
        business.generate_invoice_from_quote(quote_id)

        ok, message, _ = business.update_quote(quote_id, {'status': 'Refusé'})
        assert not ok
        assert message == "Un devis accepté ne peut plus être modifié"

        ok, message, _ = business.update_quote_status(quote_id, 'Refusé')
        assert not ok
        assert message == "Ce devis a déjà été converti en facture"

    def test_converted_quote_cannot_be_deleted(self, business, quote_id):
        business.generate_invoice_from_quote(quote_id)

        ok, message, _ = business.delete_quote(quote_id)

        assert not ok
        assert message == "Impossible de supprimer ce devis car il a été converti en facture"

    def test_pending_quote_deletion_removes_items(self, business, db, quote_id):
        ok, _, _ = business.delete_quote(quote_id)

        assert ok
        assert db.get_quote_by_id(quote_id) is None
        assert db.get_items("quotes", quote_id) == []

    def test_quote_for_unknown_client(self, business, product):
        ok, message, _ = business.create_quote({'client_id': 404, 'items': [
            {'product_id': product, 'quantity': 1}]})

        assert not ok
        assert message == "Client non trouvé"

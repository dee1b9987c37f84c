from datetime import datetime

import pytest


YEAR = datetime.now().year


class TestInvoiceFromSale:
    """Tests for BusinessLogic.generate_invoice_from_sale"""

    def test_invoice_carries_sale_totals(self, business, db, sale_id):
        ok, message, data = business.generate_invoice_from_sale(sale_id)

        assert ok, message
        assert data['invoice_number'] == f"FAC-{YEAR}-0001"
        invoice = business.get_invoice(data['invoice_id'])
        assert invoice['amount'] == pytest.approx(300.0)
        assert invoice['tax_amount'] == pytest.approx(57.0)
        assert invoice['total_amount'] == pytest.approx(357.0)
        assert invoice['sale_id'] == sale_id
        assert len(invoice['items']) == 1
        assert db.get_sale_by_id(sale_id)['status'] == 'Facturée'

    def test_sale_is_invoiced_once(self, business, sale_id):
        business.generate_invoice_from_sale(sale_id)

        ok, message, _ = business.generate_invoice_from_sale(sale_id)

        assert not ok
        assert message == "Cette vente a déjà été facturée"

    def test_cancelled_sale_is_not_invoiced(self, business, sale_id):
        business.update_sale_status(sale_id, 'Annulée')

        ok, message, _ = business.generate_invoice_from_sale(sale_id)

        assert not ok
        assert message == "Impossible de facturer une vente annulée"

    def test_invoicing_does_not_move_stock(self, business, db, sale_id, product):
        business.generate_invoice_from_sale(sale_id)

        assert db.get_product_by_id(product)['stock'] == 7
        assert len(db.get_stock_movements(product)) == 1


class TestCreateInvoice:
    """Tests for BusinessLogic.create_invoice"""

    def test_direct_invoice_from_items(self, business, db, client, product):
        ok, _, invoice_id = business.create_invoice({'client_id': client, 'items': [
            {'product_id': product, 'quantity': 2, 'unit_price': 50.0}]})

        assert ok
        invoice = db.get_invoice_by_id(invoice_id)
        assert invoice['total_amount'] == pytest.approx(119.0)
        assert invoice['paid_amount'] == 0
        assert db.get_product_by_id(product)['stock'] == 10

    def test_duplicate_number(self, business, client, product):
        invoice = {'client_id': client, 'number': 'FAC-MANUELLE',
                   'items': [{'product_id': product, 'quantity': 1}]}
        business.create_invoice(invoice)

        ok, message, _ = business.create_invoice(invoice)

        assert not ok
        assert message == "Une facture avec ce numéro existe déjà"

    def test_unknown_client(self, business, product):
        ok, message, _ = business.create_invoice({'client_id': 77, 'items': [
            {'product_id': product, 'quantity': 1}]})

        assert not ok
        assert message == "Client non trouvé"


class TestInvoiceStatus:
    """Tests for BusinessLogic.update_invoice_status"""

    def test_cancellation_cascades_to_sale_and_stock(self, business, db, quote_id, product, fodec_product):
        _, _, data = business.generate_invoice_from_quote(quote_id)

        ok, _, _ = business.update_invoice_status(data['invoice_id'], 'Annulée')

        assert ok
        assert db.get_invoice_by_id(data['invoice_id'])['status'] == 'Annulée'
        assert db.get_sale_by_id(data['sale_id'])['status'] == 'Annulée'
        assert db.get_product_by_id(product)['stock'] == 10
        assert db.get_product_by_id(fodec_product)['stock'] == 5

    def test_repeated_cancellation_restocks_once(self, business, db, sale_id, product):
        _, _, data = business.generate_invoice_from_sale(sale_id)

        business.update_invoice_status(data['invoice_id'], 'Annulée')
        business.update_invoice_status(data['invoice_id'], 'Annulée')

        assert db.get_product_by_id(product)['stock'] == 10

    def test_other_status_leaves_sale_untouched(self, business, db, sale_id):
        _, _, data = business.generate_invoice_from_sale(sale_id)

        ok, _, _ = business.update_invoice_status(data['invoice_id'], 'Payée')

        assert ok
        assert db.get_sale_by_id(sale_id)['status'] == 'Facturée'

    def test_missing_invoice(self, business):
        ok, message, _ = business.update_invoice_status(404, 'Payée')

        assert not ok
        assert message == "Facture non trouvée"

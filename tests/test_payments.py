import pytest


@pytest.fixture
def invoice_id(business, client, product):
    """Invoice of 119.000 TTC due in the future"""
    ok, message, invoice_id = business.create_invoice({
        'client_id': client, 'due_date': '2099-12-31 00:00:00',
        'items': [{'product_id': product, 'quantity': 1, 'unit_price': 100.0}]})
    assert ok, message
    return invoice_id


@pytest.fixture
def overdue_invoice_id(business, client, product):
    """Invoice of 119.000 TTC that was due in 2020"""
    ok, message, invoice_id = business.create_invoice({
        'client_id': client, 'due_date': '2020-01-01 00:00:00',
        'items': [{'product_id': product, 'quantity': 1, 'unit_price': 100.0}]})
    assert ok, message
    return invoice_id


def _status(db, invoice_id):
    return db.get_invoice_by_id(invoice_id)['status']


class TestClientPayments:
    """Tests for client payments and invoice payment status"""

    def test_partial_payment_keeps_invoice_pending(self, business, db, invoice_id):
        ok, _, _ = business.create_client_payment({'invoice_id': invoice_id, 'amount': 50.0,
                                                   'payment_method': 'Espèces'})

        assert ok
        assert _status(db, invoice_id) == 'En attente'
        assert db.get_invoice_by_id(invoice_id)['paid_amount'] == pytest.approx(50.0)

    def test_full_payment_marks_invoice_paid(self, business, db, invoice_id):
        business.create_client_payment({'invoice_id': invoice_id, 'amount': 50.0})
        business.create_client_payment({'invoice_id': invoice_id, 'amount': 69.0})

        assert _status(db, invoice_id) == 'Payée'
        assert len(business.get_invoice_payments(invoice_id)) == 2

    def test_overdue_invoice(self, business, db, overdue_invoice_id):
        business.create_client_payment({'invoice_id': overdue_invoice_id, 'amount': 10.0})

        assert _status(db, overdue_invoice_id) == 'En retard'

    def test_cancelled_invoice_keeps_status(self, business, db, invoice_id):
        business.update_invoice_status(invoice_id, 'Annulée')

        business.create_client_payment({'invoice_id': invoice_id, 'amount': 119.0})

        assert _status(db, invoice_id) == 'Annulée'

    def test_client_taken_from_invoice(self, business, invoice_id, client):
        _, _, payment_id = business.create_client_payment({'invoice_id': invoice_id, 'amount': 5.0})

        payment = business.get_client_payments()[0]
        assert payment['id'] == payment_id
        assert payment['client_id'] == client
        assert payment['client_name'] == "Société Alpha"

    def test_non_positive_amount(self, business, invoice_id):
        ok, message, _ = business.create_client_payment({'invoice_id': invoice_id, 'amount': 0})

        assert not ok
        assert message == "Le montant du paiement doit être positif"

    def test_unknown_invoice(self, business, client):
        ok, message, _ = business.create_client_payment({'client_id': client, 'invoice_id': 404,
                                                         'amount': 5.0})

        assert not ok
        assert message == "Facture non trouvée"

    def test_payment_without_invoice(self, business, client):
        ok, _, payment_id = business.create_client_payment({'client_id': client, 'amount': 20.0})

        assert ok
        assert payment_id is not None

    def test_update_recomputes_status(self, business, db, invoice_id):
        _, _, payment_id = business.create_client_payment({'invoice_id': invoice_id, 'amount': 119.0})
        assert _status(db, invoice_id) == 'Payée'

        ok, _, _ = business.update_client_payment(payment_id, {'amount': 19.0})

        assert ok
        assert _status(db, invoice_id) == 'En attente'

    def test_moving_payment_to_another_invoice(self, business, db, invoice_id, overdue_invoice_id):
        _, _, payment_id = business.create_client_payment({'invoice_id': invoice_id, 'amount': 119.0})

        business.update_client_payment(payment_id, {'invoice_id': overdue_invoice_id})

        assert _status(db, invoice_id) == 'En attente'
        assert _status(db, overdue_invoice_id) == 'Payée'

    def test_detaching_payment_from_invoice(self, business, db, client, invoice_id):
        _, _, payment_id = business.create_client_payment({
            'invoice_id': invoice_id, 'amount': 119.0, 'reference': 'CHQ-12'})

        ok, _, _ = business.update_client_payment(payment_id, {'invoice_id': None, 'reference': None})

        assert ok
        assert _status(db, invoice_id) == 'En attente'
        payment = db.get_payment_by_id('client', payment_id)
        assert payment['invoice_id'] is None
        assert payment['reference'] is None
        assert payment['client_id'] == client
        assert payment['amount'] == 119.0

    def test_delete_recomputes_status(self, business, db, invoice_id):
        _, _, payment_id = business.create_client_payment({'invoice_id': invoice_id, 'amount': 119.0})

        ok, _, _ = business.delete_client_payment(payment_id)

        assert ok
        assert _status(db, invoice_id) == 'En attente'
        assert business.get_invoice_payments(invoice_id) == []

    def test_delete_missing_payment(self, business):
        ok, message, _ = business.delete_client_payment(404)

        assert not ok
        assert message == "Paiement non trouvé"


class TestSupplierPayments:
    """Tests for supplier payments"""

    def test_full_payment_sets_payment_date(self, business, db, supplier):
        _, _, invoice_id = business.create_supplier_invoice({
            'supplier_id': supplier, 'invoice_number': 'F-BETA-10', 'total_amount': 80.0})

        business.create_supplier_payment({'invoice_id': invoice_id, 'amount': 80.0})

        invoice = db.get_supplier_invoice_by_id(invoice_id)
        assert invoice['status'] == 'Payée'
        assert invoice['payment_date'] is not None
        assert len(business.get_supplier_payments(invoice_id)) == 1

    def test_deleting_payment_clears_payment_date(self, business, db, supplier):
        _, _, invoice_id = business.create_supplier_invoice({
            'supplier_id': supplier, 'invoice_number': 'F-BETA-11', 'total_amount': 80.0})
        _, _, payment_id = business.create_supplier_payment({'invoice_id': invoice_id, 'amount': 80.0})

        business.delete_supplier_payment(payment_id)

        invoice = db.get_supplier_invoice_by_id(invoice_id)
        assert invoice['status'] == 'En attente'
        assert invoice['payment_date'] is None

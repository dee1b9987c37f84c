from datetime import datetime

import pytest


YEAR = datetime.now().year


class TestPurchaseOrders:
    """Tests for client purchase orders (bons de commande)"""

    def test_generate_from_sale(self, business, db, sale_id):
        ok, message, data = business.generate_purchase_order_from_sale(sale_id)

        assert ok, message
        assert data['purchase_order_number'] == f"BC-{YEAR}-0001"
        order = db.get_purchase_order_by_id(data['purchase_order_id'])
        assert order['sale_id'] == sale_id
        assert order['amount'] == pytest.approx(300.0)
        assert order['tax_amount'] == pytest.approx(57.0)
        assert order['total_amount'] == pytest.approx(357.0)
        assert order['delivery_date'] is not None
        assert len(business.get_purchase_order_items(data['purchase_order_id'])) == 1

    def test_sale_with_purchase_order_is_kept(self, business, sale_id):
        business.generate_purchase_order_from_sale(sale_id)

        ok, message, _ = business.delete_sale(sale_id)

        assert not ok
        assert message == "Impossible de supprimer cette vente car elle est liée à un bon de commande"

    def test_create_without_sale(self, business, db, client, product):
        ok, _, order_id = business.create_purchase_order({
            'client_id': client, 'delivery_date': '2030-01-15',
            'items': [{'product_id': product, 'quantity': 4}]})

        assert ok
        order = db.get_purchase_order_by_id(order_id)
        assert order['delivery_date'] == '2030-01-15'
        assert order['total_amount'] == pytest.approx(476.0)
        assert db.get_product_by_id(product)['stock'] == 10


class TestDeliveryReceipts:
    """Tests for delivery receipts (bons de livraison)"""

    def test_default_items_come_from_sale(self, business, sale_id):
        ok, message, receipt_id = business.create_delivery_receipt({
            'sale_id': sale_id, 'driver_name': 'Karim', 'vehicle_registration': '123 TU 4567'})

        assert ok, message
        receipt = business.get_delivery_receipt(receipt_id)
        assert receipt['delivery_number'] == f"BL-{YEAR}-0001"
        assert receipt['client_name'] == "Société Alpha"
        assert receipt['driver_name'] == 'Karim'
        assert [item['quantity'] for item in receipt['items']] == [3]

    def test_lookup_by_sale(self, business, sale_id):
        _, _, receipt_id = business.create_delivery_receipt({'sale_id': sale_id})

        assert business.get_delivery_receipt_by_sale(sale_id)['id'] == receipt_id

    def test_delete(self, business, sale_id):
        _, _, receipt_id = business.create_delivery_receipt({'sale_id': sale_id})

        ok, _, _ = business.delete_delivery_receipt(receipt_id)

        assert ok
        assert business.get_delivery_receipt(receipt_id) is None
        ok, message, _ = business.delete_delivery_receipt(receipt_id)
        assert not ok
        assert message == "Bon de livraison non trouvé"

    def test_unknown_sale(self, business):
        ok, message, _ = business.create_delivery_receipt({'sale_id': 404})

        assert not ok
        assert message == "Vente non trouvée"

import pytest


def _stock(db, product_id):
    return db.get_product_by_id(product_id)['stock']


class TestCreateSale:
    """Tests for BusinessLogic.create_sale"""

    def test_sale_decrements_stock(self, business, db, sale_id, product):
        sale = db.get_sale_by_id(sale_id)

        assert sale['status'] == 'Confirmé'
        assert sale['total_amount'] == pytest.approx(357.0)
        assert sale['tax_amount'] == pytest.approx(57.0)
        assert _stock(db, product) == 7

        movement = db.get_stock_movements(product)[0]
        assert movement['movement_type'] == 'OUT'
        assert movement['reference'] == f"SALE-{sale_id}"

    def test_insufficient_stock_is_rejected(self, business, db, client, product):
        ok, message, _ = business.create_sale({'client_id': client, 'items': [
            {'product_id': product, 'quantity': 11}]})

        assert not ok
        assert message == "Stock insuffisant pour Clavier. Stock actuel: 10"
        assert db.get_all_sales() == []
        assert _stock(db, product) == 10

    def test_quantities_of_the_same_product_add_up(self, business, client, product):
        ok, message, _ = business.create_sale({'client_id': client, 'items': [
            {'product_id': product, 'quantity': 6},
            {'product_id': product, 'quantity': 6},
        ]})

        assert not ok
        assert message.startswith("Stock insuffisant pour Clavier")

    def test_empty_sale_is_rejected(self, business, client):
        ok, message, _ = business.create_sale({'client_id': client, 'items': []})

        assert not ok
        assert message == "La vente doit contenir au moins un article"

    def test_default_price_comes_from_product(self, business, db, client, product):
        ok, _, sale_id = business.create_sale({'client_id': client, 'items': [
            {'product_id': product, 'quantity': 1}]})

        assert ok
        assert db.get_items("sales", sale_id)[0]['unit_price'] == 100.0

    def test_sales_listing_with_items(self, business, sale_id):
        sales = business.get_sales_with_items()

        assert len(sales) == 1
        assert sales[0]['client_name'] == "Société Alpha"
        assert sales[0]['items'][0]['product_name'] == "Clavier"


class TestSaleStatus:
    """Tests for BusinessLogic.update_sale_status"""

    def test_cancelling_restores_stock(self, business, db, sale_id, product):
        ok, _, _ = business.update_sale_status(sale_id, 'Annulée')

        assert ok
        assert _stock(db, product) == 10
        movement = db.get_stock_movements(product)[0]
        assert movement['movement_type'] == 'IN'
        assert movement['source_type'] == 'sale_cancellation'

    def test_cancelling_twice_moves_stock_once(self, business, db, sale_id, product):
        business.update_sale_status(sale_id, 'Annulée')
        business.update_sale_status(sale_id, 'Annulée')

        assert _stock(db, product) == 10

    def test_cancelled_sale_cannot_be_reactivated(self, business, sale_id):
        business.update_sale_status(sale_id, 'Annulée')

        ok, message, _ = business.update_sale_status(sale_id, 'Confirmé')

        assert not ok
        assert message == "Une vente annulée ne peut pas être réactivée"


class TestDeleteSale:
    """Tests for BusinessLogic.delete_sale"""

    def test_delete_restores_stock(self, business, db, sale_id, product):
        ok, _, _ = business.delete_sale(sale_id)

        assert ok
        assert db.get_sale_by_id(sale_id) is None
        assert _stock(db, product) == 10
        assert db.get_stock_movements(product)[0]['source_type'] == 'sale_deletion'

    def test_delete_of_cancelled_sale_does_not_restock_again(self, business, db, sale_id, product):
        business.update_sale_status(sale_id, 'Annulée')

        ok, _, _ = business.delete_sale(sale_id)

        assert ok
        assert _stock(db, product) == 10

    def test_invoiced_sale_cannot_be_deleted(self, business, db, sale_id, product):
        business.generate_invoice_from_sale(sale_id)

        ok, message, _ = business.delete_sale(sale_id)

        assert not ok
        assert message == "Impossible de supprimer cette vente car elle est liée à une facture"
        assert _stock(db, product) == 7

    def test_delivered_sale_cannot_be_deleted(self, business, sale_id):
        business.create_delivery_receipt({'sale_id': sale_id})

        ok, message, _ = business.delete_sale(sale_id)

        assert not ok
        assert message == "Impossible de supprimer cette vente car elle est liée à un bon de livraison"

    def test_missing_sale(self, business):
        ok, message, _ = business.delete_sale(404)

        assert not ok
        assert message == "Vente non trouvée"


class TestStockOperations:
    """Tests for manual stock movements and adjustments"""

    def test_manual_movement_applies_stock(self, business, db, product):
        ok, _, movement_id = business.create_stock_movement({
            'product_id': product, 'movement_type': 'IN', 'quantity': 4, 'reason': 'Inventaire'})

        assert ok
        assert movement_id is not None
        assert _stock(db, product) == 14

    def test_invalid_movement_type(self, business, product):
        ok, message, _ = business.create_stock_movement({
            'product_id': product, 'movement_type': 'SIDEWAYS', 'quantity': 1})

        assert not ok
        assert message == "Type de mouvement invalide (IN ou OUT)"

    def test_absolute_adjustment_logs_difference(self, business, db, product):
        ok, _, _ = business.update_product_stock(product, 6)

        assert ok
        movement = db.get_stock_movements(product)[0]
        assert movement['movement_type'] == 'OUT'
        assert movement['quantity'] == 4
        assert movement['source_type'] == 'adjustment'
        assert _stock(db, product) == 6

    def test_service_has_no_stock(self, business, service):
        ok, message, _ = business.update_product_stock(service, 5)

        assert not ok
        assert message == "Un service n'a pas de stock"

    def test_check_product_stock(self, business, product, service):
        assert business.check_product_stock(product, 10)['available'] is True
        assert business.check_product_stock(product, 11)['available'] is False
        assert business.check_product_stock(service, 1000)['is_service'] is True

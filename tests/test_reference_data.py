import pytest


class TestCategories:
    """Tests for category CRUD and deletion guard"""

    def test_defaults_exist(self, business):
        names = {c['name'] for c in business.get_categories()}

        assert {'Général', 'Service'} <= names

    def test_duplicate_name(self, business):
        business.create_category({'name': 'Informatique'})

        ok, message, _ = business.create_category({'name': 'Informatique'})

        assert not ok
        assert message == "Une catégorie avec ce nom existe déjà"

    def test_used_category_is_kept(self, business, db, product):
        general = next(c for c in db.get_all_categories() if c['name'] == 'Général')

        ok, message, _ = business.delete_category(general['id'])

        assert not ok
        assert message.startswith("Impossible de supprimer cette catégorie")

    def test_unused_category_is_deleted(self, business):
        _, _, category_id = business.create_category({'name': 'Temporaire'})

        ok, _, _ = business.delete_category(category_id)

        assert ok
        assert 'Temporaire' not in {c['name'] for c in business.get_categories()}

    def test_update_missing(self, business):
        ok, message, _ = business.update_category(404, {'name': 'X'})

        assert not ok
        assert message == "Élément non trouvé"


class TestUnitsAndTva:
    """Tests for units and TVA rates"""

    def test_unit_used_by_product_is_kept(self, business, db):
        _, _, unit_id = business.create_unit({'name': 'Mètre', 'symbol': 'm'})
        db.create_product(name="Câble au mètre", category="Général", unit_id=unit_id)

        ok, message, _ = business.delete_unit(unit_id)

        assert not ok
        assert message == "Impossible de supprimer cette unité car elle est utilisée par 1 produit(s)"

    def test_unit_name_required(self, business):
        ok, message, _ = business.create_unit({'name': ''})

        assert not ok
        assert message == "Le nom de l'unité est requis"

    def test_tva_used_by_product_is_kept(self, business, tva19, product):
        ok, message, _ = business.delete_tva_rate(tva19)

        assert not ok
        assert message == "Impossible de supprimer ce taux de TVA car il est utilisé par des produits"

    def test_negative_tva_rate(self, business):
        ok, message, _ = business.create_tva_rate({'rate': -1})

        assert not ok
        assert message == "Taux de TVA invalide"


class TestProducts:
    """Tests for product CRUD"""

    def test_initial_stock_is_a_movement(self, business, db, tva19):
        ok, _, product_id = business.create_product({'name': 'Souris', 'stock': 12, 'tva_id': tva19,
                                                     'selling_price_ht': 25.0})

        assert ok
        product = business.get_product_by_id(product_id)
        assert product['stock'] == 12
        assert product['tva_rate'] == 19.0
        movement = db.get_stock_movements(product_id)[0]
        assert movement['reason'] == 'Stock initial'
        assert movement['stock_before'] == 0

    def test_duplicate_name(self, business, product):
        ok, message, _ = business.create_product({'name': 'Clavier'})

        assert not ok
        assert message == "Un produit avec ce nom existe déjà"

    def test_unknown_category_is_refused(self, business):
        ok, message, _ = business.create_product({'name': 'Orphelin', 'category': 'Inexistante'})

        assert not ok
        assert message == "Référence invalide: un élément lié est introuvable"

    def test_update_with_stock_goes_through_ledger(self, business, db, product):
        ok, _, _ = business.update_product(product, {'selling_price_ht': 110.0, 'stock': 15})

        assert ok
        updated = db.get_product_by_id(product)
        assert updated['selling_price_ht'] == 110.0
        assert updated['stock'] == 15
        assert db.get_stock_movements(product)[0]['quantity'] == 5

    def test_product_used_in_documents_is_kept(self, business, product, sale_id):
        ok, message, _ = business.delete_product(product)

        assert not ok
        assert message == "Impossible de supprimer ce produit car il est utilisé dans des documents"

    def test_active_only_listing(self, business, db, product):
        db.update_product(product, is_active=0)

        assert product not in {p['id'] for p in business.get_products(active_only=True)}
        assert product in {p['id'] for p in business.get_products()}


class TestClients:
    """Tests for client CRUD and deletion guard"""

    def test_name_required(self, business):
        ok, message, _ = business.create_client({'name': ''})

        assert not ok
        assert message == "Le nom du client est requis"

    def test_client_with_sales_is_kept(self, business, client, sale_id):
        allowed, message = business.can_delete_client(client)

        assert allowed is False
        assert message == "Impossible de supprimer ce client car il a 1 ventes associé(e)s"
        ok, _, _ = business.delete_client(client)
        assert not ok

    def test_free_client_is_deleted(self, business, private_client):
        ok, _, _ = business.delete_client(private_client)

        assert ok
        assert private_client not in {c['id'] for c in business.get_clients()}


class TestEnterpriseSettings:
    """Tests for the company settings record"""

    def test_first_read_creates_record_with_config_fodec(self, business):
        settings = business.get_enterprise_settings()

        assert settings['id'] is not None
        assert settings['fodec_rate'] == pytest.approx(1.0)

    def test_filled_record_wins(self, business, db):
        db.create_company()
        filled = db.create_company(name="Finoria SARL", tax_id="0000000X")

        assert business.get_enterprise_settings()['id'] == filled

    def test_update(self, business):
        settings = business.get_enterprise_settings()

        ok, _, _ = business.update_enterprise_settings(settings['id'], {'name': 'Nouvelle SARL'})

        assert ok
        assert business.get_enterprise_settings()['name'] == 'Nouvelle SARL'

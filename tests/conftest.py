import pytest

import database
import logic


@pytest.fixture(autouse=True)
def config_file(tmp_path, monkeypatch):
    """Point FINORIA_CONFIG at a throwaway config.ini (database, backups and log under tmp_path)."""
    path = tmp_path / "config.ini"
    path.write_text(
        "[DATABASE]\n"
        f"path = {tmp_path / 'finoria-test.db'}\n"
        "[BACKUP]\n"
        f"folder = {tmp_path / 'Backups'}\n"
        "[LOGGING]\n"
        "level = DEBUG\n"
        f"file = {tmp_path / 'finoria-test.log'}\n",
        encoding="utf-8",
    )
    monkeypatch.setenv("FINORIA_CONFIG", str(path))
    return path


@pytest.fixture
def db(tmp_path, config_file, monkeypatch):
    """Fresh database injected into the get_db() / get_logic() singletons."""
    manager = database.DatabaseManager(str(tmp_path / "finoria-test.db"))
    monkeypatch.setattr(database, "_db_instance", manager)
    monkeypatch.setattr(logic, "_logic_instance", None)
    yield manager
    manager.close()


@pytest.fixture
def business(db):
    """Return the BusinessLogic bound to the test database."""
    return logic.get_logic()


@pytest.fixture
def tva19(db):
    """Id of the default 19% TVA rate."""
    return next(t['id'] for t in db.get_all_tva_rates() if t['rate'] == 19.0)


@pytest.fixture
def client(db):
    """Create and return a company client id."""
    return db.create_client(name="Société Alpha", company="Alpha SARL",
                            email="contact@alpha.tn", tax_id="1234567A")


@pytest.fixture
def private_client(db):
    """Create and return an individual client id."""
    return db.create_client(name="Mohamed Ben Ali", phone="+216 20 000 000")


@pytest.fixture
def product(db, tva19):
    """Physical product: 100.000 HT, TVA 19%, 10 in stock."""
    return db.create_product(name="Clavier", category="Général", stock=10,
                             tva_id=tva19, selling_price_ht=100.0, purchase_price_ht=60.0)


@pytest.fixture
def fodec_product(db, tva19):
    """FODEC-applicable product: 50.000 HT, TVA 19%, 5 in stock."""
    return db.create_product(name="Câble industriel", category="Général", stock=5,
                             tva_id=tva19, selling_price_ht=50.0, fodec_applicable=True)


@pytest.fixture
def service(db, tva19):
    """Service product (never moves stock)."""
    return db.create_product(name="Installation", category="Service", stock=0,
                             tva_id=tva19, selling_price_ht=200.0)


@pytest.fixture
def supplier(db):
    """Create and return a supplier id."""
    return db.create_supplier(name="Fournisseur Beta", company="Beta SA")


@pytest.fixture
def quote_id(business, client, product, fodec_product):
    """A pending quote: 2 x Clavier at 10% discount + 1 x Câble industriel."""
    ok, message, quote_id = business.create_quote({
        'client_id': client,
        'items': [
            {'product_id': product, 'quantity': 2, 'unit_price': 100.0, 'discount': 10},
            {'product_id': fodec_product, 'quantity': 1, 'unit_price': 50.0},
        ],
    })
    assert ok, message
    return quote_id


@pytest.fixture
def sale_id(business, client, product):
    """A confirmed sale of 3 x Clavier."""
    ok, message, sale_id = business.create_sale({
        'client_id': client,
        'items': [{'product_id': product, 'quantity': 3, 'unit_price': 100.0}],
    })
    assert ok, message
    return sale_id

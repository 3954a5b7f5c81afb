import pytest

import app as marketplace
from tests.fake_firestore import FakeFirestore
from tests.utils import fake_verify_id_token


@pytest.fixture
def db(monkeypatch):
    store = FakeFirestore()
    store.seed('Users', 'admin-1', {'displayName': 'Admin', 'email': 'admin@handmade.test', 'role': 'admin'})
    store.seed('Users', 'cust-1', {'displayName': 'Mona Adel', 'email': 'mona@handmade.test', 'phone': '0100', 'role': 'customer'})
    store.seed('Users', 'cust-2', {'displayName': 'Karim', 'email': 'karim@handmade.test', 'role': 'customer'})
    store.seed('Users', 'vend-1', {'displayName': 'Clay Studio', 'email': 'clay@handmade.test', 'role': 'vendor'})
    store.seed('Users', 'vend-2', {'displayName': 'Loom House', 'email': 'loom@handmade.test', 'role': 'vendor'})
    monkeypatch.setattr(marketplace, 'firestore_client', store)
    monkeypatch.setattr(marketplace, 'verify_id_token', fake_verify_id_token)
    return store


@pytest.fixture
def products(db):
    db.seed('Products', 'vase', {
        'title': 'Clay Vase', 'price': 250, 'stock': 3, 'imgURL': 'vase.png',
        'categoryName': 'Pottery', 'vendorId': 'vend-1', 'status': 'approved',
    })
    db.seed('Products', 'rug', {
        'title': 'Woven Rug', 'price': 900, 'stock': 0, 'imgURL': 'rug.png',
        'categoryName': 'Textiles', 'vendorId': 'vend-2', 'status': 'approved',
    })
    db.seed('Products', 'mug', {
        'title': 'Glazed Mug', 'price': 120, 'stock': 10, 'imgURL': 'mug.png',
        'categoryName': 'Pottery', 'vendorId': 'vend-2', 'status': 'pending',
    })
    return db


@pytest.fixture
def client(db):
    marketplace.app.config['TESTING'] = True
    with marketplace.app.test_client() as test_client:
        yield test_client

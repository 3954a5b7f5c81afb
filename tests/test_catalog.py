import json
import queue

import app as marketplace
from tests.fake_firestore import FakeWatch
from tests.utils import auth


def product_ids(response):
    return sorted(product['id'] for product in response.get_json()['products'])


class TestAverageRating:

    def test_skips_missing_and_zero_ratings(self):
        feedback = [{'rating': 4}, {'rating': 5}, {'rating': 0}, {'comment': 'no stars'}, {'rating': None}]
        assert marketplace.compute_average_rating(feedback) == 4.5

    def test_rounds_to_one_decimal(self):
        assert marketplace.compute_average_rating([{'rating': 4}, {'rating': 4}, {'rating': 5}]) == 4.3

    def test_no_rated_feedback_is_zero(self):
        assert marketplace.compute_average_rating([]) == 0
        assert marketplace.compute_average_rating([{'rating': 0}]) == 0


class TestCatalog:

    def test_anonymous_sees_only_approved(self, client, products):
        response = client.get('/api/products')
        assert response.status_code == 200
        assert product_ids(response) == ['rug', 'vase']

    def test_vendor_does_not_see_own_products(self, client, products):
        response = client.get('/api/products', headers=auth('token-vendor'))
        assert product_ids(response) == ['rug']

    def test_category_filter(self, client, products):
        assert product_ids(client.get('/api/products?category=Pottery')) == ['vase']
        assert product_ids(client.get('/api/products?category=all')) == ['rug', 'vase']
        assert product_ids(client.get('/api/products?category=Jewelry')) == []

    def test_invalid_token_is_rejected(self, client, products):
        response = client.get('/api/products', headers=auth('forged'))
        assert response.status_code == 401
        assert response.get_json()['success'] is False

    def test_products_carry_average_rating(self, client, products):
        products.seed('Feedbacks', 'f1', {'productId': 'vase', 'rating': 4})
        products.seed('Feedbacks', 'f2', {'productId': 'vase', 'rating': 5})
        products.seed('Feedbacks', 'f3', {'productId': 'vase'})
        products.seed('Feedbacks', 'f4', {'productId': 'mug', 'rating': 1})

        listing = client.get('/api/products').get_json()['products']
        ratings = {product['id']: product['averageRating'] for product in listing}
        assert ratings == {'vase': 4.5, 'rug': 0}

    def test_rating_failure_does_not_break_listing(self, client, products, monkeypatch):
        def broken(collection_name, field, value):
            if collection_name == marketplace.FEEDBACKS:
                raise RuntimeError('feedback index missing')
            return original(collection_name, field, value)

        original = marketplace.where_equals
        monkeypatch.setattr(marketplace, 'where_equals', broken)

        response = client.get('/api/products')
        assert response.status_code == 200
        assert all(product['averageRating'] == 0 for product in response.get_json()['products'])

    def test_get_product(self, client, products):
        products.seed('Feedbacks', 'f1', {'productId': 'rug', 'rating': 3})
        body = client.get('/api/products/rug').get_json()
        assert body['product']['title'] == 'Woven Rug'
        assert body['product']['averageRating'] == 3

    def test_get_missing_product(self, client, products):
        response = client.get('/api/products/ghost')
        assert response.status_code == 404
        assert response.get_json()['message'] == 'Product not found'

    def test_categories(self, client, db):
        db.seed('category', 'c1', {'name': 'Pottery'})
        db.seed('category', 'c2', {'name': 'Textiles'})
        db.seed('category', 'c3', {})
        body = client.get('/api/categories').get_json()
        assert body['categories'] == ['Pottery', 'Textiles']


class TestCatalogStream:

    def test_events_carry_products_and_heartbeats(self, db):
        updates = queue.Queue()
        updates.put([{'id': 'vase', 'title': 'Clay Vase'}])
        watch = FakeWatch()

        events = marketplace.snapshot_events(updates, watch, heartbeat=0.01)
        first = next(events)
        assert first.startswith('data: ')
        payload = json.loads(first[len('data: '):])
        assert payload == [{'id': 'vase', 'title': 'Clay Vase', 'averageRating': 0}]

        assert next(events) == ': heartbeat\n\n'

        events.close()
        assert watch.unsubscribed

    def test_stream_subscribes_to_approved_products(self, client, products):
        response = client.get('/api/products/stream', headers=auth('token-vendor'), buffered=False)
        try:
            assert response.status_code == 200
            assert response.mimetype == 'text/event-stream'
            assert len(products.watches) == 1

            first = next(iter(response.response))
            payload = json.loads(first.decode()[len('data: '):])
            assert [product['id'] for product in payload] == ['rug']
        finally:
            response.close()

import pytest

from tests.utils import auth

ADMIN = auth('token-admin')


@pytest.fixture
def orders(db):
    db.seed('Orders', 'o1', {'userId': 'cust-1', 'status': 'delivered'})
    db.seed('Orders', 'o2', {'userId': 'cust-2', 'status': 'pending'})
    return db


def complain(client, token='token-customer', **payload):
    return client.post('/api/complaints', json=payload, headers=auth(token))


class TestSubmit:

    def test_requires_login(self, client, db):
        response = client.post('/api/complaints', json={'message': 'Broken on arrival'})
        assert response.status_code == 401
        assert response.get_json()['message'] == 'You must be logged in to send a complaint'

    def test_message_required(self, client, db):
        for payload in [{}, {'message': '   '}, {'subject': 'Late'}]:
            assert complain(client, **payload).status_code == 400, payload
        assert complain(client, message='Late', subject=7).status_code == 400
        assert db.all('Complaints') == {}

    def test_order_must_belong_to_caller(self, client, orders):
        assert complain(client, message='Never came', orderId='o2').status_code == 404
        assert complain(client, message='Never came', orderId='o9').status_code == 404
        assert orders.all('Complaints') == {}

    def test_complaint_is_opened(self, client, orders):
        response = complain(client, subject=' Damaged ', message=' The vase was cracked ', orderId='o1')
        assert response.status_code == 201

        complaint = response.get_json()['complaint']
        assert complaint['status'] == 'open'
        assert complaint['subject'] == 'Damaged'
        assert complaint['message'] == 'The vase was cracked'
        assert complaint['orderId'] == 'o1'
        assert complaint['userId'] == 'cust-1'

    def test_lists_only_own_complaints(self, client, orders):
        complain(client, message='Cracked vase')
        complain(client, token='token-shopper', message='Wrong colour')

        mine = client.get('/api/complaints', headers=auth('token-customer')).get_json()['complaints']
        assert [entry['message'] for entry in mine] == ['Cracked vase']
        assert mine[0]['orderId'] is None


class TestAdmin:

    @pytest.fixture
    def complaints(self, db):
        db.seed('Complaints', 'c1', {'userId': 'cust-1', 'message': 'Cracked vase', 'status': 'open'})
        db.seed('Complaints', 'c2', {'userId': 'cust-2', 'message': 'Late', 'status': 'resolved'})
        return db

    @pytest.mark.parametrize('token', ['token-customer', 'token-vendor'])
    def test_requires_admin_role(self, client, complaints, token):
        assert client.get('/api/admin/complaints', headers=auth(token)).status_code == 403
        assert client.delete('/api/admin/complaints/c1', headers=auth(token)).status_code == 403
        assert complaints.data('Complaints', 'c1') is not None

    def test_list_and_filter(self, client, complaints):
        everything = client.get('/api/admin/complaints', headers=ADMIN).get_json()['complaints']
        assert sorted(entry['id'] for entry in everything) == ['c1', 'c2']

        still_open = client.get('/api/admin/complaints?status=open', headers=ADMIN).get_json()['complaints']
        assert [entry['id'] for entry in still_open] == ['c1']

        assert client.get('/api/admin/complaints?status=lost', headers=ADMIN).status_code == 400

    def test_resolve(self, client, complaints):
        response = client.put('/api/admin/complaints/c1/status', json={'status': 'resolved'}, headers=ADMIN)
        assert response.status_code == 200
        assert response.get_json()['message'] == 'Complaint marked resolved'
        assert complaints.data('Complaints', 'c1')['status'] == 'resolved'

        assert client.put('/api/admin/complaints/c1/status', json={'status': 'ignored'}, headers=ADMIN).status_code == 400
        assert client.put('/api/admin/complaints/c9/status', json={'status': 'open'}, headers=ADMIN).status_code == 404

    def test_delete(self, client, complaints):
        assert client.delete('/api/admin/complaints/c2', headers=ADMIN).status_code == 200
        assert complaints.data('Complaints', 'c2') is None
        assert client.delete('/api/admin/complaints/c2', headers=ADMIN).status_code == 404

    def test_counted_in_overview(self, client, complaints):
        counts = client.get('/api/admin/overview', headers=ADMIN).get_json()['counts']
        assert counts['complaints'] == 2

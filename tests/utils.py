"""Shared helpers for the API tests."""

TOKENS = {
    'token-admin': 'admin-1',
    'token-customer': 'cust-1',
    'token-shopper': 'cust-2',
    'token-vendor': 'vend-1',
    'token-rival': 'vend-2',
}


def auth(token):
    return {'Authorization': f'Bearer {token}'}


def fake_verify_id_token(token):
    if token not in TOKENS:
        raise ValueError('Could not verify token')
    return {'uid': TOKENS[token]}

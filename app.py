from flask import Flask, jsonify, request, g, Response
from flask_cors import CORS
import os
import json
import math
import queue
from functools import wraps
from typing import Optional, Iterable
import requests
import firebase_admin
from firebase_admin import credentials, auth as firebase_auth
from firebase_admin import firestore
from firebase_admin import exceptions as firebase_exceptions
from google.cloud.firestore_v1.base_query import FieldFilter
from dotenv import load_dotenv

load_dotenv()

BASE_DIR = os.path.dirname(os.path.abspath(__file__))
FIREBASE_CONFIG_PATH = os.getenv('FIREBASE_CONFIG_PATH', os.path.join(BASE_DIR, 'firebase_config.json'))
PUBLIC_APP_URL = os.getenv('PUBLIC_APP_URL', 'http://localhost:5000').rstrip('/')
PORT = int(os.getenv('PORT', '5000'))
LOG_LEVEL = os.getenv('LOG_LEVEL', 'INFO').upper()
SSE_HEARTBEAT_SECONDS = float(os.getenv('SSE_HEARTBEAT_SECONDS', '30'))

# Collections
PRODUCTS = 'Products'
USERS = 'Users'
CART = 'Cart'
FAVORITES = 'favorite'
FEEDBACKS = 'Feedbacks'
CATEGORIES = 'category'
ORDERS = 'Orders'
COMPLAINTS = 'Complaints'

USERS_PER_PAGE = 10
PRODUCT_STATUSES = ['pending', 'approved', 'rejected']
ORDER_STATUSES = ['pending', 'processing', 'shipped', 'delivered', 'cancelled']
COMPLAINT_STATUSES = ['open', 'resolved']
SELF_SERVICE_ROLES = ['customer', 'vendor']


def load_firebase_api_key() -> Optional[str]:
    env_key = os.getenv('FIREBASE_WEB_API_KEY')
    if env_key:
        return env_key.strip()

    # The service account JSON has no apiKey; password sign-in needs the web key
    return None


def load_cors_origins():
    raw = os.getenv('CORS_ORIGINS', '*').strip()
    if raw == '*':
        return '*'
    return [origin.strip() for origin in raw.split(',') if origin.strip()]


FIREBASE_WEB_API_KEY = load_firebase_api_key()

app = Flask(__name__)
app.logger.setLevel(LOG_LEVEL)
CORS(app, resources={r'/api/*': {'origins': load_cors_origins()}})

if not FIREBASE_WEB_API_KEY:
    app.logger.warning("[WARN] Firebase Web API key not found. Password login is disabled.")

# Initialised on first use so the module imports without credentials
firebase_app = None
firestore_client = None


def get_firebase_app():
    global firebase_app
    if firebase_app is None:
        try:
            firebase_app = firebase_admin.get_app()
        except ValueError:
            firebase_credentials = credentials.Certificate(FIREBASE_CONFIG_PATH)
            firebase_app = firebase_admin.initialize_app(firebase_credentials)
    return firebase_app


def get_firestore():
    global firestore_client
    if firestore_client is None:
        firestore_client = firestore.client(get_firebase_app())
    return firestore_client


def verify_id_token(token: str) -> dict:
    return firebase_auth.verify_id_token(token, app=get_firebase_app())


def create_auth_user(email: str, password: str, display_name: Optional[str]):
    return firebase_auth.create_user(
        email=email,
        password=password,
        display_name=display_name,
        app=get_firebase_app()
    )


# ==================== AUTH HELPERS ====================

def get_bearer_token() -> Optional[str]:
    header = request.headers.get('Authorization', '')
    if not header.startswith('Bearer '):
        return None
    return header[len('Bearer '):].strip() or None


def resolve_caller():
    """Return ``(uid, error_response)`` for the current request.

    ``uid`` is None for anonymous callers. A token that is present but fails
    verification yields a 401 error response instead.
    """
    token = get_bearer_token()
    if not token:
        return None, None
    try:
        decoded = verify_id_token(token)
    except (ValueError, firebase_exceptions.FirebaseError) as e:
        app.logger.info(f"[INFO] Rejected ID token: {e}")
        return None, (jsonify({'success': False, 'message': 'Invalid or expired session. Please log in again.'}), 401)
    return decoded.get('uid'), None


def login_required(message: str = 'You must be logged in'):
    def decorator(view):
        @wraps(view)
        def wrapper(*args, **kwargs):
            uid, error = resolve_caller()
            if error:
                return error
            if not uid:
                return jsonify({'success': False, 'message': message}), 401
            g.uid = uid
            return view(*args, **kwargs)
        return wrapper
    return decorator


def role_required(*roles):
    """Require an authenticated caller whose Users document has one of ``roles``."""
    def decorator(view):
        @wraps(view)
        @login_required()
        def wrapper(*args, **kwargs):
            try:
                user_snap = get_firestore().collection(USERS).document(g.uid).get()
            except Exception as e:
                app.logger.error(f"Error reading role for {g.uid}: {e}")
                return jsonify({'success': False, 'message': 'Unable to verify permissions'}), 500

            role = (user_snap.to_dict() or {}).get('role') if user_snap.exists else None
            if role not in roles:
                return jsonify({'success': False, 'message': 'You are not allowed to access this resource'}), 403
            g.role = role
            return view(*args, **kwargs)
        return wrapper
    return decorator


# ==================== DOCUMENT HELPERS ====================

def doc_to_dict(snapshot) -> dict:
    return {'id': snapshot.id, **(snapshot.to_dict() or {})}


def pair_id(uid: str, product_id: str) -> str:
    """Cart and favorite documents are keyed by owner and product."""
    return f"{uid}_{product_id}"


def where_equals(collection_name: str, field: str, value):
    return get_firestore().collection(collection_name).where(filter=FieldFilter(field, '==', value))


def compute_average_rating(feedback: Iterable[dict]) -> float:
    """Average of the truthy ``rating`` values, to one decimal; 0 when none."""
    total = 0
    count = 0
    for entry in feedback:
        rating = entry.get('rating')
        if rating:
            total += rating
            count += 1
    if count == 0:
        return 0
    return round(total / count, 1)


def fetch_average_rating(product_id: str) -> float:
    try:
        snapshots = where_equals(FEEDBACKS, 'productId', product_id).stream()
        return compute_average_rating(snap.to_dict() or {} for snap in snapshots)
    except Exception as e:
        app.logger.error(f"Error fetching average rating for product {product_id}: {e}")
        return 0


def attach_ratings(products: list) -> list:
    for product in products:
        product['averageRating'] = fetch_average_rating(product['id'])
    return products


def visible_products(snapshots, viewer_uid: Optional[str]) -> list:
    """Approved products minus the ones the viewer sells."""
    products = [doc_to_dict(snap) for snap in snapshots]
    if not viewer_uid:
        return products
    return [product for product in products if product.get('vendorId') != viewer_uid]


def filter_by_category(products: list, category: Optional[str]) -> list:
    if not category or category == 'all':
        return products
    return [product for product in products if product.get('categoryName') == category]


def search_users(users: list, term: Optional[str]) -> list:
    term = (term or '').strip().lower()
    if not term:
        return users
    return [
        user for user in users
        if term in (user.get('displayName') or '').lower()
        or term in (user.get('email') or '').lower()
    ]


def paginate(items: list, page: int, per_page: int = USERS_PER_PAGE) -> dict:
    page = max(page, 1)
    total = len(items)
    start = (page - 1) * per_page
    rows = []
    for index, item in enumerate(items[start:start + per_page]):
        rows.append({**item, 'number': start + index + 1})
    return {
        'items': rows,
        'total': total,
        'page': page,
        'totalPages': math.ceil(total / per_page)
    }


def parse_price(value) -> Optional[float]:
    if isinstance(value, bool):
        return None
    try:
        price = float(value)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(price) or price < 0:
        return None
    return price


def parse_stock(value) -> Optional[int]:
    if isinstance(value, bool):
        return None
    if isinstance(value, float) and not value.is_integer():
        return None
    try:
        stock = int(value or 0)
    except (TypeError, ValueError):
        return None
    return stock if stock >= 0 else None


def clean_text(value) -> Optional[str]:
    """Stripped text, '' for null, None when the value is not a string."""
    if value is None:
        return ''
    if not isinstance(value, str):
        return None
    return value.strip()


def serialize_user(user: dict) -> dict:
    return {
        'id': user['id'],
        'displayName': user.get('displayName') or '',
        'email': user.get('email') or '',
        'phone': user.get('phone') or '',
        'role': user.get('role')
    }


# ==================== ACCOUNTS ====================

def sign_in_with_firebase(email: str, password: str) -> dict:
    try:
        firebase_resp = requests.post(
            f'https://identitytoolkit.googleapis.com/v1/accounts:signInWithPassword?key={FIREBASE_WEB_API_KEY}',
            json={
                'email': email,
                'password': password,
                'returnSecureToken': True
            },
            timeout=10
        )

        firebase_data = firebase_resp.json()
        if firebase_resp.status_code == 200:
            return {'success': True, 'data': firebase_data}

        error_code = firebase_data.get('error', {}).get('message')
        friendly_messages = {
            'EMAIL_NOT_FOUND': 'Invalid email or password',
            'INVALID_PASSWORD': 'Invalid email or password',
            'INVALID_LOGIN_CREDENTIALS': 'Invalid email or password',
            'USER_DISABLED': 'Your account has been disabled. Please contact support.'
        }
        message = friendly_messages.get(error_code, 'Unable to sign in with Firebase')
        return {'success': False, 'message': message, 'status': 401}
    except requests.exceptions.RequestException:
        return {
            'success': False,
            'message': 'Authentication service is unreachable. Please try again shortly.',
            'status': 503
        }


@app.route('/api/users/register', methods=['POST'])
def register_user():
    """Create the Firebase Auth account and its Users profile."""
    data = request.json or {}
    display_name = (data.get('displayName') or '').strip()
    email = (data.get('email') or '').strip()
    password = data.get('password')
    phone = (data.get('phone') or '').strip()
    role = data.get('role', 'customer')

    if not all([display_name, email, password]):
        return jsonify({'success': False, 'message': 'Name, email and password are required'}), 400

    if role not in SELF_SERVICE_ROLES:
        return jsonify({'success': False, 'message': 'Role must be customer or vendor'}), 400

    try:
        firebase_user = create_auth_user(email, password, display_name)
        profile = {
            'displayName': display_name,
            'email': email,
            'phone': phone,
            'role': role,
            'createdAt': firestore.SERVER_TIMESTAMP
        }
        get_firestore().collection(USERS).document(firebase_user.uid).set(profile)

        app.logger.info(f"[SUCCESS] User registered with Firebase: {email}")
        return jsonify({
            'success': True,
            'user': serialize_user({'id': firebase_user.uid, **profile})
        }), 201
    except firebase_auth.EmailAlreadyExistsError:
        return jsonify({'success': False, 'message': 'Email already registered'}), 400
    except Exception as e:
        app.logger.error(f"[ERROR] Registration failed: {e}")
        return jsonify({'success': False, 'message': 'Registration failed'}), 500


@app.route('/api/users/login', methods=['POST'])
def login_user():
    data = request.json or {}
    email = data.get('email')
    password = data.get('password')

    if not email or not password:
        return jsonify({'success': False, 'message': 'Email and password are required'}), 400

    if not FIREBASE_WEB_API_KEY:
        return jsonify({'success': False, 'message': 'Password login is not configured'}), 503

    firebase_result = sign_in_with_firebase(email, password)
    if not firebase_result['success']:
        return jsonify({'success': False, 'message': firebase_result['message']}), firebase_result['status']

    session = firebase_result['data']
    uid = session.get('localId')
    user = None
    try:
        user_snap = get_firestore().collection(USERS).document(uid).get()
        if user_snap.exists:
            user = serialize_user(doc_to_dict(user_snap))
    except Exception as e:
        app.logger.warning(f"[WARN] Unable to read profile for {uid}: {e}")

    return jsonify({
        'success': True,
        'idToken': session.get('idToken'),
        'refreshToken': session.get('refreshToken'),
        'expiresIn': session.get('expiresIn'),
        'user': user
    })


@app.route('/api/users/me', methods=['GET'])
@login_required()
def get_me():
    try:
        user_snap = get_firestore().collection(USERS).document(g.uid).get()
    except Exception as e:
        app.logger.error(f"Error fetching profile for {g.uid}: {e}")
        return jsonify({'success': False, 'message': 'Error fetching profile'}), 500

    if not user_snap.exists:
        return jsonify({'success': False, 'message': 'User not found'}), 404
    return jsonify({'success': True, 'user': serialize_user(doc_to_dict(user_snap))})


# ==================== CATALOG ====================

def approved_products_query():
    return where_equals(PRODUCTS, 'status', 'approved')


@app.route('/api/categories', methods=['GET'])
def get_categories():
    try:
        snapshots = get_firestore().collection(CATEGORIES).stream()
        names = [(snap.to_dict() or {}).get('name') for snap in snapshots]
        return jsonify({'success': True, 'categories': [name for name in names if name]})
    except Exception as e:
        app.logger.error(f"Error fetching categories: {e}")
        return jsonify({'success': False, 'message': 'Error fetching categories'}), 500


@app.route('/api/products', methods=['GET'])
def get_products():
    viewer_uid, error = resolve_caller()
    if error:
        return error

    category = request.args.get('category', 'all')
    try:
        products = visible_products(approved_products_query().stream(), viewer_uid)
    except Exception as e:
        app.logger.error(f"Error fetching products: {e}")
        return jsonify({'success': False, 'message': 'Error fetching products'}), 500

    products = attach_ratings(filter_by_category(products, category))
    return jsonify({'success': True, 'products': products})


@app.route('/api/products/<product_id>', methods=['GET'])
def get_product(product_id):
    try:
        product_snap = get_firestore().collection(PRODUCTS).document(product_id).get()
    except Exception as e:
        app.logger.error(f"Error fetching product {product_id}: {e}")
        return jsonify({'success': False, 'message': 'Error fetching product'}), 500

    if not product_snap.exists:
        return jsonify({'success': False, 'message': 'Product not found'}), 404

    product = doc_to_dict(product_snap)
    product['averageRating'] = fetch_average_rating(product_id)
    return jsonify({'success': True, 'product': product})


def snapshot_events(updates: queue.Queue, watch, heartbeat: float = SSE_HEARTBEAT_SECONDS):
    """Yield SSE frames for product lists arriving on ``updates``.

    The Firestore watch is unsubscribed when the client goes away.
    """
    try:
        while True:
            try:
                products = updates.get(timeout=heartbeat)
            except queue.Empty:
                yield ": heartbeat\n\n"
                continue
            products = attach_ratings(products)
            yield f"data: {json.dumps(products, default=str)}\n\n"
    finally:
        watch.unsubscribe()


@app.route('/api/products/stream', methods=['GET'])
def stream_products():
    """Live feed of the approved catalog, one event per Firestore snapshot."""
    viewer_uid, error = resolve_caller()
    if error:
        return error

    updates = queue.Queue()

    def on_snapshot(snapshots, changes, read_time):
        updates.put(visible_products(snapshots, viewer_uid))

    try:
        watch = approved_products_query().on_snapshot(on_snapshot)
    except Exception as e:
        app.logger.error(f"Error subscribing to products: {e}")
        return jsonify({'success': False, 'message': 'Error subscribing to products'}), 500

    return Response(
        snapshot_events(updates, watch),
        mimetype="text/event-stream",
        headers={
            'Cache-Control': 'no-cache',
            'X-Accel-Buffering': 'no'
        }
    )


# ==================== FEEDBACK ====================

@app.route('/api/products/<product_id>/feedback', methods=['GET'])
def get_product_feedback(product_id):
    try:
        entries = [doc_to_dict(snap) for snap in where_equals(FEEDBACKS, 'productId', product_id).stream()]
    except Exception as e:
        app.logger.error(f"Error fetching feedback for {product_id}: {e}")
        return jsonify({'success': False, 'message': 'Error fetching feedback'}), 500

    return jsonify({
        'success': True,
        'feedback': entries,
        'averageRating': compute_average_rating(entries)
    })


@app.route('/api/feedback', methods=['POST'])
@login_required('You must be logged in to leave feedback')
def submit_feedback():
    data = request.json or {}
    product_id = data.get('productId')
    rating = data.get('rating')
    comment = (data.get('comment') or '').strip()

    if not product_id:
        return jsonify({'success': False, 'message': 'Product is required'}), 400

    if isinstance(rating, bool) or not isinstance(rating, int) or not 1 <= rating <= 5:
        return jsonify({'success': False, 'message': 'Rating must be a whole number from 1 to 5'}), 400

    db = get_firestore()
    try:
        if not db.collection(PRODUCTS).document(product_id).get().exists:
            return jsonify({'success': False, 'message': 'Product not found'}), 404

        _, feedback_ref = db.collection(FEEDBACKS).add({
            'productId': product_id,
            'userId': g.uid,
            'rating': rating,
            'comment': comment,
            'createdAt': firestore.SERVER_TIMESTAMP
        })
        return jsonify({
            'success': True,
            'message': 'Thank you for your feedback!',
            'feedback': doc_to_dict(feedback_ref.get())
        }), 201
    except Exception as e:
        app.logger.error(f"Error submitting feedback: {e}")
        return jsonify({'success': False, 'message': 'Failed to submit feedback'}), 500


# ==================== FAVORITES ====================

@app.route('/api/favorites', methods=['GET'])
@login_required('You must be logged in to manage favorites')
def get_favorites():
    try:
        favorites = [doc_to_dict(snap) for snap in where_equals(FAVORITES, 'userId', g.uid).stream()]
        return jsonify({'success': True, 'favorites': favorites})
    except Exception as e:
        app.logger.error(f"Error fetching favorites for {g.uid}: {e}")
        return jsonify({'success': False, 'message': 'Error fetching favorites'}), 500


@app.route('/api/favorites/status', methods=['GET'])
@login_required('You must be logged in to manage favorites')
def get_favorite_status():
    raw_ids = request.args.get('productIds', '')
    product_ids = [pid.strip() for pid in raw_ids.split(',') if pid.strip()]
    favorites_ref = get_firestore().collection(FAVORITES)

    try:
        status = {
            product_id: favorites_ref.document(pair_id(g.uid, product_id)).get().exists
            for product_id in product_ids
        }
        return jsonify({'success': True, 'favorites': status})
    except Exception as e:
        app.logger.error(f"Error fetching favorite status for {g.uid}: {e}")
        return jsonify({'success': False, 'message': 'Error fetching favorites'}), 500


@app.route('/api/favorites/<product_id>', methods=['POST'])
@login_required('You must be logged in to manage favorites')
def toggle_favorite(product_id):
    """Flip the favorite mark; on failure report the unchanged state."""
    db = get_firestore()
    fav_ref = db.collection(FAVORITES).document(pair_id(g.uid, product_id))
    was_favorite = False

    try:
        was_favorite = fav_ref.get().exists
        if was_favorite:
            fav_ref.delete()
            return jsonify({'success': True, 'favorite': False, 'message': 'Removed from favorites!'})

        product_snap = db.collection(PRODUCTS).document(product_id).get()
        if not product_snap.exists:
            return jsonify({'success': False, 'favorite': False, 'message': 'Product not found'}), 404

        product = product_snap.to_dict() or {}
        fav_ref.set({
            'userId': g.uid,
            'productId': product_id,
            'title': product.get('title', ''),
            'imgURL': product.get('imgURL', ''),
            'price': product.get('price', 0)
        })
        return jsonify({'success': True, 'favorite': True, 'message': 'Added to favorites!'})
    except Exception as e:
        app.logger.error(f"Failed to toggle favorite: {e}")
        return jsonify({'success': False, 'favorite': was_favorite, 'message': 'Something went wrong.'}), 500


# ==================== CART ====================

@app.route('/api/cart', methods=['GET'])
@login_required('You must be logged in to view your cart')
def get_cart():
    try:
        items = [doc_to_dict(snap) for snap in where_equals(CART, 'userId', g.uid).stream()]
    except Exception as e:
        app.logger.error(f"Error loading cart for {g.uid}: {e}")
        return jsonify({'success': False, 'message': 'Error loading cart'}), 500

    total = sum((item.get('price') or 0) * (item.get('quantity') or 0) for item in items)
    return jsonify({'success': True, 'cart': items, 'total': round(total, 2)})


@app.route('/api/cart', methods=['POST'])
@login_required('You must be logged in to add to cart')
def add_to_cart():
    """Add one unit of a product to the caller's cart and take it out of stock.

    The stock change is a server-side increment of -1, not a compare-and-swap,
    so two concurrent adds can both pass the stock check.
    """
    data = request.json or {}
    product_id = data.get('productId')
    fallback = data.get('product') or {}

    if not product_id:
        return jsonify({'success': False, 'message': 'Product is required'}), 400

    db = get_firestore()
    cart_ref = db.collection(CART).document(pair_id(g.uid, product_id))
    product_ref = db.collection(PRODUCTS).document(product_id)

    try:
        cart_snap = cart_ref.get()
        product_snap = product_ref.get()

        if not product_snap.exists:
            return jsonify({'success': False, 'message': 'Product no longer exists.'}), 404

        product = product_snap.to_dict() or {}
        stock = product.get('stock')
        if stock is not None and stock <= 0:
            return jsonify({'success': False, 'message': 'Out of stock'}), 409

        if cart_snap.exists:
            cart_ref.update({
                'quantity': firestore.Increment(1),
                'updatedAt': firestore.SERVER_TIMESTAMP
            })
            product_ref.update({'stock': firestore.Increment(-1)})
            message = 'Quantity increased in cart'
        else:
            cart_ref.set({
                'userId': g.uid,
                'productId': product_id,
                'quantity': 1,
                'title': product.get('title') or fallback.get('title') or '',
                'price': product.get('price') or fallback.get('price') or 0,
                'imgURL': product.get('imgURL') or fallback.get('imgURL') or ''
            })
            product_ref.update({'stock': firestore.Increment(-1)})
            message = 'Added to cart'

        return jsonify({'success': True, 'message': message, 'item': doc_to_dict(cart_ref.get())})
    except Exception as e:
        app.logger.error(f"Add to cart error: {e}")
        return jsonify({'success': False, 'message': 'Failed to add to cart'}), 500


@app.route('/api/cart/<product_id>', methods=['DELETE'])
@login_required('You must be logged in to manage your cart')
def remove_from_cart(product_id):
    db = get_firestore()
    cart_ref = db.collection(CART).document(pair_id(g.uid, product_id))
    product_ref = db.collection(PRODUCTS).document(product_id)

    try:
        cart_snap = cart_ref.get()
        if not cart_snap.exists:
            return jsonify({'success': False, 'message': 'Item not in cart'}), 404

        quantity = (cart_snap.to_dict() or {}).get('quantity') or 0
        batch = db.batch()
        batch.delete(cart_ref)
        if quantity and product_ref.get().exists:
            batch.update(product_ref, {'stock': firestore.Increment(quantity)})
        batch.commit()

        return jsonify({'success': True, 'message': 'Removed from cart'})
    except Exception as e:
        app.logger.error(f"Remove from cart error: {e}")
        return jsonify({'success': False, 'message': 'Failed to remove from cart'}), 500


# ==================== ORDERS ====================

@app.route('/api/orders', methods=['POST'])
@login_required('You must be logged in to place an order')
def create_order():
    """Turn the caller's cart into a pending order and empty the cart."""
    db = get_firestore()
    try:
        cart_snaps = list(where_equals(CART, 'userId', g.uid).stream())
        if not cart_snaps:
            return jsonify({'success': False, 'message': 'Your cart is empty'}), 400

        items = []
        for snap in cart_snaps:
            item = snap.to_dict() or {}
            items.append({
                'productId': item.get('productId'),
                'title': item.get('title', ''),
                'price': item.get('price') or 0,
                'quantity': item.get('quantity') or 0,
                'imgURL': item.get('imgURL', '')
            })
        total_amount = round(sum(item['price'] * item['quantity'] for item in items), 2)

        # Order creation and cart clean-up commit together or not at all
        order_ref = db.collection(ORDERS).document()
        batch = db.batch()
        batch.set(order_ref, {
            'userId': g.uid,
            'items': items,
            'totalAmount': total_amount,
            'status': 'pending',
            'createdAt': firestore.SERVER_TIMESTAMP
        })
        for snap in cart_snaps:
            batch.delete(snap.reference)
        batch.commit()

        app.logger.info(f"[SUCCESS] Order {order_ref.id} placed by {g.uid}")
        return jsonify({'success': True, 'order': doc_to_dict(order_ref.get())}), 201
    except Exception as e:
        app.logger.error(f"Error creating order: {e}")
        return jsonify({'success': False, 'message': 'Error creating order'}), 500


@app.route('/api/orders', methods=['GET'])
@login_required('You must be logged in to view your orders')
def get_my_orders():
    try:
        orders = [doc_to_dict(snap) for snap in where_equals(ORDERS, 'userId', g.uid).stream()]
        return jsonify({'success': True, 'orders': orders})
    except Exception as e:
        app.logger.error(f"Error fetching orders for {g.uid}: {e}")
        return jsonify({'success': False, 'message': 'Error fetching orders'}), 500


# ==================== COMPLAINTS ====================

@app.route('/api/complaints', methods=['POST'])
@login_required('You must be logged in to send a complaint')
def submit_complaint():
    data = request.json or {}
    subject = clean_text(data.get('subject'))
    message = clean_text(data.get('message'))
    order_id = data.get('orderId')

    if not message:
        return jsonify({'success': False, 'message': 'Please describe the problem'}), 400
    if subject is None:
        return jsonify({'success': False, 'message': 'subject must be text'}), 400

    db = get_firestore()
    try:
        if order_id:
            order_snap = db.collection(ORDERS).document(order_id).get()
            if not order_snap.exists or (order_snap.to_dict() or {}).get('userId') != g.uid:
                return jsonify({'success': False, 'message': 'Order not found'}), 404

        _, complaint_ref = db.collection(COMPLAINTS).add({
            'userId': g.uid,
            'orderId': order_id or None,
            'subject': subject,
            'message': message,
            'status': 'open',
            'createdAt': firestore.SERVER_TIMESTAMP
        })
        return jsonify({
            'success': True,
            'message': 'Your complaint has been received.',
            'complaint': doc_to_dict(complaint_ref.get())
        }), 201
    except Exception as e:
        app.logger.error(f"Error submitting complaint: {e}")
        return jsonify({'success': False, 'message': 'Failed to submit complaint'}), 500


@app.route('/api/complaints', methods=['GET'])
@login_required('You must be logged in to view your complaints')
def get_my_complaints():
    try:
        complaints = [doc_to_dict(snap) for snap in where_equals(COMPLAINTS, 'userId', g.uid).stream()]
        return jsonify({'success': True, 'complaints': complaints})
    except Exception as e:
        app.logger.error(f"Error fetching complaints for {g.uid}: {e}")
        return jsonify({'success': False, 'message': 'Error fetching complaints'}), 500


# ==================== VENDOR LISTINGS ====================

EDITABLE_PRODUCT_FIELDS = ['title', 'description', 'price', 'stock', 'imgURL', 'categoryName']


def load_own_product(product_id: str):
    """Return ``(product_snapshot, error_response)`` for a product owned by the caller."""
    product_snap = get_firestore().collection(PRODUCTS).document(product_id).get()
    if not product_snap.exists:
        return None, (jsonify({'success': False, 'message': 'Product not found'}), 404)
    if (product_snap.to_dict() or {}).get('vendorId') != g.uid:
        return None, (jsonify({'success': False, 'message': 'You can only manage your own products'}), 403)
    return product_snap, None


@app.route('/api/vendor/products', methods=['GET'])
@role_required('vendor')
def get_vendor_products():
    try:
        products = [doc_to_dict(snap) for snap in where_equals(PRODUCTS, 'vendorId', g.uid).stream()]
        return jsonify({'success': True, 'products': products})
    except Exception as e:
        app.logger.error(f"Error fetching listings for {g.uid}: {e}")
        return jsonify({'success': False, 'message': 'Error fetching products'}), 500


@app.route('/api/vendor/products', methods=['POST'])
@role_required('vendor')
def create_vendor_product():
    data = request.json or {}
    title = clean_text(data.get('title'))
    price = data.get('price')

    if not title or price is None:
        return jsonify({'success': False, 'message': 'Product title and price are required'}), 400

    text_fields = {field: clean_text(data.get(field)) for field in ['description', 'imgURL', 'categoryName']}
    for field, text in text_fields.items():
        if text is None:
            return jsonify({'success': False, 'message': f'{field} must be text'}), 400

    normalized_price = parse_price(price)
    if normalized_price is None:
        return jsonify({'success': False, 'message': 'Price must be a valid number'}), 400

    stock = parse_stock(data.get('stock', 0))
    if stock is None:
        return jsonify({'success': False, 'message': 'Stock must be a whole number of at least 0'}), 400

    product_payload = {
        'title': title,
        'description': text_fields['description'],
        'price': normalized_price,
        'stock': stock,
        'imgURL': text_fields['imgURL'],
        'categoryName': text_fields['categoryName'],
        'vendorId': g.uid,
        'status': 'pending',
        'createdAt': firestore.SERVER_TIMESTAMP
    }

    try:
        _, product_ref = get_firestore().collection(PRODUCTS).add(product_payload)
        return jsonify({'success': True, 'product': doc_to_dict(product_ref.get())}), 201
    except Exception as e:
        app.logger.error(f"Error creating product: {e}")
        return jsonify({'success': False, 'message': 'Error creating product'}), 500


@app.route('/api/vendor/products/<product_id>', methods=['PUT'])
@role_required('vendor')
def update_vendor_product(product_id):
    """Edit a listing; a real content change sends it back for approval."""
    data = request.json or {}
    updates = {}

    for field in EDITABLE_PRODUCT_FIELDS:
        if field not in data:
            continue
        if field == 'price':
            price = parse_price(data[field])
            if price is None:
                return jsonify({'success': False, 'message': 'Price must be a valid number'}), 400
            updates[field] = price
        elif field == 'stock':
            stock = parse_stock(data[field])
            if stock is None:
                return jsonify({'success': False, 'message': 'Stock must be a whole number of at least 0'}), 400
            updates[field] = stock
        else:
            text = clean_text(data[field])
            if text is None:
                return jsonify({'success': False, 'message': f'{field} must be text'}), 400
            if field == 'title' and not text:
                return jsonify({'success': False, 'message': 'Product title is required'}), 400
            updates[field] = text

    if not updates:
        return jsonify({'success': False, 'message': 'No fields provided to update'}), 400

    try:
        product_snap, error = load_own_product(product_id)
        if error:
            return error

        stored = product_snap.to_dict() or {}
        changes = {field: value for field, value in updates.items() if stored.get(field) != value}
        if not changes:
            return jsonify({'success': True, 'product': doc_to_dict(product_snap)})

        changes['status'] = 'pending'
        changes['updatedAt'] = firestore.SERVER_TIMESTAMP
        product_snap.reference.update(changes)
        return jsonify({'success': True, 'product': doc_to_dict(product_snap.reference.get())})
    except Exception as e:
        app.logger.error(f"Error updating product {product_id}: {e}")
        return jsonify({'success': False, 'message': 'Error updating product'}), 500


@app.route('/api/vendor/products/<product_id>', methods=['DELETE'])
@role_required('vendor')
def delete_vendor_product(product_id):
    try:
        product_snap, error = load_own_product(product_id)
        if error:
            return error
        product_snap.reference.delete()
        return jsonify({'success': True, 'message': 'Product deleted successfully'})
    except Exception as e:
        app.logger.error(f"Error deleting product {product_id}: {e}")
        return jsonify({'success': False, 'message': 'Error deleting product'}), 500


# ==================== ADMIN DASHBOARD ====================

def list_users_by_role(role: str):
    users = [doc_to_dict(snap) for snap in where_equals(USERS, 'role', role).stream()]
    users = search_users(users, request.args.get('search'))
    page = paginate(users, request.args.get('page', 1, type=int))
    page['items'] = [{**serialize_user(user), 'number': user['number']} for user in page['items']]
    return page


@app.route('/api/admin/overview', methods=['GET'])
@role_required('admin')
def admin_overview():
    db = get_firestore()
    try:
        counts = {
            'products': len(list(db.collection(PRODUCTS).stream())),
            'customers': len(list(where_equals(USERS, 'role', 'customer').stream())),
            'vendors': len(list(where_equals(USERS, 'role', 'vendor').stream())),
            'orders': len(list(db.collection(ORDERS).stream())),
            'feedback': len(list(db.collection(FEEDBACKS).stream())),
            'complaints': len(list(db.collection(COMPLAINTS).stream()))
        }
        return jsonify({'success': True, 'counts': counts})
    except Exception as e:
        app.logger.error(f"Error building overview: {e}")
        return jsonify({'success': False, 'message': 'Error building overview'}), 500


@app.route('/api/admin/users', methods=['GET'])
@role_required('admin')
def admin_get_customers():
    try:
        page = list_users_by_role('customer')
    except Exception as e:
        app.logger.error(f"Error fetching users: {e}")
        return jsonify({'success': False, 'message': 'Error fetching users'}), 500
    return jsonify({'success': True, 'users': page.pop('items'), **page})


@app.route('/api/admin/vendors', methods=['GET'])
@role_required('admin')
def admin_get_vendors():
    try:
        page = list_users_by_role('vendor')
    except Exception as e:
        app.logger.error(f"Error fetching vendors: {e}")
        return jsonify({'success': False, 'message': 'Error fetching vendors'}), 500
    return jsonify({'success': True, 'users': page.pop('items'), **page})


@app.route('/api/admin/users/<user_id>', methods=['GET'])
@role_required('admin')
def admin_get_user(user_id):
    try:
        user_snap = get_firestore().collection(USERS).document(user_id).get()
    except Exception as e:
        app.logger.error(f"Error fetching user {user_id}: {e}")
        return jsonify({'success': False, 'message': 'Error fetching user'}), 500

    if not user_snap.exists:
        return jsonify({'success': False, 'message': 'User not found'}), 404
    return jsonify({'success': True, 'user': serialize_user(doc_to_dict(user_snap))})


@app.route('/api/admin/products', methods=['GET'])
@role_required('admin')
def admin_get_products():
    status = request.args.get('status')
    if status and status not in PRODUCT_STATUSES:
        return jsonify({'success': False, 'message': 'Invalid status'}), 400

    try:
        if status:
            snapshots = where_equals(PRODUCTS, 'status', status).stream()
        else:
            snapshots = get_firestore().collection(PRODUCTS).stream()
        return jsonify({'success': True, 'products': [doc_to_dict(snap) for snap in snapshots]})
    except Exception as e:
        app.logger.error(f"Error fetching products: {e}")
        return jsonify({'success': False, 'message': 'Error fetching products'}), 500


@app.route('/api/admin/products/<product_id>/status', methods=['PUT'])
@role_required('admin')
def admin_update_product_status(product_id):
    data = request.json or {}
    new_status = data.get('status')

    if not new_status:
        return jsonify({'success': False, 'message': 'Status is required'}), 400
    if new_status not in PRODUCT_STATUSES:
        return jsonify({'success': False, 'message': 'Invalid status'}), 400

    product_ref = get_firestore().collection(PRODUCTS).document(product_id)
    try:
        if not product_ref.get().exists:
            return jsonify({'success': False, 'message': 'Product not found'}), 404
        product_ref.update({'status': new_status, 'updatedAt': firestore.SERVER_TIMESTAMP})
        return jsonify({'success': True, 'message': f'Product status updated to {new_status}'})
    except Exception as e:
        app.logger.error(f"Error updating product status: {e}")
        return jsonify({'success': False, 'message': 'Error updating product status'}), 500


@app.route('/api/admin/categories', methods=['POST'])
@role_required('admin')
def admin_create_category():
    data = request.json or {}
    name = (data.get('name') or '').strip()
    if not name:
        return jsonify({'success': False, 'message': 'Category name is required'}), 400

    categories_ref = get_firestore().collection(CATEGORIES)
    try:
        if list(where_equals(CATEGORIES, 'name', name).stream()):
            return jsonify({'success': False, 'message': 'Category already exists'}), 409
        _, category_ref = categories_ref.add({'name': name})
        return jsonify({'success': True, 'category': doc_to_dict(category_ref.get())}), 201
    except Exception as e:
        app.logger.error(f"Error creating category: {e}")
        return jsonify({'success': False, 'message': 'Error creating category'}), 500


@app.route('/api/admin/orders', methods=['GET'])
@role_required('admin')
def admin_get_orders():
    try:
        orders = [doc_to_dict(snap) for snap in get_firestore().collection(ORDERS).stream()]
        return jsonify({'success': True, 'orders': orders})
    except Exception as e:
        app.logger.error(f"Error fetching orders: {e}")
        return jsonify({'success': False, 'message': 'Error fetching orders'}), 500


@app.route('/api/admin/orders/<order_id>/status', methods=['PUT'])
@role_required('admin')
def admin_update_order_status(order_id):
    data = request.json or {}
    new_status = data.get('status')

    if not new_status:
        return jsonify({'success': False, 'message': 'Status is required'}), 400
    if new_status not in ORDER_STATUSES:
        return jsonify({'success': False, 'message': 'Invalid status'}), 400

    order_ref = get_firestore().collection(ORDERS).document(order_id)
    try:
        if not order_ref.get().exists:
            return jsonify({'success': False, 'message': 'Order not found'}), 404
        order_ref.update({'status': new_status, 'updatedAt': firestore.SERVER_TIMESTAMP})
        return jsonify({'success': True, 'message': f'Order status updated to {new_status}'})
    except Exception as e:
        app.logger.error(f"Error updating order status: {e}")
        return jsonify({'success': False, 'message': 'Error updating order status'}), 500


@app.route('/api/admin/orders/<order_id>', methods=['DELETE'])
@role_required('admin')
def admin_delete_order(order_id):
    order_ref = get_firestore().collection(ORDERS).document(order_id)
    try:
        if not order_ref.get().exists:
            return jsonify({'success': False, 'message': 'Order not found'}), 404
        order_ref.delete()
        return jsonify({'success': True, 'message': 'Order deleted successfully'})
    except Exception as e:
        app.logger.error(f"Error deleting order {order_id}: {e}")
        return jsonify({'success': False, 'message': 'Error deleting order'}), 500


@app.route('/api/admin/feedback', methods=['GET'])
@role_required('admin')
def admin_get_feedback():
    try:
        entries = [doc_to_dict(snap) for snap in get_firestore().collection(FEEDBACKS).stream()]
        return jsonify({'success': True, 'feedback': entries})
    except Exception as e:
        app.logger.error(f"Error fetching feedback: {e}")
        return jsonify({'success': False, 'message': 'Error fetching feedback'}), 500


@app.route('/api/admin/feedback/<feedback_id>', methods=['DELETE'])
@role_required('admin')
def admin_delete_feedback(feedback_id):
    feedback_ref = get_firestore().collection(FEEDBACKS).document(feedback_id)
    try:
        if not feedback_ref.get().exists:
            return jsonify({'success': False, 'message': 'Feedback not found'}), 404
        feedback_ref.delete()
        return jsonify({'success': True, 'message': 'Feedback deleted successfully'})
    except Exception as e:
        app.logger.error(f"Error deleting feedback {feedback_id}: {e}")
        return jsonify({'success': False, 'message': 'Error deleting feedback'}), 500


@app.route('/api/admin/complaints', methods=['GET'])
@role_required('admin')
def admin_get_complaints():
    status = request.args.get('status')
    if status and status not in COMPLAINT_STATUSES:
        return jsonify({'success': False, 'message': 'Invalid status'}), 400

    try:
        if status:
            snapshots = where_equals(COMPLAINTS, 'status', status).stream()
        else:
            snapshots = get_firestore().collection(COMPLAINTS).stream()
        return jsonify({'success': True, 'complaints': [doc_to_dict(snap) for snap in snapshots]})
    except Exception as e:
        app.logger.error(f"Error fetching complaints: {e}")
        return jsonify({'success': False, 'message': 'Error fetching complaints'}), 500


@app.route('/api/admin/complaints/<complaint_id>/status', methods=['PUT'])
@role_required('admin')
def admin_update_complaint_status(complaint_id):
    data = request.json or {}
    new_status = data.get('status')

    if new_status not in COMPLAINT_STATUSES:
        return jsonify({'success': False, 'message': 'Invalid status'}), 400

    complaint_ref = get_firestore().collection(COMPLAINTS).document(complaint_id)
    try:
        if not complaint_ref.get().exists:
            return jsonify({'success': False, 'message': 'Complaint not found'}), 404
        complaint_ref.update({'status': new_status, 'updatedAt': firestore.SERVER_TIMESTAMP})
        return jsonify({'success': True, 'message': f'Complaint marked {new_status}'})
    except Exception as e:
        app.logger.error(f"Error updating complaint {complaint_id}: {e}")
        return jsonify({'success': False, 'message': 'Error updating complaint'}), 500


@app.route('/api/admin/complaints/<complaint_id>', methods=['DELETE'])
@role_required('admin')
def admin_delete_complaint(complaint_id):
    complaint_ref = get_firestore().collection(COMPLAINTS).document(complaint_id)
    try:
        if not complaint_ref.get().exists:
            return jsonify({'success': False, 'message': 'Complaint not found'}), 404
        complaint_ref.delete()
        return jsonify({'success': True, 'message': 'Complaint deleted successfully'})
    except Exception as e:
        app.logger.error(f"Error deleting complaint {complaint_id}: {e}")
        return jsonify({'success': False, 'message': 'Error deleting complaint'}), 500


if __name__ == '__main__':
    app.logger.info("Starting Flask server...")
    app.logger.info(f"Marketplace API running on {PUBLIC_APP_URL}")
    app.run(debug=True, port=PORT)

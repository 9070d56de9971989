"""
Test configuration and fixtures for pytest tests.
Provides isolated test environment with in-memory SQLite database.
"""

import os
import tempfile
from io import BytesIO

import pytest
from PIL import Image
from werkzeug.datastructures import FileStorage

# The app reads its configuration at import time
os.environ['SESSION_SECRET'] = 'test-secret-key-for-testing'
os.environ['DATABASE_URL'] = 'sqlite:///:memory:'
os.environ['UPLOAD_FOLDER'] = tempfile.mkdtemp(prefix='shoeclean-test-uploads-')
os.environ['ENABLE_BACKGROUND_JOBS'] = 'false'
os.environ.pop('APP_ENV', None)

# Import the app before any test pulls in models, so app startup (delete guard
# registration, table creation) runs with models fully loaded.
import app as _app_module  # noqa: E402,F401

TEST_PASSWORD = 'test_password'
TEST_SERVER_KEY = 'test-server-key'


class FakePaymentGateway:
    """Stands in for the QRIS gateway; records charges instead of calling out."""

    def __init__(self, server_key=TEST_SERVER_KEY):
        self.server_key = server_key
        self.charges = []

    def verify_notification(self, payload):
        from payment_gateway import verify_signature
        return verify_signature(payload, self.server_key)

    def create_qris_charge(self, gateway_order_ref, amount, customer, item_name):
        from payment_gateway import ChargeResult
        self.charges.append({'ref': gateway_order_ref, 'amount': amount, 'customer': customer})
        return ChargeResult(
            transaction_id=f'gw-{len(self.charges)}',
            qr_code=f'https://qr.example.test/{gateway_order_ref}.png',
            status='pending',
        )

    def notification(self, transaction, transaction_status, signature=None):
        """Webhook body for ``transaction`` signed with this gateway's key."""
        from payment_gateway import compute_signature
        gross_amount = f'{transaction.amount}.00'
        payload = {
            'order_id': transaction.gateway_order_ref,
            'transaction_id': transaction.gateway_transaction_id,
            'transaction_status': transaction_status,
            'status_code': '200',
            'gross_amount': gross_amount,
        }
        payload['signature_key'] = signature or compute_signature(
            payload['order_id'], '200', gross_amount, self.server_key
        )
        return payload


class RecordingBroadcaster:
    """Broadcaster that remembers what was published."""

    def __init__(self):
        from realtime import Broadcaster
        self._inner = Broadcaster()
        self.published = []

    def publish(self, channel, payload):
        self.published.append((channel, payload))
        return self._inner.publish(channel, payload)

    def stream(self, channel, keepalive=None):
        return self._inner.stream(channel)


@pytest.fixture(scope='function')
def app(tmp_path):
    """Create a test Flask app with isolated SQLite database."""
    from app import app, db
    import main  # noqa: F401  registers the blueprints
    from photo_storage import LocalPhotoStorage
    from services_catalogue import seed_default_services
    from utils import create_user

    app.config['TESTING'] = True
    app.config['WTF_CSRF_ENABLED'] = False  # Disable CSRF for testing

    app.extensions['photo_storage'] = LocalPhotoStorage(str(tmp_path / 'uploads'))
    app.extensions['payment_gateway'] = FakePaymentGateway()
    app.extensions['notifier'] = RecordingBroadcaster()

    with app.app_context():
        db.session.remove()
        db.drop_all()
        db.create_all()
        seed_default_services(db.session)
        create_user(db.session, 'test_admin_user', TEST_PASSWORD, 'admin', full_name='Admin Test')
        create_user(db.session, 'test_staff_user', TEST_PASSWORD, 'staff', full_name='Budi')
        create_user(db.session, 'test_staff_two', TEST_PASSWORD, 'staff', full_name='Sari')
        create_user(db.session, 'test_customer_user', TEST_PASSWORD, 'customer', full_name='Rina')

    yield app

    with app.app_context():
        db.session.remove()


@pytest.fixture(scope='function')
def client(app):
    """Create a test client for the Flask app."""
    return app.test_client()


@pytest.fixture(scope='function')
def session(app):
    """Database session inside an app context, for service-level tests."""
    from app import db
    with app.app_context():
        yield db.session
        db.session.rollback()


def get_user(session, username):
    from models import User
    return session.query(User).filter_by(username=username).one()


@pytest.fixture
def staff(session):
    return get_user(session, 'test_staff_user')


@pytest.fixture
def other_staff(session):
    return get_user(session, 'test_staff_two')


@pytest.fixture
def customer(session):
    return get_user(session, 'test_customer_user')


def login(client, username, password=TEST_PASSWORD):
    response = client.post('/login', data={'username': username, 'password': password})
    assert response.status_code == 302  # Redirect after successful login
    return client


@pytest.fixture(scope='function')
def staff_auth(client):
    """Login as staff user and return client with auth."""
    return login(client, 'test_staff_user')


@pytest.fixture(scope='function')
def admin_auth(client):
    """Login as admin user and return client with auth."""
    return login(client, 'test_admin_user')


@pytest.fixture(scope='function')
def customer_auth(client):
    """Login as customer user and return client with auth."""
    return login(client, 'test_customer_user')


def png_bytes(color=(200, 30, 30)):
    buffer = BytesIO()
    Image.new('RGB', (8, 8), color).save(buffer, format='PNG')
    return buffer.getvalue()


def photo_upload(filename='evidence.png'):
    """An uploaded image as the stage routes receive it."""
    return FileStorage(stream=BytesIO(png_bytes()), filename=filename, content_type='image/png')


def place_order(session, customer, order_type='online', status=None, staff=None):
    """
    Create an order through the order service and optionally move it to ``status``.

    Online orders get a fresh customer address; offline orders need ``staff``.
    """
    from models import Address
    from services_orders import create_offline_order, create_online_order
    from services_status_projection import append_status
    from timezone_utils import get_local_today

    today = get_local_today().isoformat()
    if order_type == 'online':
        address = Address(
            user_id=customer.id, name='Rina', phone='081234567890', street='Jl. Melati No. 5',
            latitude=-6.94, longitude=107.63, radius=100,
        )
        session.add(address)
        session.commit()
        order = create_online_order(session, customer, address.id, today)
    else:
        order = create_offline_order(session, staff, customer.id, 'Walk In', '081298765432', today)

    if status:
        append_status(session, order.id, status)
        session.commit()
    return order


def shoe_input(services, additional_services=(), brand='Nike'):
    from services_stage_claims import ShoeInput
    return ShoeInput(
        brand=brand, size='42', type='Sneakers', material='Canvas', category='Casual',
        condition='Kotor', services=list(services), additional_services=list(additional_services),
    )

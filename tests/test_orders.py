"""
Tests for order creation, numbering, the remaining status transitions and
the customer pages.
"""

from datetime import date, timedelta

import pytest

from conftest import get_user, login, place_order


class TestOrderNumbers:
    """ORDyymmdd-NNN numbering"""

    def test_format(self):
        from services_orders import format_order_number
        assert format_order_number(date(2026, 10, 19), 7) == 'ORD261019-007'

    def test_sequence_per_day(self, session):
        from services_orders import allocate_order_number

        day = date(2026, 10, 19)
        assert allocate_order_number(session, day) == 'ORD261019-001'
        assert allocate_order_number(session, day) == 'ORD261019-002'
        assert allocate_order_number(session, date(2026, 10, 20)) == 'ORD261020-001'
        assert allocate_order_number(session, day) == 'ORD261019-003'

    def test_numbers_are_not_reused_after_failure(self, session, customer, monkeypatch):
        import services_orders
        from models import Order

        first = place_order(session, customer)

        def broken_create(*args, **kwargs):
            raise RuntimeError('insert failed')

        monkeypatch.setattr(services_orders, '_create_order', broken_create)
        with pytest.raises(RuntimeError):
            place_order(session, customer)
        monkeypatch.undo()

        third = place_order(session, customer)
        first_seq = int(first.number.rsplit('-', 1)[1])
        third_seq = int(third.number.rsplit('-', 1)[1])
        assert third_seq == first_seq + 2
        assert session.query(Order).count() == 2


class TestOrderCreation:
    """Online and walk-in orders"""

    def test_online_order_starts_waiting_for_deposit(self, session, customer):
        from order_status_constants import WAITING_DEPOSIT
        from services_status_projection import get_current_status

        order = place_order(session, customer)
        assert order.type == 'online'
        assert get_current_status(session, order.id) == WAITING_DEPOSIT
        assert [(t.type, t.amount, t.status) for t in order.transactions] == [('down_payment', 20000, 'pending')]

    def test_online_order_needs_own_address(self, session, customer, staff):
        from domain_errors import ValidationFailed
        from services_orders import create_offline_order, create_online_order
        from timezone_utils import get_local_today

        create_offline_order(session, staff, customer.id, 'Walk In', '081298765432', get_local_today())
        foreign = staff.addresses[0]
        with pytest.raises(ValidationFailed) as excinfo:
            create_online_order(session, customer, foreign.id, get_local_today().isoformat())
        assert 'address_id' in excinfo.value.errors

    def test_past_date_is_rejected(self, session, customer):
        from domain_errors import ValidationFailed
        from services_orders import parse_service_date
        from timezone_utils import get_local_today

        with pytest.raises(ValidationFailed):
            parse_service_date((get_local_today() - timedelta(days=1)).isoformat())
        with pytest.raises(ValidationFailed):
            parse_service_date('not a date')
        assert parse_service_date(get_local_today().isoformat()) == get_local_today()

    def test_offline_order_uses_store_address(self, session, staff, customer):
        from config_payments import SERVICE_CENTER_STREET

        order = place_order(session, customer, order_type='offline', staff=staff)
        again = place_order(session, customer, order_type='offline', staff=staff)

        assert order.type == 'offline'
        assert order.user_id == customer.id
        assert order.address.radius == 0
        assert order.address.street == SERVICE_CENTER_STREET
        assert order.address.phone == '081298765432'
        assert again.address_id == order.address_id

    def test_offline_order_validation(self, session, staff, customer):
        from domain_errors import ValidationFailed
        from services_orders import create_offline_order
        from timezone_utils import get_local_today

        with pytest.raises(ValidationFailed) as excinfo:
            create_offline_order(session, staff, staff.id, '', '12ab', get_local_today())
        assert set(excinfo.value.errors) == {'customer_user_id', 'contact_name', 'contact_phone'}


class TestTransitions:
    """Finishing the process and cancelling"""

    def test_finish_processing(self, session, staff, customer):
        from domain_errors import InvalidStatusTransition
        from order_status_constants import IN_PROCESS, PROCESS_COMPLETED
        from services_orders import finish_processing
        from services_status_projection import get_current_status

        waiting = place_order(session, customer)
        with pytest.raises(InvalidStatusTransition):
            finish_processing(session, waiting.number, staff)

        order = place_order(session, customer, status=IN_PROCESS)
        finish_processing(session, order.number, staff)
        assert get_current_status(session, order.id) == PROCESS_COMPLETED

    def test_cancel_order(self, session, customer):
        from domain_errors import InvalidStatusTransition
        from order_status_constants import CANCELLED
        from services_orders import cancel_order
        from services_status_projection import get_current_status

        admin = get_user(session, 'test_admin_user')
        order = place_order(session, customer)
        cancel_order(session, order.number, admin, note='Permintaan pelanggan')

        assert get_current_status(session, order.id) == CANCELLED
        assert [t.status for t in order.transactions] == ['cancelled']
        with pytest.raises(InvalidStatusTransition):
            cancel_order(session, order.number, admin)

    def test_cancel_route_is_admin_only(self, app, client):
        from app import db

        with app.app_context():
            number = place_order(db.session, get_user(db.session, 'test_customer_user')).number

        login(client, 'test_staff_user')
        response = client.post(f'/staff/orders/{number}/cancel-order')
        assert response.status_code == 302
        client.get('/logout')

        login(client, 'test_admin_user')
        response = client.post(f'/staff/orders/{number}/cancel-order', data={'note': 'Duplikat'})
        assert response.status_code == 302

        from order_status_constants import CANCELLED
        from services_orders import get_order_by_number
        from services_status_projection import get_current_status
        with app.app_context():
            order = get_order_by_number(db.session, number)
            assert get_current_status(db.session, order.id) == CANCELLED


class TestCustomerPages:
    """Customer-facing order pages"""

    def test_place_order_through_form(self, app, customer_auth):
        from app import db
        from models import Address, Order
        from timezone_utils import get_local_today

        with app.app_context():
            customer = get_user(db.session, 'test_customer_user')
            address = Address(user_id=customer.id, name='Rina', phone='081234567890',
                              street='Jl. Melati No. 5', latitude=-6.94, longitude=107.63, radius=50)
            db.session.add(address)
            db.session.commit()
            address_id = address.id

        assert customer_auth.get('/order').status_code == 200
        response = customer_auth.post('/order', data={
            'address_id': address_id, 'date': get_local_today().isoformat(),
        })
        assert response.status_code == 302

        with app.app_context():
            order = db.session.query(Order).one()
            assert response.headers['Location'].endswith(f'/orders/{order.number}')

    def test_status_json(self, app, customer_auth):
        from app import db
        from order_status_constants import PICKUP_SCHEDULED

        with app.app_context():
            number = place_order(db.session, get_user(db.session, 'test_customer_user'),
                                 status=PICKUP_SCHEDULED).number

        response = customer_auth.get(f'/orders/{number}/status')
        assert response.status_code == 200
        body = response.get_json()
        assert body['number'] == number
        assert body['status'] == PICKUP_SCHEDULED
        assert body['label'] == 'Penjemputan Dijadwalkan'
        assert [entry['status'] for entry in body['history']] == ['waiting_deposit', PICKUP_SCHEDULED]

    def test_other_customers_order_is_404(self, app, client):
        from app import db
        from utils import create_user

        with app.app_context():
            number = place_order(db.session, get_user(db.session, 'test_customer_user')).number
            create_user(db.session, 'another_customer', 'test_password', 'customer')

        login(client, 'another_customer')
        assert client.get(f'/orders/{number}').status_code == 404

    def test_order_lists(self, app, customer_auth):
        from app import db
        from order_status_constants import COMPLETED

        with app.app_context():
            customer = get_user(db.session, 'test_customer_user')
            active = place_order(db.session, customer).number
            done = place_order(db.session, customer, status=COMPLETED).number

        page = customer_auth.get('/orders').data
        assert active.encode() in page and done.encode() not in page
        page = customer_auth.get('/orders?status=completed').data
        assert done.encode() in page and active.encode() not in page

    def test_add_address(self, app, customer_auth):
        from app import db
        from models import Address

        response = customer_auth.post('/addresses', data={
            'name': 'Rumah', 'phone': '081234567890', 'street': 'Jl. Dago No. 1',
            'latitude': '-6.90', 'longitude': '107.61', 'radius': '100',
        })
        assert response.status_code == 302

        response = customer_auth.post('/addresses', data={
            'name': 'Jauh', 'phone': '081234567890', 'street': 'Garut',
            'latitude': '-7.20', 'longitude': '107.90', 'radius': '100',
        })
        assert response.status_code == 302

        with app.app_context():
            assert [a.name for a in db.session.query(Address).all()] == ['Rumah']

    def test_staff_is_sent_to_tasks(self, app, staff_auth):
        response = staff_auth.get('/orders')
        assert response.status_code == 302
        assert response.headers['Location'].endswith('/staff/tasks')

"""
Tests for the payment flow: starting QRIS charges, the gateway webhook and
charge expiry.
"""

from datetime import timedelta

import pytest

from conftest import get_user, login, place_order


def _limiter(session):
    from rate_limits import RateLimiter
    return RateLimiter(session, 1, timedelta(minutes=15))


def _down_payment(session, order):
    from services_payments import DOWN_PAYMENT, latest_transaction
    return latest_transaction(session, order.id, DOWN_PAYMENT)


class TestStartCharge:
    """Creating QRIS charges for down and full payments"""

    def test_down_payment_charge(self, app, session, customer):
        from services_payments import DOWN_PAYMENT, start_charge

        gateway = app.extensions['payment_gateway']
        order = place_order(session, customer)
        bill = start_charge(session, gateway, _limiter(session), order, DOWN_PAYMENT, '10.0.0.1')

        assert bill.gateway_transaction_id == 'gw-1'
        assert bill.gateway_order_ref.startswith(f'DP_{order.number}_')
        assert bill.qr_code.endswith('.png')
        assert bill.expires_at is not None
        assert gateway.charges[0]['amount'] == 20000
        assert gateway.charges[0]['customer']['phone'] == '081234567890'

    def test_wrong_status_is_rejected(self, app, session, customer):
        from domain_errors import InvalidStatusTransition
        from services_payments import FULL_PAYMENT, start_charge

        order = place_order(session, customer)
        with pytest.raises(InvalidStatusTransition):
            start_charge(session, app.extensions['payment_gateway'], _limiter(session),
                         order, FULL_PAYMENT, '10.0.0.1')
        assert app.extensions['payment_gateway'].charges == []

    def test_live_charge_is_not_duplicated(self, app, session, customer):
        from services_payments import DOWN_PAYMENT, ActiveChargeExists, start_charge

        gateway = app.extensions['payment_gateway']
        order = place_order(session, customer)
        start_charge(session, gateway, _limiter(session), order, DOWN_PAYMENT, '10.0.0.1')

        with pytest.raises(ActiveChargeExists):
            start_charge(session, gateway, _limiter(session), order, DOWN_PAYMENT, '10.0.0.1')
        assert len(gateway.charges) == 1

    def test_expired_charge_is_reissued(self, app, session, customer):
        from models import Transaction
        from services_payments import DOWN_PAYMENT, start_charge
        from timezone_utils import get_utc_now

        gateway = app.extensions['payment_gateway']
        order = place_order(session, customer)
        now = get_utc_now()
        first = start_charge(session, gateway, _limiter(session), order, DOWN_PAYMENT, '10.0.0.1', now=now)
        first_id = first.id

        later = now + timedelta(minutes=20)
        second = start_charge(session, gateway, _limiter(session), order, DOWN_PAYMENT, '10.0.0.1', now=later)

        assert second.id != first_id
        assert session.get(Transaction, first_id).status == 'cancelled'
        assert second.status == 'pending'
        assert second.amount == 20000
        assert second.gateway_transaction_id == 'gw-2'

    def test_rate_limited_before_gateway_call(self, app, session, customer):
        from domain_errors import RateLimitExceeded
        from models import Transaction
        from services_payments import DOWN_PAYMENT, start_charge
        from timezone_utils import get_utc_now

        gateway = app.extensions['payment_gateway']
        order = place_order(session, customer)
        now = get_utc_now()
        first = start_charge(session, gateway, _limiter(session), order, DOWN_PAYMENT, '10.0.0.1', now=now)
        # Charge cancelled by the gateway, customer retries straight away
        first.status = 'cancelled'
        session.commit()

        with pytest.raises(RateLimitExceeded):
            start_charge(session, gateway, _limiter(session), order, DOWN_PAYMENT, '10.0.0.1',
                         now=now + timedelta(minutes=1))
        assert len(gateway.charges) == 1
        assert session.query(Transaction).filter_by(order_id=order.id).count() == 1


class TestNotification:
    """Webhook handling"""

    def _charged_order(self, app, session, customer, order_type='online', staff=None):
        from services_payments import DOWN_PAYMENT, start_charge

        order = place_order(session, customer, order_type=order_type, staff=staff)
        bill = start_charge(session, app.extensions['payment_gateway'], _limiter(session),
                            order, DOWN_PAYMENT, '10.0.0.1')
        return order, bill

    def test_settlement_schedules_pickup(self, app, session, customer):
        from order_status_constants import PICKUP_SCHEDULED
        from services_payments import handle_notification
        from services_status_projection import get_current_status

        order, bill = self._charged_order(app, session, customer)
        gateway = app.extensions['payment_gateway']
        notifier = app.extensions['notifier']

        result = handle_notification(session, gateway, notifier, gateway.notification(bill, 'settlement'))

        assert result.outcome == 'applied'
        assert _down_payment(session, order).status == 'paid'
        assert get_current_status(session, order.id) == PICKUP_SCHEDULED
        assert notifier.published == [(f'payments/{order.number}/dp', {'status': 'paid'})]

    def test_offline_settlement_goes_to_inspection(self, app, session, staff, customer):
        from order_status_constants import INSPECTION
        from services_payments import handle_notification
        from services_status_projection import get_current_status

        order, bill = self._charged_order(app, session, customer, order_type='offline', staff=staff)
        gateway = app.extensions['payment_gateway']
        handle_notification(session, gateway, app.extensions['notifier'], gateway.notification(bill, 'settlement'))

        assert get_current_status(session, order.id) == INSPECTION

    def test_tampered_signature_changes_nothing(self, app, session, customer):
        from models import OrderStatus
        from order_status_constants import WAITING_DEPOSIT
        from services_payments import handle_notification
        from services_status_projection import get_current_status

        order, bill = self._charged_order(app, session, customer)
        gateway = app.extensions['payment_gateway']
        notifier = app.extensions['notifier']
        statuses_before = session.query(OrderStatus).filter_by(order_id=order.id).count()

        payload = gateway.notification(bill, 'settlement', signature='0' * 128)
        result = handle_notification(session, gateway, notifier, payload)

        assert result.outcome == 'rejected'
        assert _down_payment(session, order).status == 'pending'
        assert session.query(OrderStatus).filter_by(order_id=order.id).count() == statuses_before
        assert get_current_status(session, order.id) == WAITING_DEPOSIT
        assert notifier.published == []

    def test_repeated_settlement_is_ignored(self, app, session, customer):
        from models import OrderStatus
        from services_payments import handle_notification

        order, bill = self._charged_order(app, session, customer)
        gateway = app.extensions['payment_gateway']
        notifier = app.extensions['notifier']
        payload = gateway.notification(bill, 'settlement')

        handle_notification(session, gateway, notifier, payload)
        statuses = session.query(OrderStatus).filter_by(order_id=order.id).count()
        result = handle_notification(session, gateway, notifier, payload)

        assert result.outcome == 'ignored'
        assert session.query(OrderStatus).filter_by(order_id=order.id).count() == statuses
        assert len(notifier.published) == 1

    def test_expire_cancels_charge(self, app, session, customer):
        from order_status_constants import WAITING_DEPOSIT
        from services_payments import handle_notification
        from services_status_projection import get_current_status

        order, bill = self._charged_order(app, session, customer)
        gateway = app.extensions['payment_gateway']
        result = handle_notification(session, gateway, app.extensions['notifier'], gateway.notification(bill, 'expire'))

        assert result.transaction_status == 'cancelled'
        assert _down_payment(session, order).status == 'cancelled'
        assert get_current_status(session, order.id) == WAITING_DEPOSIT

    def test_settlement_after_cancellation_keeps_order_cancelled(self, app, session, customer):
        from order_status_constants import CANCELLED
        from services_payments import handle_notification
        from services_status_projection import append_status, get_current_status

        order, bill = self._charged_order(app, session, customer)
        append_status(session, order.id, CANCELLED)
        session.commit()

        gateway = app.extensions['payment_gateway']
        handle_notification(session, gateway, app.extensions['notifier'], gateway.notification(bill, 'settlement'))
        assert get_current_status(session, order.id) == CANCELLED

    def test_full_payment_settlement_starts_processing(self, app, session, customer):
        from models import Transaction
        from order_status_constants import IN_PROCESS, WAITING_PAYMENT
        from services_payments import FULL_PAYMENT, handle_notification, start_charge
        from services_status_projection import get_current_status

        order = place_order(session, customer, status=WAITING_PAYMENT)
        session.add(Transaction(order_id=order.id, type=FULL_PAYMENT, amount=70000, status='pending'))
        session.commit()

        gateway = app.extensions['payment_gateway']
        bill = start_charge(session, gateway, _limiter(session), order, FULL_PAYMENT, '10.0.0.1')
        assert bill.gateway_order_ref.startswith('FULL_')

        handle_notification(session, gateway, app.extensions['notifier'], gateway.notification(bill, 'settlement'))
        assert get_current_status(session, order.id) == IN_PROCESS


class TestCallbackRoute:
    """The public webhook endpoint"""

    def _charge(self, app):
        from app import db
        from services_payments import DOWN_PAYMENT, start_charge

        with app.app_context():
            customer = get_user(db.session, 'test_customer_user')
            order = place_order(db.session, customer)
            bill = start_charge(db.session, app.extensions['payment_gateway'], _limiter(db.session),
                                order, DOWN_PAYMENT, '10.0.0.1')
            return order.number, app.extensions['payment_gateway'].notification(bill, 'settlement')

    def test_valid_notification(self, app, client):
        _, payload = self._charge(app)
        response = client.post('/transaction/callback', json=payload)
        assert response.status_code == 200
        assert response.get_json() == {'status': 'ok'}

    def test_bad_signature_is_forbidden(self, app, client):
        _, payload = self._charge(app)
        payload['signature_key'] = 'f' * 128
        assert client.post('/transaction/callback', json=payload).status_code == 403

    def test_unknown_transaction(self, app, client):
        from payment_gateway import compute_signature

        payload = {
            'order_id': 'DP_ORD000000-999_20260101000000',
            'transaction_id': 'gw-unknown',
            'transaction_status': 'settlement',
            'status_code': '200',
            'gross_amount': '20000.00',
        }
        payload['signature_key'] = compute_signature(
            payload['order_id'], '200', '20000.00', app.extensions['payment_gateway'].server_key
        )
        assert client.post('/transaction/callback', json=payload).status_code == 404

    def test_not_json(self, client):
        response = client.post('/transaction/callback', data='nope', content_type='text/plain')
        assert response.status_code == 400

    def test_customer_pay_button(self, app, client):
        from app import db
        from services_orders import get_order_by_number

        with app.app_context():
            customer = get_user(db.session, 'test_customer_user')
            number = place_order(db.session, customer).number
        login(client, 'test_customer_user')

        response = client.post(f'/transactions/down-payment/{number}')
        assert response.status_code == 302
        assert response.headers['Location'].endswith(f'/transactions/down-payment/{number}')

        page = client.get(f'/transactions/down-payment/{number}')
        assert page.status_code == 200
        assert f'/events/payments/{number}/dp'.encode() in page.data

        with app.app_context():
            order = get_order_by_number(db.session, number)
            assert _down_payment(db.session, order).gateway_transaction_id == 'gw-1'


class TestExpiry:
    """Scheduled expiry of abandoned charges"""

    def test_stale_charges_are_cancelled(self, app, session, customer):
        from services_payments import DOWN_PAYMENT, expire_stale_transactions, start_charge
        from timezone_utils import get_utc_now

        order = place_order(session, customer)
        now = get_utc_now()
        start_charge(session, app.extensions['payment_gateway'], _limiter(session),
                     order, DOWN_PAYMENT, '10.0.0.1', now=now)

        assert expire_stale_transactions(session, now=now + timedelta(minutes=5)) == 0
        assert expire_stale_transactions(session, now=now + timedelta(minutes=16)) == 1
        assert _down_payment(session, order).status == 'cancelled'

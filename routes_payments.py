"""
Payment pages (QRIS down payment and full payment), the gateway webhook and
the Server-Sent Events stream that tells the payment page when it settled.
"""
import logging
from datetime import timedelta

from flask import (
    Blueprint, Response, abort, current_app, flash, jsonify, redirect, render_template, request,
    stream_with_context, url_for,
)
from flask_login import current_user

from app import csrf, db
from config_payments import PAYMENT_EXPIRY_MINUTES
from domain_errors import DomainError, OrderNotFound, RateLimitExceeded
from rate_limits import RateLimiter
from realtime import payment_channel
from services_orders import get_order_by_number
from services_payments import (
    DOWN_PAYMENT, FULL_PAYMENT, ActiveChargeExists, active_charge, handle_notification, start_charge,
)
from utils.auth_decorators import customer_required
from utils.form_helpers import client_ip

logger = logging.getLogger(__name__)

payments_bp = Blueprint('payments', __name__)

PHASES = {'down-payment': DOWN_PAYMENT, 'full-payment': FULL_PAYMENT}
PHASE_CHANNEL = {'dp': DOWN_PAYMENT, 'full': FULL_PAYMENT}


def _own_order_or_404(number):
    try:
        return get_order_by_number(db.session, number, customer_id=current_user.id)
    except OrderNotFound:
        abort(404)


@payments_bp.route('/transactions/<any("down-payment","full-payment"):phase>/<number>')
@customer_required
def show(phase, number):
    transaction_type = PHASES[phase]
    order = _own_order_or_404(number)
    charge = active_charge(db.session, order.id, transaction_type)
    if charge is None:
        flash('Tidak ada transaksi yang aktif', 'general_errors')
        return redirect(url_for('customer_orders.show', number=number))
    return render_template(
        'payments/show.html',
        order=order,
        transaction=charge,
        channel=payment_channel(order.number, transaction_type),
    )


@payments_bp.route('/transactions/<any("down-payment","full-payment"):phase>/<number>', methods=['POST'])
@customer_required
def pay(phase, number):
    transaction_type = PHASES[phase]
    order = _own_order_or_404(number)
    limiter = RateLimiter(db.session, 1, timedelta(minutes=PAYMENT_EXPIRY_MINUTES))
    try:
        start_charge(
            db.session,
            current_app.extensions['payment_gateway'],
            limiter,
            order,
            transaction_type,
            client_ip(),
        )
    except ActiveChargeExists as e:
        flash(e.message, 'general_errors')
        return redirect(url_for('payments.show', phase=phase, number=number))
    except RateLimitExceeded:
        logger.warning(f"Too many payment attempts for {number} from {client_ip()}")
        flash('Terlalu banyak percobaan pembayaran. Silakan coba lagi nanti.', 'limiter_errors')
        return redirect(url_for('customer_orders.show', number=number))
    except DomainError as e:
        flash(e.message, 'general_errors')
        return redirect(url_for('customer_orders.show', number=number))
    except Exception as e:
        logger.error(f"Payment creation failed for {number}: {str(e)}")
        flash('Gagal membuat transaksi. Silakan coba lagi.', 'general_errors')
        return redirect(url_for('customer_orders.show', number=number))

    return redirect(url_for('payments.show', phase=phase, number=number))


@payments_bp.route('/transaction/callback', methods=['POST'])
@csrf.exempt
def callback():
    payload = request.get_json(silent=True)
    if not isinstance(payload, dict):
        return jsonify({'status': 'error', 'message': 'invalid payload'}), 400

    result = handle_notification(
        db.session,
        current_app.extensions['payment_gateway'],
        current_app.extensions['notifier'],
        payload,
    )
    if result.outcome == 'rejected':
        return jsonify({'status': 'error', 'message': 'invalid signature'}), 403
    if result.outcome == 'not_found':
        return jsonify({'status': 'error', 'message': 'transaction not found'}), 404
    return jsonify({'status': 'ok'})


@payments_bp.route('/events/payments/<number>/<any(dp,full):phase>')
@customer_required
def events(number, phase):
    order = _own_order_or_404(number)
    channel = payment_channel(order.number, PHASE_CHANNEL[phase])
    notifier = current_app.extensions['notifier']
    return Response(
        stream_with_context(notifier.stream(channel)),
        mimetype='text/event-stream',
        headers={'Cache-Control': 'no-cache', 'X-Accel-Buffering': 'no'},
    )

"""
Customer pages: placing online orders, order history and detail, status
polling, and the customer's saved addresses.
"""
import logging

from flask import Blueprint, abort, flash, jsonify, redirect, render_template, request, url_for
from flask_login import current_user

from app import db
from domain_errors import OrderNotFound, ValidationFailed
from location_utils import validate_address_form
from models import Address
from order_status_constants import get_status_label
from services_orders import create_online_order, get_order_by_number
from services_status_projection import get_current_status, get_status_history
from services_task_queue import LIST_FILTERS, customer_orders_page
from timezone_utils import format_utc_datetime_to_local
from utils.auth_decorators import customer_required
from utils.form_helpers import flash_validation, page_arg

logger = logging.getLogger(__name__)

customer_orders_bp = Blueprint('customer_orders', __name__)


def _own_order_or_404(number):
    try:
        return get_order_by_number(db.session, number, customer_id=current_user.id)
    except OrderNotFound:
        abort(404)


@customer_orders_bp.route('/order')
@customer_required
def new():
    addresses = Address.query.filter(
        Address.user_id == current_user.id, Address.radius > 0
    ).order_by(Address.id).all()
    return render_template('orders/create.html', addresses=addresses)


@customer_orders_bp.route('/order', methods=['POST'])
@customer_required
def store():
    try:
        order = create_online_order(
            db.session, current_user, request.form.get('address_id'), request.form.get('date'),
        )
    except ValidationFailed as e:
        flash_validation(e)
        return redirect(url_for('customer_orders.new'))
    except Exception:
        flash('Gagal membuat pesanan. Silakan coba lagi.', 'general_errors')
        return redirect(url_for('customer_orders.new'))

    flash(f'Pesanan {order.number} berhasil dibuat. Silakan bayar deposit.', 'success')
    return redirect(url_for('customer_orders.show', number=order.number))


@customer_orders_bp.route('/orders')
@customer_required
def index():
    search = (request.args.get('search') or '').strip()
    status = request.args.get('status', 'active')
    if status not in LIST_FILTERS:
        status = 'active'
    pagination = customer_orders_page(db.session, current_user.id, status, search, page_arg())
    return render_template(
        'orders/index.html',
        pagination=pagination,
        rows=[(order, name, get_status_label(name)) for order, name in pagination.items],
        status=status,
        search=search,
    )


@customer_orders_bp.route('/orders/<number>')
@customer_required
def show(number):
    order = _own_order_or_404(number)
    status = get_current_status(db.session, order.id)
    return render_template(
        'orders/show.html',
        order=order,
        status=status,
        status_label=get_status_label(status),
        history=get_status_history(db.session, order.id),
    )


@customer_orders_bp.route('/orders/<number>/status')
@customer_required
def status(number):
    order = _own_order_or_404(number)
    current = get_current_status(db.session, order.id)
    return jsonify({
        'number': order.number,
        'status': current,
        'label': get_status_label(current),
        'history': [
            {
                'status': row.name,
                'label': get_status_label(row.name),
                'note': row.note,
                'at': format_utc_datetime_to_local(row.updated_at),
            }
            for row in get_status_history(db.session, order.id)
        ],
    })


@customer_orders_bp.route('/addresses', methods=['GET', 'POST'])
@customer_required
def addresses():
    if request.method == 'POST':
        cleaned, errors = validate_address_form(request.form)
        if errors:
            flash_validation(ValidationFailed(errors))
            return redirect(url_for('customer_orders.addresses'))
        try:
            db.session.add(Address(user_id=current_user.id, **cleaned))
            db.session.commit()
        except Exception as e:
            db.session.rollback()
            logger.error(f"Error saving address for {current_user.username}: {str(e)}")
            flash('Gagal menyimpan alamat', 'general_errors')
            return redirect(url_for('customer_orders.addresses'))
        flash('Alamat berhasil disimpan', 'success')
        return redirect(url_for('customer_orders.addresses'))

    saved = Address.query.filter(
        Address.user_id == current_user.id, Address.radius > 0
    ).order_by(Address.id).all()
    return render_template('orders/addresses.html', addresses=saved)

"""Walk-in (offline) orders entered by staff, plus process completion and cancellation."""
import logging

from flask import Blueprint, abort, flash, redirect, render_template, request, url_for
from flask_login import current_user

from app import db
from domain_errors import InvalidStatusTransition, OrderNotFound, ValidationFailed
from models import User
from order_status_constants import get_status_label
from services_orders import cancel_order, create_offline_order, finish_processing, get_order_by_number
from services_status_projection import get_current_status, get_status_history
from services_task_queue import LIST_FILTERS, offline_orders_page
from stage_lock_enforcement import enforce_stage_lock
from utils.auth_decorators import admin_required, staff_required
from utils.form_helpers import flash_validation, page_arg

logger = logging.getLogger(__name__)

staff_orders_bp = Blueprint('staff_orders', __name__, url_prefix='/staff/orders')
staff_orders_bp.before_request(enforce_stage_lock)


@staff_orders_bp.route('')
@staff_required
def index():
    search = (request.args.get('search') or '').strip()
    status = request.args.get('status', 'active')
    if status not in LIST_FILTERS:
        status = 'active'
    pagination = offline_orders_page(db.session, status, search, page_arg())
    return render_template(
        'staff/orders.html',
        pagination=pagination,
        rows=[(order, name, get_status_label(name)) for order, name in pagination.items],
        status=status,
        search=search,
    )


@staff_orders_bp.route('/create')
@staff_required
def create():
    customers = User.query.filter_by(role='customer').order_by(User.username).all()
    return render_template('staff/order_create.html', customers=customers)


@staff_orders_bp.route('', methods=['POST'])
@staff_required
def store():
    try:
        order = create_offline_order(
            db.session, current_user,
            request.form.get('customer_user_id'),
            request.form.get('contact_name'),
            request.form.get('contact_phone'),
            request.form.get('date'),
        )
    except ValidationFailed as e:
        flash_validation(e)
        return redirect(url_for('staff_orders.create'))
    except Exception:
        flash('Gagal membuat pesanan. Silakan coba lagi.', 'general_errors')
        return redirect(url_for('staff_orders.create'))

    flash(f'Pesanan {order.number} berhasil dibuat', 'success')
    return redirect(url_for('staff_orders.show', number=order.number))


@staff_orders_bp.route('/<number>')
@staff_required
def show(number):
    try:
        order = get_order_by_number(db.session, number)
    except OrderNotFound:
        abort(404)
    status = get_current_status(db.session, order.id)
    return render_template(
        'staff/order_show.html',
        order=order,
        status=status,
        status_label=get_status_label(status),
        history=get_status_history(db.session, order.id),
    )


@staff_orders_bp.route('/<number>/finish', methods=['POST'])
@staff_required
def finish(number):
    try:
        finish_processing(db.session, number, current_user,
                          note=(request.form.get('note') or '').strip() or None)
        flash(f'Pesanan {number} selesai diproses', 'success')
    except OrderNotFound:
        abort(404)
    except InvalidStatusTransition as e:
        flash(e.message, 'general_errors')
    except Exception:
        flash('Terjadi kesalahan. Silakan coba lagi.', 'general_errors')
    return redirect(url_for('staff_orders.show', number=number))


@staff_orders_bp.route('/<number>/cancel-order', methods=['POST'])
@admin_required
def cancel(number):
    try:
        cancel_order(db.session, number, current_user,
                     note=(request.form.get('note') or '').strip() or None)
        flash(f'Pesanan {number} dibatalkan', 'success')
    except OrderNotFound:
        abort(404)
    except InvalidStatusTransition as e:
        flash(e.message, 'general_errors')
    except Exception:
        flash('Terjadi kesalahan. Silakan coba lagi.', 'general_errors')
    return redirect(url_for('staff_orders.show', number=number))

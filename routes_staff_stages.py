"""
Stage pages for staff: view, claim, complete and release (cancel) the
pickup, inspection and delivery stages of an order.
"""
import logging

from flask import Blueprint, abort, current_app, flash, redirect, render_template, request, url_for
from flask_login import current_user

from app import db
from domain_errors import OrderNotFound, StageError, ValidationFailed
from models import OrderPhoto
from order_stages import INSPECTION_STAGE, get_stage
from order_status_constants import get_status_label
from services_catalogue import list_services
from services_orders import get_order_by_number
from services_stage_claims import StageClaimService, find_open_claim
from services_status_projection import get_current_status
from stage_lock_enforcement import enforce_stage_lock
from utils.auth_decorators import staff_required
from utils.form_helpers import flash_validation, parse_shoes

logger = logging.getLogger(__name__)

staff_stages_bp = Blueprint('staff_stages', __name__, url_prefix='/staff')
staff_stages_bp.before_request(enforce_stage_lock)

STAGE_RULE = '/<any(pickup,inspection,delivery):stage>/<order_number>'


def _stage_or_404(slug):
    stage = get_stage(slug)
    if stage is None:
        abort(404)
    return stage


def _claim_service():
    return StageClaimService(db.session, current_app.extensions['photo_storage'])


def _back(stage, order_number):
    return redirect(url_for('staff_stages.show', stage=stage.slug, order_number=order_number))


@staff_stages_bp.route(STAGE_RULE)
@staff_required
def show(stage, order_number):
    stage = _stage_or_404(stage)
    try:
        order = get_order_by_number(db.session, order_number)
    except OrderNotFound:
        abort(404)

    holder = find_open_claim(db.session, order.id, stage)
    photo = OrderPhoto.query.filter_by(order_id=order.id, stage=stage.photo_stage).first()
    status = get_current_status(db.session, order.id)

    return render_template(
        'staff/stage.html',
        order=order,
        stage=stage,
        status=status,
        status_label=get_status_label(status),
        holder=holder.staff if holder else None,
        is_mine=bool(holder and holder.admin_id == current_user.id),
        photo=photo,
        applicable=stage.applies_to(order.type),
        services=list_services(db.session) if stage is INSPECTION_STAGE else None,
    )


@staff_stages_bp.route(STAGE_RULE + '/claim', methods=['POST'])
@staff_required
def claim(stage, order_number):
    stage = _stage_or_404(stage)
    try:
        outcome = _claim_service().claim(stage, order_number, current_user)
        if outcome.created:
            flash(f'Tahap {stage.label} untuk pesanan {order_number} berhasil diambil', 'success')
    except OrderNotFound:
        abort(404)
    except StageError as e:
        flash(e.message, 'general_errors')
    except Exception:
        flash('Terjadi kesalahan. Silakan coba lagi.', 'general_errors')
    return _back(stage, order_number)


@staff_stages_bp.route(STAGE_RULE + '/complete', methods=['POST'])
@staff_required
def complete(stage, order_number):
    stage = _stage_or_404(stage)
    shoes = parse_shoes(request.form) if stage is INSPECTION_STAGE else None
    try:
        _claim_service().complete(
            stage, order_number, current_user,
            photo=request.files.get('photo'),
            note=(request.form.get('note') or '').strip() or None,
            shoes=shoes,
        )
    except OrderNotFound:
        abort(404)
    except ValidationFailed as e:
        flash_validation(e)
        return _back(stage, order_number)
    except StageError as e:
        flash(e.message, 'general_errors')
        return _back(stage, order_number)
    except Exception:
        flash('Terjadi kesalahan. Silakan coba lagi.', 'general_errors')
        return _back(stage, order_number)

    flash(f'Tahap {stage.label} untuk pesanan {order_number} selesai', 'success')
    return redirect(url_for('staff_tasks.index'))


@staff_stages_bp.route(STAGE_RULE + '/cancel', methods=['POST'])
@staff_required
def cancel(stage, order_number):
    stage = _stage_or_404(stage)
    try:
        _claim_service().release(
            stage, order_number, current_user,
            note=(request.form.get('note') or '').strip() or None,
        )
    except OrderNotFound:
        abort(404)
    except StageError as e:
        flash(e.message, 'general_errors')
        return _back(stage, order_number)
    except Exception:
        flash('Terjadi kesalahan. Silakan coba lagi.', 'general_errors')
        return _back(stage, order_number)

    flash(f'Tahap {stage.label} untuk pesanan {order_number} dilepas', 'success')
    return redirect(url_for('staff_tasks.index'))

"""
Stage lock enforcement.

While a staff member holds an open claim they may only use that claim's
pages: the stage page of that order and its claim / complete / cancel
actions. Everything else behind the staff blueprints redirects back to the
stage page. The open claim is recomputed from the action log per request.
"""
import logging
from dataclasses import dataclass
from typing import Optional

from flask import flash, redirect, request, url_for
from flask_login import current_user

from order_stages import stage_for_action, StageDescriptor
from models import Order, OrderAction
from services_stage_claims import open_attempts_query

logger = logging.getLogger(__name__)

STAGE_SUB_ACTIONS = ('claim', 'complete', 'cancel')


@dataclass(frozen=True)
class OpenClaim:
    stage: StageDescriptor
    order_number: str
    action_id: int

    @property
    def base_path(self):
        return url_for('staff_stages.show', stage=self.stage.slug, order_number=self.order_number)

    def allowed_paths(self):
        base = self.base_path
        return {base} | {f"{base}/{sub}" for sub in STAGE_SUB_ACTIONS}

    def message(self):
        return (
            f"Anda sedang mengerjakan tahap {self.stage.label} untuk pesanan {self.order_number}. "
            f"Selesaikan atau lepas tahap ini terlebih dahulu."
        )


class StageLockGate:
    def __init__(self, session):
        self.session = session

    def open_claim_for(self, staff_id) -> Optional[OpenClaim]:
        """Newest ATTEMPT by ``staff_id`` with no later completion/release of the same stage and order."""
        row = (
            open_attempts_query(self.session)
            .filter(OrderAction.admin_id == staff_id)
            .join(Order, Order.id == OrderAction.order_id)
            .with_entities(OrderAction.id, OrderAction.action, Order.number)
            .first()
        )
        if row is None:
            return None
        action_id, action, order_number = row
        return OpenClaim(stage_for_action(action), order_number, action_id)

    def check(self, staff_id, path):
        """Return the OpenClaim that forbids ``path``, or None when the request may proceed."""
        claim = self.open_claim_for(staff_id)
        if claim is None:
            return None
        if path.rstrip('/') in claim.allowed_paths():
            return None
        return claim


def enforce_stage_lock():
    """before_request hook for the staff blueprints."""
    if not current_user.is_authenticated:
        return None
    if not current_user.is_staff:
        flash('Halaman ini hanya untuk staf.', 'general_errors')
        return redirect(url_for('customer_orders.index'))

    from app import db
    blocking = StageLockGate(db.session).check(current_user.id, request.path)
    if blocking is None:
        return None
    logger.warning(
        f"{current_user.username} redirected from {request.path}: open {blocking.stage.slug} "
        f"claim on {blocking.order_number}"
    )
    flash(blocking.message(), 'general_errors')
    return redirect(blocking.base_path)

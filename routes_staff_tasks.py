"""Staff work queue: counts per bucket and a FIFO list of orders."""
from flask import Blueprint, render_template, request

from app import db
from order_status_constants import get_status_label
from services_task_queue import STAFF_BUCKETS, open_claims_for_orders, task_counts, task_page
from stage_lock_enforcement import enforce_stage_lock
from utils.auth_decorators import staff_required
from utils.form_helpers import page_arg

staff_tasks_bp = Blueprint('staff_tasks', __name__, url_prefix='/staff')
staff_tasks_bp.before_request(enforce_stage_lock)


@staff_tasks_bp.route('/tasks')
@staff_required
def index():
    search = (request.args.get('search') or '').strip()
    bucket = request.args.get('status', 'all')
    if bucket not in STAFF_BUCKETS:
        bucket = 'all'

    pagination = task_page(db.session, bucket, search, page_arg())
    order_ids = [order.id for order, _ in pagination.items]

    return render_template(
        'staff/tasks.html',
        pagination=pagination,
        rows=[(order, status, get_status_label(status)) for order, status in pagination.items],
        counts=task_counts(db.session, search),
        claims=open_claims_for_orders(db.session, order_ids),
        bucket=bucket,
        buckets=STAFF_BUCKETS,
        search=search,
    )

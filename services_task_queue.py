"""
Dashboard and list queries. Every bucket is decided by the order's latest
status row; nothing here writes.
"""
import logging

from sqlalchemy import func, or_

from models import Address, Order, OrderAction, User
from order_stages import ORDER_TYPE_OFFLINE, stage_for_action
from order_status_constants import TASK_BUCKETS, TERMINAL_STATUSES, statuses_matching_search
from services_stage_claims import open_attempts_query
from services_status_projection import latest_status_subquery

logger = logging.getLogger(__name__)

PER_PAGE = 10
STAFF_BUCKETS = ('all',) + tuple(TASK_BUCKETS)
LIST_FILTERS = ('active', 'completed')


def _bucket_condition(latest, bucket):
    if bucket == 'all' or bucket == 'active':
        return latest.c.name.notin_(TERMINAL_STATUSES)
    if bucket == 'completed':
        return latest.c.name.in_(TERMINAL_STATUSES)
    if bucket in TASK_BUCKETS:
        return latest.c.name.in_(TASK_BUCKETS[bucket])
    raise ValueError(f"Unknown bucket: {bucket}")


def _search_condition(latest, search):
    """Order number, address name/phone/street, or status (value or displayed label)."""
    pattern = f"%{search.strip()}%"
    conditions = [
        Order.number.ilike(pattern),
        Address.name.ilike(pattern),
        Address.phone.ilike(pattern),
        Address.street.ilike(pattern),
    ]
    status_values = statuses_matching_search(search)
    if status_values:
        conditions.append(latest.c.name.in_(status_values))
    return or_(*conditions)


def orders_query(session, bucket='all', search=None, newest_first=False, **filters):
    """
    Orders whose latest status falls in ``bucket``, optionally matching ``search``.

    Rows are (Order, current status name). Extra keyword filters are applied
    to Order columns (e.g. user_id=..., type=...).
    """
    latest = latest_status_subquery()
    query = (
        session.query(Order, latest.c.name)
        .join(latest, latest.c.order_id == Order.id)
        .join(Address, Address.id == Order.address_id)
        .filter(_bucket_condition(latest, bucket))
    )
    for column, value in filters.items():
        query = query.filter(getattr(Order, column) == value)
    if search and search.strip():
        query = query.filter(_search_condition(latest, search))
    if newest_first:
        return query.order_by(Order.created_at.desc(), Order.id.desc())
    return query.order_by(Order.created_at.asc(), Order.id.asc())


def task_counts(session, search=None):
    """Number of orders per staff bucket."""
    counts = {}
    for bucket in STAFF_BUCKETS:
        counts[bucket] = orders_query(session, bucket, search).order_by(None).count()
    return counts


def task_page(session, bucket='all', search=None, page=1, per_page=PER_PAGE):
    """FIFO work queue page for staff."""
    if bucket not in STAFF_BUCKETS:
        bucket = 'all'
    return orders_query(session, bucket, search).paginate(
        page=page, per_page=per_page, error_out=False
    )


def customer_orders_page(session, customer_id, status='active', search=None, page=1, per_page=PER_PAGE):
    """Customer's own orders, newest first."""
    if status not in LIST_FILTERS:
        status = 'active'
    return orders_query(
        session, status, search, newest_first=True, user_id=customer_id
    ).paginate(page=page, per_page=per_page, error_out=False)


def offline_orders_page(session, status='active', search=None, page=1, per_page=PER_PAGE):
    """Walk-in orders for the staff order list, newest first."""
    if status not in LIST_FILTERS:
        status = 'active'
    return orders_query(
        session, status, search, newest_first=True, type=ORDER_TYPE_OFFLINE
    ).paginate(page=page, per_page=per_page, error_out=False)


def open_claims_for_orders(session, order_ids):
    """{order_id: [(stage, staff display name), ...]} for the open claims on the given orders."""
    if not order_ids:
        return {}
    rows = (
        open_attempts_query(session)
        .filter(OrderAction.order_id.in_(list(order_ids)))
        .join(User, User.id == OrderAction.admin_id)
        .with_entities(OrderAction.order_id, OrderAction.action, func.coalesce(User.full_name, User.username))
        .all()
    )
    claims = {}
    for order_id, action, name in rows:
        claims.setdefault(order_id, []).append((stage_for_action(action), name))
    return claims

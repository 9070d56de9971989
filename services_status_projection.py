"""
Status projection: the current status of an order is the newest row of its
status history. Ties on the database timestamp (several inserts inside one
transaction) are broken by insertion order (id).
"""
import logging
from typing import Optional, Union

from sqlalchemy import func, select
from sqlalchemy.orm import Session, scoped_session

from models import OrderStatus

logger = logging.getLogger(__name__)

SessionLike = Union[Session, scoped_session]


def _newest_first():
    return (OrderStatus.updated_at.desc(), OrderStatus.id.desc())


def latest_status_subquery():
    """
    One row per order: (order_id, name) of its newest status row.

    Join it to Order and filter on ``.c.name`` to bucket orders by their
    current status without a materialized column.
    """
    ranked = select(
        OrderStatus.order_id.label('order_id'),
        OrderStatus.name.label('name'),
        func.row_number().over(
            partition_by=OrderStatus.order_id,
            order_by=_newest_first(),
        ).label('rn'),
    ).subquery('ranked_statuses')
    return (
        select(ranked.c.order_id, ranked.c.name)
        .where(ranked.c.rn == 1)
        .subquery('latest_status')
    )


def get_current_status_row(session: SessionLike, order_id: int) -> Optional[OrderStatus]:
    return (
        session.query(OrderStatus)
        .filter(OrderStatus.order_id == order_id)
        .order_by(*_newest_first())
        .first()
    )


def get_current_status(session: SessionLike, order_id: int) -> Optional[str]:
    """Name of the order's current status, or None for an order with no history."""
    row = get_current_status_row(session, order_id)
    return row.name if row else None



def get_status_history(session: SessionLike, order_id: int):
    """Status rows oldest first."""
    return (
        session.query(OrderStatus)
        .filter(OrderStatus.order_id == order_id)
        .order_by(OrderStatus.updated_at.asc(), OrderStatus.id.asc())
        .all()
    )


def has_status(session: SessionLike, order_id: int, name: str) -> bool:
    return session.query(
        session.query(OrderStatus)
        .filter(OrderStatus.order_id == order_id, OrderStatus.name == name)
        .exists()
    ).scalar()


def append_status(session: SessionLike, order_id: int, name: str, note: Optional[str] = None,
                  order_action_id: Optional[int] = None) -> Optional[OrderStatus]:
    """
    Add ``name`` to the order's history unless a row with that name already exists.

    Does not commit; callers run it inside their own transaction. Returns the
    new row, or None when the status was already present.
    """
    if has_status(session, order_id, name):
        logger.debug(f"Order {order_id} already has status {name}, not inserting")
        return None
    row = OrderStatus(order_id=order_id, name=name, note=note, order_action_id=order_action_id)
    session.add(row)
    session.flush()
    return row


def remove_claim_statuses(session: SessionLike, order_action_ids) -> int:
    """
    Delete the status rows a claim inserted, restoring the previously visible status.

    The only removal ever made from the status history; rows are matched by
    the claim action that inserted them.
    """
    if not order_action_ids:
        return 0
    return (
        session.query(OrderStatus)
        .filter(OrderStatus.order_action_id.in_(list(order_action_ids)))
        .delete(synchronize_session='fetch')
    )

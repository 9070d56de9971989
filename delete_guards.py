"""
Delete Guards - keep the order logs append-only.

SQLAlchemy before_delete listeners that refuse ORM deletes of log rows and of
orders or users that still have history. The one sanctioned removal (the
status row a released claim inserted) is a bulk delete that does not pass
through these listeners.

Usage:
    from delete_guards import register_all_guards
    register_all_guards()  # Call once during app initialization
"""
import logging

from sqlalchemy import event
from sqlalchemy.orm import object_session

logger = logging.getLogger(__name__)


def has_rows(sess, query):
    """Check if a query returns any rows"""
    return sess.query(query.exists()).scalar()


def block_if_related(entity_label, checks):
    """
    Create a before_delete listener that blocks deletion if any dependency check passes.

    Args:
        entity_label: Human-readable entity name for error messages
        checks: List of (label, query_fn) tuples where query_fn returns True if dependencies exist
    """
    def _inner(mapper, connection, target):
        sess = object_session(target)
        if sess is None:
            return
        for label, query_fn in checks:
            if query_fn(sess, target):
                entity_id = getattr(target, 'number', None) or getattr(target, 'username', None) \
                    or getattr(target, 'id', None)
                raise ValueError(f"Cannot delete {entity_label} '{entity_id}': {label} exist.")
    return _inner


def block_always(entity_label):
    """Listener for append-only tables: no ORM delete is ever allowed."""
    def _inner(mapper, connection, target):
        raise ValueError(
            f"Cannot delete {entity_label} {getattr(target, 'id', None)}: the log is append-only."
        )
    return _inner


def order_has_actions(sess, order):
    from models import OrderAction
    return has_rows(sess, sess.query(OrderAction).filter_by(order_id=order.id))


def order_has_photos(sess, order):
    from models import OrderPhoto
    return has_rows(sess, sess.query(OrderPhoto).filter_by(order_id=order.id))


def order_has_transactions(sess, order):
    from models import Transaction
    return has_rows(sess, sess.query(Transaction).filter_by(order_id=order.id))


def user_has_actions(sess, user):
    from models import OrderAction
    return has_rows(sess, sess.query(OrderAction).filter_by(admin_id=user.id))


def user_has_orders(sess, user):
    from models import Order
    return has_rows(sess, sess.query(Order).filter_by(user_id=user.id))


_registered = False


def register_all_guards():
    """Attach the listeners once per process."""
    global _registered
    if _registered:
        return
    from models import Order, OrderAction, OrderPhoto, User

    event.listen(OrderAction, "before_delete", block_always("order action"))
    event.listen(OrderPhoto, "before_delete", block_always("order photo"))

    event.listen(
        Order, "before_delete",
        block_if_related("order", [
            ("staff actions", order_has_actions),
            ("stage photos", order_has_photos),
            ("transactions", order_has_transactions),
        ])
    )

    event.listen(
        User, "before_delete",
        block_if_related("user", [
            ("staff actions", user_has_actions),
            ("orders", user_has_orders),
        ])
    )

    _registered = True
    logger.info("Delete guards registered for: OrderAction, OrderPhoto, Order, User")

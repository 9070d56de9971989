"""
Down payment and full payment flow: starting QRIS charges, applying gateway
notifications, and expiring abandoned charges.
"""
import logging
from dataclasses import dataclass
from datetime import timedelta
from typing import Optional

from config_payments import PAYMENT_EXPIRY_MINUTES
from domain_errors import DomainError, InvalidStatusTransition, PaymentError
from models import Order, Transaction, TransactionItem
from order_stages import ORDER_TYPE_ONLINE
from order_status_constants import (
    CANCELLED, IN_PROCESS, INSPECTION, PICKUP_SCHEDULED, WAITING_DEPOSIT, WAITING_PAYMENT,
)
from realtime import payment_channel
from services_status_projection import append_status, get_current_status
from timezone_utils import get_utc_now

logger = logging.getLogger(__name__)

DOWN_PAYMENT = 'down_payment'
FULL_PAYMENT = 'full_payment'
TRANSACTION_TYPES = (DOWN_PAYMENT, FULL_PAYMENT)

REF_PREFIX = {DOWN_PAYMENT: 'DP', FULL_PAYMENT: 'FULL'}

# Status the order must be in before its payment of that type can start
REQUIRED_STATUS = {DOWN_PAYMENT: WAITING_DEPOSIT, FULL_PAYMENT: WAITING_PAYMENT}

GATEWAY_STATUS_MAP = {
    'settlement': 'paid',
    'capture': 'paid',
    'expire': 'cancelled',
    'cancel': 'cancelled',
    'deny': 'failed',
    'failure': 'failed',
}


class InvalidSignature(DomainError):
    default_message = 'Tanda tangan notifikasi tidak valid'


class ActiveChargeExists(PaymentError):
    default_message = 'Masih ada pembayaran yang sedang aktif'


@dataclass(frozen=True)
class NotificationResult:
    outcome: str            # 'applied', 'ignored', 'not_found', 'rejected'
    order_number: Optional[str] = None
    transaction_status: Optional[str] = None


def rate_limit_key(transaction_type, ip, order_number):
    return f"payment_{REF_PREFIX[transaction_type]}_{ip}_{order_number}"


def gateway_order_ref(transaction_type, order_number, now=None):
    stamp = (now or get_utc_now()).strftime('%Y%m%d%H%M%S')
    return f"{REF_PREFIX[transaction_type]}_{order_number}_{stamp}"


def latest_transaction(session, order_id, transaction_type) -> Optional[Transaction]:
    return (
        session.query(Transaction)
        .filter(Transaction.order_id == order_id, Transaction.type == transaction_type)
        .order_by(Transaction.id.desc())
        .first()
    )


def active_charge(session, order_id, transaction_type, now=None) -> Optional[Transaction]:
    """Pending charge with a QR code that has not expired yet."""
    tx = latest_transaction(session, order_id, transaction_type)
    if tx and tx.status == 'pending' and tx.gateway_transaction_id and not tx.is_expired(now):
        return tx
    return None


def _reissue(session, stale: Transaction) -> Transaction:
    """Cancel an expired charge and open a fresh bill with the same amount and items."""
    stale.status = 'cancelled'
    stale.gateway_status = 'expire'
    fresh = Transaction(order_id=stale.order_id, type=stale.type, amount=stale.amount, status='pending')
    session.add(fresh)
    session.flush()
    for item in stale.items:
        session.add(TransactionItem(
            transaction_id=fresh.id, shoe_id=item.shoe_id, service_id=item.service_id,
            item_price=item.item_price, subtotal=item.subtotal,
        ))
    return fresh


def start_charge(session, gateway, limiter, order: Order, transaction_type, client_ip, now=None) -> Transaction:
    """
    Create a QRIS charge for the order's down or full payment.

    Raises InvalidStatusTransition when the order is not waiting for this
    payment, ActiveChargeExists when a live QR already exists, and
    RateLimitExceeded (from the limiter) before any gateway call.
    """
    now = now or get_utc_now()
    if get_current_status(session, order.id) != REQUIRED_STATUS[transaction_type]:
        raise InvalidStatusTransition('Pesanan tidak sedang menunggu pembayaran ini')

    bill = latest_transaction(session, order.id, transaction_type)
    if bill is None or bill.status not in ('pending', 'cancelled', 'failed'):
        raise InvalidStatusTransition('Tagihan tidak ditemukan')
    if bill.status == 'pending' and bill.gateway_transaction_id and not bill.is_expired(now):
        raise ActiveChargeExists()

    limiter.consume(rate_limit_key(transaction_type, client_ip, order.number), now=now)

    reference = gateway_order_ref(transaction_type, order.number, now)
    address = order.address
    charge = gateway.create_qris_charge(
        reference,
        bill.amount,
        {'first_name': address.name, 'phone': address.phone, 'address': address.street},
        f"Order {order.number}",
    )

    try:
        if bill.status != 'pending' or bill.gateway_transaction_id:
            bill = _reissue(session, bill)
        bill.gateway_transaction_id = charge.transaction_id
        bill.gateway_order_ref = reference
        bill.gateway_status = charge.status
        bill.qr_code = charge.qr_code
        bill.expires_at = now + timedelta(minutes=PAYMENT_EXPIRY_MINUTES)
        session.commit()
    except Exception as e:
        session.rollback()
        logger.error(f"Error saving charge {charge.transaction_id} for {order.number}: {str(e)}")
        raise
    logger.info(f"{transaction_type} charge {charge.transaction_id} started for order {order.number}")
    return bill


def _status_after_settlement(order, transaction_type):
    if transaction_type == DOWN_PAYMENT:
        return PICKUP_SCHEDULED if order.type == ORDER_TYPE_ONLINE else INSPECTION
    return IN_PROCESS


def handle_notification(session, gateway, notifier, payload) -> NotificationResult:
    """
    Apply one gateway notification.

    The signature is checked before anything is read or written. The
    real-time publish happens only after the commit and cannot fail the call.
    """
    reference = payload.get('order_id')
    if not gateway.verify_notification(payload):
        logger.warning(f"Rejected payment notification with bad signature for {reference}")
        return NotificationResult('rejected')

    gateway_status = payload.get('transaction_status')
    new_status = GATEWAY_STATUS_MAP.get(gateway_status)

    try:
        tx = None
        if payload.get('transaction_id'):
            tx = session.query(Transaction).filter_by(
                gateway_transaction_id=payload['transaction_id']
            ).first()
        if tx is None and reference:
            tx = session.query(Transaction).filter_by(gateway_order_ref=reference).first()
        if tx is None:
            session.rollback()
            logger.warning(f"Payment notification for unknown transaction {reference}")
            return NotificationResult('not_found')

        order = session.query(Order).filter(Order.id == tx.order_id).with_for_update().one()
        order_number = order.number

        if new_status is None or tx.status == 'paid':
            tx.gateway_status = gateway_status or tx.gateway_status
            session.commit()
            logger.info(f"Payment notification {gateway_status} for {order_number} needs no change")
            return NotificationResult('ignored', order_number, tx.status)

        tx.status = new_status
        tx.gateway_status = gateway_status
        if new_status == 'paid' and get_current_status(session, order.id) != CANCELLED:
            append_status(session, order.id, _status_after_settlement(order, tx.type))
        transaction_type = tx.type
        session.commit()
    except Exception as e:
        session.rollback()
        logger.error(f"Error applying payment notification {reference}: {str(e)}")
        raise

    logger.info(f"Payment {reference} for order {order_number} is now {new_status}")
    try:
        notifier.publish(payment_channel(order_number, transaction_type), {'status': new_status})
    except Exception as e:
        logger.error(f"Error publishing payment update for {order_number}: {str(e)}")
    return NotificationResult('applied', order_number, new_status)


def expire_stale_transactions(session, now=None) -> int:
    """Mark pending charges whose QR has expired as cancelled."""
    now = now or get_utc_now()
    try:
        stale = (
            session.query(Transaction)
            .filter(
                Transaction.status == 'pending',
                Transaction.expires_at.isnot(None),
                Transaction.expires_at <= now,
            )
            .all()
        )
        for tx in stale:
            tx.status = 'cancelled'
            tx.gateway_status = 'expire'
        session.commit()
    except Exception as e:
        session.rollback()
        logger.error(f"Error expiring stale transactions: {str(e)}")
        raise
    if stale:
        logger.info(f"Expired {len(stale)} stale payment charge(s)")
    return len(stale)

"""
Order creation and the status transitions that are not stage claims:
finishing the cleaning process and cancelling an order.
"""
import logging
from datetime import date as date_cls, datetime
from typing import Optional, Union

from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.orm import Session, scoped_session

from config_payments import (
    DOWN_PAYMENT_AMOUNT, SERVICE_CENTER_LATITUDE, SERVICE_CENTER_LONGITUDE, SERVICE_CENTER_STREET,
)
from domain_errors import InvalidStatusTransition, OrderNotFound, ValidationFailed
from models import Address, Order, OrderNumberCounter, Transaction, User
from order_stages import ORDER_TYPE_OFFLINE, ORDER_TYPE_ONLINE
from order_status_constants import (
    CANCELLED, COMPLETED, IN_PROCESS, PROCESS_COMPLETED, WAITING_DEPOSIT,
)
from services_status_projection import append_status, get_current_status
from timezone_utils import get_local_today

logger = logging.getLogger(__name__)

SessionLike = Union[Session, scoped_session]

OFFLINE_ADDRESS_NOTE = 'Transaksi di toko'


def format_order_number(day: date_cls, seq: int) -> str:
    return f"ORD{day.strftime('%y%m%d')}-{seq:03d}"


def allocate_order_number(session: SessionLike, day: Optional[date_cls] = None) -> str:
    """
    Take the next ORDyymmdd-NNN number for ``day`` (service-timezone today by default).

    The per-day counter row is locked (SELECT ... FOR UPDATE) and committed on
    its own, before the order is written, so a number is never handed out
    twice even when the order transaction later rolls back.
    """
    day = day or get_local_today()
    key = day.strftime('%y%m%d')
    try:
        dialect = session.get_bind().dialect.name
        insert = postgresql.insert if dialect == 'postgresql' else sqlite.insert
        session.execute(
            insert(OrderNumberCounter)
            .values(day=key, last_seq=0)
            .on_conflict_do_nothing(index_elements=['day'])
        )
        counter = (
            session.query(OrderNumberCounter)
            .filter(OrderNumberCounter.day == key)
            .with_for_update()
            .one()
        )
        counter.last_seq += 1
        seq = counter.last_seq
        session.commit()
    except Exception as e:
        session.rollback()
        logger.error(f"Error allocating order number for {key}: {str(e)}")
        raise
    return format_order_number(day, seq)


def parse_service_date(raw) -> date_cls:
    """Accept 'YYYY-MM-DD' or an ISO datetime; the date must not be in the past."""
    if isinstance(raw, date_cls):
        value = raw
    else:
        text = (raw or '').strip()
        try:
            value = datetime.fromisoformat(text).date() if 'T' in text or ' ' in text \
                else datetime.strptime(text, '%Y-%m-%d').date()
        except ValueError:
            raise ValidationFailed({'date': 'Tanggal harus berupa tanggal yang valid'})
    if value < get_local_today():
        raise ValidationFailed({'date': 'Tanggal tidak boleh di masa lalu'})
    return value


def _create_order(session, order_type, customer_id, address_id, service_date, number) -> Order:
    order = Order(
        number=number, type=order_type, address_id=address_id,
        user_id=customer_id, date=service_date,
    )
    session.add(order)
    session.flush()
    append_status(session, order.id, WAITING_DEPOSIT)
    session.add(Transaction(
        order_id=order.id, type='down_payment', amount=DOWN_PAYMENT_AMOUNT, status='pending',
    ))
    return order


def create_online_order(session: SessionLike, customer, address_id, raw_date) -> Order:
    """Customer order with courier pickup from one of the customer's own addresses."""
    errors = {}
    address = None
    try:
        address_id = int(address_id)
        address = session.get(Address, address_id)
    except (TypeError, ValueError):
        pass
    if address is None or address.user_id != customer.id:
        errors['address_id'] = 'Alamat harus diisi untuk pesanan online'
    try:
        service_date = parse_service_date(raw_date)
    except ValidationFailed as e:
        errors.update(e.errors)
    if errors:
        raise ValidationFailed(errors)

    number = allocate_order_number(session)
    try:
        order = _create_order(session, ORDER_TYPE_ONLINE, customer.id, address_id, service_date, number)
        session.commit()
    except Exception as e:
        session.rollback()
        logger.error(f"Error creating online order {number} for {customer.username}: {str(e)}")
        raise
    logger.info(f"Online order {number} created for {customer.username}")
    return order


def get_or_create_offline_address(session: SessionLike, staff, contact_name, contact_phone) -> Address:
    """
    Store-location address carrying the walk-in customer's contact details.

    Owned by the staff member; reused per (staff, contact name), with the
    phone refreshed. Does not commit.
    """
    address = (
        session.query(Address)
        .filter_by(user_id=staff.id, name=contact_name, radius=0)
        .first()
    )
    if address:
        address.phone = contact_phone
        return address
    address = Address(
        user_id=staff.id,
        name=contact_name,
        phone=contact_phone,
        street=SERVICE_CENTER_STREET,
        latitude=SERVICE_CENTER_LATITUDE,
        longitude=SERVICE_CENTER_LONGITUDE,
        radius=0,
        note=OFFLINE_ADDRESS_NOTE,
    )
    session.add(address)
    session.flush()
    return address


def create_offline_order(session: SessionLike, staff, customer_user_id, contact_name,
                         contact_phone, raw_date) -> Order:
    """Walk-in order entered by staff; it skips the pickup stage."""
    errors = {}
    customer = None
    try:
        customer = session.get(User, int(customer_user_id))
    except (TypeError, ValueError):
        pass
    if customer is None or customer.role != 'customer':
        errors['customer_user_id'] = 'Pelanggan tidak ditemukan'
    contact_name = (contact_name or '').strip()
    contact_phone = (contact_phone or '').strip()
    if not contact_name:
        errors['contact_name'] = 'Nama Kontak harus diisi'
    if not contact_phone.isdigit() or not 10 <= len(contact_phone) <= 13:
        errors['contact_phone'] = 'Nomor Telepon Kontak harus 10-13 digit angka'
    try:
        service_date = parse_service_date(raw_date)
    except ValidationFailed as e:
        errors.update(e.errors)
    if errors:
        raise ValidationFailed(errors)

    number = allocate_order_number(session)
    try:
        address = get_or_create_offline_address(session, staff, contact_name, contact_phone)
        order = _create_order(session, ORDER_TYPE_OFFLINE, customer.id, address.id, service_date, number)
        session.commit()
    except Exception as e:
        session.rollback()
        logger.error(f"Error creating offline order {number} by {staff.username}: {str(e)}")
        raise
    logger.info(f"Offline order {number} created by {staff.username} for {customer.username}")
    return order


def get_order_by_number(session: SessionLike, number, customer_id=None) -> Order:
    query = session.query(Order).filter(Order.number == number)
    if customer_id is not None:
        query = query.filter(Order.user_id == customer_id)
    order = query.first()
    if order is None:
        raise OrderNotFound()
    return order


def finish_processing(session: SessionLike, order_number, staff, note=None) -> Order:
    """Cleaning done: IN_PROCESS -> PROCESS_COMPLETED."""
    try:
        order = (
            session.query(Order).filter(Order.number == order_number).with_for_update().first()
        )
        if order is None:
            raise OrderNotFound()
        current = get_current_status(session, order.id)
        if current != IN_PROCESS:
            raise InvalidStatusTransition(
                f'Pesanan {order_number} tidak sedang dalam proses pencucian'
            )
        append_status(session, order.id, PROCESS_COMPLETED, note=note)
        session.commit()
    except (OrderNotFound, InvalidStatusTransition):
        session.rollback()
        raise
    except Exception as e:
        session.rollback()
        logger.error(f"Error finishing order {order_number}: {str(e)}")
        raise
    logger.info(f"{staff.username} marked order {order_number} as process completed")
    return order


def cancel_order(session: SessionLike, order_number, admin, note=None) -> Order:
    """Append CANCELLED and cancel the order's pending payments."""
    try:
        order = (
            session.query(Order).filter(Order.number == order_number).with_for_update().first()
        )
        if order is None:
            raise OrderNotFound()
        current = get_current_status(session, order.id)
        if current in (COMPLETED, CANCELLED):
            raise InvalidStatusTransition(f'Pesanan {order_number} sudah {current}')
        append_status(session, order.id, CANCELLED, note=note)
        (
            session.query(Transaction)
            .filter(Transaction.order_id == order.id, Transaction.status == 'pending')
            .update({'status': 'cancelled'}, synchronize_session='fetch')
        )
        session.commit()
    except (OrderNotFound, InvalidStatusTransition):
        session.rollback()
        raise
    except Exception as e:
        session.rollback()
        logger.error(f"Error cancelling order {order_number}: {str(e)}")
        raise
    logger.info(f"{admin.username} cancelled order {order_number}")
    return order

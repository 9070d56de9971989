from app import db
from flask_login import UserMixin
from timezone_utils import get_utc_now
from db_types import UTCDateTime, statement_time


def utc_now():
    """Return current UTC time for consistent database storage"""
    return get_utc_now()

# All timestamps in the database are stored in UTC.
# Log tables (statuses, actions) take their timestamps from the database clock
# so that every writer shares one time source.


# User Model
class User(UserMixin, db.Model):
    __tablename__ = 'users'
    id = db.Column(db.Integer, primary_key=True)
    username = db.Column(db.String(64), unique=True, nullable=False)
    password = db.Column(db.String(256), nullable=False)
    full_name = db.Column(db.String(100), nullable=True)
    phone = db.Column(db.String(20), nullable=True)
    role = db.Column(db.String(20), nullable=False)  # 'admin', 'staff', 'customer'
    is_active = db.Column(db.Boolean, nullable=False, default=True, server_default='1')
    created_at = db.Column(UTCDateTime(), default=utc_now)

    addresses = db.relationship('Address', backref='user', lazy=True, passive_deletes='all')

    @property
    def is_staff(self):
        return self.role in ('staff', 'admin')

    @property
    def display_name(self):
        return self.full_name or self.username

    def __repr__(self):
        return f'<User {self.username} ({self.role})>'


class Address(db.Model):
    __tablename__ = 'addresses'
    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=False)
    name = db.Column(db.String(50), nullable=False)
    phone = db.Column(db.String(13), nullable=False)
    street = db.Column(db.String(255), nullable=False)
    latitude = db.Column(db.Float, nullable=False)
    longitude = db.Column(db.Float, nullable=False)
    radius = db.Column(db.Integer, nullable=False, default=0)  # 0 = store address
    note = db.Column(db.String(255), nullable=True)
    created_at = db.Column(UTCDateTime(), default=utc_now)


class Order(db.Model):
    __tablename__ = 'orders'
    id = db.Column(db.Integer, primary_key=True)
    number = db.Column(db.String(20), unique=True, nullable=False)
    type = db.Column(db.String(10), nullable=False)  # 'online', 'offline'
    address_id = db.Column(db.Integer, db.ForeignKey('addresses.id'), nullable=False)
    user_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=False)
    date = db.Column(db.Date, nullable=False)
    created_at = db.Column(UTCDateTime(), default=utc_now, nullable=False)

    address = db.relationship('Address')
    customer = db.relationship('User', foreign_keys=[user_id])
    statuses = db.relationship('OrderStatus', backref='order', lazy=True,
                               order_by='OrderStatus.id', passive_deletes='all')
    actions = db.relationship('OrderAction', backref='order', lazy=True,
                              order_by='OrderAction.id', passive_deletes='all')
    photos = db.relationship('OrderPhoto', backref='order', lazy=True,
                             order_by='OrderPhoto.id', passive_deletes='all')
    shoes = db.relationship('Shoe', backref='order', lazy=True, order_by='Shoe.id', passive_deletes='all')
    transactions = db.relationship('Transaction', backref='order', lazy=True,
                                   order_by='Transaction.id', passive_deletes='all')

    __table_args__ = (
        db.Index('idx_orders_created_at', 'created_at'),
        db.Index('idx_orders_user_id', 'user_id'),
    )

    def __repr__(self):
        return f'<Order {self.number} ({self.type})>'


class OrderStatus(db.Model):
    """Status history. The newest row (updated_at, then id) is the current status."""
    __tablename__ = 'order_statuses'
    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey('orders.id'), nullable=False)
    name = db.Column(db.String(30), nullable=False)
    note = db.Column(db.String(255), nullable=True)
    # Set when a claim inserted this row; release deletes exactly these rows
    order_action_id = db.Column(db.Integer, db.ForeignKey('order_actions.id'), nullable=True)
    updated_at = db.Column(UTCDateTime(), server_default=statement_time(), nullable=False)

    __table_args__ = (
        db.Index('idx_order_statuses_order_updated', 'order_id', 'updated_at'),
        db.Index('idx_order_statuses_order_name', 'order_id', 'name'),
    )


class OrderAction(db.Model):
    """Append-only staff action log; the only record of who holds a claim."""
    __tablename__ = 'order_actions'
    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey('orders.id'), nullable=False)
    admin_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=False)
    action = db.Column(db.String(20), nullable=False)
    order_photo_id = db.Column(db.Integer, db.ForeignKey('order_photos.id'), nullable=True)
    note = db.Column(db.String(255), nullable=True)
    created_at = db.Column(UTCDateTime(), server_default=statement_time(), nullable=False)

    staff = db.relationship('User', foreign_keys=[admin_id])
    photo = db.relationship('OrderPhoto', foreign_keys=[order_photo_id])

    __table_args__ = (
        db.Index('idx_order_actions_admin_action', 'admin_id', 'action'),
        db.Index('idx_order_actions_order_action', 'order_id', 'action'),
    )


class OrderPhoto(db.Model):
    """Stage evidence. One per (order, stage); its presence marks the stage completed."""
    __tablename__ = 'order_photos'
    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey('orders.id'), nullable=False)
    admin_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=False)
    stage = db.Column(db.String(20), nullable=False)  # 'pickup', 'check', 'delivery'
    path = db.Column(db.String(255), nullable=False)
    note = db.Column(db.String(255), nullable=True)
    created_at = db.Column(UTCDateTime(), default=utc_now)
    updated_at = db.Column(UTCDateTime(), default=utc_now, onupdate=utc_now)

    __table_args__ = (
        db.UniqueConstraint('order_id', 'stage', name='uq_order_photos_order_stage'),
    )


class Shoe(db.Model):
    __tablename__ = 'shoes'
    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey('orders.id'), nullable=False)
    brand = db.Column(db.String(100), nullable=False)
    size = db.Column(db.String(10), nullable=False)
    type = db.Column(db.String(50), nullable=False)
    material = db.Column(db.String(50), nullable=False)
    category = db.Column(db.String(50), nullable=False)
    condition = db.Column(db.String(100), nullable=False)
    note = db.Column(db.String(255), nullable=True)

    items = db.relationship('TransactionItem', backref='shoe', lazy=True)


class Service(db.Model):
    __tablename__ = 'services'
    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(100), nullable=False)
    description = db.Column(db.Text, nullable=True)
    price = db.Column(db.Integer, nullable=False)  # rupiah
    type = db.Column(db.String(20), nullable=False)  # 'primary', 'additional', 'start_from'


class Transaction(db.Model):
    __tablename__ = 'transactions'
    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey('orders.id'), nullable=False)
    type = db.Column(db.String(20), nullable=False)  # 'down_payment', 'full_payment'
    amount = db.Column(db.Integer, nullable=False)
    status = db.Column(db.String(20), nullable=False, default='pending')
    gateway_status = db.Column(db.String(20), nullable=True)
    gateway_transaction_id = db.Column(db.String(64), unique=True, nullable=True)
    gateway_order_ref = db.Column(db.String(64), nullable=True)
    qr_code = db.Column(db.String(255), nullable=True)
    expires_at = db.Column(UTCDateTime(), nullable=True)
    created_at = db.Column(UTCDateTime(), default=utc_now)
    updated_at = db.Column(UTCDateTime(), default=utc_now, onupdate=utc_now)

    items = db.relationship('TransactionItem', backref='transaction', lazy=True,
                            order_by='TransactionItem.id')

    __table_args__ = (
        db.Index('idx_transactions_order_type', 'order_id', 'type'),
    )

    def is_expired(self, now=None):
        if self.expires_at is None:
            return False
        return (now or utc_now()) >= self.expires_at


class TransactionItem(db.Model):
    __tablename__ = 'transaction_items'
    id = db.Column(db.Integer, primary_key=True)
    transaction_id = db.Column(db.Integer, db.ForeignKey('transactions.id'), nullable=False)
    shoe_id = db.Column(db.Integer, db.ForeignKey('shoes.id'), nullable=False)
    service_id = db.Column(db.Integer, db.ForeignKey('services.id'), nullable=False)
    item_price = db.Column(db.Integer, nullable=False)  # price snapshot at inspection
    subtotal = db.Column(db.Integer, nullable=False)

    service = db.relationship('Service')


class OrderNumberCounter(db.Model):
    """Per-day sequence behind ORDyymmdd-NNN order numbers."""
    __tablename__ = 'order_number_counters'
    day = db.Column(db.String(6), primary_key=True)  # 'yymmdd'
    last_seq = db.Column(db.Integer, nullable=False, default=0)


class RateLimit(db.Model):
    __tablename__ = 'rate_limits'
    key = db.Column(db.String(255), primary_key=True)
    points = db.Column(db.Integer, nullable=False, default=0)
    expires_at = db.Column(UTCDateTime(), nullable=False)

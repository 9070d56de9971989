"""
Login, logout, customer registration and access to stored photos.
"""
import logging
from datetime import timedelta

from flask import (
    Blueprint, abort, current_app, flash, redirect, render_template, request, send_from_directory,
    url_for,
)
from flask_login import current_user, login_required, login_user, logout_user
from werkzeug.security import check_password_hash

from app import db
from domain_errors import PhotoStorageError, RateLimitExceeded
from models import User
from rate_limits import RateLimiter
from utils import create_user
from utils.form_helpers import client_ip

logger = logging.getLogger(__name__)

auth_bp = Blueprint('auth', __name__)

REGISTER_ATTEMPTS = 5
REGISTER_WINDOW = timedelta(minutes=15)


def _home_for(user):
    if user.is_staff:
        return url_for('staff_tasks.index')
    return url_for('customer_orders.index')


@auth_bp.route('/')
def index():
    if current_user.is_authenticated:
        return redirect(_home_for(current_user))
    return redirect(url_for('auth.login'))


@auth_bp.route('/login', methods=['GET', 'POST'])
def login():
    if current_user.is_authenticated:
        return redirect(_home_for(current_user))

    if request.method == 'POST':
        username = (request.form.get('username') or '').strip()
        password = request.form.get('password') or ''
        user = User.query.filter_by(username=username).first()
        if user and user.is_active and check_password_hash(user.password, password):
            login_user(user)
            logger.info(f"User {username} logged in")
            return redirect(_home_for(user))
        logger.warning(f"Failed login for {username!r} from {client_ip()}")
        flash('Username atau password salah', 'general_errors')
        return redirect(url_for('auth.login'))

    return render_template('auth/login.html')


@auth_bp.route('/logout')
@login_required
def logout():
    logger.info(f"User {current_user.username} logged out")
    logout_user()
    return redirect(url_for('auth.login'))


@auth_bp.route('/register', methods=['GET', 'POST'])
def register():
    if request.method == 'GET':
        return render_template('auth/register.html')

    limiter = RateLimiter(db.session, REGISTER_ATTEMPTS, REGISTER_WINDOW)
    try:
        limiter.consume(f"register_{client_ip()}")
    except RateLimitExceeded as e:
        flash(e.message, 'limiter_errors')
        return redirect(url_for('auth.register'))

    username = (request.form.get('username') or '').strip()
    password = request.form.get('password') or ''
    errors = {}
    if not 3 <= len(username) <= 64:
        errors['username'] = 'Username harus 3-64 karakter'
    if len(password) < 8:
        errors['password'] = 'Password minimal 8 karakter'
    if errors:
        for field, message in errors.items():
            flash(f"{field}: {message}", 'validation_errors')
        return redirect(url_for('auth.register'))

    ok, message = create_user(
        db.session, username, password, 'customer',
        full_name=(request.form.get('full_name') or '').strip() or None,
        phone=(request.form.get('phone') or '').strip() or None,
    )
    if not ok:
        flash(message, 'general_errors')
        return redirect(url_for('auth.register'))

    login_user(User.query.filter_by(username=username).first())
    logger.info(f"Customer {username} registered")
    return redirect(url_for('customer_orders.index'))


@auth_bp.route('/uploads/<path:filename>')
@login_required
def uploaded_file(filename):
    storage = current_app.extensions['photo_storage']
    try:
        found = storage.exists(filename)
    except PhotoStorageError:
        found = False
    if not found:
        abort(404)
    return send_from_directory(storage.root, filename)

from functools import wraps

from flask import flash, redirect, url_for
from flask_login import current_user, login_required


def staff_required(f):
    """Decorator to require staff (or admin) role"""
    @wraps(f)
    @login_required
    def decorated_function(*args, **kwargs):
        if current_user.role not in ('staff', 'admin'):
            flash('Akses ditolak. Halaman ini hanya untuk staf.', 'general_errors')
            return redirect(url_for('customer_orders.index'))
        return f(*args, **kwargs)
    return decorated_function


def admin_required(f):
    """Decorator to require admin role"""
    @wraps(f)
    @login_required
    def decorated_function(*args, **kwargs):
        if current_user.role != 'admin':
            flash('Akses ditolak. Hanya admin yang dapat melakukan tindakan ini.', 'general_errors')
            return redirect(url_for('auth.index'))
        return f(*args, **kwargs)
    return decorated_function


def customer_required(f):
    """Decorator to require customer role"""
    @wraps(f)
    @login_required
    def decorated_function(*args, **kwargs):
        if current_user.role != 'customer':
            flash('Halaman ini hanya untuk pelanggan.', 'general_errors')
            return redirect(url_for('staff_tasks.index'))
        return f(*args, **kwargs)
    return decorated_function

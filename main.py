import atexit
import logging

from markupsafe import Markup

from app import app, is_production
from order_status_constants import get_status_badge_class, get_status_icon, get_status_label
from timezone_utils import format_utc_datetime_to_local

from routes_auth import auth_bp
from routes_orders import customer_orders_bp
from routes_payments import payments_bp
from routes_staff_orders import staff_orders_bp
from routes_staff_stages import staff_stages_bp
from routes_staff_tasks import staff_tasks_bp

app.config.update({
    'DEBUG': False,
    'SESSION_COOKIE_HTTPONLY': True,
    'SESSION_COOKIE_SECURE': is_production,
    'PERMANENT_SESSION_LIFETIME': 3600,
})

app.register_blueprint(auth_bp)
app.register_blueprint(customer_orders_bp)
app.register_blueprint(payments_bp)
app.register_blueprint(staff_tasks_bp)
app.register_blueprint(staff_stages_bp)
app.register_blueprint(staff_orders_bp)


@app.template_filter('local_time')
def local_time_filter(dt, format_str='%d/%m/%Y %H:%M'):
    """Display a UTC datetime in the service timezone"""
    if dt is None:
        return '-'
    return format_utc_datetime_to_local(dt, format_str)


@app.template_filter('status_badge')
def status_badge_filter(status_value):
    """Display status as a styled badge"""
    return Markup(
        f'<span class="badge {get_status_badge_class(status_value)}">'
        f'<i class="{get_status_icon(status_value)} me-1"></i>{get_status_label(status_value)}</span>'
    )


@app.template_filter('rupiah')
def rupiah_filter(amount):
    if amount is None:
        return '-'
    return 'Rp ' + f'{int(amount):,}'.replace(',', '.')


try:
    from scheduler import setup_scheduler, stop_scheduler
    if setup_scheduler(app):
        atexit.register(stop_scheduler)
except Exception as e:
    logging.warning(f"Could not initialize background scheduler: {str(e)}")


if __name__ == "__main__":
    app.run(host="0.0.0.0", port=5000, debug=not is_production)

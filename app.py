import os
import logging
from flask import Flask
from flask_sqlalchemy import SQLAlchemy
from flask_login import LoginManager
from flask_wtf.csrf import CSRFProtect
from sqlalchemy.orm import DeclarativeBase
from werkzeug.middleware.proxy_fix import ProxyFix

# Configure logging
logging.basicConfig(level=logging.DEBUG)


class Base(DeclarativeBase):
    pass


# Initialize Flask app
app = Flask(__name__)
app.config['UPLOAD_FOLDER'] = os.environ.get("UPLOAD_FOLDER") or os.path.join(os.getcwd(), 'uploads')
app.config['MAX_CONTENT_LENGTH'] = 16 * 1024 * 1024
app.secret_key = os.environ.get("SESSION_SECRET")
if not app.secret_key:
    raise RuntimeError("SESSION_SECRET environment variable is required and cannot be empty")
app.wsgi_app = ProxyFix(app.wsgi_app, x_proto=1, x_host=1)  # needed for url_for to generate with https

# Database configuration
database_url = os.environ.get("DATABASE_URL")
if database_url:
    if database_url.startswith('postgres://'):
        database_url = database_url.replace('postgres://', 'postgresql://')
    app.config["SQLALCHEMY_DATABASE_URI"] = database_url
else:
    # Fallback to SQLite for development
    app.config["SQLALCHEMY_DATABASE_URI"] = "sqlite:///shoeclean.db"
    logging.warning("DATABASE_URL not found, using SQLite database")

app.config["SQLALCHEMY_TRACK_MODIFICATIONS"] = False

is_production = os.environ.get("APP_ENV") == "production"

if app.config["SQLALCHEMY_DATABASE_URI"].startswith("postgresql"):
    app.config["SQLALCHEMY_ENGINE_OPTIONS"] = {
        'pool_pre_ping': True,
        "pool_recycle": 300,
        "pool_size": 10 if is_production else 20,
        "max_overflow": 5 if is_production else 10,
        "pool_timeout": 30,
        "connect_args": {
            "connect_timeout": 10,
            # Claims wait on the order row lock; fail instead of hanging a worker
            "options": "-c statement_timeout=30000 -c lock_timeout=10000"
        }
    }
else:
    app.config["SQLALCHEMY_ENGINE_OPTIONS"] = {'pool_pre_ping': True}

# Initialize the SQLAlchemy extension
db = SQLAlchemy(model_class=Base)
db.init_app(app)

csrf = CSRFProtect(app)

login_manager = LoginManager(app)
login_manager.login_view = 'auth.login'
login_manager.login_message = 'Silakan masuk terlebih dahulu.'
login_manager.login_message_category = 'general_errors'


@login_manager.user_loader
def load_user(user_id):
    from models import User
    return db.session.get(User, int(user_id))


os.makedirs(app.config['UPLOAD_FOLDER'], exist_ok=True)

# Collaborators used by the stage engine and the payment flow
from photo_storage import LocalPhotoStorage  # noqa: E402
from realtime import Broadcaster  # noqa: E402
from payment_gateway import PaymentGatewayClient  # noqa: E402

app.extensions['photo_storage'] = LocalPhotoStorage(app.config['UPLOAD_FOLDER'])
app.extensions['notifier'] = Broadcaster()
app.extensions['payment_gateway'] = PaymentGatewayClient.from_env()

with app.app_context():
    try:
        import models  # noqa: F401

        # Append-only logs must never be deleted through the ORM
        from delete_guards import register_all_guards
        register_all_guards()

        db.create_all()
        logging.info("Database tables created if they didn't exist")

        from models import Service
        from services_catalogue import seed_default_services
        if db.session.query(Service.id).first() is None:
            seed_default_services(db.session)
            logging.info("Default service catalogue seeded")

        if not is_production:
            from utils import create_user
            from models import User
            if not User.query.filter_by(username='administrator').first():
                create_user(db.session, 'administrator', 'admin123', 'admin')
                logging.info("Default admin user created")
            if not User.query.filter_by(username='staff1').first():
                create_user(db.session, 'staff1', 'staff123', 'staff')
                logging.info("Default staff user created")
    except Exception as e:
        db.session.rollback()
        logging.error(f"Error during database initialization: {str(e)}")
        logging.exception("Database initialization error details:")

from config_payments import validate_payment_config  # noqa: E402

for problem in validate_payment_config():
    logging.warning(f"Payment configuration: {problem}")

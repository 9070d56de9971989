"""
Payment and service-area configuration.
Values come from the environment once, at import time.
"""
import os

# === PAYMENT GATEWAY ===
PAYMENT_API_URL = os.getenv('PAYMENT_API_URL', 'https://api.sandbox.midtrans.com').rstrip('/')
PAYMENT_SERVER_KEY = os.getenv('PAYMENT_SERVER_KEY', '')
PAYMENT_CONNECT_TIMEOUT = int(os.getenv('PAYMENT_CONNECT_TIMEOUT', '10'))
PAYMENT_READ_TIMEOUT = int(os.getenv('PAYMENT_READ_TIMEOUT', '30'))

# Deposit charged for every order before work starts (rupiah)
DOWN_PAYMENT_AMOUNT = int(os.getenv('DOWN_PAYMENT_AMOUNT', '20000'))

# Lifetime of a QR charge; also the payment rate-limit window
PAYMENT_EXPIRY_MINUTES = int(os.getenv('PAYMENT_EXPIRY_MINUTES', '15'))

# === SERVICE CENTER ===
SERVICE_CENTER_LATITUDE = float(os.getenv('SERVICE_CENTER_LATITUDE', '-6.9383'))
SERVICE_CENTER_LONGITUDE = float(os.getenv('SERVICE_CENTER_LONGITUDE', '107.6318'))
SERVICE_CENTER_STREET = os.getenv(
    'SERVICE_CENTER_STREET',
    'Jl. Margasari No. 132, Margasari, Kec. Buahbatu, Kota Bandung'
)
SERVICE_TIMEZONE = os.getenv('SERVICE_TIMEZONE', 'Asia/Jakarta')


def validate_payment_config():
    """Return a list of problems with the payment settings (empty when usable)."""
    problems = []
    if not PAYMENT_SERVER_KEY:
        problems.append("PAYMENT_SERVER_KEY is not set; QR charges will fail and webhooks cannot be verified")
    if not PAYMENT_API_URL.startswith('http'):
        problems.append(f"PAYMENT_API_URL looks invalid: {PAYMENT_API_URL!r}")
    if DOWN_PAYMENT_AMOUNT <= 0:
        problems.append("DOWN_PAYMENT_AMOUNT must be positive")
    return problems

"""
QRIS payment gateway client (Midtrans Core API) with retry logic and the
webhook signature check.
"""
import hashlib
import hmac
import logging
from dataclasses import dataclass

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from config_payments import (
    PAYMENT_API_URL, PAYMENT_CONNECT_TIMEOUT, PAYMENT_READ_TIMEOUT, PAYMENT_SERVER_KEY,
)
from domain_errors import PaymentError

logger = logging.getLogger(__name__)

MAX_RETRIES = 3
BACKOFF_FACTOR = 1.0   # 1s, 2s, 4s
QR_ACTION_NAME = 'generate-qr-code-v2'


def compute_signature(order_id, status_code, gross_amount, server_key):
    """sha512 hex of order_id + status_code + gross_amount + server_key."""
    raw = f"{order_id}{status_code}{gross_amount}{server_key}"
    return hashlib.sha512(raw.encode('utf-8')).hexdigest()


def verify_signature(payload, server_key):
    """True when the notification's signature_key matches the recomputed one."""
    supplied = payload.get('signature_key') or ''
    expected = compute_signature(
        payload.get('order_id', ''),
        payload.get('status_code', ''),
        payload.get('gross_amount', ''),
        server_key,
    )
    return hmac.compare_digest(str(supplied), expected)


@dataclass(frozen=True)
class ChargeResult:
    transaction_id: str
    qr_code: str
    status: str


def _get_session():
    """Create a requests session with retry logic and connection pooling."""
    session = requests.Session()
    retry_strategy = Retry(
        total=MAX_RETRIES,
        backoff_factor=BACKOFF_FACTOR,
        status_forcelist=[429, 500, 502, 503, 504],
        allowed_methods=["GET", "POST"],
        raise_on_status=False
    )
    adapter = HTTPAdapter(max_retries=retry_strategy, pool_connections=2, pool_maxsize=5)
    session.mount("http://", adapter)
    session.mount("https://", adapter)
    return session


class PaymentGatewayClient:
    def __init__(self, base_url, server_key, connect_timeout=10, read_timeout=30):
        self.base_url = base_url.rstrip('/')
        self.server_key = server_key
        self.timeout = (connect_timeout, read_timeout)
        self._session = None

    @classmethod
    def from_env(cls):
        return cls(PAYMENT_API_URL, PAYMENT_SERVER_KEY, PAYMENT_CONNECT_TIMEOUT, PAYMENT_READ_TIMEOUT)

    @property
    def session(self):
        if self._session is None:
            self._session = _get_session()
        return self._session

    def verify_notification(self, payload):
        return verify_signature(payload, self.server_key)

    def create_qris_charge(self, gateway_order_ref, amount, customer, item_name) -> ChargeResult:
        """
        Request a QRIS charge.

        ``customer`` is a dict with name/phone/address. Raises PaymentError on
        transport errors or a non-2xx answer.
        """
        if not self.server_key:
            raise PaymentError('Pembayaran belum dikonfigurasi')
        body = {
            'payment_type': 'qris',
            'qris': {'acquirer': 'gopay'},
            'transaction_details': {'order_id': gateway_order_ref, 'gross_amount': amount},
            'customer_details': customer,
            'item_details': [{
                'id': gateway_order_ref, 'name': item_name, 'price': amount, 'quantity': 1,
            }],
        }
        url = f"{self.base_url}/v2/charge"
        try:
            response = self.session.post(
                url, json=body, auth=(self.server_key, ''), timeout=self.timeout,
                headers={'Accept': 'application/json'},
            )
        except requests.RequestException as e:
            logger.error(f"Payment gateway request failed for {gateway_order_ref}: {str(e)}")
            raise PaymentError()

        if response.status_code >= 300:
            logger.error(
                f"Payment gateway returned {response.status_code} for {gateway_order_ref}: "
                f"{response.text[:500]}"
            )
            raise PaymentError()

        try:
            data = response.json()
        except ValueError:
            logger.error(f"Payment gateway sent non-JSON body for {gateway_order_ref}")
            raise PaymentError()

        qr_url = next(
            (a.get('url') for a in data.get('actions', []) if a.get('name') == QR_ACTION_NAME),
            None,
        )
        if not data.get('transaction_id') or not qr_url:
            logger.error(f"Payment gateway response for {gateway_order_ref} lacks id or QR: {data}")
            raise PaymentError()

        logger.info(f"QRIS charge {data['transaction_id']} created for {gateway_order_ref}")
        return ChargeResult(data['transaction_id'], qr_url, data.get('transaction_status', 'pending'))

import base64
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime

import requests

from afya.errors import (
    AuthError,
    ConfigError,
    GatewaySyncRejection,
    GatewayTimeoutOrNetworkError,
    ValidationError,
)

logger = logging.getLogger(__name__)

SANDBOX_URL = "https://sandbox.safaricom.co.ke"
PRODUCTION_URL = "https://api.safaricom.co.ke"
CALLBACK_PATH = "/payments/callback/mpesa"


@dataclass
class StkPushResponse:
    """Synchronous acknowledgement of an accepted push request."""
    merchant_request_id: str
    checkout_request_id: str
    customer_message: str = ''
    raw: dict = field(default_factory=dict)


class MpesaService:
    """Client for the Daraja M-Pesa Express (STK push) API.

    One instance per application, built from config by the app factory. It only
    talks HTTP; persisting anything it returns is the caller's job.
    """

    def __init__(self, consumer_key, consumer_secret, business_short_code, passkey,
                 callback_url, environment='sandbox', timeout=30, session=None):
        self.consumer_key = consumer_key
        self.consumer_secret = consumer_secret
        self.business_short_code = business_short_code
        self.passkey = passkey
        self.callback_url = callback_url
        self.environment = environment
        self.timeout = timeout
        self.base_url = PRODUCTION_URL if environment == 'production' else SANDBOX_URL
        self.session = session or requests.Session()

        self._cached_access_token = None
        self._cached_token_expiry_epoch = 0

        logger.info("M-Pesa configured for %s environment", environment)
        logger.info("Consumer key present: %s", bool(consumer_key))
        logger.info("Consumer secret present: %s", bool(consumer_secret))
        logger.info("Business short code: %s", business_short_code)

    @classmethod
    def from_config(cls, config):
        callback_url = config.get('MPESA_CALLBACK_URL') or \
            f"{config.get('BASE_URL', 'http://localhost:5000').rstrip('/')}{CALLBACK_PATH}"
        return cls(
            consumer_key=config.get('MPESA_CONSUMER_KEY'),
            consumer_secret=config.get('MPESA_CONSUMER_SECRET'),
            business_short_code=config.get('MPESA_BUSINESS_SHORT_CODE'),
            passkey=config.get('MPESA_PASSKEY'),
            callback_url=callback_url,
            environment=config.get('MPESA_ENVIRONMENT', 'sandbox'),
            timeout=config.get('MPESA_TIMEOUT', 30),
        )

    def _require_config(self):
        missing = [name for name, value in (
            ('MPESA_CONSUMER_KEY', self.consumer_key),
            ('MPESA_CONSUMER_SECRET', self.consumer_secret),
            ('MPESA_BUSINESS_SHORT_CODE', self.business_short_code),
            ('MPESA_PASSKEY', self.passkey),
        ) if not value]
        if missing:
            raise ConfigError(f"M-Pesa configuration missing: {', '.join(missing)}")

    def invalidate_token(self):
        self._cached_access_token = None
        self._cached_token_expiry_epoch = 0

    def get_access_token(self):
        """Get an OAuth bearer token, reusing the cached one until 60s before expiry."""
        self._require_config()
        if self._cached_access_token and time.time() < self._cached_token_expiry_epoch - 60:
            return self._cached_access_token

        url = f"{self.base_url}/oauth/v1/generate?grant_type=client_credentials"
        credentials = f"{self.consumer_key}:{self.consumer_secret}"
        encoded_credentials = base64.b64encode(credentials.encode()).decode()
        headers = {
            'Authorization': f'Basic {encoded_credentials}',
            'Content-Type': 'application/json'
        }

        try:
            response = self.session.get(url, headers=headers, timeout=self.timeout)
        except requests.exceptions.RequestException as e:
            logger.error("Error reaching M-Pesa token endpoint: %s", e)
            raise GatewayTimeoutOrNetworkError(f'M-Pesa token request failed: {e}')

        if response.status_code in (400, 401, 403):
            logger.error("M-Pesa rejected credentials: %s - %s", response.status_code, response.text)
            raise AuthError('M-Pesa rejected the configured credentials', code=response.status_code)
        if response.status_code >= 500:
            raise GatewayTimeoutOrNetworkError(
                f'M-Pesa token endpoint unavailable ({response.status_code})', code=response.status_code)

        try:
            data = response.json()
        except ValueError:
            raise AuthError('Failed to get access token', code=response.status_code)

        access_token = data.get('access_token')
        if not access_token:
            raise AuthError('Failed to get access token', code=response.status_code)

        expires_in = data.get('expires_in', 3599)
        self._cached_access_token = access_token
        self._cached_token_expiry_epoch = time.time() + int(expires_in)
        return access_token

    def _password(self, timestamp):
        password_string = f"{self.business_short_code}{self.passkey}{timestamp}"
        return base64.b64encode(password_string.encode()).decode()

    def initiate_stk_push(self, phone_number, amount, account_reference, transaction_desc):
        """Send a push-payment prompt to ``phone_number``.

        ``phone_number`` must already be in canonical ``2547XXXXXXXX`` form.
        Returns a StkPushResponse once the gateway acknowledges with
        ResponseCode "0"; the payment result itself arrives on the callback.
        """
        if int(amount) < 1:
            raise ValidationError('Amount must be at least 1')
        if not account_reference:
            raise ValidationError('Account reference is required')

        access_token = self.get_access_token()

        url = f"{self.base_url}/mpesa/stkpush/v1/processrequest"
        timestamp = datetime.now().strftime('%Y%m%d%H%M%S')
        payload = {
            "BusinessShortCode": self.business_short_code,
            "Password": self._password(timestamp),
            "Timestamp": timestamp,
            "TransactionType": "CustomerPayBillOnline",
            "Amount": int(amount),
            "PartyA": phone_number,
            "PartyB": self.business_short_code,
            "PhoneNumber": phone_number,
            "CallBackURL": self.callback_url,
            "AccountReference": account_reference,
            "TransactionDesc": transaction_desc or 'Therapy Session Payment'
        }

        response = self._post(url, payload, access_token)
        # Token may have been revoked early; refresh once and retry
        if response.status_code == 401:
            self.invalidate_token()
            response = self._post(url, payload, self.get_access_token())

        if response.status_code >= 500:
            logger.error("M-Pesa STK push server error: %s - %s", response.status_code, response.text)
            raise GatewayTimeoutOrNetworkError(
                f'M-Pesa unavailable ({response.status_code})', code=response.status_code)

        try:
            data = response.json()
        except ValueError:
            raise GatewayTimeoutOrNetworkError(
                'Unreadable response from M-Pesa', code=response.status_code)

        if response.status_code >= 400:
            message = data.get('errorMessage') or 'STK push failed'
            logger.warning("M-Pesa rejected STK push: %s", message)
            raise GatewaySyncRejection(message, code=data.get('errorCode'), payload=data)

        if str(data.get('ResponseCode')) != '0':
            message = data.get('ResponseDescription') or data.get('errorMessage') or 'STK push failed'
            logger.warning("M-Pesa STK push not accepted: %s (%s)", message, data.get('ResponseCode'))
            raise GatewaySyncRejection(message, code=data.get('ResponseCode'), payload=data)

        if not data.get('CheckoutRequestID'):
            raise GatewaySyncRejection('M-Pesa response missing CheckoutRequestID', payload=data)

        logger.info("STK push accepted: CheckoutRequestID=%s", data.get('CheckoutRequestID'))
        return StkPushResponse(
            merchant_request_id=data.get('MerchantRequestID'),
            checkout_request_id=data.get('CheckoutRequestID'),
            customer_message=data.get('CustomerMessage', ''),
            raw=data,
        )

    def _post(self, url, payload, access_token):
        headers = {
            'Authorization': f'Bearer {access_token}',
            'Content-Type': 'application/json'
        }
        try:
            return self.session.post(url, json=payload, headers=headers, timeout=self.timeout)
        except requests.exceptions.RequestException as e:
            logger.error("Error initiating STK push: %s", e)
            raise GatewayTimeoutOrNetworkError(f'STK push failed: {e}')

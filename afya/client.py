"""
HTTP client for the Afya Connect API.

Used by anything that drives a checkout from outside the server process
(scripts, kiosks, integration tests against a running instance).
"""
import logging

import requests

from afya.errors import ERRORS_BY_NAME, GatewayTimeoutOrNetworkError, PaymentError
from afya.payment.poller import PaymentSnapshot

logger = logging.getLogger(__name__)


class AfyaClient:
    def __init__(self, base_url, session=None, timeout=15):
        self.base_url = base_url.rstrip('/')
        self.session = session or requests.Session()
        self.timeout = timeout

    def _request(self, method, path, **kwargs):
        url = f'{self.base_url}{path}'
        try:
            response = self.session.request(method, url, timeout=self.timeout, **kwargs)
        except requests.exceptions.RequestException as e:
            logger.error('Request to %s failed: %s', url, e)
            raise GatewayTimeoutOrNetworkError(f'Could not reach Afya Connect: {e}')

        try:
            body = response.json()
        except ValueError:
            body = {}
        return response, body

    def _raise_for(self, response, body):
        if response.ok:
            return
        error_cls = ERRORS_BY_NAME.get(body.get('error'), PaymentError)
        error = error_cls(body.get('message') or f'HTTP {response.status_code}', code=body.get('code'))
        error.status_code = response.status_code
        raise error

    def _call(self, method, path, **kwargs):
        response, body = self._request(method, path, **kwargs)
        self._raise_for(response, body)
        return body

    # Identity

    def sign_up(self, full_name, email, password, phone=None, role='patient'):
        payload = {'full_name': full_name, 'email': email, 'password': password, 'role': role}
        if phone:
            payload['phone'] = phone
        return self._call('POST', '/auth/signup', json=payload)['user']

    def sign_in(self, email, password):
        return self._call('POST', '/auth/signin', json={'email': email, 'password': password})['user']

    def sign_out(self):
        self._call('POST', '/auth/signout')

    def current_user(self):
        return self._call('GET', '/auth/me')['user']

    # Therapists and appointments

    def list_therapists(self, **filters):
        return self._call('GET', '/therapists', params=filters)['therapists']

    def book_appointment(self, therapist_id, scheduled_at, duration=60, session_type='video', notes=None):
        return self._call('POST', '/appointments', json={
            'therapist_id': therapist_id,
            'scheduled_at': scheduled_at.strftime('%Y-%m-%dT%H:%M:%S'),
            'duration': duration,
            'session_type': session_type,
            'notes': notes or '',
        })['appointment']

    def get_appointment(self, appointment_id):
        return self._call('GET', f'/appointments/{appointment_id}')['appointment']

    # Payments

    def start_mpesa_payment(self, booking_id, amount, phone):
        """Create and submit a payment; a gateway refusal comes back as a body, not an exception."""
        response, body = self._request('POST', '/payments/mpesa', json={
            'booking_id': booking_id,
            'amount': None if amount is None else str(amount),
            'phone': phone,
        })
        if not response.ok and 'payment_id' in body:
            return body
        self._raise_for(response, body)
        return body

    def payment_status(self, payment_id):
        body = self._call('GET', f'/payments/{payment_id}/status')
        return PaymentSnapshot.from_dict(body['payment'])

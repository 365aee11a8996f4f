"""
Payment error taxonomy.

Every failure the payment core can report is one of these classes, so callers
can tell a bad phone number from a gateway outage without parsing messages.
"""
from flask import jsonify


class PaymentError(Exception):
    """Base class; ``status_code`` is the HTTP status the API answers with."""

    status_code = 500

    def __init__(self, message, code=None, payload=None):
        super().__init__(message)
        self.message = message
        self.code = code
        self.payload = payload

    def to_dict(self):
        body = {
            'success': False,
            'error': type(self).__name__,
            'message': self.message,
        }
        if self.code is not None:
            body['code'] = self.code
        return body


class ValidationError(PaymentError):
    """Bad input caught locally, before any network call or write."""
    status_code = 400


class ConfigError(PaymentError):
    """Gateway credentials are missing. Not retried."""
    status_code = 500


class AuthError(PaymentError):
    """The gateway token endpoint rejected our credentials."""
    status_code = 502


class GatewaySyncRejection(PaymentError):
    """The gateway answered but refused the push request (non-zero ResponseCode)."""
    status_code = 400


class GatewayTimeoutOrNetworkError(PaymentError):
    """No usable answer from the gateway; the outcome of the push is unknown."""
    status_code = 504


class NotFoundError(PaymentError):
    status_code = 404


class PersistenceError(PaymentError):
    status_code = 500


class PaymentTimeoutError(PaymentError):
    """Client gave up polling. Never written to the payment row."""
    status_code = 408


ERRORS_BY_NAME = {
    cls.__name__: cls for cls in (
        PaymentError,
        ValidationError,
        ConfigError,
        AuthError,
        GatewaySyncRejection,
        GatewayTimeoutOrNetworkError,
        NotFoundError,
        PersistenceError,
        PaymentTimeoutError,
    )
}


def register_error_handlers(app):
    @app.errorhandler(PaymentError)
    def handle_payment_error(error):
        if error.status_code >= 500:
            app.logger.error(f'{type(error).__name__}: {error.message}')
        else:
            app.logger.info(f'{type(error).__name__}: {error.message}')
        return jsonify(error.to_dict()), error.status_code

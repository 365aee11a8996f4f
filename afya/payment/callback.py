"""
Reconciling M-Pesa STK callbacks.

The gateway posts the final result of a push request to our callback URL, at
least once and in no particular order relative to client polling. The handler
is stateless: everything it needs is the CheckoutRequestID in the envelope and
the Payment row it points at.
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Optional

from afya.errors import NotFoundError, PersistenceError, ValidationError
from afya.payment.store import APPLIED, REJECTED

logger = logging.getLogger(__name__)

METADATA_FIELDS = {
    'MpesaReceiptNumber': 'receipt_number',
    'TransactionDate': 'transaction_date',
    'PhoneNumber': 'phone_number',
    'Amount': 'amount',
}


@dataclass
class StkCallback:
    merchant_request_id: Optional[str]
    checkout_request_id: str
    result_code: int
    result_desc: str
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def succeeded(self):
        return self.result_code == 0


def parse_callback(envelope):
    """Pull the stkCallback out of a callback envelope.

    Raises ValidationError when the envelope is not a callback we can act on.
    """
    if not isinstance(envelope, dict):
        raise ValidationError('Invalid callback format')
    body = envelope.get('Body')
    stk_callback = body.get('stkCallback') if isinstance(body, dict) else None
    if not isinstance(stk_callback, dict):
        raise ValidationError('Invalid callback format')

    checkout_request_id = stk_callback.get('CheckoutRequestID')
    if not checkout_request_id:
        raise ValidationError('Callback missing CheckoutRequestID')
    try:
        result_code = int(stk_callback.get('ResultCode'))
    except (TypeError, ValueError):
        raise ValidationError('Callback missing ResultCode')

    metadata = {}
    callback_metadata = stk_callback.get('CallbackMetadata') or {}
    items = callback_metadata.get('Item') if isinstance(callback_metadata, dict) else None
    for item in items or []:
        if not isinstance(item, dict):
            continue
        key = METADATA_FIELDS.get(item.get('Name'))
        if key and item.get('Value') is not None:
            metadata[key] = item['Value']

    return StkCallback(
        merchant_request_id=stk_callback.get('MerchantRequestID'),
        checkout_request_id=str(checkout_request_id),
        result_code=result_code,
        result_desc=str(stk_callback.get('ResultDesc') or ''),
        metadata=metadata,
    )


def parse_transaction_date(value):
    """M-Pesa sends TransactionDate as a number like 20191219102115."""
    if value is None:
        return None
    try:
        return datetime.strptime(str(value), '%Y%m%d%H%M%S')
    except ValueError:
        logger.warning('Unparseable M-Pesa TransactionDate: %s', value)
        return None


def build_update(callback, envelope):
    values = {
        'result_code': callback.result_code,
        'result_desc': callback.result_desc[:255],
        'raw_response': envelope,
    }
    if callback.succeeded:
        values['status'] = 'completed'
        # A completed payment always carries a receipt; fall back to the checkout id
        values['mpesa_receipt'] = str(callback.metadata.get('receipt_number') or callback.checkout_request_id)
        transaction_date = parse_transaction_date(callback.metadata.get('transaction_date'))
        if transaction_date:
            values['transaction_date'] = transaction_date
        if callback.metadata.get('phone_number'):
            values['phone'] = str(callback.metadata['phone_number'])
    else:
        values['status'] = 'failed'
    return values


@dataclass
class CallbackOutcome:
    status_code: int
    body: Dict[str, Any]
    payment_id: Optional[str] = None


class CallbackReconciler:
    """Applies one gateway callback delivery to the payment and its appointment.

    Safe to run twice for the same callback: the payment write is a conditional
    update and confirming an already-confirmed appointment does nothing.
    """

    def __init__(self, payments, bookings, events=None, cache=None, notify_confirmed=None):
        self.payments = payments
        self.bookings = bookings
        self.events = events
        self.cache = cache
        self.notify_confirmed = notify_confirmed

    def handle(self, envelope):
        try:
            callback = parse_callback(envelope)
        except ValidationError as e:
            logger.error('Rejected M-Pesa callback: %s', e.message)
            return CallbackOutcome(400, {'success': False, 'message': e.message})

        payment = self.payments.find_by_checkout_request_id(callback.checkout_request_id)
        if payment is None:
            logger.warning('Payment not found for checkout request ID: %s', callback.checkout_request_id)
            return CallbackOutcome(404, {'success': False, 'message': 'Payment record not found'})

        payment_id = payment.id
        booking_id = payment.booking_id
        try:
            outcome = self.payments.apply_terminal(payment_id, build_update(callback, envelope))
        except PersistenceError as e:
            return CallbackOutcome(500, {'success': False, 'message': e.message}, payment_id)

        if outcome == REJECTED:
            # Already finalised the other way; the stored result stands
            return CallbackOutcome(200, {
                'success': True,
                'message': 'Payment already finalised',
            }, payment_id)

        payment = self.payments.get(payment_id)
        logger.info('Payment %s updated successfully. Status: %s', payment_id, payment.status)
        if outcome == APPLIED:
            self._publish(payment)

        if callback.succeeded:
            self._cascade(payment, booking_id)

        return CallbackOutcome(200, {
            'success': True,
            'message': 'Callback processed successfully',
        }, payment_id)

    def _cascade(self, payment, booking_id):
        try:
            confirmed = self.bookings.confirm(booking_id)
        except (NotFoundError, PersistenceError) as e:
            # The payment result is already stored; a redelivery will retry this
            logger.error('Failed to confirm appointment %s for payment %s: %s', booking_id, payment.id, e.message)
            return
        if confirmed and self.notify_confirmed is not None:
            try:
                self.notify_confirmed(payment)
            except Exception as e:
                logger.error('Confirmation notice for payment %s failed: %s', payment.id, e)

    def _publish(self, payment):
        snapshot = {
            'type': 'payment_status',
            'payment_id': payment.id,
            'status': payment.status,
            'mpesa_receipt': payment.mpesa_receipt,
            'result_desc': payment.result_desc,
        }
        if self.cache is not None:
            self.cache.set_status(payment.id, payment.to_dict())
        if self.events is not None:
            self.events.publish(payment.id, snapshot)

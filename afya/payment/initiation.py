"""
Starting an M-Pesa payment for an appointment.

A pending Payment row is written before the gateway is called, so every push
request has a row the callback can land on. The gateway's correlation ids are
stored before returning, since CheckoutRequestID is the only handle the
callback carries.
"""
import logging
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Callable, Optional

from afya.errors import (
    AuthError,
    ConfigError,
    GatewaySyncRejection,
    GatewayTimeoutOrNetworkError,
    NotFoundError,
    ValidationError,
)
from afya.payment.phone import require_valid_phone

logger = logging.getLogger(__name__)


@dataclass
class InitiationResult:
    payment_id: str
    status: str
    message: str = ''
    merchant_request_id: Optional[str] = None
    checkout_request_id: Optional[str] = None
    error: Optional[str] = None
    error_code: Optional[str] = None
    polling: bool = False

    @property
    def success(self):
        return self.status != 'failed'

    def to_dict(self):
        body = {
            'success': self.success,
            'payment_id': self.payment_id,
            'status': self.status,
            'message': self.message,
            'polling': self.polling,
        }
        if self.checkout_request_id:
            body['merchant_request_id'] = self.merchant_request_id
            body['checkout_request_id'] = self.checkout_request_id
        if self.error:
            body['error'] = self.error
            body['error_code'] = self.error_code
        return body


def validate_amount(amount):
    try:
        value = Decimal(str(amount))
    except (InvalidOperation, ValueError):
        raise ValidationError('Amount must be a number')
    if not value.is_finite() or value < 1:
        raise ValidationError('Amount must be at least 1')
    if value != value.to_integral_value():
        raise ValidationError('M-Pesa amounts must be whole shillings')
    return value


class PaymentInitiationFlow:
    """Creates a payment attempt and hands it to the gateway.

    ``arm_poller`` is called with the payment id whenever the attempt is left
    pending, which is the signal to start watching the row for the outcome.
    """

    def __init__(self, gateway, payments, bookings, arm_poller: Optional[Callable[[str], object]] = None):
        self.gateway = gateway
        self.payments = payments
        self.bookings = bookings
        self.arm_poller = arm_poller

    def create(self, user_id, booking_id, amount, phone):
        """Validate input and write the pending Payment row.

        Nothing is written when validation fails.
        """
        formatted_phone = require_valid_phone(phone)
        value = validate_amount(amount)

        appointment = self.bookings.get(booking_id)
        if appointment.patient_id != user_id:
            raise NotFoundError(f'Appointment {booking_id} not found')
        if appointment.status != 'pending':
            raise ValidationError(f'Appointment is {appointment.status}, not awaiting payment')

        return self.payments.create_pending(
            user_id=user_id,
            booking_id=appointment.id,
            amount=value,
            phone=formatted_phone,
        )

    def submit(self, payment, description=None):
        """Send the push request for an existing pending payment."""
        if payment.status != 'pending' or payment.checkout_request_id:
            raise ValidationError('Payment has already been submitted; start a new payment to retry')

        description = description or f'Therapy Session Payment - {payment.booking_id}'
        try:
            ack = self.gateway.initiate_stk_push(
                phone_number=payment.phone,
                amount=payment.amount,
                account_reference=payment.id,
                transaction_desc=description,
            )
        except (ConfigError, AuthError, GatewaySyncRejection) as e:
            # Terminal for this attempt; no push reached the phone
            logger.warning('Payment %s failed at initiation: %s', payment.id, e.message)
            self.payments.mark_failed(
                payment.id,
                result_desc=e.message,
                result_code=_int_or_none(e.code),
                raw_response=e.payload,
            )
            return InitiationResult(
                payment_id=payment.id,
                status='failed',
                message=e.message,
                error=type(e).__name__,
                error_code=None if e.code is None else str(e.code),
            )
        except GatewayTimeoutOrNetworkError as e:
            # The push may or may not have gone out; leave the row pending
            logger.error('Payment %s outcome unknown after gateway error: %s', payment.id, e.message)
            self._arm(payment.id)
            return InitiationResult(
                payment_id=payment.id,
                status='pending',
                message='We could not confirm the payment request. Check your phone for an M-Pesa prompt.',
                error=type(e).__name__,
                polling=True,
            )

        self.payments.attach_correlation(
            payment.id,
            merchant_request_id=ack.merchant_request_id,
            checkout_request_id=ack.checkout_request_id,
            raw_response=ack.raw,
        )
        self._arm(payment.id)
        return InitiationResult(
            payment_id=payment.id,
            status='pending',
            message=ack.customer_message or 'Please check your phone and enter your M-Pesa PIN to complete the payment.',
            merchant_request_id=ack.merchant_request_id,
            checkout_request_id=ack.checkout_request_id,
            polling=True,
        )

    def start(self, user_id, booking_id, amount, phone, description=None):
        payment = self.create(user_id, booking_id, amount, phone)
        return self.submit(payment, description=description)

    def _arm(self, payment_id):
        if self.arm_poller is not None:
            self.arm_poller(payment_id)


def _int_or_none(value):
    try:
        return int(value)
    except (TypeError, ValueError):
        return None

"""
The M-Pesa checkout as the patient sees it.

States: idle -> submitting -> awaiting_pin -> succeeded | failed. A failed
checkout can be retried, which always starts a brand new payment attempt.
"""
import logging

from afya.errors import PaymentError, PaymentTimeoutError, ValidationError
from afya.payment.phone import require_valid_phone
from afya.payment.poller import PaymentPoller, POLL_INTERVAL, MAX_ATTEMPTS

logger = logging.getLogger(__name__)

IDLE = 'idle'
SUBMITTING = 'submitting'
AWAITING_PIN = 'awaiting_pin'
SUCCEEDED = 'succeeded'
FAILED = 'failed'

# Why a checkout failed
REJECTED = 'rejected'
TIMEOUT = 'timeout'
ERROR = 'error'


class MpesaCheckout:
    """Drives one appointment's payment from phone entry to outcome.

    ``start_payment(booking_id, amount, phone)`` must create and submit a new
    payment and return the initiation body (``success``, ``payment_id``,
    ``message``, ``polling``). ``fetch_status(payment_id)`` returns a
    PaymentSnapshot.
    """

    def __init__(self, booking_id, amount, start_payment, fetch_status,
                 poll_interval=POLL_INTERVAL, max_attempts=MAX_ATTEMPTS, background=True):
        self.booking_id = booking_id
        self.amount = amount
        self.start_payment = start_payment
        self.fetch_status = fetch_status
        self.poll_interval = poll_interval
        self.max_attempts = max_attempts
        self.background = background

        self.state = IDLE
        self.message = None
        self.failure_kind = None
        self.receipt = None
        self.payment_id = None
        self.attempted_payment_ids = []
        self.poller = None

    @classmethod
    def for_client(cls, client, booking_id, amount, **kwargs):
        """Checkout that talks to the HTTP API through an AfyaClient."""
        return cls(
            booking_id,
            amount,
            start_payment=client.start_mpesa_payment,
            fetch_status=client.payment_status,
            **kwargs
        )

    @property
    def retriable(self):
        return self.state == FAILED

    def submit(self, phone):
        """Start a payment. Returns False if the phone number was rejected locally."""
        if self.state != IDLE:
            raise RuntimeError(f'Cannot submit while {self.state}')
        try:
            formatted = require_valid_phone(phone)
        except ValidationError as e:
            self.message = e.message
            return False

        self.state = SUBMITTING
        self.message = None
        try:
            result = self.start_payment(self.booking_id, self.amount, formatted)
        except PaymentError as e:
            self._fail(ERROR, e.message)
            return True

        self.payment_id = result.get('payment_id')
        if self.payment_id:
            self.attempted_payment_ids.append(self.payment_id)
        if not result.get('success') or not result.get('polling'):
            self._fail(REJECTED, result.get('message') or 'Failed to initiate payment')
            return True

        self.state = AWAITING_PIN
        self.message = result.get('message') or \
            'Please check your phone and enter your M-Pesa PIN to complete the payment.'
        self.poller = PaymentPoller(
            self.payment_id,
            self.fetch_status,
            on_success=self._succeeded,
            on_failure=self._poll_failed,
            interval=self.poll_interval,
            max_attempts=self.max_attempts,
        )
        self.poller.arm(background=self.background)
        return True

    def retry(self):
        """Back to idle so the next submit creates a new payment attempt."""
        if self.state != FAILED:
            raise RuntimeError(f'Nothing to retry while {self.state}')
        self.close()
        self.state = IDLE
        self.message = None
        self.failure_kind = None
        self.payment_id = None
        self.poller = None

    def close(self):
        """Tear down: stop any polling still in flight."""
        if self.poller is not None:
            self.poller.cancel()

    def _succeeded(self, snapshot):
        self.state = SUCCEEDED
        self.receipt = snapshot.mpesa_receipt
        self.message = f'Payment completed. Receipt: {snapshot.mpesa_receipt}'

    def _poll_failed(self, error):
        if isinstance(error, PaymentTimeoutError):
            self._fail(TIMEOUT, error.message)
        elif self.poller is not None and self.poller.snapshot is not None \
                and self.poller.snapshot.status == 'failed':
            self._fail(REJECTED, error.message)
        else:
            self._fail(ERROR, 'Failed to check payment status')

    def _fail(self, kind, message):
        self.state = FAILED
        self.failure_kind = kind
        self.message = message
        logger.info('Checkout for appointment %s failed (%s): %s', self.booking_id, kind, message)

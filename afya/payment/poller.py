"""
Client-side polling for the outcome of a payment.

The poller only ever reads. It re-fetches the payment until the callback has
written a terminal status or the attempt ceiling is reached; hitting the
ceiling is a local timeout and leaves the stored payment untouched, so a late
callback still lands.
"""
import logging
import threading
from dataclasses import dataclass
from typing import Callable, Optional

from afya.errors import PaymentError, PaymentTimeoutError

logger = logging.getLogger(__name__)

POLL_INTERVAL = 10
MAX_ATTEMPTS = 30

# Poller states
IDLE = 'idle'
INITIATED = 'initiated'
CHECKING = 'checking'
SUCCESS = 'success'
FAILED = 'failed'


@dataclass
class PaymentSnapshot:
    """What a poll needs to know about a payment row."""
    payment_id: str
    status: str
    mpesa_receipt: Optional[str] = None
    result_desc: Optional[str] = None

    @classmethod
    def from_payment(cls, payment):
        return cls(
            payment_id=payment.id,
            status=payment.status,
            mpesa_receipt=payment.mpesa_receipt,
            result_desc=payment.result_desc,
        )

    @classmethod
    def from_dict(cls, data):
        return cls(
            payment_id=data['id'],
            status=data['status'],
            mpesa_receipt=data.get('mpesa_receipt'),
            result_desc=data.get('result_desc'),
        )


class PaymentPoller:
    """Watches one payment until it is completed, failed, timed out or cancelled.

    ``fetch`` takes a payment id and returns a PaymentSnapshot. ``on_success``
    receives the final snapshot; ``on_failure`` receives a PaymentError
    (PaymentTimeoutError when the ceiling is reached).
    """

    def __init__(self, payment_id, fetch: Callable[[str], PaymentSnapshot],
                 on_success=None, on_failure=None,
                 interval=POLL_INTERVAL, max_attempts=MAX_ATTEMPTS):
        self.payment_id = payment_id
        self.fetch = fetch
        self.on_success = on_success
        self.on_failure = on_failure
        self.interval = interval
        self.max_attempts = max_attempts

        self.state = IDLE
        self.attempts = 0
        self.snapshot = None
        self.error = None
        self._cancelled = threading.Event()
        self._thread = None

    @property
    def cancelled(self):
        return self._cancelled.is_set()

    @property
    def finished(self):
        return self.state in (SUCCESS, FAILED)

    def arm(self, background=True):
        """Start polling, on a daemon thread unless ``background`` is False."""
        if self.state != IDLE:
            raise RuntimeError(f'Poller for {self.payment_id} already armed')
        self.state = INITIATED
        if background:
            self._thread = threading.Thread(target=self.run, name=f'poll-{self.payment_id}', daemon=True)
            self._thread.start()
        else:
            self.run()
        return self

    def cancel(self):
        """Stop polling without reporting an outcome (the view went away)."""
        self._cancelled.set()

    def wait(self, timeout=None):
        if self._thread is not None:
            self._thread.join(timeout)
        return self.state

    def run(self):
        self.state = CHECKING
        while not self.cancelled:
            try:
                snapshot = self.fetch(self.payment_id)
            except PaymentError as e:
                logger.error('Status check for payment %s failed: %s', self.payment_id, e.message)
                self._fail(e)
                return
            except Exception as e:
                # Anything else from the read still has to end in a reported state
                logger.exception('Status check for payment %s raised', self.payment_id)
                self._fail(PaymentError(f'Failed to check payment status: {e}'))
                return
            if self.cancelled:
                return

            self.snapshot = snapshot
            if snapshot.status == 'completed':
                self.state = SUCCESS
                logger.info('Payment %s completed, receipt %s', self.payment_id, snapshot.mpesa_receipt)
                if self.on_success is not None:
                    self.on_success(snapshot)
                return
            if snapshot.status == 'failed':
                self._fail(PaymentError(snapshot.result_desc or 'Payment was cancelled or failed'))
                return

            self.attempts += 1
            if self.attempts >= self.max_attempts:
                logger.info('Gave up polling payment %s after %s attempts', self.payment_id, self.attempts)
                self._fail(PaymentTimeoutError('Payment timeout - please try again'))
                return
            # Event.wait returns True as soon as cancel() is called
            if self._cancelled.wait(self.interval):
                return

    def _fail(self, error):
        self.state = FAILED
        self.error = error
        if self.on_failure is not None:
            self.on_failure(error)

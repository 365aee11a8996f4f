import logging
from datetime import datetime

from sqlalchemy import update
from sqlalchemy.exc import SQLAlchemyError

from afya.extensions import db
from afya.errors import NotFoundError, PersistenceError
from afya.payment.models import Payment, TERMINAL_STATUSES

logger = logging.getLogger(__name__)

# Outcomes of PaymentStore.apply_terminal
APPLIED = 'applied'
REPEATED = 'repeated'
REJECTED = 'rejected'


class PaymentStore:
    """Owns the canonical state of each payment attempt in the ``payments`` table.

    Terminal writes are conditional updates, so two writers racing on the same
    row (duplicate callbacks, say) cannot move a payment out of a terminal state.
    """

    def __init__(self, session=None):
        self.session = session or db.session

    def _commit(self, what):
        try:
            self.session.commit()
        except SQLAlchemyError as e:
            self.session.rollback()
            logger.error('Failed to %s: %s', what, e)
            raise PersistenceError(f'Failed to {what}')

    def create_pending(self, user_id, booking_id, amount, phone):
        payment = Payment(
            user_id=user_id,
            booking_id=booking_id,
            amount=amount,
            phone=phone,
            status='pending',
        )
        self.session.add(payment)
        self._commit('create payment')
        logger.info('Payment %s created for appointment %s', payment.id, booking_id)
        return payment

    def get(self, payment_id):
        payment = self.session.get(Payment, payment_id)
        if payment is None:
            raise NotFoundError(f'Payment {payment_id} not found')
        return payment

    def find_by_checkout_request_id(self, checkout_request_id):
        if not checkout_request_id:
            return None
        return Payment.query.filter_by(checkout_request_id=checkout_request_id).first()

    def attach_correlation(self, payment_id, merchant_request_id, checkout_request_id, raw_response=None):
        """Record the gateway ids that the callback will use to find this row."""
        attached = self._conditional_update(
            payment_id,
            Payment.status == 'pending',
            dict(
                merchant_request_id=merchant_request_id,
                checkout_request_id=checkout_request_id,
                raw_response=raw_response,
            ),
            'attach gateway correlation',
        )
        if attached:
            logger.info('Payment %s correlated with CheckoutRequestID %s', payment_id, checkout_request_id)
        else:
            logger.warning('Payment %s is no longer pending, correlation not stored', payment_id)
        return attached

    def mark_failed(self, payment_id, result_desc, result_code=None, raw_response=None):
        return self.apply_terminal(payment_id, {
            'status': 'failed',
            'result_desc': (result_desc or '')[:255],
            'result_code': result_code,
            'raw_response': raw_response,
        })

    def apply_terminal(self, payment_id, values):
        """Write a terminal status and its audit fields.

        Returns APPLIED when this call moved the row out of ``pending``,
        REPEATED when the row already held the same terminal status, and REJECTED
        when it holds the other one. Only APPLIED writes anything: the first
        terminal result and its audit fields are never overwritten.
        """
        status = values['status']
        if status not in TERMINAL_STATUSES:
            raise PersistenceError(f'{status} is not a terminal status')
        if status == 'completed' and not values.get('mpesa_receipt'):
            raise PersistenceError('A completed payment needs a receipt number')

        if self._conditional_update(payment_id, Payment.status == 'pending', values, 'update payment'):
            logger.info('Payment %s moved pending -> %s', payment_id, status)
            return APPLIED
        payment = self.get(payment_id)
        if payment.status == status:
            logger.info('Payment %s already %s, keeping the stored result', payment_id, status)
            return REPEATED

        logger.warning('Refusing to move payment %s from %s to %s', payment_id, payment.status, status)
        return REJECTED

    def _conditional_update(self, payment_id, condition, values, what):
        values = dict(values, updated_at=datetime.utcnow())
        try:
            result = self.session.execute(
                update(Payment)
                .where(Payment.id == payment_id, condition)
                .values(**values)
                .execution_options(synchronize_session=False)
            )
            self.session.commit()
        except SQLAlchemyError as e:
            self.session.rollback()
            logger.error('Failed to %s for payment %s: %s', what, payment_id, e)
            raise PersistenceError(f'Failed to {what}')

        return result.rowcount == 1

from unittest.mock import MagicMock

import pytest

from afya.errors import GatewayTimeoutOrNetworkError, NotFoundError
from afya.payment.checkout import (
    MpesaCheckout,
    IDLE,
    AWAITING_PIN,
    SUCCEEDED,
    FAILED,
    REJECTED,
    TIMEOUT,
    ERROR,
)
from afya.payment.poller import PaymentSnapshot


def _accepted(payment_id='pay-1'):
    return {
        'success': True,
        'payment_id': payment_id,
        'status': 'pending',
        'message': 'Success. Request accepted for processing',
        'polling': True,
    }


def _status(status, receipt=None, desc=None):
    return lambda payment_id: PaymentSnapshot(payment_id, status, mpesa_receipt=receipt, result_desc=desc)


def _checkout(start_payment, fetch_status, **kwargs):
    kwargs.setdefault('poll_interval', 0)
    kwargs.setdefault('background', False)
    return MpesaCheckout(42, 1500, start_payment, fetch_status, **kwargs)


def test_invalid_phone_stays_idle():
    start_payment = MagicMock()
    checkout = _checkout(start_payment, _status('pending'))

    assert checkout.submit('12345') is False

    assert checkout.state == IDLE
    assert 'valid Kenyan phone number' in checkout.message
    start_payment.assert_not_called()


def test_successful_payment():
    start_payment = MagicMock(return_value=_accepted())
    checkout = _checkout(start_payment, _status('completed', receipt='ABC123'))

    assert checkout.submit('0712 345 678') is True

    start_payment.assert_called_once_with(42, 1500, '254712345678')
    assert checkout.state == SUCCEEDED
    assert checkout.receipt == 'ABC123'
    assert checkout.attempted_payment_ids == ['pay-1']


def test_cancelled_on_phone_is_rejected():
    checkout = _checkout(MagicMock(return_value=_accepted()),
                         _status('failed', desc='Request cancelled by user'))
    checkout.submit('0712345678')

    assert checkout.state == FAILED
    assert checkout.failure_kind == REJECTED
    assert checkout.message == 'Request cancelled by user'
    assert checkout.retriable


def test_sync_rejection_never_polls():
    fetch_status = MagicMock()
    start_payment = MagicMock(return_value={
        'success': False,
        'payment_id': 'pay-1',
        'status': 'failed',
        'message': 'Bad Request - Invalid PhoneNumber',
        'polling': False,
    })
    checkout = _checkout(start_payment, fetch_status)

    checkout.submit('0712345678')

    assert checkout.state == FAILED
    assert checkout.failure_kind == REJECTED
    assert checkout.message == 'Bad Request - Invalid PhoneNumber'
    assert checkout.poller is None
    fetch_status.assert_not_called()


def test_no_callback_times_out():
    fetch_status = MagicMock(side_effect=_status('pending'))
    checkout = _checkout(MagicMock(return_value=_accepted()), fetch_status)

    checkout.submit('0712345678')

    assert checkout.state == FAILED
    assert checkout.failure_kind == TIMEOUT
    assert checkout.message == 'Payment timeout - please try again'
    assert fetch_status.call_count == 30


def test_start_error():
    start_payment = MagicMock(side_effect=GatewayTimeoutOrNetworkError('Could not reach Afya Connect'))
    checkout = _checkout(start_payment, _status('pending'))

    checkout.submit('0712345678')

    assert checkout.state == FAILED
    assert checkout.failure_kind == ERROR
    assert checkout.attempted_payment_ids == []


def test_status_read_error():
    checkout = _checkout(MagicMock(return_value=_accepted()),
                         MagicMock(side_effect=NotFoundError('Payment pay-1 not found')))
    checkout.submit('0712345678')

    assert checkout.failure_kind == ERROR
    assert checkout.message == 'Failed to check payment status'


def test_retry_starts_a_new_payment():
    start_payment = MagicMock(side_effect=[_accepted('pay-1'), _accepted('pay-2')])
    outcomes = {'pay-1': 'failed', 'pay-2': 'completed'}
    checkout = _checkout(start_payment, lambda pid: PaymentSnapshot(pid, outcomes[pid], 'ABC123'))

    checkout.submit('0712345678')
    assert checkout.state == FAILED

    checkout.retry()
    assert checkout.state == IDLE
    assert checkout.failure_kind is None

    checkout.submit('0712345678')
    assert checkout.state == SUCCEEDED
    assert checkout.attempted_payment_ids == ['pay-1', 'pay-2']
    assert start_payment.call_count == 2


def test_retry_only_after_failure():
    checkout = _checkout(MagicMock(), _status('pending'))
    with pytest.raises(RuntimeError):
        checkout.retry()


def test_submit_only_from_idle():
    checkout = _checkout(MagicMock(return_value=_accepted()), _status('completed', receipt='ABC123'))
    checkout.submit('0712345678')
    with pytest.raises(RuntimeError):
        checkout.submit('0712345678')


def test_close_cancels_polling():
    checkout = _checkout(MagicMock(return_value=_accepted()), _status('pending'),
                         poll_interval=60, background=True)
    checkout.submit('0712345678')
    assert checkout.state == AWAITING_PIN

    checkout.close()
    checkout.poller.wait(timeout=5)

    assert checkout.poller.cancelled
    assert checkout.state == AWAITING_PIN


def test_for_client_uses_api_calls():
    client = MagicMock()
    client.start_mpesa_payment.return_value = _accepted()
    client.payment_status.return_value = PaymentSnapshot('pay-1', 'completed', 'ABC123')

    checkout = MpesaCheckout.for_client(client, 42, 1500, poll_interval=0, background=False)
    checkout.submit('0712345678')

    client.start_mpesa_payment.assert_called_once_with(42, 1500, '254712345678')
    client.payment_status.assert_called_with('pay-1')
    assert checkout.state == SUCCEEDED


def test_unexpected_status_read_error_fails_background_checkout():
    checkout = _checkout(MagicMock(return_value=_accepted()),
                         MagicMock(side_effect=KeyError('payment')), background=True)
    checkout.submit('0712345678')
    checkout.poller.wait(timeout=5)

    assert checkout.state == FAILED
    assert checkout.failure_kind == ERROR
    assert checkout.message == 'Failed to check payment status'

from decimal import Decimal

import pytest

from afya.extensions import db
from afya.errors import NotFoundError, PersistenceError
from afya.payment.models import Payment
from afya.payment.store import APPLIED, REPEATED, REJECTED

COMPLETED = {'status': 'completed', 'mpesa_receipt': 'ABC123', 'result_code': 0,
             'result_desc': 'The service request is processed successfully.'}
FAILED = {'status': 'failed', 'result_code': 1032, 'result_desc': 'Request cancelled by user'}


def test_create_pending(payments, patient, appointment):
    payment = payments.create_pending(patient.id, appointment.id, Decimal('1500'), '254712345678')

    stored = payments.get(payment.id)
    assert stored.status == 'pending'
    assert len(stored.id) == 32
    assert stored.checkout_request_id is None
    assert stored.amount == Decimal('1500')


def test_get_unknown_payment(payments):
    with pytest.raises(NotFoundError):
        payments.get('does-not-exist')


def test_attach_correlation_makes_payment_findable(payments, pending_payment):
    found = payments.find_by_checkout_request_id('ws_CO_191220191020363925')
    assert found.id == pending_payment.id
    assert found.merchant_request_id == '29115-34620561-1'


def test_find_without_checkout_id(payments, pending_payment):
    assert payments.find_by_checkout_request_id(None) is None
    assert payments.find_by_checkout_request_id('ws_CO_unknown') is None


def test_terminal_write_applies_once_then_repeats(payments, pending_payment):
    assert payments.apply_terminal(pending_payment.id, COMPLETED) == APPLIED
    first = payments.get(pending_payment.id).to_dict()

    assert payments.apply_terminal(pending_payment.id, COMPLETED) == REPEATED
    second = payments.get(pending_payment.id).to_dict()

    first.pop('updated_at')
    second.pop('updated_at')
    assert first == second
    assert second['status'] == 'completed'
    assert second['mpesa_receipt'] == 'ABC123'


def test_completed_payment_cannot_fail(payments, pending_payment):
    payments.apply_terminal(pending_payment.id, COMPLETED)

    assert payments.apply_terminal(pending_payment.id, FAILED) == REJECTED

    payment = payments.get(pending_payment.id)
    assert payment.status == 'completed'
    assert payment.mpesa_receipt == 'ABC123'
    assert payment.result_desc == 'The service request is processed successfully.'


def test_failed_payment_cannot_complete(payments, pending_payment):
    payments.mark_failed(pending_payment.id, 'Request cancelled by user', result_code=1032)

    assert payments.apply_terminal(pending_payment.id, COMPLETED) == REJECTED
    payment = payments.get(pending_payment.id)
    assert payment.status == 'failed'
    assert payment.mpesa_receipt is None
    assert payment.result_code == 1032


def test_pending_is_not_a_terminal_write(payments, pending_payment):
    payments.apply_terminal(pending_payment.id, FAILED)
    with pytest.raises(PersistenceError):
        payments.apply_terminal(pending_payment.id, {'status': 'pending'})
    assert payments.get(pending_payment.id).status == 'failed'


def test_completed_requires_receipt(payments, pending_payment):
    with pytest.raises(PersistenceError):
        payments.apply_terminal(pending_payment.id, {'status': 'completed'})
    assert payments.get(pending_payment.id).status == 'pending'


def test_terminal_write_on_missing_payment(payments):
    with pytest.raises(NotFoundError):
        payments.apply_terminal('does-not-exist', FAILED)


def test_correlation_not_attached_after_terminal(payments, patient, appointment):
    payment = payments.create_pending(patient.id, appointment.id, Decimal('1500'), '254712345678')
    payments.mark_failed(payment.id, 'Invalid PhoneNumber')

    assert payments.attach_correlation(payment.id, 'MR', 'ws_CO_late') is False
    assert payments.get(payment.id).checkout_request_id is None


def test_mark_failed_truncates_description(payments, pending_payment):
    payments.mark_failed(pending_payment.id, 'x' * 400)
    assert len(payments.get(pending_payment.id).result_desc) == 255


def test_model_refuses_to_reopen_terminal_payment(payments, pending_payment):
    payments.apply_terminal(pending_payment.id, COMPLETED)
    payment = payments.get(pending_payment.id)

    with pytest.raises(PersistenceError):
        payment.status = 'pending'
    with pytest.raises(PersistenceError):
        payment.status = 'failed'
    db.session.rollback()
    assert db.session.get(Payment, pending_payment.id).status == 'completed'


def test_model_rejects_unknown_status(pending_payment):
    with pytest.raises(PersistenceError):
        pending_payment.status = 'refunded'


def test_repeated_write_keeps_first_result(payments, pending_payment):
    payments.apply_terminal(pending_payment.id, COMPLETED)

    second = dict(COMPLETED, mpesa_receipt='XYZ999', result_desc='Different text')
    assert payments.apply_terminal(pending_payment.id, second) == REPEATED

    payment = payments.get(pending_payment.id)
    assert payment.mpesa_receipt == 'ABC123'
    assert payment.result_desc == 'The service request is processed successfully.'

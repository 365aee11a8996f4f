from datetime import datetime
from unittest.mock import MagicMock

import pytest
import requests

from afya.client import AfyaClient
from afya.errors import GatewayTimeoutOrNetworkError, NotFoundError, PaymentError, ValidationError
from afya.payment.poller import PaymentSnapshot


def _response(status_code, body):
    response = MagicMock()
    response.status_code = status_code
    response.ok = status_code < 400
    response.json.return_value = body
    return response


@pytest.fixture
def session():
    return MagicMock()


@pytest.fixture
def api(session):
    return AfyaClient('https://api.afyaconnect.co.ke/', session=session)


def test_sign_in(api, session):
    session.request.return_value = _response(200, {'success': True, 'user': {'id': 1}})

    assert api.sign_in('achieng@example.com', 'password123') == {'id': 1}
    session.request.assert_called_once_with(
        'POST', 'https://api.afyaconnect.co.ke/auth/signin', timeout=15,
        json={'email': 'achieng@example.com', 'password': 'password123'})


def test_sign_up_omits_missing_phone(api, session):
    session.request.return_value = _response(201, {'success': True, 'user': {'id': 1}})
    api.sign_up('Achieng Otieno', 'achieng@example.com', 'password123')
    assert 'phone' not in session.request.call_args.kwargs['json']


def test_book_appointment_formats_time(api, session):
    session.request.return_value = _response(201, {'success': True, 'appointment': {'id': 7}})

    api.book_appointment(3, datetime(2030, 1, 15, 10, 30), duration=45)

    payload = session.request.call_args.kwargs['json']
    assert payload['scheduled_at'] == '2030-01-15T10:30:00'
    assert payload['duration'] == 45


def test_error_body_maps_to_exception(api, session):
    session.request.return_value = _response(404, {
        'success': False, 'error': 'NotFoundError', 'message': 'Appointment 9 not found'})

    with pytest.raises(NotFoundError) as exc:
        api.get_appointment(9)
    assert exc.value.message == 'Appointment 9 not found'
    assert exc.value.status_code == 404


def test_unknown_error_body(api, session):
    response = _response(500, {})
    response.json.side_effect = ValueError('not json')
    session.request.return_value = response

    with pytest.raises(PaymentError) as exc:
        api.current_user()
    assert exc.value.message == 'HTTP 500'


def test_unreachable_server(api, session):
    session.request.side_effect = requests.exceptions.ConnectionError('refused')
    with pytest.raises(GatewayTimeoutOrNetworkError):
        api.list_therapists()


def test_start_payment_returns_gateway_refusal(api, session):
    body = {'success': False, 'payment_id': 'pay-1', 'status': 'failed', 'polling': False,
            'message': 'Bad Request - Invalid PhoneNumber'}
    session.request.return_value = _response(400, body)

    assert api.start_mpesa_payment(7, 1500, '254712345678') == body
    assert session.request.call_args.kwargs['json']['amount'] == '1500'


def test_start_payment_validation_error_raises(api, session):
    session.request.return_value = _response(400, {
        'success': False, 'error': 'ValidationError', 'message': 'Amount must be at least 1'})
    with pytest.raises(ValidationError):
        api.start_mpesa_payment(7, 0, '254712345678')


def test_payment_status(api, session):
    session.request.return_value = _response(200, {'success': True, 'payment': {
        'id': 'pay-1', 'status': 'completed', 'mpesa_receipt': 'ABC123', 'result_desc': None}})

    assert api.payment_status('pay-1') == PaymentSnapshot('pay-1', 'completed', 'ABC123', None)
    assert session.request.call_args.args == ('GET', 'https://api.afyaconnect.co.ke/payments/pay-1/status')

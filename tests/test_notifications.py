from datetime import datetime
from unittest.mock import MagicMock, patch

from twilio.base.exceptions import TwilioException

from afya.notifications import sms
from afya.notifications.notification_service import NotificationService
from afya.payment.store import PaymentStore


def test_sms_is_logged_without_twilio(app):
    assert sms.twilio_settings() is None
    assert sms.send_sms('0712345678', 'Session confirmed') is True


def test_sms_needs_a_number_and_text(app):
    assert sms.send_sms('', 'Session confirmed') is False
    assert sms.send_sms('0712345678', '') is False


def test_sms_queued_with_twilio(app, monkeypatch):
    monkeypatch.setenv('TWILIO_ACCOUNT_SID', 'AC123')
    monkeypatch.setenv('TWILIO_AUTH_TOKEN', 'token')
    monkeypatch.setenv('TWILIO_FROM_NUMBER', '+15005550006')

    with patch.object(sms, 'Thread') as thread:
        assert sms.send_sms('0712 345 678', 'Session confirmed', user_email='achieng@example.com') is True

    args = thread.call_args.kwargs['args']
    assert args[1:] == (('AC123', 'token', '+15005550006'), '+254712345678',
                        'Session confirmed', 'achieng@example.com')
    thread.return_value.start.assert_called_once()


def test_deliver_sends_through_twilio(app):
    with patch('twilio.rest.Client') as client:
        sms._deliver(app, ('AC123', 'token', '+15005550006'), '+254712345678', 'hello')
    client.return_value.messages.create.assert_called_once_with(
        to='+254712345678', from_='+15005550006', body='hello')


def test_deliver_falls_back_to_email(app):
    app.mail = MagicMock()
    with patch('twilio.rest.Client') as client:
        client.return_value.messages.create.side_effect = TwilioException('unverified number')
        sms._deliver(app, ('AC123', 'token', '+15005550006'), '+254712345678', 'hello',
                     fallback_email='achieng@example.com')

    message = app.mail.send.call_args.args[0]
    assert message.recipients == ['achieng@example.com']
    assert 'hello' in message.body


def test_confirmation_notice(pending_payment, payments):
    payments.apply_terminal(pending_payment.id, {
        'status': 'completed', 'mpesa_receipt': 'ABC123', 'transaction_date': datetime(2019, 12, 19, 10, 21, 15)})
    payment = PaymentStore().get(pending_payment.id)

    with patch.object(NotificationService, 'send_email', return_value=True) as send_email, \
            patch('afya.notifications.notification_service.send_sms', return_value=True) as send_sms:
        results = NotificationService.notify_appointment_confirmed(payment)

    assert results == {'sms': True, 'email': True}
    phone, text = send_sms.call_args.args
    assert phone == '254712345678'
    assert 'ABC123' in text
    assert 'Dr. Wanjiru Kamau' in text
    assert 'KES 1,500' in text
    assert send_email.call_args.args[0] == 'achieng@example.com'

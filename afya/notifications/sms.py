"""
Patient SMS over Twilio.

Delivery happens on a daemon thread so a slow SMS provider never holds up a
request (the M-Pesa callback in particular). If Twilio refuses a message and
the patient has an e-mail address, the text is mailed instead.
"""
import os
import logging
from threading import Thread
from typing import Optional

from flask import current_app
from flask_mail import Message

from afya.payment.phone import normalize_phone

logger = logging.getLogger(__name__)

TWILIO_ENV = ('TWILIO_ACCOUNT_SID', 'TWILIO_AUTH_TOKEN', 'TWILIO_FROM_NUMBER')


def twilio_settings():
    """(account_sid, auth_token, from_number), or None when SMS is not configured."""
    values = tuple(os.environ.get(name) for name in TWILIO_ENV)
    return values if all(values) else None


def to_e164(phone_number):
    phone = normalize_phone(phone_number)
    return f'+{phone}' if phone else None


def _mail_instead(app, email_address, phone, message):
    with app.app_context():
        msg = Message(
            subject="AFYA CONNECT - Message for your phone",
            recipients=[email_address],
            body=f"We could not text {phone}, so here is the message:\n\n{message}",
            sender=app.config.get('MAIL_DEFAULT_SENDER'),
        )
        try:
            app.mail.send(msg)
        except Exception as exc:
            logger.error('SMS e-mail fallback to %s failed: %s', email_address, exc)
            return False
    logger.info('SMS for %s delivered by e-mail to %s', phone, email_address)
    return True


def _deliver(app, settings, phone, message, fallback_email=None):
    from twilio.rest import Client
    from twilio.base.exceptions import TwilioException

    account_sid, auth_token, from_number = settings
    try:
        Client(account_sid, auth_token).messages.create(to=phone, from_=from_number, body=message)
    except TwilioException as exc:
        logger.warning('Twilio refused SMS to %s: %s', phone, exc)
        if fallback_email:
            _mail_instead(app, fallback_email, phone, message)
        else:
            logger.warning('SMS to %s dropped, patient has no e-mail on file', phone)
        return
    logger.info('SMS sent to %s', phone)


def send_sms(phone_number: str, message: str, user_email: Optional[str] = None) -> bool:
    """Queue an SMS; returns False only when there is nothing to send.

    Without Twilio settings the message is logged instead, which is what
    development and test runs rely on.
    """
    phone = to_e164(phone_number)
    if phone is None or not message:
        return False

    settings = twilio_settings()
    if settings is None:
        logger.info('SMS (not sent, Twilio not configured) to %s: %s', phone, message[:60])
        return True

    app = current_app._get_current_object()
    Thread(target=_deliver, args=(app, settings, phone, message, user_email), daemon=True).start()
    logger.info('SMS to %s queued', phone)
    return True

import logging
from threading import Thread

from flask import current_app
from flask_mail import Message

from afya.notifications.sms import send_sms

logger = logging.getLogger(__name__)

SMS_TEMPLATES = {
    'appointment_confirmed': (
        "Afya Connect: Payment of KES {amount} received (M-Pesa {receipt}). "
        "Your {session_type} session with {therapist} on {date} at {time} is confirmed."
    ),
}

EMAIL_TEMPLATES = {
    'appointment_confirmed': (
        "Hi {patient},\n\n"
        "We received your M-Pesa payment of KES {amount} (receipt {receipt}).\n"
        "Your {session_type} session with {therapist} on {date} at {time} "
        "({duration} minutes) is confirmed.\n\n"
        "You can join the session from your dashboard.\n\n"
        "Afya Connect"
    ),
}


class NotificationService:
    """SMS and email notices to patients"""

    @staticmethod
    def _send_email_sync(app, to_email: str, subject: str, body: str):
        with app.app_context():
            try:
                msg = Message(
                    subject=f"AFYA CONNECT - {subject}",
                    recipients=[to_email],
                    body=body,
                    sender=app.config.get('MAIL_DEFAULT_SENDER')
                )
                app.mail.send(msg)
                logger.info("Email sent to %s: %s", to_email, subject)
            except Exception as e:
                logger.error("Email send error to %s: %s", to_email, e)

    @staticmethod
    def send_email(to_email: str, subject: str, body: str) -> bool:
        """Send an email on a background thread"""
        app = current_app._get_current_object()
        thread = Thread(
            target=NotificationService._send_email_sync,
            args=(app, to_email, subject, body)
        )
        thread.daemon = True
        thread.start()
        logger.info("Email queued for %s: %s", to_email, subject)
        return True

    @classmethod
    def notify_appointment_confirmed(cls, payment) -> dict:
        """Tell the patient their payment went through and the session is booked"""
        results = {'sms': False, 'email': False}
        appointment = payment.appointment
        patient = payment.user
        therapist = appointment.therapist

        data = {
            'patient': patient.full_name,
            'amount': f"{payment.amount:,.0f}",
            'receipt': payment.mpesa_receipt,
            'session_type': appointment.session_type,
            'therapist': therapist.user.full_name if therapist and therapist.user else 'your therapist',
            'date': appointment.scheduled_at.strftime('%Y-%m-%d'),
            'time': appointment.scheduled_at.strftime('%H:%M'),
            'duration': appointment.duration,
        }

        results['sms'] = send_sms(
            payment.phone,
            SMS_TEMPLATES['appointment_confirmed'].format(**data),
            user_email=patient.email,
        )
        if patient.email:
            results['email'] = cls.send_email(
                patient.email,
                "Session Confirmed",
                EMAIL_TEMPLATES['appointment_confirmed'].format(**data),
            )
        logger.info("Confirmation sent for appointment %s", appointment.id)
        return results

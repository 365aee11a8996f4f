from datetime import datetime, timedelta
from decimal import Decimal
from unittest.mock import MagicMock

import pytest

from afya import create_app
from afya.extensions import db
from afya.auth.models import User
from afya.therapists.models import Therapist
from afya.booking.models import Appointment
from afya.booking.services import BookingStore
from afya.payment.mpesa_service import MpesaService, StkPushResponse
from afya.payment.store import PaymentStore

PASSWORD = 'password123'


@pytest.fixture(autouse=True)
def no_twilio(monkeypatch):
    # SMS is only logged when Twilio is not configured
    for name in ('TWILIO_ACCOUNT_SID', 'TWILIO_AUTH_TOKEN', 'TWILIO_FROM_NUMBER'):
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def app():
    app = create_app('config.TestingConfig')
    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


def _make_user(email, full_name, role='patient', phone='254712345678'):
    user = User(email=email, full_name=full_name, role=role, phone=phone)
    user.set_password(PASSWORD)
    db.session.add(user)
    db.session.commit()
    return user


@pytest.fixture
def patient(app):
    return _make_user('achieng@example.com', 'Achieng Otieno')


@pytest.fixture
def other_patient(app):
    return _make_user('kamau@example.com', 'Kamau Njoroge', phone='254722000000')


@pytest.fixture
def admin(app):
    return _make_user('admin@example.com', 'Afya Admin', role='admin', phone='254700000009')


@pytest.fixture
def therapist(app):
    user = _make_user('wanjiru@example.com', 'Dr. Wanjiru Kamau', role='therapist', phone='254700000001')
    therapist = Therapist(
        user=user,
        license_number='KCPB-0001',
        specialization='Anxiety and Depression',
        hourly_rate=Decimal('1500'),
        session_types=['chat', 'video'],
        is_verified=True,
    )
    db.session.add(therapist)
    db.session.commit()
    return therapist


@pytest.fixture
def appointment(patient, therapist):
    appointment = Appointment(
        patient_id=patient.id,
        therapist_id=therapist.id,
        scheduled_at=datetime.utcnow() + timedelta(days=2),
        duration=60,
        session_type='video',
        status='pending',
        amount=Decimal('1500'),
    )
    db.session.add(appointment)
    db.session.commit()
    return appointment


@pytest.fixture
def payments(app):
    return PaymentStore()


@pytest.fixture
def bookings(app):
    return BookingStore()


@pytest.fixture
def pending_payment(payments, patient, appointment):
    """A submitted payment waiting for its callback."""
    payment = payments.create_pending(patient.id, appointment.id, Decimal('1500'), '254712345678')
    payments.attach_correlation(payment.id, '29115-34620561-1', 'ws_CO_191220191020363925')
    return payments.get(payment.id)


@pytest.fixture
def gateway(app):
    """Stands in for the Daraja client on the app."""
    gateway = MagicMock(spec=MpesaService)
    gateway.environment = 'sandbox'
    gateway.initiate_stk_push.return_value = StkPushResponse(
        merchant_request_id='29115-34620561-1',
        checkout_request_id='ws_CO_191220191020363925',
        customer_message='Success. Request accepted for processing',
        raw={'ResponseCode': '0'},
    )
    app.extensions['mpesa'] = gateway
    return gateway


@pytest.fixture
def login(client):
    def _login(user):
        response = client.post('/auth/signin', json={'email': user.email, 'password': PASSWORD})
        assert response.status_code == 200
        return client
    return _login


@pytest.fixture
def stk_callback():
    """Builds a Daraja STK callback envelope."""
    def _build(checkout_request_id, result_code=0, receipt='ABC123',
               result_desc=None, phone=254712345678, transaction_date=20191219102115):
        callback = {
            'MerchantRequestID': '29115-34620561-1',
            'CheckoutRequestID': checkout_request_id,
            'ResultCode': result_code,
            'ResultDesc': result_desc or (
                'The service request is processed successfully.' if result_code == 0
                else 'Request cancelled by user'),
        }
        if result_code == 0:
            items = [{'Name': 'Amount', 'Value': 1500}]
            if receipt:
                items.append({'Name': 'MpesaReceiptNumber', 'Value': receipt})
            items.append({'Name': 'Balance'})
            items.append({'Name': 'TransactionDate', 'Value': transaction_date})
            items.append({'Name': 'PhoneNumber', 'Value': phone})
            callback['CallbackMetadata'] = {'Item': items}
        return {'Body': {'stkCallback': callback}}
    return _build

import uuid
from datetime import datetime
from sqlalchemy.orm import validates
from afya.extensions import db
from afya.errors import PersistenceError

PAYMENT_STATUSES = ('pending', 'completed', 'failed')
TERMINAL_STATUSES = ('completed', 'failed')


def _new_payment_id():
    return uuid.uuid4().hex


class Payment(db.Model):
    __tablename__ = 'payments'

    # Opaque id, also sent to the gateway as the account reference
    id = db.Column(db.String(32), primary_key=True, default=_new_payment_id)
    user_id = db.Column(db.Integer, db.ForeignKey('user.id'), nullable=False)
    booking_id = db.Column(db.Integer, db.ForeignKey('appointments.id'), nullable=False)
    amount = db.Column(db.Numeric(10, 2), nullable=False)
    phone = db.Column(db.String(15), nullable=False)
    status = db.Column(db.String(20), nullable=False, default='pending')

    # Gateway correlation, set once the push request is accepted
    merchant_request_id = db.Column(db.String(64))
    checkout_request_id = db.Column(db.String(64), unique=True, index=True)

    mpesa_receipt = db.Column(db.String(32))
    result_code = db.Column(db.Integer)
    result_desc = db.Column(db.String(255))
    raw_response = db.Column(db.JSON)
    transaction_date = db.Column(db.DateTime)

    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        db.CheckConstraint("status IN ('pending', 'completed', 'failed')", name='ck_payment_status'),
        db.CheckConstraint("status != 'completed' OR mpesa_receipt IS NOT NULL", name='ck_payment_receipt'),
    )

    @property
    def is_terminal(self):
        return self.status in TERMINAL_STATUSES

    @validates('status')
    def validate_status(self, key, value):
        if value not in PAYMENT_STATUSES:
            raise PersistenceError(f'Unknown payment status: {value}')
        # Status is monotonic: pending -> completed|failed, and never back
        if self.status in TERMINAL_STATUSES and value != self.status:
            raise PersistenceError(f'Payment {self.id} is already {self.status}')
        return value

    def to_dict(self):
        return {
            'id': self.id,
            'user_id': self.user_id,
            'booking_id': self.booking_id,
            'amount': str(self.amount),
            'phone': self.phone,
            'status': self.status,
            'merchant_request_id': self.merchant_request_id,
            'checkout_request_id': self.checkout_request_id,
            'mpesa_receipt': self.mpesa_receipt,
            'result_code': self.result_code,
            'result_desc': self.result_desc,
            'transaction_date': self.transaction_date.isoformat() if self.transaction_date else None,
            'created_at': self.created_at.isoformat() if self.created_at else None,
            'updated_at': self.updated_at.isoformat() if self.updated_at else None,
        }

    def __repr__(self):
        return f'<Payment {self.id} {self.status} - {self.amount}>'

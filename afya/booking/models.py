from datetime import datetime
from afya.extensions import db

APPOINTMENT_STATUSES = ('pending', 'confirmed', 'in_progress', 'completed', 'cancelled')


class Appointment(db.Model):
    __tablename__ = "appointments"

    id = db.Column(db.Integer, primary_key=True)
    patient_id = db.Column(db.Integer, db.ForeignKey("user.id"), nullable=False)
    therapist_id = db.Column(db.Integer, db.ForeignKey("therapists.id"), nullable=False)
    scheduled_at = db.Column(db.DateTime, nullable=False)
    duration = db.Column(db.Integer, nullable=False, default=60)  # minutes
    status = db.Column(db.String(20), nullable=False, default="pending")
    session_type = db.Column(db.String(10), nullable=False, default="video")
    notes = db.Column(db.Text)
    amount = db.Column(db.Numeric(10, 2), nullable=False)
    started_at = db.Column(db.DateTime)
    ended_at = db.Column(db.DateTime)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    payments = db.relationship('Payment', backref='appointment', lazy=True)

    __table_args__ = (
        db.CheckConstraint(
            "status IN ('pending', 'confirmed', 'in_progress', 'completed', 'cancelled')",
            name="ck_appointment_status"),
    )

    def to_dict(self):
        return {
            'id': self.id,
            'patient_id': self.patient_id,
            'therapist_id': self.therapist_id,
            'scheduled_at': self.scheduled_at.isoformat() if self.scheduled_at else None,
            'duration': self.duration,
            'status': self.status,
            'session_type': self.session_type,
            'notes': self.notes,
            'amount': float(self.amount) if self.amount is not None else None,
            'started_at': self.started_at.isoformat() if self.started_at else None,
            'ended_at': self.ended_at.isoformat() if self.ended_at else None,
            'created_at': self.created_at.isoformat() if self.created_at else None
        }

    def __repr__(self):
        return f'<Appointment {self.id} {self.status}>'

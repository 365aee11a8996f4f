from datetime import datetime
from afya.extensions import db

SESSION_TYPES = ('chat', 'video', 'audio')


class Therapist(db.Model):
    __tablename__ = "therapists"

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("user.id"), unique=True, nullable=False)
    license_number = db.Column(db.String(50), unique=True, nullable=False)
    specialization = db.Column(db.String(120), nullable=False)
    bio = db.Column(db.Text)
    years_experience = db.Column(db.Integer, default=0)
    hourly_rate = db.Column(db.Numeric(10, 2), nullable=False)
    session_types = db.Column(db.JSON, default=lambda: list(SESSION_TYPES))
    is_verified = db.Column(db.Boolean, default=False, nullable=False)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    # Relationships
    user = db.relationship('User', backref=db.backref('therapist_profile', uselist=False))
    appointments = db.relationship('Appointment', backref='therapist', lazy=True)

    def offers(self, session_type):
        return session_type in (self.session_types or [])

    def to_dict(self):
        return {
            'id': self.id,
            'name': self.user.full_name if self.user else None,
            'license_number': self.license_number,
            'specialization': self.specialization,
            'bio': self.bio,
            'years_experience': self.years_experience,
            'hourly_rate': float(self.hourly_rate) if self.hourly_rate is not None else None,
            'session_types': self.session_types or [],
            'is_verified': self.is_verified,
        }

    def __repr__(self):
        return f'<Therapist {self.license_number}>'

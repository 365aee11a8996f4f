from wtforms import StringField, TextAreaField, IntegerField, DecimalField, SelectMultipleField
from wtforms.validators import DataRequired, Length, NumberRange, Optional, ValidationError
from afya.auth.forms import ApiForm
from afya.therapists.models import Therapist, SESSION_TYPES


class TherapistProfileForm(ApiForm):
    license_number = StringField('License Number', validators=[DataRequired(), Length(max=50)])
    specialization = StringField('Specialization', validators=[DataRequired(), Length(max=120)])
    bio = TextAreaField('Bio', validators=[Optional(), Length(max=4000)])
    years_experience = IntegerField('Years of Experience', default=0, validators=[
        Optional(),
        NumberRange(min=0, max=60)
    ])
    hourly_rate = DecimalField('Hourly Rate (KES)', places=0, validators=[
        DataRequired(message='Hourly rate is required'),
        NumberRange(min=1, message='Hourly rate must be at least KES 1')
    ])
    session_types = SelectMultipleField('Session Types', choices=[(t, t.title()) for t in SESSION_TYPES])

    def __init__(self, *args, therapist=None, **kwargs):
        super().__init__(*args, **kwargs)
        self.therapist = therapist

    def validate_license_number(self, field):
        existing = Therapist.query.filter_by(license_number=field.data.strip()).first()
        if existing and (self.therapist is None or existing.id != self.therapist.id):
            raise ValidationError('A therapist with that license number is already registered.')

    def validate_session_types(self, field):
        if not field.data:
            raise ValidationError('Offer at least one session type.')

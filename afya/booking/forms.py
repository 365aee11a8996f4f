from datetime import datetime
from wtforms import IntegerField, SelectField, TextAreaField, DateTimeField
from wtforms.validators import DataRequired, Length, NumberRange, Optional, ValidationError
from afya.auth.forms import ApiForm
from afya.therapists.models import SESSION_TYPES


class AppointmentForm(ApiForm):
    therapist_id = IntegerField('Therapist', validators=[DataRequired(message='Therapist is required')])

    scheduled_at = DateTimeField('Scheduled At', format=['%Y-%m-%dT%H:%M:%S', '%Y-%m-%dT%H:%M'], validators=[
        DataRequired(message='Please pick a date and time')
    ])

    duration = IntegerField('Duration (minutes)', default=60, validators=[
        Optional(),
        NumberRange(min=15, max=180, message='Sessions run between 15 and 180 minutes')
    ])

    session_type = SelectField('Session Type', choices=[(t, t.title()) for t in SESSION_TYPES], default='video')

    notes = TextAreaField('Notes (optional)', validators=[
        Optional(),
        Length(max=2000, message='Notes must be at most 2000 characters')
    ])

    def validate_scheduled_at(self, field):
        if field.data and field.data <= datetime.utcnow():
            raise ValidationError('Appointments must be scheduled in the future')

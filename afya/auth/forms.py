from flask_wtf import FlaskForm
from wtforms import StringField, PasswordField, BooleanField, SelectField
from wtforms.validators import DataRequired, Length, Email, ValidationError, Regexp, Optional
from afya.auth.models import User


class ApiForm(FlaskForm):
    """Forms posted as JSON by the API clients; sessions carry no CSRF token."""

    class Meta:
        csrf = False


class SignUpForm(ApiForm):
    full_name = StringField('Full Name', validators=[DataRequired(), Length(min=2, max=120)])
    email = StringField('Email', validators=[DataRequired(), Email()])
    phone = StringField('Phone', validators=[
        Optional(),
        Regexp(r'^(?:\+?254|0)[17][0-9]{8}$', message='Please enter a valid Kenyan phone number (e.g., 0712345678 or +254712345678)')
    ])
    password = PasswordField('Password', validators=[
        DataRequired(),
        Length(min=8, message='Password must be at least 8 characters long')
    ])
    role = SelectField('Role', choices=[('patient', 'Patient'), ('therapist', 'Therapist')], default='patient')

    def validate_email(self, email):
        if User.query.filter_by(email=email.data.lower().strip()).first():
            raise ValidationError('That email is taken. Please choose a different one.')


class SignInForm(ApiForm):
    email = StringField('Email', validators=[DataRequired(), Email()])
    password = PasswordField('Password', validators=[DataRequired()])
    remember = BooleanField('Remember Me')

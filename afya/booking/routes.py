from flask import Blueprint, jsonify, current_app
from flask_login import login_required, current_user
from afya.extensions import db
from afya.errors import NotFoundError
from afya.therapists.models import Therapist
from .models import Appointment
from .forms import AppointmentForm
from .services import BookingStore

booking_bp = Blueprint('booking', __name__)


def _owned_appointment(appointment_id, allow_therapist=False):
    appointment = BookingStore().get(appointment_id)
    if appointment.patient_id == current_user.id or current_user.is_admin:
        return appointment
    if allow_therapist and appointment.therapist and appointment.therapist.user_id == current_user.id:
        return appointment
    # Hide other users' appointments
    raise NotFoundError(f'Appointment {appointment_id} not found')


@booking_bp.route('', methods=['GET'])
@login_required
def index():
    """List appointments for the current user"""
    if current_user.role == 'therapist' and current_user.therapist_profile:
        query = Appointment.query.filter_by(therapist_id=current_user.therapist_profile.id)
    else:
        query = Appointment.query.filter_by(patient_id=current_user.id)
    appointments = query.order_by(Appointment.scheduled_at.desc()).all()
    return jsonify({
        'success': True,
        'appointments': [a.to_dict() for a in appointments]
    })


@booking_bp.route('', methods=['POST'])
@login_required
def book():
    form = AppointmentForm()
    if not form.validate_on_submit():
        return jsonify({'success': False, 'message': 'Invalid input', 'errors': form.errors}), 400

    therapist = db.session.get(Therapist, form.therapist_id.data)
    if therapist is None:
        raise NotFoundError(f'Therapist {form.therapist_id.data} not found')

    appointment = BookingStore().create(
        patient_id=current_user.id,
        therapist=therapist,
        scheduled_at=form.scheduled_at.data,
        duration=form.duration.data or 60,
        session_type=form.session_type.data,
        notes=form.notes.data,
    )
    current_app.logger.info(f'Appointment {appointment.id} booked, awaiting payment of {appointment.amount}')
    return jsonify({'success': True, 'appointment': appointment.to_dict()}), 201


@booking_bp.route('/<int:appointment_id>', methods=['GET'])
@login_required
def detail(appointment_id):
    appointment = _owned_appointment(appointment_id, allow_therapist=True)
    return jsonify({'success': True, 'appointment': appointment.to_dict()})


@booking_bp.route('/<int:appointment_id>/start', methods=['POST'])
@login_required
def start_session(appointment_id):
    appointment = _owned_appointment(appointment_id, allow_therapist=True)
    BookingStore().transition(appointment, 'in_progress')
    return jsonify({'success': True, 'appointment': appointment.to_dict()})


@booking_bp.route('/<int:appointment_id>/complete', methods=['POST'])
@login_required
def complete_session(appointment_id):
    appointment = _owned_appointment(appointment_id, allow_therapist=True)
    BookingStore().transition(appointment, 'completed')
    return jsonify({'success': True, 'appointment': appointment.to_dict()})


@booking_bp.route('/<int:appointment_id>/cancel', methods=['POST'])
@login_required
def cancel(appointment_id):
    appointment = _owned_appointment(appointment_id)
    BookingStore().transition(appointment, 'cancelled')
    return jsonify({'success': True, 'appointment': appointment.to_dict()})

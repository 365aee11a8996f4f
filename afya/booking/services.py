import logging
from datetime import datetime
from decimal import Decimal, ROUND_HALF_UP

from sqlalchemy import update
from sqlalchemy.exc import SQLAlchemyError

from afya.extensions import db
from afya.errors import NotFoundError, PersistenceError, ValidationError
from afya.booking.models import Appointment

logger = logging.getLogger(__name__)

# Session-room moves allowed after creation. pending -> confirmed is reserved for
# the payment callback and goes through BookingStore.confirm().
ALLOWED_TRANSITIONS = {
    'pending': {'cancelled'},
    'confirmed': {'in_progress', 'cancelled'},
    'in_progress': {'completed'},
    'completed': set(),
    'cancelled': set(),
}


def session_price(hourly_rate, duration):
    """Price in whole shillings of a session of ``duration`` minutes."""
    amount = Decimal(str(hourly_rate)) * Decimal(duration) / Decimal(60)
    return amount.quantize(Decimal('1'), rounding=ROUND_HALF_UP)


class BookingStore:
    """Reads and writes rows of the ``appointments`` table."""

    def __init__(self, session=None):
        self.session = session or db.session

    def create(self, patient_id, therapist, scheduled_at, duration=60, session_type='video', notes=None):
        if not therapist.is_verified:
            raise ValidationError('Therapist is not accepting bookings')
        if not therapist.offers(session_type):
            raise ValidationError(f'Therapist does not offer {session_type} sessions')

        appointment = Appointment(
            patient_id=patient_id,
            therapist_id=therapist.id,
            scheduled_at=scheduled_at,
            duration=duration,
            session_type=session_type,
            notes=notes or None,
            status='pending',
            amount=session_price(therapist.hourly_rate, duration),
        )
        try:
            self.session.add(appointment)
            self.session.commit()
        except SQLAlchemyError as e:
            self.session.rollback()
            raise PersistenceError(f'Could not create appointment: {e}')
        logger.info('Appointment %s created for patient %s', appointment.id, patient_id)
        return appointment

    def get(self, appointment_id):
        appointment = self.session.get(Appointment, appointment_id)
        if appointment is None:
            raise NotFoundError(f'Appointment {appointment_id} not found')
        return appointment

    def confirm(self, appointment_id):
        """Move a pending appointment to confirmed.

        Returns True only for the call that performed the transition; confirming
        an already-confirmed appointment is a no-op that returns False.
        """
        try:
            result = self.session.execute(
                update(Appointment)
                .where(Appointment.id == appointment_id, Appointment.status == 'pending')
                .values(status='confirmed', updated_at=datetime.utcnow())
                .execution_options(synchronize_session=False)
            )
            self.session.commit()
        except SQLAlchemyError as e:
            self.session.rollback()
            raise PersistenceError(f'Could not confirm appointment {appointment_id}: {e}')

        if result.rowcount == 1:
            logger.info('Appointment %s confirmed', appointment_id)
            return True

        appointment = self.get(appointment_id)
        self.session.refresh(appointment)
        if appointment.status != 'confirmed':
            logger.warning('Appointment %s is %s, not confirming', appointment_id, appointment.status)
        return False

    def transition(self, appointment, new_status):
        allowed = ALLOWED_TRANSITIONS.get(appointment.status, set())
        if new_status not in allowed:
            raise ValidationError(
                f'Cannot move appointment from {appointment.status} to {new_status}')

        appointment.status = new_status
        if new_status == 'in_progress':
            appointment.started_at = datetime.utcnow()
        elif new_status == 'completed':
            appointment.ended_at = datetime.utcnow()
        try:
            self.session.commit()
        except SQLAlchemyError as e:
            self.session.rollback()
            raise PersistenceError(f'Could not update appointment {appointment.id}: {e}')
        logger.info('Appointment %s moved to %s', appointment.id, new_status)
        return appointment

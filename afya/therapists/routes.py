from flask import Blueprint, jsonify, request, current_app
from flask_login import login_required, current_user
from sqlalchemy.exc import IntegrityError
from afya.extensions import db
from afya.errors import NotFoundError
from afya.therapists.forms import TherapistProfileForm
from afya.therapists.models import Therapist

therapists_bp = Blueprint('therapists', __name__)


@therapists_bp.route('', methods=['GET'])
def list_therapists():
    """List verified therapists, optionally filtered"""
    query = Therapist.query.filter_by(is_verified=True)

    specialization = request.args.get('specialization')
    if specialization:
        query = query.filter(Therapist.specialization.ilike(f'%{specialization}%'))

    max_rate = request.args.get('max_rate', type=float)
    if max_rate is not None:
        query = query.filter(Therapist.hourly_rate <= max_rate)

    therapists = query.order_by(Therapist.hourly_rate.asc()).all()

    # session_types is a JSON list, filter in Python to stay portable across backends
    session_type = request.args.get('session_type')
    if session_type:
        therapists = [t for t in therapists if t.offers(session_type)]

    return jsonify({
        'success': True,
        'therapists': [t.to_dict() for t in therapists]
    })


@therapists_bp.route('/profile', methods=['GET'])
@login_required
def my_profile():
    profile = current_user.therapist_profile
    if profile is None:
        raise NotFoundError('No therapist profile submitted yet')
    return jsonify({'success': True, 'therapist': profile.to_dict()})


@therapists_bp.route('/profile', methods=['POST'])
@login_required
def submit_profile():
    """Create or update the signed-in therapist's profile.

    New profiles wait for an admin to verify them before they are listed or
    bookable. Changing the license number on a verified profile sends it back
    for review.
    """
    if current_user.role != 'therapist':
        return jsonify({'success': False, 'message': 'Only therapist accounts can submit a profile'}), 403

    profile = current_user.therapist_profile
    form = TherapistProfileForm(therapist=profile)
    if not form.validate_on_submit():
        return jsonify({'success': False, 'message': 'Invalid input', 'errors': form.errors}), 400

    created = profile is None
    if created:
        profile = Therapist(user_id=current_user.id, is_verified=False)
        db.session.add(profile)

    license_number = form.license_number.data.strip()
    if not created and profile.is_verified and license_number != profile.license_number:
        profile.is_verified = False

    profile.license_number = license_number
    profile.specialization = form.specialization.data.strip()
    profile.bio = form.bio.data or None
    profile.years_experience = form.years_experience.data or 0
    profile.hourly_rate = form.hourly_rate.data
    profile.session_types = form.session_types.data

    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        return jsonify({'success': False, 'message': 'Invalid input',
                        'errors': {'license_number': ['A therapist with that license number is already registered.']}}), 400

    if created:
        current_app.logger.info(f'Therapist profile {profile.id} submitted by {current_user.email}, awaiting verification')
        return jsonify({'success': True, 'therapist': profile.to_dict()}), 201
    current_app.logger.info(f'Therapist profile {profile.id} updated by {current_user.email}')
    return jsonify({'success': True, 'therapist': profile.to_dict()})


@therapists_bp.route('/<int:therapist_id>', methods=['GET'])
def get_therapist(therapist_id):
    therapist = db.session.get(Therapist, therapist_id)
    if therapist is None or not therapist.is_verified:
        return jsonify({'success': False, 'message': 'Therapist not found'}), 404
    return jsonify({'success': True, 'therapist': therapist.to_dict()})

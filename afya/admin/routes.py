from flask import Blueprint, jsonify, request, current_app
from flask_login import login_required, current_user
from functools import wraps
from afya.extensions import db
from afya.errors import NotFoundError, ValidationError
from afya.therapists.models import Therapist

admin_bp = Blueprint('admin', __name__)


def admin_required(f):
    @wraps(f)
    def decorated_function(*args, **kwargs):
        if not current_user.is_authenticated or not current_user.is_admin:
            return jsonify({'success': False, 'message': 'You do not have permission to access this page.'}), 403
        return f(*args, **kwargs)
    return decorated_function


def _review_entry(therapist):
    entry = therapist.to_dict()
    entry['email'] = therapist.user.email if therapist.user else None
    entry['submitted_at'] = therapist.created_at.isoformat() if therapist.created_at else None
    return entry


@admin_bp.route('/therapists', methods=['GET'])
@login_required
@admin_required
def therapists_manage():
    """Therapist profiles for review; ?status=pending|verified narrows the list"""
    status = request.args.get('status', 'all')
    query = Therapist.query
    if status == 'pending':
        query = query.filter_by(is_verified=False)
    elif status == 'verified':
        query = query.filter_by(is_verified=True)
    elif status != 'all':
        raise ValidationError('status must be one of pending, verified, all')

    therapists = query.order_by(Therapist.created_at.asc()).all()
    return jsonify({'success': True, 'therapists': [_review_entry(t) for t in therapists]})


def _set_verification(therapist_id, verified):
    therapist = db.session.get(Therapist, therapist_id)
    if therapist is None:
        raise NotFoundError(f'Therapist {therapist_id} not found')

    therapist.is_verified = verified
    db.session.commit()
    action = 'verified' if verified else 'unverified'
    current_app.logger.info(f'Therapist {therapist.id} ({therapist.license_number}) {action} by {current_user.email}')
    return jsonify({'success': True, 'therapist': _review_entry(therapist)})


@admin_bp.route('/therapists/<int:therapist_id>/verify', methods=['POST'])
@login_required
@admin_required
def verify_therapist(therapist_id):
    return _set_verification(therapist_id, True)


@admin_bp.route('/therapists/<int:therapist_id>/unverify', methods=['POST'])
@login_required
@admin_required
def unverify_therapist(therapist_id):
    return _set_verification(therapist_id, False)

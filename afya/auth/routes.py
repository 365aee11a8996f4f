from flask import Blueprint, jsonify, current_app
from flask_login import login_user, logout_user, login_required, current_user
from afya.extensions import db
from afya.auth.forms import SignUpForm, SignInForm
from afya.auth.models import User

auth_bp = Blueprint('auth', __name__)


def _form_errors(form):
    return jsonify({'success': False, 'message': 'Invalid input', 'errors': form.errors}), 400


@auth_bp.route('/signup', methods=['POST'])
def sign_up():
    form = SignUpForm()
    if not form.validate_on_submit():
        return _form_errors(form)

    user = User(
        full_name=form.full_name.data.strip(),
        email=form.email.data.lower().strip(),
        phone=form.phone.data or None,
        role=form.role.data,
    )
    user.set_password(form.password.data)
    db.session.add(user)
    db.session.commit()
    current_app.logger.info(f'New {user.role} account created: {user.email}')

    login_user(user)
    return jsonify({'success': True, 'user': user.to_dict()}), 201


@auth_bp.route('/signin', methods=['POST'])
def sign_in():
    form = SignInForm()
    if not form.validate_on_submit():
        return _form_errors(form)

    user = User.query.filter_by(email=form.email.data.lower().strip()).first()
    if not user or not user.check_password(form.password.data):
        return jsonify({'success': False, 'message': 'Invalid email or password'}), 401
    if not user.is_active:
        return jsonify({'success': False, 'message': 'Your account has been deactivated'}), 403

    login_user(user, remember=form.remember.data)
    return jsonify({'success': True, 'user': user.to_dict()})


@auth_bp.route('/signout', methods=['POST'])
def sign_out():
    logout_user()
    return jsonify({'success': True})


@auth_bp.route('/me', methods=['GET'])
@login_required
def me():
    return jsonify({'success': True, 'user': current_user.to_dict()})

from flask import Flask, jsonify
import os
from werkzeug.utils import import_string
from .extensions import db, bcrypt, login_manager, migrate, mail


def create_app(config_class='config.DevelopmentConfig'):
    app = Flask(__name__)
    if isinstance(config_class, str):
        config_class = import_string(config_class)
    app.config.from_object(config_class)
    config_class.init_app(app)

    # Initialize extensions
    db.init_app(app)
    bcrypt.init_app(app)
    login_manager.init_app(app)
    migrate.init_app(app, db, directory=os.path.join(os.path.dirname(__file__), '..', 'migrations'))
    mail.init_app(app)
    app.mail = mail

    @login_manager.unauthorized_handler
    def unauthorized():
        return jsonify({'success': False, 'message': 'Authentication required'}), 401

    from afya.errors import register_error_handlers
    register_error_handlers(app)

    # Payment collaborators live on the app instead of module globals
    from afya.payment.mpesa_service import MpesaService
    from afya.payment.events import PaymentEventBroker
    from afya.payment.cache import PaymentStatusCache
    app.extensions['mpesa'] = MpesaService.from_config(app.config)
    app.extensions['payment_events'] = PaymentEventBroker()
    app.extensions['payment_cache'] = PaymentStatusCache(ttl=app.config['PAYMENT_STATUS_CACHE_TTL'])

    # Register blueprints
    from afya.auth.routes import auth_bp
    from afya.main.health import health_bp
    from afya.therapists.routes import therapists_bp
    from afya.booking.routes import booking_bp
    from afya.payment.routes import payment_bp
    from afya.admin.routes import admin_bp

    app.register_blueprint(auth_bp, url_prefix='/auth')
    app.register_blueprint(health_bp)
    app.register_blueprint(therapists_bp, url_prefix='/therapists')
    app.register_blueprint(booking_bp, url_prefix='/appointments')
    app.register_blueprint(payment_bp)
    app.register_blueprint(admin_bp, url_prefix='/admin')

    # Import models to ensure they are registered with SQLAlchemy
    with app.app_context():
        from afya.auth import models as auth_models
        from afya.therapists import models as therapist_models
        from afya.booking import models as booking_models
        from afya.payment import models as payment_models

    return app

"""
Liveness and readiness probes
"""
import time

from flask import Blueprint, jsonify, current_app
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from afya.extensions import db

health_bp = Blueprint('health', __name__, url_prefix='/health')


def _database_error():
    """None if the database answers, else the error text."""
    try:
        db.session.execute(text('SELECT 1'))
    except SQLAlchemyError as e:
        db.session.rollback()
        return str(e)
    return None


@health_bp.route('/')
def health_check():
    error = _database_error()
    if error:
        current_app.logger.error(f'Database unreachable from health check: {error}')
        return jsonify({'status': 'unhealthy', 'database': 'unreachable',
                        'error': error, 'timestamp': time.time()}), 500

    mpesa = current_app.extensions['mpesa']
    cache = current_app.extensions['payment_cache']
    return jsonify({
        'status': 'healthy',
        'database': 'connected',
        'mpesa': {
            'environment': mpesa.environment,
            'configured': all([mpesa.consumer_key, mpesa.consumer_secret,
                               mpesa.business_short_code, mpesa.passkey]),
        },
        'payment_cache': {'entries': len(cache), 'ttl': cache.ttl},
        'timestamp': time.time(),
    })


@health_bp.route('/ready')
def readiness_check():
    """Readiness for the load balancer: only the database matters"""
    error = _database_error()
    if error:
        return jsonify({'status': 'not_ready', 'error': error, 'timestamp': time.time()}), 503
    return jsonify({'status': 'ready', 'timestamp': time.time()})

"""Middleware for authentication and fulfillment access."""
import hmac
from functools import wraps

from flask import session, g, jsonify, request, current_app

from now24.database import get_session
from now24.models import AppUser


def load_user():
    """
    Load current user into g (Flask's per-request global).

    Called before each request. Sets g.user and g.user_id when the session
    holds a valid, active user.
    """
    g.user = None
    g.user_id = None

    try:
        user_id = session.get('user_id')
        if user_id:
            db_session = get_session()
            user = db_session.query(AppUser).filter_by(id=user_id, active=True).first()
            if user:
                g.user = user
                g.user_id = user.id
            else:
                session.pop('user_id', None)
    except Exception as e:
        current_app.logger.error(f"Error in load_user: {e}")


def require_login(f):
    """Decorator: require an authenticated user; JSON 401 otherwise."""
    @wraps(f)
    def decorated_function(*args, **kwargs):
        if g.get('user') is None:
            return jsonify({
                'status': 'error',
                'code': 'UNAUTHENTICATED',
                'message': 'Faça login para continuar',
            }), 401
        return f(*args, **kwargs)
    return decorated_function


def require_fulfillment_key(f):
    """
    Decorator: require the X-Fulfillment-Key header.

    Used by the kitchen/courier integration that drives order status.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        expected = current_app.config.get('FULFILLMENT_API_KEY')
        provided = request.headers.get('X-Fulfillment-Key', '')
        if not expected or not hmac.compare_digest(provided, expected):
            current_app.logger.warning(f"Rejected fulfillment call to {request.path}")
            return jsonify({
                'status': 'error',
                'code': 'UNAUTHORIZED',
                'message': 'Acesso não autorizado',
            }), 403
        return f(*args, **kwargs)
    return decorated_function

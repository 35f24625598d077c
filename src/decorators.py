"""
Access control decorators for API routes.
"""

import uuid
from functools import wraps

from flask import g, jsonify
from flask_jwt_extended import get_jwt_identity, verify_jwt_in_request

from src.extensions import db
from src.models.user import User


def role_required(*roles):
    """
    Require a valid access token, and when roles are given, one of them.
    The authenticated user is loaded into g.current_user.

    Usage:
        @orders_bp.route('/<order_id>/status', methods=['PATCH'])
        @role_required('artisan', 'admin')
        def update_status(order_id):
            ...
    """

    def decorator(view_func):
        @wraps(view_func)
        def wrapper(*args, **kwargs):
            verify_jwt_in_request()
            user = db.session.get(User, uuid.UUID(get_jwt_identity()))
            if not user:
                return jsonify({'success': False, 'message': 'User not found'}), 401

            if roles and user.role not in roles:
                return jsonify({'success': False, 'message': 'Access denied'}), 403

            g.current_user = user
            return view_func(*args, **kwargs)

        return wrapper

    return decorator


def current_user():
    return g.current_user

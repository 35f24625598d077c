import datetime
import re
import uuid

from flask import Blueprint, current_app, jsonify, request
from flask_jwt_extended import create_access_token, create_refresh_token, get_jwt, get_jwt_identity, jwt_required

from src.decorators import current_user, role_required
from src.extensions import BLOCKLIST, db
from src.models.user import User

auth_bp = Blueprint('auth', __name__)

EMAIL_REGEX = r'^[a-zA-Z0-9_.+-]+@[a-zA-Z0-9-]+\.[a-zA-Z0-9-.]+$'
SELF_SERVICE_ROLES = ('buyer', 'artisan')


def _access_token(user):
    return create_access_token(
        identity=str(user.user_id),
        additional_claims={'role': user.role},
        expires_delta=datetime.timedelta(minutes=current_app.config['JWT_ACCESS_MINUTES']),
    )


@auth_bp.route('/register', methods=['POST'])
def register():
    """
    Register a new buyer or artisan
    ---
    tags:
      - Auth
    parameters:
      - in: body
        name: body
        required: true
        schema:
          type: object
          required:
            - email
            - password
          properties:
            email:
              type: string
            password:
              type: string
            name:
              type: string
            role:
              type: string
              enum: [buyer, artisan]
    responses:
      201:
        description: User registered
      400:
        description: Invalid input
      409:
        description: Email already exists
    """
    data = request.get_json(silent=True)
    if not data or not data.get('email') or not data.get('password'):
        return jsonify({'success': False, 'message': 'Missing email or password'}), 400

    if not re.match(EMAIL_REGEX, data['email']):
        return jsonify({'success': False, 'message': 'Invalid email format'}), 400

    if len(data['password']) < 8:
        return jsonify({'success': False, 'message': 'Password must be at least 8 characters'}), 400

    role = data.get('role', 'buyer')
    if role not in SELF_SERVICE_ROLES:
        return jsonify({'success': False, 'message': 'Role must be buyer or artisan'}), 400

    email = data['email'].strip().lower()
    if User.query.filter_by(email=email).first():
        return jsonify({'success': False, 'message': 'Email already exists'}), 409

    user = User(email=email, name=(data.get('name') or '').strip(), role=role)
    user.set_password(data['password'])
    db.session.add(user)
    db.session.commit()

    return jsonify({'success': True, 'message': 'User registered successfully', 'user_id': str(user.user_id)}), 201


@auth_bp.route('/login', methods=['POST'])
def login():
    """
    Authenticate user and return tokens
    ---
    tags:
      - Auth
    parameters:
      - in: body
        name: body
        required: true
        schema:
          type: object
          required:
            - email
            - password
          properties:
            email:
              type: string
            password:
              type: string
    responses:
      200:
        description: Login successful
      401:
        description: Invalid credentials
    """
    data = request.get_json(silent=True)
    if not data or not data.get('email') or not data.get('password'):
        return jsonify({'success': False, 'message': 'Missing email or password'}), 400

    user = User.query.filter_by(email=data['email'].strip().lower()).first()
    if user and user.check_password(data['password']):
        refresh_token = create_refresh_token(
            identity=str(user.user_id),
            expires_delta=datetime.timedelta(days=current_app.config['JWT_REFRESH_DAYS']),
        )
        return jsonify({
            'success': True,
            'message': 'Login successful',
            'access_token': _access_token(user),
            'refresh_token': refresh_token,
            'user': user.to_dict(),
        }), 200

    return jsonify({'success': False, 'message': 'Invalid email or password'}), 401


@auth_bp.route('/refresh', methods=['POST'])
@jwt_required(refresh=True)
def refresh():
    """
    Refresh access token
    ---
    tags:
      - Auth
    security:
      - Bearer: []
    responses:
      200:
        description: New access token
      401:
        description: Invalid refresh token
    """
    user = db.session.get(User, uuid.UUID(get_jwt_identity()))
    if not user:
        return jsonify({'success': False, 'message': 'User not found'}), 401
    return jsonify({'success': True, 'access_token': _access_token(user)}), 200


@auth_bp.route('/logout', methods=['POST'])
@jwt_required(verify_type=False)
def logout():
    """
    Logout user (revoke token)
    ---
    tags:
      - Auth
    security:
      - Bearer: []
    responses:
      200:
        description: Logout successful
    """
    BLOCKLIST.add(get_jwt()['jti'])
    return jsonify({'success': True, 'message': 'Logout successful'}), 200


@auth_bp.route('/me', methods=['GET'])
@role_required()
def me():
    return jsonify({'success': True, 'user': current_user().to_dict()}), 200

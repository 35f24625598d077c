from flask import Blueprint, jsonify, request

from src.services import verification_service
from src.services.verification_service import VerificationFailed

verification_bp = Blueprint('verification', __name__)


def _request_meta(device_fingerprint=None):
    forwarded = request.headers.get('X-Forwarded-For', '')
    return {
        'ip_address': forwarded.split(',')[0].strip() or request.remote_addr or 'unknown',
        'user_agent': request.headers.get('User-Agent', 'unknown'),
        'location': request.headers.get('CF-IPCountry', 'unknown'),
        'device_fingerprint': device_fingerprint,
    }


@verification_bp.errorhandler(VerificationFailed)
def handle_verification_failed(e):
    return jsonify(e.to_dict()), e.http_status


@verification_bp.route('/qr/<code>', methods=['GET'])
def get_qr(code):
    return jsonify(verification_service.get_qr_data(code)), 200


@verification_bp.route('/<code>', methods=['GET'])
def verify(code):
    """
    Verify a product's authenticity code (public, scanned from the package)
    ---
    tags:
      - Verification
    parameters:
      - in: path
        name: code
        type: string
        required: true
    responses:
      200:
        description: Authentic product (status verified)
      400:
        description: tampered, already_delivered, revoked or expired
      404:
        description: Unknown code (status invalid)
    """
    return jsonify(verification_service.verify_code(code, _request_meta())), 200


@verification_bp.route('/<code>/confirm-delivery', methods=['POST'])
def confirm_delivery(code):
    """
    Confirm delivery with a verification code (one-time)
    ---
    tags:
      - Verification
    parameters:
      - in: path
        name: code
        type: string
        required: true
      - in: body
        name: body
        schema:
          type: object
          properties:
            deviceFingerprint:
              type: string
    responses:
      200:
        description: Delivery confirmed
      400:
        description: tampered, revoked or expired
      404:
        description: Unknown code
      409:
        description: Code already used for a delivery confirmation
    """
    data = request.get_json(silent=True) or {}
    meta = _request_meta(data.get('deviceFingerprint'))
    return jsonify(verification_service.confirm_delivery(code, meta)), 200

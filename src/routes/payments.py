import logging

import stripe
from flask import Blueprint, jsonify, request

from src.decorators import current_user, role_required
from src.services import order_service, withdrawal_service
from src.services.payment_gateway import get_gateway

logger = logging.getLogger(__name__)

payments_bp = Blueprint('payments', __name__)

EVENT_HANDLERS = {
    'payment_intent.succeeded': order_service.handle_payment_succeeded,
    'payment_intent.payment_failed': order_service.handle_payment_failed,
    'payout.paid': withdrawal_service.handle_payout_paid,
    'payout.failed': withdrawal_service.handle_payout_failed,
}


@payments_bp.route('/create-intent', methods=['POST'])
@role_required('buyer')
def create_intent():
    """
    Create a Stripe PaymentIntent for checkout
    ---
    tags:
      - Payments
    security:
      - Bearer: []
    parameters:
      - in: body
        name: body
        required: true
        schema:
          type: object
          required:
            - amount
          properties:
            amount:
              type: number
            currency:
              type: string
            orderId:
              type: string
    responses:
      200:
        description: PaymentIntent created
      400:
        description: Invalid amount
      503:
        description: Payment gateway unavailable
    """
    data = request.get_json(silent=True) or {}
    intent = order_service.create_payment_intent(
        get_gateway(),
        str(current_user().user_id),
        data.get('amount'),
        currency=data.get('currency'),
        order_id=data.get('orderId'),
    )
    return jsonify({'success': True, **intent}), 200


@payments_bp.route('/webhook', methods=['POST'])
def stripe_webhook():
    """
    Handle Stripe webhooks
    ---
    tags:
      - Payments
    responses:
      200:
        description: Event processed
      400:
        description: Invalid payload or signature
    """
    payload = request.get_data(as_text=True)
    sig_header = request.headers.get('Stripe-Signature')

    try:
        event = get_gateway().parse_webhook(payload, sig_header)
    except ValueError:
        return jsonify({'success': False, 'message': 'Invalid payload'}), 400
    except stripe.SignatureVerificationError:
        logger.warning('Rejected webhook with invalid signature')
        return jsonify({'success': False, 'message': 'Invalid signature'}), 400

    if not isinstance(event, dict):
        return jsonify({'success': False, 'message': 'Invalid payload'}), 400

    handler = EVENT_HANDLERS.get(event.get('type'))
    if not handler:
        logger.debug('Ignoring webhook event %s', event.get('type'))
        return jsonify({'success': True, 'received': True}), 200

    data = event.get('data')
    obj = data.get('object') if isinstance(data, dict) else None
    if not isinstance(obj, dict) or not obj.get('id'):
        logger.warning('Webhook event %s has no data object', event.get('type'))
        return jsonify({'success': False, 'message': 'Invalid payload'}), 400
    handler(obj)

    return jsonify({'success': True, 'received': True}), 200


def mock_confirm_intent(intent_id):
    """Stand-in for Stripe.js card confirmation; only mounted in mock mode."""
    data = request.get_json(silent=True) or {}
    intent = get_gateway().confirm_payment_intent(intent_id, data.get('status') or 'succeeded')
    return jsonify({'success': True, 'paymentIntentId': intent['id'], 'status': intent['status']}), 200

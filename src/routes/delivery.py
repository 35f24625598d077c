from flask import Blueprint, jsonify

from src.decorators import current_user, role_required
from src.services import delivery_service
from src.utils import isoformat, to_float

delivery_bp = Blueprint('delivery', __name__)


@delivery_bp.route('/confirm/<uuid:order_id>', methods=['POST'])
@role_required('artisan', 'admin')
def confirm_delivery(order_id):
    """
    Manually confirm delivery of an order
    ---
    tags:
      - Delivery
    security:
      - Bearer: []
    parameters:
      - in: path
        name: order_id
        type: string
        required: true
    responses:
      200:
        description: Order delivered
      400:
        description: Order not paid or not deliverable
      404:
        description: Order not found
      409:
        description: Delivery already confirmed
    """
    user = current_user()
    order = delivery_service.confirm_order_delivery(order_id, user.user_id, is_admin=user.role == 'admin')
    return jsonify({'success': True, 'message': 'Delivery confirmed successfully', 'order': order.to_dict()}), 200


@delivery_bp.route('/pending', methods=['GET'])
@role_required('artisan')
def pending():
    orders = delivery_service.pending_deliveries(current_user().user_id)
    return jsonify({'success': True, 'orders': [o.to_dict(include_codes=True) for o in orders], 'count': len(orders)}), 200


@delivery_bp.route('/completed', methods=['GET'])
@role_required('artisan')
def completed():
    orders = delivery_service.completed_deliveries(current_user().user_id)
    deliveries = [
        {
            'orderId': str(o.order_id),
            'orderNumber': o.order_number,
            'deliveredAt': isoformat(o.delivered_at),
            'total': to_float(o.total),
            'artisanPayout': to_float(o.artisan_payout),
            'escrowReleased': o.escrow_released,
        }
        for o in orders
    ]
    return jsonify({'success': True, 'deliveries': deliveries, 'count': len(deliveries)}), 200

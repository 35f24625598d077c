from flask import Blueprint, jsonify, request

from src.decorators import current_user, role_required
from src.services import order_service
from src.services.payment_gateway import get_gateway

orders_bp = Blueprint('orders', __name__)


@orders_bp.route('', methods=['POST'])
@role_required('buyer')
def create_order():
    """
    Create an order for a captured payment (or cash on delivery)
    ---
    tags:
      - Orders
    security:
      - Bearer: []
    parameters:
      - in: body
        name: body
        required: true
        schema:
          type: object
          required:
            - items
            - total
            - shippingAddress
            - paymentInfo
          properties:
            items:
              type: array
              items:
                type: object
                properties:
                  product:
                    type: string
                  qty:
                    type: integer
                  price:
                    type: number
            total:
              type: number
            currency:
              type: string
            shippingCost:
              type: number
            tax:
              type: number
            shippingAddress:
              type: object
            paymentInfo:
              type: object
              properties:
                method:
                  type: string
                  enum: [stripe, cod]
                transactionId:
                  type: string
            notes:
              type: string
    responses:
      201:
        description: Order created
      200:
        description: Order already exists for this payment transaction
      400:
        description: Validation error
      402:
        description: Payment not completed
      409:
        description: Payment transaction belongs to another order
    """
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        return jsonify({'success': False, 'message': 'Request body must be a JSON object'}), 400

    order, replayed = order_service.create_order(get_gateway(), current_user().user_id, data)
    body = {'success': True, 'order': order.to_dict(include_codes=True)}
    if replayed:
        body['idempotentReplay'] = True
        return jsonify(body), 200
    body['message'] = 'Order created successfully'
    return jsonify(body), 201


@orders_bp.route('', methods=['GET'])
@role_required('buyer')
def list_orders():
    orders = order_service.list_buyer_orders(current_user().user_id)
    return jsonify({'success': True, 'orders': [o.to_dict() for o in orders], 'count': len(orders)}), 200


@orders_bp.route('/artisan', methods=['GET'])
@role_required('artisan')
def list_artisan_orders():
    orders = order_service.list_artisan_orders(current_user().user_id, status=request.args.get('status'))
    return jsonify({'success': True, 'orders': [o.to_dict() for o in orders], 'count': len(orders)}), 200


@orders_bp.route('/<uuid:order_id>', methods=['GET'])
@role_required()
def get_order(order_id):
    order = order_service.get_order_for(order_id, current_user())
    return jsonify({'success': True, 'order': order.to_dict(include_codes=True)}), 200


@orders_bp.route('/<uuid:order_id>/cancel', methods=['PUT'])
@role_required('buyer')
def cancel_order(order_id):
    """
    Cancel an order (pending or confirmed only)
    ---
    tags:
      - Orders
    security:
      - Bearer: []
    parameters:
      - in: path
        name: order_id
        type: string
        required: true
      - in: body
        name: body
        schema:
          type: object
          properties:
            reason:
              type: string
    responses:
      200:
        description: Order cancelled
      404:
        description: Order not found
      409:
        description: Order can no longer be cancelled
    """
    data = request.get_json(silent=True) or {}
    order = order_service.cancel_order(get_gateway(), order_id, current_user().user_id, data.get('reason'))
    return jsonify({'success': True, 'message': 'Order cancelled successfully', 'order': order.to_dict()}), 200


@orders_bp.route('/<uuid:order_id>/status', methods=['PATCH'])
@role_required('artisan', 'admin')
def update_order_status(order_id):
    """
    Advance an order through its lifecycle
    ---
    tags:
      - Orders
    security:
      - Bearer: []
    parameters:
      - in: path
        name: order_id
        type: string
        required: true
      - in: body
        name: body
        required: true
        schema:
          type: object
          required:
            - status
          properties:
            status:
              type: string
              enum: [confirmed, processing, shipped, cancelled, refunded]
            carrier:
              type: string
            trackingNumber:
              type: string
            reason:
              type: string
    responses:
      200:
        description: Status updated
      400:
        description: Invalid status
      403:
        description: Not allowed for this user
      409:
        description: Illegal transition
    """
    data = request.get_json(silent=True) or {}
    new_status = data.get('status')
    if not new_status:
        return jsonify({'success': False, 'message': 'Missing field: status'}), 400

    order = order_service.update_status(
        get_gateway(),
        order_id,
        current_user(),
        new_status,
        carrier=data.get('carrier'),
        tracking_number=data.get('trackingNumber'),
        reason=data.get('reason'),
    )
    return jsonify({'success': True, 'message': f'Order status updated to {order.status}', 'order': order.to_dict()}), 200

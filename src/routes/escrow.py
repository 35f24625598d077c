from flask import Blueprint, jsonify, request

from src.decorators import current_user, role_required
from src.services import escrow_service
from src.utils import page_args, pagination_dict

escrow_bp = Blueprint('escrow', __name__)


@escrow_bp.route('/pending', methods=['GET'])
@role_required('admin')
def pending():
    """
    Paid orders whose escrow has not been released
    ---
    tags:
      - Admin Escrow
    security:
      - Bearer: []
    parameters:
      - in: query
        name: page
        type: integer
      - in: query
        name: limit
        type: integer
      - in: query
        name: status
        type: string
    responses:
      200:
        description: Orders awaiting escrow release
    """
    page, limit = page_args(request.args)
    pagination, total_held = escrow_service.list_pending(page, limit, request.args.get('status'))
    return jsonify({
        'success': True,
        'orders': [o.to_dict() for o in pagination.items],
        'totalEscrowHeld': float(total_held),
        'pagination': pagination_dict(pagination, page, limit),
    }), 200


@escrow_bp.route('/released', methods=['GET'])
@role_required('admin')
def released():
    page, limit = page_args(request.args)
    pagination = escrow_service.list_released(page, limit)
    return jsonify({
        'success': True,
        'orders': [o.to_dict() for o in pagination.items],
        'pagination': pagination_dict(pagination, page, limit),
    }), 200


@escrow_bp.route('/<uuid:order_id>/release', methods=['POST'])
@role_required('admin')
def release(order_id):
    """
    Release an order's escrow to the artisan
    ---
    tags:
      - Admin Escrow
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
            notes:
              type: string
    responses:
      200:
        description: Escrow released
      400:
        description: Order not paid or not delivered
      404:
        description: Order not found
      409:
        description: Escrow already released
    """
    data = request.get_json(silent=True) or {}
    order = escrow_service.release_escrow(order_id, current_user().user_id, data.get('notes'))
    return jsonify({'success': True, 'message': 'Escrow released successfully', 'order': order.to_dict()}), 200


@escrow_bp.route('/bulk-release', methods=['POST'])
@role_required('admin')
def bulk_release():
    """
    Release escrow for several orders; each order succeeds or fails on its own
    ---
    tags:
      - Admin Escrow
    security:
      - Bearer: []
    parameters:
      - in: body
        name: body
        required: true
        schema:
          type: object
          required:
            - orderIds
          properties:
            orderIds:
              type: array
              items:
                type: string
            notes:
              type: string
    responses:
      200:
        description: Per-order results
      400:
        description: orderIds missing or empty
    """
    data = request.get_json(silent=True) or {}
    order_ids = data.get('orderIds')
    if not isinstance(order_ids, list) or not order_ids:
        return jsonify({'success': False, 'message': 'Order IDs array is required'}), 400

    results = escrow_service.bulk_release(order_ids, current_user().user_id, data.get('notes'))
    return jsonify({
        'success': True,
        'message': f"Released {len(results['successful'])} orders, {len(results['failed'])} failed",
        **results,
    }), 200


@escrow_bp.route('/stats', methods=['GET'])
@role_required('admin')
def stats():
    return jsonify({'success': True, 'stats': escrow_service.get_stats()}), 200

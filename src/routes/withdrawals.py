import uuid

from flask import Blueprint, jsonify, request

from src.decorators import current_user, role_required
from src.services import withdrawal_service
from src.services.payment_gateway import get_gateway
from src.utils import page_args, pagination_dict

artisan_withdrawals_bp = Blueprint('artisan_withdrawals', __name__)
admin_withdrawals_bp = Blueprint('admin_withdrawals', __name__)


# --- Artisan ------------------------------------------------------------


@artisan_withdrawals_bp.route('', methods=['POST'])
@role_required('artisan')
def request_withdrawal():
    """
    Request a withdrawal of released escrow
    ---
    tags:
      - Withdrawals
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
            - bankDetails
          properties:
            amount:
              type: number
            bankDetails:
              type: object
              properties:
                bankName:
                  type: string
                accountNumber:
                  type: string
                accountTitle:
                  type: string
                routingNumber:
                  type: string
            notes:
              type: string
    responses:
      201:
        description: Withdrawal requested
      400:
        description: Invalid amount, missing bank details or insufficient balance
      409:
        description: Another withdrawal is already in progress
    """
    data = request.get_json(silent=True) or {}
    withdrawal, summary = withdrawal_service.create_withdrawal(
        current_user().user_id, data.get('amount'), data.get('bankDetails'), data.get('notes')
    )
    return jsonify({
        'success': True,
        'message': 'Withdrawal request submitted successfully',
        'withdrawal': withdrawal.to_dict(include_admin=False),
        'availableBalance': float(summary['availableBalance']),
        'pendingBalance': float(summary['pendingBalance']),
    }), 201


@artisan_withdrawals_bp.route('', methods=['GET'])
@role_required('artisan')
def my_withdrawals():
    page, limit = page_args(request.args)
    pagination = withdrawal_service.list_for_artisan(
        current_user().user_id, request.args.get('status'), page, limit
    )
    return jsonify({
        'success': True,
        'withdrawals': [w.to_dict(include_admin=False) for w in pagination.items],
        'pagination': pagination_dict(pagination, page, limit),
    }), 200


@artisan_withdrawals_bp.route('/balance/available', methods=['GET'])
@role_required('artisan')
def available_balance():
    summary = withdrawal_service.balance_summary(current_user().user_id)
    return jsonify({'success': True, 'balance': withdrawal_service.balance_dict(summary)}), 200


@artisan_withdrawals_bp.route('/<uuid:withdrawal_id>', methods=['GET'])
@role_required('artisan')
def my_withdrawal(withdrawal_id):
    withdrawal = withdrawal_service.get_withdrawal(withdrawal_id, current_user().user_id)
    return jsonify({'success': True, 'withdrawal': withdrawal.to_dict(include_admin=False)}), 200


@artisan_withdrawals_bp.route('/<uuid:withdrawal_id>/cancel', methods=['POST'])
@role_required('artisan')
def cancel(withdrawal_id):
    withdrawal = withdrawal_service.cancel_withdrawal(withdrawal_id, current_user().user_id)
    return jsonify({
        'success': True,
        'message': 'Withdrawal cancelled',
        'withdrawal': withdrawal.to_dict(include_admin=False),
    }), 200


# --- Admin --------------------------------------------------------------


@admin_withdrawals_bp.route('', methods=['GET'])
@role_required('admin')
def all_withdrawals():
    page, limit = page_args(request.args)
    artisan_id = request.args.get('artisanId')
    if artisan_id:
        try:
            artisan_id = uuid.UUID(artisan_id)
        except ValueError:
            return jsonify({'success': False, 'message': 'Invalid artisanId'}), 400

    pagination = withdrawal_service.list_all(request.args.get('status'), artisan_id, page, limit)
    return jsonify({
        'success': True,
        'withdrawals': [w.to_dict() for w in pagination.items],
        'pagination': pagination_dict(pagination, page, limit),
    }), 200


@admin_withdrawals_bp.route('/pending', methods=['GET'])
@role_required('admin')
def pending():
    withdrawals, total = withdrawal_service.list_pending()
    return jsonify({
        'success': True,
        'withdrawals': [w.to_dict() for w in withdrawals],
        'totalPendingAmount': float(total),
        'count': len(withdrawals),
    }), 200


@admin_withdrawals_bp.route('/stats/summary', methods=['GET'])
@role_required('admin')
def stats():
    return jsonify({'success': True, 'stats': withdrawal_service.stats_summary()}), 200


@admin_withdrawals_bp.route('/<uuid:withdrawal_id>', methods=['GET'])
@role_required('admin')
def get_withdrawal(withdrawal_id):
    withdrawal = withdrawal_service.get_withdrawal(withdrawal_id)
    return jsonify({'success': True, 'withdrawal': withdrawal.to_dict()}), 200


@admin_withdrawals_bp.route('/<uuid:withdrawal_id>/approve', methods=['POST'])
@role_required('admin')
def approve(withdrawal_id):
    """
    Approve a withdrawal and send the payout
    ---
    tags:
      - Admin Withdrawals
    security:
      - Bearer: []
    parameters:
      - in: path
        name: withdrawal_id
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
        description: Approved; payout completed, processing or failed
      400:
        description: Balance no longer covers the withdrawal
      404:
        description: Withdrawal not found
      409:
        description: Withdrawal is not pending
    """
    data = request.get_json(silent=True) or {}
    withdrawal = withdrawal_service.approve_withdrawal(
        get_gateway(), withdrawal_id, current_user().user_id, data.get('notes')
    )
    if withdrawal.status == 'failed':
        message = f'Withdrawal approved but payout failed: {withdrawal.failure_reason}'
    else:
        message = 'Withdrawal approved and payout sent'
    return jsonify({'success': True, 'message': message, 'withdrawal': withdrawal.to_dict()}), 200


@admin_withdrawals_bp.route('/<uuid:withdrawal_id>/reject', methods=['POST'])
@role_required('admin')
def reject(withdrawal_id):
    """
    Reject a pending withdrawal
    ---
    tags:
      - Admin Withdrawals
    security:
      - Bearer: []
    parameters:
      - in: path
        name: withdrawal_id
        type: string
        required: true
      - in: body
        name: body
        required: true
        schema:
          type: object
          required:
            - reason
          properties:
            reason:
              type: string
            notes:
              type: string
    responses:
      200:
        description: Withdrawal rejected
      400:
        description: Reason missing
      409:
        description: Withdrawal is not pending
    """
    data = request.get_json(silent=True) or {}
    withdrawal = withdrawal_service.reject_withdrawal(
        withdrawal_id, current_user().user_id, data.get('reason'), data.get('notes')
    )
    return jsonify({'success': True, 'message': 'Withdrawal rejected', 'withdrawal': withdrawal.to_dict()}), 200

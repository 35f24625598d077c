from datetime import datetime, timezone

from flask import Blueprint, jsonify, request

from src.decorators import role_required
from src.services import commission
from src.utils import page_args, pagination_dict

commission_bp = Blueprint('commission', __name__)


def _date_arg(name):
    value = request.args.get(name)
    if not value:
        return None
    parsed = datetime.fromisoformat(value)
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


@commission_bp.route('/summary', methods=['GET'])
@role_required('admin')
def summary():
    """
    Platform commission, escrow held and revenue totals
    ---
    tags:
      - Admin Commission
    security:
      - Bearer: []
    parameters:
      - in: query
        name: startDate
        type: string
        format: date
      - in: query
        name: endDate
        type: string
        format: date
    responses:
      200:
        description: Commission summary
      400:
        description: Invalid date
    """
    try:
        start_date, end_date = _date_arg('startDate'), _date_arg('endDate')
    except ValueError:
        return jsonify({'success': False, 'message': 'Dates must be ISO 8601'}), 400

    return jsonify({'success': True, 'summary': commission.get_commission_summary(start_date, end_date)}), 200


@commission_bp.route('/transactions', methods=['GET'])
@role_required('admin')
def transactions():
    page, limit = page_args(request.args)
    pagination = commission.get_commission_transactions(page, limit)
    return jsonify({
        'success': True,
        'transactions': [t.to_dict() for t in pagination.items],
        'pagination': pagination_dict(pagination, page, limit),
    }), 200

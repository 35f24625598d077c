from flask import Blueprint, jsonify, request

from src.decorators import current_user, role_required
from src.extensions import db
from src.models.product import Product
from src.utils import parse_money

products_bp = Blueprint('products', __name__)


@products_bp.route('', methods=['POST'])
@role_required('artisan')
def create_product():
    """
    Create a product
    ---
    tags:
      - Products
    security:
      - Bearer: []
    parameters:
      - in: body
        name: body
        required: true
        schema:
          type: object
          required:
            - title
            - price
          properties:
            title:
              type: string
            category:
              type: string
            price:
              type: number
            image:
              type: string
    responses:
      201:
        description: Product created
      400:
        description: Invalid input
    """
    data = request.get_json(silent=True) or {}
    title = (data.get('title') or '').strip()
    price = parse_money(data.get('price'))
    if not title:
        return jsonify({'success': False, 'message': 'Title is required'}), 400
    if price is None or price <= 0:
        return jsonify({'success': False, 'message': 'Price must be a positive number'}), 400

    product = Product(
        artisan_id=current_user().user_id,
        title=title,
        category=(data.get('category') or '').strip(),
        price=price,
        image=data.get('image') or '',
        ipfs_metadata_hash=data.get('ipfsHash') or '',
        blockchain_txn=data.get('blockchainTxn') or '',
    )
    db.session.add(product)
    db.session.commit()
    return jsonify({'success': True, 'product': product.to_dict()}), 201


@products_bp.route('/<uuid:product_id>', methods=['GET'])
def get_product(product_id):
    product = db.session.get(Product, product_id)
    if not product:
        return jsonify({'success': False, 'message': 'Product not found'}), 404
    return jsonify({'success': True, 'product': product.to_dict()}), 200


@products_bp.route('/<uuid:product_id>/anchor', methods=['PATCH'])
@role_required('artisan', 'admin')
def update_anchor(product_id):
    """
    Record a product's blockchain authenticity anchor
    ---
    tags:
      - Products
    security:
      - Bearer: []
    parameters:
      - in: path
        name: product_id
        type: string
        required: true
      - in: body
        name: body
        required: true
        schema:
          type: object
          properties:
            blockchainTxn:
              type: string
            ipfsHash:
              type: string
    responses:
      200:
        description: Anchor recorded
      404:
        description: Product not found
    """
    user = current_user()
    product = db.session.get(Product, product_id)
    if not product or (user.role != 'admin' and product.artisan_id != user.user_id):
        return jsonify({'success': False, 'message': 'Product not found'}), 404

    data = request.get_json(silent=True) or {}
    if 'blockchainTxn' in data:
        product.blockchain_txn = data.get('blockchainTxn') or ''
    if 'ipfsHash' in data:
        product.ipfs_metadata_hash = data.get('ipfsHash') or ''
    db.session.commit()
    return jsonify({'success': True, 'product': product.to_dict()}), 200

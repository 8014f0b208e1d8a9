"""Coupons blueprint."""
from flask import Blueprint, jsonify, g

from now24.database import get_session
from now24.middleware import require_login
from now24.services.coupon_service import list_available_coupons

coupons_bp = Blueprint('coupons', __name__, url_prefix='/api/coupons')


@coupons_bp.route('/available', methods=['GET'])
@require_login
def available():
    """Active, in-window coupons the user has not used up."""
    coupons = list_available_coupons(get_session(), g.user_id)
    return jsonify({'status': 'success', 'coupons': [c.to_dict() for c in coupons]})

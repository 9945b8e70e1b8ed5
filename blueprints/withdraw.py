from flask import Blueprint, jsonify
from flask_login import login_required, current_user
import logging

from blueprints.admin import admin_required, get_page_args
from blueprints.auth import get_json_body
from blueprints.withdraw_helpers import (
    create_withdrawal, approve_withdrawal, reject_withdrawal,
    list_user_withdrawals, list_pending_withdrawals,
)

logger = logging.getLogger(__name__)

bp = Blueprint("withdraw", __name__, url_prefix="/api/withdrawals")


#===========================================================================
#      USER
#===========================================================================
@bp.route("", methods=["POST"])
@login_required
def request_withdrawal():
    """{"bankName": "", "bankAccountNumber": "", "amount": 50}"""
    data = get_json_body()
    withdrawal = create_withdrawal(
        account_id=current_user.id,
        bank_name=data.get("bankName"),
        bank_account_number=data.get("bankAccountNumber"),
        amount=data.get("amount"),
    )
    return jsonify({
        "success": True,
        "message": "Withdrawal request submitted successfully",
        "withdrawal": withdrawal.to_dict(),
    }), 201


@bp.route("/mine", methods=["GET"])
@login_required
def my_withdrawals():
    rows = list_user_withdrawals(current_user.id)
    return jsonify({"success": True, "count": len(rows), "withdrawals": [w.to_dict() for w in rows]}), 200


#===========================================================================
#      ADMIN
#===========================================================================
@bp.route("/pending", methods=["GET"])
@admin_required
def pending_withdrawals():
    page, limit = get_page_args()
    return jsonify({"success": True, **list_pending_withdrawals(page=page, limit=limit)}), 200


@bp.route("/<int:withdrawal_id>/approve", methods=["POST"])
@admin_required
def approve(withdrawal_id):
    withdrawal = approve_withdrawal(withdrawal_id)
    return jsonify({
        "success": True,
        "message": "Withdrawal approved successfully",
        "withdrawal": withdrawal.to_dict(),
    }), 200


@bp.route("/<int:withdrawal_id>/reject", methods=["POST"])
@admin_required
def reject(withdrawal_id):
    withdrawal = reject_withdrawal(withdrawal_id)
    return jsonify({
        "success": True,
        "message": "Withdrawal rejected",
        "withdrawal": withdrawal.to_dict(),
    }), 200

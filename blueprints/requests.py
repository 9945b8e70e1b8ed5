from flask import Blueprint, jsonify, request
from flask_login import login_required, current_user
import logging

from blueprints.admin import admin_required, get_page_args
from blueprints.auth import get_json_body
from commission.activation import (
    create_activation_request, approve_activation_request,
    reject_activation_request, list_activation_requests,
)
from commission.errors import InvalidInputError

logger = logging.getLogger(__name__)

bp = Blueprint("requests", __name__, url_prefix="/api/requests")


#===========================================================================
#      ACTIVATION REQUESTS
#===========================================================================
@bp.route("", methods=["POST"])
@login_required
def create_request():
    """
    Sponsor (or the subject itself when it has no upline) submits proof.
    {"userId": int, "plan": "knowic", "proof": "<stored file reference>"}
    """
    data = get_json_body()
    try:
        subject_id = int(data.get("userId", current_user.id))
    except (TypeError, ValueError) as e:
        raise InvalidInputError("userId must be an integer") from e

    activation = create_activation_request(
        subject_id=subject_id,
        sponsor_id=current_user.id,
        plan=data.get("plan"),
        proof=data.get("proof"),
    )
    return jsonify({
        "success": True,
        "message": "Request created successfully",
        "request": activation.to_dict(),
    }), 201


@bp.route("", methods=["GET"])
@admin_required
def all_requests():
    page, limit = get_page_args()
    status = request.args.get("status", "pending")
    result = list_activation_requests(status=status, page=page, limit=limit)
    return jsonify({"success": True, **result}), 200


@bp.route("/<int:request_id>/approve", methods=["POST"])
@admin_required
def approve_request(request_id):
    activation = approve_activation_request(request_id)
    return jsonify({
        "success": True,
        "message": "Request approved successfully",
        "request": activation.to_dict(),
    }), 200


@bp.route("/<int:request_id>/reject", methods=["POST"])
@admin_required
def reject_request(request_id):
    reject_activation_request(request_id)
    return jsonify({"success": True, "message": "Request rejected and deleted successfully"}), 200

from flask import Blueprint, jsonify
from flask_login import login_required, current_user
import logging

from blueprints.admin import admin_required
from blueprints.auth import get_json_body
from commission import upgrade as upgrades

logger = logging.getLogger(__name__)

bp = Blueprint("upgrades", __name__, url_prefix="/api/upgrades")


# ---------------------------------------------------------------------------
#   Subject
# ---------------------------------------------------------------------------
@bp.route("", methods=["POST"])
@login_required
def create_upgrade():
    """{"newPlan": "learnic", "referralCode": "ABCD1234"}"""
    data = get_json_body()
    upgrade = upgrades.create_upgrade_request(
        subject_id=current_user.id,
        new_plan=data.get("newPlan"),
        referral_code=data.get("referralCode"),
    )
    return jsonify({
        "success": True,
        "message": "Upgrade request created successfully",
        "upgradeRequest": upgrade.to_dict(),
    }), 201


@bp.route("/mine", methods=["GET"])
@login_required
def my_upgrade():
    upgrade = upgrades.get_open_upgrade_for(current_user.id)
    return jsonify({"success": True, "upgradeRequest": upgrade.to_dict() if upgrade else None}), 200


# ---------------------------------------------------------------------------
#   New sponsor
# ---------------------------------------------------------------------------
@bp.route("/inbox", methods=["GET"])
@login_required
def sponsor_inbox():
    rows = upgrades.list_upgrades_for_sponsor(current_user.id)
    return jsonify({"success": True, "upgradeRequests": [u.to_dict() for u in rows]}), 200


@bp.route("/<int:request_id>/sponsor-approve", methods=["POST"])
@login_required
def sponsor_approve(request_id):
    data = get_json_body()
    upgrade = upgrades.sponsor_approve_upgrade(request_id, current_user.id, data.get("proof"))
    return jsonify({
        "success": True,
        "message": "Upgrade request approved successfully. Waiting for admin approval.",
        "upgradeRequest": upgrade.to_dict(),
    }), 200


@bp.route("/<int:request_id>/sponsor-reject", methods=["POST"])
@login_required
def sponsor_reject(request_id):
    upgrades.sponsor_reject_upgrade(request_id, current_user.id)
    return jsonify({"success": True, "message": "Upgrade request rejected"}), 200


# ---------------------------------------------------------------------------
#   Admin
# ---------------------------------------------------------------------------
@bp.route("/admin", methods=["GET"])
@admin_required
def admin_list():
    rows = upgrades.list_upgrades_for_admin()
    return jsonify({"success": True, "upgradeRequests": [u.to_dict() for u in rows]}), 200


@bp.route("/<int:request_id>/approve", methods=["POST"])
@admin_required
def admin_approve(request_id):
    upgrade = upgrades.approve_upgrade_request(request_id)
    return jsonify({
        "success": True,
        "message": "Upgrade approved successfully",
        "upgradeRequest": upgrade.to_dict(),
    }), 200


@bp.route("/<int:request_id>/reject", methods=["POST"])
@admin_required
def admin_reject(request_id):
    upgrades.reject_upgrade_request(request_id)
    return jsonify({"success": True, "message": "Upgrade request rejected"}), 200

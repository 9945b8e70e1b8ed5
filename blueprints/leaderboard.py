from flask import Blueprint, jsonify, request
import logging

from leaderboard.query import get_leaderboard

logger = logging.getLogger(__name__)

bp = Blueprint("leaderboard", __name__, url_prefix="/api")


@bp.route("/leaderboard", methods=["POST"])
def leaderboard():
    """{"type": "daily" | "weekly" | "monthly" | "all-time"}"""
    data = request.get_json(silent=True) or {}
    result = get_leaderboard(data.get("type"))
    return jsonify({"success": True, **result}), 200

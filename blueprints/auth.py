from flask import Blueprint, jsonify, request, session
from flask_login import login_user, logout_user, login_required, current_user
import logging

from commission.accounts import create_account, find_by_email, referral_count
from commission.errors import InvalidInputError


logger = logging.getLogger(__name__)
#==================================================================================================================

bp = Blueprint("auth", __name__, url_prefix="/api/auth")


def get_json_body():
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        raise InvalidInputError("Invalid or missing JSON body")
    return data


#===========================================================================
#      SIGN UP ROUTE.
#==============================================================================
@bp.route("/signup", methods=["POST"])
def signup():
    """
    Create a pending account, optionally placed under the owner of `referralCode`.
    """
    data = get_json_body()

    account = create_account(
        name=data.get("name", ""),
        email=data.get("email", ""),
        password=data.get("password", ""),
        referral_code=data.get("referralCode"),
    )

    return jsonify({
        "success": True,
        "message": "Signup successful",
        "user": account.to_dict(),
    }), 201


 # --------------------------------------------------
 #      Login / Logout
 # --------------------------------------------------
@bp.route("/login", methods=["POST"])
def login():
    """
    Expected JSON:
    {
        "email": "",
        "password": ""
    }
    """
    data = get_json_body()
    email = (data.get("email") or "").strip().lower()
    password = data.get("password") or ""

    if not email or not password:
        raise InvalidInputError("Email and password are required")

    account = find_by_email(email)
    if not account or not account.check_password(password):
        logger.warning(f"Failed login for {email}")
        return jsonify({"success": False, "error": "unauthorized", "message": "Invalid credentials"}), 401

    login_user(account)
    session["user_id"] = account.id
    logger.info(f"Account {account.id} logged in")

    return jsonify({
        "success": True,
        "message": "Login successful",
        "user": account.to_dict(),
    }), 200


@bp.route("/logout", methods=["POST"])
@login_required
def logout():
    logout_user()
    session.pop("user_id", None)
    return jsonify({"success": True, "message": "Logged out"}), 200


@bp.route("/me", methods=["GET"])
@login_required
def me():
    user = current_user.to_dict()
    user["referralCount"] = referral_count(current_user.id)
    return jsonify({"success": True, "user": user}), 200

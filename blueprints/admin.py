#======================================================================================
#
# THIS IS ADMIN api
#
#======================================================================================
from functools import wraps
import logging

from flask import jsonify, request, Blueprint
from flask_login import current_user

from extensions import login_manager
from commission import accounts, ledger
from commission.discounts import get_discount_settings, update_discount_settings
from commission.errors import ForbiddenError, InvalidInputError
from commission.referral_tree import ReferralTreeHelper
from commission.plans import PlanConfigHelper

logger = logging.getLogger(__name__)


def admin_required(f):
    """
    Restrict a route to logged-in admins.
    Anonymous callers get the login manager's 401; non-admins get 403.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        if not current_user.is_authenticated:
            return login_manager.unauthorized()

        if not current_user.is_admin:
            logger.warning(f"Account {current_user.id} denied admin route {request.path}")
            raise ForbiddenError("Admin access required")

        return f(*args, **kwargs)

    return decorated_function


def get_page_args(default_limit=10):
    try:
        page = int(request.args.get("page", 1))
        limit = int(request.args.get("limit", default_limit))
    except ValueError as e:
        raise InvalidInputError("page and limit must be integers") from e
    if page < 1 or limit < 1:
        raise InvalidInputError("page and limit must be positive")
    return page, limit


admin_bp = Blueprint("admin", __name__, url_prefix="/api/admin")


#============================================================================================================
#     LEDGER
#============================================================================================================
@admin_bp.route("/ledger", methods=["GET"])
@admin_required
def ledger_listing():
    """Ledger entries newest first; `q` searches the owner's name or email."""
    page, limit = get_page_args(default_limit=50)
    search = request.args.get("q", "").strip() or None
    kind = request.args.get("type", "").strip() or None

    entries, total = ledger.list_entries(search=search, kind=kind, page=page, limit=limit)

    rows = []
    for entry in entries:
        row = entry.to_dict()
        row["user"] = {"name": entry.account.name, "email": entry.account.email}
        rows.append(row)

    return jsonify({
        "success": True,
        "count": len(rows),
        "total": total,
        "page": page,
        "transactions": rows,
    }), 200


@admin_bp.route("/ledger/reconcile", methods=["POST"])
@admin_required
def reconcile():
    drifted = ledger.reconcile_all()
    return jsonify({
        "success": True,
        "message": f"Reconciled {len(drifted)} accounts",
        "drifted": drifted,
    }), 200


#============================================================================================================
#     ACCOUNTS
#============================================================================================================
@admin_bp.route("/users/<int:account_id>", methods=["GET"])
@admin_required
def account_detail(account_id):
    account = accounts.get_account(account_id)
    data = account.to_dict()
    data["derived"] = {k: float(v) for k, v in ledger.derive_balances(account_id).items()}
    data["network"] = ReferralTreeHelper.get_network_summary(account_id)
    return jsonify({"success": True, "user": data}), 200


@admin_bp.route("/users/<int:account_id>", methods=["DELETE"])
@admin_required
def delete_account(account_id):
    if account_id == current_user.id:
        raise InvalidInputError("Admins cannot delete their own account")
    accounts.delete_account(account_id)
    logger.info(f"Admin {current_user.id} deleted account {account_id}")
    return jsonify({"success": True, "message": "User deleted successfully"}), 200


#============================================================================================================
#     DISCOUNTS
#============================================================================================================
@admin_bp.route("/discounts", methods=["GET"])
def discounts():
    """Public: sponsors see the active discount when approving an upgrade."""
    settings = get_discount_settings()
    data = settings.to_dict()
    data["limits"] = {
        plan: float(PlanConfigHelper.pricing_for(plan)["max_discount"])
        for plan in PlanConfigHelper.plan_names()
    }
    return jsonify({"success": True, "discount": data}), 200


@admin_bp.route("/discounts", methods=["PUT"])
@admin_required
def update_discounts():
    data = request.get_json(silent=True) or {}
    amounts = data.get("discounts") or {}
    if not isinstance(amounts, dict):
        raise InvalidInputError("discounts must be an object keyed by plan")

    enabled = data.get("enabled")
    settings = update_discount_settings(
        enabled=bool(enabled) if enabled is not None else None,
        discounts=amounts,
    )
    return jsonify({
        "success": True,
        "message": "Discount settings updated successfully",
        "discount": settings.to_dict(),
    }), 200

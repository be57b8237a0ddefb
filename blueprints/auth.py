from flask import Blueprint, jsonify, request
from flask_login import login_user, logout_user, login_required, current_user
import logging

from ledger.users import register_user, authenticate, lookup_sponsor

logger = logging.getLogger(__name__)
#==================================================================================================================

bp = Blueprint("auth", __name__, url_prefix="/api/auth")


#===========================================================================
#      SIGN UP ROUTE.
#==============================================================================
@bp.route("/signup", methods=["POST"])
def signup():
    """Create a user with a wallet and an immutable sponsor link."""
    data = request.get_json(silent=True) or {}

    user = register_user(
        full_name=data.get("fullName", ""),
        email=data.get("email", ""),
        password=data.get("password", ""),
        sponsor_referral_code=data.get("referralCode", ""),
        position=data.get("position"),
    )
    login_user(user)

    return jsonify({
        "success": True,
        "message": "Registration successful",
        "user": user.to_dict(),
    }), 201


@bp.route("/login", methods=["POST"])
def login():
    data = request.get_json(silent=True) or {}
    user = authenticate(data.get("email", ""), data.get("password", ""))
    login_user(user, remember=bool(data.get("remember")))
    logger.info(f"User {user.id} logged in")
    return jsonify({"success": True, "user": user.to_dict()}), 200


@bp.route("/logout", methods=["POST"])
@login_required
def logout():
    logger.info(f"User {current_user.id} logged out")
    logout_user()
    return jsonify({"success": True, "message": "Logged out"}), 200


@bp.route("/me", methods=["GET"])
@login_required
def me():
    return jsonify({"success": True, "user": current_user.to_dict()}), 200


@bp.route("/sponsor/<code>", methods=["GET"])
def sponsor_lookup(code):
    """Sponsor name for the registration screen."""
    return jsonify({"success": True, "sponsor": lookup_sponsor(code)}), 200

#======================================================================================
#
#   USER WALLET: deposits, withdrawals, balances
#
#=======================================================================================
from datetime import datetime, timezone

from flask import Blueprint, jsonify, request
from flask_login import login_required, current_user
import logging

from ledger import deposits, withdrawals, reporting, profit_distribution
from ledger.errors import ValidationError
from ledger.store import LedgerStore

logger = logging.getLogger(__name__)

bp = Blueprint("wallet", __name__, url_prefix="/api/wallet")


def _json_body():
    return request.get_json(silent=True) or {}


@bp.route("/balance", methods=["GET"])
@login_required
def balance():
    wallet = LedgerStore.ensure_wallet(current_user.id)
    return jsonify({
        "success": True,
        "balance": float(wallet.balance),
        "available_withdrawable": float(LedgerStore.available_withdrawable(current_user.id)),
    }), 200


#============================================================================================================
#     DEPOSITS
#============================================================================================================

@bp.route("/deposit/otp", methods=["POST"])
@login_required
def deposit_otp():
    data = _json_body()
    result = deposits.request_deposit_otp(
        current_user,
        amount=data.get("amount"),
        chain=data.get("blockchain"),
        package_name=data.get("package_name"),
    )
    return jsonify(result), 200


@bp.route("/deposit/confirm", methods=["POST"])
@login_required
def deposit_confirm():
    data = _json_body()
    entry = deposits.confirm_deposit(
        current_user,
        amount=data.get("amount"),
        chain=data.get("blockchain"),
        otp=data.get("otp_code"),
        proof=data.get("transaction_hash"),
        package_name=data.get("package_name"),
        screenshot_provided=bool(data.get("screenshot")),
    )
    return jsonify({
        "success": True,
        "message": "Deposit submitted and awaiting admin approval",
        "transaction": entry.to_dict(),
    }), 201


#============================================================================================================
#     WITHDRAWALS
#============================================================================================================

@bp.route("/withdrawal/otp", methods=["POST"])
@login_required
def withdrawal_otp():
    data = _json_body()
    result = withdrawals.request_withdrawal_otp(
        current_user,
        kind=data.get("type"),
        chain=data.get("blockchain"),
        address=data.get("withdrawal_address"),
        amount=data.get("amount"),
        investment_id=data.get("investment_id"),
    )
    return jsonify(result), 200


@bp.route("/withdrawal/confirm", methods=["POST"])
@login_required
def withdrawal_confirm():
    data = _json_body()
    entry = withdrawals.confirm_withdrawal(
        current_user,
        kind=data.get("type"),
        otp=data.get("otp_code"),
        chain=data.get("blockchain"),
        address=data.get("withdrawal_address"),
        amount=data.get("amount"),
        investment_id=data.get("investment_id"),
    )
    return jsonify({
        "success": True,
        "message": "Withdrawal request submitted. Processing may take 3-5 business days.",
        "transaction": entry.to_dict(),
    }), 201


@bp.route("/withdrawal/history", methods=["GET"])
@login_required
def withdrawal_history():
    result = withdrawals.get_withdrawal_history(
        current_user,
        kind=request.args.get("type"),
        status=request.args.get("status"),
        limit=request.args.get("limit", 50, type=int),
        offset=request.args.get("offset", 0, type=int),
    )
    return jsonify({"success": True, **result}), 200


@bp.route("/withdrawal/stats", methods=["GET"])
@login_required
def withdrawal_stats():
    return jsonify({"success": True, "stats": withdrawals.get_withdrawal_stats(current_user)}), 200


@bp.route("/investments", methods=["GET"])
@login_required
def investments():
    return jsonify({"success": True, "investments": withdrawals.get_investments(current_user)}), 200


@bp.route("/investments/history", methods=["GET"])
@login_required
def investment_history():
    return jsonify({"success": True, "investments": reporting.get_investment_history(current_user)}), 200


#============================================================================================================
#     PROFIT
#============================================================================================================

def _date_arg(name):
    raw = request.args.get(name)
    if not raw:
        return None
    try:
        value = datetime.fromisoformat(raw)
    except ValueError:
        raise ValidationError(f"{name} must be an ISO date")
    # Ledger timestamps are naive UTC
    if value.tzinfo:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


@bp.route("/profit", methods=["GET"])
@login_required
def profit():
    result = {
        "success": True,
        "total_profit": float(profit_distribution.total_investment_profit(current_user.id)),
    }

    start, end = _date_arg("start"), _date_arg("end")
    if start or end:
        if not (start and end):
            raise ValidationError("Both start and end are required for a period")
        result["period"] = {
            "start": start.isoformat(),
            "end": end.isoformat(),
            "profit": float(profit_distribution.investment_profit_for_period(current_user.id, start, end)),
        }
    return jsonify(result), 200

#======================================================================================
#
# THIS IS ADMIN API
#
#=======================================================================================
from flask import jsonify, request, Blueprint, abort
from flask_login import current_user
from functools import wraps
import logging

from extensions import db
from models import User, Wallet, Transaction, TransactionStatus, Direction, IncomeSource
from ledger import deposits, withdrawals, profit_distribution, reporting
from ledger.commission_config import CommissionConfigHelper
from ledger.store import LedgerStore

logger = logging.getLogger(__name__)


def admin_required(f):
    """
    Decorator to restrict access to admin-only routes.
    Anonymous users and non-admins get 403.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        if not current_user.is_authenticated:
            abort(403)
        if not current_user.is_admin:
            logger.warning(f"User {current_user.id} attempted admin route {request.path}")
            abort(403)
        return f(*args, **kwargs)

    return decorated_function


admin_bp = Blueprint('admin', __name__, url_prefix='/api/admin')


def _reason():
    return (request.get_json(silent=True) or {}).get("reason")


def _serialize(summary):
    """Decimal-free copy of a distribution summary."""
    return {
        **summary,
        "total_distributed": float(summary["total_distributed"]),
        "total_referral_distributed": float(summary["total_referral_distributed"]),
    }


@admin_bp.route("/data", methods=["GET"])
@admin_required
def admin_data():
    pending_deposits = Transaction.query.filter(
        Transaction.direction == Direction.CREDIT,
        Transaction.status == TransactionStatus.PENDING,
        LedgerStore.deposit_source_clause(),
    ).count()
    pending_withdrawals = Transaction.query.filter(
        Transaction.direction == Direction.DEBIT,
        Transaction.status == TransactionStatus.PENDING,
        Transaction.income_source.in_(IncomeSource.WITHDRAWAL_TYPES),
    ).count()

    return jsonify({
        "total_users": User.query.count(),
        "active_users": User.query.filter_by(is_active=True).count(),
        "pending_deposits": pending_deposits,
        "pending_withdrawals": pending_withdrawals,
        "total_wallet_balance": float(db.session.query(db.func.coalesce(db.func.sum(Wallet.balance), 0)).scalar()),
    })


#============================================================================================================
#     DEPOSITS
#============================================================================================================

@admin_bp.route("/deposits/pending", methods=["GET"])
@admin_required
def pending_deposits():
    return jsonify({"success": True, "deposits": deposits.list_pending_deposits()}), 200


@admin_bp.route("/deposits/<int:transaction_id>/approve", methods=["POST"])
@admin_required
def approve_deposit(transaction_id):
    logger.info(f"Admin {current_user.id} approving deposit {transaction_id}")
    return jsonify(deposits.approve_deposit(transaction_id)), 200


@admin_bp.route("/deposits/<int:transaction_id>/reject", methods=["POST"])
@admin_required
def reject_deposit(transaction_id):
    logger.info(f"Admin {current_user.id} rejecting deposit {transaction_id}")
    return jsonify(deposits.reject_deposit(transaction_id, _reason())), 200


#============================================================================================================
#     WITHDRAWALS
#============================================================================================================

@admin_bp.route("/withdrawals/pending", methods=["GET"])
@admin_required
def pending_withdrawals():
    return jsonify({"success": True, "withdrawals": withdrawals.list_pending_withdrawals()}), 200


@admin_bp.route("/withdrawals/<int:transaction_id>/approve", methods=["POST"])
@admin_required
def approve_withdrawal(transaction_id):
    logger.info(f"Admin {current_user.id} approving withdrawal {transaction_id}")
    return jsonify(withdrawals.approve_withdrawal(transaction_id)), 200


@admin_bp.route("/withdrawals/<int:transaction_id>/reject", methods=["POST"])
@admin_required
def reject_withdrawal(transaction_id):
    logger.info(f"Admin {current_user.id} rejecting withdrawal {transaction_id}")
    return jsonify(withdrawals.reject_withdrawal(transaction_id, _reason())), 200


@admin_bp.route("/transactions/history", methods=["GET"])
@admin_required
def transaction_history():
    result = reporting.get_transaction_history(
        kind=request.args.get("type"),
        limit=request.args.get("limit", 50, type=int),
        offset=request.args.get("offset", 0, type=int),
    )
    return jsonify({"success": True, **result}), 200


#============================================================================================================
#     DISTRIBUTION & RECONCILIATION
#============================================================================================================

@admin_bp.route("/distribution/<period_type>", methods=["POST"])
@admin_required
def run_distribution(period_type):
    logger.info(f"Admin {current_user.id} triggered {period_type} distribution")
    summary = profit_distribution.process_distribution(period_type)
    return jsonify(_serialize(summary)), 200


@admin_bp.route("/reconcile", methods=["GET"])
@admin_required
def reconcile():
    drifted = LedgerStore.reconcile_all()
    return jsonify({
        "success": True,
        "consistent": not drifted,
        "drifted": [
            {k: (float(v) if k in ("wallet_balance", "ledger_balance", "difference") else v)
             for k, v in report.items()}
            for report in drifted
        ],
    }), 200


#============================================================================================================
#     COMMISSION SCHEDULES
#============================================================================================================

def _schedule_view(name):
    summary = CommissionConfigHelper.get_distribution_summary(CommissionConfigHelper.get_schedule(name))
    return {**summary, "name": name, "total_percentage": float(summary["total_percentage"])}


@admin_bp.route("/commission/schedules", methods=["GET"])
@admin_required
def commission_schedules():
    return jsonify({
        "success": True,
        "schedules": [_schedule_view(name) for name in CommissionConfigHelper.SCHEDULES],
    }), 200


@admin_bp.route("/commission/schedules/<name>", methods=["GET"])
@admin_required
def commission_schedule(name):
    try:
        view = _schedule_view(name)
    except ValueError:
        abort(404)
    return jsonify({"success": True, "schedule": view}), 200

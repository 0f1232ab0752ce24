"""Репозитории для работы с БД."""

from .account_repo import (
    get_account,
    get_user_by_email,
    list_accounts_for_user,
    list_accounts_for_users,
    list_user_ids_by_emails,
    list_users,
)
from .catalog_repo import (
    delete_structure,
    find_structure,
    get_structure,
    list_groups,
    list_structures,
    replace_groups,
    save_structure,
)
from .partner_repo import (
    get_partner,
    get_partner_by_email,
    get_partner_by_referral_code,
    list_approved_partners,
    list_children,
    list_partners,
    save_partner,
)
from .referral_repo import (
    add_referral,
    get_referral,
    get_snapshot,
    list_referrals,
    search_referrals,
    upsert_snapshot,
)
from .rule_repo import clear_assignments, list_assignments, replace_assignments
from .trade_repo import (
    ELIGIBLE_ORDER_TYPES,
    get_trades_by_order_ids,
    list_account_trades,
    list_eligible_trades,
    list_partner_trades,
    set_trade_commission,
    upsert_trade,
    volume_by_partner,
)
from .withdrawal_repo import (
    add_withdrawal,
    get_withdrawal,
    list_withdrawals,
    save_withdrawal,
    sum_by_statuses,
)

__all__ = [
    "ELIGIBLE_ORDER_TYPES",
    "add_referral",
    "add_withdrawal",
    "clear_assignments",
    "delete_structure",
    "find_structure",
    "get_account",
    "get_partner",
    "get_partner_by_email",
    "get_partner_by_referral_code",
    "get_referral",
    "get_snapshot",
    "get_structure",
    "get_trades_by_order_ids",
    "get_user_by_email",
    "get_withdrawal",
    "list_account_trades",
    "list_accounts_for_user",
    "list_accounts_for_users",
    "list_approved_partners",
    "list_assignments",
    "list_children",
    "list_eligible_trades",
    "list_groups",
    "list_partner_trades",
    "list_partners",
    "list_referrals",
    "list_structures",
    "list_user_ids_by_emails",
    "list_users",
    "list_withdrawals",
    "replace_assignments",
    "replace_groups",
    "save_partner",
    "save_structure",
    "save_withdrawal",
    "search_referrals",
    "set_trade_commission",
    "sum_by_statuses",
    "upsert_snapshot",
    "upsert_trade",
    "volume_by_partner",
]

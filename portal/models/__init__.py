"""SQLModel сущности IB Portal."""

from .catalog import BrokerGroup, CommissionStructure  # noqa: F401
from .client import ClientUser, TradingAccount  # noqa: F401
from .partner import (  # noqa: F401
    DEFAULT_IB_TYPE,
    IB_TYPES,
    GroupAssignment,
    IBPartner,
    PartnerStatus,
)
from .referral import CommissionSnapshot, IBReferral  # noqa: F401
from .trade import TradeRecord  # noqa: F401
from .withdrawal import WithdrawalRequest, WithdrawalStatus  # noqa: F401

__all__ = [
    "BrokerGroup",
    "ClientUser",
    "CommissionSnapshot",
    "CommissionStructure",
    "DEFAULT_IB_TYPE",
    "GroupAssignment",
    "IBPartner",
    "IBReferral",
    "IB_TYPES",
    "PartnerStatus",
    "TradeRecord",
    "TradingAccount",
    "WithdrawalRequest",
    "WithdrawalStatus",
]

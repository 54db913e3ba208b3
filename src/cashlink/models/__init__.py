"""Core data models for cash links."""

from cashlink.models.errors import (
    AmountOverflowError,
    AuthorizationError,
    CashLinkError,
    ConfigurationError,
    DedupError,
    DistributionError,
    ErrorCode,
    FundingError,
    LinkStateError,
    ReferralError,
)
from cashlink.models.link import (
    DistributionType,
    FingerprintRecord,
    Link,
    LinkState,
    RedemptionBreakdown,
    RedemptionRecord,
    Transfer,
)

__all__ = [
    "AmountOverflowError",
    "AuthorizationError",
    "CashLinkError",
    "ConfigurationError",
    "DedupError",
    "DistributionError",
    "ErrorCode",
    "FundingError",
    "LinkStateError",
    "ReferralError",
    "DistributionType",
    "FingerprintRecord",
    "Link",
    "LinkState",
    "RedemptionBreakdown",
    "RedemptionRecord",
    "Transfer",
]

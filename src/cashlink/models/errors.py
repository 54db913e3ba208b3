"""Error taxonomy for the cash link engine.

Every failure carries an ErrorCode so callers can branch on the exact
reason, and belongs to exactly one category class so callers can branch
on the kind of failure:

    AuthorizationError   wrong authority or pass key
    LinkStateError       operation invalid for the current lifecycle state
    AmountOverflowError  overflow/underflow in fee or distribution math
    FundingError         escrowed balance cannot cover amount + fees
    ConfigurationError   invalid creation parameters (also a ValueError)
    ReferralError        commission split exceeds 100% or has no referrer
    DistributionError    missing/invalid weight, weight budget exceeded, no seed
    DedupError           fingerprint or claimant already consumed

Errors are never retried by the engine. They surface verbatim.
"""

from __future__ import annotations

import enum


class ErrorCode(str, enum.Enum):
    """Stable identifiers for every failure the engine can report."""
    # Authorization
    INVALID_AUTHORITY_ID = "InvalidAuthorityId"
    INVALID_PASS_KEY = "InvalidPassKey"
    # State
    ACCOUNT_NOT_INITIALIZED = "AccountNotInitialized"
    ACCOUNT_ALREADY_CANCELED = "AccountAlreadyCanceled"
    ACCOUNT_ALREADY_REDEEMED = "AccountAlreadyRedeemed"
    ACCOUNT_ALREADY_CLOSED = "AccountAlreadyClosed"
    ACCOUNT_NOT_CLOSABLE = "AccountNotClosable"
    ACCOUNT_HAS_REDEMPTIONS = "AccountHasRedemptions"
    CANCEL_NOT_ALLOWED_AFTER_REDEMPTION = "CancelNotAllowedAfterRedemption"
    CASHLINK_EXPIRED = "CashlinkExpired"
    CASHLINK_NOT_EXPIRED = "CashlinkNotExpired"
    MAX_REDEMPTIONS_REACHED = "MaxRedemptionsReached"
    NO_REMAINING_AMOUNT = "NoRemainingAmount"
    LINK_NOT_FOUND = "LinkNotFound"
    LINK_ALREADY_EXISTS = "LinkAlreadyExists"
    INVALID_TRANSITION = "InvalidTransition"
    # Arithmetic
    OVERFLOW = "Overflow"
    # Funding
    INSUFFICIENT_SETTLEMENT_FUNDS = "InsufficientSettlementFunds"
    INVALID_MINT = "InvalidMint"
    ESCROW_NOT_EMPTY = "EscrowNotEmpty"
    # Configuration
    INVALID_AMOUNT = "InvalidAmount"
    INVALID_NUMBER_OF_REDEMPTIONS = "InvalidNumberOfRedemptions"
    INVALID_FEE_BPS = "InvalidFeeBps"
    MIN_AMOUNT_NOT_SET = "MinAmountNotSet"
    MIN_AMOUNT_MUST_BE_LESS_THAN_AMOUNT = "MinAmountMustBeLessThanAmount"
    INVALID_EXPIRY_IN_DAYS = "InvalidExpiryInDays"
    INVALID_DISTRIBUTION_TYPE = "InvalidDistributionType"
    # Referral
    INVALID_REFERRAL_FEES = "InvalidReferralFees"
    REFERRER_REQUIRED = "ReferrerRequired"
    # Distribution
    WEIGHT_NOT_PROVIDED = "WeightNotProvided"
    INVALID_WEIGHT = "InvalidWeight"
    TOTAL_WEIGHT_EXCEEDED = "TotalWeightExceeded"
    SEED_UNAVAILABLE = "SeedUnavailable"
    # Dedup
    FINGERPRINT_REQUIRED = "FingerprintRequired"
    FINGERPRINT_ALREADY_USED = "FingerprintAlreadyUsed"
    ALREADY_CLAIMED = "AlreadyClaimed"


class CashLinkError(Exception):
    """Base class for all engine failures."""

    def __init__(self, code: ErrorCode, message: str = "") -> None:
        self.code = code
        self.message = message or code.value
        super().__init__(f"{code.value}: {self.message}")


class AuthorizationError(CashLinkError):
    """Wrong signer, authority or pass key."""


class LinkStateError(CashLinkError):
    """Operation not valid for the link's lifecycle state."""


class AmountOverflowError(CashLinkError):
    """Checked arithmetic left the representable amount range."""

    def __init__(self, message: str = "") -> None:
        super().__init__(ErrorCode.OVERFLOW, message)


class FundingError(CashLinkError):
    """Escrowed or source balance cannot cover the transfer."""


class ConfigurationError(CashLinkError, ValueError):
    """Invalid link creation parameters."""


class ReferralError(CashLinkError):
    """Invalid referral commission split."""


class DistributionError(CashLinkError):
    """Missing or invalid distribution input."""


class DedupError(CashLinkError):
    """Fingerprint or claimant already consumed for this link."""

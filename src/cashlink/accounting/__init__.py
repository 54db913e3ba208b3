"""Redemption accounting — fees, distribution, ledger and the engine."""

from cashlink.accounting.distribution import DistributionQuote, DistributionStrategy
from cashlink.accounting.engine import EscrowRelease, RedemptionEngine
from cashlink.accounting.fees import FeeCalculator
from cashlink.accounting.ledger import EscrowLedger, ValueLedger

__all__ = [
    "DistributionQuote",
    "DistributionStrategy",
    "EscrowRelease",
    "RedemptionEngine",
    "FeeCalculator",
    "EscrowLedger",
    "ValueLedger",
]

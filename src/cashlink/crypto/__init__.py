"""Collaborator adapters — authority verification and randomness seeds."""

from cashlink.crypto.authority import (
    AuthorityVerifier,
    DirectAuthority,
    EthSignatureAuthority,
)
from cashlink.crypto.seed_source import (
    BlockhashSeedSource,
    FixedSeedSource,
    LocalSeedSource,
    SeedSource,
)

__all__ = [
    "AuthorityVerifier",
    "DirectAuthority",
    "EthSignatureAuthority",
    "BlockhashSeedSource",
    "FixedSeedSource",
    "LocalSeedSource",
    "SeedSource",
]

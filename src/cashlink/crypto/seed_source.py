"""Seed sources — where Random distributions draw their entropy.

The engine only needs an unsigned integer per draw. How that integer is
produced is pluggable:

- LocalSeedSource draws from the operating system CSPRNG.
- FixedSeedSource replays a fixed sequence (tests, reproducible demos).
- BlockhashSeedSource reads the latest finalized Ethereum block hash and
  combines it with wall-clock seconds, the way an on-chain program would
  mix a recent slot hash with the cluster clock.

The block-hash source is NOT cryptographically strong: a block producer
can bias the hash and the clock is public. It is kept for parity with
on-chain deployments, not for security.
"""

from __future__ import annotations

import secrets
import time
from typing import Any, Callable, Iterable, Optional, Protocol, runtime_checkable


U64_MAX = 2**64 - 1


@runtime_checkable
class SeedSource(Protocol):
    """Anything that yields an unsigned 64-bit seed per call."""

    def next_seed(self) -> int:
        ...


class LocalSeedSource:
    """OS-backed randomness via the secrets module."""

    def next_seed(self) -> int:
        return secrets.randbits(64)


class FixedSeedSource:
    """Replays the given seeds in order, cycling when exhausted.

    Usage:
        seeds = FixedSeedSource([7, 42])
        seeds.next_seed()  # 7
    """

    def __init__(self, seeds: Iterable[int]) -> None:
        self._seeds = [int(s) for s in seeds]
        if not self._seeds:
            raise ValueError("FixedSeedSource needs at least one seed")
        if any(s < 0 or s > U64_MAX for s in self._seeds):
            raise ValueError("Seeds must be unsigned 64-bit integers")
        self._index = 0

    def next_seed(self) -> int:
        seed = self._seeds[self._index % len(self._seeds)]
        self._index += 1
        return seed


def seed_from_block_hash(block_hash: bytes, unix_seconds: int) -> int:
    """First 8 hash bytes read little-endian, minus the clock, floored at 0."""
    if len(block_hash) < 8:
        raise ValueError(f"Block hash too short: {len(block_hash)} bytes")
    value = int.from_bytes(bytes(block_hash[:8]), "little")
    return max(value - int(unix_seconds), 0)


class BlockhashSeedSource:
    """Seeds from the latest finalized block of an Ethereum node.

    Either pass rpc_url (a Web3 HTTP client is built on first use) or an
    already-configured web3 object exposing eth.get_block().
    """

    def __init__(
        self,
        rpc_url: Optional[str] = None,
        web3: Any = None,
        block_identifier: str = "finalized",
        clock: Callable[[], float] = time.time,
    ) -> None:
        if rpc_url is None and web3 is None:
            raise ValueError("BlockhashSeedSource needs rpc_url or web3")
        self._rpc_url = rpc_url
        self._w3 = web3
        self._block_identifier = block_identifier
        self._clock = clock

    def _client(self) -> Any:
        if self._w3 is None:
            from web3 import Web3, HTTPProvider

            self._w3 = Web3(HTTPProvider(self._rpc_url))
        return self._w3

    def next_seed(self) -> int:
        block = self._client().eth.get_block(self._block_identifier)
        return seed_from_block_hash(block["hash"], int(self._clock()))

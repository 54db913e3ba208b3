"""Claim registry — write-once dedup markers and per-claimant records.

Two independent gates, both keyed per link:
- fingerprints: a normalized device/session token may redeem a link once.
- claimants: when a link tracks claimants, each recipient may claim once,
  and every claim leaves an immutable RedemptionRecord.

Markers are write-once. The only removal path is discard_*(), used by
the service to undo a marker written inside an operation that later
failed.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Tuple

from cashlink.models.errors import DedupError, ErrorCode
from cashlink.models.link import FingerprintRecord, RedemptionRecord


class ClaimRegistry:
    """Holds fingerprint markers and redemption records.

    Usage:
        claims = ClaimRegistry()
        claims.record_fingerprint("link_1", " Device-A ", now)
        claims.record_claim("link_1", "bob", 250, now)
    """

    def __init__(self) -> None:
        self._fingerprints: Dict[Tuple[str, str], FingerprintRecord] = {}
        self._claims: Dict[Tuple[str, str], RedemptionRecord] = {}

    def record_fingerprint(
        self, link_id: str, token: str, now: datetime,
    ) -> FingerprintRecord:
        normalized = FingerprintRecord.normalize(token)
        key = (link_id, normalized)
        if key in self._fingerprints:
            raise DedupError(
                ErrorCode.FINGERPRINT_ALREADY_USED,
                f"Fingerprint already used for link {link_id}",
            )
        record = FingerprintRecord(
            link_id=link_id, fingerprint=normalized, created_utc=now,
        )
        self._fingerprints[key] = record
        return record

    def has_fingerprint(self, link_id: str, token: str) -> bool:
        return (link_id, FingerprintRecord.normalize(token)) in self._fingerprints

    def discard_fingerprint(self, link_id: str, token: str) -> None:
        self._fingerprints.pop((link_id, FingerprintRecord.normalize(token)), None)

    def record_claim(
        self, link_id: str, claimant: str, amount: int, now: datetime,
    ) -> RedemptionRecord:
        key = (link_id, claimant)
        if key in self._claims:
            raise DedupError(
                ErrorCode.ALREADY_CLAIMED,
                f"{claimant} has already claimed link {link_id}",
            )
        record = RedemptionRecord(
            link_id=link_id, claimant=claimant, amount=amount, redeemed_utc=now,
        )
        self._claims[key] = record
        return record

    def has_claimed(self, link_id: str, claimant: str) -> bool:
        return (link_id, claimant) in self._claims

    def discard_claim(self, link_id: str, claimant: str) -> None:
        self._claims.pop((link_id, claimant), None)

    def redemptions(self, link_id: str) -> List[RedemptionRecord]:
        """Redemption records for a link, oldest first."""
        records = [r for (lid, _), r in self._claims.items() if lid == link_id]
        return sorted(records, key=lambda r: r.redeemed_utc)

    def fingerprint_count(self, link_id: str) -> int:
        return sum(1 for (lid, _) in self._fingerprints if lid == link_id)

    # ------------------------------------------------------------------
    # Persistence helpers
    # ------------------------------------------------------------------

    def to_dict(self) -> dict[str, Any]:
        return {
            "fingerprints": [
                {
                    "link_id": r.link_id,
                    "fingerprint": r.fingerprint,
                    "created_utc": r.created_utc.isoformat(),
                }
                for r in self._fingerprints.values()
            ],
            "claims": [
                {
                    "link_id": r.link_id,
                    "claimant": r.claimant,
                    "amount": r.amount,
                    "redeemed_utc": r.redeemed_utc.isoformat(),
                }
                for r in self._claims.values()
            ],
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ClaimRegistry:
        registry = cls()
        for row in data.get("fingerprints", []):
            record = FingerprintRecord(
                link_id=row["link_id"],
                fingerprint=row["fingerprint"],
                created_utc=datetime.fromisoformat(row["created_utc"]),
            )
            registry._fingerprints[(record.link_id, record.fingerprint)] = record
        for row in data.get("claims", []):
            record = RedemptionRecord(
                link_id=row["link_id"],
                claimant=row["claimant"],
                amount=int(row["amount"]),
                redeemed_utc=datetime.fromisoformat(row["redeemed_utc"]),
            )
            registry._claims[(record.link_id, record.claimant)] = record
        return registry

"""State store — JSON snapshot of links, claims and ledger balances.

One file, rewritten atomically (write to a temp file, then os.replace)
on every successful operation. The event log remains the audit record;
the store is the fast restart path.

Records carry schema_version. Loading a record written with a version
this code does not know fails closed.
"""

from __future__ import annotations

import json
import os
from dataclasses import asdict
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Optional

from cashlink.accounting.ledger import EscrowLedger
from cashlink.lifecycle.claims import ClaimRegistry
from cashlink.models.link import (
    LINK_SCHEMA_VERSION,
    DistributionType,
    Link,
    LinkState,
)


_TIMESTAMP_FIELDS = (
    "created_utc",
    "last_redeemed_utc",
    "redeemed_utc",
    "canceled_utc",
    "expired_utc",
    "closed_utc",
    "expires_utc",
)


def link_to_dict(link: Link) -> dict[str, Any]:
    data = asdict(link)
    data["state"] = link.state.value
    data["distribution_type"] = link.distribution_type.value
    for name in _TIMESTAMP_FIELDS:
        value = getattr(link, name)
        data[name] = value.isoformat() if value is not None else None
    return data


def link_from_dict(data: dict[str, Any]) -> Link:
    version = data.get("schema_version")
    if version != LINK_SCHEMA_VERSION:
        raise ValueError(
            f"Unsupported link schema_version {version!r} for "
            f"{data.get('link_id')}: expected {LINK_SCHEMA_VERSION}"
        )
    fields = dict(data)
    fields["state"] = LinkState(data["state"])
    fields["distribution_type"] = DistributionType(data["distribution_type"])
    for name in _TIMESTAMP_FIELDS:
        value = data.get(name)
        fields[name] = datetime.fromisoformat(value) if value else None
    return Link(**fields)


class StateStore:
    """File-backed snapshot of service state.

    Usage:
        store = StateStore(Path("data/state.json"))
        store.save(links, claims, ledger)
        links = store.load_links()
    """

    def __init__(self, path: Path) -> None:
        self._path = Path(path)
        self._cache: Optional[dict[str, Any]] = None

    @property
    def path(self) -> Path:
        return self._path

    def save(
        self,
        links: Dict[str, Link],
        claims: ClaimRegistry,
        ledger: EscrowLedger,
    ) -> None:
        """Write the whole snapshot atomically. Raises OSError on failure."""
        snapshot = {
            "schema_version": LINK_SCHEMA_VERSION,
            "links": [link_to_dict(link) for link in links.values()],
            "claims": claims.to_dict(),
            "ledger": ledger.to_dict(),
        }
        self._path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self._path.with_name(self._path.name + ".tmp")
        with tmp.open("w", encoding="utf-8") as f:
            json.dump(snapshot, f, indent=2, sort_keys=True, ensure_ascii=False)
            f.write("\n")
        os.replace(tmp, self._path)
        self._cache = snapshot

    def load_links(self) -> Dict[str, Link]:
        links = [link_from_dict(row) for row in self._read().get("links", [])]
        return {link.link_id: link for link in links}

    def load_claims(self) -> ClaimRegistry:
        return ClaimRegistry.from_dict(self._read().get("claims", {}))

    def load_ledger(self) -> EscrowLedger:
        return EscrowLedger.from_dict(self._read().get("ledger", {}))

    def _read(self) -> dict[str, Any]:
        if self._cache is not None:
            return self._cache
        if not self._path.exists():
            self._cache = {}
            return self._cache
        with self._path.open("r", encoding="utf-8") as f:
            data = json.load(f)
        version = data.get("schema_version")
        if version != LINK_SCHEMA_VERSION:
            raise ValueError(
                f"Unsupported state schema_version {version!r} in {self._path}: "
                f"expected {LINK_SCHEMA_VERSION}"
            )
        self._cache = data
        return data

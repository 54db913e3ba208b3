"""Value ledger — the settlement backend the accounting engine moves value through.

The engine never touches balances directly. It talks to a ValueLedger:
exact transfers between named accounts, per-link escrow sub-balances,
and an all-or-nothing transaction scope.

EscrowLedger is the in-memory implementation used by the service, the CLI
and the tests. Accounts are keyed by (account, mint); a mint of None is the
native value kind.
"""

from __future__ import annotations

from contextlib import contextmanager
from typing import Any, Dict, Iterator, List, Optional, Protocol, Tuple, runtime_checkable

from cashlink.models.errors import ErrorCode, FundingError
from cashlink.models.link import Transfer


NATIVE_MINT = "native"


def escrow_account(link_id: str) -> str:
    """Account name of a link's escrow sub-balance."""
    return f"vault:{link_id}"


def storage_account(link_id: str) -> str:
    """Account name holding a link's storage deposit."""
    return f"link:{link_id}"


@runtime_checkable
class ValueLedger(Protocol):
    """Contract for any settlement backend.

    Transfers are exact: a transfer either moves the full amount or
    fails with InsufficientSettlementFunds and leaves balances untouched.
    """

    def balance(self, account: str, mint: Optional[str] = None) -> int:
        ...

    def account_exists(self, account: str, mint: Optional[str] = None) -> bool:
        ...

    def credit(self, account: str, amount: int, mint: Optional[str] = None) -> None:
        ...

    def transfer(
        self,
        source: str,
        destination: str,
        amount: int,
        mint: Optional[str] = None,
        memo: str = "",
    ) -> Transfer:
        ...

    def open_escrow(self, account: str, mint: Optional[str] = None) -> None:
        ...

    def close_escrow(self, account: str, mint: Optional[str] = None) -> None:
        ...

    def transaction(self) -> Any:
        ...


class EscrowLedger:
    """In-memory ledger with snapshot-based transactions.

    Usage:
        ledger = EscrowLedger()
        ledger.credit("alice", 10_000)
        with ledger.transaction():
            ledger.open_escrow("vault:link_1")
            ledger.transfer("alice", "vault:link_1", 10_000)
    """

    def __init__(self) -> None:
        self._balances: Dict[Tuple[str, str], int] = {}
        self._escrows: set[Tuple[str, str]] = set()
        self._journal: List[Transfer] = []
        self._depth = 0

    @staticmethod
    def _key(account: str, mint: Optional[str]) -> Tuple[str, str]:
        return (account, mint or NATIVE_MINT)

    def balance(self, account: str, mint: Optional[str] = None) -> int:
        return self._balances.get(self._key(account, mint), 0)

    def account_exists(self, account: str, mint: Optional[str] = None) -> bool:
        return self._key(account, mint) in self._balances

    def credit(self, account: str, amount: int, mint: Optional[str] = None) -> None:
        """Bring external value into the ledger."""
        if amount <= 0:
            raise ValueError(f"Credit amount must be positive, got {amount}")
        key = self._key(account, mint)
        self._balances[key] = self._balances.get(key, 0) + amount

    def transfer(
        self,
        source: str,
        destination: str,
        amount: int,
        mint: Optional[str] = None,
        memo: str = "",
    ) -> Transfer:
        """Move exactly `amount` from source to destination."""
        if amount < 0:
            raise ValueError(f"Transfer amount cannot be negative, got {amount}")
        src = self._key(source, mint)
        dst = self._key(destination, mint)
        available = self._balances.get(src, 0)
        if available < amount:
            raise FundingError(
                ErrorCode.INSUFFICIENT_SETTLEMENT_FUNDS,
                f"{source} holds {available}, needs {amount}",
            )
        self._balances[src] = available - amount
        self._balances[dst] = self._balances.get(dst, 0) + amount
        record = Transfer(
            source=source,
            destination=destination,
            amount=amount,
            mint=mint,
            memo=memo,
        )
        self._journal.append(record)
        return record

    def open_escrow(self, account: str, mint: Optional[str] = None) -> None:
        key = self._key(account, mint)
        if key in self._escrows:
            raise ValueError(f"Escrow already open: {account}")
        self._escrows.add(key)
        self._balances.setdefault(key, 0)

    def close_escrow(self, account: str, mint: Optional[str] = None) -> None:
        """Close an escrow sub-balance. It must already be empty."""
        key = self._key(account, mint)
        if key not in self._escrows:
            raise ValueError(f"Escrow not open: {account}")
        remaining = self._balances.get(key, 0)
        if remaining != 0:
            raise FundingError(
                ErrorCode.ESCROW_NOT_EMPTY,
                f"Escrow {account} still holds {remaining}",
            )
        self._escrows.discard(key)
        del self._balances[key]

    def escrow_open(self, account: str, mint: Optional[str] = None) -> bool:
        return self._key(account, mint) in self._escrows

    @contextmanager
    def transaction(self) -> Iterator[EscrowLedger]:
        """All-or-nothing scope: any exception restores the prior balances.

        Nested scopes join the outermost one.
        """
        if self._depth > 0:
            self._depth += 1
            try:
                yield self
            finally:
                self._depth -= 1
            return

        snapshot = (
            dict(self._balances),
            set(self._escrows),
            len(self._journal),
        )
        self._depth = 1
        try:
            yield self
        except BaseException:
            self._balances, self._escrows, journal_len = snapshot
            del self._journal[journal_len:]
            raise
        finally:
            self._depth = 0

    def journal(self) -> List[Transfer]:
        return list(self._journal)

    def total_supply(self, mint: Optional[str] = None) -> int:
        """Sum of all balances for a mint. Transfers never change it."""
        wanted = mint or NATIVE_MINT
        return sum(v for (_, m), v in self._balances.items() if m == wanted)

    # ------------------------------------------------------------------
    # Persistence helpers
    # ------------------------------------------------------------------

    def to_dict(self) -> dict[str, Any]:
        return {
            "balances": [
                {"account": a, "mint": m, "amount": v}
                for (a, m), v in sorted(self._balances.items())
            ],
            "escrows": [
                {"account": a, "mint": m} for (a, m) in sorted(self._escrows)
            ],
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> EscrowLedger:
        ledger = cls()
        for row in data.get("balances", []):
            ledger._balances[(row["account"], row["mint"])] = int(row["amount"])
        for row in data.get("escrows", []):
            ledger._escrows.add((row["account"], row["mint"]))
        return ledger

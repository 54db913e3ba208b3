"""Authority verification — turns a claimed caller into a trusted identity.

The engine compares the resolved identity against Link.authority. It
never inspects proofs itself; a verifier does that first:

- DirectAuthority trusts the host (the caller already authenticated).
- EthSignatureAuthority recovers the signer of an EIP-191 personal
  message with eth_account and requires it to match the claimed address
  ignoring case. The claimed form is returned so it compares equal to
  the authority stored on the link.
"""

from __future__ import annotations

from typing import Optional, Protocol, runtime_checkable

from cashlink.models.errors import AuthorizationError, ErrorCode


def authority_message(action: str, link_id: str, nonce: int) -> str:
    """Canonical message an authority signs for one operation.

    nonce is the link's total_redemptions at signing time, so a signature
    for one redemption cannot be replayed for the next.
    """
    return f"cashlink:{action}:{link_id}:{nonce}"


@runtime_checkable
class AuthorityVerifier(Protocol):
    """Resolves a claimed identity, raising AuthorizationError on bad proof."""

    def resolve(
        self, claimed: str, proof: Optional[str], message: str,
    ) -> str:
        ...


class DirectAuthority:
    """Trusts the claimed identity as-is."""

    def resolve(
        self, claimed: str, proof: Optional[str], message: str,
    ) -> str:
        return claimed


class EthSignatureAuthority:
    """Verifies an EIP-191 signature over the operation message.

    Usage:
        verifier = EthSignatureAuthority()
        identity = verifier.resolve(address, signature_hex, message)
    """

    def resolve(
        self, claimed: str, proof: Optional[str], message: str,
    ) -> str:
        from eth_account import Account
        from eth_account.messages import encode_defunct

        if not proof:
            raise AuthorizationError(
                ErrorCode.INVALID_AUTHORITY_ID,
                f"No signature supplied for {claimed}",
            )
        try:
            signer = Account.recover_message(
                encode_defunct(text=message), signature=proof,
            )
        except Exception as exc:
            raise AuthorizationError(
                ErrorCode.INVALID_AUTHORITY_ID,
                f"Unreadable signature for {claimed}: {exc}",
            ) from exc
        if signer.lower() != claimed.lower():
            raise AuthorizationError(
                ErrorCode.INVALID_AUTHORITY_ID,
                f"Signature was made by {signer}, not {claimed}",
            )
        return claimed

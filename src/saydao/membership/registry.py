"""Membership registry — who belongs to the DAO and under which identifier.

Membership is by invitation. The inviter signs the identifier it assigns
(two bytes, big-endian, as an EIP-191 personal message) and hands the
signature to the invitee, who then calls ``join`` from its own address.
The registry recovers the signer and admits the caller only if the
signer is the inviter.

Identifiers are small integers (uint16), not addresses. They are what
meeting bitmaps are indexed by, so each identifier maps to exactly one
address and each address holds at most one identifier, for life.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Optional, Union

from eth_account import Account
from eth_account.messages import encode_defunct

from saydao.errors import AlreadyMember, InvalidSignature, NotAMember
from saydao.meeting.bitmap import MAX_MEMBER_ID


SignaturePart = Union[int, bytes, str]


@dataclass(frozen=True)
class Invite:
    """A signed invitation for one identifier."""
    member_id: int
    v: int
    r: int
    s: int

    @property
    def r_hex(self) -> str:
        return "0x" + self.r.to_bytes(32, "big").hex()

    @property
    def s_hex(self) -> str:
        return "0x" + self.s.to_bytes(32, "big").hex()


def invite_message(member_id: int):
    """Build the signable message for an identifier."""
    if not 0 <= member_id <= MAX_MEMBER_ID:
        raise ValueError(f"Member id must fit in 16 bits, got {member_id}")
    return encode_defunct(primitive=member_id.to_bytes(2, "big"))


def sign_invite(private_key: str, member_id: int) -> Invite:
    """Sign an invitation for ``member_id`` with the inviter's key."""
    signed = Account.sign_message(invite_message(member_id), private_key=private_key)
    return Invite(member_id=member_id, v=signed.v, r=signed.r, s=signed.s)


def _as_int(part: SignaturePart) -> int:
    if isinstance(part, int):
        return part
    if isinstance(part, bytes):
        return int.from_bytes(part, "big")
    return int(part, 16) if part.lower().startswith("0x") else int(part)


def recover_inviter(member_id: int, v: SignaturePart, r: SignaturePart,
                    s: SignaturePart) -> str:
    """Return the address that signed the invitation for ``member_id``.

    Raises:
        InvalidSignature: If the signature components cannot be recovered.
    """
    try:
        return Account.recover_message(
            invite_message(member_id), vrs=(_as_int(v), _as_int(r), _as_int(s)),
        )
    except Exception as exc:
        raise InvalidSignature(f"Malformed invite signature: {exc}") from exc


class MembershipRegistry:
    """Address <-> identifier registry gated by inviter signatures.

    Usage:
        registry = MembershipRegistry(inviter="0xAlice...")
        invite = sign_invite(alice_key, 2)
        registry.join("0xBob...", 2, invite.v, invite.r, invite.s)
        registry.is_member(2)
    """

    def __init__(self, inviter: str) -> None:
        self._inviter = inviter.lower()
        self._address_by_id: dict[int, str] = {}
        self._id_by_address: dict[str, int] = {}

    @property
    def inviter(self) -> str:
        return self._inviter

    @property
    def member_count(self) -> int:
        return len(self._address_by_id)

    def check_join(self, caller: str, member_id: int, v: SignaturePart,
                   r: SignaturePart, s: SignaturePart) -> None:
        """Validate a join without registering anything.

        Raises:
            InvalidSignature: Signer is not the inviter.
            AlreadyMember: Identifier or caller address already registered.
        """
        if not 0 <= member_id <= MAX_MEMBER_ID:
            raise InvalidSignature(f"Member id out of range: {member_id}")
        signer = recover_inviter(member_id, v, r, s)
        if signer.lower() != self._inviter:
            raise InvalidSignature(
                f"Invite for id {member_id} was not signed by the inviter"
            )
        if member_id in self._address_by_id:
            raise AlreadyMember(f"Member id {member_id} is already taken")
        if caller.lower() in self._id_by_address:
            raise AlreadyMember(
                f"Address {caller} already joined as member "
                f"{self._id_by_address[caller.lower()]}"
            )

    def join(self, caller: str, member_id: int, v: SignaturePart,
             r: SignaturePart, s: SignaturePart) -> int:
        """Register ``caller`` under ``member_id``. Returns the identifier."""
        self.check_join(caller, member_id, v, r, s)
        self._address_by_id[member_id] = caller.lower()
        self._id_by_address[caller.lower()] = member_id
        return member_id

    def is_member(self, member_id: int) -> bool:
        return member_id in self._address_by_id

    def member_id_of(self, address: str) -> Optional[int]:
        return self._id_by_address.get(address.lower())

    def require_member(self, address: str) -> int:
        """Identifier of ``address``; NotAMember if it never joined."""
        member_id = self.member_id_of(address)
        if member_id is None:
            raise NotAMember(f"Address {address} is not a member")
        return member_id

    def address_of(self, member_id: int) -> Optional[str]:
        return self._address_by_id.get(member_id)

    def member_ids(self) -> list[int]:
        return sorted(self._address_by_id)

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def to_records(self) -> dict[str, Any]:
        return {
            "inviter": self._inviter,
            "members": {str(k): v for k, v in sorted(self._address_by_id.items())},
        }

    @classmethod
    def from_records(cls, data: dict[str, Any]) -> MembershipRegistry:
        registry = cls(data["inviter"])
        for member_id, address in data.get("members", {}).items():
            registry._address_by_id[int(member_id)] = address
            registry._id_by_address[address] = int(member_id)
        return registry

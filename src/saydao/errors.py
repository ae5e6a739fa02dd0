"""Typed failures raised by the SayDAO engines.

Every precondition violation maps to exactly one of these kinds. They all
derive from ValueError so callers that only care about "rejected or not"
can keep catching ValueError, as the rest of the codebase does.

The service layer turns them into a failed ServiceResult whose
``error_kind`` is the class name.
"""

from __future__ import annotations


class SayDAOError(ValueError):
    """Base class for every rejected SayDAO operation."""

    @property
    def kind(self) -> str:
        return type(self).__name__


# Core kinds

class NotAMember(SayDAOError):
    """Caller (or a named identifier) has not joined the DAO."""


class NotSupervisor(SayDAOError):
    """Caller is not the supervisor of the meeting."""


class InvalidWindow(SayDAOError):
    """Voting window or meeting window is malformed or already past."""


class AlreadyVoted(SayDAOError):
    """Member has already cast a ballot on this poll."""


class VotingClosed(SayDAOError):
    """Ballot submitted outside the poll's voting window."""


class TooEarly(SayDAOError):
    """Participants submitted before the meeting ended."""


class AlreadySealed(SayDAOError):
    """Meeting participant list is sealed."""


class NotSealed(SayDAOError):
    """Distribution requested before the participant list was sealed."""


# Supplementary kinds

class InvalidSignature(SayDAOError):
    """Invite signature was not produced by the inviter."""


class AlreadyMember(SayDAOError):
    """Identifier or address is already registered."""


class UnknownPoll(SayDAOError):
    """No poll with this id."""


class UnknownMeeting(SayDAOError):
    """No meeting with this id."""


class InvalidOption(SayDAOError):
    """Option index or option count out of range."""


class InvalidBitmap(SayDAOError):
    """Cluster index or bitmap value out of range."""


class InvalidBatch(SayDAOError):
    """Distribution batch size is not positive."""


class InvalidContentId(SayDAOError):
    """Content identifier is not a 32-byte hex string."""


# Storage

class AuditFailure(SayDAOError):
    """State file or audit log could not be written; the call was undone."""

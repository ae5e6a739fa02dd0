"""Audit trail — a hash-linked, append-only record of DAO state changes.

Every successful mutation (a member joining, a poll or meeting poll being
created, a ballot, a participant update, sealing, a distribution batch)
adds one record. Records are numbered from 1 and stamped with the chain
time the service saw, not the wall clock, so the trail lines up with the
ledger it mirrors.

Each record's hash covers its own fields and the previous record's hash.
Editing, dropping, reordering or replaying a line breaks the chain, and
the log refuses to load.
"""

from __future__ import annotations

import enum
import hashlib
import json
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Optional


ROOT_HASH = "sha256:" + "0" * 64


class EventKind(str, enum.Enum):
    """Classification of DAO events."""
    MEMBER_JOINED = "member_joined"
    POLL_CREATED = "poll_created"
    MEETING_POLL_CREATED = "meeting_poll_created"
    VOTE_CAST = "vote_cast"
    PARTICIPANTS_UPDATED = "participants_updated"
    PARTICIPANTS_SEALED = "participants_sealed"
    MEETING_TOKENS_DISTRIBUTED = "meeting_tokens_distributed"


@dataclass(frozen=True)
class EventRecord:
    """One link of the audit chain."""
    sequence: int
    event_kind: EventKind
    chain_time: int
    actor: str  # caller address
    payload: dict[str, Any]
    prev_hash: str
    event_hash: str

    @property
    def event_id(self) -> str:
        return f"evt_{self.sequence:08d}"

    @staticmethod
    def digest(
        sequence: int,
        event_kind: EventKind,
        chain_time: int,
        actor: str,
        payload: dict[str, Any],
        prev_hash: str,
    ) -> str:
        body = json.dumps(
            [sequence, event_kind.value, chain_time, actor, payload, prev_hash],
            sort_keys=True,
            separators=(",", ":"),
        ).encode("utf-8")
        return "sha256:" + hashlib.sha256(body).hexdigest()

    def to_dict(self) -> dict[str, Any]:
        return {
            "sequence": self.sequence,
            "kind": self.event_kind.value,
            "chain_time": self.chain_time,
            "actor": self.actor,
            "payload": self.payload,
            "prev_hash": self.prev_hash,
            "hash": self.event_hash,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> EventRecord:
        return cls(
            sequence=int(data["sequence"]),
            event_kind=EventKind(data["kind"]),
            chain_time=int(data["chain_time"]),
            actor=data["actor"],
            payload=data["payload"],
            prev_hash=data["prev_hash"],
            event_hash=data["hash"],
        )


class EventLog:
    """Hash-linked audit log, optionally mirrored to a JSONL file.

    Usage:
        log = EventLog(Path("data/events.jsonl"))
        log.record(EventKind.VOTE_CAST, "0xBob...", {"poll_id": 0}, chain_time)
        log.head_hash  # commits to the whole history
    """

    def __init__(self, storage_path: Optional[Path] = None) -> None:
        self._storage_path = Path(storage_path) if storage_path else None
        self._events: list[EventRecord] = []

        if self._storage_path is not None and self._storage_path.exists():
            with self._storage_path.open("r", encoding="utf-8") as f:
                for line_num, line in enumerate(f, 1):
                    if line.strip():
                        self._link(EventRecord.from_dict(json.loads(line)), line_num)

    @property
    def count(self) -> int:
        return len(self._events)

    @property
    def head_hash(self) -> str:
        return self._events[-1].event_hash if self._events else ROOT_HASH

    @property
    def last_event(self) -> Optional[EventRecord]:
        return self._events[-1] if self._events else None

    def events(self, kind: Optional[EventKind] = None) -> list[EventRecord]:
        """Return records in order, optionally filtered by kind."""
        return [e for e in self._events if kind is None or e.event_kind == kind]

    def record(
        self,
        kind: EventKind,
        actor: str,
        payload: dict[str, Any],
        chain_time: int,
    ) -> EventRecord:
        """Extend the chain by one record. The file is written first.

        Raises:
            OSError: The record could not be written; nothing was added.
        """
        sequence = self.count + 1
        prev_hash = self.head_hash
        event = EventRecord(
            sequence=sequence,
            event_kind=kind,
            chain_time=chain_time,
            actor=actor,
            payload=payload,
            prev_hash=prev_hash,
            event_hash=EventRecord.digest(
                sequence, kind, chain_time, actor, payload, prev_hash,
            ),
        )
        if self._storage_path is not None:
            line = json.dumps(event.to_dict(), sort_keys=True)
            with self._storage_path.open("a", encoding="utf-8") as f:
                f.write(line + "\n")
        self._events.append(event)
        return event

    def _link(self, event: EventRecord, line_num: int) -> None:
        if event.sequence != self.count + 1:
            raise ValueError(
                f"Broken audit chain (line {line_num}): expected record "
                f"{self.count + 1}, found {event.sequence}"
            )
        if event.prev_hash != self.head_hash:
            raise ValueError(
                f"Broken audit chain (line {line_num}): record {event.sequence} "
                f"does not follow {self.head_hash}"
            )
        expected = EventRecord.digest(
            event.sequence, event.event_kind, event.chain_time,
            event.actor, event.payload, event.prev_hash,
        )
        if event.event_hash != expected:
            raise ValueError(
                f"Tampered audit record (line {line_num}): {event.event_id}"
            )
        self._events.append(event)

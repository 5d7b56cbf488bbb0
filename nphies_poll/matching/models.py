"""Data models for match outcomes."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field

from nphies_poll.db.models.enums import MatchStrategy, RecordTable


class MatchCandidate(BaseModel):
    """A business record a message might belong to."""

    model_config = ConfigDict(frozen=True)

    table: RecordTable
    record_id: int


class MatchOutcome(BaseModel):
    """
    Result of matching one message.

    A matched outcome with `record_id=None` means the record does not exist
    yet and the reconciler may create it.
    """

    matched: bool = False
    table: RecordTable | None = None
    record_id: int | None = None
    strategy: MatchStrategy | None = None
    reason: str | None = Field(default=None, description="Why the message stayed unmatched")
    candidate_count: int = 0

    @property
    def creates_record(self) -> bool:
        return self.matched and self.record_id is None

    @classmethod
    def unmatched(cls, reason: str, candidate_count: int = 0) -> "MatchOutcome":
        return cls(matched=False, reason=reason, candidate_count=candidate_count)

    @classmethod
    def found(cls, candidate: MatchCandidate, strategy: MatchStrategy) -> "MatchOutcome":
        return cls(
            matched=True,
            table=candidate.table,
            record_id=candidate.record_id,
            strategy=strategy,
            candidate_count=1,
        )

"""Configuration for the matcher.

Strategy order:
---------------
1. direct_correlation  : response identifier == outbound MessageHeader id
2. business_identifier : request / about identifiers in the payload
3. heuristic           : patient + provider + date window

The first strategy yielding exactly one candidate wins. More than one
candidate at any step ends matching as unmatched.
"""

from __future__ import annotations

from pydantic import BaseModel, Field

from nphies_poll.db.models.enums import RecordTable


class MatchingConfig(BaseModel):
    """Configuration for the matcher and the creation policy."""

    heuristic_window_days: int = Field(
        default=30, ge=0, le=365, description="Days either side of the payload date"
    )
    max_heuristic_candidates: int = Field(
        default=10, ge=2, le=100, description="Upper bound on heuristic candidates fetched per table"
    )
    identifier_candidate_limit: int = Field(
        default=2, ge=2, description="Rows fetched per table by exact lookups (2 detects ambiguity)"
    )
    creatable_tables: set[RecordTable] = Field(
        default_factory=lambda: {RecordTable.ADVANCED_AUTHORIZATIONS},
        description="Tables payer-initiated messages may create records in",
    )
    advanced_authorization_profile: str = Field(
        default="advanced-authorization",
        description="meta.profile fragment marking a payer-initiated authorization",
    )

"""Matcher: resolves a classified message to at most one business record."""

from __future__ import annotations

import logging

from nphies_poll.classification.classifier import ClassifiedMessage
from nphies_poll.db.models.enums import MatchStrategy, MessageType, RecordTable
from nphies_poll.db.unit_of_work import UnitOfWork
from nphies_poll.matching.config import MatchingConfig
from nphies_poll.matching.identifiers import is_advanced_authorization, own_identifiers
from nphies_poll.matching.models import MatchCandidate, MatchOutcome
from nphies_poll.matching.strategies import Strategy, default_strategies

logger = logging.getLogger(__name__)


class Matcher:
    """
    Tries each strategy in priority order.

    - exactly one candidate: matched with that strategy
    - several candidates: unmatched as ambiguous, later strategies are not tried
    - no candidates anywhere: payer-initiated creation if policy allows,
      otherwise unmatched
    """

    def __init__(
        self,
        config: MatchingConfig | None = None,
        strategies: list[Strategy] | None = None,
    ):
        self.config = config or MatchingConfig()
        self.strategies = strategies or default_strategies(self.config)

    async def match(self, uow: UnitOfWork, message: ClassifiedMessage) -> MatchOutcome:
        """
        Match one message against the business tables.

        Args:
            uow: Open unit of work used for read-only candidate lookups
            message: Classified message

        Returns:
            Match outcome
        """
        for strategy in self.strategies:
            found = await strategy.find(uow, message)
            if found is None:
                continue

            candidates = _dedupe(found)
            if len(candidates) == 1:
                logger.info(
                    f"[MATCH] {message.resource_type} matched "
                    f"{candidates[0].table.value}#{candidates[0].record_id} via {strategy.name.value}"
                )
                return MatchOutcome.found(candidates[0], strategy.name)
            if len(candidates) > 1:
                logger.info(
                    f"[MATCH] {message.resource_type} ambiguous under {strategy.name.value}: "
                    f"{len(candidates)} candidates"
                )
                return MatchOutcome.unmatched(
                    f"ambiguous: {len(candidates)} candidates via {strategy.name.value}",
                    candidate_count=len(candidates),
                )

        if self._may_create(message):
            return MatchOutcome(
                matched=True,
                table=RecordTable.ADVANCED_AUTHORIZATIONS,
                record_id=None,
                strategy=MatchStrategy.PAYER_INITIATED,
            )

        return MatchOutcome.unmatched("no matching record")

    def _may_create(self, message: ClassifiedMessage) -> bool:
        """Only unsolicited payer-initiated authorizations with an identifier create records."""
        return (
            RecordTable.ADVANCED_AUTHORIZATIONS in self.config.creatable_tables
            and message.message_type == MessageType.UNSOLICITED
            and message.resource_type == "ClaimResponse"
            and is_advanced_authorization(message.payload, self.config.advanced_authorization_profile)
            and bool(own_identifiers(message.payload))
        )


def _dedupe(candidates: list[MatchCandidate]) -> list[MatchCandidate]:
    seen: dict[tuple[RecordTable, int], MatchCandidate] = {}
    for candidate in candidates:
        seen.setdefault((candidate.table, candidate.record_id), candidate)
    return list(seen.values())

"""Match strategies, tried in priority order by the Matcher.

Each strategy returns the candidate records it can see for a message, or
None when it does not apply to that message at all.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import timedelta

from nphies_poll.classification.classifier import ClassifiedMessage
from nphies_poll.db.models.enums import MatchStrategy, RecordTable
from nphies_poll.db.unit_of_work import UnitOfWork
from nphies_poll.matching.config import MatchingConfig
from nphies_poll.matching.identifiers import (
    TARGET_TABLES,
    counterparts,
    is_advanced_authorization,
    own_identifiers,
    request_identifiers,
)
from nphies_poll.matching.models import MatchCandidate


class Strategy(ABC):
    """Base class for match strategies."""

    name: MatchStrategy

    def __init__(self, config: MatchingConfig):
        self.config = config

    @abstractmethod
    async def find(
        self, uow: UnitOfWork, message: ClassifiedMessage
    ) -> list[MatchCandidate] | None:
        """Candidates for `message`, or None if the strategy does not apply."""

    @staticmethod
    def _candidates(table: RecordTable, records) -> list[MatchCandidate]:
        return [MatchCandidate(table=table, record_id=record.id) for record in records]


class DirectCorrelationStrategy(Strategy):
    """Response identifier equals the MessageHeader id of a submitted request."""

    name = MatchStrategy.DIRECT_CORRELATION
    tables = (RecordTable.PRIOR_AUTHORIZATIONS, RecordTable.CLAIM_SUBMISSIONS)

    async def find(self, uow, message):
        if not message.is_solicited or not message.response_identifier:
            return None

        found: list[MatchCandidate] = []
        for table in self.tables:
            records = await uow.records(table).find_by_outbound_header(
                message.response_identifier, limit=self.config.identifier_candidate_limit
            )
            found.extend(self._candidates(table, records))
        return found


class BusinessIdentifierStrategy(Strategy):
    """Identifiers in the payload looked up against business identifier columns."""

    name = MatchStrategy.BUSINESS_IDENTIFIER

    async def find(self, uow, message):
        payload = message.payload
        values = request_identifiers(message.resource_type, payload)
        lookups: list[tuple[RecordTable, list[str]]] = [
            (table, values)
            for table in TARGET_TABLES.get(message.resource_type, ())
            if values
        ]

        # Payer-initiated authorizations are keyed by their own identifier.
        if message.resource_type == "ClaimResponse" and is_advanced_authorization(
            payload, self.config.advanced_authorization_profile
        ):
            own = own_identifiers(payload)
            if own:
                lookups.append((RecordTable.ADVANCED_AUTHORIZATIONS, own))

        if not lookups:
            return None

        found: list[MatchCandidate] = []
        for table, table_values in lookups:
            records = await uow.records(table).find_by_identifiers(
                table_values, limit=self.config.identifier_candidate_limit
            )
            found.extend(self._candidates(table, records))
        return found


class HeuristicStrategy(Strategy):
    """Patient + provider + date window, with a bounded candidate set."""

    name = MatchStrategy.HEURISTIC
    searchable = (RecordTable.PRIOR_AUTHORIZATIONS, RecordTable.CLAIM_SUBMISSIONS)

    async def find(self, uow, message):
        parties = counterparts(message.payload)
        tables = [t for t in TARGET_TABLES.get(message.resource_type, ()) if t in self.searchable]
        if not tables or not parties.complete:
            return None

        window = timedelta(days=self.config.heuristic_window_days)
        found: list[MatchCandidate] = []
        for table in tables:
            records = await uow.records(table).find_by_counterparts(
                parties.patient,
                parties.provider,
                parties.on - window,
                parties.on + window,
                limit=self.config.max_heuristic_candidates,
            )
            found.extend(self._candidates(table, records))
        return found


def default_strategies(config: MatchingConfig) -> list[Strategy]:
    """Strategies in priority order."""
    return [
        DirectCorrelationStrategy(config),
        BusinessIdentifierStrategy(config),
        HeuristicStrategy(config),
    ]

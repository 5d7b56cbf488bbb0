"""Repositories for the business tables the engine reconciles against."""

from datetime import date
from typing import List, Optional, Sequence, Tuple

from sqlalchemy import or_, select

from nphies_poll.db.models.advanced_authorization import AdvancedAuthorization
from nphies_poll.db.models.claim_submission import ClaimSubmission
from nphies_poll.db.models.communication import NphiesCommunication
from nphies_poll.db.models.prior_authorization import PriorAuthorization
from nphies_poll.db.repository import BaseRepository, ModelType


class RecordRepository(BaseRepository[ModelType]):
    """
    Candidate lookups shared by the business tables.

    Every lookup takes a `limit` so callers can bound the candidate set and
    detect ambiguity (more than one row) without loading whole tables.
    """

    identifier_columns: Tuple[str, ...] = ()

    async def find_by_outbound_header(self, header_id: str, limit: int = 2) -> List[ModelType]:
        """Records whose submitted request carried this MessageHeader id."""
        column = getattr(self.model, "outbound_message_header_id", None)
        if column is None:
            return []
        result = await self.session.execute(
            select(self.model).where(column == header_id).order_by(self.model.id).limit(limit)  # type: ignore
        )
        return list(result.scalars().all())

    async def find_by_identifiers(self, values: Sequence[str], limit: int = 2) -> List[ModelType]:
        """
        Records whose business identifier columns contain any of `values`.

        Args:
            values: Identifier values extracted from a payload
            limit: Maximum rows to return

        Returns:
            Matching records, ordered by ID
        """
        if not values or not self.identifier_columns:
            return []
        clauses = [getattr(self.model, name).in_(list(values)) for name in self.identifier_columns]
        result = await self.session.execute(
            select(self.model).where(or_(*clauses)).order_by(self.model.id).limit(limit)  # type: ignore
        )
        return list(result.scalars().all())

    async def find_by_counterparts(
        self,
        patient_identifier: str,
        provider_identifier: str,
        start: date,
        end: date,
        limit: int,
    ) -> List[ModelType]:
        """Records for a patient/provider pair with a service date inside [start, end]."""
        model = self.model
        if not hasattr(model, "service_date"):
            return []
        result = await self.session.execute(
            select(model)
            .where(
                model.patient_identifier == patient_identifier,  # type: ignore
                model.provider_identifier == provider_identifier,  # type: ignore
                model.service_date >= start,  # type: ignore
                model.service_date <= end,  # type: ignore
            )
            .order_by(model.id)  # type: ignore
            .limit(limit)
        )
        return list(result.scalars().all())


class PriorAuthorizationRepository(RecordRepository[PriorAuthorization]):
    identifier_columns = ("request_number", "nphies_request_id")


class ClaimSubmissionRepository(RecordRepository[ClaimSubmission]):
    identifier_columns = ("claim_number", "nphies_claim_id", "nphies_request_id")


class AdvancedAuthorizationRepository(RecordRepository[AdvancedAuthorization]):
    identifier_columns = ("identifier_value",)

    async def get_by_identifier_value(self, value: str) -> Optional[AdvancedAuthorization]:
        return await self.get_by_field("identifier_value", value)


class CommunicationRepository(RecordRepository[NphiesCommunication]):
    identifier_columns = ("communication_id",)

    async def get_by_communication_id(self, communication_id: str) -> Optional[NphiesCommunication]:
        return await self.get_by_field("communication_id", communication_id)

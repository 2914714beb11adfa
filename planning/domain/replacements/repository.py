"""Replacement repository - Durable store for replacement requests"""

import logging
from typing import List, Optional, Set

from sqlalchemy import or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from ...exceptions import DuplicateReplacementError, StaleReplacementError
from ...models import ACTIVE_REPLACEMENT_STATUSES, ReplacementRequest, ReplacementStatus

logger = logging.getLogger(__name__)

HISTORY_ROLES = ("all", "original", "replacement")


class ReplacementRepository:
    """
    Repository for replacement requests.

    Creation relies on the partial unique index over active requests, so two
    concurrent creators for one booking cannot both succeed. Updates rely on
    the version column, so a writer holding an outdated copy fails instead
    of overwriting.
    """

    def __init__(self, db: Session):
        self.db = db

    def create(self, request: ReplacementRequest) -> ReplacementRequest:
        self.db.add(request)
        try:
            self.db.commit()
        except IntegrityError as e:
            self.db.rollback()
            logger.warning(f"⚠️ Active replacement already exists for booking {request.booking_id}")
            raise DuplicateReplacementError(
                f"An active replacement request already exists for booking {request.booking_id}"
            ) from e

        self.db.refresh(request)
        return request

    def find(self, request_id: int) -> Optional[ReplacementRequest]:
        return self.db.query(ReplacementRequest).filter(ReplacementRequest.id == request_id).first()

    def find_active_for_booking(self, booking_id: int) -> Optional[ReplacementRequest]:
        return (
            self.db.query(ReplacementRequest)
            .filter(
                ReplacementRequest.booking_id == booking_id,
                ReplacementRequest.status.in_(ACTIVE_REPLACEMENT_STATUSES),
            )
            .first()
        )

    def update(self, request: ReplacementRequest) -> ReplacementRequest:
        """Commit pending changes of the request (and anything flushed with it)"""
        try:
            self.db.commit()
        except StaleDataError as e:
            self.db.rollback()
            logger.warning(f"⚠️ Replacement request {request.id} was modified concurrently")
            raise StaleReplacementError(
                f"Replacement request {request.id} was modified by another writer"
            ) from e

        self.db.refresh(request)
        return request

    def find_pending_for_agent(self, agent_id: int) -> List[ReplacementRequest]:
        """Pending requests proposed to an agent, most recent proposal first"""
        return (
            self.db.query(ReplacementRequest)
            .filter(
                ReplacementRequest.replacement_agent_id == agent_id,
                ReplacementRequest.status == ReplacementStatus.PENDING,
            )
            .order_by(ReplacementRequest.proposed_at.desc(), ReplacementRequest.id.desc())
            .all()
        )

    def find_history(self, agent_id: int, role: str = "all") -> List[ReplacementRequest]:
        if role not in HISTORY_ROLES:
            raise ValueError(f"role must be one of {', '.join(HISTORY_ROLES)}")

        query = self.db.query(ReplacementRequest)
        if role == "original":
            query = query.filter(ReplacementRequest.original_agent_id == agent_id)
        elif role == "replacement":
            query = query.filter(ReplacementRequest.replacement_agent_id == agent_id)
        else:
            query = query.filter(
                or_(
                    ReplacementRequest.original_agent_id == agent_id,
                    ReplacementRequest.replacement_agent_id == agent_id,
                )
            )
        return query.order_by(
            ReplacementRequest.requested_at.desc(), ReplacementRequest.id.desc()
        ).all()

    def count(
        self,
        original_agent_id: Optional[int] = None,
        replacement_agent_id: Optional[int] = None,
        status: Optional[ReplacementStatus] = None,
    ) -> int:
        query = self.db.query(ReplacementRequest)
        if original_agent_id is not None:
            query = query.filter(ReplacementRequest.original_agent_id == original_agent_id)
        if replacement_agent_id is not None:
            query = query.filter(ReplacementRequest.replacement_agent_id == replacement_agent_id)
        if status is not None:
            query = query.filter(ReplacementRequest.status == status)
        return query.count()

    def find_declined_agent_ids(self, booking_id: int) -> Set[int]:
        """Agents who already declined a replacement for this booking"""
        rows = (
            self.db.query(ReplacementRequest.replacement_agent_id)
            .filter(
                ReplacementRequest.booking_id == booking_id,
                ReplacementRequest.status == ReplacementStatus.DECLINED,
                ReplacementRequest.replacement_agent_id.isnot(None),
            )
            .all()
        )
        return {row[0] for row in rows}

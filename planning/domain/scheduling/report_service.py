"""
Conflict reports for many agents at once.

Detection is read-only, so agents are processed in parallel, each worker
with its own session and detector.
"""

import logging
from concurrent.futures import ThreadPoolExecutor, as_completed
from datetime import date, datetime
from typing import Callable, Dict, Iterable, Optional, Union

from sqlalchemy.orm import Session

from ...config import SchedulingRules
from ...database import SessionLocal
from .conflict_detector import ConflictDetector
from .geo import FixedTravelTimeEstimator
from .repository import AgentRepository, AvailabilityRepository, BookingRepository
from .schemas import ConflictReport

logger = logging.getLogger(__name__)

DateLike = Union[date, datetime]


class ConflictReportService:
    def __init__(
        self,
        session_factory: Callable[[], Session] = SessionLocal,
        detector_factory: Optional[Callable[[Session], ConflictDetector]] = None,
        rules: Optional[SchedulingRules] = None,
    ):
        self.session_factory = session_factory
        self.detector_factory = detector_factory
        self.rules = rules or SchedulingRules.from_env()

    def _build_detector(self, db: Session) -> ConflictDetector:
        if self.detector_factory:
            return self.detector_factory(db)
        return ConflictDetector(
            BookingRepository(db),
            AvailabilityRepository(db),
            FixedTravelTimeEstimator(self.rules.min_travel_minutes),
            rules=self.rules,
        )

    def generate_report(self, agent_id: int, start: DateLike, end: DateLike) -> ConflictReport:
        db = self.session_factory()
        try:
            agent = AgentRepository(db).get(agent_id)
            if not agent:
                raise ValueError(f"Agent {agent_id} not found")
            return self._build_detector(db).generate_conflict_report(agent, start, end)
        finally:
            db.close()

    def generate_reports(
        self, agent_ids: Iterable[int], start: DateLike, end: DateLike, max_workers: int = 4
    ) -> Dict[int, ConflictReport]:
        """Reports keyed by agent id, in the order the ids were given"""
        agent_ids = list(dict.fromkeys(agent_ids))
        if not agent_ids:
            return {}

        reports: Dict[int, ConflictReport] = {}
        with ThreadPoolExecutor(max_workers=max_workers) as executor:
            futures = {
                executor.submit(self.generate_report, agent_id, start, end): agent_id
                for agent_id in agent_ids
            }
            for future in as_completed(futures):
                reports[futures[future]] = future.result()

        total = sum(report.summary.total_conflicts for report in reports.values())
        logger.info(f"📊 Conflict reports generated for {len(reports)} agents ({total} conflicts)")
        return {agent_id: reports[agent_id] for agent_id in agent_ids}

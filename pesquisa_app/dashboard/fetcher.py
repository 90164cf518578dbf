import logging
from dataclasses import dataclass
from datetime import date, datetime
from typing import Any, Dict, List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.future import select

from .. import models
from ..errors import AuthorizationError, FetchError
from ..utils import as_utc

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RawAssignment:
    """One assignment row as returned by the store, with its survey join (or None)."""

    id: str
    survey_id: str
    researcher_id: str
    status: str
    assigned_at: datetime
    completed_at: Optional[datetime] = None
    survey: Optional[Dict[str, Any]] = None


def _survey_fields(survey: Optional[models.Survey]) -> Optional[Dict[str, Any]]:
    if survey is None:
        return None
    return {
        "id": survey.id,
        "name": survey.name,
        "city": survey.city,
        "state": survey.state,
        "date": survey.date if isinstance(survey.date, date) else None,
        "contractor": survey.contractor,
        "code": survey.code,
    }


def authorize_fetch(requester: Optional[models.User], researcher_id: str) -> None:
    if requester is None:
        return
    if not requester.is_admin and requester.id != researcher_id:
        raise AuthorizationError("Cannot read another researcher's assignments")


class AssignmentFetcher:
    """
    Reads a researcher's assignments outer-joined with their surveys.

    Rows whose survey no longer exists come back with ``survey=None``;
    filtering them is the reconciler's job. Each call opens its own session
    so it can run outside a request (polling, change events).
    """

    def __init__(self, session_factory):
        self.session_factory = session_factory

    async def __call__(
        self, researcher_id: str, requester: Optional[models.User] = None
    ) -> List[RawAssignment]:
        authorize_fetch(requester, researcher_id)
        stmt = (
            select(models.SurveyAssignment, models.Survey)
            .outerjoin(models.Survey, models.Survey.id == models.SurveyAssignment.survey_id)
            .where(models.SurveyAssignment.researcher_id == researcher_id)
            .order_by(
                models.SurveyAssignment.assigned_at.desc(),
                models.SurveyAssignment.id.asc(),
            )
        )
        try:
            async with self.session_factory() as session:
                result = await session.execute(stmt)
                rows = result.all()
        except SQLAlchemyError as e:
            logger.error("Assignment fetch failed for researcher %s: %s", researcher_id, e)
            raise FetchError("Could not load assigned surveys") from e

        logger.debug("Fetched %d assignment rows for researcher %s", len(rows), researcher_id)
        return [
            RawAssignment(
                id=assignment.id,
                survey_id=assignment.survey_id,
                researcher_id=assignment.researcher_id,
                status=assignment.status,
                assigned_at=as_utc(assignment.assigned_at),
                completed_at=as_utc(assignment.completed_at),
                survey=_survey_fields(survey),
            )
            for assignment, survey in rows
        ]

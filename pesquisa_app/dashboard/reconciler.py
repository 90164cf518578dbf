import logging
from typing import Iterable, List, Optional

from ..schemas import AssignmentView
from .fetcher import RawAssignment

module_logger = logging.getLogger(__name__)


def reconcile(
    rows: Iterable[RawAssignment], logger: Optional[logging.Logger] = None
) -> List[AssignmentView]:
    """
    Turns raw fetch rows into the dashboard list.

    Orphans (no survey) are dropped with a warning, duplicates are removed,
    and the result is ordered newest assignment first with ties broken by id.
    Apart from the warnings this has no side effects.
    """
    log = logger or module_logger

    present = []
    seen_ids = set()
    for row in rows:
        if row.survey is None:
            log.warning(
                "Assignment %s references missing survey %s, hiding it",
                row.id,
                row.survey_id,
            )
            continue
        if row.id in seen_ids:
            continue
        seen_ids.add(row.id)
        present.append(row)

    # Stable: id order survives among equal timestamps
    ordered = sorted(present, key=lambda r: r.id)
    ordered.sort(key=lambda r: r.assigned_at, reverse=True)

    views = []
    seen_surveys = set()
    for row in ordered:
        if row.survey_id in seen_surveys:
            log.warning(
                "Duplicate assignment %s for survey %s, keeping the newest",
                row.id,
                row.survey_id,
            )
            continue
        seen_surveys.add(row.survey_id)
        survey = row.survey
        views.append(
            AssignmentView(
                id=row.id,
                survey_id=row.survey_id,
                status=row.status,
                assigned_at=row.assigned_at,
                completed_at=row.completed_at,
                survey_name=survey["name"],
                city=survey["city"],
                state=survey["state"],
                date=survey.get("date"),
                contractor=survey.get("contractor"),
                code=survey.get("code"),
            )
        )
    return views

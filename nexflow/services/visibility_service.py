"""Flow and step visibility.

Three modes apply to both flows and steps:

* ``company``: every user of the client.
* ``team``: members of the configured teams; open to everyone while no team
  has been configured.
* ``user_exclusion``: the ``team`` rule, minus an explicit list of users.

Administrators and team admins/leaders can never be excluded. The write path
drops them from the list before persisting; the read path only consults the
persisted list.
"""
import logging
from typing import Any, Dict, Iterable, List, Optional, Set

from sqlalchemy.orm import Session

from nexflow.core.authorization import is_administrator, protected_user_ids
from nexflow.core.errors import InvalidVisibilityError, NotFoundError, ValidationError
from nexflow.database import SessionLocal
from nexflow.models.access import (
    FlowAccess,
    FlowTeamAccess,
    FlowUserExclusion,
    StepTeamAccess,
    StepUserExclusion,
    StepVisibility,
)
from nexflow.models.automation import StepChildCardAutomation
from nexflow.models.card import Card, CardActivity
from nexflow.models.flow import Flow, Step, StepField
from nexflow.models.organization import ClientUser, Team, TeamMember
from nexflow.services.tenant import ensure_same_tenant, fetch_by_ids, get_scoped

logger = logging.getLogger(__name__)

VISIBILITY_TYPES = ("company", "team", "user_exclusion")
FLOW_ACCESS_ROLES = ("viewer", "editor", "admin")


def visibility_allows(
    visibility_type: str,
    user_id: str,
    user_team_ids: Iterable[str],
    access_team_ids: Iterable[str],
    excluded_user_ids: Iterable[str] = (),
) -> bool:
    if visibility_type == "company":
        return True

    if visibility_type not in ("team", "user_exclusion"):
        return False

    access = {str(t) for t in access_team_ids}
    if access and not (access & {str(t) for t in user_team_ids}):
        return False

    if visibility_type == "user_exclusion":
        return str(user_id) not in {str(u) for u in excluded_user_ids}

    return True


def user_team_ids(db: Session, client_id: str, user_id: str) -> Set[str]:
    rows = (
        db.query(TeamMember.team_id)
        .filter(TeamMember.client_id == str(client_id), TeamMember.user_id == str(user_id))
        .all()
    )
    return {r[0] for r in rows}


def _grouped(rows, key: str, value: str) -> Dict[str, Set[str]]:
    out: Dict[str, Set[str]] = {}
    for row in rows:
        out.setdefault(getattr(row, key), set()).add(getattr(row, value))
    return out


def visible_flows(db: Session, client_id: str, user_id: str, flows: List[Flow], team_ids: Optional[Set[str]] = None) -> List[Flow]:
    flows = [f for f in flows if str(f.client_id) == str(client_id)]
    if not flows:
        return []

    if team_ids is None:
        team_ids = user_team_ids(db, client_id, user_id)

    flow_ids = [f.id for f in flows]
    access = _grouped(
        fetch_by_ids(db, FlowTeamAccess, flow_ids, client_id=client_id, column=FlowTeamAccess.flow_id),
        "flow_id",
        "team_id",
    )
    exclusions = _grouped(
        fetch_by_ids(db, FlowUserExclusion, flow_ids, client_id=client_id, column=FlowUserExclusion.flow_id),
        "flow_id",
        "user_id",
    )

    return [
        f
        for f in flows
        if visibility_allows(
            f.visibility_type,
            user_id,
            team_ids,
            access.get(f.id, set()),
            exclusions.get(f.id, set()),
        )
    ]


def visible_steps(db: Session, client_id: str, user_id: str, steps: List[Step], team_ids: Optional[Set[str]] = None) -> List[Step]:
    """Filter steps by their own rule and the sparse per-user ``can_view`` override.

    The caller is expected to have checked the flow itself.
    """
    steps = [s for s in steps if str(s.client_id) == str(client_id)]
    if not steps:
        return []

    if team_ids is None:
        team_ids = user_team_ids(db, client_id, user_id)

    step_ids = [s.id for s in steps]
    access = _grouped(
        fetch_by_ids(db, StepTeamAccess, step_ids, client_id=client_id, column=StepTeamAccess.step_id),
        "step_id",
        "team_id",
    )
    exclusions = _grouped(
        fetch_by_ids(db, StepUserExclusion, step_ids, client_id=client_id, column=StepUserExclusion.step_id),
        "step_id",
        "user_id",
    )
    overrides = {
        row.step_id: row
        for row in fetch_by_ids(db, StepVisibility, step_ids, client_id=client_id, column=StepVisibility.step_id)
        if row.user_id == str(user_id)
    }

    out = []
    for s in steps:
        override = overrides.get(s.id)
        if override is not None and not override.can_view:
            continue
        if visibility_allows(s.visibility_type, user_id, team_ids, access.get(s.id, set()), exclusions.get(s.id, set())):
            out.append(s)
    return out


def flow_is_visible(db: Session, client_id: str, user_id: str, flow: Flow) -> bool:
    return bool(visible_flows(db, client_id, user_id, [flow]))


def step_is_visible(db: Session, client_id: str, user_id: str, step: Step) -> bool:
    flow = db.get(Flow, step.flow_id)
    if flow is None or not flow_is_visible(db, client_id, user_id, flow):
        return False
    return bool(visible_steps(db, client_id, user_id, [step]))


def can_user_view_flow(flow_id: str, user_id: str, user_client_id: str, user_team_ids: Optional[Iterable[str]] = None) -> bool:
    db = SessionLocal()
    try:
        flow = db.get(Flow, str(flow_id))
        if flow is None:
            raise NotFoundError("Flow not found")

        if str(flow.client_id) != str(user_client_id):
            return False

        team_ids = set(user_team_ids) if user_team_ids is not None else None
        return bool(visible_flows(db, user_client_id, user_id, [flow], team_ids=team_ids))
    finally:
        db.close()


def can_user_view_step(client_id: str, step_id: str, user_id: str) -> bool:
    db = SessionLocal()
    try:
        step = get_scoped(db, Step, step_id, client_id, "Step")
        return step_is_visible(db, client_id, user_id, step)
    finally:
        db.close()


def step_fields_editable(db: Session, client_id: str, user_id: str, step: Step) -> bool:
    if not step_is_visible(db, client_id, user_id, step):
        return False
    row = (
        db.query(StepVisibility)
        .filter(
            StepVisibility.client_id == str(client_id),
            StepVisibility.step_id == step.id,
            StepVisibility.user_id == str(user_id),
        )
        .first()
    )
    return row is None or bool(row.can_edit_fields)


def can_user_edit_step_fields(client_id: str, step_id: str, user_id: str) -> bool:
    db = SessionLocal()
    try:
        step = get_scoped(db, Step, step_id, client_id, "Step")
        return step_fields_editable(db, client_id, user_id, step)
    finally:
        db.close()


def flow_is_editable(db: Session, client_id: str, user_id: str, flow: Flow) -> bool:
    if is_administrator(db, client_id, user_id):
        return True

    row = (
        db.query(FlowAccess)
        .filter(
            FlowAccess.client_id == str(client_id),
            FlowAccess.flow_id == flow.id,
            FlowAccess.user_id == str(user_id),
        )
        .first()
    )
    if row is not None:
        return row.role in ("editor", "admin")

    return flow_is_visible(db, client_id, user_id, flow)


def can_user_edit_flow(client_id: str, flow_id: str, user_id: str) -> bool:
    db = SessionLocal()
    try:
        flow = get_scoped(db, Flow, flow_id, client_id, "Flow")
        return flow_is_editable(db, client_id, user_id, flow)
    finally:
        db.close()


def _step_flow_editable(db: Session, client_id: str, user_id: str, step: Step) -> bool:
    flow = get_scoped(db, Flow, step.flow_id, client_id, "Flow")
    return flow_is_editable(db, client_id, user_id, flow)


def can_user_edit_step(client_id: str, step_id: str, user_id: str) -> bool:
    """Schema writes on a step or its fields need edit rights on the owning flow."""
    db = SessionLocal()
    try:
        step = get_scoped(db, Step, step_id, client_id, "Step")
        return _step_flow_editable(db, client_id, user_id, step)
    finally:
        db.close()


def can_user_edit_field(client_id: str, field_id: str, user_id: str) -> bool:
    db = SessionLocal()
    try:
        field = get_scoped(db, StepField, field_id, client_id, "Field")
        step = get_scoped(db, Step, field.step_id, client_id, "Step")
        return _step_flow_editable(db, client_id, user_id, step)
    finally:
        db.close()


def can_user_edit_automation(client_id: str, automation_id: str, user_id: str) -> bool:
    db = SessionLocal()
    try:
        automation = get_scoped(db, StepChildCardAutomation, automation_id, client_id, "Automation")
        step = get_scoped(db, Step, automation.step_id, client_id, "Step")
        return _step_flow_editable(db, client_id, user_id, step)
    finally:
        db.close()


def card_is_visible(db: Session, client_id: str, user_id: str, card: Card) -> bool:
    step = db.get(Step, card.step_id)
    return step is not None and step_is_visible(db, client_id, user_id, step)


def can_user_view_card(client_id: str, card_id: str, user_id: str) -> bool:
    db = SessionLocal()
    try:
        card = get_scoped(db, Card, card_id, client_id, "Card")
        return card_is_visible(db, client_id, user_id, card)
    finally:
        db.close()


def can_user_view_activity(client_id: str, activity_id: str, user_id: str) -> bool:
    db = SessionLocal()
    try:
        activity = get_scoped(db, CardActivity, activity_id, client_id, "Activity")
        card = get_scoped(db, Card, activity.card_id, client_id, "Card")
        return card_is_visible(db, client_id, user_id, card)
    finally:
        db.close()


def _validate_visibility_type(visibility_type: str) -> str:
    if visibility_type not in VISIBILITY_TYPES:
        raise InvalidVisibilityError(
            f"Invalid visibility type '{visibility_type}'. Expected one of: {', '.join(VISIBILITY_TYPES)}"
        )
    return visibility_type


def _checked_team_ids(db: Session, client_id: str, team_ids: Iterable[str]) -> List[str]:
    ids = list(dict.fromkeys(str(t) for t in team_ids or [] if t))
    for team_id in ids:
        get_scoped(db, Team, team_id, client_id, "Team")
    return ids


def _filtered_exclusions(db: Session, client_id: str, user_ids: Iterable[str]) -> tuple[List[str], int]:
    ids = list(dict.fromkeys(str(u) for u in user_ids or [] if u))
    if not ids:
        return [], 0

    # unknown ids are kept; ids owned by another client are not
    known = fetch_by_ids(db, ClientUser, ids)
    ensure_same_tenant(client_id, *known)

    protected = protected_user_ids(db, client_id, ids)
    kept = [u for u in ids if u not in protected]
    dropped = len(ids) - len(kept)
    if dropped:
        logger.info(
            "Protected users removed from exclusion list",
            extra={"client_id": client_id, "dropped": sorted(protected & set(ids))},
        )
    return kept, dropped


def _visibility_payload(visibility_type: str, team_ids: List[str], excluded: List[str], filtered: int = 0) -> Dict[str, Any]:
    return {
        "visibility_type": visibility_type,
        "team_ids": sorted(team_ids),
        "excluded_user_ids": sorted(excluded),
        "filtered_excluded_count": filtered,
    }


def update_flow_visibility(
    client_id: str,
    flow_id: str,
    visibility_type: str,
    team_ids: Optional[List[str]] = None,
    excluded_user_ids: Optional[List[str]] = None,
) -> Dict[str, Any]:
    _validate_visibility_type(visibility_type)

    db = SessionLocal()
    try:
        flow = get_scoped(db, Flow, flow_id, client_id, "Flow")

        teams = _checked_team_ids(db, client_id, team_ids or []) if visibility_type != "company" else []
        excluded, filtered = (
            _filtered_exclusions(db, client_id, excluded_user_ids or [])
            if visibility_type == "user_exclusion"
            else ([], 0)
        )

        flow.visibility_type = visibility_type

        db.query(FlowTeamAccess).filter(
            FlowTeamAccess.client_id == str(client_id), FlowTeamAccess.flow_id == flow.id
        ).delete(synchronize_session=False)
        db.query(FlowUserExclusion).filter(
            FlowUserExclusion.client_id == str(client_id), FlowUserExclusion.flow_id == flow.id
        ).delete(synchronize_session=False)

        for team_id in teams:
            db.add(FlowTeamAccess(client_id=str(client_id), flow_id=flow.id, team_id=team_id))
        for user_id in excluded:
            db.add(FlowUserExclusion(client_id=str(client_id), flow_id=flow.id, user_id=user_id))

        db.commit()

        out = _visibility_payload(visibility_type, teams, excluded, filtered)
        out["flow_id"] = flow.id
        return out
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


def get_flow_visibility(client_id: str, flow_id: str) -> Dict[str, Any]:
    db = SessionLocal()
    try:
        flow = get_scoped(db, Flow, flow_id, client_id, "Flow")
        teams = [
            r.team_id
            for r in db.query(FlowTeamAccess).filter(
                FlowTeamAccess.client_id == str(client_id), FlowTeamAccess.flow_id == flow.id
            )
        ]
        excluded = [
            r.user_id
            for r in db.query(FlowUserExclusion).filter(
                FlowUserExclusion.client_id == str(client_id), FlowUserExclusion.flow_id == flow.id
            )
        ]
        out = _visibility_payload(flow.visibility_type, teams, excluded)
        out["flow_id"] = flow.id
        return out
    finally:
        db.close()


def update_step_visibility(
    client_id: str,
    step_id: str,
    visibility_type: str,
    team_ids: Optional[List[str]] = None,
    excluded_user_ids: Optional[List[str]] = None,
) -> Dict[str, Any]:
    _validate_visibility_type(visibility_type)

    db = SessionLocal()
    try:
        step = get_scoped(db, Step, step_id, client_id, "Step")

        teams = _checked_team_ids(db, client_id, team_ids or []) if visibility_type != "company" else []
        excluded, filtered = (
            _filtered_exclusions(db, client_id, excluded_user_ids or [])
            if visibility_type == "user_exclusion"
            else ([], 0)
        )

        step.visibility_type = visibility_type

        db.query(StepTeamAccess).filter(
            StepTeamAccess.client_id == str(client_id), StepTeamAccess.step_id == step.id
        ).delete(synchronize_session=False)
        db.query(StepUserExclusion).filter(
            StepUserExclusion.client_id == str(client_id), StepUserExclusion.step_id == step.id
        ).delete(synchronize_session=False)

        for team_id in teams:
            db.add(StepTeamAccess(client_id=str(client_id), step_id=step.id, team_id=team_id))
        for user_id in excluded:
            db.add(StepUserExclusion(client_id=str(client_id), step_id=step.id, user_id=user_id))

        db.commit()

        out = _visibility_payload(visibility_type, teams, excluded, filtered)
        out["step_id"] = step.id
        return out
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


def set_flow_access(client_id: str, flow_id: str, user_id: str, role: str) -> FlowAccess:
    if role not in FLOW_ACCESS_ROLES:
        raise ValidationError(f"Invalid flow access role '{role}'")

    db = SessionLocal()
    try:
        flow = get_scoped(db, Flow, flow_id, client_id, "Flow")
        get_scoped(db, ClientUser, user_id, client_id, "User")

        row = (
            db.query(FlowAccess)
            .filter(
                FlowAccess.client_id == str(client_id),
                FlowAccess.flow_id == flow.id,
                FlowAccess.user_id == str(user_id),
            )
            .first()
        )
        if row is None:
            row = FlowAccess(client_id=str(client_id), flow_id=flow.id, user_id=str(user_id), role=role)
            db.add(row)
        else:
            row.role = role

        db.commit()
        db.refresh(row)
        return row
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


def remove_flow_access(client_id: str, flow_id: str, user_id: str) -> bool:
    db = SessionLocal()
    try:
        flow = get_scoped(db, Flow, flow_id, client_id, "Flow")
        deleted = (
            db.query(FlowAccess)
            .filter(
                FlowAccess.client_id == str(client_id),
                FlowAccess.flow_id == flow.id,
                FlowAccess.user_id == str(user_id),
            )
            .delete(synchronize_session=False)
        )
        db.commit()
        return deleted > 0
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


def set_step_visibility(
    client_id: str,
    step_id: str,
    user_id: str,
    can_view: bool = True,
    can_edit_fields: bool = True,
) -> StepVisibility:
    db = SessionLocal()
    try:
        step = get_scoped(db, Step, step_id, client_id, "Step")
        get_scoped(db, ClientUser, user_id, client_id, "User")

        row = (
            db.query(StepVisibility)
            .filter(
                StepVisibility.client_id == str(client_id),
                StepVisibility.step_id == step.id,
                StepVisibility.user_id == str(user_id),
            )
            .first()
        )
        if row is None:
            row = StepVisibility(client_id=str(client_id), step_id=step.id, user_id=str(user_id))
            db.add(row)

        row.can_view = bool(can_view)
        row.can_edit_fields = bool(can_edit_fields)

        db.commit()
        db.refresh(row)
        return row
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()

from enum import Enum
from typing import Iterable, Set

from fastapi import Depends, HTTPException, Request
from sqlalchemy.orm import Session

from nexflow.database import SessionLocal
from nexflow.deps.auth import require_auth
from nexflow.models.organization import ClientUser, TeamMember
from nexflow.services.tenant import fetch_by_ids


class ClientRole(Enum):
    ADMINISTRATOR = "administrator"
    USER = "user"


class TeamRole(Enum):
    ADMIN = "admin"
    LEADER = "leader"
    MEMBER = "member"


ELEVATED_TEAM_ROLES = {TeamRole.ADMIN.value, TeamRole.LEADER.value}


def get_client_role(db: Session, client_id: str, user_id: str) -> ClientRole | None:
    row = (
        db.query(ClientUser)
        .filter(ClientUser.id == str(user_id), ClientUser.client_id == str(client_id))
        .first()
    )
    if row is None:
        return None
    try:
        return ClientRole(str(row.role).lower())
    except ValueError:
        return ClientRole.USER


def is_administrator(db: Session, client_id: str, user_id: str | None) -> bool:
    if not user_id:
        return False
    return get_client_role(db, client_id, user_id) == ClientRole.ADMINISTRATOR


def is_elevated(db: Session, client_id: str, user_id: str | None) -> bool:
    """Administrators and team leaders/admins may edit card titles."""
    if not user_id:
        return False
    if is_administrator(db, client_id, user_id):
        return True
    row = (
        db.query(TeamMember)
        .filter(
            TeamMember.client_id == str(client_id),
            TeamMember.user_id == str(user_id),
            TeamMember.role.in_(sorted(ELEVATED_TEAM_ROLES)),
        )
        .first()
    )
    return row is not None


def protected_user_ids(db: Session, client_id: str, user_ids: Iterable[str]) -> Set[str]:
    """Users that may never be put on an exclusion list."""
    ids = {str(u) for u in user_ids if u}
    if not ids:
        return set()

    admins = {
        row.id
        for row in fetch_by_ids(db, ClientUser, ids, client_id=client_id)
        if row.role == ClientRole.ADMINISTRATOR.value
    }
    team_admins = {
        row.user_id
        for row in fetch_by_ids(db, TeamMember, ids, client_id=client_id, column=TeamMember.user_id)
        if row.role in ELEVATED_TEAM_ROLES
    }
    return admins | team_admins


def require_role(role: ClientRole):
    def dependency(request: Request, _auth: tuple[str, str] = Depends(require_auth)):
        user_id, client_id = _auth

        db = SessionLocal()
        try:
            user_role = get_client_role(db, client_id, user_id)
        finally:
            db.close()

        if user_role is None:
            raise HTTPException(status_code=403, detail="Unknown user")

        rank = {
            ClientRole.USER: 1,
            ClientRole.ADMINISTRATOR: 2,
        }

        if rank[user_role] < rank[role]:
            raise HTTPException(status_code=403, detail="Insufficient role")

        request.state.role = user_role.value
        return user_role

    return dependency

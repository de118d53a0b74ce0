import logging
import os
from typing import Iterable, List, Type, TypeVar

from sqlalchemy.orm import Session

from nexflow.core.errors import NotFoundError, TenantViolationError

logger = logging.getLogger(__name__)

T = TypeVar("T")


def _get_chunk_size() -> int:
    try:
        size = int(os.getenv("NEXFLOW_ID_CHUNK_SIZE", "200"))
    except ValueError:
        return 200
    return size if size > 0 else 200


def get_scoped(db: Session, model: Type[T], row_id: str | None, client_id: str, label: str | None = None) -> T:
    """Load a row by id, separating "missing" from "owned by another tenant"."""
    name = label or model.__name__
    if not row_id:
        raise NotFoundError(f"{name} not found")

    row = db.get(model, str(row_id))
    if row is None:
        raise NotFoundError(f"{name} not found")

    if str(row.client_id) != str(client_id):
        logger.warning(
            "Cross-tenant reference rejected",
            extra={"entity": name, "entity_id": str(row_id), "client_id": str(client_id)},
        )
        raise TenantViolationError(f"{name} belongs to another client")

    return row


def ensure_same_tenant(client_id: str, *rows) -> None:
    for row in rows:
        if row is None:
            continue
        if str(row.client_id) != str(client_id):
            logger.warning(
                "Cross-tenant reference rejected",
                extra={"entity": type(row).__name__, "entity_id": str(row.id), "client_id": str(client_id)},
            )
            raise TenantViolationError(f"{type(row).__name__} belongs to another client")


def chunked(ids: Iterable[str], size: int | None = None) -> List[List[str]]:
    size = size or _get_chunk_size()
    unique = list(dict.fromkeys(str(i) for i in ids if i))
    return [unique[i:i + size] for i in range(0, len(unique), size)]


def fetch_by_ids(db: Session, model: Type[T], ids: Iterable[str], client_id: str | None = None, column=None) -> List[T]:
    """Read rows whose ``column`` (default primary key) is in ``ids``.

    The ``IN`` list is split into chunks; an error in any chunk propagates so
    callers never see a partial result.
    """
    column = column if column is not None else model.id
    rows: List[T] = []
    for chunk in chunked(ids):
        q = db.query(model).filter(column.in_(chunk))
        if client_id is not None:
            q = q.filter(model.client_id == str(client_id))
        rows.extend(q.all())
    return rows

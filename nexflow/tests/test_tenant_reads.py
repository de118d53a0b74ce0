from uuid import uuid4

import pytest
from sqlalchemy.exc import OperationalError

from nexflow.database import SessionLocal
from nexflow.models.flow import Flow
from nexflow.models.organization import ClientUser, Team, TeamMember
from nexflow.services import flow_schema_service as schema, tenant, visibility_service as vis

CLIENT = "client-chunks"


def _insert(row):
    db = SessionLocal()
    try:
        db.add(row)
        db.commit()
        db.refresh(row)
        return row
    finally:
        db.close()


def _user(role="user"):
    return _insert(ClientUser(id=str(uuid4()), client_id=CLIENT, name="User", role=role))


@pytest.fixture
def chunk_sizes(monkeypatch):
    monkeypatch.setenv("NEXFLOW_ID_CHUNK_SIZE", "2")
    sizes = []
    real_chunked = tenant.chunked

    def recording_chunked(ids, size=None):
        chunks = real_chunked(ids, size)
        sizes.append([len(c) for c in chunks])
        return chunks

    monkeypatch.setattr(tenant, "chunked", recording_chunked)
    return sizes


def test_chunked_dedupes_and_splits():
    assert tenant.chunked(["a", "b", "a", None, "c"], size=2) == [["a", "b"], ["c"]]
    assert tenant.chunked([], size=2) == []


def test_visible_flows_reads_access_rows_across_chunks(chunk_sizes):
    member = _user()
    outsider = _user()
    team = _insert(Team(id=str(uuid4()), client_id=CLIENT, name="Team"))
    _insert(TeamMember(id=str(uuid4()), client_id=CLIENT, team_id=team.id, user_id=member.id))

    flow_ids = []
    for i in range(5):
        flow = schema.create_flow(CLIENT, f"Flow {i}")
        vis.update_flow_visibility(CLIENT, flow.id, "team", team_ids=[team.id])
        flow_ids.append(flow.id)

    chunk_sizes.clear()
    db = SessionLocal()
    try:
        flows = db.query(Flow).filter(Flow.id.in_(flow_ids)).all()
        assert {f.id for f in vis.visible_flows(db, CLIENT, member.id, flows)} == set(flow_ids)
        # a missed chunk would leave some flows without access rows, i.e. open to everyone
        assert vis.visible_flows(db, CLIENT, outsider.id, flows) == []
    finally:
        db.close()

    assert [2, 2, 1] in chunk_sizes


def test_exclusion_write_filters_protected_users_across_chunks(chunk_sizes):
    admins = [_user(role="administrator") for _ in range(3)]
    leader = _user()
    team = _insert(Team(id=str(uuid4()), client_id=CLIENT, name="Team"))
    _insert(TeamMember(id=str(uuid4()), client_id=CLIENT, team_id=team.id, user_id=leader.id, role="leader"))
    plain = _user()

    flow = schema.create_flow(CLIENT, "Sales")
    excluded = [a.id for a in admins] + [leader.id, plain.id]
    result = vis.update_flow_visibility(CLIENT, flow.id, "user_exclusion", excluded_user_ids=excluded)

    assert result["excluded_user_ids"] == [plain.id]
    assert result["filtered_excluded_count"] == 4
    assert [2, 2, 1] in chunk_sizes


def test_failing_chunk_aborts_the_whole_read(chunk_sizes):
    ids = [schema.create_flow(CLIENT, f"Flow {i}").id for i in range(5)]

    class FlakySession:
        def __init__(self, db):
            self.db = db
            self.queries = 0

        def query(self, model):
            self.queries += 1
            if self.queries == 2:
                raise OperationalError("SELECT flows", {}, Exception("connection dropped"))
            return self.db.query(model)

    db = SessionLocal()
    try:
        flaky = FlakySession(db)
        with pytest.raises(OperationalError):
            tenant.fetch_by_ids(flaky, Flow, ids, client_id=CLIENT)
        assert flaky.queries == 2

        assert len(tenant.fetch_by_ids(db, Flow, ids, client_id=CLIENT)) == 5
    finally:
        db.close()

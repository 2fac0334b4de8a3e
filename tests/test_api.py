"""HTTP-level tests: identity, permission gates and error mapping."""
import pytest
from fastapi.testclient import TestClient

from taskboard_core import crud, schemas
from taskboard_core.api.dependencies import get_dispatcher
from taskboard_core.api.main import app
from taskboard_core.database import get_db
from taskboard_core.models import MemberPermission

API = "/api/v1"


@pytest.fixture
def client(session_factory, inline_dispatcher):
    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_dispatcher] = lambda: inline_dispatcher
    yield TestClient(app)
    app.dependency_overrides.clear()


def as_user(user):
    return {"X-User-Id": user.id}


class TestIdentity:

    def test_health_needs_no_identity(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json()["status"] == "healthy"

    def test_missing_header(self, client, project):
        response = client.get(f"{API}/projects/{project.id}")
        assert response.status_code == 401
        assert response.json()["detail"] == "Missing X-User-Id header"

    def test_unknown_user(self, client, project):
        response = client.get(f"{API}/projects/{project.id}", headers={"X-User-Id": "nobody"})
        assert response.status_code == 401

    def test_register_and_me(self, client):
        created = client.post(f"{API}/users/", json={"email": "new@example.com", "full_name": "New"})
        assert created.status_code == 201

        me = client.get(f"{API}/users/me", headers={"X-User-Id": created.json()["id"]})
        assert me.json()["email"] == "new@example.com"


class TestPermissionGates:
    """Every route checks membership before touching the engines."""

    def test_outsider_gets_403(self, client, db, project):
        outsider = crud.create_user(db, schemas.UserCreate(email="outsider@example.com"))

        response = client.get(f"{API}/projects/{project.id}", headers=as_user(outsider))

        assert response.status_code == 403

    def test_reader_can_read_but_not_write(self, client, project, make_member):
        reader = make_member(MemberPermission.READ)

        assert client.get(f"{API}/projects/{project.id}/lists", headers=as_user(reader)).status_code == 200
        response = client.post(
            f"{API}/tasks/", json={"project_id": project.id, "title": "Sneaky"}, headers=as_user(reader)
        )
        assert response.status_code == 403
        assert "you have read" in response.json()["detail"]

    def test_writer_cannot_delete_list(self, client, lists, make_member):
        writer = make_member(MemberPermission.WRITE)

        response = client.delete(f"{API}/lists/{lists[0].id}", headers=as_user(writer))

        assert response.status_code == 403

    def test_unknown_entity_is_404(self, client, owner):
        response = client.get(f"{API}/tasks/missing", headers=as_user(owner))
        assert response.status_code == 404

    def test_member_admin_only(self, client, workspace, db, make_member):
        writer = make_member(MemberPermission.WRITE)
        newcomer = crud.create_user(db, schemas.UserCreate(email="newcomer@example.com"))

        response = client.post(
            f"{API}/workspaces/{workspace.id}/members",
            json={"user_id": newcomer.id, "permission": "read"},
            headers=as_user(writer),
        )

        assert response.status_code == 403


class TestTaskRoutes:

    def test_create_move_and_list(self, client, owner, project, lists):
        headers = as_user(owner)
        ids = []
        for title in ("a", "b", "c"):
            response = client.post(
                f"{API}/tasks/",
                json={"project_id": project.id, "list_id": lists[0].id, "title": title},
                headers=headers,
            )
            assert response.status_code == 201
            ids.append(response.json()["id"])

        moved = client.post(f"{API}/tasks/{ids[2]}/move", json={"list_id": lists[0].id, "position": 0}, headers=headers)
        assert moved.json()["position"] == 0

        page = client.get(f"{API}/tasks/", params={"project_id": project.id, "list_id": lists[0].id}, headers=headers)
        body = page.json()
        assert body["total"] == 3
        assert [t["title"] for t in body["items"]] == ["c", "a", "b"]
        assert [t["position"] for t in body["items"]] == [0, 1, 2]

    def test_reorder_mismatch_is_400(self, client, owner, lists, make_task):
        task = make_task("a", list_id=lists[0].id)

        response = client.put(
            f"{API}/lists/{lists[0].id}/tasks/reorder",
            json={"ordered_ids": [task.id, task.id]},
            headers=as_user(owner),
        )

        assert response.status_code == 400
        assert "duplicated ids" in response.json()["detail"]

    def test_null_title_rejected(self, client, owner, make_task):
        task = make_task("a")
        response = client.patch(f"{API}/tasks/{task.id}", json={"title": None}, headers=as_user(owner))
        assert response.status_code == 422


class TestDependencyRoutes:

    def test_cycle_detail_carries_path(self, client, owner, make_task):
        a, b = make_task("a"), make_task("b")
        headers = as_user(owner)
        assert client.post(
            f"{API}/tasks/{a.id}/dependencies", json={"depends_on_id": b.id}, headers=headers
        ).status_code == 201

        response = client.post(f"{API}/tasks/{b.id}/dependencies", json={"depends_on_id": a.id}, headers=headers)

        assert response.status_code == 400
        detail = response.json()["detail"]
        assert detail["error"] == "circular_dependency"
        assert detail["cycle"] == [b.id, a.id, b.id]

    def test_duplicate_edge_is_409(self, client, owner, make_task):
        a, b = make_task("a"), make_task("b")
        headers = as_user(owner)
        client.post(f"{API}/tasks/{a.id}/dependencies", json={"depends_on_id": b.id}, headers=headers)

        response = client.post(f"{API}/tasks/{a.id}/dependencies", json={"depends_on_id": b.id}, headers=headers)

        assert response.status_code == 409

    def test_ready_blocked_and_check(self, client, owner, project, make_task):
        a, b = make_task("a"), make_task("b")
        headers = as_user(owner)
        client.post(f"{API}/tasks/{b.id}/dependencies", json={"depends_on_id": a.id}, headers=headers)

        ready = client.get(f"{API}/projects/{project.id}/ready-tasks", headers=headers).json()
        blocked = client.get(f"{API}/projects/{project.id}/blocked-tasks", headers=headers).json()
        check = client.get(
            f"{API}/tasks/{a.id}/dependencies/check", params={"depends_on_id": b.id}, headers=headers
        ).json()

        assert [t["title"] for t in ready] == ["a"]
        assert blocked[0]["task"]["title"] == "b"
        assert blocked[0]["blocking"][0]["depends_on_id"] == a.id
        assert check["would_create_cycle"] is True

    def test_chain(self, client, owner, make_task):
        a, b = make_task("a"), make_task("b")
        headers = as_user(owner)
        client.post(f"{API}/tasks/{a.id}/dependencies", json={"depends_on_id": b.id}, headers=headers)

        chain = client.get(f"{API}/tasks/{a.id}/dependency-chain", headers=headers).json()

        assert [(e["task"]["title"], e["depth"]) for e in chain] == [("a", 0), ("b", 1)]


class TestRequirementRoutes:

    def create(self, client, owner, project, **fields):
        payload = {"project_id": project.id, "title": "User can reset password", **fields}
        response = client.post(f"{API}/requirements/", json=payload, headers=as_user(owner))
        assert response.status_code == 201
        return response.json()

    def test_create_runs_analysis(self, client, owner, project):
        created = self.create(client, owner, project)
        assert created["code"] == "WEB-FR-001"

        fetched = client.get(f"{API}/requirements/{created['id']}", headers=as_user(owner)).json()
        assert fetched["quality_score"] == 30

    def test_stale_version_is_409(self, client, owner, project):
        created = self.create(client, owner, project)
        url = f"{API}/requirements/{created['id']}"

        first = client.patch(url, json={"title": "Reset password", "expected_version": 1}, headers=as_user(owner))
        second = client.patch(url, json={"title": "Reset pw", "expected_version": 1}, headers=as_user(owner))

        assert first.json()["version"] == 2
        assert second.status_code == 409

    def test_delete_with_links_is_412(self, client, owner, project, make_task):
        created = self.create(client, owner, project)
        task = make_task("Build form")
        headers = as_user(owner)
        linked = client.post(f"{API}/requirements/{created['id']}/links", json={"task_id": task.id}, headers=headers)
        assert linked.status_code == 201

        response = client.delete(f"{API}/requirements/{created['id']}", headers=headers)

        assert response.status_code == 412

    def test_history_and_coverage(self, client, owner, project):
        created = self.create(client, owner, project)
        headers = as_user(owner)
        client.patch(f"{API}/requirements/{created['id']}", json={"tags": ["auth"]}, headers=headers)

        history = client.get(f"{API}/requirements/{created['id']}/history", headers=headers).json()
        coverage = client.get(f"{API}/requirements/coverage", params={"project_id": project.id}, headers=headers)

        assert {entry["changes"]["action"] for entry in history} == {"created", "updated"}
        assert coverage.json()["total"] == 1


@pytest.fixture
def rival_task(db, owner):
    """A task in a second workspace that only the owner belongs to."""
    rival = crud.create_workspace(db, schemas.WorkspaceCreate(name="Rival", slug="rival"), owner.id)
    rival_project = crud.create_project(
        db, schemas.ProjectCreate(workspace_id=rival.id, name="M&A", key="MNA"), owner.id
    )
    return crud.create_task(
        db, schemas.TaskCreate(project_id=rival_project.id, title="Acquire CompetitorCo"), owner.id
    )


class TestWorkspaceIsolation:
    """Graph reads never surface tasks from a workspace the caller cannot see."""

    def test_cross_workspace_edge_is_400(self, client, owner, make_task, rival_task):
        task = make_task("Ship landing page")

        response = client.post(
            f"{API}/tasks/{task.id}/dependencies",
            json={"depends_on_id": rival_task.id},
            headers=as_user(owner),
        )

        assert response.status_code == 400
        assert task.id in response.json()["detail"]
        assert rival_task.id in response.json()["detail"]

    def test_chain_stays_inside_workspace(self, client, owner, make_task, make_member, rival_task):
        task = make_task("Ship landing page")
        reader = make_member(MemberPermission.READ)
        client.post(
            f"{API}/tasks/{task.id}/dependencies", json={"depends_on_id": rival_task.id}, headers=as_user(owner)
        )

        assert client.get(f"{API}/tasks/{rival_task.id}", headers=as_user(reader)).status_code == 403
        chain = client.get(f"{API}/tasks/{task.id}/dependency-chain", headers=as_user(reader))

        assert chain.status_code == 200
        assert [entry["task"]["title"] for entry in chain.json()] == ["Ship landing page"]

    def test_check_requires_access_to_both_tasks(self, client, make_task, make_member, rival_task):
        task = make_task("Ship landing page")
        writer = make_member(MemberPermission.WRITE)

        response = client.get(
            f"{API}/tasks/{task.id}/dependencies/check",
            params={"depends_on_id": rival_task.id},
            headers=as_user(writer),
        )

        assert response.status_code == 403


class TestTimeEntryRoutes:

    def test_removed_member_cannot_stop_entry(self, client, db, workspace, owner, make_task, make_member):
        task = make_task("a")
        writer = make_member(MemberPermission.WRITE)
        started = client.post(f"{API}/tasks/{task.id}/time-entries/start", json={}, headers=as_user(writer))
        assert started.status_code == 201

        crud.remove_workspace_member(db, workspace.id, writer.id)
        response = client.post(f"{API}/time-entries/{started.json()['id']}/stop", headers=as_user(writer))

        assert response.status_code == 403

    def test_update_and_delete_entry(self, client, owner, make_task):
        task = make_task("a")
        headers = as_user(owner)
        logged = client.post(
            f"{API}/tasks/{task.id}/time-entries",
            json={"started_at": "2026-01-05T09:00:00", "ended_at": "2026-01-05T10:00:00"},
            headers=headers,
        ).json()

        updated = client.patch(
            f"{API}/time-entries/{logged['id']}", json={"ended_at": "2026-01-05T11:30:00"}, headers=headers
        )
        assert updated.status_code == 200
        assert updated.json()["duration_seconds"] == 9000

        assert client.delete(f"{API}/time-entries/{logged['id']}", headers=headers).status_code == 204
        summary = client.get(f"{API}/tasks/{task.id}/time-summary", headers=headers).json()
        assert summary["entry_count"] == 0

    def test_unknown_entry_is_404(self, client, owner):
        response = client.delete(f"{API}/time-entries/missing", headers=as_user(owner))
        assert response.status_code == 404


class TestCommentRoutes:

    def test_comment_lifecycle(self, client, owner, make_task):
        task = make_task("a")
        headers = as_user(owner)

        created = client.post(f"{API}/tasks/{task.id}/comments", json={"content": "Looks good"}, headers=headers)
        assert created.status_code == 201
        comment_id = created.json()["id"]

        edited = client.patch(f"{API}/comments/{comment_id}", json={"content": "Looks great"}, headers=headers)
        assert edited.json()["content"] == "Looks great"

        listed = client.get(f"{API}/tasks/{task.id}/comments", headers=headers).json()
        assert [c["content"] for c in listed] == ["Looks great"]
        assert listed[0]["author"]["id"] == owner.id

        assert client.delete(f"{API}/comments/{comment_id}", headers=headers).status_code == 204
        assert client.get(f"{API}/tasks/{task.id}/comments", headers=headers).json() == []

    def test_only_author_edits(self, client, owner, make_task, make_member):
        task = make_task("a")
        writer = make_member(MemberPermission.WRITE)
        created = client.post(
            f"{API}/tasks/{task.id}/comments", json={"content": "Mine"}, headers=as_user(owner)
        ).json()

        response = client.patch(f"{API}/comments/{created['id']}", json={"content": "Yours"}, headers=as_user(writer))

        assert response.status_code == 403

    def test_reader_cannot_comment(self, client, make_task, make_member):
        task = make_task("a")
        reader = make_member(MemberPermission.READ)

        response = client.post(f"{API}/tasks/{task.id}/comments", json={"content": "Hi"}, headers=as_user(reader))

        assert response.status_code == 403


class TestMemberRoutes:

    def test_admin_changes_and_removes_member(self, client, workspace, make_member):
        admin = make_member(MemberPermission.ADMIN)
        reader = make_member(MemberPermission.READ)
        url = f"{API}/workspaces/{workspace.id}/members/{reader.id}"

        promoted = client.patch(url, json={"permission": "write"}, headers=as_user(admin))
        assert promoted.json()["permission"] == "write"

        assert client.delete(url, headers=as_user(admin)).status_code == 204
        members = client.get(f"{API}/workspaces/{workspace.id}/members", headers=as_user(admin)).json()
        assert reader.id not in [m["user_id"] for m in members]

    def test_owner_cannot_be_removed_or_demoted(self, client, workspace, owner, make_member):
        admin = make_member(MemberPermission.ADMIN)
        url = f"{API}/workspaces/{workspace.id}/members/{owner.id}"

        assert client.delete(url, headers=as_user(admin)).status_code == 400
        assert client.patch(url, json={"permission": "read"}, headers=as_user(admin)).status_code == 400

    def test_only_owner_grants_ownership(self, client, workspace, owner, make_member):
        admin = make_member(MemberPermission.ADMIN)
        writer = make_member(MemberPermission.WRITE)
        url = f"{API}/workspaces/{workspace.id}/members/{writer.id}"

        assert client.patch(url, json={"permission": "owner"}, headers=as_user(admin)).status_code == 403
        assert client.patch(url, json={"permission": "owner"}, headers=as_user(owner)).status_code == 200

    def test_writer_cannot_remove(self, client, workspace, make_member):
        writer = make_member(MemberPermission.WRITE)
        reader = make_member(MemberPermission.READ)

        response = client.delete(f"{API}/workspaces/{workspace.id}/members/{reader.id}", headers=as_user(writer))

        assert response.status_code == 403


class TestReportRoutes:

    def test_stats_and_counts(self, client, owner, project, make_task):
        make_task("a", status="done")
        make_task("b")
        make_task("c")
        headers = as_user(owner)

        stats = client.get(f"{API}/projects/{project.id}/stats", headers=headers).json()
        counts = client.get(
            f"{API}/projects/{project.id}/task-counts", params={"group_by": "status"}, headers=headers
        ).json()

        assert stats["total_tasks"] == 3
        assert stats["completion_rate"] == 33
        assert len(stats["recent_activity"]) == 3
        assert counts == [{"key": "todo", "count": 2}, {"key": "done", "count": 1}]

    def test_unknown_grouping_is_400(self, client, owner, project):
        response = client.get(
            f"{API}/projects/{project.id}/task-counts", params={"group_by": "colour"}, headers=as_user(owner)
        )
        assert response.status_code == 400

    def test_duplicate_archive_and_metrics(self, client, owner, lists, make_task):
        task = make_task("a", list_id=lists[0].id)
        headers = as_user(owner)

        copy = client.post(f"{API}/tasks/{task.id}/duplicate", headers=headers)
        assert copy.status_code == 201
        assert copy.json()["title"] == "a (Copy)"
        assert copy.json()["position"] == 1

        archived = client.post(f"{API}/tasks/{task.id}/archive", headers=headers)
        assert archived.json()["status"] == "cancelled"
        assert client.post(f"{API}/tasks/{task.id}/archive", headers=headers).status_code == 409

        metrics = client.get(f"{API}/tasks/{task.id}/metrics", headers=headers).json()
        assert metrics["counts"]["comments"] == 0
        assert metrics["time_spent"] == "0m"

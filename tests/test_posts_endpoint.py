from fastapi.testclient import TestClient

from fakes import FakeSupabase, install_fake_db
from socialops import history_cache
from socialops.auth.context import AuthContext
from socialops.auth.dependencies import get_current_user
from socialops.main import app
from socialops.observability import metrics_snapshot
from socialops.providers.ayrshare.client import AyrshareProviderError
from socialops.routers import posts as posts_router


def _set_user(user_id: str = "user-1"):
    async def _override():
        return AuthContext(user_id=user_id, email=f"{user_id}@example.com")

    app.dependency_overrides[get_current_user] = _override


def _posts_db(role: str = "owner", **post_overrides):
    post = {
        "id": "post-1",
        "workspace_id": "ws-1",
        "caption": "Fresh sourdough",
        "platforms": ["facebook", "instagram"],
        "media_urls": ["https://cdn.example/bread.jpg"],
        "status": "scheduled",
        "approval_status": "approved",
        "ayr_post_id": "ext-1",
        "scheduled_at": "2026-03-01T09:00:00+00:00",
        "retired_at": None,
    }
    post.update(post_overrides)
    return FakeSupabase(
        {
            "workspaces": [{"id": "ws-1", "ayr_profile_key": "pk-1"}],
            "workspace_members": [{"workspace_id": "ws-1", "user_id": "user-1", "role": role}],
            "posts": [post],
        }
    )


def _fake_provider(monkeypatch, *, create_result="ext-2", delete_result=True):
    calls = {"create": [], "delete": []}

    def _create(api_key, profile_key, caption, platforms, schedule_date=None, media_urls=None, base_url=None, timeout_seconds=30.0):
        calls["create"].append({"caption": caption, "platforms": platforms, "schedule_date": schedule_date, "media_urls": media_urls})
        if isinstance(create_result, Exception):
            raise create_result
        return create_result

    def _delete(api_key, profile_key, post_id, base_url=None, timeout_seconds=30.0):
        calls["delete"].append(post_id)
        if isinstance(delete_result, Exception):
            raise delete_result
        return delete_result

    monkeypatch.setattr(posts_router, "ayrshare_create_post", _create)
    monkeypatch.setattr(posts_router, "ayrshare_delete_post", _delete)
    return calls


def test_delete_removes_external_and_local_post_and_invalidates_cache(monkeypatch):
    fake_db = install_fake_db(monkeypatch, _posts_db())
    calls = _fake_provider(monkeypatch)
    monkeypatch.setattr(history_cache, "ayrshare_get_history", lambda *args, **kwargs: [{"id": "ext-1"}])
    history_cache.get_history("pk-1")
    _set_user()
    client = TestClient(app)

    response = client.delete("/api/posts/post-1", params={"workspace_id": "ws-1"})

    assert response.status_code == 200
    assert response.json() == {
        "post_id": "post-1",
        "deleted": True,
        "external_deleted": True,
        "cache_invalidated": True,
    }
    assert calls["delete"] == ["ext-1"]
    assert fake_db.tables["posts"] == []
    assert metrics_snapshot()["history.cache.invalidated|reason=post_deleted"] == 1


def test_delete_of_already_removed_external_post_still_deletes_locally(monkeypatch):
    fake_db = install_fake_db(monkeypatch, _posts_db())
    _fake_provider(monkeypatch, delete_result=False)
    _set_user()
    client = TestClient(app)

    response = client.delete("/api/posts/post-1", params={"workspace_id": "ws-1"})

    assert response.status_code == 200
    assert response.json()["external_deleted"] is False
    assert fake_db.tables["posts"] == []


def test_delete_keeps_local_post_when_provider_fails(monkeypatch):
    fake_db = install_fake_db(monkeypatch, _posts_db())
    _fake_provider(monkeypatch, delete_result=AyrshareProviderError("upstream down", status_code=502))
    _set_user()
    client = TestClient(app)

    response = client.delete("/api/posts/post-1", params={"workspace_id": "ws-1"})

    assert response.status_code == 503
    assert len(fake_db.tables["posts"]) == 1


def test_delete_requires_owner_role(monkeypatch):
    install_fake_db(monkeypatch, _posts_db(role="member"))
    _fake_provider(monkeypatch)
    _set_user()
    client = TestClient(app)

    response = client.delete("/api/posts/post-1", params={"workspace_id": "ws-1"})
    assert response.status_code == 403


def test_delete_unknown_post_is_not_found(monkeypatch):
    install_fake_db(monkeypatch, _posts_db())
    _set_user()
    client = TestClient(app)

    assert client.delete("/api/posts/post-missing", params={"workspace_id": "ws-1"}).status_code == 404


def test_reschedule_replaces_distributed_post(monkeypatch):
    fake_db = install_fake_db(monkeypatch, _posts_db(role="member"))
    calls = _fake_provider(monkeypatch)
    _set_user()
    client = TestClient(app)

    response = client.post(
        "/api/posts/post-1/reschedule",
        json={"workspace_id": "ws-1", "scheduled_at": "2026-03-05T12:00:00+00:00"},
    )

    assert response.status_code == 200
    body = response.json()
    assert body["previous_post_id"] == "post-1"
    assert body["ayr_post_id"] == "ext-2"
    assert body["previous_ayr_post_id"] == "ext-1"
    assert body["previous_external_deleted"] is True
    assert body["cache_invalidated"] is True

    rows = {row["id"]: row for row in fake_db.tables["posts"]}
    new_post = rows[body["post_id"]]
    old_post = rows["post-1"]
    assert new_post["supersedes_post_id"] == "post-1"
    assert new_post["ayr_post_id"] == "ext-2"
    assert new_post["status"] == "scheduled"
    assert new_post["caption"] == "Fresh sourdough"
    assert old_post["ayr_post_id"] == "ext-1"
    assert old_post["retired_at"] is not None
    assert old_post["superseded_by"] == new_post["id"]
    assert calls["create"] == [
        {
            "caption": "Fresh sourdough",
            "platforms": ["facebook", "instagram"],
            "schedule_date": "2026-03-05T12:00:00+00:00",
            "media_urls": ["https://cdn.example/bread.jpg"],
        }
    ]
    assert calls["delete"] == ["ext-1"]


def test_reschedule_succeeds_when_old_external_post_cannot_be_removed(monkeypatch):
    fake_db = install_fake_db(monkeypatch, _posts_db())
    _fake_provider(monkeypatch, delete_result=AyrshareProviderError("upstream down", status_code=503))
    _set_user()
    client = TestClient(app)

    response = client.post(
        "/api/posts/post-1/reschedule",
        json={"workspace_id": "ws-1", "scheduled_at": "2026-03-05T12:00:00+00:00", "caption": "New caption"},
    )

    assert response.status_code == 200
    assert response.json()["previous_external_deleted"] is False
    assert len(fake_db.tables["posts"]) == 2
    assert metrics_snapshot()["posts.reschedule.retire_failed|category=transient"] == 1


def test_reschedule_create_failure_changes_nothing(monkeypatch):
    fake_db = install_fake_db(monkeypatch, _posts_db())
    calls = _fake_provider(monkeypatch, create_result=AyrshareProviderError("bad request", status_code=400))
    _set_user()
    client = TestClient(app)

    response = client.post(
        "/api/posts/post-1/reschedule",
        json={"workspace_id": "ws-1", "scheduled_at": "2026-03-05T12:00:00+00:00"},
    )

    assert response.status_code == 502
    assert len(fake_db.tables["posts"]) == 1
    assert fake_db.tables["posts"][0]["retired_at"] is None
    assert calls["delete"] == []


def test_reschedule_removes_new_external_post_when_insert_fails(monkeypatch):
    fake_db = install_fake_db(monkeypatch, _posts_db())
    fake_db.tables["posts"].append(
        {"id": "post-9", "workspace_id": "ws-1", "ayr_post_id": "ext-2", "status": "scheduled", "retired_at": None}
    )
    calls = _fake_provider(monkeypatch, create_result="ext-2")
    _set_user()
    client = TestClient(app, raise_server_exceptions=False)

    response = client.post(
        "/api/posts/post-1/reschedule",
        json={"workspace_id": "ws-1", "scheduled_at": "2026-03-05T12:00:00+00:00"},
    )

    assert response.status_code == 500
    assert calls["delete"] == ["ext-2"]
    assert next(row for row in fake_db.tables["posts"] if row["id"] == "post-1")["retired_at"] is None


def test_reschedule_of_undistributed_post_updates_in_place(monkeypatch):
    fake_db = install_fake_db(monkeypatch, _posts_db(ayr_post_id=None))
    calls = _fake_provider(monkeypatch)
    _set_user()
    client = TestClient(app)

    response = client.post(
        "/api/posts/post-1/reschedule",
        json={"workspace_id": "ws-1", "scheduled_at": "2026-03-05T12:00:00+00:00"},
    )

    assert response.status_code == 200
    assert response.json()["post_id"] == "post-1"
    assert len(fake_db.tables["posts"]) == 1
    assert fake_db.tables["posts"][0]["scheduled_at"] == "2026-03-05T12:00:00+00:00"
    assert calls == {"create": [], "delete": []}


def test_reschedule_of_published_post_conflicts(monkeypatch):
    install_fake_db(monkeypatch, _posts_db(status="posted"))
    _fake_provider(monkeypatch)
    _set_user()
    client = TestClient(app)

    response = client.post(
        "/api/posts/post-1/reschedule",
        json={"workspace_id": "ws-1", "scheduled_at": "2026-03-05T12:00:00+00:00"},
    )
    assert response.status_code == 409


def test_reschedule_requires_write_role(monkeypatch):
    install_fake_db(monkeypatch, _posts_db(role="viewer"))
    _set_user()
    client = TestClient(app)

    response = client.post(
        "/api/posts/post-1/reschedule",
        json={"workspace_id": "ws-1", "scheduled_at": "2026-03-05T12:00:00+00:00"},
    )
    assert response.status_code == 403

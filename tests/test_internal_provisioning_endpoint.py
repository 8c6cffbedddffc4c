from fastapi.testclient import TestClient

from fakes import FakeSupabase, install_fake_db
from socialops import provisioning
from socialops.auth import create_access_token, create_super_admin_token
from socialops.auth.context import SuperAdminContext
from socialops.auth.dependencies import get_current_super_admin
from socialops.main import app
from socialops.routers import internal_provisioning as internal_provisioning_router


def _set_super_admin():
    async def _override():
        return SuperAdminContext(super_admin_id="sa-1", email="ops@example.com")

    app.dependency_overrides[get_current_super_admin] = _override


def _provisioning_db():
    return FakeSupabase(
        {
            "workspaces": [
                {
                    "id": "ws-failed",
                    "name": "Failed Co",
                    "subscription_status": "active",
                    "ayr_profile_key": None,
                    "provisioning_state": "provisioning_failed",
                    "provisioning_error": "upstream down",
                    "created_at": "2026-01-01T00:00:00+00:00",
                },
                {
                    "id": "ws-placeholder",
                    "name": "Placeholder Co",
                    "subscription_status": "trialing",
                    "ayr_profile_key": "PLACEHOLDER",
                    "provisioning_state": "provisioned",
                    "created_at": "2026-01-02T00:00:00+00:00",
                },
                {
                    "id": "ws-no-ref",
                    "name": "No Ref Co",
                    "subscription_status": "active",
                    "ayr_profile_key": "pk-3",
                    "ayr_ref_id": None,
                    "provisioning_state": "provisioned",
                    "created_at": "2026-01-03T00:00:00+00:00",
                },
                {
                    "id": "ws-healthy",
                    "subscription_status": "active",
                    "ayr_profile_key": "pk-4",
                    "ayr_ref_id": "ref-4",
                    "provisioning_state": "provisioned",
                    "created_at": "2026-01-04T00:00:00+00:00",
                },
                {
                    "id": "ws-cancelled",
                    "subscription_status": "cancelled",
                    "ayr_profile_key": None,
                    "provisioning_state": "none",
                    "created_at": "2026-01-05T00:00:00+00:00",
                },
            ],
            "super_admins": [{"id": "sa-1", "email": "ops@example.com"}],
        }
    )


def test_internal_provisioning_requires_super_admin(monkeypatch):
    install_fake_db(monkeypatch, _provisioning_db())
    client = TestClient(app)

    assert client.get("/api/internal/provisioning/workspaces/needs-repair").status_code == 401
    user_token = create_access_token("user-1", "user@example.com")
    response = client.get(
        "/api/internal/provisioning/workspaces/needs-repair",
        headers={"Authorization": f"Bearer {user_token}"},
    )
    assert response.status_code == 401


def test_super_admin_token_is_accepted(monkeypatch):
    install_fake_db(monkeypatch, _provisioning_db())
    monkeypatch.setattr(internal_provisioning_router.settings, "ayrshare_placeholder_profile_key", "PLACEHOLDER")
    client = TestClient(app)

    response = client.get(
        "/api/internal/provisioning/workspaces/ws-healthy",
        headers={"Authorization": f"Bearer {create_super_admin_token('sa-1')}"},
    )

    assert response.status_code == 200
    assert response.json()["has_profile"] is True
    assert response.json()["has_ref_id"] is True


def test_needs_repair_lists_paying_workspaces_without_usable_profile(monkeypatch):
    install_fake_db(monkeypatch, _provisioning_db())
    monkeypatch.setattr(internal_provisioning_router.settings, "ayrshare_placeholder_profile_key", "PLACEHOLDER")
    _set_super_admin()
    client = TestClient(app)

    response = client.get("/api/internal/provisioning/workspaces/needs-repair")

    assert response.status_code == 200
    rows = response.json()
    assert [row["workspace_id"] for row in rows] == ["ws-failed", "ws-placeholder", "ws-no-ref"]
    assert rows[1]["placeholder_profile"] is True
    assert rows[1]["has_profile"] is False


def test_repair_provisions_failed_workspace(monkeypatch):
    fake_db = install_fake_db(monkeypatch, _provisioning_db())
    titles = []

    def _create(api_key, title, base_url=None, timeout_seconds=30.0):
        titles.append(title)
        return {"profileKey": "pk-new", "refId": "ref-new"}

    monkeypatch.setattr(provisioning, "ayrshare_create_profile", _create)
    _set_super_admin()
    client = TestClient(app)

    response = client.post("/api/internal/provisioning/workspaces/ws-failed/repair", json={})

    assert response.status_code == 200
    assert response.json() == {
        "workspace_id": "ws-failed",
        "status": "provisioned",
        "has_profile": True,
        "has_ref_id": True,
        "attempts": 1,
        "error": None,
    }
    assert titles == ["Failed Co"]
    workspace = next(row for row in fake_db.tables["workspaces"] if row["id"] == "ws-failed")
    assert workspace["provisioning_state"] == "provisioned"
    assert workspace["provisioning_error"] is None


def test_repair_backfills_missing_ref_id_without_new_profile(monkeypatch):
    fake_db = install_fake_db(monkeypatch, _provisioning_db())
    created = []
    monkeypatch.setattr(provisioning, "ayrshare_create_profile", lambda *args, **kwargs: created.append(args))
    monkeypatch.setattr(
        provisioning,
        "ayrshare_list_profiles",
        lambda api_key, base_url=None, timeout_seconds=30.0: [{"profileKey": "pk-3", "refId": "ref-3"}],
    )
    _set_super_admin()
    client = TestClient(app)

    response = client.post("/api/internal/provisioning/workspaces/ws-no-ref/repair", json={})

    assert response.status_code == 200
    assert response.json()["status"] == "already_provisioned"
    assert response.json()["has_ref_id"] is True
    assert created == []
    workspace = next(row for row in fake_db.tables["workspaces"] if row["id"] == "ws-no-ref")
    assert workspace["ayr_ref_id"] == "ref-3"


def test_repair_with_recreate_replaces_profile(monkeypatch):
    fake_db = install_fake_db(monkeypatch, _provisioning_db())
    monkeypatch.setattr(
        provisioning,
        "ayrshare_create_profile",
        lambda api_key, title, base_url=None, timeout_seconds=30.0: {"profileKey": "pk-fresh", "refId": "ref-fresh"},
    )
    _set_super_admin()
    client = TestClient(app)

    response = client.post(
        "/api/internal/provisioning/workspaces/ws-healthy/repair",
        json={"recreate": True, "display_name": "Healthy Co"},
    )

    assert response.status_code == 200
    assert response.json()["status"] == "provisioned"
    workspace = next(row for row in fake_db.tables["workspaces"] if row["id"] == "ws-healthy")
    assert workspace["ayr_profile_key"] == "pk-fresh"


def test_repair_refuses_unpaid_workspace(monkeypatch):
    install_fake_db(monkeypatch, _provisioning_db())
    _set_super_admin()
    client = TestClient(app)

    response = client.post("/api/internal/provisioning/workspaces/ws-cancelled/repair", json={})
    assert response.status_code == 409


def test_unknown_workspace_is_not_found(monkeypatch):
    install_fake_db(monkeypatch, _provisioning_db())
    _set_super_admin()
    client = TestClient(app)

    assert client.get("/api/internal/provisioning/workspaces/ws-missing").status_code == 404
    assert client.post("/api/internal/provisioning/workspaces/ws-missing/repair", json={}).status_code == 404

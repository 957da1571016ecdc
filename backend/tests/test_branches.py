# Overview: Pytest coverage for branch management routes and the main-branch rule.

import pytest
from sqlalchemy.exc import IntegrityError

from opsdesk.models import Branch
from opsdesk.services import tenant_service
from opsdesk.validation import ConflictError

from conftest import login_headers


def _main_branches(db_session, tenant_id):
    return db_session.query(Branch).filter_by(tenant_id=tenant_id, is_main=True).all()


class TestBranchRoutes:

    def test_list_puts_main_first(self, client, db_session, admin_a, branch_a, branch_a2):
        resp = client.get("/api/branches", headers=login_headers(client, admin_a))

        assert resp.status_code == 200
        assert [b["id"] for b in resp.json["items"]] == [branch_a.id, branch_a2.id]
        assert resp.json["items"][0]["is_main"] is True

    def test_create_branch(self, client, db_session, admin_a, tenant_a):
        resp = client.post(
            "/api/branches",
            json={"name": "Filial Sul", "code": "SUL", "state": "RS"},
            headers=login_headers(client, admin_a),
        )

        assert resp.status_code == 201
        assert resp.json["tenant_id"] == tenant_a.id
        assert resp.json["is_main"] is False
        assert resp.json["version_id"] == 1

    def test_duplicate_name_is_rejected(self, client, db_session, admin_a, branch_a2):
        resp = client.post("/api/branches", json={"name": "Filial Norte"}, headers=login_headers(client, admin_a))

        assert resp.status_code == 400
        assert "already exists" in resp.json["error"]

    def test_same_name_in_other_tenant_is_allowed(self, client, db_session, admin_b, branch_a2):
        resp = client.post("/api/branches", json={"name": "Filial Norte"}, headers=login_headers(client, admin_b))
        assert resp.status_code == 201

    def test_invalid_payload(self, client, db_session, admin_a):
        resp = client.post("/api/branches", json={"state": "RSX"}, headers=login_headers(client, admin_a))

        assert resp.status_code == 400
        assert "name: is required" in resp.json["details"]
        assert "state: must be at most 2 characters" in resp.json["details"]

    def test_director_cannot_create(self, client, db_session, director_a):
        resp = client.post("/api/branches", json={"name": "Filial Sul"}, headers=login_headers(client, director_a))
        assert resp.status_code == 403


class TestBranchUpdates:

    def test_update_with_current_version(self, client, db_session, admin_a, branch_a2):
        resp = client.patch(
            f"/api/branches/{branch_a2.id}",
            json={"city": "Manaus", "version_id": 1},
            headers=login_headers(client, admin_a),
        )

        assert resp.status_code == 200
        assert resp.json["city"] == "Manaus"
        assert resp.json["name"] == "Filial Norte"
        assert resp.json["version_id"] == 2

    def test_stale_version_conflicts(self, client, db_session, admin_a, branch_a2):
        headers = login_headers(client, admin_a)
        client.patch(f"/api/branches/{branch_a2.id}", json={"city": "Belem"}, headers=headers)

        resp = client.patch(
            f"/api/branches/{branch_a2.id}",
            json={"city": "Manaus", "version_id": 1},
            headers=headers,
        )

        assert resp.status_code == 400
        assert resp.json["error"] == "Branch was modified by another user"
        assert db_session.get(Branch, branch_a2.id).city == "Belem"

    def test_non_integer_version(self, client, db_session, admin_a, branch_a2):
        resp = client.patch(
            f"/api/branches/{branch_a2.id}",
            json={"city": "Manaus", "version_id": "1"},
            headers=login_headers(client, admin_a),
        )
        assert resp.status_code == 400


class TestMainBranch:

    def test_main_branch_cannot_be_deactivated(self, client, db_session, admin_a, branch_a):
        resp = client.post(f"/api/branches/{branch_a.id}/deactivate", headers=login_headers(client, admin_a))

        assert resp.status_code == 400
        assert db_session.get(Branch, branch_a.id).is_active is True

    def test_deactivate_other_branch(self, client, db_session, admin_a, branch_a2):
        headers = login_headers(client, admin_a)

        resp = client.post(f"/api/branches/{branch_a2.id}/deactivate", headers=headers)

        assert resp.status_code == 200
        assert resp.json["is_active"] is False
        listed = client.get("/api/branches", headers=headers).json
        assert branch_a2.id not in [b["id"] for b in listed["items"]]
        listed_all = client.get("/api/branches?include_inactive=true", headers=headers).json
        assert branch_a2.id in [b["id"] for b in listed_all["items"]]

    def test_move_main_flag(self, client, db_session, admin_a, tenant_a, branch_a, branch_a2):
        resp = client.post(f"/api/branches/{branch_a2.id}/main", headers=login_headers(client, admin_a))

        assert resp.status_code == 200
        mains = _main_branches(db_session, tenant_a.id)
        assert [b.id for b in mains] == [branch_a2.id]

    def test_inactive_branch_cannot_become_main(self, db_session, tenant_a, branch_a, branch_a2):
        tenant_service.deactivate_branch(branch_a2.id, tenant_a.id)

        with pytest.raises(ConflictError):
            tenant_service.set_main_branch(branch_a2.id, tenant_a.id)

        assert [b.id for b in _main_branches(db_session, tenant_a.id)] == [branch_a.id]

    def test_second_main_is_rejected_by_database(self, db_session, tenant_a, branch_a2):
        branch_a2.is_main = True

        with pytest.raises(IntegrityError):
            db_session.commit()
        db_session.rollback()

    def test_technician_cannot_move_main(self, client, db_session, technician_a, branch_a2):
        resp = client.post(f"/api/branches/{branch_a2.id}/main", headers=login_headers(client, technician_a))
        assert resp.status_code == 403

    def test_new_tenant_has_exactly_one_main(self, db_session):
        tenant = tenant_service.create_tenant(name="Omega", slug="omega")

        mains = _main_branches(db_session, tenant.id)
        assert len(mains) == 1
        assert mains[0].name == "Matriz"
        assert tenant.status == "trial"

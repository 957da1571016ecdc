# Overview: Pytest coverage for tenant/admin/user provisioning and password management.

"""
Provisioning Tests

Verifies:
1. Only superadmins provision tenants and tenant admins
2. Collisions and scope errors are rejected before any write
3. A failed admin identity removes the freshly created tenant
4. Profile/role failures after the identity exists are logged, not undone
5. Tenant users are confined to the caller's tenant
6. Password changes follow the caller/target rules and revoke sessions
7. The first superadmin needs the init token
"""

import pytest
from sqlalchemy.exc import SQLAlchemyError

from opsdesk.extensions import db
from opsdesk.models import Branch, Profile, SecurityEvent, Tenant, User, UserPermissions
from opsdesk.permissions.roles import ADMIN, MANAGER, SUPERADMIN, TECHNICIAN, WAREHOUSE
from opsdesk.services import auth_service, permission_service, provisioning_service, session_service
from opsdesk.services.auth_service import IdentityError
from opsdesk.services.provisioning_service import ProvisioningError
from opsdesk.validation import ValidationError

from conftest import INIT_TOKEN, PASSWORD, make_user


STRONG_PASSWORD = "Forte@2024"


def _new_tenant_payload(slug="gama", email="admin@gama.com"):
    return {
        "tenant": {"name": "Gama Telecom", "slug": slug},
        "admin": {"email": email, "password": "secret1", "full_name": "Gama Admin"},
    }


def _user(email):
    return db.session.query(User).filter_by(email=email).first()


class TestCreateTenantWithAdmin:
    """New tenant + first admin."""

    def test_creates_tenant_branch_identity_profile_and_role(self, db_session, superadmin):
        result = provisioning_service.create_tenant_admin(_new_tenant_payload(), caller_id=superadmin.id)

        assert result["success"] is True
        assert result["tenant"]["slug"] == "gama"
        assert result["user"]["email"] == "admin@gama.com"

        tenant = db.session.query(Tenant).filter_by(slug="gama").one()
        main_branch = db.session.query(Branch).filter_by(tenant_id=tenant.id, is_main=True).one()
        user = _user("admin@gama.com")

        assert user.profile.tenant_id == tenant.id
        assert user.profile.selected_branch_id == main_branch.id
        assert auth_service.get_user_roles(user.id, tenant.id) == {ADMIN}

        event = db.session.query(SecurityEvent).filter_by(event_type="TENANT_PROVISIONED").one()
        assert event.user_id == superadmin.id
        assert event.tenant_id == tenant.id

    def test_new_admin_can_log_in(self, db_session, superadmin):
        provisioning_service.create_tenant_admin(_new_tenant_payload(), caller_id=superadmin.id)

        assert auth_service.authenticate("ADMIN@gama.com", "secret1") is not None

    def test_slug_collision_writes_nothing(self, db_session, superadmin, tenant_a):
        with pytest.raises(ProvisioningError) as exc_info:
            provisioning_service.create_tenant_admin(_new_tenant_payload(slug="acme"), caller_id=superadmin.id)

        assert exc_info.value.status == 400
        assert db.session.query(Tenant).count() == 1
        assert _user("admin@gama.com") is None

    def test_email_collision_writes_nothing(self, db_session, superadmin, admin_a):
        with pytest.raises(ProvisioningError) as exc_info:
            provisioning_service.create_tenant_admin(
                _new_tenant_payload(email="admin@acme.com"),
                caller_id=superadmin.id,
            )

        assert exc_info.value.status == 400
        assert db.session.query(Tenant).filter_by(slug="gama").first() is None

    def test_identity_failure_removes_tenant(self, db_session, superadmin, monkeypatch):
        def failing_identity(email, password):
            raise IdentityError("auth backend unavailable")

        monkeypatch.setattr(auth_service, "create_identity", failing_identity)

        with pytest.raises(ProvisioningError) as exc_info:
            provisioning_service.create_tenant_admin(_new_tenant_payload(), caller_id=superadmin.id)

        assert exc_info.value.status == 500
        assert db.session.query(Tenant).filter_by(slug="gama").first() is None
        assert db.session.query(Branch).count() == 0

    def test_profile_failure_is_logged_not_undone(self, db_session, superadmin, monkeypatch):
        def failing_profile(*args, **kwargs):
            raise SQLAlchemyError("profiles table locked")

        monkeypatch.setattr(auth_service, "upsert_profile", failing_profile)

        result = provisioning_service.create_tenant_admin(_new_tenant_payload(), caller_id=superadmin.id)

        assert result["success"] is True
        user = _user("admin@gama.com")
        assert user is not None
        assert db.session.get(Profile, user.id) is None
        tenant = db.session.query(Tenant).filter_by(slug="gama").one()
        assert auth_service.get_user_roles(user.id, tenant.id) == {ADMIN}

    def test_non_superadmin_is_forbidden(self, db_session, admin_a):
        with pytest.raises(ProvisioningError) as exc_info:
            provisioning_service.create_tenant_admin(_new_tenant_payload(), caller_id=admin_a.id)

        assert exc_info.value.status == 403
        assert db.session.query(Tenant).filter_by(slug="gama").first() is None
        assert db.session.query(SecurityEvent).filter_by(
            user_id=admin_a.id,
            event_type="PERMISSION_DENIED",
            resource="create-tenant-admin",
        ).count() == 1

    def test_short_password_is_invalid(self, db_session, superadmin):
        payload = _new_tenant_payload()
        payload["admin"]["password"] = "12345"

        with pytest.raises(ValidationError) as exc_info:
            provisioning_service.create_tenant_admin(payload, caller_id=superadmin.id)

        assert "admin.password: must be at least 6 characters" in exc_info.value.details


class TestCreateBranchAdmin:
    """Admin, manager or director for an existing tenant."""

    def _payload(self, tenant_id, **extra):
        payload = {
            "tenant_id": tenant_id,
            "email": "gestor@acme.com",
            "password": "secret1",
            "full_name": "Gestor",
        }
        payload.update(extra)
        return payload

    def test_branch_admin(self, db_session, superadmin, tenant_a, branch_a2):
        result = provisioning_service.create_tenant_admin(
            self._payload(tenant_a.id, branch_id=branch_a2.id),
            caller_id=superadmin.id,
        )

        user = _user("gestor@acme.com")
        assert result["user"]["id"] == user.id
        assert user.profile.selected_branch_id == branch_a2.id
        assert auth_service.get_user_roles(user.id, tenant_a.id) == {ADMIN}
        assert permission_service.is_director(user.id, tenant_a.id) is False

        event = db.session.query(SecurityEvent).filter_by(event_type="USER_PROVISIONED").one()
        assert event.tenant_id == tenant_a.id

    def test_no_branch_makes_director(self, db_session, superadmin, tenant_a):
        provisioning_service.create_tenant_admin(
            self._payload(tenant_a.id, role=MANAGER),
            caller_id=superadmin.id,
        )

        user = _user("gestor@acme.com")
        assert auth_service.get_user_roles(user.id, tenant_a.id) == {MANAGER}
        assert permission_service.is_director(user.id, tenant_a.id) is True

    def test_branch_of_other_tenant_is_not_found(self, db_session, superadmin, tenant_a, branch_b):
        with pytest.raises(ProvisioningError) as exc_info:
            provisioning_service.create_tenant_admin(
                self._payload(tenant_a.id, branch_id=branch_b.id),
                caller_id=superadmin.id,
            )

        assert exc_info.value.status == 404
        assert _user("gestor@acme.com") is None
        assert db.session.query(SecurityEvent).filter_by(event_type="CROSS_TENANT_ACCESS_DENIED").count() == 1

    def test_template_of_other_tenant_is_not_found(self, db_session, superadmin, tenant_a, tenant_b):
        template = permission_service.create_template(tenant_b.id, {"name": "Beta"})

        with pytest.raises(ProvisioningError) as exc_info:
            provisioning_service.create_tenant_admin(
                self._payload(tenant_a.id, template_id=template.id),
                caller_id=superadmin.id,
            )

        assert exc_info.value.status == 404
        assert _user("gestor@acme.com") is None

    def test_unknown_tenant_is_not_found(self, db_session, superadmin):
        with pytest.raises(ProvisioningError) as exc_info:
            provisioning_service.create_tenant_admin(self._payload(9999), caller_id=superadmin.id)

        assert exc_info.value.status == 404


class TestCreateTenantUser:
    """Regular users created by tenant user managers."""

    def _payload(self, **extra):
        payload = {
            "email": "novo@acme.com",
            "password": STRONG_PASSWORD,
            "full_name": "Novo Tecnico",
        }
        payload.update(extra)
        return payload

    def test_defaults_to_technician_in_callers_tenant(self, db_session, tenant_a, admin_a):
        result = provisioning_service.create_tenant_user(self._payload(), admin_a.id, tenant_a.id)

        user = _user("novo@acme.com")
        assert result["user_id"] == user.id
        assert user.profile.tenant_id == tenant_a.id
        assert auth_service.get_user_roles(user.id, tenant_a.id) == {TECHNICIAN}

        row = db.session.query(UserPermissions).filter_by(user_id=user.id, tenant_id=tenant_a.id).one()
        assert row.template_id is None

    def test_role_comes_from_template(self, db_session, tenant_a, admin_a, branch_a2):
        template = permission_service.create_template(
            tenant_a.id, {"name": "Almoxarife", "role": WAREHOUSE, "can_delete": True}
        )

        provisioning_service.create_tenant_user(
            self._payload(template_id=template.id, branch_id=branch_a2.id),
            admin_a.id,
            tenant_a.id,
        )

        user = _user("novo@acme.com")
        assert auth_service.get_user_roles(user.id, tenant_a.id) == {WAREHOUSE}
        assert user.profile.selected_branch_id == branch_a2.id
        permissions = permission_service.resolve_permissions(user.id, tenant_a.id)
        assert permissions.source == "template"
        assert permissions.can_delete is True

    def test_weak_password_is_rejected(self, db_session, tenant_a, admin_a):
        with pytest.raises(ValidationError) as exc_info:
            provisioning_service.create_tenant_user(self._payload(password="fraca"), admin_a.id, tenant_a.id)

        assert exc_info.value.details[0].startswith("password:")
        assert _user("novo@acme.com") is None

    def test_other_tenant_is_not_found_for_admin(self, db_session, tenant_a, tenant_b, admin_a):
        with pytest.raises(ProvisioningError) as exc_info:
            provisioning_service.create_tenant_user(self._payload(tenant_id=tenant_b.id), admin_a.id, tenant_a.id)

        assert exc_info.value.status == 404
        assert _user("novo@acme.com") is None

    def test_superadmin_may_target_any_tenant(self, db_session, tenant_b, superadmin):
        provisioning_service.create_tenant_user(self._payload(tenant_id=tenant_b.id), superadmin.id, None)

        assert _user("novo@acme.com").profile.tenant_id == tenant_b.id

    def test_branch_of_other_tenant_is_not_found(self, db_session, tenant_a, admin_a, branch_b):
        with pytest.raises(ProvisioningError) as exc_info:
            provisioning_service.create_tenant_user(self._payload(branch_id=branch_b.id), admin_a.id, tenant_a.id)

        assert exc_info.value.status == 404

    def test_existing_email_is_rejected(self, db_session, tenant_a, admin_a, technician_a):
        with pytest.raises(ProvisioningError) as exc_info:
            provisioning_service.create_tenant_user(
                self._payload(email="TECH@acme.com"), admin_a.id, tenant_a.id
            )

        assert exc_info.value.status == 400

    @pytest.mark.parametrize("caller_fixture", ["technician_a", "director_a"])
    def test_non_managers_are_forbidden(self, request, db_session, tenant_a, caller_fixture):
        caller = request.getfixturevalue(caller_fixture)

        with pytest.raises(ProvisioningError) as exc_info:
            provisioning_service.create_tenant_user(self._payload(), caller.id, tenant_a.id)

        assert exc_info.value.status == 403


class TestListTenantUsers:

    def test_lists_only_callers_tenant(self, db_session, tenant_a, admin_a, technician_a, admin_b):
        users = provisioning_service.list_tenant_users(admin_a.id, tenant_a.id)

        by_email = {u["email"]: u for u in users}
        assert set(by_email) == {"admin@acme.com", "tech@acme.com"}
        assert by_email["admin@acme.com"]["role"] == ADMIN
        assert by_email["tech@acme.com"]["roles"] == [TECHNICIAN]
        assert by_email["tech@acme.com"]["template_id"] is None

    def test_branch_manager_can_list(self, db_session, tenant_a, branch_a, technician_a):
        manager = make_user("gerente@acme.com", tenant_a.id, MANAGER, branch_a.id)

        users = provisioning_service.list_tenant_users(manager.id, tenant_a.id)

        assert {u["email"] for u in users} == {"gerente@acme.com", "tech@acme.com"}

    def test_technician_is_forbidden(self, db_session, tenant_a, technician_a):
        with pytest.raises(ProvisioningError) as exc_info:
            provisioning_service.list_tenant_users(technician_a.id, tenant_a.id)

        assert exc_info.value.status == 403


class TestUpdateUserPassword:

    def test_manager_changes_tenant_user_password(self, db_session, tenant_a, admin_a, technician_a):
        _, token = session_service.create_session(technician_a.id)

        provisioning_service.update_user_password(
            {"user_id": technician_a.id, "new_password": STRONG_PASSWORD},
            admin_a.id,
            tenant_a.id,
        )

        assert session_service.validate_session(token) is None
        assert auth_service.authenticate("tech@acme.com", STRONG_PASSWORD) is not None
        assert auth_service.authenticate("tech@acme.com", PASSWORD) is None
        assert db.session.query(SecurityEvent).filter_by(event_type="PASSWORD_CHANGED").count() == 1

    def test_user_changes_own_password(self, db_session, tenant_a, technician_a):
        result = provisioning_service.update_user_password(
            {"user_id": technician_a.id, "new_password": STRONG_PASSWORD},
            technician_a.id,
            tenant_a.id,
        )

        assert result == {"success": True}

    def test_technician_cannot_change_others(self, db_session, tenant_a, admin_a, technician_a):
        with pytest.raises(ProvisioningError) as exc_info:
            provisioning_service.update_user_password(
                {"user_id": admin_a.id, "new_password": STRONG_PASSWORD},
                technician_a.id,
                tenant_a.id,
            )

        assert exc_info.value.status == 403

    def test_other_tenant_user_is_not_found(self, db_session, tenant_b, admin_b, technician_a):
        with pytest.raises(ProvisioningError) as exc_info:
            provisioning_service.update_user_password(
                {"user_id": technician_a.id, "new_password": STRONG_PASSWORD},
                admin_b.id,
                tenant_b.id,
            )

        assert exc_info.value.status == 404

    def test_only_superadmin_changes_superadmin_password(self, db_session, tenant_a, branch_a, admin_a, superadmin):
        owner = make_user("owner@acme.com", tenant_a.id, ADMIN, branch_a.id)
        auth_service.assign_role(owner.id, SUPERADMIN, None)

        with pytest.raises(ProvisioningError) as exc_info:
            provisioning_service.update_user_password(
                {"user_id": owner.id, "new_password": STRONG_PASSWORD},
                admin_a.id,
                tenant_a.id,
            )
        assert exc_info.value.status == 403

        provisioning_service.update_user_password(
            {"user_id": owner.id, "new_password": STRONG_PASSWORD},
            superadmin.id,
            None,
        )
        assert auth_service.authenticate("owner@acme.com", STRONG_PASSWORD) is not None

    def test_weak_password_is_rejected(self, db_session, tenant_a, technician_a):
        with pytest.raises(ValidationError):
            provisioning_service.update_user_password(
                {"user_id": technician_a.id, "new_password": "abc"},
                technician_a.id,
                tenant_a.id,
            )


class TestCreateSuperadmin:

    PAYLOAD = {"email": "root@opsdesk.io", "password": "secret1"}

    @pytest.mark.parametrize("token", [None, "", "wrong-token"])
    def test_first_superadmin_requires_init_token(self, db_session, token):
        with pytest.raises(ProvisioningError) as exc_info:
            provisioning_service.create_superadmin(dict(self.PAYLOAD), init_token=token)

        assert exc_info.value.status == 401
        assert _user("root@opsdesk.io") is None

    def test_first_superadmin_with_init_token(self, db_session):
        result = provisioning_service.create_superadmin(dict(self.PAYLOAD), init_token=INIT_TOKEN)

        user = _user("root@opsdesk.io")
        assert result["user_id"] == user.id
        assert auth_service.is_superadmin(user.id)

        system = db.session.query(Tenant).filter_by(slug="system").one()
        assert system.status == "active"
        assert user.profile.tenant_id == system.id
        assert user.profile.full_name == "Super Admin"

    def test_existing_identity_is_promoted(self, db_session, technician_a):
        provisioning_service.create_superadmin(
            {"email": "tech@acme.com", "password": "newsecret"},
            init_token=INIT_TOKEN,
        )

        assert auth_service.is_superadmin(technician_a.id)
        assert auth_service.authenticate("tech@acme.com", "newsecret") is not None

    def test_after_bootstrap_requires_superadmin_caller(self, db_session, superadmin, admin_a):
        with pytest.raises(ProvisioningError) as exc_info:
            provisioning_service.create_superadmin(dict(self.PAYLOAD), init_token=INIT_TOKEN)
        assert exc_info.value.status == 401

        with pytest.raises(ProvisioningError) as exc_info:
            provisioning_service.create_superadmin(dict(self.PAYLOAD), caller_id=admin_a.id)
        assert exc_info.value.status == 403

        provisioning_service.create_superadmin(dict(self.PAYLOAD), caller_id=superadmin.id)
        assert auth_service.is_superadmin(_user("root@opsdesk.io").id)

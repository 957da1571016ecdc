"""
Pytest fixtures for OpsDesk backend tests.

Provides test database setup, two isolated tenants with users in every
role shape (superadmin, admin, director, technician), products and an
authenticated test client helper.
"""

from decimal import Decimal

import pytest
from opsdesk import create_app
from opsdesk.extensions import db
from opsdesk.models import Product
from opsdesk.permissions.roles import ADMIN, SUPERADMIN, TECHNICIAN
from opsdesk.services import auth_service, permission_service, tenant_service


PASSWORD = "Password123!"
INIT_TOKEN = "test-init-token"


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'PERMISSIONS_CACHE_TTL_SECONDS': 30,
        'SUPERADMIN_INIT_TOKEN': INIT_TOKEN,
    })

    with app.app_context():
        db.create_all()
        yield app
        db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def db_session(app):
    """Create fresh database for each test."""
    with app.app_context():
        # Clear all data but keep schema
        meta = db.metadata
        for table in reversed(meta.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()
        permission_service.clear_permission_cache()

        yield db.session

        # Cleanup after test
        db.session.rollback()
        permission_service.clear_permission_cache()


def make_user(email, tenant_id, role, branch_id=None, full_name=None):
    """Identity + profile + role, the way provisioning builds them."""
    user = auth_service.create_identity(email, PASSWORD)
    auth_service.upsert_profile(
        user.id,
        tenant_id=tenant_id,
        email=email,
        full_name=full_name or email.split("@")[0],
        selected_branch_id=branch_id,
    )
    auth_service.assign_role(user.id, role, tenant_id)
    return user


@pytest.fixture(scope='function')
def tenant_a(db_session):
    """Tenant A (first tenant) with its main branch."""
    return tenant_service.create_tenant(name="Acme Servicos", slug="acme", status="active")


@pytest.fixture(scope='function')
def tenant_b(db_session):
    """Tenant B (second tenant) with its main branch."""
    return tenant_service.create_tenant(name="Beta Obras", slug="beta", status="active")


@pytest.fixture(scope='function')
def branch_a(db_session, tenant_a):
    """Main branch of tenant A."""
    return tenant_service.get_main_branch(tenant_a.id)


@pytest.fixture(scope='function')
def branch_a2(db_session, tenant_a):
    """Second (non-main) branch of tenant A."""
    return tenant_service.create_branch(tenant_a.id, {"name": "Filial Norte", "code": "NORTE"})


@pytest.fixture(scope='function')
def branch_b(db_session, tenant_b):
    """Main branch of tenant B."""
    return tenant_service.get_main_branch(tenant_b.id)


@pytest.fixture(scope='function')
def superadmin(db_session):
    """Platform superadmin without a tenant profile."""
    return make_user("root@opsdesk.local", None, SUPERADMIN)


@pytest.fixture(scope='function')
def admin_a(db_session, tenant_a, branch_a):
    """Admin of tenant A bound to the main branch."""
    return make_user("admin@acme.com", tenant_a.id, ADMIN, branch_a.id)


@pytest.fixture(scope='function')
def director_a(db_session, tenant_a):
    """Admin of tenant A with no selected branch (director)."""
    return make_user("director@acme.com", tenant_a.id, ADMIN, None)


@pytest.fixture(scope='function')
def technician_a(db_session, tenant_a, branch_a):
    """Technician of tenant A with no permission row."""
    return make_user("tech@acme.com", tenant_a.id, TECHNICIAN, branch_a.id)


@pytest.fixture(scope='function')
def admin_b(db_session, tenant_b, branch_b):
    """Admin of tenant B."""
    return make_user("admin@beta.com", tenant_b.id, ADMIN, branch_b.id)


def _product(tenant_id, branch_id, code, name, **extra):
    product = Product(
        tenant_id=tenant_id,
        branch_id=branch_id,
        code=code,
        name=name,
        current_stock=extra.pop("current_stock", 0),
        cost_price=extra.pop("cost_price", Decimal("10.00")),
        **extra,
    )
    db.session.add(product)
    db.session.commit()
    return product


@pytest.fixture(scope='function')
def product_a(db_session, tenant_a, branch_a):
    """Non-serialized product in tenant A with 10 units."""
    return _product(tenant_a.id, branch_a.id, "CABO-01", "Cabo UTP", current_stock=10)


@pytest.fixture(scope='function')
def serialized_product_a(db_session, tenant_a, branch_a):
    """Serialized product in tenant A with no stock."""
    return _product(tenant_a.id, branch_a.id, "ONU-01", "ONU Fibra", is_serialized=True)


@pytest.fixture(scope='function')
def product_b(db_session, tenant_b, branch_b):
    """Product in tenant B."""
    return _product(tenant_b.id, branch_b.id, "CABO-01", "Cabo UTP Beta", current_stock=3)


def get_auth_token(client, email: str, password: str = PASSWORD) -> str:
    """Helper to get auth token for a user."""
    response = client.post('/api/auth/login', json={
        'email': email,
        'password': password
    })
    if response.status_code == 200:
        return response.json.get('token')
    return None


def auth_headers(token: str) -> dict:
    """Helper to create Authorization headers."""
    return {'Authorization': f'Bearer {token}'}


def login_headers(client, user) -> dict:
    return auth_headers(get_auth_token(client, user.email))

# Overview: Service-layer operations for identities; password hashing, authentication and role rows.

"""
Identity and Authentication Service

WHY: Every action must be attributable to one login. Identities (User rows)
are global: an email can exist only once across the whole platform. Tenant
membership is expressed by Profile.tenant_id and UserRole rows.

SECURITY NOTES:
- Passwords hashed with bcrypt (cost factor 12)
- Self-service flows require strong passwords (see validate_password_strength)
- Superadmin provisioning only enforces a minimum length (validated upstream)
- Session tokens managed separately (see session_service.py)
"""

import re

import bcrypt
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import User, Profile, UserRole, Tenant
from ..permissions.roles import ALL_ROLES, SUPERADMIN
from opsdesk.time_utils import utcnow


PASSWORD_MIN_LENGTH = 8
PASSWORD_MAX_LENGTH = 100

SPECIAL_CHARACTERS_RE = re.compile(r"[!@#$%^&*(),.?\":{}|<>_\-+=\[\]\\/`~;']")


class PasswordValidationError(Exception):
    """Raised when password doesn't meet strength requirements."""
    pass


class IdentityError(Exception):
    """Raised when an identity cannot be created or updated."""
    pass


def validate_password_strength(password: str) -> None:
    """
    Validate password meets strength requirements.

    Requirements:
    - 8 to 100 characters
    - At least one uppercase letter
    - At least one lowercase letter
    - At least one digit
    - At least one special character

    Raises PasswordValidationError if requirements not met.
    """
    if len(password) < PASSWORD_MIN_LENGTH:
        raise PasswordValidationError("Password must be at least 8 characters long")

    if len(password) > PASSWORD_MAX_LENGTH:
        raise PasswordValidationError("Password must be at most 100 characters long")

    if not re.search(r'[A-Z]', password):
        raise PasswordValidationError("Password must contain at least one uppercase letter")

    if not re.search(r'[a-z]', password):
        raise PasswordValidationError("Password must contain at least one lowercase letter")

    if not re.search(r'\d', password):
        raise PasswordValidationError("Password must contain at least one digit")

    if not SPECIAL_CHARACTERS_RE.search(password):
        raise PasswordValidationError("Password must contain at least one special character")


def hash_password(password: str) -> str:
    """
    Hash password using bcrypt with cost factor 12.

    Strength is NOT checked here; callers validate according to the flow
    (strong rules for tenant users, minimum length for provisioning).
    """
    salt = bcrypt.gensalt(rounds=12)
    hashed = bcrypt.hashpw(password.encode('utf-8'), salt)
    return hashed.decode('utf-8')


def verify_password(password: str, password_hash: str) -> bool:
    """
    Verify password against bcrypt hash.

    bcrypt.checkpw() is timing-safe. Malformed hashes verify as False.
    """
    try:
        return bcrypt.checkpw(password.encode('utf-8'), password_hash.encode('utf-8'))
    except ValueError:
        return False


def email_exists(email: str) -> bool:
    return db.session.query(User.id).filter(User.email == email.lower()).first() is not None


def create_identity(email: str, password: str) -> User:
    """
    Create a login identity (no tenant membership yet).

    Committed immediately: provisioning treats identity creation as its own
    step so it can compensate the tenant row when this fails.

    Raises IdentityError if the email is taken or the insert fails.
    """
    user = User(
        email=email.lower(),
        password_hash=hash_password(password),
        is_active=True,
    )
    db.session.add(user)
    try:
        db.session.commit()
    except IntegrityError as e:
        db.session.rollback()
        raise IdentityError("A user with this email already exists") from e
    return user


def upsert_profile(
    user_id: int,
    *,
    tenant_id: int | None,
    email: str,
    full_name: str | None,
    selected_branch_id: int | None,
) -> Profile:
    """Create or replace the one-to-one profile row for an identity."""
    profile = db.session.get(Profile, user_id)
    if profile is None:
        profile = Profile(id=user_id)
        db.session.add(profile)

    profile.tenant_id = tenant_id
    profile.email = email
    profile.full_name = full_name
    profile.selected_branch_id = selected_branch_id
    profile.is_active = True

    db.session.commit()
    return profile


def assign_role(user_id: int, role: str, tenant_id: int | None) -> UserRole:
    """Assign role to user within a tenant (tenant_id None = platform-wide)."""
    if role not in ALL_ROLES:
        raise ValueError(f"Unknown role: {role}")

    existing = db.session.query(UserRole).filter_by(
        user_id=user_id,
        tenant_id=tenant_id,
        role=role,
    ).first()

    if existing:
        return existing

    user_role = UserRole(user_id=user_id, tenant_id=tenant_id, role=role)

    db.session.add(user_role)
    db.session.commit()
    return user_role


def get_user_roles(user_id: int, tenant_id: int | None = None) -> set[str]:
    """
    Role names held by a user.

    With tenant_id, returns roles held in that tenant plus platform-wide
    (tenant_id null) roles such as superadmin.
    """
    query = db.session.query(UserRole.role).filter(UserRole.user_id == user_id)
    if tenant_id is not None:
        query = query.filter(db.or_(UserRole.tenant_id == tenant_id, UserRole.tenant_id.is_(None)))
    return {row.role for row in query.all()}


def is_superadmin(user_id: int) -> bool:
    return db.session.query(UserRole.id).filter_by(user_id=user_id, role=SUPERADMIN).first() is not None


def superadmin_exists() -> bool:
    return db.session.query(UserRole.id).filter_by(role=SUPERADMIN).first() is not None


def authenticate(email: str, password: str) -> User | None:
    """
    Authenticate user with email and password.

    Returns User if credentials are valid, None otherwise.
    Users whose profile tenant is deactivated cannot log in.
    Updates last_login_at timestamp on successful authentication.
    """
    user = db.session.query(User).filter(
        User.email == email.strip().lower(),
        User.is_active.is_(True),
    ).first()

    if not user:
        return None

    if not verify_password(password, user.password_hash):
        return None

    profile = user.profile
    if profile is not None and profile.tenant_id is not None:
        tenant = db.session.get(Tenant, profile.tenant_id)
        if not tenant or not tenant.is_active:
            return None

    user.last_login_at = utcnow()
    db.session.commit()
    return user


def set_password(user: User, new_password: str) -> User:
    """Replace a user's password hash. Caller validates strength."""
    user.password_hash = hash_password(new_password)
    db.session.commit()
    return user

import logging
import os

from sqlalchemy.orm import Session

from securefms.identity import default_hasher
from securefms.models import Role, User
from securefms.rbac import ROLE_DESCRIPTIONS, ROLE_PERMISSIONS, RoleName

logger = logging.getLogger(__name__)


def seed_roles(db: Session) -> dict:
    """Create or refresh one Role row per RoleName from ROLE_PERMISSIONS."""
    roles = {}
    for name, permissions in ROLE_PERMISSIONS.items():
        role = db.query(Role).filter(Role.name == name.value).first()
        if role is None:
            role = Role(name=name.value)
            db.add(role)
            logger.info("Seeding role %s", name.value)
        role.permissions = permissions
        role.description = ROLE_DESCRIPTIONS.get(name, "")
        roles[name] = role
    db.commit()
    return roles


def bootstrap_superadmin(db: Session, hasher=None):
    """Create the first superadmin from SUPERADMIN_EMAIL if none exists yet."""
    email = (os.getenv("SUPERADMIN_EMAIL") or "").strip().lower()
    if not email:
        return None
    role = db.query(Role).filter(Role.name == RoleName.SUPERADMIN.value).first()
    if role is None:
        role = seed_roles(db)[RoleName.SUPERADMIN]
    existing = db.query(User).filter(User.role_id == role.id).first()
    if existing is not None:
        return existing

    password = os.getenv("SUPERADMIN_PASSWORD")
    hasher = hasher or default_hasher
    user = User(
        username=(os.getenv("SUPERADMIN_USERNAME") or "superadmin").strip().lower(),
        email=email,
        hashed_password=hasher.hash(password) if password else None,
        role=role,
        is_active=True,
    )
    db.add(user)
    db.commit()
    logger.info("Created bootstrap superadmin %s", user.id)
    return user


if __name__ == "__main__":
    from securefms.database import Base, SessionLocal, engine

    logging.basicConfig(level=logging.INFO)
    Base.metadata.create_all(bind=engine)
    with SessionLocal() as session:
        seed_roles(session)
        bootstrap_superadmin(session)

# This project was developed with assistance from AI tools.
"""Persona factories for functional tests.

Fixed user IDs keep ownership checks consistent across tests.
"""

from db.enums import UserRole

from src.schemas.auth import UserContext

MARIA_USER_ID = 101
JOSE_USER_ID = 102
ADMIN_USER_ID = 1


def client_maria() -> UserContext:
    return UserContext(
        user_id=MARIA_USER_ID,
        role=UserRole.CLIENT,
        email="maria@example.mx",
        name="María López",
        session_id="sid-maria",
    )


def client_jose() -> UserContext:
    return UserContext(
        user_id=JOSE_USER_ID,
        role=UserRole.CLIENT,
        email="jose@example.mx",
        name="José Hernández",
        session_id="sid-jose",
    )


def admin() -> UserContext:
    return UserContext(
        user_id=ADMIN_USER_ID,
        role=UserRole.ADMIN,
        email="admin@permisos.mx",
        name="Admin Staff",
        is_admin_portal=True,
        session_id="sid-admin",
    )

import pytest

from app.auth import get_current_user
from app.db import get_db
from app.main import app
from app.models import User


def _test_admin() -> User:
    return User(
        id=1,
        email="admin@receivables.local",
        full_name="Test Admin",
        password_hash="x",
        is_admin=True,
        is_active=True,
        role="admin",
    )


@pytest.fixture(autouse=True)
def override_auth(request):
    if request.node.get_closest_marker("real_auth"):
        yield
        return

    app.dependency_overrides[get_current_user] = _test_admin
    yield
    app.dependency_overrides.pop(get_current_user, None)


@pytest.fixture(autouse=True)
def reset_db_override():
    yield
    app.dependency_overrides.pop(get_db, None)

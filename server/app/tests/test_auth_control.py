import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from app.auth import hash_password, seed_modules, verify_password
from app.db import Base, get_db
from app.main import app
from app.models import Client, Module, User, UserModuleAccess


@pytest.fixture()
def client():
    engine = create_engine("sqlite+pysqlite://", connect_args={"check_same_thread": False}, poolclass=StaticPool)
    TestingSessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False)
    Base.metadata.create_all(engine)

    def override_get_db():
        db = TestingSessionLocal()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db

    with TestingSessionLocal() as db:
        seed_modules(db)
        admin = User(email="admin@receivables.local", full_name="Admin", password_hash=hash_password("password123"), is_admin=True, is_active=True, role="admin")
        cashier = User(email="cashier@receivables.local", full_name="Cashier", password_hash=hash_password("password123"), is_admin=False, is_active=True, role="employee")
        clerk = User(email="clerk@receivables.local", full_name="Clerk", password_hash=hash_password("password123"), is_admin=False, is_active=True, role="employee")
        db.add_all([admin, cashier, clerk, Client(name="Despensa Lopez")])
        db.flush()
        modules = {module.key: module for module in db.query(Module).all()}
        db.add(UserModuleAccess(user_id=cashier.id, module_id=modules["COLLECTIONS"].id))
        db.add(UserModuleAccess(user_id=cashier.id, module_id=modules["RECEIVABLES"].id))
        db.add(UserModuleAccess(user_id=clerk.id, module_id=modules["INVOICES"].id))
        db.commit()

    with TestClient(app) as test_client:
        yield test_client, TestingSessionLocal

    app.dependency_overrides.clear()
    Base.metadata.drop_all(engine)


def _login(client: TestClient, email: str, password: str = "password123"):
    response = client.post("/api/auth/login", json={"email": email, "password": password})
    assert response.status_code == 200
    return response.json()["access_token"]


def _auth(token: str) -> dict:
    return {"Authorization": f"Bearer {token}"}


@pytest.mark.real_auth
def test_login_and_me_allowed_modules(client):
    test_client, _ = client
    token = _login(test_client, "cashier@receivables.local")
    me = test_client.get("/api/auth/me", headers=_auth(token))
    assert me.status_code == 200
    assert me.json()["allowed_modules"] == ["COLLECTIONS", "RECEIVABLES"]


@pytest.mark.real_auth
def test_login_rejects_bad_password(client):
    test_client, _ = client
    response = test_client.post("/api/auth/login", json={"email": "cashier@receivables.local", "password": "nope"})
    assert response.status_code == 401


@pytest.mark.real_auth
def test_requests_without_token_are_unauthorized(client):
    test_client, _ = client
    assert test_client.get("/api/debts").status_code == 401
    assert test_client.get("/api/debts", headers=_auth("not-a-token")).status_code == 401


@pytest.mark.real_auth
def test_module_permission_gates_routes(client):
    test_client, _ = client

    cashier = _login(test_client, "cashier@receivables.local")
    assert test_client.get("/api/collections", headers=_auth(cashier)).status_code == 200
    assert test_client.get("/api/debts", headers=_auth(cashier)).status_code == 200
    denied = test_client.get("/api/invoices", headers=_auth(cashier))
    assert denied.status_code == 403
    assert denied.json()["detail"] == "Not authorized for module 'INVOICES'"

    clerk = _login(test_client, "clerk@receivables.local")
    assert test_client.get("/api/invoices", headers=_auth(clerk)).status_code == 200
    assert test_client.get("/api/collections", headers=_auth(clerk)).status_code == 403
    assert test_client.get("/api/clients/1/debt", headers=_auth(clerk)).status_code == 403


@pytest.mark.real_auth
def test_non_admin_cannot_call_control(client):
    test_client, _ = client
    token = _login(test_client, "cashier@receivables.local")
    assert test_client.get("/api/control/users", headers=_auth(token)).status_code == 403

    create_response = test_client.post(
        "/api/control/users",
        headers=_auth(token),
        json={
            "email": "new@receivables.local",
            "password": "password123",
            "role": "EMPLOYEE",
            "permissions": ["COLLECTIONS"],
        },
    )
    assert create_response.status_code == 403


@pytest.mark.real_auth
def test_admin_can_manage_user_permissions_and_deactivate(client):
    test_client, _ = client
    token = _login(test_client, "admin@receivables.local")

    modules = test_client.get("/api/control/modules", headers=_auth(token))
    assert "RECEIVABLES" in modules.json()["modules"]

    create_response = test_client.post(
        "/api/control/users",
        headers=_auth(token),
        json={
            "email": "operator@receivables.local",
            "full_name": "Operator",
            "password": "password123",
            "role": "EMPLOYEE",
            "permissions": ["INVOICES", "COLLECTIONS"],
        },
    )
    assert create_response.status_code == 201
    created = create_response.json()
    assert created["permissions"] == ["COLLECTIONS", "INVOICES"]

    duplicate = test_client.post(
        "/api/control/users",
        headers=_auth(token),
        json={"email": "operator@receivables.local", "password": "password123"},
    )
    assert duplicate.status_code == 409

    update_response = test_client.put(
        f"/api/control/users/{created['id']}",
        headers=_auth(token),
        json={"full_name": "Operator Updated", "role": "EMPLOYEE", "is_active": True, "permissions": ["RECEIVABLES"]},
    )
    assert update_response.status_code == 200
    assert update_response.json()["permissions"] == ["RECEIVABLES"]

    deactivated = test_client.delete(f"/api/control/users/{created['id']}", headers=_auth(token))
    assert deactivated.status_code == 200
    failed_login = test_client.post(
        "/api/auth/login", json={"email": "operator@receivables.local", "password": "password123"}
    )
    assert failed_login.status_code == 401


@pytest.mark.real_auth
def test_control_rejects_invalid_permission(client):
    test_client, _ = client
    token = _login(test_client, "admin@receivables.local")

    response = test_client.post(
        "/api/control/users",
        headers=_auth(token),
        json={
            "email": "badperm@receivables.local",
            "password": "password123",
            "role": "EMPLOYEE",
            "permissions": ["NOT_A_REAL_MODULE"],
        },
    )
    assert response.status_code == 400


@pytest.mark.real_auth
def test_control_reset_password_updates_hash(client):
    test_client, session_local = client
    token = _login(test_client, "admin@receivables.local")
    with session_local() as db:
        clerk_id = db.query(User.id).filter(User.email == "clerk@receivables.local").scalar()

    response = test_client.post(
        f"/api/control/users/{clerk_id}/reset-password",
        headers=_auth(token),
        json={"new_password": "new-password-123"},
    )
    assert response.status_code == 204

    with session_local() as db:
        refreshed = db.query(User).filter(User.id == clerk_id).first()
        assert verify_password("new-password-123", refreshed.password_hash)
    _login(test_client, "clerk@receivables.local", "new-password-123")

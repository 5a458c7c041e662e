from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from app.db import Base, get_db
from app.main import app


def build_client() -> TestClient:
    engine = create_engine(
        "sqlite+pysqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    TestingSessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False)
    Base.metadata.create_all(engine)

    def override_get_db():
        db = TestingSessionLocal()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    return TestClient(app)


def test_client_crud_and_search():
    client = build_client()

    created = client.post("/api/clients", json={"name": "Despensa Lopez", "document": "20-111"})
    assert created.status_code == 201
    client_id = created.json()["id"]
    client.post("/api/clients", json={"name": "Kiosco Norte"})

    assert [row["name"] for row in client.get("/api/clients").json()] == ["Despensa Lopez", "Kiosco Norte"]
    assert [row["id"] for row in client.get("/api/clients", params={"search": "20-1"}).json()] == [client_id]

    updated = client.put(f"/api/clients/{client_id}", json={"phone": "555-0101"})
    assert updated.status_code == 200
    assert updated.json()["phone"] == "555-0101"
    assert updated.json()["name"] == "Despensa Lopez"

    assert client.get("/api/clients/999").status_code == 404
    assert client.post("/api/clients", json={"name": ""}).status_code == 400


def test_client_delete_soft_and_hard():
    client = build_client()
    busy = client.post("/api/clients", json={"name": "Despensa Lopez"}).json()
    idle = client.post("/api/clients", json={"name": "Kiosco Norte"}).json()
    client.post("/api/invoices", json={"client_id": busy["id"], "total": "10.00"})

    soft = client.delete(f"/api/clients/{busy['id']}")
    assert soft.json() == {"id": busy["id"], "deleted": "soft"}
    assert [row["id"] for row in client.get("/api/clients").json()] == [idle["id"]]
    assert len(client.get("/api/clients", params={"include_inactive": "true"}).json()) == 2

    in_use = client.delete(f"/api/clients/{busy['id']}", params={"hard": "true"})
    assert in_use.status_code == 409
    assert in_use.json()["code"] == "CLIENT_IN_USE"

    hard = client.delete(f"/api/clients/{idle['id']}", params={"hard": "true"})
    assert hard.json() == {"id": idle["id"], "deleted": "hard"}
    assert client.get(f"/api/clients/{idle['id']}").status_code == 404


def test_seller_crud():
    client = build_client()

    created = client.post("/api/sellers", json={"name": "Marta"})
    assert created.status_code == 201
    seller_id = created.json()["id"]
    assert created.json()["is_active"] is True

    deactivated = client.put(f"/api/sellers/{seller_id}", json={"is_active": False})
    assert deactivated.json()["is_active"] is False
    assert client.get("/api/sellers", params={"active_only": "true"}).json() == []
    assert client.get("/api/sellers/999").status_code == 404

    customer = client.post("/api/clients", json={"name": "Despensa Lopez"}).json()
    rejected = client.post(
        "/api/collections",
        json={"client_id": customer["id"], "seller_id": seller_id, "total_collected": "5.00"},
    )
    assert rejected.status_code == 400
    assert rejected.json()["code"] == "SELLER_INACTIVE"

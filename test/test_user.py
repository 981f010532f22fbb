import inspect
from datetime import timedelta
from fastapi.testclient import TestClient
from sqlalchemy.orm import Session
from dropship import seed
from dropship.auth import PasswordHasher, TokenService, AuthError, get_token_service, get_current_user
from dropship.models import User, UserRole, Product
from dropship.seed import create_demo_data, DEMO_PASSWORD
import pytest

register_data = {
    "name": "Siti",
    "outlet_name": "Siti Fashion",
    "phone": "0857123123",
    "email": "siti@olshop.co.id",
    "password": "rahasia123",
    "role": "dropshipper",
}

def login(client, email, password):
    return client.post("/user/login", data={"username": email, "password": password})

def test_register_user(client: TestClient, db: Session, hasher):
    response = client.post("/user/register", json=register_data)
    assert response.status_code == 200
    data = response.json()
    assert data["email"] == "siti@olshop.co.id"
    assert data["role"] == "dropshipper"
    assert "password" not in data and "hashed_password" not in data
    user = db.query(User).filter(User.email == "siti@olshop.co.id").first()
    assert user.hashed_password != "rahasia123"
    assert hasher.verify("rahasia123", user.hashed_password)

def test_register_duplicate_email(client: TestClient):
    client.post("/user/register", json=register_data)
    response = client.post("/user/register", json=register_data)
    assert response.status_code == 400
    assert response.json()["detail"]["error_code"] == "EMAIL_USED"

def test_register_short_password(client: TestClient):
    response = client.post("/user/register", json={**register_data, "password": "short"})
    assert response.status_code == 400

def test_register_unknown_role(client: TestClient):
    response = client.post("/user/register", json={**register_data, "role": "gudang"})
    assert response.status_code == 400

def test_login_and_me(client: TestClient):
    client.post("/user/register", json=register_data)
    response = login(client, "siti@olshop.co.id", "rahasia123")
    assert response.status_code == 200
    data = response.json()
    assert data["token_type"] == "bearer"
    assert data["user"]["name"] == "Siti"
    response = client.get("/user/me", headers={"Authorization": f"Bearer {data['access_token']}"})
    assert response.status_code == 200
    assert response.json()["email"] == "siti@olshop.co.id"

def test_login_wrong_password(client: TestClient, admin_user):
    response = login(client, "admin@tokobaju.co.id", "wrong-password")
    assert response.status_code == 401
    assert response.json()["detail"]["error_code"] == "INVALID_CREDENTIALS"

def test_login_unknown_email(client: TestClient):
    response = login(client, "nobody@olshop.co.id", "rahasia123")
    assert response.status_code == 401

def test_refresh_token(client: TestClient, admin_user):
    tokens = login(client, "admin@tokobaju.co.id", "password123").json()
    response = client.post("/user/refresh", params={"refresh_token": tokens["refresh_token"]})
    assert response.status_code == 200
    assert response.json()["access_token"]

def test_access_token_cannot_refresh(client: TestClient, admin_user):
    tokens = login(client, "admin@tokobaju.co.id", "password123").json()
    response = client.post("/user/refresh", params={"refresh_token": tokens["access_token"]})
    assert response.status_code == 401
    assert response.json()["detail"]["error_code"] == "INVALID_TOKEN"

def test_expired_token(client: TestClient, admin_user):
    token = get_token_service().create_access_token(
        {"sub": str(admin_user.id), "role": "admin"}, expires_delta=timedelta(seconds=-1)
    )
    response = client.get("/user/me", headers={"Authorization": f"Bearer {token}"})
    assert response.status_code == 401

def test_invalid_token(client: TestClient):
    response = client.get("/user/me", headers={"Authorization": "Bearer invalid_token"})
    assert response.status_code == 401
    assert response.json()["detail"]["error_code"] == "INVALID_CREDENTIALS"

def test_list_users(client: TestClient, admin_headers, dropshipper_user):
    response = client.get("/user/list", headers=admin_headers)
    assert response.status_code == 200
    data = response.json()
    assert data["total"] == 2
    assert all("hashed_password" not in u for u in data["user"])

def test_read_user_not_found(client: TestClient, admin_headers):
    response = client.get("/user/999", headers=admin_headers)
    assert response.status_code == 404

def test_update_user_password(client: TestClient, admin_headers, dropshipper_user):
    response = client.put(
        f"/user/{dropshipper_user.id}",
        json={"outlet_name": "Reseller Baru", "password": "passwordbaru"},
        headers=admin_headers,
    )
    assert response.status_code == 200
    assert response.json()["outlet_name"] == "Reseller Baru"
    assert login(client, "reseller@tokobaju.co.id", "password123").status_code == 401
    assert login(client, "reseller@tokobaju.co.id", "passwordbaru").status_code == 200

def test_update_user_email_taken(client: TestClient, admin_headers, dropshipper_user):
    response = client.put(
        f"/user/{dropshipper_user.id}", json={"email": "admin@tokobaju.co.id"}, headers=admin_headers
    )
    assert response.status_code == 400
    assert response.json()["detail"]["error_code"] == "EMAIL_USED"

def test_delete_user_admin_only(client: TestClient, db: Session, admin_headers, dropshipper_headers, dropshipper_user):
    user_id = dropshipper_user.id
    response = client.delete(f"/user/delete/{user_id}", headers=dropshipper_headers)
    assert response.status_code == 403
    response = client.delete(f"/user/delete/{user_id}", headers=admin_headers)
    assert response.status_code == 200
    assert db.query(User).filter(User.id == user_id).first() is None

def test_token_service_roundtrip():
    tokens = TokenService("secret")
    token = tokens.create_access_token({"sub": "7", "role": "warehouse"})
    token_data = tokens.decode(token)
    assert token_data.user_id == 7
    assert token_data.role == "warehouse"
    with pytest.raises(AuthError):
        TokenService("other-secret").decode(token)

def test_bcrypt_hasher():
    hasher = PasswordHasher()
    hashed = hasher.hash("rahasia123")
    assert hashed.startswith("$2")
    assert hasher.verify("rahasia123", hashed)
    assert not hasher.verify("salah", hashed)

def test_seed_demo_data(db: Session, hasher):
    create_demo_data(db, hasher)
    assert db.query(User).count() == 3
    assert {u.role for u in db.query(User).all()} == set(UserRole)
    product = db.query(Product).one()
    assert sum(t.stock for t in product.product_types) == 15
    admin = db.query(User).filter(User.role == UserRole.admin).one()
    assert hasher.verify(DEMO_PASSWORD, admin.hashed_password)

def test_register_cannot_pick_privileged_role(client: TestClient, db: Session):
    for role in ("admin", "warehouse"):
        response = client.post("/user/register", json={**register_data, "role": role})
        assert response.status_code == 403
        assert response.json()["detail"]["error_code"] == "403_FORBIDDEN"
    assert db.query(User).count() == 0

def test_update_own_profile(client: TestClient, dropshipper_headers, dropshipper_user):
    response = client.put(
        f"/user/{dropshipper_user.id}", json={"outlet_name": "Toko Reseller"}, headers=dropshipper_headers
    )
    assert response.status_code == 200
    assert response.json()["outlet_name"] == "Toko Reseller"
    assert response.json()["role"] == "dropshipper"

def test_dropshipper_cannot_promote_self(client: TestClient, db: Session, dropshipper_headers, dropshipper_user):
    user_id = dropshipper_user.id
    response = client.put(f"/user/{user_id}", json={"role": "admin"}, headers=dropshipper_headers)
    assert response.status_code == 403
    assert response.json()["detail"]["error_code"] == "403_FORBIDDEN"
    assert db.query(User).filter(User.id == user_id).one().role == UserRole.dropshipper

    response = client.post(
        "/product",
        json={"name": "Shirt", "color": "Blue", "product_type": []},
        headers=dropshipper_headers,
    )
    assert response.status_code == 403

def test_dropshipper_cannot_update_other_user(client: TestClient, dropshipper_headers, admin_user):
    response = client.put(
        f"/user/{admin_user.id}", json={"password": "diambilalih"}, headers=dropshipper_headers
    )
    assert response.status_code == 403
    assert login(client, "admin@tokobaju.co.id", "password123").status_code == 200
    assert login(client, "admin@tokobaju.co.id", "diambilalih").status_code == 401

def test_admin_can_change_role(client: TestClient, admin_headers, dropshipper_user):
    response = client.put(f"/user/{dropshipper_user.id}", json={"role": "warehouse"}, headers=admin_headers)
    assert response.status_code == 200
    assert response.json()["role"] == "warehouse"

def test_current_user_dependency_is_sync():
    # 同步查詢要在 threadpool 執行，不能卡住事件迴圈
    assert not inspect.iscoroutinefunction(get_current_user)

def test_seed_main_closes_session(db: Session, hasher, monkeypatch):
    closed = []

    class TrackedSession(Session):
        def close(self):
            closed.append(True)
            super().close()

    monkeypatch.setattr(seed, "SessionLocal", lambda: TrackedSession(bind=db.get_bind()))
    monkeypatch.setattr(seed, "get_password_hasher", lambda: hasher)
    seed.main()
    assert closed == [True]
    assert db.query(User).count() == 3

def test_seed_main_closes_session_on_failure(db: Session, monkeypatch):
    closed = []

    class TrackedSession(Session):
        def close(self):
            closed.append(True)
            super().close()

    def broken_seed(session, hasher):
        raise RuntimeError("seed failed")

    monkeypatch.setattr(seed, "SessionLocal", lambda: TrackedSession(bind=db.get_bind()))
    monkeypatch.setattr(seed, "create_demo_data", broken_seed)
    with pytest.raises(RuntimeError):
        seed.main()
    assert closed == [True]

import json

import models
from conftest import create_user, login, make_client


def admin_client(db, role="admin", phone="01800000001"):
    create_user(db, role=role, phone=phone, name="Boss")
    client = make_client()
    assert login(client, phone).status_code == 200
    return client


def audit_rows(db, entity_type):
    return db.query(models.AuditLog).filter_by(entity_type=entity_type).order_by(models.AuditLog.id).all()


def test_non_admin_roles_are_refused(session_factory, db):
    for role, phone in (("chef", "01800000002"), ("employee", "01800000003"), ("customer", "01800000004")):
        client = admin_client(db, role=role, phone=phone)
        resp = client.post("/api/admin/categories", json={"name_en": "Tea", "name_bn": "চা", "slug": "tea"})
        assert resp.status_code == 403
        assert resp.json() == {"error": "Forbidden"}
    assert make_client().get("/api/admin/categories").status_code == 401
    assert db.query(models.Category).count() == 0
    assert db.query(models.AuditLog).count() == 0


def test_category_and_product_changes_are_audited(session_factory, db):
    client = admin_client(db, role="manager")
    resp = client.post("/api/admin/categories", json={"name_en": "Tea", "name_bn": "চা", "slug": "tea"})
    assert resp.status_code == 200
    category_id = resp.json()["id"]

    duplicate = client.post("/api/admin/categories", json={"name_en": "Tea 2", "name_bn": "চা", "slug": "tea"})
    assert duplicate.status_code == 409

    product = {
        "category_id": category_id, "slug": "masala", "name_en": "Masala tea", "name_bn": "মসলা চা",
        "description_en": "Spiced", "description_bn": "মসলাদার", "price_tk": 80,
    }
    resp = client.post("/api/admin/products", json=product)
    assert resp.status_code == 200
    product_id = resp.json()["id"]
    assert client.post("/api/admin/products", json={**product, "slug": "free", "price_tk": 0}).status_code == 400

    assert client.put(f"/api/admin/products/{product_id}", json={"price_tk": 95}).status_code == 200
    assert client.delete(f"/api/admin/products/{product_id}").status_code == 200
    assert client.put("/api/admin/products/9999", json={"price_tk": 95}).status_code == 404

    assert [r.action for r in audit_rows(db, "category")] == ["CREATE"]
    product_audit = audit_rows(db, "product")
    assert [r.action for r in product_audit] == ["CREATE", "UPDATE", "DEACTIVATE"]
    assert json.loads(product_audit[1].payload_json) == {"price_tk": 95}

    row = db.query(models.Product).filter_by(id=product_id).one()
    assert row.price_tk == 95
    assert row.is_active is False

    listing = client.get("/api/admin/products").json()
    assert listing["total"] == 1


def test_locations_and_tables(session_factory, db):
    client = admin_client(db)
    location_id = client.post("/api/admin/locations", json={"name": "Banani"}).json()["id"]
    resp = client.post("/api/admin/tables", json={"location_id": location_id, "code": "B1", "label": "Window"})
    assert resp.status_code == 200
    table_id = resp.json()["id"]

    assert client.post("/api/admin/tables", json={"location_id": 9999, "code": "B2", "label": "X"}).status_code == 400
    dup = client.post("/api/admin/tables", json={"location_id": location_id, "code": "B1", "label": "Again"})
    assert dup.status_code == 409

    assert client.put(f"/api/admin/tables/{table_id}", json={"is_active": False}).status_code == 200
    tables = client.get("/api/admin/tables").json()["items"]
    assert [(t["code"], t["is_active"]) for t in tables] == [("B1", False)]
    assert [r.action for r in audit_rows(db, "table")] == ["CREATE", "UPDATE"]
    assert [r.action for r in audit_rows(db, "location")] == ["CREATE"]


def test_staff_account_creation(session_factory, db):
    client = admin_client(db)
    payload = {"name": "Rafi", "phone": "01911111111", "role": "chef", "password": "kitchen1"}
    resp = client.post("/api/admin/users", json=payload)
    assert resp.status_code == 200
    assert client.post("/api/admin/users", json=payload).status_code == 409
    assert client.post("/api/admin/users", json={**payload, "phone": "01911111112", "role": "owner"}).status_code == 400

    chef = db.query(models.User).filter_by(phone="01911111111").one()
    assert chef.must_change_password is True
    assert chef.password_hash != "kitchen1"
    entry = audit_rows(db, "user")[0]
    assert "password" not in json.loads(entry.payload_json)

    staff = make_client()
    me = login(staff, "01911111111", "kitchen1").json()["user"]
    assert me["role"] == "chef"
    assert me["mustChangePassword"] is True

    users = client.get("/api/admin/users").json()["items"]
    assert all("password_hash" not in u for u in users)

    assert client.put(f"/api/admin/users/{chef.id}", json={"is_active": False}).status_code == 200
    assert login(make_client(), "01911111111", "kitchen1").status_code == 401


def test_discount_update_changes_new_orders(session_factory, db, catalog):
    admin = admin_client(db)
    badges = admin.get("/api/admin/settings/discounts").json()["badges"]
    assert [b["key"] for b in badges] == ["NEWBIE", "PLATINUM", "CROWN"]

    resp = admin.post("/api/admin/settings/discounts", json={"badges": [{"key": "PLATINUM", "discount_percent": 10}]})
    assert resp.status_code == 200
    bad = admin.post("/api/admin/settings/discounts", json={"badges": [{"key": "CROWN", "discount_percent": 101}]})
    assert bad.status_code == 400

    create_user(db, phone="01700000050", points=1200)
    customer = make_client()
    login(customer, "01700000050")
    order = customer.post("/api/orders", json={
        "tableCode": "T1", "items": [{"productId": catalog["latte"], "qty": 1}],
    }).json()["order"]
    assert order["discount_percent_applied"] == 10
    assert order["total_after_discount_tk"] == 180
    assert [r.action for r in audit_rows(db, "badge_levels")] == ["UPDATE"]


def test_theme_setting(session_factory, db):
    admin = admin_client(db)
    assert make_client().get("/api/settings/theme").json() == {"theme": "cyberpunk"}
    assert admin.post("/api/admin/settings/theme", json={"theme": "neon"}).status_code == 400
    assert admin.post("/api/admin/settings/theme", json={"theme": "apple"}).status_code == 200
    assert make_client().get("/api/settings/theme").json() == {"theme": "apple"}
    assert admin.get("/api/admin/settings/theme").json() == {"theme": "apple"}


def test_reports_and_leaderboards(session_factory, db, catalog):
    admin = admin_client(db)
    create_user(db, phone="01700000060", name="Nadia", points=300)
    create_user(db, phone="01700000061", name="Karim", points=0)
    customer = make_client()
    login(customer, "01700000061")
    order_id = customer.post("/api/orders", json={
        "tableCode": "T1", "items": [{"productId": catalog["cake"], "qty": 3}],
    }).json()["orderId"]
    for status in ("PREPARING", "READY", "SERVED"):
        admin.post(f"/api/staff/orders/{order_id}/status", json={"status": status})

    sales = admin.get("/api/admin/reports/sales", params={"range": "monthly"}).json()["rows"]
    assert len(sales) == 1
    assert sales[0]["total"] == 450
    best = admin.get("/api/admin/reports/best-items").json()["items"]
    assert best == [{"name": "Cake", "qty": 3}]
    distribution = admin.get("/api/admin/reports/badges").json()["distribution"]
    assert {d["key"]: d["count"] for d in distribution} == {"NEWBIE": 2, "PLATINUM": 0, "CROWN": 0}

    private = admin.get("/api/admin/leaderboard").json()["leaderboard"]
    assert [(e["name"], e["points"]) for e in private[:2]] == [("Karim", 450), ("Nadia", 300)]
    public = make_client().get("/api/leaderboard").json()["leaderboard"]
    assert public[0] == {"rank": 1, "name": "Karim"}


def test_menu_requires_known_table(session_factory, db, catalog):
    client = make_client()
    assert client.get("/api/menu").status_code == 400
    assert client.get("/api/menu", params={"tableCode": "NOPE"}).status_code == 404
    assert client.get("/api/menu", params={"tableCode": "T9"}).status_code == 404

    menu = client.get("/api/menu", params={"tableCode": "T1"}).json()
    assert menu["table"]["label"] == "Table 1"
    assert menu["location"]["name"] == "Gulshan"
    assert menu["customer"] is None
    # featured products first, retired ones hidden
    assert [p["slug"] for p in menu["products"]] == ["latte", "cake"]


def test_menu_for_returning_customer(session_factory, db, catalog):
    create_user(db, phone="01700000070", points=1000)
    client = make_client()
    login(client, "01700000070")
    client.post("/api/orders", json={"tableCode": "T1", "items": [{"productId": catalog["cake"], "qty": 1}]})

    menu = client.get("/api/menu", params={"tableCode": "T1"}).json()
    assert menu["customer"]["badge"]["key"] == "PLATINUM"
    assert menu["customer"]["discountPercent"] == 5
    assert [p["slug"] for p in menu["previousItems"]] == ["cake"]


def test_product_filters(session_factory, db, catalog):
    client = make_client()
    hot = client.get("/api/products", params={"hot": "1"}).json()["products"]
    assert [p["slug"] for p in hot] == ["cake"]
    coffee = client.get("/api/products", params={"category": "coffee"}).json()["products"]
    assert {p["slug"] for p in coffee} == {"latte", "cake"}


def test_health_reports_cache_state(client):
    assert client.get("/api/health").json() == {"ok": True, "cache": {"status": "unavailable"}}


def test_updates_reject_explicit_nulls(session_factory, db, catalog):
    admin = admin_client(db)
    chef = create_user(db, role="chef", phone="01800000009")

    cases = [
        (f"/api/admin/categories/{db.query(models.Category).first().id}", {"name_en": None}),
        (f"/api/admin/products/{catalog['latte']}", {"price_tk": None}),
        (f"/api/admin/products/{catalog['latte']}", {"is_active": None}),
        (f"/api/admin/tables/{catalog['table']}", {"label": None}),
        (f"/api/admin/users/{chef.id}", {"name": None}),
    ]
    for url, body in cases:
        resp = admin.put(url, json=body)
        assert resp.status_code == 400, (url, body, resp.json())
        assert resp.json()["error"] == "Invalid request"

    db.expire_all()
    assert db.query(models.Product).filter_by(id=catalog["latte"]).one().price_tk == 200
    assert db.query(models.AuditLog).filter(models.AuditLog.action == "UPDATE").count() == 0

    # nullable media fields can still be cleared
    assert admin.put(f"/api/admin/products/{catalog['latte']}", json={"media_image_url": None}).status_code == 200

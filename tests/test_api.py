from datetime import datetime, timedelta, timezone

from sqlalchemy import select, update

from stockflow.core.config import settings
from stockflow.models.audit_log import AuditTrail
from stockflow.models.loan import Loan


def _register(client, *, email: str = "admin@example.com", name: str = "Admin"):
    return client.post(
        "/auth/register",
        json={"email": email, "name": name, "password": "password123"},
    )


def _login(client, email: str, password: str = "password123") -> str:
    res = client.post("/auth/login", json={"email": email, "password": password})
    assert res.status_code == 200, res.text
    return res.json()["access_token"]


def _auth_headers(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


def _admin_headers(client) -> dict[str, str]:
    assert _register(client).status_code == 201
    return _auth_headers(_login(client, "admin@example.com"))


def _viewer_headers(client, admin_headers, *, email: str = "viewer@example.com") -> tuple[str, dict[str, str]]:
    res = client.post(
        "/users",
        json={"email": email, "name": "Viewer", "password": "password123", "role": "VIEWER"},
        headers=admin_headers,
    )
    assert res.status_code == 201, res.text
    return res.json()["id"], _auth_headers(_login(client, email))


def _create_product(client, headers, *, prefix="ELK", name="Kabel Roll", stock=10) -> dict:
    categories = client.get("/categories", headers=headers).json()["items"]
    category = next((row for row in categories if row["prefix"] == prefix), None)
    if category is None:
        res = client.post("/categories", json={"name": f"Kategori {prefix}", "prefix": prefix}, headers=headers)
        assert res.status_code == 201, res.text
        category = res.json()
    res = client.post(
        "/products",
        json={"name": name, "category_id": category["id"], "current_stock": stock, "min_stock": 2, "price": 1000},
        headers=headers,
    )
    assert res.status_code == 201, res.text
    return res.json()


def _create_location(client, headers, name: str, **fields) -> dict:
    res = client.post("/locations", json={"name": name, **fields}, headers=headers)
    assert res.status_code == 201, res.text
    return res.json()


def test_register_is_only_open_for_the_first_user(test_context):
    client, _ = test_context
    first = _register(client)
    assert first.status_code == 201
    assert first.json()["role"] == "ADMIN"

    second = _register(client, email="other@example.com")
    assert second.status_code == 403
    assert second.json()["error"]["code"] == "forbidden"


def test_token_endpoint_and_me(test_context):
    client, _ = test_context
    _register(client)
    res = client.post("/auth/token", data={"username": "ADMIN@example.com", "password": "password123"})
    assert res.status_code == 200, res.text

    me = client.get("/auth/me", headers=_auth_headers(res.json()["access_token"]))
    assert me.status_code == 200
    assert me.json()["email"] == "admin@example.com"

    bad = client.post("/auth/login", json={"email": "admin@example.com", "password": "wrong-password"})
    assert bad.status_code == 401


def test_missing_token_is_401_with_error_envelope(test_context):
    client, _ = test_context
    res = client.get("/products")
    assert res.status_code == 401
    body = res.json()
    assert body["error"]["code"] == "unauthorized"
    assert body["error"]["path"] == "/products"
    assert res.headers["X-Request-ID"] == body["error"]["request_id"]


def test_viewer_reads_but_cannot_mutate(test_context):
    client, _ = test_context
    admin_headers = _admin_headers(client)
    _, viewer_headers = _viewer_headers(client, admin_headers)

    assert client.get("/loans", headers=viewer_headers).status_code == 200
    res = client.post("/categories", json={"name": "Alat", "prefix": "ALT"}, headers=viewer_headers)
    assert res.status_code == 403
    assert res.json()["error"]["code"] == "forbidden"
    assert client.get("/audit-logs", headers=viewer_headers).status_code == 403


def test_viewer_product_visibility_follows_category_grants(test_context):
    client, _ = test_context
    admin_headers = _admin_headers(client)
    kabel = _create_product(client, admin_headers, prefix="ELK", name="Kabel")
    pulpen = _create_product(client, admin_headers, prefix="ATK", name="Pulpen")
    viewer_id, viewer_headers = _viewer_headers(client, admin_headers)

    assert client.get("/products", headers=viewer_headers).json()["pagination"]["total"] == 0
    assert client.get("/products", headers=admin_headers).json()["pagination"]["total"] == 2

    res = client.put(
        f"/users/{viewer_id}/visibility",
        json={"category_ids": [pulpen["category_id"]]},
        headers=admin_headers,
    )
    assert res.status_code == 200, res.text
    assert res.json()["visible_category_ids"] == [pulpen["category_id"]]

    items = client.get("/products", headers=viewer_headers).json()["items"]
    assert [item["name"] for item in items] == ["Pulpen"]
    assert client.get(f"/products/{kabel['id']}", headers=viewer_headers).status_code == 404
    assert client.get(f"/products/{pulpen['id']}", headers=viewer_headers).status_code == 200


def test_product_flow_movements_and_detail(test_context):
    client, _ = test_context
    headers = _admin_headers(client)
    product = _create_product(client, headers, stock=10)
    assert product["sku"] == "ELK-001"
    assert product["stock_status"] == "OVER_STOCK"

    warehouse = _create_location(client, headers, "Warehouse")
    rack = _create_location(client, headers, "Rack A", parent_id=warehouse["id"])

    res = client.post(
        "/movements",
        json={"product_id": product["id"], "to_location_id": warehouse["id"], "quantity": 5},
        headers=headers,
    )
    assert res.status_code == 201, res.text
    assert res.json()["type"] == "stock_in"

    res = client.post(
        "/movements",
        json={
            "product_id": product["id"],
            "from_location_id": warehouse["id"],
            "to_location_id": rack["id"],
            "quantity": 3,
        },
        headers=headers,
    )
    assert res.status_code == 201, res.text
    assert res.json()["type"] == "transfer"

    detail = client.get(f"/products/{product['id']}", headers=headers).json()
    assert detail["current_stock"] == 15
    assert {row["location_name"]: row["quantity"] for row in detail["locations"]} == {"Warehouse": 2, "Rack A": 3}
    assert detail["unlocated_stock"] == 10
    assert [m["type"] for m in detail["recent_movements"]][:2] == ["transfer", "stock_in"]

    listed = client.get("/movements", params={"product_id": product["id"]}, headers=headers).json()["items"]
    assert len(listed) == 3
    assert listed[0]["to_location_name"] == "Rack A"


def test_invalid_movement_payload_is_422(test_context):
    client, _ = test_context
    headers = _admin_headers(client)
    product = _create_product(client, headers)
    res = client.post("/movements", json={"product_id": product["id"], "quantity": 0}, headers=headers)
    assert res.status_code == 422
    assert res.json()["error"]["code"] == "validation_error"


def test_direct_stock_edit_and_delete_policy(test_context):
    client, _ = test_context
    headers = _admin_headers(client)
    product = _create_product(client, headers, stock=10)

    res = client.put(f"/products/{product['id']}/stock", json={"current_stock": 4}, headers=headers)
    assert res.status_code == 200, res.text
    assert res.json()["current_stock"] == 4

    res = client.delete(f"/products/{product['id']}", headers=headers)
    assert res.status_code == 409
    assert res.json()["error"]["code"] == "conflict"


def test_loan_lifecycle_over_http(test_context, sender):
    client, _ = test_context
    headers = _admin_headers(client)
    product = _create_product(client, headers, stock=15)
    due = (datetime.now(timezone.utc) + timedelta(days=5)).isoformat()

    res = client.post(
        "/loans",
        json={
            "borrower_name": "Budi",
            "borrower_phone": "081234567890",
            "product_id": product["id"],
            "qty": 4,
            "due_date": due,
        },
        headers=headers,
    )
    assert res.status_code == 201, res.text
    loan = res.json()
    assert loan["status"] == "ACTIVE"
    assert client.get(f"/products/{product['id']}", headers=headers).json()["current_stock"] == 11

    too_many = client.post(
        "/loans",
        json={
            "borrower_name": "Sari",
            "borrower_phone": "081299998888",
            "product_id": product["id"],
            "qty": 12,
            "due_date": due,
        },
        headers=headers,
    )
    assert too_many.status_code == 409
    error = too_many.json()["error"]
    assert error["code"] == "insufficient_stock"
    assert error["details"][0]["available"] == 11

    remind = client.post(f"/loans/{loan['id']}/remind", headers=headers)
    assert remind.status_code == 200
    assert remind.json()["sent"] is True
    assert sender.sent[0][0] == "6281234567890"

    returned = client.post(f"/loans/{loan['id']}/return", headers=headers)
    assert returned.status_code == 200
    assert returned.json()["status"] == "RETURNED"
    again = client.post(f"/loans/{loan['id']}/return", headers=headers)
    assert again.status_code == 409
    assert again.json()["error"]["code"] == "already_returned"

    stats = client.get("/loans/stats", headers=headers).json()
    assert stats == {"active": 0, "overdue": 0, "returned": 1, "total": 1}


def test_loan_notes_longer_than_the_column_are_rejected(test_context):
    client, _ = test_context
    headers = _admin_headers(client)
    product = _create_product(client, headers, stock=5)
    payload = {
        "borrower_name": "Budi",
        "borrower_phone": "081234567890",
        "product_id": product["id"],
        "qty": 1,
        "due_date": (datetime.now(timezone.utc) + timedelta(days=3)).isoformat(),
        "notes": "x" * 256,
    }

    res = client.post("/loans", json=payload, headers=headers)
    assert res.status_code == 422
    assert res.json()["error"]["details"][0]["field"] == "notes"
    assert client.get(f"/products/{product['id']}", headers=headers).json()["current_stock"] == 5

    payload["notes"] = "x" * 255
    assert client.post("/loans", json=payload, headers=headers).status_code == 201


def test_sale_over_http_is_all_or_nothing(test_context):
    client, _ = test_context
    headers = _admin_headers(client)
    kabel = _create_product(client, headers, name="Kabel", stock=10)
    lampu = _create_product(client, headers, name="Lampu", stock=1)

    res = client.post(
        "/sales",
        json={
            "customer_name": "Toko Maju",
            "items": [
                {"product_id": kabel["id"], "qty": 2, "selling_price": 1000},
                {"product_id": lampu["id"], "qty": 1, "selling_price": 500},
            ],
        },
        headers=headers,
    )
    assert res.status_code == 201, res.text
    sale = res.json()
    assert sale["total_amount"] == 2500
    assert len(sale["items"]) == 2

    short = client.post(
        "/sales",
        json={"items": [{"product_id": lampu["id"], "qty": 1, "selling_price": 500}]},
        headers=headers,
    )
    assert short.status_code == 409

    empty = client.post("/sales", json={"items": []}, headers=headers)
    assert empty.status_code == 400
    assert empty.json()["error"]["message"] == "No items in sale"

    listing = client.get("/sales", headers=headers).json()
    assert listing["pagination"]["total"] == 1
    assert client.get(f"/sales/{sale['id']}", headers=headers).json()["invoice_code"] == sale["invoice_code"]
    assert client.get("/sales/stats", headers=headers).json()["total_transactions"] == 1


def test_cron_sweep_requires_key_and_is_idempotent(test_context, sender):
    client, session_local = test_context
    headers = _admin_headers(client)
    product = _create_product(client, headers, stock=5)
    res = client.post(
        "/loans",
        json={
            "borrower_name": "Budi",
            "borrower_phone": "081234567890",
            "product_id": product["id"],
            "qty": 1,
            "due_date": datetime.now(timezone.utc).isoformat(),
        },
        headers=headers,
    )
    assert res.status_code == 201, res.text
    with session_local() as db:
        db.execute(
            update(Loan)
            .where(Loan.id == res.json()["id"])
            .values(due_date=datetime.now(timezone.utc) - timedelta(days=1))
        )
        db.commit()

    assert client.post("/cron/check-overdue").status_code == 401
    assert client.post("/cron/check-overdue", params={"key": "wrong"}).status_code == 401
    assert client.post("/cron/check-overdue", params={"key": "kunci-é"}).status_code == 401

    first = client.post("/cron/check-overdue", params={"key": settings.cron_secret})
    assert first.status_code == 200, first.text
    assert first.json()["marked_overdue"] == 1
    assert first.json()["notified"] == 1

    second = client.get("/cron/check-overdue", headers={"X-Cron-Key": settings.cron_secret})
    assert second.status_code == 200
    assert second.json()["marked_overdue"] == 0
    assert second.json()["notified"] == 0
    assert len(sender.sent) == 1


def test_mutations_leave_an_audit_trail(test_context):
    client, session_local = test_context
    headers = _admin_headers(client)
    _create_product(client, headers)

    with session_local() as db:
        actions = {(row.action, row.entity_type) for row in db.execute(select(AuditTrail)).scalars()}
    assert ("CREATE", "category") in actions
    assert ("CREATE", "product") in actions

    res = client.get("/audit-logs", params={"entity_type": "product"}, headers=headers)
    assert res.status_code == 200
    assert res.json()["pagination"]["total"] == 1


def test_health_endpoints(test_context):
    client, _ = test_context
    assert client.get("/health").json() == {"ok": True}
    assert client.get("/").json()["app"] == settings.app_name


def test_dashboard_stats_scope_products_to_viewer_categories(test_context):
    client, _ = test_context
    admin_headers = _admin_headers(client)
    kabel = _create_product(client, admin_headers, prefix="ELK", name="Kabel", stock=10)
    lampu = _create_product(client, admin_headers, prefix="LMP", name="Lampu", stock=1)
    res = client.post(
        "/sales",
        json={"items": [{"product_id": kabel["id"], "qty": 2, "selling_price": 1000}]},
        headers=admin_headers,
    )
    assert res.status_code == 201, res.text

    stats = client.get("/dashboard/stats", headers=admin_headers)
    assert stats.status_code == 200, stats.text
    body = stats.json()
    assert body["total_products"] == 2
    assert body["low_stock_count"] == 1
    assert body["over_stock_count"] == 1
    assert body["total_movements"] == 3
    assert body["total_asset_value"] == 9000
    assert body["monthly_revenue"] == 2000
    assert body["monthly_sales_count"] == 1
    assert [row["name"] for row in body["low_stock_list"]] == ["Lampu"]

    chart = body["chart"]
    assert len(chart) == 7
    assert chart[-1]["date"] == datetime.now(timezone.utc).date().isoformat()
    assert chart[-1]["movements"] == 3
    assert chart[-1]["sales"] == 1
    assert chart[-1]["revenue"] == 2000
    assert all(point["movements"] == 0 and point["sales"] == 0 for point in chart[:-1])

    viewer_id, viewer_headers = _viewer_headers(client, admin_headers)
    res = client.put(
        f"/users/{viewer_id}/visibility",
        json={"category_ids": [lampu["category_id"]]},
        headers=admin_headers,
    )
    assert res.status_code == 200, res.text

    scoped = client.get("/dashboard/stats", headers=viewer_headers).json()
    assert scoped["total_products"] == 1
    assert scoped["over_stock_count"] == 0
    assert scoped["total_movements"] == 1
    assert scoped["total_asset_value"] == 1000
    assert scoped["chart"][-1]["movements"] == 1
    assert scoped["categories"] == [{"id": lampu["category_id"], "name": "Kategori LMP"}]
    # Sales figures are store-wide.
    assert scoped["monthly_revenue"] == 2000

    assert client.get("/dashboard/stats").status_code == 401


def test_admin_updates_and_deletes_users(test_context):
    client, _ = test_context
    admin_headers = _admin_headers(client)
    admin_id = client.get("/auth/me", headers=admin_headers).json()["id"]
    viewer_id, viewer_headers = _viewer_headers(client, admin_headers)

    res = client.patch(f"/users/{viewer_id}", json={"name": "  Sari  ", "role": "ADMIN"}, headers=admin_headers)
    assert res.status_code == 200, res.text
    assert res.json()["name"] == "Sari"
    assert res.json()["role"] == "ADMIN"

    res = client.patch(f"/users/{viewer_id}", json={"password": "new-password-1"}, headers=admin_headers)
    assert res.status_code == 200
    assert client.post("/auth/login", json={"email": "viewer@example.com", "password": "password123"}).status_code == 401
    _login(client, "viewer@example.com", "new-password-1")

    assert client.patch(f"/users/{viewer_id}", json={}, headers=admin_headers).status_code == 422
    taken = client.patch(f"/users/{viewer_id}", json={"email": "ADMIN@example.com"}, headers=admin_headers)
    assert taken.status_code == 409

    demote_self = client.patch(f"/users/{admin_id}", json={"role": "VIEWER"}, headers=admin_headers)
    assert demote_self.status_code == 400
    assert demote_self.json()["error"]["message"] == "Cannot change the role of your own account"

    res = client.patch(f"/users/{viewer_id}", json={"is_active": False}, headers=admin_headers)
    assert res.status_code == 200
    assert client.get("/auth/me", headers=viewer_headers).status_code == 401

    delete_self = client.delete(f"/users/{admin_id}", headers=admin_headers)
    assert delete_self.status_code == 400
    assert delete_self.json()["error"]["message"] == "Cannot delete your own account"

    assert client.delete(f"/users/{viewer_id}", headers=admin_headers).status_code == 204
    assert client.delete(f"/users/{viewer_id}", headers=admin_headers).status_code == 404
    assert [row["id"] for row in client.get("/users", headers=admin_headers).json()["items"]] == [admin_id]

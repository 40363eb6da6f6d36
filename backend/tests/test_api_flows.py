from __future__ import annotations

from sqlmodel import select

from shop.core.config import settings
from shop.core.security import generate_csrf_token
from shop.models import Card, Order, Product, now_ms
from shop.services import orders
from shop.services.gateway import get_gateway


def _notify_params(order_id: str, trade_no: str = "T100", status: str = "TRADE_SUCCESS") -> dict[str, str]:
    params = {
        "pid": settings.MERCHANT_ID or "1",
        "out_trade_no": order_id,
        "trade_no": trade_no,
        "trade_status": status,
        "money": "9.90",
        "sign_type": "MD5",
    }
    params["sign"] = get_gateway().sign(params)
    return params


def _buy(client, headers, product_id: str = "p1") -> dict:
    r = client.post("/api/v1/orders", headers=headers, json={"product_id": product_id})
    assert r.status_code == 200, r.text
    body = r.json()
    assert body["code"] == 0
    return body["data"]


def test_health_check(client):
    r = client.get("/api/v1/utils/health-check/")
    assert r.status_code == 200
    assert r.json() is True


def test_ready_reports_schema_state(client, monkeypatch):
    monkeypatch.setattr("shop.api.routes.utils.schema_is_current", lambda engine: False)
    r = client.get("/api/v1/utils/ready")
    assert r.status_code == 503
    assert r.json()["code"] == 503000

    monkeypatch.setattr("shop.api.routes.utils.schema_is_current", lambda engine: True)
    r = client.get("/api/v1/utils/ready")
    assert r.status_code == 200
    assert r.json()["data"] is True


def test_product_listing_and_detail(client, make_product):
    make_product("p1", cards=2, sort_order=2)
    make_product("p0", cards=0, sort_order=1)
    make_product("hidden", cards=1, is_active=False)

    r = client.get("/api/v1/products")
    assert r.status_code == 200
    items = r.json()["data"]["data"]
    assert [p["id"] for p in items] == ["p0", "p1"]

    r = client.get("/api/v1/products/p1")
    body = r.json()
    assert body["data"]["stock"] == 2
    assert body["data"]["locked"] == 0
    assert body["data"]["price"] == "9.90"

    assert client.get("/api/v1/products/hidden").status_code == 404
    r = client.get("/api/v1/products/nope")
    assert r.status_code == 404
    assert r.json()["code"] == 404101


def test_checkout_requires_login_and_csrf(client, make_product, make_user):
    make_product("p1", cards=1)
    _, headers = make_user("u1")

    r = client.post("/api/v1/orders", json={"product_id": "p1"})
    assert r.status_code == 401

    bad = {**headers, "X-CSRF-Token": "nope"}
    r = client.post("/api/v1/orders", headers=bad, json={"product_id": "p1"})
    assert r.status_code == 403
    assert r.json() == {"code": 403001, "message": "csrf", "data": None}


def test_checkout_and_payment_flow(client, db, make_product, make_user):
    make_product("p1", cards=1)
    _, headers = make_user("u1")

    data = _buy(client, headers)
    order_id = data["order"]["order_id"]
    assert data["order"]["status"] == "pending"
    assert data["payment"]["action"] == settings.PAY_URL
    fields = data["payment"]["fields"]
    assert fields["out_trade_no"] == order_id
    assert fields["notify_url"].endswith("/api/v1/payment/notify")
    assert get_gateway().verify(fields)
    assert client.cookies.get("pending_order") == order_id

    # 唯一的卡密已被预占
    _, other = make_user("u2")
    r = client.post("/api/v1/orders", headers=other, json={"product_id": "p1"})
    assert r.status_code == 409
    assert r.json()["message"] == "stock_locked"

    # 签名错误：不做任何修改
    forged = {**_notify_params(order_id), "sign": "0" * 32}
    r = client.post("/api/v1/payment/notify", data=forged)
    assert r.status_code == 400
    assert r.text == "fail"
    db.expire_all()
    assert db.get(Order, order_id).status == "pending"

    r = client.post("/api/v1/payment/notify", data=_notify_params(order_id))
    assert r.status_code == 200
    assert r.text == "success"

    # 网关重试同一通知
    r = client.get("/api/v1/payment/notify", params=_notify_params(order_id))
    assert r.text == "success"

    r = client.get(f"/api/v1/orders/{order_id}", headers=headers)
    body = r.json()["data"]
    assert body["status"] == "delivered"
    assert body["card_key"] == "p1-key-1"
    assert body["trade_no"] == "T100"

    db.expire_all()
    assert db.exec(select(Card).where(Card.is_used == True)).one().card_key == "p1-key-1"  # noqa: E712

    # 其他用户看不到这笔订单
    r = client.get(f"/api/v1/orders/{order_id}", headers=other)
    assert r.status_code == 404

    r = client.get("/api/v1/orders", headers=headers)
    assert r.json()["data"]["count"] == 1

    r = client.get("/api/v1/notifications", headers=headers)
    notes = r.json()["data"]
    assert notes["unread"] == 1
    assert notes["data"][0]["type"] == "order_delivered"
    assert notes["data"][0]["data"]["order_id"] == order_id

    r = client.post(f"/api/v1/notifications/{notes['data'][0]['id']}/read", headers=headers)
    assert r.json()["data"]["read"] is True
    assert client.get("/api/v1/notifications/unread-count", headers=headers).json()["data"]["unread"] == 0


def test_notify_for_non_success_status_is_acknowledged(client, db, make_product, make_user):
    make_product("p1", cards=1)
    _, headers = make_user("u1")
    order_id = _buy(client, headers)["order"]["order_id"]

    r = client.post("/api/v1/payment/notify", data=_notify_params(order_id, status="WAIT_BUYER_PAY"))
    assert r.text == "success"
    r = client.post("/api/v1/payment/notify", data=_notify_params("ORDUNKNOWN"))
    assert r.text == "success"
    db.expire_all()
    assert db.get(Order, order_id).status == "pending"


def test_notify_accepts_multipart_form(client, db, make_product, make_user):
    make_product("p1", cards=1)
    _, headers = make_user("u1")
    order_id = _buy(client, headers)["order"]["order_id"]

    fields = {k: (None, v) for k, v in _notify_params(order_id, trade_no="TM1").items()}
    r = client.post("/api/v1/payment/notify", files=fields)
    assert r.status_code == 200
    assert r.text == "success"
    db.expire_all()
    order = db.get(Order, order_id)
    assert order.status == "delivered"
    assert order.trade_no == "TM1"


def test_expired_order_is_swept_on_read(client, db, make_product, make_user):
    make_product("p1", cards=1)
    _, headers = make_user("u1")
    order_id = _buy(client, headers)["order"]["order_id"]

    order = db.get(Order, order_id)
    order.created_at = now_ms() - settings.payment_timeout_ms - 1000
    db.add(order)
    db.commit()

    r = client.get(f"/api/v1/orders/{order_id}", headers=headers)
    assert r.json()["data"]["status"] == "cancelled"

    r = client.get("/api/v1/products/p1")
    assert r.json()["data"]["stock"] == 1
    assert r.json()["data"]["locked"] == 0


def test_guest_order_visible_by_id(client, db, make_product):
    make_product("p1")
    db.add(Order(order_id="ORDGUEST", product_id="p1", product_name="x", status="delivered", card_key="k"))
    db.commit()
    r = client.get("/api/v1/orders/ORDGUEST")
    assert r.status_code == 200
    assert r.json()["data"]["card_key"] == "k"


def test_payment_return_redirects(client):
    base = settings.FRONTEND_HOST.rstrip("/")
    r = client.get("/api/v1/payment/return/ORD1", follow_redirects=False)
    assert r.status_code == 302
    assert r.headers["location"] == f"{base}/order/ORD1"

    r = client.get("/api/v1/payment/return", params={"out_trade_no": "ORD2"}, follow_redirects=False)
    assert r.headers["location"] == f"{base}/order/ORD2"

    client.cookies.set("pending_order", "ORD3")
    r = client.get("/api/v1/payment/return", follow_redirects=False)
    assert r.headers["location"] == f"{base}/order/ORD3"

    client.cookies.clear()
    r = client.get("/api/v1/payment/return", follow_redirects=False)
    assert r.headers["location"] == f"{base}/orders"


def test_blocked_user_cannot_checkout(client, make_product, make_user):
    make_product("p1", cards=1)
    _, headers = make_user("u1", is_blocked=True)
    r = client.post("/api/v1/orders", headers=headers, json={"product_id": "p1"})
    assert r.status_code == 403
    assert r.json()["code"] == 403102


def test_csrf_endpoint(client, make_user):
    _, headers = make_user("u1")
    r = client.get("/api/v1/auth/csrf", headers={"Authorization": headers["Authorization"]})
    assert r.json()["data"]["csrf_token"] == generate_csrf_token("u1")


def test_invalid_token_is_rejected(client):
    r = client.get("/api/v1/orders", headers={"Authorization": "Bearer not-a-jwt"})
    assert r.status_code == 401
    assert r.json()["code"] == 401000


def test_validation_error_handler(client, make_user):
    _, headers = make_user("u1")
    r = client.post("/api/v1/orders", headers=headers, json={"product_id": ""})
    assert r.status_code == 422
    body = r.json()
    assert body["code"] == 422000
    assert body["data"]["errors"]


def test_admin_requires_admin_user(client, make_user):
    _, headers = make_user("u1")
    r = client.post("/api/v1/admin/sweep", headers=headers)
    assert r.status_code == 403
    assert r.json()["code"] == 403101


def test_admin_catalog_and_cards(client, db, admin):

    r = client.post(
        "/api/v1/admin/products",
        headers=admin,
        json={"id": "gift", "name": "Gift card", "price": "5.00", "purchase_limit": 0},
    )
    assert r.status_code == 200, r.text
    assert r.json()["data"]["purchase_limit"] is None

    r = client.post("/api/v1/admin/products/gift/cards", headers=admin, json={"cards": "a\nb\n\nc"})
    assert r.json()["data"]["added"] == 3
    db.expire_all()
    assert db.get(Product, "gift").stock_count == 3

    r = client.get("/api/v1/admin/products/gift/cards", headers=admin)
    cards = r.json()["data"]
    assert [c["card_key"] for c in cards] == ["a", "b", "c"]

    r = client.delete(f"/api/v1/admin/cards/{cards[0]['id']}", headers=admin)
    assert r.json()["data"]["deleted"] is True
    db.expire_all()
    assert db.get(Product, "gift").stock_count == 2

    r = client.post("/api/v1/admin/products/gift/active", headers=admin, json={"is_active": False})
    assert r.json()["data"]["is_active"] is False
    r = client.post("/api/v1/admin/products/gift/sort", headers=admin, json={"sort_order": 7})
    assert r.json()["data"]["sort_order"] == 7
    r = client.post("/api/v1/admin/products/gift/recalc", headers=admin)
    assert r.json()["data"]["stock"] == 2

    r = client.get("/api/v1/admin/products", headers=admin)
    assert [p["id"] for p in r.json()["data"]["data"]] == ["gift"]

    # 写操作需要 CSRF
    no_csrf = {"Authorization": admin["Authorization"]}
    r = client.post("/api/v1/admin/products/gift/recalc", headers=no_csrf)
    assert r.status_code == 403


def test_admin_delete_reserved_card_conflicts(client, make_product, make_user, admin):
    make_product("p1", cards=1)
    _, buyer = make_user("u1")
    _buy(client, buyer)

    card_id = client.get("/api/v1/admin/products/p1/cards", headers=admin).json()["data"][0]["id"]
    r = client.delete(f"/api/v1/admin/cards/{card_id}", headers=admin)
    assert r.status_code == 409
    assert r.json()["code"] == 409102


def test_admin_oversold_fulfil_and_refund(client, db, make_product, admin):
    make_product("p1", cards=1)
    db.add(Order(order_id="ORDOVER", product_id="p1", product_name="x", status="paid", trade_no="T1"))
    db.add(Order(order_id="ORDPEND", product_id="p1", product_name="x", status="pending"))
    db.commit()

    r = client.get("/api/v1/admin/orders/oversold", headers=admin)
    assert [o["order_id"] for o in r.json()["data"]["data"]] == ["ORDOVER"]

    r = client.get("/api/v1/admin/orders", headers=admin, params={"status": "pending"})
    assert r.json()["data"]["count"] == 1

    r = client.post("/api/v1/admin/orders/ORDPEND/fulfil", headers=admin)
    assert r.status_code == 409
    assert r.json()["code"] == 409202

    r = client.post("/api/v1/admin/orders/ORDOVER/fulfil", headers=admin)
    assert r.json()["data"]["status"] == "delivered"
    assert r.json()["data"]["card_key"] == "p1-key-1"

    # 库存已空，再来一笔超卖订单无法补发
    db.add(Order(order_id="ORDOVER2", product_id="p1", product_name="x", status="paid", trade_no="T2"))
    db.commit()
    r = client.post("/api/v1/admin/orders/ORDOVER2/fulfil", headers=admin)
    assert r.status_code == 409
    assert r.json()["message"] == "out_of_stock"

    r = client.post("/api/v1/admin/orders/ORDOVER/refund", headers=admin)
    assert r.json()["data"]["status"] == "refunded"
    r = client.post("/api/v1/admin/orders/ORDPEND/refund", headers=admin)
    assert r.status_code == 409
    assert r.json()["code"] == 409201

    r = client.post("/api/v1/admin/sweep", headers=admin)
    assert r.json()["data"]["cancelled"] == []


def test_admin_delete_product(client, db, make_product, make_user, admin):
    make_product("p1", cards=2)
    make_product("p2", cards=1)
    _, buyer = make_user("u1")
    _buy(client, buyer, "p2")

    r = client.delete("/api/v1/admin/products/p1", headers={"Authorization": admin["Authorization"]})
    assert r.status_code == 403

    r = client.delete("/api/v1/admin/products/p1", headers=admin)
    assert r.status_code == 200, r.text
    assert r.json()["data"] == {"deleted": True, "cards": 2}
    assert client.get("/api/v1/products/p1").status_code == 404

    # 有买家正在付款的商品不能删除
    r = client.delete("/api/v1/admin/products/p2", headers=admin)
    assert r.status_code == 409
    assert r.json()["code"] == 409103

    r = client.delete("/api/v1/admin/products/missing", headers=admin)
    assert r.status_code == 404


def test_admin_users_list_and_block(client, db, make_product, make_user, admin):
    make_product("p1", cards=3)
    _, alice = make_user("u1", username="alice", email="alice@example.com")
    make_user("u2", username="bob")
    _buy(client, alice)

    r = client.get("/api/v1/admin/users", headers=admin)
    assert r.status_code == 200, r.text
    users = {u["user_id"]: u for u in r.json()["data"]["data"]}
    assert r.json()["data"]["count"] == 3
    assert users["u1"]["order_count"] == 1
    assert users["u2"]["order_count"] == 0

    r = client.get("/api/v1/admin/users", headers=admin, params={"q": "alice"})
    assert [u["user_id"] for u in r.json()["data"]["data"]] == ["u1"]

    r = client.post("/api/v1/admin/users/u1/block", headers=admin, json={"is_blocked": True})
    assert r.json()["data"]["is_blocked"] is True
    r = client.post("/api/v1/orders", headers=alice, json={"product_id": "p1"})
    assert r.status_code == 403
    assert r.json()["code"] == 403102

    r = client.post("/api/v1/admin/users/u1/block", headers=admin, json={"is_blocked": False})
    assert r.json()["data"]["is_blocked"] is False
    _buy(client, alice)

    r = client.post("/api/v1/admin/users/nobody/block", headers=admin, json={"is_blocked": True})
    assert r.status_code == 404
    assert r.json()["code"] == 404401

    r = client.get("/api/v1/admin/users", headers=alice)
    assert r.status_code == 403


def test_checkout_failure_without_reason_is_out_of_stock(client, make_product, make_user, monkeypatch):
    make_product("p1", cards=1)
    _, headers = make_user("u1")
    monkeypatch.setattr(orders, "create_order", lambda *a, **kw: orders.CheckoutOutcome(ok=False))

    r = client.post("/api/v1/orders", headers=headers, json={"product_id": "p1"})
    assert r.status_code == 409
    assert r.json()["code"] == 409001

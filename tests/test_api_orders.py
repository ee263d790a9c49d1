"""POST/GET /api/orders through the HTTP boundary."""

from __future__ import annotations

from decimal import Decimal

import pytest
from prometheus_client import REGISTRY
from sqlalchemy import func, select
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session

import teashop.orders
from teashop.models import Order, OrderItem


def order_count(session_factory) -> int:
    with session_factory() as s:
        return s.execute(select(func.count()).select_from(Order)).scalar_one()


def body(*items: tuple[int, int, float], total: float | None = None) -> dict:
    lines = [{"productId": pid, "quantity": qty, "price": price} for pid, qty, price in items]
    if total is None:
        total = sum(qty * price for _, qty, price in items)
    return {
        "items": lines,
        "shippingInfo": {"name": "Chen", "phone": "13800000000", "address": "Cangwu, Wuzhou"},
        "totalAmount": total,
    }


class TestCreateOrder:
    def test_created(self, client, user_headers, add_product, stock_of, session_factory) -> None:
        pid = add_product(stock=10, price="30.00")
        resp = client.post("/api/orders", json=body((pid, 3, 30.0)), headers=user_headers)

        assert resp.status_code == 201
        data = resp.json()
        assert data["message"]
        assert isinstance(data["orderId"], int)
        assert data["orderNumber"].startswith("ORD")
        assert stock_of(pid) == 7

        with session_factory() as s:
            order = s.get(Order, data["orderId"])
            assert order.user_id == "42"
            assert order.status == "pending"
            assert order.total_amount == Decimal("90.00")
            assert order.shipping_info["address"] == "Cangwu, Wuzhou"
            assert [(i.product_id, i.quantity, i.unit_price) for i in order.items] == [
                (pid, 3, Decimal("30.00"))
            ]

    def test_two_submissions_are_two_orders(self, client, user_headers, add_product) -> None:
        pid = add_product(stock=10)
        first = client.post("/api/orders", json=body((pid, 1, 88.0)), headers=user_headers)
        second = client.post("/api/orders", json=body((pid, 1, 88.0)), headers=user_headers)

        assert first.status_code == second.status_code == 201
        assert first.json()["orderId"] != second.json()["orderId"]

    @pytest.mark.parametrize(
        "headers",
        [
            {},
            {"Authorization": "Token abc"},
            {"Authorization": "Bearer not-a-token"},
            {"Authorization": "Bearer a.b.c"},
        ],
    )
    def test_unauthorized(self, client, add_product, stock_of, session_factory, headers) -> None:
        pid = add_product(stock=10)
        resp = client.post("/api/orders", json=body((pid, 1, 88.0)), headers=headers)

        assert resp.status_code == 401
        assert resp.json()["error"] == "unauthorized"
        assert order_count(session_factory) == 0
        assert stock_of(pid) == 10

    def test_token_signed_with_another_secret(self, client, add_product, session_factory) -> None:
        from teashop.auth import issue_token

        pid = add_product()
        forged = issue_token("42", secret="someone-elses-secret")
        resp = client.post("/api/orders", json=body((pid, 1, 88.0)), headers={"Authorization": f"Bearer {forged}"})

        assert resp.status_code == 401
        assert order_count(session_factory) == 0

    def test_empty_items(self, client, user_headers, session_factory) -> None:
        resp = client.post("/api/orders", json={"items": [], "totalAmount": 0}, headers=user_headers)

        assert resp.status_code == 400
        assert resp.json()["error"] == "invalid input"
        assert order_count(session_factory) == 0

    @pytest.mark.parametrize("quantity", [0, -2])
    def test_non_positive_quantity(self, client, user_headers, add_product, session_factory, quantity) -> None:
        pid = add_product()
        resp = client.post("/api/orders", json=body((pid, quantity, 88.0), total=0), headers=user_headers)

        assert resp.status_code == 400
        assert order_count(session_factory) == 0

    def test_malformed_body(self, client, user_headers, session_factory) -> None:
        resp = client.post("/api/orders", json={"items": "tea please"}, headers=user_headers)

        assert resp.status_code == 400
        data = resp.json()
        assert data["error"] == "invalid input"
        assert "totalAmount" in data["details"]
        assert order_count(session_factory) == 0

    def test_insufficient_stock_rolls_back(self, client, user_headers, add_product, stock_of, session_factory) -> None:
        plenty = add_product(stock=10)
        scarce = add_product(stock=2)
        resp = client.post(
            "/api/orders", json=body((plenty, 1, 88.0), (scarce, 5, 88.0)), headers=user_headers
        )

        assert resp.status_code == 409
        assert resp.json()["error"] == "insufficient stock"
        assert f"product {scarce}" in resp.json()["details"]
        assert order_count(session_factory) == 0
        assert stock_of(plenty) == 10
        assert stock_of(scarce) == 2

    def test_unknown_product(self, client, user_headers, session_factory) -> None:
        resp = client.post("/api/orders", json=body((31337, 1, 10.0)), headers=user_headers)

        assert resp.status_code == 404
        assert resp.json()["error"] == "product not found"
        assert order_count(session_factory) == 0

    def test_storage_failure(self, client, user_headers, add_product, stock_of, session_factory, monkeypatch) -> None:
        pid = add_product(stock=10)

        def broken_line(*args, **kwargs):
            raise OperationalError("INSERT INTO order_items", {}, Exception("disk I/O error"))

        monkeypatch.setattr(teashop.orders, "create_order_line", broken_line)
        resp = client.post("/api/orders", json=body((pid, 1, 88.0)), headers=user_headers)

        assert resp.status_code == 500
        data = resp.json()
        assert data["error"] == "storage failure"
        assert "disk I/O error" in data["details"]
        assert order_count(session_factory) == 0
        assert stock_of(pid) == 10

    def test_commit_failure_answers_500(self, client, user_headers, add_product, stock_of, session_factory, monkeypatch) -> None:
        pid = add_product(stock=10)
        created_before = REGISTRY.get_sample_value("orders_created_total")

        def broken_commit(self):
            raise OperationalError("COMMIT", {}, Exception("database is locked"))

        monkeypatch.setattr(Session, "commit", broken_commit)
        resp = client.post("/api/orders", json=body((pid, 1, 88.0)), headers=user_headers)
        monkeypatch.undo()

        assert resp.status_code == 500
        assert resp.json()["error"] == "storage failure"
        assert "database is locked" in resp.json()["details"]
        assert order_count(session_factory) == 0
        assert stock_of(pid) == 10
        assert REGISTRY.get_sample_value("orders_created_total") == created_before

    def test_quantity_beyond_integer_column(self, client, user_headers, add_product, stock_of, session_factory) -> None:
        pid = add_product(stock=10)
        resp = client.post("/api/orders", json=body((pid, 2**63, 88.0), total=88.0), headers=user_headers)

        assert resp.status_code == 400
        data = resp.json()
        assert data["error"] == "invalid input"
        assert "quantity" in data["details"]
        assert order_count(session_factory) == 0
        assert stock_of(pid) == 10

    def test_total_beyond_money_column(self, client, user_headers, add_product, session_factory) -> None:
        pid = add_product(stock=10)
        resp = client.post("/api/orders", json=body((pid, 1, 88.0), total=12345678901), headers=user_headers)

        assert resp.status_code == 400
        assert resp.json()["error"] == "invalid input"
        assert "totalAmount" in resp.json()["details"]
        assert order_count(session_factory) == 0


class TestReadOrders:
    def test_list_only_my_orders(self, client, headers_for, add_product) -> None:
        pid = add_product(stock=10)
        mine = client.post("/api/orders", json=body((pid, 1, 88.0)), headers=headers_for("42")).json()
        client.post("/api/orders", json=body((pid, 2, 88.0)), headers=headers_for("7"))

        resp = client.get("/api/orders", headers=headers_for("42"))

        assert resp.status_code == 200
        orders = resp.json()
        assert [o["id"] for o in orders] == [mine["orderId"]]
        assert orders[0]["status"] == "pending"

    def test_detail_includes_lines(self, client, user_headers, add_product) -> None:
        pid = add_product(name="Liubao 2012", stock=10, price="66.00", image_filename="Goods_1.png")
        order_id = client.post("/api/orders", json=body((pid, 2, 66.0)), headers=user_headers).json()["orderId"]

        resp = client.get(f"/api/orders/{order_id}", headers=user_headers)

        assert resp.status_code == 200
        data = resp.json()
        assert data["id"] == order_id
        assert Decimal(data["total_amount"]) == Decimal("132.00")
        [line] = data["items"]
        assert line["product_id"] == pid
        assert line["quantity"] == 2
        assert Decimal(line["unit_price"]) == Decimal("66.00")
        assert line["name"] == "Liubao 2012"
        assert line["image_url"].endswith("/image/Goods/Goods_1.png")

    def test_detail_of_someone_elses_order(self, client, headers_for, add_product) -> None:
        pid = add_product()
        order_id = client.post("/api/orders", json=body((pid, 1, 88.0)), headers=headers_for("7")).json()["orderId"]

        resp = client.get(f"/api/orders/{order_id}", headers=headers_for("42"))

        assert resp.status_code == 404
        assert resp.json()["error"] == "order not found"

    def test_list_requires_auth(self, client) -> None:
        assert client.get("/api/orders").status_code == 401

import pytest


@pytest.fixture
def seeded(client, make_account, make_product):
    producer_id, producer = make_account("producer")
    _, consumer = make_account("consumer")
    make_account("restaurant")
    product_id = make_product(producer_id, price=10.0, stock=10)
    for _ in range(2):
        client.post(
            "/orders",
            json={"producer_id": producer_id, "items": [{"product_id": product_id, "quantity": 1}], "total": 10.0},
            headers=consumer,
        )
    _, admin = make_account("admin")
    return admin


def test_summary(client, seeded):
    res = client.get("/admin/reports", headers=seeded)
    assert res.status_code == 200
    assert res.json() == {
        "total_users": 3,
        "total_products": 1,
        "total_orders": 2,
        "total_revenue": 20.0,
    }


def test_orders_by_status(client, seeded):
    data = client.get("/admin/reports", params={"kind": "orders"}, headers=seeded).json()
    assert data["total_orders"] == 2
    assert data["orders_by_status"] == [{"status": "new", "count": 2, "revenue": 20.0}]


def test_green_seal_report(client, seeded):
    data = client.get("/admin/reports", params={"kind": "green-seal"}, headers=seeded).json()
    assert data["total_producers"] == 1
    assert data["certified_producers"] == 0
    assert data["percentage"] == 0


def test_unknown_report(client, seeded):
    assert client.get("/admin/reports", params={"kind": "weather"}, headers=seeded).status_code == 400


def test_reports_are_admin_only(client, make_account):
    _, consumer = make_account("consumer")
    assert client.get("/admin/reports", headers=consumer).status_code == 403

import pytest
from bson import ObjectId


@pytest.fixture
def market(make_account, make_product):
    producer_id, producer_headers = make_account("producer")
    consumer_id, consumer_headers = make_account("consumer")
    lettuce = make_product(producer_id, name="Lettuce", price=5.50, stock=10)
    honey = make_product(producer_id, name="Honey", price=8.00, stock=5)
    return {
        "producer_id": producer_id,
        "producer": producer_headers,
        "consumer_id": consumer_id,
        "consumer": consumer_headers,
        "lettuce": lettuce,
        "honey": honey,
    }


def stock_of(db, product_id):
    return db["product"].find_one({"_id": ObjectId(product_id)})["stock"]


def place_order(client, market, items=None, total=19.00):
    if items is None:
        items = [
            {"product_id": market["lettuce"], "quantity": 2},
            {"product_id": market["honey"], "quantity": 1},
        ]
    return client.post(
        "/orders",
        json={"producer_id": market["producer_id"], "items": items, "total": total},
        headers=market["consumer"],
    )


def advance_to(client, market, order_id, target):
    for status in ("picking", "shipped", "completed"):
        res = client.patch(f"/orders/{order_id}/status", json={"status": status}, headers=market["producer"])
        assert res.status_code == 200
        if status == target:
            return res.json()


def test_create_order_snapshots_items_and_takes_stock(client, db, market):
    res = place_order(client, market)
    assert res.status_code == 201
    order = res.json()
    assert order["status"] == "new"
    assert order["consumer_id"] == market["consumer_id"]
    assert order["total"] == 19.00
    assert [(i["name"], i["quantity"], i["unit_price"]) for i in order["items"]] == [
        ("Lettuce", 2, 5.50),
        ("Honey", 1, 8.00),
    ]
    assert stock_of(db, market["lettuce"]) == 8
    assert stock_of(db, market["honey"]) == 4


def test_create_order_rejects_insufficient_stock(client, db, market):
    res = place_order(client, market, items=[{"product_id": market["honey"], "quantity": 6}], total=48.0)
    assert res.status_code == 400
    assert "Insufficient stock" in res.json()["detail"]
    assert stock_of(db, market["honey"]) == 5
    assert db["order"].count_documents({}) == 0


def test_create_order_rejects_mismatched_total(client, market):
    res = place_order(client, market, total=20.00)
    assert res.status_code == 400
    assert "does not match" in res.json()["detail"]


def test_create_order_rejects_other_producers_product(client, market, make_account, make_product):
    other_id, _ = make_account("producer")
    foreign = make_product(other_id, name="Eggs", price=1.0)
    res = place_order(client, market, items=[{"product_id": foreign, "quantity": 1}], total=1.0)
    assert res.status_code == 400


def test_create_order_unknown_product(client, market):
    res = place_order(client, market, items=[{"product_id": str(ObjectId()), "quantity": 1}], total=1.0)
    assert res.status_code == 404


def test_create_order_needs_items(client, market):
    res = place_order(client, market, items=[], total=0)
    assert res.status_code == 400


def test_producer_cannot_place_orders(client, market):
    res = client.post(
        "/orders",
        json={"producer_id": market["producer_id"], "items": [{"product_id": market["honey"], "quantity": 1}], "total": 8.0},
        headers=market["producer"],
    )
    assert res.status_code == 403


def test_orders_require_token(client, market):
    res = client.get("/orders")
    assert res.status_code == 401


def test_status_moves_forward_one_step_at_a_time(client, market):
    order_id = place_order(client, market).json()["id"]

    res = client.patch(f"/orders/{order_id}/status", json={"status": "shipped"}, headers=market["producer"])
    assert res.status_code == 409

    res = client.patch(f"/orders/{order_id}/status", json={"status": "picking"}, headers=market["producer"])
    assert res.status_code == 200
    assert res.json()["status"] == "picking"


def test_status_rejects_unknown_and_cancelled_targets(client, market):
    order_id = place_order(client, market).json()["id"]
    res = client.patch(f"/orders/{order_id}/status", json={"status": "lost"}, headers=market["producer"])
    assert res.status_code == 400
    res = client.patch(f"/orders/{order_id}/status", json={"status": "cancelled"}, headers=market["producer"])
    assert res.status_code == 400


def test_completed_order_status_is_final(client, market):
    order_id = place_order(client, market).json()["id"]
    advance_to(client, market, order_id, "completed")
    res = client.patch(f"/orders/{order_id}/status", json={"status": "new"}, headers=market["producer"])
    assert res.status_code == 409


def test_stored_status_outside_progression_cannot_advance(client, db, market):
    order_id = place_order(client, market).json()["id"]
    db["order"].update_one({"_id": ObjectId(order_id)}, {"$set": {"status": "on_hold"}})
    res = client.patch(f"/orders/{order_id}/status", json={"status": "picking"}, headers=market["producer"])
    assert res.status_code == 409
    assert "on_hold" in res.json()["detail"]


def test_only_the_producer_updates_status(client, market):
    order_id = place_order(client, market).json()["id"]
    res = client.patch(f"/orders/{order_id}/status", json={"status": "picking"}, headers=market["consumer"])
    assert res.status_code == 403


def test_cancel_restores_stock_and_records_actor(client, db, market):
    order_id = place_order(client, market).json()["id"]
    lettuce_before = stock_of(db, market["lettuce"])
    honey_before = stock_of(db, market["honey"])

    res = client.post(
        f"/orders/{order_id}/cancel",
        json={"cancelled_by": "consumer", "reason": "out of stock"},
        headers=market["consumer"],
    )
    assert res.status_code == 200
    order = res.json()["order"]
    assert order["status"] == "cancelled"
    assert order["cancelled_by"] == "consumer"
    assert order["cancellation_reason"] == "out of stock"
    assert order["cancelled_at"] is not None
    assert stock_of(db, market["lettuce"]) == lettuce_before + 2
    assert stock_of(db, market["honey"]) == honey_before + 1


@pytest.mark.parametrize("status", ["picking", "shipped"])
def test_cancel_from_in_progress_states(client, db, market, status):
    order_id = place_order(client, market).json()["id"]
    advance_to(client, market, order_id, status)
    res = client.post(
        f"/orders/{order_id}/cancel",
        json={"cancelled_by": "producer", "reason": "truck broke down"},
        headers=market["producer"],
    )
    assert res.status_code == 200
    assert stock_of(db, market["lettuce"]) == 10
    assert stock_of(db, market["honey"]) == 5


def test_cancel_completed_order_fails_and_keeps_stock(client, db, market):
    order_id = place_order(client, market).json()["id"]
    advance_to(client, market, order_id, "completed")
    res = client.post(
        f"/orders/{order_id}/cancel",
        json={"cancelled_by": "producer", "reason": "changed my mind"},
        headers=market["producer"],
    )
    assert res.status_code == 409
    assert stock_of(db, market["lettuce"]) == 8
    assert stock_of(db, market["honey"]) == 4


def test_cancel_twice_restores_stock_once(client, db, market):
    order_id = place_order(client, market).json()["id"]
    body = {"cancelled_by": "consumer", "reason": "duplicate"}
    assert client.post(f"/orders/{order_id}/cancel", json=body, headers=market["consumer"]).status_code == 200
    res = client.post(f"/orders/{order_id}/cancel", json=body, headers=market["consumer"])
    assert res.status_code == 409
    assert stock_of(db, market["lettuce"]) == 10
    assert stock_of(db, market["honey"]) == 5


def test_cancel_unknown_order(client, market):
    res = client.post(
        f"/orders/{ObjectId()}/cancel",
        json={"cancelled_by": "consumer", "reason": "x"},
        headers=market["consumer"],
    )
    assert res.status_code == 404


def test_cancel_requires_reason(client, market):
    order_id = place_order(client, market).json()["id"]
    res = client.post(f"/orders/{order_id}/cancel", json={"cancelled_by": "consumer", "reason": ""}, headers=market["consumer"])
    assert res.status_code == 400


def test_consumer_cannot_cancel_as_producer(client, market):
    order_id = place_order(client, market).json()["id"]
    res = client.post(
        f"/orders/{order_id}/cancel",
        json={"cancelled_by": "producer", "reason": "pretending"},
        headers=market["consumer"],
    )
    assert res.status_code == 403


def test_review_completed_order_once(client, market):
    order_id = place_order(client, market).json()["id"]
    advance_to(client, market, order_id, "completed")

    res = client.post(f"/orders/{order_id}/review", json={"score": 5, "comment": "Great"}, headers=market["consumer"])
    assert res.status_code == 201
    review = res.json()["review"]
    assert review["score"] == 5
    assert review["comment"] == "Great"
    assert review["reviewed_at"]

    res = client.post(f"/orders/{order_id}/review", json={"score": 1}, headers=market["consumer"])
    assert res.status_code == 409


def test_review_requires_completed_order(client, market):
    order_id = place_order(client, market).json()["id"]
    res = client.post(f"/orders/{order_id}/review", json={"score": 4}, headers=market["consumer"])
    assert res.status_code == 400


@pytest.mark.parametrize("score", [0, 6, True, "4", 4.5])
def test_review_score_bounds(client, market, score):
    order_id = place_order(client, market).json()["id"]
    advance_to(client, market, order_id, "completed")
    res = client.post(f"/orders/{order_id}/review", json={"score": score}, headers=market["consumer"])
    assert res.status_code == 400


def test_list_orders_is_scoped_to_caller(client, market, make_account):
    place_order(client, market)
    _, stranger = make_account("consumer")

    assert len(client.get("/orders", headers=market["consumer"]).json()) == 1
    assert len(client.get("/orders", headers=market["producer"]).json()) == 1
    assert client.get("/orders", headers=stranger).json() == []


def test_get_order_forbidden_for_outsiders(client, market, make_account):
    order_id = place_order(client, market).json()["id"]
    _, stranger = make_account("consumer")
    assert client.get(f"/orders/{order_id}", headers=stranger).status_code == 403
    assert client.get(f"/orders/{order_id}", headers=market["consumer"]).status_code == 200


def test_invalid_order_id(client, market):
    res = client.get("/orders/not-an-id", headers=market["consumer"])
    assert res.status_code == 400

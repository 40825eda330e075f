from bson import ObjectId

ITEMS = [
    {"product_id": str(ObjectId()), "name": "Tomato", "quantity": 40},
    {"product_id": str(ObjectId()), "name": "Basil", "quantity": 10},
]


def test_restaurant_requests_quote(client, make_account):
    restaurant_id, restaurant = make_account("restaurant")
    res = client.post("/proposals", json={"items": ITEMS}, headers=restaurant)
    assert res.status_code == 201
    proposal = res.json()
    assert proposal["status"] == "requested"
    assert proposal["requester_id"] == restaurant_id
    assert proposal["responses"] == []
    assert len(proposal["items"]) == 2


def test_quote_needs_items(client, make_account):
    _, restaurant = make_account("restaurant")
    assert client.post("/proposals", json={"items": []}, headers=restaurant).status_code == 400


def test_producers_do_not_request_quotes(client, make_account):
    _, producer = make_account("producer")
    assert client.post("/proposals", json={"items": ITEMS}, headers=producer).status_code == 403


def test_listing_is_filtered_by_requester(client, make_account):
    first_id, first = make_account("restaurant")
    _, second = make_account("restaurant")
    _, producer = make_account("producer")
    client.post("/proposals", json={"items": ITEMS}, headers=first)
    client.post("/proposals", json={"items": ITEMS[:1]}, headers=second)

    assert len(client.get("/proposals", headers=first).json()) == 1
    # restaurants cannot peek at other requesters
    assert len(client.get("/proposals", params={"requester_id": "someone"}, headers=first).json()) == 1

    assert len(client.get("/proposals", headers=producer).json()) == 2
    filtered = client.get("/proposals", params={"requester_id": first_id}, headers=producer).json()
    assert [p["requester_id"] for p in filtered] == [first_id]


def test_get_proposal_access(client, make_account):
    _, owner = make_account("restaurant")
    _, stranger = make_account("restaurant")
    proposal_id = client.post("/proposals", json={"items": ITEMS}, headers=owner).json()["id"]

    assert client.get(f"/proposals/{proposal_id}", headers=owner).status_code == 200
    assert client.get(f"/proposals/{proposal_id}", headers=stranger).status_code == 403
    assert client.get(f"/proposals/{ObjectId()}", headers=owner).status_code == 404

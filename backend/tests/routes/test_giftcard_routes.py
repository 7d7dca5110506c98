from tests.factories import make_giftcard


def test_hold_and_release(client, db):
    make_giftcard(db, code="GIFT-ROUTE", value_cents=8000)

    created = client.post("/api/v1/giftcards/holds", json={"code": "GIFT-ROUTE", "amount_cents": 3000})

    assert created.status_code == 201
    hold = created.json()
    assert hold["status"] == "active"
    assert hold["amount_cents"] == 3000

    balance = client.get("/api/v1/giftcards/GIFT-ROUTE/balance").json()
    assert balance["held_cents"] == 3000
    assert balance["available_cents"] == 5000

    released = client.post(f"/api/v1/giftcards/holds/{hold['id']}/release")
    assert released.status_code == 200
    assert released.json()["status"] == "released"
    assert client.post(f"/api/v1/giftcards/holds/{hold['id']}/release").status_code == 200


def test_insufficient_balance(client, db):
    make_giftcard(db, code="GIFT-SMALL", value_cents=1000)

    response = client.post("/api/v1/giftcards/holds", json={"code": "GIFT-SMALL", "amount_cents": 2500})

    assert response.status_code == 422
    assert response.json()["code"] == "INSUFFICIENT_FUNDS"


def test_hold_needs_a_card_reference(client):
    response = client.post("/api/v1/giftcards/holds", json={"amount_cents": 100})

    assert response.status_code == 422
    assert response.json()["code"] == "validation_error"


def test_unknown_card_balance(client):
    assert client.get("/api/v1/giftcards/NOPE/balance").status_code == 404

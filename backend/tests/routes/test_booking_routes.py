"""
Booking API round trips.

Dates are computed from today because the routes always evaluate against the
real clock.
"""

from datetime import timedelta

import pytest

from studio_booking.core.config import settings
from tests.factories import customer, make_product, make_rule, next_weekday, slot_dict

PROBLEM_JSON = "application/problem+json"


@pytest.fixture
def wheel_class(db):
    make_rule(db, day_of_week=1, time="18:00", capacity=2)
    return make_product(db, price_cents=5000)


@pytest.fixture
def class_day():
    return next_weekday(1)


def _submit(client, product, class_day, index=0, **fields):
    body = {
        "product_id": product.id,
        "mode": "flexible",
        "slots": [slot_dict(class_day)],
        "customer_info": customer(index),
    }
    body.update(fields)
    return client.post("/api/v1/bookings", json=body)


class TestCatalogue:
    def test_list_products(self, client, wheel_class):
        response = client.get("/api/v1/products")

        assert response.status_code == 200
        assert [p["id"] for p in response.json()] == [wheel_class.id]
        assert response.json()[0]["price_cents"] == 5000

    def test_list_slots_uses_camel_case_counts(self, client, wheel_class, class_day):
        response = client.get(
            f"/api/v1/products/{wheel_class.id}/slots", params={"start": class_day.isoformat(), "days": 1}
        )

        assert response.status_code == 200
        [slot] = response.json()["slots"]
        assert slot["instructorId"] == "instructor-ana"
        assert slot["maxCapacity"] == 2
        assert slot["totalBookingsCount"] == 0
        assert slot["isAvailable"] is True

    def test_unknown_product_is_problem_json(self, client):
        response = client.get("/api/v1/products/missing/slots")

        assert response.status_code == 404
        assert response.headers["content-type"].startswith(PROBLEM_JSON)
        body = response.json()
        assert body["status"] == 404
        assert body["instance"] == "/api/v1/products/missing/slots"
        assert body["request_id"] == response.headers["X-Request-ID"]


class TestValidateSelection:
    def test_failed_check_is_ok_false_not_an_error(self, client, wheel_class, class_day):
        response = client.post(
            "/api/v1/bookings/validate-selection",
            json={"product_id": wheel_class.id, "slots": [slot_dict(class_day, "09:00")]},
        )

        assert response.status_code == 200
        assert response.json()["ok"] is False
        assert response.json()["reason"]

    def test_valid_selection(self, client, wheel_class, class_day):
        response = client.post(
            "/api/v1/bookings/validate-selection",
            json={"product_id": wheel_class.id, "slots": [slot_dict(class_day)]},
        )

        assert response.json()["ok"] is True
        assert response.json()["requires_no_refund_ack"] is False


class TestSubmission:
    def test_create_then_resubmit(self, client, wheel_class, class_day):
        first = _submit(client, wheel_class, class_day)

        assert first.status_code == 201
        body = first.json()
        assert body["status"] == "pre_reserved"
        assert body["pending_balance_cents"] == 5000
        assert body["expires_at"]

        again = _submit(client, wheel_class, class_day, booking_code=body["booking_code"])
        assert again.status_code == 200
        assert again.json()["booking_id"] == body["booking_id"]

    def test_full_slot_is_a_conflict(self, client, wheel_class, class_day):
        assert _submit(client, wheel_class, class_day, index=0).status_code == 201
        assert _submit(client, wheel_class, class_day, index=1).status_code == 201

        response = _submit(client, wheel_class, class_day, index=2)

        assert response.status_code == 409
        assert response.headers["content-type"].startswith(PROBLEM_JSON)
        body = response.json()
        assert body["code"] == "SLOT_NO_LONGER_AVAILABLE"
        assert body["errors"]["slots"]

    def test_request_validation_errors(self, client, wheel_class, class_day):
        response = _submit(
            client, wheel_class, class_day, customer_info={"name": "Ana", "email": "not-an-email"}
        )

        assert response.status_code == 422
        assert response.json()["code"] == "validation_error"
        assert response.json()["errors"]

    def test_unknown_fields_are_rejected(self, client, wheel_class, class_day):
        assert _submit(client, wheel_class, class_day, price_cents=1).status_code == 422

    def test_email_is_normalized(self, client, wheel_class, class_day):
        info = {**customer(0), "email": "  Ana.Lopez@Example.COM "}

        created = _submit(client, wheel_class, class_day, customer_info=info).json()

        booking = client.get(f"/api/v1/bookings/{created['booking_id']}").json()
        assert booking["user_info"]["email"] == "ana.lopez@example.com"

    def test_lookup_by_code_and_id(self, client, wheel_class, class_day):
        created = _submit(client, wheel_class, class_day).json()

        by_code = client.get(f"/api/v1/bookings/code/{created['booking_code'].lower()}")
        by_id = client.get(f"/api/v1/bookings/{created['booking_id']}")

        assert by_code.status_code == 200
        assert by_code.json()["id"] == created["booking_id"]
        assert by_id.json()["booking_code"] == created["booking_code"]
        assert by_id.json()["user_info"]["email"] == "customer0@example.com"

    def test_unknown_booking(self, client):
        assert client.get("/api/v1/bookings/missing").status_code == 404


class TestPaymentsAndCancellation:
    def test_payment_lifecycle(self, client, wheel_class, class_day):
        booking_id = _submit(client, wheel_class, class_day).json()["booking_id"]

        paid = client.post(
            f"/api/v1/bookings/{booking_id}/confirm-payment",
            json={"amount_cents": 5000, "method": "Cash"},
            headers={"X-Actor": "front-desk"},
        )
        assert paid.status_code == 200
        assert paid.json()["status"] == "paid"
        [payment] = paid.json()["payments"]

        edited = client.patch(
            f"/api/v1/bookings/{booking_id}/payments/{payment['id']}",
            json={"amount_cents": 3000, "reason": "Partial refund of an overcharge"},
        )
        assert edited.status_code == 200
        assert edited.json()["status"] == "pre_reserved"
        assert edited.json()["pending_balance_cents"] == 2000

        deleted = client.request(
            "DELETE",
            f"/api/v1/bookings/{booking_id}/payments/{payment['id']}",
            json={"reason": "Entered twice"},
        )
        assert deleted.status_code == 200
        assert deleted.json()["payments"][0]["deletion_reason"] == "Entered twice"
        assert deleted.json()["pending_balance_cents"] == 5000

    def test_overpayment_is_rejected(self, client, wheel_class, class_day):
        booking_id = _submit(client, wheel_class, class_day).json()["booking_id"]

        response = client.post(
            f"/api/v1/bookings/{booking_id}/confirm-payment",
            json={"amount_cents": 9000, "method": "Card"},
        )

        assert response.status_code == 400
        assert response.json()["code"] == "PAYMENT_EXCEEDS_BALANCE"

    def test_cancel_requires_reason(self, client, wheel_class, class_day):
        booking_id = _submit(client, wheel_class, class_day).json()["booking_id"]

        assert client.post(f"/api/v1/bookings/{booking_id}/cancel", json={"reason": "  "}).status_code == 422

        cancelled = client.post(f"/api/v1/bookings/{booking_id}/cancel", json={"reason": "Customer ill"})
        assert cancelled.status_code == 200
        assert cancelled.json()["status"] == "cancelled"
        assert cancelled.json()["cancellation_reason"] == "Customer ill"

    def test_cancelled_seat_is_released(self, client, wheel_class, class_day):
        first = _submit(client, wheel_class, class_day, index=0).json()["booking_id"]
        _submit(client, wheel_class, class_day, index=1)
        client.post(f"/api/v1/bookings/{first}/cancel", json={"reason": "Moved to another day"})

        assert _submit(client, wheel_class, class_day, index=2).status_code == 201


class TestReschedule:
    def test_move_class_to_next_week(self, client, wheel_class, class_day):
        booking_id = _submit(client, wheel_class, class_day).json()["booking_id"]
        next_week = class_day + timedelta(days=7)

        moved = client.post(
            f"/api/v1/bookings/{booking_id}/reschedule",
            json={"from_slot": slot_dict(class_day), "to_slot": slot_dict(next_week)},
            headers={"X-Actor": "front-desk"},
        )

        assert moved.status_code == 200
        assert [slot["date"] for slot in moved.json()["slots"]] == [next_week.isoformat()]

    def test_slot_outside_booking_is_rejected(self, client, wheel_class, class_day):
        booking_id = _submit(client, wheel_class, class_day).json()["booking_id"]

        response = client.post(
            f"/api/v1/bookings/{booking_id}/reschedule",
            json={
                "from_slot": slot_dict(class_day + timedelta(days=14)),
                "to_slot": slot_dict(class_day + timedelta(days=7)),
            },
        )

        assert response.status_code == 400
        assert response.json()["code"] == "SLOT_NOT_IN_BOOKING"


def test_listing_outage_returns_fallback_slots(client, wheel_class, class_day, monkeypatch):
    from studio_booking.core.exceptions import RepositoryException
    from studio_booking.repositories.booking_repository import BookingRepository

    def broken(self, **_kwargs):
        raise RepositoryException("could not connect: timeout")

    monkeypatch.setattr(BookingRepository, "get_capacity_holding_bookings", broken)
    monkeypatch.setattr(settings, "store_retry_attempts", 1)

    response = client.get(
        f"/api/v1/products/{wheel_class.id}/slots", params={"start": class_day.isoformat(), "days": 1}
    )

    assert response.status_code == 503
    assert response.headers["Retry-After"] == "2"
    [fallback] = response.json()["errors"]["fallback_slots"]
    assert fallback["isAvailable"] is False

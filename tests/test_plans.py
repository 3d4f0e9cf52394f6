from datetime import datetime

from dentcare.cache import CacheKeys, get_cache
from dentcare.models import Appointment, Clinic
from dentcare.plans import (
    PLAN_LIMITS,
    STRIPE_PRODUCTS,
    check_plan_limit,
    get_plan_by_price_id,
    get_plan_limit,
    get_usage_stats,
)


class TestPlanLookup:
    def test_plan_by_price_id(self):
        match = get_plan_by_price_id(STRIPE_PRODUCTS["PRO"]["price_id"])
        assert match["plan"] == "PRO"
        assert match["product"]["price_monthly"] == 79

    def test_unknown_price_id(self):
        assert get_plan_by_price_id("price_unknown") is None

    def test_plan_limit(self):
        assert get_plan_limit("basic", "patients") == 100
        assert get_plan_limit("PRO", "dentists") == 5
        assert get_plan_limit("enterprise", "patients") is None

    def test_no_or_unknown_plan_has_zero_limit(self):
        assert get_plan_limit(None, "patients") == 0
        assert get_plan_limit("gold", "patients") == 0


class TestCheckPlanLimit:
    def test_no_plan(self, db):
        clinic = Clinic(name="New Clinic")
        db.add(clinic)
        db.commit()

        assert check_plan_limit(clinic, "patients", db) == (False, "Please select a plan to continue.")

    def test_under_limit(self, db, seed):
        assert check_plan_limit(seed.clinic, "patients", db) == (True, None)

    def test_limit_reached(self, db, seed, monkeypatch):
        monkeypatch.setitem(PLAN_LIMITS["PRO"], "patients", 2)

        allowed, message = check_plan_limit(seed.clinic, "patients", db)

        assert allowed is False
        assert message == "You've reached your plan limit of 2 patients. Please upgrade your plan."

    def test_unlimited(self, db, seed):
        seed.clinic.plan = "enterprise"
        db.commit()
        assert check_plan_limit(seed.clinic, "dentists", db) == (True, None)

    def test_appointments_are_counted_per_calendar_month(self, db, seed, monkeypatch):
        monkeypatch.setitem(PLAN_LIMITS["PRO"], "appointments_per_month", 1)
        db.add(
            Appointment(
                clinic_id=seed.clinic.id,
                dentist_id=seed.dentist.id,
                patient_id=seed.ana.id,
                start_time=datetime(2030, 1, 31, 18, 0),
                end_time=datetime(2030, 1, 31, 19, 0),
                status="scheduled",
            )
        )
        db.commit()

        assert check_plan_limit(seed.clinic, "appointments_per_month", db, now=datetime(2030, 1, 5))[0] is False
        assert check_plan_limit(seed.clinic, "appointments_per_month", db, now=datetime(2030, 2, 1))[0] is True


class TestUsage:
    def test_usage_stats(self, db, seed):
        stats = get_usage_stats(seed.clinic, db, now=datetime(2030, 1, 15))

        assert stats["plan"] == "pro"
        assert stats["usage"]["patients"] == {"limit": 500, "current": 2, "remaining": 498}
        assert stats["usage"]["dentists"] == {"limit": 5, "current": 1, "remaining": 4}
        assert stats["reset_date"] == "2030-02-01T00:00:00"

    def test_unlimited_usage_has_no_remaining(self, db, seed):
        seed.clinic.plan = "enterprise"
        db.commit()

        stats = get_usage_stats(seed.clinic, db)

        assert stats["usage"]["patients"] == {"limit": None, "current": 2, "remaining": None}

    def test_usage_endpoint(self, client, seed):
        response = client.get("/billing/usage", headers=seed.headers["other"])

        assert response.status_code == 200
        assert response.json()["plan"] == "basic"
        assert response.json()["usage"]["patients"]["current"] == 1


class TestPlanEndpoints:
    def test_plans_are_public_and_cached(self, client):
        response = client.get("/plans")

        assert response.status_code == 200
        assert [p["plan"] for p in response.json()] == ["BASIC", "PRO", "ENTERPRISE"]
        assert response.json()[2]["limits"]["patients"] is None
        assert get_cache().get(CacheKeys.plans()) is not None

    def test_plan_by_price(self, client):
        response = client.get(f"/plans/by-price/{STRIPE_PRODUCTS['BASIC']['price_id']}")
        assert response.json()["plan"] == "BASIC"
        assert response.json()["limits"]["dentists"] == 1

    def test_unknown_price(self, client):
        assert client.get("/plans/by-price/price_unknown").status_code == 404

from datetime import date, datetime, timedelta

from dentcare.auth import AuditContext
from dentcare.domain.costs.schemas import BudgetCreate, CostCreate
from dentcare.domain.costs.service import CostService
from dentcare.models import Invoice
from dentcare.models_audit import AuditLog
from dentcare.models_costs import CostAlert, OperationalCost


def _cost_payload(**overrides):
    payload = {
        "description": "Nitrile gloves",
        "category": "material",
        "value": 12.5,
        "quantity": 4,
        "purchase_date": "2030-03-10",
    }
    payload.update(overrides)
    return payload


def _context(seed):
    return AuditContext(
        user_id=seed.owner.id, user_name=seed.owner.name, user_role=seed.owner.role, clinic_id=seed.clinic.id
    )


class TestCreateCost:
    def test_total_is_value_times_quantity(self, client, seed):
        response = client.post("/costs", json=_cost_payload(), headers=seed.headers["owner"])

        assert response.status_code == 200
        body = response.json()
        assert body["total"] == 50.0
        assert body["paid"] is False
        assert body["monthly_amortization"] is None

    def test_equipment_amortization_subtracts_residual_value(self, client, seed):
        response = client.post(
            "/costs",
            json=_cost_payload(
                description="Autoclave",
                category="equipment",
                value=1200,
                quantity=1,
                useful_life_months=24,
                residual_value=240,
            ),
            headers=seed.headers["owner"],
        )

        assert response.status_code == 200
        assert response.json()["monthly_amortization"] == 40.0

    def test_html_is_stripped_from_free_text(self, client, seed):
        response = client.post(
            "/costs",
            json=_cost_payload(description="<b>Gloves</b><script>x</script>", notes="<i>box of 100</i>"),
            headers=seed.headers["owner"],
        )

        body = response.json()
        assert "<" not in body["description"]
        assert body["description"].startswith("Gloves")
        assert body["notes"] == "box of 100"

    def test_ampersands_are_stored_as_typed(self, client, db, seed):
        response = client.post(
            "/costs",
            json=_cost_payload(
                description="Gloves & masks",
                supplier="&" * 200,
                stock_quantity=1,
                minimum_quantity=5,
            ),
            headers=seed.headers["owner"],
        )

        assert response.status_code == 200
        assert response.json()["description"] == "Gloves & masks"
        assert response.json()["supplier"] == "&" * 200
        alert = db.query(CostAlert).one()
        assert alert.message == 'Material "Gloves & masks" is running low (1 units left).'

    def test_unknown_category_is_rejected(self, client, seed):
        response = client.post("/costs", json=_cost_payload(category="food"), headers=seed.headers["owner"])
        assert response.status_code == 422

    def test_negative_stock_is_rejected(self, client, seed):
        response = client.post("/costs", json=_cost_payload(stock_quantity=-1), headers=seed.headers["owner"])
        assert response.status_code == 422

    def test_low_stock_raises_alert(self, client, db, seed):
        response = client.post(
            "/costs",
            json=_cost_payload(stock_quantity=3, minimum_quantity=5, unit_of_measure="boxes"),
            headers=seed.headers["owner"],
        )
        assert response.status_code == 200

        alert = db.query(CostAlert).filter(CostAlert.cost_id == response.json()["id"]).one()
        assert alert.type == "low_stock"
        assert alert.severity == "warning"
        assert alert.message == 'Material "Nitrile gloves" is running low (3 boxes left).'

    def test_creation_is_audited(self, client, db, seed):
        response = client.post("/costs", json=_cost_payload(), headers=seed.headers["owner"])

        entry = db.query(AuditLog).filter(AuditLog.entity == "operational_cost").one()
        assert entry.entity_id == response.json()["id"]
        assert entry.action == "CREATE"
        assert entry.clinic_id == seed.clinic.id
        assert entry.data_category == "financial"

    def test_user_without_clinic_is_forbidden(self, client, seed):
        response = client.post("/costs", json=_cost_payload(), headers=seed.headers["orphan"])
        assert response.status_code == 403


class TestListAndUpdateCosts:
    def test_list_is_scoped_to_clinic_and_filtered(self, client, seed):
        client.post("/costs", json=_cost_payload(), headers=seed.headers["owner"])
        client.post(
            "/costs", json=_cost_payload(description="Rent", category="fixed", value=900, quantity=1),
            headers=seed.headers["owner"],
        )
        client.post("/costs", json=_cost_payload(), headers=seed.headers["other"])

        all_costs = client.get("/costs", headers=seed.headers["owner"]).json()
        fixed = client.get("/costs", params={"category": "fixed"}, headers=seed.headers["owner"]).json()

        assert len(all_costs) == 2
        assert [c["description"] for c in fixed] == ["Rent"]

    def test_mark_paid(self, client, seed):
        cost_id = client.post("/costs", json=_cost_payload(), headers=seed.headers["owner"]).json()["id"]

        response = client.post(f"/costs/{cost_id}/pay", json={"paid_at": "2030-03-15"}, headers=seed.headers["owner"])

        assert response.status_code == 200
        assert response.json()["paid"] is True
        assert response.json()["paid_at"] == "2030-03-15"

    def test_foreign_cost_is_not_found(self, client, seed):
        cost_id = client.post("/costs", json=_cost_payload(), headers=seed.headers["owner"]).json()["id"]

        response = client.post(f"/costs/{cost_id}/pay", json={"paid_at": "2030-03-15"}, headers=seed.headers["other"])

        assert response.status_code == 404

    def test_stock_operations(self, client, seed):
        cost_id = client.post(
            "/costs", json=_cost_payload(stock_quantity=10, minimum_quantity=2), headers=seed.headers["owner"]
        ).json()["id"]

        def move(quantity, operation):
            return client.post(
                f"/costs/{cost_id}/stock",
                json={"quantity": quantity, "operation": operation},
                headers=seed.headers["owner"],
            ).json()["new_stock"]

        assert move(5, "add") == 15
        assert move(20, "remove") == 0
        assert move(7, "set") == 7

    def test_removing_below_minimum_raises_alert(self, client, db, seed):
        cost_id = client.post(
            "/costs", json=_cost_payload(stock_quantity=10, minimum_quantity=2), headers=seed.headers["owner"]
        ).json()["id"]

        client.post(
            f"/costs/{cost_id}/stock", json={"quantity": 9, "operation": "remove"}, headers=seed.headers["owner"]
        )

        assert db.query(CostAlert).filter(CostAlert.cost_id == cost_id, CostAlert.type == "low_stock").count() == 1

    def test_unknown_stock_operation_is_rejected(self, client, seed):
        cost_id = client.post("/costs", json=_cost_payload(), headers=seed.headers["owner"]).json()["id"]
        response = client.post(
            f"/costs/{cost_id}/stock", json={"quantity": 1, "operation": "double"}, headers=seed.headers["owner"]
        )
        assert response.status_code == 422


class TestProcedureMargin:
    def test_margin_against_procedure_price(self, client, seed):
        response = client.post(
            "/costs/procedure-margin",
            json={"procedure_id": seed.procedure.id, "materials_cost": 30, "labour_cost": 20},
            headers=seed.headers["owner"],
        )

        assert response.status_code == 200
        assert response.json() == {
            "procedure_id": seed.procedure.id,
            "total_cost": 50.0,
            "sale_price": 100.0,
            "margin": 50.0,
            "margin_percentage": 50.0,
        }

    def test_calculation_is_kept_in_history(self, client, seed):
        client.post(
            "/costs/procedure-margin",
            json={"procedure_id": seed.procedure.id, "materials_cost": 130},
            headers=seed.headers["owner"],
        )

        history = client.get(f"/costs/procedures/{seed.procedure.id}/history", headers=seed.headers["owner"]).json()

        assert len(history) == 1
        assert history[0]["margin"] == -30.0
        assert history[0]["margin_percentage"] == -30.0

    def test_procedure_of_another_clinic_is_not_found(self, client, seed):
        response = client.post(
            "/costs/procedure-margin",
            json={"procedure_id": seed.foreign_procedure.id, "materials_cost": 10},
            headers=seed.headers["owner"],
        )
        assert response.status_code == 404


class TestReportsAndBudgets:
    def _paid_invoice(self, db, seed, total, when):
        db.add(
            Invoice(
                clinic_id=seed.clinic.id,
                patient_id=seed.ana.id,
                number=f"INV-{total}",
                invoice_date=when,
                total=total,
                amount_paid=total,
                status="paid",
            )
        )
        db.commit()

    def test_monthly_report_with_budget_variance(self, client, db, seed):
        self._paid_invoice(db, seed, 1000, datetime(2030, 3, 5, 10, 0))
        client.post(
            "/costs", json=_cost_payload(value=400, quantity=1, category="fixed"), headers=seed.headers["owner"]
        )
        budget = client.post(
            "/costs/budgets",
            json={"month": 3, "year": 2030, "fixed": 300, "material": 200, "expected_revenue": 1200},
            headers=seed.headers["owner"],
        )
        assert budget.status_code == 200
        assert budget.json()["total"] == 500.0
        assert budget.json()["expected_profit"] == 700.0

        report = client.get(
            "/costs/reports/monthly", params={"month": 3, "year": 2030}, headers=seed.headers["owner"]
        ).json()

        assert report["revenue"] == 1000.0
        assert report["costs"] == 400.0
        assert report["net_profit"] == 600.0
        assert report["margin_percentage"] == 60.0
        assert report["budget_total"] == 500.0
        assert report["budget_variance"] == -100.0
        assert report["budget_variance_percentage"] == -20.0

    def test_report_without_revenue_has_zero_margin(self, client, seed):
        report = client.get(
            "/costs/reports/monthly", params={"month": 1, "year": 2031}, headers=seed.headers["owner"]
        ).json()

        assert report["revenue"] == 0
        assert report["margin_percentage"] == 0
        assert report["budget_total"] is None

    def test_new_cost_invalidates_cached_report(self, client, seed):
        params = {"month": 3, "year": 2030}
        first = client.get("/costs/reports/monthly", params=params, headers=seed.headers["owner"]).json()
        client.post("/costs", json=_cost_payload(value=80, quantity=1), headers=seed.headers["owner"])
        second = client.get("/costs/reports/monthly", params=params, headers=seed.headers["owner"]).json()

        assert first["costs"] == 0
        assert second["costs"] == 80.0

    def test_duplicate_budget_is_rejected(self, client, seed):
        payload = {"month": 4, "year": 2030, "fixed": 100}
        assert client.post("/costs/budgets", json=payload, headers=seed.headers["owner"]).status_code == 200
        response = client.post("/costs/budgets", json=payload, headers=seed.headers["owner"])
        assert response.status_code == 400

    def test_same_period_in_another_clinic_is_allowed(self, client, seed):
        payload = {"month": 4, "year": 2030, "fixed": 100}
        client.post("/costs/budgets", json=payload, headers=seed.headers["owner"])
        assert client.post("/costs/budgets", json=payload, headers=seed.headers["other"]).status_code == 200


class TestAlerts:
    def _overdue_cost(self, db, seed, due_date):
        cost = OperationalCost(
            clinic_id=seed.clinic.id,
            description="Lab invoice",
            category="variable",
            value=250,
            quantity=1,
            total=250,
            payment_type="one_off",
            purchase_date=due_date - timedelta(days=10),
            due_date=due_date,
            paid=False,
        )
        db.add(cost)
        db.commit()
        return cost

    def test_overdue_severity_depends_on_days_late(self, db, seed):
        today = date(2030, 6, 15)
        late = self._overdue_cost(db, seed, today - timedelta(days=45))
        recent = self._overdue_cost(db, seed, today - timedelta(days=3))

        alerts = CostService(db).scan_alerts(seed.clinic.id, today=today)

        by_cost = {alert.cost_id: alert for alert in alerts}
        assert by_cost[late.id].severity == "critical"
        assert by_cost[recent.id].severity == "warning"
        assert "45 days overdue" in by_cost[late.id].message

    def test_scan_does_not_duplicate_open_alerts(self, db, seed):
        today = date(2030, 6, 15)
        self._overdue_cost(db, seed, today - timedelta(days=5))
        service = CostService(db)

        assert len(service.scan_alerts(seed.clinic.id, today=today)) == 1
        assert service.scan_alerts(seed.clinic.id, today=today) == []

    def test_budget_exceeded_alert_carries_period(self, db, seed):
        service = CostService(db)

        service.create_budget(_context(seed), BudgetCreate(month=6, year=2030, fixed=100))
        service.create_cost(
            _context(seed),
            CostCreate(description="Rent", category="fixed", value=150, purchase_date=date(2030, 6, 1)),
        )

        alerts = service.scan_alerts(seed.clinic.id, today=date(2030, 6, 20))

        assert [(a.type, a.period, a.severity) for a in alerts] == [("budget_exceeded", "2030-06", "critical")]

    def test_read_and_resolve(self, client, db, seed):
        response = client.post(
            "/costs",
            json=_cost_payload(stock_quantity=1, minimum_quantity=5),
            headers=seed.headers["owner"],
        )
        assert response.status_code == 200
        alert_id = client.get("/costs/alerts", headers=seed.headers["owner"]).json()[0]["id"]

        read = client.post(f"/costs/alerts/{alert_id}/read", headers=seed.headers["owner"]).json()
        resolved = client.post(f"/costs/alerts/{alert_id}/resolve", headers=seed.headers["owner"]).json()
        open_alerts = client.get("/costs/alerts", params={"resolved": False}, headers=seed.headers["owner"]).json()

        assert read["read"] is True
        assert resolved["resolved"] is True
        assert open_alerts == []

    def test_foreign_alert_is_not_found(self, client, seed):
        client.post(
            "/costs", json=_cost_payload(stock_quantity=1, minimum_quantity=5), headers=seed.headers["owner"]
        )
        alert_id = client.get("/costs/alerts", headers=seed.headers["owner"]).json()[0]["id"]

        response = client.post(f"/costs/alerts/{alert_id}/read", headers=seed.headers["other"])
        assert response.status_code == 404

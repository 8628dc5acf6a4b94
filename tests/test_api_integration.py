"""
Integration tests for the Loan Ledger API
Tests end-to-end workflows using FastAPI TestClient
"""

import pytest
from fastapi.testclient import TestClient

from loan_ledger.api import app
from loan_ledger.api.dependencies import LedgerSystem, get_ledger_system
from loan_ledger.config import LedgerConfig
from loan_ledger.directory import EmployeeRef, InMemoryEmploymentDirectory
from loan_ledger.storage import InMemoryStorage


ORG_1 = {"X-Organization-Id": "1", "X-User-Id": "hr-1"}
ORG_2 = {"X-Organization-Id": "2", "X-User-Id": "hr-2"}


@pytest.fixture
def client():
    """Create a test client over an in-memory ledger system"""
    directory = InMemoryEmploymentDirectory([
        EmployeeRef("EMP-001", "Ana Gomez", code="A-001", organization_id=1),
        EmployeeRef("EMP-002", "Luis Perez", code="A-002", organization_id=1),
        EmployeeRef("EMP-900", "Former Employee", organization_id=1, is_active=False),
    ])
    system = LedgerSystem(
        storage=InMemoryStorage(),
        directory=directory,
        config=LedgerConfig(storage_backend="memory")
    )
    app.dependency_overrides[get_ledger_system] = lambda: system

    yield TestClient(app)

    app.dependency_overrides.clear()


def create_loan(client, headers=ORG_1, **overrides):
    body = {
        "employment_id": "EMP-001",
        "principal": "1000000",
        "installments_total": 6,
        "first_payment_date": "2025-01-31",
        "interest_rate": "24",
    }
    body.update(overrides)
    r = client.post("/loans", json=body, headers=headers)
    assert r.status_code == 201, r.text
    return r.json()


def approve(client, loan_id, headers=ORG_1):
    r = client.post(f"/loans/{loan_id}/approve", json={"approver_id": "manager-1"}, headers=headers)
    assert r.status_code == 200, r.text
    return r.json()


class TestHealthEndpoints:
    """Test health endpoint"""

    def test_health(self, client):
        r = client.get("/health")
        assert r.status_code == 200
        data = r.json()
        assert data["status"] == "healthy"
        assert data["service"] == "loan_ledger_api"


class TestLoanFlow:
    """End-to-end loan request and approval tests"""

    def test_create_loan(self, client):
        data = create_loan(client)

        assert data["status"] == "requested"
        assert data["loan_number"].startswith("LOAN-")
        assert data["total_interest"] == {"amount": "120000.00", "currency": "COP"}
        assert data["total_amount"]["amount"] == "1120000.00"
        assert data["installment_amount"]["amount"] == "186666.67"
        assert data["balance"]["amount"] == "1120000.00"

    def test_organization_header_is_required(self, client):
        r = client.get("/loans")
        assert r.status_code == 422

    def test_invalid_request_is_422(self, client):
        r = client.post("/loans", json={
            "employment_id": "EMP-001",
            "principal": "-5",
            "installments_total": 6,
            "first_payment_date": "2025-01-31",
        }, headers=ORG_1)
        assert r.status_code == 422
        data = r.json()
        assert data["error"] == "validation_error"
        assert "principal" in data["detail"]

    def test_unknown_loan_is_404(self, client):
        r = client.get("/loans/missing", headers=ORG_1)
        assert r.status_code == 404
        assert r.json()["error"] == "not_found"

    def test_update_and_delete_requested_loan(self, client):
        loan = create_loan(client)

        r = client.patch(f"/loans/{loan['id']}", json={"installments_total": 12}, headers=ORG_1)
        assert r.status_code == 200
        assert r.json()["installments_total"] == 12
        assert r.json()["total_interest"]["amount"] == "240000.00"

        r = client.delete(f"/loans/{loan['id']}", headers=ORG_1)
        assert r.status_code == 204
        assert client.get(f"/loans/{loan['id']}", headers=ORG_1).status_code == 404

    def test_approve_generates_installments(self, client):
        loan = create_loan(client)
        approved = approve(client, loan["id"])
        assert approved["status"] == "active"
        assert approved["approved_by"] == "manager-1"

        r = client.get(f"/loans/{loan['id']}/installments", headers=ORG_1)
        assert r.status_code == 200
        installments = r.json()["installments"]
        assert [i["installment_number"] for i in installments] == [1, 2, 3, 4, 5, 6]
        assert installments[-1]["amount"]["amount"] == "186666.65"

    def test_invalid_transition_is_409(self, client):
        loan = create_loan(client)
        approve(client, loan["id"])

        r = client.post(f"/loans/{loan['id']}/reject",
                        json={"approver_id": "manager-2", "reason": "Too late"}, headers=ORG_1)
        assert r.status_code == 409
        assert r.json()["error"] == "state_error"

        r = client.delete(f"/loans/{loan['id']}", headers=ORG_1)
        assert r.status_code == 409

    def test_reject_and_cancel(self, client):
        rejected = create_loan(client)
        r = client.post(f"/loans/{rejected['id']}/reject",
                        json={"approver_id": "manager-1", "reason": "Over limit"}, headers=ORG_1)
        assert r.status_code == 200
        assert r.json()["status"] == "cancelled"
        assert r.json()["rejection_reason"] == "Over limit"

        cancelled = create_loan(client)
        r = client.post(f"/loans/{cancelled['id']}/cancel", headers=ORG_1)
        assert r.status_code == 200
        assert r.json()["status"] == "cancelled"

    def test_default_and_write_off(self, client):
        loan = create_loan(client)
        approve(client, loan["id"])

        r = client.post(f"/loans/{loan['id']}/default", json={"reason": "Left"}, headers=ORG_1)
        assert r.status_code == 200
        assert r.json()["status"] == "defaulted"

        r = client.post(f"/loans/{loan['id']}/write-off", json={}, headers=ORG_1)
        assert r.status_code == 200
        assert r.json()["status"] == "written_off"

    def test_list_loans_with_employee_names(self, client):
        create_loan(client)
        create_loan(client, employment_id="EMP-404")
        active = create_loan(client, employment_id="EMP-002")
        approve(client, active["id"])

        r = client.get("/loans", headers=ORG_1)
        assert r.status_code == 200
        loans = r.json()["loans"]
        assert len(loans) == 3
        names = {loan["employment_id"]: loan["employee_name"] for loan in loans}
        assert names == {"EMP-001": "Ana Gomez", "EMP-002": "Luis Perez", "EMP-404": "Unassigned"}

        r = client.get("/loans", params={"status": "active"}, headers=ORG_1)
        assert [loan["id"] for loan in r.json()["loans"]] == [active["id"]]

        r = client.get("/loans", params={"status": "bogus"}, headers=ORG_1)
        assert r.status_code == 422


class TestPaymentFlow:
    """End-to-end payment tests"""

    def test_register_payment(self, client):
        loan = create_loan(client)
        approve(client, loan["id"])
        first = client.get(f"/loans/{loan['id']}/installments", headers=ORG_1).json()["installments"][0]

        r = client.post(f"/installments/{first['id']}/payments",
                        json={"amount": "186666.67", "notes": "January"}, headers=ORG_1)
        assert r.status_code == 200
        data = r.json()
        assert data["installment"]["status"] == "paid"
        assert data["installment"]["notes"] == "January"
        assert data["loan"]["balance"]["amount"] == "933333.33"
        assert data["loan"]["installments_paid"] == 1

        r = client.get(f"/loans/{loan['id']}/payments", headers=ORG_1)
        payments = r.json()["payments"]
        assert len(payments) == 1
        assert payments[0]["source"] == "manual"
        assert payments[0]["balance_after"]["amount"] == "933333.33"

    def test_idempotent_retry(self, client):
        loan = create_loan(client)
        approve(client, loan["id"])
        first = client.get(f"/loans/{loan['id']}/installments", headers=ORG_1).json()["installments"][0]

        body = {"amount": "50000", "idempotency_key": "pos-778"}
        client.post(f"/installments/{first['id']}/payments", json=body, headers=ORG_1)
        r = client.post(f"/installments/{first['id']}/payments", json=body, headers=ORG_1)
        assert r.json()["loan"]["balance"]["amount"] == "1070000.00"

    def test_unknown_installment_is_404(self, client):
        r = client.post("/installments/missing_1/payments", json={"amount": "10"}, headers=ORG_1)
        assert r.status_code == 404

    def test_invalid_amount_is_422(self, client):
        loan = create_loan(client)
        approve(client, loan["id"])
        first = client.get(f"/loans/{loan['id']}/installments", headers=ORG_1).json()["installments"][0]

        r = client.post(f"/installments/{first['id']}/payments", json={"amount": "0"}, headers=ORG_1)
        assert r.status_code == 422
        assert r.json()["error"] == "validation_error"

    def test_stats(self, client):
        create_loan(client)
        loan = create_loan(client, principal="600000", interest_rate="0")
        approve(client, loan["id"])

        r = client.get("/loans/stats", headers=ORG_1)
        assert r.status_code == 200
        data = r.json()
        assert data["total"] == 2
        assert data["pending"] == 1
        assert data["active"] == 1
        assert data["total_disbursed"] == "600000.00"
        assert data["total_balance"] == "600000.00"
        assert data["balance_by_currency"] == {"COP": "600000.00"}


class TestOrganizationIsolation:
    """Loans of one organization are invisible to another"""

    def test_other_organization_sees_nothing(self, client):
        loan = create_loan(client)
        approve(client, loan["id"])

        assert client.get(f"/loans/{loan['id']}", headers=ORG_2).status_code == 404
        assert client.get("/loans", headers=ORG_2).json()["loans"] == []
        assert client.get("/loans/stats", headers=ORG_2).json()["total"] == 0

        r = client.post(f"/loans/{loan['id']}/cancel", headers=ORG_2)
        assert r.status_code == 404


class TestCatalogAndPayroll:
    """Catalog and payroll endpoint tests"""

    def test_catalog(self, client):
        r = client.get("/catalog", headers=ORG_1)
        assert r.status_code == 200
        data = r.json()
        assert "general" in data["loan_types"]
        assert "COP" in data["currencies"]
        assert "requested" in data["statuses"]
        assert [e["employment_id"] for e in data["employees"]] == ["EMP-001", "EMP-002"]

        assert client.get("/catalog", headers=ORG_2).json()["employees"] == []

    def test_deductions_and_payroll_run(self, client):
        loan = create_loan(client, principal="1200000", installments_total=12, interest_rate="0")
        approve(client, loan["id"])

        r = client.get("/payroll/deductions",
                       params={"period_start": "2025-01-01", "period_end": "2025-01-31"},
                       headers=ORG_1)
        assert r.status_code == 200
        deductions = r.json()["deductions"]
        assert len(deductions) == 1
        assert deductions[0]["amount"] == "100000.00"

        body = {"period_start": "2025-01-01", "period_end": "2025-01-31"}
        r = client.post("/payroll/runs/RUN-2025-01", json=body, headers=ORG_1)
        assert r.status_code == 200
        data = r.json()
        assert data["run_id"] == "RUN-2025-01"
        assert data["installments"][0]["payroll_run_id"] == "RUN-2025-01"

        r = client.post("/payroll/runs/RUN-2025-01", json=body, headers=ORG_1)
        assert r.json()["deductions"] == []
        assert client.get(f"/loans/{loan['id']}", headers=ORG_1).json()["balance"]["amount"] == "1100000.00"

    def test_reversed_period_is_422(self, client):
        r = client.get("/payroll/deductions",
                       params={"period_start": "2025-02-01", "period_end": "2025-01-01"},
                       headers=ORG_1)
        assert r.status_code == 422

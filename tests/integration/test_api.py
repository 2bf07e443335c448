"""Integration tests for API endpoints"""

from fastapi.testclient import TestClient

ADMIN = {"X-Actor-Id": "admin-1"}


def _create_loan(client: TestClient, user, amount=10000, **extra):
    response = client.post(
        "/v1/loans",
        json={"userId": str(user.id), "amount": amount, "network": "MTN", "interestRate": 5, **extra},
    )
    assert response.status_code == 201, response.text
    return response.json()


def _disbursed_loan(client: TestClient, user, amount=10000):
    loan = _create_loan(client, user, amount)
    assert client.post(f"/v1/loans/{loan['loanId']}/approve", headers=ADMIN).status_code == 200
    response = client.post(f"/v1/loans/{loan['loanId']}/disburse", headers=ADMIN)
    assert response.status_code == 200, response.text
    return response.json()


def _repayment(client: TestClient, loan_id, amount, reference=None):
    response = client.post(
        "/v1/transactions/repayments",
        json={"loanId": loan_id, "amount": amount, "paymentMethod": "wallet", "reference": reference},
    )
    assert response.status_code == 201, response.text
    return response.json()


def test_health_endpoint(client: TestClient):
    """Test health check endpoint"""
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "ok"
    assert "X-Request-ID" in response.headers


def test_metrics_endpoint(client: TestClient):
    """Test Prometheus metrics endpoint"""
    response = client.get("/metrics")
    assert response.status_code == 200
    assert "microloan_credit_limit_rejections_total" in response.text


def test_create_loan(client: TestClient, make_user):
    user = make_user()

    data = _create_loan(client, user, amount=2500, repaymentPeriod=21)

    assert data["loanId"].startswith("LOAN-")
    assert data["status"] == "requested"
    assert data["amountDue"] == 2500.0
    assert data["outstandingAmount"] == 2500.0
    assert data["repaymentPeriod"] == 21
    assert data["network"] == "MTN"


def test_create_loan_over_limit_conflicts(client: TestClient, make_user):
    user = make_user(credit_limit=50000)

    response = client.post("/v1/loans", json={"userId": str(user.id), "amount": 60000, "network": "MTN"})

    assert response.status_code == 409
    assert "exceeds available credit" in response.json()["detail"]


def test_create_loan_validation(client: TestClient, make_user):
    user = make_user()

    assert client.post("/v1/loans", json={"userId": str(user.id), "amount": -5, "network": "MTN"}).status_code == 422
    assert client.post("/v1/loans", json={"userId": str(user.id), "amount": 5, "network": "Nope"}).status_code == 422
    missing = client.post("/v1/loans", json={"userId": "not-a-uuid", "amount": 5, "network": "MTN"})
    assert missing.status_code == 404


def test_approve_requires_actor(client: TestClient, make_user):
    loan = _create_loan(client, make_user())

    response = client.post(f"/v1/loans/{loan['loanId']}/approve")

    assert response.status_code == 401


def test_lifecycle_endpoints_notify_after_commit(client: TestClient, make_user, notifier):
    user = make_user()

    loan = _disbursed_loan(client, user)

    assert loan["status"] == "disbursed"
    assert loan["disbursedAmount"] == 9500.0
    assert loan["approvedBy"] == "admin-1"
    assert notifier.names() == ["LOAN_APPROVED", "LOAN_DISBURSED"]
    assert notifier.events[1][1]["loan_id"] == loan["loanId"]


def test_approve_disbursed_loan_conflicts(client: TestClient, make_user):
    loan = _disbursed_loan(client, make_user())

    response = client.post(f"/v1/loans/{loan['loanId']}/approve", headers=ADMIN)

    assert response.status_code == 409
    assert "disbursed" in response.json()["detail"]


def test_reject_and_default(client: TestClient, make_user, notifier):
    user = make_user()
    requested = _create_loan(client, user, amount=100)
    rejected = client.post(f"/v1/loans/{requested['loanId']}/reject", json={"reason": "KYC"}, headers=ADMIN)
    assert rejected.status_code == 200
    assert rejected.json()["rejectionReason"] == "KYC"

    loan = _disbursed_loan(client, user, amount=500)
    defaulted = client.post(f"/v1/loans/{loan['loanId']}/default", headers=ADMIN)
    assert defaulted.status_code == 200
    assert defaulted.json()["status"] == "defaulted"
    assert "LOAN_REJECTED" in notifier.names()
    assert "LOAN_DEFAULTED" in notifier.names()


def test_get_unknown_loan(client: TestClient):
    assert client.get("/v1/loans/LOAN-2024-404").status_code == 404


def test_repayment_reconciliation_flow(client: TestClient, make_user, notifier):
    user = make_user()
    loan = _disbursed_loan(client, user)

    transaction = _repayment(client, loan["loanId"], 5000, reference="GW-1")
    assert transaction["status"] == "pending"
    assert transaction["loanId"] == loan["loanId"]

    response = client.post(
        "/v1/transactions/reconcile",
        json={"transactionId": transaction["transactionId"], "status": "completed"},
        headers={"X-Actor-Id": "ops-1"},
    )
    assert response.status_code == 200, response.text
    result = response.json()
    assert result["duplicate"] is False
    assert result["outstandingAmount"] == 5000.0
    assert result["isFullRepayment"] is False
    assert result["reason"] == "partial_repayment"
    assert result["pointsAwarded"] == 100
    assert notifier.names()[-1] == "TRANSACTION_RECONCILED"

    replay = client.post(
        "/v1/transactions/reconcile",
        json={"transactionId": transaction["transactionId"], "status": "completed"},
    )
    assert replay.status_code == 200
    assert replay.json()["duplicate"] is True
    assert replay.json()["pointsAwarded"] == 100
    assert notifier.names().count("TRANSACTION_RECONCILED") == 1

    stored = client.get(f"/v1/transactions/{transaction['transactionId']}").json()
    assert stored["status"] == "completed"
    assert stored["reconciledBy"] == "ops-1"

    history = client.get(f"/v1/users/{user.id}/credit-score/history").json()
    assert history["total"] == 1
    assert history["data"][0]["pointsAwarded"] == 100
    assert history["data"][0]["metadata"]["durationMultiplier"] == 2.0


def test_repayment_reference_is_idempotent(client: TestClient, make_user):
    loan = _disbursed_loan(client, make_user())

    first = _repayment(client, loan["loanId"], 1000, reference="GW-9")
    second = _repayment(client, loan["loanId"], 1000, reference="GW-9")

    assert first["transactionId"] == second["transactionId"]


def test_reconcile_rejects_pending_status(client: TestClient, make_user):
    loan = _disbursed_loan(client, make_user())
    transaction = _repayment(client, loan["loanId"], 1000)

    response = client.post(
        "/v1/transactions/reconcile",
        json={"transactionId": transaction["transactionId"], "status": "pending"},
    )

    assert response.status_code == 422


def test_reconcile_unknown_transaction(client: TestClient):
    response = client.post("/v1/transactions/reconcile", json={"transactionId": "TXN-NOPE", "status": "completed"})

    assert response.status_code == 404


def test_list_stats_and_export(client: TestClient, make_user):
    user = make_user()
    _disbursed_loan(client, user, amount=1000)
    _create_loan(client, user, amount=2000)

    listing = client.get("/v1/loans", params={"status": "requested", "limit": 5}).json()
    assert listing["total"] == 1
    assert listing["data"][0]["amount"] == 2000.0
    assert listing["totalPages"] == 1

    stats = client.get("/v1/loans/stats").json()
    assert stats["totalLoans"] == 2
    assert stats["requestedLoans"] == 1
    assert stats["totalOutstanding"] == 1000.0

    export = client.get("/v1/loans/export", params={"network": "MTN"})
    assert export.status_code == 200
    assert export.headers["content-type"].startswith("text/csv")
    assert len(export.text.strip().split("\n")) == 3


def test_eligibility(client: TestClient, make_user):
    user = make_user(credit_limit=50000)

    data = client.get(f"/v1/users/{user.id}/eligibility").json()

    assert data["eligibleAmount"] == 500.0
    assert data["creditLimit"] == 50000.0
    assert data["autoLimitEnabled"] is False


def test_history_for_unknown_user(client: TestClient):
    response = client.get("/v1/users/00000000-0000-0000-0000-000000000000/credit-score/history")

    assert response.status_code == 404

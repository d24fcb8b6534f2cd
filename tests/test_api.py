"""HTTP surface: auth, error envelope and the main money flows."""
import base64
from decimal import Decimal

from mobifaktura.models import Invoice, UserSession
from mobifaktura.services.ledger_service import LedgerService

from tests.conftest import DEFAULT_PASSWORD, grant, login, make_user

PNG_DATA_URL = "data:image/png;base64," + base64.b64encode(b"\x89PNG\r\n\x1a\nfake").decode()


class TestAuth:
    def test_login_sets_cookie_and_me_works(self, client, employee) -> None:
        response = client.post("/api/v1/auth/login", json={"email": employee.email, "password": DEFAULT_PASSWORD})

        assert response.status_code == 200
        body = response.json()
        assert body["token_type"] == "bearer"
        assert body["user"]["email"] == employee.email
        assert response.cookies.get("mobifaktura_session") == body["access_token"]

        me = client.get("/api/v1/auth/me", headers={"Authorization": f"Bearer {body['access_token']}"})
        assert me.status_code == 200
        assert me.json()["id"] == employee.id

    def test_unauthenticated_error_envelope(self, client, db) -> None:
        response = client.get("/api/v1/auth/me")

        assert response.status_code == 401
        assert response.json() == {
            "success": False,
            "message": "Not authenticated",
            "status_code": 401,
            "error": "UNAUTHORIZED",
        }

    def test_wrong_password(self, client, employee) -> None:
        response = client.post("/api/v1/auth/login", json={"email": employee.email, "password": "Zle12345"})
        assert response.status_code == 401
        assert response.json()["message"] == "Incorrect email or password"

    def test_lockout_after_three_failures(self, client, employee) -> None:
        for _ in range(3):
            client.post("/api/v1/auth/login", json={"email": employee.email, "password": "Zle12345"})

        response = client.post("/api/v1/auth/login", json={"email": employee.email, "password": DEFAULT_PASSWORD})

        assert response.status_code == 429
        assert int(response.headers["Retry-After"]) > 0
        assert response.json()["error"] == "TOO_MANY_REQUESTS"

    def test_logout_ends_session(self, client, db, employee) -> None:
        headers = login(client, employee)
        assert client.post("/api/v1/auth/logout", headers=headers).status_code == 200

        assert db.query(UserSession).count() == 0
        assert client.get("/api/v1/auth/me", headers=headers).status_code == 401

    def test_change_password_drops_other_sessions(self, client, db, employee) -> None:
        first = login(client, employee)
        second = login(client, employee)

        response = client.post(
            "/api/v1/auth/change-password",
            headers=second,
            json={"old_password": DEFAULT_PASSWORD, "new_password": "NoweHaslo123"},
        )

        assert response.status_code == 204
        assert client.get("/api/v1/auth/me", headers=first).status_code == 401
        assert client.get("/api/v1/auth/me", headers=second).status_code == 200

    def test_request_validation_is_400(self, client, db) -> None:
        response = client.post("/api/v1/auth/login", json={"email": "not-an-email"})

        assert response.status_code == 400
        body = response.json()
        assert body["error"] == "BAD_REQUEST"
        assert body["details"]


class TestPermissions:
    def test_user_cannot_adjust_saldo(self, client, employee) -> None:
        headers = login(client, employee)
        response = client.post(
            "/api/v1/saldo/adjust",
            headers=headers,
            json={"user_id": employee.id, "amount": "100.00", "notes": "Sam sobie"},
        )
        assert response.status_code == 403

    def test_user_cannot_see_pending_queue(self, client, employee) -> None:
        assert client.get("/api/v1/invoices/pending", headers=login(client, employee)).status_code == 403


class TestSaldoFlow:
    def test_adjust_and_history(self, client, employee, accountant) -> None:
        staff = login(client, accountant)

        response = client.post(
            "/api/v1/saldo/adjust",
            headers=staff,
            json={"user_id": employee.id, "amount": "120.50", "notes": "Zaliczka na wyjazd"},
        )
        assert response.status_code == 201
        assert response.json()["created_by_name"] == "Anna Księgowa"

        own = login(client, employee)
        assert client.get("/api/v1/saldo/me", headers=own).json()["saldo"] == "120.50"
        history = client.get("/api/v1/saldo/history", headers=own).json()
        assert history["total"] == 1
        assert history["items"][0]["balance_after"] == "120.50"

        reconcile = client.get(f"/api/v1/saldo/users/{employee.id}/reconcile", headers=staff).json()
        assert reconcile["consistent"] is True

    def test_budget_request_approval(self, client, db, employee, company, accountant) -> None:
        LedgerService(db).adjust_saldo(employee.id, Decimal("100"), "Saldo startowe", accountant)
        own = login(client, employee)

        created = client.post(
            "/api/v1/budget-requests",
            headers=own,
            json={"company_id": company.id, "requested_amount": "500.00", "justification": "Delegacja"},
        )
        assert created.status_code == 201
        assert created.json()["current_balance_at_request"] == "100.00"

        staff = login(client, accountant)
        assert client.get("/api/v1/budget-requests/pending-count", headers=staff).json() == {"count": 1}
        reviewed = client.post(
            f"/api/v1/budget-requests/{created.json()['id']}/review",
            headers=staff,
            json={"action": "approve"},
        )
        assert reviewed.status_code == 200
        assert reviewed.json()["status"] == "approved"
        assert client.get("/api/v1/saldo/me", headers=own).json()["saldo"] == "600.00"

        again = client.post(
            f"/api/v1/budget-requests/{created.json()['id']}/review",
            headers=staff,
            json={"action": "approve"},
        )
        assert again.status_code == 409
        assert again.json()["error"] == "CONFLICT"


class TestAdvanceFlow:
    def test_create_transfer_and_details(self, client, db, employee, company, accountant) -> None:
        staff = login(client, accountant)
        created = client.post(
            "/api/v1/advances",
            headers=staff,
            json={
                "user_id": employee.id,
                "company_id": company.id,
                "amount": "300.00",
                "description": "Zaliczka na delegację",
            },
        )
        assert created.status_code == 201
        advance = created.json()
        assert (advance["status"], advance["user_name"], advance["company_name"]) == (
            "pending",
            "Jan Kowalski",
            "Acme Sp. z o.o.",
        )

        transferred = client.post(
            f"/api/v1/advances/{advance['id']}/transfer", headers=staff, json={"transfer_number": "PRZ/1"}
        )
        assert transferred.status_code == 200
        assert transferred.json()["status"] == "transferred"
        again = client.post(f"/api/v1/advances/{advance['id']}/transfer", headers=staff, json={})
        assert again.status_code == 409

        own = login(client, employee)
        assert client.get("/api/v1/saldo/me", headers=own).json()["saldo"] == "300.00"
        history = client.get("/api/v1/saldo/history", headers=own).json()
        assert history["items"][0]["transaction_type"] == "advance_credit"

        details = client.get(f"/api/v1/advances/{advance['id']}", headers=staff).json()
        assert details["user_saldo"] == "300.00"
        assert details["created_by_name"] == details["transferred_by_name"] == "Anna Księgowa"
        assert details["previous_advance"] is None

        listing = client.get("/api/v1/advances", headers=staff, params={"status": "transferred"}).json()
        assert [a["id"] for a in listing["items"]] == [advance["id"]]

    def test_employees_cannot_manage_advances(self, client, employee) -> None:
        assert client.get("/api/v1/advances", headers=login(client, employee)).status_code == 403

    def test_delete_needs_password(self, client, db, employee, company, accountant) -> None:
        staff = login(client, accountant)
        advance = client.post(
            "/api/v1/advances",
            headers=staff,
            json={"user_id": employee.id, "company_id": company.id, "amount": "10", "description": "Drobne zakupy"},
        ).json()

        wrong = client.post(f"/api/v1/advances/{advance['id']}/delete", headers=staff, json={"password": "Zle12345"})
        assert wrong.status_code == 403

        response = client.post(
            f"/api/v1/advances/{advance['id']}/delete", headers=staff, json={"password": DEFAULT_PASSWORD}
        )
        assert response.json() == {"message": "Advance deleted", "reversed": False}


class TestInvoiceFlow:
    def _submit(self, client, headers, company, **extra):
        payload = {
            "company_id": company.id,
            "invoice_number": "FV/2026/05/17",
            "justification": "Paliwo do auta służbowego",
            "kwota": "250.00",
            "ksef_number": "KSEF-1",
            "image": PNG_DATA_URL,
        }
        payload.update(extra)
        return client.post("/api/v1/invoices", headers=headers, json=payload)

    def test_submit_review_and_accept(self, client, db, storage, employee, company, accountant) -> None:
        own = login(client, employee)
        response = self._submit(client, own, company)
        assert response.status_code == 201
        invoice = response.json()
        assert invoice["status"] == "pending"
        assert invoice["image_key"].startswith(f"{employee.id}/")
        assert invoice["image_key"].endswith(".png")
        assert invoice["image_key"] in storage.objects

        staff = login(client, accountant)
        claimed = client.post(f"/api/v1/invoices/{invoice['id']}/claim", headers=staff)
        assert claimed.json()["status"] == "in_review"
        accepted = client.post(f"/api/v1/invoices/{invoice['id']}/accept", headers=staff)
        assert accepted.status_code == 200
        assert accepted.json()["status"] == "accepted"

        assert client.get("/api/v1/saldo/me", headers=own).json()["saldo"] == "-250.00"

    def test_accountant_submits_own_expense(self, client, accountant, company) -> None:
        response = self._submit(client, login(client, accountant), company, image=None)

        assert response.status_code == 201
        assert response.json()["user_id"] == accountant.id
        assert response.json()["status"] == "pending"

    def test_bad_image_is_rejected_and_nothing_stored(self, client, db, storage, employee, company) -> None:
        response = self._submit(client, login(client, employee), company, image="data:text/plain;base64,aGk=")

        assert response.status_code == 400
        assert storage.objects == {}
        assert db.query(Invoice).count() == 0

    def test_failed_submit_discards_uploaded_image(self, client, db, storage, employee, company) -> None:
        response = self._submit(client, login(client, employee), company, invoice_type="receipt")

        assert response.status_code == 400
        assert storage.objects == {}

    def test_image_proxy_access(self, client, db, storage, employee, company, accountant) -> None:
        own = login(client, employee)
        key = self._submit(client, own, company).json()["image_key"]

        response = client.get("/api/image", params={"key": key}, headers=own)
        assert response.status_code == 200
        assert response.headers["content-type"] == "image/png"
        assert response.content.startswith(b"\x89PNG")

        assert client.get("/api/image", params={"key": key}, headers=login(client, accountant)).status_code == 200
        stranger = make_user(db)
        assert client.get("/api/image", params={"key": key}, headers=login(client, stranger)).status_code == 403

    def test_duplicates_endpoint(self, client, db, employee, company, accountant) -> None:
        other = make_user(db)
        grant(db, other, company)
        self._submit(client, login(client, employee), company, image=None)
        self._submit(client, login(client, other), company, image=None, invoice_number="FV/INNA/1")

        body = client.get("/api/v1/invoices/duplicates", headers=login(client, accountant)).json()

        assert body["total_groups"] == 1
        group = body["groups"][0]
        assert (group["kwota"], group["ksef_number"], group["company_id"]) == ("250.00", "KSEF-1", company.id)
        assert {i["user_id"] for i in group["invoices"]} == {employee.id, other.id}

    def test_admin_delete_refunds_and_removes_image(self, client, db, storage, employee, company, accountant, admin) -> None:
        own = login(client, employee)
        invoice = self._submit(client, own, company).json()
        staff = login(client, accountant)
        client.post(f"/api/v1/invoices/{invoice['id']}/claim", headers=staff)
        client.post(f"/api/v1/invoices/{invoice['id']}/accept", headers=staff)

        response = client.delete(f"/api/v1/invoices/{invoice['id']}", headers=login(client, admin))

        assert response.status_code == 200
        assert response.json()["refunded"] is True
        assert storage.objects == {}
        assert client.get("/api/v1/saldo/me", headers=own).json()["saldo"] == "0.00"


class TestNotifications:
    def test_unread_count_and_read_all(self, client, db, employee, company, accountant) -> None:
        LedgerService(db).adjust_saldo(employee.id, Decimal("10"), "Premia kwartalna", accountant)
        own = login(client, employee)

        assert client.get("/api/v1/notifications/unread-count", headers=own).json()["count"] == 1
        assert client.post("/api/v1/notifications/read-all", headers=own).json()["affected"] == 1
        assert client.get("/api/v1/notifications/unread-count", headers=own).json()["count"] == 0


def test_health(client) -> None:
    assert client.get("/api/health").json() == {"status": "ok"}

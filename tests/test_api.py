"""
End-to-end checks through the HTTP stack: middleware, dependencies,
exception handlers and routers together.
"""
import pytest

from centaur.models.rfq import RFQType
from centaur.models.user import UserRole
from centaur.services import rfqs

from conftest import PASSWORD, auth_headers, make_rfq, make_user


class TestPlumbing:
    def test_health_needs_no_foundry(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json()["status"] == "healthy"
        assert "X-Process-Time" in response.headers

    def test_foundry_required(self, client):
        response = client.get("/api/v1/objectives")
        assert response.status_code == 400
        assert response.json()["type"] == "invalid_input"

    def test_unknown_foundry(self, client):
        response = client.get("/api/v1/objectives", headers={"X-Foundry-Slug": "nope"})
        assert response.status_code == 404
        assert response.json()["detail"] == "Foundry not found"

    def test_legacy_foundry_id_header(self, client, foundry, member):
        headers = auth_headers(member, foundry)
        del headers["X-Foundry-Slug"]

        assert client.get("/api/v1/users/me", headers={**headers, "X-Foundry-ID": foundry.id}).status_code == 200
        assert client.get("/api/v1/users/me", headers={**headers, "X-Foundry-ID": "acme"}).status_code == 400


class TestAuth:
    def test_login(self, client, db, foundry, member):
        response = client.post(
            "/api/v1/auth/login",
            json={"email": member.email, "password": PASSWORD, "foundry_slug": "acme"},
            headers={"X-Foundry-Slug": "acme"},
        )

        assert response.status_code == 200
        assert response.json()["token_type"] == "bearer"
        db.refresh(member)
        assert member.last_login_at is not None

    def test_wrong_password(self, client, foundry, member):
        response = client.post(
            "/api/v1/auth/login",
            json={"email": member.email, "password": "wrong-password", "foundry_slug": "acme"},
            headers={"X-Foundry-Slug": "acme"},
        )

        assert response.status_code == 401
        assert response.json() == {"detail": "Invalid credentials", "type": "authentication_error"}

    def test_register_as_member(self, client, foundry):
        response = client.post(
            "/api/v1/auth/register",
            json={
                "email": "newcomer@acme.com",
                "password": "long-enough-pw",
                "full_name": "New Comer",
                "foundry_slug": "acme",
            },
            headers={"X-Foundry-Slug": "acme"},
        )

        assert response.status_code == 201
        body = response.json()
        assert body["role"] == "member"
        assert body["foundry_id"] == foundry.id

    def test_suspended_account_cannot_sign_in(self, client, db, foundry, member):
        member.is_active = False
        db.commit()

        response = client.post(
            "/api/v1/auth/login",
            json={"email": member.email, "password": PASSWORD, "foundry_slug": "acme"},
            headers={"X-Foundry-Slug": "acme"},
        )

        assert response.status_code == 401
        assert response.json()["detail"] == "User account is inactive"

    def test_register_existing_email(self, client, foundry, member):
        response = client.post(
            "/api/v1/auth/register",
            json={
                "email": member.email,
                "password": "long-enough-pw",
                "full_name": "Second Try",
                "foundry_slug": "acme",
            },
            headers={"X-Foundry-Slug": "acme"},
        )

        assert response.status_code == 409
        assert response.json()["type"] == "conflict"

    def test_register_unknown_foundry(self, client, foundry):
        response = client.post(
            "/api/v1/auth/register",
            json={
                "email": "drifter@acme.com",
                "password": "long-enough-pw",
                "full_name": "Drifter",
                "foundry_slug": "initech",
            },
            headers={"X-Foundry-Slug": "acme"},
        )

        assert response.status_code == 404
        assert response.json() == {"detail": "Foundry not found", "type": "not_found"}

    def test_token_from_another_foundry_is_rejected(self, client, member, other_foundry):
        headers = auth_headers(member, other_foundry)
        response = client.get("/api/v1/objectives", headers=headers)

        assert response.status_code == 403
        assert response.json()["type"] == "foundry_isolation_error"


class TestObjectives:
    def test_create_and_list(self, client, foundry, member):
        headers = auth_headers(member, foundry)

        created = client.post("/api/v1/objectives", json={"title": "Ship the v2 jig"}, headers=headers)
        assert created.status_code == 201
        assert created.json()["owner_id"] == member.id

        listing = client.get("/api/v1/objectives", headers=headers).json()
        assert listing["total"] == 1
        assert listing["objectives"][0]["title"] == "Ship the v2 jig"

    def test_viewer_cannot_create(self, client, foundry, viewer):
        response = client.post(
            "/api/v1/objectives",
            json={"title": "Nope"},
            headers=auth_headers(viewer, foundry),
        )
        assert response.status_code == 403

    def test_tasks(self, client, foundry, member):
        headers = auth_headers(member, foundry)
        objective = client.post("/api/v1/objectives", json={"title": "Tooling"}, headers=headers).json()

        task = client.post(
            f"/api/v1/objectives/{objective['id']}/tasks",
            json={"title": "Order end mills", "assignee_id": member.id},
            headers=headers,
        )
        assert task.status_code == 201
        assert task.json()["status"] == "todo"

        tasks = client.get(f"/api/v1/objectives/{objective['id']}/tasks", headers=headers).json()
        assert [t["title"] for t in tasks] == ["Order end mills"]


class TestUsers:
    def test_me_links_provider_profile(self, client, other_foundry, supplier, supplier_profile):
        body = client.get("/api/v1/users/me", headers=auth_headers(supplier, other_foundry)).json()
        assert body["id"] == supplier.id
        assert body["provider_profile_id"] == supplier_profile.id

    def test_blank_name_rejected(self, client, foundry, member):
        response = client.patch(
            f"/api/v1/users/{member.id}",
            json={"full_name": "   "},
            headers=auth_headers(member, foundry),
        )
        assert response.status_code == 422

    def test_member_cannot_promote_themselves(self, client, foundry, member):
        response = client.patch(
            f"/api/v1/users/{member.id}",
            json={"role": "admin"},
            headers=auth_headers(member, foundry),
        )
        assert response.status_code == 403
        assert response.json()["detail"] == "Only admins can change user roles or status"

    def test_member_can_rename_themselves(self, client, foundry, member):
        response = client.patch(
            f"/api/v1/users/{member.id}",
            json={"full_name": "Barbara Buyer"},
            headers=auth_headers(member, foundry),
        )
        assert response.status_code == 200
        assert response.json()["full_name"] == "Barbara Buyer"

    def test_admin_cannot_demote_themselves(self, client, foundry, admin):
        response = client.patch(
            f"/api/v1/users/{admin.id}",
            json={"role": "viewer"},
            headers=auth_headers(admin, foundry),
        )
        assert response.status_code == 400
        assert response.json()["detail"] == "Cannot change your own role or status"

    def test_admin_changes_another_role(self, client, foundry, admin, member):
        response = client.patch(
            f"/api/v1/users/{member.id}",
            json={"role": "viewer"},
            headers=auth_headers(admin, foundry),
        )
        assert response.status_code == 200
        assert response.json()["role"] == "viewer"

    def test_admin_cannot_delete_self(self, client, foundry, admin):
        response = client.delete(f"/api/v1/users/{admin.id}", headers=auth_headers(admin, foundry))
        assert response.status_code == 400
        assert response.json()["detail"] == "Cannot delete your own account"

    def test_admin_removes_another_admin(self, client, db, foundry, admin):
        other_admin = make_user(db, foundry, "second@acme.com", UserRole.ADMIN)
        headers = auth_headers(other_admin, foundry)

        assert client.delete(f"/api/v1/users/{admin.id}", headers=headers).status_code == 204


class TestRFQFlow:
    def test_supplier_responds_once(self, client, db, member, other_foundry, supplier, supplier_profile):
        rfq = make_rfq(db, member, rfq_type=RFQType.SERVICE.value)
        rfqs.broadcast_rfq(db, rfq)
        headers = auth_headers(supplier, other_foundry)

        first = client.post(
            f"/api/v1/rfqs/{rfq.id}/responses",
            json={"response_type": "accept", "quoted_price": 1200.0},
            headers=headers,
        )
        assert first.status_code == 201
        assert first.json()["awarded"] is False

        second = client.post(
            f"/api/v1/rfqs/{rfq.id}/responses",
            json={"response_type": "decline"},
            headers=headers,
        )
        assert second.status_code == 409
        assert second.json() == {"detail": "Already responded to this RFQ", "type": "conflict"}

    def test_unbroadcast_rfq_is_hidden(self, client, db, member, other_foundry, supplier, supplier_profile):
        rfq = make_rfq(db, member)
        response = client.get(f"/api/v1/rfqs/{rfq.id}", headers=auth_headers(supplier, other_foundry))
        assert response.status_code == 404

    def test_create(self, client, foundry, member):
        response = client.post(
            "/api/v1/rfqs",
            json={"title": "Sheet metal enclosures", "urgency": "urgent"},
            headers=auth_headers(member, foundry),
        )
        assert response.status_code == 201
        body = response.json()
        assert body["rfq"]["status"] == "Open"
        assert body["broadcast_count"] == 0


class TestRetainerPricing:
    def test_preview(self, client, foundry, member):
        response = client.post(
            "/api/v1/retainers/pricing",
            json={"weekly_hours": 20, "hourly_rate": 60.0},
            headers=auth_headers(member, foundry),
        )
        assert response.status_code == 200
        body = response.json()
        assert body["discount_percent"] == 5.0
        assert body["discounted_rate"] == pytest.approx(57.0)
        assert body["currency"] == "GBP"

    def test_uncommitted_hours_rejected(self, client, foundry, member):
        response = client.post(
            "/api/v1/retainers/pricing",
            json={"weekly_hours": 15, "hourly_rate": 60.0},
            headers=auth_headers(member, foundry),
        )
        assert response.status_code == 422


class TestUploads:
    def test_accepts_drawing(self, client, foundry, member):
        response = client.post(
            "/api/v1/uploads/rfq",
            files={"file": ("bracket drawing.pdf", b"%PDF-1.4 fake", "application/pdf")},
            headers=auth_headers(member, foundry),
        )

        assert response.status_code == 201
        body = response.json()
        assert body["path"].startswith(f"rfq/{foundry.id}/{member.id}/")
        assert body["path"].endswith("_bracket_drawing.pdf")
        assert body["size"] == len(b"%PDF-1.4 fake")

    def test_rejects_executable(self, client, foundry, member):
        response = client.post(
            "/api/v1/uploads/rfq",
            files={"file": ("setup.exe", b"MZ", "application/octet-stream")},
            headers=auth_headers(member, foundry),
        )
        assert response.status_code == 400
        assert response.json()["type"] == "invalid_input"

    def test_delete_is_scoped_to_owner(self, client, foundry, member, admin):
        headers = auth_headers(member, foundry)
        own = f"rfq/{foundry.id}/{member.id}/1700000000000_a.pdf"
        theirs = f"rfq/{foundry.id}/{admin.id}/1700000000000_a.pdf"

        assert client.delete("/api/v1/uploads/rfq", params={"path": own}, headers=headers).status_code == 204

        response = client.delete("/api/v1/uploads/rfq", params={"path": theirs}, headers=headers)
        assert response.status_code == 403
        assert response.json()["detail"] == "Not authorized to delete this file"


class TestFraudLimits:
    def test_my_limits(self, client, foundry, member):
        response = client.get("/api/v1/fraud/limits/me", headers=auth_headers(member, foundry))

        assert response.status_code == 200
        body = response.json()
        assert body["tier"] == "new"
        assert body["next_tier"] == "starter"
        assert body["days_until_next_tier"] == 7

    def test_admin_endpoints_need_admin(self, client, foundry, member):
        response = client.get("/api/v1/fraud/high-risk", headers=auth_headers(member, foundry))
        assert response.status_code == 403

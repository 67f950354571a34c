"""
End-to-end API tests: a customer asks a supplier for compliance information
about a product, the supplier answers, the customer reviews.
"""
from app.db.models import (
    AuditLog, Company, CompanyRelationship, CompanyUser, RelationshipStatus, User, UserRole,
)
from app.services import pir_lifecycle as lifecycle
from app.tests.factories import auth_headers, make_company, make_user


class TestPIRWorkflow:
    """Widget / Compliance scenario through the HTTP API."""

    def test_full_review_cycle(self, client, db, parties, question_bank, notifier):
        customer = auth_headers(parties["customer_user"], parties["customer"])
        supplier = auth_headers(parties["supplier_user"], parties["supplier"])
        certificate_id = question_bank["certificate"].id
        recalls_id = question_bank["recalls"].id

        # customer creates a draft
        response = client.post("/api/pirs", headers=customer, json={
            "supplier_company_id": parties["supplier"].id,
            "product_id": parties["product"].id,
            "tag_ids": [question_bank["compliance"].id],
        })
        assert response.status_code == 201
        pir = response.json()
        pir_id = pir["id"]
        assert pir["status"] == "draft"
        assert pir["product_name"] == "Widget"
        assert pir["role"] == "customer"
        assert {q["id"] for q in pir["questions"]} == {certificate_id, recalls_id}

        # the supplier does not see drafts
        assert client.get("/api/pirs/incoming", headers=supplier).json() == []
        assert client.get(f"/api/pirs/{pir_id}", headers=supplier).status_code == 404

        # send
        response = client.post(f"/api/pirs/{pir_id}/send", headers=customer)
        assert response.status_code == 200
        assert response.json()["status"] == "sent"
        assert [m.to for m in notifier.sent] == ["supplier@example.com"]

        incoming = client.get("/api/pirs/incoming", headers=supplier).json()
        assert [p["id"] for p in incoming] == [pir_id]
        assert incoming[0]["next_actor"] == "supplier"

        # submitting with a required answer missing is refused
        response = client.post(f"/api/pirs/{pir_id}/submit", headers=supplier)
        assert response.status_code == 400
        assert response.json()["detail"]["question_ids"] == [certificate_id]

        # answers are saved as draft
        response = client.put(f"/api/pirs/{pir_id}/answers", headers=supplier, json={
            "answers": {str(certificate_id): "ISO 9001", str(recalls_id): False},
        })
        assert response.status_code == 200
        assert response.json()["status"] == "in_progress"

        response = client.post(f"/api/pirs/{pir_id}/submit", headers=supplier)
        assert response.status_code == 200
        detail = response.json()
        assert detail["status"] == "submitted"
        assert notifier.sent[-1].to == "customer@example.com"
        answers = {a["question_id"]: a for a in detail["answers"]}

        # customer flags one answer
        response = client.post(f"/api/pirs/{pir_id}/review", headers=customer, json={
            "decisions": [
                {"response_id": answers[certificate_id]["id"], "status": "flagged",
                 "note": "Please include the certificate number"},
                {"response_id": answers[recalls_id]["id"], "status": "approved"},
            ],
        })
        assert response.status_code == 200
        detail = response.json()
        assert detail["status"] == "flagged"
        assert detail["status_label"] == "Changes Requested"
        flagged = next(a for a in detail["answers"] if a["question_id"] == certificate_id)
        assert flagged["flags"][0]["description"] == "Please include the certificate number"

        # supplier fixes it and resubmits
        client.put(f"/api/pirs/{pir_id}/answers", headers=supplier, json={
            "answers": {str(certificate_id): "ISO 9001, cert 4711"},
        })
        response = client.post(f"/api/pirs/{pir_id}/resubmit", headers=supplier)
        assert response.json()["status"] == "resubmitted"

        # customer approves
        response = client.post(f"/api/pirs/{pir_id}/approve", headers=customer)
        assert response.status_code == 200
        assert response.json()["status"] == "approved"
        assert response.json()["allowed_transitions"] == []
        assert notifier.sent[-1].subject == "PIR Approved: Widget"

        # terminal: nothing moves any more
        assert client.post(f"/api/pirs/{pir_id}/cancel", headers=customer).status_code == 409

        history = client.get(f"/api/audit/pirs/{pir_id}", headers=supplier).json()
        moves = [(h["details"]["from"], h["details"]["to"]) for h in history
                 if h["action"] == "pir_status_change"]
        assert moves == [
            ("draft", "sent"),
            ("sent", "in_progress"),
            ("in_progress", "submitted"),
            ("submitted", "in_review"),
            ("in_review", "flagged"),
            ("flagged", "resubmitted"),
            ("resubmitted", "approved"),
        ]

        summary = client.get("/api/pirs/summary?direction=outgoing", headers=customer).json()
        assert summary == {"direction": "outgoing", "total": 1, "buckets": {"approved": 1}}

    def test_supplier_cannot_send(self, client, parties, question_bank):
        customer = auth_headers(parties["customer_user"], parties["customer"])
        supplier = auth_headers(parties["supplier_user"], parties["supplier"])
        pir_id = client.post("/api/pirs", headers=customer, json={
            "supplier_company_id": parties["supplier"].id,
            "product_name": "Gadget",
        }).json()["id"]

        response = client.post(f"/api/pirs/{pir_id}/send", headers=supplier)

        assert response.status_code == 403

    def test_outsiders_get_404(self, client, db, parties, question_bank):
        customer = auth_headers(parties["customer_user"], parties["customer"])
        outsider_company = make_company(db, "Outsider")
        outsider = make_user(db, "nosy@outsider.example.com", outsider_company)
        pir_id = client.post("/api/pirs", headers=customer, json={
            "supplier_company_id": parties["supplier"].id,
            "product_id": parties["product"].id,
        }).json()["id"]

        response = client.get(f"/api/pirs/{pir_id}", headers=auth_headers(outsider, outsider_company))

        assert response.status_code == 404

    def test_invalid_answer_type(self, client, parties, question_bank):
        customer = auth_headers(parties["customer_user"], parties["customer"])
        supplier = auth_headers(parties["supplier_user"], parties["supplier"])
        pir_id = client.post("/api/pirs", headers=customer, json={
            "supplier_company_id": parties["supplier"].id,
            "product_id": parties["product"].id,
            "tag_ids": [question_bank["compliance"].id],
        }).json()["id"]
        client.post(f"/api/pirs/{pir_id}/send", headers=customer)

        response = client.put(f"/api/pirs/{pir_id}/answers", headers=supplier, json={
            "answers": {str(question_bank["recalls"].id): "maybe"},
        })

        assert response.status_code == 400
        assert client.get(f"/api/pirs/{pir_id}", headers=supplier).json()["status"] == "sent"

    def test_stale_token_after_membership_removal(self, client, db, parties):
        headers = auth_headers(parties["customer_user"], parties["customer"])
        db.query(CompanyUser).filter(CompanyUser.user_id == parties["customer_user"].id).delete()
        db.commit()

        assert client.get("/api/pirs/outgoing", headers=headers).status_code == 403


class TestAuth:

    def test_register_without_company_bootstraps_one(self, client, db):
        response = client.post("/api/auth/register", json={
            "email": "New.User@Example.com",
            "password": "correcthorse1",
            "first_name": "New",
        })

        assert response.status_code == 200
        body = response.json()
        assert body["current_company"]["company_name"] == "new.user's Company"
        assert body["current_company"]["role"] == "admin"
        assert len(body["companies"]) == 1

    def test_register_with_company_makes_owner(self, client):
        body = client.post("/api/auth/register", json={
            "email": "founder@acme.example.com",
            "password": "correcthorse1",
            "company_name": "Acme",
        }).json()

        assert body["current_company"] == {
            "company_id": body["companies"][0]["company_id"],
            "company_name": "Acme",
            "role": "owner",
        }

    def test_weak_password_is_rejected(self, client):
        response = client.post("/api/auth/register", json={
            "email": "weak@example.com", "password": "onlyletters",
        })

        assert response.status_code == 422

    def test_login_bootstraps_company_once(self, client, db):
        make_user(db, "lonely@example.com", password="password123")

        first = client.post("/api/auth/login", json={"email": "lonely@example.com", "password": "password123"})
        second = client.post("/api/auth/login", json={"email": "lonely@example.com", "password": "password123"})

        assert first.status_code == 200
        assert second.status_code == 200
        assert first.json()["current_company"] == second.json()["current_company"]
        assert db.query(Company).count() == 1

    def test_login_with_wrong_password(self, client, db):
        make_user(db, "someone@example.com", password="password123")

        response = client.post("/api/auth/login", json={"email": "someone@example.com", "password": "nope"})

        assert response.status_code == 401

    def test_switch_company(self, client, db):
        first = make_company(db, "First")
        second = make_company(db, "Second")
        stranger = make_company(db, "Stranger")
        user = make_user(db, "multi@example.com", first)
        db.add(CompanyUser(company_id=second.id, user_id=user.id, role=UserRole.MEMBER))
        db.commit()
        headers = auth_headers(user, first)

        response = client.post("/api/auth/switch-company", json={"company_id": second.id}, headers=headers)
        assert response.status_code == 200
        token = response.json()["access_token"]
        me = client.get("/api/auth/me", headers={"Authorization": f"Bearer {token}"}).json()
        assert me["current_company"]["company_name"] == "Second"
        assert me["current_company"]["role"] == "member"

        response = client.post("/api/auth/switch-company", json={"company_id": stranger.id}, headers=headers)
        assert response.status_code == 403


class TestInvitations:

    def test_invite_new_supplier_contact(self, client, db, parties, notifier):
        headers = auth_headers(parties["customer_user"], parties["customer"])

        response = client.post("/api/invitations", headers=headers, json={
            "email": "contact@newsupplier.example.com",
            "invitingCompanyId": parties["customer"].id,
            "supplierName": "New Supplier Ltd",
            "contactName": "Nina",
        })

        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        supplier_id = body["data"]["invited_supplier_company_id"]
        link = db.query(CompanyRelationship).filter(CompanyRelationship.supplier_id == supplier_id).one()
        assert link.status == RelationshipStatus.PENDING
        assert notifier.sent[-1].to == "contact@newsupplier.example.com"

        invited = db.query(User).filter(User.email == "contact@newsupplier.example.com").one()
        assert invited.is_active is False

        # accepting activates the account and the relationship
        response = client.post("/api/invitations/accept", json={
            "token": invited.invitation_token,
            "password": "supplierpass1",
            "first_name": "Nina",
        })
        assert response.status_code == 200
        assert response.json()["current_company"] == {
            "company_id": supplier_id,
            "company_name": "New Supplier Ltd",
            "role": "owner",
        }
        db.refresh(link)
        assert link.status == RelationshipStatus.ACTIVE

    def test_registered_user_conflict(self, client, parties):
        headers = auth_headers(parties["customer_user"], parties["customer"])

        response = client.post("/api/invitations", headers=headers, json={
            "email": parties["supplier_user"].email,
        })

        assert response.status_code == 409
        assert response.json() == {"error": "User already registered."}

    def test_cannot_invite_for_another_company(self, client, parties):
        headers = auth_headers(parties["customer_user"], parties["customer"])

        response = client.post("/api/invitations", headers=headers, json={
            "email": "someone@else.example.com",
            "invitingCompanyId": parties["supplier"].id,
        })

        assert response.status_code == 403


    def test_existing_supplier_must_be_related(self, client, db, parties):
        headers = auth_headers(parties["customer_user"], parties["customer"])
        stranger = make_company(db, "Unrelated Co", contact_email="info@unrelated.example.com")

        response = client.post("/api/invitations", headers=headers, json={
            "email": "accomplice@elsewhere.example.com",
            "invited_supplier_company_id": stranger.id,
        })

        assert response.status_code == 404
        assert db.query(User).filter(User.email == "accomplice@elsewhere.example.com").count() == 0
        assert db.query(CompanyRelationship).filter(
            CompanyRelationship.supplier_id == stranger.id).count() == 0

    def test_contact_joins_related_supplier_as_member(self, client, db, parties):
        headers = auth_headers(parties["customer_user"], parties["customer"])

        response = client.post("/api/invitations", headers=headers, json={
            "email": "second@supplier.example.com",
            "invited_supplier_company_id": parties["supplier"].id,
        })
        assert response.status_code == 200

        invited = db.query(User).filter(User.email == "second@supplier.example.com").one()
        response = client.post("/api/invitations/accept", json={
            "token": invited.invitation_token,
            "password": "supplierpass1",
        })

        assert response.status_code == 200
        assert response.json()["current_company"]["company_id"] == parties["supplier"].id
        assert response.json()["current_company"]["role"] == "member"

class TestMembers:

    def test_last_owner_cannot_be_demoted(self, client, parties):
        owner = parties["customer_user"]
        headers = auth_headers(owner, parties["customer"])

        response = client.put(f"/api/admin/members/{owner.id}/role", headers=headers, json={"role": "admin"})

        assert response.status_code == 400

    def test_member_cannot_manage_members(self, client, db, parties):
        member = make_user(db, "intern@customer.example.com", parties["customer"], role=UserRole.MEMBER)

        response = client.get("/api/admin/members", headers=auth_headers(member, parties["customer"], "member"))

        assert response.status_code == 403


class TestAnswerComments:
    """Discussion threads on individual answers."""

    def _answered_pir(self, db, parties, question_bank):
        pir = lifecycle.create_pir(
            db, parties["customer_ctx"], supplier_company_id=parties["supplier"].id,
            product_id=parties["product"].id, tag_ids=[question_bank["compliance"].id],
        )
        lifecycle.send_pir(db, pir, parties["customer_ctx"])
        lifecycle.save_answers(db, pir, parties["supplier_ctx"], {
            question_bank["certificate"].id: "ISO 9001",
        })
        return pir, pir.responses[0]

    def test_both_parties_append_to_the_thread(self, client, db, parties, question_bank):
        pir, answer = self._answered_pir(db, parties, question_bank)
        url = f"/api/pirs/{pir.id}/answers/{answer.id}/comments"
        customer = auth_headers(parties["customer_user"], parties["customer"])
        supplier = auth_headers(parties["supplier_user"], parties["supplier"])

        response = client.post(url, headers=customer, json={"text": "  Which edition?  "})
        assert response.status_code == 201
        assert response.json()["text"] == "Which edition?"
        assert response.json()["user_id"] == parties["customer_user"].id

        client.post(url, headers=supplier, json={"text": "ISO 9001:2015"})

        thread = client.get(url, headers=supplier).json()
        assert [c["text"] for c in thread] == ["Which edition?", "ISO 9001:2015"]
        assert db.query(AuditLog).filter(AuditLog.action == "add_comment").count() == 2

    def test_comments_cannot_be_edited_or_deleted(self, client, db, parties, question_bank):
        pir, answer = self._answered_pir(db, parties, question_bank)
        url = f"/api/pirs/{pir.id}/answers/{answer.id}/comments"
        headers = auth_headers(parties["customer_user"], parties["customer"])
        client.post(url, headers=headers, json={"text": "Looks fine"})

        assert client.put(url, headers=headers, json={"text": "edited"}).status_code == 405
        assert client.delete(url, headers=headers).status_code == 405
        assert [c["text"] for c in client.get(url, headers=headers).json()] == ["Looks fine"]

    def test_answer_of_another_pir_is_not_found(self, client, db, parties, question_bank):
        pir, answer = self._answered_pir(db, parties, question_bank)
        other = lifecycle.create_pir(
            db, parties["customer_ctx"], supplier_company_id=parties["supplier"].id,
            product_id=parties["product"].id, tag_ids=[question_bank["compliance"].id],
        )
        headers = auth_headers(parties["customer_user"], parties["customer"])

        response = client.get(f"/api/pirs/{other.id}/answers/{answer.id}/comments", headers=headers)
        assert response.status_code == 404

        response = client.post(f"/api/pirs/{other.id}/answers/{answer.id}/comments",
                               headers=headers, json={"text": "Hello"})
        assert response.status_code == 404

    def test_empty_comment_is_rejected(self, client, db, parties, question_bank):
        pir, answer = self._answered_pir(db, parties, question_bank)
        headers = auth_headers(parties["customer_user"], parties["customer"])

        response = client.post(f"/api/pirs/{pir.id}/answers/{answer.id}/comments",
                               headers=headers, json={"text": ""})

        assert response.status_code == 422

"""
Unit tests for the PIR lifecycle state machine and its operations.
"""
import pytest

from app.db.models import AuditLog, PIRRequest, PIRStatus, ResponseFlag, ResponseStatus
from app.services import pir_lifecycle as lifecycle
from app.services.pir_lifecycle import (
    Actor, ActorNotAllowedError, InvalidTransitionError, MissingRequiredAnswersError,
    PIRValidationError, ReviewDecision,
)


def _create(db, parties, question_bank, **kwargs):
    kwargs.setdefault("product_id", parties["product"].id)
    kwargs.setdefault("tag_ids", [question_bank["compliance"].id])
    return lifecycle.create_pir(
        db, parties["customer_ctx"], supplier_company_id=parties["supplier"].id, **kwargs
    )


def _submitted(db, parties, question_bank, notifier=None):
    pir = _create(db, parties, question_bank)
    lifecycle.send_pir(db, pir, parties["customer_ctx"], notifier)
    lifecycle.save_answers(db, pir, parties["supplier_ctx"], {
        question_bank["certificate"].id: "ISO 9001",
        question_bank["recalls"].id: False,
    })
    lifecycle.submit_pir(db, pir, parties["supplier_ctx"], notifier)
    return pir


class TestTransitionTable:
    """Tests for the static transition rules."""

    def test_terminal_states_have_no_outgoing_transitions(self):
        for status in lifecycle.TERMINAL_STATUSES:
            assert lifecycle.allowed_transitions(status) == []

    def test_every_open_status_can_be_canceled_by_the_customer(self):
        for status in PIRStatus:
            if status in lifecycle.TERMINAL_STATUSES:
                continue
            assert PIRStatus.CANCELED in lifecycle.allowed_transitions(status, Actor.CUSTOMER)
            assert PIRStatus.CANCELED not in lifecycle.allowed_transitions(status, Actor.SUPPLIER)

    def test_allowed_transitions_filtered_by_actor(self):
        assert lifecycle.allowed_transitions(PIRStatus.SENT, Actor.SUPPLIER) == [
            PIRStatus.IN_PROGRESS, PIRStatus.SUBMITTED,
        ]
        assert lifecycle.allowed_transitions(PIRStatus.FLAGGED, Actor.SUPPLIER) == [PIRStatus.RESUBMITTED]
        assert lifecycle.allowed_transitions(PIRStatus.DRAFT, Actor.SUPPLIER) == []

    def test_unknown_move_is_rejected(self):
        with pytest.raises(InvalidTransitionError):
            lifecycle.find_transition(PIRStatus.DRAFT, PIRStatus.APPROVED)

    def test_move_out_of_terminal_state_has_specific_message(self):
        with pytest.raises(InvalidTransitionError) as exc:
            lifecycle.find_transition(PIRStatus.APPROVED, PIRStatus.FLAGGED)
        assert "can no longer change status" in str(exc.value)

    def test_legacy_status_names_are_normalized(self):
        assert lifecycle.parse_status("pending_supplier") == PIRStatus.SENT
        assert lifecycle.parse_status("pending_review") == PIRStatus.SUBMITTED
        assert lifecycle.parse_status("accepted") == PIRStatus.APPROVED
        assert lifecycle.parse_status("Reviewed") == PIRStatus.APPROVED
        assert lifecycle.parse_status("in_review") == PIRStatus.IN_REVIEW

    def test_unknown_status_name_raises(self):
        with pytest.raises(PIRValidationError):
            lifecycle.parse_status("archived")

    def test_next_actor(self):
        assert lifecycle.next_actor(PIRStatus.DRAFT) == Actor.CUSTOMER
        assert lifecycle.next_actor(PIRStatus.SENT) == Actor.SUPPLIER
        assert lifecycle.next_actor(PIRStatus.IN_PROGRESS) == Actor.SUPPLIER
        assert lifecycle.next_actor(PIRStatus.FLAGGED) == Actor.SUPPLIER
        assert lifecycle.next_actor(PIRStatus.SUBMITTED) == Actor.CUSTOMER
        assert lifecycle.next_actor(PIRStatus.RESUBMITTED) == Actor.CUSTOMER
        assert lifecycle.next_actor(PIRStatus.APPROVED) is None
        assert lifecycle.next_actor("canceled") is None

    def test_display_buckets(self):
        assert lifecycle.display_bucket("pending_supplier") == "awaiting_supplier"
        assert lifecycle.display_bucket(PIRStatus.RESUBMITTED) == "awaiting_review"
        assert lifecycle.display_bucket(PIRStatus.FLAGGED) == "revision_requested"
        assert lifecycle.STATUS_DISPLAY[PIRStatus.FLAGGED] == "Changes Requested"


class TestCreatePIR:
    """Tests for PIR creation."""

    def test_new_pir_starts_as_draft(self, db, parties, question_bank):
        pir = _create(db, parties, question_bank)

        assert pir.status == PIRStatus.DRAFT
        assert pir.customer_id == parties["customer"].id
        assert pir.supplier_company_id == parties["supplier"].id
        assert [t.name for t in pir.tags] == ["Compliance"]
        assert pir.title == "PIR Request for Widget"

    def test_create_writes_audit_row(self, db, parties, question_bank):
        pir = _create(db, parties, question_bank)

        audit = db.query(AuditLog).filter(
            AuditLog.action == "create_pir", AuditLog.entity_id == pir.id
        ).one()
        assert audit.company_id == parties["customer"].id
        assert audit.details["tags"] == ["Compliance"]

    def test_suggested_product_name_without_catalog_product(self, db, parties, question_bank):
        pir = _create(db, parties, question_bank, product_id=None, suggested_product_name=" Gadget ")

        assert pir.product_id is None
        assert pir.product_name == "Gadget"

    def test_same_company_is_rejected(self, db, parties, question_bank):
        with pytest.raises(PIRValidationError):
            lifecycle.create_pir(
                db, parties["customer_ctx"],
                supplier_company_id=parties["customer"].id,
                suggested_product_name="Widget",
            )
        assert db.query(PIRRequest).count() == 0

    def test_product_of_another_company_is_rejected(self, db, parties, question_bank):
        with pytest.raises(PIRValidationError):
            lifecycle.create_pir(
                db, parties["supplier_ctx"],
                supplier_company_id=parties["customer"].id,
                product_id=parties["product"].id,
            )

    def test_product_or_name_is_required(self, db, parties, question_bank):
        with pytest.raises(PIRValidationError):
            _create(db, parties, question_bank, product_id=None, suggested_product_name="  ")

    def test_unknown_tags_are_rejected(self, db, parties, question_bank):
        with pytest.raises(PIRValidationError):
            _create(db, parties, question_bank, tag_ids=[question_bank["compliance"].id, 9999])


class TestSendAndNotify:
    """Tests for draft -> sent and its notification."""

    def test_send_notifies_supplier_once(self, db, parties, question_bank, notifier):
        pir = _create(db, parties, question_bank)
        assert notifier.sent == []

        lifecycle.send_pir(db, pir, parties["customer_ctx"], notifier)

        assert pir.status == PIRStatus.SENT
        assert len(notifier.sent) == 1
        message = notifier.sent[0]
        assert message.to == "supplier@example.com"
        assert message.subject == "Action Required: Product Information Request for Widget"

    def test_send_without_supplier_contact_sends_nothing(self, db, parties, question_bank, notifier):
        parties["supplier"].contact_email = None
        db.commit()
        pir = _create(db, parties, question_bank)

        lifecycle.send_pir(db, pir, parties["customer_ctx"], notifier)

        assert pir.status == PIRStatus.SENT
        assert notifier.sent == []

    def test_notification_failure_keeps_status_change(self, db, parties, question_bank, notifier):
        def broken(message):
            raise ConnectionError("redis unavailable")

        notifier.dispatch = broken
        pir = _create(db, parties, question_bank)

        lifecycle.send_pir(db, pir, parties["customer_ctx"], notifier)

        db.expire_all()
        assert db.get(PIRRequest, pir.id).status == PIRStatus.SENT

    def test_supplier_cannot_send(self, db, parties, question_bank, notifier):
        pir = _create(db, parties, question_bank)

        with pytest.raises(ActorNotAllowedError):
            lifecycle.send_pir(db, pir, parties["supplier_ctx"], notifier)
        assert pir.status == PIRStatus.DRAFT
        assert notifier.sent == []

    def test_status_change_is_audited(self, db, parties, question_bank):
        pir = _create(db, parties, question_bank)
        lifecycle.send_pir(db, pir, parties["customer_ctx"])

        audit = db.query(AuditLog).filter(AuditLog.action == "pir_status_change").one()
        assert audit.details == {"from": "draft", "to": "sent"}
        assert audit.entity_type == "pir_request"


class TestAnswersAndSubmission:
    """Tests for saving answers and submitting them."""

    def test_only_questions_of_the_pir_tags_apply(self, db, parties, question_bank):
        pir = _create(db, parties, question_bank)

        ids = [q.id for q in lifecycle.applicable_questions(db, pir)]
        assert question_bank["certificate"].id in ids
        assert question_bank["recalls"].id in ids
        assert question_bank["haccp"].id not in ids

    def test_first_save_moves_sent_to_in_progress(self, db, parties, question_bank):
        pir = _create(db, parties, question_bank)
        lifecycle.send_pir(db, pir, parties["customer_ctx"])

        saved = lifecycle.save_answers(db, pir, parties["supplier_ctx"], {
            question_bank["certificate"].id: "ISO 9001",
        })

        assert pir.status == PIRStatus.IN_PROGRESS
        assert len(saved) == 1
        assert saved[0].status == ResponseStatus.DRAFT
        assert saved[0].answer == "ISO 9001"

    def test_answers_cannot_be_saved_on_a_draft(self, db, parties, question_bank):
        pir = _create(db, parties, question_bank)

        with pytest.raises(PIRValidationError):
            lifecycle.save_answers(db, pir, parties["supplier_ctx"], {
                question_bank["certificate"].id: "ISO 9001",
            })

    def test_question_outside_scope_is_rejected(self, db, parties, question_bank):
        pir = _create(db, parties, question_bank)
        lifecycle.send_pir(db, pir, parties["customer_ctx"])

        with pytest.raises(PIRValidationError):
            lifecycle.save_answers(db, pir, parties["supplier_ctx"], {
                question_bank["haccp"].id: "We have one",
            })

    def test_submit_with_missing_required_answer_changes_nothing(self, db, parties, question_bank, notifier):
        pir = _create(db, parties, question_bank)
        lifecycle.send_pir(db, pir, parties["customer_ctx"], notifier)
        lifecycle.save_answers(db, pir, parties["supplier_ctx"], {
            question_bank["recalls"].id: False,
        })
        audits_before = db.query(AuditLog).count()

        with pytest.raises(MissingRequiredAnswersError) as exc:
            lifecycle.submit_pir(db, pir, parties["supplier_ctx"], notifier)

        assert exc.value.question_ids == [question_bank["certificate"].id]
        db.expire_all()
        assert pir.status == PIRStatus.IN_PROGRESS
        assert all(r.status == ResponseStatus.DRAFT for r in pir.responses)
        assert db.query(AuditLog).count() == audits_before
        assert len(notifier.sent) == 1  # only the "sent" email

    def test_submit_notifies_customer(self, db, parties, question_bank, notifier):
        pir = _submitted(db, parties, question_bank, notifier)

        assert pir.status == PIRStatus.SUBMITTED
        assert all(r.status == ResponseStatus.SUBMITTED for r in pir.responses)
        assert all(r.submitted_at is not None for r in pir.responses)
        assert notifier.sent[-1].to == "customer@example.com"
        assert notifier.sent[-1].subject == (
            "Response Submitted: PIR for Widget from Supplier Company"
        )

    def test_submitted_answers_are_locked(self, db, parties, question_bank):
        pir = _submitted(db, parties, question_bank)

        with pytest.raises(PIRValidationError):
            lifecycle.save_answers(db, pir, parties["supplier_ctx"], {
                question_bank["certificate"].id: "changed",
            })


class TestReview:
    """Tests for per-answer review, approval and rejection."""

    def _response_for(self, pir, question):
        return next(r for r in pir.responses if r.question_id == question.id)

    def test_approving_every_answer_approves_the_pir(self, db, parties, question_bank, notifier):
        pir = _submitted(db, parties, question_bank, notifier)

        decisions = {r.id: ReviewDecision(ResponseStatus.APPROVED) for r in pir.responses}
        lifecycle.review_pir(db, pir, parties["customer_ctx"], decisions, notifier)

        assert pir.status == PIRStatus.APPROVED
        assert notifier.sent[-1].subject == "PIR Approved: Widget"
        assert notifier.sent[-1].to == "supplier@example.com"

    def test_partial_review_stays_in_review(self, db, parties, question_bank):
        pir = _submitted(db, parties, question_bank)
        certificate = self._response_for(pir, question_bank["certificate"])

        lifecycle.review_pir(db, pir, parties["customer_ctx"], {
            certificate.id: ReviewDecision(ResponseStatus.APPROVED),
        })

        assert pir.status == PIRStatus.IN_REVIEW
        assert certificate.status == ResponseStatus.APPROVED

    def test_flag_requires_a_note(self, db, parties, question_bank):
        pir = _submitted(db, parties, question_bank)
        certificate = self._response_for(pir, question_bank["certificate"])

        with pytest.raises(PIRValidationError):
            lifecycle.review_pir(db, pir, parties["customer_ctx"], {
                certificate.id: ReviewDecision(ResponseStatus.FLAGGED, note="  "),
            })
        assert pir.status == PIRStatus.SUBMITTED

    def test_flag_and_resubmit_round_trip(self, db, parties, question_bank, notifier):
        pir = _submitted(db, parties, question_bank, notifier)
        certificate = self._response_for(pir, question_bank["certificate"])
        recalls = self._response_for(pir, question_bank["recalls"])

        lifecycle.review_pir(db, pir, parties["customer_ctx"], {
            certificate.id: ReviewDecision(ResponseStatus.FLAGGED, note="Attach the certificate number"),
            recalls.id: ReviewDecision(ResponseStatus.APPROVED),
        }, notifier)

        assert pir.status == PIRStatus.FLAGGED
        assert notifier.sent[-1].subject == "Revision Requested: Widget"
        flag = db.query(ResponseFlag).filter(ResponseFlag.response_id == certificate.id).one()
        assert flag.description == "Attach the certificate number"

        # approved answers stay locked while the PIR is flagged
        with pytest.raises(PIRValidationError):
            lifecycle.save_answers(db, pir, parties["supplier_ctx"], {recalls.question_id: True})

        lifecycle.save_answers(db, pir, parties["supplier_ctx"], {
            certificate.question_id: "ISO 9001 (cert no. 12345)",
        })
        lifecycle.resubmit_pir(db, pir, parties["supplier_ctx"], notifier)

        assert pir.status == PIRStatus.RESUBMITTED
        assert certificate.status == ResponseStatus.SUBMITTED
        assert notifier.sent[-1].subject == "Response Resubmitted: PIR for Widget from Supplier Company"

        lifecycle.review_pir(db, pir, parties["customer_ctx"], {
            certificate.id: ReviewDecision(ResponseStatus.APPROVED),
        }, notifier)

        assert pir.status == PIRStatus.APPROVED
        db.refresh(flag)
        assert flag.resolved_at is not None

    def test_approve_all_from_submitted(self, db, parties, question_bank):
        pir = _submitted(db, parties, question_bank)

        lifecycle.approve_pir(db, pir, parties["customer_ctx"])

        assert pir.status == PIRStatus.APPROVED
        assert all(r.status == ResponseStatus.APPROVED for r in pir.responses)
        actions = [a.details["to"] for a in db.query(AuditLog).filter(
            AuditLog.action == "pir_status_change").order_by(AuditLog.id)]
        assert actions[-2:] == ["in_review", "approved"]

    def test_approve_all_with_unsubmitted_answer_changes_nothing(self, db, parties, question_bank):
        pir = _submitted(db, parties, question_bank)
        self._response_for(pir, question_bank["recalls"]).status = ResponseStatus.DRAFT
        db.commit()
        audits_before = db.query(AuditLog).count()

        with pytest.raises(PIRValidationError):
            lifecycle.approve_pir(db, pir, parties["customer_ctx"])

        db.expire_all()
        assert pir.status == PIRStatus.SUBMITTED
        assert db.query(AuditLog).count() == audits_before

    def test_reject_from_submitted(self, db, parties, question_bank, notifier):
        pir = _submitted(db, parties, question_bank, notifier)

        lifecycle.reject_pir(db, pir, parties["customer_ctx"], "Wrong product", notifier)

        assert pir.status == PIRStatus.REJECTED
        assert notifier.sent[-1].subject == "PIR Rejected: Widget"

    def test_supplier_cannot_review(self, db, parties, question_bank):
        pir = _submitted(db, parties, question_bank)

        with pytest.raises(ActorNotAllowedError):
            lifecycle.approve_pir(db, pir, parties["supplier_ctx"])


class TestTerminalStates:
    """A PIR in a terminal state never changes again."""

    @pytest.mark.parametrize("target", [
        PIRStatus.SENT, PIRStatus.IN_REVIEW, PIRStatus.FLAGGED, PIRStatus.CANCELED,
    ])
    def test_approved_pir_rejects_every_move(self, db, parties, question_bank, target):
        pir = _submitted(db, parties, question_bank)
        lifecycle.approve_pir(db, pir, parties["customer_ctx"])

        with pytest.raises(InvalidTransitionError):
            lifecycle.apply_transition(db, pir, target, Actor.CUSTOMER, parties["customer_ctx"])
        assert pir.status == PIRStatus.APPROVED

    def test_canceled_pir_cannot_be_sent(self, db, parties, question_bank):
        pir = _create(db, parties, question_bank)
        lifecycle.cancel_pir(db, pir, parties["customer_ctx"])

        with pytest.raises(InvalidTransitionError):
            lifecycle.send_pir(db, pir, parties["customer_ctx"])
        assert pir.status == PIRStatus.CANCELED

    def test_answers_cannot_change_after_approval(self, db, parties, question_bank):
        pir = _submitted(db, parties, question_bank)
        lifecycle.approve_pir(db, pir, parties["customer_ctx"])

        with pytest.raises(PIRValidationError):
            lifecycle.save_answers(db, pir, parties["supplier_ctx"], {
                question_bank["certificate"].id: "changed",
            })

"""
Tests for the company-association bootstrap run at login.
"""
from unittest.mock import patch

from sqlalchemy.exc import OperationalError

from app.db.models import Company, CompanyType, CompanyUser, Profile, User, UserRole
from app.services.company_bootstrap import (
    company_name_for_email, ensure_user_company_association,
)
from app.tests.factories import make_company, make_user


class TestCompanyBootstrap:
    """A user without a membership gets exactly one company and an admin membership."""

    def test_creates_company_and_admin_membership(self, db):
        user = User(email="jane@acme.example.com", hashed_password="x",
                    user_metadata={"first_name": "Jane", "last_name": "Doe"})
        db.add(user)
        db.commit()

        result = ensure_user_company_association(db, user.id, user.email)

        assert result.created is True
        assert result.error is None
        company = db.get(Company, result.company_id)
        assert company.name == "jane's Company"
        assert company.role == CompanyType.BOTH
        assert company.contact_email == "jane@acme.example.com"

        membership = db.query(CompanyUser).filter(CompanyUser.user_id == user.id).one()
        assert membership.company_id == company.id
        assert membership.role == UserRole.ADMIN

        profile = db.get(Profile, user.id)
        assert profile.first_name == "Jane"
        assert profile.last_name == "Doe"

    def test_second_call_is_a_no_op(self, db):
        user = make_user(db, "jane@acme.example.com")

        first = ensure_user_company_association(db, user.id, user.email)
        second = ensure_user_company_association(db, user.id, user.email)

        assert first.created is True
        assert second.created is False
        assert second.company_id == first.company_id
        assert db.query(Company).count() == 1
        assert db.query(CompanyUser).count() == 1

    def test_existing_membership_is_left_alone(self, db):
        company = make_company(db, "Existing Co")
        user = make_user(db, "member@existing.example.com", company, role=UserRole.MEMBER)

        result = ensure_user_company_association(db, user.id, user.email)

        assert result.created is False
        assert result.company_id == company.id
        assert db.query(Company).count() == 1

    def test_unknown_user_reports_error(self, db):
        result = ensure_user_company_association(db, 4242, "ghost@example.com")

        assert result.created is False
        assert "not found" in result.error
        assert db.query(Company).count() == 0

    def test_failure_leaves_nothing_behind(self, db):
        user = make_user(db, "jane@acme.example.com")
        original_commit = db.commit

        def failing_commit():
            raise OperationalError("INSERT INTO company_users", {}, Exception("database is locked"))

        with patch.object(db, "commit", side_effect=failing_commit):
            result = ensure_user_company_association(db, user.id, user.email)

        assert result.created is False
        assert result.error is not None
        original_commit()
        assert db.query(Company).count() == 0
        assert db.query(CompanyUser).count() == 0

    def test_propagation_delay_is_honored(self, db):
        user = make_user(db, "jane@acme.example.com")

        with patch("app.services.company_bootstrap.settings") as mock_settings, \
                patch("app.services.company_bootstrap.time.sleep") as mock_sleep:
            mock_settings.BOOTSTRAP_PROPAGATION_DELAY = 0.5
            ensure_user_company_association(db, user.id, user.email)

        mock_sleep.assert_called_once_with(0.5)


class TestCompanyName:

    def test_uses_email_local_part(self):
        assert company_name_for_email("sam.smith@example.com") == "sam.smith's Company"

    def test_blank_email(self):
        assert company_name_for_email("") == "My's Company"

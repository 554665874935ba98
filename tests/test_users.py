"""Tests for user profile and admin edits."""
import pytest

from ticketflow_core import crud, schemas
from ticketflow_core.errors import AuthorizationError, FieldValidationError
from ticketflow_core.models import UserRole
from ticketflow_core.permissions import Actor


class TestUpdateProfile:
    """Test users editing their own profile."""

    def test_partial_edit(self, db, user):
        """Test that only the sent fields change."""
        crud.update_profile(db, user, schemas.UserUpdate(area="Finance"))
        updated = crud.update_profile(db, user, schemas.UserUpdate(name="  Uma Ortiz  "))

        assert updated.name == "Uma Ortiz"
        assert updated.area == "Finance"
        assert updated.role == UserRole.USER

    def test_null_clears_optional_fields(self, db, user):
        """Test that null or blank clears avatar and area."""
        crud.update_profile(db, user, schemas.UserUpdate(avatar_url="https://img/u.png", area="Ops"))
        updated = crud.update_profile(db, user, schemas.UserUpdate(avatar_url=None, area=" "))

        assert updated.avatar_url is None
        assert updated.area is None

    def test_blank_name_rejected(self, db, user):
        """Test that a blank name is refused and nothing is written."""
        with pytest.raises(FieldValidationError) as exc_info:
            crud.update_profile(db, user, schemas.UserUpdate(name="   ", area="Ops"))
        assert exc_info.value.reason == "Name is required"
        db.expire_all()
        assert crud.get_user(db, user.id).area is None

    def test_unknown_role_rejected(self, db, admin):
        """Test that a role outside admin, agent and user is invalid."""
        with pytest.raises(FieldValidationError) as exc_info:
            crud.update_profile(db, admin, schemas.UserUpdate(role="superuser"))
        assert exc_info.value.reason == "Invalid role"

    def test_non_admin_cannot_change_role(self, db, agent):
        """Test that agents cannot promote themselves."""
        with pytest.raises(AuthorizationError):
            crud.update_profile(db, agent, schemas.UserUpdate(role="admin"))
        db.expire_all()
        assert crud.get_user(db, agent.id).role == UserRole.AGENT

    def test_resending_own_role_is_allowed(self, db, agent):
        """Test that a non-admin may send their current role unchanged."""
        updated = crud.update_profile(db, agent, schemas.UserUpdate(role="agent", name="Alex A."))
        assert updated.name == "Alex A."

    def test_missing_actor(self, db):
        """Test that an actor whose row is gone gets None."""
        ghost = Actor(id="ghost", role=UserRole.USER)
        assert crud.update_profile(db, ghost, schemas.UserUpdate(name="Nobody")) is None


class TestUpdateUser:
    """Test admin edits of other users."""

    def test_admin_changes_role(self, db, admin, user):
        """Test that an admin can promote a user and the actor reflects it."""
        updated = crud.update_user(db, user.id, schemas.UserUpdate(role="agent"), admin)

        assert updated.role == UserRole.AGENT
        assert crud.get_actor(db, user.id).is_staff

    def test_agent_refused(self, db, agent, user):
        """Test that only admins edit other users."""
        with pytest.raises(AuthorizationError):
            crud.update_user(db, user.id, schemas.UserUpdate(name="Renamed"), agent)

    def test_unknown_user(self, db, admin):
        """Test that a missing user returns None."""
        assert crud.update_user(db, "missing", schemas.UserUpdate(name="x"), admin) is None

    def test_invalid_role(self, db, admin, user):
        """Test that admins are held to the role set too."""
        with pytest.raises(FieldValidationError):
            crud.update_user(db, user.id, schemas.UserUpdate(role="owner"), admin)


if __name__ == "__main__":
    pytest.main([__file__, "-v"])

"""Tests for project operations and seeding."""
import pytest

from ticketflow_core import crud, schemas, models
from ticketflow_core.errors import (
    AuthorizationError,
    ConflictError,
    FieldValidationError,
    ReferenceNotFoundError,
)
from ticketflow_core.models import DEFAULT_PROJECT_ID, ProjectVisibility


class TestSeeding:
    """Test well-known project seeding."""

    def test_default_project_exists(self, db):
        """Test that the fixture database carries the default project."""
        project = crud.get_project(db, DEFAULT_PROJECT_ID)
        assert project.name == "General"
        assert project.visibility == ProjectVisibility.PUBLIC

    def test_seeding_is_idempotent(self, db):
        """Test that samples are added once and the default project is never duplicated."""
        assert crud.ensure_default_projects(db) == 2
        assert crud.ensure_default_projects(db) == 0
        ids = {p.id for p in db.query(models.Project).all()}
        assert ids == {DEFAULT_PROJECT_ID, "project-automation", "project-support"}


class TestCreateProject:
    """Test project creation rules."""

    def test_user_cannot_create(self, db, user):
        """Test that plain users cannot create projects."""
        with pytest.raises(AuthorizationError):
            crud.create_project(db, schemas.ProjectCreate(name="Mine"), user)

    def test_blank_name_rejected(self, db, agent):
        """Test that a whitespace name is rejected."""
        with pytest.raises(FieldValidationError):
            crud.create_project(db, schemas.ProjectCreate(name="   "), agent)

    def test_private_defaults_owner_to_creator(self, db, agent):
        """Test that a private project without owner is owned by its creator."""
        project = crud.create_project(
            db, schemas.ProjectCreate(name="Payroll", visibility=ProjectVisibility.PRIVATE), agent
        )
        assert project.owner_user_id == agent.id

    def test_agent_cannot_create_for_someone_else(self, db, agent, user):
        """Test that only admins create projects owned by another user."""
        with pytest.raises(AuthorizationError):
            crud.create_project(db, schemas.ProjectCreate(name="Gift", owner_user_id=user.id), agent)

    def test_admin_owner_must_exist(self, db, admin):
        """Test that an unknown owner is a reference error."""
        with pytest.raises(ReferenceNotFoundError):
            crud.create_project(db, schemas.ProjectCreate(name="Orphan", owner_user_id="ghost"), admin)


class TestUpdateProject:
    """Test project updates."""

    def test_rename_keeps_other_fields(self, db, agent):
        """Test that omitted fields are kept."""
        project = crud.create_project(db, schemas.ProjectCreate(name="Old", description="Desc"), agent)
        updated = crud.update_project(db, project.id, schemas.ProjectUpdate(name="New"), agent)
        assert updated.name == "New"
        assert updated.description == "Desc"

    def test_visibility_change_needs_owner_or_admin(self, db, admin, agent):
        """Test that a non-owner agent cannot make a project private."""
        project = crud.create_project(
            db, schemas.ProjectCreate(name="Shared", owner_user_id=admin.id), admin
        )
        with pytest.raises(AuthorizationError):
            crud.update_project(
                db, project.id, schemas.ProjectUpdate(visibility=ProjectVisibility.PRIVATE), agent
            )

    def test_owner_makes_project_private(self, db, agent):
        """Test that an owner can change visibility."""
        project = crud.create_project(db, schemas.ProjectCreate(name="Mine", owner_user_id=agent.id), agent)
        updated = crud.update_project(
            db, project.id, schemas.ProjectUpdate(visibility=ProjectVisibility.PRIVATE), agent
        )
        assert updated.visibility == ProjectVisibility.PRIVATE

    def test_default_project_stays_public(self, db, admin):
        """Test that the default project cannot be made private."""
        with pytest.raises(ConflictError):
            crud.update_project(
                db, DEFAULT_PROJECT_ID, schemas.ProjectUpdate(visibility=ProjectVisibility.PRIVATE), admin
            )

    def test_private_project_owner_cannot_be_cleared(self, db, agent):
        """Test that clearing the owner of a private project is rejected."""
        project = crud.create_project(
            db, schemas.ProjectCreate(name="Payroll", visibility=ProjectVisibility.PRIVATE), agent
        )
        with pytest.raises(FieldValidationError):
            crud.update_project(db, project.id, schemas.ProjectUpdate(owner_user_id=None), agent)

    def test_unknown_project_returns_none(self, db, agent):
        """Test that updating a missing project returns None."""
        assert crud.update_project(db, "missing", schemas.ProjectUpdate(name="x"), agent) is None


class TestDeleteProject:
    """Test project deletion guards."""

    def test_default_project_cannot_be_removed(self, db, admin):
        """Test that deleting the default project is a conflict."""
        with pytest.raises(ConflictError) as exc_info:
            crud.delete_project(db, DEFAULT_PROJECT_ID, admin)
        assert exc_info.value.reason == "Default project cannot be removed"

    def test_project_with_tickets_cannot_be_removed(self, db, agent, make_ticket, ops_project):
        """Test that a referenced project is kept."""
        make_ticket(agent, project_id=ops_project.id)
        with pytest.raises(ConflictError):
            crud.delete_project(db, ops_project.id, agent)
        assert crud.get_project(db, ops_project.id) is not None

    def test_empty_project_removed(self, db, agent, ops_project):
        """Test that an unreferenced project is deleted."""
        project_id = ops_project.id
        assert crud.delete_project(db, project_id, agent) is True
        assert crud.get_project(db, project_id) is None
        assert crud.delete_project(db, project_id, agent) is False


class TestListProjects:
    """Test project visibility in listings."""

    def test_private_projects_hidden(self, db, admin, agent, user):
        """Test that private projects show only to owner and admins."""
        crud.create_project(db, schemas.ProjectCreate(name="Secret", visibility=ProjectVisibility.PRIVATE), agent)

        assert "Secret" not in {p.name for p in crud.list_projects(db, user)}
        assert "Secret" in {p.name for p in crud.list_projects(db, agent)}
        assert "Secret" in {p.name for p in crud.list_projects(db, admin)}


if __name__ == "__main__":
    pytest.main([__file__, "-v"])

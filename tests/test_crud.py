"""Tests for users, organizations, projects and branches."""
import pytest

from mbee_core import crud, elements, models
from mbee_core.errors import ConflictError, ForbiddenError, NotFoundError, PermissionDeniedError, ValidationError
from mbee_core.permissions import AuthContext

from conftest import BRANCH_ID, ORG, PROJECT, eid


class TestUsersAndOrganizations:
    """Test user and organization setup."""

    def test_duplicate_user(self, db, admin):
        with pytest.raises(ConflictError):
            crud.create_user(db, {"id": "admin"})

    def test_only_admins_create_organizations(self, db):
        user = crud.create_user(db, {"id": "plain"})
        with pytest.raises(PermissionDeniedError):
            crud.create_organization(db, AuthContext.for_user(user), {"id": "org2"})

    def test_invalid_organization_id(self, db, admin):
        with pytest.raises(ValidationError):
            crud.create_organization(db, admin, {"id": "Bad:Org"})

    def test_creator_is_organization_admin(self, db, admin, project):
        member = (
            db.query(models.OrganizationMember)
            .filter(models.OrganizationMember.organization_id == ORG)
            .one()
        )
        assert member.user_id == "admin"
        assert member.permission == models.Permission.ADMIN

    def test_membership_update(self, db, admin, project):
        """Test that granting again changes the permission level."""
        crud.create_user(db, {"id": "u1"})
        crud.add_organization_member(db, admin, ORG, {"user_id": "u1", "permission": "read"})
        member = crud.add_organization_member(db, admin, ORG, {"user_id": "u1", "permission": "write"})
        assert member.permission == models.Permission.WRITE

    def test_member_of_unknown_user(self, db, admin, project):
        with pytest.raises(NotFoundError):
            crud.add_project_member(db, admin, project.id, {"user_id": "ghost"})


class TestCreateProject:
    """Test project creation."""

    def test_master_branch_and_root_elements(self, db, admin, project):
        """Test that a new project starts with the four root elements."""
        branch = crud.get_branch(db, admin, ORG, PROJECT, "master")
        assert branch.id == BRANCH_ID
        assert branch.tag is False

        found = {e.id: e for e in elements.find(db, admin, ORG, PROJECT, "master")}
        assert set(found) == {eid("model"), eid("__mbee__"), eid("holding_bin"), eid("undefined")}
        assert found[eid("model")].parent is None
        assert found[eid("__mbee__")].parent == eid("model")
        assert found[eid("holding_bin")].parent == eid("__mbee__")
        assert found[eid("undefined")].parent == eid("__mbee__")
        assert found[eid("undefined")].name == "undefined element"

    def test_creator_is_project_admin(self, db, admin, project):
        member = db.query(models.ProjectMember).filter(models.ProjectMember.project_id == project.id).one()
        assert member.permission == models.Permission.ADMIN

    def test_duplicate_project(self, db, admin, project):
        with pytest.raises(ConflictError):
            crud.create_project(db, admin, ORG, {"id": PROJECT})

    def test_unknown_organization(self, db, admin):
        with pytest.raises(NotFoundError):
            crud.create_project(db, admin, "ghost", {"id": "p"})

    def test_org_reader_cannot_create_projects(self, db, admin, project):
        crud.create_user(db, {"id": "u1"})
        crud.add_organization_member(db, admin, ORG, {"user_id": "u1"})
        with pytest.raises(PermissionDeniedError):
            crud.create_project(db, AuthContext(user_id="u1"), ORG, {"id": "p2"})


class TestBranches:
    """Test branch creation, lookup and removal."""

    @pytest.fixture
    def populated(self, db, admin, project):
        elements.create(db, admin, ORG, PROJECT, "master", [
            {"id": "e1", "name": "One"},
            {"id": "e2", "parent": "e1"},
            {"id": "e3"},
        ])
        elements.create(db, admin, ORG, PROJECT, "master", {"id": "rel", "source": "e2", "target": "e3"})

    def test_branch_copies_elements(self, db, admin, populated):
        """Test that a branch gets its own copies with rewritten references."""
        branch = crud.create_branch(db, admin, ORG, PROJECT, {"id": "dev", "name": "Development"})
        assert branch.source == BRANCH_ID

        dev = f"{ORG}:{PROJECT}:dev"
        found = {e.id: e for e in elements.find(db, admin, ORG, PROJECT, "dev")}
        assert len(found) == 8
        assert found[eid("e2", dev)].parent == eid("e1", dev)
        assert found[eid("rel", dev)].source == eid("e2", dev)
        assert found[eid("rel", dev)].target == eid("e3", dev)
        assert found[eid("model", dev)].parent is None

    def test_branches_are_independent(self, db, admin, populated):
        crud.create_branch(db, admin, ORG, PROJECT, {"id": "dev"})
        elements.update(db, admin, ORG, PROJECT, "dev", {"id": "e1", "name": "Changed"})
        assert elements.find(db, admin, ORG, PROJECT, "master", "e1")[0].name == "One"
        assert elements.find(db, admin, ORG, PROJECT, "dev", "e1")[0].name == "Changed"

    def test_removal_repairs_within_branch(self, db, admin, populated):
        """Test that a delete on a branch repoints to that branch's sentinel."""
        crud.create_branch(db, admin, ORG, PROJECT, {"id": "dev"})
        elements.remove(db, admin, ORG, PROJECT, "dev", "e2")

        dev = f"{ORG}:{PROJECT}:dev"
        assert elements.find(db, admin, ORG, PROJECT, "dev", "rel")[0].source == eid("undefined", dev)
        assert elements.find(db, admin, ORG, PROJECT, "master", "rel")[0].source == eid("e2")

    def test_duplicate_branch(self, db, admin, project):
        crud.create_branch(db, admin, ORG, PROJECT, {"id": "dev"})
        with pytest.raises(ConflictError):
            crud.create_branch(db, admin, ORG, PROJECT, {"id": "dev"})

    def test_unknown_source_branch(self, db, admin, project):
        with pytest.raises(NotFoundError):
            crud.create_branch(db, admin, ORG, PROJECT, {"id": "dev", "source": "ghost"})

    def test_find_branches(self, db, admin, project):
        crud.create_branch(db, admin, ORG, PROJECT, {"id": "dev"})
        crud.create_branch(db, admin, ORG, PROJECT, {"id": "v1", "tag": True})
        branches = crud.find_branches(db, admin, ORG, PROJECT)
        assert [b.id for b in branches] == [f"{ORG}:{PROJECT}:dev", BRANCH_ID, f"{ORG}:{PROJECT}:v1"]

    def test_remove_branch(self, db, admin, populated):
        crud.create_branch(db, admin, ORG, PROJECT, {"id": "dev"})
        assert crud.remove_branch(db, admin, ORG, PROJECT, "dev") == f"{ORG}:{PROJECT}:dev"
        assert db.query(models.Element).filter(models.Element.branch_id == f"{ORG}:{PROJECT}:dev").count() == 0
        with pytest.raises(NotFoundError):
            crud.get_branch(db, admin, ORG, PROJECT, "dev")

    def test_master_cannot_be_removed(self, db, admin, project):
        with pytest.raises(ForbiddenError):
            crud.remove_branch(db, admin, ORG, PROJECT, "master")

"""Tests for branch mutability checks."""
import pytest

from mbee_core import crud, elements
from mbee_core.branch_guard import BranchAction, assert_mutable
from mbee_core.errors import ArchivedError, BranchImmutableError, ForbiddenError, NotFoundError

from conftest import BRANCH_ID, ORG, PROJECT


class TestAssertMutable:
    """Test gating writes by branch state."""

    def test_working_branch_is_mutable(self, db, project):
        branch = assert_mutable(db, BRANCH_ID, BranchAction.CREATE)
        assert branch.id == BRANCH_ID

    def test_missing_branch(self, db, project):
        with pytest.raises(NotFoundError):
            assert_mutable(db, f"{ORG}:{PROJECT}:nope", BranchAction.UPDATE)

    @pytest.mark.parametrize("action", ["creating", "updating", "deleting"])
    def test_tag_rejects_every_write(self, db, admin, project, action):
        """Test that a tag rejects writes with the branch and action named."""
        crud.create_branch(db, admin, ORG, PROJECT, {"id": "v1", "tag": True})
        with pytest.raises(BranchImmutableError) as exc_info:
            assert_mutable(db, f"{ORG}:{PROJECT}:v1", action)
        assert "v1" in exc_info.value.message
        assert action in exc_info.value.message
        assert exc_info.value.status_code == 403

    def test_archived_branch_rejected(self, db, admin, project):
        branch = crud.create_branch(db, admin, ORG, PROJECT, {"id": "old"})
        branch.archived = True
        db.commit()
        with pytest.raises(ArchivedError):
            assert_mutable(db, branch.id, BranchAction.CREATE)


class TestTagOperations:
    """Test element operations on a tag."""

    @pytest.fixture
    def tag(self, db, admin, project):
        elements.create(db, admin, ORG, PROJECT, "master", {"id": "e1", "name": "Before tag"})
        return crud.create_branch(db, admin, ORG, PROJECT, {"id": "v1", "tag": True})

    def test_create_on_tag(self, db, admin, tag):
        """Test that creating on a tag is forbidden and names the branch."""
        with pytest.raises(ForbiddenError) as exc_info:
            elements.create(db, admin, ORG, PROJECT, "v1", {"id": "e2"})
        assert "v1" in exc_info.value.message
        assert "creating" in exc_info.value.message

    def test_update_on_tag(self, db, admin, tag):
        with pytest.raises(BranchImmutableError, match="updating"):
            elements.update(db, admin, ORG, PROJECT, "v1", {"id": "e1", "name": "After"})

    def test_remove_on_tag(self, db, admin, tag):
        with pytest.raises(BranchImmutableError, match="deleting"):
            elements.remove(db, admin, ORG, PROJECT, "v1", "e1")

    def test_reads_allowed_on_tag(self, db, admin, tag):
        """Test that tags remain readable."""
        found = elements.find(db, admin, ORG, PROJECT, "v1", "e1")
        assert len(found) == 1
        assert found[0].name == "Before tag"
        assert elements.search(db, admin, ORG, PROJECT, "v1", "before")[0].id == f"{ORG}:{PROJECT}:v1:e1"

"""Tests for element payload and option validation."""
from types import SimpleNamespace

import pytest

from mbee_core.errors import ValidationError
from mbee_core.validators import (
    check_relationship,
    merge_custom,
    validate_create_payload,
    validate_find_options,
    validate_search_options,
    validate_update_payload,
)

BRANCH_ID = "org:proj:master"


def stored_element(**overrides):
    """A stand-in for a stored element row."""
    values = dict(
        id=f"{BRANCH_ID}:e1",
        name="Element",
        documentation="",
        type="Block",
        parent=f"{BRANCH_ID}:model",
        source=None,
        target=None,
        custom={"a": {"x": 1}, "b": 2},
        archived=False,
        project_id="org:proj",
        branch_id=BRANCH_ID,
        archived_by=None,
        archived_on=None,
        created_by="admin",
        created_on=None,
        last_modified_by="admin",
        updated_on=None,
    )
    values.update(overrides)
    return SimpleNamespace(**values)


class TestCreatePayload:
    """Test create payload validation."""

    def test_minimal_payload(self):
        """Test that an id alone is a valid element."""
        element = validate_create_payload({"id": "e1"})
        assert element.id == "e1"
        assert element.name == ""
        assert element.parent is None
        assert element.custom == {}

    def test_missing_id_rejected(self):
        """Test that an id is required."""
        with pytest.raises(ValidationError, match="does not have an id"):
            validate_create_payload({"name": "No id"})

    @pytest.mark.parametrize("bad_id", ["has space", "a:b", "", "x" * 256, "e1\n"])
    def test_invalid_id_rejected(self, bad_id):
        """Test that ids must match the configured pattern."""
        with pytest.raises(ValidationError):
            validate_create_payload({"id": bad_id})

    @pytest.mark.parametrize("bad_name", ["bad\x01name", "bad\n", "x" * 256])
    def test_invalid_name_rejected(self, bad_name):
        """Test that names cannot contain control characters or exceed 255 characters."""
        with pytest.raises(ValidationError, match="element name"):
            validate_create_payload({"id": "e1", "name": bad_name})

    def test_unknown_key_rejected(self):
        """Test that keys outside the element schema are rejected."""
        with pytest.raises(ValidationError, match="colour"):
            validate_create_payload({"id": "e1", "colour": "red"})

    def test_custom_must_be_object(self):
        """Test that custom data must be a JSON object."""
        with pytest.raises(ValidationError, match="custom"):
            validate_create_payload({"id": "e1", "custom": ["not", "an", "object"]})

    def test_source_requires_target(self):
        """Test that a source without a target is rejected."""
        with pytest.raises(ValidationError, match="target is required"):
            validate_create_payload({"id": "e1", "source": "e2"})

    def test_target_requires_source(self):
        """Test that a target without a source is rejected."""
        with pytest.raises(ValidationError, match="source is required"):
            validate_create_payload({"id": "e1", "target": "e2"})

    def test_namespace_requires_reference(self):
        """Test that a namespace cannot be given without its reference."""
        with pytest.raises(ValidationError, match="source_namespace"):
            validate_create_payload({"id": "e1", "source_namespace": {"org": "o", "project": "p"}})


class TestRelationship:
    """Test the final relationship checks."""

    def test_self_source_rejected(self):
        """Test that an element cannot be its own source."""
        with pytest.raises(ValidationError, match="source cannot be itself"):
            check_relationship("o:p:b:e1", "o:p:b:e1", "o:p:b:e2")

    def test_self_target_rejected(self):
        """Test that an element cannot be its own target."""
        with pytest.raises(ValidationError, match="target cannot be itself"):
            check_relationship("o:p:b:e1", "o:p:b:e2", "o:p:b:e1")

    def test_pairing_checked_before_self_loop(self):
        """Test that a missing target is reported before a self-loop."""
        with pytest.raises(ValidationError, match="target is required"):
            check_relationship("o:p:b:e1", "o:p:b:e1", None)


class TestUpdatePayload:
    """Test update diffing against the stored element."""

    def test_only_changed_fields_reported(self):
        """Test that unchanged values produce no changes."""
        patch = validate_update_payload(
            {"id": "e1", "name": "Element", "type": "Part"},
            stored_element(),
            BRANCH_ID,
        )
        assert patch.changes == {"type": "Part"}
        assert patch.archive_transition is None

    def test_read_only_field_echo_allowed(self):
        """Test that read-only fields may be sent back unchanged."""
        patch = validate_update_payload(
            {"id": "e1", "created_by": "admin", "project_id": "org:proj"},
            stored_element(),
            BRANCH_ID,
        )
        assert patch.changes == {}

    def test_read_only_field_change_rejected(self):
        """Test that changing a read-only field is rejected."""
        with pytest.raises(ValidationError, match=r"\[created_by\] cannot be changed"):
            validate_update_payload({"id": "e1", "created_by": "someone"}, stored_element(), BRANCH_ID)

    def test_unknown_field_rejected(self):
        """Test that fields outside the model are rejected."""
        with pytest.raises(ValidationError, match="Invalid element properties"):
            validate_update_payload({"id": "e1", "weight": 3}, stored_element(), BRANCH_ID)

    def test_custom_is_deep_merged(self):
        """Test that custom data merges into the stored value."""
        existing = stored_element()
        patch = validate_update_payload({"id": "e1", "custom": {"a": {"y": 2}}}, existing, BRANCH_ID)
        assert patch.changes["custom"] == {"a": {"x": 1, "y": 2}, "b": 2}
        # Stored value untouched
        assert existing.custom == {"a": {"x": 1}, "b": 2}

    def test_custom_must_be_object(self):
        """Test that custom data in a patch must be an object."""
        with pytest.raises(ValidationError):
            validate_update_payload({"id": "e1", "custom": "text"}, stored_element(), BRANCH_ID)

    def test_archive_transition_flagged(self):
        """Test that archiving is reported as a transition."""
        patch = validate_update_payload({"id": "e1", "archived": True}, stored_element(), BRANCH_ID)
        assert patch.archive_transition is True
        assert patch.changes == {"archived": True}

    def test_references_resolved_before_diff(self):
        """Test that local references are compared as compound ids."""
        patch = validate_update_payload({"id": "e1", "parent": "model"}, stored_element(), BRANCH_ID)
        assert patch.changes == {}

        patch = validate_update_payload({"id": "e1", "source": "e2", "target": "e3"}, stored_element(), BRANCH_ID)
        assert patch.changes == {"source": f"{BRANCH_ID}:e2", "target": f"{BRANCH_ID}:e3"}
        assert patch.references_changed

    def test_namespaced_reference(self):
        """Test that a namespace moves the reference into another project."""
        patch = validate_update_payload(
            {
                "id": "e1",
                "source": "ext",
                "source_namespace": {"org": "org", "project": "other"},
                "target": "e3",
            },
            stored_element(),
            BRANCH_ID,
        )
        assert patch.changes["source"] == "org:other:master:ext"
        assert set(patch.external_refs) == {"source"}

    def test_compound_references_accepted(self):
        """Test that references echoed back as compound ids resolve like local ones."""
        patch = validate_update_payload(
            {"id": "e1", "parent": f"{BRANCH_ID}:model"}, stored_element(), BRANCH_ID
        )
        assert patch.changes == {}

        patch = validate_update_payload(
            {"id": "e1", "source": "org:other:master:ext", "target": f"{BRANCH_ID}:e3"},
            stored_element(),
            BRANCH_ID,
        )
        assert patch.changes == {"source": "org:other:master:ext", "target": f"{BRANCH_ID}:e3"}
        assert patch.external_refs["source"].project == "other"
        assert "target" not in patch.external_refs

    def test_compound_parent_on_other_branch_rejected(self):
        with pytest.raises(ValidationError, match="must be on the branch"):
            validate_update_payload({"id": "e1", "parent": "org:proj:dev:e2"}, stored_element(), BRANCH_ID)

    @pytest.mark.parametrize("bad_ref", ["org:proj:e2", "org:proj:master:bad id", "a::b:c"])
    def test_malformed_compound_reference_rejected(self, bad_ref):
        with pytest.raises(ValidationError, match="Invalid element ID"):
            validate_update_payload({"id": "e1", "parent": bad_ref}, stored_element(), BRANCH_ID)

    def test_null_parent_rejected(self):
        """Test that the parent cannot be cleared."""
        with pytest.raises(ValidationError, match="parent"):
            validate_update_payload({"id": "e1", "parent": None}, stored_element(), BRANCH_ID)


class TestMergeCustom:
    """Test deep-merging custom data."""

    def test_nested_merge(self):
        base = {"mbee": {"broken_relationships": []}, "color": "red"}
        assert merge_custom(base, {"mbee": {"note": "x"}, "color": "blue"}) == {
            "mbee": {"broken_relationships": [], "note": "x"},
            "color": "blue",
        }

    def test_none_base(self):
        assert merge_custom(None, {"a": 1}) == {"a": 1}


class TestOptions:
    """Test option validation."""

    def test_defaults(self):
        """Test the default find options."""
        options = validate_find_options(None)
        assert options.archived is False
        assert options.limit == 0
        assert options.populate == []

    def test_subtree_and_rootpath_exclusive(self):
        """Test that subtree and rootpath cannot be combined."""
        with pytest.raises(ValidationError, match="subtree"):
            validate_find_options({"subtree": True, "rootpath": True})

    def test_unknown_populate_field_rejected(self):
        """Test that only the known reference fields can be populated."""
        with pytest.raises(ValidationError, match="populate"):
            validate_find_options({"populate": ["children"]})

    def test_unknown_option_rejected(self):
        """Test that unknown option names are rejected."""
        with pytest.raises(ValidationError):
            validate_search_options({"subtree": True})

    def test_mixed_fields_rejected(self):
        """Test that included and excluded fields cannot be mixed."""
        with pytest.raises(ValidationError):
            validate_find_options({"fields": ["name", "-type"]})

    def test_sort_on_custom_rejected(self):
        with pytest.raises(ValidationError):
            validate_search_options({"sort": "custom"})

# tests/test_models.py
"""Tests for the data models used by the notd core."""
import pytest
from pydantic import ValidationError

from notd_core.models.schema import (CreateNotePayload, DeleteNotePayload,
                                     OperationType, PropertyBehavior,
                                     PropertyDefinition, UpdateNotePayload)


class TestPropertyBehavior:
    """Weight classification."""

    @pytest.mark.parametrize("weight,behavior", [
        (2, PropertyBehavior.REPLACEABLE),
        (3, PropertyBehavior.REPLACEABLE),
        (4, PropertyBehavior.APPENDABLE),
        (7, PropertyBehavior.APPENDABLE),
    ])
    def test_from_weight(self, weight, behavior):
        assert PropertyBehavior.from_weight(weight) is behavior

    def test_operation_types_in_phase_order(self):
        assert [t.value for t in OperationType] == ["delete", "create", "update"]


class TestPropertyDefinition:
    def test_name_is_stripped(self):
        assert PropertyDefinition(name="  secret ", internal=True).name == "secret"

    def test_blank_name_rejected(self):
        with pytest.raises(ValidationError):
            PropertyDefinition(name="   ")


class TestCreateNotePayload:
    """Payload of a create operation."""

    def test_page_name_is_enough(self):
        payload = CreateNotePayload.model_validate({"page_name": "Journal"})
        assert payload.content == ""
        assert payload.collapsed is False

    def test_null_content_is_empty(self):
        payload = CreateNotePayload.model_validate({"page_id": 1, "content": None})
        assert payload.content == ""

    def test_page_is_required(self):
        with pytest.raises(ValidationError):
            CreateNotePayload.model_validate({"content": "orphan"})
        with pytest.raises(ValidationError):
            CreateNotePayload.model_validate({"page_name": "   "})

    @pytest.mark.parametrize("temp_id", ["", "  ", "123"])
    def test_bad_temp_ids(self, temp_id):
        with pytest.raises(ValidationError):
            CreateNotePayload.model_validate({"page_id": 1, "client_temp_id": temp_id})

    def test_temp_id_is_stripped(self):
        payload = CreateNotePayload.model_validate({"page_id": 1, "client_temp_id": " n1 "})
        assert payload.client_temp_id == "n1"

    def test_negative_order_index_rejected(self):
        with pytest.raises(ValidationError):
            CreateNotePayload.model_validate({"page_id": 1, "order_index": -1})

    @pytest.mark.parametrize("parent", [0, -4, "  "])
    def test_bad_parent_refs(self, parent):
        with pytest.raises(ValidationError):
            CreateNotePayload.model_validate({"page_id": 1, "parent_note_id": parent})

    def test_parent_may_be_temp_id(self):
        payload = CreateNotePayload.model_validate({"page_id": 1, "parent_note_id": "tmp-1"})
        assert payload.parent_note_id == "tmp-1"

    def test_unknown_keys_ignored(self):
        payload = CreateNotePayload.model_validate({"page_id": 1, "colour": "red"})
        assert not hasattr(payload, "colour")


class TestUpdateNotePayload:
    """Only supplied fields count as updates."""

    def test_no_fields(self):
        assert UpdateNotePayload.model_validate({"id": 1}).updated_fields() == set()

    def test_null_parent_counts(self):
        payload = UpdateNotePayload.model_validate({"id": 1, "parent_note_id": None})
        assert payload.updated_fields() == {"parent_note_id"}

    def test_null_content_does_not_count(self):
        payload = UpdateNotePayload.model_validate({"id": 1, "content": None})
        assert payload.updated_fields() == set()

    def test_false_collapsed_counts(self):
        payload = UpdateNotePayload.model_validate({"id": "tmp", "collapsed": False})
        assert payload.updated_fields() == {"collapsed"}

    def test_temp_id_is_not_an_update(self):
        payload = UpdateNotePayload.model_validate(
            {"id": 1, "client_temp_id": "x", "content": "c"}
        )
        assert payload.updated_fields() == {"content"}

    def test_id_required(self):
        with pytest.raises(ValidationError):
            UpdateNotePayload.model_validate({"content": "x"})


class TestDeleteNotePayload:
    def test_id_required(self):
        with pytest.raises(ValidationError):
            DeleteNotePayload.model_validate({})

    def test_zero_id_rejected(self):
        with pytest.raises(ValidationError):
            DeleteNotePayload.model_validate({"id": 0})

"""Tests for the exception hierarchy and small helpers."""
import pytest

from notd_core.exceptions import (BatchExecutionError, BatchValidationError,
                                  ErrorCode, InvalidParentError,
                                  NoteHasChildrenError, NoteNotFoundError,
                                  NotdError, PageNotFoundError,
                                  PropertyNotFoundError, StorageError,
                                  UnresolvedTempIdError, ValidationError)
from notd_core.utils import (is_real_id, is_true_value, is_truthy,
                             resolve_note_ref)


class TestNotdError:
    def test_to_dict(self):
        error = NoteHasChildrenError(4, 2)
        assert error.to_dict() == {
            "error": "NoteHasChildrenError",
            "code": 1002,
            "code_name": "NOTE_HAS_CHILDREN",
            "message": "Cannot delete note 4 because it has child notes",
            "details": {"note_id": 4, "child_count": 2},
        }

    def test_str_includes_details(self):
        assert str(ValidationError("bad", field="weight", value=1)) == (
            "[VALIDATION_FAILED] bad (field=weight, value=1)"
        )
        assert str(NotdError("plain")) == "[VALIDATION_FAILED] plain"

    def test_storage_error_truncates_original(self):
        error = StorageError("commit failed", operation="run_batch",
                             code=ErrorCode.STORAGE_WRITE_FAILED,
                             original_error=RuntimeError("x" * 500))
        assert len(error.details["original_error"]) == 200

    def test_every_error_code_has_a_raiser(self):
        errors = [
            NoteNotFoundError(1), NoteHasChildrenError(1, 1), InvalidParentError("x"),
            PageNotFoundError("Inbox"), PropertyNotFoundError("note", 1, "p"),
            UnresolvedTempIdError("t"), BatchValidationError([]), BatchExecutionError(0),
            StorageError("x"), StorageError("x", code=ErrorCode.STORAGE_WRITE_FAILED),
            ValidationError("x"), ValidationError("x", code=ErrorCode.INVALID_OWNER_TYPE),
        ]
        assert {e.code for e in errors} == set(ErrorCode)

    def test_batch_validation_keeps_every_violation(self):
        violations = [{"index": i, "message": "bad"} for i in range(15)]
        error = BatchValidationError(violations)

        assert error.message == "Batch rejected: 15 invalid operations"
        assert len(error.violations) == 15
        assert len(error.details["violations"]) == 10
        assert error.details["violation_count"] == 15

    def test_single_violation_message(self):
        assert BatchValidationError([{"index": 0, "message": "x"}]).message == (
            "Batch rejected: 1 invalid operation"
        )

    def test_batch_execution_error(self):
        error = BatchExecutionError(3, RuntimeError("disk"), "update")
        assert error.operation_index == 3
        assert error.details == {
            "operation_index": 3, "operation_type": "update", "original_error": "disk",
        }
        assert error.code is ErrorCode.BATCH_EXECUTION_FAILED


class TestIsTruthy:
    @pytest.mark.parametrize("value", [True, "true", " TRUE ", "1", "yes", "On"])
    def test_truthy(self, value):
        assert is_truthy(value)

    @pytest.mark.parametrize("value", [False, None, "", "false", "0", "nope", "y"])
    def test_falsy(self, value):
        assert not is_truthy(value)

    @pytest.mark.parametrize("value,expected", [
        ("true", True), (" True ", True), (True, True),
        ("yes", False), ("on", False), ("1", False), (None, False),
    ])
    def test_strict_true(self, value, expected):
        assert is_true_value(value) is expected


class TestNoteRefs:
    @pytest.mark.parametrize("ref,expected", [
        (5, True), ("12", True), (" 7 ", True),
        ("n1", False), ("1a", False), ("", False), (True, False),
    ])
    def test_is_real_id(self, ref, expected):
        assert is_real_id(ref) is expected

    def test_resolve_real_id(self):
        assert resolve_note_ref("42", {}) == 42
        assert resolve_note_ref(42, {"42": 1}) == 42

    def test_resolve_temp_id(self):
        assert resolve_note_ref(" n1 ", {"n1": 9}) == 9

    def test_unresolved_temp_id(self):
        with pytest.raises(UnresolvedTempIdError) as exc:
            resolve_note_ref("ghost", {})
        assert exc.value.code is ErrorCode.TEMP_ID_UNRESOLVED
        assert exc.value.temp_id == "ghost"

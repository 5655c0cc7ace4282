"""Batch note mutations.

A batch is a list of ``{"type": "create"|"update"|"delete", "payload": {...}}``
operations applied in one transaction. Operations may refer to notes
created earlier in the same batch through client-minted temporary ids.

Execution order is fixed by phase (all deletes, then creates, then
updates), keeping input order within a phase. Results come back in input
order. Each operation runs in its own savepoint: a business-rule failure
(any ``NotdError``) undoes only that operation and becomes an error
result, while any other exception rolls back the whole batch and is
raised as ``BatchExecutionError``.
"""
import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.exc import SQLAlchemyError

from notd_core.config import config
from notd_core.exceptions import (BatchExecutionError, BatchValidationError,
                                  ErrorCode, NotdError, StorageError)
from notd_core.models.schema import (PAYLOAD_MODELS, CreateNotePayload,
                                     DeleteNotePayload, OperationType,
                                     OwnerType, UpdateNotePayload, utc_now)
from notd_core.observability import timed_operation
from notd_core.services.notifier import (default_notifier, deliver,
                                         discard_since, outbox_mark,
                                         take_outbox)
from notd_core.services.property_indexer import PropertyIndexer
from notd_core.storage.note_repository import NoteRepository
from notd_core.utils import resolve_note_ref

logger = logging.getLogger(__name__)

# Execution phases; OperationType is declared in this order
PHASE_ORDER = tuple(OperationType)

TempIdMap = Dict[str, int]


@dataclass
class PlannedOperation:
    """A structurally valid operation, remembered with its input position."""

    index: int
    type: OperationType
    payload: Any


def _format_pydantic_error(error: Dict[str, Any]) -> str:
    location = ".".join(str(part) for part in error.get("loc", ()) if part != "__root__")
    message = error.get("msg", "invalid value")
    if message.startswith("Value error, "):
        message = message[len("Value error, "):]
    return f"{location}: {message}" if location else message


def validate_batch(operations, max_operations: Optional[int] = None) -> List[PlannedOperation]:
    """Check a batch's structure without touching the store.

    Returns:
        The operations as PlannedOperation, in input order.

    Raises:
        BatchValidationError: Listing every violation found.
    """
    if not isinstance(operations, list):
        raise BatchValidationError([
            {"index": None, "message": "operations must be a list"}
        ])

    limit = config.max_batch_operations if max_operations is None else max_operations
    violations: List[Dict[str, Any]] = []
    if len(operations) > limit:
        violations.append({
            "index": None,
            "message": f"batch has {len(operations)} operations, the limit is {limit}",
        })

    planned: List[PlannedOperation] = []
    temp_ids_seen: Dict[str, int] = {}
    for index, operation in enumerate(operations):
        if not isinstance(operation, dict):
            violations.append({"index": index, "message": "operation must be an object"})
            continue

        raw_type = operation.get("type")
        try:
            op_type = OperationType(str(raw_type).strip().lower())
        except ValueError:
            violations.append({
                "index": index,
                "message": f"unrecognized operation type {raw_type!r}; expected one of "
                           f"{', '.join(t.value for t in OperationType)}",
            })
            op_type = None

        raw_payload = operation.get("payload")
        if not isinstance(raw_payload, dict):
            violations.append({"index": index, "message": "payload must be an object"})
            continue
        if op_type is None:
            continue

        try:
            payload = PAYLOAD_MODELS[op_type].model_validate(raw_payload)
        except PydanticValidationError as e:
            for error in e.errors():
                violations.append({"index": index, "message": _format_pydantic_error(error)})
            continue

        if op_type is OperationType.CREATE and payload.client_temp_id:
            first = temp_ids_seen.setdefault(payload.client_temp_id, index)
            if first != index:
                violations.append({
                    "index": index,
                    "message": f"client_temp_id '{payload.client_temp_id}' "
                               f"already used by operation {first}",
                })
                continue

        planned.append(PlannedOperation(index, op_type, payload))

    if violations:
        raise BatchValidationError(violations)
    return planned


class BatchService:
    """Applies batches of note mutations."""

    def __init__(self, session_factory, indexer: Optional[PropertyIndexer] = None,
                 notifier=None, notes: Optional[NoteRepository] = None):
        self.session_factory = session_factory
        self.indexer = indexer or PropertyIndexer()
        self.notifier = notifier or default_notifier()
        self.notes = notes or NoteRepository()
        self._handlers: Dict[OperationType, Callable[..., Dict[str, Any]]] = {
            OperationType.DELETE: self._delete_note,
            OperationType.CREATE: self._create_note,
            OperationType.UPDATE: self._update_note,
        }

    def run_batch(self, operations, include_internal: bool = False) -> List[Dict[str, Any]]:
        """Apply a batch and return one result per operation, in input order.

        Args:
            operations: List of ``{"type", "payload"}`` dicts.
            include_internal: Include internal property rows in note results.

        Raises:
            BatchValidationError: The batch is malformed; nothing was written.
            BatchExecutionError: An unexpected failure; nothing was written.
            StorageError: The final commit failed; nothing was written.
        """
        planned = validate_batch(operations)
        if not planned:
            return []

        results: List[Optional[Dict[str, Any]]] = [None] * len(planned)
        # Scoped to this call and handed to every operation helper
        temp_ids: TempIdMap = {}

        with timed_operation("run_batch") as op:
            op["operation_count"] = len(planned)
            with self.session_factory() as session:
                try:
                    for phase in PHASE_ORDER:
                        for item in planned:
                            if item.type is phase:
                                results[item.index] = self._run_operation(
                                    session, item, temp_ids, include_internal
                                )
                except BatchExecutionError:
                    session.rollback()
                    take_outbox(session)
                    raise

                try:
                    session.commit()
                except SQLAlchemyError as e:
                    session.rollback()
                    take_outbox(session)
                    logger.error(f"Batch commit failed: {e}")
                    raise StorageError(
                        f"Batch commit failed: {e}",
                        operation="run_batch",
                        code=ErrorCode.STORAGE_WRITE_FAILED,
                        original_error=e,
                    ) from e
                notifications = take_outbox(session)

            deliver(self.notifier, notifications)
            errors = sum(1 for r in results if r and r["status"] == "error")
            op["error_count"] = errors
            logger.info(f"Batch applied: {len(planned)} operations, {errors} errors")

        return results

    def _run_operation(self, session, item: PlannedOperation, temp_ids: TempIdMap,
                       include_internal: bool) -> Dict[str, Any]:
        """Run one operation in a savepoint and build its result."""
        payload = item.payload
        mark = outbox_mark(session)
        try:
            with session.begin_nested():
                result = self._handlers[item.type](session, payload, temp_ids, include_internal)
        except NotdError as e:
            discard_since(session, mark)
            logger.warning(f"Batch operation {item.index} ({item.type.value}) failed: {e.message}")
            result = {"type": item.type.value, "status": "error", "message": e.message}
            ref = getattr(payload, "id", None)
            if ref is not None:
                result["id"] = ref
        except Exception as e:
            logger.error(
                f"Batch operation {item.index} ({item.type.value}) failed unexpectedly: {e}",
                exc_info=True,
            )
            raise BatchExecutionError(item.index, e, item.type.value) from e

        if payload.client_temp_id:
            result["client_temp_id"] = payload.client_temp_id
        return result

    def _note_result(self, session, note, include_internal: bool) -> Dict[str, Any]:
        props = self.indexer.properties.get_map(
            session, OwnerType.NOTE, note.id, include_internal=include_internal
        )
        return self.notes.note_to_dict(note, props)

    def _delete_note(self, session, payload: DeleteNotePayload, temp_ids: TempIdMap,
                     include_internal: bool) -> Dict[str, Any]:
        note_id = resolve_note_ref(payload.id, temp_ids)
        note = self.notes.get_note(session, note_id)
        self.notes.delete_note(session, note)
        return {"type": "delete", "status": "success", "deleted_note_id": note_id}

    def _create_note(self, session, payload: CreateNotePayload, temp_ids: TempIdMap,
                     include_internal: bool) -> Dict[str, Any]:
        page = self.notes.resolve_page(session, payload.page_id, payload.page_name)
        parent_id = None
        if payload.parent_note_id is not None:
            parent_id = resolve_note_ref(payload.parent_note_id, temp_ids)
            self.notes.check_parent(session, None, parent_id, page.id)

        note = self.notes.create_note(
            session,
            page_id=page.id,
            content=payload.content,
            parent_note_id=parent_id,
            order_index=payload.order_index,
            collapsed=payload.collapsed,
        )
        if payload.content.strip():
            self.indexer.reindex(session, OwnerType.NOTE, note.id, note.content)

        if payload.client_temp_id:
            temp_ids[payload.client_temp_id] = note.id
        return {"type": "create", "status": "success",
                "note": self._note_result(session, note, include_internal)}

    def _update_note(self, session, payload: UpdateNotePayload, temp_ids: TempIdMap,
                     include_internal: bool) -> Dict[str, Any]:
        note_id = resolve_note_ref(payload.id, temp_ids)
        note = self.notes.get_note(session, note_id)
        fields = payload.updated_fields()
        if not fields:
            return {"type": "update", "status": "warning", "id": note_id,
                    "message": "No updatable fields supplied"}

        moved = False
        if "page_id" in fields and payload.page_id != note.page_id:
            page = self.notes.get_page(session, payload.page_id)
            self.notes.move_to_page(session, note, page.id)
            if "parent_note_id" not in fields:
                note.parent_note_id = None
            moved = True

        if "parent_note_id" in fields:
            if payload.parent_note_id is None:
                note.parent_note_id = None
            else:
                parent_id = resolve_note_ref(payload.parent_note_id, temp_ids)
                self.notes.check_parent(session, note, parent_id, note.page_id)
                note.parent_note_id = parent_id
            moved = True

        if moved and "order_index" not in fields:
            note.order_index = self.notes.next_order_index(
                session, note.page_id, note.parent_note_id, exclude_id=note.id
            )

        if "order_index" in fields:
            self.notes.make_room(
                session, note.page_id, note.parent_note_id, payload.order_index,
                exclude_id=note.id,
            )
            note.order_index = payload.order_index

        if "collapsed" in fields:
            note.collapsed = bool(payload.collapsed)

        if "content" in fields:
            note.content = payload.content
            session.flush()
            self.indexer.reindex(session, OwnerType.NOTE, note.id, note.content)

        note.updated_at = utc_now()
        session.flush()
        return {"type": "update", "status": "success",
                "note": self._note_result(session, note, include_internal)}

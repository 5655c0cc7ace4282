"""MCP server exposing the notd core as tools."""

import json
import logging
import uuid
from typing import Optional

from mcp.server.fastmcp import FastMCP

from notd_core.config import config
from notd_core.exceptions import BatchValidationError, NotdError
from notd_core.models.db_models import get_session_factory
from notd_core.observability import metrics, timed_operation
from notd_core.services.batch_service import BatchService
from notd_core.services.definition_resolver import DefinitionResolver
from notd_core.services.notifier import default_notifier
from notd_core.services.property_indexer import PropertyIndexer
from notd_core.services.property_service import PropertyService
from notd_core.services.trigger_dispatcher import TriggerDispatcher

logger = logging.getLogger(__name__)


class NotdMcpServer:
    """MCP server for the notd core."""

    def __init__(self, engine=None, notifier=None):
        """Initialize the MCP server.

        Args:
            engine: Pre-configured SQLAlchemy engine shared by every service.
                When None, one is created from the global config.
            notifier: Receiver for trigger notifications. Defaults to a
                background logging notifier.
        """
        self.mcp = FastMCP(config.server_name)
        session_factory = get_session_factory(engine)
        self.notifier = notifier or default_notifier()

        dispatcher = TriggerDispatcher()
        self.definition_resolver = DefinitionResolver(
            session_factory, dispatcher=dispatcher, notifier=self.notifier
        )
        indexer = PropertyIndexer(resolver=self.definition_resolver, dispatcher=dispatcher)
        self.property_service = PropertyService(
            session_factory, indexer=indexer, notifier=self.notifier
        )
        self.batch_service = BatchService(
            session_factory, indexer=indexer, notifier=self.notifier
        )
        self._register_tools()
        logger.info("notd MCP server initialized")

    def format_error_response(self, error: Exception) -> str:
        """Format an error response in a consistent way.

        Args:
            error: The exception that occurred

        Returns:
            Formatted error message with appropriate level of detail
        """
        error_id = str(uuid.uuid4())[:8]

        if isinstance(error, BatchValidationError):
            logger.warning(f"[{error.code.name}] [{error_id}]: {error.message}")
            lines = [f"Error: {error.message}"]
            for violation in error.violations:
                where = "batch" if violation["index"] is None else f"operation {violation['index']}"
                lines.append(f"- {where}: {violation['message']}")
            return "\n".join(lines)
        elif isinstance(error, NotdError):
            logger.error(
                f"[{error.code.name}] [{error_id}]: {error.message}",
                extra={"error_details": error.details},
            )
            return f"Error: {error.message}"
        elif isinstance(error, ValueError):
            logger.error(f"Validation error [{error_id}]: {str(error)}")
            return f"Error: Invalid input (ref: {error_id})"
        else:
            logger.error(f"Unexpected error [{error_id}]: {str(error)}", exc_info=True)
            return f"Error: An unexpected error occurred (ref: {error_id})"

    def _register_tools(self) -> None:
        """Register MCP tools."""

        @self.mcp.tool(name="notd_batch")
        def notd_batch(operations: str, include_internal: bool = False) -> str:
            """Apply several note mutations in one transaction.

            Operations run deletes first, then creates, then updates. Results
            come back in input order, one per operation.

            Args:
                operations: JSON array of {"type": "create"|"update"|"delete", "payload": {...}}.
                    create: page_id or page_name, content, parent_note_id, order_index,
                            collapsed, client_temp_id
                    update: id, content, parent_note_id, order_index, collapsed, page_id
                    delete: id
                    Note references may be real ids or a client_temp_id from an
                    earlier create in the same batch.
                include_internal: Include internal properties in returned notes
            """
            with timed_operation("notd_batch") as op:
                try:
                    parsed = json.loads(operations)
                    results = self.batch_service.run_batch(parsed, include_internal=include_internal)
                    op["operation_count"] = len(results)
                    return json.dumps(results, indent=2, ensure_ascii=False)
                except json.JSONDecodeError as e:
                    return f"Error: Invalid JSON - {e}"
                except Exception as e:
                    return self.format_error_response(e)

        @self.mcp.tool(name="notd_get_properties")
        def notd_get_properties(owner_type: str, owner_id: int,
                                include_internal: bool = False) -> str:
            """Get the properties of a note or page.

            Args:
                owner_type: "note" or "page"
                owner_id: Id of the note or page
                include_internal: Include internal properties
            """
            with timed_operation("notd_get_properties", owner_type=owner_type, owner_id=owner_id):
                try:
                    props = self.property_service.get_properties(
                        owner_type, owner_id, include_internal=include_internal
                    )
                    return json.dumps(props, indent=2, ensure_ascii=False)
                except Exception as e:
                    return self.format_error_response(e)

        @self.mcp.tool(name="notd_set_property")
        def notd_set_property(
            owner_type: str,
            owner_id: int,
            name: str,
            value: str,
            internal: Optional[bool] = None,
            weight: int = 2,
            sync_content: bool = False,
        ) -> str:
            """Set a property on a note or page.

            Args:
                owner_type: "note" or "page"
                owner_id: Id of the note or page
                name: Property name (tag::label for tags)
                value: Property value
                internal: Force the internal flag; omit to follow property definitions
                weight: 2 or 3 replace the current value, 4 or more append to history
                sync_content: Also write the annotation into the note's content
            """
            with timed_operation("notd_set_property", owner_type=owner_type, name=name):
                try:
                    props = self.property_service.set_property(
                        owner_type, owner_id, name, value,
                        internal=internal, weight=weight, sync_content=sync_content,
                    )
                    return json.dumps(props, indent=2, ensure_ascii=False)
                except Exception as e:
                    return self.format_error_response(e)

        @self.mcp.tool(name="notd_delete_property")
        def notd_delete_property(owner_type: str, owner_id: int, name: str) -> str:
            """Delete every value of a property from a note or page.

            Args:
                owner_type: "note" or "page"
                owner_id: Id of the note or page
                name: Property name
            """
            with timed_operation("notd_delete_property", owner_type=owner_type, name=name):
                try:
                    removed = self.property_service.delete_property(owner_type, owner_id, name)
                    return f"Deleted {removed} value(s) of '{name}' from {owner_type} {owner_id}"
                except Exception as e:
                    return self.format_error_response(e)

        @self.mcp.tool(name="notd_set_property_internal")
        def notd_set_property_internal(owner_type: str, owner_id: int, name: str,
                                       internal: bool) -> str:
            """Mark a property of a note or page as internal or visible.

            Args:
                owner_type: "note" or "page"
                owner_id: Id of the note or page
                name: Property name
                internal: New internal flag
            """
            with timed_operation("notd_set_property_internal", owner_type=owner_type, name=name):
                try:
                    changed = self.property_service.set_property_internal(
                        owner_type, owner_id, name, internal
                    )
                    return f"Updated {changed} value(s) of '{name}'"
                except Exception as e:
                    return self.format_error_response(e)

        @self.mcp.tool(name="notd_publish_definition")
        def notd_publish_definition(name: str, internal: bool, auto_apply: bool = True,
                                    description: Optional[str] = None) -> str:
            """Create or update a property definition and apply it to existing properties.

            Args:
                name: Property name the definition covers
                internal: Whether properties with this name are internal
                auto_apply: Apply to new and existing properties
                description: Optional note about the definition
            """
            with timed_operation("notd_publish_definition", name=name):
                try:
                    changed = self.definition_resolver.publish_definition(
                        name, internal, auto_apply=auto_apply, description=description
                    )
                    return f"Definition '{name}' saved; {changed} existing properties updated"
                except Exception as e:
                    return self.format_error_response(e)

        @self.mcp.tool(name="notd_list_definitions")
        def notd_list_definitions() -> str:
            """List all property definitions."""
            with timed_operation("notd_list_definitions"):
                try:
                    definitions = self.definition_resolver.list_definitions()
                    return json.dumps(
                        [d.model_dump(mode="json") for d in definitions], indent=2
                    )
                except Exception as e:
                    return self.format_error_response(e)

        @self.mcp.tool(name="notd_delete_definition")
        def notd_delete_definition(name: str) -> str:
            """Delete a property definition. Existing properties keep their flag.

            Args:
                name: Property name of the definition
            """
            with timed_operation("notd_delete_definition", name=name):
                try:
                    if self.definition_resolver.delete_definition(name):
                        return f"Definition '{name}' deleted"
                    return f"No definition named '{name}'"
                except Exception as e:
                    return self.format_error_response(e)

        @self.mcp.tool(name="notd_apply_definitions")
        def notd_apply_definitions() -> str:
            """Re-apply every auto-apply definition to existing properties."""
            with timed_operation("notd_apply_definitions"):
                try:
                    changed = self.definition_resolver.apply_all_definitions()
                    return f"Applied definitions; {changed} properties updated"
                except Exception as e:
                    return self.format_error_response(e)

        @self.mcp.tool(name="notd_reindex_note")
        def notd_reindex_note(note_id: int) -> str:
            """Rebuild a note's properties from its content.

            Args:
                note_id: Id of the note
            """
            with timed_operation("notd_reindex_note", note_id=note_id):
                try:
                    props = self.property_service.reindex_note(note_id)
                    return json.dumps(props, indent=2, ensure_ascii=False)
                except Exception as e:
                    return self.format_error_response(e)

        @self.mcp.tool(name="notd_status")
        def notd_status() -> str:
            """Show operation metrics for this server."""
            return json.dumps(
                {"summary": metrics.summary(), "operations": metrics.snapshot()},
                indent=2,
            )

    def run(self) -> None:
        """Run the MCP server."""
        self.mcp.run()

"""Tool execution engine for the MCP server.

Runs exposed tools and action resources against the backend runner:
validates argument keys and input values, builds read queries, targets
update/destroy records by identity, serializes results and turns
failures into structured error payloads.
"""

import asyncio
import functools
import inspect
import json
import time
import uuid
from typing import Any, Callable, Optional

import aiofiles

from catalog.base import (
    ActionError,
    ActionOptions,
    InvalidInput,
    McpBackend,
    NotFound,
    ReadQuery,
)
from mcp_server.audit import AuditLogger
from shared.logging import get_logger
from shared.models import (
    AGGREGATE_KINDS,
    ActionDefinition,
    ActionResource,
    ActionType,
    EntityDefinition,
    ErrorPayload,
    McpOptions,
    ResourceResult,
    Tool,
    ToolEndEvent,
    ToolResult,
    ToolResultStatus,
    ToolStartEvent,
    UiResource,
)
from shared.schema import DEFAULT_LIMIT, identity_keys, parameter_schema, validate_schema

logger = get_logger(__name__)


def to_error_payloads(error: Exception, show_raised_errors: bool = False) -> list[ErrorPayload]:
    """
    Convert an exception into serializable error payloads.

    Known action errors keep their status, code and title, with one
    payload per offending field. Anything else becomes an opaque 500
    whose id is logged alongside the original exception.

    Args:
        error: Exception raised while running an action
        show_raised_errors: Expose the message of unexpected errors

    Returns:
        List of error payloads
    """
    if isinstance(error, ActionError) and error.error_class != "unknown":
        base = {
            "id": str(uuid.uuid4()),
            "status": str(error.status_code),
            "code": error.code,
            "title": error.title,
            "detail": error.detail,
            "meta": error.meta,
        }
        fields = error.fields or ([error.field] if error.field else [])
        if not fields:
            return [ErrorPayload(**base)]
        prefix = ["input"] if error.in_input else []
        return [
            ErrorPayload(
                **base,
                source_pointer="/" + "/".join([*prefix, *map(str, error.path), field]),
                source_parameter=field,
            )
            for field in fields
        ]

    error_id = str(uuid.uuid4())
    logger.warning(
        "Unexpected error while running action",
        error_id=error_id,
        error=str(error),
        error_type=type(error).__name__,
        exc_info=error,
    )
    detail = str(error) if show_raised_errors else f"Something went wrong. Error id: {error_id}"
    return [
        ErrorPayload(
            id=error_id,
            status="500",
            code="something_went_wrong",
            title="SomethingWentWrong",
            detail=detail,
        )
    ]


async def _notify(callback: Optional[Callable[..., Any]], event: Any) -> None:
    if callback is None:
        return
    result = callback(event)
    if inspect.isawaitable(result):
        await result


class ToolExecutor:
    """
    Executes tools and resource reads.

    Runner and serializer methods may be coroutine functions, which are
    awaited, or plain functions, which run in the default thread pool
    (or inline for tools declared with `async=False`).
    """

    def __init__(
        self,
        backend: McpBackend,
        audit_logger: Optional[AuditLogger] = None
    ) -> None:
        self.backend = backend
        self.catalog = backend.catalog
        self.runner = backend.runner
        self.serializer = backend.serializer
        self.audit_logger = audit_logger

    async def execute(
        self,
        tool: Tool,
        arguments: Optional[dict[str, Any]],
        options: McpOptions
    ) -> ToolResult:
        """
        Execute a tool.

        Callback exceptions are not caught: they abort the call.

        Args:
            tool: Resolved tool
            arguments: Raw arguments supplied by the client
            options: Invocation options (actor, tenant, context, callbacks)

        Returns:
            Tool execution result
        """
        start_time = time.perf_counter()
        arguments = arguments if arguments is not None else {}

        entity = self.catalog.get_entity(tool.entity)
        action = tool.resolved_action or self.catalog.resolve_action(tool.entity, tool.action)

        logger.debug(
            "Executing tool",
            tool=tool.name,
            entity=tool.entity,
            action=tool.action,
            session_id=options.context.get("mcp_session_id"),
        )

        await _notify(options.on_tool_start, ToolStartEvent(
            tool_name=tool.name,
            action=tool.action,
            entity=tool.entity,
            arguments=arguments if isinstance(arguments, dict) else {},
            actor=options.actor,
            tenant=options.tenant,
        ))

        try:
            result = await self._execute(tool, entity, action, arguments, options)
        except Exception as e:
            result = await self._error_result(tool, e)

        result.execution_time_ms = (time.perf_counter() - start_time) * 1000

        await _notify(options.on_tool_end, ToolEndEvent(tool_name=tool.name, result=result))

        if self.audit_logger is not None:
            await self.audit_logger.log(
                tool, arguments if isinstance(arguments, dict) else {}, options, result
            )

        return result

    async def read_resource(
        self,
        resource: ActionResource | UiResource,
        params: dict[str, Any],
        options: McpOptions
    ) -> ResourceResult:
        """
        Produce the text content of a resource.

        Action resources run their action with the request params that
        match the action's argument names. UI resources read their file.
        """
        if isinstance(resource, UiResource):
            return await self._read_ui_resource(resource)

        action = resource.resolved_action or self.catalog.resolve_action(resource.entity, resource.action)
        argument_names = {argument.name for argument in action.arguments}
        action_input = {key: value for key, value in params.items() if key in argument_names}

        try:
            value = await self._call(
                self.runner.run_action,
                resource.entity,
                action.name,
                action_input,
                self._action_options(resource.domain, options),
            )
        except Exception as e:
            payloads = to_error_payloads(e, self.backend.show_raised_errors)
            text = json.dumps(await self._call(self.serializer.serialize_errors, payloads))
            logger.info("Resource read failed", uri=resource.uri, error=str(e))
            return ResourceResult(uri=resource.uri, error=text)

        if not isinstance(value, str):
            value = json.dumps(value)
        return ResourceResult(uri=resource.uri, text=value)

    async def _read_ui_resource(self, resource: UiResource) -> ResourceResult:
        try:
            async with aiofiles.open(resource.html_path, "r", encoding="utf-8") as f:
                text = await f.read()
        except (OSError, UnicodeDecodeError) as e:
            return ResourceResult(uri=resource.uri, error=f"Failed to read file: {e}")
        return ResourceResult(uri=resource.uri, text=text)

    async def _execute(
        self,
        tool: Tool,
        entity: EntityDefinition,
        action: ActionDefinition,
        arguments: Any,
        options: McpOptions,
    ) -> ToolResult:
        if not isinstance(arguments, dict):
            raise InvalidInput(detail="arguments must be an object")

        raw_input = arguments.get("input") or {}
        if not isinstance(raw_input, dict):
            raise InvalidInput(detail="input must be an object")

        action_inputs = entity.action_inputs(action)
        allowed = [*action_inputs, *(argument.name for argument in tool.arguments)]
        unknown = sorted(key for key in raw_input if key not in allowed)
        if unknown:
            return self._rejected(tool, unknown, allowed)

        input_schema = parameter_schema(tool, entity)["properties"].get("input")
        if input_schema is not None:
            is_valid, errors = validate_schema(raw_input, input_schema)
            if not is_valid:
                raise InvalidInput(detail=f"Invalid input: {'; '.join(errors)}")

        action_input = {key: value for key, value in raw_input.items() if key in action_inputs}
        load = self._resolve_load(tool, raw_input)
        action_options = self._action_options(tool.domain, options, load)
        call = functools.partial(self._call, sync_inline=not tool.async_)

        if action.type == ActionType.READ:
            data, text = await self._run_read(call, tool, entity, action, arguments, action_input, load, action_options)
        elif action.type in (ActionType.UPDATE, ActionType.DESTROY):
            run = self.runner.bulk_update if action.type == ActionType.UPDATE else self.runner.bulk_destroy
            records = await call(
                run,
                entity.name,
                action.name,
                self._identity_filter(tool, entity, arguments),
                action_input,
                1,
                action_options,
            )
            if not records:
                raise NotFound(detail=f"No {entity.name} record matched the given identity")
            data = records[0]
            text = await self._encode(call, data, entity.name, None, tool.domain, load)
        elif action.type == ActionType.CREATE:
            data = await call(self.runner.create, entity.name, action.name, action_input, action_options)
            text = await self._encode(call, data, entity.name, None, tool.domain, load)
        else:
            data = await call(self.runner.run_action, entity.name, action.name, action_input, action_options)
            if action.returns:
                text = await self._encode(call, data, action.returns, action.returns_constraints, tool.domain, load)
            else:
                text = "success"

        return ToolResult(tool_name=tool.name, status=ToolResultStatus.SUCCESS, text=text, data=data)

    async def _run_read(
        self,
        call: Callable[..., Any],
        tool: Tool,
        entity: EntityDefinition,
        action: ActionDefinition,
        arguments: dict[str, Any],
        action_input: dict[str, Any],
        load: list[str],
        action_options: ActionOptions,
    ) -> tuple[Any, str]:
        if tool.action_parameters is not None:
            arguments = {key: value for key, value in arguments.items() if key in tool.action_parameters}

        sort, sort_inputs = self._sort(arguments.get("sort"), entity)
        query = ReadQuery(
            filter=self._filter(arguments.get("filter"), entity),
            sort=sort,
            sort_inputs=sort_inputs,
            limit=self._limit(arguments.get("limit"), action),
            offset=self._offset(arguments.get("offset")),
            input=action_input,
            load=load,
        )
        result_type = arguments.get("result_type") or "run_query"
        name = entity.name

        if result_type == "run_query":
            records = await call(self.runner.read, name, action.name, query, action_options)
            text = await self._encode(call, records, "array", {"items": name}, tool.domain, load)
            return records, text

        if result_type == "count":
            unbounded = query.model_copy(update={"limit": None, "offset": None})
            count = await call(self.runner.count, name, action.name, unbounded, action_options)
            return count, await self._encode(call, count, "integer", None, tool.domain, load)

        if result_type == "exists":
            exists = await call(self.runner.exists, name, action.name, query, action_options)
            return exists, await self._encode(call, exists, "boolean", None, tool.domain, load)

        if isinstance(result_type, dict):
            kind = result_type.get("aggregate")
            if kind not in AGGREGATE_KINDS:
                raise InvalidInput(
                    detail="invalid aggregate function", field="aggregate", path=["result_type"], in_input=False
                )
            if not result_type.get("field"):
                raise InvalidInput(
                    detail="missing field argument", field="field", path=["result_type"], in_input=False
                )
            field = entity.field(result_type["field"])
            if field is None or not field.public:
                raise InvalidInput(
                    detail="no such field", field="field", path=["result_type"], in_input=False
                )

            value = await call(self.runner.aggregate, name, action.name, query, kind, field.name, action_options)
            type_name = {"count": "integer", "avg": "float"}.get(kind, field.type)
            return value, await self._encode(call, value, type_name, field.constraints, tool.domain, load)

        raise InvalidInput(detail="invalid result_type", field="result_type", in_input=False)

    def _filter(self, filter_input: Any, entity: EntityDefinition) -> Optional[dict[str, Any]]:
        if filter_input is None:
            return None
        if not isinstance(filter_input, dict):
            raise InvalidInput(detail="filter must be an object", field="filter", in_input=False)
        for name in filter_input:
            field = entity.field(name)
            if field is None or not field.public or not field.filterable:
                raise InvalidInput(
                    detail=f"No such field {name}", field=name, path=["filter"], in_input=False
                )
        return filter_input

    def _sort(self, sort_input: Any, entity: EntityDefinition) -> tuple[Optional[str], dict[str, Any]]:
        if not sort_input:
            return None, {}
        if not isinstance(sort_input, list):
            raise InvalidInput(detail="sort must be a list", field="sort", in_input=False)

        terms: list[str] = []
        sort_inputs: dict[str, Any] = {}
        for item in sort_input:
            if not isinstance(item, dict) or "field" not in item:
                raise InvalidInput(detail="each sort must name a field", field="sort", in_input=False)
            name = item["field"]
            field = entity.field(name)
            if field is None or not field.public or not field.sortable:
                raise InvalidInput(
                    detail=f"No such field {name}", field=str(name), path=["sort"], in_input=False
                )

            direction = item.get("direction") or "asc"
            if direction not in ("asc", "desc"):
                raise InvalidInput(
                    detail=f"invalid sort direction {direction}", field="direction", path=["sort"], in_input=False
                )
            terms.append(f"-{name}" if direction == "desc" else name)
            sort_inputs.update(item.get("input_for_fields") or {})

        return ",".join(terms), sort_inputs

    def _limit(self, limit: Any, action: ActionDefinition) -> int:
        if limit is not None and (isinstance(limit, bool) or not isinstance(limit, int) or limit < 0):
            raise InvalidInput(detail="limit must be a non-negative integer", field="limit", in_input=False)

        pagination = action.pagination
        if pagination is None:
            return limit if limit is not None else DEFAULT_LIMIT

        # Paginated actions only honour a requested limit when a max page
        # size bounds it.
        if limit is not None and pagination.max_page_size is not None:
            return min(limit, pagination.max_page_size)
        if limit is None and pagination.default_limit is not None:
            return pagination.default_limit
        return DEFAULT_LIMIT

    def _offset(self, offset: Any) -> Optional[int]:
        if offset is None:
            return None
        if isinstance(offset, bool) or not isinstance(offset, int) or offset < 0:
            raise InvalidInput(detail="offset must be a non-negative integer", field="offset", in_input=False)
        return offset

    def _identity_filter(
        self, tool: Tool, entity: EntityDefinition, arguments: dict[str, Any]
    ) -> Optional[dict[str, Any]]:
        if tool.identity is False:
            return None
        keys = identity_keys(tool, entity)
        missing = [key for key in keys if arguments.get(key) is None]
        if missing:
            raise InvalidInput(detail="is required", fields=missing, in_input=False)
        return {key: arguments[key] for key in keys}

    def _resolve_load(self, tool: Tool, raw_input: dict[str, Any]) -> list[str]:
        if callable(tool.load):
            return list(tool.load(raw_input) or [])
        return list(tool.load)

    def _action_options(
        self, domain: Optional[str], options: McpOptions, load: Optional[list[str]] = None
    ) -> ActionOptions:
        return ActionOptions(
            domain=domain,
            actor=options.actor,
            tenant=options.tenant,
            context=dict(options.context),
            load=load or [],
        )

    async def _encode(
        self,
        call: Callable[..., Any],
        value: Any,
        type_name: Optional[str],
        constraints: Optional[dict[str, Any]],
        domain: Optional[str],
        load: list[str],
    ) -> str:
        serialized = await call(self.serializer.serialize_value, value, type_name, constraints, domain, load)
        return json.dumps(serialized)

    def _rejected(self, tool: Tool, unknown: list[str], allowed: list[str]) -> ToolResult:
        message = (
            f"Unknown arguments provided: {', '.join(unknown)}. "
            f"Valid arguments are: {', '.join(allowed)}"
        )
        payload = {
            "errors": [
                {
                    "code": "invalid_argument",
                    "detail": message,
                    "source": {"pointer": "/input"},
                }
            ]
        }
        logger.info("Tool called with unknown arguments", tool=tool.name, unknown=unknown)
        return ToolResult(
            tool_name=tool.name,
            status=ToolResultStatus.INVALID_ARGUMENTS,
            text=json.dumps(payload),
            error=message,
        )

    async def _error_result(self, tool: Tool, error: Exception) -> ToolResult:
        payloads = to_error_payloads(error, self.backend.show_raised_errors)
        text = json.dumps(await self._call(self.serializer.serialize_errors, payloads))
        logger.info("Tool execution failed", tool=tool.name, error=str(error))
        return ToolResult(
            tool_name=tool.name,
            status=ToolResultStatus.ERROR,
            text=text,
            error=str(error),
        )

    async def _call(self, fn: Callable[..., Any], *args: Any, sync_inline: bool = False) -> Any:
        """Await coroutine functions; run plain functions in the thread pool."""
        if inspect.iscoroutinefunction(fn):
            return await fn(*args)
        if sync_inline:
            return fn(*args)
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, functools.partial(fn, *args))

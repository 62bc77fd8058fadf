"""In-memory backend collaborators.

InMemoryRunner keeps records in dictionaries and runs generic actions
through registered Python callables. It is small enough to embed in an
application or a test suite and implements the full filter/sort/
aggregate surface the execution engine relies on.
"""

import asyncio
import threading
import uuid
from collections import defaultdict
from datetime import date, datetime, time
from decimal import Decimal
from enum import Enum
from typing import Any, Callable, Optional

from catalog.base import (
    ActionCatalog,
    ActionOptions,
    ActionRunner,
    Authorizer,
    ConfigurationError,
    InvalidInput,
    ReadQuery,
    Serializer,
)
from shared.logging import get_logger
from shared.models import ActionDefinition, EntityDefinition, ErrorPayload, FieldKind

logger = get_logger(__name__)

ActionHandler = Callable[[dict[str, Any], ActionOptions], Any]
CalculationHandler = Callable[[dict[str, Any]], Any]


class InMemoryRunner(ActionRunner):
    """
    Action runner over in-memory records.

    Records are plain dictionaries keyed by field name. Generic actions
    must be registered with `register_action`; handlers receive the
    action input and the call options and may raise `ActionError`.

    Record access is serialized by a re-entrant lock, so the runner is
    safe to share between the event loop and executor threads.
    """

    def __init__(self, catalog: ActionCatalog) -> None:
        self.catalog = catalog
        self._records: dict[str, list[dict[str, Any]]] = defaultdict(list)
        self._actions: dict[tuple[str, str], ActionHandler] = {}
        self._calculations: dict[tuple[str, str], CalculationHandler] = {}
        self._lock = threading.RLock()

    def seed(self, entity: str, records: list[dict[str, Any]]) -> list[dict[str, Any]]:
        """Insert records directly, bypassing actions."""
        definition = self.catalog.get_entity(entity)
        created = [self._with_defaults(definition, dict(record)) for record in records]
        with self._lock:
            self._records[entity].extend(created)
        return [dict(record) for record in created]

    def records(self, entity: str) -> list[dict[str, Any]]:
        with self._lock:
            return [dict(record) for record in self._records[entity]]

    def register_action(self, entity: str, action: str, handler: ActionHandler) -> None:
        """Register the handler run for a generic action."""
        self.catalog.resolve_action(entity, action)
        self._actions[(entity, action)] = handler

    def register_calculation(self, entity: str, name: str, handler: CalculationHandler) -> None:
        """Register how a calculation field is computed when it is loaded."""
        field = self.catalog.get_entity(entity).field(name)
        if field is None or field.kind != FieldKind.CALCULATION:
            raise ConfigurationError(f"{entity}.{name} is not a calculation")
        self._calculations[(entity, name)] = handler

    def read(self, entity: str, action: str, query: ReadQuery, options: ActionOptions) -> list[dict[str, Any]]:
        definition = self.catalog.get_entity(entity)
        with self._lock:
            records = self._query(definition, query)
            return [self._load(definition, record, query.load or options.load) for record in records]

    def count(self, entity: str, action: str, query: ReadQuery, options: ActionOptions) -> int:
        with self._lock:
            return len(self._query(self.catalog.get_entity(entity), query))

    def exists(self, entity: str, action: str, query: ReadQuery, options: ActionOptions) -> bool:
        with self._lock:
            return bool(self._query(self.catalog.get_entity(entity), query))

    def aggregate(
        self,
        entity: str,
        action: str,
        query: ReadQuery,
        kind: str,
        field: str,
        options: ActionOptions,
    ) -> Any:
        definition = self.catalog.get_entity(entity)
        with self._lock:
            records = self._query(definition, query)
            values = [
                value for value in (self._value(definition, record, field) for record in records)
                if value is not None
            ]

        if kind == "count":
            return len(values)
        if not values:
            return None
        if kind == "min":
            return min(values)
        if kind == "max":
            return max(values)
        if kind == "sum":
            return sum(values)
        if kind == "avg":
            return sum(values) / len(values)
        raise InvalidInput(detail=f"invalid aggregate function {kind}", path=["result_type"], in_input=False)

    def create(self, entity: str, action: str, input: dict[str, Any], options: ActionOptions) -> dict[str, Any]:
        definition = self.catalog.get_entity(entity)
        action_definition = self.catalog.resolve_action(entity, action)

        record = self._with_defaults(definition, self._accepted(definition, action_definition, input))
        self._check_required(definition, record)
        with self._lock:
            self._records[entity].append(record)
            created = self._load(definition, record, options.load)

        logger.debug("Record created", entity=entity, action=action)
        return created

    def bulk_update(
        self,
        entity: str,
        action: str,
        filter: Optional[dict[str, Any]],
        input: dict[str, Any],
        limit: Optional[int],
        options: ActionOptions,
    ) -> list[dict[str, Any]]:
        definition = self.catalog.get_entity(entity)
        action_definition = self.catalog.resolve_action(entity, action)
        changes = self._accepted(definition, action_definition, input)

        with self._lock:
            matching = self._matching(definition, filter, limit)
            # Validate every record before touching any of them.
            for record in matching:
                self._check_required(definition, {**record, **changes})

            updated = []
            for record in matching:
                record.update(changes)
                updated.append(self._load(definition, record, options.load))
            return updated

    def bulk_destroy(
        self,
        entity: str,
        action: str,
        filter: Optional[dict[str, Any]],
        input: dict[str, Any],
        limit: Optional[int],
        options: ActionOptions,
    ) -> list[dict[str, Any]]:
        definition = self.catalog.get_entity(entity)
        with self._lock:
            doomed = self._matching(definition, filter, limit)
            destroyed = [self._load(definition, record, options.load) for record in doomed]

            doomed_ids = {id(record) for record in doomed}
            self._records[entity] = [
                record for record in self._records[entity] if id(record) not in doomed_ids
            ]
        return destroyed

    async def run_action(self, entity: str, action: str, input: dict[str, Any], options: ActionOptions) -> Any:
        handler = self._actions.get((entity, action))
        if handler is None:
            raise ConfigurationError(f"No handler registered for {entity}.{action}")

        result = handler(input, options)
        if asyncio.iscoroutine(result):
            result = await result
        return result

    def _query(self, entity: EntityDefinition, query: ReadQuery) -> list[dict[str, Any]]:
        records = [
            record for record in self._records[entity.name]
            if self._matches(entity, record, query.filter or {})
        ]
        if query.sort:
            records = self._sorted(entity, records, query.sort)
        if query.offset:
            records = records[query.offset:]
        if query.limit is not None:
            records = records[:query.limit]
        return records

    def _matching(
        self, entity: EntityDefinition, filter: Optional[dict[str, Any]], limit: Optional[int]
    ) -> list[dict[str, Any]]:
        matching = [
            record for record in self._records[entity.name]
            if self._matches(entity, record, filter or {})
        ]
        return matching if limit is None else matching[:limit]

    def _matches(self, entity: EntityDefinition, record: dict[str, Any], filter: dict[str, Any]) -> bool:
        for name, condition in filter.items():
            if entity.field(name) is None:
                raise InvalidInput(
                    detail=f"No such field {name}", field=name, path=["filter"], in_input=False
                )
            value = self._value(entity, record, name)
            if not isinstance(condition, dict):
                condition = {"eq": condition}
            for operator, expected in condition.items():
                if not _apply_operator(operator, value, expected, name):
                    return False
        return True

    def _sorted(self, entity: EntityDefinition, records: list[dict[str, Any]], sort: str) -> list[dict[str, Any]]:
        terms = [term for term in sort.split(",") if term]
        # Stable sorts applied from the last key to the first.
        for term in reversed(terms):
            descending = term.startswith("-")
            name = term.lstrip("-")
            if entity.field(name) is None:
                raise InvalidInput(detail=f"No such field {name}", field=name, path=["sort"], in_input=False)
            records = sorted(
                records,
                key=lambda record: _sort_key(self._value(entity, record, name)),
                reverse=descending,
            )
        return records

    def _value(self, entity: EntityDefinition, record: dict[str, Any], name: str) -> Any:
        handler = self._calculations.get((entity.name, name))
        if handler is not None and name not in record:
            return handler(record)
        return record.get(name)

    def _load(self, entity: EntityDefinition, record: dict[str, Any], load: list[str]) -> dict[str, Any]:
        loaded = dict(record)
        for name in load:
            field = entity.field(name)
            if field is None:
                raise InvalidInput(detail=f"Cannot load unknown field {name}", field=name)
            loaded[name] = self._value(entity, record, name)
        return loaded

    def _accepted(
        self, entity: EntityDefinition, action: ActionDefinition, input: dict[str, Any]
    ) -> dict[str, Any]:
        accepted = {}
        for name, value in input.items():
            if name not in action.accept:
                continue
            field = entity.field(name)
            if field is None or not field.writable:
                raise InvalidInput(detail=f"{name} cannot be changed", field=name)
            accepted[name] = value
        return accepted

    def _with_defaults(self, entity: EntityDefinition, record: dict[str, Any]) -> dict[str, Any]:
        for field in entity.attributes():
            if field.name in record:
                continue
            if field.default is not None:
                record[field.name] = field.default
            elif field.name in entity.primary_key and field.type == "uuid":
                record[field.name] = str(uuid.uuid4())
            else:
                record[field.name] = None
        return record

    def _check_required(self, entity: EntityDefinition, record: dict[str, Any]) -> None:
        for field in entity.attributes():
            if not field.allow_nil and record.get(field.name) is None:
                raise InvalidInput(detail="is required", field=field.name)


def _sort_key(value: Any) -> tuple[bool, Any]:
    return (value is None, value if value is not None else 0)


def _apply_operator(operator: str, value: Any, expected: Any, field: str) -> bool:
    if operator == "eq":
        return value == expected
    if operator == "not_eq":
        return value != expected
    if operator == "in":
        return value in (expected or [])
    if operator == "is_nil":
        return (value is None) == bool(expected)
    if operator == "contains":
        return value is not None and str(expected) in str(value)

    if value is None:
        return False
    if operator == "greater_than":
        return value > expected
    if operator == "greater_than_or_equal":
        return value >= expected
    if operator == "less_than":
        return value < expected
    if operator == "less_than_or_equal":
        return value <= expected

    raise InvalidInput(
        detail=f"Unsupported filter operator {operator}", field=field, path=["filter"], in_input=False
    )


class JsonSerializer(Serializer):
    """Serializes records and scalars into JSON-compatible values."""

    def __init__(self, catalog: ActionCatalog) -> None:
        self.catalog = catalog

    def serialize_value(
        self,
        value: Any,
        type_name: Optional[str],
        constraints: Optional[dict[str, Any]] = None,
        domain: Optional[str] = None,
        load: Optional[list[str]] = None,
    ) -> Any:
        constraints = constraints or {}

        if value is None:
            return None

        if type_name == "array":
            return [
                self.serialize_value(
                    item,
                    constraints.get("items"),
                    constraints.get("item_constraints"),
                    domain,
                    load,
                )
                for item in value
            ]

        entity = self._entity(type_name)
        if entity is not None and isinstance(value, dict):
            return self._serialize_record(entity, value, load or [])

        return _to_json(value)

    def serialize_errors(self, errors: list[ErrorPayload]) -> dict[str, Any]:
        return {"errors": [error.to_dict() for error in errors]}

    def _entity(self, type_name: Optional[str]) -> Optional[EntityDefinition]:
        if type_name is None:
            return None
        try:
            return self.catalog.get_entity(type_name)
        except ConfigurationError:
            return None

    def _serialize_record(self, entity: EntityDefinition, record: dict[str, Any], load: list[str]) -> dict[str, Any]:
        data = {}
        for field in entity.fields:
            if not field.public:
                continue
            if field.kind != FieldKind.ATTRIBUTE and field.name not in load:
                continue
            data[field.name] = _to_json(record.get(field.name))
        return data


def _to_json(value: Any) -> Any:
    if isinstance(value, (datetime, date, time)):
        return value.isoformat()
    if isinstance(value, (uuid.UUID, Decimal)):
        return str(value)
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, dict):
        return {str(key): _to_json(item) for key, item in value.items()}
    if isinstance(value, (list, tuple, set)):
        return [_to_json(item) for item in value]
    return value


class AllowAll(Authorizer):
    """Authorizer that permits every action."""

    def can_perform(
        self,
        actor: Any,
        entity: str,
        action: ActionDefinition,
        tenant: Any = None,
        domain: Optional[str] = None,
    ) -> bool:
        return True


class PolicyAuthorizer(Authorizer):
    """
    Authorizer driven by per-entity policy functions.

    A policy receives `(actor, action, tenant)` and returns a bool.
    Entities without a policy fall back to `default`.
    """

    def __init__(
        self,
        policies: Optional[dict[str, Callable[[Any, ActionDefinition, Any], bool]]] = None,
        default: bool = True,
    ) -> None:
        self.policies = policies or {}
        self.default = default

    def can_perform(
        self,
        actor: Any,
        entity: str,
        action: ActionDefinition,
        tenant: Any = None,
        domain: Optional[str] = None,
    ) -> bool:
        policy = self.policies.get(entity)
        if policy is None:
            return self.default
        return bool(policy(actor, action, tenant))

from __future__ import annotations

import json
import logging
import time
from collections.abc import Awaitable, Callable, Collection, Mapping
from typing import Any, ClassVar, Generic, TypeVar

from pydantic import BaseModel, ValidationError
from pydantic.alias_generators import to_camel, to_snake

from factory_console.api_client import ApiClient
from factory_console.cache import MISS, TTLCache
from factory_console.errors import ApiError, ConsoleError, EntityValidationError
from factory_console.models import EntityRecord
from factory_console.notifications import Notifier

logger = logging.getLogger(__name__)

RecordT = TypeVar("RecordT", bound=EntityRecord)
R = TypeVar("R")


def clean_filters(filters: Mapping[str, Any] | None) -> dict[str, Any]:
    return {k: v for k, v in (filters or {}).items() if v is not None}


def strip_patch(patch: Mapping[str, Any], allowed: Collection[str]) -> dict[str, Any]:
    """Reduce an update patch to the fields that carry a change.

    Strings are trimmed and dropped when empty; explicit ``None`` is kept so
    the backend receives ``null``. Keys may be snake_case or camelCase and are
    sent camelCase; anything outside ``allowed`` is dropped.
    """
    cleaned: dict[str, Any] = {}
    for key, value in patch.items():
        field = to_snake(key)
        if field not in allowed:
            continue
        if isinstance(value, str):
            value = value.strip()
            if not value:
                continue
        cleaned[to_camel(field)] = value
    return cleaned


def _validation_messages(exc: ValidationError) -> list[str]:
    messages = []
    for error in exc.errors():
        location = ".".join(str(part) for part in error["loc"])
        messages.append(f"{location}: {error['msg']}" if location else error["msg"])
    return messages


class EntityService(Generic[RecordT]):
    """REST access for one entity type, read through a shared TTL cache.

    One instance per entity type; every ``EntityContext`` of that type talks
    to the same service, so they share cached lists and in-flight requests.

    Cache keys::

        <type>:list:<sorted filter json>   # filtered lists
        <type>:list:<name>[:<arg>]          # derived collections (tree, by-factory...)
        <type>:item:<id>
        <type>:managers:<id>
    """

    entity_type: ClassVar[str]
    base_path: ClassVar[str]
    record_model: ClassVar[type[EntityRecord]]
    create_schema: ClassVar[type[BaseModel]]
    update_fields: ClassVar[frozenset[str]]

    def __init__(
        self,
        api: ApiClient,
        *,
        ttl_seconds: float = 300.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.api = api
        self.ttl_seconds = ttl_seconds
        self.cache = TTLCache(self.entity_type, clock=clock)

    # --- keys ---

    def list_key(self, filters: Mapping[str, Any] | None = None) -> str:
        serialized = json.dumps(clean_filters(filters), sort_keys=True, default=str)
        return f"{self.entity_type}:list:{serialized}"

    def item_key(self, entity_id: str) -> str:
        return f"{self.entity_type}:item:{entity_id}"

    def collection_key(self, name: str, arg: str | None = None) -> str:
        suffix = f":{arg}" if arg is not None else ""
        return f"{self.entity_type}:list:{name}{suffix}"

    def managers_key(self, entity_id: str) -> str:
        return f"{self.entity_type}:managers:{entity_id}"

    # --- transport helpers ---

    async def _call(
        self,
        method: str,
        path: str,
        *,
        json: Any = None,
        params: Mapping[str, Any] | None = None,
    ) -> Any:
        response = await self.api.request(
            method, path, json=json, params=dict(params) if params is not None else None
        )
        if not response.success:
            raise ApiError(
                response.error or f"{method} {path} failed", status=response.status
            )
        return response.data

    def _parse(self, data: Any) -> RecordT:
        if isinstance(data, dict) and isinstance(data.get("data"), dict):
            data = data["data"]
        return self.record_model.model_validate(data)  # type: ignore[return-value]

    def _parse_list(self, data: Any) -> list[RecordT]:
        if isinstance(data, dict):
            data = data.get("data") or data.get("items") or []
        return [self._parse(item) for item in data or []]

    async def _cached(self, key: str, loader: Callable[[], Awaitable[R]]) -> R:
        return await self.cache.fetch(key, loader, self.ttl_seconds)

    # --- reads ---

    async def get_list(self, filters: Mapping[str, Any] | None = None) -> list[RecordT]:
        params = clean_filters(filters)

        async def load() -> list[RecordT]:
            return self._parse_list(await self._call("GET", self.base_path, params=params))

        return await self._cached(self.list_key(params), load)

    def cached_list(self, filters: Mapping[str, Any] | None = None) -> list[RecordT] | None:
        value = self.cache.get(self.list_key(filters))
        return None if value is MISS else value

    async def get_by_id(self, entity_id: str) -> RecordT:
        if not entity_id:
            raise EntityValidationError(["id is required"])

        async def load() -> RecordT:
            return self._parse(await self._call("GET", f"{self.base_path}/{entity_id}"))

        return await self._cached(self.item_key(entity_id), load)

    async def _get_collection(
        self,
        name: str,
        path: str,
        arg: str | None = None,
        params: Mapping[str, Any] | None = None,
    ) -> list[RecordT]:
        async def load() -> list[RecordT]:
            return self._parse_list(await self._call("GET", path, params=params))

        return await self._cached(self.collection_key(name, arg), load)

    # --- mutations ---

    def validate_create(self, data: Mapping[str, Any]) -> dict[str, Any]:
        try:
            model = self.create_schema.model_validate(dict(data))
        except ValidationError as exc:
            raise EntityValidationError(_validation_messages(exc)) from exc
        return model.model_dump(by_alias=True, exclude_none=True)

    async def create(self, data: Mapping[str, Any]) -> RecordT:
        payload = self.validate_create(data)
        created = await self._call("POST", self.base_path, json=payload)
        self.invalidate_lists()
        logger.info("Created %s %s", self.entity_type, payload.get("code"))
        return self._parse(created)

    async def update(self, entity_id: str, patch: Mapping[str, Any]) -> RecordT | None:
        if not entity_id:
            raise EntityValidationError(["id is required"])
        body = strip_patch(patch, self.update_fields)
        if not body:
            raise EntityValidationError(["No valid update data provided"])
        updated = await self._call("PATCH", f"{self.base_path}/{entity_id}", json=body)
        self.invalidate_lists()
        self.invalidate_item(entity_id)
        logger.info("Updated %s %s fields=%s", self.entity_type, entity_id, sorted(body))
        return self._parse(updated) if isinstance(updated, dict) else None

    async def delete(self, entity_id: str) -> None:
        if not entity_id:
            raise EntityValidationError(["id is required"])
        await self._call("DELETE", f"{self.base_path}/{entity_id}")
        self.invalidate_lists()
        self.invalidate_item(entity_id)
        logger.info("Deleted %s %s", self.entity_type, entity_id)

    async def batch_delete(self, ids: Collection[str]) -> None:
        if not ids:
            raise EntityValidationError(["ids must not be empty"])
        await self._call("POST", f"{self.base_path}/batch-delete", json={"ids": list(ids)})
        self.invalidate_lists()
        for entity_id in ids:
            self.invalidate_item(entity_id)

    # --- invalidation ---

    def invalidate_lists(self) -> None:
        self.cache.invalidate_prefix(f"{self.entity_type}:list:")

    def invalidate_item(self, entity_id: str) -> None:
        self.cache.invalidate(self.item_key(entity_id))

    def clear_cache(self) -> None:
        self.cache.invalidate_all()


class EntityContext(Generic[RecordT]):
    """Per-consumer view over a shared ``EntityService``.

    Tracks its own ``loading`` counter, last ``error`` and ``selected_id``.
    Reads answered from a fresh cache entry never toggle ``loading``.
    """

    def __init__(self, service: EntityService[RecordT], *, notifier: Notifier | None = None) -> None:
        self.service = service
        self.notifier = notifier
        self.selected_id: str | None = None
        self.error: ConsoleError | None = None
        self._loading = 0

    @property
    def entity_type(self) -> str:
        return self.service.entity_type

    @property
    def loading(self) -> bool:
        return self._loading > 0

    async def _track(self, operation: str, awaitable: Awaitable[R]) -> R:
        self._loading += 1
        try:
            result = await awaitable
        except ApiError as exc:
            self.error = exc
            if self.notifier is not None:
                self.notifier.error(f"Could not {operation} {self.entity_type}", str(exc))
            raise
        except ConsoleError as exc:
            self.error = exc
            raise
        finally:
            self._loading -= 1
        self.error = None
        return result

    async def _read(self, key: str, operation: str, awaitable_factory: Callable[[], Awaitable[R]], refresh: bool) -> R:
        if refresh:
            self.service.cache.invalidate(key)
        else:
            cached = self.service.cache.get(key)
            if cached is not MISS:
                return cached  # type: ignore[no-any-return]
        return await self._track(operation, awaitable_factory())

    async def list(self, filters: Mapping[str, Any] | None = None, refresh: bool = False) -> list[RecordT]:
        return await self._read(
            self.service.list_key(filters), "load", lambda: self.service.get_list(filters), refresh
        )

    def cached_list(self, filters: Mapping[str, Any] | None = None) -> list[RecordT] | None:
        return self.service.cached_list(filters)

    async def get(self, entity_id: str, refresh: bool = False) -> RecordT:
        return await self._read(
            self.service.item_key(entity_id), "load", lambda: self.service.get_by_id(entity_id), refresh
        )

    async def create(self, data: Mapping[str, Any]) -> RecordT:
        return await self._track("create", self.service.create(data))

    async def update(self, entity_id: str, patch: Mapping[str, Any]) -> RecordT | None:
        return await self._track("update", self.service.update(entity_id, patch))

    async def delete(self, entity_id: str) -> None:
        await self._track("delete", self.service.delete(entity_id))
        if self.selected_id == entity_id:
            self.selected_id = None

    async def batch_delete(self, ids: Collection[str]) -> None:
        await self._track("delete", self.service.batch_delete(ids))
        if self.selected_id in ids:
            self.selected_id = None

    def select(self, entity_id: str | None) -> None:
        self.selected_id = entity_id

    def selected(self) -> RecordT | None:
        if self.selected_id is None:
            return None
        value = self.service.cache.get(self.service.item_key(self.selected_id))
        return None if value is MISS else value

"""Entity graph data model shared by the read and write paths.

Entities are exchanged as JSON documents: an array whose first element is a
``@context`` object declaring namespace prefixes, followed by entity objects
and optionally a trailing ``@continuation`` object carrying the next token::

    [
      {"id": "@context", "namespaces": {"ns0": "http://data.example.io/"}},
      {"id": "ns0:1", "deleted": false, "recorded": 0,
       "props": {"ns0:name": "first"}, "refs": {"ns0:type": "ns0:Product"}},
      {"id": "@continuation", "token": "MjAyNC0wMS0wMSAwMDowMDowMC4wMDAwMDA="}
    ]
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import date, datetime, time, timezone
from decimal import Decimal
from typing import IO, Any, Callable, Dict, Iterable, Mapping, Optional

CONTEXT_ID = "@context"
CONTINUATION_ID = "@continuation"


@dataclass
class Entity:
    """A single identity with its properties, references and deletion state."""

    id: str = ""
    properties: Dict[str, Any] = field(default_factory=dict)
    references: Dict[str, Any] = field(default_factory=dict)
    is_deleted: bool = False
    recorded: int = 0

    def to_json(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"id": self.id}
        if self.is_deleted:
            payload["deleted"] = True
        if self.recorded:
            payload["recorded"] = self.recorded
        payload["props"] = {
            key: _encode_value(value) for key, value in self.properties.items()
        }
        payload["refs"] = dict(self.references)
        return payload


@dataclass(frozen=True)
class Continuation:
    """Resume point handed back to the caller after a read."""

    token: str = ""

    def to_json(self) -> Dict[str, Any]:
        return {"id": CONTINUATION_ID, "token": self.token}


class NamespaceContext:
    """Prefix to namespace URI table used to expand and compact identifiers."""

    def __init__(self, namespaces: Optional[Mapping[str, str]] = None) -> None:
        self._namespaces: Dict[str, str] = dict(namespaces or {})

    @property
    def namespaces(self) -> Dict[str, str]:
        return dict(self._namespaces)

    def add(self, prefix: str, uri: str) -> None:
        self._namespaces[prefix] = uri

    def expand(self, value: str) -> str:
        """Expand ``prefix:local`` into a full URI."""
        if "://" in value or ":" not in value:
            return value
        prefix, _, local = value.partition(":")
        try:
            return self._namespaces[prefix] + local
        except KeyError:
            raise ValueError(f"unknown namespace prefix {prefix!r} in {value!r}") from None

    def as_context(self) -> Dict[str, Any]:
        return {"id": CONTEXT_ID, "namespaces": dict(self._namespaces)}


class EntityParser:
    """Parses entity documents, optionally expanding prefixed identifiers."""

    def __init__(
        self, context: Optional[NamespaceContext] = None, *, expand_uris: bool = True
    ) -> None:
        self._context = context or NamespaceContext()
        self._expand_uris = expand_uris

    @property
    def context(self) -> NamespaceContext:
        return self._context

    def parse(
        self,
        stream: IO[str] | str,
        on_entity: Callable[[Entity], None],
        on_continuation: Optional[Callable[[Continuation], None]] = None,
    ) -> None:
        """Parse a full entity document, invoking callbacks in document order."""
        raw = stream if isinstance(stream, str) else stream.read()
        try:
            document = json.loads(raw)
        except json.JSONDecodeError as exc:
            raise ValueError(f"entity document is not valid JSON: {exc}") from exc
        if not isinstance(document, list):
            raise ValueError("entity document must be a JSON array")

        for index, item in enumerate(document):
            if not isinstance(item, dict):
                raise ValueError(f"document element {index} is not an object")
            item_id = item.get("id")
            if item_id == CONTEXT_ID:
                namespaces = item.get("namespaces") or {}
                if not isinstance(namespaces, dict):
                    raise ValueError("context namespaces must be an object")
                for prefix, uri in namespaces.items():
                    self._context.add(str(prefix), str(uri))
                continue
            if item_id == CONTINUATION_ID:
                if on_continuation is not None:
                    on_continuation(Continuation(token=str(item.get("token") or "")))
                continue
            on_entity(self._parse_entity(item))

    def parse_entities(self, stream: IO[str] | str) -> list[Entity]:
        entities: list[Entity] = []
        self.parse(stream, entities.append)
        return entities

    def _parse_entity(self, item: Mapping[str, Any]) -> Entity:
        raw_id = item.get("id")
        if not isinstance(raw_id, str) or not raw_id:
            raise ValueError("entity must have a non-empty string id")

        recorded = item.get("recorded", 0) or 0
        if isinstance(recorded, bool) or not isinstance(recorded, (int, float)):
            raise ValueError(f"entity {raw_id} has a non-numeric recorded value")

        props = item.get("props") or {}
        refs = item.get("refs") or {}
        if not isinstance(props, dict) or not isinstance(refs, dict):
            raise ValueError(f"entity {raw_id} props and refs must be objects")

        return Entity(
            id=self._uri(raw_id),
            properties={
                self._uri(key): self._parse_value(value) for key, value in props.items()
            },
            references={
                self._uri(key): self._parse_ref(value) for key, value in refs.items()
            },
            is_deleted=bool(item.get("deleted", False)),
            recorded=int(recorded),
        )

    def _parse_value(self, value: Any) -> Any:
        if isinstance(value, dict):
            return self._parse_entity(value)
        if isinstance(value, list):
            return [self._parse_value(entry) for entry in value]
        return value

    def _parse_ref(self, value: Any) -> Any:
        if isinstance(value, list):
            return [self._uri(str(entry)) for entry in value]
        return self._uri(str(value))

    def _uri(self, value: str) -> str:
        if not self._expand_uris:
            return value
        return self._context.expand(value)


def _encode_value(value: Any) -> Any:
    if isinstance(value, Entity):
        return value.to_json()
    if isinstance(value, datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value.isoformat()
    if isinstance(value, (date, time)):
        return value.isoformat()
    if isinstance(value, Decimal):
        return float(value)
    if isinstance(value, (list, tuple)):
        return [_encode_value(entry) for entry in value]
    return value


def write_entity_document(
    stream: IO[str],
    entities: Iterable[Entity],
    continuation: Optional[Continuation] = None,
    context: Optional[NamespaceContext] = None,
) -> int:
    """Serialise entities as one JSON document, returning the entity count."""
    ctx = context or NamespaceContext()
    stream.write("[")
    stream.write(json.dumps(ctx.as_context(), ensure_ascii=False))
    written = 0
    for entity in entities:
        stream.write(",\n")
        stream.write(json.dumps(entity.to_json(), ensure_ascii=False))
        written += 1
    if continuation is not None and continuation.token:
        stream.write(",\n")
        stream.write(json.dumps(continuation.to_json(), ensure_ascii=False))
    stream.write("]\n")
    return written


__all__ = [
    "CONTEXT_ID",
    "CONTINUATION_ID",
    "Continuation",
    "Entity",
    "EntityParser",
    "NamespaceContext",
    "write_entity_document",
]

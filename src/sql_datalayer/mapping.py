"""Mapping between table rows and entities."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Mapping, Optional

from .model import Entity


VALUE_PLACEHOLDER = "{value}"


class MappingError(ValueError):
    """Raised when a row or entity cannot be mapped."""


@dataclass
class PropertyMapping:
    """Links one table column to one entity property, reference or attribute."""

    property: str
    entity_property: str = ""
    datatype: str = ""
    is_identity: bool = False
    is_reference: bool = False
    is_deleted: bool = False
    is_recorded: bool = False
    uri_value_pattern: str = ""
    default_value: Any = None
    strip_ref_prefix: bool = False
    required: bool = False

    @classmethod
    def from_mapping(cls, payload: Mapping[str, Any]) -> "PropertyMapping":
        column = payload.get("property")
        if not isinstance(column, str) or not column:
            raise MappingError("property mapping must name a column in 'property'")
        return cls(
            property=column,
            entity_property=str(payload.get("entity_property") or ""),
            datatype=str(payload.get("datatype") or "").lower(),
            is_identity=bool(payload.get("is_identity", False)),
            is_reference=bool(payload.get("is_reference", False)),
            is_deleted=bool(payload.get("is_deleted", False)),
            is_recorded=bool(payload.get("is_recorded", False)),
            uri_value_pattern=str(payload.get("uri_value_pattern") or ""),
            default_value=payload.get("default_value"),
            strip_ref_prefix=bool(payload.get("strip_ref_prefix", False)),
            required=bool(payload.get("required", False)),
        )


@dataclass
class MappingConfig:
    """Mapping rules for one direction (rows to entities, or entities to rows)."""

    base_uri: str = ""
    property_mappings: List[PropertyMapping] = field(default_factory=list)
    map_all: bool = False
    map_named: bool = False

    @classmethod
    def from_mapping(cls, payload: Mapping[str, Any]) -> "MappingConfig":
        if not isinstance(payload, Mapping):
            raise MappingError("mapping config must be an object")
        raw_mappings = payload.get("property_mappings") or []
        if not isinstance(raw_mappings, list):
            raise MappingError("property_mappings must be a list")
        return cls(
            base_uri=str(payload.get("base_uri") or ""),
            property_mappings=[PropertyMapping.from_mapping(m) for m in raw_mappings],
            map_all=bool(payload.get("map_all", False)),
            map_named=bool(payload.get("map_named", False)),
        )


class RowItem:
    """One row keyed by lower-cased column name, keeping column order."""

    def __init__(self) -> None:
        self.columns: List[str] = []
        self.values: List[Any] = []
        self.map: Dict[str, Any] = {}
        self.deleted = False

    @classmethod
    def from_pairs(cls, columns: List[str], values: List[Any]) -> "RowItem":
        item = cls()
        for column, value in zip(columns, values):
            item.set_value(column, value)
        return item

    def get_value(self, name: str) -> Any:
        return self.map.get(name.lower())

    def set_value(self, name: str, value: Any) -> None:
        key = name.lower()
        if key in self.map:
            self.values[self.columns.index(key)] = value
        else:
            self.columns.append(key)
            self.values.append(value)
        self.map[key] = value

    def property_names(self) -> List[str]:
        return list(self.columns)

    def __repr__(self) -> str:
        return f"RowItem({self.map!r})"


def local_name(uri: str) -> str:
    """Return the trailing segment of a URI (after the last '/', '#' or ':')."""
    cut = max(uri.rfind("/"), uri.rfind("#"), uri.rfind(":"))
    return uri[cut + 1 :]


def _to_recorded(value: Any) -> int:
    if isinstance(value, datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return int(value.timestamp() * 1_000_000) * 1000
    return int(value)


def _convert(value: Any, datatype: str) -> Any:
    if value is None or not datatype:
        return value
    try:
        if datatype in {"int", "integer", "long"}:
            return int(value)
        if datatype in {"float", "double", "decimal"}:
            return float(value)
        if datatype in {"bool", "boolean"}:
            if isinstance(value, str):
                return value.strip().lower() in {"1", "true", "yes"}
            return bool(value)
        if datatype == "string":
            return str(value)
    except (TypeError, ValueError) as exc:
        raise MappingError(f"cannot convert {value!r} to {datatype}: {exc}") from exc
    return value


class Mapper:
    """Applies the incoming and outgoing mapping configs of a dataset."""

    def __init__(
        self,
        incoming: Optional[MappingConfig] = None,
        outgoing: Optional[MappingConfig] = None,
    ) -> None:
        self._incoming = incoming
        self._outgoing = outgoing

    # rows -> entities -------------------------------------------------------
    def map_item_to_entity(self, item: RowItem, entity: Entity) -> None:
        config = self._outgoing
        if config is None:
            raise MappingError("outgoing mapping config is missing")

        mapped_columns = set()
        for pm in config.property_mappings:
            column = pm.property.lower()
            mapped_columns.add(column)
            value = item.get_value(column)
            if value is None:
                value = pm.default_value
            if value is None and pm.required:
                raise MappingError(f"required column {column} has no value")

            if pm.is_identity:
                if value is None or value == "":
                    raise MappingError(f"identity column {column} has no value")
                entity.id = self._make_uri(pm, value, config.base_uri)
            elif pm.is_reference:
                if value is not None:
                    name = self._property_uri(pm.entity_property or column, config)
                    entity.references[name] = self._make_uri(pm, value, config.base_uri)
            elif pm.is_deleted:
                entity.is_deleted = bool(_convert(value, "bool"))
            elif pm.is_recorded:
                if value is not None:
                    entity.recorded = _to_recorded(value)
            else:
                name = self._property_uri(pm.entity_property or column, config)
                entity.properties[name] = _convert(value, pm.datatype)

        if config.map_all:
            for column in item.property_names():
                if column in mapped_columns:
                    continue
                entity.properties[config.base_uri + column] = item.get_value(column)

        if not entity.id:
            raise MappingError("no identity column mapped for row")

    # entities -> rows -------------------------------------------------------
    def map_entity_to_item(self, entity: Entity, item: RowItem) -> None:
        config = self._incoming
        if config is None:
            raise MappingError("incoming mapping config is missing")

        consumed = set()
        for pm in config.property_mappings:
            if pm.is_identity:
                value: Any = entity.id
                if pm.strip_ref_prefix:
                    value = self._strip(value, pm, config)
            elif pm.is_reference:
                key = self._lookup(entity.references, pm, config)
                consumed.add(key)
                value = entity.references.get(key) if key is not None else None
                if pm.strip_ref_prefix and isinstance(value, str):
                    value = self._strip(value, pm, config)
            elif pm.is_deleted:
                value = entity.is_deleted
            elif pm.is_recorded:
                value = entity.recorded
            else:
                key = self._lookup(entity.properties, pm, config)
                consumed.add(key)
                value = entity.properties.get(key) if key is not None else None

            if value is None:
                value = pm.default_value
            if value is None and pm.required:
                raise MappingError(
                    f"required property {pm.entity_property or pm.property} missing "
                    f"on entity {entity.id}"
                )
            item.set_value(pm.property, _convert(value, pm.datatype))

        if not config.map_named:
            for key, value in entity.properties.items():
                if key in consumed:
                    continue
                item.set_value(local_name(key), value)

    # helpers ---------------------------------------------------------------
    @staticmethod
    def _property_uri(name: str, config: MappingConfig) -> str:
        if "://" in name:
            return name
        return config.base_uri + name

    @staticmethod
    def _make_uri(pm: PropertyMapping, value: Any, base_uri: str) -> str:
        text = str(value)
        if pm.uri_value_pattern:
            return pm.uri_value_pattern.replace(VALUE_PLACEHOLDER, text)
        return base_uri + text

    @staticmethod
    def _strip(value: str, pm: PropertyMapping, config: MappingConfig) -> str:
        if pm.uri_value_pattern and VALUE_PLACEHOLDER in pm.uri_value_pattern:
            prefix, _, suffix = pm.uri_value_pattern.partition(VALUE_PLACEHOLDER)
            if value.startswith(prefix) and value.endswith(suffix):
                return value[len(prefix) : len(value) - len(suffix)]
        if config.base_uri and value.startswith(config.base_uri):
            return value[len(config.base_uri) :]
        return local_name(value)

    def _lookup(
        self, values: Mapping[str, Any], pm: PropertyMapping, config: MappingConfig
    ) -> Optional[str]:
        name = pm.entity_property or pm.property
        for candidate in (name, self._property_uri(name, config)):
            if candidate in values:
                return candidate
        for key in values:
            if local_name(key) == name:
                return key
        return None


__all__ = [
    "Mapper",
    "MappingConfig",
    "MappingError",
    "PropertyMapping",
    "RowItem",
    "local_name",
]

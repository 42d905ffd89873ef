from datetime import datetime, timezone

import pytest

from sql_datalayer.mapping import (
    Mapper,
    MappingConfig,
    MappingError,
    PropertyMapping,
    RowItem,
    local_name,
)
from sql_datalayer.model import Entity

BASE = "http://data.example.io/orders/"


def _outgoing(**kwargs) -> MappingConfig:
    return MappingConfig(
        base_uri=BASE,
        property_mappings=[
            PropertyMapping(property="order_id", is_identity=True),
            PropertyMapping(
                property="customer",
                entity_property="customer",
                is_reference=True,
                uri_value_pattern="http://data.example.io/customers/{value}",
            ),
            PropertyMapping(property="total", datatype="float"),
            PropertyMapping(property="removed", is_deleted=True),
            PropertyMapping(property="changed", is_recorded=True),
        ],
        **kwargs,
    )


@pytest.mark.unit
def test_row_item_keys_are_lower_case_and_ordered():
    item = RowItem.from_pairs(["ID", "Name"], [1, "x"])
    item.set_value("name", "y")

    assert item.property_names() == ["id", "name"]
    assert item.values == [1, "y"]
    assert item.get_value("NAME") == "y"


@pytest.mark.unit
def test_row_maps_to_entity():
    changed = datetime(2024, 1, 1, tzinfo=timezone.utc)
    item = RowItem.from_pairs(
        ["order_id", "customer", "total", "removed", "changed"],
        [17, "c-9", "12.5", False, changed],
    )
    entity = Entity()

    Mapper(outgoing=_outgoing()).map_item_to_entity(item, entity)

    assert entity.id == BASE + "17"
    assert entity.references == {BASE + "customer": "http://data.example.io/customers/c-9"}
    assert entity.properties == {BASE + "total": 12.5}
    assert entity.is_deleted is False
    assert entity.recorded == int(changed.timestamp()) * 1_000_000_000


@pytest.mark.unit
def test_map_all_copies_unmapped_columns():
    item = RowItem.from_pairs(["order_id", "note"], [1, "rush"])
    entity = Entity()

    Mapper(outgoing=_outgoing(map_all=True)).map_item_to_entity(item, entity)

    assert entity.properties[BASE + "note"] == "rush"


@pytest.mark.unit
def test_missing_identity_is_mapping_error():
    with pytest.raises(MappingError):
        Mapper(outgoing=_outgoing()).map_item_to_entity(
            RowItem.from_pairs(["total"], [1]), Entity()
        )


@pytest.mark.unit
def test_entity_maps_to_row_stripping_prefixes():
    incoming = MappingConfig(
        base_uri=BASE,
        property_mappings=[
            PropertyMapping(property="order_id", is_identity=True, strip_ref_prefix=True),
            PropertyMapping(
                property="customer",
                is_reference=True,
                strip_ref_prefix=True,
                uri_value_pattern="http://data.example.io/customers/{value}",
            ),
            PropertyMapping(property="total", datatype="float"),
        ],
    )
    entity = Entity(
        id=BASE + "17",
        properties={BASE + "total": "3", "http://other.example/ns#note": "fragile"},
        references={BASE + "customer": "http://data.example.io/customers/c-9"},
    )
    item = RowItem()

    Mapper(incoming=incoming).map_entity_to_item(entity, item)

    assert item.map == {"order_id": "17", "customer": "c-9", "total": 3.0, "note": "fragile"}


@pytest.mark.unit
def test_map_named_skips_unmapped_properties():
    incoming = MappingConfig(
        base_uri=BASE,
        map_named=True,
        property_mappings=[PropertyMapping(property="id", is_identity=True)],
    )
    item = RowItem()

    Mapper(incoming=incoming).map_entity_to_item(
        Entity(id="x", properties={BASE + "extra": 1}), item
    )

    assert item.property_names() == ["id"]


@pytest.mark.unit
def test_required_property_missing_is_mapping_error():
    incoming = MappingConfig(
        property_mappings=[PropertyMapping(property="sku", required=True)]
    )

    with pytest.raises(MappingError):
        Mapper(incoming=incoming).map_entity_to_item(Entity(id="x"), RowItem())


@pytest.mark.unit
def test_local_name():
    assert local_name("http://a.example/b/c") == "c"
    assert local_name("http://a.example/b#frag") == "frag"
    assert local_name("ns0:thing") == "thing"

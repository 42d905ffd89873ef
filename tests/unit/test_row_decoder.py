from datetime import date, datetime
from decimal import Decimal

import pytest

from sql_datalayer.changes.decoder import ColumnKind, decode_value, kind_for_type, plan_columns
from sql_datalayer.errors import InternalError


@pytest.mark.unit
def test_plan_lower_cases_names_and_resolves_kinds():
    plans = plan_columns(
        [
            ("ID", 23, None, 4, None, None, None),
            ("Active", 16, None, 1, None, None, None),
            ("Price", 1700, None, -1, None, None, None),
            ("Updated_At", 1114, None, 8, None, None, None),
            ("Doc", 3802, None, -1, None, None, None),
            ("Label", 25, None, -1, None, None, None),
        ]
    )

    assert [p.name for p in plans] == ["id", "active", "price", "updated_at", "doc", "label"]
    assert [p.kind for p in plans] == [
        ColumnKind.INTEGER,
        ColumnKind.BOOLEAN,
        ColumnKind.FLOAT,
        ColumnKind.TIME,
        ColumnKind.JSON,
        ColumnKind.STRING,
    ]


@pytest.mark.unit
def test_unknown_type_code_falls_back_to_string():
    assert kind_for_type(987654) is ColumnKind.STRING


@pytest.mark.unit
def test_missing_type_code_fails_the_plan():
    with pytest.raises(InternalError):
        plan_columns([("id", 23), ("mystery", None)])


@pytest.mark.unit
def test_missing_description_fails_the_plan():
    with pytest.raises(InternalError):
        plan_columns(None)


@pytest.mark.unit
def test_whole_floats_collapse_to_integers():
    assert decode_value(ColumnKind.FLOAT, 3.0) == 3
    assert isinstance(decode_value(ColumnKind.FLOAT, Decimal("3.00")), int)
    assert decode_value(ColumnKind.FLOAT, Decimal("2.50")) == 2.5


@pytest.mark.unit
def test_dates_are_promoted_to_midnight():
    assert decode_value(ColumnKind.TIME, date(2024, 5, 6)) == datetime(2024, 5, 6)


@pytest.mark.unit
def test_nulls_stay_none_for_every_kind():
    for kind in ColumnKind:
        assert decode_value(kind, None) is None


@pytest.mark.unit
def test_strings_and_bytes_decode_to_text():
    assert decode_value(ColumnKind.STRING, b"abc") == "abc"
    assert decode_value(ColumnKind.STRING, 12) == "12"
    assert decode_value(ColumnKind.BOOLEAN, 1) is True

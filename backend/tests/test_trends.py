"""Trend extraction over already-sorted health records."""
from datetime import datetime, timedelta

import pytest
from bson import ObjectId

from trends import coerce_metric_value, extract_trend

START = datetime(2024, 1, 1, 9, 0, 0)


def make_records(*datas, source="Lab"):
    return [
        {"_id": ObjectId(), "createdAt": START + timedelta(days=i), "source": source, "data": data}
        for i, data in enumerate(datas)
    ]


@pytest.mark.parametrize("raw, expected", [
    (70, 70.0),
    (72.5, 72.5),
    ("72.5", 72.5),
    ("  98 ", 98.0),
    ("-3", -3.0),
    ("1e2", 100.0),
    ("72.5 kg", 72.5),
    ("120/80", 120.0),
    ("1_000", 1.0),
    (".5", 0.5),
    ("+4.", 4.0),
    ("1e", 1.0),
    (0, 0.0),
])
def test_coerce_numeric(raw, expected):
    assert coerce_metric_value(raw) == expected


@pytest.mark.parametrize("raw", [
    None, True, False, "", "   ", "high", "kg 72", "-", ".", "nan", "inf", "-Infinity",
    float("nan"), float("inf"), [70], {"value": 70},
])
def test_coerce_drops_unplottable_values(raw):
    assert coerce_metric_value(raw) is None


def test_skips_records_without_the_metric():
    records = make_records({"weight": 70}, {"height": 170})

    points = extract_trend(records, "weight")

    assert len(points) == 1
    assert points[0].value == 70
    assert points[0].record_id == str(records[0]["_id"])
    assert points[0].source == "Lab"
    assert points[0].date == records[0]["createdAt"]


def test_emits_exactly_the_parseable_records():
    records = make_records(
        {"weight": 70},
        {"weight": None},
        {"weight": "71.5"},
        {"weight": "n/a"},
        {},
        {"weight": True},
        {"weight": 69},
    )

    points = extract_trend(records, "weight")

    assert [p.value for p in points] == [70.0, 71.5, 69.0]
    assert [p.record_id for p in points] == [str(records[i]["_id"]) for i in (0, 2, 6)]


def test_preserves_order_and_duplicate_dates():
    records = make_records({"hr": 80}, {"hr": 75}, {"hr": 90})
    records[1]["createdAt"] = records[0]["createdAt"]

    points = extract_trend(records, "hr")

    assert [p.value for p in points] == [80.0, 75.0, 90.0]
    assert points[0].date == points[1].date


def test_tolerates_missing_data_and_source():
    records = [
        {"_id": ObjectId(), "createdAt": START},
        {"_id": ObjectId(), "createdAt": START, "data": "corrupt"},
        {"_id": ObjectId(), "createdAt": START, "data": {"weight": 70}, "source": None},
    ]

    points = extract_trend(records, "weight")

    assert len(points) == 1
    assert points[0].source == ""


def test_skips_records_without_a_creation_time():
    records = [
        {"_id": ObjectId(), "data": {"weight": 70}},
        {"_id": ObjectId(), "createdAt": None, "data": {"weight": 71}},
        {"_id": ObjectId(), "createdAt": "2024-01-01", "data": {"weight": 72}},
        {"_id": ObjectId(), "createdAt": START, "data": {"weight": 73}},
    ]

    points = extract_trend(records, "weight")

    assert [p.value for p in points] == [73.0]


def test_unit_suffixed_strings_are_read():
    records = make_records({"weight": "72.5 kg"}, {"weight": "73 kg"}, {"weight": "heavy"})

    points = extract_trend(records, "weight")

    assert [p.value for p in points] == [72.5, 73.0]


def test_empty_input():
    assert extract_trend([], "weight") == []


def test_points_serialize_with_camel_case_keys():
    point = extract_trend(make_records({"weight": 70}), "weight")[0]
    dumped = point.model_dump(by_alias=True)
    assert set(dumped) == {"date", "value", "recordId", "source"}

"""Tests for the static template registry."""

import dataclasses

import pytest

from smartrest_agent.smartrest.errors import MalformedRowError
from smartrest_agent.smartrest.templates import (
    REGISTRY,
    Direction,
    describe,
    group_count,
    validate,
)


@pytest.mark.parametrize(
    "identifier",
    [
        "100", "110", "112", "114", "115", "116", "117", "118", "122",
        "200", "201", "301", "302", "303", "304", "400",
        "501", "502", "503",
        "510", "511", "515", "522", "528", "530",
    ],
)  # fmt: skip
def test_registry_covers_template(identifier):
    descriptor = describe(identifier)

    assert descriptor is not None
    assert descriptor.identifier == identifier


def test_describe_unknown_template():
    assert describe("999") is None


def test_operation_request_descriptor():
    descriptor = describe("515")

    assert descriptor.direction is Direction.DOWNSTREAM
    assert descriptor.min_fields == 5
    assert descriptor.operation == "firmware_update"
    assert descriptor.roles == ("serial", "name", "version", "url")
    assert descriptor.max_fields == 5


def test_repeating_descriptor():
    descriptor = describe("528")

    assert descriptor.variable_tail
    assert descriptor.prefix_length == 2
    assert descriptor.group_width == 4
    assert descriptor.group_roles == ("name", "version", "url", "action")
    assert descriptor.min_fields == 6
    assert descriptor.max_fields is None


def test_group_count():
    assert group_count(describe("528"), 10) == 2
    assert group_count(describe("116"), 10) == 3
    assert group_count(describe("116"), 1) == 0
    assert group_count(describe("201"), 7) == 1
    assert group_count(describe("115"), 4) == 0


@pytest.mark.parametrize("total", [2, 9])
def test_group_count_rejects_partial_groups(total):
    with pytest.raises(MalformedRowError):
        group_count(describe("528"), total)


def test_validate_returns_descriptor():
    descriptor = validate(["115", "fwA", "2.0", "http://x"])

    assert descriptor.name == "firmware"


@pytest.mark.parametrize(
    "fields",
    [
        ["115", "fwA"],
        ["115", "a", "b", "c", "d"],
        ["999", "x"],
        ["116", "software1", "1.0"],
        ["114"],
        [],
    ],
)
def test_validate_rejects_mismatched_rows(fields):
    with pytest.raises(MalformedRowError):
        validate(fields)


def test_validate_reports_template_id():
    with pytest.raises(MalformedRowError) as excinfo:
        validate(["400", "type"])

    assert excinfo.value.template_id == "400"


def test_registry_is_read_only():
    with pytest.raises(TypeError):
        REGISTRY["999"] = REGISTRY["100"]  # type: ignore[index]

    with pytest.raises(dataclasses.FrozenInstanceError):
        REGISTRY["100"].min_fields = 5  # type: ignore[misc]

"""Tests for flow validation and operation option rewrites."""

from dxmigrate.models.config import FlowMapping
from dxmigrate.transfer.flows import operation_graph, transform_operation_options, validate_flows

FLOWS = [{"id": "fl1", "name": "Notify", "operation": "op1"}]

OPERATIONS = [
    {"id": "op1", "flow": "fl1", "key": "call", "name": "Call", "resolve": "op2", "reject": "op3"},
    {"id": "op2", "flow": "fl1", "key": "log", "name": "Log", "resolve": None, "reject": None},
    {"id": "op3", "flow": "fl1", "key": "alert", "name": None, "resolve": None, "reject": None},
]


def test_consistent_flows_are_valid():
    validation = validate_flows(FLOWS, OPERATIONS)

    assert validation.valid
    assert validation.errors == []
    assert validation.warnings == []


def test_missing_references_are_errors():
    flows = [{"id": "fl1", "name": "Notify", "operation": "op9"}]
    operations = [
        {"id": "op1", "flow": "fl1", "name": "Call", "resolve": "op7", "reject": None},
        {"id": "op2", "flow": "fl5", "name": None, "resolve": None, "reject": "op8"},
    ]

    validation = validate_flows(flows, operations)

    assert not validation.valid
    assert validation.errors == [
        'Flow "Notify" references missing root operation: op9',
        'Operation "Call" references missing resolve operation: op7',
        'Operation "op2" references missing reject operation: op8',
        'Operation "op2" references missing flow: fl5',
    ]


def test_circular_chain_is_an_error():
    operations = [
        {"id": "a", "flow": "fl1", "resolve": "b", "reject": None},
        {"id": "b", "flow": "fl1", "resolve": None, "reject": "a"},
    ]

    validation = validate_flows([{"id": "fl1", "name": "Loop", "operation": "a"}], operations)

    assert validation.errors == ["Circular reference detected in operation chain starting from: a"]


def test_unmapped_option_values_are_warnings():
    operations = [
        {"id": "op1", "flow": "fl1", "name": "Create", "options": {"collection": "posts", "user": "u1"}},
        {"id": "op2", "flow": "fl1", "name": "Read", "options": {"collection": "articles"}},
    ]
    mapping = FlowMapping(collections={"articles": "articles"}, users={"u2": "u9"})

    validation = validate_flows([{"id": "fl1", "name": "Sync"}], operations, mapping)

    assert validation.valid
    assert validation.warnings == [
        'Operation "Create" references unmapped collection: posts',
        'Operation "Create" references unmapped user: u1',
    ]


def test_options_are_rewritten_for_target():
    operation = {
        "id": "op1",
        "options": {
            "collection": "posts",
            "user": "u1",
            "role": "r-old",
            "url": "http://localhost:8055/flows/trigger/abc",
            "callback_url": "https://localhost/done",
            "endpoint": "https://api.example.com/hook",
        },
    }
    mapping = FlowMapping(
        collections={"posts": "articles"},
        users={"u1": "u9"},
        base_url="https://cms.example.com",
    )

    rewritten = transform_operation_options(operation, mapping)

    assert rewritten["options"] == {
        "collection": "articles",
        "user": "u9",
        "role": "r-old",
        "url": "https://cms.example.com/flows/trigger/abc",
        "callback_url": "https://cms.example.com/done",
        "endpoint": "https://api.example.com/hook",
    }
    assert operation["options"]["collection"] == "posts"


def test_operation_without_options_is_untouched():
    operation = {"id": "op1", "options": None}

    assert transform_operation_options(operation, FlowMapping(base_url="https://x")) is operation


def test_operation_graph_follows_resolve_and_reject():
    graph = operation_graph(OPERATIONS)

    assert graph.depends_on("op1") == ["op2", "op3"]
    assert graph.depends_on("op2") == []

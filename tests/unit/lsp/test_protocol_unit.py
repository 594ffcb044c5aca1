# File: tests/unit/lsp/test_protocol_unit.py

import pytest

from rustowl_client.lsp.protocol import (
    AnalysisStatus,
    CursorResponse,
    Decoration,
    DecorationKind,
    MalformedResponseError,
    Position,
    Range,
    cursor_params,
    toggle_ownership_params,
)


def lsp_range(sl, sc, el, ec):
    return {"start": {"line": sl, "character": sc}, "end": {"line": el, "character": ec}}


def test_range_from_lsp():
    r = Range.from_lsp(lsp_range(1, 2, 3, 4))
    assert r == Range(1, 2, 3, 4)
    assert r.start == Position(1, 2)
    assert r.end == Position(3, 4)


@pytest.mark.parametrize(
    "payload",
    [None, {}, {"start": {"line": 1}}, lsp_range(1, "2", 3, 4), lsp_range(True, 0, 0, 0)],
)
def test_range_rejects_bad_shapes(payload):
    with pytest.raises(MalformedResponseError):
        Range.from_lsp(payload)


@pytest.mark.parametrize(
    "wire, kind",
    [
        ("lifetime", DecorationKind.LIFETIME),
        ("imm_borrow", DecorationKind.IMM_BORROW),
        ("mut_borrow", DecorationKind.MUT_BORROW),
        ("move", DecorationKind.MOVE),
        ("call", DecorationKind.CALL),
        ("shared_mut", DecorationKind.SHARED_MUT),
        ("outlive", DecorationKind.OUTLIVE),
        ("something_new", DecorationKind.OTHER),
    ],
)
def test_decoration_kind_from_wire(wire, kind):
    assert DecorationKind.from_wire(wire) is kind


def test_decoration_kind_requires_string():
    with pytest.raises(MalformedResponseError):
        DecorationKind.from_wire(3)


def test_decoration_from_lsp_defaults():
    deco = Decoration.from_lsp({"type": "move", "range": lsp_range(0, 0, 0, 3)})
    assert deco == Decoration(DecorationKind.MOVE, Range(0, 0, 0, 3), hover_text=None, overlapped=False)


def test_decoration_empty_hover_text_is_none():
    deco = Decoration.from_lsp({"type": "call", "range": lsp_range(0, 0, 0, 3), "hover_text": "", "overlapped": True})
    assert deco.hover_text is None
    assert deco.overlapped


def test_cursor_response_parses():
    payload = {
        "is_analyzed": True,
        "status": "analyzing",
        "decorations": [
            {"type": "lifetime", "range": lsp_range(1, 0, 2, 0), "hover_text": "lives here"},
            {"type": "new_kind", "range": lsp_range(3, 0, 3, 5), "overlapped": True},
        ],
    }
    response = CursorResponse.from_lsp(payload)
    assert response.is_analyzed
    assert response.status is AnalysisStatus.ANALYZING
    assert [d.kind for d in response.decorations] == [DecorationKind.LIFETIME, DecorationKind.OTHER]


def test_cursor_response_unknown_status_keeps_decorations():
    payload = {
        "is_analyzed": False,
        "status": "sleeping",
        "decorations": [{"type": "move", "range": lsp_range(0, 0, 0, 3)}],
    }
    response = CursorResponse.from_lsp(payload)
    assert response.status is AnalysisStatus.ERROR
    assert [d.kind for d in response.decorations] == [DecorationKind.MOVE]


@pytest.mark.parametrize(
    "payload",
    [
        None,
        [],
        {"status": "finished", "decorations": []},
        {"is_analyzed": True, "status": "finished", "decorations": {}},
        {"is_analyzed": True, "status": 3, "decorations": []},
        {"is_analyzed": True, "status": "finished", "decorations": [{"type": "move"}]},
    ],
)
def test_cursor_response_rejects_malformed(payload):
    with pytest.raises(MalformedResponseError):
        CursorResponse.from_lsp(payload)


def test_request_params():
    assert cursor_params("file:///a.rs", Position(4, 2)) == {
        "position": {"line": 4, "character": 2},
        "document": {"uri": "file:///a.rs"},
    }
    assert toggle_ownership_params("file:///a.rs", Position(4, 2)) == {
        "command": "rustowl.toggleOwnership",
        "arguments": ["file:///a.rs", 4, 2],
    }

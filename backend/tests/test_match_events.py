import pytest

from app.services.match_events import (
    EventType,
    LineupPayload,
    MatchEvent,
    PointPayload,
    ReceptionPayload,
    SubstitutionPayload,
    UnknownPayload,
    event_from_dict,
    event_to_dict,
    new_event,
    parse_timestamp,
)



def test_point_event_parses_reason_and_player():
    event = event_from_dict(
        {
            "id": "e1",
            "type": "POINT_US",
            "timestamp": "2024-05-01T10:00:00Z",
            "payload": {"reason": "attack_point", "playerId": "p4"},
        }
    )

    assert event.type is EventType.POINT_US
    assert event.payload == PointPayload(reason="attack_point", player_id="p4")
    assert event.is_known


def test_lineup_accepts_list_and_object_forms():
    as_list = event_from_dict(
        {
            "type": "SET_LINEUP",
            "payload": {
                "setNumber": 1,
                "lineup": [
                    {"position": 1, "playerId": "a"},
                    {"position": "2", "player": {"id": "b"}},
                    {"position": 9, "playerId": "x"},
                ],
                "liberoId": "L",
            },
        }
    )
    as_object = event_from_dict(
        {"type": "SET_LINEUP", "payload": {"setNumber": 1, "lineup": {"1": "a", "2": "b"}}}
    )

    assert isinstance(as_list.payload, LineupPayload)
    assert as_list.payload.lineup == {1: "a", 2: "b"}
    assert as_list.payload.libero_id == "L"
    assert as_object.payload.lineup == {1: "a", 2: "b"}


def test_substitution_reads_nested_player_objects():
    event = event_from_dict(
        {
            "type": "SUBSTITUTION",
            "payload": {
                "substitution": {
                    "playerOut": "p1",
                    "playerIn": {"id": "p7"},
                    "position": 3,
                    "setNumber": 2,
                }
            },
        }
    )

    assert event.payload == SubstitutionPayload(
        player_out_id="p1", player_in_id="p7", position=3, set_number=2
    )


def test_unknown_type_is_kept_verbatim():
    raw = {"id": "e9", "type": "CHALLENGE", "timestamp": "t", "payload": {"x": 1}}

    event = event_from_dict(raw)

    assert event.type == "CHALLENGE"
    assert event.payload == UnknownPayload({"x": 1})
    assert not event.is_known
    assert event_to_dict(event) == raw


@pytest.mark.parametrize(
    "raw",
    [
        {"type": "RECEPTION_EVAL", "payload": {"reception": {"playerId": "p1", "value": 7}}},
        {"type": "TIMEOUT", "payload": {"team": "both"}},
        {"type": "SUBSTITUTION", "payload": {"substitution": {"playerOutId": "p1"}}},
        {"type": "SET_LINEUP", "payload": {"lineup": "nope"}},
    ],
)
def test_malformed_payload_becomes_unknown(raw):
    event = event_from_dict(raw)

    assert isinstance(event.payload, UnknownPayload)
    assert event.id and event.timestamp


def test_serialized_reception_uses_nested_payload():
    event = new_event(
        EventType.RECEPTION_EVAL,
        ReceptionPayload(player_id="p2", value=3),
        timestamp="2024-05-01T10:00:00Z",
        event_id="r1",
    )

    assert event_to_dict(event) == {
        "id": "r1",
        "type": "RECEPTION_EVAL",
        "timestamp": "2024-05-01T10:00:00Z",
        "payload": {"reception": {"playerId": "p2", "value": 3}},
    }


def test_new_event_rejects_mismatched_payload():
    with pytest.raises(TypeError):
        new_event(EventType.TIMEOUT, PointPayload())


def test_parse_timestamp_accepts_zulu_and_rejects_garbage():
    parsed = parse_timestamp("2024-05-01T10:00:00Z")

    assert parsed is not None and parsed.utcoffset().total_seconds() == 0
    assert parse_timestamp("yesterday") is None
    assert parse_timestamp("") is None


def test_match_event_is_frozen():
    event = MatchEvent("e1", EventType.POINT_US, "t", PointPayload())

    with pytest.raises(AttributeError):
        event.id = "e2"  # type: ignore[misc]

"""Match event model for live volleyball scouting.

The event log is the only durable state of a live match. Each event carries
a typed payload; the dictionary form produced by :func:`event_to_dict` is the
shape stored in ``match.actions`` and handed to clients.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Iterable, List, Mapping, Optional, Union

from ..time_utils import utc_isoformat

logger = logging.getLogger(__name__)


class EventType(str, Enum):
    POINT_US = "POINT_US"
    POINT_OPPONENT = "POINT_OPPONENT"
    SUBSTITUTION = "SUBSTITUTION"
    SET_LINEUP = "SET_LINEUP"
    SET_START = "SET_START"
    SET_END = "SET_END"
    RECEPTION_EVAL = "RECEPTION_EVAL"
    FREEBALL_SENT = "FREEBALL_SENT"
    FREEBALL_RECEIVED = "FREEBALL_RECEIVED"
    TIMEOUT = "TIMEOUT"
    SET_SERVICE_CHOICE = "SET_SERVICE_CHOICE"


POINT_TYPES = (EventType.POINT_US, EventType.POINT_OPPONENT)
COURT_POSITIONS = (1, 2, 3, 4, 5, 6)
RECEPTION_VALUES = (0, 1, 2, 3, 4)


@dataclass(frozen=True)
class PointPayload:
    reason: Optional[str] = None
    player_id: Optional[str] = None


@dataclass(frozen=True)
class SubstitutionPayload:
    player_out_id: str
    player_in_id: str
    position: Optional[int] = None
    set_number: Optional[int] = None
    is_libero_swap: bool = False


@dataclass(frozen=True)
class LineupPayload:
    set_number: Optional[int]
    lineup: Dict[int, str] = field(default_factory=dict)
    libero_id: Optional[str] = None


@dataclass(frozen=True)
class SetBoundaryPayload:
    set_number: Optional[int] = None
    home: Optional[int] = None
    away: Optional[int] = None


@dataclass(frozen=True)
class ReceptionPayload:
    player_id: str
    value: int


@dataclass(frozen=True)
class FreeballPayload:
    set_number: Optional[int] = None
    player_id: Optional[str] = None


@dataclass(frozen=True)
class TimeoutPayload:
    side: str
    set_number: Optional[int] = None


@dataclass(frozen=True)
class ServiceChoicePayload:
    set_number: Optional[int]
    serving_side: str


@dataclass(frozen=True)
class UnknownPayload:
    """Payload of an event this version cannot interpret; kept verbatim."""

    raw: Dict[str, Any] = field(default_factory=dict)


Payload = Union[
    PointPayload,
    SubstitutionPayload,
    LineupPayload,
    SetBoundaryPayload,
    ReceptionPayload,
    FreeballPayload,
    TimeoutPayload,
    ServiceChoicePayload,
    UnknownPayload,
]

_PAYLOAD_TYPES = {
    EventType.POINT_US: PointPayload,
    EventType.POINT_OPPONENT: PointPayload,
    EventType.SUBSTITUTION: SubstitutionPayload,
    EventType.SET_LINEUP: LineupPayload,
    EventType.SET_START: SetBoundaryPayload,
    EventType.SET_END: SetBoundaryPayload,
    EventType.RECEPTION_EVAL: ReceptionPayload,
    EventType.FREEBALL_SENT: FreeballPayload,
    EventType.FREEBALL_RECEIVED: FreeballPayload,
    EventType.TIMEOUT: TimeoutPayload,
    EventType.SET_SERVICE_CHOICE: ServiceChoicePayload,
}


@dataclass(frozen=True)
class MatchEvent:
    id: str
    type: Union[EventType, str]
    timestamp: str
    payload: Payload

    @property
    def is_known(self) -> bool:
        """``True`` when the payload matches the event type."""

        expected = _PAYLOAD_TYPES.get(self.type)  # type: ignore[arg-type]
        return expected is not None and isinstance(self.payload, expected)


def utc_timestamp(value: Optional[datetime] = None) -> str:
    return utc_isoformat(value)


def new_event(
    event_type: EventType,
    payload: Payload,
    *,
    timestamp: Optional[str] = None,
    event_id: Optional[str] = None,
) -> MatchEvent:
    expected = _PAYLOAD_TYPES[event_type]
    if not isinstance(payload, expected):
        raise TypeError(
            f"{event_type.value} requires {expected.__name__}, got {type(payload).__name__}"
        )
    return MatchEvent(
        id=event_id or uuid.uuid4().hex,
        type=event_type,
        timestamp=timestamp or utc_timestamp(),
        payload=payload,
    )


# ---------------------------------------------------------------------------
# Wire format
# ---------------------------------------------------------------------------


def _opt_int(value: Any) -> Optional[int]:
    if value is None or isinstance(value, bool):
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def _opt_str(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _parse_lineup(raw: Any) -> Dict[int, str]:
    lineup: Dict[int, str] = {}
    if isinstance(raw, Mapping):
        items: Iterable = raw.items()
    elif isinstance(raw, list):
        items = [
            (entry.get("position"), entry.get("playerId") or (entry.get("player") or {}).get("id"))
            for entry in raw
            if isinstance(entry, Mapping)
        ]
    else:
        raise ValueError("lineup must be a list or an object")
    for position, player_id in items:
        pos = _opt_int(position)
        pid = _opt_str(player_id)
        if pos in COURT_POSITIONS and pid:
            lineup[pos] = pid
    return lineup


def _parse_payload(event_type: EventType, raw: Mapping[str, Any]) -> Payload:
    if event_type in POINT_TYPES:
        return PointPayload(
            reason=_opt_str(raw.get("reason")),
            player_id=_opt_str(raw.get("playerId")),
        )

    if event_type is EventType.SUBSTITUTION:
        sub = raw.get("substitution")
        if not isinstance(sub, Mapping):
            sub = raw
        out_id = _opt_str(sub.get("playerOutId") or sub.get("playerOut"))
        in_id = _opt_str(sub.get("playerInId"))
        if in_id is None and isinstance(sub.get("playerIn"), Mapping):
            in_id = _opt_str(sub["playerIn"].get("id"))
        elif in_id is None:
            in_id = _opt_str(sub.get("playerIn"))
        if not out_id or not in_id:
            raise ValueError("substitution requires playerOutId and playerInId")
        position = _opt_int(sub.get("position"))
        return SubstitutionPayload(
            player_out_id=out_id,
            player_in_id=in_id,
            position=position if position in COURT_POSITIONS else None,
            set_number=_opt_int(sub.get("setNumber")),
            is_libero_swap=bool(sub.get("isLiberoSwap", False)),
        )

    if event_type is EventType.SET_LINEUP:
        return LineupPayload(
            set_number=_opt_int(raw.get("setNumber")),
            lineup=_parse_lineup(raw.get("lineup") or {}),
            libero_id=_opt_str(raw.get("liberoId")),
        )

    if event_type in (EventType.SET_START, EventType.SET_END):
        return SetBoundaryPayload(
            set_number=_opt_int(raw.get("setNumber")),
            home=_opt_int(raw.get("home")),
            away=_opt_int(raw.get("away")),
        )

    if event_type is EventType.RECEPTION_EVAL:
        rec = raw.get("reception")
        if not isinstance(rec, Mapping):
            rec = raw
        player_id = _opt_str(rec.get("playerId"))
        value = _opt_int(rec.get("value"))
        if not player_id or value not in RECEPTION_VALUES:
            raise ValueError("reception requires playerId and a value from 0 to 4")
        return ReceptionPayload(player_id=player_id, value=value)

    if event_type in (EventType.FREEBALL_SENT, EventType.FREEBALL_RECEIVED):
        return FreeballPayload(
            set_number=_opt_int(raw.get("setNumber")),
            player_id=_opt_str(raw.get("playerId")),
        )

    if event_type is EventType.TIMEOUT:
        side = _opt_str(raw.get("team") or raw.get("side"))
        if side not in ("home", "away"):
            raise ValueError("timeout requires team 'home' or 'away'")
        return TimeoutPayload(side=side, set_number=_opt_int(raw.get("setNumber")))

    if event_type is EventType.SET_SERVICE_CHOICE:
        serving = _opt_str(raw.get("initialServingSide") or raw.get("servingSide"))
        if serving not in ("our", "opponent"):
            raise ValueError("service choice requires 'our' or 'opponent'")
        return ServiceChoicePayload(
            set_number=_opt_int(raw.get("setNumber")), serving_side=serving
        )

    raise ValueError(f"unsupported event type {event_type!r}")


def event_from_dict(data: Mapping[str, Any]) -> MatchEvent:
    """Parse a stored event.

    Unknown types and malformed payloads never raise: the event is kept with
    an :class:`UnknownPayload` so it survives a round trip to the store.
    """

    raw_type = str(data.get("type") or "")
    raw_payload = data.get("payload")
    payload_dict: Dict[str, Any] = dict(raw_payload) if isinstance(raw_payload, Mapping) else {}
    event_id = _opt_str(data.get("id")) or uuid.uuid4().hex
    timestamp = _opt_str(data.get("timestamp")) or utc_timestamp()

    try:
        event_type: Union[EventType, str] = EventType(raw_type)
    except ValueError:
        logger.debug("Keeping event %s with unknown type %r", event_id, raw_type)
        return MatchEvent(event_id, raw_type, timestamp, UnknownPayload(payload_dict))

    try:
        payload = _parse_payload(event_type, payload_dict)
    except ValueError as exc:
        logger.debug("Keeping malformed %s event %s: %s", raw_type, event_id, exc)
        return MatchEvent(event_id, event_type, timestamp, UnknownPayload(payload_dict))

    return MatchEvent(event_id, event_type, timestamp, payload)


def events_from_dicts(items: Optional[Iterable[Mapping[str, Any]]]) -> List[MatchEvent]:
    return [event_from_dict(item) for item in (items or []) if isinstance(item, Mapping)]


def _payload_to_dict(event_type: Union[EventType, str], payload: Payload) -> Dict[str, Any]:
    if isinstance(payload, UnknownPayload):
        return dict(payload.raw)
    if isinstance(payload, PointPayload):
        out: Dict[str, Any] = {}
        if payload.reason is not None:
            out["reason"] = payload.reason
        if payload.player_id is not None:
            out["playerId"] = payload.player_id
        return out
    if isinstance(payload, SubstitutionPayload):
        return {
            "substitution": {
                "playerOutId": payload.player_out_id,
                "playerInId": payload.player_in_id,
                "position": payload.position,
                "setNumber": payload.set_number,
                "isLiberoSwap": payload.is_libero_swap,
            }
        }
    if isinstance(payload, LineupPayload):
        return {
            "setNumber": payload.set_number,
            "lineup": [
                {"position": pos, "playerId": pid}
                for pos, pid in sorted(payload.lineup.items())
            ],
            "liberoId": payload.libero_id,
        }
    if isinstance(payload, SetBoundaryPayload):
        out = {"setNumber": payload.set_number}
        if payload.home is not None and payload.away is not None:
            out["home"] = payload.home
            out["away"] = payload.away
        return out
    if isinstance(payload, ReceptionPayload):
        return {"reception": {"playerId": payload.player_id, "value": payload.value}}
    if isinstance(payload, FreeballPayload):
        out = {"setNumber": payload.set_number}
        if payload.player_id is not None:
            out["playerId"] = payload.player_id
        return out
    if isinstance(payload, TimeoutPayload):
        return {"team": payload.side, "setNumber": payload.set_number}
    if isinstance(payload, ServiceChoicePayload):
        return {
            "setNumber": payload.set_number,
            "initialServingSide": payload.serving_side,
        }
    raise TypeError(f"cannot serialize payload for {event_type!r}")


def event_to_dict(event: MatchEvent) -> Dict[str, Any]:
    event_type = event.type.value if isinstance(event.type, EventType) else event.type
    return {
        "id": event.id,
        "type": event_type,
        "timestamp": event.timestamp,
        "payload": _payload_to_dict(event.type, event.payload),
    }


def events_to_dicts(events: Iterable[MatchEvent]) -> List[Dict[str, Any]]:
    return [event_to_dict(e) for e in events]


def parse_timestamp(value: str) -> Optional[datetime]:
    """Parse an ISO timestamp, accepting a trailing ``Z``."""

    if not value:
        return None
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed

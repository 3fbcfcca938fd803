"""Internal application services (pure helpers, no I/O except ``persistence``)."""

from .match_events import EventType, MatchEvent, event_from_dict, event_to_dict
from .match_state import DerivedMatchState, compute_derived_state
from .match_flow import FlowState, Prompt, advance_flow
from .stats import calculate_game_flow, calculate_match_stats
from .live_session import MatchSession, SessionRegistry

__all__ = [
    "EventType",
    "MatchEvent",
    "event_from_dict",
    "event_to_dict",
    "DerivedMatchState",
    "compute_derived_state",
    "FlowState",
    "Prompt",
    "advance_flow",
    "calculate_game_flow",
    "calculate_match_stats",
    "MatchSession",
    "SessionRegistry",
]

"""Prompt sequencing for live scouting.

The scorer is shown at most one prompt at a time. ``advance_flow`` decides
which one after every change to the event log by comparing the previous and
the new derived state; it is a pure function of its inputs.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import FrozenSet, Optional, Sequence

from ..exceptions import ConvocationRequired
from .match_state import DerivedMatchState


class Prompt(str, Enum):
    NONE = "NONE"
    STARTERS_PROMPT = "STARTERS_PROMPT"
    RECEPTION_PROMPT = "RECEPTION_PROMPT"
    SUBSTITUTION_PROMPT = "SUBSTITUTION_PROMPT"
    SET_SUMMARY_PROMPT = "SET_SUMMARY_PROMPT"
    MATCH_FINISHED_PROMPT = "MATCH_FINISHED_PROMPT"


BLOCKING_PROMPTS = frozenset({Prompt.SET_SUMMARY_PROMPT, Prompt.STARTERS_PROMPT})


@dataclass(frozen=True)
class FlowState:
    prompt: Prompt = Prompt.NONE
    acknowledged_sets: FrozenSet[int] = field(default_factory=frozenset)
    reception_done: bool = False
    starters_dismissed_for: Optional[int] = None
    finished_synced: bool = False


@dataclass(frozen=True)
class FlowTransition:
    flow: FlowState
    sync_required: bool = False

    @property
    def prompt(self) -> Prompt:
        return self.flow.prompt


def _score(state: DerivedMatchState) -> tuple:
    return (state.current_set, state.home_score, state.away_score)


def _needs_set_summary(state: DerivedMatchState, flow: FlowState) -> bool:
    return state.is_set_finished and state.current_set not in flow.acknowledged_sets


def _needs_starters(
    prev: Optional[DerivedMatchState], state: DerivedMatchState, flow: FlowState
) -> bool:
    if state.has_lineup_for_current_set or state.is_match_finished or state.is_set_finished:
        return False
    if flow.starters_dismissed_for == state.current_set:
        return False
    set_changed = prev is None or prev.current_set != state.current_set
    return set_changed or flow.prompt is Prompt.STARTERS_PROMPT


def _needs_reception(state: DerivedMatchState, flow: FlowState) -> bool:
    return (
        state.is_receiving
        and not state.is_set_finished
        and not state.is_match_finished
        and state.has_lineup_for_current_set
        and not state.reception_evaluated
        and not flow.reception_done
    )


def advance_flow(
    prev: Optional[DerivedMatchState],
    state: DerivedMatchState,
    flow: Optional[FlowState] = None,
) -> FlowTransition:
    """Evaluate the prompt rules after the log changed.

    ``prev`` is ``None`` on the first evaluation after loading (or reloading)
    a match. Rules are applied in priority order: set summary, starters,
    reception, an already open substitution prompt, match finished.
    """

    flow = flow or FlowState()

    # A new rally while receiving needs a new reception evaluation.
    if prev is not None and _score(prev) != _score(state) and state.is_receiving:
        flow = replace(flow, reception_done=False)
    if prev is not None and prev.current_set != state.current_set:
        flow = replace(flow, starters_dismissed_for=None, reception_done=False)

    # A SET_END in the log acknowledges the summary; undoing it (or the point
    # that finished the set) brings the summary back.
    acknowledged = flow.acknowledged_sets
    if not state.is_set_finished:
        acknowledged = acknowledged - {state.current_set}
    elif prev is None or prev.set_summary_modal_open != state.set_summary_modal_open:
        if state.set_summary_modal_open:
            acknowledged = acknowledged - {state.current_set}
        else:
            acknowledged = acknowledged | {state.current_set}
    flow = replace(flow, acknowledged_sets=acknowledged)

    sync_required = state.is_match_finished and not flow.finished_synced
    flow = replace(flow, finished_synced=state.is_match_finished)

    if _needs_set_summary(state, flow):
        prompt = Prompt.SET_SUMMARY_PROMPT
    elif _needs_starters(prev, state, flow):
        prompt = Prompt.STARTERS_PROMPT
    elif state.is_match_finished:
        prompt = Prompt.MATCH_FINISHED_PROMPT
    elif flow.prompt is Prompt.SUBSTITUTION_PROMPT and not state.is_set_finished:
        prompt = Prompt.SUBSTITUTION_PROMPT
    elif _needs_reception(state, flow):
        prompt = Prompt.RECEPTION_PROMPT
    else:
        prompt = Prompt.NONE

    return FlowTransition(replace(flow, prompt=prompt), sync_required=sync_required)


def acknowledge_set_summary(state: DerivedMatchState, flow: FlowState) -> FlowState:
    if flow.prompt is not Prompt.SET_SUMMARY_PROMPT:
        return flow
    return replace(
        flow,
        acknowledged_sets=flow.acknowledged_sets | {state.current_set},
        prompt=Prompt.NONE,
    )


def acknowledge_reception(flow: FlowState) -> FlowState:
    prompt = Prompt.NONE if flow.prompt is Prompt.RECEPTION_PROMPT else flow.prompt
    return replace(flow, reception_done=True, prompt=prompt)


def open_substitution(flow: FlowState) -> Optional[FlowState]:
    """Open the substitution prompt, or ``None`` while a blocking prompt is up."""

    if flow.prompt in BLOCKING_PROMPTS or flow.prompt is Prompt.MATCH_FINISHED_PROMPT:
        return None
    return replace(flow, prompt=Prompt.SUBSTITUTION_PROMPT)


def close_substitution(flow: FlowState) -> FlowState:
    if flow.prompt is not Prompt.SUBSTITUTION_PROMPT:
        return flow
    return replace(flow, prompt=Prompt.NONE)


def dismiss_prompt(state: DerivedMatchState, flow: FlowState) -> FlowState:
    """Close the active prompt without satisfying it.

    A dismissed starters prompt stays closed for the rest of the set until a
    lineup is recorded. The set summary cannot be dismissed, only
    acknowledged or undone.
    """

    if flow.prompt is Prompt.SET_SUMMARY_PROMPT:
        return flow
    if flow.prompt is Prompt.STARTERS_PROMPT:
        return replace(flow, prompt=Prompt.NONE, starters_dismissed_for=state.current_set)
    return replace(flow, prompt=Prompt.NONE)


def check_entry(
    loading: bool,
    available_players: Sequence[object],
    has_lineup: bool,
    events: Sequence[object],
    *,
    match_id: str = "",
) -> None:
    """Refuse live scoring for a match nobody was convoked for.

    A match that already has events can always be re-entered, even if its
    roster could not be read.
    """

    if loading or events:
        return
    if not available_players and not has_lineup:
        raise ConvocationRequired(match_id)

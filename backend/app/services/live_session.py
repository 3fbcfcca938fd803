"""Live scouting session: the command boundary in front of one event log.

A :class:`MatchSession` validates each command against the current derived
state and only then appends events. Every append (and every undo or redo)
recomputes the state from the full log and re-evaluates the prompt flow.
Sessions live in a :class:`SessionRegistry` owned by the application, one per
match.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, replace
from typing import (
    Awaitable,
    Callable,
    Dict,
    Iterable,
    List,
    Mapping,
    Optional,
    Sequence,
    Tuple,
)

from ..exceptions import (
    InvalidCommand,
    InvalidSubstitution,
    LineupInvalid,
    LineupRequired,
    MatchFinished,
    NothingToUndo,
    PlayerNotFound,
    PromptBlocked,
    SetFinished,
    TimeoutLimitReached,
)
from ..scoring.volleyball import AWAY, HOME, VolleyballRules, default_rules
from . import match_flow
from .lineup import (
    OnCourtPlayer,
    PlayerV2,
    bench_players,
    effective_lineup,
    is_libero,
    is_valid_substitution,
    position_of,
    roster_index,
)
from .match_events import (
    COURT_POSITIONS,
    POINT_TYPES,
    RECEPTION_VALUES,
    EventType,
    FreeballPayload,
    LineupPayload,
    MatchEvent,
    PointPayload,
    ReceptionPayload,
    ServiceChoicePayload,
    SetBoundaryPayload,
    SubstitutionPayload,
    TimeoutPayload,
    events_to_dicts,
    new_event,
)
from .match_flow import FlowState, Prompt
from .match_state import (
    OPPONENT,
    OUR,
    DerivedMatchState,
    compute_derived_state,
    match_status,
    result_summary,
)
from .substitutions import PlannedSubstitution, validate_batch, validate_substitution

logger = logging.getLogger(__name__)

BOUNDARY_TYPES = (EventType.SET_START, EventType.SET_END)


@dataclass(frozen=True)
class MatchResult:
    """Payload handed to persistence: the log, a status and a result line."""

    actions: List[dict]
    status: str
    result: str


@dataclass(frozen=True)
class SessionSnapshot:
    match_id: str
    state: DerivedMatchState
    prompt: Prompt
    on_court: List[OnCourtPlayer]
    bench: List[PlayerV2]
    event_count: int
    can_undo: bool
    can_redo: bool


class MatchSession:
    def __init__(
        self,
        match_id: str,
        our_side: str = HOME,
        players: Iterable[PlayerV2] = (),
        events: Iterable[MatchEvent] = (),
        rules: Optional[VolleyballRules] = None,
    ) -> None:
        self.match_id = match_id
        self.our_side = our_side
        self.rules = rules or default_rules()
        self.players: List[PlayerV2] = list(players)
        self._players_by_id = roster_index(self.players)
        self._events: List[MatchEvent] = list(events)
        self._redo: List[MatchEvent] = []
        self._sync_pending = False

        self.state = self._project()
        # A match loaded in its finished state was already synced.
        transition = match_flow.advance_flow(
            None, self.state, FlowState(finished_synced=self.state.is_match_finished)
        )
        self.flow = transition.flow

    # ------------------------------------------------------------------
    # Log plumbing
    # ------------------------------------------------------------------
    @property
    def events(self) -> List[MatchEvent]:
        return list(self._events)

    @property
    def prompt(self) -> Prompt:
        return self.flow.prompt

    @property
    def is_complete(self) -> bool:
        """The match is over and its final set summary has been closed."""

        return self.state.is_match_finished and not self.state.set_summary_modal_open

    def _project(self) -> DerivedMatchState:
        return compute_derived_state(self._events, self.our_side, self.rules, self.players)

    def _refresh(self, prev: DerivedMatchState) -> None:
        self.state = self._project()
        transition = match_flow.advance_flow(prev, self.state, self.flow)
        self.flow = transition.flow
        if transition.sync_required:
            logger.info("Match %s finished: %s", self.match_id, result_summary(self.state))
            self._sync_pending = True

    def _append(self, *events: MatchEvent) -> List[MatchEvent]:
        prev = self.state
        self._events.extend(events)
        self._redo.clear()
        self._refresh(prev)
        return list(events)

    def pop_sync(self) -> Optional[MatchResult]:
        """Return the finished-match payload once per finish transition."""

        if not self._sync_pending:
            return None
        self._sync_pending = False
        return self.match_result()

    def match_result(self) -> MatchResult:
        return MatchResult(
            actions=events_to_dicts(self._events),
            status=match_status(self.state),
            result=result_summary(self.state),
        )

    def replace_players(self, players: Iterable[PlayerV2]) -> None:
        """Swap in a new roster (after a convocation change) and re-project."""

        self.players = list(players)
        self._players_by_id = roster_index(self.players)
        self.state = self._project()

    # ------------------------------------------------------------------
    # Preconditions
    # ------------------------------------------------------------------
    def _player(self, player_id: str) -> PlayerV2:
        player = self._players_by_id.get(player_id)
        if player is None:
            raise PlayerNotFound(player_id)
        return player

    def _ensure_open(self) -> None:
        if self.state.is_match_finished:
            raise MatchFinished(self.match_id)

    def _ensure_set_running(self) -> None:
        self._ensure_open()
        if self.state.is_set_finished:
            raise SetFinished(self.state.current_set)

    def _ensure_rally(self) -> None:
        self._ensure_set_running()
        if not self.state.has_lineup_for_current_set:
            raise LineupRequired(self.state.current_set)

    # ------------------------------------------------------------------
    # Rally commands
    # ------------------------------------------------------------------
    def _point(
        self, event_type: EventType, reason: Optional[str], player_id: Optional[str]
    ) -> List[MatchEvent]:
        self._ensure_rally()
        if player_id is not None:
            self._player(player_id)
        return self._append(new_event(event_type, PointPayload(reason, player_id)))

    def point_us(
        self, reason: Optional[str] = None, player_id: Optional[str] = None
    ) -> List[MatchEvent]:
        return self._point(EventType.POINT_US, reason, player_id)

    def point_opponent(
        self, reason: Optional[str] = None, player_id: Optional[str] = None
    ) -> List[MatchEvent]:
        return self._point(EventType.POINT_OPPONENT, reason, player_id)

    def reception_eval(self, player_id: str, value: int) -> List[MatchEvent]:
        """Rate a reception from 0 to 4. A 0 is a reception error and gives
        the opponent the point."""

        self._ensure_rally()
        self._player(player_id)
        if self.state.is_serving:
            raise InvalidCommand("receptions can only be rated while receiving serve")
        if value not in RECEPTION_VALUES:
            raise InvalidCommand(f"reception value must be 0-4, got {value}")
        events = [new_event(EventType.RECEPTION_EVAL, ReceptionPayload(player_id, value))]
        if value == 0:
            events.append(
                new_event(
                    EventType.POINT_OPPONENT,
                    PointPayload(reason="reception_error", player_id=player_id),
                )
            )
        return self._append(*events)

    def freeball_sent(self) -> List[MatchEvent]:
        self._ensure_rally()
        payload = FreeballPayload(set_number=self.state.current_set)
        return self._append(new_event(EventType.FREEBALL_SENT, payload))

    def freeball_received(self, player_id: Optional[str] = None) -> List[MatchEvent]:
        self._ensure_rally()
        if player_id is not None:
            self._player(player_id)
        payload = FreeballPayload(set_number=self.state.current_set, player_id=player_id)
        return self._append(new_event(EventType.FREEBALL_RECEIVED, payload))

    def timeout(self, side: str) -> List[MatchEvent]:
        """Record a timeout for ``home``/``away`` (``our``/``opponent`` also work)."""

        self._ensure_set_running()
        if side in (OUR, OPPONENT):
            side = self.state.side_of(side)
        if side not in (HOME, AWAY):
            raise InvalidCommand(f"unknown side {side!r}")
        limit = self.rules.timeouts_per_set
        if self.state.timeouts_for(side) >= limit:
            raise TimeoutLimitReached(side, limit)
        payload = TimeoutPayload(side=side, set_number=self.state.current_set)
        return self._append(new_event(EventType.TIMEOUT, payload))

    # ------------------------------------------------------------------
    # Lineup and substitutions
    # ------------------------------------------------------------------
    def _service_choice_required(self) -> bool:
        set_number = self.state.current_set
        return set_number == 1 or self.rules.is_deciding_set(set_number)

    def set_lineup(
        self,
        starters: Mapping[int, str],
        libero_id: Optional[str] = None,
        initial_server: Optional[str] = None,
    ) -> List[MatchEvent]:
        self._ensure_set_running()
        state = self.state
        if state.home_score or state.away_score:
            raise LineupInvalid("the lineup cannot change once the set has started")

        lineup = {int(pos): pid for pos, pid in starters.items()}
        if sorted(lineup) != list(COURT_POSITIONS):
            raise LineupInvalid("a lineup needs exactly one player for positions 1 to 6")
        if len(set(lineup.values())) != len(lineup):
            raise LineupInvalid("a player can only take one position")
        for player_id in lineup.values():
            if is_libero(self._player(player_id)):
                raise LineupInvalid("the libero cannot be one of the six starters")
        if libero_id is not None:
            if not is_libero(self._player(libero_id)):
                raise LineupInvalid(f"player '{libero_id}' is not a libero")
            if libero_id in lineup.values():
                raise LineupInvalid("the libero cannot be one of the six starters")

        if initial_server is None and self._service_choice_required():
            raise LineupInvalid(f"set {state.current_set} needs a serving side")
        if initial_server not in (None, OUR, OPPONENT):
            raise InvalidCommand(f"unknown serving side {initial_server!r}")

        events: List[MatchEvent] = []
        if not self._events:
            events.append(new_event(EventType.SET_START, SetBoundaryPayload(set_number=1)))
        if initial_server is not None:
            events.append(
                new_event(
                    EventType.SET_SERVICE_CHOICE,
                    ServiceChoicePayload(state.current_set, initial_server),
                )
            )
        events.append(
            new_event(
                EventType.SET_LINEUP,
                LineupPayload(state.current_set, lineup, libero_id),
            )
        )
        return self._append(*events)

    def substitution(self, player_out_id: str, player_in_id: str) -> List[MatchEvent]:
        self._ensure_rally()
        player_out = self._player(player_out_id)
        player_in = self._player(player_in_id)
        if not is_valid_substitution(player_out, player_in):
            raise InvalidSubstitution(
                "substitutions must be field player for field player or libero for libero"
            )
        if is_libero(player_out):
            return self._libero_swap(player_out_id, player_in_id)

        reason = validate_substitution(
            self.state.substitutions,
            player_out_id,
            player_in_id,
            self.state.lineup,
            self.rules.max_substitutions_per_set,
        )
        if reason is not None:
            raise InvalidSubstitution(reason)
        payload = SubstitutionPayload(
            player_out_id=player_out_id,
            player_in_id=player_in_id,
            position=position_of(self.state.lineup, player_out_id),
            set_number=self.state.current_set,
        )
        return self._append(new_event(EventType.SUBSTITUTION, payload))

    def substitutions(self, pairs: Sequence[Tuple[str, str]]) -> List[MatchEvent]:
        """Record several field substitutions made at one stoppage.

        ``pairs`` holds ``(player_out_id, player_in_id)`` tuples. The whole
        batch is validated first, so either every substitution is appended
        or none is.
        """

        self._ensure_rally()
        planned = [PlannedSubstitution(out_id, in_id) for out_id, in_id in pairs]
        for sub in planned:
            if is_libero(self._player(sub.player_out_id)) or is_libero(
                self._player(sub.player_in_id)
            ):
                raise InvalidSubstitution("libero swaps cannot be part of a substitution batch")
        reason = validate_batch(
            self.state.substitutions,
            planned,
            self.state.lineup,
            self.rules.max_substitutions_per_set,
        )
        if reason is not None:
            raise InvalidSubstitution(reason)
        # No player appears twice, so each outgoing player is still at their
        # starting position when their swap is applied.
        events = [
            new_event(
                EventType.SUBSTITUTION,
                SubstitutionPayload(
                    player_out_id=sub.player_out_id,
                    player_in_id=sub.player_in_id,
                    position=position_of(self.state.lineup, sub.player_out_id),
                    set_number=self.state.current_set,
                ),
            )
            for sub in planned
        ]
        return self._append(*events)

    def _libero_swap(self, player_out_id: str, player_in_id: str) -> List[MatchEvent]:
        if self.state.current_libero_id != player_out_id:
            raise InvalidSubstitution("the outgoing libero is not the active libero")
        payload = SubstitutionPayload(
            player_out_id=player_out_id,
            player_in_id=player_in_id,
            set_number=self.state.current_set,
            is_libero_swap=True,
        )
        return self._append(new_event(EventType.SUBSTITUTION, payload))

    def libero_swap(self) -> List[MatchEvent]:
        """Swap the active libero for the next libero on the roster."""

        self._ensure_rally()
        current = self.state.current_libero_id
        if current is None:
            raise InvalidSubstitution("no libero is active this set")
        candidates = [p for p in self.players if is_libero(p) and p.id != current]
        if not candidates:
            raise InvalidSubstitution("there is no other libero on the roster")
        return self._libero_swap(current, candidates[0].id)

    # ------------------------------------------------------------------
    # Undo / redo
    # ------------------------------------------------------------------
    def undo(self) -> MatchEvent:
        if not self._events:
            raise NothingToUndo()
        prev = self.state
        event = self._events.pop()
        self._redo.append(event)
        self._refresh(prev)
        return event

    def redo(self) -> MatchEvent:
        if not self._redo:
            raise NothingToUndo("redo")
        prev = self.state
        event = self._redo.pop()
        self._events.append(event)
        self._refresh(prev)
        return event

    def undo_set_end(self) -> List[MatchEvent]:
        """Reopen the last finished set.

        Drops the trailing set boundary events and the point that ended the
        set, so scoring resumes where it stopped.
        """

        idx = len(self._events)
        while idx and self._events[idx - 1].type in BOUNDARY_TYPES:
            idx -= 1
        reopened = compute_derived_state(self._events[:idx], self.our_side, self.rules)
        if not reopened.is_set_finished or self._events[idx - 1].type not in POINT_TYPES:
            raise NothingToUndo()
        idx -= 1

        prev = self.state
        removed = self._events[idx:]
        del self._events[idx:]
        self._redo.extend(reversed(removed))
        self._refresh(prev)
        return removed

    # ------------------------------------------------------------------
    # Prompts
    # ------------------------------------------------------------------
    def acknowledge_set_summary(self) -> List[MatchEvent]:
        if self.flow.prompt is not Prompt.SET_SUMMARY_PROMPT:
            raise PromptBlocked(self.flow.prompt.value)
        state = self.state
        events = [
            new_event(
                EventType.SET_END,
                SetBoundaryPayload(state.current_set, state.home_score, state.away_score),
            )
        ]
        if not state.is_match_finished:
            events.append(
                new_event(
                    EventType.SET_START, SetBoundaryPayload(set_number=state.current_set + 1)
                )
            )
        self.flow = match_flow.acknowledge_set_summary(state, self.flow)
        return self._append(*events)

    def reenter(self) -> Prompt:
        """Re-run the load-time prompt rules, as when the scorer reloads the page.

        Open prompts close and a dismissed starters prompt comes back while
        the current set still has no lineup.
        """

        flow = replace(self.flow, prompt=Prompt.NONE, starters_dismissed_for=None)
        self.flow = match_flow.advance_flow(None, self.state, flow).flow
        return self.flow.prompt

    def acknowledge_reception(self) -> None:
        self.flow = match_flow.acknowledge_reception(self.flow)

    def open_substitution(self) -> None:
        opened = match_flow.open_substitution(self.flow)
        if opened is None:
            raise PromptBlocked(self.flow.prompt.value)
        self.flow = opened

    def close_substitution(self) -> None:
        self.flow = match_flow.close_substitution(self.flow)

    def dismiss_prompt(self) -> None:
        self.flow = match_flow.dismiss_prompt(self.state, self.flow)

    # ------------------------------------------------------------------
    # Views
    # ------------------------------------------------------------------
    def snapshot(self) -> SessionSnapshot:
        state = self.state
        return SessionSnapshot(
            match_id=self.match_id,
            state=state,
            prompt=self.flow.prompt,
            on_court=effective_lineup(
                state.lineup,
                state.current_libero_id,
                state.is_serving,
                self.players,
                state.libero_position,
            ),
            bench=bench_players(state.lineup, state.current_libero_id, self.players),
            event_count=len(self._events),
            can_undo=bool(self._events),
            can_redo=bool(self._redo),
        )


SessionLoader = Callable[[], Awaitable[MatchSession]]


class SessionRegistry:
    """Live sessions by match id, kept on ``app.state.live_sessions``."""

    def __init__(self) -> None:
        self._sessions: Dict[str, MatchSession] = {}
        self._locks: Dict[str, asyncio.Lock] = {}

    def get(self, match_id: str) -> Optional[MatchSession]:
        return self._sessions.get(match_id)

    def lock(self, match_id: str) -> asyncio.Lock:
        return self._locks.setdefault(match_id, asyncio.Lock())

    async def get_or_load(self, match_id: str, loader: SessionLoader) -> MatchSession:
        session = self._sessions.get(match_id)
        if session is not None:
            return session
        async with self.lock(match_id):
            session = self._sessions.get(match_id)
            if session is None:
                session = await loader()
                self._sessions[match_id] = session
        return session

    def discard(self, match_id: str) -> None:
        self._sessions.pop(match_id, None)
        self._locks.pop(match_id, None)

    def __contains__(self, match_id: object) -> bool:
        return match_id in self._sessions

    def __len__(self) -> int:
        return len(self._sessions)

    def match_ids(self) -> Sequence[str]:
        return list(self._sessions)

"""Database access for live scouting.

Reads the convocation, the stored event log and the ruleset of a match, and
writes the log back with a status and result line. The scoring core never
imports this module; routers call it around a :class:`MatchSession`.
"""

from __future__ import annotations

import logging
from typing import Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from ..exceptions import MatchNotFound
from ..models import Match, MatchConvocation, Player, RuleSet
from ..scoring.volleyball import HOME, VolleyballRules, default_rules, rules_from_config
from ..time_utils import utc_now_naive
from .lineup import PlayerV2
from .live_session import MatchResult, MatchSession
from .match_events import EventType, LineupPayload, events_from_dicts
from .match_flow import check_entry

logger = logging.getLogger(__name__)


def player_to_v2(player: Player) -> PlayerV2:
    return PlayerV2(
        id=player.id,
        number=player.number,
        name=player.name,
        role=player.role,
        first_name=player.first_name,
        last_name=player.last_name,
        nickname=player.nickname,
    )


async def get_match(session: AsyncSession, match_id: str) -> Match:
    match = (
        await session.execute(
            select(Match).where(Match.id == match_id, Match.deleted_at.is_(None))
        )
    ).scalar_one_or_none()
    if match is None:
        raise MatchNotFound(match_id)
    return match


async def get_available_players(session: AsyncSession, match_id: str) -> List[PlayerV2]:
    """Players convoked for the match, ordered by shirt number."""

    rows = (
        await session.execute(
            select(Player)
            .join(MatchConvocation, MatchConvocation.player_id == Player.id)
            .where(MatchConvocation.match_id == match_id, Player.deleted_at.is_(None))
            .order_by(Player.number, Player.name)
        )
    ).scalars().all()
    return [player_to_v2(p) for p in rows]


async def get_lineup_for_set(
    session: AsyncSession, match_id: str, set_number: int
) -> Optional[Dict[int, str]]:
    """The last recorded starting lineup for ``set_number``, if any."""

    match = await get_match(session, match_id)
    lineup: Optional[Dict[int, str]] = None
    for event in events_from_dicts(match.actions):
        payload = event.payload
        if event.type is EventType.SET_LINEUP and isinstance(payload, LineupPayload):
            if payload.set_number == set_number and payload.lineup:
                lineup = dict(payload.lineup)
    return lineup


async def get_rules(session: AsyncSession, match: Match) -> VolleyballRules:
    config: dict = {}
    if match.ruleset_id:
        ruleset = await session.get(RuleSet, match.ruleset_id)
        if ruleset is not None:
            config = dict(ruleset.config or {})
    if match.best_of:
        config.setdefault("bestOf", match.best_of)
    if not config:
        return default_rules()
    return rules_from_config(config)


async def update_match(
    session: AsyncSession,
    match_id: str,
    actions: List[dict],
    status: str,
    result: str,
) -> None:
    match = await get_match(session, match_id)
    match.actions = actions
    match.status = status
    match.result = result
    match.updated_at = utc_now_naive()
    await session.commit()


async def sync_match_result(
    session: AsyncSession, match_id: str, result: MatchResult
) -> Optional[str]:
    """Write ``result`` for the match.

    Returns ``None`` on success or a short error description. Failures are
    logged and never raised: the in-memory log stays authoritative and the
    caller can retry with an explicit save.
    """

    try:
        await update_match(session, match_id, result.actions, result.status, result.result)
    except (SQLAlchemyError, OSError) as exc:
        logger.exception("Failed to persist match %s", match_id)
        try:
            await session.rollback()
        except SQLAlchemyError:
            logger.warning("Rollback after failed sync of match %s also failed", match_id)
        return f"could not save match: {exc.__class__.__name__}"
    logger.info("Persisted match %s with status %s", match_id, result.status)
    return None


async def load_match_session(session: AsyncSession, match_id: str) -> MatchSession:
    """Build a live session from the stored match, convocation and ruleset.

    Raises ``ConvocationRequired`` for a match with no convoked players and no
    recorded events.
    """

    match = await get_match(session, match_id)
    players = await get_available_players(session, match_id)
    events = events_from_dicts(match.actions)
    has_lineup = any(e.type is EventType.SET_LINEUP for e in events)
    check_entry(False, players, has_lineup, events, match_id=match_id)
    rules = await get_rules(session, match)
    return MatchSession(
        match_id,
        our_side=match.home_away or HOME,
        players=players,
        events=events,
        rules=rules,
    )

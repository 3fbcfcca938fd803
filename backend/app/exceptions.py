from fastapi import HTTPException
from pydantic import BaseModel
from typing import Optional


class ProblemDetail(BaseModel):
    """RFC 7807 compliant error response."""

    type: str = "about:blank"
    title: str
    detail: Optional[str] = None
    status: int
    instance: Optional[str] = None
    code: str


class DomainException(Exception):
    """Base class for domain-specific exceptions."""

    def __init__(
        self,
        status_code: int,
        title: str,
        *,
        code: str,
        detail: str | None = None,
        type_: str = "about:blank",
    ) -> None:
        super().__init__(detail or title)
        self.status_code = status_code
        self.title = title
        self.detail = detail
        self.type = type_
        self.code = code


class PlayerNotFound(DomainException):
    def __init__(self, player_id: str) -> None:
        super().__init__(
            status_code=404,
            title="Player not found",
            detail=f"player '{player_id}' not found",
            code="player_not_found",
        )


class MatchNotFound(DomainException):
    def __init__(self, match_id: str) -> None:
        super().__init__(
            status_code=404,
            title="Match not found",
            detail=f"match '{match_id}' not found",
            code="match_not_found",
        )


class ConvocationRequired(DomainException):
    def __init__(self, match_id: str) -> None:
        super().__init__(
            status_code=409,
            title="Convocation required",
            detail=f"match '{match_id}' has no convoked players",
            code="convocation_required",
        )


class TimeoutLimitReached(DomainException):
    def __init__(self, side: str, limit: int) -> None:
        super().__init__(
            status_code=409,
            title="Timeout limit reached",
            detail=f"{side} has already used {limit} timeouts this set",
            code="timeout_limit_reached",
        )


class InvalidSubstitution(DomainException):
    def __init__(self, reason: str) -> None:
        super().__init__(
            status_code=422,
            title="Invalid substitution",
            detail=reason,
            code="invalid_substitution",
        )


class LineupInvalid(DomainException):
    def __init__(self, reason: str) -> None:
        super().__init__(
            status_code=422,
            title="Invalid lineup",
            detail=reason,
            code="lineup_invalid",
        )


class LineupRequired(DomainException):
    def __init__(self, set_number: int) -> None:
        super().__init__(
            status_code=409,
            title="Lineup required",
            detail=f"set {set_number} has no starting lineup",
            code="lineup_required",
        )


class SetFinished(DomainException):
    def __init__(self, set_number: int) -> None:
        super().__init__(
            status_code=409,
            title="Set finished",
            detail=f"set {set_number} is already finished",
            code="set_finished",
        )


class MatchFinished(DomainException):
    def __init__(self, match_id: str) -> None:
        super().__init__(
            status_code=409,
            title="Match finished",
            detail=f"match '{match_id}' is already finished",
            code="match_finished",
        )


class NothingToUndo(DomainException):
    def __init__(self, what: str = "undo") -> None:
        super().__init__(
            status_code=409,
            title="Nothing to undo" if what == "undo" else "Nothing to redo",
            detail=f"there is nothing to {what}",
            code="nothing_to_undo",
        )


class InvalidCommand(DomainException):
    def __init__(self, reason: str) -> None:
        super().__init__(
            status_code=422,
            title="Invalid command",
            detail=reason,
            code="invalid_command",
        )


class PromptBlocked(DomainException):
    def __init__(self, prompt: str) -> None:
        super().__init__(
            status_code=409,
            title="Prompt blocked",
            detail=f"'{prompt}' must be resolved first",
            code="prompt_blocked",
        )


def http_problem(
    status_code: int,
    detail: str,
    code: str,
    *,
    headers: Optional[dict[str, str]] = None,
) -> HTTPException:
    """Create an HTTPException with an attached problem code."""

    exc = HTTPException(status_code=status_code, detail=detail, headers=headers)
    setattr(exc, "code", code)
    return exc

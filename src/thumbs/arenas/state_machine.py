"""Arena state machine.

A pure reducer: ``apply(state, command) -> (state, effects)``. It never
touches the database or the network; :mod:`thumbs.arenas.service` loads the
state, applies a command and interprets the resulting effects (persist,
fan out, settle).

Lifecycle:
    waiting -> live -> paused -> live ... -> finished

``finished`` is terminal and is only ever entered through settlement, whose
database guard makes it happen at most once.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Union

from thumbs.errors import ConflictError, ForbiddenError, ValidationError

VALID_TRANSITIONS: dict[str, list[str]] = {
    "waiting": ["live"],
    "live": ["paused", "finished"],
    "paused": ["live", "finished"],
    "finished": [],
}

CHAT_MAX_LENGTH = 280


def validate_transition(current_status: str, target_status: str) -> None:
    """Validate a status transition. Raises ConflictError if invalid."""
    valid = VALID_TRANSITIONS.get(current_status, [])
    if target_status not in valid:
        raise ConflictError(
            f"Invalid transition: {current_status} -> {target_status}. "
            f"Valid transitions: {valid}",
            "INVALID_TRANSITION",
        )


# --- State ---


@dataclass(frozen=True)
class PlayerState:
    user_id: int
    score: int = 0
    moves: int = 0
    status: str = "playing"


@dataclass(frozen=True)
class ArenaState:
    arena_id: int
    status: str
    players: tuple[PlayerState, ...]
    spectators: tuple[int, ...] = ()
    win_score: int = 100
    winner_id: int | None = None

    def player(self, user_id: int) -> PlayerState | None:
        for p in self.players:
            if p.user_id == user_id:
                return p
        return None

    def is_player(self, user_id: int) -> bool:
        return self.player(user_id) is not None

    def is_spectator(self, user_id: int) -> bool:
        return user_id in self.spectators


# --- Commands ---


@dataclass(frozen=True)
class JoinSpectator:
    user_id: int


@dataclass(frozen=True)
class PostChat:
    user_id: int
    message: str


@dataclass(frozen=True)
class UpdateScore:
    reporter_id: int
    player_id: int
    score: int
    moves: int | None = None


@dataclass(frozen=True)
class LeaveArena:
    user_id: int


@dataclass(frozen=True)
class PauseArena:
    user_id: int


@dataclass(frozen=True)
class ResumeArena:
    user_id: int


Command = Union[JoinSpectator, PostChat, UpdateScore, LeaveArena, PauseArena, ResumeArena]


# --- Effects ---


@dataclass(frozen=True)
class AddSpectator:
    """Persist the spectator and announce ``spectator_joined`` (joiner excluded)."""

    user_id: int


@dataclass(frozen=True)
class RemoveSpectator:
    """Delete the spectator and announce ``spectator_left``."""

    user_id: int


@dataclass(frozen=True)
class SendSnapshot:
    """Send the full ``arena_state`` to one user."""

    user_id: int


@dataclass(frozen=True)
class AppendChat:
    user_id: int | None
    message: str
    kind: str = "user"


@dataclass(frozen=True)
class RecordScore:
    player_id: int
    score: int
    moves: int


@dataclass(frozen=True)
class ChangeStatus:
    status: str


@dataclass(frozen=True)
class Settle:
    winner_id: int | None


Effect = Union[AddSpectator, RemoveSpectator, SendSnapshot, AppendChat, RecordScore, ChangeStatus, Settle]


# --- Reducer ---


def apply(
    state: ArenaState,
    command: Command,
    *,
    chat_max_length: int = CHAT_MAX_LENGTH,
) -> tuple[ArenaState, list[Effect]]:
    """Apply one command to an arena.

    Raises:
        ValidationError: malformed command input (empty chat, unknown player).
        ForbiddenError: ``NOT_A_PLAYER`` for player-only commands.
        ConflictError: the arena's status does not allow the command.
    """
    if isinstance(command, JoinSpectator):
        return _join(state, command)
    if isinstance(command, PostChat):
        return _chat(state, command, chat_max_length)
    if isinstance(command, UpdateScore):
        return _update_score(state, command)
    if isinstance(command, LeaveArena):
        return _leave(state, command)
    if isinstance(command, PauseArena):
        return _change_status(state, command.user_id, "paused")
    if isinstance(command, ResumeArena):
        return _change_status(state, command.user_id, "live")
    raise TypeError(f"Unknown arena command: {type(command).__name__}")


def _join(state: ArenaState, cmd: JoinSpectator) -> tuple[ArenaState, list[Effect]]:
    # Players already receive arena traffic; a repeat join only re-sends the snapshot.
    if state.is_player(cmd.user_id) or state.is_spectator(cmd.user_id):
        return state, [SendSnapshot(cmd.user_id)]
    new_state = replace(state, spectators=(*state.spectators, cmd.user_id))
    return new_state, [AddSpectator(cmd.user_id), SendSnapshot(cmd.user_id)]


def _chat(state: ArenaState, cmd: PostChat, max_length: int) -> tuple[ArenaState, list[Effect]]:
    message = cmd.message.strip()
    if not message:
        raise ValidationError("Message cannot be empty", "EMPTY_MESSAGE")
    return state, [AppendChat(cmd.user_id, message[:max_length])]


def _update_score(state: ArenaState, cmd: UpdateScore) -> tuple[ArenaState, list[Effect]]:
    if not state.is_player(cmd.reporter_id):
        raise ForbiddenError("Only players can update scores", "NOT_A_PLAYER")
    if state.status == "finished":
        raise ConflictError("Arena already finished", "ARENA_FINISHED")
    if state.status != "live":
        raise ConflictError(f"Arena is {state.status}", "ARENA_NOT_LIVE")

    target = state.player(cmd.player_id)
    if target is None:
        raise ValidationError("Player is not in this arena", "PLAYER_NOT_FOUND")
    if cmd.score < 0:
        raise ValidationError("Score must be non-negative", "INVALID_SCORE")

    moves = target.moves if cmd.moves is None else cmd.moves
    updated = replace(target, score=cmd.score, moves=moves)
    players = tuple(updated if p.user_id == cmd.player_id else p for p in state.players)
    new_state = replace(state, players=players)

    effects: list[Effect] = [RecordScore(cmd.player_id, cmd.score, moves)]
    if cmd.score >= state.win_score:
        effects.append(Settle(cmd.player_id))
    return new_state, effects


def _leave(state: ArenaState, cmd: LeaveArena) -> tuple[ArenaState, list[Effect]]:
    if not state.is_spectator(cmd.user_id):
        return state, []
    spectators = tuple(uid for uid in state.spectators if uid != cmd.user_id)
    return replace(state, spectators=spectators), [RemoveSpectator(cmd.user_id)]


def _change_status(state: ArenaState, user_id: int, target: str) -> tuple[ArenaState, list[Effect]]:
    if not state.is_player(user_id):
        raise ForbiddenError("Only players can pause or resume the arena", "NOT_A_PLAYER")
    validate_transition(state.status, target)
    return replace(state, status=target), [ChangeStatus(target)]

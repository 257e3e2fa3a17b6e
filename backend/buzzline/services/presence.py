"""Who is attached to which game, and what happens when they leave.

Each Socket.IO connection gets a ``ConnectionContext`` keyed by its sid.
Handlers look the context up instead of trusting anything the client
resends. Contexts live in process memory: one server process owns a game.

Leaving has consequences:

- last connection of a player gone: ``is_connected`` drops to False and
  ``player:disconnected`` goes out. Score and lock-set are untouched.
- last MC connection gone: the game is paused (after
  ``MC_DISCONNECT_GRACE_SEC``, immediately by default). Only an explicit MC
  resume brings it back.
"""
import threading
import time
from dataclasses import dataclass
from typing import Dict, List, Optional

from flask import current_app

from buzzline import db, socketio
from buzzline import events
from buzzline.models import Game, Player
from buzzline.services import broadcaster, lobby
from buzzline.services.lobby import McAuthority
from buzzline.store import atomic, compare_and_swap

ROLE_MC = 'mc'
ROLE_PLAYER = 'player'
ROLE_SCREEN = 'screen'
ROLES = (ROLE_MC, ROLE_PLAYER, ROLE_SCREEN)

MC_DISCONNECT_REASON = 'MC disconnected'


@dataclass(frozen=True)
class ConnectionContext:
    sid: str
    game_id: int
    role: str
    player_id: Optional[int] = None
    authority: Optional[McAuthority] = None

    @property
    def is_mc(self) -> bool:
        return self.role == ROLE_MC and self.authority is not None


class PresenceRegistry:
    """In-memory map of sid -> ConnectionContext."""

    def __init__(self):
        self._contexts: Dict[str, ConnectionContext] = {}
        self._pause_deadlines: Dict[int, float] = {}
        self._lock = threading.Lock()

    def get(self, sid: str) -> Optional[ConnectionContext]:
        with self._lock:
            return self._contexts.get(sid)

    def attach(self, ctx: ConnectionContext) -> Optional[ConnectionContext]:
        """Store ``ctx``, returning whatever the sid was attached as before."""
        with self._lock:
            previous = self._contexts.get(ctx.sid)
            self._contexts[ctx.sid] = ctx
            if ctx.role == ROLE_MC:
                self._pause_deadlines.pop(ctx.game_id, None)
            return previous

    def detach(self, sid: str) -> Optional[ConnectionContext]:
        with self._lock:
            return self._contexts.pop(sid, None)

    def connections_for_game(self, game_id: int) -> List[ConnectionContext]:
        with self._lock:
            return [c for c in self._contexts.values() if c.game_id == game_id]

    def mc_count(self, game_id: int) -> int:
        return sum(1 for c in self.connections_for_game(game_id) if c.role == ROLE_MC)

    def player_connection_count(self, game_id: int, player_id: int) -> int:
        return sum(1 for c in self.connections_for_game(game_id) if c.player_id == player_id)

    def set_pause_deadline(self, game_id: int, deadline: float) -> None:
        with self._lock:
            self._pause_deadlines[game_id] = deadline

    def take_pause_deadline(self, game_id: int, deadline: float) -> bool:
        """Claim a scheduled pause; False if an MC came back or it was rescheduled."""
        with self._lock:
            if self._pause_deadlines.get(game_id) != deadline:
                return False
            if any(c.game_id == game_id and c.role == ROLE_MC for c in self._contexts.values()):
                return False
            del self._pause_deadlines[game_id]
            return True

    def clear(self) -> None:
        with self._lock:
            self._contexts.clear()
            self._pause_deadlines.clear()


registry = PresenceRegistry()


def _set_connected(player_id: int, connected: bool) -> bool:
    with atomic('set_connected'):
        changed = compare_and_swap(Player, {'id': player_id}, {'is_connected': not connected},
                                   {'is_connected': connected})
    return bool(changed)


def attach_mc(sid: str, game: Game, authority: McAuthority) -> ConnectionContext:
    ctx = ConnectionContext(sid=sid, game_id=game.id, role=ROLE_MC, authority=authority)
    registry.attach(ctx)
    current_app.logger.info(f"[mc-attached] game={game.id} sid={sid} mc_connections={registry.mc_count(game.id)}")
    return ctx


def attach_player(sid: str, game: Game, player: Player) -> ConnectionContext:
    ctx = ConnectionContext(sid=sid, game_id=game.id, role=ROLE_PLAYER, player_id=player.id)
    registry.attach(ctx)
    _set_connected(player.id, True)
    current_app.logger.info(f"[player-attached] game={game.id} player={player.id} sid={sid}")
    broadcaster.publish(game.id, events.PlayerConnected(player_id=player.id, player_name=player.name))
    return ctx


def attach_screen(sid: str, game: Game) -> ConnectionContext:
    ctx = ConnectionContext(sid=sid, game_id=game.id, role=ROLE_SCREEN)
    registry.attach(ctx)
    return ctx


def handle_detach(sid: str) -> Optional[ConnectionContext]:
    """Forget ``sid`` and apply the consequences of it leaving."""
    ctx = registry.detach(sid)
    if ctx is None:
        return None

    if ctx.role == ROLE_PLAYER and ctx.player_id is not None:
        if registry.player_connection_count(ctx.game_id, ctx.player_id) == 0:
            _set_connected(ctx.player_id, False)
            player = db.session.get(Player, ctx.player_id)
            current_app.logger.info(f"[player-detached] game={ctx.game_id} player={ctx.player_id}")
            broadcaster.publish(ctx.game_id, events.PlayerDisconnected(
                player_id=ctx.player_id, player_name=player.name if player else '',
            ))

    elif ctx.role == ROLE_MC and registry.mc_count(ctx.game_id) == 0:
        grace = float(current_app.config.get('MC_DISCONNECT_GRACE_SEC', 0) or 0)
        current_app.logger.info(f"[mc-detached] game={ctx.game_id} grace={grace}s")
        if grace > 0:
            _schedule_pause(current_app._get_current_object(), ctx.game_id, grace)
        else:
            lobby.pause_game(ctx.game_id, MC_DISCONNECT_REASON)

    return ctx


def _schedule_pause(app, game_id: int, delay_sec: float) -> None:
    deadline = time.time() + delay_sec
    registry.set_pause_deadline(game_id, deadline)

    def _runner(gid: int, expected_deadline: float):
        sleep_for = max(0.0, expected_deadline - time.time())
        if sleep_for:
            socketio.sleep(sleep_for)
        if not registry.take_pause_deadline(gid, expected_deadline):
            return
        with app.app_context():
            lobby.pause_game(gid, MC_DISCONNECT_REASON)

    socketio.start_background_task(_runner, game_id, deadline)

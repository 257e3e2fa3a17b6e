"""Realtime events sent to Socket.IO clients.

One dataclass per event name. ``payload()`` is exactly what goes on the wire.
Question payloads embedded here never carry answer text unless the event is
addressed to the MC room.
"""
from dataclasses import dataclass, asdict, field
from typing import Any, ClassVar, Dict, List, Optional


@dataclass(frozen=True)
class Event:
    name: ClassVar[str] = ''

    def payload(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class StateSnapshot(Event):
    name: ClassVar[str] = 'state:snapshot'
    game_code: str
    status: str
    current_question_index: int
    question_count: int
    current_question: Optional[Dict[str, Any]]
    question_state: Optional[Dict[str, Any]]
    players: List[Dict[str, Any]] = field(default_factory=list)


@dataclass(frozen=True)
class QuestionOpened(Event):
    name: ClassVar[str] = 'question:opened'
    question_id: int
    timestamp: str


@dataclass(frozen=True)
class QuestionReopened(Event):
    name: ClassVar[str] = 'question:reopened'
    question_id: int


@dataclass(frozen=True)
class BuzzWinner(Event):
    name: ClassVar[str] = 'buzz:winner'
    question_id: int
    player_id: int
    player_name: str


@dataclass(frozen=True)
class BuzzRejected(Event):
    name: ClassVar[str] = 'buzz:rejected'
    question_id: Optional[int]
    reason: str


@dataclass(frozen=True)
class BuzzCorrect(Event):
    name: ClassVar[str] = 'buzz:correct'
    question_id: int
    player_id: int
    points: int


@dataclass(frozen=True)
class BuzzWrong(Event):
    name: ClassVar[str] = 'buzz:wrong'
    question_id: int
    player_id: int
    penalty: int


@dataclass(frozen=True)
class PlayerLocked(Event):
    name: ClassVar[str] = 'player:locked'
    question_id: int
    player_id: int


@dataclass(frozen=True)
class PlayerUnlocked(Event):
    name: ClassVar[str] = 'player:unlocked'
    question_id: int
    player_id: int


@dataclass(frozen=True)
class QuestionChanged(Event):
    name: ClassVar[str] = 'question:changed'
    question_index: int
    question: Dict[str, Any]


@dataclass(frozen=True)
class PlayerConnected(Event):
    name: ClassVar[str] = 'player:connected'
    player_id: int
    player_name: str


@dataclass(frozen=True)
class PlayerDisconnected(Event):
    name: ClassVar[str] = 'player:disconnected'
    player_id: int
    player_name: str


@dataclass(frozen=True)
class GamePaused(Event):
    name: ClassVar[str] = 'game:paused'
    reason: str


@dataclass(frozen=True)
class GameStarted(Event):
    name: ClassVar[str] = 'game:started'
    status: str


@dataclass(frozen=True)
class GameResumed(Event):
    name: ClassVar[str] = 'game:resumed'
    status: str


@dataclass(frozen=True)
class GameFinished(Event):
    name: ClassVar[str] = 'game:finished'
    status: str


@dataclass(frozen=True)
class ScoreboardUpdated(Event):
    name: ClassVar[str] = 'scoreboard:updated'
    players: List[Dict[str, Any]] = field(default_factory=list)

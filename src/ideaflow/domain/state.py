from enum import Enum, auto


class SessionStatus(Enum):
    IDLE = auto()
    CONNECTING = auto()
    LISTENING = auto()
    ERROR = auto()


VALID_TRANSITIONS: dict[SessionStatus, set[SessionStatus]] = {
    SessionStatus.IDLE: {SessionStatus.CONNECTING},
    SessionStatus.CONNECTING: {SessionStatus.LISTENING, SessionStatus.IDLE, SessionStatus.ERROR},
    SessionStatus.LISTENING: {SessionStatus.IDLE, SessionStatus.ERROR},
    SessionStatus.ERROR: {SessionStatus.IDLE},
}


class InvalidTransitionError(Exception):
    pass


def validate_transition(current: SessionStatus, target: SessionStatus) -> None:
    if target not in VALID_TRANSITIONS.get(current, set()):
        raise InvalidTransitionError(f"Cannot transition from {current.name} to {target.name}")

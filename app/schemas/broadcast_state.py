"""Broadcast pipeline states."""

from enum import Enum


class BroadcastState(str, Enum):
    """Broadcast pipeline lifecycle states.

    State Transition Flow:

    IDLE → PREPARING → ACTIVE → STOPPING → IDLE
               ↓    ↘
             IDLE   STOPPING

    State Descriptions:
    - IDLE: Nothing is bridged. Readiness evaluation may start a run.
    - PREPARING: Bridging transports and paused consumers are being created,
      the session description is written and the transcoder is launched.
    - ACTIVE: Consumers resumed, transcoder running.
    - STOPPING: Transcoder is killed and bridge resources are closed.
    """

    IDLE = "idle"
    PREPARING = "preparing"
    ACTIVE = "active"
    STOPPING = "stopping"

    def __str__(self) -> str:
        return self.value

    @classmethod
    def busy_states(cls) -> list["BroadcastState"]:
        """States in which a new run must not be started."""
        return [BroadcastState.PREPARING, BroadcastState.ACTIVE, BroadcastState.STOPPING]


__all__ = ["BroadcastState"]

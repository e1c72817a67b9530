"""Broadcast state machine for managing pipeline state transitions."""

from app.schemas.broadcast_state import BroadcastState


class BroadcastStateMachine:
    """State machine for the broadcast pipeline.

    State flow with triggers:
    - IDLE -> PREPARING (readiness evaluation found an audio and a video producer)
    - PREPARING -> ACTIVE (transcoder launched, consumers resumed)
      | STOPPING (stop requested while preparing)
      | IDLE (bridge setup, session description write or launch failed)
    - ACTIVE -> STOPPING (transcoder exited, or a selected producer went away, or shutdown)
    - STOPPING -> IDLE (transcoder killed, consumers and bridging transports closed)
    """

    TRANSITIONS: dict[BroadcastState, set[BroadcastState]] = {
        BroadcastState.IDLE: {BroadcastState.PREPARING},
        BroadcastState.PREPARING: {
            BroadcastState.ACTIVE,
            BroadcastState.STOPPING,
            BroadcastState.IDLE,
        },
        BroadcastState.ACTIVE: {BroadcastState.STOPPING},
        BroadcastState.STOPPING: {BroadcastState.IDLE},
    }

    @classmethod
    def can_transition(cls, current: BroadcastState, new: BroadcastState) -> bool:
        """Check if state transition is valid.

        Args:
            current: Current pipeline state
            new: Target state to transition to

        Returns:
            True if transition is valid, False otherwise
        """
        return new in cls.TRANSITIONS.get(current, set())

    @classmethod
    def get_valid_transitions(cls, state: BroadcastState) -> set[BroadcastState]:
        return cls.TRANSITIONS.get(state, set())

    @classmethod
    def get_valid_sources(cls, target: BroadcastState) -> set[BroadcastState]:
        return {state for state, targets in cls.TRANSITIONS.items() if target in targets}

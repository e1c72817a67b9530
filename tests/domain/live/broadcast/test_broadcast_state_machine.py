"""Tests for BroadcastStateMachine state transitions."""

from app.domain.live.broadcast.broadcast_state_machine import BroadcastStateMachine
from app.schemas import BroadcastState


class TestCanTransition:
    """Tests for BroadcastStateMachine.can_transition method."""

    def test_idle_to_preparing_valid(self):
        """Test IDLE -> PREPARING is a valid transition."""
        assert BroadcastStateMachine.can_transition(BroadcastState.IDLE, BroadcastState.PREPARING) is True

    def test_idle_to_active_invalid(self):
        """Test IDLE -> ACTIVE is invalid (must go through PREPARING)."""
        assert BroadcastStateMachine.can_transition(BroadcastState.IDLE, BroadcastState.ACTIVE) is False

    def test_preparing_to_active_valid(self):
        """Test PREPARING -> ACTIVE is a valid transition."""
        assert BroadcastStateMachine.can_transition(BroadcastState.PREPARING, BroadcastState.ACTIVE) is True

    def test_preparing_to_stopping_valid(self):
        """Test PREPARING -> STOPPING is valid (stop requested while preparing)."""
        assert (
            BroadcastStateMachine.can_transition(BroadcastState.PREPARING, BroadcastState.STOPPING)
            is True
        )

    def test_preparing_to_idle_valid(self):
        """Test PREPARING -> IDLE is valid (start failed)."""
        assert BroadcastStateMachine.can_transition(BroadcastState.PREPARING, BroadcastState.IDLE) is True

    def test_active_to_idle_invalid(self):
        """Test ACTIVE -> IDLE is invalid (must go through STOPPING)."""
        assert BroadcastStateMachine.can_transition(BroadcastState.ACTIVE, BroadcastState.IDLE) is False

    def test_active_to_stopping_valid(self):
        """Test ACTIVE -> STOPPING is a valid transition."""
        assert BroadcastStateMachine.can_transition(BroadcastState.ACTIVE, BroadcastState.STOPPING) is True

    def test_stopping_to_idle_valid(self):
        """Test STOPPING -> IDLE is a valid transition."""
        assert BroadcastStateMachine.can_transition(BroadcastState.STOPPING, BroadcastState.IDLE) is True

    def test_stopping_to_active_invalid(self):
        """Test STOPPING -> ACTIVE is invalid (no restart without a new evaluation)."""
        assert BroadcastStateMachine.can_transition(BroadcastState.STOPPING, BroadcastState.ACTIVE) is False

    def test_same_state_invalid(self):
        """Test self transitions are not allowed."""
        for state in BroadcastState:
            assert BroadcastStateMachine.can_transition(state, state) is False


class TestValidTransitions:
    def test_get_valid_transitions_from_preparing(self):
        """Test the targets reachable from PREPARING."""
        assert BroadcastStateMachine.get_valid_transitions(BroadcastState.PREPARING) == {
            BroadcastState.ACTIVE,
            BroadcastState.STOPPING,
            BroadcastState.IDLE,
        }

    def test_get_valid_sources_of_idle(self):
        """Test IDLE is reached from PREPARING and STOPPING only."""
        assert BroadcastStateMachine.get_valid_sources(BroadcastState.IDLE) == {
            BroadcastState.PREPARING,
            BroadcastState.STOPPING,
        }

    def test_busy_states(self):
        """Test every state but IDLE blocks a new run."""
        assert set(BroadcastState.busy_states()) == set(BroadcastState) - {BroadcastState.IDLE}

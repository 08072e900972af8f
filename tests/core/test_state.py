"""Unit tests for kmscert.core.state: the issuance run state machine."""

from __future__ import annotations

import logging

import pytest

from kmscert.core.state import ISSUANCE_TRANSITIONS, assert_transition, log_transition
from kmscert.core.types import IssuanceState
from kmscert.errors import InvalidStateTransition

_PIPELINE = [
    IssuanceState.UNBUILT,
    IssuanceState.TBS_READY,
    IssuanceState.DIGEST_COMPUTED,
    IssuanceState.SIGNATURE_PENDING,
    IssuanceState.SIGNED,
    IssuanceState.ASSEMBLED,
]

# ---------------------------------------------------------------------------
# TestIssuanceTransitions
# ---------------------------------------------------------------------------


class TestIssuanceTransitions:
    @pytest.mark.parametrize("current,target", list(zip(_PIPELINE, _PIPELINE[1:])))
    def test_forward_steps(self, current, target):
        assert_transition(current, target)  # no exception

    @pytest.mark.parametrize("current", _PIPELINE[:-1])
    def test_any_live_state_may_fail(self, current):
        assert_transition(current, IssuanceState.FAILED)

    @pytest.mark.parametrize("terminal", [IssuanceState.ASSEMBLED, IssuanceState.FAILED])
    def test_terminal_states_reject_everything(self, terminal):
        for target in IssuanceState:
            with pytest.raises(InvalidStateTransition, match="Invalid transition"):
                assert_transition(terminal, target)

    def test_cannot_skip_signing(self):
        with pytest.raises(InvalidStateTransition, match="'digest_computed' -> 'signed'"):
            assert_transition(IssuanceState.DIGEST_COMPUTED, IssuanceState.SIGNED)

    def test_cannot_go_backwards(self):
        with pytest.raises(InvalidStateTransition):
            assert_transition(IssuanceState.SIGNED, IssuanceState.TBS_READY)

    def test_cannot_repeat_state(self):
        with pytest.raises(InvalidStateTransition):
            assert_transition(IssuanceState.TBS_READY, IssuanceState.TBS_READY)

    def test_unknown_state(self):
        with pytest.raises(InvalidStateTransition, match="Unknown state"):
            assert_transition("bogus", IssuanceState.FAILED)

    def test_custom_table(self):
        table = {IssuanceState.UNBUILT: frozenset({IssuanceState.ASSEMBLED})}
        assert_transition(IssuanceState.UNBUILT, IssuanceState.ASSEMBLED, table)

    def test_every_state_has_an_entry(self):
        assert set(ISSUANCE_TRANSITIONS) == set(IssuanceState)

    def test_error_is_not_retryable(self):
        with pytest.raises(InvalidStateTransition) as exc_info:
            assert_transition(IssuanceState.ASSEMBLED, IssuanceState.FAILED)
        assert exc_info.value.retryable is False
        assert exc_info.value.stage == "state"


# ---------------------------------------------------------------------------
# TestLogTransition
# ---------------------------------------------------------------------------


class TestLogTransition:
    def test_logs_debug(self, caplog):
        with caplog.at_level(logging.DEBUG, logger="kmscert.core.state"):
            log_transition("run-42", IssuanceState.SIGNED, IssuanceState.ASSEMBLED)
        record = caplog.records[-1]
        assert record.levelno == logging.DEBUG
        assert "run-42" in record.getMessage()
        assert "signed -> assembled" in record.getMessage()
        assert record.from_state == "signed"
        assert record.to_state == "assembled"

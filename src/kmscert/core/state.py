"""Issuance run state machine.

A certificate is built by walking a strictly linear pipeline::

    unbuilt -> tbs_ready -> digest_computed -> signature_pending
            -> signed -> assembled

Any non-terminal state may also move to ``failed``.  ``assembled`` and
``failed`` are terminal.  All transitions are enforced via
:func:`assert_transition`.

Usage::

    from kmscert.core.state import ISSUANCE_TRANSITIONS, assert_transition
    from kmscert.core.types import IssuanceState

    assert_transition(
        IssuanceState.UNBUILT, IssuanceState.TBS_READY,
        ISSUANCE_TRANSITIONS,
    )
"""

from __future__ import annotations

import logging

from kmscert.core.types import IssuanceState
from kmscert.errors import InvalidStateTransition

log = logging.getLogger(__name__)

ISSUANCE_TRANSITIONS: dict[IssuanceState, frozenset[IssuanceState]] = {
    IssuanceState.UNBUILT: frozenset({IssuanceState.TBS_READY, IssuanceState.FAILED}),
    IssuanceState.TBS_READY: frozenset({IssuanceState.DIGEST_COMPUTED, IssuanceState.FAILED}),
    IssuanceState.DIGEST_COMPUTED: frozenset(
        {IssuanceState.SIGNATURE_PENDING, IssuanceState.FAILED},
    ),
    IssuanceState.SIGNATURE_PENDING: frozenset({IssuanceState.SIGNED, IssuanceState.FAILED}),
    IssuanceState.SIGNED: frozenset({IssuanceState.ASSEMBLED, IssuanceState.FAILED}),
    IssuanceState.ASSEMBLED: frozenset(),
    IssuanceState.FAILED: frozenset(),
}


def assert_transition(
    current: IssuanceState,
    target: IssuanceState,
    table: dict[IssuanceState, frozenset[IssuanceState]] = ISSUANCE_TRANSITIONS,
) -> None:
    """Raise :class:`InvalidStateTransition` if *current* → *target* is not allowed.

    Parameters
    ----------
    current:
        The current state of the run.
    target:
        The desired next state.
    table:
        Transition table, :data:`ISSUANCE_TRANSITIONS` by default.

    """
    allowed = table.get(current)
    if allowed is None:
        msg = f"Unknown state {current!r}"
        raise InvalidStateTransition(msg)
    if target not in allowed:
        msg = (
            f"Invalid transition {current.value!r} -> {target.value!r}; "
            f"allowed targets: {sorted(s.value for s in allowed) or '(terminal)'}"
        )
        raise InvalidStateTransition(msg)


def log_transition(
    run_id: str,
    from_state: IssuanceState,
    to_state: IssuanceState,
) -> None:
    """Emit a debug log entry for a state transition."""
    log.debug(
        "Issuance %s: %s -> %s",
        run_id,
        from_state.value,
        to_state.value,
        extra={"from_state": from_state.value, "to_state": to_state.value},
    )

# This project was developed with assistance from AI tools.
"""Tests for the permit status adjacency table."""

import pytest

from db.enums import PermitStatus


def test_every_status_has_an_entry():
    assert set(PermitStatus.valid_transitions()) == set(PermitStatus)


def test_targets_are_known_statuses():
    for targets in PermitStatus.valid_transitions().values():
        assert targets <= set(PermitStatus)


def test_no_self_loops():
    for source, targets in PermitStatus.valid_transitions().items():
        assert source not in targets


@pytest.mark.parametrize("status", sorted(PermitStatus.terminal_statuses(), key=str))
def test_terminal_statuses_have_no_exits(status):
    assert PermitStatus.valid_transitions()[status] == frozenset()


def test_renewal_rejected_is_a_dead_end():
    assert PermitStatus.valid_transitions()[PermitStatus.RENEWAL_REJECTED] == frozenset()


def test_happy_path_is_reachable():
    path = [
        PermitStatus.AWAITING_PAYMENT,
        PermitStatus.PAYMENT_RECEIVED,
        PermitStatus.GENERATING_PERMIT,
        PermitStatus.PERMIT_READY,
        PermitStatus.COMPLETED,
    ]
    for current, target in zip(path, path[1:]):
        assert current.can_transition_to(target), f"{current} -> {target}"


def test_oxxo_flow_is_reachable():
    assert PermitStatus.AWAITING_PAYMENT.can_transition_to(PermitStatus.AWAITING_OXXO_PAYMENT)
    assert PermitStatus.AWAITING_OXXO_PAYMENT.can_transition_to(PermitStatus.PAYMENT_RECEIVED)
    assert PermitStatus.AWAITING_OXXO_PAYMENT.can_transition_to(PermitStatus.EXPIRED)


@pytest.mark.parametrize(
    "target",
    [
        PermitStatus.PAYMENT_RECEIVED,
        PermitStatus.PAYMENT_PROCESSING,
        PermitStatus.AWAITING_OXXO_PAYMENT,
        PermitStatus.AWAITING_PAYMENT,
    ],
)
def test_failed_payment_can_be_retried(target):
    assert PermitStatus.PAYMENT_FAILED.can_transition_to(target)


def test_paid_permit_cannot_go_back_to_payment():
    for status in PermitStatus.paid_statuses():
        for unpaid in (
            PermitStatus.AWAITING_PAYMENT,
            PermitStatus.PAYMENT_PROCESSING,
            PermitStatus.PAYMENT_FAILED,
            PermitStatus.PAYMENT_RECEIVED,
        ):
            assert not status.can_transition_to(unpaid), f"{status} -> {unpaid}"


def test_same_status_is_not_a_transition():
    assert not PermitStatus.PERMIT_READY.can_transition_to(PermitStatus.PERMIT_READY)


def test_initial_statuses_are_the_two_payment_flows():
    assert PermitStatus.initial_statuses() == {
        PermitStatus.AWAITING_PAYMENT,
        PermitStatus.AWAITING_OXXO_PAYMENT,
    }


def test_values_match_names():
    for status in PermitStatus:
        assert status.value == status.name

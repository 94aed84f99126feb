from __future__ import annotations

import pytest

from app.api.errors import CODE_CONFLICT, CODE_INVALID_TRANSITION, AppError
from app.enums import OrderStatus, OrderTrigger, PaymentStatus
from app.services.state_machine import (
    ADMIN_TRIGGERS,
    TERMINAL_STATES,
    TRANSITIONS,
    apply_transition,
    can_apply,
    next_status,
)
from tests.utils import make_order

EXPECTED = {
    (OrderStatus.pending, OrderTrigger.payment_succeeded): OrderStatus.processing,
    (OrderStatus.pending, OrderTrigger.payment_failed): OrderStatus.cancelled,
    (OrderStatus.processing, OrderTrigger.payment_failed): OrderStatus.cancelled,
    (OrderStatus.processing, OrderTrigger.refund_completed): OrderStatus.refunded,
    (OrderStatus.shipped, OrderTrigger.refund_completed): OrderStatus.refunded,
    (OrderStatus.delivered, OrderTrigger.refund_completed): OrderStatus.refunded,
    (OrderStatus.pending, OrderTrigger.manual_cancel): OrderStatus.cancelled,
    (OrderStatus.processing, OrderTrigger.manual_cancel): OrderStatus.cancelled,
    (OrderStatus.processing, OrderTrigger.fulfillment_shipped): OrderStatus.shipped,
    (OrderStatus.shipped, OrderTrigger.fulfillment_delivered): OrderStatus.delivered,
}

ALL_PAIRS = [(s, t) for s in OrderStatus for t in OrderTrigger]


@pytest.mark.parametrize(("status", "trigger"), ALL_PAIRS)
def test_next_status_full_table(status, trigger):
    expected = EXPECTED.get((status, trigger))
    if expected is None:
        with pytest.raises(AppError) as exc:
            next_status(status, trigger)
        assert exc.value.code == CODE_INVALID_TRANSITION
        assert exc.value.status_code == 409
        assert not can_apply(status, trigger)
    else:
        assert next_status(status, trigger) == expected
        assert can_apply(status, trigger)


def test_terminal_states_have_no_outgoing_transitions():
    for status in TERMINAL_STATES:
        assert all(status not in t.sources for t in TRANSITIONS.values())


def test_next_status_accepts_plain_strings():
    assert next_status("pending", OrderTrigger.payment_succeeded) == OrderStatus.processing


def test_admin_targets_are_routed_through_table():
    assert OrderStatus.pending not in ADMIN_TRIGGERS
    for target, trigger in ADMIN_TRIGGERS.items():
        assert TRANSITIONS[trigger].target == target


def test_apply_transition_bumps_version_and_payment_status(db):
    order = make_order(db)
    assert order.version == 1

    result = apply_transition(db, order, OrderTrigger.payment_succeeded)
    db.commit()
    db.refresh(order)

    assert result == OrderStatus.processing
    assert order.status == OrderStatus.processing
    assert order.payment_status == PaymentStatus.paid
    assert order.version == 2


def test_apply_transition_appends_note(db):
    order = make_order(db)
    apply_transition(db, order, OrderTrigger.manual_cancel, note="Cancelled: changed my mind")
    db.commit()
    db.refresh(order)
    assert order.notes == "Cancelled: changed my mind"
    assert order.payment_status == PaymentStatus.unpaid


def test_apply_transition_rejects_invalid_and_leaves_order(db):
    order = make_order(db, status=OrderStatus.shipped, payment_status=PaymentStatus.paid)
    with pytest.raises(AppError) as exc:
        apply_transition(db, order, OrderTrigger.manual_cancel)
    assert exc.value.code == CODE_INVALID_TRANSITION
    db.rollback()
    db.refresh(order)
    assert order.status == OrderStatus.shipped
    assert order.version == 1


def test_apply_transition_stale_version_is_conflict(db):
    order = make_order(db)
    stale_version = order.version
    apply_transition(db, order, OrderTrigger.payment_succeeded)
    db.commit()

    # A writer that read the order before the commit above still believes it is pending.
    db.refresh(order)
    order_status_before = order.status
    with pytest.raises(AppError) as exc:
        apply_transition(
            db, order, OrderTrigger.payment_failed, expected_version=stale_version
        )
    assert exc.value.code == CODE_CONFLICT
    assert exc.value.retryable is True
    db.rollback()
    db.refresh(order)
    assert order.status == order_status_before == OrderStatus.processing
    assert order.version == 2

"""
Lab Pool — Item State Machine Tests

Tests:
  - Every allowed transition in the table
  - Claim on a non-pending item → already_claimed
  - Owner-gated events by a non-owner → not_owner
  - Cancel without reason → validation_error
  - Anything outside the table → invalid_transition
  - apply_decision stamps, owner handling, version + 1
"""

import os
import sys
import unittest

_base = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
sys.path.insert(0, _base)

from workpool.machine import (
    ALREADY_CLAIMED, INVALID_TRANSITION, NOT_OWNER, VALIDATION_ERROR,
    Event, allowed_events, apply_decision, transition,
)
from workpool.types import ItemStatus, PoolItem, ResultEntry, Urgency


# ═══════════════════════════════════════════════════════════════════
# Transition Table
# ═══════════════════════════════════════════════════════════════════

class TestAcceptedTransitions(unittest.TestCase):

    def test_claim_pending(self):
        d = transition(ItemStatus.PENDING, Event.CLAIM, "w1", None)
        self.assertTrue(d.accepted)
        self.assertEqual(d.to_status, ItemStatus.CLAIMED)

    def test_start_by_owner(self):
        d = transition(ItemStatus.CLAIMED, Event.START, "w1", "w1")
        self.assertTrue(d.accepted)
        self.assertEqual(d.to_status, ItemStatus.IN_PROGRESS)

    def test_complete_by_owner(self):
        d = transition(ItemStatus.IN_PROGRESS, Event.COMPLETE, "w1", "w1")
        self.assertTrue(d.accepted)
        self.assertEqual(d.to_status, ItemStatus.COMPLETED)

    def test_cancel_claimed_and_in_progress(self):
        for status in (ItemStatus.CLAIMED, ItemStatus.IN_PROGRESS):
            d = transition(status, Event.CANCEL, "w1", "w1", reason="sample haemolysed")
            self.assertTrue(d.accepted, status)
            self.assertEqual(d.to_status, ItemStatus.CANCELLED)

    def test_admin_cancel_ignores_owner(self):
        d = transition(ItemStatus.IN_PROGRESS, Event.ADMIN_CANCEL, "lead", "w1", reason="shift ended")
        self.assertTrue(d.accepted)
        self.assertEqual(d.to_status, ItemStatus.CANCELLED)

    def test_accepts_raw_strings(self):
        d = transition("PENDING", "claim", "w1", None)
        self.assertTrue(d.accepted)

    def test_allowed_events(self):
        self.assertEqual(allowed_events(ItemStatus.PENDING), {Event.CLAIM})
        self.assertEqual(
            allowed_events(ItemStatus.CLAIMED),
            {Event.START, Event.CANCEL, Event.ADMIN_CANCEL},
        )
        self.assertEqual(allowed_events(ItemStatus.COMPLETED), set())


class TestRejectedTransitions(unittest.TestCase):

    def test_claim_non_pending(self):
        for status in (ItemStatus.CLAIMED, ItemStatus.IN_PROGRESS,
                       ItemStatus.COMPLETED, ItemStatus.CANCELLED):
            d = transition(status, Event.CLAIM, "w2", "w1")
            self.assertFalse(d.accepted)
            self.assertEqual(d.error_code, ALREADY_CLAIMED, status)

    def test_non_owner_start_complete_cancel(self):
        cases = [
            (ItemStatus.CLAIMED, Event.START),
            (ItemStatus.IN_PROGRESS, Event.COMPLETE),
            (ItemStatus.CLAIMED, Event.CANCEL),
            (ItemStatus.IN_PROGRESS, Event.CANCEL),
        ]
        for status, event in cases:
            d = transition(status, event, "w2", "w1", reason="x")
            self.assertEqual(d.error_code, NOT_OWNER, (status, event))

    def test_not_owner_takes_precedence_over_table(self):
        # COMPLETE from CLAIMED is outside the table, but a stranger is told not_owner
        d = transition(ItemStatus.CLAIMED, Event.COMPLETE, "w2", "w1")
        self.assertEqual(d.error_code, NOT_OWNER)

    def test_complete_from_claimed_by_owner(self):
        d = transition(ItemStatus.CLAIMED, Event.COMPLETE, "w1", "w1")
        self.assertEqual(d.error_code, INVALID_TRANSITION)

    def test_start_twice(self):
        d = transition(ItemStatus.IN_PROGRESS, Event.START, "w1", "w1")
        self.assertEqual(d.error_code, INVALID_TRANSITION)

    def test_events_on_pending(self):
        for event in (Event.START, Event.COMPLETE, Event.CANCEL, Event.ADMIN_CANCEL):
            d = transition(ItemStatus.PENDING, event, "w1", None, reason="x")
            self.assertEqual(d.error_code, INVALID_TRANSITION, event)

    def test_terminal_states_are_final(self):
        for status in (ItemStatus.COMPLETED, ItemStatus.CANCELLED):
            for event in (Event.START, Event.COMPLETE, Event.CANCEL, Event.ADMIN_CANCEL):
                d = transition(status, event, "w1", None, reason="x")
                self.assertEqual(d.error_code, INVALID_TRANSITION, (status, event))

    def test_cancel_requires_reason(self):
        for reason in ("", "   ", None):
            d = transition(ItemStatus.CLAIMED, Event.CANCEL, "w1", "w1", reason=reason)
            self.assertEqual(d.error_code, VALIDATION_ERROR)
        d = transition(ItemStatus.CLAIMED, Event.ADMIN_CANCEL, "lead", "w1", reason="")
        self.assertEqual(d.error_code, VALIDATION_ERROR)


# ═══════════════════════════════════════════════════════════════════
# Applying Decisions
# ═══════════════════════════════════════════════════════════════════

class TestApplyDecision(unittest.TestCase):

    def setUp(self):
        self.item = PoolItem.create("lab_test", {"test": "Glucose"}, urgency=Urgency.STAT)

    def test_claim_sets_owner_and_stamp(self):
        d = transition(self.item.status, Event.CLAIM, "w1", None)
        nxt = apply_decision(self.item, d, "w1", 100.0)
        self.assertEqual(nxt.status, ItemStatus.CLAIMED)
        self.assertEqual(nxt.owner_id, "w1")
        self.assertEqual(nxt.claimed_at, 100.0)
        self.assertEqual(nxt.version, 1)
        # Input untouched
        self.assertEqual(self.item.status, ItemStatus.PENDING)
        self.assertEqual(self.item.version, 0)

    def test_complete_clears_owner_and_records_closer(self):
        claimed = apply_decision(self.item, transition("PENDING", "claim", "w1", None), "w1", 1.0)
        started = apply_decision(claimed, transition(claimed.status, "start", "w1", "w1"), "w1", 2.0)
        done = apply_decision(
            started, transition(started.status, "complete", "w1", "w1"), "w1", 3.0,
            results=[ResultEntry(label="Glucose", value="5.4", unit="mmol/L")],
            notes="fasting",
        )
        self.assertEqual(done.status, ItemStatus.COMPLETED)
        self.assertIsNone(done.owner_id)
        self.assertEqual(done.closed_by, "w1")
        self.assertEqual(done.version, 3)
        self.assertEqual(done.result[0].label, "Glucose")
        self.assertEqual(done.notes, "fasting")
        self.assertEqual((done.claimed_at, done.started_at, done.completed_at), (1.0, 2.0, 3.0))

    def test_cancel_records_reason(self):
        claimed = apply_decision(self.item, transition("PENDING", "claim", "w1", None), "w1", 1.0)
        d = transition(claimed.status, Event.CANCEL, "w1", "w1", reason="  wrong tube ")
        cancelled = apply_decision(claimed, d, "w1", 2.0, reason="  wrong tube ")
        self.assertEqual(cancelled.cancellation_reason, "wrong tube")
        self.assertEqual(cancelled.cancelled_at, 2.0)
        self.assertIsNone(cancelled.owner_id)
        self.assertIsNone(cancelled.result)

    def test_rejected_decision_cannot_be_applied(self):
        d = transition(ItemStatus.PENDING, Event.START, "w1", None)
        with self.assertRaises(ValueError):
            apply_decision(self.item, d, "w1", 1.0)


if __name__ == "__main__":
    unittest.main()

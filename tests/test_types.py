"""
Tests for bridge core data structures.

Tests:
  - Direction parsing and source/destination ledgers
  - BridgeState / OutcomeStatus terminal and reconciliation semantics
  - BridgeRequest construction and serialization
  - BridgeOutcome immutability and serialization
"""

import dataclasses
import os
import sys

import pytest

# ── Path setup ────────────────────────────────────────────────────────
ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
if ROOT not in sys.path:
    sys.path.insert(0, ROOT)

from tokenbridge.bridge.types import (
    BridgeOutcome,
    BridgeRequest,
    BridgeState,
    ConfirmationStatus,
    Direction,
    LedgerId,
    LedgerOperation,
    ObjectRef,
    OperationKind,
    OutcomeStatus,
)
from tokenbridge.exceptions import InvalidAmount, InvalidDirection


ETH_ACCOUNT = "0x" + "11" * 20
SUI_ACCOUNT = "0x" + "22" * 32


# ═══════════════════════════════════════════════════════════════════════
#  1. DIRECTION
# ═══════════════════════════════════════════════════════════════════════

class TestDirection:

    @pytest.mark.parametrize("value,expected", [
        ("eth-to-sui", Direction.ETH_TO_SUI),
        ("A-to-B", Direction.ETH_TO_SUI),
        ("sui-to-eth", Direction.SUI_TO_ETH),
        ("B-TO-A", Direction.SUI_TO_ETH),
    ])
    def test_parse(self, value, expected):
        assert Direction.parse(value) is expected

    @pytest.mark.parametrize("value", ["", "eth-to-eth", "sideways", None, 1])
    def test_parse_rejects(self, value):
        with pytest.raises(InvalidDirection):
            Direction.parse(value)

    def test_ledgers(self):
        assert Direction.ETH_TO_SUI.source == LedgerId.ETHEREUM
        assert Direction.ETH_TO_SUI.destination == LedgerId.SUI
        assert Direction.SUI_TO_ETH.source == LedgerId.SUI
        assert Direction.SUI_TO_ETH.destination == LedgerId.ETHEREUM


# ═══════════════════════════════════════════════════════════════════════
#  2. STATES
# ═══════════════════════════════════════════════════════════════════════

class TestStates:

    def test_terminal_states(self):
        terminal = {s for s in BridgeState if s.is_terminal}
        assert terminal == {
            BridgeState.COMPLETED,
            BridgeState.FAILED_VALIDATION,
            BridgeState.FAILED_SOURCE,
            BridgeState.FAILED_AFTER_SOURCE_CONFIRMED,
        }

    def test_reconciliation_statuses(self):
        flagged = {s for s in OutcomeStatus if s.needs_reconciliation}
        assert flagged == {OutcomeStatus.FAILED_AFTER_SOURCE_CONFIRMED, OutcomeStatus.TIMED_OUT}

    def test_timeout_leaves_request_for_operator(self):
        assert OutcomeStatus.TIMED_OUT.terminal_state == BridgeState.FAILED_AFTER_SOURCE_CONFIRMED

    def test_every_outcome_maps_to_terminal_state(self):
        for status in OutcomeStatus:
            assert status.terminal_state.is_terminal


# ═══════════════════════════════════════════════════════════════════════
#  3. REQUEST
# ═══════════════════════════════════════════════════════════════════════

class TestBridgeRequest:

    def test_defaults(self):
        req = BridgeRequest("k1", "eth-to-sui", 10 ** 18, ETH_ACCOUNT, SUI_ACCOUNT)
        assert req.direction is Direction.ETH_TO_SUI
        assert req.status == BridgeState.VALIDATED
        assert req.created_at > 0
        assert req.updated_at == req.created_at

    @pytest.mark.parametrize("amount", [1.0, "5", True])
    def test_rejects_non_int_amount(self, amount):
        with pytest.raises(InvalidAmount):
            BridgeRequest("k1", Direction.ETH_TO_SUI, amount, ETH_ACCOUNT, SUI_ACCOUNT)

    def test_dict_roundtrip_keeps_big_amount_exact(self):
        req = BridgeRequest("k1", Direction.SUI_TO_ETH, 2 ** 70 + 3, SUI_ACCOUNT, ETH_ACCOUNT)
        req.source_handle = "digest"
        d = req.to_dict()
        assert d["amount"] == str(2 ** 70 + 3)
        restored = BridgeRequest.from_dict(d)
        assert restored == req


# ═══════════════════════════════════════════════════════════════════════
#  4. OUTCOME
# ═══════════════════════════════════════════════════════════════════════

class TestBridgeOutcome:

    def _outcome(self, status=OutcomeStatus.FAILED_AFTER_SOURCE_CONFIRMED):
        source = LedgerOperation(
            kind=OperationKind.BURN,
            ledger=LedgerId.SUI,
            amount=10 ** 9,
            counterparty=SUI_ACCOUNT,
            tx_handle="digest",
            status=ConfirmationStatus.CONFIRMED,
            object_refs=(ObjectRef("0xcap", 7, "abc"),),
        )
        dest = LedgerOperation(
            kind=OperationKind.MINT,
            ledger=LedgerId.ETHEREUM,
            amount=10 ** 18,
            counterparty=ETH_ACCOUNT,
            status=ConfirmationStatus.FAILED,
            error="reverted",
        )
        return BridgeOutcome("k1", status, source, dest, detail="mint reverted", error_kind="DestinationRejected")

    def test_is_immutable(self):
        outcome = self._outcome()
        with pytest.raises(dataclasses.FrozenInstanceError):
            outcome.status = OutcomeStatus.COMPLETED

    def test_flags(self):
        assert self._outcome().needs_reconciliation
        assert not self._outcome().is_success
        assert self._outcome(OutcomeStatus.COMPLETED).is_success

    def test_dict_roundtrip(self):
        outcome = self._outcome()
        restored = BridgeOutcome.from_dict(outcome.to_dict())
        assert restored == outcome
        assert restored.source_operation.object_refs[0].version == 7
        assert restored.destination_operation.error == "reverted"

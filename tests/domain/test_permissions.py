"""Tests for permission escalation suggestions."""

from toolweave.domain.exceptions import PermissionDenied
from toolweave.domain.models import PermissionSet
from toolweave.domain.permissions import (
    KNOWN_OPERATION_CONFIDENCE,
    UNKNOWN_OPERATION_CONFIDENCE,
    detect_operation,
    next_level,
    suggest_escalation,
)


class TestNextLevel:
    def test_climbs_one_rung(self):
        assert next_level(PermissionSet.MINIMAL) is PermissionSet.READONLY
        assert next_level(PermissionSet.MCP_STANDARD) is PermissionSet.TRUSTED

    def test_top_of_ladder(self):
        assert next_level(PermissionSet.TRUSTED) is None


class TestDetectOperation:
    def test_explicit_operation_wins(self):
        error = PermissionDenied("denied", operation="NET")
        assert detect_operation(error) == "net"

    def test_keyword_in_message(self):
        error = PermissionDenied("Requires write access to /tmp/out")
        assert detect_operation(error) == "write"

    def test_unknown(self):
        assert detect_operation(PermissionDenied("nope")) == "unknown"


class TestSuggestEscalation:
    """Tests for suggest_escalation."""

    def test_known_operation_jumps_to_required_level(self):
        error = PermissionDenied("blocked", operation="net")
        request = suggest_escalation(error, PermissionSet.MINIMAL, "t1", "cap:fetch")

        assert request.requested_set is PermissionSet.NETWORK_API
        assert request.current_set is PermissionSet.MINIMAL
        assert request.detected_operation == "net"
        assert request.confidence == KNOWN_OPERATION_CONFIDENCE
        assert request.task_id == "t1"
        assert request.capability_id == "cap:fetch"
        assert request.reason == "blocked"

    def test_unknown_operation_climbs_one_rung(self):
        request = suggest_escalation(
            PermissionDenied("nope"), PermissionSet.READONLY, "t1", "tool"
        )
        assert request.requested_set is PermissionSet.FILESYSTEM
        assert request.confidence == UNKNOWN_OPERATION_CONFIDENCE

    def test_already_covered_operation_climbs_one_rung(self):
        """If the current level already grants the operation, try the next rung."""
        error = PermissionDenied("blocked", operation="read")
        request = suggest_escalation(error, PermissionSet.FILESYSTEM, "t1", "tool")
        assert request.requested_set is PermissionSet.NETWORK_API

    def test_no_suggestion_at_top(self):
        error = PermissionDenied("blocked", operation="sys")
        assert suggest_escalation(error, PermissionSet.TRUSTED, "t1", "tool") is None

    def test_requested_is_always_above_current(self):
        for current in PermissionSet:
            request = suggest_escalation(PermissionDenied("x"), current, "t", "c")
            if request is not None:
                assert request.requested_set.rank > current.rank

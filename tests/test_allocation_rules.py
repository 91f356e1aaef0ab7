"""Allocation request transitions and queue predicate (pure)."""
import pytest

from formdesk.core import allocation
from formdesk.db.models.allocation_request import AllocationStatus


def test_pending_can_be_approved_or_rejected():
    approve = allocation.get_transition(AllocationStatus.PENDING, "approve")
    reject = allocation.get_transition(AllocationStatus.PENDING, "reject")
    assert approve.to_status == AllocationStatus.APPROVED and approve.allocates
    assert reject.to_status == AllocationStatus.REJECTED and not reject.allocates


@pytest.mark.parametrize("status", [AllocationStatus.APPROVED, AllocationStatus.REJECTED])
def test_resolved_requests_have_no_transitions(status):
    for action in allocation.known_actions():
        with pytest.raises(KeyError):
            allocation.get_transition(status, action)


def test_unknown_action():
    with pytest.raises(KeyError):
        allocation.get_transition(AllocationStatus.PENDING, "escalate")


def test_known_actions():
    assert allocation.known_actions() == ("approve", "reject")


def test_is_unallocated():
    assert allocation.is_unallocated(None, 5)
    assert allocation.is_unallocated(0, 5)
    assert allocation.is_unallocated(5, 5)
    assert not allocation.is_unallocated(6, 5)
    assert not allocation.is_unallocated(5, None)


def test_is_organic_name_is_case_insensitive():
    assert allocation.is_organic_name("Organic")
    assert allocation.is_organic_name(" ORGANIC ")
    assert not allocation.is_organic_name("organics")
    assert not allocation.is_organic_name(None)

"""
Tests for RequisitionSelector -- visibility, filters, pagination and the
awaiting-action queue.
"""

from decimal import Decimal

import pytest

from procurement_kernel.domain.requisition import Priority, RequisitionStatus
from procurement_kernel.exceptions import RequisitionNotFoundError, ValidationError
from procurement_kernel.selectors.requisition_selector import RequisitionSelector
from procurement_kernel.services.identity_service import UserDirectory
from tests.conftest import make_draft


@pytest.fixture
def selector(session, org) -> RequisitionSelector:
    return RequisitionSelector(session, UserDirectory(session))


@pytest.fixture
def seeded(requisitions, org):
    """Two OPS requisitions by the requester, one by a colleague, one in IT."""
    mine = [
        requisitions.create_requisition(org.requester, make_draft("100", title="Printer paper")),
        requisitions.create_requisition(org.requester, make_draft("20000", title="Laptops")),
    ]
    colleague = requisitions.create_requisition(org.other_requester, make_draft("50", title="Pens"))
    it = requisitions.create_requisition(org.it_approver, make_draft("300", title="Cables"))
    return mine, colleague, it


def _numbers(infos):
    return {r.number for r in infos}


class TestVisibility:
    def test_requester_sees_own(self, selector, org, seeded):
        mine, _, _ = seeded
        page = selector.list_requisitions(org.requester)
        assert _numbers(page.items) == {r.number for r in mine}

    def test_approver_sees_department(self, selector, org, seeded):
        mine, colleague, it = seeded
        page = selector.list_requisitions(org.approver)
        assert _numbers(page.items) == {r.number for r in mine} | {colleague.number}

    def test_approver_sees_what_they_decided(self, selector, requisitions, org, seeded):
        _, _, it = seeded
        requisitions.approve_requisition(it.id, org.it_approver)
        assert it.number in _numbers(selector.list_requisitions(org.it_approver).items)
        assert it.number not in _numbers(selector.list_requisitions(org.approver).items)

    def test_department_member_sees_department(self, selector, org, seeded):
        assert selector.list_requisitions(org.warehouse).total == 3

    @pytest.mark.parametrize("role", ["finance", "admin", "purchasing"])
    def test_organisation_wide_roles_see_all(self, selector, org, seeded, role):
        assert selector.list_requisitions(getattr(org, role)).total == 4


class TestFiltersAndPagination:
    def test_status_and_priority(self, selector, requisitions, org, seeded):
        mine, _, _ = seeded
        requisitions.approve_requisition(mine[0].id, org.approver)
        approved = selector.list_requisitions(org.admin, status=RequisitionStatus.APPROVED)
        assert _numbers(approved.items) == {mine[0].number}
        assert selector.list_requisitions(org.admin, priority=Priority.URGENT).total == 0

    def test_department(self, selector, org, seeded):
        assert selector.list_requisitions(org.admin, department_id=org.it_id).total == 1

    def test_search_matches_title_or_number(self, selector, org, seeded):
        mine, _, _ = seeded
        assert _numbers(selector.list_requisitions(org.admin, search="laptop").items) == {mine[1].number}
        assert _numbers(selector.list_requisitions(org.admin, search=mine[0].number).items) == {mine[0].number}

    def test_newest_first_then_paged(self, selector, requisitions, org, deterministic_clock):
        numbers = []
        for _ in range(5):
            numbers.append(requisitions.create_requisition(org.requester, make_draft("10")).number)
            deterministic_clock.advance(60)

        first = selector.list_requisitions(org.requester, limit=2)
        last = selector.list_requisitions(org.requester, page=3, limit=2)

        assert [r.number for r in first.items] == [numbers[4], numbers[3]]
        assert [r.number for r in last.items] == [numbers[0]]
        assert (first.total, first.pages) == (5, 3)

    @pytest.mark.parametrize("page,limit", [(0, 10), (1, 0), (1, 101)])
    def test_invalid_pagination(self, selector, org, page, limit):
        with pytest.raises(ValidationError):
            selector.list_requisitions(org.admin, page=page, limit=limit)


class TestAwaitingAction:
    def test_queue_follows_current_level(self, selector, requisitions, org, seeded):
        mine, colleague, _ = seeded

        assert _numbers(selector.awaiting_action(org.approver)) == {
            mine[0].number, mine[1].number, colleague.number,
        }
        assert selector.awaiting_action(org.finance) == []

        requisitions.approve_requisition(mine[1].id, org.approver)

        assert _numbers(selector.awaiting_action(org.finance)) == {mine[1].number}
        assert mine[1].number not in _numbers(selector.awaiting_action(org.approver))

    def test_other_department_approver(self, selector, org, seeded):
        _, _, it = seeded
        assert _numbers(selector.awaiting_action(org.it_approver)) == {it.number}


class TestLookup:
    def test_get_by_number(self, selector, org, seeded):
        mine, _, _ = seeded
        assert selector.get_by_number(mine[0].number).id == mine[0].id

    def test_missing(self, selector, org):
        with pytest.raises(RequisitionNotFoundError):
            selector.get_by_number("REQ-1999-00001")

    def test_committed_total(self, selector, org, seeded):
        assert selector.committed_total(org.ops_id) == Decimal("20150")

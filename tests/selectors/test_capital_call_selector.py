"""Read-side queries: call detail, deal listing, organization summary, LP view."""

from decimal import Decimal
from uuid import uuid4

import pytest

from capital_kernel.db.engine import session_scope
from capital_kernel.domain.dtos import MarkFundedCommand
from capital_kernel.domain.lifecycle import AllocationStatus, CapitalCallStatus
from capital_kernel.selectors import CapitalCallSelector
from tests.helpers import ORG_ID, OTHER_ORG_ID, allocation_for, make_command, seed_deal


@pytest.fixture
def read(session_factory):
    """Run ``fn(selector)`` in a fresh read transaction."""

    def _read(fn):
        with session_scope(session_factory) as session:
            return fn(CapitalCallSelector(session))

    return _read


class TestGetCall:

    def test_includes_lp_names(self, read, draft_call, deal):
        record = read(lambda s: s.get_call(draft_call.id, ORG_ID))

        assert record.id == draft_call.id
        assert record.allocated_cents == record.total_amount_cents
        names = {a.lp_entity_name for a in record.allocations}
        assert names == {"Alpha Partners LP", "Beta Capital LLC", "Gamma Family Office"}
        alpha = allocation_for(record, deal.lp("Alpha Partners LP"))
        assert alpha.lp_entity_name == "Alpha Partners LP"

    def test_hidden_from_other_organization(self, read, draft_call):
        assert read(lambda s: s.get_call(draft_call.id, OTHER_ORG_ID)) is None


class TestListForDeal:

    def test_totals(self, read, orchestrator, deal, gp_maker, gp_checker):
        draft = orchestrator.create_capital_call(deal.id, make_command("1000.00", title="Draft"), gp_maker)
        issued = orchestrator.create_capital_call(deal.id, make_command("5000.00", title="Issued"), gp_maker)
        cancelled = orchestrator.create_capital_call(deal.id, make_command("700.00", title="Dropped"), gp_maker)
        orchestrator.issue_capital_call(issued.capital_call.id, gp_checker)
        orchestrator.cancel_capital_call(cancelled.capital_call.id, gp_maker)

        alpha = allocation_for(issued.capital_call, deal.lp("Alpha Partners LP"))
        orchestrator.mark_funded(
            issued.capital_call.id,
            alpha.id,
            MarkFundedCommand(funded_amount=Decimal("2400.00")),
            gp_checker,
        )

        listing = read(lambda s: s.list_for_deal(deal.id, ORG_ID))

        assert len(listing.capital_calls) == 3
        assert listing.total_called_cents == 100_000 + 500_000
        assert listing.total_funded_cents == 240_000
        # DRAFT and PARTIALLY_FUNDED are still open
        assert listing.pending_calls == 2

        by_title = {item.title: item for item in listing.capital_calls}
        assert by_title["Issued"].status == CapitalCallStatus.PARTIALLY_FUNDED
        assert by_title["Issued"].funded_count == 1
        assert by_title["Issued"].allocation_count == 3
        assert by_title["Issued"].funded_amount == Decimal("2400.00")
        assert by_title["Issued"].issued_by_name == "Carl Checker"
        assert by_title["Dropped"].status == CapitalCallStatus.CANCELLED
        assert by_title["Draft"].total_amount == Decimal("1000.00")
        assert draft.capital_call.id == by_title["Draft"].id

    def test_other_organization_sees_nothing(self, read, draft_call, deal):
        listing = read(lambda s: s.list_for_deal(deal.id, OTHER_ORG_ID))
        assert listing.capital_calls == []
        assert listing.total_called_cents == 0
        assert listing.pending_calls == 0

    def test_empty_deal(self, read, deal):
        listing = read(lambda s: s.list_for_deal(deal.id, ORG_ID))
        assert listing.capital_calls == []
        assert listing.total_funded_cents == 0


class TestOrganizationSummary:

    def test_counts_only_issued_calls_as_called(self, read, orchestrator, deal, gp_maker, gp_checker, session_factory):
        second_deal = seed_deal(session_factory, name="Oak Plaza")
        orchestrator.create_capital_call(deal.id, make_command("1000.00"), gp_maker)
        out = orchestrator.create_capital_call(second_deal.id, make_command("2000.00"), gp_maker)
        funded = orchestrator.create_capital_call(deal.id, make_command("3000.00"), gp_maker)
        for result in (out, funded):
            orchestrator.issue_capital_call(result.capital_call.id, gp_checker)
        for allocation in funded.capital_call.allocations:
            orchestrator.mark_funded(
                funded.capital_call.id, allocation.id, MarkFundedCommand(), gp_checker
            )

        summary = read(lambda s: s.organization_summary(ORG_ID))

        assert summary.total_calls == 3
        assert summary.total_called_cents == 200_000 + 300_000
        assert summary.total_funded_cents == 300_000
        assert summary.pending_calls == 1

    def test_other_organization_isolated(self, read, draft_call):
        summary = read(lambda s: s.organization_summary(OTHER_ORG_ID))
        assert summary.total_calls == 0
        assert summary.total_called_cents == 0


class TestListForLp:

    def test_only_issued_calls_with_own_allocation(
        self, read, orchestrator, deal, gp_maker, gp_checker, clock
    ):
        orchestrator.create_capital_call(deal.id, make_command("999.00", title="Still draft"), gp_maker)
        first = orchestrator.create_capital_call(deal.id, make_command("1000.00", title="First"), gp_maker)
        second = orchestrator.create_capital_call(deal.id, make_command("2000.00", title="Second"), gp_maker)
        orchestrator.issue_capital_call(first.capital_call.id, gp_checker)
        clock.advance(86400)
        orchestrator.issue_capital_call(second.capital_call.id, gp_checker)

        gamma = deal.lp("Gamma Family Office")
        views = read(lambda s: s.list_for_lp(deal.id, gamma.id))

        assert [v.title for v in views] == ["Second", "First"]
        for view in views:
            assert view.lp_actor_id == gamma.id
            assert view.my_allocation.lp_actor_id == gamma.id
            assert view.my_allocation.lp_entity_name == "Gamma Family Office"
            assert view.my_allocation.status == AllocationStatus.PENDING
        assert views[0].my_allocation.amount_cents == 40_000
        assert views[0].wire_instructions == "Wire to First Bank, ABA 021000021"

    def test_cancelled_calls_hidden(self, read, orchestrator, issued_call, deal, gp_checker):
        orchestrator.cancel_capital_call(issued_call.id, gp_checker)
        assert read(lambda s: s.list_for_lp(deal.id, deal.lp("Alpha Partners LP").id)) == []

    def test_unknown_lp_sees_calls_without_allocation(self, read, issued_call, deal):
        views = read(lambda s: s.list_for_lp(deal.id, uuid4()))
        assert len(views) == 1
        assert views[0].my_allocation is None

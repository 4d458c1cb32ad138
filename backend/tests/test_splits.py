import pytest

from utils.financials import (
    MembershipCost, financial_overview, lifetime_totals, summarize_expenses, summarize_payments
)
from utils.splits import member_share, price_per_member, savings_for_share, split_evenly


class FakeRow:
    def __init__(self, **fields):
        self.__dict__.update(fields)


class TestSplitEvenly:
    def test_exact_division(self):
        assert split_evenly(3000, 3) == [1000, 1000, 1000]

    def test_remainder_goes_to_first_members(self):
        assert split_evenly(1001, 3) == [334, 334, 333]
        assert split_evenly(5590, 4) == [1398, 1398, 1397, 1397]

    def test_shares_sum_to_total(self):
        for total, n in [(1, 4), (999, 7), (5590, 6), (0, 3)]:
            assert sum(split_evenly(total, n)) == total

    def test_rejects_zero_members(self):
        with pytest.raises(ValueError):
            split_evenly(1000, 0)


class TestMemberShare:
    def test_by_position(self):
        assert member_share(1001, 3, 0) == 334
        assert member_share(1001, 3, 2) == 333

    def test_clamps_out_of_range(self):
        assert member_share(1001, 0, 5) == 1001
        assert member_share(1001, 3, 10) == 333

    def test_savings_and_spot_price(self):
        assert savings_for_share(5590, 1398) == 4192
        assert price_per_member(5590, 4) == 1397.5
        assert price_per_member(5590, 0) == 0.0


def test_financial_overview():
    overview = financial_overview([
        MembershipCost(subscription_id=1, name="Netflix", service_name="Netflix", total_price=4000, members=4, role="admin"),
        MembershipCost(subscription_id=2, name="Spotify", service_name="Spotify", total_price=2000, members=1, role="member"),
    ])
    assert overview["total_paid"] == 1000 + 2000
    assert overview["total_saved"] == 3000
    assert overview["savings_percentage"] == 50.0
    assert overview["subscription_count"] == 2
    assert overview["breakdown"][0]["your_share"] == 1000
    assert overview["breakdown"][1]["savings"] == 0


def test_financial_overview_empty():
    overview = financial_overview([])
    assert overview["savings_percentage"] == 0.0
    assert overview["breakdown"] == []


def test_lifetime_totals_ignores_nulls():
    rows = [FakeRow(total_paid=100, total_saved=None), FakeRow(total_paid=50, total_saved=25)]
    assert lifetime_totals(rows) == {"total_paid": 150, "total_saved": 25}


def test_summarize_expenses_groups_and_defaults():
    expenses = [
        FakeRow(amount=500, subscription_id=1, category="Fees"),
        FakeRow(amount=300, subscription_id=None, category=""),
        FakeRow(amount=200, subscription_id=2, category="Fees"),
    ]
    summary = summarize_expenses(expenses, {1: "Netflix"})

    assert summary["total_amount"] == 1000
    assert summary["total_count"] == 3
    assert [b["label"] for b in summary["by_subscription"]] == ["Netflix", "No subscription", "Unknown"]
    assert [(b["label"], b["total_amount"]) for b in summary["by_category"]] == [("Fees", 700), ("Other", 300)]


def test_summarize_payments():
    payments = [
        FakeRow(amount=1000, status="completed"),
        FakeRow(amount=400, status="pending"),
        FakeRow(amount=300, status="failed"),
    ]
    assert summarize_payments(payments) == {"total_paid": 1000, "pending_amount": 400, "total_payments": 3}

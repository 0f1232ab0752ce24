"""Леджер выводов: доступный баланс и граница заявки."""

import asyncio
from decimal import Decimal

import pytest

from conftest import make_record
from portal.errors import NotFound
from portal.models import WithdrawalRequest, WithdrawalStatus
from portal.services.commission.withdrawals import WithdrawalError, WithdrawalSummary


@pytest.fixture
async def partner(seed):
    """Заработано 1000, выплачено 300, в ожидании 200."""

    partner = await seed.partner("ib@example.com", usd_per_lot=Decimal("10"), spread_pct=Decimal("0"))
    await seed.records(make_record("1", ib_request_id=partner.id, volume="100", commission="1000"))
    await seed.add(
        WithdrawalRequest(ib_request_id=partner.id, amount=Decimal("300"), method="bank",
                          status=WithdrawalStatus.PAID),
        WithdrawalRequest(ib_request_id=partner.id, amount=Decimal("200"), method="bank",
                          status=WithdrawalStatus.PENDING),
    )
    return partner


class TestSummary:
    async def test_available_balance(self, services, partner):
        summary = await services.withdrawals.get_summary(partner, use_cache=False)

        assert summary.total_earned == Decimal("1000")
        assert summary.total_paid == Decimal("300")
        assert summary.total_pending == Decimal("200")
        assert summary.available == Decimal("500")

    async def test_approved_counts_as_paid(self, services, partner, seed):
        await seed.add(
            WithdrawalRequest(ib_request_id=partner.id, amount=Decimal("100"), method="bank",
                              status=WithdrawalStatus.APPROVED),
        )
        summary = await services.withdrawals.get_summary(partner, use_cache=False)

        assert summary.total_paid == Decimal("400")
        assert summary.available == Decimal("400")

    def test_available_never_negative(self):
        summary = WithdrawalSummary(total_earned=Decimal("10"), total_paid=Decimal("50"))
        assert summary.available == Decimal("0")


class TestCreate:
    async def test_full_available_is_accepted(self, services, partner):
        withdrawal = await services.withdrawals.create(partner, "500", "bank", {"iban": "X"})

        assert withdrawal.id is not None
        assert withdrawal.status == WithdrawalStatus.PENDING
        assert withdrawal.account_details == {"iban": "X"}
        summary = await services.withdrawals.get_summary(partner, use_cache=False)
        assert summary.available == Decimal("0")

    async def test_over_available_is_rejected(self, services, partner):
        with pytest.raises(WithdrawalError) as exc_info:
            await services.withdrawals.create(partner, "501", "bank")
        assert exc_info.value.code == "insufficient_balance"

    @pytest.mark.parametrize("amount", ["0", "-5", "abc", None])
    async def test_non_positive_amount_is_rejected(self, services, partner, amount):
        with pytest.raises(WithdrawalError) as exc_info:
            await services.withdrawals.create(partner, amount, "bank")
        assert exc_info.value.code == "invalid_amount"

    async def test_method_is_required(self, services, partner):
        with pytest.raises(WithdrawalError):
            await services.withdrawals.create(partner, "10", "  ")

    async def test_exclusive_boundary_when_configured(self, services, partner, monkeypatch):
        monkeypatch.setattr(services.withdrawals, "_allow_full", False)
        with pytest.raises(WithdrawalError):
            await services.withdrawals.create(partner, "500", "bank")
        assert (await services.withdrawals.create(partner, "499.99", "bank")).id is not None

    async def test_concurrent_requests_cannot_overdraw(self, services, partner):
        results = await asyncio.gather(
            services.withdrawals.create(partner, "300", "bank"),
            services.withdrawals.create(partner, "300", "bank"),
            return_exceptions=True,
        )

        accepted = [r for r in results if isinstance(r, WithdrawalRequest)]
        rejected = [r for r in results if isinstance(r, WithdrawalError)]
        assert len(accepted) == 1
        assert len(rejected) == 1


class TestStatus:
    async def test_admin_marks_paid(self, services, partner):
        withdrawal = await services.withdrawals.create(partner, "100", "bank")
        updated = await services.withdrawals.set_status(withdrawal.id, "PAID")

        assert updated.status == WithdrawalStatus.PAID
        paid = await services.withdrawals.list_by_status(partner, "paid")
        assert withdrawal.id in {w.id for w in paid}
        assert len(paid) == 2

    async def test_unknown_status_is_rejected(self, services, partner):
        with pytest.raises(WithdrawalError):
            await services.withdrawals.set_status(1, "refunded")

    async def test_missing_withdrawal(self, services, partner):
        with pytest.raises(NotFound):
            await services.withdrawals.set_status(999, "paid")

    async def test_list_newest_first(self, services, partner):
        created = await services.withdrawals.create(partner, "50", "crypto")
        rows = await services.withdrawals.list(partner)

        assert rows[0].id == created.id
        assert len(rows) == 3

"""Tests for the command-line sync tool."""

from unittest.mock import patch

import pytest
from conftest import ENTERPRISE_PRICE, PRO_PRICE, make_snapshot

from plansync.billing.plans import PlanTier
from plansync.billing.scripts.sync_account import main
from plansync.exceptions import TransientProviderError


@pytest.fixture
def cli_services(services):
    with patch("plansync.billing.scripts.sync_account.get_sync_services", return_value=services):
        yield services


class TestSyncAccountScript:
    async def test_dry_run_by_default(self, cli_services, provider, make_account, capsys):
        account = await make_account(customer_id="cus_1")
        provider.set_subscriptions("cus_1", make_snapshot("sub_1", PRO_PRICE))

        exit_code = await main([str(account.account_id)])

        assert exit_code == 0
        out = capsys.readouterr().out
        assert "Resolved: PRO / active" in out
        assert "Dry run" in out
        assert (await cli_services.store.get(account.account_id)).plan is PlanTier.FREE

    async def test_fix(self, cli_services, provider, make_account, capsys):
        account = await make_account(customer_id="cus_1")
        provider.set_subscriptions(
            "cus_1",
            make_snapshot("sub_pro", PRO_PRICE),
            make_snapshot("sub_ent", ENTERPRISE_PRICE),
        )

        exit_code = await main(
            [str(account.account_id), "--fix", "--cancel-duplicates", "--actor", "ops"]
        )

        assert exit_code == 0
        assert "Auto-fixed: FREE -> ENTERPRISE" in capsys.readouterr().out
        assert (await cli_services.store.get(account.account_id)).plan is PlanTier.ENTERPRISE
        assert provider.cancel_calls == ["sub_pro"]

    async def test_provider_error_exit_code(self, cli_services, provider, make_account):
        account = await make_account(customer_id="cus_1")
        provider.list_errors["cus_1"] = TransientProviderError("timed out")

        assert await main([str(account.account_id)]) == 1

    async def test_sweep(self, cli_services, provider, make_account, capsys):
        await make_account(customer_id="cus_1")
        provider.set_subscriptions("cus_1", make_snapshot("sub_1", PRO_PRICE))

        exit_code = await main(["--sweep"])

        assert exit_code == 0
        assert "Checked 1: 0 in sync, 1 would fix, 0 error(s)" in capsys.readouterr().out

    async def test_account_required_without_sweep(self, cli_services):
        with pytest.raises(SystemExit):
            await main([])

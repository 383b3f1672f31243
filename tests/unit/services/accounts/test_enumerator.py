"""
Tests for account & project enumeration.
"""
import pytest

from finops.services.accounts.enumerator import AccountEnumerator
from finops.shared.core.exceptions import AdapterError, AuthError, EnumerationError

ACCOUNT_1 = "AAAAAA-111111-000001"
ACCOUNT_2 = "AAAAAA-222222-000002"


@pytest.mark.asyncio
async def test_enumeration_links_projects_and_counts(ctx, settings, make_account, make_project, fake_identity):
    identity = fake_identity(
        billing_accounts=[make_account(ACCOUNT_1), make_account(ACCOUNT_2, open=False)],
        projects=[make_project("web"), make_project("batch")],
        links={"web": f"billingAccounts/{ACCOUNT_1}", "batch": None},
        account_projects={ACCOUNT_1: ["web", "other"], ACCOUNT_2: []},
    )

    result = await AccountEnumerator(identity, settings).enumerate(ctx)

    assert result.account_info.email == "ops@example.com"
    assert [a.project_count for a in result.billing_accounts] == [2, 0]
    links = {p.project_id: p.billing_account_name for p in result.projects}
    assert links == {"web": f"billingAccounts/{ACCOUNT_1}", "batch": None}
    # 3 list calls + 2 project counts + 2 billing links
    assert result.api_calls == 7
    assert result.errors == []


@pytest.mark.asyncio
async def test_failed_billing_link_leaves_project_unlinked(ctx, settings, make_account, make_project, fake_identity):
    identity = fake_identity(
        billing_accounts=[make_account(ACCOUNT_1)],
        projects=[make_project("web"), make_project("locked")],
        links={"web": f"billingAccounts/{ACCOUNT_1}", "locked": AdapterError("403 PERMISSION_DENIED")},
    )

    result = await AccountEnumerator(identity, settings).enumerate(ctx)

    by_id = {p.project_id: p for p in result.projects}
    assert by_id["locked"].billing_account_name is None
    assert by_id["web"].billing_account_name == f"billingAccounts/{ACCOUNT_1}"
    assert result.errors == []


@pytest.mark.asyncio
async def test_project_count_failure_is_a_soft_error(ctx, settings, make_account, fake_identity):
    identity = fake_identity(
        billing_accounts=[make_account(ACCOUNT_1), make_account(ACCOUNT_2)],
        projects=[],
        account_projects={ACCOUNT_1: RuntimeError("quota exceeded"), ACCOUNT_2: ["p"]},
    )

    result = await AccountEnumerator(identity, settings).enumerate(ctx)

    assert [a.project_count for a in result.billing_accounts] == [0, 1]
    assert len(result.errors) == 1
    assert ACCOUNT_1 in result.errors[0]


@pytest.mark.asyncio
@pytest.mark.parametrize("failing", ["billing_accounts", "projects", "account_info"])
async def test_listing_failure_is_fatal(ctx, settings, make_account, fake_identity, failing):
    identity = fake_identity(billing_accounts=[make_account(ACCOUNT_1)], projects=[])
    setattr(identity, failing, AuthError("userinfo: credentials rejected"))

    with pytest.raises(EnumerationError) as exc_info:
        await AccountEnumerator(identity, settings).enumerate(ctx)

    assert exc_info.value.code == "enumeration_failed"
    assert "credentials rejected" in exc_info.value.message


@pytest.mark.asyncio
async def test_no_projects_or_accounts(ctx, settings, fake_identity):
    result = await AccountEnumerator(fake_identity(billing_accounts=[], projects=[]), settings).enumerate(ctx)

    assert result.billing_accounts == []
    assert result.projects == []
    assert result.api_calls == 3

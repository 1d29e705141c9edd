"""
Legacy import tests.
"""

import json
from datetime import datetime
from decimal import Decimal

import pytest
from sqlalchemy import select

from billing_backend.app.domain.billing.ledger_service import BudgetLedgerService, LedgerState
from billing_backend.app.models.billing_account import BillingAccount
from billing_backend.app.models.client import Client
from billing_backend.app.models.enums import AccountStatus
from billing_backend.app.services import access_grants
from billing_backend.app.services.legacy_import import (
    DEFAULT_CLIENT_ID, LegacyImporter, load_bundle, load_contest_fees, to_bool, to_datetime
)


BUNDLE = {
    "time_oltp:client": [
        {"client_id": "70", "name": "Legacy Co", "status": "1", "code_name": "", "customer_number": "C-70",
         "start_date": "2015-06-01 00:00:00"},
        {"client_id": "71", "name": "Dormant Co", "status": "0"},
    ],
    "time_oltp:project": [
        {"project_id": "500", "name": "Main project", "active": "1", "client_id": "70", "budget": "10000.00",
         "sales_tax": "0.000", "is_manual_prize_setting": "1", "billable": "0",
         "start_date": "not a date", "creation_user": "legacy-admin"},
        {"project_id": "501", "name": "Orphan project", "active": 0, "client_id": "999"},
        {"project_id": "502", "name": "No client", "active": "yes", "client_id": None},
        {"project_id": "oops", "name": "Broken id"},
    ],
    "time_oltp:project_challenge_budget": [
        {"challenge_id": "c1", "project_id": "500", "locked_amount": "250.00", "consumed_amount": "0.00"},
        {"challenge_id": "c2", "project_id": "500", "locked_amount": "100.00", "consumed_amount": "75.00"},
        {"challenge_id": "c3", "project_id": "500", "locked_amount": "0", "consumed_amount": "0"},
        {"challenge_id": "c4", "project_id": "777", "locked_amount": "10", "consumed_amount": "0"},
    ],
}


@pytest.mark.asyncio
async def test_full_import(db_session, session_factory):
    stats = await LegacyImporter(session_factory=session_factory).run(BUNDLE)
    
    assert stats.clients == 2
    assert stats.accounts == 3
    assert (stats.locks, stats.consumes, stats.cleared) == (1, 1, 1)
    assert stats.skipped == 2  # bad project id, unknown account for c4
    
    client = await db_session.get(Client, "70")
    assert client.code_name == "C-70"
    assert client.status == AccountStatus.ACTIVE
    assert (await db_session.get(Client, "71")).status == AccountStatus.INACTIVE
    
    main = await db_session.get(BillingAccount, 500)
    assert main.budget == Decimal("10000.00")
    assert main.markup == Decimal("0")
    assert main.is_manual_prize is True
    assert main.billable is False
    assert main.start_date is None
    assert main.created_by == "legacy-admin"
    
    orphans = (await db_session.execute(
        select(BillingAccount.id).where(BillingAccount.client_id == DEFAULT_CLIENT_ID).order_by(BillingAccount.id)
    )).scalars().all()
    assert orphans == [501, 502]
    
    assert await BudgetLedgerService.get_state(db_session, 500, "c1") == LedgerState.LOCKED
    assert await BudgetLedgerService.get_state(db_session, 500, "c2") == LedgerState.CONSUMED
    assert await BudgetLedgerService.get_state(db_session, 500, "c3") == LedgerState.EMPTY


@pytest.mark.asyncio
async def test_reimport_updates_in_place(db_session, session_factory):
    await LegacyImporter(session_factory=session_factory).run(BUNDLE)
    
    changed = {
        "time_oltp:project": [{"project_id": "500", "name": "Renamed", "active": "0", "client_id": "70"}],
        "time_oltp:project_challenge_budget": [
            {"challenge_id": "c1", "project_id": "500", "locked_amount": "0", "consumed_amount": "240"},
        ],
    }
    stats = await LegacyImporter(session_factory=session_factory).run(changed)
    assert stats.skipped == 0
    
    account = (await db_session.execute(
        select(BillingAccount).where(BillingAccount.id == 500).execution_options(populate_existing=True)
    )).scalar_one()
    assert account.name == "Renamed"
    assert account.status == AccountStatus.INACTIVE
    # Absent optional fields keep their imported values
    assert account.sales_tax == Decimal("0")
    assert await BudgetLedgerService.get_state(db_session, 500, "c1") == LedgerState.CONSUMED


@pytest.mark.asyncio
async def test_markup_import(db_session, session_factory, billing_account):
    rows = [
        {"project_id": str(billing_account.id), "contest_fee_percentage": "0.35"},
        {"project_id": "abc", "contest_fee_percentage": "0.1"},
        {"project_id": str(billing_account.id), "contest_fee_percentage": "n/a"},
        {"project_id": "424242", "contest_fee_percentage": "0.2"},
    ]
    stats = await LegacyImporter(session_factory=session_factory).run_markup(rows)
    
    assert (stats.markups, stats.skipped) == (1, 3)
    account = (await db_session.execute(
        select(BillingAccount).where(BillingAccount.id == billing_account.id).execution_options(populate_existing=True)
    )).scalar_one()
    assert account.markup == Decimal("0.35")


@pytest.mark.asyncio
async def test_access_import(db_session, session_factory, billing_account, member_lookup_stub):
    ba = str(billing_account.id)
    bundle = {
        "time_oltp:user_account": [
            {"user_account_id": "u1", "user_name": "Alice"},
            {"user_account_id": "u2", "user_name": "  "},
            {"user_account_id": "u3", "user_name": "ghost"},
        ],
        "time_oltp:project_manager": [
            {"project_id": ba, "user_account_id": "u1"},
            {"project_id": ba, "user_account_id": "u9"},
            {"project_id": ba, "user_account_id": "u2"},
            {"project_id": ba, "user_account_id": "u3"},
            {"project_id": "424242", "user_account_id": "u1"},
            {"project_id": "abc", "user_account_id": "u1"},
        ],
    }
    importer = LegacyImporter(session_factory=session_factory, member_lookup=member_lookup_stub)
    stats = await importer.run(bundle)
    
    assert (stats.grants, stats.skipped) == (1, 5)
    assert await access_grants.has_access(db_session, billing_account.id, "1001") is True
    
    # Re-importing keeps a single grant per user
    await LegacyImporter(session_factory=session_factory, member_lookup=member_lookup_stub).run(bundle)
    users = await access_grants.list_users(db_session, billing_account.id, member_lookup_stub)
    assert [user["user_id"] for user in users] == ["1001"]

def test_bundle_files_are_merged(tmp_path):
    first = tmp_path / "a.json"
    second = tmp_path / "b.json"
    first.write_text(json.dumps({"time_oltp:client": [{"client_id": "1", "name": "A"}]}))
    second.write_text(json.dumps({"time_oltp:client": [{"client_id": "2", "name": "B"}], "time_oltp:project": []}))
    
    bundle = load_bundle([first, second])
    assert [row["client_id"] for row in bundle["time_oltp:client"]] == ["1", "2"]
    assert bundle["time_oltp:project"] == []


def test_contest_fee_file_shapes(tmp_path):
    bare = tmp_path / "bare.json"
    bare.write_text(json.dumps([{"project_id": 1}]))
    wrapped = tmp_path / "wrapped.json"
    wrapped.write_text(json.dumps({"time_oltp:project_contest_fee_percentage": [{"project_id": 2}]}))
    bad = tmp_path / "bad.json"
    bad.write_text(json.dumps({"something": []}))
    
    assert load_contest_fees(bare) == [{"project_id": 1}]
    assert load_contest_fees(wrapped) == [{"project_id": 2}]
    with pytest.raises(ValueError):
        load_contest_fees(bad)


def test_value_parsing():
    assert to_bool("YES") is True
    assert to_bool("0") is False
    assert to_bool("") is None
    assert to_datetime("2020-01-02 03:04:05").isoformat() == "2020-01-02T03:04:05+00:00"
    assert to_datetime("garbage") is None
    assert isinstance(to_datetime("2020-01-02T03:04:05+02:00"), datetime)

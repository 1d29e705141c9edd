"""
Legacy billing data import.

Loads JSON exports of the legacy time tracking schema and reconciles them into
clients, billing accounts and the budget ledger. Every row is applied in its
own transaction; a failing row is logged, counted as skipped and the batch
moves on.

Bundle keys:
    time_oltp:client                          -> clients
    time_oltp:project                         -> billing accounts
    time_oltp:project_challenge_budget        -> ledger (locked / consumed)
    time_oltp:project_contest_fee_percentage  -> billing account markup
    time_oltp:project_manager                 -> access grants (with time_oltp:user_account)
"""

import json
import logging
from dataclasses import dataclass, asdict
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Dict, Iterable, List, Optional

from sqlalchemy import select, text
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from billing_backend.app.core.exceptions import AppException, ResourceNotFoundError
from billing_backend.app.db.session import AsyncSessionLocal, transaction
from billing_backend.app.domain.billing.ledger_service import BudgetLedgerService, LedgerState, to_money
from billing_backend.app.models.billing_account import BillingAccount
from billing_backend.app.models.client import Client
from billing_backend.app.models.enums import AccountStatus
from billing_backend.app.services import access_grants
from billing_backend.app.services.member_lookup import MemberLookupService, member_lookup as default_member_lookup

logger = logging.getLogger(__name__)

DEFAULT_CLIENT_ID = "legacy-unknown-client"

CLIENTS_KEY = "time_oltp:client"
PROJECTS_KEY = "time_oltp:project"
CHALLENGE_BUDGETS_KEY = "time_oltp:project_challenge_budget"
CONTEST_FEES_KEY = "time_oltp:project_contest_fee_percentage"
PROJECT_MANAGERS_KEY = "time_oltp:project_manager"
USER_ACCOUNTS_KEY = "time_oltp:user_account"

# Errors that fail a single row without stopping the batch
ROW_ERRORS = (AppException, IntegrityError, ValueError, TypeError, InvalidOperation)


@dataclass
class ImportStats:
    clients: int = 0
    accounts: int = 0
    locks: int = 0
    consumes: int = 0
    cleared: int = 0
    markups: int = 0
    grants: int = 0
    skipped: int = 0

    def as_dict(self) -> dict:
        return asdict(self)


# --- value parsing ---

def to_bool(value) -> Optional[bool]:
    """Legacy booleans: 1/true/yes (any case) are true, empty is unknown."""
    if value is None or value == "":
        return None
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return value != 0
    return str(value).strip().lower() in ("1", "true", "yes")


def to_datetime(value) -> Optional[datetime]:
    """Parse ``YYYY-MM-DD HH:MM:SS`` (UTC when no offset is given); invalid values give None."""
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(str(value).strip().replace(" ", "T", 1))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def to_decimal(value, default: Optional[Decimal] = Decimal("0")) -> Optional[Decimal]:
    """Parse a legacy decimal string. Empty values give ``default``."""
    if value is None:
        return default
    raw = str(value).strip()
    if not raw:
        return default
    amount = Decimal(raw)
    if not amount.is_finite():
        raise InvalidOperation(f"not a finite number: {raw}")
    return amount


def non_empty(value) -> Optional[str]:
    if value is None:
        return None
    stripped = str(value).strip()
    return stripped or None


def load_bundle(paths: Iterable) -> Dict[str, List[dict]]:
    """Read and merge JSON bundles; rows for the same key are concatenated in file order."""
    combined: Dict[str, List[dict]] = {}
    for path in paths:
        data = json.loads(Path(path).read_text(encoding="utf-8"))
        if not isinstance(data, dict):
            raise ValueError(f"{path}: expected a JSON object keyed by table name")
        for key, rows in data.items():
            combined.setdefault(key, []).extend(rows or [])
    return combined


def load_contest_fees(path) -> List[dict]:
    """Contest fee rows from a bare JSON array or a bundle object."""
    data = json.loads(Path(path).read_text(encoding="utf-8"))
    if isinstance(data, list):
        return data
    if isinstance(data, dict) and isinstance(data.get(CONTEST_FEES_KEY), list):
        return data[CONTEST_FEES_KEY]
    raise ValueError(f'{path}: expected an array or {{"{CONTEST_FEES_KEY}": [...]}}')


class LegacyImporter:
    """
    Reconciles legacy exports into the billing database.

    Usage:
        importer = LegacyImporter(default_client_id="legacy-unknown-client")
        stats = await importer.run(load_bundle(["export.json"]))
    """

    def __init__(
        self,
        session_factory: async_sessionmaker = AsyncSessionLocal,
        default_client_id: str = DEFAULT_CLIENT_ID,
        member_lookup: Optional[MemberLookupService] = None,
    ):
        self.session_factory = session_factory
        self.default_client_id = default_client_id
        self.member_lookup = member_lookup or default_member_lookup
        self.stats = ImportStats()

    async def run(self, bundle: Dict[str, List[dict]]) -> ImportStats:
        """Import clients, billing accounts, access grants, then challenge budgets."""
        clients = bundle.get(CLIENTS_KEY) or []
        projects = bundle.get(PROJECTS_KEY) or []
        budgets = bundle.get(CHALLENGE_BUDGETS_KEY) or []
        fees = bundle.get(CONTEST_FEES_KEY) or []
        managers = bundle.get(PROJECT_MANAGERS_KEY) or []
        user_names = {
            str(row["user_account_id"]): row.get("user_name")
            for row in bundle.get(USER_ACCOUNTS_KEY) or []
            if row.get("user_account_id") is not None
        }
        logger.info(
            "Importing %s client(s), %s billing account(s), %s project manager(s), %s challenge budget row(s)",
            len(clients), len(projects), len(managers), len(budgets),
        )

        async with self.session_factory() as db:
            await self.ensure_default_client(db)
            for row in clients:
                await self.import_client(db, row)
            for row in projects:
                await self.import_project(db, row)
            if projects:
                await self.align_account_sequence(db)
            for row in managers:
                await self.import_access(db, row, user_names)
            for row in budgets:
                await self.import_challenge_budget(db, row)
            for row in fees:
                await self.import_markup(db, row)

        logger.info("Import complete: %s", self.stats.as_dict())
        return self.stats

    async def run_markup(self, rows: List[dict]) -> ImportStats:
        """Apply contest fee percentages as billing account markup."""
        logger.info("Importing %s contest fee row(s)", len(rows))
        async with self.session_factory() as db:
            for row in rows:
                await self.import_markup(db, row)
        logger.info("Markup import complete: updated=%s, skipped=%s", self.stats.markups, self.stats.skipped)
        return self.stats

    async def ensure_default_client(self, db: AsyncSession) -> None:
        """Create the placeholder client used for projects without a known client."""
        async with transaction(db):
            if await db.get(Client, self.default_client_id) is None:
                db.add(Client(
                    id=self.default_client_id,
                    name="Unknown Client (legacy)",
                    code_name="legacy-unknown",
                    status=AccountStatus.ACTIVE,
                ))
                logger.info("Created placeholder client %s", self.default_client_id)

    async def import_client(self, db: AsyncSession, row: dict) -> bool:
        client_id = str(row.get("client_id"))
        try:
            async with transaction(db):
                code_name = non_empty(row.get("code_name")) or non_empty(row.get("customer_number"))
                status = AccountStatus.ACTIVE if str(row.get("status")) == "1" else AccountStatus.INACTIVE
                start_date = to_datetime(row.get("start_date"))
                end_date = to_datetime(row.get("end_date"))

                client = await db.get(Client, client_id)
                if client is None:
                    client = Client(id=client_id)
                    db.add(client)
                client.name = row["name"]
                client.status = status
                # Missing optional values never clear what is already stored
                if code_name is not None:
                    client.code_name = code_name
                if start_date is not None:
                    client.start_date = start_date
                if end_date is not None:
                    client.end_date = end_date
        except (KeyError, *ROW_ERRORS) as exc:
            self._skip("Client %s failed: %s", client_id, exc)
            return False

        self.stats.clients += 1
        return True

    async def import_project(self, db: AsyncSession, row: dict) -> bool:
        project_id = row.get("project_id")
        try:
            async with transaction(db):
                account_id = int(project_id)
                client_id = await self._resolve_client_id(db, row.get("client_id"))
                values = {
                    "name": row["name"],
                    "status": AccountStatus.ACTIVE if to_bool(row.get("active")) else AccountStatus.INACTIVE,
                    "budget": to_money(to_decimal(row.get("budget")), field="budget"),
                    "client_id": client_id,
                    "is_manual_prize": bool(to_bool(row.get("is_manual_prize_setting"))),
                    "billable": True if to_bool(row.get("billable")) is None else to_bool(row.get("billable")),
                }
                optional = {
                    "description": non_empty(row.get("description")),
                    "start_date": to_datetime(row.get("start_date")),
                    "end_date": to_datetime(row.get("end_date")),
                    "po_number": non_empty(row.get("po_box_number")),
                    "subscription_number": non_empty(row.get("subscription_number")),
                    "payment_terms": non_empty(row.get("payment_terms_id")),
                    "sales_tax": to_decimal(row.get("sales_tax"), default=None),
                }

                account = await db.get(BillingAccount, account_id)
                if account is None:
                    account = BillingAccount(
                        id=account_id,
                        markup=Decimal("0"),
                        created_by=non_empty(row.get("creation_user")),
                    )
                    db.add(account)
                for field, value in values.items():
                    setattr(account, field, value)
                for field, value in optional.items():
                    if value is not None:
                        setattr(account, field, value)
        except (KeyError, *ROW_ERRORS) as exc:
            self._skip("Project %s failed: %s", project_id, exc)
            return False

        self.stats.accounts += 1
        return True

    async def import_access(self, db: AsyncSession, row: dict, user_names: Dict[str, str]) -> bool:
        """
        Grant a legacy project manager access to the billing account.
        
        The manager's user account name is the member handle, resolved to a
        member user id through the members database.
        """
        project_id = row.get("project_id")
        user_account_id = str(row.get("user_account_id"))
        try:
            account_id = int(project_id)
        except (TypeError, ValueError):
            self._skip("Skipping project manager: invalid project_id=%r", project_id)
            return False
        if user_account_id not in user_names:
            self._skip("Skipping billing account %s: user_account_id=%s not found", account_id, user_account_id)
            return False
        handle = non_empty(user_names[user_account_id])
        if handle is None:
            self._skip("Skipping billing account %s: empty handle for user_account_id=%s", account_id, user_account_id)
            return False

        try:
            user_id = await self.member_lookup.find_user_id(handle)
        except (SQLAlchemyError, OSError) as exc:
            self._skip("Member lookup for handle %r failed: %s", handle, exc)
            return False
        if user_id is None:
            self._skip("Skipping billing account %s: member not found for handle %r", account_id, handle)
            return False

        try:
            await access_grants.add_user(db, account_id, user_id)
        except ResourceNotFoundError:
            self._skip("Skipping grant for %s: billing account %s not found", handle, account_id)
            return False
        except ROW_ERRORS as exc:
            self._skip("Access grant %s/%s failed: %s", account_id, user_account_id, exc)
            return False

        self.stats.grants += 1
        return True

    async def import_challenge_budget(self, db: AsyncSession, row: dict) -> Optional[LedgerState]:
        project_id = row.get("project_id")
        challenge_id = str(row.get("challenge_id"))
        try:
            state = await BudgetLedgerService.reconcile(
                db,
                int(project_id),
                challenge_id,
                to_decimal(row.get("locked_amount")),
                to_decimal(row.get("consumed_amount")),
            )
        except ResourceNotFoundError:
            self._skip("Skipping challenge %s: billing account %s not found", challenge_id, project_id)
            return None
        except ROW_ERRORS as exc:
            self._skip("Challenge budget %s/%s failed: %s", project_id, challenge_id, exc)
            return None

        if state == LedgerState.CONSUMED:
            self.stats.consumes += 1
        elif state == LedgerState.LOCKED:
            self.stats.locks += 1
        else:
            self.stats.cleared += 1
        return state

    async def import_markup(self, db: AsyncSession, row: dict) -> bool:
        project_id = row.get("project_id")
        try:
            account_id = int(project_id)
        except (TypeError, ValueError):
            self._skip("Skipping record: invalid project_id=%r", project_id)
            return False
        try:
            markup = to_decimal(row.get("contest_fee_percentage"), default=None)
        except InvalidOperation:
            markup = None
        if markup is None:
            self._skip(
                "Skipping billing account %s: invalid contest_fee_percentage=%r",
                account_id, row.get("contest_fee_percentage"),
            )
            return False

        try:
            async with transaction(db):
                account = await db.get(BillingAccount, account_id)
                if account is None:
                    raise ResourceNotFoundError("Billing account", account_id)
                account.markup = markup
        except ROW_ERRORS as exc:
            self._skip("Markup for billing account %s not updated: %s", account_id, exc)
            return False

        self.stats.markups += 1
        return True

    async def align_account_sequence(self, db: AsyncSession) -> None:
        """Move the PostgreSQL id sequence past explicitly imported ids."""
        if db.get_bind().dialect.name != "postgresql":
            return
        try:
            async with transaction(db):
                await db.execute(text(
                    "SELECT setval(pg_get_serial_sequence('billing_accounts', 'id'), "
                    "COALESCE((SELECT MAX(id) FROM billing_accounts), 1))"
                ))
        except AppException as exc:
            logger.warning("Could not align billing account id sequence: %s", exc)

    async def _resolve_client_id(self, db: AsyncSession, raw_client_id) -> str:
        if raw_client_id is None or str(raw_client_id).strip() == "":
            return self.default_client_id
        client_id = str(raw_client_id)
        found = await db.scalar(select(Client.id).where(Client.id == client_id))
        if found is None:
            logger.warning("Client %s not found; using %s", client_id, self.default_client_id)
            return self.default_client_id
        return client_id

    def _skip(self, message: str, *args) -> None:
        self.stats.skipped += 1
        logger.warning(message, *args)

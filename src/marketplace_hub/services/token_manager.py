"""
Token lifecycle management for broker-issued tenant credentials.

Tracks each company's credential expiry, refreshes credentials through the
token broker when they enter the lead window, records every outcome on the
company's refresh record and purges stale history.

Credential states:
- active: valid and outside the lead window
- needs refresh: inside the lead window (derived, not persisted)
- failed: last refresh attempt errored; left for manual intervention or
  re-authorization
- expired: marked manually, terminal until re-authorization
"""

from dataclasses import dataclass, field, asdict
from datetime import datetime, timedelta
from typing import Callable, Dict, List, Optional

from sqlalchemy.orm import Session, sessionmaker

from marketplace_hub.database.connection import session_scope
from marketplace_hub.database.models import Company, TokenRefresh, RefreshStatus
from marketplace_hub.database.models.token_refresh import TERMINAL_STATUSES
from marketplace_hub.providers.base import TokenBroker
from marketplace_hub.utils.exceptions import (
    BrokerError,
    NotFoundError,
    TokenExpiredError,
    TokenNotDueError,
)
from marketplace_hub.utils.logger import get_logger
from marketplace_hub.utils.timeutils import isoformat, utcnow

logger = get_logger(__name__)

DEFAULT_LEAD_WINDOW = timedelta(hours=24)
DEFAULT_SAFETY_MARGIN = timedelta(hours=1)
DEFAULT_RETENTION_DAYS = 30


@dataclass
class TokenExpiryInfo:
    """Expiry and refresh history for one company's credentials."""
    company_id: str
    company_name: str
    token_expiry: datetime
    time_to_expiry: timedelta
    is_expired: bool
    needs_refresh: bool
    last_refresh: Optional[datetime]
    next_refresh: Optional[datetime]
    refresh_count: int
    status: str

    def to_dict(self) -> dict:
        data = asdict(self)
        data["token_expiry"] = isoformat(self.token_expiry)
        data["last_refresh"] = isoformat(self.last_refresh)
        data["next_refresh"] = isoformat(self.next_refresh)
        data["time_to_expiry"] = int(self.time_to_expiry.total_seconds())
        return data


@dataclass
class RefreshBatchResult:
    """Aggregate outcome of a scheduled refresh pass."""
    total: int = 0
    succeeded: int = 0
    failed: int = 0
    failures: Dict[str, str] = field(default_factory=dict)


class TokenLifecycleManager:
    """
    Decides when tenant credentials need refreshing and performs the refresh.

    Every unit of work opens its own session, so one tenant's failure
    cannot roll back another tenant's successful refresh.
    """

    def __init__(
        self,
        session_factory: sessionmaker,
        broker: TokenBroker,
        lead_window: timedelta = DEFAULT_LEAD_WINDOW,
        safety_margin: timedelta = DEFAULT_SAFETY_MARGIN,
        retention_days: int = DEFAULT_RETENTION_DAYS,
        clock: Callable[[], datetime] = utcnow,
    ):
        """
        Args:
            session_factory: SQLAlchemy session factory
            broker: Token broker used for code exchange and refresh
            lead_window: Refresh becomes due this long before expiry
            safety_margin: is_valid reports False inside this margin
            retention_days: Default age for purging terminal refresh records
            clock: Returns current naive UTC time
        """
        self.session_factory = session_factory
        self.broker = broker
        self.lead_window = lead_window
        self.safety_margin = safety_margin
        self.retention_days = retention_days
        self._now = clock

    # Lookups

    def _get_company(self, db: Session, company_id: str, active_only: bool = False) -> Company:
        query = db.query(Company).filter(
            Company.company_id == company_id,
            Company.deleted_at.is_(None),
        )
        if active_only:
            query = query.filter(Company.is_active.is_(True))
        company = query.first()
        if company is None:
            raise NotFoundError("Company", company_id)
        return company

    def _get_refresh_record(self, db: Session, company: Company) -> Optional[TokenRefresh]:
        return (
            db.query(TokenRefresh)
            .filter(TokenRefresh.company_id == company.id)
            .order_by(TokenRefresh.created_at.desc())
            .first()
        )

    # Authorization

    def register_authorization(self, code: str) -> dict:
        """
        Complete a first (or repeated) authorization for a company.

        Exchanges the code with the broker, upserts the company row and
        creates or resets its refresh record.

        Args:
            code: Authorization code from the OAuth callback

        Returns:
            Public dict of the company

        Raises:
            BrokerError: If the exchange fails
        """
        grant = self.broker.exchange_code(code)
        now = self._now()

        with session_scope(self.session_factory) as db:
            # Soft-deleted rows still hold the unique external id
            company = db.query(Company).filter(Company.company_id == grant.company_id).first()
            if company is None:
                company = Company(company_id=grant.company_id)
                db.add(company)
                logger.info(f"Registering new company {grant.company_id}")
            else:
                logger.info(f"Re-authorizing company {grant.company_id}")

            company.company_name = grant.company_name
            company.access_token = grant.access_token
            company.refresh_token = grant.refresh_token
            company.token_expiry = grant.expires_at
            company.is_active = True
            company.deleted_at = None
            db.flush()

            record = self._get_refresh_record(db, company)
            if record is None:
                record = TokenRefresh(company_id=company.id, refresh_count=0)
                db.add(record)

            record.last_refresh = now
            record.next_refresh = grant.expires_at - self.lead_window
            record.status = RefreshStatus.ACTIVE.value
            record.error_message = None
            db.flush()

            return company.to_dict()

    # Refresh

    def _apply_refresh(self, db: Session, company: Company, record: Optional[TokenRefresh]) -> TokenRefresh:
        """Call the broker and write the new credentials and history."""
        logger.debug(f"Refreshing credentials for company {company.company_id}")
        grant = self.broker.refresh(company.refresh_token, company.company_id)

        company.access_token = grant.access_token
        company.refresh_token = grant.refresh_token
        company.token_expiry = grant.expires_at

        if record is None:
            record = TokenRefresh(company_id=company.id, refresh_count=0)
            db.add(record)

        record.last_refresh = self._now()
        record.next_refresh = grant.expires_at - self.lead_window
        record.refresh_count = (record.refresh_count or 0) + 1
        record.status = RefreshStatus.ACTIVE.value
        record.error_message = None
        return record

    def _record_failure(self, record_id, error: Exception) -> None:
        """Mark a refresh record failed in a fresh session."""
        try:
            with session_scope(self.session_factory) as db:
                record = db.get(TokenRefresh, record_id)
                if record is None:
                    return
                record.status = RefreshStatus.FAILED.value
                record.error_message = str(error) or error.__class__.__name__
        except Exception as e:
            logger.error(f"Failed to record refresh failure for record {record_id}: {e}")

    def refresh_due_tokens(self) -> RefreshBatchResult:
        """
        Refresh every active record whose next refresh time has passed.

        Each tenant is refreshed in isolation: a failure is recorded on that
        tenant's record and the batch carries on.

        Returns:
            RefreshBatchResult with counts and per-company error messages
        """
        now = self._now()
        logger.info("Starting token refresh job...")

        with session_scope(self.session_factory) as db:
            due = (
                db.query(TokenRefresh.id, Company.company_id)
                .join(Company, TokenRefresh.company_id == Company.id)
                .filter(
                    TokenRefresh.next_refresh <= now,
                    TokenRefresh.status == RefreshStatus.ACTIVE.value,
                    Company.is_active.is_(True),
                    Company.deleted_at.is_(None),
                )
                .all()
            )

        result = RefreshBatchResult(total=len(due))
        logger.info(f"Found {len(due)} tokens to refresh")

        for record_id, company_id in due:
            try:
                with session_scope(self.session_factory) as db:
                    record = db.get(TokenRefresh, record_id)
                    company = db.get(Company, record.company_id)
                    self._apply_refresh(db, company, record)
                result.succeeded += 1
                logger.info(f"Successfully refreshed token for company {company_id}")
            except Exception as e:
                result.failed += 1
                result.failures[company_id] = str(e)
                logger.error(f"Failed to refresh token for company {company_id}: {e}")
                self._record_failure(record_id, e)

        logger.info(
            f"Token refresh job completed. Success: {result.succeeded}, Failures: {result.failed}"
        )
        return result

    def refresh_tenant(self, company_id: str) -> TokenExpiryInfo:
        """
        Refresh one company's credentials on demand.

        A failed record may be refreshed here; an expired one may not.

        Raises:
            NotFoundError: If there is no active company with this id
            TokenExpiredError: If the refresh record is marked expired
            TokenNotDueError: If more than the lead window remains; the
                broker is not called
            BrokerError: If the broker refresh fails (recorded as failed)
        """
        record_id = None
        try:
            with session_scope(self.session_factory) as db:
                company = self._get_company(db, company_id, active_only=True)
                record = self._get_refresh_record(db, company)
                if record is not None and record.status == RefreshStatus.EXPIRED.value:
                    raise TokenExpiredError(company_id)

                remaining = company.token_expiry - self._now()
                if remaining > self.lead_window:
                    raise TokenNotDueError(company_id, remaining.total_seconds())

                record_id = record.id if record is not None else None
                self._apply_refresh(db, company, record)
        except BrokerError as e:
            logger.error(f"On-demand refresh failed for company {company_id}: {e}")
            if record_id is not None:
                self._record_failure(record_id, e)
            raise

        logger.info(f"Manually refreshed token for company {company_id}")
        return self.expiry_info(company_id)

    # Inspection

    def is_valid(self, company_id: str) -> bool:
        """
        Whether an active company's credentials can be used right now.

        False when expired or expiring within the safety margin.

        Raises:
            NotFoundError: If there is no active company with this id
        """
        with session_scope(self.session_factory) as db:
            company = self._get_company(db, company_id, active_only=True)
            expiry = company.token_expiry

        now = self._now()
        if now >= expiry:
            return False
        return expiry - now >= self.safety_margin

    def _build_info(self, company: Company, record: TokenRefresh) -> TokenExpiryInfo:
        remaining = company.token_expiry - self._now()
        return TokenExpiryInfo(
            company_id=company.company_id,
            company_name=company.company_name,
            token_expiry=company.token_expiry,
            time_to_expiry=remaining,
            is_expired=remaining <= timedelta(0),
            needs_refresh=remaining < self.lead_window,
            last_refresh=record.last_refresh,
            next_refresh=record.next_refresh,
            refresh_count=record.refresh_count,
            status=record.status,
        )

    def expiry_info(self, company_id: str) -> TokenExpiryInfo:
        """
        Expiry details and refresh history for a company.

        Raises:
            NotFoundError: If the company or its refresh record is missing
        """
        with session_scope(self.session_factory) as db:
            company = self._get_company(db, company_id)
            record = self._get_refresh_record(db, company)
            if record is None:
                raise NotFoundError("Token refresh record", company_id)
            return self._build_info(company, record)

    def all_statuses(self) -> List[TokenExpiryInfo]:
        """Expiry info for every active company; lookup failures are skipped."""
        with session_scope(self.session_factory) as db:
            company_ids = [
                row.company_id for row in
                db.query(Company.company_id)
                .filter(Company.is_active.is_(True), Company.deleted_at.is_(None))
                .order_by(Company.token_expiry)
                .all()
            ]

        statuses = []
        for company_id in company_ids:
            try:
                statuses.append(self.expiry_info(company_id))
            except Exception as e:
                logger.warning(f"Failed to get token info for company {company_id}: {e}")
        return statuses

    # Administration

    def mark_expired(self, company_id: str) -> None:
        """
        Deactivate a company and mark its refresh history expired.

        Raises:
            NotFoundError: If the company does not exist
        """
        with session_scope(self.session_factory) as db:
            company = self._get_company(db, company_id)
            company.is_active = False

            records = db.query(TokenRefresh).filter(TokenRefresh.company_id == company.id).all()
            for record in records:
                record.status = RefreshStatus.EXPIRED.value
                record.error_message = "Manually marked as expired"

        logger.warning(f"Token for company {company_id} marked as expired")

    def purge_old_records(self, retention_days: Optional[int] = None) -> int:
        """
        Delete failed/expired refresh records not updated within the window.

        Active records are kept regardless of age.

        Returns:
            Number of records deleted
        """
        days = self.retention_days if retention_days is None else retention_days
        cutoff = self._now() - timedelta(days=days)

        with session_scope(self.session_factory) as db:
            deleted = (
                db.query(TokenRefresh)
                .filter(
                    TokenRefresh.updated_at < cutoff,
                    TokenRefresh.status.in_(TERMINAL_STATUSES),
                )
                .delete(synchronize_session=False)
            )

        logger.info(f"Cleaned up {deleted} expired token records")
        return deleted

"""
Ledger Service - the single entry point for balance mutations.

Every mutation follows the same pattern:
1. Lock the account row (SELECT ... FOR UPDATE)
2. Check the balance under the lock
3. Insert the ledger row and update the cached balance
4. Flush, read back and verify
5. Commit (or leave the commit to the caller composing a larger unit)
"""

import secrets
from collections.abc import Iterable
from datetime import timedelta
from uuid import UUID, uuid4

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from vidgro.config import settings
from vidgro.db.models import Account, LedgerTransaction, utc_now
from vidgro.exceptions import (
    AccountClosedError,
    AccountNotFoundError,
    DataIntegrityError,
    InsufficientFundsError,
    WriteVerificationError,
)
from vidgro.models.api import AccountStatus, TransactionType
from vidgro.models.domain import (
    AccountData,
    BalanceData,
    LedgerAudit,
    TransactionData,
    TransactionIntent,
    TransactionPage,
)
from vidgro.observability.logging import get_logger
from vidgro.observability.metrics import metrics
from vidgro.services.pricing import is_vip_active

logger = get_logger(__name__)


def generate_referral_code() -> str:
    """Eight upper-case hex characters."""
    return secrets.token_hex(4).upper()


def account_to_domain(account: Account) -> AccountData:
    """Convert ORM Account to domain model."""
    return AccountData(
        account_id=account.id,
        balance=account.balance,
        is_vip=account.is_vip,
        vip_active=is_vip_active(account.is_vip, account.vip_expires_at, utc_now()),
        vip_expires_at=account.vip_expires_at,
        referral_code=account.referral_code,
        referred_by=account.referred_by,
        status=AccountStatus(account.status),
        created_at=account.created_at,
        updated_at=account.updated_at,
    )


def transaction_to_domain(transaction: LedgerTransaction) -> TransactionData:
    """Convert ORM LedgerTransaction to domain model."""
    return TransactionData(
        transaction_id=transaction.id,
        account_id=transaction.account_id,
        amount=transaction.amount,
        transaction_type=TransactionType(transaction.transaction_type),
        description=transaction.description,
        reference_id=transaction.reference_id,
        balance_before=transaction.balance_before,
        balance_after=transaction.balance_after,
        created_at=transaction.created_at,
    )


class LedgerService:
    """
    Ledger service with row locking and write verification.

    `record_transaction` participates in the caller's transaction;
    `apply_transaction` is the standalone, committing form.
    """

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    # ========================================================================
    # Mutations
    # ========================================================================

    async def apply_transaction(self, intent: TransactionIntent) -> TransactionData:
        """
        Apply one signed transaction and commit.

        Raises:
            AccountNotFoundError: Account doesn't exist
            AccountClosedError: Account is closed
            InsufficientFundsError: Debit would overdraw the account
        """
        try:
            data = await self.record_transaction(intent)
            await self.session.commit()
        except Exception as exc:
            await self.session.rollback()
            metrics.record_transaction(intent.transaction_type.value, intent.amount, type(exc).__name__)
            raise

        metrics.record_transaction(intent.transaction_type.value, intent.amount, "success")
        logger.info(
            "transaction_applied",
            account_id=str(data.account_id),
            transaction_id=str(data.transaction_id),
            transaction_type=data.transaction_type.value,
            amount=data.amount,
            balance_after=data.balance_after,
        )
        return data

    async def record_transaction(self, intent: TransactionIntent) -> TransactionData:
        """Lock, check and write one transaction without committing."""
        account = await self.lock_account(intent.account_id)
        if account is None:
            logger.warning("account_not_found", account_id=str(intent.account_id))
            raise AccountNotFoundError(intent.account_id)
        if account.status == AccountStatus.CLOSED:
            raise AccountClosedError(account.id)
        return await self.post_to_locked_account(account, intent)

    async def post_to_locked_account(
        self, account: Account, intent: TransactionIntent
    ) -> TransactionData:
        """
        Write a transaction against an account row the caller already holds locked.

        The balance check happens here, under that lock.
        """
        balance_before = account.balance
        balance_after = balance_before + intent.amount
        if balance_after < 0:
            logger.info(
                "insufficient_funds",
                account_id=str(account.id),
                balance=balance_before,
                required=-intent.amount,
                transaction_type=intent.transaction_type.value,
            )
            raise InsufficientFundsError(balance_before, -intent.amount)

        transaction = LedgerTransaction(
            id=uuid4(),
            account_id=account.id,
            amount=intent.amount,
            transaction_type=intent.transaction_type,
            description=intent.description,
            reference_id=intent.reference_id,
            balance_before=balance_before,
            balance_after=balance_after,
            created_at=utc_now(),
        )
        self.session.add(transaction)
        await self.session.flush()

        verified_transaction = await self.session.get(LedgerTransaction, transaction.id)
        if verified_transaction is None:
            raise WriteVerificationError(f"Transaction {transaction.id} not found after insert")

        account.balance = balance_after
        await self.session.flush()

        verified_account = await self.session.get(Account, account.id)
        if verified_account is None:
            raise WriteVerificationError(f"Account {account.id} disappeared after update")
        if verified_account.balance != balance_after:
            raise DataIntegrityError(
                f"Balance mismatch: expected {balance_after}, got {verified_account.balance}"
            )

        return transaction_to_domain(verified_transaction)

    async def create_account(
        self, account_id: UUID, referral_code: str | None = None
    ) -> AccountData:
        """
        Create an account at signup. Idempotent on account_id.

        The starting balance is posted as a signup_bonus transaction. A valid
        referral code of another account credits both sides.
        """
        existing = await self.session.get(Account, account_id)
        if existing is not None:
            return account_to_domain(existing)

        referrer: Account | None = None
        if referral_code:
            referrer = await self._lock_account_by_referral_code(referral_code)
            if referrer is None or referrer.id == account_id:
                logger.warning(
                    "referral_code_ignored", account_id=str(account_id), referral_code=referral_code
                )
                referrer = None

        now = utc_now()
        account = Account(
            id=account_id,
            balance=0,
            is_vip=False,
            vip_expires_at=None,
            referral_code=generate_referral_code(),
            referred_by=referrer.id if referrer else None,
            status=AccountStatus.ACTIVE.value,
            created_at=now,
            updated_at=now,
        )
        self.session.add(account)

        try:
            await self.session.flush()
        except IntegrityError as exc:
            # Concurrent signup for the same id
            await self.session.rollback()
            logger.warning("account_creation_conflict", account_id=str(account_id), error=str(exc))
            existing = await self.session.get(Account, account_id)
            if existing is None:
                raise WriteVerificationError(f"Account creation failed: {exc}") from exc
            return account_to_domain(existing)

        try:
            if settings.starting_balance > 0:
                await self.post_to_locked_account(
                    account,
                    TransactionIntent(
                        account_id=account.id,
                        amount=settings.starting_balance,
                        transaction_type=TransactionType.SIGNUP_BONUS,
                        description="Welcome bonus",
                    ),
                )
            if referrer is not None:
                await self._credit_referral(account, referrer)
            await self.session.commit()
        except Exception:
            await self.session.rollback()
            raise

        metrics.accounts_created_total.labels(referred=str(referrer is not None)).inc()
        logger.info(
            "account_created",
            account_id=str(account.id),
            balance=account.balance,
            referred_by=str(referrer.id) if referrer else None,
        )
        return account_to_domain(account)

    async def activate_vip(self, account_id: UUID, duration_days: int, plan_name: str) -> AccountData:
        """
        Grant or extend VIP. Called by the payment/VIP provider after it
        has validated the purchase; records a zero-amount vip_purchase row.
        """
        if duration_days <= 0:
            raise ValueError(f"VIP duration must be positive: {duration_days}")

        try:
            account = await self.lock_account(account_id)
            if account is None:
                logger.warning("account_not_found", account_id=str(account_id))
                raise AccountNotFoundError(account_id)
            if account.status == AccountStatus.CLOSED:
                raise AccountClosedError(account.id)

            now = utc_now()
            starts_at = now
            if is_vip_active(account.is_vip, account.vip_expires_at, now) and account.vip_expires_at:
                starts_at = account.vip_expires_at
            account.is_vip = True
            account.vip_expires_at = starts_at + timedelta(days=duration_days)

            await self.post_to_locked_account(
                account,
                TransactionIntent(
                    account_id=account.id,
                    amount=0,
                    transaction_type=TransactionType.VIP_PURCHASE,
                    description=f"VIP {plan_name} ({duration_days} days)",
                ),
            )
            await self.session.commit()
        except Exception:
            await self.session.rollback()
            raise

        logger.info(
            "vip_activated",
            account_id=str(account_id),
            plan_name=plan_name,
            vip_expires_at=account.vip_expires_at.isoformat(),
        )
        return account_to_domain(account)

    async def close_account(self, account_id: UUID) -> AccountData:
        """Soft-close an account; its ledger is kept."""
        account = await self.lock_account(account_id)
        if account is None:
            raise AccountNotFoundError(account_id)
        account.status = AccountStatus.CLOSED.value
        account.updated_at = utc_now()
        await self.session.commit()
        logger.info("account_closed", account_id=str(account_id))
        return account_to_domain(account)

    # ========================================================================
    # Reads
    # ========================================================================

    async def get_account(self, account_id: UUID) -> AccountData:
        account = await self.session.get(Account, account_id)
        if account is None:
            logger.warning("account_not_found", account_id=str(account_id))
            raise AccountNotFoundError(account_id)
        return account_to_domain(account)

    async def get_balance(self, account_id: UUID) -> BalanceData:
        account = await self.get_account(account_id)
        return BalanceData(
            account_id=account.account_id,
            balance=account.balance,
            is_vip=account.is_vip,
            vip_active=account.vip_active,
        )

    async def get_transaction_history(
        self,
        account_id: UUID,
        limit: int = 50,
        offset: int = 0,
        transaction_type: TransactionType | None = None,
        exclude_types: Iterable[TransactionType] = (),
    ) -> TransactionPage:
        """Ledger entries for an account, newest first."""
        await self.get_account(account_id)

        conditions = [LedgerTransaction.account_id == account_id]
        if transaction_type is not None:
            conditions.append(LedgerTransaction.transaction_type == transaction_type)
        excluded = list(exclude_types)
        if excluded:
            conditions.append(LedgerTransaction.transaction_type.not_in(excluded))

        count_result = await self.session.execute(
            select(func.count()).select_from(LedgerTransaction).where(*conditions)
        )
        total_count = count_result.scalar_one()

        result = await self.session.execute(
            select(LedgerTransaction)
            .where(*conditions)
            .order_by(LedgerTransaction.created_at.desc(), LedgerTransaction.id.desc())
            .limit(limit)
            .offset(offset)
        )
        transactions = [transaction_to_domain(row) for row in result.scalars().all()]

        return TransactionPage(
            transactions=transactions,
            total_count=total_count,
            has_more=offset + len(transactions) < total_count,
        )

    async def verify_ledger(self, account_id: UUID) -> LedgerAudit:
        """Compare the cached balance with the sum of the ledger."""
        account = await self.get_account(account_id)
        result = await self.session.execute(
            select(
                func.coalesce(func.sum(LedgerTransaction.amount), 0),
                func.count(LedgerTransaction.id),
            ).where(LedgerTransaction.account_id == account_id)
        )
        ledger_sum, transaction_count = result.one()
        audit = LedgerAudit(
            account_id=account_id,
            cached_balance=account.balance,
            ledger_sum=int(ledger_sum),
            transaction_count=int(transaction_count),
        )
        if not audit.consistent:
            logger.error(
                "ledger_inconsistent",
                account_id=str(account_id),
                cached_balance=audit.cached_balance,
                ledger_sum=audit.ledger_sum,
            )
        return audit

    # ========================================================================
    # Unit-of-work helpers (shared with promotion and settlement services)
    # ========================================================================

    async def lock_account(self, account_id: UUID) -> Account | None:
        """Lock account row for update."""
        result = await self.session.execute(
            select(Account).where(Account.id == account_id).with_for_update()
        )
        return result.scalar_one_or_none()

    # ========================================================================
    # Private Helper Methods
    # ========================================================================

    async def _lock_account_by_referral_code(self, referral_code: str) -> Account | None:
        result = await self.session.execute(
            select(Account).where(Account.referral_code == referral_code.upper()).with_for_update()
        )
        return result.scalar_one_or_none()

    async def _credit_referral(self, account: Account, referrer: Account) -> None:
        """Credit the new account and its referrer; referrer row is already locked."""
        if settings.referee_bonus > 0:
            await self.post_to_locked_account(
                account,
                TransactionIntent(
                    account_id=account.id,
                    amount=settings.referee_bonus,
                    transaction_type=TransactionType.REFERRAL_BONUS,
                    description=f"Referral bonus (code {referrer.referral_code})",
                ),
            )
        if referrer.status == AccountStatus.CLOSED:
            logger.warning("referrer_closed", referrer_id=str(referrer.id))
            return
        if settings.referrer_bonus > 0:
            await self.post_to_locked_account(
                referrer,
                TransactionIntent(
                    account_id=referrer.id,
                    amount=settings.referrer_bonus,
                    transaction_type=TransactionType.REFERRAL_BONUS,
                    description="Referral bonus (friend joined)",
                ),
            )

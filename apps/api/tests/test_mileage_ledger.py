import asyncio
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from uuid import uuid4

import pytest
from sqlalchemy import select

from buzz_api.core.errors import (
    AlreadyRefunded,
    InsufficientBalance,
    InvalidAmount,
    InvalidQrCode,
    NotFound,
    ValidationFailed,
)
from buzz_api.models.business import Business
from buzz_api.models.mileage import MileageAccount, MileageTransaction, MileageTransactionType, MileageUsageLog
from buzz_api.models.user import User
from buzz_api.observability.ledger import get_ledger_store
from buzz_api.services.mileage import MileageLedgerService
from buzz_api.services.qr_tokens import issue_mileage_token

NOW = datetime(2026, 10, 14, 9, 30, tzinfo=timezone.utc)


async def _assert_ledger_consistent(session, user_id) -> None:
    account = (
        await session.execute(select(MileageAccount).where(MileageAccount.user_id == user_id))
    ).scalar_one()
    transactions = (
        await session.execute(
            select(MileageTransaction)
            .where(MileageTransaction.user_id == user_id)
            .order_by(MileageTransaction.created_at.asc())
        )
    ).scalars().all()

    credits = sum((Decimal(tx.amount) for tx in transactions if tx.type.is_credit), Decimal("0"))
    debits = sum((Decimal(tx.amount) for tx in transactions if not tx.type.is_credit), Decimal("0"))
    assert Decimal(account.balance) == credits - debits

    previous = Decimal("0")
    for tx in transactions:
        assert Decimal(tx.balance_before) == previous
        delta = Decimal(tx.amount) if tx.type.is_credit else -Decimal(tx.amount)
        assert Decimal(tx.balance_after) == Decimal(tx.balance_before) + delta
        previous = Decimal(tx.balance_after)
    assert previous == Decimal(account.balance)


@pytest.mark.asyncio
async def test_earn_then_use_chains_balances(session_factory, ledger_world) -> None:
    async with session_factory() as session:
        service = MileageLedgerService(session)
        earn = await service.earn(ledger_world.member_id, 1000, description="Signup bonus", now=NOW)
        token, _ = issue_mileage_token(ledger_world.member_id, now=NOW)
        payment = await service.use_mileage(
            ledger_world.member_id,
            qr_code=token,
            amount=400,
            business_id=ledger_world.business_id,
            now=NOW + timedelta(minutes=1),
        )
        await session.commit()

        assert earn.balance_before == Decimal("0")
        assert earn.balance_after == Decimal("1000")
        assert earn.expires_at == NOW + timedelta(days=365)
        assert payment.transaction.type is MileageTransactionType.USE
        assert payment.transaction.balance_before == Decimal("1000")
        assert payment.transaction.balance_after == Decimal("600")
        assert payment.remaining_balance == Decimal("600")
        assert payment.business.qr_scan_count == 1

        snapshot = await service.get_balance(ledger_world.member_id, now=NOW)
        assert snapshot.balance == Decimal("600")
        assert snapshot.total_earned == Decimal("1000")
        assert snapshot.total_used == Decimal("400")
        assert snapshot.expiring_amount == Decimal("0")

        logs = (await session.execute(select(MileageUsageLog))).scalars().all()
        assert len(logs) == 1
        assert logs[0].transaction_id == payment.transaction.id

        await _assert_ledger_consistent(session, ledger_world.member_id)

    snapshot = get_ledger_store().snapshot()
    assert snapshot.transactions == {"earn": 1, "use": 1}
    assert snapshot.amounts["use"] == 400.0


@pytest.mark.asyncio
async def test_insufficient_balance_leaves_account_untouched(session_factory, ledger_world) -> None:
    async with session_factory() as session:
        service = MileageLedgerService(session)
        await service.earn(ledger_world.member_id, 300, now=NOW)
        await session.commit()

        token, _ = issue_mileage_token(ledger_world.member_id, now=NOW)
        with pytest.raises(InsufficientBalance) as excinfo:
            await service.use_mileage(
                ledger_world.member_id,
                qr_code=token,
                amount=500,
                business_id=ledger_world.business_id,
                now=NOW,
            )
        await session.rollback()

        assert excinfo.value.details == {"currentBalance": 300.0, "requestedAmount": 500.0}
        account = await service.get_account(ledger_world.member_id)
        assert account.balance == Decimal("300")
        count = len((await session.execute(select(MileageTransaction))).scalars().all())
        assert count == 1

    assert get_ledger_store().snapshot().rejections == {"MILEAGE_001": 1}


@pytest.mark.asyncio
async def test_use_rejects_bad_amounts_and_foreign_tokens(session_factory, ledger_world) -> None:
    async with session_factory() as session:
        service = MileageLedgerService(session)
        await service.earn(ledger_world.member_id, 1000, now=NOW)
        await session.commit()

        token, _ = issue_mileage_token(ledger_world.member_id, now=NOW)
        with pytest.raises(InvalidAmount):
            await service.use_mileage(
                ledger_world.member_id, qr_code=token, amount=0, business_id=ledger_world.business_id, now=NOW
            )

        foreign, _ = issue_mileage_token(uuid4(), now=NOW)
        with pytest.raises(InvalidQrCode):
            await service.use_mileage(
                ledger_world.member_id, qr_code=foreign, amount=100, business_id=ledger_world.business_id, now=NOW
            )
        await session.rollback()

        with pytest.raises(InvalidQrCode):
            await service.use_mileage(
                ledger_world.member_id,
                qr_code=token,
                amount=100,
                business_id=ledger_world.business_id,
                now=NOW + timedelta(minutes=10),
            )
        await session.rollback()

        with pytest.raises(NotFound):
            await service.use_mileage(
                ledger_world.member_id, qr_code=token, amount=100, business_id=uuid4(), now=NOW
            )
        await session.rollback()

        account = await service.get_account(ledger_world.member_id)
        assert account.balance == Decimal("1000")


@pytest.mark.asyncio
async def test_use_without_account_is_not_found(session_factory, ledger_world) -> None:
    async with session_factory() as session:
        service = MileageLedgerService(session)
        token, _ = issue_mileage_token(ledger_world.member_id, now=NOW)
        with pytest.raises(NotFound):
            await service.use_mileage(
                ledger_world.member_id, qr_code=token, amount=10, business_id=ledger_world.business_id, now=NOW
            )


@pytest.mark.asyncio
async def test_concurrent_uses_never_overdraw(file_session_factory, file_ledger_world) -> None:
    world = file_ledger_world
    async with file_session_factory() as session:
        await MileageLedgerService(session).earn(world.member_id, 300, now=NOW)
        await session.commit()

    token, _ = issue_mileage_token(world.member_id, now=NOW)

    async def _spend() -> bool:
        async with file_session_factory() as session:
            service = MileageLedgerService(session)
            try:
                await service.use_mileage(
                    world.member_id,
                    qr_code=token,
                    amount=100,
                    business_id=world.business_id,
                    now=NOW,
                )
            except InsufficientBalance:
                await session.rollback()
                return False
            await session.commit()
            return True

    results = await asyncio.gather(*(_spend() for _ in range(5)))

    assert results.count(True) == 3
    assert results.count(False) == 2

    async with file_session_factory() as session:
        account = await MileageLedgerService(session).get_account(world.member_id)
        assert account.balance == Decimal("0")
        assert account.total_used == Decimal("300")
        uses = (
            await session.execute(
                select(MileageTransaction).where(MileageTransaction.type == MileageTransactionType.USE)
            )
        ).scalars().all()
        assert len(uses) == 3
        assert sorted(Decimal(tx.balance_after) for tx in uses) == [Decimal("0"), Decimal("100"), Decimal("200")]
        business = await session.get(Business, world.business_id)
        assert business.qr_scan_count == 3


@pytest.mark.asyncio
async def test_refund_credits_once(session_factory, ledger_world) -> None:
    async with session_factory() as session:
        service = MileageLedgerService(session)
        earn = await service.earn(ledger_world.member_id, 500, now=NOW)
        token, _ = issue_mileage_token(ledger_world.member_id, now=NOW)
        payment = await service.use_mileage(
            ledger_world.member_id,
            qr_code=token,
            amount=200,
            business_id=ledger_world.business_id,
            now=NOW + timedelta(seconds=1),
        )
        refund = await service.refund_use(payment.transaction.id, now=NOW + timedelta(seconds=2))
        await session.commit()

        assert refund.business.business_name == "Buzz Cafe"
        assert payment.transaction.business.id == ledger_world.business_id
        assert refund.type is MileageTransactionType.REFUND
        assert refund.amount == Decimal("200")
        assert refund.balance_after == Decimal("500")
        assert refund.reference_id == str(payment.transaction.id)

        with pytest.raises(AlreadyRefunded):
            await service.refund_use(payment.transaction.id)
        with pytest.raises(ValidationFailed):
            await service.refund_use(earn.id)
        with pytest.raises(NotFound):
            await service.refund_use(uuid4())
        await session.rollback()

        account = await service.get_account(ledger_world.member_id)
        assert account.balance == Decimal("500")
        assert account.total_earned == Decimal("700")
        await _assert_ledger_consistent(session, ledger_world.member_id)


@pytest.mark.asyncio
async def test_record_transaction_validation(session_factory, ledger_world) -> None:
    async with session_factory() as session:
        service = MileageLedgerService(session)
        with pytest.raises(InvalidAmount):
            await service.record_transaction(ledger_world.member_id, MileageTransactionType.EARN, -5)
        with pytest.raises(ValidationFailed):
            await service.record_transaction(
                ledger_world.member_id,
                MileageTransactionType.USE,
                5,
                expires_at=NOW,
            )
        with pytest.raises(NotFound):
            await service.record_transaction(ledger_world.member_id, MileageTransactionType.USE, 5)

        tx = await service.record_transaction(ledger_world.member_id, MileageTransactionType.EARN, "10.005")
        assert tx.amount == Decimal("10.01")


@pytest.mark.asyncio
async def test_ensure_account_is_idempotent(session_factory, ledger_world) -> None:
    async with session_factory() as session:
        service = MileageLedgerService(session)
        first = await service.ensure_account(ledger_world.member_id)
        second = await service.ensure_account(ledger_world.member_id)
        await session.commit()

        assert first.id == second.id
        accounts = (await session.execute(select(MileageAccount))).scalars().all()
        assert len(accounts) == 1
        assert accounts[0].balance == Decimal("0")


@pytest.mark.asyncio
async def test_history_is_newest_first_with_summary(session_factory, ledger_world) -> None:
    async with session_factory() as session:
        service = MileageLedgerService(session)
        await service.earn(ledger_world.member_id, 1000, now=NOW)
        await service.earn(ledger_world.member_id, 250, now=NOW + timedelta(minutes=1))
        token, _ = issue_mileage_token(ledger_world.member_id, now=NOW)
        await service.use_mileage(
            ledger_world.member_id,
            qr_code=token,
            amount=300,
            business_id=ledger_world.business_id,
            now=NOW + timedelta(minutes=2),
        )
        await session.commit()

        page = await service.history(ledger_world.member_id, page=1, limit=2)
        assert page.total == 3
        assert [tx.type for tx in page.transactions] == [MileageTransactionType.USE, MileageTransactionType.EARN]
        assert page.summary.total_earned == Decimal("1250")
        assert page.summary.total_used == Decimal("300")
        assert page.summary.earn_count == 2
        assert page.summary.use_count == 1

        earns = await service.history(ledger_world.member_id, transaction_type=MileageTransactionType.EARN)
        assert earns.total == 2


@pytest.mark.asyncio
async def test_expire_due_caps_at_balance_and_runs_once(session_factory, ledger_world) -> None:
    async with session_factory() as session:
        spender = User(email="spender@example.com")
        session.add(spender)
        await session.flush()

        service = MileageLedgerService(session)
        old = NOW - timedelta(days=400)
        await service.earn(ledger_world.member_id, 1000, now=old)
        token, _ = issue_mileage_token(ledger_world.member_id, now=old + timedelta(days=1))
        await service.use_mileage(
            ledger_world.member_id,
            qr_code=token,
            amount=400,
            business_id=ledger_world.business_id,
            now=old + timedelta(days=1),
        )

        await service.earn(spender.id, 200, now=old)
        spender_token, _ = issue_mileage_token(spender.id, now=old + timedelta(days=1))
        await service.use_mileage(
            spender.id,
            qr_code=spender_token,
            amount=200,
            business_id=ledger_world.business_id,
            now=old + timedelta(days=1),
        )
        await session.commit()

        result = await service.expire_due(now=NOW)
        await session.commit()

        assert result.expired_transactions == 1
        assert result.expired_amount == Decimal("600")
        assert result.skipped == 1

        account = await service.get_account(ledger_world.member_id)
        assert account.balance == Decimal("0")
        assert account.total_expired == Decimal("600")
        await _assert_ledger_consistent(session, ledger_world.member_id)

        again = await service.expire_due(now=NOW)
        assert again.expired_transactions == 0


@pytest.mark.asyncio
async def test_expire_due_spares_unexpired_earns(session_factory, ledger_world) -> None:
    async with session_factory() as session:
        service = MileageLedgerService(session)
        old = NOW - timedelta(days=400)
        await service.earn(ledger_world.member_id, 1000, now=old)
        token, _ = issue_mileage_token(ledger_world.member_id, now=old + timedelta(days=1))
        await service.use_mileage(
            ledger_world.member_id,
            qr_code=token,
            amount=900,
            business_id=ledger_world.business_id,
            now=old + timedelta(days=1),
        )
        await service.earn(ledger_world.member_id, 800, now=NOW - timedelta(days=1))
        await session.commit()

        result = await service.expire_due(now=NOW)
        await session.commit()

        assert result.expired_transactions == 1
        assert result.expired_amount == Decimal("100")

        account = await service.get_account(ledger_world.member_id)
        assert account.balance == Decimal("800")
        assert account.total_expired == Decimal("100")
        await _assert_ledger_consistent(session, ledger_world.member_id)

"""Unit of work: ordered steps, single commit, full rollback."""
import pytest
from sqlalchemy import select, text

from payout_ledger.core.unit_of_work import PersistenceFailure, UnitOfWork
from payout_ledger.models.payout import PayoutItem
from tests.factories import make_item


async def test_steps_run_in_order_and_commit(db, session_factory):
    order = []
    first = make_item("store_1", 100)
    second = make_item("store_2", 50)

    async def add_first(session):
        order.append("first")
        session.add(first)
        return first.id

    async def add_second(session):
        order.append("second")
        session.add(second)
        return second.id

    uow = UnitOfWork(db, "test").add("first", add_first).add("second", add_second)
    assert uow.labels == ["first", "second"]
    results = await uow.run()

    assert order == ["first", "second"]
    assert results == [first.id, second.id]
    async with session_factory() as other:
        rows = (await other.execute(select(PayoutItem.id))).scalars().all()
    assert set(rows) == {first.id, second.id}


async def test_database_error_rolls_back_everything(db, session_factory):
    item = make_item("store_1", 100)

    async def add_item(session):
        session.add(item)

    async def broken(session):
        await session.execute(text("INSERT INTO no_such_table VALUES (1)"))

    uow = UnitOfWork(db, "test").add("add item", add_item).add("broken", broken)
    with pytest.raises(PersistenceFailure) as exc:
        await uow.run()

    assert exc.value.details["step"] == "broken"
    async with session_factory() as other:
        rows = (await other.execute(select(PayoutItem.id))).scalars().all()
    assert rows == []


async def test_other_errors_propagate_unchanged(db, session_factory):
    async def add_item(session):
        session.add(make_item("store_1", 100))

    async def fail(session):
        raise LookupError("boom")

    with pytest.raises(LookupError):
        await UnitOfWork(db, "test").add("add item", add_item).add("fail", fail).run()

    async with session_factory() as other:
        rows = (await other.execute(select(PayoutItem.id))).scalars().all()
    assert rows == []

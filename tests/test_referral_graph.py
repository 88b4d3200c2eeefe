from __future__ import annotations

import uuid

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from affiliate_ledger.referrals.graph import Beneficiary, ReferralGraph, walk_upline
from tests.factories import create_chain, create_user


def _lookup(links: dict[uuid.UUID, uuid.UUID | None]):
    async def referrer_of(user_id: uuid.UUID) -> uuid.UUID | None:
        return links.get(user_id)

    return referrer_of


@pytest.mark.asyncio
async def test_walk_upline_returns_two_levels_in_order() -> None:
    a, b, c = uuid.uuid4(), uuid.uuid4(), uuid.uuid4()
    upline = await walk_upline(c, _lookup({c: b, b: a, a: None}))

    assert upline == [Beneficiary(level=1, user_id=b), Beneficiary(level=2, user_id=a)]


@pytest.mark.asyncio
async def test_walk_upline_stops_at_max_levels() -> None:
    users = [uuid.uuid4() for _ in range(5)]
    links = {child: parent for parent, child in zip(users, users[1:])}

    upline = await walk_upline(users[-1], _lookup(links))
    assert [b.user_id for b in upline] == [users[-2], users[-3]]

    single = await walk_upline(users[-1], _lookup(links), max_levels=1)
    assert [b.level for b in single] == [1]


@pytest.mark.asyncio
async def test_walk_upline_stops_at_missing_referrer() -> None:
    a, b = uuid.uuid4(), uuid.uuid4()

    assert await walk_upline(a, _lookup({})) == []
    assert await walk_upline(b, _lookup({b: a})) == [Beneficiary(1, a)]


@pytest.mark.asyncio
async def test_walk_upline_truncates_cycles_without_raising() -> None:
    a, b = uuid.uuid4(), uuid.uuid4()

    # a -> b -> a: the buyer must never be its own level-2 beneficiary.
    assert await walk_upline(a, _lookup({a: b, b: a})) == [Beneficiary(1, b)]
    assert await walk_upline(a, _lookup({a: a})) == []


@pytest.mark.asyncio
async def test_referral_graph_reads_referrer_links(
    session_factory: async_sessionmaker[AsyncSession],
) -> None:
    async with session_factory() as session:
        grandparent, parent, buyer = await create_chain(session, 3)
        loner = await create_user(session)

        graph = ReferralGraph()
        upline = await graph.upline(session, buyer.id)

        assert upline == [
            Beneficiary(level=1, user_id=parent.id),
            Beneficiary(level=2, user_id=grandparent.id),
        ]
        assert await graph.upline(session, loner.id) == []
        assert await graph.upline(session, uuid.uuid4()) == []

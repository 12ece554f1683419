"""Seed demo venues, rewards, an event and a few accounts into the points database."""

from __future__ import annotations

import asyncio
import os
from datetime import timedelta
from typing import TypedDict

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from trendle_api.core.settings import settings
from trendle_api.core.time import utcnow
from trendle_api.models.account import Account, LedgerReason
from trendle_api.models.event import CheckInMethod, Event
from trendle_api.models.venue import Reward, Venue
from trendle_api.services.ledger import Ledger


class SeedVenue(TypedDict):
    name: str
    category: str
    latitude: float
    longitude: float
    rewards: list[tuple[str, int]]


class SeedAccount(TypedDict):
    username: str
    points: int


DEMO_VENUES: list[SeedVenue] = [
    {
        "name": "Neon Bean",
        "category": "Coffee",
        "latitude": -33.9249,
        "longitude": 18.4241,
        "rewards": [("Free flat white", 200), ("Pastry of the day", 120)],
    },
    {
        "name": "The Velvet Whisk",
        "category": "Brunch",
        "latitude": -33.9067,
        "longitude": 18.4179,
        "rewards": [("Bottomless mimosas", 650), ("Gold-leaf pancakes", 400)],
    },
    {
        "name": "Lunar Lounge",
        "category": "Nightlife",
        "latitude": -33.9321,
        "longitude": 18.4110,
        "rewards": [("Signature cocktail", 300)],
    },
]

DEMO_ACCOUNTS: list[SeedAccount] = [
    {"username": os.getenv("DEMO_ACCOUNT_USERNAME", "demo_creator"), "points": 1000},
    {"username": "jessica_ct", "points": 1200},
    {"username": "mike_surfer", "points": 2100},
]


async def seed_venues(session: AsyncSession) -> list[Venue]:
    venues: list[Venue] = []
    for profile in DEMO_VENUES:
        existing = await session.execute(select(Venue).where(Venue.name == profile["name"]))
        venue = existing.scalar_one_or_none()
        if venue is None:
            venue = Venue(
                name=profile["name"],
                category=profile["category"],
                latitude=profile["latitude"],
                longitude=profile["longitude"],
            )
            session.add(venue)
            await session.flush()
            for title, cost in profile["rewards"]:
                session.add(Reward(venue_id=venue.id, title=title, cost_points=cost, category=profile["category"]))
        venues.append(venue)
    await session.commit()
    return venues


async def seed_event(session: AsyncSession, venue: Venue) -> None:
    title = f"Launch night at {venue.name}"
    existing = await session.execute(select(Event).where(Event.title == title))
    if existing.scalar_one_or_none() is not None:
        return

    now = utcnow()
    session.add(
        Event(
            venue_id=venue.id,
            title=title,
            start_time=now - timedelta(hours=1),
            end_time=now + timedelta(days=2),
            check_in_method=CheckInMethod.EITHER,
            latitude=venue.latitude,
            longitude=venue.longitude,
            qr_token=os.getenv("DEMO_EVENT_QR_TOKEN", "launch-night"),
            points_reward=50,
        )
    )
    await session.commit()


async def seed_accounts(session: AsyncSession) -> None:
    ledger = Ledger(session)
    for profile in DEMO_ACCOUNTS:
        existing = await session.execute(select(Account).where(Account.username == profile["username"]))
        if existing.scalar_one_or_none() is not None:
            continue
        account = await ledger.ensure_account(username=profile["username"])
        await ledger.apply_delta(
            account.id,
            profile["points"],
            LedgerReason.ADMIN_ADJUSTMENT,
            description="Demo opening balance",
        )


async def main() -> None:
    engine = create_async_engine(settings.database_url, future=True)
    session_factory = async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)

    try:
        async with session_factory() as session:
            venues = await seed_venues(session)
            await seed_event(session, venues[0])
            await seed_accounts(session)
        print("Demo venues, rewards and accounts ready")
    finally:
        await engine.dispose()


if __name__ == "__main__":
    asyncio.run(main())

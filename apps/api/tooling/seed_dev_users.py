"""Seed development users and a partner business into the API database."""

from __future__ import annotations

import asyncio
from datetime import datetime, timezone
import os
from typing import TypedDict

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from buzz_api.db.session import build_engine, build_session_factory
from buzz_api.core.settings import settings
from buzz_api.models.business import Business, BusinessStatus
from buzz_api.models.user import User, UserRoleEnum


class SeedUser(TypedDict):
    email: str
    name: str
    role: str
    phone_number: str


DEV_USERS: list[SeedUser] = [
    {
        "email": os.getenv("DEV_MEMBER_EMAIL", "member@buzz.dev").lower(),
        "name": "Member QA",
        "role": UserRoleEnum.USER.value,
        "phone_number": "010-1111-2222",
    },
    {
        "email": os.getenv("DEV_OWNER_EMAIL", "owner@buzz.dev").lower(),
        "name": "Owner QA",
        "role": UserRoleEnum.BUSINESS.value,
        "phone_number": "010-3333-4444",
    },
    {
        "email": os.getenv("DEV_ADMIN_EMAIL", "admin@buzz.dev").lower(),
        "name": "Admin QA",
        "role": UserRoleEnum.ADMIN.value,
        "phone_number": "010-5555-6666",
    },
]

DEV_BUSINESS_NAME = "Buzz Dev Cafe"


async def seed_users(session: AsyncSession) -> dict[str, User]:
    seeded: dict[str, User] = {}
    for user in DEV_USERS:
        with session.no_autoflush:
            existing = await session.execute(select(User).where(User.email == user["email"]))
        record = existing.scalar_one_or_none()
        if record:
            record.name = user["name"]
            record.role = user["role"]
            record.phone_number = user["phone_number"]
            record.is_active = True
        else:
            record = User(
                email=user["email"],
                name=user["name"],
                role=user["role"],
                phone_number=user["phone_number"],
                is_active=True,
            )
            session.add(record)
        seeded[user["role"]] = record
    await session.flush()
    return seeded


async def seed_business(session: AsyncSession, owner: User) -> Business:
    existing = await session.execute(
        select(Business).where(Business.owner_id == owner.id, Business.business_name == DEV_BUSINESS_NAME)
    )
    business = existing.scalar_one_or_none()
    if business is None:
        business = Business(owner_id=owner.id, business_name=DEV_BUSINESS_NAME, phone_number="02-555-0100")
        session.add(business)
    business.status = BusinessStatus.APPROVED
    business.approved_at = business.approved_at or datetime.now(timezone.utc)
    business.bank_name = "Buzz Bank"
    business.bank_account = "110-222-333333"
    await session.flush()
    return business


async def main() -> None:
    engine = build_engine(settings.database_url)
    session_factory = build_session_factory(engine)

    try:
        async with session_factory() as session:
            users = await seed_users(session)
            business = await seed_business(session, users[UserRoleEnum.BUSINESS.value])
            await session.commit()
        for role, user in users.items():
            print(f"{role:<8} {user.email:<24} X-Session-User: {user.id}")
        print(f"business {business.business_name:<24} id: {business.id}")
    finally:
        await engine.dispose()


if __name__ == "__main__":
    asyncio.run(main())

import asyncio
import os
import uuid
from datetime import date, timedelta

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlalchemy.orm import sessionmaker
from app.db import _normalise_url
from app.models import Team, Player, Match

DATABASE_URL = os.getenv("DATABASE_URL")
if not DATABASE_URL:
    raise RuntimeError("DATABASE_URL environment variable is required")
DATABASE_URL = _normalise_url(DATABASE_URL)

engine = create_async_engine(DATABASE_URL, echo=False, pool_pre_ping=True)
Session = sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

TEAMS = [
    ("MPG", "Mountain Peak Gladiators", "MPG", "A", "R. Thapa"),
    ("DLS", "Downtown Lions", "DLS", "A", "S. Karki"),
]
ROLES = ["batsman"] * 5 + ["wicket-keeper"] + ["all-rounder"] * 2 + ["bowler"] * 3


async def main():
    async with Session() as s:
        existing = {
            t.code: t for t in (await s.execute(select(Team))).scalars().all()
        }
        for code, name, short, group, coach in TEAMS:
            if code in existing:
                continue
            team = Team(
                id=uuid.uuid4().hex,
                code=code,
                name=name,
                short_name=short,
                group=group,
                coach=coach,
            )
            s.add(team)
            existing[code] = team
            for i, role in enumerate(ROLES, start=1):
                s.add(
                    Player(
                        id=uuid.uuid4().hex,
                        name=f"{short} Player {i}",
                        team_id=team.id,
                        role=role,
                        jersey_number=i,
                    )
                )
        await s.commit()

        # one fixture between the sample teams
        have_match = (
            await s.execute(select(Match).where(Match.code == "M001"))
        ).scalar_one_or_none()
        if have_match is None:
            s.add(
                Match(
                    id=uuid.uuid4().hex,
                    code="M001",
                    match_number=1,
                    team1_id=existing["MPG"].id,
                    team2_id=existing["DLS"].id,
                    venue="Community Ground",
                    date=date.today() + timedelta(days=1),
                    start_time="10:00",
                    match_type="group",
                    overs=20,
                    status="scheduled",
                    innings=[],
                )
            )
            await s.commit()

    await engine.dispose()


if __name__ == "__main__":
    asyncio.run(main())

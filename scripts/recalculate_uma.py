#!/usr/bin/env python3
"""
Rebuild tournament UMA from the games of closed rounds.

Fixes roster UMA that drifted after manual database edits or corrected
game scores. Safe to run multiple times.

Usage (local, from repo root):
  python scripts/recalculate_uma.py 12          # one tournament
  python scripts/recalculate_uma.py --all       # every tournament
  python scripts/recalculate_uma.py 12 --dry-run
"""

import argparse
import asyncio
import os
import sys

project_root = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
sys.path.insert(0, project_root)

from sqlalchemy import select

from mahjong_club.database.db import AsyncSessionLocal, engine
from mahjong_club.database.models import Tournament
from mahjong_club.services import tournament_service


async def recalculate(tournament_ids, dry_run: bool) -> None:
    async with AsyncSessionLocal() as session:
        if not tournament_ids:
            result = await session.execute(select(Tournament.id).order_by(Tournament.id))
            tournament_ids = list(result.scalars().all())

        for tournament_id in tournament_ids:
            changes = await tournament_service.recalculate_tournament_uma(
                session, tournament_id, dry_run=dry_run
            )
            if not changes:
                print(f"Tournament {tournament_id}: UMA already consistent")
                continue
            verb = "would change" if dry_run else "changed"
            print(f"Tournament {tournament_id}: {verb} {len(changes)} players")
            for player_id, change in sorted(changes.items()):
                print(f"  player {player_id}: {change:+.3f}")

    await engine.dispose()


def main():
    parser = argparse.ArgumentParser(description="Recalculate tournament UMA from closed rounds")
    parser.add_argument("tournament_ids", nargs="*", type=int, help="Tournaments to recalculate")
    parser.add_argument("--all", action="store_true", help="Recalculate every tournament")
    parser.add_argument("--dry-run", action="store_true", help="Report changes without saving")
    args = parser.parse_args()

    if not args.tournament_ids and not args.all:
        parser.error("give tournament ids or --all")

    asyncio.run(recalculate(args.tournament_ids, args.dry_run))


if __name__ == "__main__":
    main()

"""Report stuck submissions and rebuild leaderboard totals and ranks."""

import argparse
import asyncio
import logging
import os
from datetime import timedelta

import codejudge.database as database
from codejudge.services.leaderboard import LeaderboardService
from codejudge.services.submission_state import find_stuck_submissions


async def main(stuck_minutes: int) -> None:
    await database.init_models()

    async with database.async_session() as session:
        stuck = await find_stuck_submissions(session, timedelta(minutes=stuck_minutes))
    for sub in stuck:
        print(f"stuck: {sub.id} user={sub.user_id} problem={sub.problem_id} since={sub.processing_started_at}")
    print(f"{len(stuck)} submission(s) stuck in processing for more than {stuck_minutes} minutes.")

    report = await LeaderboardService(database.async_session).reconcile()
    print(
        f"Reconciled leaderboard: {report.backfilled_solves} solves backfilled, "
        f"{report.entries_updated} entries updated, {report.ranks_changed} ranks changed."
    )


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO, format="%(asctime)s [%(levelname)s] %(name)s: %(message)s")
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument(
        "--stuck-minutes",
        type=int,
        default=int(os.getenv("STUCK_SUBMISSION_MINUTES", "15")),
        help="Age after which a processing submission is reported as stuck",
    )
    args = parser.parse_args()
    asyncio.run(main(args.stuck_minutes))

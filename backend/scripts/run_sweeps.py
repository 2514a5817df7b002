"""Run the scheduling sweeps (and optionally custody reconciliation) once."""
from __future__ import annotations

import argparse
import asyncio
import logging

from medsafe.core.settings import get_engine_config
from medsafe.db.session import session_scope
from medsafe.services import sweep_service


async def run(reconcile: bool) -> None:
    async with session_scope() as session:
        report = await sweep_service.run_sweeps_once(
            session, config=get_engine_config(), reconcile=reconcile
        )
    print(report)


def main() -> None:
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument(
        "--reconcile", action="store_true", help="also reconcile every custody ledger"
    )
    args = parser.parse_args()
    logging.basicConfig(level=logging.INFO)
    asyncio.run(run(args.reconcile))


if __name__ == "__main__":
    main()

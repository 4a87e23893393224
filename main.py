import argparse
import asyncio
import logging
from datetime import date
from decimal import Decimal

from init import get_session, init_tables
from compensation_system.services.commission_service import CommissionService
from compensation_system.services.distribution_service import DistributionService, DistributionPeriod
from compensation_system.services.payment import LoggingPaymentExecutor
from compensation_system.services.qualification_service import QualificationService
from compensation_system.utils.time_machine import timeMachine
import config

logger = logging.getLogger(__name__)


def build_parser():
    parser = argparse.ArgumentParser(description="Network compensation batch jobs")
    commands = parser.add_subparsers(dest="command", required=True)

    qualify = commands.add_parser("qualify", help="Evaluate tier qualification for a month")
    qualify.add_argument("--month", default=None, help="YYYY-MM, current month by default")
    qualify.add_argument("--backfill", type=int, default=0, help="Re-run this many months ending with --month")

    pay = commands.add_parser("pay-commissions", help="Pay pending commissions")
    pay.add_argument("--event-id", default=None)

    create = commands.add_parser("create-distribution", help="Calculate a profit distribution")
    create.add_argument("--pool", required=True, type=Decimal)
    create.add_argument("--period-type", default="monthly", choices=config.PERIOD_TYPES)
    create.add_argument("--start", required=True, type=date.fromisoformat)
    create.add_argument("--end", required=True, type=date.fromisoformat)
    create.add_argument("--community-pct", default=Decimal("0"), type=Decimal)

    approve = commands.add_parser("approve-distribution", help="Approve a calculated distribution")
    approve.add_argument("distribution_id", type=int)

    process = commands.add_parser("process-distribution", help="Pay an approved distribution")
    process.add_argument("distribution_id", type=int)

    return parser


async def run(args, session):
    executor = LoggingPaymentExecutor()

    if args.command == "qualify":
        service = QualificationService(session)
        month = args.month or timeMachine.currentMonth
        if args.backfill:
            results = await service.backfill(args.backfill, month)
            for result in results:
                logger.info(f"{result['month']}: evaluated={result['evaluated']}, errors={len(result['errors'])}")
        else:
            result = await service.processMonth(month)
            logger.info(f"{month}: evaluated={result['evaluated']}, qualified={result['qualified']}")

    elif args.command == "pay-commissions":
        result = await CommissionService(session).processPending(executor, args.event_id)
        for failure in result.failures:
            logger.warning(f"Commission {failure['id']} to {failure['participantID']} failed: {failure['reason']}")

    elif args.command == "create-distribution":
        period = DistributionPeriod(args.period_type, args.start, args.end)
        distribution = await DistributionService(session).createDistribution(args.pool, period, args.community_pct)
        logger.info(f"Distribution {distribution.distributionID} created, total {distribution.totalCalculated}")

    elif args.command == "approve-distribution":
        await DistributionService(session).approve(args.distribution_id)

    elif args.command == "process-distribution":
        result = await DistributionService(session).processDistribution(args.distribution_id, executor)
        for failure in result.failures:
            logger.warning(f"Share {failure['id']} to {failure['participantID']} failed: {failure['reason']}")


async def main(argv=None):
    args = build_parser().parse_args(argv)

    session_factory, engine = get_session()
    init_tables(engine)

    session = session_factory()
    try:
        await run(args, session)
    finally:
        session.close()


if __name__ == '__main__':
    try:
        logging.basicConfig(
            level=getattr(logging, config.LOG_LEVEL.upper(), logging.INFO),
            format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
        )

        asyncio.run(main())
    except (KeyboardInterrupt, SystemExit):
        logger.info("Stopped.")
    except Exception as e:
        logger.critical(f"Unexpected error: {e}")
        raise

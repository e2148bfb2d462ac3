"""CLI entry point printing a month's payout report.

Usage:
    python -m kasmoni.cli.report            (current month)
    python -m kasmoni.cli.report 2025-08

Exit Codes:
    0 - Success: Report printed
    1 - Failure: Invalid month or store unavailable
"""

import asyncio
import logging
import sys
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError

from kasmoni.services.config import Settings, get_settings
from kasmoni.services.db import create_engine_from_settings, create_session_factory, init_models
from kasmoni.services.deduction_service import format_money
from kasmoni.services.errors import PayoutError
from kasmoni.services.logging import setup_logging
from kasmoni.services.months import format_month
from kasmoni.services.report_service import MonthReport, ReportService
from kasmoni.services.slot_resolver import CompletionBucket

logger = logging.getLogger(__name__)


def render_report(report: MonthReport, currency: str = "SRD") -> str:
    """Render a month report as plain text lines."""
    lines = [f"Payouts for {format_month(report.month)}", ""]

    if not report.rows:
        lines.append("No payouts scheduled.")
    for row in report.rows:
        slot = row.slot
        paid = "PAID" if row.paid else "open"
        lines.append(
            f"{slot.member_name:<28} {slot.group_name:<20} {slot.status:>7} "
            f"{slot.progress.bucket.value:<10} {format_money(row.payable, currency):>16} {paid}"
        )

    summary = report.summary
    lines.extend(
        [
            "",
            f"Total payouts:   {summary.total_payouts}",
            f"Total payable:   {format_money(summary.total_payable, currency)}",
            f"Total paid:      {format_money(summary.total_paid, currency)}",
            f"Outstanding:     {format_money(summary.outstanding, currency)}",
            "By status:       "
            + ", ".join(f"{bucket.value}={summary.bucket_counts[bucket]}" for bucket in CompletionBucket),
        ]
    )
    return "\n".join(lines)


async def main(argv: Optional[list[str]] = None, settings: Optional[Settings] = None) -> int:
    """
    Print the payout report for the month given as first argument.

    Returns:
        Exit code: 0 for success, 1 for failure
    """
    argv = sys.argv[1:] if argv is None else argv
    settings = settings or get_settings()
    month = argv[0] if argv else None

    engine = create_engine_from_settings(settings)
    try:
        await init_models(engine)
        session_factory = create_session_factory(engine)
        async with session_factory() as session:
            report = await ReportService(session, settings).month_report(month)
        print(render_report(report, settings.currency))
        return 0
    except PayoutError as e:
        logger.error(f"Payout report failed: {e.message}")
        print(f"Error: {e.message}", file=sys.stderr)
        return 1
    except SQLAlchemyError as e:
        logger.error(f"Database unavailable: {e}")
        print("Error: database unavailable", file=sys.stderr)
        return 1
    finally:
        await engine.dispose()


def run() -> None:
    """Console script entry point."""
    settings = get_settings()
    setup_logging(settings.log_file, settings.log_level)
    sys.exit(asyncio.run(main(settings=settings)))


if __name__ == "__main__":
    run()

"""Command line entry point.

Usage:
    # Receivables and payables for today
    daybook day-summary

    # For a given day
    daybook day-summary --date=2024-03-31

    # Reconciled position of one party
    daybook party-summary 65f0c2a1b4e8d9f012345678
"""

import argparse
import asyncio
import sys
from collections.abc import Sequence

import structlog

from daybook.clients import BackendAPIClient
from daybook.config import configure_logging, get_settings
from daybook.dashboard import DashboardLoader, DayBookSummary
from daybook.errors import DaybookError, user_message
from daybook.formatting import format_currency, parse_date
from daybook.models import PartySummary

logger = structlog.get_logger(__name__)


def render_day_summary(report: DayBookSummary) -> str:
    summary = report.summary
    lines = [
        f"Day book for {summary.as_of.isoformat() if summary.as_of else '-'}",
        "=" * 40,
        f"Receivables:        {format_currency(summary.total_receivables)}"
        f" ({summary.receivables_count})",
        f"  overdue:          {format_currency(summary.overdue_receivables)}",
        f"  due today:        {format_currency(summary.due_today_receivables)}",
        f"Payables:           {format_currency(summary.total_payables)}"
        f" ({summary.payables_count})",
        f"  overdue:          {format_currency(summary.overdue_payables)}",
        f"  due today:        {format_currency(summary.due_today_payables)}",
        f"Net position:       {format_currency(summary.net_position)}",
    ]
    if report.collection_efficiency is not None:
        lines.append(f"Collection rate:    {report.collection_efficiency}%")
    if report.payment_efficiency is not None:
        lines.append(f"Payment rate:       {report.payment_efficiency}%")
    if report.partial:
        lines.append("")
        lines.append(f"Partial data ({report.data_source}):")
        for section, message in report.partial.failures.items():
            lines.append(f"  {section}: {message}")
    return "\n".join(lines)


def render_party_summary(summary: PartySummary) -> str:
    lines = [
        f"Party {summary.party_id}",
        "=" * 40,
        f"Sales:              {format_currency(summary.total_sales)}",
        f"  paid:             {format_currency(summary.total_sales_paid)}",
        f"  due:              {format_currency(summary.sales_due)}",
        f"Purchases:          {format_currency(summary.total_purchases)}",
        f"  paid:             {format_currency(summary.total_purchases_paid)}",
        f"  due:              {format_currency(summary.purchases_due)}",
        f"Balance:            {format_currency(abs(summary.net_balance))}"
        f" {summary.balance_label}",
        f"Transactions:       {summary.transaction_count}",
        f"Status:             {summary.payment_status}",
    ]
    failed = {k: v for k, v in summary.api_errors.items() if v}
    if failed:
        lines.append("")
        lines.append("Partial data:")
        for section, message in failed.items():
            lines.append(f"  {section}: {message}")
    return "\n".join(lines)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="daybook",
        description="Receivables, payables and party reconciliation",
    )
    commands = parser.add_subparsers(dest="command", required=True)

    day = commands.add_parser("day-summary", help="Receivables and payables for a day")
    day.add_argument("--date", type=str, default=None, help="Day as YYYY-MM-DD (default: today)")

    party = commands.add_parser("party-summary", help="Reconciled position of one party")
    party.add_argument("party_id", help="Party id")
    return parser


async def run(args: argparse.Namespace) -> str:
    async with BackendAPIClient() as client:
        loader = DashboardLoader(client, policy=get_settings().paid_amount_policy)
        if args.command == "day-summary":
            as_of = parse_date(args.date) if args.date else None
            if args.date and as_of is None:
                raise DaybookError(f"Invalid date: {args.date}")
            return render_day_summary(await loader.load_day_summary(as_of))
        return render_party_summary(await loader.load_party_summary(args.party_id))


def main(argv: Sequence[str] | None = None) -> int:
    configure_logging()
    args = build_parser().parse_args(argv)

    try:
        print(asyncio.run(run(args)))
    except DaybookError as e:
        logger.error("command_failed", command=args.command, error=user_message(e))
        print(f"Error: {user_message(e)}", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())

import argparse
import json
import sys

from analytics.fees import aggregate_fees, grand_total_usd, recent_transactions
from analytics.prices import CoinGeckoPriceLookup
from common.logging_setup import setup_logging
from common.settings import ConfigError, load_settings
from ingestion.orchestrator import IngestionOrchestrator


def main(argv=None):
    p = argparse.ArgumentParser(description="Fee report for the tracked contract")
    p.add_argument("--config", default="config.yaml", help="Path to config.yaml")
    p.add_argument("--recent", type=int, default=0, help="Also list the N most recent transactions")
    p.add_argument("--json", action="store_true", help="Print the /api/fees payload instead of a table")
    p.add_argument("--include-normal", action="store_true",
                   help="Also fetch normal (top-level) transactions")
    p.add_argument("--log-level", default=None, help="Logging level (default $LOG_LEVEL or INFO)")
    args = p.parse_args(argv)

    setup_logging(args.log_level)
    try:
        settings = load_settings(args.config)
        if args.include_normal:
            settings.fetch.include_normal_transactions = True
        settings.require_api_key()
    except ConfigError as e:
        print(f"ERROR {e}", file=sys.stderr)
        return 2

    transactions = IngestionOrchestrator(settings).fetch_transactions()
    result = aggregate_fees(transactions, CoinGeckoPriceLookup(settings.prices))
    prices = {s: b.price for s, b in result.currency_breakdown.items()}

    if args.json:
        payload = {
            "success": True,
            "data": result.to_dict(),
            "recentTransactions": recent_transactions(transactions, prices, args.recent or settings.api.recent_limit),
        }
        print(json.dumps(payload, indent=2))
        return 0

    print(f"Fees for {settings.tracking.contract} since {settings.tracking.start_date.date()}")
    for symbol in sorted(result.currency_breakdown):
        b = result.currency_breakdown[symbol]
        print(f"{symbol:<6} {b.count:>5} tx  {b.total_amount:>18.6f}  @ {b.price:>10.2f}  = ${b.total_usd:>14,.2f}")
    print(f"TOTAL  ${grand_total_usd(result):,.2f}")

    if args.recent:
        print("\nRecent transactions:")
        for i, row in enumerate(recent_transactions(transactions, prices, args.recent), 1):
            print(f"{i:02d}. {row['hash']}  {row['tokenSymbol']:<5} ${row['usdValue']:,.2f}")
    return 0


if __name__ == "__main__":
    sys.exit(main())

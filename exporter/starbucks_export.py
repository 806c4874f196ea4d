import argparse
import os
import sys
from datetime import datetime

import requests

from starbucks_csv import DEFAULT_OUTPUT, CsvExporter, transaction_row
from starbucks_login import (
    BASE_URL,
    BROWSER_HEADERS,
    REQUEST_TIMEOUT,
    StarbucksError,
    get_verification_token,
    login,
)
from starbucks_scraper import CardScraper, MalformedDateError


def log(msg):
    print(f'[{datetime.now()}] [export] {msg}', flush=True)


def run_export(email, password, output=DEFAULT_OUTPUT, base_url=BASE_URL,
               timeout=REQUEST_TIMEOUT, strict_dates=False, session_factory=requests.Session):
    """
    Log in, fetch every card and its transactions, and write the CSV.

    Malformed transaction dates are skipped and logged unless strict_dates
    is set, in which case the MalformedDateError aborts the export.
    """
    with session_factory() as session:
        session.headers.update(BROWSER_HEADERS)

        token = get_verification_token(session, base_url=base_url, timeout=timeout)
        client = login(session, token, email, password, base_url=base_url, timeout=timeout)
        scraper = CardScraper(client)

        cards = scraper.get_all_cards()
        skipped = 0
        with CsvExporter(output) as exporter:
            for card in cards:
                for transaction in scraper.get_all_transactions(card):
                    try:
                        row = transaction_row(card, transaction)
                    except MalformedDateError as e:
                        if strict_dates:
                            raise
                        log(f'Skipping transaction {transaction.id} of card {card.number}: {e}')
                        skipped += 1
                        continue
                    exporter.write_row(row)

    return {
        'cards': len(cards),
        'transactions': exporter.rows_written,
        'skipped': skipped,
        'path': output,
    }


def build_parser():
    parser = argparse.ArgumentParser(
        prog='starbucks-transaction-export',
        usage='%(prog)s <username/email> <password> [options]',
        description='Export all Starbucks card transactions to CSV.',
    )
    parser.add_argument('email', help='account email / username')
    parser.add_argument('password', help='account password')
    parser.add_argument('-o', '--output', default=DEFAULT_OUTPUT,
                        help=f'CSV file to write (default: {DEFAULT_OUTPUT})')
    parser.add_argument('--base-url', default=os.environ.get('STARBUCKS_BASE_URL', BASE_URL),
                        help='card site base URL (env: STARBUCKS_BASE_URL)')
    parser.add_argument('--timeout', type=float,
                        default=float(os.environ.get('STARBUCKS_TIMEOUT', REQUEST_TIMEOUT)),
                        help='per-request timeout in seconds (env: STARBUCKS_TIMEOUT)')
    parser.add_argument('--strict-dates', action='store_true',
                        help='abort on a malformed transaction date instead of skipping it')
    return parser


def main(argv=None):
    args = build_parser().parse_args(argv)

    try:
        result = run_export(
            args.email,
            args.password,
            output=args.output,
            base_url=args.base_url.rstrip('/'),
            timeout=args.timeout,
            strict_dates=args.strict_dates,
        )
    except StarbucksError as e:
        log(f'Export FAILED: {e}')
        return 1
    except requests.RequestException as e:
        log(f'Export FAILED (network): {e}')
        return 1

    log(f"Exported {result['transactions']} transactions from {result['cards']} cards to {result['path']}")
    if result['skipped']:
        log(f"Skipped {result['skipped']} transactions with malformed dates")
    return 0


if __name__ == '__main__':
    sys.exit(main())

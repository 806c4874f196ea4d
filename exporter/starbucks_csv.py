import csv
import os
from datetime import datetime

from starbucks_scraper import format_unix_date


DEFAULT_OUTPUT = 'starbucks-export.csv'

CSV_COLUMNS = [
    'CardNumber',
    'Id',
    'Category',
    'MoneyAmount',
    'MoneyBalance',
    'StarAmount',
    'StarBalance',
    'DateTimeUnix',
    'Description',
    'Points',
    'LocationId',
    'LocationName',
    'CheckNumber',
    'Currency',
]


def log(msg):
    print(f'[{datetime.now()}] [csv_export] {msg}', flush=True)


def _format_decimal(value):
    """Plain notation, no trailing zeros: 4.50 -> 4.5, 100.0 -> 100."""
    return format(value.normalize(), 'f')


def transaction_row(card, transaction):
    """Build one CSV record in CSV_COLUMNS order. Raises MalformedDateError."""
    return [
        card.number,
        str(transaction.id),
        transaction.category,
        _format_decimal(transaction.money_amount),
        _format_decimal(transaction.money_balance),
        str(transaction.star_amount),
        str(transaction.star_balance),
        format_unix_date(transaction.raw_date_time),
        transaction.description,
        str(transaction.points),
        str(transaction.location_id),
        transaction.location_name,
        transaction.check_number,
        transaction.currency,
    ]


class CsvExporter:
    """
    Writes the export to <path>.part and moves it into place on success.

    Used as a context manager; if the block raises, the partial file is
    removed and nothing is left at path.
    """

    def __init__(self, path=DEFAULT_OUTPUT):
        self.path = path
        self.tmp_path = f'{path}.part'
        self.rows_written = 0
        self._file = None
        self._writer = None

    def __enter__(self):
        self._file = open(self.tmp_path, 'w', newline='', encoding='utf-8')
        self._writer = csv.writer(self._file)
        self._writer.writerow(CSV_COLUMNS)
        return self

    def __exit__(self, exc_type, exc, tb):
        self._file.close()
        if exc_type is not None:
            log(f'Export aborted, removing {self.tmp_path}')
            os.remove(self.tmp_path)
            return False
        os.replace(self.tmp_path, self.path)
        log(f'Wrote {self.rows_written} rows to {self.path}')
        return False

    def write_row(self, row):
        self._writer.writerow(row)
        self.rows_written += 1

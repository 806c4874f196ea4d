import re
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional

from starbucks_login import StarbucksError


CARDS_PATH = '/msrservice/LoadAllCardsData?format=json'
TRANSACTIONS_PATH = '/msrservice/TransactionDetail?format=json'

# Large enough that one page holds a card's whole history
TRANSACTION_PAGE_SIZE = 150000

# /Date(1609459200000-0000)/ -> whole seconds in group 1, millis dropped
UNIX_DATE_RE = re.compile(r'/Date\((\d+)\d{3}([+-]\d{4})?\)/')


def log(msg):
    print(f'[{datetime.now()}] [scraper] {msg}', flush=True)


class MalformedDateError(StarbucksError):
    pass


def _str(value):
    return '' if value is None else str(value)


def _int(value):
    return 0 if value is None else int(value)


def _decimal(value):
    return Decimal('0') if value is None else Decimal(str(value))


@dataclass(frozen=True)
class Card:
    number: str
    transfer_number: Optional[str]
    active: bool
    amount: Decimal
    stars: int
    currency: str
    data_separator: str
    property_separator: str

    @classmethod
    def from_json(cls, data):
        return cls(
            number=_str(data.get('OldCardNumber')),
            transfer_number=data.get('NewCardNumber') or None,
            active=bool(data.get('IsActive')),
            amount=_decimal(data.get('Amount')),
            stars=_int(data.get('Stars')),
            currency=_str(data.get('Currency')),
            data_separator=_str(data.get('DataStringSeparator')),
            property_separator=_str(data.get('PropertyValueStringSeparator')),
        )


@dataclass(frozen=True)
class Transaction:
    id: int
    category: str
    money_amount: Decimal
    money_balance: Decimal
    star_amount: int
    star_balance: int
    raw_date_time: str
    description: str
    points: int
    location_id: int
    location_name: str
    check_number: str
    currency: str

    @classmethod
    def from_json(cls, data):
        return cls(
            id=_int(data.get('TransactionID')),
            category=_str(data.get('TransactionCategory')),
            money_amount=_decimal(data.get('Amount')),
            money_balance=_decimal(data.get('MoneyBalance')),
            star_amount=_int(data.get('Stars')),
            star_balance=_int(data.get('StarsBalance')),
            raw_date_time=_str(data.get('TransDateTime')),
            description=_str(data.get('Description')),
            points=_int(data.get('Points')),
            location_id=_int(data.get('LocationId')),
            location_name=_str(data.get('Location')),
            check_number=_str(data.get('CheckNumber')),
            currency=_str(data.get('Currency')),
        )


def format_unix_date(raw):
    """
    Convert the backend's /Date(<millis><offset>)/ value to RFC3339 UTC.

    The epoch is UTC regardless of the offset suffix, so the result is
    always rendered with a Z suffix, e.g. 2021-01-01T00:00:00Z.
    """
    m = UNIX_DATE_RE.search(raw or '')
    if not m:
        raise MalformedDateError(f'Unrecognized date value: {raw!r}')
    try:
        dt = datetime.fromtimestamp(int(m.group(1)), tz=timezone.utc)
    except (OverflowError, OSError, ValueError) as e:
        raise MalformedDateError(f'Date value out of range: {raw!r}') from e
    return dt.strftime('%Y-%m-%dT%H:%M:%SZ')


def build_search_data_string(card, page, page_size):
    """Encode the paging query with the card's own separators."""
    return (
        f'page{card.property_separator}{page}'
        f'{card.data_separator}'
        f'page_size{card.property_separator}{page_size}'
    )


class CardScraper:
    def __init__(self, client):
        self.client = client

    def get_all_cards(self):
        """Fetch every card registered on the account."""
        log('=== get_all_cards() START ===')
        result = self.client.post(CARDS_PATH) or {}
        cards = [Card.from_json(c) for c in result.get('OldCardNumbers') or []]

        for card in cards:
            log(f'Found Card: Number {card.number}, Active: {card.active}, Balance: {card.currency} {card.amount}')
        log(f'=== get_all_cards() SUCCESS: {len(cards)} cards ===')
        return cards

    def get_all_transactions(self, card, page=1, page_size=TRANSACTION_PAGE_SIZE):
        """Fetch a card's transaction history in a single oversized page."""
        log(f'=== get_all_transactions() START (card={card.number}) ===')
        form_data = {
            'CardNumber': card.number,
            'SearchDataString': build_search_data_string(card, page, page_size),
        }
        result = self.client.post(TRANSACTIONS_PATH, data=form_data) or {}
        transactions = [Transaction.from_json(t) for t in result.get('ReturnValue') or []]

        if len(transactions) >= page_size:
            log(f'WARNING: card {card.number} returned a full page of {page_size}, history may be truncated')

        log(f'=== get_all_transactions() SUCCESS: {len(transactions)} total ===')
        return transactions

"""Shared fixtures: an in-memory stand-in for requests.Session."""

import json

import pytest
import requests


BASE = 'https://card.test'

LOGIN_PAGE = """<html>
<head><title>Starbucks Card</title></head>
<body>
<script type="text/javascript">
    MSRService.FormToken = "form-abc123";
    MSRService.CookieToken = "cookie-xyz789";
</script>
</body>
</html>"""


class FakeResponse:
    def __init__(self, status_code=200, text='', payload=None):
        self.status_code = status_code
        self.text = json.dumps(payload) if payload is not None else text

    def json(self, **kwargs):
        return json.loads(self.text, **kwargs)

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(f'{self.status_code} Error')


class FakeSession:
    """Routes GET/POST calls to canned responses keyed by URL."""

    def __init__(self, routes=None):
        self.routes = dict(routes or {})
        self.headers = {}
        self.calls = []
        self.closed = False

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.closed = True
        return False

    def _respond(self, method, url, **kwargs):
        self.calls.append({'method': method, 'url': url, **kwargs})
        response = self.routes[(method, url)]
        if isinstance(response, Exception):
            raise response
        return response

    def get(self, url, **kwargs):
        return self._respond('GET', url, **kwargs)

    def post(self, url, **kwargs):
        return self._respond('POST', url, **kwargs)


def backend_routes(login_message='OK', cards=None, transactions=None):
    """Routes for a full successful run; transactions maps card number -> list."""
    transactions = transactions or {}
    routes = {
        ('GET', f'{BASE}/login.aspx'): FakeResponse(text=LOGIN_PAGE),
        ('POST', f'{BASE}/msrservice/Login?format=json'): FakeResponse(payload={'Message': login_message}),
        ('POST', f'{BASE}/msrservice/LoadAllCardsData?format=json'): FakeResponse(payload={'OldCardNumbers': cards or []}),
    }
    return routes, transactions


class RoutingSession(FakeSession):
    """FakeSession that answers TransactionDetail per posted CardNumber."""

    def __init__(self, routes, transactions):
        super().__init__(routes)
        self.transactions = transactions

    def post(self, url, **kwargs):
        if url == f'{BASE}/msrservice/TransactionDetail?format=json':
            self.calls.append({'method': 'POST', 'url': url, **kwargs})
            number = kwargs['data']['CardNumber']
            return FakeResponse(payload={'ReturnValue': self.transactions.get(number, [])})
        return super().post(url, **kwargs)


@pytest.fixture
def card_json():
    return {
        'OldCardNumber': '6001234567890123',
        'NewCardNumber': None,
        'IsActive': True,
        'Amount': 12.5,
        'Stars': 7,
        'Currency': 'CHF',
        'DataStringSeparator': 'L1nt0r',
        'PropertyValueStringSeparator': 'r0tn1L',
    }


@pytest.fixture
def transaction_json():
    return {
        'TransactionID': 4711,
        'TransactionCategory': 'Purchase',
        'Amount': -5.40,
        'MoneyBalance': 12.50,
        'Stars': 1,
        'StarsBalance': 7,
        'TransDateTime': '/Date(1609459200000-0000)/',
        'Description': 'Caffe Latte, Grande',
        'Points': 2,
        'LocationId': 1021,
        'Location': 'Zurich Bahnhofstrasse',
        'CheckNumber': 'CHK-0099',
        'Currency': 'CHF',
    }

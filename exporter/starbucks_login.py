"""
Starbucks card site login flow via HTTP requests.

Performs the login chain:
  1. GET /login.aspx -> scrape the MSRService form + cookie tokens
  2. POST the serialized credentials to /msrservice/Login
  3. Return a client that signs every further msrservice call with the token
"""

import re
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal

from bs4 import BeautifulSoup


BASE_URL = 'https://card.starbucks.ch'
LOGIN_PAGE_PATH = '/login.aspx'
LOGIN_PATH = '/msrservice/Login?format=json'

BROWSER_HEADERS = {
    'User-Agent': 'Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/131.0.0.0 Safari/537.36',
    'Accept': 'text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8',
    'Accept-Language': 'en-US,en;q=0.9',
    'Connection': 'keep-alive',
}

# Seconds before a hung request is aborted
REQUEST_TIMEOUT = 5

VERIFICATION_HEADER = 'RequestVerificationToken'

FORM_TOKEN_RE = re.compile(r'MSRService\.FormToken\s?=\s?"(.*?)";')
COOKIE_TOKEN_RE = re.compile(r'MSRService\.CookieToken\s?=\s?"(.*?)";')

# The backend parses LoginDataString positionally:
# <name>r0tn1L<value>, pairs joined by L1nt0r
NAME_VALUE_SEPARATOR = 'r0tn1L'
PAIR_SEPARATOR = 'L1nt0r'
CAPTCHA_PLACEHOLDER = 'undefined'

LOGIN_FAILED_MARKER = 'Login False'


def log(msg):
    print(f'[{datetime.now()}] [login] {msg}', flush=True)


class StarbucksError(Exception):
    pass


class TokenNotFoundError(StarbucksError):
    pass


class LoginFailedError(StarbucksError):
    pass


class UnexpectedResponseError(StarbucksError):
    pass


@dataclass(frozen=True)
class VerificationToken:
    form_token: str
    cookie_token: str

    def format(self):
        """Header value expected by msrservice: cookie token first."""
        return f'{self.cookie_token}:{self.form_token}'


def get_verification_token(session, base_url=BASE_URL, path=LOGIN_PAGE_PATH, timeout=REQUEST_TIMEOUT):
    """
    Fetch the login page and pull both verification tokens out of it.

    Raises:
        TokenNotFoundError if either token assignment is missing
        requests.RequestException on transport failure
    """
    url = f'{base_url}{path}'
    log(f'GET {url}')
    resp = session.get(url, timeout=timeout)
    log(f'Status: {resp.status_code}, body length: {len(resp.text)}')
    resp.raise_for_status()
    log(f'Page title: {_get_title(resp.text)}')
    return extract_verification_token(resp.text)


def extract_verification_token(html):
    """Extract the form and cookie tokens from login page HTML."""
    form_token = _find_token(html, FORM_TOKEN_RE)
    cookie_token = _find_token(html, COOKIE_TOKEN_RE)

    if form_token is None:
        raise TokenNotFoundError('MSRService.FormToken not found on login page')
    if cookie_token is None:
        raise TokenNotFoundError('MSRService.CookieToken not found on login page')

    log(f'Form token length: {len(form_token)}')
    log(f'Cookie token length: {len(cookie_token)}')
    return VerificationToken(form_token=form_token, cookie_token=cookie_token)


def _find_token(html, pattern):
    # Method 1: inline script tags
    soup = BeautifulSoup(html, 'html.parser')
    for script in soup.find_all('script'):
        m = pattern.search(script.string or '')
        if m:
            return m.group(1)

    # Method 2: anywhere in the raw body
    m = pattern.search(html)
    return m.group(1) if m else None


def build_login_data_string(email, password):
    """Serialize the login form into the single LoginDataString blob."""
    fields = [
        ('Email', email),
        ('Password', password),
        ('CaptchaText', CAPTCHA_PLACEHOLDER),
    ]
    return PAIR_SEPARATOR.join(f'{name}{NAME_VALUE_SEPARATOR}{value}' for name, value in fields)


def login(session, token, email, password, base_url=BASE_URL, timeout=REQUEST_TIMEOUT):
    """
    Log in to the card site and return an authenticated client.

    Args:
        session: requests.Session holding the cookies set by the login page
        token: VerificationToken scraped from the login page
        email: account email / username
        password: account password

    Returns:
        AuthenticatedClient bound to the session and token

    Raises:
        LoginFailedError when the backend rejects the credentials or token
    """
    client = AuthenticatedClient(session, token, base_url=base_url, timeout=timeout)
    log(f'Posting credentials to: {base_url}{LOGIN_PATH}')
    result = client.post(LOGIN_PATH, data={'LoginDataString': build_login_data_string(email, password)})

    message = (result or {}).get('Message') or ''
    if LOGIN_FAILED_MARKER in message:
        raise LoginFailedError(f'Could not login: {message}')

    log('Logged in successfully')
    return client


class AuthenticatedClient:
    """Issues msrservice POSTs signed with the run's verification token."""

    def __init__(self, session, token, base_url=BASE_URL, timeout=REQUEST_TIMEOUT):
        self.session = session
        self.token = token
        self.base_url = base_url
        self.timeout = timeout

    def post(self, path, data=None):
        """POST to an msrservice endpoint and return the decoded JSON body."""
        url = f'{self.base_url}{path}'
        log(f'POST {url}')
        if data:
            log(f'POST form_data keys: {list(data.keys())}')

        resp = self.session.post(
            url,
            data=data,
            headers={VERIFICATION_HEADER: self.token.format()},
            timeout=self.timeout,
        )
        log(f'POST Response: {resp.status_code}, body length: {len(resp.text)} chars')
        resp.raise_for_status()

        if not resp.text.strip():
            return {}
        result = resp.json(parse_float=Decimal)
        if not isinstance(result, dict):
            raise UnexpectedResponseError(f'Expected a JSON object from {path}, got {type(result).__name__}')
        return result


def _get_title(html):
    """Extract page title from HTML."""
    m = re.search(r'<title>(.*?)</title>', html, re.IGNORECASE | re.DOTALL)
    return m.group(1).strip() if m else '(no title)'

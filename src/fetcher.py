"""
Default fetch capability: reads a product page of the catalog over HTTP.

The reader is generic. It takes the page title from the first
<h1> and collects attribute values from label/value structures (<dt>/<dd>
pairs and two-cell table rows), picking the ones whose label contains one of
the FIELD_LABELS keywords. Anything catalog specific beyond that belongs in a
custom fetch capability passed to fetch_all / process_workbook instead.
"""

import logging
import re
import threading
from typing import Dict, Iterator, List, Optional, Tuple

import requests
from bs4 import BeautifulSoup

from config import DEFAULT_FETCH_TIMEOUT_SECONDS, FetchError
from retrieval import ProductRecord, normalize_key, product_url

logger = logging.getLogger(__name__)

USER_AGENT = 'Mozilla/5.0 (compatible; product-reconciler/1.0)'

# Record field -> label keywords (lowercase, German and English)
FIELD_LABELS = {
    'alternate_id': ('weitere artikelnummer', 'herstellerartikelnummer', 'manufacturer part number'),
    'weight': ('gewicht', 'weight'),
    'dimensions': ('abmessung', 'dimension'),
    'material_classification': ('materialklassifizierung', 'material classification'),
    'material': ('werkstoff', 'material'),
}

_WHITESPACE = re.compile(r'\s+')


def _text(node) -> str:
    return _WHITESPACE.sub(' ', node.get_text(' ', strip=True)).strip()


def _label_value_pairs(soup: BeautifulSoup) -> Iterator[Tuple[str, str]]:
    for dt in soup.find_all('dt'):
        dd = dt.find_next_sibling('dd')
        if dd is not None:
            yield _text(dt), _text(dd)
    for tr in soup.find_all('tr'):
        cells = tr.find_all(['th', 'td'], recursive=False)
        if len(cells) == 2:
            yield _text(cells[0]), _text(cells[1])


def _match_field(label: str) -> Optional[str]:
    """First field whose keyword occurs in the label; FIELD_LABELS order decides ties."""
    label = label.lower().rstrip(':').strip()
    for field_name, keywords in FIELD_LABELS.items():
        if any(k in label for k in keywords):
            return field_name
    return None


def parse_product_page(html: str, key: str, url: str = '') -> ProductRecord:
    """Build a ProductRecord from a product page; unknown fields stay empty."""
    soup = BeautifulSoup(html, 'html.parser')

    title_node = soup.find('h1') or soup.find('title')
    fields: Dict[str, str] = {}
    for label, value in _label_value_pairs(soup):
        field_name = _match_field(label)
        if field_name and value and field_name not in fields:
            fields[field_name] = value

    return ProductRecord(
        key=normalize_key(key),
        url=url,
        title=_text(title_node) if title_node is not None else '',
        **fields,
    )


class ProductPageFetcher:
    """Callable ``key -> ProductRecord`` backed by requests.

    One instance is shared by all worker threads of a batch. Without an
    injected session every worker thread gets its own requests.Session;
    an injected session is used as is by all threads.
    """

    def __init__(self, timeout: float = DEFAULT_FETCH_TIMEOUT_SECONDS, session: Optional[requests.Session] = None):
        self.timeout = timeout
        self._shared_session = session
        self._local = threading.local()
        self._sessions: List[requests.Session] = []
        self._lock = threading.Lock()

    @property
    def session(self) -> requests.Session:
        """Session of the calling thread."""
        if self._shared_session is not None:
            return self._shared_session
        session = getattr(self._local, 'session', None)
        if session is None:
            session = requests.Session()
            session.headers['User-Agent'] = USER_AGENT
            self._local.session = session
            with self._lock:
                self._sessions.append(session)
        return session

    def __call__(self, key: str) -> ProductRecord:
        key = normalize_key(key)
        url = product_url(key)
        logger.debug("GET %s", url)
        try:
            response = self.session.get(url, timeout=self.timeout)
            response.raise_for_status()
        except requests.RequestException as e:
            raise FetchError(f"{key}: {e}") from e

        record = parse_product_page(response.text, key, url)
        if not record.title:
            raise FetchError(f"{key}: no product found at {url}")
        return record

    def close(self) -> None:
        if self._shared_session is not None:
            self._shared_session.close()
        with self._lock:
            sessions, self._sessions = self._sessions, []
        for session in sessions:
            session.close()
        self._local = threading.local()

"""
Fetcher components for the sfdocpipe pipeline.

A fetcher retrieves one source URL and strips the returned HTML down to
readable text. Fetchers never let a transport problem escape `fetch`:
every failure comes back as an error FetchResult so one bad URL cannot stop
the run. Retrying is left to the orchestrator.
"""

from abc import ABC, abstractmethod
import logging
import unicodedata

import requests
from bs4 import BeautifulSoup

from ..utils.data_models import FetchResult
from ..utils.errors import FetchError

logger = logging.getLogger(__name__)

DEFAULT_HEADERS = {
    "User-Agent": "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/58.0.3029.110 Safari/537.3",
    "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
}

# Elements that never carry documentation text.
NON_CONTENT_TAGS = ["head", "script", "style", "noscript", "nav", "footer", "header", "svg"]

# Elements that start a new paragraph. Everything else is inline and is
# joined with the surrounding text.
BLOCK_TAGS = [
    "address", "article", "aside", "blockquote", "body", "dd", "div", "dl",
    "dt", "figcaption", "figure", "form", "h1", "h2", "h3", "h4", "h5", "h6",
    "hr", "li", "main", "ol", "p", "pre", "section", "table", "tbody", "td",
    "tfoot", "th", "thead", "tr", "ul",
]

TEXT_CONTENT_TYPES = ("text/html", "application/xhtml+xml", "text/plain")

# Unicode paragraph and line separators, used as break markers in the parse
# tree before the text is extracted.
PARAGRAPH_MARK = "\u2029"
LINE_MARK = "\u2028"

# Share of control characters above which a body is treated as binary.
MAX_CONTROL_RATIO = 0.1


def _normalize_block(block: str) -> str:
    lines = (" ".join(line.split()) for line in block.split(LINE_MARK))
    return "\n".join(line for line in lines if line)


def html_to_text(html: str) -> str:
    """
    Extracts visible text from an HTML page.

    Inline elements (links, code spans, emphasis) stay inside their sentence.
    Block elements become paragraphs separated by a blank line, and `<br>`
    and the lines of `<pre>` blocks become single line breaks.
    """
    soup = BeautifulSoup(html, "html.parser")
    for tag in soup(NON_CONTENT_TAGS):
        tag.decompose()
    for pre in soup.find_all("pre"):
        for string in pre.find_all(string=True):
            string.replace_with(str(string).replace("\n", LINE_MARK))
    for br in soup.find_all("br"):
        br.replace_with(LINE_MARK)
    for tag in soup.find_all(BLOCK_TAGS):
        tag.insert_before(PARAGRAPH_MARK)
        tag.insert_after(PARAGRAPH_MARK)

    blocks = (_normalize_block(block) for block in soup.get_text().split(PARAGRAPH_MARK))
    return "\n\n".join(block for block in blocks if block)


def plain_text_to_text(text: str) -> str:
    """Normalizes a text/plain body, keeping its blank-line paragraphs."""
    lines = [line.rstrip() for line in text.strip().splitlines()]
    return "\n".join(lines)


def control_char_ratio(text: str) -> float:
    if not text:
        return 0.0
    control = sum(
        1 for ch in text if unicodedata.category(ch) == "Cc" and ch not in "\n\r\t"
    )
    return control / len(text)


class BaseFetcher(ABC):
    """Abstract base class for all fetcher components."""

    @abstractmethod
    def fetch_or_raise(self, url: str) -> FetchResult:
        """
        Fetches a URL and returns a successful FetchResult.

        Raises:
            FetchError: If the URL could not be retrieved or yielded no text.
        """
        pass

    def fetch(self, url: str) -> FetchResult:
        """
        Fetches a URL, converting any FetchError into a failed FetchResult.

        Args:
            url (str): The source URL.

        Returns:
            FetchResult: Exactly one result per call, successful or not.
        """
        try:
            return self.fetch_or_raise(url)
        except FetchError as e:
            logger.warning(f"Failed to fetch '{url}': {e.message}")
            return FetchResult.failure(url, e.message, status_code=e.status_code)

    @abstractmethod
    def test_connection(self, url: str):
        """
        Checks that the given URL is reachable.

        Raises:
            ConnectionError: If the URL cannot be reached.
        """
        pass


class WebFetcher(BaseFetcher):
    """
    Fetches documentation pages over HTTP and extracts their text.
    """

    def __init__(
        self,
        timeout: float = 10.0,
        user_agent: str = None,
        session: requests.Session = None,
    ):
        """
        Initializes the WebFetcher.

        Args:
            timeout (float): Seconds to wait for connect and read before giving up.
            user_agent (str): Overrides the default browser-like User-Agent.
            session (requests.Session): Optional session, shared across calls.
        """
        self.timeout = timeout
        self.headers = dict(DEFAULT_HEADERS)
        if user_agent:
            self.headers["User-Agent"] = user_agent
        self.session = session or requests.Session()
        logger.debug(f"Initialized WebFetcher with timeout={timeout}s")

    def fetch_or_raise(self, url: str) -> FetchResult:
        logger.info(f"Fetching content from URL: {url}")
        try:
            response = self.session.get(url, timeout=self.timeout, headers=self.headers)
            response.raise_for_status()
        except requests.exceptions.Timeout as e:
            raise FetchError(
                f"Timeout after {self.timeout}s fetching '{url}': {e}",
                url=url,
                component="web_fetcher",
            ) from e
        except requests.exceptions.HTTPError as e:
            status = e.response.status_code if e.response is not None else None
            raise FetchError(
                f"HTTP {status} for '{url}'",
                url=url,
                status_code=status,
                component="web_fetcher",
            ) from e
        except requests.exceptions.RequestException as e:
            raise FetchError(
                f"Request error fetching '{url}': {e}",
                url=url,
                component="web_fetcher",
            ) from e

        content_type = response.headers.get("Content-Type", "")
        media_type = content_type.split(";")[0].strip().lower()
        if media_type and media_type not in TEXT_CONTENT_TYPES:
            raise FetchError(
                f"Unsupported content type '{media_type}' at '{url}'",
                url=url,
                status_code=response.status_code,
                component="web_fetcher",
            )

        body = response.text
        if control_char_ratio(body) > MAX_CONTROL_RATIO:
            raise FetchError(
                f"Content of '{url}' looks binary, not text",
                url=url,
                status_code=response.status_code,
                component="web_fetcher",
            )

        try:
            if media_type == "text/plain":
                text = plain_text_to_text(body)
            else:
                text = html_to_text(body)
        except Exception as e:
            raise FetchError(
                f"Could not parse content of '{url}': {e}",
                url=url,
                status_code=response.status_code,
                component="web_fetcher",
            ) from e

        if not text.strip():
            raise FetchError(
                f"No text content found at URL: '{url}'",
                url=url,
                status_code=response.status_code,
                component="web_fetcher",
            )

        logger.debug(f"Fetched {len(text)} characters from '{url}'")
        return FetchResult.success(url, text, status_code=response.status_code)

    def test_connection(self, url: str):
        logger.info(f"Testing connection for WebFetcher at URL: {url}")
        try:
            response = self.session.head(
                url, timeout=self.timeout, headers=self.headers, allow_redirects=True
            )
            response.raise_for_status()
            logger.info("Connection to URL successful.")
        except requests.exceptions.RequestException as e:
            raise ConnectionError(f"Failed to connect to URL: {url}") from e

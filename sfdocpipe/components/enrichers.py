"""
Metadata enrichment for chunks.

Tags every chunk with categorical fields (doc_type, platform) and structural
fields (url_path, domain, content_length, scraped_at) derived from its source
URL and text. Classification is best-effort: it never fails, and URLs that
cannot be parsed fall back to the default tags.
"""

import logging
from datetime import datetime, timezone
from typing import Callable, Dict, Optional, Tuple
from urllib.parse import urlparse

from ..utils.data_models import Chunk, EnrichedChunk

logger = logging.getLogger(__name__)

DEFAULT_DOC_TYPE = "general"
DEFAULT_PLATFORM = "unknown"


def classify_doc_type(path: str) -> str:
    """Maps a URL path to a documentation type. First matching rule wins."""
    path = path.lower()
    if "apex" in path:
        return "apex"
    if "lightning" in path and "lwc" in path:
        return "lwc"
    if "lightning" in path:
        return "lightning"
    if "soql" in path or "sosl" in path:
        return "soql"
    if "/api/" in path:
        return "api"
    if "help" in path:
        return "help"
    return DEFAULT_DOC_TYPE


def classify_platform(host: str, path: str) -> str:
    """Maps a host and path to the documentation site it belongs to."""
    host = host.lower()
    path = path.lower()
    if host.startswith("lwc.") or "/component-library" in path:
        return "lwc"
    if host.startswith("developer."):
        return "developer"
    if "lightningdesignsystem" in host or host.startswith("design."):
        return "design"
    if host.startswith("help."):
        return "help"
    return DEFAULT_PLATFORM


def parse_source_url(url: str) -> Optional[Tuple[str, str]]:
    """Returns (domain, path) for a well-formed absolute URL, otherwise None."""
    try:
        parsed = urlparse(url)
        host = parsed.hostname
    except (ValueError, TypeError, AttributeError):
        return None
    if not parsed.scheme or not host:
        return None
    return host, parsed.path or "/"


class MetadataEnricher:
    """
    Derives the stored metadata of a chunk.

    `enrich` is a pure function of the chunk and the scraped_at timestamp.
    When no timestamp is passed the injected clock supplies one.
    """

    def __init__(self, clock: Callable[[], datetime] = None):
        self.clock = clock or (lambda: datetime.now(timezone.utc))

    def build_metadata(
        self, source_url: str, text: str, scraped_at: datetime
    ) -> Dict[str, object]:
        parsed = parse_source_url(source_url)
        if parsed is None:
            logger.debug(f"Could not parse source URL '{source_url}'; using defaults.")
            domain, url_path = "", ""
            doc_type, platform = DEFAULT_DOC_TYPE, DEFAULT_PLATFORM
        else:
            domain, url_path = parsed
            doc_type = classify_doc_type(url_path)
            platform = classify_platform(domain, url_path)

        return {
            "source_url": source_url,
            "doc_type": doc_type,
            "platform": platform,
            "url_path": url_path,
            "domain": domain,
            "scraped_at": scraped_at.isoformat(),
            "content_length": len(text),
        }

    def enrich(self, chunk: Chunk, scraped_at: Optional[datetime] = None) -> EnrichedChunk:
        """
        Attaches metadata to a chunk.

        Args:
            chunk (Chunk): The chunk to tag.
            scraped_at (datetime): When the chunk's document was fetched.

        Returns:
            EnrichedChunk: The chunk with its metadata mapping.
        """
        scraped_at = scraped_at or self.clock()
        metadata = self.build_metadata(chunk.source_url, chunk.text, scraped_at)
        metadata["sequence_index"] = chunk.sequence_index
        metadata["start_offset"] = chunk.start_offset
        return EnrichedChunk(chunk=chunk, metadata=metadata)

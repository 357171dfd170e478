from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional, Tuple
from urllib.parse import urlparse


class UrlKind(str, Enum):
    """Syntactic class of a URL string found in content."""

    SKIP_SCHEME = "skip-scheme"
    ALREADY_PROXIED = "already-proxied"
    ABSOLUTE = "absolute"
    PROTOCOL_RELATIVE = "protocol-relative"
    ROOT_RELATIVE = "root-relative"
    DOCUMENT_RELATIVE = "document-relative"


class ResponseKind(str, Enum):
    REDIRECT = "redirect"
    HTML = "html"
    TEXT = "text"
    BINARY = "binary"


@dataclass(frozen=True)
class ProxyRoute:
    """
    The route prefix and upstream origin a served document is rewritten against.

    ``origin`` is ``scheme://host[:port]`` without a trailing slash.
    """

    route_prefix: str
    origin: str

    @classmethod
    def for_target(cls, route_prefix: str, target_url: str) -> "ProxyRoute":
        parsed = urlparse(target_url)
        # Drop any userinfo so it never leaks into rewritten markup
        host = parsed.netloc.rsplit("@", 1)[-1]
        return cls(route_prefix=route_prefix, origin=f"{parsed.scheme}://{host}")


@dataclass
class UpstreamResponse:
    status_code: int
    headers: List[Tuple[str, str]] = field(default_factory=list)
    body: bytes = b""
    declared_content_type: Optional[str] = None
    encoding: Optional[str] = None

    def header(self, name: str) -> Optional[str]:
        name = name.lower()
        for key, value in self.headers:
            if key.lower() == name:
                return value
        return None

"""
Signal extraction - user-agent heuristics run by the edge layer.

These are the labels the gatekeeper cannot derive from rule predicates
alone. They are attached to the Request before classification so that
rule overrides can act on them.
"""

import re
from dataclasses import dataclass
from typing import FrozenSet, List, Optional, Sequence

from gatekeeper.models import Request

NON_BROWSER_USER_AGENT = "signal:non_browser_user_agent"
HTTP_LIBRARY = "bot:category:http_library"


@dataclass
class ClientSignature:
    """Known HTTP client library signature"""
    name: str
    pattern: str
    compiled: Optional[re.Pattern] = None


DEFAULT_SIGNATURES = [
    ClientSignature("curl", r"(?i:^curl/)"),
    ClientSignature("wget", r"(?i:^wget/)"),
    ClientSignature("python-requests", r"(?i:python-requests)"),
    ClientSignature("python-urllib", r"(?i:python-urllib)"),
    ClientSignature("httpx", r"(?i:python-httpx)"),
    ClientSignature("aiohttp", r"(?i:aiohttp)"),
    ClientSignature("axios", r"(?i:axios/)"),
    ClientSignature("go-http-client", r"(?i:go-http-client)"),
    ClientSignature("okhttp", r"(?i:okhttp)"),
    ClientSignature("java", r"(?i:^java/|apache-httpclient)"),
]


class SignalExtractor:
    """Derive upstream signal labels from the request's User-Agent."""

    def __init__(self, signatures: Optional[Sequence[ClientSignature]] = None):
        self._signatures: List[ClientSignature] = []
        for signature in signatures if signatures is not None else DEFAULT_SIGNATURES:
            compiled = re.compile(signature.pattern)
            self._signatures.append(ClientSignature(signature.name, signature.pattern, compiled))

    @classmethod
    def from_patterns(cls, patterns: dict) -> "SignalExtractor":
        """Build an extractor from a {name: regex} mapping (YAML configuration)."""
        return cls([ClientSignature(name, pattern) for name, pattern in patterns.items()])

    def http_library(self, user_agent: str) -> Optional[str]:
        """Name of the matching client library signature, if any."""
        for signature in self._signatures:
            if signature.compiled.search(user_agent):
                return signature.name
        return None

    def extract(self, request: Request) -> FrozenSet[str]:
        user_agent = (request.header("user-agent") or "").strip()
        if not user_agent:
            return frozenset({NON_BROWSER_USER_AGENT})

        labels = set()
        if self.http_library(user_agent):
            labels.update({HTTP_LIBRARY, NON_BROWSER_USER_AGENT})
        elif not user_agent.startswith("Mozilla/"):
            labels.add(NON_BROWSER_USER_AGENT)
        return frozenset(labels)

    def annotate(self, request: Request) -> Request:
        return request.with_signals(self.extract(request))

"""
Cache key derivation and TTL policies.
"""
import re
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Mapping, Optional, Protocol, Union
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

from .core import FetchRequest, Metadata, PolicyError


class KeyPolicy(Protocol):
    def get_key(self, request: FetchRequest) -> str: ...


class MetadataPolicy(Protocol):
    def get_metadata(self, key: str, response: Any, options: Mapping[str, Any]) -> Metadata: ...


@dataclass
class TTLRule:
    """Maps targets matching a prefix or regex to a TTL in seconds."""
    match: Union[str, re.Pattern]
    ttl_seconds: Optional[float]

    def matches(self, target: str) -> bool:
        if isinstance(self.match, str):
            return target.startswith(self.match)
        return self.match.search(target) is not None


def normalize_target(target: str) -> str:
    """Sort query parameters so equivalent URLs share one key."""
    parts = urlsplit(target)
    if not parts.query:
        return target
    query = urlencode(sorted(parse_qsl(parts.query, keep_blank_values=True)))
    return urlunsplit((parts.scheme, parts.netloc, parts.path, query, parts.fragment))


class Policy:
    """
    Default key and metadata policy.

    Keys are the normalized target URL, so reads and writes against the
    same resource share one cacheable unit. TTL resolution order:
    - options["expires"]: absolute expiry in epoch seconds
    - options["ttl"]: seconds from now
    - first matching TTLRule
    - default_ttl_seconds (None means never expires)
    """

    def __init__(
        self,
        default_ttl_seconds: Optional[float] = None,
        rules: Optional[List[TTLRule]] = None,
        key_prefix: str = "",
        clock: Callable[[], float] = time.time,
    ):
        self.default_ttl_seconds = default_ttl_seconds
        self.rules = list(rules or [])
        self.key_prefix = key_prefix
        self._clock = clock

    def get_key(self, request: FetchRequest) -> str:
        try:
            return f"{self.key_prefix}{normalize_target(request.target)}"
        except Exception as e:
            raise PolicyError(f"Cannot derive cache key for {request.target!r}: {e}") from e

    def get_metadata(self, key: str, response: Any, options: Mapping[str, Any]) -> Metadata:
        try:
            if options.get("expires") is not None:
                return Metadata(expires=float(options["expires"]))
            ttl = self._resolve_ttl(key, options)
        except Exception as e:
            raise PolicyError(f"Cannot compute metadata for {key}: {e}") from e
        if ttl is None:
            return Metadata()
        return Metadata(expires=self._clock() + ttl)

    def _resolve_ttl(self, key: str, options: Mapping[str, Any]) -> Optional[float]:
        if options.get("ttl") is not None:
            return float(options["ttl"])
        target = key[len(self.key_prefix):] if self.key_prefix else key
        for rule in self.rules:
            if rule.matches(target):
                return rule.ttl_seconds
        return self.default_ttl_seconds


def rules_from_config(config: Dict[str, Optional[float]]) -> List[TTLRule]:
    """
    Build TTL rules from a ``{pattern: ttl}`` mapping.

    Patterns starting with ``^`` are compiled as regexes, anything else is
    a path prefix.
    """
    rules = []
    for pattern, ttl in config.items():
        match: Union[str, re.Pattern] = re.compile(pattern) if pattern.startswith("^") else pattern
        rules.append(TTLRule(match=match, ttl_seconds=ttl))
    return rules

import os
import re
import sys
from dataclasses import dataclass
from enum import Enum
from typing import Iterable, List, Optional, Sequence, Tuple

import yaml

from resolver_middleware import normalize_hostname

UNKNOWN = "Unknown"


# ---------- Color-aware warning helper ----------
def _warn(msg: str):
    """Print a warning; colorized if NSHAUNT_COLOR=1 and stderr is a TTY."""
    use_color = os.environ.get("NSHAUNT_COLOR") == "1" and sys.stderr.isatty()
    if use_color:
        sys.stderr.write("\x1b[33m[WARNING]\x1b[0m " + msg + "\n")
    else:
        sys.stderr.write("[WARNING] " + msg + "\n")
    sys.stderr.flush()
# ------------------------------------------------


class MalformedPattern(Exception):
    """Invalid trust pattern configuration. Fatal before scanning."""


# =============================
# Trust patterns (gate probing)
# =============================
class PatternKind(Enum):
    WILDCARD = "WILDCARD"
    EXACT = "EXACT"


_LABEL_RX = re.compile(r"^[a-z0-9_-]{1,63}$")


def _check_labels(name: str, raw: str):
    for label in name.rstrip(".").split("."):
        if not _LABEL_RX.match(label):
            raise MalformedPattern(f"invalid label {label!r} in pattern {raw!r}")


@dataclass(frozen=True)
class ProviderPattern:
    kind: PatternKind
    value: str   # WILDCARD: ".suffix." ; EXACT: "host.name."
    label: str

    @classmethod
    def parse(cls, pattern, label) -> "ProviderPattern":
        if not isinstance(pattern, str) or not pattern.strip():
            raise MalformedPattern(f"empty pattern (provider {label!r})")
        if not isinstance(label, str) or not label.strip():
            raise MalformedPattern(f"pattern {pattern!r} has no provider label")
        raw = pattern
        p = normalize_hostname(pattern)
        if p.startswith("*."):
            suffix = p[1:]
            if suffix == "." or "*" in suffix:
                raise MalformedPattern(f"wildcard pattern {raw!r} has no usable suffix")
            _check_labels(suffix[1:], raw)
            return cls(PatternKind.WILDCARD, suffix, label.strip())
        if "*" in p:
            raise MalformedPattern(f"'*' is only allowed as a leading '*.' label: {raw!r}")
        _check_labels(p, raw)
        return cls(PatternKind.EXACT, p, label.strip())

    def matches(self, nameserver: str) -> bool:
        ns = normalize_hostname(nameserver)
        if self.kind is PatternKind.WILDCARD:
            return ns.endswith(self.value) and len(ns) > len(self.value)
        return ns == self.value

    def __str__(self):
        return ("*" + self.value) if self.kind is PatternKind.WILDCARD else self.value


def parse_patterns(entries: Iterable) -> List[ProviderPattern]:
    """
    entries: [{"pattern": "*.orangehost.com.", "provider": "Orange DNS"}, ...]
    ("providerLabel" is accepted for "provider"). Order is preserved.
    """
    out: List[ProviderPattern] = []
    for i, entry in enumerate(entries or []):
        if not isinstance(entry, dict):
            raise MalformedPattern(f"pattern entry #{i + 1} is not a mapping: {entry!r}")
        label = entry.get("provider", entry.get("providerLabel"))
        out.append(ProviderPattern.parse(entry.get("pattern"), label))
    return out


def load_patterns(path: str) -> List[ProviderPattern]:
    """
    patterns.yaml:
      patterns:
        - pattern: "*.orangehost.com."
          provider: "Orange DNS"
        - pattern: "ns1.orangehost.com."
          provider: "Orange DNS"
    """
    if not path or not os.path.isfile(path):
        raise MalformedPattern(f"pattern file not found: {path}")
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except (OSError, yaml.YAMLError) as e:
        raise MalformedPattern(f"cannot read pattern file {path}: {e}") from e
    entries = data.get("patterns") if isinstance(data, dict) else data
    if entries is not None and not isinstance(entries, list):
        raise MalformedPattern(f"{path}: 'patterns' must be a list")
    patterns = parse_patterns(entries or [])
    if not patterns:
        _warn(f"{path} holds no patterns; no nameserver will be probed.")
    return patterns


def match_trusted(nameserver: str, patterns: Sequence[ProviderPattern]) -> Optional[str]:
    """Label of the first pattern matching nameserver, else None."""
    for p in patterns:
        if p.matches(nameserver):
            return p.label
    return None


# =============================
# Cosmetic provider labels (reporting only)
# =============================
PROVIDER_SIGNATURES: Tuple[Tuple[str, str], ...] = (
    ("amazonaws.com", "AWS Route 53"),
    ("awsdns", "AWS Route 53"),
    ("cloudflare.com", "Cloudflare"),
    ("google.com", "Google Cloud DNS"),
    ("googledomains.com", "Google Cloud DNS"),
    ("azure-dns", "Azure DNS"),
    ("orangehost.com", "Orange DNS"),
    ("domaincontrol.com", "GoDaddy"),
    ("nsone.net", "NS1"),
    ("digitalocean.com", "DigitalOcean"),
    ("registrar-servers.com", "Namecheap"),
    ("dnsimple.com", "DNSimple"),
)


def classify_provider(nameserver: str, signatures: Sequence[Tuple[str, str]] = PROVIDER_SIGNATURES) -> str:
    ns = normalize_hostname(nameserver)
    for fragment, label in signatures:
        if fragment in ns:
            return label
    return UNKNOWN


def load_signatures(path: Optional[str]) -> Tuple[Tuple[str, str], ...]:
    """
    providers.yaml (cosmetic only, never fatal):
      providers:
        - match: "amazonaws.com"
          provider: "AWS Route 53"
    """
    if not path:
        return PROVIDER_SIGNATURES
    if not os.path.isfile(path):
        _warn(f"Providers file not found at {path}; using built-in provider labels.")
        return PROVIDER_SIGNATURES
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except (OSError, yaml.YAMLError) as e:
        _warn(f"Failed to read providers file {path}: {e}; using built-in provider labels.")
        return PROVIDER_SIGNATURES
    rows = data.get("providers") if isinstance(data, dict) else data
    table = tuple(
        (str(r["match"]).strip().lower(), str(r["provider"]).strip())
        for r in (rows or [])
        if isinstance(r, dict) and r.get("match") and r.get("provider")
    )
    if not table:
        _warn(f"{path} is empty; using built-in provider labels.")
        return PROVIDER_SIGNATURES
    return table

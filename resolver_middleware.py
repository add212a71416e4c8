import logging
import threading
from dataclasses import dataclass
from typing import List, NamedTuple, Optional, Sequence, Tuple

import dns.exception
import dns.flags
import dns.message
import dns.query
import dns.rcode
import dns.rdatatype
import dns.resolver

logger = logging.getLogger(__name__)


class ResolverError(Exception):
    """Transport-level failure (timeout, socket error, nobody answered)."""

    def __init__(self, reason: str):
        super().__init__(reason)
        self.reason = reason


# =============================
# Name normalization
# =============================
def normalize_hostname(name: Optional[str]) -> str:
    """Lower-case, trailing-dot form. Blank input -> ''."""
    s = (name or "").strip().lower()
    if not s or s == ".":
        return s
    return s if s.endswith(".") else s + "."


def normalize_domain(name: Optional[str]) -> str:
    """Lower-case, no trailing dot. Used for reporting domains."""
    return (name or "").strip().lower().rstrip(".")


def normalize_rdtype(rdtype: str) -> str:
    """Canonical record type mnemonic; ValueError for an unknown type."""
    try:
        return dns.rdatatype.to_text(dns.rdatatype.from_text((rdtype or "").strip()))
    except (dns.exception.DNSException, ValueError) as e:
        raise ValueError(f"unknown record type {rdtype!r}") from e


# =============================
# Structured responses
# =============================
class Record(NamedTuple):
    name: str
    rdtype: str
    value: str


@dataclass(frozen=True)
class DnsAnswer:
    rcode: str
    answer: Tuple[Record, ...] = ()
    authority: Tuple[Record, ...] = ()
    additional: Tuple[Record, ...] = ()
    authoritative: bool = False
    server: Optional[str] = None
    raw: str = ""

    def records(self, section: str, rdtype: str, name: Optional[str] = None) -> List[Record]:
        rows = getattr(self, section)
        return [
            r for r in rows
            if r.rdtype == rdtype and (name is None or r.name == normalize_hostname(name))
        ]

    @classmethod
    def from_message(cls, msg: dns.message.Message, server: Optional[str] = None) -> "DnsAnswer":
        return cls(
            rcode=dns.rcode.to_text(msg.rcode()),
            answer=_section(msg.answer),
            authority=_section(msg.authority),
            additional=_section(msg.additional),
            authoritative=bool(msg.flags & dns.flags.AA),
            server=server,
            raw=msg.to_text(),
        )


def _section(rrsets) -> Tuple[Record, ...]:
    out: List[Record] = []
    for rrset in rrsets:
        owner = normalize_hostname(rrset.name.to_text())
        rdtype = dns.rdatatype.to_text(rrset.rdtype)
        for rd in rrset:
            value = rd.to_text()
            if rdtype in ("NS", "CNAME"):
                value = normalize_hostname(value)
            out.append(Record(owner, rdtype, value))
    return tuple(out)


# =============================
# Resolver capability
# =============================
class DnsResolver:
    """
    Narrow DNS capability handed to discovery and probing.
    Implementations raise ResolverError on transport failure; a DNS
    response of any rcode (NXDOMAIN included) is returned, never raised.
    """

    def lookup(self, qname: str, rdtype: str) -> DnsAnswer:
        raise NotImplementedError

    def query(self, qname: str, rdtype: str, server: str, recursion: bool = True) -> DnsAnswer:
        raise NotImplementedError

    def addresses(self, host: str) -> List[str]:
        """IPv4 addresses of host; IPv6 only when it has no IPv4."""
        for rdtype in ("A", "AAAA"):
            ans = self.lookup(host, rdtype)
            ips = [r.value for r in ans.answer if r.rdtype == rdtype]
            if ips:
                return ips
        return []


class DnsPythonResolver(DnsResolver):
    def __init__(self, timeout: float = 5.0, nameservers: Optional[Sequence[str]] = None, max_inflight: int = 128):
        self.timeout = float(timeout)
        self.nameservers = list(nameservers) if nameservers else None
        self._sem = threading.BoundedSemaphore(value=max(1, int(max_inflight)))

    def _make_resolver(self) -> dns.resolver.Resolver:
        # configure=False skips /etc/resolv.conf when servers are explicit
        r = dns.resolver.Resolver(configure=(self.nameservers is None))
        if self.nameservers:
            r.nameservers = self.nameservers
        r.timeout = self.timeout
        r.lifetime = self.timeout
        return r

    def lookup(self, qname: str, rdtype: str) -> DnsAnswer:
        try:
            with self._sem:
                ans = self._make_resolver().resolve(qname, rdtype, raise_on_no_answer=False)
        except dns.resolver.NXDOMAIN as e:
            return DnsAnswer(rcode="NXDOMAIN", raw=str(e))
        except dns.resolver.NoNameservers as e:
            raise ResolverError(f"no nameserver answered {qname} {rdtype}: {e}") from e
        except dns.exception.Timeout as e:
            raise ResolverError(f"timeout resolving {qname} {rdtype}") from e
        except dns.exception.DNSException as e:
            raise ResolverError(f"resolver failure for {qname} {rdtype}: {e}") from e
        return DnsAnswer.from_message(ans.response)

    def query(self, qname: str, rdtype: str, server: str, recursion: bool = True) -> DnsAnswer:
        q = dns.message.make_query(qname, rdtype)
        if not recursion:
            q.flags &= ~dns.flags.RD
        try:
            with self._sem:
                resp = dns.query.udp(q, server, timeout=self.timeout)
                if resp.flags & dns.flags.TC:
                    logger.debug("truncated reply from %s for %s, retrying over TCP", server, qname)
                    resp = dns.query.tcp(q, server, timeout=self.timeout)
        except dns.exception.Timeout as e:
            raise ResolverError(f"timeout querying {server} for {qname} {rdtype}") from e
        except (dns.exception.DNSException, OSError, ValueError) as e:
            raise ResolverError(f"query to {server} for {qname} {rdtype} failed: {e}") from e
        return DnsAnswer.from_message(resp, server=server)

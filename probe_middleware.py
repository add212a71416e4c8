import logging
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from resolver_middleware import DnsResolver, ResolverError, normalize_hostname, normalize_rdtype

logger = logging.getLogger(__name__)


# =============================
# Probe classification
# =============================
class ProbeStatus(Enum):
    ANSWERED = "ANSWERED"
    NXDOMAIN = "NXDOMAIN"
    SERVFAIL = "SERVFAIL"
    REFUSED = "REFUSED"
    UNREACHABLE = "UNREACHABLE"


RISK_STATUSES = frozenset({ProbeStatus.SERVFAIL, ProbeStatus.REFUSED})

_RCODE_STATUS = {
    "NOERROR": ProbeStatus.ANSWERED,
    "NXDOMAIN": ProbeStatus.NXDOMAIN,
    "SERVFAIL": ProbeStatus.SERVFAIL,
    "REFUSED": ProbeStatus.REFUSED,
}


def classify_rcode(rcode: str) -> ProbeStatus:
    """Anything but the four known rcodes is inconclusive."""
    return _RCODE_STATUS.get((rcode or "").upper(), ProbeStatus.UNREACHABLE)


@dataclass(frozen=True)
class ProbeResult:
    nameserver: str
    status: ProbeStatus
    rcode: str = ""
    server: Optional[str] = None
    authoritative: bool = False
    raw: str = ""

    @property
    def is_risk(self) -> bool:
        return self.status in RISK_STATUSES


class ProbeFailed(Exception):
    def __init__(self, reason: str):
        super().__init__(reason)
        self.reason = reason


# =============================
# Targeted resolution
# =============================
class DelegationProbe:
    """
    Asks a delegated nameserver directly (recursion off) about the domain.
    The first response of any rcode is final; only transport errors move
    on to the nameserver's next address.
    """

    def __init__(self, resolver: DnsResolver, rdtype: str = "A"):
        self.resolver = resolver
        self.rdtype = normalize_rdtype(rdtype)

    def probe(self, domain: str, nameserver: str) -> ProbeResult:
        qname = normalize_hostname(domain)
        ns = normalize_hostname(nameserver)
        try:
            addrs = self.resolver.addresses(ns)
        except ResolverError as e:
            raise ProbeFailed(f"cannot resolve nameserver {ns}: {e.reason}") from e
        if not addrs:
            raise ProbeFailed(f"nameserver {ns} has no address")

        last = None
        for addr in addrs:
            try:
                resp = self.resolver.query(qname, self.rdtype, addr, recursion=False)
            except ResolverError as e:
                last = e.reason
                logger.debug("probe %s @%s (%s) failed: %s", qname, ns, addr, e.reason)
                continue
            status = classify_rcode(resp.rcode)
            logger.debug("probe %s @%s (%s): %s", qname, ns, addr, resp.rcode)
            return ProbeResult(
                nameserver=ns,
                status=status,
                rcode=resp.rcode,
                server=addr,
                authoritative=resp.authoritative,
                raw=resp.raw,
            )
        raise ProbeFailed(f"{ns} unreachable: {last}")

import logging
from typing import Iterable, List, Optional, Sequence

from resolver_middleware import (
    DnsAnswer,
    DnsResolver,
    ResolverError,
    normalize_hostname,
)

logger = logging.getLogger(__name__)

DIRECT = "direct"
TRACE = "trace"
MODES = (DIRECT, TRACE)

# a..m.root-servers.net
ROOT_SERVERS = (
    "198.41.0.4",
    "170.247.170.2",
    "192.33.4.12",
    "199.7.91.13",
    "192.203.230.10",
    "192.5.5.241",
    "192.112.36.4",
    "198.97.190.53",
    "192.36.148.17",
    "192.58.128.30",
    "193.0.14.129",
    "199.7.83.42",
    "202.12.27.33",
)

_LAME_RCODES = ("SERVFAIL", "REFUSED")


class DiscoveryFailed(Exception):
    def __init__(self, reason: str):
        super().__init__(reason)
        self.reason = reason


def _unique(names: Iterable[str]) -> List[str]:
    seen = set()
    out = []
    for n in names:
        ns = normalize_hostname(n)
        if not ns or ns == "." or ns in seen:
            continue
        seen.add(ns)
        out.append(ns)
    return out


def _label_count(name: str) -> int:
    return 0 if name == "." else name.rstrip(".").count(".") + 1


def _is_ancestor(zone: str, name: str) -> bool:
    return zone == "." or name == zone or name.endswith("." + zone)


class NameserverDiscovery:
    """
    Resolves the nameservers currently delegated for a domain.

    direct: one NS lookup through the recursive resolver.
    trace:  iterative walk from the root with recursion off, keeping only
            NS records owned by the queried domain itself.
    """

    def __init__(
        self,
        resolver: DnsResolver,
        mode: str = DIRECT,
        root_servers: Sequence[str] = ROOT_SERVERS,
        max_referrals: int = 16,
    ):
        if mode not in MODES:
            raise ValueError(f"unknown discovery mode {mode!r}; expected one of {MODES}")
        self.resolver = resolver
        self.mode = mode
        self.root_servers = list(root_servers)
        self.max_referrals = max(1, int(max_referrals))

    def discover(self, domain: str) -> List[str]:
        target = normalize_hostname(domain)
        if not target or target == ".":
            raise DiscoveryFailed(f"not a domain name: {domain!r}")
        if self.mode == TRACE:
            found = self._discover_trace(target)
        else:
            found = self._discover_direct(target)
        logger.debug("%s: %d nameserver(s) via %s: %s", target, len(found), self.mode, found)
        return found

    # ---------- direct ----------
    def _discover_direct(self, target: str) -> List[str]:
        try:
            ans = self.resolver.lookup(target, "NS")
        except ResolverError as e:
            raise DiscoveryFailed(f"NS lookup failed: {e.reason}") from e
        if ans.rcode == "NXDOMAIN":
            return []
        if ans.rcode != "NOERROR":
            raise DiscoveryFailed(f"NS lookup for {target} returned {ans.rcode}")
        # a CNAME at target makes the resolver answer with the alias target's NS set
        return _unique(r.value for r in ans.records("answer", "NS", target))

    # ---------- trace ----------
    def _discover_trace(self, target: str) -> List[str]:
        servers = list(self.root_servers)
        zone = "."
        for _ in range(self.max_referrals):
            resp = self._ask(target, servers, zone)
            if resp.rcode == "NXDOMAIN":
                return []

            owned = resp.records("answer", "NS", target) + resp.records("authority", "NS", target)
            if owned:
                return _unique(r.value for r in owned)

            cut = resp.records("authority", "NS")
            if resp.authoritative or not cut:
                # reached the zone holding target without a cut at target
                return []

            next_zone = cut[0].name
            if not _is_ancestor(next_zone, target) or _label_count(next_zone) <= _label_count(zone):
                raise DiscoveryFailed(f"bogus referral from zone {zone} to {next_zone} for {target}")
            zone = next_zone
            servers = self._referral_addresses(resp, [r.value for r in cut if r.name == zone])
            if not servers:
                raise DiscoveryFailed(f"no reachable address for nameservers of {zone}")
        raise DiscoveryFailed(f"gave up on {target} after {self.max_referrals} referrals")

    def _ask(self, target: str, servers: List[str], zone: str) -> DnsAnswer:
        last: Optional[str] = None
        for server in servers:
            try:
                resp = self.resolver.query(target, "NS", server, recursion=False)
            except ResolverError as e:
                last = e.reason
                continue
            if resp.rcode in _LAME_RCODES:
                last = f"{server} answered {resp.rcode}"
                logger.debug("lame server %s for zone %s (%s)", server, zone, resp.rcode)
                continue
            return resp
        raise DiscoveryFailed(f"no server for zone {zone} answered: {last or 'no servers'}")

    def _referral_addresses(self, resp: DnsAnswer, ns_names: List[str]) -> List[str]:
        wanted = set(ns_names)
        glue = [r.value for r in resp.additional if r.rdtype == "A" and r.name in wanted]
        if glue:
            return glue
        ips: List[str] = []
        for name in ns_names:
            try:
                ips.extend(self.resolver.addresses(name))
            except ResolverError as e:
                logger.debug("could not resolve referral nameserver %s: %s", name, e.reason)
        return ips

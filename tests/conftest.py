"""Shared pytest fixtures: a scripted DNS resolver instead of the network."""

from __future__ import annotations

import threading

import pytest

from fingerprint_middleware import parse_patterns
from resolver_middleware import DnsAnswer, DnsResolver, Record, ResolverError, normalize_hostname


class ScriptedResolver(DnsResolver):
    """Answers from dicts; unknown lookups are NXDOMAIN, unknown servers unreachable."""

    def __init__(self, lookups=None, queries=None):
        self.lookups = {(normalize_hostname(n), t): v for (n, t), v in (lookups or {}).items()}
        self.queries = {(normalize_hostname(n), t, s): v for (n, t, s), v in (queries or {}).items()}
        self.calls = []
        self._lock = threading.Lock()

    def _record(self, call):
        with self._lock:
            self.calls.append(call)

    def lookup(self, qname, rdtype):
        key = (normalize_hostname(qname), rdtype)
        self._record(("lookup",) + key)
        value = self.lookups.get(key)
        if value is None:
            return DnsAnswer(rcode="NXDOMAIN")
        if isinstance(value, Exception):
            raise value
        return value

    def query(self, qname, rdtype, server, recursion=True):
        key = (normalize_hostname(qname), rdtype, server)
        self._record(("query",) + key + (recursion,))
        value = self.queries.get(key)
        if value is None:
            raise ResolverError(f"no route to {server}")
        if isinstance(value, Exception):
            raise value
        return value

    def queried_servers(self):
        return [c[3] for c in self.calls if c[0] == "query"]


def ns_answer(domain, *names):
    owner = normalize_hostname(domain)
    return DnsAnswer(rcode="NOERROR", answer=tuple(Record(owner, "NS", normalize_hostname(n)) for n in names))


def a_answer(host, *ips):
    owner = normalize_hostname(host)
    return DnsAnswer(rcode="NOERROR", answer=tuple(Record(owner, "A", ip) for ip in ips))


def rcode_answer(rcode, server=None, authoritative=False):
    return DnsAnswer(rcode=rcode, server=server, authoritative=authoritative, raw=f";; status: {rcode}")


def referral(zone, ns_names, glue=None):
    """Non-authoritative referral to zone, with optional {name: ip} glue."""
    owner = normalize_hostname(zone)
    authority = tuple(Record(owner, "NS", normalize_hostname(n)) for n in ns_names)
    additional = tuple(Record(normalize_hostname(n), "A", ip) for n, ip in (glue or {}).items())
    return DnsAnswer(rcode="NOERROR", authority=authority, additional=additional)


@pytest.fixture
def cloud_patterns():
    return parse_patterns([
        {"pattern": "*.cloud-provider.com.", "provider": "CloudProvider"},
        {"pattern": "ns1.orangehost.com.", "provider": "Orange DNS"},
    ])


@pytest.fixture
def vuln_resolver() -> ScriptedResolver:
    """vuln.test is delegated to ns1.cloud-provider.com., which refuses."""
    return ScriptedResolver(
        lookups={
            ("vuln.test", "NS"): ns_answer("vuln.test", "ns1.cloud-provider.com."),
            ("ns1.cloud-provider.com", "A"): a_answer("ns1.cloud-provider.com", "192.0.2.1"),
        },
        queries={
            ("vuln.test", "A", "192.0.2.1"): rcode_answer("REFUSED", server="192.0.2.1"),
        },
    )

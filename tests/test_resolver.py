"""Tests for resolver_middleware."""

from __future__ import annotations

from unittest.mock import MagicMock, patch

import dns.exception
import dns.flags
import dns.message
import dns.resolver
import pytest

from resolver_middleware import (
    DnsAnswer,
    DnsPythonResolver,
    Record,
    ResolverError,
    normalize_domain,
    normalize_hostname,
)

REFUSED_TEXT = """id 1234
opcode QUERY
rcode REFUSED
flags QR AA
;QUESTION
vuln.test. IN A
;ANSWER
;AUTHORITY
;ADDITIONAL
"""

REFERRAL_TEXT = """id 1
opcode QUERY
rcode NOERROR
flags QR
;QUESTION
vuln.test. IN NS
;ANSWER
;AUTHORITY
Vuln.Test. 172800 IN NS NS1.Cloud-Provider.com.
;ADDITIONAL
ns1.cloud-provider.com. 172800 IN A 192.0.2.1
"""

TRUNCATED_TEXT = """id 2
opcode QUERY
rcode NOERROR
flags QR TC
;QUESTION
vuln.test. IN A
;ANSWER
;AUTHORITY
;ADDITIONAL
"""


def test_normalize_hostname_case_and_dot():
    assert normalize_hostname("NS1.Example.Com") == "ns1.example.com."
    assert normalize_hostname("ns1.example.com.") == "ns1.example.com."
    assert normalize_hostname("  ns1.example.com \n") == "ns1.example.com."


def test_normalize_hostname_blank():
    assert normalize_hostname("") == ""
    assert normalize_hostname(None) == ""
    assert normalize_hostname("   ") == ""


def test_normalize_domain():
    assert normalize_domain("Vuln.Test.") == "vuln.test"
    assert normalize_domain(" example.com ") == "example.com"


def test_from_message_rcode_and_flags():
    ans = DnsAnswer.from_message(dns.message.from_text(REFUSED_TEXT), server="192.0.2.1")
    assert ans.rcode == "REFUSED"
    assert ans.authoritative is True
    assert ans.server == "192.0.2.1"
    assert "REFUSED" in ans.raw


def test_from_message_sections_are_normalized():
    ans = DnsAnswer.from_message(dns.message.from_text(REFERRAL_TEXT))
    assert ans.authoritative is False
    assert ans.authority == (Record("vuln.test.", "NS", "ns1.cloud-provider.com."),)
    assert ans.additional == (Record("ns1.cloud-provider.com.", "A", "192.0.2.1"),)
    assert ans.records("authority", "NS", "VULN.test") == list(ans.authority)
    assert ans.records("authority", "NS", "other.test") == []


def test_lookup_nxdomain_is_an_answer():
    r = DnsPythonResolver(timeout=1.0, nameservers=["192.0.2.53"])
    with patch.object(dns.resolver.Resolver, "resolve", side_effect=dns.resolver.NXDOMAIN()):
        ans = r.lookup("gone.test", "NS")
    assert ans.rcode == "NXDOMAIN"


def test_lookup_timeout_raises_resolver_error():
    r = DnsPythonResolver(timeout=1.0, nameservers=["192.0.2.53"])
    with patch.object(dns.resolver.Resolver, "resolve", side_effect=dns.exception.Timeout()):
        with pytest.raises(ResolverError, match="timeout"):
            r.lookup("slow.test", "NS")


def test_lookup_returns_parsed_response():
    r = DnsPythonResolver(timeout=1.0, nameservers=["192.0.2.53"])
    msg = dns.message.from_text(REFERRAL_TEXT)
    with patch.object(dns.resolver.Resolver, "resolve", return_value=MagicMock(response=msg)) as resolve:
        ans = r.lookup("vuln.test", "NS")
    resolve.assert_called_once_with("vuln.test", "NS", raise_on_no_answer=False)
    assert ans.records("authority", "NS")[0].value == "ns1.cloud-provider.com."


def test_query_clears_rd_when_recursion_off():
    r = DnsPythonResolver(timeout=1.0)
    reply = dns.message.from_text(REFUSED_TEXT)
    with patch("dns.query.udp", return_value=reply) as udp:
        ans = r.query("vuln.test.", "A", "192.0.2.1", recursion=False)
    sent = udp.call_args[0][0]
    assert not (sent.flags & dns.flags.RD)
    assert udp.call_args[0][1] == "192.0.2.1"
    assert ans.rcode == "REFUSED"
    assert ans.server == "192.0.2.1"


def test_query_retries_truncated_reply_over_tcp():
    r = DnsPythonResolver(timeout=1.0)
    truncated = dns.message.from_text(TRUNCATED_TEXT)
    full = dns.message.from_text(REFUSED_TEXT)
    with patch("dns.query.udp", return_value=truncated), patch("dns.query.tcp", return_value=full) as tcp:
        ans = r.query("vuln.test.", "A", "192.0.2.1")
    tcp.assert_called_once()
    assert ans.rcode == "REFUSED"


@pytest.mark.parametrize("exc", [dns.exception.Timeout(), OSError("network unreachable")])
def test_query_transport_errors(exc):
    r = DnsPythonResolver(timeout=1.0)
    with patch("dns.query.udp", side_effect=exc):
        with pytest.raises(ResolverError):
            r.query("vuln.test.", "A", "192.0.2.1")


def test_addresses_falls_back_to_aaaa():
    r = DnsPythonResolver(timeout=1.0, nameservers=["192.0.2.53"])
    answers = {
        "A": DnsAnswer(rcode="NOERROR"),
        "AAAA": DnsAnswer(rcode="NOERROR", answer=(Record("ns1.test.", "AAAA", "2001:db8::1"),)),
    }
    with patch.object(DnsPythonResolver, "lookup", side_effect=lambda name, rdtype: answers[rdtype]):
        assert r.addresses("ns1.test") == ["2001:db8::1"]

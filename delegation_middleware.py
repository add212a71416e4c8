import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Dict, Iterable, List, Optional, Sequence, Tuple

from discovery_middleware import DIRECT, DiscoveryFailed, NameserverDiscovery
from fingerprint_middleware import (
    PROVIDER_SIGNATURES,
    UNKNOWN,
    ProviderPattern,
    classify_provider,
    match_trusted,
)
from probe_middleware import DelegationProbe, ProbeFailed, ProbeResult, ProbeStatus
from resolver_middleware import DnsPythonResolver, DnsResolver, normalize_domain

logger = logging.getLogger(__name__)


# =============================
# Risk classification
# =============================
class RiskLevel(Enum):
    HIGH = "HIGH"


class Verdict(Enum):
    OK = "OK"                    # assessed, no risk
    VULNERABLE = "VULNERABLE"    # at least one finding
    PARTIAL = "PARTIAL"          # no finding, but some nameserver was skipped
    SKIPPED = "SKIPPED"          # domain could not be assessed


@dataclass(frozen=True)
class Finding:
    domain: str
    nameserver: str
    provider: str
    risk_level: RiskLevel = RiskLevel.HIGH
    provider_hint: str = UNKNOWN
    rcode: str = ""
    server: Optional[str] = None

    def as_dict(self) -> dict:
        return {
            "domain": self.domain,
            "nameserver": self.nameserver,
            "provider": self.provider,
            "risk_level": self.risk_level.value,
            "provider_hint": self.provider_hint,
            "rcode": self.rcode,
            "server": self.server,
        }


@dataclass(frozen=True)
class Skipped:
    domain: str
    nameserver: Optional[str]
    reason: str

    def as_dict(self) -> dict:
        return {"domain": self.domain, "nameserver": self.nameserver, "reason": self.reason}


@dataclass
class NameserverCheck:
    nameserver: str
    provider: Optional[str]          # trusted label; None = not monitored, not probed
    provider_hint: str = UNKNOWN
    probe: Optional[ProbeResult] = None
    error: Optional[str] = None


@dataclass
class DomainReport:
    domain: str
    nameservers: List[str] = field(default_factory=list)
    checks: List[NameserverCheck] = field(default_factory=list)
    findings: List[Finding] = field(default_factory=list)
    skipped: List[Skipped] = field(default_factory=list)
    error: Optional[str] = None

    @property
    def verdict(self) -> Verdict:
        if self.findings:
            return Verdict.VULNERABLE
        if self.error:
            return Verdict.SKIPPED
        if self.skipped:
            return Verdict.PARTIAL
        return Verdict.OK


@dataclass
class ScanReport:
    domains: List[DomainReport]
    findings: List[Finding]
    skipped: List[Skipped]
    cancelled: bool = False


# =============================
# Findings
# =============================
class AlertAggregator:
    """Turns (match, probe) pairs into findings and merges per-domain buffers."""

    def evaluate(
        self,
        domain: str,
        nameserver: str,
        provider: Optional[str],
        result: Optional[ProbeResult],
        provider_hint: str = UNKNOWN,
    ) -> Optional[Finding]:
        if not provider or result is None or not result.is_risk:
            return None
        return Finding(
            domain=normalize_domain(domain),
            nameserver=result.nameserver,
            provider=provider,
            risk_level=RiskLevel.HIGH,
            provider_hint=provider_hint,
            rcode=result.rcode,
            server=result.server,
        )

    def merge(self, reports: Iterable[DomainReport]) -> Tuple[List[Finding], List[Skipped]]:
        """Input order, then discovery order; repeated (domain, nameserver) pairs dropped."""
        findings: List[Finding] = []
        skipped: List[Skipped] = []
        seen_findings = set()
        seen_skipped = set()
        for rep in reports:
            for f in rep.findings:
                key = (f.domain, f.nameserver)
                if key not in seen_findings:
                    seen_findings.add(key)
                    findings.append(f)
            for s in rep.skipped:
                key = (s.domain, s.nameserver)
                if key not in seen_skipped:
                    seen_skipped.add(key)
                    skipped.append(s)
        return findings, skipped


# =============================
# Delegation Middleware
# =============================
class DelegationMiddleware:
    def __init__(
        self,
        patterns: Sequence[ProviderPattern],
        resolver: Optional[DnsResolver] = None,
        mode: str = DIRECT,
        timeout: float = 5.0,
        probe_type: str = "A",
        signatures: Sequence[Tuple[str, str]] = PROVIDER_SIGNATURES,
        probe_workers: int = 8,
    ):
        self.patterns = list(patterns)
        self.resolver = resolver or DnsPythonResolver(timeout=timeout)
        self.signatures = signatures
        self.probe_workers = max(1, int(probe_workers))
        self.discovery = NameserverDiscovery(self.resolver, mode=mode)
        self.prober = DelegationProbe(self.resolver, rdtype=probe_type)
        self.aggregator = AlertAggregator()

    def _probe(self, domain: str, nameserver: str) -> Tuple[Optional[ProbeResult], Optional[str]]:
        try:
            return self.prober.probe(domain, nameserver), None
        except ProbeFailed as e:
            return None, e.reason

    def analyze(
        self,
        domain: str,
        probe_pool: Optional[ThreadPoolExecutor] = None,
        cancel: Optional[threading.Event] = None,
    ) -> DomainReport:
        name = normalize_domain(domain)
        report = DomainReport(domain=name)
        if cancel is not None and cancel.is_set():
            report.error = "cancelled"
            report.skipped.append(Skipped(name, None, "cancelled"))
            return report

        try:
            report.nameservers = self.discovery.discover(name)
        except DiscoveryFailed as e:
            logger.info("%s: discovery failed: %s", name, e.reason)
            report.error = e.reason
            report.skipped.append(Skipped(name, None, f"discovery failed: {e.reason}"))
            return report

        # Match every nameserver first, then probe the monitored ones.
        pending: Dict[int, Future] = {}
        for ns in report.nameservers:
            check = NameserverCheck(
                nameserver=ns,
                provider=match_trusted(ns, self.patterns),
                provider_hint=classify_provider(ns, self.signatures),
            )
            report.checks.append(check)
            if check.provider is None:
                continue
            if cancel is not None and cancel.is_set():
                check.error = "cancelled"
                continue
            idx = len(report.checks) - 1
            if probe_pool is not None:
                pending[idx] = probe_pool.submit(self._probe, name, ns)
            else:
                check.probe, check.error = self._probe(name, ns)

        for idx, fut in pending.items():
            report.checks[idx].probe, report.checks[idx].error = fut.result()

        for check in report.checks:
            if check.provider is None:
                continue
            if check.error:
                report.skipped.append(Skipped(name, check.nameserver, check.error))
                continue
            if check.probe.status is ProbeStatus.UNREACHABLE:
                check.error = f"inconclusive response {check.probe.rcode}"
                report.skipped.append(Skipped(name, check.nameserver, check.error))
                continue
            finding = self.aggregator.evaluate(
                name, check.nameserver, check.provider, check.probe, check.provider_hint
            )
            if finding is not None:
                logger.info("%s: %s (%s) answered %s", name, check.nameserver, check.provider, check.probe.rcode)
                report.findings.append(finding)
        return report

    def scan(
        self,
        domains: Iterable[str],
        max_workers: int = 10,
        cancel: Optional[threading.Event] = None,
        on_report: Optional[Callable[[DomainReport], None]] = None,
    ) -> ScanReport:
        domains = list(domains)
        cancel = cancel or threading.Event()
        reports: List[Optional[DomainReport]] = [None] * len(domains)
        if domains:
            with ThreadPoolExecutor(max_workers=self.probe_workers) as probe_pool, \
                    ThreadPoolExecutor(max_workers=max(1, int(max_workers))) as pool:
                futs = {pool.submit(self.analyze, d, probe_pool, cancel): i for i, d in enumerate(domains)}
                for f in as_completed(futs):
                    i = futs[f]
                    try:
                        reports[i] = f.result()
                    except Exception as e:
                        logger.info("unexpected error scanning %s", domains[i], exc_info=True)
                        name = normalize_domain(domains[i])
                        reports[i] = DomainReport(
                            domain=name,
                            error=f"unexpected error: {e}",
                            skipped=[Skipped(name, None, f"unexpected error: {e}")],
                        )
                    if on_report is not None:
                        on_report(reports[i])

        done = [r for r in reports if r is not None]
        findings, skipped = self.aggregator.merge(done)
        return ScanReport(domains=done, findings=findings, skipped=skipped, cancelled=cancel.is_set())

import csv
import json

FINDING_FIELDS = ["domain", "nameserver", "provider", "risk_level", "provider_hint", "rcode", "server"]
SKIPPED_FIELDS = ["domain", "nameserver", "reason"]


def write_json(data, path: str):
    with open(path, "w", encoding="utf-8") as f:
        json.dump(data, f, ensure_ascii=False, indent=2)


def write_csv(rows: list[dict], path: str, fieldnames: list[str]):
    """Stable column order; None and missing keys become empty strings."""
    with open(path, "w", encoding="utf-8", newline="") as f:
        w = csv.DictWriter(f, fieldnames=fieldnames, extrasaction="ignore")
        w.writeheader()
        w.writerows({k: ("" if r.get(k) is None else r.get(k)) for k in fieldnames} for r in rows)


def finding_rows(report) -> list[dict]:
    return [f.as_dict() for f in report.findings]


def skipped_rows(report) -> list[dict]:
    return [s.as_dict() for s in report.skipped]


def _check_dict(check, compact: bool) -> dict:
    out = {
        "nameserver": check.nameserver,
        "provider": check.provider,
        "provider_hint": check.provider_hint,
        "error": check.error,
    }
    if check.probe is not None:
        probe = {
            "status": check.probe.status.value,
            "rcode": check.probe.rcode,
            "server": check.probe.server,
            "authoritative": check.probe.authoritative,
        }
        if not compact:
            probe["raw"] = check.probe.raw
        out["probe"] = probe
    return out


def report_to_dict(report, compact: bool = False) -> dict:
    """Compact mode drops raw DNS responses and unmonitored nameserver checks."""
    domains = []
    for rep in report.domains:
        checks = [c for c in rep.checks if not compact or c.provider is not None]
        domains.append({
            "domain": rep.domain,
            "verdict": rep.verdict.value,
            "nameservers": rep.nameservers,
            "checks": [_check_dict(c, compact) for c in checks],
            "error": rep.error,
        })
    return {
        "cancelled": report.cancelled,
        "findings": finding_rows(report),
        "skipped": skipped_rows(report),
        "domains": domains,
    }


def write_report(report, prefix: str, compact: bool = False) -> list[str]:
    paths = [f"{prefix}.json", f"{prefix}.csv", f"{prefix}.skipped.csv"]
    write_json(report_to_dict(report, compact=compact), paths[0])
    write_csv(finding_rows(report), paths[1], FINDING_FIELDS)
    write_csv(skipped_rows(report), paths[2], SKIPPED_FIELDS)
    return paths

import argparse
import os
import signal
import sys
import threading

from colorama import Fore, Style, init

from delegation_middleware import DelegationMiddleware, Verdict
from discovery_middleware import MODES
from fingerprint_middleware import UNKNOWN, MalformedPattern, load_patterns, load_signatures
from input_middleware import read_input_file
from output_middleware import write_report
from progress_middleware import ProgressMiddleware
from resolver_middleware import DnsPythonResolver, normalize_domain, normalize_rdtype

# Windows-friendly colors
init(autoreset=True)

_HERE = os.path.dirname(os.path.abspath(__file__))


def _bump_nofile_limit():
    # one UDP socket per in-flight query
    if sys.platform.startswith("linux") or sys.platform == "darwin":
        try:
            import resource
            soft, hard = resource.getrlimit(resource.RLIMIT_NOFILE)
            new_soft = min(max(soft, 8192), hard)
            resource.setrlimit(resource.RLIMIT_NOFILE, (new_soft, hard))
        except (ImportError, ValueError, OSError):
            pass


_VERDICT_COLOR = {
    Verdict.VULNERABLE: Fore.RED,
    Verdict.SKIPPED: Fore.YELLOW,
    Verdict.PARTIAL: Fore.MAGENTA,
    Verdict.OK: Fore.CYAN,
}


def _paint(color: bool, verdict: Verdict, line: str) -> str:
    return (_VERDICT_COLOR[verdict] + line + Style.RESET_ALL) if color else line


def _short_line(rep) -> str:
    if rep.findings:
        parts = [f"{f.nameserver} ({f.provider}, {f.rcode})" for f in rep.findings]
        return f"[{rep.verdict.value}] {rep.domain} :: dangling delegation -> " + "; ".join(parts)
    if rep.error:
        return f"[{rep.verdict.value}] {rep.domain} :: {rep.error}"
    return f"[{rep.verdict.value}] {rep.domain} :: {len(rep.nameservers)} nameserver(s)"


def _summary_lines(rep) -> list:
    lines = [f"[{rep.verdict.value}] {rep.domain} | NS={rep.nameservers}"]
    for c in rep.checks:
        if c.provider is None:
            continue
        state = c.probe.rcode if c.probe is not None else f"skipped: {c.error}"
        lines.append(f"    {c.nameserver} | TRUSTED={c.provider} | PROVIDER={c.provider_hint} | {state}")
    for f in rep.findings:
        line = f"    ALERT {f.nameserver} answered {f.rcode}: possible takeover via {f.provider}"
        if f.provider_hint != UNKNOWN:
            line += f" ({f.provider_hint})"
        lines.append(line)
    if rep.error:
        lines.append(f"    skipped: {rep.error}")
    return lines


def _parse_threads(value: str) -> int:
    if str(value).lower() == "auto":
        return min(64, (os.cpu_count() or 4) * 2)
    try:
        n = int(value)
    except ValueError:
        raise argparse.ArgumentTypeError("must be an integer or 'auto'")
    if n < 1:
        raise argparse.ArgumentTypeError("must be at least 1")
    return n


def _parse_rdtype(value: str) -> str:
    try:
        return normalize_rdtype(value)
    except ValueError as e:
        raise argparse.ArgumentTypeError(str(e))


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="NSHaunt - dangling NS delegation (subdomain takeover) scanner",
        epilog="""Examples:
  python nshaunt.py --file domains.txt
  python nshaunt.py --domains vuln.example.com api.example.com
  python nshaunt.py --file domains.txt --mode trace --patterns patterns.yaml --threads auto
""",
        formatter_class=argparse.RawTextHelpFormatter
    )

    group = parser.add_mutually_exclusive_group(required=True)
    group.add_argument("--file", help="Path to input file with domains (one per line)")
    group.add_argument("--domains", nargs="+", help="One or more domains passed directly")

    parser.add_argument("--patterns",
                        default=os.environ.get("NSHAUNT_PATTERNS_FILE", os.path.join(_HERE, "patterns.yaml")),
                        help="Trusted nameserver patterns YAML (default: ./patterns.yaml)")
    parser.add_argument("--providers",
                        default=os.environ.get("NSHAUNT_PROVIDERS_FILE", os.path.join(_HERE, "providers.yaml")),
                        help="Provider label table YAML, cosmetic only (default: ./providers.yaml)")
    parser.add_argument("--mode", choices=MODES, default="direct",
                        help="Nameserver discovery: 'direct' = NS lookup, 'trace' = walk referrals from the root")
    parser.add_argument("--threads", type=_parse_threads, default=10,
                        help="Parallel domains (default: 10, or 'auto')")
    parser.add_argument("--probe-threads", type=_parse_threads, default=8,
                        help="Parallel nameserver probes (default: 8, or 'auto')")
    parser.add_argument("--timeout", type=float, default=float(os.environ.get("NSHAUNT_DNS_TIMEOUT", "5.0")),
                        help="Per-query timeout in seconds (default: 5.0)")
    parser.add_argument("--probe-type", type=_parse_rdtype, default="A",
                        help="Record type asked of each nameserver (default: A)")
    parser.add_argument("--resolver", action="append", default=[],
                        help="Recursive resolver IP for discovery (repeatable; default: system resolver)")

    parser.add_argument("--output", default=None, help="Output prefix (default: input file name or 'console_input')")
    parser.add_argument("--json-compact", action="store_true", help="Drop raw DNS responses from the JSON report")
    parser.add_argument("--quiet", action="store_true", help="Disable progress bar and live output")
    parser.add_argument("--logfile", default=None, help="Optional log file to write progress updates")
    parser.add_argument("--color", action="store_true", help="Enable colored output")
    parser.add_argument("--print", dest="print_mode", choices=["short", "summary", "both"], default="both",
                        help="Console verbosity: 'short' (live lines), 'summary' (final recap), or 'both' (default).")
    return parser


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)

    # Let fingerprint_middleware colorize warnings
    if args.color:
        os.environ["NSHAUNT_COLOR"] = "1"

    # Patterns first: a bad trust list aborts before any domain is scanned.
    try:
        patterns = load_patterns(args.patterns)
    except MalformedPattern as e:
        print(f"Invalid pattern configuration: {e}", file=sys.stderr)
        return 2
    signatures = load_signatures(args.providers)

    if args.file:
        domains = read_input_file(args.file)
        output_prefix = os.path.splitext(os.path.basename(args.file))[0]
    else:
        domains = list(dict.fromkeys(d for d in map(normalize_domain, args.domains) if d))
        output_prefix = "console_input"
    if args.output:
        output_prefix = args.output

    if not domains:
        print("No domains provided.", file=sys.stderr)
        return 2

    _bump_nofile_limit()
    resolver = DnsPythonResolver(timeout=args.timeout, nameservers=args.resolver or None)
    dm = DelegationMiddleware(
        patterns,
        resolver=resolver,
        mode=args.mode,
        probe_type=args.probe_type,
        signatures=signatures,
        probe_workers=args.probe_threads,
    )

    progress = ProgressMiddleware(
        total=len(domains),
        desc="Scanning",
        unit="domain",
        disable=args.quiet,
        log_file=args.logfile,
    )
    live = not args.quiet and args.print_mode in ("short", "both")

    def on_report(rep):
        if live and rep.verdict is not Verdict.OK:
            progress.write(_paint(args.color, rep.verdict, _short_line(rep)))
        progress.advance()

    # Ctrl-C: stop starting new work, let in-flight queries finish.
    cancel = threading.Event()
    previous = signal.getsignal(signal.SIGINT)

    def _on_sigint(signum, frame):
        if cancel.is_set():
            raise KeyboardInterrupt
        progress.write("Interrupted: finishing in-flight queries (Ctrl-C again to abort)…")
        cancel.set()

    signal.signal(signal.SIGINT, _on_sigint)
    try:
        progress.start()
        report = dm.scan(domains, max_workers=args.threads, cancel=cancel, on_report=on_report)
    finally:
        signal.signal(signal.SIGINT, previous)
        progress.close()

    paths = write_report(report, output_prefix, compact=args.json_compact)

    if not args.quiet and args.print_mode in ("summary", "both"):
        for rep in report.domains:
            for line in _summary_lines(rep):
                print(_paint(args.color, rep.verdict, line))
        print(f"{len(report.findings)} finding(s), {len(report.skipped)} skipped; wrote {', '.join(paths)}")

    return 1 if report.findings else 0


if __name__ == "__main__":
    sys.exit(main())

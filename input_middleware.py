import os

from resolver_middleware import normalize_domain


def read_input_file(path: str) -> list[str]:
    """
    Read domains from a file (one per line), stripping comments/empties.
    Domains are lower-cased without trailing dot; file order is kept,
    duplicates dropped.
    """
    if not os.path.isfile(path):
        return []
    seen = set()
    out = []
    with open(path, "r", encoding="utf-8", errors="ignore") as fh:
        for line in fh:
            s = normalize_domain(line.split("#", 1)[0])
            if not s or s in seen:
                continue
            out.append(s)
            seen.add(s)
    return out

import re
import sys
from pathlib import Path

# Patterns for common secret shapes
PATTERNS = [
    re.compile(r"(?:api|secret|token|key)[^\n]{0,40}['\"][A-Za-z0-9_-]{16,}['\"]", re.IGNORECASE),
    # Etherscan keys are 34 upper-case alphanumerics, often pasted into query strings
    re.compile(r"apikey=[A-Z0-9]{30,}"),
    re.compile(r"(?i)etherscan(_|-)?api(_|-)?key\s*[:=]\s*['\"]?[A-Z0-9]{30,}"),
    re.compile(r"(?i)coingecko(_|-)?api(_|-)?key\s*[:=]\s*['\"]?[A-Za-z0-9-]{16,}"),
    re.compile(r"(?i)debug(_|-)?auth(_|-)?token\s*[:=]\s*['\"]?[A-Za-z0-9_-]{8,}"),
]

ALLOWLIST_EXT = {".png", ".jpg", ".jpeg", ".gif", ".pdf", ".db"}
# contract addresses are public
ADDRESS_RE = re.compile(r"0x[0-9a-fA-F]{40}\b")
# quoted environment variable names such as "ETHERSCAN_API_KEY" are not values
ENV_NAME_RE = re.compile(r"['\"][A-Z][A-Z0-9]*(?:_[A-Z0-9]+)+['\"]$")


def file_text(p: Path) -> str:
    try:
        return p.read_text(encoding="utf-8", errors="ignore")
    except OSError:
        return ""


def find_violations(paths):
    violations = []
    for path in paths:
        p = Path(path)
        if not p.is_file() or p.suffix.lower() in ALLOWLIST_EXT:
            continue
        text = file_text(p)
        for pat in PATTERNS:
            for m in pat.finditer(text):
                frag = m.group(0)
                if "YOUR" in frag.upper() or "PLACEHOLDER" in frag.upper() or "${" in frag:
                    continue
                if ADDRESS_RE.search(frag) or ENV_NAME_RE.search(frag):
                    continue
                if "# secrets: allow" in text[max(0, m.start()-120):m.end()+120]:
                    continue
                violations.append((str(p), frag[:80]))
    return violations


def main(paths):
    violations = find_violations(paths)
    if violations:
        print("Potential secrets detected:")
        for f, frag in violations:
            print(f" - {f}: {frag}")
        print("If these are false positives, add an inline comment: # secrets: allow")
        sys.exit(1)
    sys.exit(0)


if __name__ == "__main__":
    main(sys.argv[1:])

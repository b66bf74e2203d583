"""BLAST+ tool discovery and version checks.

blastbait needs blastn (and makeblastdb for baiting) from NCBI BLAST+; the
-perc_identity/-max_hsps options used here appeared in 2.2.31.
"""

from __future__ import annotations

import re
import subprocess
from typing import Optional, Tuple


MIN_BLAST_VERSION = (2, 2, 31)
_VER_RE = re.compile(r"(\d+)\.(\d+)\.(\d+)")


def _parse_version(text: str) -> Optional[Tuple[int, int, int]]:
    m = _VER_RE.search(text or "")
    if not m:
        return None
    return int(m.group(1)), int(m.group(2)), int(m.group(3))


def get_tool_version(exe: str) -> Optional[Tuple[int, int, int]]:
    """Return (major, minor, patch) for a BLAST+ executable, or None if unknown."""
    try:
        r = subprocess.run([exe, "-version"], capture_output=True, text=True, check=False)
    except (FileNotFoundError, PermissionError):
        return None
    txt = (r.stdout or "") + "\n" + (r.stderr or "")
    return _parse_version(txt)


def require_blast(*exes: str, minimum: Tuple[int, int, int] = MIN_BLAST_VERSION) -> None:
    """Exit with a message unless every executable is present and recent enough."""
    want = ".".join(str(x) for x in minimum)
    for exe in exes:
        v = get_tool_version(exe)
        if v is None:
            raise SystemExit(f"'{exe}' was not found on PATH. Install NCBI BLAST+ (>= {want}) and try again.")
        if v < minimum:
            raise SystemExit(
                f"BLAST+ {want}+ is required. Detected {exe}={'.'.join(str(x) for x in v)}. "
                "Please upgrade BLAST+ and try again."
            )

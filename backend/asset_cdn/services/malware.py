"""Heuristic malware scan.

Best-effort signature matching, not a guarantee. It catches the common
upload attacks against a public CDN:

1. Executables renamed to an allowed extension (PE, ELF, Mach-O, shebang
   scripts) - checked at offset 0 only
2. Server-side script injection (PHP/ASP/JSP tags) anywhere in the file,
   including inside image metadata
3. Client-side script in markup (<script>, javascript: URIs) and inline
   event handlers in SVG
4. Dangerous call patterns (eval/system/exec/...)

The whole file is read in overlapping chunks so a signature split across a
chunk boundary is still found. Patterns are at least five bytes long to keep
false positives on compressed binary data negligible.
"""
import logging
import re
from dataclasses import dataclass, field
from pathlib import Path

import aiofiles

from asset_cdn.services.categories import IMAGE

logger = logging.getLogger(__name__)

CHUNK_SIZE = 1024 * 1024
OVERLAP = 64

EXECUTABLE_HEADERS: list[tuple[bytes, str]] = [
    (b"MZ", "Windows executable header"),
    (b"\x7fELF", "ELF executable header"),
    (b"\xfe\xed\xfa\xce", "Mach-O executable header"),
    (b"\xfe\xed\xfa\xcf", "Mach-O executable header"),
    (b"\xce\xfa\xed\xfe", "Mach-O executable header"),
    (b"\xcf\xfa\xed\xfe", "Mach-O executable header"),
    (b"#!/", "Script shebang"),
]

CONTENT_SIGNATURES: list[tuple[re.Pattern[bytes], str]] = [
    (re.compile(rb"<\?php", re.IGNORECASE), "PHP code"),
    (re.compile(rb"<%@\s*page", re.IGNORECASE), "JSP/ASP directive"),
    (re.compile(rb"<script[\s>/]", re.IGNORECASE), "Embedded script tag"),
    (re.compile(rb"javascript\s*:", re.IGNORECASE), "javascript: URI"),
    (re.compile(rb"\b(?:eval|assert)\s*\(\s*(?:base64_decode|gzinflate|str_rot13|\$_)", re.IGNORECASE),
     "Obfuscated code execution"),
    (re.compile(rb"\b(?:shell_exec|passthru|proc_open|popen|pcntl_exec)\s*\(", re.IGNORECASE),
     "Shell execution call"),
    (re.compile(rb"\b(?:system|exec)\s*\(\s*[\$'\"]", re.IGNORECASE), "Shell execution call"),
    (re.compile(rb"\bbase64_decode\s*\(", re.IGNORECASE), "Encoded payload decoder"),
    (re.compile(rb"document\.write\s*\(", re.IGNORECASE), "DOM injection call"),
]

# Inline event handlers only matter in markup that a browser will render
SVG_SIGNATURES: list[tuple[re.Pattern[bytes], str]] = [
    (re.compile(rb"\son[a-z]{3,20}\s*=", re.IGNORECASE), "Inline event handler"),
    (re.compile(rb"<foreignObject", re.IGNORECASE), "SVG foreignObject"),
]


@dataclass
class MalwareScanResult:
    safe: bool
    threats: list[str] = field(default_factory=list)

    @property
    def details(self) -> str:
        return ", ".join(self.threats) if self.threats else "No threats detected"


def _looks_like_markup(head: bytes) -> bool:
    return head.lstrip(b"\xef\xbb\xbf \t\r\n").startswith(b"<")


class MalwareScanner:
    """Signature scanner. Stateless; one instance can be shared."""

    def __init__(self, chunk_size: int = CHUNK_SIZE):
        self.chunk_size = chunk_size

    def scan_bytes(self, data: bytes, category: str | None = None, *, at_start: bool = True) -> list[str]:
        threats: list[str] = []
        if at_start:
            for header, name in EXECUTABLE_HEADERS:
                if data.startswith(header):
                    threats.append(name)
                    break
        signatures = list(CONTENT_SIGNATURES)
        if category == IMAGE and (not at_start or _looks_like_markup(data[:512])):
            signatures += SVG_SIGNATURES
        for pattern, name in signatures:
            if pattern.search(data):
                threats.append(name)
        return threats

    async def scan_file(self, file_path: Path | str, category: str | None = None) -> MalwareScanResult:
        """Scan a file on disk. IO errors propagate to the caller."""
        found: list[str] = []
        markup = False
        tail = b""
        first = True
        async with aiofiles.open(file_path, "rb") as f:
            while True:
                chunk = await f.read(self.chunk_size)
                if not chunk:
                    break
                if first:
                    markup = _looks_like_markup(chunk[:512])
                    threats = self.scan_bytes(chunk, category if markup else None, at_start=True)
                    first = False
                else:
                    threats = self.scan_bytes(tail + chunk, category if markup else None, at_start=False)
                for threat in threats:
                    if threat not in found:
                        found.append(threat)
                tail = chunk[-OVERLAP:]

        if found:
            logger.warning(f"Malware heuristics matched in {Path(file_path).name}: {', '.join(found)}")
        return MalwareScanResult(safe=not found, threats=found)

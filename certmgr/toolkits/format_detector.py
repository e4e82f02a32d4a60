"""Certificate file format detection.

Detection goes by extension for container formats and by content for PEM
and DER, which share extensions in the wild.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from pathlib import Path

from certmgr.models import CertificateFormat

_PEM_HEADER = re.compile(r"-----BEGIN\s+([^-]+)-----")
_ENCRYPTED_KEY = re.compile(r"-----BEGIN\s+ENCRYPTED\s+PRIVATE\s+KEY-----")

PKCS12_EXTENSIONS = {".p12", ".pfx"}
PKCS7_EXTENSIONS = {".p7b", ".p7c"}
CERTIFICATE_EXTENSIONS = {".cer", ".crt", ".pem", ".der", *PKCS12_EXTENSIONS, *PKCS7_EXTENSIONS}


@dataclass
class DetectionResult:
    """What a file turned out to contain."""

    format: CertificateFormat
    block_types: list[str] = field(default_factory=list)
    is_encrypted: bool = False

    @property
    def has_multiple_blocks(self) -> bool:
        return len(self.block_types) > 1


class FileFormatDetector:
    """Detects PEM, DER, PKCS#12 and PKCS#7 files."""

    def detect_format(self, file_path: str | Path) -> DetectionResult:
        """Detect the format of ``file_path``.

        Raises:
            OSError: If the file cannot be read.

        """
        path = Path(file_path)
        extension = path.suffix.lower()

        if extension in PKCS12_EXTENSIONS:
            return DetectionResult(CertificateFormat.PKCS12, ["PKCS12"], is_encrypted=True)
        if extension in PKCS7_EXTENSIONS:
            return DetectionResult(CertificateFormat.PKCS7, ["PKCS7"])

        content = path.read_bytes()
        text = content.decode("utf-8", errors="replace")
        if "-----BEGIN" in text:
            block_types = [match.strip() for match in _PEM_HEADER.findall(text)]
            encrypted = bool(_ENCRYPTED_KEY.search(text)) or "ENCRYPTED" in text
            return DetectionResult(CertificateFormat.PEM, block_types, is_encrypted=encrypted)

        if self.is_der(content):
            return DetectionResult(CertificateFormat.DER, ["CERTIFICATE"])

        return DetectionResult(CertificateFormat.UNKNOWN)

    @staticmethod
    def is_der(content: bytes) -> bool:
        """ASN.1 SEQUENCE tag followed by a long-form length."""
        return len(content) >= 2 and content[0] == 0x30 and bool(content[1] & 0x80)

    @staticmethod
    def is_certificate_file(file_path: str | Path) -> bool:
        return Path(file_path).suffix.lower() in CERTIFICATE_EXTENSIONS

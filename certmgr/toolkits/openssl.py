"""OpenSSL toolkit adapter.

Wraps the openssl operations batch jobs need: certificate conversion,
public key extraction, PKCS#12 bundling and reading validity dates from
PEM, DER, PKCS#7 and PKCS#12 files.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from pathlib import Path

from certmgr.config.config import get_config
from certmgr.executor.base import (
    CommandInvocation,
    CommandResult,
    ErrorCode,
    OperationResult,
    failure_from_result,
)
from certmgr.executor.catalogue import CERTIFICATE_MARKER, PUBLIC_KEY_MARKER
from certmgr.executor.command_executor import CommandExecutor
from certmgr.executor.fallback import FallbackExecutionStrategy
from certmgr.models import CertificateDates, CertificateFormat
from certmgr.toolkits.format_detector import DetectionResult, FileFormatDetector
from certmgr.toolkits.paths import check_program
from certmgr.utils.sanitize import sanitize_path
from certmgr.utils.tempfiles import TempFileManager

logger = logging.getLogger(__name__)

# Environment variables carrying passwords to openssl
P12_PASS_ENV = "CERTMGR_P12_PASS"
P12_PASS_OUT_ENV = "CERTMGR_P12_PASS_OUT"
KEY_PASS_ENV = "CERTMGR_KEY_PASS"

_OPENSSL_DATE_FORMAT = "%b %d %H:%M:%S %Y GMT"


def parse_openssl_date(value: str) -> float:
    """Parse ``notBefore``/``notAfter`` output into a UNIX timestamp.

    Raises:
        ValueError: If the value is not in openssl's default date format.

    """
    normalized = " ".join(value.split())
    parsed = datetime.strptime(normalized, _OPENSSL_DATE_FORMAT)
    return parsed.replace(tzinfo=timezone.utc).timestamp()


def parse_x509_fields(text: str) -> CertificateDates:
    """Parse ``x509 -noout -subject -issuer -serial -startdate -enddate`` output.

    Raises:
        ValueError: If either validity date is missing or malformed.

    """
    fields: dict[str, str] = {}
    for line in text.splitlines():
        key, sep, value = line.partition("=")
        if sep:
            fields[key.strip().lower()] = value.strip()

    if "notbefore" not in fields or "notafter" not in fields:
        msg = "Validity dates missing from openssl output"
        raise ValueError(msg)

    return CertificateDates(
        subject=fields.get("subject", ""),
        issuer=fields.get("issuer", ""),
        serial_number=fields.get("serial", ""),
        valid_from=parse_openssl_date(fields["notbefore"]),
        valid_to=parse_openssl_date(fields["notafter"]),
    )


def describe_non_certificate(detection: DetectionResult) -> str | None:
    """Explain what a PEM file holds when it holds no certificate."""
    if "CERTIFICATE" in detection.block_types:
        return None
    if any("PRIVATE KEY" in block for block in detection.block_types):
        return "File contains a private key, not a certificate"
    if any("CERTIFICATE REQUEST" in block for block in detection.block_types):
        return "File contains a certificate signing request, not a certificate"
    if any("PUBLIC KEY" in block for block in detection.block_types):
        return "File contains a public key, not a certificate"
    return None


class OpenSSLToolkit:
    """Certificate operations backed by the openssl CLI."""

    def __init__(
        self,
        openssl_path: str | None = None,
        executor: CommandExecutor | None = None,
        fallback: FallbackExecutionStrategy | None = None,
        detector: FileFormatDetector | None = None,
        temp_files: TempFileManager | None = None,
    ):
        """Initialize openssl toolkit.

        Args:
            openssl_path: Executable path, defaults to ``toolkits.openssl_path``
            executor: Runner for one-shot commands
            fallback: Compatibility ladder for PKCS#12 commands
            detector: File format detector
            temp_files: Scratch file manager

        """
        config = get_config()
        self.openssl_path = (
            openssl_path if openssl_path is not None else config.toolkits.openssl_path
        )
        self.executor = executor or CommandExecutor()
        self.fallback = fallback or FallbackExecutionStrategy(self.executor)
        self.detector = detector or FileFormatDetector()
        self.temp_files = temp_files or TempFileManager(config.execution.temp_dir_name)

    def _check_path(self) -> OperationResult[str]:
        return check_program(
            self.openssl_path,
            ErrorCode.OPENSSL_NOT_CONFIGURED,
            ErrorCode.OPENSSL_EXECUTION_FAILED,
            "OpenSSL",
        )

    async def _run(self, args: list[str], env: dict[str, str] | None = None) -> CommandResult:
        return await self.executor.run(
            CommandInvocation(program=self.openssl_path or "", args=args, env=env or {})
        )

    def _failed(self, result: CommandResult, message: str) -> OperationResult:
        return failure_from_result(
            result,
            message,
            ErrorCode.OPENSSL_EXECUTION_FAILED,
            ErrorCode.OPENSSL_NOT_CONFIGURED,
        )

    async def check_available(self) -> OperationResult[str]:
        """Validate the configured path and return the ``openssl version`` line."""
        checked = self._check_path()
        if not checked.success:
            return checked

        result = await self._run(["version"])
        if not result.success:
            return self._failed(
                result, "Could not run OpenSSL; check that the path is an OpenSSL executable"
            )
        return OperationResult.ok(result.stdout.strip())

    async def convert_certificate(
        self,
        input_path: str | Path,
        output_path: str | Path,
        output_format: CertificateFormat,
        input_format: CertificateFormat | None = None,
    ) -> OperationResult[str]:
        """Convert a certificate between PEM and DER.

        Args:
            input_path: Source certificate
            output_path: Destination file
            output_format: PEM or DER
            input_format: Source format, detected from content when None

        Returns:
            OperationResult carrying the output path

        """
        checked = self._check_path()
        if not checked.success:
            return checked
        if not Path(input_path).is_file():
            return OperationResult.fail(
                ErrorCode.FILE_NOT_FOUND, f"File not found: {sanitize_path(str(input_path))}"
            )

        if input_format is None:
            input_format = self.detector.detect_format(input_path).format
        supported = {CertificateFormat.PEM, CertificateFormat.DER}
        if input_format not in supported or output_format not in supported:
            return OperationResult.fail(
                ErrorCode.INVALID_FORMAT,
                f"Cannot convert {input_format.value} to {output_format.value}; "
                "only PEM and DER certificates are supported",
            )

        args = ["x509"]
        if input_format is CertificateFormat.DER:
            args += ["-inform", "der"]
        args += [
            "-in",
            str(input_path),
            "-outform",
            "der" if output_format is CertificateFormat.DER else "pem",
            "-out",
            str(output_path),
        ]

        Path(output_path).parent.mkdir(parents=True, exist_ok=True)
        result = await self._run(args)
        if not result.success:
            return self._failed(result, "Failed to convert certificate")
        return OperationResult.ok(str(output_path))

    async def extract_public_key(
        self,
        cert_path: str | Path,
        output_path: str | Path,
    ) -> OperationResult[str]:
        """Write the public key of a certificate to ``output_path`` as PEM."""
        checked = self._check_path()
        if not checked.success:
            return checked
        if not Path(cert_path).is_file():
            return OperationResult.fail(
                ErrorCode.FILE_NOT_FOUND, f"File not found: {sanitize_path(str(cert_path))}"
            )

        args = ["x509", "-in", str(cert_path), "-pubkey", "-noout"]
        if self.detector.detect_format(cert_path).format is CertificateFormat.DER:
            args[1:1] = ["-inform", "der"]

        result = await self._run(args)
        if not result.success:
            return self._failed(result, "Failed to extract public key")
        if PUBLIC_KEY_MARKER not in result.stdout:
            return OperationResult.fail(
                ErrorCode.INVALID_FORMAT, "openssl produced no public key block"
            )

        output = Path(output_path)
        output.parent.mkdir(parents=True, exist_ok=True)
        output.write_text(result.stdout, encoding="utf-8")
        return OperationResult.ok(str(output))

    async def extract_pkcs12_certificate(
        self,
        p12_path: str | Path,
        password: str | None = None,
    ) -> OperationResult[str]:
        """Extract the client certificate of a PKCS#12 file as PEM text.

        Runs through the compatibility ladder so files using deprecated
        algorithms open on toolkits that disable them by default.
        """
        checked = self._check_path()
        if not checked.success:
            return checked

        invocation = CommandInvocation(
            program=self.openssl_path or "",
            args=[
                "pkcs12",
                "-in",
                str(p12_path),
                "-nokeys",
                "-clcerts",
                "-passin",
                f"env:{P12_PASS_ENV}",
            ],
            env={P12_PASS_ENV: password or ""},
        )
        result = await self.fallback.execute_with_fallback(invocation)
        if not result.success:
            return self._failed(result, "Could not extract the certificate from the PKCS#12 file")
        if CERTIFICATE_MARKER not in result.stdout:
            return OperationResult.fail(
                ErrorCode.OPENSSL_EXECUTION_FAILED,
                "PKCS#12 file holds no certificate",
                result.stderr.strip() or None,
            )
        logger.debug(
            "Extracted certificate from %s using %s variant",
            sanitize_path(str(p12_path)),
            result.metadata.get("variant"),
        )
        return OperationResult.ok(result.stdout)

    async def create_pkcs12(
        self,
        cert_path: str | Path,
        key_path: str | Path,
        output_path: str | Path,
        password: str,
        chain_path: str | Path | None = None,
        friendly_name: str | None = None,
        key_password: str | None = None,
    ) -> OperationResult[str]:
        """Bundle a certificate and its private key into a PKCS#12 file.

        Passwords reach openssl through environment variables and the call
        runs through the compatibility ladder like the other PKCS#12 commands.

        Args:
            cert_path: PEM certificate
            key_path: PEM private key
            output_path: PKCS#12 file to write
            password: Export password of the new file
            chain_path: Optional CA chain to include
            friendly_name: Optional ``-name`` of the entry
            key_password: Passphrase of an encrypted private key

        Returns:
            OperationResult carrying the output path

        """
        checked = self._check_path()
        if not checked.success:
            return checked
        for path in (cert_path, key_path):
            if not Path(path).is_file():
                return OperationResult.fail(
                    ErrorCode.FILE_NOT_FOUND, f"File not found: {sanitize_path(str(path))}"
                )

        args = [
            "pkcs12",
            "-export",
            "-in",
            str(cert_path),
            "-inkey",
            str(key_path),
            "-out",
            str(output_path),
        ]
        if chain_path is not None:
            if not Path(chain_path).is_file():
                return OperationResult.fail(
                    ErrorCode.FILE_NOT_FOUND,
                    f"File not found: {sanitize_path(str(chain_path))}",
                )
            args += ["-certfile", str(chain_path)]
        if friendly_name:
            args += ["-name", friendly_name]

        env = {P12_PASS_OUT_ENV: password}
        args += ["-passout", f"env:{P12_PASS_OUT_ENV}"]
        if key_password:
            env[KEY_PASS_ENV] = key_password
            args += ["-passin", f"env:{KEY_PASS_ENV}"]

        Path(output_path).parent.mkdir(parents=True, exist_ok=True)
        result = await self.fallback.execute_with_fallback(
            CommandInvocation(program=self.openssl_path or "", args=args, env=env)
        )
        if not result.success:
            return self._failed(result, "Failed to create the PKCS#12 file")
        if not Path(output_path).is_file():
            return OperationResult.fail(
                ErrorCode.OPENSSL_EXECUTION_FAILED,
                "openssl reported success but wrote no PKCS#12 file",
                result.stderr.strip() or None,
            )
        logger.debug(
            "Created %s using %s variant",
            sanitize_path(str(output_path)),
            result.metadata.get("variant"),
        )
        return OperationResult.ok(str(output_path))

    async def read_certificate_dates(
        self,
        cert_path: str | Path,
        password: str | None = None,
    ) -> OperationResult[CertificateDates]:
        """Read subject, issuer, serial and validity dates of a certificate.

        Args:
            cert_path: PEM, DER, PKCS#7 or PKCS#12 file
            password: PKCS#12 password

        Returns:
            OperationResult carrying the parsed fields

        """
        checked = self._check_path()
        if not checked.success:
            return OperationResult(success=False, error=checked.error)
        if not Path(cert_path).is_file():
            return OperationResult.fail(
                ErrorCode.FILE_NOT_FOUND, f"File not found: {sanitize_path(str(cert_path))}"
            )

        detection = self.detector.detect_format(cert_path)
        if detection.format is CertificateFormat.PKCS12:
            extracted = await self.extract_pkcs12_certificate(cert_path, password)
            if not extracted.success:
                return OperationResult(success=False, error=extracted.error)
            return await self._dates_from_pem_text(extracted.data or "", Path(cert_path).name)
        if detection.format is CertificateFormat.PKCS7:
            result = await self._run(["pkcs7", "-print_certs", "-in", str(cert_path)])
            if not result.success or CERTIFICATE_MARKER not in result.stdout:
                return self._failed(result, "Could not read certificates from the PKCS#7 file")
            return await self._dates_from_pem_text(result.stdout, Path(cert_path).name)
        if detection.format is CertificateFormat.UNKNOWN:
            return OperationResult.fail(
                ErrorCode.INVALID_FORMAT, "File is neither PEM nor DER encoded"
            )

        if detection.format is CertificateFormat.PEM:
            reason = describe_non_certificate(detection)
            if reason is not None:
                return OperationResult.fail(ErrorCode.INVALID_FORMAT, reason)

        return await self._dates_from_file(
            cert_path, der=detection.format is CertificateFormat.DER
        )

    async def _dates_from_file(
        self, cert_path: str | Path, der: bool = False
    ) -> OperationResult[CertificateDates]:
        args = ["x509", "-in", str(cert_path), "-noout"]
        if der:
            args += ["-inform", "der"]
        args += ["-subject", "-issuer", "-serial", "-startdate", "-enddate"]

        result = await self._run(args)
        if not result.success:
            return self._failed(result, "Failed to read certificate")
        try:
            return OperationResult.ok(parse_x509_fields(result.stdout))
        except ValueError as e:
            return OperationResult.fail(
                ErrorCode.INVALID_FORMAT, "Could not parse certificate dates", str(e)
            )

    async def _dates_from_pem_text(
        self, pem_text: str, source_name: str
    ) -> OperationResult[CertificateDates]:
        with self.temp_files.scratch_file(f"{Path(source_name).stem}.pem") as temp_pem:
            temp_pem.write_text(pem_text, encoding="utf-8")
            return await self._dates_from_file(temp_pem)

"""keytool adapter.

keytool reads passwords from stdin when it has no console, so every
operation runs through the interactive session driver and secrets never
appear on the command line unless a caller asks for it explicitly.
"""

from __future__ import annotations

import logging
import re
from pathlib import Path

from certmgr.config.config import get_toolkit_config
from certmgr.executor.base import (
    CommandResult,
    ErrorCode,
    ErrorKind,
    OperationResult,
    failure_from_result,
)
from certmgr.executor.catalogue import (
    KEYTOOL_ALIAS_EXISTS,
    KEYTOOL_ALIAS_MISSING,
    KEYTOOL_KEYSTORE_MISSING,
    KEYTOOL_VERSION,
    contains_auth_failure,
)
from certmgr.executor.interactive import InteractiveSessionDriver, SecretBundle
from certmgr.toolkits.paths import check_program, resolve_keytool_path
from certmgr.utils.exceptions import ToolkitError
from certmgr.utils.sanitize import sanitize_log

logger = logging.getLogger(__name__)

_ALIAS_LINE = re.compile(r"^([^,]+),\s+")
_ALIAS_UNSAFE = re.compile(r"[^a-zA-Z0-9_-]")

# keytool refuses shorter new passwords
MIN_PASSWORD_LENGTH = 6

STORE_TYPES = ("JKS", "PKCS12", "JCEKS")
KEY_ALGORITHMS = ("RSA", "EC", "DSA")

_INIT_ALIAS = "certmgr_init"
_INIT_DNAME = "CN=certmgr,O=certmgr,C=XX"

# Read by keytool through -keypass:env so key passwords stay off the command line
KEY_PASS_ENV = "CERTMGR_KEYTOOL_KEY_PASS"


def make_alias(prefix: str, file_path: str | Path) -> str:
    """Alias for an imported file: prefix + file stem, unsafe characters as ``_``."""
    return _ALIAS_UNSAFE.sub("_", f"{prefix}{Path(file_path).stem}")


def keystore_type_for(path: str | Path) -> str:
    """Keystore type implied by a file extension; JKS when unknown."""
    suffix = Path(path).suffix.lower()
    if suffix in {".p12", ".pfx"}:
        return "PKCS12"
    if suffix == ".jceks":
        return "JCEKS"
    return "JKS"


def _key_pass_args(store_type: str, key_pass: str) -> tuple[list[str], dict[str, str]]:
    # PKCS12 keeps one password for the store and its keys
    if store_type == "PKCS12":
        return [], {}
    return ["-keypass:env", KEY_PASS_ENV], {KEY_PASS_ENV: key_pass}


def _store_type(store_type: str | None, path: str | Path) -> str:
    if store_type is None:
        return keystore_type_for(path)
    normalized = store_type.upper()
    if normalized not in STORE_TYPES:
        raise ToolkitError(
            f"Unsupported keystore type: {store_type}",
            {"supported": ", ".join(STORE_TYPES)},
        )
    return normalized


def classify_keytool_error(stderr: str) -> tuple[ErrorCode, str]:
    """Map keytool diagnostics to an error code and a short message."""
    if contains_auth_failure(stderr):
        return ErrorCode.INVALID_PASSWORD, "Incorrect keystore password"
    if KEYTOOL_ALIAS_EXISTS.search(stderr):
        return ErrorCode.ALIAS_EXISTS, "Alias already exists in the keystore"
    if KEYTOOL_ALIAS_MISSING.search(stderr):
        return ErrorCode.ALIAS_NOT_FOUND, "Alias does not exist in the keystore"
    if KEYTOOL_KEYSTORE_MISSING in stderr.lower():
        return ErrorCode.FILE_NOT_FOUND, "Keystore file does not exist"

    lines = [
        line.strip()
        for line in stderr.splitlines()
        if line.strip() and "Warning:" not in line
    ]
    message = " ".join(lines[:3]) or "Unknown keytool error"
    return ErrorCode.KEYTOOL_EXECUTION_FAILED, sanitize_log(message)


def parse_alias_list(stdout: str) -> list[str]:
    """Extract alias names from ``keytool -list`` output."""
    aliases = []
    for line in stdout.splitlines():
        if "Keystore type:" in line or "Keystore provider:" in line:
            continue
        match = _ALIAS_LINE.match(line)
        if match:
            aliases.append(match.group(1).strip())
    return aliases


class KeytoolToolkit:
    """Keystore operations backed by the keytool CLI."""

    def __init__(
        self,
        jdk_root: str | None = None,
        driver: InteractiveSessionDriver | None = None,
    ):
        """Initialize keytool toolkit.

        Args:
            jdk_root: JDK installation root, defaults to ``toolkits.jdk_root_path``
            driver: Session driver, built for the resolved keytool path when None

        """
        if jdk_root is None:
            jdk_root = get_toolkit_config().jdk_root_path
        self.jdk_root = jdk_root
        self.driver = driver or InteractiveSessionDriver(resolve_keytool_path(jdk_root))

    @property
    def keytool_path(self) -> str | None:
        return self.driver.program

    def set_jdk_root(self, jdk_root: str | None) -> None:
        """Point the toolkit at another JDK."""
        self.jdk_root = jdk_root
        self.driver.program = resolve_keytool_path(jdk_root)

    def _failed(self, result: CommandResult, message: str) -> OperationResult:
        if result.error_kind in {ErrorKind.CONFIGURATION, ErrorKind.SPAWN, ErrorKind.TIMEOUT}:
            return failure_from_result(
                result,
                message,
                ErrorCode.KEYTOOL_EXECUTION_FAILED,
                ErrorCode.JDK_NOT_CONFIGURED,
            )
        code, reason = classify_keytool_error(result.stderr or result.stdout)
        details = sanitize_log(result.stderr.strip()) or None
        return OperationResult.fail(code, f"{message}: {reason}", details)

    async def check_available(self) -> OperationResult[str]:
        """Validate the keytool path and return its major version if printed."""
        if not self.jdk_root:
            return OperationResult.fail(ErrorCode.JDK_NOT_CONFIGURED, "JDK path is not configured")
        checked = check_program(
            self.keytool_path,
            ErrorCode.JDK_NOT_CONFIGURED,
            ErrorCode.KEYTOOL_EXECUTION_FAILED,
            "keytool",
        )
        if not checked.success:
            return checked

        result = await self.driver.run_direct(["-help"])
        if result.error_kind in {ErrorKind.SPAWN, ErrorKind.TIMEOUT}:
            return self._failed(result, "Could not run keytool")
        if "keytool" not in result.output.lower():
            return OperationResult.fail(
                ErrorCode.KEYTOOL_EXECUTION_FAILED, "keytool did not respond as expected"
            )
        match = KEYTOOL_VERSION.search(result.output)
        return OperationResult.ok(match.group(1) if match else "unknown")

    async def list_aliases(self, keystore: str | Path, password: str) -> OperationResult[list[str]]:
        """List the aliases of a keystore."""
        result = await self.driver.run_interactive(
            ["-list", "-keystore", str(keystore)],
            SecretBundle(store_pass=password),
        )
        if not result.success:
            return self._failed(result, "Failed to list keystore")
        return OperationResult.ok(parse_alias_list(result.stdout))

    async def import_certificate(
        self,
        keystore: str | Path,
        password: str,
        alias: str,
        cert_path: str | Path,
        trust_ca_certs: bool = True,
    ) -> OperationResult[str]:
        """Import a trusted certificate under ``alias``.

        Returns:
            OperationResult carrying the alias

        """
        args = [
            "-importcert",
            "-alias",
            alias,
            "-file",
            str(cert_path),
            "-keystore",
            str(keystore),
            "-noprompt",
        ]
        if trust_ca_certs:
            args.append("-trustcacerts")

        result = await self.driver.run_interactive(
            args, SecretBundle(store_pass=password, trust_decision=True)
        )
        if not result.success:
            return self._failed(result, f"Failed to import {alias}")
        logger.debug("Imported %s into keystore", alias)
        return OperationResult.ok(alias)

    @staticmethod
    def _short_password(password: str) -> OperationResult | None:
        if len(password) < MIN_PASSWORD_LENGTH:
            return OperationResult.fail(
                ErrorCode.INVALID_PASSWORD,
                f"Password must be at least {MIN_PASSWORD_LENGTH} characters",
            )
        return None

    async def create_keystore(
        self,
        path: str | Path,
        password: str,
        store_type: str | None = None,
    ) -> OperationResult[str]:
        """Create an empty keystore.

        keytool has no command for an empty store, so a throwaway key pair
        is generated and deleted again.

        Args:
            path: Keystore file to create
            password: Store password
            store_type: JKS, PKCS12 or JCEKS, taken from the extension when None

        Returns:
            OperationResult carrying the keystore path

        Raises:
            ToolkitError: If ``store_type`` is not supported

        """
        store_type = _store_type(store_type, path)
        rejected = self._short_password(password)
        if rejected is not None:
            return rejected
        if Path(path).exists():
            return OperationResult.fail(
                ErrorCode.KEYTOOL_EXECUTION_FAILED, "Keystore file already exists"
            )

        key_args, env = _key_pass_args(store_type, password)
        Path(path).parent.mkdir(parents=True, exist_ok=True)
        result = await self.driver.run_interactive(
            [
                "-genkeypair",
                "-alias",
                _INIT_ALIAS,
                "-keyalg",
                "RSA",
                "-keysize",
                "2048",
                "-validity",
                "1",
                "-dname",
                _INIT_DNAME,
                "-keystore",
                str(path),
                "-storetype",
                store_type,
                *key_args,
            ],
            SecretBundle(store_pass=password),
            env=env,
        )
        if not result.success:
            return self._failed(result, "Failed to create keystore")

        deleted = await self.delete_alias(path, password, _INIT_ALIAS)
        if not deleted.success:
            logger.warning(
                "Could not remove the initial entry from the new keystore: %s",
                deleted.error_message,
            )
        logger.info("Created %s keystore", store_type)
        return OperationResult.ok(str(path))

    async def generate_keypair(
        self,
        keystore: str | Path,
        store_pass: str,
        alias: str,
        algorithm: str = "RSA",
        key_size: int = 2048,
        curve: str = "secp256r1",
        validity: int = 365,
        dname: str = "CN=localhost",
        key_pass: str | None = None,
        store_type: str | None = None,
    ) -> OperationResult[str]:
        """Generate a key pair with a self-signed certificate under ``alias``.

        RSA and DSA keys use ``key_size``, EC keys use ``curve``. The key
        password, the store password when None, reaches keytool through the
        environment; PKCS12 stores keep one password for both.

        Raises:
            ToolkitError: If the algorithm or store type is not supported

        """
        algorithm = algorithm.upper()
        if algorithm not in KEY_ALGORITHMS:
            raise ToolkitError(
                f"Unsupported key algorithm: {algorithm}",
                {"supported": ", ".join(KEY_ALGORITHMS)},
            )
        store_type = _store_type(store_type, keystore)

        args = [
            "-genkeypair",
            "-alias",
            alias,
            "-keyalg",
            algorithm,
            "-validity",
            str(validity),
            "-dname",
            dname,
            "-keystore",
            str(keystore),
            "-storetype",
            store_type,
        ]
        if algorithm == "EC":
            args += ["-groupname", curve]
        else:
            args += ["-keysize", str(key_size)]

        if store_type == "PKCS12" and key_pass and key_pass != store_pass:
            logger.warning("PKCS12 keystores ignore a separate key password for %s", alias)
        key_args, env = _key_pass_args(store_type, key_pass or store_pass)

        result = await self.driver.run_interactive(
            [*args, *key_args], SecretBundle(store_pass=store_pass), env=env
        )
        if not result.success:
            return self._failed(result, f"Failed to generate key pair {alias}")
        logger.debug("Generated %s key pair %s", algorithm, alias)
        return OperationResult.ok(alias)

    async def convert_keystore(
        self,
        src: str | Path,
        src_pass: str,
        dest: str | Path,
        dest_pass: str,
        src_type: str | None = None,
        dest_type: str | None = None,
    ) -> OperationResult[str]:
        """Copy every entry of ``src`` into ``dest``, converting the store type.

        Returns:
            OperationResult carrying the destination path

        Raises:
            ToolkitError: If either store type is not supported

        """
        src_type = _store_type(src_type, src)
        dest_type = _store_type(dest_type, dest)
        if not Path(src).is_file():
            return OperationResult.fail(ErrorCode.FILE_NOT_FOUND, "Keystore file does not exist")

        Path(dest).parent.mkdir(parents=True, exist_ok=True)
        result = await self.driver.run_interactive(
            [
                "-importkeystore",
                "-srckeystore",
                str(src),
                "-srcstoretype",
                src_type,
                "-destkeystore",
                str(dest),
                "-deststoretype",
                dest_type,
                "-noprompt",
            ],
            SecretBundle(
                store_pass=dest_pass,
                src_store_pass=src_pass,
                dest_store_pass=dest_pass,
                key_pass=src_pass,
            ),
        )
        if not result.success:
            return self._failed(result, "Failed to convert keystore")
        logger.info("Converted %s keystore to %s", src_type, dest_type)
        return OperationResult.ok(str(dest))

    async def change_store_password(
        self,
        keystore: str | Path,
        old_password: str,
        new_password: str,
    ) -> OperationResult[None]:
        """Change the store password; both passwords travel over stdin."""
        rejected = self._short_password(new_password)
        if rejected is not None:
            return rejected
        result = await self.driver.run_interactive(
            ["-storepasswd", "-keystore", str(keystore)],
            SecretBundle(store_pass=old_password, new_pass=new_password),
        )
        if not result.success:
            return self._failed(result, "Failed to change keystore password")
        return OperationResult.ok()

    async def change_key_password(
        self,
        keystore: str | Path,
        store_pass: str,
        alias: str,
        new_key_pass: str,
        old_key_pass: str | None = None,
    ) -> OperationResult[None]:
        """Change the password protecting the key under ``alias``.

        Args:
            keystore: Keystore file
            store_pass: Store password
            alias: Key entry
            new_key_pass: Password to set
            old_key_pass: Current key password, the store password when None

        """
        rejected = self._short_password(new_key_pass)
        if rejected is not None:
            return rejected
        result = await self.driver.run_interactive(
            ["-keypasswd", "-alias", alias, "-keystore", str(keystore)],
            SecretBundle(store_pass=store_pass, key_pass=old_key_pass, new_pass=new_key_pass),
        )
        if not result.success:
            return self._failed(result, f"Failed to change key password of {alias}")
        return OperationResult.ok()

    async def delete_alias(
        self,
        keystore: str | Path,
        password: str,
        alias: str,
    ) -> OperationResult[None]:
        """Remove ``alias`` from the keystore."""
        result = await self.driver.run_interactive(
            ["-delete", "-alias", alias, "-keystore", str(keystore)],
            SecretBundle(store_pass=password),
        )
        if not result.success:
            return self._failed(result, f"Failed to delete {alias}")
        return OperationResult.ok()

    async def rename_alias(
        self,
        keystore: str | Path,
        password: str,
        old_alias: str,
        new_alias: str,
        key_pass: str | None = None,
    ) -> OperationResult[str]:
        """Rename an entry; returns the new alias."""
        result = await self.driver.run_interactive(
            [
                "-changealias",
                "-alias",
                old_alias,
                "-destalias",
                new_alias,
                "-keystore",
                str(keystore),
            ],
            SecretBundle(store_pass=password, key_pass=key_pass),
        )
        if not result.success:
            return self._failed(result, f"Failed to rename {old_alias}")
        return OperationResult.ok(new_alias)

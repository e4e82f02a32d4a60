"""Versioned catalogue of toolkit output phrases.

Prompt wording, authentication failure phrases and success markers of
openssl and keytool are not part of any stable interface. They are collected
here, tagged with the toolkit releases they were observed on, so a new
toolkit release means reviewing one file.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum

CATALOGUE_VERSION = "2024.2"

# Releases the phrases below were checked against
OBSERVED_OPENSSL_VERSIONS = ("1.1.1", "3.0", "3.1", "3.2", "3.3")
OBSERVED_KEYTOOL_VERSIONS = ("1.8", "11", "17", "21")


class PromptCategory(str, Enum):
    """Semantic meaning of a toolkit prompt."""

    STORE_PASSWORD = "store_password"
    KEY_PASSWORD = "key_password"
    SOURCE_STORE_PASSWORD = "source_store_password"
    DESTINATION_STORE_PASSWORD = "destination_store_password"
    NEW_PASSWORD = "new_password"
    STORE_PASSWORD_REENTRY = "store_password_reentry"
    TRUST_CONFIRMATION = "trust_confirmation"
    GENERIC = "generic"


@dataclass(frozen=True)
class PromptPattern:
    """A trailing-text regex tagged with what the prompt asks for.

    Args:
        name: Stable identity used to remember which prompts were answered
        phrase: Regex for the prompt text as it appears on its own line
        category: What the prompt asks for

    """

    name: str
    phrase: str
    category: PromptCategory

    @property
    def regex(self) -> re.Pattern[str]:
        return _compile_prompt(self.phrase)

    def matches(self, text: str) -> bool:
        """Return True when ``text`` ends with this prompt."""
        return self.regex.search(text) is not None


_PROMPT_CACHE: dict[str, re.Pattern[str]] = {}


def _compile_prompt(phrase: str) -> re.Pattern[str]:
    # Anchored to a line start so "Keystore password:" never matches the tail
    # of "Enter keystore password:", and to the end of the buffer
    compiled = _PROMPT_CACHE.get(phrase)
    if compiled is None:
        compiled = re.compile(rf"(?:^|\n)[ \t]*{phrase}\s*\Z", re.IGNORECASE)
        _PROMPT_CACHE[phrase] = compiled
    return compiled


# Most specific first
KEYTOOL_PROMPTS: tuple[PromptPattern, ...] = (
    PromptPattern(
        "source_store",
        r"Enter source keystore password:",
        PromptCategory.SOURCE_STORE_PASSWORD,
    ),
    PromptPattern(
        "destination_store",
        r"Enter destination keystore password:",
        PromptCategory.DESTINATION_STORE_PASSWORD,
    ),
    PromptPattern(
        "reenter_new_store",
        r"Re-enter new keystore password:",
        PromptCategory.STORE_PASSWORD_REENTRY,
    ),
    PromptPattern(
        "reenter_new_key",
        r"Re-enter new key password for [^\n]+:",
        PromptCategory.STORE_PASSWORD_REENTRY,
    ),
    PromptPattern(
        "new_key_for_alias",
        r"New key password for [^\n]+:",
        PromptCategory.NEW_PASSWORD,
    ),
    PromptPattern(
        "reenter_new",
        r"Re-enter new password:",
        PromptCategory.STORE_PASSWORD_REENTRY,
    ),
    PromptPattern(
        "key_for_alias",
        r"Enter key password for [^\n]+:",
        PromptCategory.KEY_PASSWORD,
    ),
    PromptPattern(
        "key_same_as_store",
        r"\(RETURN if same as keystore password\):",
        PromptCategory.KEY_PASSWORD,
    ),
    PromptPattern(
        "password_again",
        r"Enter the password again:",
        PromptCategory.STORE_PASSWORD_REENTRY,
    ),
    PromptPattern(
        "enter_store",
        r"Enter keystore password:",
        PromptCategory.STORE_PASSWORD,
    ),
    PromptPattern(
        "new_store",
        r"New keystore password:",
        PromptCategory.NEW_PASSWORD,
    ),
    PromptPattern(
        "store",
        r"Keystore password:",
        PromptCategory.STORE_PASSWORD,
    ),
    PromptPattern(
        "trust",
        r"Trust this certificate\? \[no\]:",
        PromptCategory.TRUST_CONFIRMATION,
    ),
    PromptPattern(
        "generic_password",
        r"Password:",
        PromptCategory.GENERIC,
    ),
)

# Lower-cased substrings meaning the supplied secret was rejected
AUTH_FAILURE_PHRASES: tuple[str, ...] = (
    "keystore password was incorrect",
    "password was incorrect",
    "wrong password",
    "mac verify failure",
    "mac verify error",
    "invalid password",
    "bad decrypt",
)

# Lower-cased substrings meaning the toolkit lacks a legacy algorithm
LEGACY_ALGORITHM_PHRASES: tuple[str, ...] = (
    "unsupported algorithm",
    "rc2-40-cbc",
    "global default library context",
    "digital envelope routines",
    "error setting cipher",
)

PEM_MARKER = "-----BEGIN "
CERTIFICATE_MARKER = "-----BEGIN CERTIFICATE-----"
PUBLIC_KEY_MARKER = "-----BEGIN PUBLIC KEY-----"

LEGACY_FLAG = "-legacy"
LEGACY_MODULE_FILES = ("legacy.so", "legacy.dll", "legacy.dylib")
MODULES_ENV_VAR = "OPENSSL_MODULES"

# keytool diagnostics, lower-cased
KEYTOOL_ALIAS_EXISTS = re.compile(r"alias <[^>]*> already exists", re.IGNORECASE)
KEYTOOL_ALIAS_MISSING = re.compile(r"alias <[^>]*> does not exist", re.IGNORECASE)
KEYTOOL_KEYSTORE_MISSING = "keystore file does not exist"
KEYTOOL_VERSION = re.compile(r"keytool\s+(\d+(?:\.\d+)*)", re.IGNORECASE)


def contains_auth_failure(text: str) -> bool:
    """Return True when toolkit output reports a rejected secret."""
    low = text.lower()
    return any(phrase in low for phrase in AUTH_FAILURE_PHRASES)


def contains_legacy_hint(text: str) -> bool:
    """Return True when toolkit output reports a missing legacy algorithm."""
    low = text.lower()
    return any(phrase in low for phrase in LEGACY_ALGORITHM_PHRASES)

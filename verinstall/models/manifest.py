"""Manifest models — one immutable record per installable artifact."""

from __future__ import annotations

import re
from enum import Enum
from pathlib import PurePosixPath
from typing import Any
from urllib.parse import urlsplit

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    ValidationInfo,
    field_validator,
    model_validator,
)


class DigestAlgorithm(str, Enum):
    """Supported integrity digests."""

    SHA256 = "sha256"


DIGEST_HEX_LENGTHS: dict[DigestAlgorithm, int] = {
    DigestAlgorithm.SHA256: 64,
}


class DestKind(str, Enum):
    """Install location class, relative to the install prefix."""

    BIN = "bin"
    LIB = "lib"
    SHARE = "share"


class InstallAction(str, Enum):
    """How the downloaded artifact becomes the installed file."""

    COPY = "copy"        # the download *is* the file
    EXTRACT = "extract"  # unpack an archive, then copy one member


ARCHIVE_SUFFIXES: tuple[str, ...] = (
    ".tar.gz",
    ".tgz",
    ".tar.bz2",
    ".tbz2",
    ".tar.xz",
    ".txz",
    ".tar",
    ".zip",
)

_HEX_RE = re.compile(r"[0-9a-fA-F]+")
_DOWNLOAD_SCHEMES = {"http", "https", "file"}
_HOMEPAGE_SCHEMES = {"http", "https"}


def is_archive_url(url: str) -> bool:
    """Whether the URL path ends in a known archive suffix."""
    path = urlsplit(url).path.lower()
    return path.endswith(ARCHIVE_SUFFIXES)


def _check_url(value: str, schemes: set[str]) -> str:
    value = value.strip()
    parts = urlsplit(value)
    if parts.scheme not in schemes:
        raise ValueError(
            f"unsupported URL scheme {parts.scheme!r} in {value!r} "
            f"(expected one of {sorted(schemes)})"
        )
    if parts.scheme == "file":
        if not parts.path:
            raise ValueError(f"file URL has no path: {value!r}")
    elif not parts.netloc:
        raise ValueError(f"URL has no host: {value!r}")
    return value


class InstallRule(BaseModel):
    """Declarative placement of one file from the artifact.

    Variants: copy-to-bin, copy-to-lib, copy-to-share and
    extract-archive-then-copy (``action=extract`` with any ``dest_kind``).
    """

    model_config = ConfigDict(frozen=True)

    source_relative_path: str
    dest_kind: DestKind = DestKind.BIN
    action: InstallAction = InstallAction.COPY

    @field_validator("source_relative_path")
    @classmethod
    def _relative_path(cls, value: str) -> str:
        value = value.strip()
        path = PurePosixPath(value)
        if not value or path.is_absolute() or ".." in path.parts:
            raise ValueError(
                f"source_relative_path must be a relative path inside the artifact: {value!r}"
            )
        return value

    @property
    def dest_name(self) -> str:
        """File name the artifact takes in its destination directory."""
        return PurePosixPath(self.source_relative_path).name


class Manifest(BaseModel):
    """One installable artifact: source, integrity check and placement.

    Accepts the formula field names (``url``, ``sha256``) as aliases of
    ``download_url`` and ``expected_digest``.  When ``install_rule`` is
    omitted it defaults to copying a file named after the manifest into
    ``bin``, extracting first if the URL points at an archive.

    Examples
    --------
    >>> m = Manifest(
    ...     name="voiceterm",
    ...     url="https://example.com/v0.1.5/voiceterm.tar.gz",
    ...     sha256="a" * 64,
    ...     version="0.1.5",
    ... )
    >>> m.install_rule.action
    <InstallAction.EXTRACT: 'extract'>
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    name: str
    desc: str = ""
    homepage: str = ""
    download_url: str = Field(alias="url")
    algorithm: DigestAlgorithm = DigestAlgorithm.SHA256
    expected_digest: str = Field(alias="sha256")
    version: str
    install_rule: InstallRule

    @model_validator(mode="before")
    @classmethod
    def _default_install_rule(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        url = data.get("url", data.get("download_url"))
        if not isinstance(url, str):
            return data
        action = InstallAction.EXTRACT if is_archive_url(url) else InstallAction.COPY
        rule = data.get("install_rule")
        if rule is None:
            name = data.get("name")
            if not isinstance(name, str):
                return data
            rule = {
                "source_relative_path": name.strip(),
                "dest_kind": DestKind.BIN,
                "action": action,
            }
        elif isinstance(rule, dict) and "action" not in rule:
            rule = {**rule, "action": action}
        else:
            return data
        return {**data, "install_rule": rule}

    @field_validator("name", "version")
    @classmethod
    def _non_empty(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("must not be empty")
        return value

    @field_validator("homepage")
    @classmethod
    def _homepage_url(cls, value: str) -> str:
        if not value.strip():
            return ""
        return _check_url(value, _HOMEPAGE_SCHEMES)

    @field_validator("download_url")
    @classmethod
    def _download_url(cls, value: str) -> str:
        return _check_url(value, _DOWNLOAD_SCHEMES)

    @field_validator("expected_digest")
    @classmethod
    def _digest_matches_algorithm(cls, value: str, info: ValidationInfo) -> str:
        algorithm = info.data.get("algorithm", DigestAlgorithm.SHA256)
        digest = value.strip()
        expected_len = DIGEST_HEX_LENGTHS[algorithm]
        if len(digest) != expected_len or _HEX_RE.fullmatch(digest) is None:
            raise ValueError(
                f"{algorithm.value} digest must be {expected_len} hex characters, "
                f"got {value!r}"
            )
        return digest.lower()

    @property
    def key(self) -> tuple[str, str, str]:
        """Lookup key: version alone is not unique, (version, digest) is."""
        return (self.name, self.version, self.expected_digest)

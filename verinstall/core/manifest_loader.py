"""Manifest loading — JSON, TOML and formula sources into ``Manifest`` records.

Parsing is pure: no network, no filesystem writes.  Every failure surfaces
as ``ParseError`` naming the source and the offending field, so a malformed
manifest never reaches the fetch stage.

Formula sources use the small declarative subset seen in package-manager
taps::

    class Voiceterm < Formula
      desc "A voice-powered AI terminal assistant"
      homepage "https://github.com/devglyph1/homebrew-voiceterm"
      url "https://github.com/.../v0.1.0/voiceterm.tar.gz"
      sha256 "98411b15..."
      version "0.1.0"

      def install
        bin.install "voiceterm"
      end
    end
"""

from __future__ import annotations

import json
import logging
import re
import tomllib
from pathlib import Path
from typing import Any
from urllib.parse import urlsplit

from pydantic import ValidationError

from verinstall.core.errors import ParseError
from verinstall.models.manifest import Manifest

logger = logging.getLogger(__name__)

FORMAT_JSON = "json"
FORMAT_TOML = "toml"
FORMAT_FORMULA = "formula"

_SUFFIX_FORMATS = {
    ".json": FORMAT_JSON,
    ".toml": FORMAT_TOML,
    ".rb": FORMAT_FORMULA,
}

# ---------------------------------------------------------------------------
# Formula grammar
# ---------------------------------------------------------------------------

_STRING = r"""(?:"((?:[^"\\]|\\.)*)"|'((?:[^'\\]|\\.)*)')"""
_CLASS_RE = re.compile(r"^\s*class\s+([A-Z][A-Za-z0-9_]*)\s*<\s*Formula\b")
_FIELD_RE = re.compile(
    rf"^\s*(desc|homepage|url|sha256|version)\s*\(?\s*{_STRING}\s*\)?\s*(?:#.*)?$"
)
_INSTALL_RE = re.compile(
    rf"^\s*(bin|lib|share)\.install\s*\(?\s*{_STRING}\s*\)?\s*(?:#.*)?$"
)
_DEF_INSTALL_RE = re.compile(r"^\s*def\s+install\b")
_FORMULA_SNIFF_RE = re.compile(r"^\s*class\s+\w+\s*<\s*Formula\b", re.MULTILINE)
_VERSION_SEGMENT_RE = re.compile(r"v?(\d+(?:\.\d+)+)")
_VERSION_IN_FILENAME_RE = re.compile(r"[-_]v?(\d+(?:\.\d+)+)(?=\.|$)")


def _unescape(value: str) -> str:
    return re.sub(r"\\(.)", r"\1", value)


def _formula_name(class_name: str) -> str:
    """``Voiceterm`` -> ``voiceterm``, ``FooBar`` -> ``foo-bar``."""
    return re.sub(r"(?<!^)(?=[A-Z])", "-", class_name).lower()


def infer_version(url: str) -> str | None:
    """Guess a version from a release URL (``.../v0.1.5/...`` or ``name-1.2.tgz``)."""
    path = urlsplit(url).path
    segments = [s for s in path.split("/") if s]
    for segment in reversed(segments[:-1]):
        match = _VERSION_SEGMENT_RE.fullmatch(segment)
        if match:
            return match.group(1)
    if segments:
        match = _VERSION_IN_FILENAME_RE.search(segments[-1])
        if match:
            return match.group(1)
    return None


def parse_formula(text: str, *, origin: str = "<formula>") -> list[dict[str, Any]]:
    """Parse formula text into raw manifest dicts (one per ``class``)."""
    records: list[dict[str, Any]] = []
    current: dict[str, Any] | None = None
    in_install = False

    for lineno, line in enumerate(text.splitlines(), start=1):
        stripped = line.strip()
        if not stripped or stripped.startswith("#"):
            continue

        class_match = _CLASS_RE.match(line)
        if class_match:
            current = {"name": _formula_name(class_match.group(1))}
            records.append(current)
            in_install = False
            continue

        if current is None:
            raise ParseError(
                f"{origin}:{lineno}: expected 'class <Name> < Formula', got {stripped!r}"
            )

        if _DEF_INSTALL_RE.match(line):
            in_install = True
            continue

        field_match = _FIELD_RE.match(line)
        if field_match and not in_install:
            key = field_match.group(1)
            value = _unescape(field_match.group(2) or field_match.group(3) or "")
            if key in current:
                raise ParseError(f"{origin}:{lineno}: duplicate field {key!r}")
            current[key] = value
            continue

        install_match = _INSTALL_RE.match(line)
        if install_match:
            if not in_install:
                raise ParseError(
                    f"{origin}:{lineno}: install directive outside 'def install'"
                )
            if "install_rule" in current:
                raise ParseError(
                    f"{origin}:{lineno}: only one install directive per formula is supported"
                )
            current["install_rule"] = {
                "dest_kind": install_match.group(1),
                "source_relative_path": _unescape(
                    install_match.group(2) or install_match.group(3) or ""
                ),
            }
            continue

        if stripped == "end" and in_install:
            in_install = False
        # Anything else (blocks we do not model, trailing 'end') is ignored.

    for record in records:
        url = record.get("url", "")
        if "version" not in record and url:
            inferred = infer_version(url)
            if inferred:
                record["version"] = inferred

    return records


# ---------------------------------------------------------------------------
# Structured formats
# ---------------------------------------------------------------------------


def _records_from_structured(data: Any, *, origin: str) -> list[dict[str, Any]]:
    """Accept a single table, a list of tables, or ``{"manifest": [...]}``."""
    if isinstance(data, dict):
        for key in ("manifest", "manifests"):
            if key in data:
                nested = data[key]
                if isinstance(nested, dict):
                    nested = [nested]
                if not isinstance(nested, list):
                    raise ParseError(f"{origin}: '{key}' must be a table or a list of tables")
                return _records_from_structured(nested, origin=origin)
        return [data]
    if isinstance(data, list):
        if not all(isinstance(item, dict) for item in data):
            raise ParseError(f"{origin}: every manifest entry must be an object")
        return list(data)
    raise ParseError(f"{origin}: expected an object or a list of objects")


def _normalise_record(raw: dict[str, Any]) -> dict[str, Any]:
    record = dict(raw)
    rule = record.get("install_rule")
    if isinstance(rule, str):
        record["install_rule"] = {"source_relative_path": rule}
    return record


def _sniff_format(text: str) -> str:
    stripped = text.lstrip()
    if _FORMULA_SNIFF_RE.search(text):
        return FORMAT_FORMULA
    if stripped.startswith("{"):
        return FORMAT_JSON
    if stripped.startswith("["):
        # JSON arrays and TOML tables both open with a bracket.
        try:
            json.loads(text)
        except json.JSONDecodeError:
            return FORMAT_TOML
        return FORMAT_JSON
    return FORMAT_TOML


def _format_validation_error(exc: ValidationError) -> str:
    parts = []
    for err in exc.errors():
        loc = ".".join(str(p) for p in err.get("loc", ())) or "manifest"
        parts.append(f"{loc}: {err.get('msg', 'invalid')}")
    return "; ".join(parts)


def _build(records: list[dict[str, Any]], *, origin: str) -> list[Manifest]:
    manifests: list[Manifest] = []
    for index, raw in enumerate(records):
        label = raw.get("name") or f"#{index}"
        try:
            manifests.append(Manifest.model_validate(_normalise_record(raw)))
        except ValidationError as exc:
            raise ParseError(
                f"{origin}: invalid manifest {label!r}: {_format_validation_error(exc)}"
            ) from exc
    return manifests


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def loads_all(text: str, *, fmt: str | None = None, origin: str = "<string>") -> list[Manifest]:
    """Parse every manifest in *text*.

    Parameters
    ----------
    text:
        Manifest source text.
    fmt:
        ``"json"``, ``"toml"`` or ``"formula"``; sniffed when omitted.
    origin:
        Label used in error messages.
    """
    fmt = fmt or _sniff_format(text)
    if fmt == FORMAT_JSON:
        try:
            data = json.loads(text)
        except json.JSONDecodeError as exc:
            raise ParseError(f"{origin}: invalid JSON: {exc}") from exc
        records = _records_from_structured(data, origin=origin)
    elif fmt == FORMAT_TOML:
        try:
            data = tomllib.loads(text)
        except tomllib.TOMLDecodeError as exc:
            raise ParseError(f"{origin}: invalid TOML: {exc}") from exc
        records = _records_from_structured(data, origin=origin)
    elif fmt == FORMAT_FORMULA:
        records = parse_formula(text, origin=origin)
    else:
        raise ParseError(f"{origin}: unknown manifest format {fmt!r}")

    if not records:
        raise ParseError(f"{origin}: no manifest found")

    manifests = _build(records, origin=origin)
    logger.debug("Parsed %d manifest(s) from %s", len(manifests), origin)
    return manifests


def load_all(source: str | Path) -> list[Manifest]:
    """Read a manifest file and parse every record in it."""
    path = Path(source)
    try:
        text = path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as exc:
        raise ParseError(f"Cannot read manifest {path}: {exc}") from exc
    fmt = _SUFFIX_FORMATS.get(path.suffix.lower())
    return loads_all(text, fmt=fmt, origin=str(path))


def load(source: str | Path) -> Manifest:
    """Read a manifest file holding exactly one record."""
    manifests = load_all(source)
    if len(manifests) != 1:
        raise ParseError(
            f"{source}: expected exactly one manifest, found {len(manifests)}"
        )
    return manifests[0]


def loads(text: str, *, fmt: str | None = None, origin: str = "<string>") -> Manifest:
    """Parse *text* holding exactly one record."""
    manifests = loads_all(text, fmt=fmt, origin=origin)
    if len(manifests) != 1:
        raise ParseError(f"{origin}: expected exactly one manifest, found {len(manifests)}")
    return manifests[0]

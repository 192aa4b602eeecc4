"""Ordered, immutable collection of manifests loaded once at startup.

A version string alone does not identify an artifact: taps have been seen
publishing the same version twice with different checksums.  Records are
therefore keyed by ``(name, version, digest)``; two records sharing a name
and version but disagreeing on the digest are rejected at load time rather
than silently picking one.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Iterable, Iterator
from pathlib import Path

from verinstall.core import manifest_loader
from verinstall.core.errors import ParseError
from verinstall.models.manifest import Manifest

logger = logging.getLogger(__name__)


def version_sort_key(version: str) -> tuple:
    """Dotted-numeric ordering; non-numeric parts compare as text after numbers."""
    parts: list[tuple[int, int | str]] = []
    for piece in re.split(r"[.\-+_]", version.lstrip("vV")):
        if piece.isdigit():
            parts.append((0, int(piece)))
        elif piece:
            parts.append((1, piece))
    return tuple(parts)


class ManifestStore:
    """Read-only sequence of validated manifests.

    Parameters
    ----------
    manifests:
        Records in source order.  Exact duplicates collapse to the first
        occurrence; conflicting duplicates raise ``ParseError``.
    """

    def __init__(self, manifests: Iterable[Manifest]) -> None:
        ordered: list[Manifest] = []
        seen: dict[tuple[str, str], Manifest] = {}

        for manifest in manifests:
            key = (manifest.name, manifest.version)
            prior = seen.get(key)
            if prior is None:
                seen[key] = manifest
                ordered.append(manifest)
                continue
            if prior.expected_digest != manifest.expected_digest:
                raise ParseError(
                    f"Conflicting digests for {manifest.name} {manifest.version}: "
                    f"{prior.expected_digest} vs {manifest.expected_digest}"
                )
            logger.debug(
                "Dropping exact duplicate of %s %s", manifest.name, manifest.version
            )

        self._manifests: tuple[Manifest, ...] = tuple(ordered)

    @classmethod
    def from_path(cls, source: str | Path) -> ManifestStore:
        """Load every manifest in a file."""
        return cls(manifest_loader.load_all(source))

    # ------------------------------------------------------------------
    # Sequence protocol
    # ------------------------------------------------------------------

    def __iter__(self) -> Iterator[Manifest]:
        return iter(self._manifests)

    def __len__(self) -> int:
        return len(self._manifests)

    def __getitem__(self, index: int) -> Manifest:
        return self._manifests[index]

    # ------------------------------------------------------------------
    # Lookup
    # ------------------------------------------------------------------

    @property
    def names(self) -> list[str]:
        """Distinct manifest names in load order."""
        return list(dict.fromkeys(m.name for m in self._manifests))

    def versions(self, name: str) -> list[str]:
        """All versions recorded for *name*, lowest first."""
        return sorted(
            (m.version for m in self._manifests if m.name == name),
            key=version_sort_key,
        )

    def get(
        self,
        name: str | None = None,
        version: str | None = None,
        digest: str | None = None,
    ) -> Manifest:
        """Select one manifest.

        ``name`` may be omitted when the store holds a single name.  With no
        ``version`` the highest version wins; ``digest`` narrows the match
        to an exact ``(version, digest)`` pair.

        Raises
        ------
        KeyError
            If no record matches.
        ParseError
            If ``name`` is omitted and the store holds several names.
        """
        if name is None:
            names = self.names
            if len(names) != 1:
                raise ParseError(
                    f"Manifest source holds {len(names)} packages "
                    f"({', '.join(names)}); choose one by name"
                )
            name = names[0]

        candidates = [m for m in self._manifests if m.name == name]
        if version is not None:
            candidates = [m for m in candidates if m.version == version]
        if digest is not None:
            wanted = digest.strip().lower()
            candidates = [m for m in candidates if m.expected_digest == wanted]

        if not candidates:
            detail = f" {version}" if version else ""
            raise KeyError(f"No manifest for {name}{detail}")

        # max() keeps the first of equal keys: the earliest loaded wins.
        return max(candidates, key=lambda m: version_sort_key(m.version))

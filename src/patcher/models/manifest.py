"""Manifest data models: ini-style version manifests and checksum sidecars."""

import xml.etree.ElementTree as ET
from typing import Optional

from pydantic import BaseModel, Field, ValidationError, field_validator

from patcher.models.errors import ManifestError

PATCH_SECTION = "[patch]"
VERSION_KEY = "version = "


def _section_lines(text: str, section: str):
    """Yield stripped lines that sit inside every ``section`` block."""
    inside = False
    for line in text.split("\n"):
        trimmed = line.strip()
        if trimmed == section:
            inside = True
        elif trimmed.startswith("["):
            inside = False
        elif inside:
            yield trimmed


def read_section_value(text: str, section: str, key: str) -> str:
    """Return the last ``key = value`` inside the first ``section`` block.

    Args:
        text: Manifest document
        section: Bracketed header, e.g. "[patch]"
        key: Key prefix including the separator, e.g. "version = "

    Returns:
        Stripped value, or "" when the section or key is missing
    """
    value = ""
    inside = False
    for line in text.split("\n"):
        trimmed = line.strip()
        if trimmed == section:
            if inside:
                break
            inside = True
        elif trimmed.startswith("["):
            if inside:
                break
        elif inside and trimmed.startswith(key):
            value = trimmed.split("=", 1)[1].strip()
    return value


def get_version(text: Optional[str]) -> str:
    """Current version declared in the ``[patch]`` section.

    Malformed or missing manifests yield "" (treated as "not installed").
    """
    if not text:
        return ""
    return read_section_value(text, PATCH_SECTION, VERSION_KEY)


def list_versions(text: Optional[str]) -> list[str]:
    """All versions enumerated by (possibly repeated) ``[patch]`` sections."""
    if not text:
        return []
    versions = []
    for line in _section_lines(text, PATCH_SECTION):
        if line.startswith(VERSION_KEY):
            value = line.split("=", 1)[1].strip()
            if value:
                versions.append(value)
    return versions


class ChecksumEntry(BaseModel):
    """``<File Name=".." CheckSum=".."/>`` entry of a patch sidecar."""

    name: str = Field(..., min_length=1, description="File name (not a path)")
    checksum: str = Field(
        ..., pattern=r"^[0-9a-fA-F]{8}$", description="Adler-32 as 8 hex digits"
    )

    @field_validator("checksum")
    @classmethod
    def lowercase_checksum(cls, v: str) -> str:
        return v.lower()


def parse_checksum_map(xml_text: str) -> dict[str, str]:
    """Parse a patch sidecar document into a ChecksumMap.

    Args:
        xml_text: Sidecar XML listing ``File`` elements

    Returns:
        Mapping of file name to lowercase 8-hex-digit checksum

    Raises:
        ManifestError: If the document is not XML or a checksum is malformed
    """
    try:
        root = ET.fromstring(xml_text)
    except ET.ParseError as e:
        raise ManifestError(f"Invalid checksum manifest: {e}")

    checksums: dict[str, str] = {}
    for element in root.iter("File"):
        name = element.get("Name")
        checksum = element.get("CheckSum")
        if name is None or checksum is None:
            continue
        try:
            entry = ChecksumEntry(name=name, checksum=checksum)
        except ValidationError as e:
            raise ManifestError(f"Invalid checksum entry for {name}: {e}")
        checksums[entry.name] = entry.checksum
    return checksums


class PatchStep(BaseModel):
    """One incremental transition; derived from the origin, never cached."""

    from_version: str
    to_version: str
    archive_url: str
    manifest_url: str

    @classmethod
    def between(cls, origin: str, from_version: str, to_version: str) -> "PatchStep":
        archive_url = (
            f"{origin}/microvolts/{to_version}/"
            f"microvolts-{from_version}-{to_version}.cab"
        )
        return cls(
            from_version=from_version,
            to_version=to_version,
            archive_url=archive_url,
            manifest_url=archive_url[: -len(".cab")] + ".xml",
        )


class ChainResult(BaseModel):
    """Outcome of walking a patch chain."""

    start_version: str
    final_version: str
    applied: list[str] = Field(default_factory=list)
    skipped: list[str] = Field(default_factory=list)
    failed: list[str] = Field(default_factory=list)

    @property
    def any_applied(self) -> bool:
        return bool(self.applied)


class UpdateResult(BaseModel):
    """Summary of one orchestrator run."""

    launcher_manifest_updated: bool = False
    patch_manifest_updated: bool = False
    local_version: str = ""
    remote_version: str = ""
    chain: Optional[ChainResult] = None
    asset_refreshed: bool = False

    @property
    def changed(self) -> bool:
        return (
            self.launcher_manifest_updated
            or self.patch_manifest_updated
            or self.asset_refreshed
        )

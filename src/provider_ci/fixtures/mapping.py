"""Synthetic key-mapping records in the service's on-disk mapping layout.

The service keeps one file per key under::

    <mappings-root>/<base64(application)>/<provider slot>/<base64(key name)>

Names are encoded with the URL-safe base64 alphabet, padding included. The file content is
a serialized key info record; a fixture written here simulates a key that was persisted by a
previous service instance, so later phases can check how the service treats it after a
configuration reload.
"""

from __future__ import annotations

import base64
import shutil
import struct
from dataclasses import dataclass, field
from pathlib import Path

from provider_ci.domain.run import Provider

# Little endian, no padding:
#   key_id_length  u64
#   key_id         u32
#   key_type       u32
#   bits           u32
#   lifetime       u32
#   usage_flags    6 x u8
#   algorithm      u32
#   algorithm_arg  u32
#   hash_algorithm u32
_RECORD = struct.Struct("<QIIII6BIII")
RECORD_SIZE = _RECORD.size


def encode_name(name: str) -> str:
    return base64.urlsafe_b64encode(name.encode("utf-8")).decode("ascii")


def decode_name(encoded: str) -> str:
    return base64.urlsafe_b64decode(encoded.encode("ascii")).decode("utf-8")


@dataclass(frozen=True, slots=True)
class KeyInfoRecord:
    # Defaults describe a persistent RSA key pair with a 4-byte key id.
    key_id_length: int = 4
    key_id: int = 0x23F8CBD6
    key_type: int = 9
    bits: int = 1024
    lifetime: int = 1
    usage_flags: tuple[int, ...] = (0, 1, 1, 1, 1, 0)
    algorithm: int = 5
    algorithm_arg: int = 0
    hash_algorithm: int = 6

    def __post_init__(self) -> None:
        if len(self.usage_flags) != 6:
            raise ValueError("usage_flags must hold exactly 6 flags")

    def to_bytes(self) -> bytes:
        return _RECORD.pack(
            self.key_id_length,
            self.key_id,
            self.key_type,
            self.bits,
            self.lifetime,
            *self.usage_flags,
            self.algorithm,
            self.algorithm_arg,
            self.hash_algorithm,
        )

    @classmethod
    def from_bytes(cls, data: bytes) -> KeyInfoRecord:
        if len(data) != RECORD_SIZE:
            raise ValueError(f"key info record must be {RECORD_SIZE} bytes, got {len(data)}")
        values = _RECORD.unpack(data)
        return cls(
            key_id_length=values[0],
            key_id=values[1],
            key_type=values[2],
            bits=values[3],
            lifetime=values[4],
            usage_flags=tuple(values[5:11]),
            algorithm=values[11],
            algorithm_arg=values[12],
            hash_algorithm=values[13],
        )


@dataclass(frozen=True, slots=True)
class MappingFixture:
    provider: Provider
    application_id: str
    slot: int
    key_name: str
    payload: KeyInfoRecord = field(default_factory=KeyInfoRecord)

    @property
    def encoded_application_id(self) -> str:
        return encode_name(self.application_id)

    @property
    def encoded_key_name(self) -> str:
        return encode_name(self.key_name)

    def relative_path(self) -> Path:
        return Path(self.encoded_application_id) / str(self.slot) / self.encoded_key_name


class FixtureInjector:
    """Writes mapping fixtures and remembers which mapping roots it touched."""

    def __init__(self, base_dir: Path) -> None:
        self._base_dir = base_dir
        self._roots: list[Path] = []

    @property
    def roots(self) -> list[Path]:
        return list(self._roots)

    def inject(self, fixture: MappingFixture, mappings_root: str | Path) -> Path:
        # Overwrites any previous file for the same identifiers.
        root = self._base_dir / mappings_root
        path = root / fixture.relative_path()
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(fixture.payload.to_bytes())
        if root not in self._roots:
            self._roots.append(root)
        return path

    def remove_all(self) -> list[Path]:
        removed: list[Path] = []
        for root in self._roots:
            if root.exists():
                shutil.rmtree(root)
                removed.append(root)
        self._roots.clear()
        return removed


def load_fixture(path: Path, provider: Provider) -> MappingFixture:
    # Decode a mapping file back into its identifiers and record.
    return MappingFixture(
        provider=provider,
        application_id=decode_name(path.parent.parent.name),
        slot=int(path.parent.name),
        key_name=decode_name(path.name),
        payload=KeyInfoRecord.from_bytes(path.read_bytes()),
    )

from .mapping import (
    RECORD_SIZE,
    FixtureInjector,
    KeyInfoRecord,
    MappingFixture,
    decode_name,
    encode_name,
    load_fixture,
)

__all__ = [
    "FixtureInjector",
    "KeyInfoRecord",
    "MappingFixture",
    "RECORD_SIZE",
    "decode_name",
    "encode_name",
    "load_fixture",
]

"""Metaplex Core 계정 디코딩 + UpdateV1 명령어 생성

Borsh 레이아웃:
    BaseAssetV1:      key(u8) owner(32) update_authority(enum) name(str) uri(str) seq(Option<u64>)
    BaseCollectionV1: key(u8) update_authority(32) name(str) uri(str) num_minted(u32) current_size(u32)
    UpdateAuthority:  0=None | 1=Address(32) | 2=Collection(32)
"""

from __future__ import annotations

import struct
from dataclasses import dataclass
from typing import Optional

from solders.instruction import AccountMeta, Instruction
from solders.pubkey import Pubkey

MPL_CORE_PROGRAM_ID = Pubkey.from_string("CoREENxT6tW1HoK8ypY1SxRMZTcVPm7R94rH4PZNhX7d")
SYSTEM_PROGRAM_ID = Pubkey.from_string("11111111111111111111111111111111")

KEY_ASSET_V1 = 1
KEY_COLLECTION_V1 = 5

UPDATE_V1_DISCRIMINATOR = 15

AUTHORITY_NONE = 0
AUTHORITY_ADDRESS = 1
AUTHORITY_COLLECTION = 2

# getProgramAccounts memcmp 오프셋 (BaseAssetV1)
ASSET_OWNER_OFFSET = 1
ASSET_UPDATE_AUTHORITY_OFFSET = 33


class DecodeError(ValueError):
    pass


class _Reader:
    def __init__(self, data: bytes) -> None:
        self._data = data
        self._pos = 0

    def take(self, size: int) -> bytes:
        end = self._pos + size
        if end > len(self._data):
            raise DecodeError(f"Account data truncated at offset {self._pos}")
        chunk = self._data[self._pos:end]
        self._pos = end
        return chunk

    def u8(self) -> int:
        return self.take(1)[0]

    def u32(self) -> int:
        return struct.unpack("<I", self.take(4))[0]

    def u64(self) -> int:
        return struct.unpack("<Q", self.take(8))[0]

    def pubkey(self) -> Pubkey:
        return Pubkey.from_bytes(self.take(32))

    def string(self) -> str:
        return self.take(self.u32()).decode("utf-8")


@dataclass(frozen=True)
class CoreAsset:
    address: Pubkey
    owner: Pubkey
    update_authority_kind: int
    update_authority: Optional[Pubkey]
    name: str
    uri: str

    @property
    def collection(self) -> Optional[Pubkey]:
        if self.update_authority_kind == AUTHORITY_COLLECTION:
            return self.update_authority
        return None


@dataclass(frozen=True)
class CoreCollection:
    address: Pubkey
    update_authority: Pubkey
    name: str
    uri: str
    num_minted: int
    current_size: int


def decode_asset(address: Pubkey, data: bytes) -> CoreAsset:
    reader = _Reader(data)
    key = reader.u8()
    if key != KEY_ASSET_V1:
        raise DecodeError(f"Account {address} is not a Core asset (key={key})")
    owner = reader.pubkey()
    kind = reader.u8()
    if kind not in (AUTHORITY_NONE, AUTHORITY_ADDRESS, AUTHORITY_COLLECTION):
        raise DecodeError(f"Unknown update authority kind {kind}")
    authority = reader.pubkey() if kind != AUTHORITY_NONE else None
    return CoreAsset(
        address=address,
        owner=owner,
        update_authority_kind=kind,
        update_authority=authority,
        name=reader.string(),
        uri=reader.string(),
    )


def decode_collection(address: Pubkey, data: bytes) -> CoreCollection:
    reader = _Reader(data)
    key = reader.u8()
    if key != KEY_COLLECTION_V1:
        raise DecodeError(f"Account {address} is not a Core collection (key={key})")
    return CoreCollection(
        address=address,
        update_authority=reader.pubkey(),
        name=reader.string(),
        uri=reader.string(),
        num_minted=reader.u32(),
        current_size=reader.u32(),
    )


def _option_string(value: Optional[str]) -> bytes:
    if value is None:
        return b"\x00"
    encoded = value.encode("utf-8")
    return b"\x01" + struct.pack("<I", len(encoded)) + encoded


def update_v1_data(new_name: Optional[str], new_uri: Optional[str]) -> bytes:
    """UpdateV1Args. update authority는 바꾸지 않는다 (None)."""
    return (
        bytes([UPDATE_V1_DISCRIMINATOR])
        + _option_string(new_name)
        + _option_string(new_uri)
        + b"\x00"
    )


def update_v1(
    asset: Pubkey,
    payer: Pubkey,
    authority: Pubkey,
    new_name: Optional[str],
    new_uri: Optional[str],
    collection: Optional[Pubkey] = None,
) -> Instruction:
    """생략된 optional 계정 자리는 프로그램 id로 채운다."""
    accounts = [
        AccountMeta(asset, is_signer=False, is_writable=True),
        AccountMeta(collection or MPL_CORE_PROGRAM_ID, is_signer=False, is_writable=False),
        AccountMeta(payer, is_signer=True, is_writable=True),
        AccountMeta(authority, is_signer=True, is_writable=False),
        AccountMeta(SYSTEM_PROGRAM_ID, is_signer=False, is_writable=False),
        AccountMeta(MPL_CORE_PROGRAM_ID, is_signer=False, is_writable=False),
    ]
    return Instruction(MPL_CORE_PROGRAM_ID, update_v1_data(new_name, new_uri), accounts)


def _read_option_string(reader: _Reader) -> Optional[str]:
    flag = reader.u8()
    if flag == 0:
        return None
    if flag != 1:
        raise DecodeError(f"Invalid option flag {flag}")
    return reader.string()


def decode_update_v1_data(data: bytes) -> tuple[Optional[str], Optional[str]]:
    """UpdateV1 명령어 데이터 → (new_name, new_uri)."""
    reader = _Reader(data)
    discriminator = reader.u8()
    if discriminator != UPDATE_V1_DISCRIMINATOR:
        raise DecodeError(f"Not an UpdateV1 instruction (discriminator={discriminator})")
    return _read_option_string(reader), _read_option_string(reader)

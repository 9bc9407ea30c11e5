"""Irys 노드 클라이언트

업로드 단위는 펀딩 지갑 키로 서명한 ANS-104 data item이다
(서명 타입 2 = ed25519, owner = 32바이트 공개키).

노드 계정 잔액이 가격보다 적으면 먼저 충전한다:
    1. GET  /info                     → 노드의 solana 입금 주소
    2. 펀딩 지갑 → 입금 주소 SOL 이체 (체인 전송 + 확정)
    3. POST /account/balance/solana   → {"tx_id": 이체 서명}
업로드: POST /tx/solana (application/octet-stream, data item 바이트)

업로더 경로 두 개 (같은 프로토콜, 노드만 다름):
- uploader: STORAGE_UPLOADER_URL 노드 (없으면 기본 노드). 기본 경로
- node: 기본 노드. fallback
"""

from __future__ import annotations

import base64
import hashlib
import secrets
import struct
from dataclasses import dataclass, replace
from typing import Any, Iterable, Optional, Union

import httpx
from solders.keypair import Keypair
from solders.pubkey import Pubkey

from src.core.errors import ChainError, StorageError
from src.core.logging import get_logger
from src.services.chain.client import ChainClient
from src.services.chain.transactions import build_signed_transfer
from src.services.storage.base import MetadataUploader

logger = get_logger(__name__)

CURRENCY = "solana"

SIGNATURE_TYPE_ED25519 = 2
SIGNATURE_LENGTH = 64
OWNER_LENGTH = 32
ANCHOR_LENGTH = 32
TARGET_LENGTH = 32

# 충전 시 가격 변동 여유분 (가격의 %)
FUNDING_PRICE_PERCENT = 110

Tag = tuple[str, str]


# === ANS-104 ===


def deep_hash(chunk: Union[bytes, list]) -> bytes:
    """Arweave deep hash (SHA-384)."""
    if isinstance(chunk, list):
        acc = hashlib.sha384(b"list" + str(len(chunk)).encode()).digest()
        for item in chunk:
            acc = hashlib.sha384(acc + deep_hash(item)).digest()
        return acc
    tag = hashlib.sha384(b"blob" + str(len(chunk)).encode()).digest()
    return hashlib.sha384(tag + hashlib.sha384(chunk).digest()).digest()


def _avro_long(value: int) -> bytes:
    zigzag = (value << 1) ^ (value >> 63)
    out = bytearray()
    while zigzag & ~0x7F:
        out.append((zigzag & 0x7F) | 0x80)
        zigzag >>= 7
    out.append(zigzag)
    return bytes(out)


def _read_avro_long(data: bytes, pos: int) -> tuple[int, int]:
    shift = 0
    zigzag = 0
    while True:
        if pos >= len(data):
            raise ValueError("Truncated tag data")
        byte = data[pos]
        pos += 1
        zigzag |= (byte & 0x7F) << shift
        shift += 7
        if not byte & 0x80:
            break
    return (zigzag >> 1) ^ -(zigzag & 1), pos


def encode_tags(tags: Iterable[Tag]) -> bytes:
    """태그 목록 → Avro array<{name: bytes, value: bytes}>. 태그가 없으면 빈 바이트."""
    tags = list(tags)
    if not tags:
        return b""
    out = bytearray(_avro_long(len(tags)))
    for name, value in tags:
        for text in (name, value):
            encoded = text.encode("utf-8")
            out += _avro_long(len(encoded)) + encoded
    out += _avro_long(0)
    return bytes(out)


def decode_tags(data: bytes) -> tuple[Tag, ...]:
    tags: list[Tag] = []
    pos = 0
    while pos < len(data):
        count, pos = _read_avro_long(data, pos)
        if count == 0:
            break
        if count < 0:
            # 음수 블록 길이 뒤에는 블록 바이트 크기가 온다
            count = -count
            _, pos = _read_avro_long(data, pos)
        for _ in range(count):
            pair = []
            for _ in range(2):
                size, pos = _read_avro_long(data, pos)
                pair.append(data[pos:pos + size].decode("utf-8"))
                pos += size
            tags.append((pair[0], pair[1]))
    return tuple(tags)


def _optional_field(value: Optional[bytes], length: int) -> bytes:
    if value is None:
        return b"\x00"
    if len(value) != length:
        raise ValueError(f"Expected {length} bytes, got {len(value)}")
    return b"\x01" + value


@dataclass(frozen=True)
class DataItem:
    """서명된 ANS-104 data item"""

    owner: bytes
    data: bytes
    tags: tuple[Tag, ...] = ()
    anchor: Optional[bytes] = None
    target: Optional[bytes] = None
    signature: bytes = b""
    signature_type: int = SIGNATURE_TYPE_ED25519

    @classmethod
    def create(
        cls,
        data: bytes,
        signer: Keypair,
        tags: Iterable[Tag] = (),
        anchor: Optional[bytes] = None,
    ) -> DataItem:
        """anchor를 주지 않으면 무작위 32바이트 (같은 내용도 id가 겹치지 않게)."""
        unsigned = cls(
            owner=bytes(signer.pubkey()),
            data=data,
            tags=tuple(tags),
            anchor=anchor if anchor is not None else secrets.token_bytes(ANCHOR_LENGTH),
        )
        signature = signer.sign_message(unsigned.signature_data())
        return replace(unsigned, signature=bytes(signature))

    def signature_data(self) -> bytes:
        """서명 대상: deep hash(["dataitem", "1", 서명 타입, owner, target, anchor, tags, data])."""
        return deep_hash(
            [
                b"dataitem",
                b"1",
                str(self.signature_type).encode(),
                self.owner,
                self.target or b"",
                self.anchor or b"",
                encode_tags(self.tags),
                self.data,
            ]
        )

    @property
    def id(self) -> str:
        """base64url(sha256(signature)), 패딩 없음."""
        digest = hashlib.sha256(self.signature).digest()
        return base64.urlsafe_b64encode(digest).rstrip(b"=").decode("ascii")

    def to_bytes(self) -> bytes:
        if len(self.signature) != SIGNATURE_LENGTH:
            raise ValueError("Data item is not signed")
        tag_bytes = encode_tags(self.tags)
        return b"".join(
            [
                struct.pack("<H", self.signature_type),
                self.signature,
                self.owner,
                _optional_field(self.target, TARGET_LENGTH),
                _optional_field(self.anchor, ANCHOR_LENGTH),
                struct.pack("<QQ", len(self.tags), len(tag_bytes)),
                tag_bytes,
                self.data,
            ]
        )

    @classmethod
    def from_bytes(cls, raw: bytes) -> DataItem:
        (signature_type,) = struct.unpack_from("<H", raw, 0)
        if signature_type != SIGNATURE_TYPE_ED25519:
            raise ValueError(f"Unsupported signature type {signature_type}")
        pos = 2
        signature = raw[pos:pos + SIGNATURE_LENGTH]
        pos += SIGNATURE_LENGTH
        owner = raw[pos:pos + OWNER_LENGTH]
        pos += OWNER_LENGTH

        optional: list[Optional[bytes]] = []
        for length in (TARGET_LENGTH, ANCHOR_LENGTH):
            present = raw[pos]
            pos += 1
            if present:
                optional.append(raw[pos:pos + length])
                pos += length
            else:
                optional.append(None)

        tag_count, tag_size = struct.unpack_from("<QQ", raw, pos)
        pos += 16
        tags = decode_tags(raw[pos:pos + tag_size])
        if len(tags) != tag_count:
            raise ValueError("Tag count does not match tag data")
        pos += tag_size
        return cls(
            owner=owner,
            data=raw[pos:],
            tags=tags,
            target=optional[0],
            anchor=optional[1],
            signature=signature,
            signature_type=signature_type,
        )


# === 노드 ===


class IrysNode:
    """Irys 노드 하나: 가격, 계정 잔액, 충전, data item 업로드"""

    def __init__(self, url: str, http: httpx.Client, chain: ChainClient) -> None:
        self._url = url.rstrip("/")
        self._http = http
        self._chain = chain

    @property
    def url(self) -> str:
        return self._url

    def _get(self, path: str, **kwargs: Any) -> httpx.Response:
        response = self._http.get(f"{self._url}{path}", **kwargs)
        response.raise_for_status()
        return response

    def price(self, size: int) -> int:
        """size 바이트 저장 가격 (lamports)"""
        try:
            return int(self._get(f"/price/{CURRENCY}/{size}").text.strip())
        except (httpx.HTTPError, ValueError) as e:
            raise StorageError(f"Failed to estimate storage cost: {e}") from e

    def balance(self, address: str) -> int:
        """노드에 적립된 address의 잔액 (lamports)"""
        try:
            payload = self._get(
                f"/account/balance/{CURRENCY}", params={"address": address}
            ).json()
            return int(payload["balance"])
        except (httpx.HTTPError, ValueError, KeyError, TypeError) as e:
            raise StorageError(f"Failed to read storage balance on {self._url}: {e}") from e

    def deposit_address(self) -> Pubkey:
        try:
            payload = self._get("/info").json()
            return Pubkey.from_string(payload["addresses"][CURRENCY])
        except (httpx.HTTPError, ValueError, KeyError, TypeError) as e:
            raise StorageError(f"Failed to read deposit address of {self._url}: {e}") from e

    def fund(self, payer: Keypair, lamports: int) -> str:
        """payer → 노드 입금 주소 이체 후 노드에 알린다. 이체 서명 반환."""
        recipient = self.deposit_address()
        try:
            blockhash = self._chain.get_latest_blockhash()
            raw = build_signed_transfer(payer, recipient, lamports, blockhash.blockhash)
            signature = self._chain.send_raw_transaction(raw)
            self._chain.confirm_transaction(signature, blockhash.last_valid_block_height)
        except ChainError as e:
            raise StorageError(f"Storage funding transfer failed: {e.message}") from e

        try:
            response = self._http.post(
                f"{self._url}/account/balance/{CURRENCY}", json={"tx_id": signature}
            )
            response.raise_for_status()
        except httpx.HTTPError as e:
            raise StorageError(
                f"Storage node did not accept funding transfer {signature}: {e}"
            ) from e

        logger.info(
            "Storage node funded: node=%s, payer=%s, lamports=%d, tx=%s",
            self._url,
            payer.pubkey(),
            lamports,
            signature,
        )
        return signature

    def ensure_funded(self, payer: Keypair, size: int) -> None:
        """노드 잔액이 size 바이트 가격(+여유분)에 못 미치면 차액만 충전."""
        required = -(-self.price(size) * FUNDING_PRICE_PERCENT // 100)
        balance = self.balance(str(payer.pubkey()))
        if balance >= required:
            return
        self.fund(payer, required - balance)

    def upload(self, item: DataItem) -> str:
        """data item 업로드. 노드가 돌려준 id (없으면 data item id)."""
        try:
            response = self._http.post(
                f"{self._url}/tx/{CURRENCY}",
                content=item.to_bytes(),
                headers={"Content-Type": "application/octet-stream"},
            )
            response.raise_for_status()
        except httpx.HTTPError as e:
            raise StorageError(f"Upload to {self._url} failed: {e}") from e

        try:
            payload = response.json()
        except ValueError:
            payload = {}
        content_id = payload.get("id") if isinstance(payload, dict) else None
        return str(content_id or item.id)


class IrysUploader(MetadataUploader):
    def __init__(self, name: str, node: IrysNode) -> None:
        self._name = name
        self._node = node

    @property
    def name(self) -> str:
        return self._name

    def upload(self, data: bytes, content_type: str, payer: Keypair) -> str:
        item = DataItem.create(data, payer, tags=[("Content-Type", content_type)])
        self._node.ensure_funded(payer, len(item.to_bytes()))
        return self._node.upload(item)


def build_uploaders(
    node_url: str,
    uploader_url: Optional[str],
    http: httpx.Client,
    chain: ChainClient,
) -> tuple[MetadataUploader, MetadataUploader]:
    """(기본, fallback) 업로더 쌍"""
    primary = IrysUploader("uploader", IrysNode(uploader_url or node_url, http, chain))
    fallback = IrysUploader("node", IrysNode(node_url, http, chain))
    logger.debug("Storage uploaders: primary=%s, fallback=%s", primary.name, fallback.name)
    return primary, fallback

"""파싱된 트랜잭션(jsonParsed)에서 초기 action 추론

입력은 getTransaction(encoding="jsonParsed") 결과 dict:
    {"transaction": {"message": {"accountKeys": [...], "instructions": [...]}},
     "meta": {"preTokenBalances": [...], "postTokenBalances": [...],
              "innerInstructions": [...], "logMessages": [...]}}
"""

from __future__ import annotations

import logging
from typing import Any, Iterator, Optional

from src.core.transaction.models import TxAction

logger = logging.getLogger(__name__)

TOKEN_PROGRAM_ID = "TokenkegQfeZyiNwAJbNbGKPFXCWuBvf9Ss623VQ5DA"
TOKEN_METADATA_PROGRAM_ID = "metaqbxxUerdq28cj1RbAWkYQm3ybzjb6a8bt518x1s"
MPL_CORE_PROGRAM_ID = "CoREENxT6tW1HoK8ypY1SxRMZTcVPm7R94rH4PZNhX7d"

BURN_PROGRAM_IDS = frozenset(
    {TOKEN_PROGRAM_ID, TOKEN_METADATA_PROGRAM_ID, MPL_CORE_PROGRAM_ID}
)
BURN_INSTRUCTION_TYPES = frozenset({"burn", "burnChecked"})


def _message(transaction: dict[str, Any]) -> dict[str, Any]:
    return (transaction.get("transaction") or {}).get("message") or {}


def _key_str(key: Any) -> str:
    """accountKeys 항목은 문자열 또는 {"pubkey": ...} dict."""
    if isinstance(key, dict):
        return str(key.get("pubkey", ""))
    return str(key)


def account_keys(transaction: dict[str, Any]) -> list[str]:
    return [_key_str(k) for k in _message(transaction).get("accountKeys") or []]


def _iter_instructions(transaction: dict[str, Any]) -> Iterator[dict[str, Any]]:
    """최상위 + inner 명령어 전체."""
    yield from _message(transaction).get("instructions") or []
    meta = transaction.get("meta") or {}
    for inner_set in meta.get("innerInstructions") or []:
        yield from inner_set.get("instructions") or []


def _is_burn_instruction(instruction: dict[str, Any]) -> bool:
    parsed = instruction.get("parsed")
    if not isinstance(parsed, dict):
        return False
    if parsed.get("type") in BURN_INSTRUCTION_TYPES:
        return True
    info = parsed.get("info")
    return isinstance(info, dict) and info.get("instruction") == "Burn"


def _involved_program_ids(transaction: dict[str, Any]) -> set[str]:
    """읽기 전용 비서명 계정 키 + 명령어 programId."""
    ids: set[str] = set()
    for key in _message(transaction).get("accountKeys") or []:
        if isinstance(key, dict):
            if key.get("signer") is False and key.get("writable") is False:
                ids.add(_key_str(key))
        else:
            ids.add(str(key))
    for instruction in _iter_instructions(transaction):
        program_id = instruction.get("programId")
        if program_id:
            ids.add(str(program_id))
    return ids


def detect_burn(transaction: dict[str, Any]) -> bool:
    """burn 명령어, 또는 알려진 토큰/NFT 프로그램 + 로그에 "burn"."""
    if any(_is_burn_instruction(ix) for ix in _iter_instructions(transaction)):
        return True

    if _involved_program_ids(transaction) & BURN_PROGRAM_IDS:
        logs = (transaction.get("meta") or {}).get("logMessages") or []
        # "burning", "burned"도 "burn"을 포함한다
        if "burn" in " ".join(logs).lower():
            return True

    return False


def _token_amount(balance: dict[str, Any]) -> int:
    ui = balance.get("uiTokenAmount") or {}
    try:
        return int(ui.get("amount", 0))
    except (TypeError, ValueError):
        return 0


def _token_balance_action(
    transaction: dict[str, Any], wallet_address: str
) -> Optional[TxAction]:
    """지갑 소유 토큰 잔액 변화로 action 보정.

    감소 + burn 감지 → BURNED (증가보다 우선)
    증가 또는 이전 잔액 없음 → RECEIVE
    """
    meta = transaction.get("meta") or {}
    pre_balances = meta.get("preTokenBalances")
    post_balances = meta.get("postTokenBalances")
    if pre_balances is None or post_balances is None:
        return None

    pre_by_index = {b.get("accountIndex"): b for b in pre_balances}
    increased = False
    decreased = False
    for post in post_balances:
        if post.get("owner") != wallet_address:
            continue
        pre = pre_by_index.get(post.get("accountIndex"))
        if pre is None or _token_amount(post) > _token_amount(pre):
            increased = True
        elif _token_amount(post) < _token_amount(pre):
            decreased = True

    if decreased and detect_burn(transaction):
        return TxAction.BURNED
    if increased:
        return TxAction.RECEIVE
    return None


def determine_initial_action(
    transaction: dict[str, Any], wallet_address: str
) -> TxAction:
    """설명 서비스 없이 트랜잭션 데이터만으로 action 추론.

    1. fee payer(첫 계정 키) == 지갑 → SEND
    2. 계정 키에 지갑 포함 → RECEIVE
    3. 토큰 잔액 보정 (BURNED / RECEIVE가 1, 2를 덮어씀)
    4. 기본 OTHER
    """
    action = TxAction.OTHER
    try:
        keys = account_keys(transaction)
        if keys and keys[0] == wallet_address:
            action = TxAction.SEND
        elif wallet_address in keys:
            action = TxAction.RECEIVE

        refined = _token_balance_action(transaction, wallet_address)
        if refined is not None:
            action = refined
    except (AttributeError, TypeError) as e:
        logger.warning("Malformed transaction while determining action: %s", e)

    return action

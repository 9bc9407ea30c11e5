"""도메인 예외 계층

API 레이어가 HTTP 상태 코드로 변환한다.
- ValidationError → 400
- NotFoundError → 404
- FundingError / VerificationError / AlreadyAppliedError / SyncLimitError → 400
- ChainError / StorageError → 500
"""

from typing import Any, Optional


class CompanionError(Exception):
    """모든 도메인 예외의 기반"""

    status_code: int = 500

    def __init__(self, message: str, details: Optional[Any] = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details


class ValidationError(CompanionError):
    """필수 파라미터 누락 / 형식 오류. 부작용 없음."""

    status_code = 400


class NotFoundError(CompanionError):
    """트랜잭션, 에셋 등 도메인 객체 없음"""

    status_code = 404


class ChainError(CompanionError):
    """RPC 호출 실패 (재시도 소진 후)"""

    status_code = 500


class StorageError(CompanionError):
    """스토리지 가격 조회 / 업로드 실패 (fallback 포함)"""

    status_code = 500


class FundingError(CompanionError):
    """펀딩 트랜잭션 미확정, 잔액 미반영"""

    status_code = 400


class InsufficientFundsError(FundingError):
    """잔액 / rent 부족. 사용자에게 그대로 보여줄 메시지를 담는다."""


class VerificationError(CompanionError):
    """업데이트 트랜잭션이 confirmed에 도달하지 못함"""

    status_code = 400


class AlreadyAppliedError(CompanionError):
    """이미 검증 완료된 sync에 두 번째 업데이트 시도"""

    status_code = 400


class SyncLimitError(CompanionError):
    """하루 1회 sync 제한에 걸림"""

    status_code = 400

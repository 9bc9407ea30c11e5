"""메타데이터 업로더 추상 기반 클래스"""

from abc import ABC, abstractmethod

from solders.keypair import Keypair


class MetadataUploader(ABC):
    """변경 불가능한 문서를 스토리지 네트워크에 올린다.

    구현체는 네트워크가 부여한 content id를 돌려준다. 게이트웨이 URI로의
    변환은 StorageService가 하므로 업로더가 달라도 URI 형식은 같다.
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """업로더 이름 (로그용)"""
        ...

    @abstractmethod
    def upload(self, data: bytes, content_type: str, payer: Keypair) -> str:
        """펀딩 지갑이 비용을 내는 업로드.

        Args:
            data: 문서 원본 바이트
            content_type: 업로드 태그로 남길 MIME 타입
            payer: 업로드 비용을 내는 일회용 펀딩 키페어

        Returns:
            업로드된 문서의 content id

        Raises:
            StorageError: 업로드 실패
        """
        ...

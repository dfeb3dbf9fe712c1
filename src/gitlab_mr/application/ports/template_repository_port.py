from typing import Protocol


class TemplateRepositoryPort(Protocol):
    """머지 요청 설명 템플릿 저장소 계약"""

    def get_description_template(self) -> str:
        """머지 요청 기본 설명 템플릿 본문을 반환합니다."""
        ...

    def reload(self) -> None:
        """캐시를 무효화하고 설정 파일을 다시 로드합니다."""
        ...

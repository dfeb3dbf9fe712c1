from typing import Protocol

from gitlab_mr.domain.merge_request import ProjectPreferences


class PreferenceStorePort(Protocol):
    """저장소별 머지 요청 기본값 저장소 계약"""

    def load(self, project_key: str) -> ProjectPreferences:
        """저장된 기본값을 반환합니다. 없으면 기본값 객체를 반환합니다."""
        ...

    def save(self, project_key: str, preferences: ProjectPreferences) -> None:
        ...

import logging
from pathlib import Path

import yaml

logger = logging.getLogger(__name__)


class YamlTemplateRepository:
    """YAML 파일 기반 머지 요청 설명 템플릿 저장소 (mtime 캐시)"""

    def __init__(self, yaml_path: str | Path):
        self._path = Path(yaml_path)
        self._cache: dict | None = None
        self._cache_mtime: float = 0.0

    def _ensure_loaded(self) -> dict:
        """파일이 변경되었으면 다시 로드합니다."""
        try:
            current_mtime = self._path.stat().st_mtime
        except FileNotFoundError:
            raise FileNotFoundError(f"템플릿 YAML 파일을 찾을 수 없습니다: {self._path}")

        if self._cache is None or current_mtime > self._cache_mtime:
            logger.info("YAML 템플릿 로드: %s", self._path)
            with open(self._path, "r", encoding="utf-8") as f:
                self._cache = yaml.safe_load(f) or {}
            self._cache_mtime = current_mtime

        return self._cache

    def get_description_template(self) -> str:
        data = self._ensure_loaded()
        template = data.get("merge_request", {}).get("description")
        if template is None:
            raise ValueError(f"merge_request.description 항목이 없습니다: {self._path}")
        return template

    def reload(self) -> None:
        """캐시를 강제로 무효화합니다."""
        logger.info("템플릿 캐시 강제 무효화")
        self._cache = None
        self._cache_mtime = 0.0

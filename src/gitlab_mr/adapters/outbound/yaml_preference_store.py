import logging
import threading
from dataclasses import asdict
from pathlib import Path

import yaml

from gitlab_mr.domain.merge_request import ProjectPreferences

logger = logging.getLogger(__name__)


class YamlPreferenceStore:
    """YAML 파일 하나에 저장소별 머지 요청 기본값을 보관합니다.

    파일 형식::

        /home/me/work/app:
          last_merged_branch: main
          merge_as_work_in_progress: false
          delete_merged_branch: true
    """

    def __init__(self, yaml_path: str | Path):
        self._path = Path(yaml_path)
        self._lock = threading.Lock()

    def load(self, project_key: str) -> ProjectPreferences:
        with self._lock:
            data = self._read_all()
        entry = data.get(project_key) or {}
        return ProjectPreferences(
            last_merged_branch=entry.get("last_merged_branch") or None,
            merge_as_work_in_progress=bool(entry.get("merge_as_work_in_progress", False)),
            delete_merged_branch=bool(entry.get("delete_merged_branch", False)),
        )

    def save(self, project_key: str, preferences: ProjectPreferences) -> None:
        with self._lock:
            data = self._read_all()
            data[project_key] = asdict(preferences)
            self._path.parent.mkdir(parents=True, exist_ok=True)
            with open(self._path, "w", encoding="utf-8") as f:
                yaml.safe_dump(data, f, allow_unicode=True, sort_keys=True)
        logger.info("기본값 저장: %s → %s", project_key, preferences)

    def _read_all(self) -> dict:
        if not self._path.exists():
            return {}
        try:
            with open(self._path, "r", encoding="utf-8") as f:
                data = yaml.safe_load(f)
        except yaml.YAMLError as e:
            logger.warning("기본값 파일을 해석할 수 없어 무시합니다: %s (%s)", self._path, e)
            return {}
        if not isinstance(data, dict):
            logger.warning("기본값 파일 형식이 올바르지 않아 무시합니다: %s", self._path)
            return {}
        return data

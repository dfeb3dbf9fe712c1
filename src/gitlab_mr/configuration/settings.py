import json
import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

# 프로젝트 루트 디렉토리 (src/gitlab_mr/configuration/settings.py -> ../../../)
PROJECT_ROOT = Path(__file__).resolve().parents[3]


def _load_env() -> None:
    app_env = os.getenv("APP_ENV", "local")
    env_file = PROJECT_ROOT / f".env.{app_env}"
    load_dotenv(env_file)


@dataclass(frozen=True)
class Settings:
    app_env: str
    server_name: str
    gitlab_url: str
    gitlab_token: str
    git_remote_name: str
    git_repositories: dict[str, str]  # {프로젝트명: git경로} 매핑
    preferences_path: str
    template_yaml_path: str
    gitlab_timeout_seconds: float


def build_settings() -> Settings:
    _load_env()

    required_vars = ("APP_ENV", "SERVER_NAME", "GITLAB_URL", "GITLAB_TOKEN")
    missing = [k for k in required_vars if not os.getenv(k)]
    if missing:
        raise RuntimeError(f"필수 환경 변수 누락: {', '.join(missing)}")

    default_preferences_path = str(PROJECT_ROOT / "data" / "preferences.yaml")
    default_template_path = str(PROJECT_ROOT / "config" / "merge_request_templates.yaml")

    git_repos_raw = os.getenv("GIT_REPOSITORIES", "{}")
    try:
        git_repositories = json.loads(git_repos_raw)
    except json.JSONDecodeError:
        git_repositories = {}
    if not isinstance(git_repositories, dict):
        git_repositories = {}

    return Settings(
        app_env=os.environ["APP_ENV"],
        server_name=os.environ["SERVER_NAME"],
        gitlab_url=os.environ["GITLAB_URL"],
        gitlab_token=os.environ["GITLAB_TOKEN"],
        git_remote_name=os.getenv("GIT_REMOTE_NAME", "origin"),
        git_repositories=git_repositories,
        preferences_path=os.getenv("PREFERENCES_PATH", default_preferences_path),
        template_yaml_path=os.getenv("TEMPLATE_YAML_PATH", default_template_path),
        gitlab_timeout_seconds=float(os.getenv("GITLAB_TIMEOUT_SECONDS", "30")),
    )

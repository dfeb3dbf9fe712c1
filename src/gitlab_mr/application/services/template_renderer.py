import logging

from jinja2 import BaseLoader, Environment, Undefined

from gitlab_mr.application.ports.template_repository_port import TemplateRepositoryPort
from gitlab_mr.domain.merge_request import CommitSummary

logger = logging.getLogger(__name__)


class LoggingUndefined(Undefined):
    """미치환 변수 접근 시 경고 로그를 출력합니다."""
    def __str__(self) -> str:
        logger.warning("템플릿 미치환 변수: %s", self._undefined_name)
        return ""


class TemplateRenderer:
    """Jinja2 기반 머지 요청 설명 렌더러 (GitLab 마크다운 출력)"""

    # 설명에 나열할 최대 커밋 수
    _MAX_COMMITS = 50

    def __init__(self, template_repo: TemplateRepositoryPort):
        self._repo = template_repo
        # 결과가 HTML이 아닌 GitLab 마크다운이므로 autoescape 비활성화
        self._env = Environment(
            loader=BaseLoader(),
            undefined=LoggingUndefined,
            autoescape=False,
            keep_trailing_newline=True,
            trim_blocks=True,
            lstrip_blocks=True,
        )

    def render_description(
        self,
        source_branch: str,
        target_branch: str,
        commits: list[CommitSummary] | tuple[CommitSummary, ...] = (),
    ) -> str:
        """머지 요청 기본 설명을 렌더링합니다."""
        template = self._env.from_string(self._repo.get_description_template())
        rendered = template.render(
            SOURCE_BRANCH=source_branch,
            TARGET_BRANCH=target_branch,
            COMMITS=list(commits)[: self._MAX_COMMITS],
            COMMIT_COUNT=len(commits),
        )
        logger.info("설명 템플릿 렌더링 완료: 커밋 %d건, 길이=%d", len(commits), len(rendered))
        return rendered.strip()

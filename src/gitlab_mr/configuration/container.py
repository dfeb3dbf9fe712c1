from dataclasses import dataclass
from functools import lru_cache

from gitlab_mr.adapters.outbound.git_local_adapter import GitLocalAdapter
from gitlab_mr.adapters.outbound.gitlab_adapter import GitLabAdapter
from gitlab_mr.adapters.outbound.in_memory_session_store import InMemorySessionStore
from gitlab_mr.adapters.outbound.yaml_preference_store import YamlPreferenceStore
from gitlab_mr.adapters.outbound.yaml_template_repository import YamlTemplateRepository
from gitlab_mr.application.ports.notifier_port import NotifierPort
from gitlab_mr.application.services.template_renderer import TemplateRenderer
from gitlab_mr.application.use_cases.create_merge_request import MergeRequestWorkflow
from gitlab_mr.application.use_cases.list_merge_requests import ListMergeRequestsUseCase
from gitlab_mr.application.use_cases.merge_request_comments import (
    AddMergeRequestCommentUseCase,
    ListMergeRequestCommentsUseCase,
)
from gitlab_mr.application.use_cases.merge_request_orchestrator import MergeRequestOrchestrator
from gitlab_mr.application.use_cases.search_assignees import SearchAssigneesUseCase
from gitlab_mr.configuration.settings import Settings, build_settings


@dataclass(frozen=True)
class Container:
    settings: Settings
    vcs: GitLocalAdapter
    hosting: GitLabAdapter
    preference_store: YamlPreferenceStore
    template_repository: YamlTemplateRepository
    template_renderer: TemplateRenderer
    search_assignees_use_case: SearchAssigneesUseCase
    list_merge_requests_use_case: ListMergeRequestsUseCase
    merge_request_orchestrator: MergeRequestOrchestrator

    def list_comments_use_case(self, notifier: NotifierPort) -> ListMergeRequestCommentsUseCase:
        return ListMergeRequestCommentsUseCase(hosting=self.hosting, notifier=notifier)

    def add_comment_use_case(self, notifier: NotifierPort) -> AddMergeRequestCommentUseCase:
        return AddMergeRequestCommentUseCase(hosting=self.hosting, notifier=notifier)


@lru_cache(maxsize=1)
def build_container() -> Container:
    settings = build_settings()

    vcs = GitLocalAdapter()
    hosting = GitLabAdapter(
        base_url=settings.gitlab_url,
        token=settings.gitlab_token,
        remote_name=settings.git_remote_name,
        timeout=settings.gitlab_timeout_seconds,
    )
    preference_store = YamlPreferenceStore(yaml_path=settings.preferences_path)

    # 설명 템플릿 저장소 + 렌더러
    template_repo = YamlTemplateRepository(yaml_path=settings.template_yaml_path)
    template_renderer = TemplateRenderer(template_repo=template_repo)

    session_store = InMemorySessionStore(ttl_minutes=30)

    search_assignees_use_case = SearchAssigneesUseCase(hosting=hosting)
    list_merge_requests_use_case = ListMergeRequestsUseCase(hosting=hosting)

    def workflow_factory(notifier: NotifierPort) -> MergeRequestWorkflow:
        return MergeRequestWorkflow(
            vcs=vcs,
            hosting=hosting,
            preferences=preference_store,
            notifier=notifier,
            gitlab_url=settings.gitlab_url,
            remote_name=settings.git_remote_name,
        )

    # 머지 요청 오케스트레이터 (상태머신 기반)
    merge_request_orchestrator = MergeRequestOrchestrator(
        workflow_factory=workflow_factory,
        session_store=session_store,
        template_renderer=template_renderer,
        assignees=search_assignees_use_case,
    )

    return Container(
        settings=settings,
        vcs=vcs,
        hosting=hosting,
        preference_store=preference_store,
        template_repository=template_repo,
        template_renderer=template_renderer,
        search_assignees_use_case=search_assignees_use_case,
        list_merge_requests_use_case=list_merge_requests_use_case,
        merge_request_orchestrator=merge_request_orchestrator,
    )


def clear_container() -> None:
    build_container.cache_clear()

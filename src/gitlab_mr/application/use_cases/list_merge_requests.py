import logging

from gitlab_mr.application.ports.hosting_service_port import HostingServicePort
from gitlab_mr.domain.merge_request import GitLabProject, MergeRequest

logger = logging.getLogger(__name__)

_VALID_STATES = ("opened", "closed", "merged", "locked", "all")


class ListMergeRequestsUseCase:
    """프로젝트의 머지 요청 목록을 조회하는 Use Case"""

    def __init__(self, hosting: HostingServicePort):
        self.hosting = hosting

    async def execute(self, project: GitLabProject, state: str = "opened") -> list[MergeRequest]:
        if state not in _VALID_STATES:
            raise ValueError(f"지원하지 않는 state: '{state}'. 사용 가능: {list(_VALID_STATES)}")

        merge_requests = await self.hosting.list_merge_requests(project, state)
        logger.info(
            "✅ 머지 요청 조회 완료: project=%s, state=%s, %d건",
            project.path_with_namespace, state, len(merge_requests),
        )
        return merge_requests

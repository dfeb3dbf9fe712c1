import logging

from gitlab_mr.application.ports.hosting_service_port import HostingServicePort
from gitlab_mr.domain.merge_request import GitLabProject, GitLabUser

logger = logging.getLogger(__name__)


class SearchAssigneesUseCase:
    """프로젝트 멤버 중 담당자 후보를 검색하는 Use Case"""

    def __init__(self, hosting: HostingServicePort):
        self.hosting = hosting

    async def execute(self, project: GitLabProject, query: str = "") -> list[GitLabUser]:
        users = await self.hosting.search_users(project, query.strip())
        logger.info("담당자 검색: query=%r → %d명", query, len(users))
        return users

    async def resolve(self, project: GitLabProject, username: str) -> GitLabUser | None:
        """username(앞의 '@' 허용)과 정확히 일치하는 사용자를 찾습니다.

        Raises:
            ValueError: 일치하는 사용자가 없을 때
        """
        username = username.strip().lstrip("@")
        if not username:
            return None
        for user in await self.execute(project, username):
            if user.username == username:
                return user
        raise ValueError(f"담당자를 찾을 수 없습니다: {username}")

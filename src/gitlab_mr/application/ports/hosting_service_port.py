from typing import Protocol

from gitlab_mr.domain.merge_request import (
    BranchReference,
    Comment,
    GitLabProject,
    GitLabUser,
    MergeRequest,
)


class HostingServicePort(Protocol):
    """GitLab 서비스 계약. 전송/HTTP 실패는 ApiError로 발생합니다."""

    async def get_project(self, path_with_namespace: str) -> GitLabProject:
        """namespace/project 경로로 프로젝트를 조회합니다."""
        ...

    async def list_project_branches(self, project: GitLabProject) -> list[BranchReference]:
        """프로젝트의 원격 브랜치 목록을 조회합니다."""
        ...

    async def create_merge_request(
        self,
        project: GitLabProject,
        assignee: GitLabUser | None,
        source_branch: str,
        target_branch: str,
        title: str,
        description: str,
        remove_source_branch: bool,
    ) -> MergeRequest:
        """머지 요청을 생성합니다."""
        ...

    async def search_users(self, project: GitLabProject, query: str = "") -> list[GitLabUser]:
        """프로젝트 멤버 중 담당자 후보를 검색합니다."""
        ...

    async def list_merge_requests(self, project: GitLabProject, state: str = "opened") -> list[MergeRequest]:
        """프로젝트의 머지 요청 목록을 조회합니다."""
        ...

    async def get_merge_request(self, project: GitLabProject, iid: int) -> MergeRequest:
        """프로젝트 내 iid로 머지 요청을 조회합니다."""
        ...

    async def list_merge_request_comments(self, merge_request: MergeRequest) -> list[Comment]:
        """머지 요청 코멘트 목록을 작성 순으로 조회합니다."""
        ...

    async def add_comment(self, merge_request: MergeRequest, text: str) -> Comment:
        """머지 요청에 코멘트를 추가합니다."""
        ...

from typing import Protocol

from gitlab_mr.domain.merge_request import BranchReference, CommitSummary, PushResult


class VersionControlPort(Protocol):
    """로컬 git 저장소 계약"""

    async def push(
        self,
        repository: str,
        remote_name: str,
        remote_url: str,
        local_branch_name: str,
        force: bool = False,
        set_upstream: bool = True,
    ) -> PushResult:
        """로컬 브랜치를 원격으로 push합니다. 실패도 PushResult로 반환합니다."""
        ...

    async def current_branch(self, repository: str) -> BranchReference | None:
        """체크아웃된 로컬 브랜치를 반환합니다. detached HEAD이면 None."""
        ...

    async def local_branches(self, repository: str) -> list[BranchReference]:
        """로컬 브랜치 목록을 반환합니다."""
        ...

    async def commits_ahead(
        self,
        repository: str,
        from_branch: BranchReference,
        to_branch: BranchReference,
    ) -> list[CommitSummary]:
        """from_branch에는 있고 to_branch에는 없는 커밋 목록 (최신순)"""
        ...

    async def remote_url(self, repository: str, remote_name: str) -> str:
        """remote의 URL을 반환합니다."""
        ...

    async def repository_root(self, path: str) -> str:
        """경로가 속한 저장소의 최상위 디렉토리를 반환합니다."""
        ...

import logging
from typing import Any
from urllib.parse import quote

import httpx

from gitlab_mr.domain.errors import ApiError
from gitlab_mr.domain.merge_request import (
    BranchReference,
    Comment,
    GitLabProject,
    GitLabUser,
    MergeRequest,
    is_work_in_progress,
)

logger = logging.getLogger(__name__)

# 목록 API 페이지 크기 / 최대 페이지 수
_PER_PAGE = 100
_MAX_PAGES = 50


class GitLabAdapter:
    """GitLab REST API v4와 통신하는 Outbound Adapter"""

    def __init__(
        self,
        base_url: str,
        token: str,
        remote_name: str = "origin",
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.api_url = f"{self.base_url}/api/v4"
        self.token = token
        self.remote_name = remote_name
        self.timeout = timeout
        self._transport = transport

    # ------------------------------------------------------------------
    # Public methods
    # ------------------------------------------------------------------

    async def get_project(self, path_with_namespace: str) -> GitLabProject:
        """namespace/project 경로로 프로젝트를 조회합니다."""
        url = f"{self.api_url}/projects/{quote(path_with_namespace, safe='')}"
        logger.info("🌐 GitLab 프로젝트 조회: %s", path_with_namespace)

        data = await self._request(
            "GET",
            url,
            custom_errors={404: f"GitLab 프로젝트를 찾을 수 없습니다: {path_with_namespace}"},
            context_msg="GitLab 프로젝트 조회",
        )
        project = self._parse_project(data)
        logger.info("✅ 프로젝트 조회 성공: id=%d, path=%s", project.id, project.path_with_namespace)
        return project

    async def list_project_branches(self, project: GitLabProject) -> list[BranchReference]:
        url = f"{self.api_url}/projects/{project.id}/repository/branches"
        items = await self._paginate(url, context_msg="GitLab 브랜치 목록 조회")
        branches = [BranchReference.remote(item.get("name", ""), self.remote_name) for item in items]
        logger.info("✅ 브랜치 조회 성공: %s, %d건", project.path_with_namespace, len(branches))
        return branches

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
        url = f"{self.api_url}/projects/{project.id}/merge_requests"
        payload: dict[str, Any] = {
            "source_branch": source_branch,
            "target_branch": target_branch,
            "title": title,
            "description": description,
            "remove_source_branch": remove_source_branch,
        }
        if assignee is not None:
            payload["assignee_id"] = assignee.id

        logger.info("🌐 GitLab 머지 요청 생성: %s → %s (%s)", source_branch, target_branch, title)

        data = await self._request(
            "POST",
            url,
            json=payload,
            custom_errors={
                409: f"이미 열린 머지 요청이 있습니다: {source_branch} → {target_branch}",
                400: "잘못된 머지 요청입니다: ",
            },
            context_msg="GitLab 머지 요청 생성",
        )
        merge_request = self._parse_merge_request(data)
        logger.info("✅ 머지 요청 생성 성공: iid=%d", merge_request.iid)
        return merge_request

    async def search_users(self, project: GitLabProject, query: str = "") -> list[GitLabUser]:
        url = f"{self.api_url}/projects/{project.id}/users"
        params = {"search": query} if query else None
        items = await self._paginate(url, params=params, context_msg="GitLab 사용자 검색", max_pages=1)
        return [
            GitLabUser(id=item.get("id", 0), username=item.get("username", ""), name=item.get("name", ""))
            for item in items
        ]

    async def list_merge_requests(self, project: GitLabProject, state: str = "opened") -> list[MergeRequest]:
        url = f"{self.api_url}/projects/{project.id}/merge_requests"
        items = await self._paginate(
            url, params={"state": state}, context_msg="GitLab 머지 요청 목록 조회",
        )
        return [self._parse_merge_request(item) for item in items]

    async def get_merge_request(self, project: GitLabProject, iid: int) -> MergeRequest:
        url = f"{self.api_url}/projects/{project.id}/merge_requests/{iid}"
        data = await self._request(
            "GET",
            url,
            custom_errors={404: f"머지 요청을 찾을 수 없습니다: !{iid}"},
            context_msg="GitLab 머지 요청 조회",
        )
        return self._parse_merge_request(data)

    async def list_merge_request_comments(self, merge_request: MergeRequest) -> list[Comment]:
        """머지 요청 코멘트(note)를 작성 순으로 조회합니다."""
        url = f"{self.api_url}/projects/{merge_request.project_id}/merge_requests/{merge_request.iid}/notes"
        items = await self._paginate(
            url,
            params={"sort": "asc", "order_by": "created_at"},
            context_msg="GitLab 코멘트 조회",
        )
        return [self._parse_comment(item) for item in items]

    async def add_comment(self, merge_request: MergeRequest, text: str) -> Comment:
        url = f"{self.api_url}/projects/{merge_request.project_id}/merge_requests/{merge_request.iid}/notes"
        logger.info("🌐 GitLab 코멘트 추가: iid=%d, %d자", merge_request.iid, len(text))
        data = await self._request("POST", url, json={"body": text}, context_msg="GitLab 코멘트 추가")
        return self._parse_comment(data)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _client(self) -> httpx.AsyncClient:
        """토큰 헤더와 timeout이 설정된 httpx.AsyncClient를 반환합니다."""
        return httpx.AsyncClient(
            headers={"PRIVATE-TOKEN": self.token},
            timeout=self.timeout,
            transport=self._transport,
        )

    async def _request(
        self,
        method: str,
        url: str,
        *,
        custom_errors: dict[int, str] | None = None,
        context_msg: str = "GitLab API",
        **kwargs,
    ) -> Any:
        """공통 HTTP 요청. JSON 반환."""
        try:
            async with self._client() as client:
                response = await client.request(method, url, **kwargs)
                logger.info("HTTP Status: %d (%s %s)", response.status_code, method, url)
                response.raise_for_status()
                data = response.json()
                if not isinstance(data, dict):
                    raise ApiError(f"{context_msg} 응답 형식이 올바르지 않습니다")
                return data
        except httpx.HTTPStatusError as e:
            logger.error("❌ HTTP 오류 발생: %d", e.response.status_code)
            logger.error("응답 본문: %s", e.response.text[:500])
            self._raise_gitlab_error(e, custom_errors)
        except httpx.RequestError as e:
            logger.error("❌ 네트워크 오류: %s", str(e))
            raise ApiError(f"GitLab 서버 연결 실패: {self.base_url}") from e
        except ValueError as e:
            logger.error("❌ 응답 파싱 오류: %s", str(e))
            raise ApiError(f"{context_msg} 응답을 해석할 수 없습니다") from e

    async def _paginate(
        self,
        url: str,
        *,
        params: dict[str, Any] | None = None,
        context_msg: str = "GitLab API",
        max_pages: int = _MAX_PAGES,
    ) -> list[dict]:
        """X-Next-Page 헤더를 따라 목록 API 전체 페이지를 수집합니다."""
        items: list[dict] = []
        page = "1"
        try:
            async with self._client() as client:
                for _ in range(max_pages):
                    query = {**(params or {}), "per_page": _PER_PAGE, "page": page}
                    response = await client.get(url, params=query)
                    response.raise_for_status()
                    data = response.json()
                    if not isinstance(data, list) or not all(isinstance(item, dict) for item in data):
                        raise ApiError(f"{context_msg} 응답 형식이 올바르지 않습니다")
                    items.extend(data)
                    page = response.headers.get("X-Next-Page", "")
                    if not page:
                        break
        except httpx.HTTPStatusError as e:
            logger.error("❌ HTTP 오류 발생: %d (%s)", e.response.status_code, context_msg)
            logger.error("응답 본문: %s", e.response.text[:500])
            self._raise_gitlab_error(e)
        except httpx.RequestError as e:
            logger.error("❌ 네트워크 오류: %s", str(e))
            raise ApiError(f"GitLab 서버 연결 실패: {self.base_url}") from e
        except ValueError as e:
            raise ApiError(f"{context_msg} 응답을 해석할 수 없습니다") from e

        logger.info("%s: %d건", context_msg, len(items))
        return items

    def _raise_gitlab_error(
        self,
        e: httpx.HTTPStatusError,
        custom_errors: dict[int, str] | None = None,
    ) -> None:
        """HTTP 상태 코드별 적절한 ApiError를 발생시킵니다."""
        status = e.response.status_code
        if custom_errors and status in custom_errors:
            msg = custom_errors[status]
            if msg.endswith(": "):
                msg = f"{msg}{e.response.text[:200]}"
            raise ApiError(msg, status_code=status) from e
        if status == 401:
            raise ApiError("GitLab 인증 실패: GITLAB_TOKEN을 확인하세요", status_code=status) from e
        elif status == 403:
            raise ApiError("GitLab 접근 권한이 없습니다", status_code=status) from e
        else:
            raise ApiError(f"GitLab API 오류: {status}", status_code=status) from e

    @staticmethod
    def _parse_project(data: dict[str, Any]) -> GitLabProject:
        return GitLabProject(
            id=data.get("id", 0),
            name=data.get("name", ""),
            path_with_namespace=data.get("path_with_namespace", ""),
            web_url=data.get("web_url", ""),
            default_branch=data.get("default_branch") or "",
        )

    @staticmethod
    def _parse_merge_request(data: dict[str, Any]) -> MergeRequest:
        """API 응답을 MergeRequest 엔티티로 파싱합니다."""
        title = data.get("title", "")
        # 신규 GitLab은 draft, 구버전은 work_in_progress 필드를 사용
        wip = data.get("draft", data.get("work_in_progress"))
        author = data.get("author") or {}
        return MergeRequest(
            id=data.get("id", 0),
            iid=data.get("iid", 0),
            project_id=data.get("project_id", 0),
            title=title,
            source_branch=data.get("source_branch", ""),
            target_branch=data.get("target_branch", ""),
            state=data.get("state", ""),
            web_url=data.get("web_url", ""),
            work_in_progress=bool(wip) if wip is not None else is_work_in_progress(title),
            author=author.get("username", ""),
        )

    @staticmethod
    def _parse_comment(data: dict[str, Any]) -> Comment:
        author = data.get("author") or {}
        return Comment(
            id=data.get("id", 0),
            author=author.get("username", ""),
            body=data.get("body", ""),
            created_at=data.get("created_at", ""),
            system=bool(data.get("system", False)),
        )

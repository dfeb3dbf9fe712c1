import logging

from gitlab_mr.application.ports.hosting_service_port import HostingServicePort
from gitlab_mr.application.ports.notifier_port import NotifierPort
from gitlab_mr.domain.errors import ApiError
from gitlab_mr.domain.merge_request import Comment, MergeRequest

logger = logging.getLogger(__name__)


class ListMergeRequestCommentsUseCase:
    """머지 요청 코멘트 목록을 조회하는 Use Case"""

    def __init__(self, hosting: HostingServicePort, notifier: NotifierPort):
        self.hosting = hosting
        self.notifier = notifier

    async def execute(self, merge_request: MergeRequest) -> list[Comment]:
        """
        코멘트 목록을 조회합니다.

        API 실패는 호출자에게 전파하지 않고 빈 목록 + 오류 알림 1건으로 처리합니다.
        """
        logger.info("💬 코멘트 조회: project_id=%d, iid=%d", merge_request.project_id, merge_request.iid)
        try:
            comments = await self.hosting.list_merge_request_comments(merge_request)
        except ApiError as e:
            logger.warning("코멘트 조회 실패, 빈 목록 반환: %s", e)
            self.notifier.error("Cannot Load Comments", "Cannot load comments from GitLab API")
            return []

        logger.info("✅ Use Case 실행 완료: 코멘트 %d건", len(comments))
        return comments


class AddMergeRequestCommentUseCase:
    """머지 요청에 코멘트를 추가하는 Use Case"""

    def __init__(self, hosting: HostingServicePort, notifier: NotifierPort):
        self.hosting = hosting
        self.notifier = notifier

    async def execute(self, merge_request: MergeRequest, text: str) -> Comment | None:
        """
        코멘트를 추가합니다.

        Args:
            merge_request: 대상 머지 요청
            text: 코멘트 본문. 공백뿐이면 아무것도 하지 않습니다

        Returns:
            생성된 코멘트. 본문이 비어 있으면 None
        """
        if not text or not text.strip():
            logger.info("빈 코멘트 - API 호출 생략")
            return None

        try:
            comment = await self.hosting.add_comment(merge_request, text)
        except ApiError:
            self.notifier.error("Cannot Add Comment", "Cannot add comment.")
            raise

        logger.info("✅ 코멘트 추가 완료: id=%d (iid=%d)", comment.id, merge_request.iid)
        return comment

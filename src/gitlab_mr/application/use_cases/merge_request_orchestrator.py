import logging
import uuid
from collections.abc import Callable
from datetime import datetime, timedelta

from gitlab_mr.application.ports.notifier_port import NotifierPort
from gitlab_mr.application.ports.session_store_port import MergeRequestSessionStorePort
from gitlab_mr.application.services.template_renderer import TemplateRenderer
from gitlab_mr.application.use_cases.create_merge_request import MergeRequestWorkflow
from gitlab_mr.application.use_cases.search_assignees import SearchAssigneesUseCase
from gitlab_mr.domain.merge_request import BranchReference, MergeRequestCreationResult, WIP_PREFIX
from gitlab_mr.domain.merge_request_workflow import (
    APPROVAL_TOKEN_TTL_MINUTES,
    ConfirmationQuestion,
    MergeRequestSession,
    QuestionKind,
    SessionState,
    WorkflowContext,
)

logger = logging.getLogger(__name__)


class _ApprovedQuestions:
    """prepare 단계에서 사용자에게 보여준 질문만 승인된 것으로 답합니다."""

    def __init__(self, approved: set[QuestionKind]):
        self._approved = approved

    async def confirm(self, question: ConfirmationQuestion) -> bool:
        return question.kind in self._approved


class MergeRequestOrchestrator:
    """
    2단계 머지 요청 생성 오케스트레이터.

    prepare: 컨텍스트 로드 + diff 정책 평가 → 승인 대기 세션 생성 (push/생성 없음)
    approve: 승인 토큰 확인 후 사전 조건 재검사 → push → 머지 요청 생성
    WAIT_APPROVAL 이전에는 push와 머지 요청 생성을 절대 호출하지 않습니다.
    """

    def __init__(
        self,
        workflow_factory: Callable[[NotifierPort], MergeRequestWorkflow],
        session_store: MergeRequestSessionStorePort,
        template_renderer: TemplateRenderer,
        assignees: SearchAssigneesUseCase,
    ):
        self._new_workflow = workflow_factory
        self._sessions = session_store
        self._renderer = template_renderer
        self._assignees = assignees

    async def load_context(
        self, notifier: NotifierPort, repository: str = "", file_hint: str | None = None,
    ) -> WorkflowContext:
        """대상 브랜치 후보 조회용 컨텍스트 로드 (세션을 만들지 않음)"""
        workflow = self._new_workflow(notifier)
        return await workflow.load_context(repository, file_hint)

    async def prepare(
        self,
        notifier: NotifierPort,
        repository: str,
        title: str,
        target_branch: str = "",
        description: str = "",
        assignee: str = "",
        remove_source_branch: bool | None = None,
        work_in_progress: bool | None = None,
    ) -> MergeRequestSession:
        """머지 요청 생성을 준비하고 승인 대기 세션을 반환합니다.

        target_branch를 비우면 마지막으로 사용한 대상 브랜치를 사용합니다.
        remove_source_branch / work_in_progress를 생략하면 저장된 기본값을 따릅니다.
        """
        workflow = self._new_workflow(notifier)
        context = await workflow.load_context(repository)

        target = self._resolve_target(context, target_branch)
        questions, diff, diff_error = await workflow.evaluate_diff(context, target)

        preferences = context.preferences
        if remove_source_branch is None:
            remove_source_branch = preferences.delete_merged_branch
        if work_in_progress is None:
            work_in_progress = preferences.merge_as_work_in_progress

        title = title.strip()
        if work_in_progress and not title.startswith(WIP_PREFIX):
            title = f"{WIP_PREFIX} {title}"
        elif work_in_progress is False and title.startswith(WIP_PREFIX):
            title = title[len(WIP_PREFIX):].strip()
        if not title:
            raise ValueError("title 파라미터가 필요합니다")

        if not description.strip():
            commits = diff.commits_source_ahead if diff else ()
            description = self._renderer.render_description(
                source_branch=context.source_branch.name,
                target_branch=target.name,
                commits=commits,
            )

        resolved_assignee = await self._assignees.resolve(context.project, assignee) if assignee else None

        session = MergeRequestSession(
            context=context,
            target_branch=target,
            title=title,
            description=description,
            assignee=resolved_assignee,
            remove_source_branch=remove_source_branch,
            questions=questions,
            diff_summary=diff,
            diff_error=diff_error or "",
            workflow=workflow,
            notifier=notifier,
        )
        session.approval_token = str(uuid.uuid4())
        session.approval_expires_at = datetime.now() + timedelta(minutes=APPROVAL_TOKEN_TTL_MINUTES)
        self._sessions.save(session)

        logger.info(
            "머지 요청 준비 완료: session=%s, %s → %s, 질문 %d건",
            session.session_id, context.source_branch.name, target.name, len(questions),
        )
        return session

    async def approve(self, session_id: str, approval_token: str) -> MergeRequestCreationResult | None:
        """사용자 승인 후 push와 머지 요청 생성을 실행합니다.

        Returns:
            생성 결과. prepare 이후 새로운 확인 질문이 생겨 진행이 중단되면 None
        """
        session = self._get_pending_session(session_id, approval_token)
        workflow: MergeRequestWorkflow = session.workflow

        session.state = SessionState.CREATING
        self._sessions.save(session)

        approved = {q.kind for q in session.questions}
        try:
            decision = await workflow.check_preconditions(
                session.context, session.target_branch, _ApprovedQuestions(approved),
            )
            if not decision.proceed:
                declined = decision.questions[-1]
                logger.info("prepare 이후 새 확인 질문 발생으로 중단: %s", declined.kind.value)
                session.state = SessionState.ABORTED
                session.error = declined.message
                self._sessions.save(session)
                return None

            result = await workflow.submit(
                context=session.context,
                candidate_target=session.target_branch,
                assignee=session.assignee,
                title=session.title,
                description=session.description,
                remove_source_branch=session.remove_source_branch,
            )
        except Exception as e:
            session.state = SessionState.FAILED
            session.error = str(e)
            self._sessions.save(session)
            raise

        session.state = SessionState.DONE
        session.result = result
        self._sessions.save(session)
        return result

    def cancel(self, session_id: str) -> bool:
        """승인 대기 세션을 취소합니다. 사용자가 확인 질문을 거절한 경우에 해당합니다."""
        session = self._sessions.get(session_id)
        if session is None:
            return False
        if session.state != SessionState.WAIT_APPROVAL:
            raise RuntimeError(f"취소 가능한 상태가 아닙니다. 현재: {session.state.value}")
        self._sessions.delete(session_id)
        logger.info("머지 요청 세션 취소: %s", session_id)
        return True

    def get_session(self, session_id: str) -> MergeRequestSession | None:
        return self._sessions.get(session_id)

    def get_status(self, session_id: str) -> dict | None:
        """세션 상태 조회"""
        session = self._sessions.get(session_id)
        if session is None:
            return None
        return {
            "session_id": session.session_id,
            "state": session.state.value,
            "workflow_state": session.workflow.state.value if session.workflow else "",
            "created_at": session.created_at.isoformat(),
            "updated_at": session.updated_at.isoformat(),
            "source_branch": session.context.source_branch.name,
            "target_branch": session.target_branch.name,
            "title": session.title,
            "questions": [q.message for q in session.questions],
            "approval_token": session.approval_token if session.state == SessionState.WAIT_APPROVAL else "",
            "url": session.result.url if session.result else "",
            "error": session.error,
        }

    # ── Internal ──

    def _get_pending_session(self, session_id: str, approval_token: str) -> MergeRequestSession:
        session = self._sessions.get(session_id)
        if session is None:
            raise RuntimeError(f"세션을 찾을 수 없습니다: {session_id}")

        if session.state != SessionState.WAIT_APPROVAL:
            raise RuntimeError(f"승인 가능한 상태가 아닙니다. 현재: {session.state.value}")

        if session.approval_token != approval_token:
            raise RuntimeError("승인 토큰이 일치하지 않습니다.")

        if session.is_approval_expired():
            raise RuntimeError(
                f"승인 토큰이 만료되었습니다 (유효 시간: {APPROVAL_TOKEN_TTL_MINUTES}분). "
                f"머지 요청 준비를 다시 시작해주세요."
            )
        return session

    @staticmethod
    def _resolve_target(context: WorkflowContext, target_branch: str) -> BranchReference | None:
        name = target_branch.strip()
        if not name:
            return context.last_used_branch

        target = context.find_remote_branch(name)
        if target is None:
            available = [b.name for b in context.remote_branches[:20]]
            raise ValueError(f"원격 브랜치를 찾을 수 없습니다: '{name}'. 사용 가능(일부): {available}")
        return target

import logging

from gitlab_mr.application.ports.confirmation_port import ConfirmationPort
from gitlab_mr.application.ports.hosting_service_port import HostingServicePort
from gitlab_mr.application.ports.notifier_port import NotifierPort
from gitlab_mr.application.ports.preference_store_port import PreferenceStorePort
from gitlab_mr.application.ports.version_control_port import VersionControlPort
from gitlab_mr.domain.errors import (
    ApiError,
    BranchListError,
    GitCommandError,
    NoCurrentBranchError,
    NoTargetSelectedError,
    PushError,
)
from gitlab_mr.domain.merge_request import (
    BranchReference,
    DiffSummary,
    GitLabUser,
    MergeRequestCreationResult,
    MergeRequestRequest,
    build_merge_request_url,
    project_path_from_remote_url,
)
from gitlab_mr.domain.merge_request_workflow import (
    CANNOT_CREATE_MERGE_REQUEST,
    TRANSITIONS,
    ConfirmationDecision,
    ConfirmationQuestion,
    WorkflowContext,
    WorkflowState,
    build_questions,
)

logger = logging.getLogger(__name__)


class MergeRequestWorkflow:
    """
    머지 요청 생성 워크플로우.

    생성 시도 1회당 인스턴스 1개를 사용합니다.
    IDLE → CONTEXT_LOADED → PRECONDITIONS_CHECKED → PUSHED → SUBMITTED | FAILED
    push 실패 시 머지 요청 생성은 호출하지 않으며, 생성 실패 시 push는 되돌리지 않습니다.
    """

    def __init__(
        self,
        vcs: VersionControlPort,
        hosting: HostingServicePort,
        preferences: PreferenceStorePort,
        notifier: NotifierPort,
        gitlab_url: str,
        remote_name: str = "origin",
    ):
        self._vcs = vcs
        self._hosting = hosting
        self._preferences = preferences
        self._notifier = notifier
        self._gitlab_url = gitlab_url
        self._remote_name = remote_name
        self.state = WorkflowState.IDLE

    def _transition(self, target: WorkflowState) -> None:
        allowed = TRANSITIONS.get(self.state, set())
        if target not in allowed:
            raise RuntimeError(
                f"잘못된 상태 전이: {self.state.value} → {target.value}. "
                f"허용: {[s.value for s in allowed]}"
            )
        logger.info("상태 전이: %s → %s", self.state.value, target.value)
        self.state = target

    # ── 1단계: 컨텍스트 로드 ──

    async def load_context(self, repository: str = "", file_hint: str | None = None) -> WorkflowContext:
        """저장소 상태와 GitLab 원격 브랜치 목록을 읽어 WorkflowContext를 만듭니다.

        Raises:
            NoCurrentBranchError: 체크아웃된 브랜치가 없을 때
            ApiError: GitLab 프로젝트를 조회할 수 없을 때
            BranchListError: GitLab 브랜치 목록 조회 실패 시
        """
        if not repository:
            if not file_hint:
                raise ValueError("repository 또는 file_hint 중 하나를 지정해야 합니다")
            repository = await self._vcs.repository_root(file_hint)
            logger.info("file_hint로 저장소 결정: %s → %s", file_hint, repository)

        current = await self._vcs.current_branch(repository)
        if current is None:
            self._notifier.error(CANNOT_CREATE_MERGE_REQUEST, "No current branch")
            raise NoCurrentBranchError(f"체크아웃된 브랜치가 없습니다: {repository}")

        try:
            local_branches = await self._vcs.local_branches(repository)
        except GitCommandError as e:
            self._notifier.error(CANNOT_CREATE_MERGE_REQUEST, "Cannot list local branches")
            raise BranchListError(f"로컬 브랜치 목록을 조회할 수 없습니다: {repository}") from e

        try:
            remote_url = await self._vcs.remote_url(repository, self._remote_name)
            project_path = project_path_from_remote_url(remote_url)
        except (GitCommandError, ValueError) as e:
            self._notifier.error(CANNOT_CREATE_MERGE_REQUEST, f"Cannot resolve remote '{self._remote_name}'")
            raise ApiError(f"GitLab 프로젝트 경로를 결정할 수 없습니다: {e}") from e

        try:
            project = await self._hosting.get_project(project_path)
        except ApiError:
            self._notifier.error(CANNOT_CREATE_MERGE_REQUEST, f"Cannot find GitLab project '{project_path}'")
            raise

        preferences = self._preferences.load(repository)

        try:
            branches = await self._hosting.list_project_branches(project)
        except Exception as e:
            logger.error("GitLab 브랜치 목록 조회 실패: %s", e)
            self._notifier.error(CANNOT_CREATE_MERGE_REQUEST, "Cannot list GitLab branches")
            raise BranchListError(f"GitLab 브랜치 목록을 조회할 수 없습니다: {project.path_with_namespace}") from e

        remote_branches: list[BranchReference] = []
        last_used_branch = None
        for branch in branches:
            reference = BranchReference.remote(branch.name, self._remote_name)
            if branch.name == preferences.last_merged_branch:
                last_used_branch = reference
            remote_branches.append(reference)

        context = WorkflowContext(
            repository=repository,
            source_branch=BranchReference.local(current.name),
            remote_name=self._remote_name,
            remote_url=remote_url,
            project=project,
            local_branches=[BranchReference.local(b.name) for b in local_branches],
            remote_branches=remote_branches,
            last_used_branch=last_used_branch,
            preferences=preferences,
        )
        logger.info(
            "컨텍스트 로드 완료: repo=%s, source=%s, project=%s, remote_branches=%d, last_used=%s",
            repository, current.name, project.path_with_namespace, len(remote_branches),
            last_used_branch.name if last_used_branch else None,
        )
        self._transition(WorkflowState.CONTEXT_LOADED)
        return context

    # ── 2단계: 사전 조건 검사 ──

    async def compute_diff(self, context: WorkflowContext, target: BranchReference) -> DiffSummary:
        """소스/대상 브랜치 간 양방향 커밋 비교"""
        source_ahead = await self._vcs.commits_ahead(context.repository, context.source_branch, target)
        target_ahead = await self._vcs.commits_ahead(context.repository, target, context.source_branch)
        logger.info(
            "diff 계산 완료: %s → %s (source_ahead=%d, target_ahead=%d)",
            context.source_branch.name, target.ref, len(source_ahead), len(target_ahead),
        )
        return DiffSummary(
            commits_source_ahead=tuple(source_ahead),
            commits_target_ahead=tuple(target_ahead),
        )

    async def evaluate_diff(
        self, context: WorkflowContext, candidate_target: BranchReference | None,
    ) -> tuple[list[ConfirmationQuestion], DiffSummary | None, str | None]:
        """확인 없이 diff 정책만 평가합니다.

        Returns:
            (질문 목록, diff 결과, diff 오류 메시지) 튜플. diff 계산 실패 시 질문 없이 진행 가능.
        """
        if candidate_target is None:
            self._notifier.warning(CANNOT_CREATE_MERGE_REQUEST, "Target branch is not selected")
            raise NoTargetSelectedError("대상 브랜치가 선택되지 않았습니다")

        try:
            diff = await self.compute_diff(context, candidate_target)
        except Exception as e:
            # diff 계산 실패는 차단하지 않음 (대상 미선택과 정책이 다름)
            logger.warning("diff 계산 실패, 확인 없이 진행: %s", e)
            self._notifier.error(CANNOT_CREATE_MERGE_REQUEST, "Can't collect diff data")
            return [], None, str(e)

        return build_questions(diff, context.source_branch, candidate_target), diff, None

    async def check_preconditions(
        self,
        context: WorkflowContext,
        candidate_target: BranchReference | None,
        confirmation: ConfirmationPort,
    ) -> ConfirmationDecision:
        """대상 브랜치 선택 여부와 diff 정책을 검사하고 필요 시 사용자 확인을 받습니다.

        Raises:
            NoTargetSelectedError: 대상 브랜치가 없을 때
        """
        questions, diff, diff_error = await self.evaluate_diff(context, candidate_target)

        asked: list[ConfirmationQuestion] = []
        for question in questions:
            asked.append(question)
            if not await confirmation.confirm(question):
                logger.info("사용자가 진행을 거절함: %s", question.kind.value)
                return ConfirmationDecision(
                    proceed=False,
                    questions=tuple(asked),
                    diff_summary=diff,
                    diff_error=diff_error,
                )

        self._transition(WorkflowState.PRECONDITIONS_CHECKED)
        return ConfirmationDecision(
            proceed=True,
            questions=tuple(asked),
            diff_summary=diff,
            diff_error=diff_error,
        )

    # ── 3단계: push + 머지 요청 생성 ──

    async def submit(
        self,
        context: WorkflowContext,
        candidate_target: BranchReference,
        assignee: GitLabUser | None,
        title: str,
        description: str,
        remove_source_branch: bool,
    ) -> MergeRequestCreationResult:
        """소스 브랜치를 push하고 머지 요청을 생성합니다.

        Raises:
            PushError: push 실패 (머지 요청 생성은 시도하지 않음)
            ApiError: 머지 요청 생성 실패 (push는 되돌리지 않음)
        """
        if self.state != WorkflowState.PRECONDITIONS_CHECKED:
            raise RuntimeError(
                f"사전 조건 검사 전에는 제출할 수 없습니다. 현재: {self.state.value}"
            )

        request = MergeRequestRequest(
            source_branch=context.source_branch.name,
            target_branch=candidate_target.name,
            title=title,
            description=description,
            assignee=assignee,
            remove_source_branch=remove_source_branch,
        )

        # 결과와 무관하게 다음 실행의 기본값으로 저장
        preferences = context.preferences
        preferences.merge_as_work_in_progress = request.work_in_progress
        preferences.delete_merged_branch = remove_source_branch
        preferences.last_merged_branch = candidate_target.name
        try:
            self._preferences.save(context.repository, preferences)
        except OSError as e:
            logger.warning("기본값 저장 실패, push는 계속 진행: %s", e)

        logger.info("현재 브랜치 push 중: %s → %s", request.source_branch, candidate_target.remote_name)
        result = await self._vcs.push(
            context.repository,
            candidate_target.remote_name,
            context.remote_url,
            request.source_branch,
            force=False,
            set_upstream=True,
        )
        if not result.success:
            self._transition(WorkflowState.FAILED)
            self._notifier.error(CANNOT_CREATE_MERGE_REQUEST, f"Push failed:\n{result.error_output}")
            raise PushError(result.error_output)
        self._transition(WorkflowState.PUSHED)

        logger.info("머지 요청 생성 중: %s → %s", request.source_branch, request.target_branch)
        try:
            merge_request = await self._hosting.create_merge_request(
                project=context.project,
                assignee=request.assignee,
                source_branch=request.source_branch,
                target_branch=request.target_branch,
                title=request.title,
                description=request.description,
                remove_source_branch=request.remove_source_branch,
            )
        except ApiError:
            self._transition(WorkflowState.FAILED)
            self._notifier.error(CANNOT_CREATE_MERGE_REQUEST, "Cannot create Merge Request via GitLab REST API")
            raise
        self._transition(WorkflowState.SUBMITTED)

        url = build_merge_request_url(self._gitlab_url, context.project.path_with_namespace, merge_request.iid)
        self._notifier.info(request.title, f"Merge request '{request.title}' created", url=url)
        logger.info("✅ 머지 요청 생성 완료: iid=%d, url=%s", merge_request.iid, url)

        return MergeRequestCreationResult(
            merge_request=merge_request,
            url=url,
            work_in_progress=request.work_in_progress,
        )

import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from gitlab_mr.domain.merge_request import (
    BranchReference,
    DiffSummary,
    GitLabProject,
    GitLabUser,
    MergeRequestCreationResult,
    ProjectPreferences,
)

# 승인 토큰 유효 시간 (분)
APPROVAL_TOKEN_TTL_MINUTES = 30

CANNOT_CREATE_MERGE_REQUEST = "Cannot Create Merge Request"


class WorkflowState(Enum):
    IDLE = "idle"
    CONTEXT_LOADED = "context_loaded"
    PRECONDITIONS_CHECKED = "preconditions_checked"
    PUSHED = "pushed"
    SUBMITTED = "submitted"
    FAILED = "failed"


# 유효한 상태 전이 맵 (한 번 지나간 상태로는 돌아가지 않음)
TRANSITIONS: dict[WorkflowState, set[WorkflowState]] = {
    WorkflowState.IDLE:                  {WorkflowState.CONTEXT_LOADED},
    WorkflowState.CONTEXT_LOADED:        {WorkflowState.PRECONDITIONS_CHECKED},
    WorkflowState.PRECONDITIONS_CHECKED: {WorkflowState.PUSHED, WorkflowState.FAILED},
    WorkflowState.PUSHED:                {WorkflowState.SUBMITTED, WorkflowState.FAILED},
    WorkflowState.SUBMITTED:             set(),
    WorkflowState.FAILED:                set(),
}


class QuestionKind(Enum):
    EMPTY_MERGE_REQUEST = "empty_merge_request"
    TARGET_NOT_FULLY_MERGED = "target_not_fully_merged"


@dataclass(frozen=True)
class ConfirmationQuestion:
    """사용자에게 진행 여부를 묻는 질문"""
    kind: QuestionKind
    title: str
    message: str


def build_questions(
    diff: DiffSummary,
    source: BranchReference,
    target: BranchReference,
) -> list[ConfirmationQuestion]:
    """diff 결과로 사용자 확인이 필요한 질문 목록을 만듭니다. 두 조건은 독립적으로 평가됩니다."""
    source_name = f"'{source.name}'"
    target_name = f"'{target.ref}'"
    questions: list[ConfirmationQuestion] = []

    if not diff.commits_source_ahead:
        questions.append(ConfirmationQuestion(
            kind=QuestionKind.EMPTY_MERGE_REQUEST,
            title="Empty Merge Request",
            message=(
                f"The branch {source_name} is fully merged to the branch {target_name}\n"
                "Do you want to proceed anyway?"
            ),
        ))
    if diff.commits_target_ahead:
        questions.append(ConfirmationQuestion(
            kind=QuestionKind.TARGET_NOT_FULLY_MERGED,
            title="Target Branch Is Not Fully Merged",
            message=(
                f"The branch {target_name} is not fully merged to the branch {source_name}\n"
                "Do you want to proceed anyway?"
            ),
        ))
    return questions


@dataclass(frozen=True)
class ConfirmationDecision:
    """사전 조건 검사 결과"""
    proceed: bool
    questions: tuple[ConfirmationQuestion, ...] = ()
    diff_summary: DiffSummary | None = None
    diff_error: str | None = None


@dataclass
class WorkflowContext:
    """머지 요청 생성에 필요한 정보 묶음 (load_context 결과)"""
    repository: str
    source_branch: BranchReference
    remote_name: str
    remote_url: str
    project: GitLabProject
    local_branches: list[BranchReference] = field(default_factory=list)
    remote_branches: list[BranchReference] = field(default_factory=list)
    last_used_branch: BranchReference | None = None
    preferences: ProjectPreferences = field(default_factory=ProjectPreferences)

    def find_remote_branch(self, name: str) -> BranchReference | None:
        return next((b for b in self.remote_branches if b.name == name), None)


class SessionState(Enum):
    WAIT_APPROVAL = "wait_approval"
    CREATING = "creating"
    DONE = "done"
    ABORTED = "aborted"
    FAILED = "failed"


@dataclass
class MergeRequestSession:
    """2단계(prepare → approve) 머지 요청 생성 세션"""
    context: WorkflowContext
    target_branch: BranchReference
    title: str
    description: str = ""
    assignee: GitLabUser | None = None
    remove_source_branch: bool = False
    questions: list[ConfirmationQuestion] = field(default_factory=list)
    diff_summary: DiffSummary | None = None
    diff_error: str = ""
    session_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    state: SessionState = SessionState.WAIT_APPROVAL
    created_at: datetime = field(default_factory=datetime.now)
    updated_at: datetime = field(default_factory=datetime.now)

    approval_token: str = ""
    approval_expires_at: datetime | None = None

    result: MergeRequestCreationResult | None = None
    error: str = ""

    # 같은 생성 시도를 이어가기 위한 워크플로우 인스턴스와 알림 수집기
    workflow: Any = field(default=None, repr=False)
    notifier: Any = field(default=None, repr=False)

    def touch(self) -> None:
        self.updated_at = datetime.now()

    def is_approval_expired(self) -> bool:
        """승인 토큰이 만료되었는지 확인합니다."""
        if self.approval_expires_at is None:
            return True
        return datetime.now() > self.approval_expires_at

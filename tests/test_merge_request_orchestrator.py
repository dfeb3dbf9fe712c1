from datetime import datetime, timedelta

import pytest

from gitlab_mr.adapters.outbound.in_memory_session_store import InMemorySessionStore
from gitlab_mr.application.services.template_renderer import TemplateRenderer
from gitlab_mr.application.use_cases.create_merge_request import MergeRequestWorkflow
from gitlab_mr.application.use_cases.merge_request_orchestrator import MergeRequestOrchestrator
from gitlab_mr.application.use_cases.search_assignees import SearchAssigneesUseCase
from gitlab_mr.domain.errors import PushError
from gitlab_mr.domain.merge_request import ProjectPreferences, PushResult
from gitlab_mr.domain.merge_request_workflow import QuestionKind, SessionState

REPOSITORY = "/work/app"
TEMPLATE = "{{ SOURCE_BRANCH }} -> {{ TARGET_BRANCH }}\n{% for c in COMMITS %}- {{ c.subject }}\n{% endfor %}"


class _Template:
    def get_description_template(self):
        return TEMPLATE

    def reload(self):
        pass


@pytest.fixture
def session_store() -> InMemorySessionStore:
    return InMemorySessionStore()


@pytest.fixture
def orchestrator(vcs, hosting, preference_store, session_store) -> MergeRequestOrchestrator:
    def factory(notifier):
        return MergeRequestWorkflow(
            vcs=vcs,
            hosting=hosting,
            preferences=preference_store,
            notifier=notifier,
            gitlab_url="https://gitlab.example.com/",
        )

    return MergeRequestOrchestrator(
        workflow_factory=factory,
        session_store=session_store,
        template_renderer=TemplateRenderer(_Template()),
        assignees=SearchAssigneesUseCase(hosting),
    )


@pytest.mark.asyncio
async def test_prepare_creates_pending_session_without_side_effects(
    orchestrator, vcs, hosting, notifier, commit,
) -> None:
    vcs.ahead[("feature-x", "origin/main")] = [commit(1, "add login form")]

    session = await orchestrator.prepare(notifier, REPOSITORY, "add login", target_branch="main")

    assert session.state == SessionState.WAIT_APPROVAL
    assert session.approval_token
    assert session.questions == []
    assert session.description == "feature-x -> main\n- add login form"
    assert vcs.push_calls == []
    assert "create_merge_request" not in hosting.calls
    assert orchestrator.get_session(session.session_id) is session


@pytest.mark.asyncio
async def test_prepare_without_target_uses_last_merged_branch(orchestrator, preference_store, notifier) -> None:
    preference_store.save(REPOSITORY, ProjectPreferences(last_merged_branch="develop"))

    session = await orchestrator.prepare(notifier, REPOSITORY, "add login")

    assert session.target_branch.name == "develop"


@pytest.mark.asyncio
async def test_prepare_with_unknown_target_raises(orchestrator, notifier) -> None:
    with pytest.raises(ValueError):
        await orchestrator.prepare(notifier, REPOSITORY, "add login", target_branch="nope")


@pytest.mark.asyncio
async def test_prepare_applies_work_in_progress_defaults_to_title(orchestrator, preference_store, notifier) -> None:
    preference_store.save(REPOSITORY, ProjectPreferences(merge_as_work_in_progress=True, delete_merged_branch=True))

    defaulted = await orchestrator.prepare(notifier, REPOSITORY, "add login", target_branch="main")
    stripped = await orchestrator.prepare(
        notifier, REPOSITORY, "WIP: add login", target_branch="main", work_in_progress=False,
    )

    assert defaulted.title == "WIP: add login"
    assert defaulted.remove_source_branch is True
    assert stripped.title == "add login"


@pytest.mark.asyncio
async def test_approve_pushes_and_creates_with_approved_questions(orchestrator, vcs, hosting, notifier) -> None:
    session = await orchestrator.prepare(
        notifier, REPOSITORY, "add login", target_branch="main", assignee="@alice", work_in_progress=True,
    )
    assert [q.kind for q in session.questions] == [QuestionKind.EMPTY_MERGE_REQUEST]

    result = await orchestrator.approve(session.session_id, session.approval_token)

    assert result.url == "https://gitlab.example.com/group/app/merge_requests/12"
    assert result.work_in_progress is True
    assert len(vcs.push_calls) == 1
    assert hosting.created[0]["assignee"].username == "alice"
    assert hosting.created[0]["title"] == "WIP: add login"
    assert orchestrator.get_session(session.session_id).state == SessionState.DONE


@pytest.mark.asyncio
async def test_approve_with_wrong_token_is_rejected(orchestrator, vcs, notifier) -> None:
    session = await orchestrator.prepare(notifier, REPOSITORY, "add login", target_branch="main")

    with pytest.raises(RuntimeError):
        await orchestrator.approve(session.session_id, "wrong-token")

    assert vcs.push_calls == []
    assert orchestrator.get_session(session.session_id).state == SessionState.WAIT_APPROVAL


@pytest.mark.asyncio
async def test_approve_with_expired_token_is_rejected(orchestrator, vcs, notifier) -> None:
    session = await orchestrator.prepare(notifier, REPOSITORY, "add login", target_branch="main")
    session.approval_expires_at = datetime.now() - timedelta(seconds=1)

    with pytest.raises(RuntimeError):
        await orchestrator.approve(session.session_id, session.approval_token)

    assert vcs.push_calls == []


@pytest.mark.asyncio
async def test_approve_aborts_when_new_question_appears(orchestrator, vcs, notifier, commit) -> None:
    vcs.ahead[("feature-x", "origin/main")] = [commit(1)]
    session = await orchestrator.prepare(notifier, REPOSITORY, "add login", target_branch="main")
    vcs.ahead.clear()

    result = await orchestrator.approve(session.session_id, session.approval_token)

    assert result is None
    assert vcs.push_calls == []
    stored = orchestrator.get_session(session.session_id)
    assert stored.state == SessionState.ABORTED
    assert "fully merged" in stored.error


@pytest.mark.asyncio
async def test_approve_marks_session_failed_when_push_fails(orchestrator, vcs, hosting, notifier) -> None:
    vcs.push_result = PushResult(success=False, error_output="denied")
    session = await orchestrator.prepare(notifier, REPOSITORY, "add login", target_branch="main")

    with pytest.raises(PushError):
        await orchestrator.approve(session.session_id, session.approval_token)

    assert "create_merge_request" not in hosting.calls
    assert orchestrator.get_session(session.session_id).state == SessionState.FAILED
    assert orchestrator.get_status(session.session_id)["workflow_state"] == "failed"


@pytest.mark.asyncio
async def test_cancel_drops_pending_session(orchestrator, vcs, notifier) -> None:
    session = await orchestrator.prepare(notifier, REPOSITORY, "add login", target_branch="main")

    assert orchestrator.cancel(session.session_id) is True
    assert orchestrator.get_session(session.session_id) is None
    assert orchestrator.cancel("unknown") is False
    assert vcs.push_calls == []


@pytest.mark.asyncio
async def test_session_store_expires_idle_sessions(orchestrator, session_store, notifier) -> None:
    session = await orchestrator.prepare(notifier, REPOSITORY, "add login", target_branch="main")
    assert session_store.get(session.session_id) is session

    session.updated_at = datetime.now() - timedelta(minutes=31)

    assert session_store.cleanup_expired() == 1
    assert session_store.get(session.session_id) is None


@pytest.mark.asyncio
async def test_prepare_again_for_same_branch_replaces_pending_session(orchestrator, vcs, notifier) -> None:
    first = await orchestrator.prepare(notifier, REPOSITORY, "add login", target_branch="main")
    second = await orchestrator.prepare(notifier, REPOSITORY, "add login form", target_branch="develop")

    assert orchestrator.get_session(first.session_id) is None
    assert orchestrator.get_session(second.session_id) is second
    with pytest.raises(RuntimeError):
        await orchestrator.approve(first.session_id, first.approval_token)
    assert vcs.push_calls == []


@pytest.mark.asyncio
async def test_session_store_keeps_creating_session_past_ttl(orchestrator, session_store, notifier) -> None:
    session = await orchestrator.prepare(notifier, REPOSITORY, "add login", target_branch="main")
    session.state = SessionState.CREATING
    session.updated_at = datetime.now() - timedelta(minutes=31)

    assert session_store.cleanup_expired() == 0
    assert session_store.get(session.session_id) is session

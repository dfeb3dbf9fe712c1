from dataclasses import replace

import pytest

from gitlab_mr.application.use_cases.create_merge_request import MergeRequestWorkflow
from gitlab_mr.domain.errors import ApiError, GitCommandError
from gitlab_mr.domain.merge_request import (
    BranchReference,
    Comment,
    CommitSummary,
    GitLabProject,
    GitLabUser,
    MergeRequest,
    ProjectPreferences,
    PushResult,
    is_work_in_progress,
)

GITLAB_URL = "https://gitlab.example.com"
REPOSITORY = "/work/app"


def make_commit(n: int, subject: str = "") -> CommitSummary:
    sha = f"{n:040x}"
    return CommitSummary(sha=sha, short_sha=sha[:8], author="dev", subject=subject or f"commit {n}")


class FakeVersionControl:
    """VersionControlPort 가짜 구현. ahead는 (from.ref, to.ref) → 커밋 목록"""

    def __init__(self):
        self.current: BranchReference | None = BranchReference.local("feature-x")
        self.locals = [BranchReference.local("feature-x"), BranchReference.local("main")]
        self.remote_urls = {"origin": "git@gitlab.example.com:group/app.git"}
        self.ahead: dict[tuple[str, str], list[CommitSummary]] = {}
        self.diff_error: Exception | None = None
        self.local_branches_error: Exception | None = None
        self.push_result = PushResult(success=True)
        self.push_calls: list[dict] = []

    async def push(self, repository, remote_name, remote_url, local_branch_name, force=False, set_upstream=True):
        self.push_calls.append({
            "repository": repository,
            "remote_name": remote_name,
            "remote_url": remote_url,
            "branch": local_branch_name,
            "force": force,
            "set_upstream": set_upstream,
        })
        return self.push_result

    async def current_branch(self, repository):
        return self.current

    async def local_branches(self, repository):
        if self.local_branches_error is not None:
            raise self.local_branches_error
        return list(self.locals)

    async def commits_ahead(self, repository, from_branch, to_branch):
        if self.diff_error is not None:
            raise self.diff_error
        return list(self.ahead.get((from_branch.ref, to_branch.ref), []))

    async def remote_url(self, repository, remote_name):
        if remote_name not in self.remote_urls:
            raise GitCommandError(("remote", "get-url", remote_name), 2, f"error: No such remote '{remote_name}'")
        return self.remote_urls[remote_name]

    async def repository_root(self, path):
        return REPOSITORY


class FakeHostingService:
    """HostingServicePort 가짜 구현. fail_on에 메서드 이름을 넣으면 ApiError 발생"""

    def __init__(self):
        self.project = GitLabProject(id=42, name="app", path_with_namespace="group/app")
        self.branch_names = ["main", "develop", "feature-x"]
        self.users = [GitLabUser(id=7, username="alice", name="Alice"), GitLabUser(id=8, username="alicia", name="Alicia")]
        self.merge_requests: list[MergeRequest] = []
        self.comments: list[Comment] = []
        self.fail_on: set[str] = set()
        self.calls: list[str] = []
        self.created: list[dict] = []
        self.next_iid = 12

    def _record(self, name: str) -> None:
        self.calls.append(name)
        if name in self.fail_on:
            raise ApiError(f"{name} failed", status_code=500)

    async def get_project(self, path_with_namespace):
        self._record("get_project")
        return self.project

    async def list_project_branches(self, project):
        self._record("list_project_branches")
        return [BranchReference.remote(name, "origin") for name in self.branch_names]

    async def create_merge_request(
        self, project, assignee, source_branch, target_branch, title, description, remove_source_branch,
    ):
        self._record("create_merge_request")
        self.created.append({
            "project": project,
            "assignee": assignee,
            "source_branch": source_branch,
            "target_branch": target_branch,
            "title": title,
            "description": description,
            "remove_source_branch": remove_source_branch,
        })
        return MergeRequest(
            id=1000 + self.next_iid,
            iid=self.next_iid,
            project_id=project.id,
            title=title,
            source_branch=source_branch,
            target_branch=target_branch,
            work_in_progress=is_work_in_progress(title),
        )

    async def search_users(self, project, query=""):
        self._record("search_users")
        return [u for u in self.users if query in u.username or query in u.name]

    async def list_merge_requests(self, project, state="opened"):
        self._record("list_merge_requests")
        return [mr for mr in self.merge_requests if state == "all" or mr.state == state]

    async def get_merge_request(self, project, iid):
        self._record("get_merge_request")
        return next(mr for mr in self.merge_requests if mr.iid == iid)

    async def list_merge_request_comments(self, merge_request):
        self._record("list_merge_request_comments")
        return list(self.comments)

    async def add_comment(self, merge_request, text):
        self._record("add_comment")
        comment = Comment(id=len(self.comments) + 1, author="me", body=text)
        self.comments.append(comment)
        return comment


class RecordingNotifier:
    def __init__(self):
        self.notifications: list[tuple[str, str, str, str | None]] = []

    def error(self, title, message):
        self.notifications.append(("error", title, message, None))

    def warning(self, title, message):
        self.notifications.append(("warning", title, message, None))

    def info(self, title, message, url=None):
        self.notifications.append(("info", title, message, url))

    def of_level(self, level: str) -> list[tuple[str, str, str, str | None]]:
        return [n for n in self.notifications if n[0] == level]


class InMemoryPreferenceStore:
    def __init__(self):
        self.saved: dict[str, ProjectPreferences] = {}

    def load(self, project_key):
        stored = self.saved.get(project_key)
        return replace(stored) if stored else ProjectPreferences()

    def save(self, project_key, preferences):
        self.saved[project_key] = replace(preferences)


class ScriptedConfirmation:
    """질문 순서대로 answers를 돌려줍니다. answers가 모자라면 default"""

    def __init__(self, *answers: bool, default: bool = True):
        self._answers = list(answers)
        self._default = default
        self.asked = []

    async def confirm(self, question):
        self.asked.append(question)
        if self._answers:
            return self._answers.pop(0)
        return self._default


@pytest.fixture
def vcs() -> FakeVersionControl:
    return FakeVersionControl()


@pytest.fixture
def hosting() -> FakeHostingService:
    return FakeHostingService()


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def preference_store() -> InMemoryPreferenceStore:
    return InMemoryPreferenceStore()


@pytest.fixture
def workflow(vcs, hosting, preference_store, notifier) -> MergeRequestWorkflow:
    return MergeRequestWorkflow(
        vcs=vcs,
        hosting=hosting,
        preferences=preference_store,
        notifier=notifier,
        gitlab_url=GITLAB_URL,
        remote_name="origin",
    )


@pytest.fixture
def confirmation():
    """ScriptedConfirmation 생성 함수"""
    return ScriptedConfirmation


@pytest.fixture
def commit():
    """테스트용 CommitSummary 생성 함수"""
    return make_commit

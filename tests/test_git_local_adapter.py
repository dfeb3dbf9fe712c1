import asyncio
import shutil
import subprocess
from pathlib import Path

import pytest

from gitlab_mr.adapters.outbound import git_local_adapter
from gitlab_mr.adapters.outbound.git_local_adapter import GitLocalAdapter
from gitlab_mr.domain.errors import GitCommandError
from gitlab_mr.domain.merge_request import BranchReference

pytestmark = pytest.mark.skipif(shutil.which("git") is None, reason="git is not installed")


def _git(cwd: Path, *args: str) -> str:
    completed = subprocess.run(
        ["git", "-c", "user.name=Tester", "-c", "user.email=tester@example.com", "-c", "commit.gpgsign=false", *args],
        cwd=cwd,
        check=True,
        capture_output=True,
        text=True,
    )
    return completed.stdout.strip()


def _commit(repo: Path, filename: str, message: str) -> None:
    (repo / filename).write_text(message, encoding="utf-8")
    _git(repo, "add", filename)
    _git(repo, "commit", "-m", message)


@pytest.fixture
def remote(tmp_path: Path) -> Path:
    path = tmp_path / "remote.git"
    path.mkdir()
    _git(path, "init", "--bare")
    return path


@pytest.fixture
def repo(tmp_path: Path, remote: Path) -> Path:
    """main에 커밋 1개, feature-x에 커밋 2개가 있는 저장소"""
    path = tmp_path / "app"
    path.mkdir()
    _git(path, "init")
    _git(path, "symbolic-ref", "HEAD", "refs/heads/main")
    _commit(path, "README.md", "initial")
    _git(path, "remote", "add", "origin", str(remote))
    _git(path, "push", "origin", "main")
    _git(path, "checkout", "-b", "feature-x")
    _commit(path, "login.py", "add login form")
    _commit(path, "auth.py", "add auth check")
    return path


@pytest.mark.asyncio
async def test_current_branch_and_local_branches(repo: Path) -> None:
    adapter = GitLocalAdapter()

    current = await adapter.current_branch(str(repo))
    branches = await adapter.local_branches(str(repo))

    assert current == BranchReference.local("feature-x")
    assert sorted(b.name for b in branches) == ["feature-x", "main"]


@pytest.mark.asyncio
async def test_current_branch_on_detached_head_is_none(repo: Path) -> None:
    _git(repo, "checkout", "--detach", "HEAD")

    assert await GitLocalAdapter().current_branch(str(repo)) is None


@pytest.mark.asyncio
async def test_commits_ahead_in_both_directions(repo: Path) -> None:
    adapter = GitLocalAdapter()
    feature = BranchReference.local("feature-x")
    target = BranchReference.remote("main", "origin")

    source_ahead = await adapter.commits_ahead(str(repo), feature, target)
    target_ahead = await adapter.commits_ahead(str(repo), target, feature)

    assert [c.subject for c in source_ahead] == ["add auth check", "add login form"]
    assert all(c.author == "Tester" and c.sha.startswith(c.short_sha) for c in source_ahead)
    assert target_ahead == []


@pytest.mark.asyncio
async def test_commits_ahead_with_unknown_branch_raises(repo: Path) -> None:
    with pytest.raises(GitCommandError):
        await GitLocalAdapter().commits_ahead(
            str(repo), BranchReference.local("feature-x"), BranchReference.remote("nope", "origin"),
        )


@pytest.mark.asyncio
async def test_push_publishes_branch_and_sets_upstream(repo: Path, remote: Path) -> None:
    result = await GitLocalAdapter().push(str(repo), "origin", str(remote), "feature-x")

    assert result.success is True
    assert _git(remote, "rev-parse", "refs/heads/feature-x") == _git(repo, "rev-parse", "feature-x")
    assert _git(repo, "config", "branch.feature-x.remote") == "origin"
    assert _git(repo, "config", "branch.feature-x.merge") == "refs/heads/feature-x"


@pytest.mark.asyncio
async def test_push_failure_is_reported_not_raised(repo: Path, tmp_path: Path) -> None:
    missing = tmp_path / "missing.git"

    result = await GitLocalAdapter().push(str(repo), "origin", str(missing), "feature-x")

    assert result.success is False
    assert result.error_output


@pytest.mark.asyncio
async def test_push_in_missing_directory_is_reported_not_raised(tmp_path: Path) -> None:
    result = await GitLocalAdapter().push(str(tmp_path / "missing"), "origin", "", "feature-x")

    assert result.success is False
    assert result.error_output


@pytest.mark.asyncio
async def test_timeout_kills_and_reaps_git_process(repo: Path, monkeypatch) -> None:
    started = []
    create_subprocess_exec = asyncio.create_subprocess_exec

    async def recording_exec(*args, **kwargs):
        proc = await create_subprocess_exec(*args, **kwargs)
        started.append(proc)
        return proc

    monkeypatch.setattr(git_local_adapter.asyncio, "create_subprocess_exec", recording_exec)

    with pytest.raises(RuntimeError, match="timeout"):
        await GitLocalAdapter()._run_git(str(repo), "log", timeout=1e-6)

    assert len(started) == 1
    assert started[0].returncode is not None


@pytest.mark.asyncio
async def test_remote_url_and_repository_root(repo: Path, remote: Path) -> None:
    adapter = GitLocalAdapter()
    (repo / "src").mkdir()
    (repo / "src" / "main.py").write_text("", encoding="utf-8")

    assert await adapter.remote_url(str(repo), "origin") == str(remote)
    assert Path(await adapter.repository_root(str(repo / "src" / "main.py"))).resolve() == repo.resolve()
    with pytest.raises(GitCommandError):
        await adapter.remote_url(str(repo), "upstream")

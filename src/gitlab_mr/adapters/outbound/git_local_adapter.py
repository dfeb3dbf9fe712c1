import asyncio
import logging
from dataclasses import dataclass
from pathlib import Path

from gitlab_mr.domain.errors import GitCommandError
from gitlab_mr.domain.merge_request import BranchReference, CommitSummary, PushResult

logger = logging.getLogger(__name__)

# git log 출력 필드 구분자 (커밋 메시지에 나오지 않는 제어 문자)
_FIELD_SEP = "\x1f"
_LOG_FORMAT = _FIELD_SEP.join(("%H", "%h", "%an", "%s"))


@dataclass(frozen=True)
class _GitResult:
    """git 명령 실행 결과"""
    stdout: str
    stderr: str
    returncode: int


class GitLocalAdapter:
    """로컬 git 명령으로 브랜치 조회/비교/push를 수행하는 Adapter"""

    # git 명령 실행 timeout (초)
    _GIT_TIMEOUT_SECONDS = 60
    # push는 네트워크를 타므로 더 길게 허용
    _PUSH_TIMEOUT_SECONDS = 300

    async def _run_git(self, repository: str, *args: str, timeout: int | None = None) -> _GitResult:
        """git 명령을 실행하고 결과를 반환합니다.

        Args:
            repository: git 명령을 실행할 작업 디렉토리
            *args: git 하위 명령과 인자들 (예: "log", "--oneline")

        Returns:
            _GitResult: stdout/stderr 문자열과 returncode

        Raises:
            RuntimeError: timeout 초과 시
        """
        timeout = timeout or self._GIT_TIMEOUT_SECONDS
        proc = await asyncio.create_subprocess_exec(
            "git", *args,
            cwd=repository,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
        try:
            stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout=timeout)
        except asyncio.TimeoutError:
            proc.kill()
            await proc.wait()
            raise RuntimeError(
                f"git 명령 timeout ({timeout}초 초과): git {' '.join(args)}"
            )
        return _GitResult(
            stdout=stdout.decode("utf-8", errors="replace").strip(),
            stderr=stderr.decode("utf-8", errors="replace").strip(),
            returncode=proc.returncode,
        )

    async def _run_git_checked(self, repository: str, *args: str) -> str:
        """returncode가 0이 아니면 GitCommandError를 발생시킵니다."""
        result = await self._run_git(repository, *args)
        if result.returncode != 0:
            raise GitCommandError(args, result.returncode, result.stderr)
        return result.stdout

    async def push(
        self,
        repository: str,
        remote_name: str,
        remote_url: str,
        local_branch_name: str,
        force: bool = False,
        set_upstream: bool = True,
    ) -> PushResult:
        """로컬 브랜치를 같은 이름의 원격 브랜치로 push합니다.

        remote_url이 있으면 URL로 push하고, upstream 설정은 remote 이름으로 합니다.
        실패는 예외가 아닌 PushResult(success=False)로 반환합니다.
        """
        target = remote_url or remote_name
        args = ["push", "--porcelain"]
        if force:
            args.append("--force")
        refspec = f"refs/heads/{local_branch_name}:refs/heads/{local_branch_name}"
        args += [target, refspec]

        logger.info("git push 시작: %s → %s (%s)", local_branch_name, remote_name, target)
        try:
            result = await self._run_git(repository, *args, timeout=self._PUSH_TIMEOUT_SECONDS)
        except (RuntimeError, OSError) as e:
            # timeout 또는 git 실행 파일 없음
            logger.error("❌ git push 실패: %s", e)
            return PushResult(success=False, error_output=str(e))

        if result.returncode != 0:
            logger.error("❌ git push 실패 (exit=%d): %s", result.returncode, result.stderr)
            return PushResult(success=False, error_output=result.stderr or result.stdout, output=result.stdout)

        if set_upstream and remote_name:
            # URL로 push하면 tracking 정보가 남지 않으므로 직접 설정
            await self._run_git(repository, "config", f"branch.{local_branch_name}.remote", remote_name)
            await self._run_git(
                repository, "config", f"branch.{local_branch_name}.merge", f"refs/heads/{local_branch_name}",
            )

        logger.info("✅ git push 완료: %s", local_branch_name)
        return PushResult(success=True, output=result.stdout)

    async def current_branch(self, repository: str) -> BranchReference | None:
        result = await self._run_git(repository, "symbolic-ref", "--quiet", "--short", "HEAD")
        if result.returncode != 0 or not result.stdout:
            logger.warning("현재 브랜치 없음 (detached HEAD?): %s", repository)
            return None
        return BranchReference.local(result.stdout)

    async def local_branches(self, repository: str) -> list[BranchReference]:
        stdout = await self._run_git_checked(
            repository, "for-each-ref", "--format=%(refname:short)", "refs/heads/",
        )
        return [BranchReference.local(line.strip()) for line in stdout.splitlines() if line.strip()]

    async def commits_ahead(
        self,
        repository: str,
        from_branch: BranchReference,
        to_branch: BranchReference,
    ) -> list[CommitSummary]:
        """from_branch에는 있고 to_branch에는 없는 커밋 (git log to..from)"""
        stdout = await self._run_git_checked(
            repository, "log", f"--format={_LOG_FORMAT}", f"{to_branch.ref}..{from_branch.ref}", "--",
        )
        commits = []
        for line in stdout.splitlines():
            parts = line.split(_FIELD_SEP)
            if len(parts) != 4:
                continue
            sha, short_sha, author, subject = parts
            commits.append(CommitSummary(sha=sha, short_sha=short_sha, author=author, subject=subject))
        logger.info("커밋 비교: %s..%s → %d건", to_branch.ref, from_branch.ref, len(commits))
        return commits

    async def remote_url(self, repository: str, remote_name: str) -> str:
        return await self._run_git_checked(repository, "remote", "get-url", remote_name)

    async def repository_root(self, path: str) -> str:
        directory = Path(path)
        if not directory.is_dir():
            directory = directory.parent
        return await self._run_git_checked(str(directory), "rev-parse", "--show-toplevel")

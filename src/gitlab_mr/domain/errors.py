class MergeRequestError(RuntimeError):
    """머지 요청 워크플로우 오류의 공통 부모"""


class NoCurrentBranchError(MergeRequestError):
    """체크아웃된 로컬 브랜치가 없음"""


class BranchListError(MergeRequestError):
    """브랜치 목록 조회 실패 (GitLab 원격 또는 로컬 저장소)"""


class NoTargetSelectedError(MergeRequestError):
    """대상 브랜치가 선택되지 않음"""


class PushError(MergeRequestError):
    """소스 브랜치 push 실패. git 오류 출력을 그대로 보관합니다."""

    def __init__(self, error_output: str):
        super().__init__(f"Push 실패: {error_output}")
        self.error_output = error_output


class ApiError(MergeRequestError):
    """GitLab REST API 호출 실패 (전송/HTTP 오류)"""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class GitCommandError(RuntimeError):
    """git 명령이 0이 아닌 종료 코드를 반환함"""

    def __init__(self, args: tuple[str, ...], returncode: int, stderr: str):
        super().__init__(
            f"git 명령 실패 (exit={returncode}): git {' '.join(args)}\n{stderr}".rstrip()
        )
        self.returncode = returncode
        self.stderr = stderr

import re
from dataclasses import dataclass

# 제목이 이 접두어로 시작하면 WIP(작업 중) 머지 요청으로 간주
WIP_PREFIX = "WIP:"

# git@host:group/project.git, ssh://git@host:22/group/project.git, https://host/group/project.git
_SCP_LIKE_URL_PATTERN = re.compile(r"^[\w.\-]+@[\w.\-]+:(?P<path>.+)$")
_URL_PATTERN = re.compile(r"^[a-z][a-z0-9+.\-]*://[^/]+/(?P<path>.+)$", re.IGNORECASE)


def is_work_in_progress(title: str) -> bool:
    return title.startswith(WIP_PREFIX)


def build_merge_request_url(base_url: str, path_with_namespace: str, iid: int) -> str:
    """머지 요청 웹 URL을 생성합니다. base와 프로젝트 경로 사이 '/'는 정확히 하나입니다."""
    url = base_url if base_url.endswith("/") else base_url + "/"
    return f"{url}{path_with_namespace.lstrip('/')}/merge_requests/{iid}"


def project_path_from_remote_url(remote_url: str) -> str:
    """git remote URL에서 GitLab 프로젝트 경로(namespace/project)를 추출합니다.

    Raises:
        ValueError: 경로를 해석할 수 없는 URL
    """
    url = remote_url.strip()
    match = _URL_PATTERN.match(url) or _SCP_LIKE_URL_PATTERN.match(url)
    if match is None:
        raise ValueError(f"remote URL에서 프로젝트 경로를 찾을 수 없습니다: {remote_url}")

    path = match.group("path").strip("/")
    if path.endswith(".git"):
        path = path[: -len(".git")]
    if "/" not in path:
        raise ValueError(f"remote URL에서 프로젝트 경로를 찾을 수 없습니다: {remote_url}")
    return path


@dataclass(frozen=True)
class BranchReference:
    """로컬 또는 원격 브랜치 참조"""
    name: str
    remote_name: str = ""
    is_local: bool = True

    def __post_init__(self) -> None:
        if self.is_local and self.remote_name:
            raise ValueError(f"로컬 브랜치에는 remote 이름이 없어야 합니다: {self.remote_name}/{self.name}")
        if not self.is_local and not self.remote_name:
            raise ValueError(f"원격 브랜치에는 remote 이름이 필요합니다: {self.name}")

    @classmethod
    def local(cls, name: str) -> "BranchReference":
        return cls(name=name)

    @classmethod
    def remote(cls, name: str, remote_name: str) -> "BranchReference":
        return cls(name=name, remote_name=remote_name, is_local=False)

    @property
    def ref(self) -> str:
        """git 명령에 넘길 참조 (로컬: name, 원격: remote/name)"""
        return self.name if self.is_local else f"{self.remote_name}/{self.name}"


@dataclass(frozen=True)
class CommitSummary:
    sha: str
    short_sha: str
    author: str
    subject: str


@dataclass(frozen=True)
class DiffSummary:
    """소스/대상 브랜치 간 커밋 비교 결과"""
    commits_source_ahead: tuple[CommitSummary, ...] = ()
    commits_target_ahead: tuple[CommitSummary, ...] = ()


@dataclass(frozen=True)
class GitLabProject:
    id: int
    name: str
    path_with_namespace: str
    web_url: str = ""
    default_branch: str = ""


@dataclass(frozen=True)
class GitLabUser:
    id: int
    username: str
    name: str = ""


@dataclass(frozen=True)
class MergeRequestRequest:
    """GitLab에 제출할 머지 요청 페이로드"""
    source_branch: str
    target_branch: str
    title: str
    description: str = ""
    assignee: GitLabUser | None = None
    remove_source_branch: bool = False

    def __post_init__(self) -> None:
        if not self.title or not self.title.strip():
            raise ValueError("머지 요청 제목은 비어 있을 수 없습니다")

    @property
    def work_in_progress(self) -> bool:
        return is_work_in_progress(self.title)


@dataclass(frozen=True)
class MergeRequest:
    """GitLab 머지 요청 엔티티"""
    id: int
    iid: int
    project_id: int
    title: str
    source_branch: str
    target_branch: str
    state: str = "opened"
    web_url: str = ""
    work_in_progress: bool = False
    author: str = ""


@dataclass(frozen=True)
class MergeRequestCreationResult:
    merge_request: MergeRequest
    url: str
    work_in_progress: bool


@dataclass(frozen=True)
class Comment:
    """머지 요청 코멘트 (GitLab note)"""
    id: int
    author: str
    body: str
    created_at: str = ""
    system: bool = False


@dataclass(frozen=True)
class PushResult:
    success: bool
    error_output: str = ""
    output: str = ""


@dataclass
class ProjectPreferences:
    """저장소별로 유지되는 머지 요청 기본값"""
    last_merged_branch: str | None = None
    merge_as_work_in_progress: bool = False
    delete_merged_branch: bool = False

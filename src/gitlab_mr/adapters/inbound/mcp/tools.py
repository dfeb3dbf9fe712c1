import logging
import os
import sys
import traceback
from pathlib import Path

from mcp.server import Server
from mcp.types import TextContent

from gitlab_mr.adapters.outbound.notifiers import CollectingNotifier, Notification
from gitlab_mr.configuration.container import Container, build_container
from gitlab_mr.domain.merge_request import GitLabProject, project_path_from_remote_url
from gitlab_mr.domain.merge_request_workflow import MergeRequestSession

logger = logging.getLogger(__name__)

_NOTIFICATION_ICONS = {"error": "❌", "warning": "⚠️", "info": "ℹ️"}


def _validate_repository_path(
    repository_path: str, git_repos: dict[str, str],
) -> str | None:
    """명시적으로 지정된 repository_path가 GIT_REPOSITORIES allowlist에 포함되는지 검증합니다.

    Returns:
        None이면 유효, 문자열이면 에러 메시지
    """
    if not git_repos:
        # allowlist가 비어있으면 검증 스킵 (환경변수 미설정)
        return None

    resolved = str(Path(repository_path).resolve())
    for _, allowed_path in git_repos.items():
        allowed_resolved = str(Path(allowed_path).resolve())
        if resolved == allowed_resolved or resolved.startswith(allowed_resolved + os.sep):
            return None

    repos_list = ", ".join(git_repos.values())
    return (
        f"# ⛔ repository_path 접근 거부\n\n"
        f"**지정 경로:** `{repository_path}`\n\n"
        f"보안 정책에 따라 `GIT_REPOSITORIES`에 등록된 경로만 허용됩니다.\n\n"
        f"**등록된 경로:** {repos_list}\n"
    )


def _resolve_repository(arguments: dict, git_repos: dict[str, str]) -> str:
    """project(등록 이름) 또는 repository_path 인자로 저장소 경로를 결정합니다.

    둘 다 없으면 GIT_REPOSITORIES에 저장소가 하나뿐일 때만 그것을 사용합니다.
    """
    project_name = arguments.get("project", "").strip()
    if project_name:
        if project_name not in git_repos:
            raise ValueError(
                f"등록되지 않은 프로젝트: '{project_name}'. 사용 가능: {list(git_repos.keys())}"
            )
        return git_repos[project_name]

    repository_path = arguments.get("repository_path", "").strip()
    if repository_path:
        return repository_path

    if len(git_repos) == 1:
        return next(iter(git_repos.values()))
    raise ValueError("project 또는 repository_path 파라미터가 필요합니다")


async def _resolve_project(container: Container, repository: str) -> GitLabProject:
    """저장소의 remote URL에서 GitLab 프로젝트를 조회합니다."""
    remote_url = await container.vcs.remote_url(repository, container.settings.git_remote_name)
    return await container.hosting.get_project(project_path_from_remote_url(remote_url))


def _format_notifications(notifications: list[Notification]) -> str:
    if not notifications:
        return ""
    text = "\n### 알림\n\n"
    for n in notifications:
        icon = _NOTIFICATION_ICONS.get(n.level, "")
        message = n.message.replace("\n", " ")
        text += f"- {icon} **{n.title}**: {message}"
        if n.url:
            text += f" ({n.url})"
        text += "\n"
    return text


def _format_approval_instructions(session: MergeRequestSession) -> str:
    """승인 안내 + approve/cancel 호출 예시를 포맷팅합니다."""
    text = "\n---\n\n"
    text += "## ❓ 다음 단계\n\n"
    text += "**사용자에게 물어보세요:**\n"
    if session.questions:
        for question in session.questions:
            text += f"> **{question.title}**\n"
            for line in question.message.splitlines():
                text += f"> {line}\n"
            text += ">\n"
        text += "\n"
    else:
        text += '> "위 내용으로 머지 요청을 생성할까요? (yes/no)"\n\n'
    text += "**사용자가 승인한 경우에만:** (현재 브랜치가 push됩니다)\n"
    text += "```\napprove_merge_request(\n"
    text += f"  session_id=\"{session.session_id}\",\n"
    text += f"  approval_token=\"{session.approval_token}\"\n"
    text += ")\n```\n"
    text += "**거절한 경우:**\n"
    text += f"```\ncancel_merge_request(session_id=\"{session.session_id}\")\n```\n"
    return text


def _format_session_preview(session: MergeRequestSession) -> str:
    context = session.context
    text = "# 머지 요청 생성 준비 완료\n\n"
    text += "| 항목 | 내용 |\n"
    text += "|------|------|\n"
    text += f"| **세션 ID** | {session.session_id} |\n"
    text += f"| **프로젝트** | {context.project.path_with_namespace} |\n"
    text += f"| **소스 브랜치** | {context.source_branch.name} |\n"
    text += f"| **대상 브랜치** | {session.target_branch.ref} |\n"
    text += f"| **제목** | {session.title} |\n"
    text += f"| **담당자** | {session.assignee.username if session.assignee else '-'} |\n"
    text += f"| **소스 브랜치 삭제** | {'예' if session.remove_source_branch else '아니오'} |\n"

    diff = session.diff_summary
    if diff is not None:
        text += f"| **포함 커밋** | {len(diff.commits_source_ahead)}건 |\n"
        text += f"| **대상 브랜치에만 있는 커밋** | {len(diff.commits_target_ahead)}건 |\n"
    elif session.diff_error:
        text += f"| **커밋 비교** | 실패 ({session.diff_error}) |\n"

    if session.description:
        text += f"\n### 설명\n\n{session.description}\n"
    return text


def register_tools(app: Server) -> None:
    """MCP Tool 핸들러를 서버에 등록합니다."""

    # 로그에서 마스킹할 민감 필드 (값이 긴 텍스트이거나 토큰)
    _SENSITIVE_FIELDS = {"approval_token", "description", "body"}

    def _mask_arguments(arguments: dict) -> dict:
        """로깅용으로 민감 필드를 마스킹합니다."""
        masked = {}
        for key, value in arguments.items():
            if key in _SENSITIVE_FIELDS:
                if isinstance(value, str) and len(value) > 20:
                    masked[key] = f"{value[:20]}... ({len(value)}자)"
                else:
                    masked[key] = "***"
            else:
                masked[key] = value
        return masked

    def _repository_or_error(container: Container, arguments: dict) -> tuple[str, list[TextContent] | None]:
        repository = _resolve_repository(arguments, container.settings.git_repositories)
        path_error = _validate_repository_path(repository, container.settings.git_repositories)
        if path_error:
            return repository, [TextContent(type="text", text=path_error)]
        return repository, None

    @app.call_tool()
    async def call_tool(name: str, arguments: dict):
        notifier = CollectingNotifier()
        try:
            container = build_container()
            logger.info("=" * 60)
            logger.info("🔧 Tool 호출: %s", name)
            logger.info("인자: %s", _mask_arguments(arguments))
            logger.info("환경: %s", container.settings.app_env)
            logger.info("=" * 60)

            if name == "list_target_branches":
                repository, error = _repository_or_error(container, arguments)
                if error:
                    return error

                context = await container.merge_request_orchestrator.load_context(notifier, repository)
                last_used = context.last_used_branch.name if context.last_used_branch else ""

                formatted_text = "# 🌿 대상 브랜치 후보\n\n"
                formatted_text += "| 항목 | 내용 |\n"
                formatted_text += "|------|------|\n"
                formatted_text += f"| **프로젝트** | {context.project.path_with_namespace} |\n"
                formatted_text += f"| **현재 브랜치** | {context.source_branch.name} |\n"
                formatted_text += f"| **마지막 대상 브랜치** | {last_used or '-'} |\n"
                formatted_text += f"| **기본 WIP** | {'예' if context.preferences.merge_as_work_in_progress else '아니오'} |\n"
                formatted_text += f"| **기본 소스 브랜치 삭제** | {'예' if context.preferences.delete_merged_branch else '아니오'} |\n"
                formatted_text += f"\n### 원격 브랜치 ({len(context.remote_branches)}개)\n\n"
                for branch in context.remote_branches:
                    marker = " ⭐" if branch.name == last_used else ""
                    formatted_text += f"- `{branch.ref}`{marker}\n"

                logger.info("✅ Tool 실행 완료: 원격 브랜치 %d개", len(context.remote_branches))
                return [TextContent(type="text", text=formatted_text)]

            if name == "search_assignees":
                repository, error = _repository_or_error(container, arguments)
                if error:
                    return error

                project = await _resolve_project(container, repository)
                users = await container.search_assignees_use_case.execute(project, arguments.get("query", ""))

                if not users:
                    return [TextContent(type="text", text="# 담당자 후보 없음\n\n검색 조건에 맞는 프로젝트 멤버가 없습니다.")]

                formatted_text = f"# 👤 담당자 후보 ({len(users)}명)\n\n"
                formatted_text += "| Username | 이름 |\n"
                formatted_text += "|----------|------|\n"
                for user in users:
                    formatted_text += f"| @{user.username} | {user.name} |\n"
                return [TextContent(type="text", text=formatted_text)]

            if name == "prepare_merge_request":
                title = arguments.get("title", "").strip()
                if not title:
                    raise ValueError("title 파라미터가 필요합니다")

                repository, error = _repository_or_error(container, arguments)
                if error:
                    return error

                session = await container.merge_request_orchestrator.prepare(
                    notifier=notifier,
                    repository=repository,
                    title=title,
                    target_branch=arguments.get("target_branch", ""),
                    description=arguments.get("description", ""),
                    assignee=arguments.get("assignee", ""),
                    remove_source_branch=arguments.get("remove_source_branch"),
                    work_in_progress=arguments.get("work_in_progress"),
                )
                logger.info("Tool 실행 완료: 세션 %s 생성 (WAIT_APPROVAL)", session.session_id)

                formatted_text = _format_session_preview(session)
                formatted_text += _format_notifications(notifier.drain())
                formatted_text += _format_approval_instructions(session)
                return [TextContent(type="text", text=formatted_text)]

            if name == "approve_merge_request":
                session_id = arguments.get("session_id", "").strip()
                approval_token = arguments.get("approval_token", "").strip()

                if not session_id:
                    raise ValueError("session_id 파라미터가 필요합니다")
                if not approval_token:
                    raise ValueError("approval_token 파라미터가 필요합니다")

                orchestrator = container.merge_request_orchestrator
                session = orchestrator.get_session(session_id)
                if session is not None and session.notifier is not None:
                    notifier = session.notifier

                result = await orchestrator.approve(session_id=session_id, approval_token=approval_token)

                if result is None:
                    session = orchestrator.get_session(session_id)
                    formatted_text = "# ⚠️ 머지 요청 생성 중단\n\n"
                    formatted_text += "승인 이후 브랜치 상태가 바뀌어 새로운 확인이 필요합니다.\n\n"
                    if session is not None and session.error:
                        formatted_text += f"> {session.error.replace(chr(10), ' ')}\n\n"
                    formatted_text += "`prepare_merge_request`로 다시 준비해주세요.\n"
                    formatted_text += _format_notifications(notifier.drain())
                    return [TextContent(type="text", text=formatted_text)]

                logger.info("Tool 실행 완료: 머지 요청 생성 (%s)", result.url)
                merge_request = result.merge_request
                formatted_text = "# ✅ 머지 요청 생성 완료\n\n"
                formatted_text += "| 항목 | 내용 |\n"
                formatted_text += "|------|------|\n"
                formatted_text += f"| **제목** | {merge_request.title} |\n"
                formatted_text += f"| **IID** | !{merge_request.iid} |\n"
                formatted_text += f"| **브랜치** | {merge_request.source_branch} → {merge_request.target_branch} |\n"
                formatted_text += f"| **WIP** | {'예' if result.work_in_progress else '아니오'} |\n"
                formatted_text += f"| **URL** | {result.url} |\n"
                formatted_text += _format_notifications(notifier.drain())
                return [TextContent(type="text", text=formatted_text)]

            if name == "cancel_merge_request":
                session_id = arguments.get("session_id", "").strip()
                if not session_id:
                    raise ValueError("session_id 파라미터가 필요합니다")

                if not container.merge_request_orchestrator.cancel(session_id):
                    return [TextContent(
                        type="text",
                        text=f"# 세션을 찾을 수 없습니다\n\n**세션 ID:** {session_id}\n\n만료되었거나 존재하지 않는 세션입니다."
                    )]
                return [TextContent(
                    type="text",
                    text=f"# 머지 요청 생성 취소\n\n**세션 ID:** {session_id}\n\npush와 머지 요청 생성은 실행되지 않았습니다."
                )]

            if name == "get_merge_request_session":
                session_id = arguments.get("session_id", "").strip()
                if not session_id:
                    raise ValueError("session_id 파라미터가 필요합니다")

                status = container.merge_request_orchestrator.get_status(session_id)
                if status is None:
                    return [TextContent(
                        type="text",
                        text=f"# 세션을 찾을 수 없습니다\n\n**세션 ID:** {session_id}\n\n만료되었거나 존재하지 않는 세션입니다."
                    )]

                formatted_text = "# 머지 요청 세션 상태\n\n"
                formatted_text += "| 항목 | 내용 |\n"
                formatted_text += "|------|------|\n"
                formatted_text += f"| **세션 ID** | {status['session_id']} |\n"
                formatted_text += f"| **상태** | {status['state']} |\n"
                formatted_text += f"| **워크플로우 단계** | {status['workflow_state']} |\n"
                formatted_text += f"| **브랜치** | {status['source_branch']} → {status['target_branch']} |\n"
                formatted_text += f"| **제목** | {status['title']} |\n"
                formatted_text += f"| **생성 시각** | {status['created_at']} |\n"
                formatted_text += f"| **갱신 시각** | {status['updated_at']} |\n"
                if status.get("approval_token"):
                    formatted_text += f"| **승인 토큰** | {status['approval_token']} |\n"
                if status.get("url"):
                    formatted_text += f"| **URL** | {status['url']} |\n"
                if status.get("error"):
                    formatted_text += f"| **오류** | {status['error'].replace(chr(10), ' ')} |\n"
                return [TextContent(type="text", text=formatted_text)]

            if name == "list_merge_requests":
                repository, error = _repository_or_error(container, arguments)
                if error:
                    return error

                project = await _resolve_project(container, repository)
                state = arguments.get("state", "opened").strip() or "opened"
                merge_requests = await container.list_merge_requests_use_case.execute(project, state)

                if not merge_requests:
                    return [TextContent(
                        type="text",
                        text=f"# 머지 요청 없음\n\n**프로젝트:** {project.path_with_namespace}\n**상태:** {state}"
                    )]

                formatted_text = f"# 🔀 머지 요청 목록 ({len(merge_requests)}건)\n\n"
                formatted_text += "| IID | 제목 | 브랜치 | 상태 | 작성자 |\n"
                formatted_text += "|-----|------|--------|------|--------|\n"
                for mr in merge_requests:
                    formatted_text += (
                        f"| [!{mr.iid}]({mr.web_url}) | {mr.title} | "
                        f"{mr.source_branch} → {mr.target_branch} | {mr.state} | {mr.author} |\n"
                    )
                return [TextContent(type="text", text=formatted_text)]

            if name == "list_merge_request_comments":
                iid = int(arguments.get("iid", 0))
                if iid <= 0:
                    raise ValueError("iid 파라미터가 필요합니다")
                repository, error = _repository_or_error(container, arguments)
                if error:
                    return error

                project = await _resolve_project(container, repository)
                merge_request = await container.hosting.get_merge_request(project, iid)
                use_case = container.list_comments_use_case(notifier)
                comments = await use_case.execute(merge_request)

                include_system = bool(arguments.get("include_system", False))
                if not include_system:
                    comments = [c for c in comments if not c.system]

                formatted_text = f"# 💬 !{iid} 코멘트 ({len(comments)}건)\n\n"
                formatted_text += f"**제목:** {merge_request.title}\n\n"
                for comment in comments:
                    formatted_text += f"### @{comment.author} ({comment.created_at})\n\n{comment.body}\n\n"
                formatted_text += _format_notifications(notifier.drain())
                return [TextContent(type="text", text=formatted_text)]

            if name == "add_merge_request_comment":
                iid = int(arguments.get("iid", 0))
                if iid <= 0:
                    raise ValueError("iid 파라미터가 필요합니다")
                repository, error = _repository_or_error(container, arguments)
                if error:
                    return error

                project = await _resolve_project(container, repository)
                merge_request = await container.hosting.get_merge_request(project, iid)
                use_case = container.add_comment_use_case(notifier)
                comment = await use_case.execute(merge_request, arguments.get("body", ""))

                if comment is None:
                    return [TextContent(type="text", text="# 코멘트 미등록\n\n본문이 비어 있어 코멘트를 추가하지 않았습니다.")]
                return [TextContent(
                    type="text",
                    text=f"# ✅ 코멘트 추가 완료\n\n**머지 요청:** !{iid} {merge_request.title}\n**코멘트 ID:** {comment.id}\n"
                )]

            raise ValueError(f"알 수 없는 tool: {name}")

        except Exception as e:
            logger.error("=" * 60)
            logger.error("❌ Tool 실행 실패!")
            logger.error("Tool: %s", name)
            logger.error("오류 타입: %s", type(e).__name__)
            logger.error("오류 메시지: %s", str(e))
            logger.error("=" * 60)
            traceback.print_exc(file=sys.stderr)

            # MCP 표준 형식으로 에러 메시지 반환
            error_message = f"""# ❌ 오류 발생

**Tool:** {name}
**오류 타입:** {type(e).__name__}
**오류 메시지:** {str(e)}
{_format_notifications(notifier.drain())}
자세한 내용은 서버 로그를 확인하세요.
"""
            return [TextContent(
                type="text",
                text=error_message
            )]

    @app.list_tools()
    async def list_tools():
        from mcp.types import Tool

        repository_properties = {
            "project": {
                "type": "string",
                "description": "GIT_REPOSITORIES에 등록된 프로젝트 이름",
            },
            "repository_path": {
                "type": "string",
                "description": "git 저장소 경로 (GIT_REPOSITORIES allowlist 안에 있어야 함). project와 둘 다 생략하면 등록된 저장소가 하나일 때 그것을 사용",
            },
        }

        return [
            Tool(
                name="list_target_branches",
                description="""현재 브랜치, GitLab 원격 브랜치 목록, 마지막으로 사용한 대상 브랜치와 저장된 기본값(WIP, 소스 브랜치 삭제)을 조회합니다.""",
                inputSchema={
                    "type": "object",
                    "properties": {**repository_properties},
                },
            ),
            Tool(
                name="search_assignees",
                description="""GitLab 프로젝트 멤버 중 머지 요청 담당자 후보를 검색합니다.""",
                inputSchema={
                    "type": "object",
                    "properties": {
                        **repository_properties,
                        "query": {
                            "type": "string",
                            "description": "username 또는 이름 일부. 생략하면 전체 멤버",
                        },
                    },
                },
            ),
            Tool(
                name="prepare_merge_request",
                description="""현재 브랜치로 머지 요청 생성을 준비합니다 (push/생성은 하지 않음).

**워크플로우**:
1. prepare_merge_request → 프리뷰 + 확인 질문 + 승인 토큰 반환
2. 사용자에게 확인 질문을 보여주고 승인 여부를 물음
3. 승인 시 approve_merge_request, 거절 시 cancel_merge_request

**제목 규칙**: 제목이 "WIP:"로 시작하면 WIP 머지 요청으로 생성됩니다.
work_in_progress를 지정하면 접두어를 자동으로 추가/제거합니다.""",
                inputSchema={
                    "type": "object",
                    "properties": {
                        **repository_properties,
                        "title": {
                            "type": "string",
                            "description": "머지 요청 제목",
                        },
                        "target_branch": {
                            "type": "string",
                            "description": "대상 브랜치 이름 (예: 'main'). 생략하면 마지막으로 사용한 대상 브랜치",
                        },
                        "description": {
                            "type": "string",
                            "description": "머지 요청 설명. 생략하면 커밋 목록으로 기본 설명을 생성",
                        },
                        "assignee": {
                            "type": "string",
                            "description": "담당자 username (예: '@alice')",
                        },
                        "remove_source_branch": {
                            "type": "boolean",
                            "description": "머지 후 소스 브랜치 삭제 여부. 생략하면 저장된 기본값",
                        },
                        "work_in_progress": {
                            "type": "boolean",
                            "description": "WIP 여부. 생략하면 저장된 기본값",
                        },
                    },
                    "required": ["title"],
                },
            ),
            Tool(
                name="approve_merge_request",
                description="""승인된 세션의 현재 브랜치를 push하고 GitLab 머지 요청을 생성합니다. WAIT_APPROVAL 상태일 때만 동작.""",
                inputSchema={
                    "type": "object",
                    "properties": {
                        "session_id": {
                            "type": "string",
                            "description": "머지 요청 세션 ID",
                        },
                        "approval_token": {
                            "type": "string",
                            "description": "승인 토큰 (prepare_merge_request 응답에서 확인)",
                        },
                    },
                    "required": ["session_id", "approval_token"],
                },
            ),
            Tool(
                name="cancel_merge_request",
                description="""승인 대기 중인 머지 요청 세션을 취소합니다. push와 생성은 실행되지 않습니다.""",
                inputSchema={
                    "type": "object",
                    "properties": {
                        "session_id": {
                            "type": "string",
                            "description": "머지 요청 세션 ID",
                        },
                    },
                    "required": ["session_id"],
                },
            ),
            Tool(
                name="get_merge_request_session",
                description="""머지 요청 세션 상태를 조회합니다.""",
                inputSchema={
                    "type": "object",
                    "properties": {
                        "session_id": {
                            "type": "string",
                            "description": "머지 요청 세션 ID",
                        },
                    },
                    "required": ["session_id"],
                },
            ),
            Tool(
                name="list_merge_requests",
                description="""GitLab 프로젝트의 머지 요청 목록을 조회합니다.""",
                inputSchema={
                    "type": "object",
                    "properties": {
                        **repository_properties,
                        "state": {
                            "type": "string",
                            "enum": ["opened", "closed", "merged", "locked", "all"],
                            "description": "머지 요청 상태 (기본: opened)",
                        },
                    },
                },
            ),
            Tool(
                name="list_merge_request_comments",
                description="""머지 요청 코멘트를 작성 순으로 조회합니다. 조회 실패 시 빈 목록과 알림을 반환합니다.""",
                inputSchema={
                    "type": "object",
                    "properties": {
                        **repository_properties,
                        "iid": {
                            "type": "integer",
                            "description": "프로젝트 내 머지 요청 번호 (!123 → 123)",
                        },
                        "include_system": {
                            "type": "boolean",
                            "description": "시스템 노트 포함 여부 (기본: false)",
                        },
                    },
                    "required": ["iid"],
                },
            ),
            Tool(
                name="add_merge_request_comment",
                description="""머지 요청에 코멘트를 추가합니다. 본문이 비어 있으면 아무것도 하지 않습니다.""",
                inputSchema={
                    "type": "object",
                    "properties": {
                        **repository_properties,
                        "iid": {
                            "type": "integer",
                            "description": "프로젝트 내 머지 요청 번호",
                        },
                        "body": {
                            "type": "string",
                            "description": "코멘트 본문 (GitLab 마크다운)",
                        },
                    },
                    "required": ["iid", "body"],
                },
            ),
        ]

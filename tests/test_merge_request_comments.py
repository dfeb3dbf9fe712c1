import pytest

from gitlab_mr.application.use_cases.merge_request_comments import (
    AddMergeRequestCommentUseCase,
    ListMergeRequestCommentsUseCase,
)
from gitlab_mr.domain.errors import ApiError
from gitlab_mr.domain.merge_request import Comment, MergeRequest

MERGE_REQUEST = MergeRequest(id=1012, iid=12, project_id=42, title="add login", source_branch="feature-x", target_branch="main")


@pytest.mark.asyncio
async def test_list_comments_returns_hosting_comments(hosting, notifier) -> None:
    hosting.comments = [Comment(id=1, author="alice", body="LGTM")]

    comments = await ListMergeRequestCommentsUseCase(hosting, notifier).execute(MERGE_REQUEST)

    assert comments == [Comment(id=1, author="alice", body="LGTM")]
    assert notifier.notifications == []


@pytest.mark.asyncio
async def test_list_comments_when_api_fails_returns_empty_with_one_error(hosting, notifier) -> None:
    hosting.fail_on.add("list_merge_request_comments")

    comments = await ListMergeRequestCommentsUseCase(hosting, notifier).execute(MERGE_REQUEST)

    assert comments == []
    assert notifier.notifications == [
        ("error", "Cannot Load Comments", "Cannot load comments from GitLab API", None),
    ]


@pytest.mark.asyncio
@pytest.mark.parametrize("text", ["", "   ", "\n\t"])
async def test_add_blank_comment_makes_no_call(hosting, notifier, text: str) -> None:
    result = await AddMergeRequestCommentUseCase(hosting, notifier).execute(MERGE_REQUEST, text)

    assert result is None
    assert hosting.calls == []
    assert notifier.notifications == []


@pytest.mark.asyncio
async def test_add_comment_posts_text(hosting, notifier) -> None:
    comment = await AddMergeRequestCommentUseCase(hosting, notifier).execute(MERGE_REQUEST, "Please rebase")

    assert comment.body == "Please rebase"
    assert hosting.calls == ["add_comment"]


@pytest.mark.asyncio
async def test_add_comment_when_api_fails_notifies_and_raises(hosting, notifier) -> None:
    hosting.fail_on.add("add_comment")

    with pytest.raises(ApiError):
        await AddMergeRequestCommentUseCase(hosting, notifier).execute(MERGE_REQUEST, "Please rebase")

    assert notifier.notifications == [("error", "Cannot Add Comment", "Cannot add comment.", None)]

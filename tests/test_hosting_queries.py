import pytest

from gitlab_mr.application.use_cases.list_merge_requests import ListMergeRequestsUseCase
from gitlab_mr.application.use_cases.search_assignees import SearchAssigneesUseCase
from gitlab_mr.domain.merge_request import MergeRequest


@pytest.mark.asyncio
async def test_search_assignees_filters_by_query(hosting) -> None:
    users = await SearchAssigneesUseCase(hosting).execute(hosting.project, "alic")

    assert [u.username for u in users] == ["alice", "alicia"]


@pytest.mark.asyncio
async def test_resolve_assignee_requires_exact_username(hosting) -> None:
    use_case = SearchAssigneesUseCase(hosting)

    assert (await use_case.resolve(hosting.project, "@alice")).id == 7
    assert await use_case.resolve(hosting.project, "  ") is None
    with pytest.raises(ValueError):
        await use_case.resolve(hosting.project, "ali")


@pytest.mark.asyncio
async def test_list_merge_requests_filters_by_state(hosting) -> None:
    hosting.merge_requests = [
        MergeRequest(id=1, iid=1, project_id=42, title="a", source_branch="a", target_branch="main"),
        MergeRequest(id=2, iid=2, project_id=42, title="b", source_branch="b", target_branch="main", state="merged"),
    ]
    use_case = ListMergeRequestsUseCase(hosting)

    opened = await use_case.execute(hosting.project)
    merged = await use_case.execute(hosting.project, "merged")

    assert [mr.iid for mr in opened] == [1]
    assert [mr.iid for mr in merged] == [2]


@pytest.mark.asyncio
async def test_list_merge_requests_rejects_unknown_state(hosting) -> None:
    with pytest.raises(ValueError):
        await ListMergeRequestsUseCase(hosting).execute(hosting.project, "draft")

    assert hosting.calls == []

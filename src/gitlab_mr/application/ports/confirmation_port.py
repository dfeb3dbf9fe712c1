from typing import Protocol

from gitlab_mr.domain.merge_request_workflow import ConfirmationQuestion


class ConfirmationPort(Protocol):
    """사용자에게 예/아니오 확인을 받는 계약"""

    async def confirm(self, question: ConfirmationQuestion) -> bool:
        ...

from typing import Protocol


class NotifierPort(Protocol):
    """사용자 알림 계약"""

    def error(self, title: str, message: str) -> None:
        ...

    def warning(self, title: str, message: str) -> None:
        ...

    def info(self, title: str, message: str, url: str | None = None) -> None:
        ...

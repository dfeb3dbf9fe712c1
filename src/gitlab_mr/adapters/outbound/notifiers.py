import logging
from dataclasses import dataclass

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Notification:
    """사용자에게 전달할 알림 한 건"""
    level: str
    title: str
    message: str
    url: str | None = None


class LoggingNotifier:
    """알림을 로그로만 남기는 Notifier"""

    def error(self, title: str, message: str) -> None:
        logger.error("[%s] %s", title, message)

    def warning(self, title: str, message: str) -> None:
        logger.warning("[%s] %s", title, message)

    def info(self, title: str, message: str, url: str | None = None) -> None:
        logger.info("[%s] %s %s", title, message, url or "")


class CollectingNotifier(LoggingNotifier):
    """알림을 모아 두었다가 MCP 응답에 함께 돌려주는 Notifier"""

    def __init__(self):
        self.notifications: list[Notification] = []

    def error(self, title: str, message: str) -> None:
        super().error(title, message)
        self.notifications.append(Notification("error", title, message))

    def warning(self, title: str, message: str) -> None:
        super().warning(title, message)
        self.notifications.append(Notification("warning", title, message))

    def info(self, title: str, message: str, url: str | None = None) -> None:
        super().info(title, message, url)
        self.notifications.append(Notification("info", title, message, url))

    def drain(self) -> list[Notification]:
        """모인 알림을 반환하고 비웁니다."""
        drained, self.notifications = self.notifications, []
        return drained

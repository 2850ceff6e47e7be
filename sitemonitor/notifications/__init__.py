"""Proactive notifications — Slack and Telegram webhooks.

Fires notifications on:
- Reports whose final status is still degraded after self-healing
- Remediation actions that failed
- Recovery: checks healed within the invocation

All webhook calls are best-effort; failures are logged, never raised.
"""

from __future__ import annotations

import asyncio
import logging
from enum import Enum

import httpx

from sitemonitor.config import settings
from sitemonitor.health.models import CheckStatus, HealthReport, OverallStatus, RemediationStatus

logger = logging.getLogger(__name__)


class NotifyLevel(str, Enum):
    WARNING = "warning"
    CRITICAL = "critical"
    RECOVERY = "recovery"


# Emoji/icon mapping
_EMOJI = {
    NotifyLevel.WARNING: "⚠️",
    NotifyLevel.CRITICAL: "🔴",
    NotifyLevel.RECOVERY: "✅",
}


class NotificationManager:
    """Central dispatcher for Slack / Telegram notifications."""

    def __init__(
        self,
        slack_webhook: str = "",
        telegram_token: str = "",
        telegram_chat_id: str = "",
    ) -> None:
        self.slack_webhook = slack_webhook or settings.slack_webhook_url
        self.telegram_token = telegram_token or settings.telegram_bot_token
        self.telegram_chat_id = telegram_chat_id or settings.telegram_chat_id
        self._enabled = bool(self.slack_webhook or self.telegram_token)

    @property
    def is_enabled(self) -> bool:
        return self._enabled

    # -- High-level notification methods ------------------------------------

    async def notify_report(self, report: HealthReport) -> None:
        """Alert when a report needs a human: degraded, or a remediation failed."""
        s = report.summary
        failed_actions = [r for r in report.remediations if r.status is RemediationStatus.FAILED]

        if s.status is OverallStatus.DEGRADED:
            level = NotifyLevel.CRITICAL
        elif failed_actions:
            level = NotifyLevel.WARNING
        elif s.healed:
            level = NotifyLevel.RECOVERY
        else:
            return  # healthy / warning without incident

        text = (
            f"{_EMOJI[level]} *Site Health: {s.status.value}*\n"
            f"Score: {s.score} ({s.passed}/{s.total_checks} passing, {s.healed} healed)\n"
        )
        failing = [c for c in report.checks if c.status is CheckStatus.FAIL]
        if failing:
            names = ", ".join(f"{c.check_type.value}:{c.check_name}" for c in failing[:10])
            text += f"Failing: {names}\n"
        if failed_actions:
            text += f"Failed remediations: {', '.join(r.action for r in failed_actions[:10])}\n"

        await self._send(text, level)

    # -- Low-level dispatch -------------------------------------------------

    async def _send(self, text: str, level: NotifyLevel) -> None:
        """Dispatch to all configured channels concurrently."""
        if not self._enabled:
            return
        tasks = []
        if self.slack_webhook:
            tasks.append(self._send_slack(text))
        if self.telegram_token and self.telegram_chat_id:
            tasks.append(self._send_telegram(text))
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    async def _send_slack(self, text: str) -> None:
        """POST to Slack incoming webhook."""
        try:
            async with httpx.AsyncClient(timeout=10) as client:
                resp = await client.post(
                    self.slack_webhook,
                    json={"text": text, "mrkdwn": True},
                )
                if resp.status_code != 200:
                    logger.warning("Slack webhook returned %d: %s", resp.status_code, resp.text[:200])
        except Exception as exc:
            logger.warning("Slack notification failed: %s", exc)

    async def _send_telegram(self, text: str) -> None:
        """POST to Telegram Bot API."""
        url = f"https://api.telegram.org/bot{self.telegram_token}/sendMessage"
        try:
            async with httpx.AsyncClient(timeout=10) as client:
                resp = await client.post(
                    url,
                    json={
                        "chat_id": self.telegram_chat_id,
                        "text": text,
                        "parse_mode": "Markdown",
                    },
                )
                if resp.status_code != 200:
                    logger.warning("Telegram API returned %d: %s", resp.status_code, resp.text[:200])
        except Exception as exc:
            logger.warning("Telegram notification failed: %s", exc)


# -- Singleton -----------------------------------------------------------------

_notifier: NotificationManager | None = None


def get_notifier() -> NotificationManager:
    """Return the process-level notification manager."""
    global _notifier
    if _notifier is None:
        _notifier = NotificationManager()
    return _notifier

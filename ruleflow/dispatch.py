"""Delivery of rule execution results to their configured destination."""

from __future__ import annotations

import json
import logging
from datetime import datetime
from typing import Callable, Optional

import httpx
from pydantic import BaseModel

from .agent.provider import ToolExecutionProvider
from .agent.sessions import SessionCache
from .constants import DEFAULT_WEBHOOK_TIMEOUT
from .contracts import ExecutionRule, OutputFormat, RuleExecutionResult, utcnow
from .tools.default_prompts import (
    GMAIL_SENDER_SYSTEM_PROMPT,
    SLACK_SENDER_SYSTEM_PROMPT,
    build_gmail_delivery_task,
    build_slack_delivery_task,
)

logger = logging.getLogger(__name__)

RESULT_PLACEHOLDER = "{{result}}"


class DispatchOutcome(BaseModel):
    platform: str
    delivered: bool
    error: Optional[str] = None


def format_output(
    result: RuleExecutionResult,
    format: OutputFormat = "summary",
    template: Optional[str] = None,
) -> str:
    """Render ``result`` as a message.

    A ``template`` wins over ``format``; every ``{{result}}`` in it is
    replaced with the execution output.
    """
    output = result.output or ""
    if template:
        return template.replace(RESULT_PLACEHOLDER, output)
    if format == "summary":
        outcome = "successfully" if result.success else "with errors"
        return f'Rule "{result.rule_name}" executed {outcome}.\n\n{output}'
    if format == "detailed":
        return json.dumps(result.model_dump(mode="json"), indent=2)
    return output


class OutputDispatcher:
    """Sends formatted results to Slack, Gmail or a webhook.

    Slack and Gmail messages are sent by the tool-execution provider using
    the user's own connected accounts. Webhooks get a direct JSON ``POST``.
    ``dispatch`` never raises: failures come back in the
    :class:`DispatchOutcome`.
    """

    def __init__(
        self,
        provider: ToolExecutionProvider,
        sessions: Optional[SessionCache] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        webhook_timeout: float = DEFAULT_WEBHOOK_TIMEOUT,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._provider = provider
        self._sessions = sessions or SessionCache(provider, clock=clock)
        self._http_client = http_client
        self._webhook_timeout = webhook_timeout
        self._clock = clock

    async def dispatch(
        self, rule: ExecutionRule, result: RuleExecutionResult, user_id: str
    ) -> DispatchOutcome:
        config = rule.output_config
        platform = config.platform
        if platform == "none":
            return DispatchOutcome(platform=platform, delivered=False)
        if not config.destination:
            logger.warning(f"Rule {rule.id} outputs to {platform} without a destination")
            return DispatchOutcome(
                platform=platform, delivered=False, error="No destination configured"
            )

        message = format_output(result, config.format, config.template)
        logger.info(f"Sending output of rule {rule.id} to {platform}:{config.destination}")

        try:
            if platform == "slack":
                await self._send_slack(config.destination, message, user_id)
            elif platform == "gmail":
                await self._send_gmail(config.destination, rule.name, message, user_id)
            elif platform == "webhook":
                await self._send_webhook(config.destination, rule.name, result)
            else:
                logger.warning(f"Unknown output platform: {platform}")
                return DispatchOutcome(
                    platform=platform, delivered=False, error=f"Unknown platform {platform}"
                )
        except Exception as e:
            logger.error(f"Failed to send output to {platform}: {e}")
            return DispatchOutcome(
                platform=platform, delivered=False, error=str(e) or type(e).__name__
            )

        return DispatchOutcome(platform=platform, delivered=True)

    async def _send_slack(self, channel: str, message: str, user_id: str) -> None:
        session = await self._sessions.acquire(user_id)
        await self._provider.run_agent(
            session,
            build_slack_delivery_task(channel, message),
            instructions=SLACK_SENDER_SYSTEM_PROMPT,
        )

    async def _send_gmail(self, to: str, rule_name: str, body: str, user_id: str) -> None:
        session = await self._sessions.acquire(user_id)
        await self._provider.run_agent(
            session,
            build_gmail_delivery_task(to, rule_name, body),
            instructions=GMAIL_SENDER_SYSTEM_PROMPT,
        )

    async def _send_webhook(
        self, url: str, rule_name: str, result: RuleExecutionResult
    ) -> None:
        envelope = {
            "rule": rule_name,
            "result": result.model_dump(mode="json"),
            "timestamp": self._clock().isoformat(),
        }
        if self._http_client is not None:
            response = await self._http_client.post(
                url, json=envelope, timeout=self._webhook_timeout
            )
        else:
            async with httpx.AsyncClient(timeout=self._webhook_timeout) as client:
                response = await client.post(url, json=envelope)
        if not response.is_success:
            raise httpx.HTTPStatusError(
                f"HTTP {response.status_code}", request=response.request, response=response
            )

"""Tool approval backed by a `toolApproval` request over the message bus."""

import logging
from typing import Optional

from pydantic import ValidationError

from taor.exceptions import BusError
from taor.protocol.bus import MessageBus
from taor.protocol.events import Methods
from taor.protocol.methods import ToolApprovalParams, ToolUseModel
from taor.tools.registry import ToolRegistry
from .structs import ApprovalResult, ToolUse

logger = logging.getLogger(__name__)


def make_bus_approval(
    bus: MessageBus,
    registry: Optional[ToolRegistry] = None,
    timeout: Optional[float] = None,
):
    """
    Build an `on_tool_approve` callback that asks the peer across `bus`.

    The request carries the tool use and its approval category (taken from
    the registered tool when `registry` is given). A failed or timed-out
    request counts as a denial without reason, which ends the run.
    """

    async def approve(tool_use: ToolUse) -> ApprovalResult:
        category = None
        if registry is not None:
            tool = registry.get(tool_use.name)
            category = tool.category if tool else None

        params = ToolApprovalParams(
            tool_use=ToolUseModel(
                name=tool_use.name, params=tool_use.params, call_id=tool_use.call_id
            ),
            category=category,
        )
        try:
            response = await bus.call(Methods.TOOL_APPROVAL, params, timeout=timeout)
        except (BusError, ValidationError) as e:
            logger.warning("Approval request for %s failed: %s", tool_use.name, e)
            return ApprovalResult(approved=False)

        return ApprovalResult(
            approved=response.approved,
            params=response.params,
            deny_reason=response.deny_reason,
        )

    return approve

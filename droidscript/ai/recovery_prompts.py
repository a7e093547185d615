"""Prompts for the recovery agent.

The agent sees the failed step, the current screen summary and recent run
history, and must answer with a single JSON object: either a corrective
script built from the script primitives or a terminal verdict.
"""

from __future__ import annotations

import json
from typing import Any

from .contract import RecoveryRequest
from .tools import TOOL_NAMES

__all__ = ["RecoveryPrompts", "build_recovery_messages"]

_REASON_GUIDANCE = {
    "NoTarget": (
        "The step's selector matched nothing. Look for an overlay, dialog or "
        "keyboard hiding the target, or a screen the app navigated away to."
    ),
    "AmbiguousTarget": (
        "The selector matched several elements. You cannot edit the failed step; "
        "change the screen so that exactly one element matches, or give up."
    ),
    "NotFound": (
        "Scrolling did not reveal the element. The list may need a different "
        "direction, a search field, or a different screen."
    ),
    "Timeout": "The awaited screen condition never held. Check for loading errors or blocking dialogs.",
    "DeviceError": "The device rejected the action. Only retry if the screen suggests a transient problem.",
}


class RecoveryPrompts:
    """Prompt system for step-failure recovery."""

    def __init__(self) -> None:
        """Initialize the recovery prompts."""
        self.system_prompt = self._get_system_prompt()

    def _get_system_prompt(self) -> str:
        """Get the base system prompt for recovery."""
        return (
            "You are an Android UI automation recovery specialist. A scripted run "
            "failed at one step and is paused until you answer.\n\n"
            "You can ONLY act through a corrective script made of these actions: "
            f"{', '.join(sorted(TOOL_NAMES))}. "
            "The engine executes it, then retries the failed step unchanged.\n\n"
            "SELECTORS:\n"
            "• key=value predicates joined with ';' (all must hold)\n"
            "• keys: id, text, desc, role (operators = ~= ^=), enabled, visible, clickable, "
            "focusable, scrollable, checked (true/false)\n"
            "• relations: inside=(...), has=(...), below=(...)\n"
            "• fallbacks separated by '||' are tried in order\n"
            "• prefer role + text or id over nth=N\n\n"
            "RESPONSE FORMAT (JSON only, no prose):\n"
            '{"kind": "corrective_script", "rationale": "...", "steps": '
            '[{"action": "tap", "selector": "text=Dismiss", "params": {}}]}\n'
            "or\n"
            '{"kind": "terminal", "reason": "why the run cannot continue"}\n\n'
            "RULES:\n"
            "• Keep corrective scripts short; only reference variables listed as bound\n"
            "• Use recovery hints from the script author when they apply\n"
            "• Give up with a terminal verdict when the app is in a state no "
            "short action sequence can fix"
        )

    def get_failure_guidance(self, reason: str) -> str:
        """Return reason-specific guidance, empty for unknown reasons."""
        return _REASON_GUIDANCE.get(reason, "")

    def build_user_prompt(self, request: RecoveryRequest) -> str:
        """Render the request as the user message."""
        payload: dict[str, Any] = request.to_payload()
        guidance = self.get_failure_guidance(request.failure_reason.value)
        parts = [
            f"Script '{request.script_name}' failed at step {request.failed_step_index} "
            f"with {request.failure_reason.value}: {request.failure_detail or 'no detail'}",
        ]
        if guidance:
            parts.append(guidance)
        if request.negotiation_depth:
            parts.append(
                f"This is recovery round {request.negotiation_depth + 1} of this run; "
                "earlier corrective scripts did not get the run past its failures."
            )
        parts.append("REQUEST:\n" + json.dumps(payload, indent=2, ensure_ascii=False))
        return "\n\n".join(parts)

    def build_messages(self, request: RecoveryRequest) -> list[dict[str, str]]:
        return [
            {"role": "system", "content": self.system_prompt},
            {"role": "user", "content": self.build_user_prompt(request)},
        ]


def build_recovery_messages(request: RecoveryRequest) -> list[dict[str, str]]:
    """Build the chat messages for one recovery request."""
    return RecoveryPrompts().build_messages(request)

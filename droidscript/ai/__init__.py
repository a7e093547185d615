"""AI boundary: recovery contract, agents, orchestrator and tool surface."""

from .contract import CorrectiveScript, RecoveryRequest, RecoveryResponse, TerminalVerdict
from .openai_client import OpenAIClient, get_openai_client
from .orchestrator import RecoveryOrchestrator
from .recovery_agent import OpenAIRecoveryAgent, RecoveryAgent
from .recovery_prompts import RecoveryPrompts, build_recovery_messages
from .response_parser import parse_recovery_response
from .tools import TOOL_DEFINITIONS, TOOL_NAMES, step_from_tool_call

__all__ = [
    "CorrectiveScript",
    "OpenAIClient",
    "OpenAIRecoveryAgent",
    "RecoveryAgent",
    "RecoveryOrchestrator",
    "RecoveryPrompts",
    "RecoveryRequest",
    "RecoveryResponse",
    "TOOL_DEFINITIONS",
    "TOOL_NAMES",
    "TerminalVerdict",
    "build_recovery_messages",
    "get_openai_client",
    "parse_recovery_response",
    "step_from_tool_call",
]

"""Operator interaction: prompts, notifications and recovery decisions."""

from .decisions import AutoDecisions, InteractiveDecisions, ScriptedDecisions
from .handler import (
    AutoResponseHandler,
    CallbackInteractionHandler,
    CLIInteractionHandler,
    InputType,
    InteractionRequest,
    InteractionResponse,
    QuestionCategory,
    UserInteractionHandler,
)

__all__ = [
    "AutoDecisions",
    "AutoResponseHandler",
    "CallbackInteractionHandler",
    "CLIInteractionHandler",
    "InputType",
    "InteractionRequest",
    "InteractionResponse",
    "InteractiveDecisions",
    "QuestionCategory",
    "ScriptedDecisions",
    "UserInteractionHandler",
]

"""User interaction handlers used by steps and the recovery menu."""

from __future__ import annotations

import getpass
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, List, Optional

from rich.console import Console

from ..utils.logging import get_logger

logger = get_logger(__name__)


class InputType(str, Enum):
    """Type of user input expected."""
    CHOICE = "choice"
    TEXT = "text"
    CONFIRM = "confirm"
    SECRET = "secret"


class QuestionCategory(str, Enum):
    """Category of questions for context."""
    DECISION = "decision"
    CONFIRMATION = "confirmation"
    INFORMATION = "information"
    ERROR_RECOVERY = "error_recovery"


@dataclass
class InteractionRequest:
    """A question put to the operator."""

    question: str
    input_type: InputType = InputType.CHOICE
    options: List[str] = field(default_factory=list)
    category: QuestionCategory = QuestionCategory.DECISION
    context: Optional[str] = None
    default: Optional[str] = None
    allow_custom: bool = False

    def format_prompt(self) -> str:
        """Format the request as a user-friendly prompt."""
        icons = {
            QuestionCategory.DECISION: "🤔",
            QuestionCategory.CONFIRMATION: "⚠️",
            QuestionCategory.INFORMATION: "📝",
            QuestionCategory.ERROR_RECOVERY: "🔧",
        }
        lines = [f"\n{icons.get(self.category, '❓')} {self.question}"]

        if self.context:
            lines.append(f"\n   ℹ️  {self.context}")

        if self.input_type == InputType.CHOICE and self.options:
            lines.append("")
            for i, option in enumerate(self.options, 1):
                default_marker = " (default)" if self.default == option else ""
                lines.append(f"   [{i}] {option}{default_marker}")
        elif self.input_type == InputType.CONFIRM:
            default_hint = f" (default: {self.default})" if self.default else ""
            lines.append(f"\n   [y/n]{default_hint}")
        elif self.input_type == InputType.TEXT and self.default:
            lines.append(f"\n   (default: {self.default})")
        elif self.input_type == InputType.SECRET:
            lines.append("\n   (input is hidden)")

        return "\n".join(lines)


@dataclass
class InteractionResponse:
    """Operator's response to an interaction request."""

    value: str
    selected_option: Optional[int] = None
    is_custom: bool = False
    cancelled: bool = False

    @classmethod
    def from_choice(cls, option_index: int, options: List[str]) -> "InteractionResponse":
        """Create response from a 1-based choice selection."""
        if 1 <= option_index <= len(options):
            return cls(value=options[option_index - 1], selected_option=option_index)
        raise ValueError(f"Invalid option index: {option_index}")

    @classmethod
    def cancelled_response(cls) -> "InteractionResponse":
        return cls(value="", cancelled=True)

    @property
    def confirmed(self) -> bool:
        return not self.cancelled and self.value.strip().lower() in ("y", "yes")


class UserInteractionHandler(ABC):
    """Abstract base class for handling user interactions."""

    @abstractmethod
    def ask(self, request: InteractionRequest) -> InteractionResponse:
        """Present a request to the user and get their response."""

    @abstractmethod
    def notify(self, message: str, level: str = "info") -> None:
        """Send a notification to the user (no response needed).

        Args:
            message: The message to display
            level: Severity level (info, success, warning, error)
        """

    def confirm(self, question: str, *, default: bool = True, context: Optional[str] = None) -> bool:
        response = self.ask(
            InteractionRequest(
                question=question,
                input_type=InputType.CONFIRM,
                category=QuestionCategory.CONFIRMATION,
                context=context,
                default="y" if default else "n",
            )
        )
        return response.confirmed

    def choose(
        self,
        question: str,
        options: List[str],
        *,
        default: Optional[str] = None,
        category: QuestionCategory = QuestionCategory.DECISION,
        context: Optional[str] = None,
    ) -> Optional[str]:
        """Ask for one of ``options``; None when the operator cancels."""
        response = self.ask(
            InteractionRequest(
                question=question,
                options=list(options),
                category=category,
                context=context,
                default=default,
            )
        )
        if response.cancelled:
            return None
        return response.value


class CLIInteractionHandler(UserInteractionHandler):
    """Command-line interaction handler rendering through rich."""

    def __init__(self, use_rich: bool = True, console: Optional[Console] = None) -> None:
        self.use_rich = use_rich
        self._console = console or Console(highlight=False)

    def _print(self, text: str) -> None:
        if self.use_rich:
            self._console.print(text, markup=False)
        else:
            print(text)

    def _input(self, prompt: str) -> str:
        if self.use_rich:
            return self._console.input(prompt)
        return input(prompt)

    def ask(self, request: InteractionRequest) -> InteractionResponse:
        """Present request and get user input via CLI."""
        self._print(request.format_prompt())

        try:
            if request.input_type == InputType.CHOICE:
                return self._handle_choice(request)
            elif request.input_type == InputType.CONFIRM:
                return self._handle_confirm(request)
            elif request.input_type == InputType.SECRET:
                return self._handle_secret(request)
            else:
                return self._handle_text(request)
        except EOFError:
            return InteractionResponse.cancelled_response()

    def _handle_choice(self, request: InteractionRequest) -> InteractionResponse:
        default_idx = None
        if request.default in request.options:
            default_idx = request.options.index(request.default) + 1

        while True:
            prompt = "\n   Choose"
            if default_idx:
                prompt += f" [{default_idx}]"
            user_input = self._input(prompt + ": ").strip()

            if not user_input and default_idx:
                return InteractionResponse.from_choice(default_idx, request.options)

            try:
                choice = int(user_input)
            except ValueError:
                if request.allow_custom and user_input:
                    return InteractionResponse(value=user_input, is_custom=True)
                self._print("   ❌ Please enter an option number")
                continue
            if 1 <= choice <= len(request.options):
                return InteractionResponse.from_choice(choice, request.options)
            self._print(f"   ❌ Invalid option, enter 1-{len(request.options)}")

    def _handle_confirm(self, request: InteractionRequest) -> InteractionResponse:
        default = request.default or "n"
        while True:
            user_input = self._input(f"\n   Confirm? [y/n] ({default}): ").strip().lower()
            if not user_input:
                user_input = default
            if user_input in ("y", "yes"):
                return InteractionResponse(value="yes")
            if user_input in ("n", "no"):
                return InteractionResponse(value="no")
            self._print("   ❌ Please answer y or n")

    def _handle_text(self, request: InteractionRequest) -> InteractionResponse:
        user_input = self._input("\n   > ").strip()
        if not user_input and request.default:
            user_input = request.default
        return InteractionResponse(value=user_input)

    def _handle_secret(self, request: InteractionRequest) -> InteractionResponse:
        if self.use_rich:
            return InteractionResponse(value=self._console.input("\n   > ", password=True))
        return InteractionResponse(value=getpass.getpass("\n   > "))

    def notify(self, message: str, level: str = "info") -> None:
        icons = {
            "info": "ℹ️",
            "warning": "⚠️",
            "error": "❌",
            "success": "✅",
        }
        styles = {"warning": "yellow", "error": "bold red", "success": "green"}
        text = f"\n{icons.get(level, '•')} {message}"
        if self.use_rich:
            self._console.print(text, style=styles.get(level), markup=False)
        else:
            print(text)


class CallbackInteractionHandler(UserInteractionHandler):
    """Interaction handler that delegates to callbacks (GUI or test harnesses)."""

    def __init__(
        self,
        ask_callback: Callable[[InteractionRequest], InteractionResponse],
        notify_callback: Optional[Callable[[str, str], None]] = None,
    ) -> None:
        self.ask_callback = ask_callback
        self.notify_callback = notify_callback or (lambda msg, lvl: logger.info("[%s] %s", lvl, msg))

    def ask(self, request: InteractionRequest) -> InteractionResponse:
        return self.ask_callback(request)

    def notify(self, message: str, level: str = "info") -> None:
        self.notify_callback(message, level)


class AutoResponseHandler(UserInteractionHandler):
    """Non-interactive handler: answers with defaults or predefined responses."""

    def __init__(
        self,
        default_responses: Optional[dict] = None,
        always_confirm: bool = True,
        use_defaults: bool = True,
    ) -> None:
        self.default_responses = default_responses or {}
        self.always_confirm = always_confirm
        self.use_defaults = use_defaults
        self.notifications: List[tuple] = []

    def ask(self, request: InteractionRequest) -> InteractionResponse:
        logger.debug("Auto-responding to: %s", request.question[:60])

        for keyword, response in self.default_responses.items():
            if keyword.lower() in request.question.lower():
                return InteractionResponse(value=response)

        if request.input_type == InputType.CONFIRM:
            if self.use_defaults and request.default:
                return InteractionResponse(value=request.default)
            return InteractionResponse(value="yes" if self.always_confirm else "no")
        if self.use_defaults and request.default:
            return InteractionResponse(value=request.default)
        if request.input_type == InputType.CHOICE and request.options:
            return InteractionResponse.from_choice(1, request.options)
        return InteractionResponse(value="")

    def notify(self, message: str, level: str = "info") -> None:
        self.notifications.append((level, message))
        logger.info("[%s] %s", level, message)

"""
Answer providers - how configuration questions get answered

InteractiveAnswerProvider asks on the terminal with prompt-toolkit;
DefaultAnswerProvider accepts every default (``--yes``).
"""

import os
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, List, Optional

from prompt_toolkit import PromptSession
from prompt_toolkit.completion import WordCompleter
from prompt_toolkit.formatted_text import HTML
from prompt_toolkit.validation import ValidationError, Validator
from rich.console import Console

from vbs.exceptions import VBSError
from vbs.schemas import ConfigQuestion


TRUE_WORDS = ("y", "yes", "true", "1", "on")
FALSE_WORDS = ("n", "no", "false", "0", "off")


def is_valid_port(value: Any) -> bool:
    try:
        port = int(str(value).strip())
    except (TypeError, ValueError):
        return False
    return 1 <= port <= 65535


def parse_bool(value: Any, default: bool = False) -> bool:
    if isinstance(value, bool):
        return value
    text = str(value).strip().lower()
    if text in TRUE_WORDS:
        return True
    if text in FALSE_WORDS:
        return False
    return default


def coerce_answer(question: ConfigQuestion, raw: Any) -> Any:
    """Typed value for a raw answer: bools for confirms, ints for ports"""
    if question.type == "confirm":
        return parse_bool(raw, default=bool(question.default))
    if question.validate_tag == "port_number" and is_valid_port(raw):
        return int(str(raw).strip())
    return raw


def default_answer(question: ConfigQuestion) -> Any:
    if question.type == "list":
        choices = question.choices or []
        if question.default is not None and str(question.default) in choices:
            return str(question.default)
        return choices[0] if choices else question.default
    if question.type == "confirm":
        return parse_bool(question.default, default=False)
    return question.default if question.default is not None else ""


def directory_choices(project_name: str) -> List[str]:
    return [
        f"/var/www/{project_name}",
        str(Path.home() / "projects" / project_name),
    ]


class PortValidator(Validator):
    def validate(self, document):
        if not is_valid_port(document.text):
            raise ValidationError(message="Enter a port between 1 and 65535",
                                  cursor_position=len(document.text))


class ChoiceValidator(Validator):
    def __init__(self, choices: List[str]):
        self.choices = choices

    def validate(self, document):
        text = document.text.strip()
        if not text or text in self.choices:
            return
        if text.isdigit() and 1 <= int(text) <= len(self.choices):
            return
        raise ValidationError(message=f"Pick 1-{len(self.choices)} or type a listed option",
                              cursor_position=len(document.text))


class MinLengthValidator(Validator):
    def __init__(self, min_length: int):
        self.min_length = min_length

    def validate(self, document):
        if len(document.text.strip()) < self.min_length:
            raise ValidationError(message=f"Please enter at least {self.min_length} characters",
                                  cursor_position=len(document.text))


class AnswerProvider(ABC):
    """Interface for answering questions"""

    @abstractmethod
    async def ask(self, question: ConfigQuestion, index: int, total: int) -> Any:
        """Answer one question, already coerced to its type"""
        pass

    @abstractmethod
    async def choose_directory(self, project_name: str) -> str:
        pass

    @abstractmethod
    async def ask_text(self, message: str, min_length: int = 0, default: Optional[str] = None) -> str:
        pass

    @abstractmethod
    async def confirm(self, message: str, default: bool = True) -> bool:
        pass


class DefaultAnswerProvider(AnswerProvider):
    """Accepts every default without asking"""

    def __init__(self, base_dir: Optional[str] = None):
        self.base_dir = base_dir

    async def ask(self, question: ConfigQuestion, index: int, total: int) -> Any:
        return coerce_answer(question, default_answer(question))

    async def choose_directory(self, project_name: str) -> str:
        if self.base_dir:
            return str(Path(self.base_dir).expanduser().resolve() / project_name)
        return directory_choices(project_name)[0]

    async def ask_text(self, message: str, min_length: int = 0, default: Optional[str] = None) -> str:
        if default is not None and len(default.strip()) >= min_length:
            return default
        raise VBSError(f"{message}: an answer is required in non-interactive mode",
                       code="INPUT_REQUIRED")

    async def confirm(self, message: str, default: bool = True) -> bool:
        return True


class InteractiveAnswerProvider(AnswerProvider):
    """Terminal questions through prompt-toolkit"""

    def __init__(self, console: Optional[Console] = None, base_dir: Optional[str] = None):
        self.console = console or Console()
        self.base_dir = base_dir
        self._session: Optional[PromptSession] = None

    @property
    def session(self) -> PromptSession:
        if self._session is None:
            self._session = PromptSession()
        return self._session

    async def _prompt(self, message: str, default: str = "", **kwargs) -> str:
        try:
            return await self.session.prompt_async(HTML(message), default=default, **kwargs)
        except EOFError:
            raise KeyboardInterrupt

    async def ask(self, question: ConfigQuestion, index: int, total: int) -> Any:
        label = f"<ansicyan>[{index}/{total}]</ansicyan> <b>{_escape(question.message)}</b>"

        if question.type == "confirm":
            default = parse_bool(question.default, default=False)
            suffix = "(Y/n)" if default else "(y/N)"
            raw = await self._prompt(f"{label} {suffix} ")
            return parse_bool(raw, default=default) if raw.strip() else default

        if question.type == "list":
            choices = question.choices or []
            for number, choice in enumerate(choices, start=1):
                self.console.print(f"    [cyan]{number}.[/] {choice}")
            default = str(default_answer(question))
            raw = (await self._prompt(
                f"{label} ",
                default=default,
                completer=WordCompleter(choices, ignore_case=True, sentence=True),
                validator=ChoiceValidator(choices),
            )).strip()
            if raw.isdigit() and 1 <= int(raw) <= len(choices):
                return choices[int(raw) - 1]
            return raw or default

        default = "" if question.default is None else str(question.default)
        validator = PortValidator() if question.validate_tag == "port_number" else None
        raw = await self._prompt(f"{label} ", default=default, validator=validator)
        return coerce_answer(question, raw.strip() if raw.strip() else default)

    async def choose_directory(self, project_name: str) -> str:
        if self.base_dir:
            return str(Path(self.base_dir).expanduser().resolve() / project_name)

        options = directory_choices(project_name)
        self.console.print("  [bold]Where should the project live?[/]")
        for number, option in enumerate(options, start=1):
            self.console.print(f"    [cyan]{number}.[/] {option}")
        self.console.print(f"    [cyan]{len(options) + 1}.[/] Custom path")

        labels = [str(n) for n in range(1, len(options) + 2)]
        raw = (await self._prompt(
            "<b>Directory</b> ", default="1", validator=ChoiceValidator(labels)
        )).strip() or "1"

        choice = int(raw)
        if choice <= len(options):
            return options[choice - 1]

        custom = await self._prompt(
            "<b>Custom path</b> ", default=os.path.join(os.getcwd(), project_name),
            validator=MinLengthValidator(1),
        )
        return str(Path(custom.strip()).expanduser().resolve())

    async def ask_text(self, message: str, min_length: int = 0, default: Optional[str] = None) -> str:
        raw = await self._prompt(
            f"<b>{_escape(message)}</b> ",
            default=default or "",
            validator=MinLengthValidator(min_length) if min_length else None,
        )
        return raw.strip()

    async def confirm(self, message: str, default: bool = True) -> bool:
        suffix = "(Y/n)" if default else "(y/N)"
        raw = await self._prompt(f"<b>{_escape(message)}</b> {suffix} ")
        return parse_bool(raw, default=default) if raw.strip() else default


def _escape(text: str) -> str:
    return text.replace("&", "&amp;").replace("<", "&lt;").replace(">", "&gt;")

"""SHZ-GPT
=======

Desktop chat client for OpenAI style chat completion endpoints.

The application is split into small collaborators that are wired together in
:func:`build_application`:

* **Configuration** – read from the process environment, after loading an
  optional ``.env`` file, and validated up front.
* **Conversation** – an ordered, append-only list of role tagged messages.
* **HTTP client** – a single best-effort blocking request per turn.  There is
  no retry; a failure is reported to the user and the turn is dropped.
* **Dispatch** – one background worker at a time, guarded by an explicit
  in-flight flag, handing its result to the render loop through a single
  value slot.
* **Rendering** – replies are segmented into markdown blocks
  (:mod:`markdown_blocks`) and laid out by the tkinter view in
  :mod:`chat_gui`, optionally mirrored to the terminal with rich.
"""

from __future__ import annotations

import json
import logging
import os
import threading
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Dict, List, Mapping, Optional, Union

import requests
from dotenv import load_dotenv
from rich.console import Console
from rich.rule import Rule
from rich.syntax import Syntax
from rich.text import Text

from markdown_blocks import Block, BlockKind, PygmentsHighlighter, RenderSpan, layout_blocks, segment


# ---------------------------------------------------------------------------
# Logging infrastructure
# ---------------------------------------------------------------------------

def _build_logger() -> logging.Logger:
    """Configure the application logger.

    Output goes to stderr with the thread name included, which makes it easy
    to tell the tkinter loop apart from the completion worker.
    """

    logger = logging.getLogger("shz_gpt")
    if logger.handlers:
        return logger

    handler = logging.StreamHandler()
    formatter = logging.Formatter(
        "%(asctime)s | %(levelname)-8s | %(threadName)s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    handler.setFormatter(formatter)
    logger.addHandler(handler)
    logger.setLevel(logging.INFO)
    logger.propagate = False
    return logger


LOGGER = _build_logger()
CONSOLE = Console()


# ---------------------------------------------------------------------------
# Custom exceptions
# ---------------------------------------------------------------------------

class ConfigurationError(RuntimeError):
    """Raised when the application configuration is invalid."""


class APIError(RuntimeError):
    """Transport or HTTP level failure talking to the completion endpoint."""

    def __init__(self, message: str, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class ResponseFormatError(APIError):
    """Raised when the endpoint returns an unexpected schema."""


# ---------------------------------------------------------------------------
# Configuration handling
# ---------------------------------------------------------------------------

DEFAULT_API_URL = "https://api.openai.com/v1/chat/completions"
DEFAULT_GUI_SYSTEM_PROMPT = "You are a helpful assistant."

# Used whenever the user clears the system prompt field.
DEFAULT_SYSTEM_PROMPT = """
You are an expert software developer with extensive knowledge in various programming languages, frameworks, and best practices.

When responding to user queries, you should break down complex problems into manageable steps, carefully consider each step, and provide clear, precise, and well-explained answers.

Your goal is to help the user solve their technical problems efficiently, while also providing educational value by explaining the reasoning behind your solutions.

Strive to simplify your explanations as much as possible, making complex concepts accessible without losing accuracy. Whenever necessary, offer additional context or alternatives to ensure the user fully understands the topic at hand.""".strip()

MAX_TEMPERATURE = 2.0
MAX_TOKENS_LIMIT = 4096


class ModelId(str, Enum):
    GPT_4O = "gpt-4o"
    GPT_4O_MINI = "gpt-4o-mini"

    @classmethod
    def choices(cls, current: Optional[str] = None) -> List[str]:
        """Known model ids, led by ``current`` when it is a custom one."""

        values = [member.value for member in cls]
        if current and current not in values:
            values.insert(0, current)
        return values


@dataclass(slots=True)
class GenerationSettings:
    """Per-request generation parameters, editable from the side panel."""

    model: str = ModelId.GPT_4O_MINI.value
    max_tokens: int = 1024
    temperature: float = 1.0
    system_prompt: str = DEFAULT_GUI_SYSTEM_PROMPT

    def validate(self) -> None:
        if not self.model:
            raise ConfigurationError("Model name is required")
        if not 0.0 <= self.temperature <= MAX_TEMPERATURE:
            raise ConfigurationError(f"Temperature must be between 0 and {MAX_TEMPERATURE}")
        if not 0 <= self.max_tokens <= MAX_TOKENS_LIMIT:
            raise ConfigurationError(f"Max tokens must be between 0 and {MAX_TOKENS_LIMIT}")

    def effective_system_prompt(self) -> str:
        return self.system_prompt.strip() or DEFAULT_SYSTEM_PROMPT


def _parse_float(environ: Mapping[str, str], name: str, default: float) -> float:
    raw = environ.get(name)
    if raw is None or raw == "":
        return default
    try:
        return float(raw)
    except ValueError as exc:
        raise ConfigurationError(f"{name} must be a number, got {raw!r}") from exc


def _parse_int(environ: Mapping[str, str], name: str, default: int) -> int:
    raw = environ.get(name)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError as exc:
        raise ConfigurationError(f"{name} must be an integer, got {raw!r}") from exc


def _parse_bool(environ: Mapping[str, str], name: str, default: bool) -> bool:
    raw = environ.get(name)
    if raw is None or raw == "":
        return default
    try:
        value = json.loads(raw.lower())
    except json.JSONDecodeError as exc:
        raise ConfigurationError(f"{name} must be true or false, got {raw!r}") from exc
    if not isinstance(value, bool):
        raise ConfigurationError(f"{name} must be true or false, got {raw!r}")
    return value


@dataclass(slots=True)
class AppConfig:
    """Configuration for the completion backend and the desktop client."""

    api_key: str
    api_url: str = DEFAULT_API_URL
    model: str = ModelId.GPT_4O_MINI.value
    max_tokens: int = 1024
    temperature: float = 1.0
    timeout: float = 60.0
    system_prompt: str = DEFAULT_GUI_SYSTEM_PROMPT
    echo_replies: bool = True
    poll_interval_ms: int = 100

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "AppConfig":
        """Build the configuration from environment variables.

        When no mapping is supplied the process environment is used, after
        loading a ``.env`` file from the working directory if one exists.
        Variables already set in the environment win over the file.
        """

        if environ is None:
            load_dotenv()
            environ = os.environ

        config = cls(
            api_key=environ.get("OPENAI_API_KEY", ""),
            api_url=environ.get("SHZ_API_URL") or DEFAULT_API_URL,
            model=environ.get("SHZ_MODEL") or ModelId.GPT_4O_MINI.value,
            max_tokens=_parse_int(environ, "SHZ_MAX_TOKENS", 1024),
            temperature=_parse_float(environ, "SHZ_TEMPERATURE", 1.0),
            timeout=_parse_float(environ, "SHZ_TIMEOUT", 60.0),
            system_prompt=environ.get("SHZ_SYSTEM_PROMPT", DEFAULT_GUI_SYSTEM_PROMPT),
            echo_replies=_parse_bool(environ, "SHZ_ECHO_REPLIES", True),
            poll_interval_ms=_parse_int(environ, "SHZ_POLL_MS", 100),
        )
        config.validate()
        return config

    def validate(self) -> None:
        """Raise :class:`ConfigurationError` for unusable settings."""

        if not self.api_key:
            raise ConfigurationError("OPENAI_API_KEY must be set")
        if not self.api_url.startswith(("http://", "https://")):
            raise ConfigurationError(f"API URL must include an http(s) scheme: {self.api_url}")
        if self.timeout <= 0:
            raise ConfigurationError("Timeout must be positive")
        if self.poll_interval_ms < 1:
            raise ConfigurationError("Poll interval must be at least 1ms")
        self.generation_settings().validate()

    def generation_settings(self) -> GenerationSettings:
        return GenerationSettings(
            model=self.model,
            max_tokens=self.max_tokens,
            temperature=self.temperature,
            system_prompt=self.system_prompt,
        )


# ---------------------------------------------------------------------------
# Conversation model
# ---------------------------------------------------------------------------

class Role(str, Enum):
    USER = "user"
    SYSTEM = "system"
    ASSISTANT = "assistant"


@dataclass(slots=True)
class ChatMessage:
    """Represents a single turn in the conversation."""

    role: Role
    content: str
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_payload(self) -> Dict[str, str]:
        return {"role": self.role.value, "content": self.content}


class ConversationHistory:
    """Thread-safe, append-only list of conversation messages."""

    def __init__(self) -> None:
        self._messages: List[ChatMessage] = []
        self._lock = threading.RLock()

    def append(self, message: ChatMessage) -> None:
        with self._lock:
            self._messages.append(message)

    def last(self) -> Optional[ChatMessage]:
        with self._lock:
            return self._messages[-1] if self._messages else None

    def messages(self) -> List[ChatMessage]:
        with self._lock:
            return list(self._messages)

    def as_payload(self, system_prompt: Optional[str] = None) -> List[Dict[str, str]]:
        """Messages in request order, led by ``system_prompt`` when given."""

        with self._lock:
            payload = [msg.to_payload() for msg in self._messages]
        if system_prompt:
            payload.insert(0, {"role": Role.SYSTEM.value, "content": system_prompt})
        return payload

    def __len__(self) -> int:
        with self._lock:
            return len(self._messages)


# ---------------------------------------------------------------------------
# Completion response model
# ---------------------------------------------------------------------------

@dataclass(slots=True)
class Usage:
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0


@dataclass(slots=True)
class CompletionChoice:
    index: int
    message: ChatMessage
    finish_reason: Optional[str] = None


@dataclass(slots=True)
class ChatCompletion:
    """Parsed body of a successful chat completion response."""

    id: str
    model: str
    created: int
    choices: List[CompletionChoice]
    usage: Usage = field(default_factory=Usage)
    system_fingerprint: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Any) -> "ChatCompletion":
        try:
            choices = [
                CompletionChoice(
                    index=int(choice.get("index", position)),
                    message=ChatMessage(
                        role=Role(choice["message"].get("role", Role.ASSISTANT.value)),
                        content=str(choice["message"].get("content") or ""),
                    ),
                    finish_reason=choice.get("finish_reason"),
                )
                for position, choice in enumerate(data["choices"])
            ]
            usage_data = data.get("usage") or {}
            usage = Usage(
                prompt_tokens=int(usage_data.get("prompt_tokens", 0)),
                completion_tokens=int(usage_data.get("completion_tokens", 0)),
                total_tokens=int(usage_data.get("total_tokens", 0)),
            )
            return cls(
                id=str(data.get("id", "")),
                model=str(data.get("model", "")),
                created=int(data.get("created", 0)),
                choices=choices,
                usage=usage,
                system_fingerprint=data.get("system_fingerprint"),
            )
        except (KeyError, TypeError, ValueError, AttributeError) as exc:
            raise ResponseFormatError("Unexpected response structure from completion endpoint") from exc

    @property
    def reply(self) -> str:
        if not self.choices:
            raise ResponseFormatError("Completion response contained no choices")
        return self.choices[0].message.content


# ---------------------------------------------------------------------------
# HTTP client for the completion endpoint
# ---------------------------------------------------------------------------

class OpenAIClient:
    """Sends chat completion requests.  One attempt per call, no retries."""

    def __init__(self, config: AppConfig, session: Optional[requests.Session] = None) -> None:
        self._config = config
        self._session = session if session is not None else requests.Session()
        self._session.headers.update(
            {
                "Content-Type": "application/json",
                "Authorization": f"Bearer {config.api_key}",
            }
        )

    def close(self) -> None:
        self._session.close()

    def chat_completion(
        self, messages: List[Dict[str, str]], settings: GenerationSettings
    ) -> ChatCompletion:
        """POST ``messages`` and return the parsed completion."""

        payload = {
            "model": settings.model,
            "messages": messages,
            "max_tokens": settings.max_tokens,
            "temperature": settings.temperature,
        }

        start = time.perf_counter()
        try:
            response = self._session.post(
                self._config.api_url,
                json=payload,
                timeout=self._config.timeout,
            )
            response.raise_for_status()
        except requests.HTTPError as exc:
            status = exc.response.status_code if exc.response is not None else None
            detail = self._error_detail(exc.response)
            message = f"Completion endpoint returned HTTP {status}"
            if detail:
                message = f"{message}: {detail}"
            raise APIError(message, status_code=status) from exc
        except requests.RequestException as exc:
            raise APIError("Network failure contacting completion endpoint") from exc

        try:
            data = response.json()
        except ValueError as exc:
            raise ResponseFormatError("Malformed JSON received from completion endpoint") from exc

        completion = ChatCompletion.from_dict(data)
        LOGGER.debug(
            "Completion %s received in %.2fs (%d tokens)",
            completion.id,
            time.perf_counter() - start,
            completion.usage.total_tokens,
        )
        return completion

    @staticmethod
    def _error_detail(response: Optional[requests.Response]) -> Optional[str]:
        if response is None:
            return None
        try:
            body = response.json()
        except ValueError:
            return None
        if not isinstance(body, dict):
            return None
        error = body.get("error")
        if isinstance(error, dict) and error.get("message"):
            return str(error["message"])
        if isinstance(error, str) and error:
            return error
        return None


# ---------------------------------------------------------------------------
# Background dispatch and reply handoff
# ---------------------------------------------------------------------------

@dataclass(frozen=True, slots=True)
class RequestFailure:
    reason: str


Outcome = Union[ChatMessage, RequestFailure]


class ReplySlot:
    """Single value handoff from the completion worker to the render loop."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._value: Optional[Outcome] = None

    def put(self, value: Outcome) -> None:
        with self._lock:
            if self._value is not None:
                LOGGER.warning("Overwriting an unread reply")
            self._value = value

    def take(self) -> Optional[Outcome]:
        with self._lock:
            value, self._value = self._value, None
        return value

    def peek_ready(self) -> bool:
        with self._lock:
            return self._value is not None


class RequestDispatcher:
    """Runs at most one completion request at a time on a worker thread.

    ``in_flight`` is set before the worker starts and cleared only after the
    worker has published its outcome to the slot, so a poller that sees the
    flag cleared is guaranteed to find the result.
    """

    def __init__(self, client: OpenAIClient, slot: ReplySlot) -> None:
        self._client = client
        self._slot = slot
        self._in_flight = threading.Event()
        self._guard = threading.Lock()
        self._worker: Optional[threading.Thread] = None

    @property
    def in_flight(self) -> bool:
        return self._in_flight.is_set()

    def dispatch(self, messages: List[Dict[str, str]], settings: GenerationSettings) -> bool:
        with self._guard:
            if self._in_flight.is_set():
                LOGGER.info("Request already in flight; ignoring dispatch")
                return False
            self._in_flight.set()
            self._worker = threading.Thread(
                target=self._run,
                args=(list(messages), settings),
                name="CompletionWorker",
                daemon=True,
            )
            self._worker.start()
        LOGGER.info("Dispatched prompt with %d messages to %s", len(messages), settings.model)
        return True

    def _run(self, messages: List[Dict[str, str]], settings: GenerationSettings) -> None:
        try:
            completion = self._client.chat_completion(messages, settings)
            reply = completion.reply
            LOGGER.info("Received reply of %d characters", len(reply))
            LOGGER.debug("Assistant reply: %s", reply)
            self._slot.put(ChatMessage(role=Role.ASSISTANT, content=reply))
        except APIError as exc:
            LOGGER.error("Request failed: %s", exc)
            self._slot.put(RequestFailure(str(exc)))
        except Exception as exc:
            LOGGER.exception("Unexpected error while processing the request")
            self._slot.put(RequestFailure(f"Unexpected error: {exc}"))
        finally:
            self._in_flight.clear()

    def wait(self, timeout: Optional[float] = None) -> bool:
        """Join the current worker; ``True`` once nothing is running."""

        worker = self._worker
        if worker is None:
            return True
        worker.join(timeout)
        return not worker.is_alive()

    def close(self) -> None:
        self._client.close()


# ---------------------------------------------------------------------------
# Terminal echo
# ---------------------------------------------------------------------------

class ConsoleEcho:
    """Mirrors conversation turns to the terminal using rich."""

    def __init__(self, console: Console) -> None:
        self._console = console

    def show(self, message: ChatMessage) -> None:
        self._console.print(Rule(message.role.value.capitalize(), align="left"))
        for block in segment(message.content):
            self._console.print(self.renderable(block))

    @staticmethod
    def renderable(block: Block) -> Any:
        if block.kind is BlockKind.HEADING:
            style = "bold underline" if block.level == 1 else "bold"
            return Text(block.content, style=style)
        if block.kind is BlockKind.CODE:
            return Syntax(block.content, block.language or "text", theme="monokai", word_wrap=True)
        return Text(block.content)


# ---------------------------------------------------------------------------
# Chat session
# ---------------------------------------------------------------------------

class ChatSession:
    """Connects the conversation, the dispatcher and the renderers.

    The view calls :meth:`submit` when the user sends a message and
    :meth:`collect` from its polling loop.  Only the view thread touches the
    history directly; the worker communicates exclusively through the slot.
    """

    def __init__(
        self,
        config: AppConfig,
        history: ConversationHistory,
        dispatcher: RequestDispatcher,
        slot: ReplySlot,
        echo: Optional[ConsoleEcho] = None,
        highlighter: Optional[PygmentsHighlighter] = None,
    ) -> None:
        self.config = config
        self.history = history
        self._dispatcher = dispatcher
        self._slot = slot
        self._echo = echo
        self._highlighter = highlighter

    @property
    def busy(self) -> bool:
        """A request is running or its outcome has not been collected yet."""

        return self._dispatcher.in_flight or self._slot.peek_ready()

    @staticmethod
    def model_choices(current: Optional[str] = None) -> List[str]:
        return ModelId.choices(current)

    def submit(self, user_input: str, settings: GenerationSettings) -> bool:
        """Record the user turn and start a request.

        Returns ``False`` without touching the history when the input is
        blank, a request is already running, or the previous reply is still
        waiting to be collected.
        """

        text = user_input.strip()
        if not text or self.busy:
            return False
        settings.validate()
        message = ChatMessage(role=Role.USER, content=text)
        self.history.append(message)
        if self._echo is not None:
            self._echo.show(message)
        payload = self.history.as_payload(settings.effective_system_prompt())
        return self._dispatcher.dispatch(payload, settings)

    def collect(
        self,
        on_reply: Callable[[ChatMessage], None],
        on_failure: Callable[[str], None],
    ) -> bool:
        """Deliver a finished outcome, if any, to the matching callback."""

        outcome = self._slot.take()
        if outcome is None:
            return False
        if isinstance(outcome, RequestFailure):
            on_failure(outcome.reason)
            return True
        self.history.append(outcome)
        if self._echo is not None:
            self._echo.show(outcome)
        on_reply(outcome)
        return True

    def render(self, message: ChatMessage) -> List[RenderSpan]:
        return layout_blocks(segment(message.content), self._highlighter)

    def shutdown(self, timeout: float = 1.0) -> None:
        LOGGER.info("Shutting down chat session")
        if not self._dispatcher.wait(timeout):
            LOGGER.warning("Completion worker still running at shutdown")
        self._dispatcher.close()


# ---------------------------------------------------------------------------
# Application bootstrap
# ---------------------------------------------------------------------------

def build_session(config: AppConfig, session: Optional[requests.Session] = None) -> ChatSession:
    """Wire the non-GUI collaborators together."""

    slot = ReplySlot()
    dispatcher = RequestDispatcher(OpenAIClient(config, session=session), slot)
    echo = ConsoleEcho(CONSOLE) if config.echo_replies else None
    return ChatSession(
        config,
        ConversationHistory(),
        dispatcher,
        slot,
        echo=echo,
        highlighter=PygmentsHighlighter(),
    )


def build_application():
    config = AppConfig.from_env()
    # tkinter is only required once a window is built.
    from chat_gui import ChatGUI

    return ChatGUI(build_session(config))


def main() -> None:  # pragma: no cover - entry point
    try:
        app = build_application()
    except ConfigurationError as exc:
        CONSOLE.print(f"[bold red]Configuration error:[/bold red] {exc}")
        return
    except Exception as exc:  # pragma: no cover - defensive catch-all
        LOGGER.exception("Fatal error during application startup")
        CONSOLE.print(f"[bold red]Unexpected error:[/bold red] {exc}")
        return

    app.run()


if __name__ == "__main__":  # pragma: no cover - module executed directly
    main()

"""shell_agent.backends

Assistant backends behind one blocking contract:

    complete(conversation, context) -> str

raising `CompletionError(kind, message)` with kind in
{AUTH, RATE_LIMIT, NETWORK, BACKEND}. The dispatcher calls `complete` on a
worker thread; backends apply their own HTTP timeouts.

Providers:
- OpenAI: `openai` SDK, Responses API.
- Anthropic: Messages API over `httpx`, with a `run_command` tool. Tool calls
  come back embedded in the text as `<Terminal>...</Terminal>` blocks so the
  rest of the app has one proposal syntax.
- Ollama: `/api/chat` over `httpx`.
- Fake: offline canned replies for demos and tests.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional, Protocol, Sequence

import httpx
import openai

from .config import AppConfig
from .conversation import ChatMessage, Role, render_terminal_block, request_messages


JsonDict = dict[str, Any]

_LOG = logging.getLogger("shell_agent.backends")

ANTHROPIC_URL = "https://api.anthropic.com/v1/messages"
ANTHROPIC_VERSION = "2023-06-01"
ANTHROPIC_MAX_TOKENS = 8096


class CompletionErrorKind(str, Enum):
    AUTH = "auth"
    RATE_LIMIT = "rate_limit"
    NETWORK = "network"
    BACKEND = "backend"


class CompletionError(RuntimeError):
    def __init__(self, kind: CompletionErrorKind, message: str) -> None:
        super().__init__(message)
        self.kind = kind

    def __str__(self) -> str:
        return str(self.args[0]) if self.args else self.kind.value


class AssistantBackend(Protocol):
    name: str

    def complete(self, conversation: Sequence[ChatMessage], context: Optional[Sequence[str]] = None) -> str:
        """Return the assistant's reply text; raise CompletionError on failure."""


def _error_detail(resp: httpx.Response) -> str:
    try:
        data = resp.json()
    except ValueError:
        return (resp.text or "").strip()[:300]
    if isinstance(data, dict):
        err = data.get("error")
        if isinstance(err, dict) and err.get("message"):
            return str(err["message"])
        if isinstance(err, str):
            return err
    return str(data)[:300]


def _check_status(resp: httpx.Response, *, provider: str) -> None:
    code = resp.status_code
    if code < 400:
        return
    detail = _error_detail(resp)
    _LOG.error("%s error response: status=%s detail=%s", provider, code, detail)
    if code in (401, 403):
        raise CompletionError(CompletionErrorKind.AUTH, f"{provider} rejected the credentials ({code}): {detail}")
    if code == 429:
        raise CompletionError(CompletionErrorKind.RATE_LIMIT, f"{provider} rate limit ({code}): {detail}")
    raise CompletionError(CompletionErrorKind.BACKEND, f"{provider} error ({code}): {detail}")


def _post_json(client: httpx.Client, url: str, *, provider: str, json: JsonDict, headers: Optional[dict[str, str]] = None) -> JsonDict:
    try:
        resp = client.post(url, json=json, headers=headers)
    except httpx.TransportError as e:
        raise CompletionError(CompletionErrorKind.NETWORK, f"{provider} request failed: {type(e).__name__}: {e}") from e
    _check_status(resp, provider=provider)
    try:
        data = resp.json()
    except ValueError as e:
        raise CompletionError(CompletionErrorKind.BACKEND, f"{provider} returned a non-JSON body") from e
    if not isinstance(data, dict):
        raise CompletionError(CompletionErrorKind.BACKEND, f"unexpected {provider} response: {data!r}")
    return data


# ---- OpenAI ----


class OpenAIBackend:
    """Responses API via the `openai` SDK.

    `client` only needs `.responses.create(model=, input=, instructions=)`;
    tests inject a fake.
    """

    name = "openai"

    def __init__(
        self,
        *,
        model: str,
        system_prompt: str,
        api_key: Optional[str] = None,
        timeout_s: float = 60.0,
        client: Any = None,
    ) -> None:
        self.model = model
        self.system_prompt = system_prompt
        if client is None:
            client = openai.OpenAI(api_key=api_key, timeout=timeout_s)
        self._client = client

    def _input(self, msgs: Sequence[ChatMessage]) -> list[JsonDict]:
        return [{"role": m.role.value, "content": m.request_text()} for m in msgs]

    def complete(self, conversation: Sequence[ChatMessage], context: Optional[Sequence[str]] = None) -> str:
        msgs = request_messages(conversation, context)
        _LOG.debug("openai request model=%s messages=%d", self.model, len(msgs))
        try:
            resp = self._client.responses.create(
                model=self.model,
                input=self._input(msgs),
                instructions=self.system_prompt,
            )
        except (openai.AuthenticationError, openai.PermissionDeniedError) as e:
            raise CompletionError(CompletionErrorKind.AUTH, f"OpenAI rejected the credentials: {e}") from e
        except openai.RateLimitError as e:
            raise CompletionError(CompletionErrorKind.RATE_LIMIT, f"OpenAI rate limit: {e}") from e
        except openai.APIConnectionError as e:
            raise CompletionError(CompletionErrorKind.NETWORK, f"OpenAI request failed: {e}") from e
        except openai.APIError as e:
            raise CompletionError(CompletionErrorKind.BACKEND, f"OpenAI error: {e}") from e

        txt = getattr(resp, "output_text", None)
        if not isinstance(txt, str):
            raise CompletionError(CompletionErrorKind.BACKEND, "OpenAI response missing output_text")
        return txt


# ---- Anthropic ----


def run_command_tool() -> JsonDict:
    return {
        "name": "run_command",
        "description": (
            "Execute a shell command on the user's remote SSH session. "
            "The user will be shown the command and must approve before it runs."
        ),
        "input_schema": {
            "type": "object",
            "properties": {
                "command": {"type": "string", "description": "The exact shell command to execute."},
                "description": {
                    "type": "string",
                    "description": "One-sentence plain-English explanation of what this command does.",
                },
            },
            "required": ["command"],
        },
    }


class AnthropicBackend:
    name = "anthropic"

    def __init__(
        self,
        *,
        model: str,
        system_prompt: str,
        api_key: str,
        timeout_s: float = 60.0,
        client: Optional[httpx.Client] = None,
        url: str = ANTHROPIC_URL,
    ) -> None:
        self.model = model
        self.system_prompt = system_prompt
        self._api_key = api_key
        self._url = url
        self._client = client or httpx.Client(timeout=timeout_s)

    def _body(self, msgs: Sequence[ChatMessage]) -> JsonDict:
        wire: list[JsonDict] = []
        for m in msgs:
            # The Messages API has no system role inside `messages`.
            role = "assistant" if m.role is Role.ASSISTANT else "user"
            wire.append({"role": role, "content": m.request_text()})
        return {
            "model": self.model,
            "max_tokens": ANTHROPIC_MAX_TOKENS,
            "system": self.system_prompt,
            "tools": [run_command_tool()],
            "messages": wire,
        }

    def complete(self, conversation: Sequence[ChatMessage], context: Optional[Sequence[str]] = None) -> str:
        msgs = request_messages(conversation, context)
        _LOG.debug("anthropic request model=%s messages=%d", self.model, len(msgs))
        data = _post_json(
            self._client,
            self._url,
            provider="Anthropic",
            json=self._body(msgs),
            headers={
                "x-api-key": self._api_key,
                "anthropic-version": ANTHROPIC_VERSION,
                "content-type": "application/json",
            },
        )
        content = data.get("content")
        if not isinstance(content, list):
            raise CompletionError(CompletionErrorKind.BACKEND, f"unexpected Anthropic response: {data!r}")

        parts: list[str] = []
        for block in content:
            if not isinstance(block, dict):
                continue
            if block.get("type") == "text" and block.get("text"):
                parts.append(str(block["text"]))
            elif block.get("type") == "tool_use":
                inp = block.get("input") if isinstance(block.get("input"), dict) else {}
                cmd = str(inp.get("command") or "").strip()
                if cmd:
                    _LOG.debug("anthropic tool_call command=%r", cmd)
                    parts.append(render_terminal_block(cmd))
        text = "\n".join(parts).strip()
        if not text:
            raise CompletionError(CompletionErrorKind.BACKEND, f"empty Anthropic response (stop_reason={data.get('stop_reason')})")
        return text


# ---- Ollama ----


class OllamaBackend:
    name = "ollama"

    def __init__(
        self,
        *,
        host: str,
        model: str,
        system_prompt: str,
        timeout_s: float = 60.0,
        client: Optional[httpx.Client] = None,
    ) -> None:
        self.host = host.rstrip("/")
        self.model = model
        self.system_prompt = system_prompt
        self._client = client or httpx.Client(timeout=timeout_s)

    def complete(self, conversation: Sequence[ChatMessage], context: Optional[Sequence[str]] = None) -> str:
        msgs = request_messages(conversation, context)
        wire: list[JsonDict] = [{"role": "system", "content": self.system_prompt}]
        wire.extend({"role": m.role.value, "content": m.request_text()} for m in msgs)
        data = _post_json(
            self._client,
            f"{self.host}/api/chat",
            provider="Ollama",
            json={"model": self.model, "messages": wire, "stream": False},
        )
        msg = data.get("message")
        text = msg.get("content") if isinstance(msg, dict) else None
        if not isinstance(text, str):
            raise CompletionError(CompletionErrorKind.BACKEND, f"unexpected Ollama response: {data!r}")
        return text


# ---- Fake ----


class FakeBackend:
    """Offline backend.

    Replies to a user message with one harmless proposal; replies to command
    output (a system message) with prose only, so the feedback loop ends.
    """

    name = "fake"
    model = "fake"

    def __init__(self, *, command: str = "uname -a") -> None:
        self.command = command
        self.calls = 0

    def complete(self, conversation: Sequence[ChatMessage], context: Optional[Sequence[str]] = None) -> str:
        self.calls += 1
        msgs = request_messages(conversation, context)
        last = msgs[-1] if msgs else None
        if last is None or last.role is not Role.USER:
            return "(FAKE MODE) Got the command output. Nothing else to run."
        n_ctx = len(last.context)
        seen = f" I can see {n_ctx} line(s) of your terminal." if n_ctx else ""
        return (
            f"(FAKE MODE) You asked: {last.content}.{seen}\n"
            "No API key detected, so this is a canned reply. Let me check the system:\n"
            f"{render_terminal_block(self.command)}"
        )


def build_backend(config: AppConfig) -> AssistantBackend:
    """Instantiate the configured provider; fall back to fake mode without a key."""

    provider = config.provider
    if config.fake_mode or provider == "fake":
        _LOG.info("assistant backend: fake")
        return FakeBackend()
    if provider == "ollama":
        _LOG.info("assistant backend: ollama host=%s model=%s", config.ollama_host, config.ollama_model)
        return OllamaBackend(
            host=config.ollama_host,
            model=config.ollama_model,
            system_prompt=config.system_prompt,
            timeout_s=config.request_timeout_s,
        )

    key = config.resolve_api_key()
    if not key:
        _LOG.warning("no API key for %s (config or $%s); using fake mode", provider, config.api_key_env)
        return FakeBackend()
    if provider == "anthropic":
        _LOG.info("assistant backend: anthropic model=%s", config.model)
        return AnthropicBackend(
            model=config.model,
            system_prompt=config.system_prompt,
            api_key=key,
            timeout_s=config.request_timeout_s,
        )
    _LOG.info("assistant backend: openai model=%s", config.model)
    return OpenAIBackend(
        model=config.model,
        system_prompt=config.system_prompt,
        api_key=key,
        timeout_s=config.request_timeout_s,
    )


@dataclass(frozen=True)
class BackendInfo:
    provider: str
    model: str

    @property
    def label(self) -> str:
        return f"{self.provider}:{self.model}"


def describe_backend(backend: AssistantBackend) -> BackendInfo:
    return BackendInfo(provider=getattr(backend, "name", "unknown"), model=str(getattr(backend, "model", "")))

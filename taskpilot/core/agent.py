"""Agent orchestrator: the model <-> tools loop.

One call to :meth:`Agent.run` drives a query to a terminal state:

1. Send the conversation to the model (``AWAITING_MODEL``)
2. If the reply requests tools, run them concurrently
   (``TOOL_CALLS_REQUESTED`` -> ``EXECUTING_TOOLS``), persist every result
   and feed the results back
3. Repeat until the model answers without tool calls (``ANSWERED``), the
   run is cancelled (``CANCELED``) or it fails (``FAILED``)

Model calls and tools run on worker threads.  Everything they want to
report goes through a queue that the orchestrator drains, so callbacks
only ever run on the thread that called ``run``.
"""

from __future__ import annotations

import queue
import threading
import uuid
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

from taskpilot.config.models import AgentConfig
from taskpilot.context.manager import ContextManager, hash_query
from taskpilot.core.callbacks import AgentCallbacks
from taskpilot.core.state import AgentState, StateMachine
from taskpilot.llm.client import LLMClient, ModelStream
from taskpilot.llm.types import (
    Completion,
    ErrorCode,
    FunctionCall,
    ModelResponse,
    RetryContext,
    TokenUsage,
)
from taskpilot.output.events import Event
from taskpilot.prompts.environment import EnvironmentInfo, build_system_prompt, detect_environment
from taskpilot.tools.base import ToolContext, ToolError, ToolErrorCode, ToolProgress
from taskpilot.tools.registry import ToolRegistry, create_registry
from taskpilot.utils.cancellation import CancellationToken
from taskpilot.utils.log import debug, is_debug_enabled, log
from taskpilot.utils.tokens import TokenUsageTracker, estimate_message_tokens

Messages = List[Dict[str, Any]]

MAX_ITERATIONS_CODE = "MAX_ITERATIONS"


def _log(msg: str) -> None:
    log("agent", msg)


def _completion_dict(completion: Completion) -> Dict[str, Any]:
    return {
        "content": completion.content,
        "tool_calls": [c.to_openai() for c in completion.tool_calls],
        "model": completion.model,
        "finish_reason": completion.finish_reason,
    }


def _usage_dict(usage: Optional[TokenUsage]) -> Optional[Dict[str, int]]:
    return usage.to_dict() if usage is not None else None


@dataclass
class ToolOutcome:
    """What one tool call produced, success or failure."""

    call: FunctionCall
    success: bool
    output: str
    title: str = ""
    metadata: Dict[str, Any] = field(default_factory=dict)
    error_code: Optional[str] = None
    context_file: Optional[str] = None

    @classmethod
    def failure(cls, call: FunctionCall, code: str, message: str) -> "ToolOutcome":
        return cls(call=call, success=False, output=message, title=call.name, error_code=code)

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "success": self.success,
            "title": self.title,
            "output": self.output,
            "metadata": self.metadata,
        }
        if self.error_code is not None:
            data["error"] = self.error_code
        return data

    def to_message_content(self) -> str:
        if self.success:
            return self.output
        return f"Error [{self.error_code}]: {self.output}"


@dataclass
class AgentResult:
    """Outcome of one :meth:`Agent.run`."""

    state: AgentState
    answer: str = ""
    error: Optional[Dict[str, str]] = None
    usage: TokenUsage = field(default_factory=TokenUsage)
    iterations: int = 0
    states: List[AgentState] = field(default_factory=list)
    context_files: List[str] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return self.state == AgentState.ANSWERED


@dataclass
class _Run:
    """Mutable bookkeeping for a single run."""

    query: str
    query_id: str
    cancel: CancellationToken
    task_id: Optional[str] = None
    machine: StateMachine = field(default_factory=StateMachine)
    events: "queue.Queue[Event]" = field(default_factory=queue.Queue)
    usage: TokenUsageTracker = field(default_factory=TokenUsageTracker)
    iterations: int = 0
    answer: str = ""
    error: Optional[Dict[str, str]] = None
    context_files: List[str] = field(default_factory=list)
    truncated: bool = False


class Agent:
    """Runs the model/tool loop for one session.

    Args:
        config: Agent configuration
        client: Model client (built from ``config`` when omitted)
        registry: Tool registry (built-in tools when omitted)
        context: Context store (under ``config.context_dir`` when omitted)
        callbacks: Observers notified of every event
        session_id: Stable id handed to tools (random when omitted)
        environment: Environment facts for the system prompt (detected when omitted)
    """

    def __init__(
        self,
        config: Optional[AgentConfig] = None,
        client: Optional[LLMClient] = None,
        registry: Optional[ToolRegistry] = None,
        context: Optional[ContextManager] = None,
        callbacks: Optional[List[AgentCallbacks]] = None,
        session_id: Optional[str] = None,
        environment: Optional[EnvironmentInfo] = None,
    ):
        self.config = config or AgentConfig()
        self.client = client or LLMClient(self.config)
        self.registry = registry or create_registry(self.config)
        self.context = context or ContextManager(self.config.context_dir)
        self.callbacks: List[AgentCallbacks] = list(callbacks or [])
        self.session_id = session_id or uuid.uuid4().hex
        self.usage = TokenUsageTracker()
        self.history: Messages = []
        self._environment = environment
        self._run_lock = threading.Lock()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def run(
        self,
        query: str,
        history: Optional[Messages] = None,
        cancel: Optional[CancellationToken] = None,
        task_id: Optional[str] = None,
    ) -> AgentResult:
        """Drive *query* to a terminal state.

        Args:
            query: The user's request
            history: Prior conversation (defaults to this session's history)
            cancel: Token that aborts the run when cancelled
            task_id: Optional id recorded on every stored tool result

        Returns:
            AgentResult describing the terminal state

        Raises:
            RuntimeError: If a run is already in progress on this agent
        """
        if not self._run_lock.acquire(blocking=False):
            raise RuntimeError("Agent.run is already in progress for this session")
        try:
            run = _Run(
                query=query,
                query_id=hash_query(query),
                cancel=cancel or CancellationToken(),
                task_id=task_id,
            )
            return self._run(run, history)
        finally:
            self._run_lock.release()

    def close(self) -> None:
        """Release the model client and, if configured, delete stored contexts."""
        if self.config.context.clear_on_exit:
            self.context.clear()
        self.client.close()

    def __enter__(self) -> "Agent":
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()

    # ------------------------------------------------------------------
    # Loop
    # ------------------------------------------------------------------

    def _run(self, run: _Run, history: Optional[Messages]) -> AgentResult:
        self._emit(Event.agent_start(run.query, self.session_id))

        tools = self._tool_schemas()
        messages: Messages = [{"role": "system", "content": self._system_prompt(tools)}]
        messages.extend(self.history if history is None else history)
        messages.append({"role": "user", "content": run.query})

        model_pool = ThreadPoolExecutor(max_workers=1, thread_name_prefix="taskpilot-model")
        tool_pool = ThreadPoolExecutor(
            max_workers=max(1, self.config.tools.max_parallel_calls),
            thread_name_prefix="taskpilot-tool",
        )
        try:
            return self._loop(run, messages, tools, model_pool, tool_pool)
        finally:
            # Cancelled work may still be running; never block on it
            model_pool.shutdown(wait=False, cancel_futures=True)
            tool_pool.shutdown(wait=False, cancel_futures=True)

    def _loop(
        self,
        run: _Run,
        messages: Messages,
        tools: List[Dict[str, Any]],
        model_pool: ThreadPoolExecutor,
        tool_pool: ThreadPoolExecutor,
    ) -> AgentResult:
        while True:
            if run.cancel.cancelled:
                return self._cancelled(run)

            if run.iterations >= self.config.max_iterations:
                message = f"Reached maximum iterations ({self.config.max_iterations})"
                self._emit(Event.error(MAX_ITERATIONS_CODE, message))
                return self._failed(run, MAX_ITERATIONS_CODE, message)
            run.iterations += 1

            self._transition(run, AgentState.AWAITING_MODEL)
            request = messages + self._recall_messages(run)
            if is_debug_enabled():
                estimate = estimate_message_tokens(request, self.client.model_name)
                debug("agent", f"turn {run.iterations}: ~{estimate} prompt tokens")
            response = self._call_model(run, request, tools, model_pool)
            if response is None or run.cancel.cancelled:
                return self._cancelled(run)

            if not response.success or response.result is None:
                code = (response.error or ErrorCode.UNKNOWN).value
                self._emit(Event.error(code, response.message))
                return self._failed(run, code, response.message)

            completion = response.result
            run.usage.add(completion.usage)
            self.usage.add(completion.usage)

            if completion.tool_calls:
                messages.append(
                    {
                        "role": "assistant",
                        "content": completion.content,
                        "tool_calls": [c.to_openai() for c in completion.tool_calls],
                    }
                )
                self._transition(run, AgentState.TOOL_CALLS_REQUESTED)
                self._transition(run, AgentState.EXECUTING_TOOLS)
                outcomes = self._execute_tools(run, completion.tool_calls, tool_pool)
                if outcomes is None:
                    return self._cancelled(run)
                for outcome in outcomes:
                    messages.append(self._tool_message(run, outcome))
                continue

            if completion.is_empty:
                message = "model produced no text and no tool calls"
                self._emit(Event.error(ErrorCode.INVALID_RESPONSE.value, message))
                return self._failed(run, ErrorCode.INVALID_RESPONSE.value, message)

            messages.append({"role": "assistant", "content": completion.content})
            self.history = messages[1:]
            run.answer = completion.content
            self._transition(run, AgentState.ANSWERED)
            self._emit(Event.agent_end(run.answer, run.usage.snapshot().to_dict()))
            return self._result(run)

    # ------------------------------------------------------------------
    # Model calls
    # ------------------------------------------------------------------

    def _call_model(
        self,
        run: _Run,
        messages: Messages,
        tools: List[Dict[str, Any]],
        pool: ThreadPoolExecutor,
    ) -> Optional[ModelResponse[Completion]]:
        """Run one model turn on a worker; ``None`` when cancelled meanwhile."""

        def on_retry(ctx: RetryContext) -> None:
            run.events.put(
                Event.retry(ctx.attempt, ctx.max_retries, ctx.delay_ms, ctx.error.value, ctx.message)
            )

        if self.config.streaming:
            future = pool.submit(self._stream_worker, run, messages, tools, on_retry)
        else:
            self._emit(Event.llm_start(self.client.model_name, messages))
            future = pool.submit(self._invoke_worker, run, messages, tools, on_retry)
        return self._await_model(run, future)

    def _invoke_worker(
        self,
        run: _Run,
        messages: Messages,
        tools: List[Dict[str, Any]],
        on_retry: Any,
    ) -> ModelResponse[Completion]:
        response = self.client.invoke(messages, tools or None, on_retry=on_retry, cancel=run.cancel)
        if response.success and response.result is not None:
            run.events.put(
                Event.llm_end(_completion_dict(response.result), _usage_dict(response.result.usage))
            )
        return response

    def _stream_worker(
        self,
        run: _Run,
        messages: Messages,
        tools: List[Dict[str, Any]],
        on_retry: Any,
    ) -> ModelResponse[Completion]:
        def on_start(model: str) -> None:
            run.events.put(Event.llm_start(model, messages))

        def on_end(stream: ModelStream) -> None:
            run.events.put(Event.llm_end(_completion_dict(stream.to_completion()), _usage_dict(stream.usage)))

        opened = self.client.stream(
            messages,
            tools or None,
            on_start=on_start,
            on_end=on_end,
            on_retry=on_retry,
            cancel=run.cancel,
        )
        if not opened.success or opened.result is None:
            return ModelResponse.fail(opened.error or ErrorCode.UNKNOWN, opened.message, opened.retry_after_ms)

        stream = opened.result
        for chunk in stream:
            if run.cancel.cancelled:
                stream.close()
                break
            run.events.put(Event.llm_stream(chunk))

        if stream.error is not None:
            return stream.error
        return ModelResponse.ok(stream.to_completion())

    def _await_model(self, run: _Run, future: "Future[ModelResponse[Completion]]") -> Optional[ModelResponse[Completion]]:
        poll = self.config.tools.poll_interval_s
        while not future.done():
            self._drain(run)
            if run.cancel.wait(poll):
                return None
        self._drain(run)
        try:
            return future.result()
        except Exception as e:
            _log(f"Model worker crashed: {type(e).__name__}: {e}")
            return ModelResponse.fail(ErrorCode.UNKNOWN, "unexpected error while calling the model")

    # ------------------------------------------------------------------
    # Tools
    # ------------------------------------------------------------------

    def _tool_schemas(self) -> List[Dict[str, Any]]:
        agent_name = self.config.agent_name
        schemas = []
        for definition in self.registry.enabled(agent_name):
            try:
                schemas.append(self.registry.initialize(definition.id, agent_name).schema())
            except Exception as e:
                _log(f"Skipping tool {definition.id}: init failed ({type(e).__name__}: {e})")
        return schemas

    def _execute_tools(
        self,
        run: _Run,
        calls: List[FunctionCall],
        pool: ThreadPoolExecutor,
    ) -> Optional[List[ToolOutcome]]:
        """Run a turn's tool calls; results come back in request order.

        Returns ``None`` as soon as the run is cancelled; in-flight tools see
        the cancellation through their context token.
        """
        turn_cancel = CancellationToken(parent=run.cancel)
        message_id = uuid.uuid4().hex

        def on_metadata(progress: ToolProgress) -> None:
            run.events.put(Event.tool_progress(progress.call_id, progress.title, progress.metadata))

        futures: Dict["Future[ToolOutcome]", int] = {}
        for index, call in enumerate(calls):
            self._emit(Event.tool_start(call.name, call.arguments, call.id))
            ctx = ToolContext(
                session_id=self.session_id,
                message_id=message_id,
                agent=self.config.agent_name,
                call_id=call.id,
                cancel=turn_cancel,
                on_metadata=on_metadata,
            )
            futures[pool.submit(self._run_tool, call, ctx)] = index

        outcomes: List[Optional[ToolOutcome]] = [None] * len(calls)
        pending = set(futures)
        poll = self.config.tools.poll_interval_s
        while pending:
            self._drain(run)
            if run.cancel.cancelled:
                return None
            done, pending = wait(pending, timeout=poll, return_when=FIRST_COMPLETED)
            for future in done:
                outcome = future.result()
                self._persist(run, outcome)
                outcomes[futures[future]] = outcome
                self._emit(Event.tool_end(outcome.call.name, outcome.to_dict(), outcome.call.id))

        self._drain(run)
        if run.cancel.cancelled:
            return None
        return [o for o in outcomes if o is not None]

    def _run_tool(self, call: FunctionCall, ctx: ToolContext) -> ToolOutcome:
        try:
            result = self.registry.execute(call.name, call.arguments, ctx)
        except ToolError as e:
            return ToolOutcome.failure(call, e.code.value, e.message)
        except Exception as e:
            _log(f"Tool {call.name} raised {type(e).__name__}: {e}")
            return ToolOutcome.failure(call, ToolErrorCode.UNKNOWN.value, f"{type(e).__name__}: {e}")
        return ToolOutcome(
            call=call,
            success=True,
            output=result.output,
            title=result.title,
            metadata=result.metadata,
        )

    def _persist(self, run: _Run, outcome: ToolOutcome) -> None:
        try:
            path = self.context.save_context(
                outcome.call.name,
                outcome.call.arguments,
                outcome.to_dict(),
                task_id=run.task_id,
                query_id=run.query_id,
            )
        except (OSError, TypeError, ValueError) as e:
            _log(f"Could not store result of {outcome.call.name}: {e}")
            return
        outcome.context_file = path
        run.context_files.append(path)

    def _tool_message(self, run: _Run, outcome: ToolOutcome) -> Dict[str, Any]:
        content = outcome.to_message_content()
        limit = self.config.context.inline_limit
        if len(content) > limit:
            if outcome.context_file:
                note = f"full result stored as {Path(outcome.context_file).name}"
                run.truncated = True
            else:
                note = "full result could not be stored"
            content = f"{content[:limit]}\n\n[Output truncated at {limit} of {len(content)} chars; {note}]"
        return {"role": "tool", "tool_call_id": outcome.call.id, "content": content}

    def _recall_messages(self, run: _Run) -> Messages:
        """Transient system message with stored results relevant to the query."""
        if not run.truncated:
            return []
        pointers = self.context.get_pointers_for_query(run.query_id)
        paths = self.context.select_relevant_contexts(run.query, pointers)

        budget = self.config.context.max_context_chars
        sections: List[str] = []
        used = 0
        for stored in self.context.load_contexts(paths):
            result = stored.get("result")
            body = result.get("output", "") if isinstance(result, dict) else str(result)
            header = f"### {stored.get('toolDescription') or stored.get('toolName', 'tool')}"
            remaining = budget - used - len(header) - 1
            if remaining <= 0:
                break
            section = f"{header}\n{body[:remaining]}"
            sections.append(section)
            used += len(section) + 2

        if not sections:
            return []
        debug("agent", f"recalled {len(sections)} stored result(s), {used} chars")
        return [
            {
                "role": "system",
                "content": "Stored tool results relevant to the current request:\n\n" + "\n\n".join(sections),
            }
        ]

    # ------------------------------------------------------------------
    # State and events
    # ------------------------------------------------------------------

    def _system_prompt(self, tools: List[Dict[str, Any]]) -> str:
        if self._environment is None:
            self._environment = detect_environment(self.registry.workspace.root)
        names = [t.get("name", "") for t in tools]
        return build_system_prompt(
            self._environment,
            base=self.config.system_prompt,
            model=self.client.model_name,
            tool_names=[n for n in names if n],
        )

    def _transition(self, run: _Run, new: AgentState) -> None:
        old, new = run.machine.transition(new)
        self._emit(Event.state_changed(old.value, new.value))

    def _cancelled(self, run: _Run) -> AgentResult:
        if not run.machine.is_terminal:
            self._drain(run)
            self._transition(run, AgentState.CANCELED)
            self._emit(Event.agent_canceled(run.cancel.reason or "cancelled"))
        return self._result(run)

    def _failed(self, run: _Run, code: str, message: str) -> AgentResult:
        run.error = {"code": code, "message": message}
        self._transition(run, AgentState.FAILED)
        return self._result(run)

    def _result(self, run: _Run) -> AgentResult:
        return AgentResult(
            state=run.machine.state,
            answer=run.answer,
            error=run.error,
            usage=run.usage.snapshot(),
            iterations=run.iterations,
            states=list(run.machine.history),
            context_files=list(run.context_files),
        )

    def _drain(self, run: _Run) -> None:
        while True:
            try:
                event = run.events.get_nowait()
            except queue.Empty:
                return
            self._emit(event)

    def _emit(self, event: Event) -> None:
        for callbacks in list(self.callbacks):
            try:
                callbacks.handle(event)
            except Exception as e:
                _log(f"{type(callbacks).__name__} failed on {event.type.value}: {e}")

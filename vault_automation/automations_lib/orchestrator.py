from __future__ import annotations

import asyncio
import logging
from time import perf_counter
from typing import Any, Awaitable, Callable

from vault_automation.automations_lib.base import Collaborators, Notifier
from vault_automation.automations_lib.errors import ActionExecutionError
from vault_automation.automations_lib.history import AuditLog, ExecutionHistory
from vault_automation.automations_lib.models import (
    Action,
    ActionExecutionResult,
    AutomationExecutionResult,
    AutomationInstance,
    CreateNoteAction,
    ExecutionContext,
    HistoryEntry,
    RunAgentAction,
    RunPromptAction,
    RunShellAction,
    RunSkillAction,
    Trigger,
    UpdateNoteAction,
)
from vault_automation.message_utils import render_value


logger = logging.getLogger(__name__)

NO_PROVIDER_NOTE = "No AI provider available to execute {kind}"


async def _no_persist() -> None:
    return None


class ExecutionPipeline:
    """Runs an automation's actions in order for one triggering event."""

    def __init__(
        self,
        *,
        collaborators: Collaborators,
        history: ExecutionHistory,
        persist: Callable[[], Awaitable[None]] | None = None,
        audit_log: AuditLog | None = None,
        notifier: Notifier | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self._collaborators = collaborators
        self._history = history
        self._persist = persist or _no_persist
        self._audit_log = audit_log
        self._notifier = notifier
        self._sleep = sleep
        self._running: dict[str, int] = {}

    def is_running(self, automation_id: str) -> bool:
        return self._running.get(automation_id, 0) > 0

    def running_ids(self) -> list[str]:
        return [key for key, count in self._running.items() if count > 0]

    async def execute(
        self,
        automation: AutomationInstance,
        trigger: Trigger,
        trigger_data: dict[str, Any] | None = None,
    ) -> AutomationExecutionResult:
        self._running[automation.id] = self._running.get(automation.id, 0) + 1
        start = perf_counter()
        try:
            logger.info(
                "automation execution started",
                extra={
                    "event": "automation_start",
                    "automation_id": automation.id,
                    "trigger": trigger.type,
                },
            )
            context = ExecutionContext(
                automation=automation,
                trigger=trigger,
                start_time=ExecutionContext.utc_now(),
                trigger_data=dict(trigger_data or {}),
            )
            if trigger.delay_ms > 0:
                await self._sleep(trigger.delay_ms / 1000)

            error: str | None = None
            for action in automation.config.actions:
                action_result = await self._run_action(action, context)
                context.action_results.append(action_result)
                if not action_result.success:
                    error = action_result.error
                    break

            result = AutomationExecutionResult(
                success=error is None,
                timestamp=ExecutionContext.utc_now(),
                trigger=trigger,
                action_results=tuple(context.action_results),
                error=error,
            )
            automation.last_run = result.timestamp
            automation.last_result = result
            automation.execution_count += 1
            self._history.push(
                HistoryEntry(
                    automation_id=automation.id,
                    result=result,
                    timestamp=result.timestamp,
                )
            )
            await self._persist()

            elapsed_ms = int((perf_counter() - start) * 1000)
            if self._audit_log is not None:
                await self._audit_log.record(automation, result, elapsed_ms)
            logger.info(
                "automation execution finished",
                extra={
                    "event": "automation_ok" if result.success else "automation_error",
                    "automation_id": automation.id,
                    "trigger": trigger.type,
                    "status": "ok" if result.success else "error",
                    "error": error,
                    "duration_ms": elapsed_ms,
                    "result_count": len(result.action_results),
                },
            )
            await self._notify(automation, result)
            return result
        finally:
            remaining = self._running.get(automation.id, 0) - 1
            if remaining > 0:
                self._running[automation.id] = remaining
            else:
                self._running.pop(automation.id, None)

    async def _run_action(
        self, action: Action, context: ExecutionContext
    ) -> ActionExecutionResult:
        start = perf_counter()
        try:
            value = await self._dispatch(action, context)
        except Exception as exc:
            error = str(exc) or exc.__class__.__name__
            elapsed_ms = int((perf_counter() - start) * 1000)
            logger.warning(
                "action execution failed",
                extra={
                    "event": "action_error",
                    "automation_id": context.automation.id,
                    "action": action.type,
                    "error": error,
                    "duration_ms": elapsed_ms,
                },
            )
            return ActionExecutionResult(
                action=action,
                success=False,
                error=error,
                duration_ms=elapsed_ms,
            )
        return ActionExecutionResult(
            action=action,
            success=True,
            result=value,
            duration_ms=int((perf_counter() - start) * 1000),
        )

    async def _dispatch(self, action: Action, context: ExecutionContext) -> Any:
        if isinstance(action, RunAgentAction):
            return await self._run_agent(action, self._build_input(action.input, context))
        if isinstance(action, RunPromptAction):
            return await self._run_prompt(action, self._build_input(action.input, context))
        if isinstance(action, RunSkillAction):
            return await self._run_skill(action, self._build_input(action.input, context))
        if isinstance(action, CreateNoteAction):
            return await self._create_note(action)
        if isinstance(action, UpdateNoteAction):
            return await self._update_note(action)
        if isinstance(action, RunShellAction):
            return await self._run_shell(action, self._build_input(action.input, context))
        raise ActionExecutionError(f"Unknown action type: {getattr(action, 'type', action)!r}")

    @staticmethod
    def _build_input(base: dict[str, Any], context: ExecutionContext) -> dict[str, Any]:
        payload = dict(base)
        previous = context.previous_output()
        if previous is not None:
            payload["previousOutput"] = previous
        if context.trigger_data:
            payload.setdefault("triggerData", dict(context.trigger_data))
        return payload

    async def _run_agent(self, action: RunAgentAction, payload: dict[str, Any]) -> dict[str, Any]:
        agents = self._collaborators.agents
        agent = await agents.get_full_agent(action.agent_id) if agents is not None else None
        if agent is None:
            raise ActionExecutionError(f"Agent '{action.agent_id}' not found")
        prompt = (
            f'You are acting as the agent "{agent.name}": {agent.description}\n\n'
            f"{agent.instructions}{_format_input(payload)}"
        )
        response = await self._ask_provider(prompt)
        if response is None:
            return {
                "agentId": action.agent_id,
                "source": "file",
                "instructions": agent.instructions,
                "note": NO_PROVIDER_NOTE.format(kind="agent"),
            }
        return {"agentId": action.agent_id, "source": "file", "response": response}

    async def _run_prompt(self, action: RunPromptAction, payload: dict[str, Any]) -> dict[str, Any]:
        prompts = self._collaborators.prompts
        prompt_def = await prompts.get_full_prompt(action.prompt_id) if prompts is not None else None
        if prompt_def is None:
            raise ActionExecutionError(f"Prompt '{action.prompt_id}' not found")
        response = await self._ask_provider(f"{prompt_def.content}{_format_input(payload)}")
        if response is None:
            return {
                "promptId": action.prompt_id,
                "source": "file",
                "content": prompt_def.content,
                "note": NO_PROVIDER_NOTE.format(kind="prompt"),
            }
        return {"promptId": action.prompt_id, "source": "file", "response": response}

    async def _run_skill(self, action: RunSkillAction, payload: dict[str, Any]) -> Any:
        registry = self._collaborators.skill_registry
        if registry is not None and registry.get_skill(action.skill_id) is not None:
            return await registry.execute_skill(action.skill_id, payload)

        skills = self._collaborators.skills
        skill = await skills.get_full_skill(action.skill_id) if skills is not None else None
        if skill is None:
            raise ActionExecutionError(
                f"Skill '{action.skill_id}' not found in skill registry or skill library"
            )
        response = await self._ask_provider(
            "Execute the following skill instructions:\n\n"
            f"{skill.instructions}{_format_input(payload)}"
        )
        if response is None:
            return {
                "skillId": action.skill_id,
                "source": "file",
                "instructions": skill.instructions,
                "note": NO_PROVIDER_NOTE.format(kind="skill"),
            }
        return {"skillId": action.skill_id, "source": "file", "response": response}

    async def _create_note(self, action: CreateNoteAction) -> str:
        store = self._collaborators.content_store
        if await store.exists(action.path):
            raise ActionExecutionError(f"Note already exists at {action.path}")
        return await store.create(action.path, action.template or "")

    async def _update_note(self, action: UpdateNoteAction) -> str:
        store = self._collaborators.content_store
        if not await store.exists(action.path):
            raise ActionExecutionError(f"Note not found at {action.path}")
        if action.template:
            return await store.modify(action.path, action.template)
        return action.path

    async def _run_shell(self, action: RunShellAction, payload: dict[str, Any]) -> dict[str, Any]:
        shell = self._collaborators.shell
        if shell is None:
            raise ActionExecutionError("No shell runner configured")
        outcome = await shell.run(action.command, payload)
        if outcome.exit_code != 0:
            detail = outcome.stderr.strip() or outcome.stdout.strip()
            raise ActionExecutionError(
                f"Command exited with code {outcome.exit_code}"
                + (f": {detail}" if detail else "")
            )
        return {
            "command": outcome.command,
            "exit_code": outcome.exit_code,
            "stdout": outcome.stdout,
            "stderr": outcome.stderr,
        }

    async def _ask_provider(self, prompt: str) -> str | None:
        provider = self._collaborators.ai_provider
        if provider is None or not provider.is_ready():
            return None
        return await provider.send_message(prompt)

    async def _notify(self, automation: AutomationInstance, result: AutomationExecutionResult) -> None:
        if self._notifier is None:
            return
        if result.success:
            text = f"Automation '{automation.name}' completed successfully"
        else:
            text = f"Automation '{automation.name}' failed: {result.error}"
        try:
            await self._notifier.notify(text)
        except Exception:
            logger.warning(
                "failed to deliver execution notification",
                exc_info=True,
                extra={"event": "notify_error", "automation_id": automation.id},
            )


def _format_input(payload: dict[str, Any]) -> str:
    if not payload:
        return ""
    lines = [f"{key}: {render_value(value)}" for key, value in payload.items()]
    return "\n\nUser input:\n" + "\n".join(lines)

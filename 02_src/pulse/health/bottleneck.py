"""Bottleneck detection: flags agents whose queue or concurrency is too deep."""

import math

from ..logging_config import get_logger
from ..models import (
    Agent,
    AgentHealthSnapshot,
    AgentStatus,
    BottleneckFinding,
    Severity,
    Task,
    TaskStatus,
)
from ..storage import IAgentRegistry, ITaskStore
from .monitor import IHealthMonitor

logger = get_logger(__name__)

TODO_THRESHOLD = 5
IN_PROGRESS_THRESHOLD = 3
HIGH_TODO_THRESHOLD = 10
TASKS_PER_AGENT = 3

RECOMMENDED_ACTIONS = {
    Severity.HIGH: "spawn additional agent of this type",
    Severity.MEDIUM: "redistribute queued tasks",
    Severity.LOW: "monitor concurrent workload",
}

_SEVERITY_ORDER = {Severity.HIGH: 0, Severity.MEDIUM: 1, Severity.LOW: 2}


def severity_for(todo_count: int) -> Severity:
    if todo_count > HIGH_TODO_THRESHOLD:
        return Severity.HIGH
    if todo_count > TODO_THRESHOLD:
        return Severity.MEDIUM
    return Severity.LOW


def assess(
    agent_id: str,
    agent_type: str,
    todo_count: int,
    in_progress_count: int,
    status: AgentStatus | None = None,
) -> BottleneckFinding | None:
    """Flag an agent with more than 5 queued or more than 3 running tasks."""
    if todo_count <= TODO_THRESHOLD and in_progress_count <= IN_PROGRESS_THRESHOLD:
        return None

    severity = severity_for(todo_count)
    issue = f"{todo_count} tasks queued, {in_progress_count} in progress"
    if status in (AgentStatus.OFFLINE, AgentStatus.STUCK):
        issue += f" while agent is {status.value}"

    return BottleneckFinding(
        agent_id=agent_id,
        agent_type=agent_type,
        severity=severity,
        issue=issue,
        recommended_action=RECOMMENDED_ACTIONS[severity],
        todo_count=todo_count,
        in_progress_count=in_progress_count,
    )


def _queue_depth(tasks: list[Task]) -> tuple[int, int]:
    todo = sum(1 for t in tasks if t.status is TaskStatus.TODO)
    in_progress = sum(1 for t in tasks if t.status is TaskStatus.IN_PROGRESS)
    return todo, in_progress


class BottleneckDetector:
    """Advisory only: reads agents, tasks and health, never writes."""

    def __init__(
        self,
        registry: IAgentRegistry,
        task_store: ITaskStore,
        monitor: IHealthMonitor | None = None,
    ):
        self._registry = registry
        self._tasks = task_store
        self._monitor = monitor

    async def detect_for_agent(
        self, agent: Agent, snapshot: AgentHealthSnapshot | None = None
    ) -> BottleneckFinding | None:
        tasks = await self._tasks.list_by_agent(agent.agent_id)
        todo, in_progress = _queue_depth(tasks)
        return assess(
            agent.agent_id,
            agent.agent_type,
            todo,
            in_progress,
            status=snapshot.status if snapshot else None,
        )

    async def detect_bottlenecks(self) -> list[BottleneckFinding]:
        """Findings for every registered agent, most severe first."""
        agents = await self._registry.list_agents()

        snapshots: dict[str, AgentHealthSnapshot] = {}
        if self._monitor is not None:
            report = await self._monitor.run_health_check()
            snapshots = {s.agent_id: s for s in report.snapshots}

        findings = []
        for agent in agents:
            try:
                finding = await self.detect_for_agent(
                    agent, snapshots.get(agent.agent_id)
                )
            except Exception as e:
                logger.warning("Skipping bottleneck check for %s: %s", agent.agent_id, e)
                continue
            if finding:
                findings.append(finding)

        findings.sort(key=lambda f: (_SEVERITY_ORDER[f.severity], -f.todo_count))
        return findings

    async def get_capacity_utilization(self) -> dict[str, dict[str, int]]:
        """Load per agent type, assuming 3 concurrent tasks per agent."""
        utilization: dict[str, dict[str, int]] = {}
        for agent in await self._registry.list_agents():
            tasks = await self._tasks.list_by_agent(agent.agent_id)
            todo, in_progress = _queue_depth(tasks)
            entry = utilization.setdefault(
                agent.agent_type,
                {"agents": 0, "capacity": 0, "in_progress": 0, "todo": 0, "utilization": 0},
            )
            entry["agents"] += 1
            entry["capacity"] += TASKS_PER_AGENT
            entry["in_progress"] += in_progress
            entry["todo"] += todo

        for entry in utilization.values():
            capacity = entry["capacity"]
            entry["utilization"] = (
                round(entry["in_progress"] / capacity * 100) if capacity else 0
            )
        return utilization

    async def get_spawn_recommendations(self) -> list[dict]:
        """Per agent type, how many extra agents the current backlog suggests."""
        by_type: dict[str, list[BottleneckFinding]] = {}
        for finding in await self.detect_bottlenecks():
            by_type.setdefault(finding.agent_type, []).append(finding)

        recommendations = []
        for agent_type, findings in by_type.items():
            backlog = sum(f.todo_count for f in findings)
            worst = min(findings, key=lambda f: _SEVERITY_ORDER[f.severity]).severity
            if worst is Severity.HIGH:
                suggested = math.ceil(backlog / 10)
            elif worst is Severity.MEDIUM:
                suggested = math.ceil(backlog / 15)
            else:
                suggested = 1
            recommendations.append(
                {
                    "agent_type": agent_type,
                    "priority": worst.value,
                    "reason": f"{backlog} tasks waiting across {len(findings)} overloaded agents",
                    # Never more than 3 at once
                    "suggested_count": max(1, min(suggested, 3)),
                }
            )

        recommendations.sort(key=lambda r: _SEVERITY_ORDER[Severity(r["priority"])])
        return recommendations

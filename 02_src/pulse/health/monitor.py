"""Agent health monitoring.

Liveness is recomputed from live registry and task-store reads on every
call; nothing here is persisted. States are checked in order
offline -> stuck -> active -> idle, so an agent that stopped sending
heartbeats is reported offline even while it still holds an overdue task.
"""

import asyncio
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Protocol

from ..logging_config import get_logger
from ..models import (
    Agent,
    AgentHealthSnapshot,
    AgentStatus,
    HealthCheckReport,
    Task,
    TaskStatus,
)
from ..storage import IAgentRegistry, ITaskStore

logger = get_logger(__name__)

SUCCESS_WEIGHT = 0.6
SPEED_WEIGHT = 0.2
UPTIME_WEIGHT = 0.2

FAST_TASK = timedelta(minutes=30)
SLOW_TASK = timedelta(minutes=60)
LOW_SUCCESS_RATE = 70.0

Clock = Callable[[], datetime]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def clamp_score(value: float) -> int:
    """Round and clamp to [0, 100]."""
    return int(max(0, min(100, round(value))))


def compute_health_score(success: float, speed: float, uptime: float) -> int:
    """Weighted composite of three [0, 100] factors."""
    return clamp_score(
        success * SUCCESS_WEIGHT + speed * SPEED_WEIGHT + uptime * UPTIME_WEIGHT
    )


def success_factor(tasks: list[Task]) -> float:
    """Share of finished tasks that completed rather than blocked, as a percentage."""
    done = sum(1 for t in tasks if t.status is TaskStatus.DONE)
    blocked = sum(1 for t in tasks if t.status is TaskStatus.BLOCKED)
    finished = done + blocked
    if finished == 0:
        return 100.0
    return done / finished * 100


def average_task_time(tasks: list[Task]) -> timedelta | None:
    durations = [
        t.completed_at - t.started_at
        for t in tasks
        if t.status is TaskStatus.DONE and t.started_at and t.completed_at
    ]
    if not durations:
        return None
    return sum(durations, timedelta()) / len(durations)


def speed_factor(avg: timedelta | None) -> float:
    if avg is None or avg <= FAST_TASK:
        return 100.0
    if avg <= SLOW_TASK:
        return 70.0
    return 30.0


def uptime_factor(agent: Agent, now: datetime, offline_after: timedelta) -> float:
    if agent.last_heartbeat is None:
        return 0.0

    since_heartbeat = now - agent.last_heartbeat
    if since_heartbeat < offline_after:
        return 100.0

    lifetime = now - agent.created_at
    if lifetime <= timedelta():
        return 100.0
    downtime = since_heartbeat / lifetime * 100
    return max(0.0, min(100.0, 100.0 - downtime))


def _minutes(delta: timedelta) -> int:
    return int(delta.total_seconds() // 60)


class IHealthMonitor(Protocol):
    """Computes per-agent liveness and health."""

    async def check_agent(self, agent_id: str) -> AgentHealthSnapshot:
        """Snapshot for one agent; degrades instead of raising."""
        ...

    async def run_health_check(self) -> HealthCheckReport:
        """Snapshots for all agents plus aggregate counts."""
        ...

    async def get_agents_needing_attention(self) -> list[AgentHealthSnapshot]:
        """Agents whose snapshot reports at least one issue."""
        ...


class HealthMonitor:
    """Infers agent liveness from heartbeats and task durations."""

    def __init__(
        self,
        registry: IAgentRegistry,
        task_store: ITaskStore,
        offline_after: timedelta = timedelta(minutes=5),
        stuck_after: timedelta = timedelta(hours=2),
        critical_score: int = 40,
        clock: Clock | None = None,
    ):
        self._registry = registry
        self._tasks = task_store
        self._offline_after = offline_after
        self._stuck_after = stuck_after
        self._critical_score = critical_score
        self._clock = clock or _utcnow

    def evaluate(
        self, agent: Agent, tasks: list[Task], now: datetime | None = None
    ) -> AgentHealthSnapshot:
        """Pure evaluation of one agent from already-read data."""
        now = now or self._clock()
        issues: list[str] = []

        in_progress = [t for t in tasks if t.status is TaskStatus.IN_PROGRESS]
        overdue = [
            t
            for t in in_progress
            if t.started_at is not None and now - t.started_at > self._stuck_after
        ]

        if agent.last_heartbeat is None:
            status = AgentStatus.OFFLINE
            issues.append("no heartbeat recorded")
        elif now - agent.last_heartbeat > self._offline_after:
            status = AgentStatus.OFFLINE
            issues.append(
                f"no heartbeat in {_minutes(now - agent.last_heartbeat)} minutes"
            )
        elif overdue:
            status = AgentStatus.STUCK
        elif in_progress:
            status = AgentStatus.ACTIVE
        else:
            status = AgentStatus.IDLE

        for task in overdue:
            issues.append(
                f"task {task.task_id} in progress for "
                f"{_minutes(now - task.started_at)} minutes"
            )

        blocked = sum(1 for t in tasks if t.status is TaskStatus.BLOCKED)
        if blocked:
            issues.append(f"{blocked} task{'s' if blocked != 1 else ''} blocked")

        success = success_factor(tasks)
        if success < LOW_SUCCESS_RATE:
            issues.append(f"low success rate: {round(success)}%")

        avg = average_task_time(tasks)
        speed = speed_factor(avg)
        if avg is not None and speed < 100:
            issues.append(f"average task time {_minutes(avg)} minutes")

        uptime = uptime_factor(agent, now, self._offline_after)

        return AgentHealthSnapshot(
            agent_id=agent.agent_id,
            status=status,
            health_score=compute_health_score(success, speed, uptime),
            issues=issues,
            success_rate=success,
            speed_factor=speed,
            uptime_factor=uptime,
            last_heartbeat=agent.last_heartbeat,
        )

    async def check_agent(self, agent_id: str) -> AgentHealthSnapshot:
        """Snapshot for one agent; degrades instead of raising."""
        try:
            agent = await self._registry.get_agent(agent_id)
        except Exception as e:
            logger.warning("Registry read failed for %s: %s", agent_id, e)
            return self._degraded(agent_id, f"health data unavailable: {e}")

        if agent is None:
            return self._degraded(agent_id, "agent not found")
        return await self._snapshot(agent)

    async def _snapshot(self, agent: Agent) -> AgentHealthSnapshot:
        try:
            tasks = await self._tasks.list_by_agent(agent.agent_id)
        except Exception as e:
            logger.warning("Task store read failed for %s: %s", agent.agent_id, e)
            return self._degraded(agent.agent_id, f"health data unavailable: {e}")
        return self.evaluate(agent, tasks)

    @staticmethod
    def _degraded(agent_id: str, issue: str) -> AgentHealthSnapshot:
        return AgentHealthSnapshot(
            agent_id=agent_id,
            status=AgentStatus.OFFLINE,
            health_score=0,
            issues=[issue],
        )

    async def run_health_check(self) -> HealthCheckReport:
        """Snapshots for all agents plus aggregate counts."""
        try:
            agents = await self._registry.list_agents()
        except Exception as e:
            logger.error("Agent registry unavailable: %s", e)
            return HealthCheckReport(
                total=0,
                healthy=0,
                idle=0,
                stuck=0,
                offline=0,
                health_percentage=0,
                status="critical",
                critical_issues=[f"agent registry unavailable: {e}"],
            )

        snapshots = list(await asyncio.gather(*[self._snapshot(a) for a in agents]))

        total = len(snapshots)
        counts = {status: 0 for status in AgentStatus}
        for snap in snapshots:
            counts[snap.status] += 1

        healthy = counts[AgentStatus.ACTIVE] + counts[AgentStatus.IDLE]
        stuck = counts[AgentStatus.STUCK]
        offline = counts[AgentStatus.OFFLINE]
        percentage = round(healthy / total * 100) if total else 0

        if total and percentage >= 80:
            system_status = "healthy"
        elif total and percentage >= 50:
            system_status = "degraded"
        else:
            system_status = "critical"

        critical: list[str] = []
        if total == 0:
            critical.append("no agents registered")
        else:
            if offline == total:
                critical.append("all agents offline")
            elif system_status == "critical":
                critical.append(f"system health is critical: {percentage}%")
            if stuck > total * 0.5:
                critical.append(f"over 50% of agents are stuck ({stuck}/{total})")

        for snap in snapshots:
            if snap.health_score < self._critical_score:
                detail = "; ".join(snap.issues) if snap.issues else "no details"
                critical.append(
                    f"{snap.agent_id}: health score {snap.health_score}/100 ({detail})"
                )

        logger.info(
            "Health check: %s agents, %s healthy, %s stuck, %s offline",
            total,
            healthy,
            stuck,
            offline,
        )

        return HealthCheckReport(
            total=total,
            healthy=healthy,
            idle=counts[AgentStatus.IDLE],
            stuck=stuck,
            offline=offline,
            health_percentage=percentage,
            status=system_status,
            snapshots=snapshots,
            critical_issues=critical,
        )

    async def get_agent_report(self, agent_id: str) -> dict[str, Any]:
        """Snapshot plus suggested follow-ups for one agent."""
        snapshot = await self.check_agent(agent_id)
        recommendations: list[str] = []

        if snapshot.status is AgentStatus.OFFLINE:
            recommendations.append("Restart the agent process")
            recommendations.append("Check network connectivity")
        elif snapshot.status is AgentStatus.STUCK:
            recommendations.append("Review the current task for complexity or errors")
            recommendations.append("Consider reassigning the task to another agent")
        elif snapshot.status is AgentStatus.IDLE:
            recommendations.append("Assign tasks to this agent")

        rate = snapshot.success_rate
        if rate is not None and rate < LOW_SUCCESS_RATE:
            recommendations.append("Investigate common failure patterns")

        return {
            "snapshot": snapshot.to_dict(),
            "needs_attention": bool(snapshot.issues),
            "recommendations": recommendations,
        }

    async def agent_needs_attention(self, agent_id: str) -> bool:
        """True when the agent's snapshot reports any issue."""
        snapshot = await self.check_agent(agent_id)
        return bool(snapshot.issues)

    async def get_agents_needing_attention(self) -> list[AgentHealthSnapshot]:
        """Snapshots with at least one issue, lowest health score first.

        Registry errors propagate; per-agent task store errors degrade to an
        offline snapshot as in check_agent.
        """
        agents = await self._registry.list_agents()
        snapshots = await asyncio.gather(*[self._snapshot(a) for a in agents])
        flagged = [s for s in snapshots if s.issues]
        return sorted(flagged, key=lambda s: (s.health_score, s.agent_id))

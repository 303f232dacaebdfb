"""Agent, task and health data models."""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any


class TaskStatus(str, Enum):
    """Task lifecycle in the task store."""

    TODO = "todo"
    IN_PROGRESS = "in-progress"
    DONE = "done"
    BLOCKED = "blocked"


class AgentStatus(str, Enum):
    """Liveness state derived by the HealthMonitor."""

    ACTIVE = "active"
    IDLE = "idle"
    STUCK = "stuck"
    OFFLINE = "offline"


class Severity(str, Enum):
    """Bottleneck severity."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


@dataclass
class Agent:
    """An agent worker as recorded in the registry."""

    agent_id: str
    agent_name: str
    agent_type: str = "generic"
    last_heartbeat: datetime | None = None
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


@dataclass
class Task:
    """A unit of work assigned to an agent."""

    task_id: str
    agent_id: str
    status: TaskStatus
    title: str = ""
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    started_at: datetime | None = None
    completed_at: datetime | None = None


@dataclass
class AgentHealthSnapshot:
    """Point-in-time health of one agent. Computed, never stored."""

    agent_id: str
    status: AgentStatus
    health_score: int
    issues: list[str] = field(default_factory=list)
    success_rate: float | None = None  # None when task data was unavailable
    speed_factor: float = 0.0
    uptime_factor: float = 0.0
    last_heartbeat: datetime | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "agent_id": self.agent_id,
            "status": self.status.value,
            "health_score": self.health_score,
            "issues": list(self.issues),
            "success_rate": (
                round(self.success_rate, 2) if self.success_rate is not None else None
            ),
            "speed_factor": round(self.speed_factor, 2),
            "uptime_factor": round(self.uptime_factor, 2),
            "last_heartbeat": (
                self.last_heartbeat.isoformat() if self.last_heartbeat else None
            ),
        }


@dataclass
class HealthCheckReport:
    """Aggregate result of a health-check pass over all agents."""

    total: int
    healthy: int
    idle: int
    stuck: int
    offline: int
    health_percentage: int
    status: str  # healthy | degraded | critical
    snapshots: list[AgentHealthSnapshot] = field(default_factory=list)
    critical_issues: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "system_health": {
                "total_agents": self.total,
                "healthy": self.healthy,
                "idle": self.idle,
                "stuck": self.stuck,
                "offline": self.offline,
                "health_percentage": self.health_percentage,
                "status": self.status,
            },
            "agents": [s.to_dict() for s in self.snapshots],
            "critical_issues": list(self.critical_issues),
        }


@dataclass
class BottleneckFinding:
    """Advisory flag for an overloaded agent."""

    agent_id: str
    agent_type: str
    severity: Severity
    issue: str
    recommended_action: str
    todo_count: int = 0
    in_progress_count: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "agent_id": self.agent_id,
            "agent_type": self.agent_type,
            "severity": self.severity.value,
            "issue": self.issue,
            "recommended_action": self.recommended_action,
            "todo_count": self.todo_count,
            "in_progress_count": self.in_progress_count,
        }

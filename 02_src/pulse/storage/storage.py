"""SQLite storage implementation of the agent registry and task store."""

import json
from datetime import datetime, timezone
from pathlib import Path
from typing import Protocol

import aiosqlite

from ..config import resolve_db_path
from ..models import Agent, AgentWebhookConfig, RetryPolicy, Task, TaskStatus


class IAgentRegistry(Protocol):
    """Read side of agent records and their webhook configs."""

    async def get_config(self, agent_id: str) -> AgentWebhookConfig | None:
        """Get the webhook config for an agent."""
        ...

    async def get_all_configs(self) -> list[AgentWebhookConfig]:
        """Get every webhook config, enabled or not."""
        ...

    async def get_agent(self, agent_id: str) -> Agent | None:
        """Get an agent record."""
        ...

    async def list_agents(self) -> list[Agent]:
        """List all registered agents."""
        ...


class ITaskStore(Protocol):
    """Read side of the task store."""

    async def list_by_agent(self, agent_id: str) -> list[Task]:
        """Get all tasks assigned to an agent."""
        ...


class IStorage(IAgentRegistry, ITaskStore, Protocol):
    """Persistent storage for agents, webhook configs and tasks (SQLite)."""

    async def init(self) -> None:
        """Initialize database and create tables."""
        ...

    async def close(self) -> None:
        """Close database connection."""
        ...

    async def save_agent(self, agent: Agent) -> None:
        """Insert or replace an agent."""
        ...

    async def record_heartbeat(
        self, agent_id: str, at: datetime | None = None
    ) -> bool:
        """Update an agent's last heartbeat. False if the agent is unknown."""
        ...

    async def save_webhook_config(self, config: AgentWebhookConfig) -> None:
        """Insert or replace a webhook config."""
        ...

    async def delete_webhook_config(self, agent_id: str) -> bool:
        """Delete a webhook config."""
        ...

    async def save_task(self, task: Task) -> None:
        """Insert or replace a task."""
        ...

    async def clear(self) -> None:
        """Clear all data."""
        ...


def _to_text(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


def _from_text(value: str | None) -> datetime | None:
    if not value:
        return None
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


class Storage:
    """SQLite storage implementation."""

    def __init__(self, db_path: str | Path | None = None):
        if db_path is None:
            self._db_path = resolve_db_path()
        else:
            self._db_path = resolve_db_path(db_path)
        self._conn: aiosqlite.Connection | None = None

    async def init(self) -> None:
        """Initialize database and create tables."""
        self._conn = await aiosqlite.connect(self._db_path)

        schema_path = Path(__file__).parent / "schema.sql"
        with open(schema_path, "r", encoding="utf-8") as f:
            schema_sql = f.read()
        await self._conn.executescript(schema_sql)
        await self._add_missing_columns()
        await self._conn.commit()

    async def _add_missing_columns(self) -> None:
        """Upgrade webhook_configs tables created before the retry columns existed."""
        cursor = await self._conn.execute("PRAGMA table_info(webhook_configs)")
        existing = {row[1] for row in await cursor.fetchall()}
        for column, sql_type in (("max_delay", "REAL"), ("retry_client_errors", "INTEGER")):
            if column not in existing:
                await self._conn.execute(
                    f"ALTER TABLE webhook_configs ADD COLUMN {column} {sql_type}"
                )

    async def close(self) -> None:
        """Close database connection."""
        if self._conn:
            await self._conn.close()
            self._conn = None

    def _require_conn(self) -> aiosqlite.Connection:
        if not self._conn:
            raise RuntimeError("Storage not initialized")
        return self._conn

    # Agents
    async def save_agent(self, agent: Agent) -> None:
        """Insert or replace an agent."""
        conn = self._require_conn()
        await conn.execute(
            """
            INSERT OR REPLACE INTO agents
            (agent_id, agent_name, agent_type, last_heartbeat, created_at)
            VALUES (?, ?, ?, ?, ?)
            """,
            (
                agent.agent_id,
                agent.agent_name,
                agent.agent_type,
                _to_text(agent.last_heartbeat),
                _to_text(agent.created_at),
            ),
        )
        await conn.commit()

    async def record_heartbeat(
        self, agent_id: str, at: datetime | None = None
    ) -> bool:
        """Update an agent's last heartbeat. False if the agent is unknown."""
        conn = self._require_conn()
        at = at or datetime.now(timezone.utc)
        cursor = await conn.execute(
            "UPDATE agents SET last_heartbeat = ? WHERE agent_id = ?",
            (_to_text(at), agent_id),
        )
        await conn.commit()
        return cursor.rowcount > 0

    async def get_agent(self, agent_id: str) -> Agent | None:
        """Get an agent record."""
        conn = self._require_conn()
        cursor = await conn.execute(
            """
            SELECT agent_id, agent_name, agent_type, last_heartbeat, created_at
            FROM agents
            WHERE agent_id = ?
            """,
            (agent_id,),
        )
        row = await cursor.fetchone()
        return self._row_to_agent(row) if row else None

    async def list_agents(self) -> list[Agent]:
        """List all registered agents."""
        conn = self._require_conn()
        cursor = await conn.execute(
            """
            SELECT agent_id, agent_name, agent_type, last_heartbeat, created_at
            FROM agents
            ORDER BY agent_id ASC
            """
        )
        rows = await cursor.fetchall()
        return [self._row_to_agent(row) for row in rows]

    @staticmethod
    def _row_to_agent(row) -> Agent:
        return Agent(
            agent_id=row[0],
            agent_name=row[1],
            agent_type=row[2],
            last_heartbeat=_from_text(row[3]),
            created_at=_from_text(row[4]) or datetime.now(timezone.utc),
        )

    # Webhook configs
    async def save_webhook_config(self, config: AgentWebhookConfig) -> None:
        """Insert or replace a webhook config."""
        conn = self._require_conn()
        policy = config.retry_policy
        await conn.execute(
            """
            INSERT OR REPLACE INTO webhook_configs
            (agent_id, agent_name, agent_type, url, enabled, event_types,
             secret, headers, timeout, max_attempts, base_delay,
             backoff_multiplier, max_delay, retry_client_errors,
             updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, CURRENT_TIMESTAMP)
            """,
            (
                config.agent_id,
                config.agent_name,
                config.agent_type,
                config.url,
                1 if config.enabled else 0,
                json.dumps(sorted(config.event_types)),
                config.secret,
                json.dumps(config.headers),
                config.timeout,
                policy.max_attempts if policy else None,
                policy.base_delay if policy else None,
                policy.backoff_multiplier if policy else None,
                policy.max_delay if policy else None,
                (1 if policy.retry_client_errors else 0) if policy else None,
            ),
        )
        await conn.commit()

    async def delete_webhook_config(self, agent_id: str) -> bool:
        """Delete a webhook config."""
        conn = self._require_conn()
        cursor = await conn.execute(
            "DELETE FROM webhook_configs WHERE agent_id = ?", (agent_id,)
        )
        await conn.commit()
        return cursor.rowcount > 0

    async def get_config(self, agent_id: str) -> AgentWebhookConfig | None:
        """Get the webhook config for an agent."""
        conn = self._require_conn()
        cursor = await conn.execute(
            """
            SELECT agent_id, agent_name, agent_type, url, enabled, event_types,
                   secret, headers, timeout, max_attempts, base_delay,
                   backoff_multiplier, max_delay, retry_client_errors
            FROM webhook_configs
            WHERE agent_id = ?
            """,
            (agent_id,),
        )
        row = await cursor.fetchone()
        return self._row_to_config(row) if row else None

    async def get_all_configs(self) -> list[AgentWebhookConfig]:
        """Get every webhook config, enabled or not."""
        conn = self._require_conn()
        cursor = await conn.execute(
            """
            SELECT agent_id, agent_name, agent_type, url, enabled, event_types,
                   secret, headers, timeout, max_attempts, base_delay,
                   backoff_multiplier, max_delay, retry_client_errors
            FROM webhook_configs
            ORDER BY agent_id ASC
            """
        )
        rows = await cursor.fetchall()
        return [self._row_to_config(row) for row in rows]

    @staticmethod
    def _row_to_config(row) -> AgentWebhookConfig:
        policy = None
        if row[9] is not None:
            defaults = RetryPolicy()
            policy = RetryPolicy(
                max_attempts=row[9],
                base_delay=row[10] if row[10] is not None else defaults.base_delay,
                backoff_multiplier=(
                    row[11] if row[11] is not None else defaults.backoff_multiplier
                ),
                max_delay=row[12] if row[12] is not None else defaults.max_delay,
                retry_client_errors=bool(row[13]),
            )
        return AgentWebhookConfig(
            agent_id=row[0],
            agent_name=row[1],
            agent_type=row[2],
            url=row[3],
            enabled=bool(row[4]),
            event_types=frozenset(json.loads(row[5])),
            secret=row[6],
            headers=json.loads(row[7]),
            timeout=row[8],
            retry_policy=policy,
        )

    # Tasks
    async def save_task(self, task: Task) -> None:
        """Insert or replace a task."""
        conn = self._require_conn()
        await conn.execute(
            """
            INSERT OR REPLACE INTO tasks
            (task_id, agent_id, status, title, created_at, started_at, completed_at)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
            (
                task.task_id,
                task.agent_id,
                task.status.value,
                task.title,
                _to_text(task.created_at),
                _to_text(task.started_at),
                _to_text(task.completed_at),
            ),
        )
        await conn.commit()

    async def list_by_agent(self, agent_id: str) -> list[Task]:
        """Get all tasks assigned to an agent."""
        conn = self._require_conn()
        cursor = await conn.execute(
            """
            SELECT task_id, agent_id, status, title, created_at, started_at,
                   completed_at
            FROM tasks
            WHERE agent_id = ?
            ORDER BY created_at ASC
            """,
            (agent_id,),
        )
        rows = await cursor.fetchall()
        return [
            Task(
                task_id=row[0],
                agent_id=row[1],
                status=TaskStatus(row[2]),
                title=row[3],
                created_at=_from_text(row[4]) or datetime.now(timezone.utc),
                started_at=_from_text(row[5]),
                completed_at=_from_text(row[6]),
            )
            for row in rows
        ]

    # Lifecycle
    async def clear(self) -> None:
        """Clear all data."""
        conn = self._require_conn()

        for table in ["tasks", "webhook_configs", "agents"]:
            await conn.execute(f"DELETE FROM {table}")

        await conn.commit()

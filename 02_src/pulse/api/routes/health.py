"""Agent health and supervisor API routes."""

from datetime import datetime

from fastapi import APIRouter, HTTPException
from pydantic import BaseModel

from ...app import Application
from ...models import Agent, Task, TaskStatus


class RegisterAgentRequest(BaseModel):
    """Register an agent in the registry."""

    agent_id: str
    agent_name: str
    agent_type: str = "generic"


class TaskRequest(BaseModel):
    """Create or update a task."""

    task_id: str
    agent_id: str
    status: TaskStatus = TaskStatus.TODO
    title: str = ""
    started_at: datetime | None = None
    completed_at: datetime | None = None


class StatusResponse(BaseModel):
    """Response model for status."""

    status: str


def create_health_router(app: Application) -> APIRouter:
    """Create health and supervisor router."""
    router = APIRouter(prefix="/api", tags=["health"])

    @router.post("/agents", response_model=StatusResponse)
    async def register_agent(request: RegisterAgentRequest) -> dict:
        """Register or replace an agent."""
        if not request.agent_id:
            raise HTTPException(status_code=400, detail="agent_id is required")
        try:
            await app.storage.save_agent(
                Agent(
                    agent_id=request.agent_id,
                    agent_name=request.agent_name,
                    agent_type=request.agent_type,
                )
            )
            return {"status": "ok"}
        except Exception as e:
            raise HTTPException(status_code=500, detail=str(e))

    @router.post("/tasks", response_model=StatusResponse)
    async def save_task(request: TaskRequest) -> dict:
        """Create or update a task."""
        if await app.storage.get_agent(request.agent_id) is None:
            raise HTTPException(
                status_code=404, detail=f"Agent not found: {request.agent_id}"
            )
        try:
            await app.storage.save_task(
                Task(
                    task_id=request.task_id,
                    agent_id=request.agent_id,
                    status=request.status,
                    title=request.title,
                    started_at=request.started_at,
                    completed_at=request.completed_at,
                )
            )
            return {"status": "ok"}
        except Exception as e:
            raise HTTPException(status_code=500, detail=str(e))

    @router.get("/agents/health")
    async def system_health() -> dict:
        """Health of every agent plus system summary."""
        try:
            report = await app.health_monitor.run_health_check()
            return report.to_dict()
        except Exception as e:
            raise HTTPException(status_code=500, detail=str(e))

    @router.get("/agents/attention")
    async def agents_needing_attention() -> dict:
        """Agents with at least one reported issue, worst first."""
        try:
            snapshots = await app.health_monitor.get_agents_needing_attention()
        except Exception as e:
            raise HTTPException(status_code=500, detail=str(e))
        return {
            "count": len(snapshots),
            "agents": [s.to_dict() for s in snapshots],
        }

    @router.get("/agents/{agent_id}/health")
    async def agent_health(agent_id: str) -> dict:
        """Health snapshot and recommendations for one agent."""
        if await app.storage.get_agent(agent_id) is None:
            raise HTTPException(status_code=404, detail=f"Agent not found: {agent_id}")
        try:
            return await app.health_monitor.get_agent_report(agent_id)
        except Exception as e:
            raise HTTPException(status_code=500, detail=str(e))

    @router.post("/agents/{agent_id}/heartbeat", response_model=StatusResponse)
    async def heartbeat(agent_id: str) -> dict:
        """Record that the agent is alive."""
        if not await app.storage.record_heartbeat(agent_id):
            raise HTTPException(status_code=404, detail=f"Agent not found: {agent_id}")
        return {"status": "ok"}

    @router.get("/supervisor/bottlenecks")
    async def bottlenecks() -> dict:
        """Overloaded agents, spawn advice and capacity per agent type."""
        try:
            detector = app.bottleneck_detector
            findings = await detector.detect_bottlenecks()
            return {
                "bottlenecks": [f.to_dict() for f in findings],
                "recommendations": await detector.get_spawn_recommendations(),
                "utilization": await detector.get_capacity_utilization(),
                "needs_capacity": any(f.severity.value == "high" for f in findings),
            }
        except Exception as e:
            raise HTTPException(status_code=500, detail=str(e))

    return router

"""
API request and response models
"""
from pydantic import BaseModel, Field
from typing import Optional, List, Dict, Any
from enum import Enum


class InstanceStatusEnum(str, Enum):
    """Instance status (API)"""
    RUNNING = "running"
    COMPLETED = "completed"
    REJECTED = "rejected"


class StartInstanceRequest(BaseModel):
    """Start an instance of a registered workflow"""
    workflowId: str = Field(..., description="Registered workflow ID")
    data: Dict[str, Any] = Field(default_factory=dict, description="Initial context data")
    instanceId: Optional[str] = Field(None, description="Explicit instance ID")


class WorkflowRegistered(BaseModel):
    workflowId: str
    version: int
    warnings: List[str] = Field(default_factory=list)


class HistoryItem(BaseModel):
    timestamp: str
    stateId: str
    action: str
    details: Optional[str] = None


class TaskInstanceResponse(BaseModel):
    """Snapshot of a task instance"""
    id: str
    workflowId: str
    workflowName: str
    status: InstanceStatusEnum
    data: Dict[str, Any]
    currentStates: List[str]
    history: List[HistoryItem]
    parallelCompletion: Dict[str, List[str]]
    createdAt: str
    updatedAt: str
    faults: Dict[str, str] = Field(default_factory=dict)


class TickResponse(BaseModel):
    instance: TaskInstanceResponse
    timedOut: List[str] = Field(default_factory=list)
    advanced: List[str] = Field(default_factory=list)
    merged: List[str] = Field(default_factory=list)


class ErrorResponse(BaseModel):
    error: str
    message: str
    stateId: Optional[str] = None
    target: Optional[str] = None

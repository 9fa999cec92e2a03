"""Domain types shared across planes: plans, agent events, and identifiers."""

from plancast.domain.events import AgentEvent, AgentEventType, redact_sensitive
from plancast.domain.plan import Command, FileEdit, InvalidStep, Plan, Step, StepType

__all__ = [
    "AgentEvent",
    "AgentEventType",
    "Command",
    "FileEdit",
    "InvalidStep",
    "Plan",
    "Step",
    "StepType",
    "redact_sensitive",
]

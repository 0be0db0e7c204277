"""Contracts for the persisted deployment model.

Main exports:
- ActionRecord, ActionType, PlanKind, ServerGroup
- MemberStatus, DeploymentSpec, DeploymentStatus, Deployment
- BackOff and its entry/key helpers
"""

from contracts import deployment

# Explicit re-exports to satisfy ruff F401
__all__ = [
    "ActionRecord",
    "ActionType",
    "BackOff",
    "Deployment",
    "DeploymentSpec",
    "DeploymentStatus",
    "MemberStatus",
    "PlanKind",
    "ServerGroup",
    "new_action",
]

ActionRecord = deployment.ActionRecord
ActionType = deployment.ActionType
BackOff = deployment.BackOff
Deployment = deployment.Deployment
DeploymentSpec = deployment.DeploymentSpec
DeploymentStatus = deployment.DeploymentStatus
MemberStatus = deployment.MemberStatus
PlanKind = deployment.PlanKind
ServerGroup = deployment.ServerGroup
new_action = deployment.new_action

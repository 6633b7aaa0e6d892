"""Plugin and notification hooks for PolyShark."""

from polyshark.plugins.manager import (
    AgentPlugin,
    DecisionKind,
    NotificationPlugin,
    PluginAction,
    PluginDecision,
    PluginManager,
)

__all__ = [
    "AgentPlugin",
    "DecisionKind",
    "NotificationPlugin",
    "PluginAction",
    "PluginDecision",
    "PluginManager",
]

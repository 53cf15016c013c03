class RoleplayError(Exception):
    """Base class for errors raised inside the role-play core."""


class AgentConnectionError(RoleplayError):
    """An upstream agent connection could not be opened or written to."""


class ScriptExhaustedError(RoleplayError):
    """A scripted agent was asked for more responses than it has lines."""

    def __init__(self, role: str, count: int) -> None:
        super().__init__(f"Scripted {role} has no line left (script has {count} lines)")
        self.role = role
        self.count = count


class RulesError(RoleplayError):
    """The scoring rule set could not be loaded."""

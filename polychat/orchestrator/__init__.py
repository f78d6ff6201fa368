from polychat.orchestrator.core import DEFAULT_MAX_ROUNDS, Orchestrator

__all__ = ["DEFAULT_MAX_ROUNDS", "Orchestrator"]

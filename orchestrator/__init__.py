"""
Orchestrator

The print state machine, the broadcast and encoder policy, and the service
entrypoint that wires every component together.
"""

__version__ = "1.0.0"

from orchestrator.print_orchestrator import PrintOrchestrator, sanitize_job_name
from orchestrator.stream_orchestrator import StreamOrchestrator

__all__ = ["PrintOrchestrator", "StreamOrchestrator", "sanitize_job_name"]

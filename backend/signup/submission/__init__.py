"""
Submission package — turns a completed session into backend records.

The orchestrator runs creation steps in dependency order through an
injected transport and reports exactly how far it got.
"""

from signup.submission.orchestrator import EntityOrchestrator, OrchestrationResult
from signup.submission.transport import HttpTransport, Transport

__all__ = ["EntityOrchestrator", "OrchestrationResult", "HttpTransport", "Transport"]

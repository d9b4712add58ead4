"""Provisioning pipeline: integrity, safety gate, writer, verification, orchestration."""

from cardsmith.pipeline.integrity import IntegrityChecker
from cardsmith.pipeline.orchestrator import PipelineOrchestrator, create_orchestrator
from cardsmith.pipeline.safety import SafetyGuard, is_affirmative
from cardsmith.pipeline.verification import VerificationEngine, render_report
from cardsmith.pipeline.writer import ProvisioningWriter


__all__ = [
    "IntegrityChecker",
    "PipelineOrchestrator",
    "ProvisioningWriter",
    "SafetyGuard",
    "VerificationEngine",
    "create_orchestrator",
    "is_affirmative",
    "render_report",
]

"""Pipeline stages for TestGenerationSession.

Each module is one stage with explicit inputs and outputs that can be
tested in isolation with the fakes in tests/fakes.

Modules:
    agent_runner: Run an agent to completion with timeout and cancellation
    perspective_generator: Perspective table generation and extraction
    test_code_generator: Test generation and the stray-file guard
    merge_back: Worktree-to-local patch application
    test_executor: Direct/agent test execution with fallback
    result_correlator: Side-channel result file correlation
"""

from testsmith.pipeline.agent_runner import AgentRunOutcome, run_provider_to_completion
from testsmith.pipeline.merge_back import MergeBackEngine
from testsmith.pipeline.perspective_generator import (
    PerspectiveGenerator,
    PerspectiveStepResult,
)
from testsmith.pipeline.result_correlator import read_correlated_result
from testsmith.pipeline.test_code_generator import (
    TestCodeGenerator,
    cleanup_stray_perspective_files,
)
from testsmith.pipeline.test_executor import TestExecutor

__all__ = [
    "AgentRunOutcome",
    "MergeBackEngine",
    "PerspectiveGenerator",
    "PerspectiveStepResult",
    "TestCodeGenerator",
    "TestExecutor",
    "cleanup_stray_perspective_files",
    "read_correlated_result",
    "run_provider_to_completion",
]

"""Unit tests for MergeBackEngine using FakeCommandRunner."""

from __future__ import annotations

import asyncio
from pathlib import Path

import pytest

from testsmith.core.events import EventChannel, LogEvent
from testsmith.pipeline.merge_back import (
    ACTION_COPY_PROMPT,
    ACTION_OPEN_INSTRUCTIONS,
    REASON_APPLY_CHECK_FAILED,
    REASON_APPLY_FAILED,
    REASON_EMPTY_PATCH,
    REASON_GENERATION_FAILED,
    REASON_NO_TEST_CHANGES,
    MergeBackEngine,
)
from tests.fakes import FakeCommandRunner, FakeNotifier

PATCH = (
    "diff --git a/tests/test_a.py b/tests/test_a.py\n"
    "new file mode 100644\n"
    "--- /dev/null\n"
    "+++ b/tests/test_a.py\n"
    "@@ -0,0 +1 @@\n"
    "+def test_a(): pass"
)


class _Workspace:
    def __init__(self, tmp_path: Path):
        self.local_root = tmp_path / "local"
        self.run_root = tmp_path / "worktree"
        self.storage = tmp_path / "storage"
        self.local_root.mkdir()
        (self.run_root / "tests").mkdir(parents=True)
        (self.run_root / "tests" / "test_a.py").write_text("def test_a(): pass\n")
        self.runner = FakeCommandRunner()
        self.channel = EventChannel()
        self.notifier = FakeNotifier()

    @property
    def tmp_patch(self) -> Path:
        return self.storage / "tmp" / "gen-1.patch"

    def engine(self) -> MergeBackEngine:
        return MergeBackEngine(
            command_runner=self.runner,
            channel=self.channel,
            notifier=self.notifier,
            storage_dir=self.storage,
            pre_test_check_command="ruff check tests",
        )

    def script_changes(self, changed: str, untracked: str, diff: str) -> None:
        self.runner.on_git(["diff", "--name-only"], stdout=changed)
        self.runner.on_git(["ls-files", "--others", "--exclude-standard"], stdout=untracked)
        self.runner.on_git(["add", "-N", "--", "tests/test_a.py"])
        self.runner.on_git(
            ["diff", "--no-color", "--binary", "--", "tests/test_a.py"], stdout=diff
        )

    def script_apply(self, check_code: int = 0, apply_code: int = 0) -> None:
        self.runner.on_git(
            ["apply", "--check", str(self.tmp_patch)],
            returncode=check_code,
            stderr="error: patch failed: tests/test_a.py:1" if check_code else "",
        )
        self.runner.on_git(
            ["apply", str(self.tmp_patch)],
            returncode=apply_code,
            stderr="error: apply failed" if apply_code else "",
        )

    def logs(self, level: str) -> list[str]:
        return [
            e.message
            for e in self.channel.events_for("gen-1")
            if isinstance(e, LogEvent) and e.level == level
        ]


@pytest.fixture
def ws(tmp_path: Path) -> _Workspace:
    return _Workspace(tmp_path)


class TestMergeBackEngine:
    """Tests for MergeBackEngine.apply."""

    @pytest.mark.asyncio
    async def test_applies_test_patch_locally(self, ws: _Workspace) -> None:
        ws.script_changes("src/app.py\n", "tests/test_a.py\n", PATCH)
        ws.script_apply()

        result = await ws.engine().apply("gen-1", 0, ws.local_root, ws.run_root)

        assert result.applied
        assert result.test_paths == ("tests/test_a.py",)
        assert not ws.tmp_patch.exists()
        assert ws.runner.ran_git(["add", "-N", "--", "tests/test_a.py"])
        apply_calls = ws.runner.calls_for(
            ["git", "-c", "core.quotepath=false", "apply", str(ws.tmp_patch)]
        )
        assert apply_calls[0].cwd == ws.local_root
        assert ws.notifier.infos == ["Applied worktree test changes locally (1 file(s))"]

    @pytest.mark.asyncio
    async def test_patch_gets_trailing_newline(self, ws: _Workspace) -> None:
        ws.script_changes("", "tests/test_a.py\n", PATCH)
        ws.script_apply(check_code=1)

        result = await ws.engine().apply("gen-1", 0, ws.local_root, ws.run_root)

        assert result.patch_path is not None
        assert result.patch_path.read_text() == PATCH + "\n"

    @pytest.mark.asyncio
    async def test_apply_check_failure_persists_artifacts(self, ws: _Workspace) -> None:
        ws.script_changes("tests/test_a.py\n", "", PATCH)
        ws.script_apply(check_code=1)

        result = await ws.engine().apply("gen-1", 0, ws.local_root, ws.run_root)
        await asyncio.sleep(0)

        assert not result.applied
        assert result.reason == REASON_APPLY_CHECK_FAILED
        assert result.patch_path == ws.storage / "patches" / "gen-1.patch"
        assert not ws.tmp_patch.exists()
        snapshot = ws.storage / "snapshots" / "gen-1" / "tests" / "test_a.py"
        assert snapshot.read_text() == "def test_a(): pass\n"
        assert result.instructions_path == ws.storage / "merge-instructions" / "gen-1.md"
        instructions = result.instructions_path.read_text()
        assert "error: patch failed: tests/test_a.py:1" in instructions
        assert "ruff check tests" in instructions
        assert not ws.runner.ran_git(["add", "-N", "--", "tests/test_a.py"])
        assert not ws.runner.ran_git(["apply", str(ws.tmp_patch)])
        assert ws.logs("warn") == [
            "Could not apply the worktree test changes automatically; manual merge required."
        ]
        assert ws.notifier.choices_offered[0][1] == (
            ACTION_OPEN_INSTRUCTIONS,
            ACTION_COPY_PROMPT,
        )

    @pytest.mark.asyncio
    async def test_apply_failure_after_check(self, ws: _Workspace) -> None:
        ws.script_changes("tests/test_a.py\n", "", PATCH)
        ws.script_apply(apply_code=1)

        result = await ws.engine().apply("gen-1", 0, ws.local_root, ws.run_root)

        assert result.reason == REASON_APPLY_FAILED
        assert result.patch_path is not None
        assert result.patch_path.exists()

    @pytest.mark.asyncio
    async def test_generation_failure_skips_apply(self, ws: _Workspace) -> None:
        ws.script_changes("tests/test_a.py\n", "", PATCH)

        result = await ws.engine().apply("gen-1", None, ws.local_root, ws.run_root)

        assert result.reason == REASON_GENERATION_FAILED
        assert result.instructions_path is not None
        assert "exit=null" in result.instructions_path.read_text()

    @pytest.mark.asyncio
    async def test_no_test_changes(self, ws: _Workspace) -> None:
        ws.runner.on_git(["diff", "--name-only"], stdout="src/app.py\nREADME.md\n")
        ws.runner.on_git(["ls-files", "--others", "--exclude-standard"], stdout="")

        result = await ws.engine().apply("gen-1", 0, ws.local_root, ws.run_root)

        assert not result.applied
        assert result.reason == REASON_NO_TEST_CHANGES
        assert ws.logs("info") == ["No test changes found in the worktree"]

    @pytest.mark.asyncio
    async def test_empty_patch(self, ws: _Workspace) -> None:
        ws.script_changes("tests/test_a.py\n", "", "  \n")

        result = await ws.engine().apply("gen-1", 0, ws.local_root, ws.run_root)

        assert result.reason == REASON_EMPTY_PATCH
        assert result.test_paths == ("tests/test_a.py",)
        assert not (ws.storage / "patches").exists()

    @pytest.mark.asyncio
    async def test_git_error_is_reported_not_raised(self, ws: _Workspace) -> None:
        ws.runner.on_git(["diff", "--name-only"], returncode=128, stderr="fatal: not a git repo")

        result = await ws.engine().apply("gen-1", 0, ws.local_root, ws.run_root)

        assert not result.applied
        assert result.reason is not None
        assert result.reason.startswith("error: ")
        assert "not a git repo" in ws.logs("warn")[0]


class TestManualMergeOffer:
    @pytest.mark.asyncio
    async def test_copy_prompt_choice(self, ws: _Workspace) -> None:
        ws.notifier.choice = ACTION_COPY_PROMPT
        ws.script_changes("tests/test_a.py\n", "", PATCH)
        ws.script_apply(check_code=1)

        await ws.engine().apply("gen-1", 0, ws.local_root, ws.run_root)
        await asyncio.sleep(0)

        assert len(ws.notifier.copied) == 1
        assert "- taskId: gen-1" in ws.notifier.copied[0]
        assert "Merge prompt copied" in ws.notifier.infos

    @pytest.mark.asyncio
    async def test_open_instructions_choice(self, ws: _Workspace) -> None:
        ws.notifier.choice = ACTION_OPEN_INSTRUCTIONS
        ws.script_changes("tests/test_a.py\n", "", PATCH)
        ws.script_apply(check_code=1)

        result = await ws.engine().apply("gen-1", 0, ws.local_root, ws.run_root)
        await asyncio.sleep(0)

        assert ws.notifier.opened == [result.instructions_path]

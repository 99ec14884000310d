"""Tests for storyloop.runner.loop module."""

import json
from unittest.mock import patch, MagicMock

import pytest

from storyloop.agents.oracle import OracleReply
from storyloop.git import CheckpointError
from storyloop.git.runner import GitResult
from storyloop.lib.config import LoopConfig
from storyloop.runner.loop import (
    EXIT_FAILED,
    EXIT_OK,
    STATUS_EXHAUSTED,
    STATUS_FAILURE,
    STATUS_SUCCESS,
    BranchSetupError,
    IterationController,
    save_current_branch,
    setup_branch,
)

STORY_DONE = "<complete>STORY_DONE</complete>"
ALL_DONE = "<complete>ALL_DONE</complete>"


def reply(text="", exit_code=0):
    return OracleReply(exit_code=exit_code, output=text, text=text)


def story(story_id, passes=False):
    return {
        "id": story_id,
        "title": f"Story {story_id[-1]}",
        "priority": 1,
        "passes": passes,
        "acceptanceCriteria": ["it works"],
    }


def passes_flags(prd_file):
    return {s["id"]: s["passes"] for s in json.loads(prd_file.read_text())["userStories"]}


@pytest.fixture
def workdir(tmp_path):
    (tmp_path / "prompt.md").write_text("Implement the story.\n")
    (tmp_path / "progress.txt").write_text("# Progress Log\n")
    return tmp_path


def make_config(workdir, **overrides):
    values = dict(
        workdir=workdir,
        prd_file=workdir / "prd.json",
        progress_file=workdir / "progress.txt",
        prompt_file=workdir / "prompt.md",
        archive_dir=workdir / "archive",
        last_branch_file=workdir / ".last-branch",
        use_sandbox=False,
        pause_seconds=0,
    )
    values.update(overrides)
    return LoopConfig(**values)


def write_prd(workdir, stories):
    prd_file = workdir / "prd.json"
    prd_file.write_text(json.dumps({
        "projectName": "Demo",
        "branchName": "feature/demo",
        "description": "Demo project",
        "userStories": stories,
    }, indent=2))
    return prd_file


def make_oracle(*replies):
    oracle = MagicMock()
    oracle.invoke.side_effect = list(replies)
    return oracle


@pytest.fixture
def git():
    """Patch the git side effects used by the controller."""
    with patch("storyloop.runner.loop.checkpoint", return_value=True) as mock_checkpoint, \
         patch("storyloop.runner.loop.has_uncommitted_changes", return_value=False) as mock_dirty:
        yield MagicMock(checkpoint=mock_checkpoint, dirty=mock_dirty)


class TestRunTermination:
    """How a run ends."""

    def test_all_done_up_front_never_calls_oracle(self, workdir, git):
        write_prd(workdir, [story("US-001", passes=True), story("US-002", passes=True)])
        oracle = make_oracle()

        result = IterationController(make_config(workdir), oracle).run()

        assert result.status == STATUS_SUCCESS
        assert result.exit_code == EXIT_OK
        assert result.iterations == 0
        oracle.invoke.assert_not_called()
        git.checkpoint.assert_not_called()

    def test_budget_exhausted_without_changes(self, workdir, git):
        write_prd(workdir, [story(f"US-00{i}") for i in range(1, 6)])
        oracle = make_oracle(*[reply("still working") for _ in range(3)])

        result = IterationController(make_config(workdir, max_iterations=3), oracle).run()

        assert result.status == STATUS_EXHAUSTED
        assert result.exit_code == EXIT_OK
        assert result.iterations == 3
        assert oracle.invoke.call_count == 3
        assert result.checkpoints == []
        git.checkpoint.assert_not_called()

    def test_single_story_done(self, workdir, git):
        prd_file = write_prd(workdir, [story("US-001")])
        oracle = make_oracle(reply(f"Implemented.\n{STORY_DONE}"))

        result = IterationController(make_config(workdir), oracle).run()

        assert result.status == STATUS_SUCCESS
        assert result.exit_code == EXIT_OK
        assert result.iterations == 1
        assert passes_flags(prd_file) == {"US-001": True}
        git.checkpoint.assert_called_once_with(workdir, "Complete US-001: Story 1")
        assert result.checkpoints == ["Complete US-001: Story 1"]

    def test_last_story_on_final_iteration_is_success(self, workdir, git):
        write_prd(workdir, [story("US-001")])
        oracle = make_oracle(reply(STORY_DONE))

        result = IterationController(make_config(workdir, max_iterations=1), oracle).run()

        assert result.status == STATUS_SUCCESS

    def test_all_done_signal_stops_early(self, workdir, git):
        prd_file = write_prd(workdir, [story("US-001"), story("US-002")])
        oracle = make_oracle(reply(ALL_DONE))

        result = IterationController(make_config(workdir), oracle).run()

        assert result.status == STATUS_SUCCESS
        assert result.iterations == 1
        assert oracle.invoke.call_count == 1
        assert passes_flags(prd_file) == {"US-001": False, "US-002": False}
        git.checkpoint.assert_not_called()

    def test_blocked_fails_and_leaves_story_open(self, workdir, git):
        prd_file = write_prd(workdir, [story("US-001")])
        oracle = make_oracle(reply("<complete>BLOCKED: disk full</complete>"))

        result = IterationController(make_config(workdir), oracle).run()

        assert result.status == STATUS_FAILURE
        assert result.exit_code == EXIT_FAILED
        assert result.task_id == "US-001"
        assert result.reason == "blocked: disk full"
        assert passes_flags(prd_file) == {"US-001": False}
        git.checkpoint.assert_not_called()

    def test_oracle_error_checkpoints_then_fails(self, workdir, git):
        write_prd(workdir, [story("US-001"), story("US-002")])
        git.dirty.return_value = True
        oracle = make_oracle(reply("crashed", exit_code=2))

        result = IterationController(make_config(workdir), oracle).run()

        assert result.status == STATUS_FAILURE
        assert result.exit_code == EXIT_FAILED
        assert result.iterations == 1
        git.checkpoint.assert_called_once_with(workdir, "WIP: US-001 - iteration 1")

    def test_oracle_error_with_clean_tree_fails_without_commit(self, workdir, git):
        write_prd(workdir, [story("US-001")])
        oracle = make_oracle(reply("", exit_code=127))

        result = IterationController(make_config(workdir), oracle).run()

        assert result.status == STATUS_FAILURE
        assert "127" in result.reason
        git.checkpoint.assert_not_called()

    def test_checkpoint_error_fails_run(self, workdir, git):
        write_prd(workdir, [story("US-001"), story("US-002")])
        git.checkpoint.side_effect = CheckpointError("git commit failed: hook rejected")
        oracle = make_oracle(reply(STORY_DONE), reply(STORY_DONE))

        result = IterationController(make_config(workdir), oracle).run()

        assert result.status == STATUS_FAILURE
        assert result.exit_code == EXIT_FAILED
        assert "hook rejected" in result.reason
        assert oracle.invoke.call_count == 1

    def test_invalid_prd_mid_run_fails(self, workdir, git):
        prd_file = write_prd(workdir, [story("US-001"), story("US-002")])

        def corrupt(*args, **kwargs):
            prd_file.write_text("{broken")
            return reply("working")

        oracle = MagicMock()
        oracle.invoke.side_effect = corrupt

        result = IterationController(make_config(workdir), oracle).run()

        assert result.status == STATUS_FAILURE
        assert "prd.json" in result.reason

    def test_missing_prompt_file_fails(self, workdir, git):
        write_prd(workdir, [story("US-001")])

        def remove_prompt(*args, **kwargs):
            (workdir / "prompt.md").unlink()
            return reply("working")

        oracle = MagicMock()
        oracle.invoke.side_effect = remove_prompt

        result = IterationController(make_config(workdir), oracle).run()

        assert result.status == STATUS_FAILURE
        assert result.exit_code == EXIT_FAILED
        assert result.iterations == 2
        assert result.task_id == "US-001"
        assert "prompt.md" in result.reason
        assert oracle.invoke.call_count == 1

    def test_undecodable_prompt_file_fails(self, workdir, git):
        write_prd(workdir, [story("US-001")])
        (workdir / "prompt.md").write_bytes(b"\xff\xfe\xfa broken")
        oracle = make_oracle()

        result = IterationController(make_config(workdir), oracle).run()

        assert result.status == STATUS_FAILURE
        assert result.reason.startswith("Could not build prompt")
        oracle.invoke.assert_not_called()

    def test_exhausted_names_next_story(self, workdir, git, capsys):
        write_prd(workdir, [story("US-001"), story("US-002")])
        oracle = make_oracle(reply("still working"))

        result = IterationController(make_config(workdir, max_iterations=1), oracle).run()

        assert result.status == STATUS_EXHAUSTED
        assert "Next story: US-001 - Story 1" in capsys.readouterr().out

    def test_all_done_names_active_story(self, workdir, git, capsys):
        write_prd(workdir, [story("US-001", passes=True), story("US-002")])
        oracle = make_oracle(reply(ALL_DONE))

        result = IterationController(make_config(workdir), oracle).run()

        assert result.status == STATUS_SUCCESS
        assert "ALL_DONE (story: US-002 - Story 2)" in capsys.readouterr().out


class TestRunProgression:
    """Selection across iterations."""

    def test_resumes_at_first_open_story(self, workdir, git):
        write_prd(workdir, [story("US-001", passes=True), story("US-002")])
        oracle = make_oracle(reply(STORY_DONE))

        result = IterationController(make_config(workdir), oracle).run()

        prompt = oracle.invoke.call_args[0][0]
        assert '"id": "US-002"' in prompt
        assert '"id": "US-001"' not in prompt
        assert result.checkpoints == ["Complete US-002: Story 2"]

    def test_marks_only_the_completed_story(self, workdir, git):
        prd_file = write_prd(workdir, [story("US-001"), story("US-002"), story("US-003")])
        oracle = make_oracle(reply(STORY_DONE), reply("no marker"))

        IterationController(make_config(workdir, max_iterations=2), oracle).run()

        assert passes_flags(prd_file) == {"US-001": True, "US-002": False, "US-003": False}

    def test_stories_complete_in_order(self, workdir, git):
        prd_file = write_prd(workdir, [story("US-001"), story("US-002"), story("US-003")])
        oracle = make_oracle(reply(STORY_DONE), reply(STORY_DONE), reply(STORY_DONE))

        result = IterationController(make_config(workdir), oracle).run()

        assert result.status == STATUS_SUCCESS
        assert result.iterations == 3
        assert result.checkpoints == [
            "Complete US-001: Story 1",
            "Complete US-002: Story 2",
            "Complete US-003: Story 3",
        ]
        assert all(passes_flags(prd_file).values())

    def test_external_edits_are_picked_up(self, workdir, git):
        prd_file = write_prd(workdir, [story("US-001"), story("US-002"), story("US-003")])
        prompts = []

        def oracle_marks_next_story(prompt, **kwargs):
            prompts.append(prompt)
            if len(prompts) == 1:
                write_prd(workdir, [story("US-001"), story("US-002", passes=True), story("US-003")])
                return reply(STORY_DONE)
            return reply("")

        oracle = MagicMock()
        oracle.invoke.side_effect = oracle_marks_next_story

        IterationController(make_config(workdir, max_iterations=2), oracle).run()

        assert '"id": "US-003"' in prompts[1]
        assert passes_flags(prd_file)["US-001"] is True

    def test_wip_checkpoint_when_tree_changed(self, workdir, git):
        write_prd(workdir, [story("US-001")])
        git.dirty.return_value = True
        oracle = make_oracle(reply("partial"), reply("partial"))

        result = IterationController(make_config(workdir, max_iterations=2), oracle).run()

        assert result.status == STATUS_EXHAUSTED
        assert result.checkpoints == ["WIP: US-001 - iteration 1", "WIP: US-001 - iteration 2"]

    def test_nothing_to_commit_is_not_recorded(self, workdir, git):
        write_prd(workdir, [story("US-001"), story("US-002")])
        git.checkpoint.return_value = False
        oracle = make_oracle(reply(STORY_DONE), reply(STORY_DONE))

        result = IterationController(make_config(workdir), oracle).run()

        assert result.status == STATUS_SUCCESS
        assert result.checkpoints == []
        assert git.checkpoint.call_count == 2

    def test_pauses_between_iterations_only(self, workdir, git):
        write_prd(workdir, [story("US-001")])
        sleep = MagicMock()
        oracle = make_oracle(*[reply("") for _ in range(3)])

        config = make_config(workdir, max_iterations=3, pause_seconds=2.0)
        IterationController(config, oracle, sleep=sleep).run()

        assert sleep.call_count == 2
        sleep.assert_called_with(2.0)

    def test_passes_sandbox_flag(self, workdir, git):
        write_prd(workdir, [story("US-001")])
        oracle = make_oracle(reply(STORY_DONE))

        IterationController(make_config(workdir, use_sandbox=True), oracle).run()

        assert oracle.invoke.call_args.kwargs["sandbox"] is True


class TestPrompt:
    def test_prompt_layout(self, workdir, git):
        write_prd(workdir, [story("US-001")])
        (workdir / "progress.txt").write_text("learned: use pytest\n")
        oracle = make_oracle(reply(STORY_DONE))

        IterationController(make_config(workdir), oracle).run()

        prompt = oracle.invoke.call_args[0][0]
        assert prompt.startswith("# Context\n\nProject: Demo\nDemo project\n")
        assert "## Iteration 1" in prompt
        order = [
            prompt.index("## Current Story"),
            prompt.index("learned: use pytest"),
            prompt.index("Implement the story."),
        ]
        assert order == sorted(order)


class TestRunRecords:
    @patch("storyloop.runner.context.run_git")
    @patch("storyloop.runner.context.get_current_branch", return_value="feature/demo")
    def test_writes_result_and_iteration_logs(self, mock_branch, mock_run_git, workdir, git, tmp_path):
        mock_run_git.return_value = GitResult(returncode=0, stdout="abc123\n", stderr="")
        write_prd(workdir, [story("US-001")])
        oracle = make_oracle(reply(STORY_DONE))
        config = make_config(workdir, runs_dir=tmp_path / "runs")

        controller = IterationController(config, oracle)
        controller.run()

        result = json.loads((controller.ctx.run_dir / "result.json").read_text())
        assert result["status"] == "success"
        assert result["stories"] == {"done": 1, "total": 1}
        assert result["commit_sha"] == "abc123"
        assert oracle.invoke.call_args.kwargs["log_file"] == controller.ctx.run_dir / "iteration-1.log"
        assert "Iteration 1: US-001" in (controller.ctx.run_dir / "run.log").read_text()


class TestBranchSetup:
    @patch("storyloop.runner.loop.get_current_branch", return_value="main")
    def test_save_current_branch(self, mock_branch, workdir):
        config = make_config(workdir)
        assert save_current_branch(config) == "main"
        assert config.last_branch_file.read_text() == "main\n"

    @patch("storyloop.runner.loop.get_current_branch", return_value=None)
    def test_save_current_branch_falls_back_to_default(self, mock_branch, workdir):
        config = make_config(workdir, default_branch="trunk")
        assert save_current_branch(config) == "trunk"

    @patch("storyloop.runner.loop.create_branch")
    @patch("storyloop.runner.loop.branch_exists", return_value=False)
    def test_creates_missing_branch(self, mock_exists, mock_create, workdir):
        mock_create.return_value = GitResult(returncode=0, stdout="", stderr="")
        setup_branch(make_config(workdir), "feature/demo")
        mock_create.assert_called_once_with(workdir, "feature/demo")

    @patch("storyloop.runner.loop.checkout_branch")
    @patch("storyloop.runner.loop.branch_exists", return_value=True)
    def test_checkout_failure_raises(self, mock_exists, mock_checkout, workdir):
        mock_checkout.return_value = GitResult(returncode=1, stdout="", stderr="local changes would be overwritten")
        with pytest.raises(BranchSetupError, match="overwritten"):
            setup_branch(make_config(workdir), "feature/demo")

    @patch("storyloop.runner.loop.setup_branch")
    @patch("storyloop.runner.loop.get_current_branch", return_value="main")
    def test_prepare(self, mock_branch, mock_setup, workdir):
        write_prd(workdir, [story("US-001")])
        config = make_config(workdir)

        IterationController(config, MagicMock()).prepare()

        mock_setup.assert_called_once_with(config, "feature/demo")
        archived = list((workdir / "archive").iterdir())
        assert len(archived) == 1
        assert archived[0].name.startswith("progress_")
        assert (workdir / ".last-branch").read_text() == "main\n"

"""
Iteration controller.

Runs at most `max_iterations` iterations. Each one re-reads prd.json, picks
the first story that isn't done, renders the prompt, runs the oracle once,
classifies the reply and applies the matching side effect:

    ALL_DONE    stop, success
    STORY_DONE  mark the story done, commit "Complete <id>: <title>", continue
    BLOCKED     stop, failure; the story stays open
    no signal   commit "WIP: <id> - iteration <n>" if the tree changed;
                stop with failure if the oracle exited non-zero, else continue

A run also succeeds when no open story is left, and ends "exhausted" (a
warning, exit 0) when the budget runs out first. Re-running resumes at the
first open story.
"""

import logging
import time
from dataclasses import dataclass, field
from typing import Callable, Optional

from storyloop.agents.oracle import OracleAgent
from storyloop.git import (
    CheckpointError,
    branch_exists,
    checkout_branch,
    checkpoint,
    create_branch,
    get_current_branch,
    has_uncommitted_changes,
)
from storyloop.lib import output
from storyloop.lib.config import LoopConfig
from storyloop.lib.prompts import PromptError
from storyloop.lib.signals import OutcomeKind, classify
from storyloop.pm.models import Task, TaskList
from storyloop.pm.prd import PrdError, load_prd, mark_task_done, select_next_task
from storyloop.pm.progress import archive_progress, ensure_progress_file, read_progress
from storyloop.runner.context import RunContext
from storyloop.runner.prompt_context import render_iteration_prompt
from storyloop.workflow.fsm import RunFSM

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_FAILED = 1

STATUS_SUCCESS = "success"
STATUS_FAILURE = "failure"
STATUS_EXHAUSTED = "exhausted"


class BranchSetupError(Exception):
    """Could not switch to the working branch."""
    pass


@dataclass
class RunResult:
    """How a run ended."""
    status: str
    exit_code: int
    iterations: int
    task_id: Optional[str] = None
    reason: str = ""
    checkpoints: list[str] = field(default_factory=list)


def complete_message(task: Task) -> str:
    return f"Complete {task.id}: {task.title}"


def wip_message(task: Task, iteration: int) -> str:
    return f"WIP: {task.id} - iteration {iteration}"


def save_current_branch(config: LoopConfig) -> str:
    """Remember the branch we started on in .last-branch."""
    branch = get_current_branch(config.workdir) or config.default_branch
    config.last_branch_file.write_text(branch + "\n")
    return branch


def setup_branch(config: LoopConfig, branch: str) -> None:
    """Switch to the working branch, creating it from HEAD if needed.

    Raises:
        BranchSetupError: if git refuses
    """
    if branch_exists(config.workdir, branch):
        output.info(f"Checking out existing branch: {branch}")
        result = checkout_branch(config.workdir, branch)
    else:
        output.info(f"Creating new branch: {branch}")
        result = create_branch(config.workdir, branch)

    if not result.success:
        raise BranchSetupError(f"Could not switch to branch '{branch}': {result.output}")


class IterationController:
    """Drives one run. Strictly sequential: one story in flight at a time."""

    def __init__(self, config: LoopConfig, oracle: OracleAgent,
                 ctx: Optional[RunContext] = None,
                 sleep: Callable[[float], None] = time.sleep):
        self.config = config
        self.oracle = oracle
        self.ctx = ctx or RunContext.create(config)
        self.sleep = sleep
        self.fsm = RunFSM(on_transition=self.ctx.record_transition)
        self.checkpoints: list[str] = []

    def prepare(self) -> None:
        """One-off setup before the first iteration.

        Archives the previous progress log, remembers the starting branch,
        switches to the PRD's branch and makes sure progress.txt exists.

        Raises:
            PrdError, BranchSetupError
        """
        archived = archive_progress(self.config.progress_file, self.config.archive_dir)
        if archived:
            output.info(f"Archived previous progress to {archived.parent.name}/{archived.name}")

        save_current_branch(self.config)
        task_list = load_prd(self.config.prd_file)
        setup_branch(self.config, task_list.branch)

        if ensure_progress_file(self.config.progress_file):
            self.ctx.log(f"Created {self.config.progress_file.name}")

    def run(self) -> RunResult:
        """Run the loop until a terminal state. Never raises for loop-level failures."""
        self.ctx.log(f"Starting run {self.ctx.run_id} (max iterations: {self.config.max_iterations})")
        self.fsm.start()

        iteration = 0
        task: Optional[Task] = None
        task_list: Optional[TaskList] = None

        while True:
            try:
                task_list = load_prd(self.config.prd_file)
            except PrdError as e:
                self.fsm.abort()
                return self._halt_failure(iteration, task, f"Could not read prd.json: {e}", task_list)

            task = select_next_task(task_list)
            if task is None:
                self.fsm.nothing_left()
                output.success("━" * output.RULE_WIDTH)
                output.success("ALL STORIES COMPLETE!")
                output.success("━" * output.RULE_WIDTH)
                return self._finish(STATUS_SUCCESS, EXIT_OK, iteration, None,
                                    "all stories complete", task_list)

            if iteration >= self.config.max_iterations:
                self.fsm.exhaust()
                output.warn(f"Reached max iterations ({self.config.max_iterations})")
                output.info(f"Next story: {task.id} - {task.title}")
                output.info(f"Progress: {task_list.progress()} stories complete")
                output.info("Run again to continue")
                return self._finish(STATUS_EXHAUSTED, EXIT_OK, iteration, task.id,
                                    f"next story: {task.id}", task_list)

            if iteration > 0 and self.config.pause_seconds:
                self.sleep(self.config.pause_seconds)

            iteration += 1
            self.fsm.dispatch()
            result = self.run_iteration(iteration, task_list, task)
            if result is not None:
                return result
            self.fsm.next_iteration()

    def run_iteration(self, iteration: int, task_list: TaskList, task: Task) -> Optional[RunResult]:
        """One iteration. Returns a RunResult if the run must stop, else None."""
        output.rule()
        output.info(f"ITERATION {iteration}: {task.id} - {task.title}")
        output.info(f"Progress: {task_list.progress()} complete")
        output.rule()
        self.ctx.log(f"Iteration {iteration}: {task.id}")

        try:
            prompt = render_iteration_prompt(
                task_list, task, iteration,
                progress=read_progress(self.config.progress_file),
                template=self.config.prompt_file.read_text(encoding="utf-8"),
            )
        except (OSError, UnicodeDecodeError, PromptError) as e:
            self.fsm.abort()
            return self._halt_failure(iteration, task, f"Could not build prompt: {e}", task_list)

        output.info("Running oracle...")
        if self.config.use_sandbox:
            output.info("(sandbox mode enabled)")
        reply = self.oracle.invoke(
            prompt,
            sandbox=self.config.use_sandbox,
            log_file=self.ctx.iteration_log(iteration),
        )
        self.ctx.log(f"Oracle exited with {reply.exit_code}")

        if self.config.verbose:
            output.verbose_block(f"Oracle reply (exit {reply.exit_code})", reply.text)

        outcome = classify(reply.text)
        self.ctx.log(f"Outcome: {outcome}")

        try:
            if outcome.kind is OutcomeKind.ALL_DONE:
                self.fsm.all_done()
                output.success(f"Agent signaled ALL_DONE (story: {task.id} - {task.title})")
                return self._finish(STATUS_SUCCESS, EXIT_OK, iteration, task.id,
                                    "oracle signaled ALL_DONE", task_list)

            if outcome.kind is OutcomeKind.STORY_DONE:
                self.fsm.story_done()
                output.success(f"Story {task.id} completed")
                mark_task_done(self.config.prd_file, task.id)
                output.success(f"Marked {task.id} as complete in {self.config.prd_file.name}")
                self._checkpoint(complete_message(task))
                return None

            if outcome.kind is OutcomeKind.BLOCKED:
                self.fsm.blocked()
                output.error(f"Story blocked: {outcome.reason}")
                return self._halt_failure(iteration, task, f"blocked: {outcome.reason}", task_list)

            self.fsm.no_signal()
            if has_uncommitted_changes(self.config.workdir):
                output.info("Changes detected, committing...")
                self._checkpoint(wip_message(task, iteration))

            if reply.exit_code != 0:
                self.fsm.oracle_failed()
                output.error(f"Oracle exited with error code {reply.exit_code}")
                return self._halt_failure(iteration, task,
                                          f"oracle exited with code {reply.exit_code}", task_list)
            return None

        except (CheckpointError, PrdError) as e:
            self.fsm.abort()
            return self._halt_failure(iteration, task, str(e), task_list)

    def _checkpoint(self, message: str) -> None:
        created = checkpoint(self.config.workdir, message)
        self.ctx.log(f"Checkpoint {'created' if created else 'skipped (nothing to commit)'}: {message}")
        if created:
            self.checkpoints.append(message)

    def _halt_failure(self, iteration: int, task: Optional[Task], reason: str,
                      task_list: Optional[TaskList]) -> RunResult:
        label = f"{task.id} - {task.title}" if task else "none"
        output.error(f"Iteration {iteration} failed (story: {label})")
        output.error(f"Reason: {reason}")
        output.info("Check the output above for details")
        return self._finish(STATUS_FAILURE, EXIT_FAILED, iteration,
                            task.id if task else None, reason, task_list)

    def _finish(self, status: str, exit_code: int, iterations: int,
                task_id: Optional[str], reason: str,
                task_list: Optional[TaskList]) -> RunResult:
        self.ctx.log(f"Run finished: {status} after {iterations} iteration(s) ({reason})")
        try:
            self.ctx.write_result(
                status, exit_code, iterations,
                task_id=task_id,
                reason=reason,
                project=task_list.name if task_list else None,
                stories=(task_list.done_count, task_list.total) if task_list else None,
            )
        except OSError as e:
            logger.warning(f"Failed to write run result: {e}")

        return RunResult(
            status=status,
            exit_code=exit_code,
            iterations=iterations,
            task_id=task_id,
            reason=reason,
            checkpoints=list(self.checkpoints),
        )

"""
Per-update change workflow.

Each UpdateCandidate walks an explicit state machine over the shared
checkout:

    START -> BRANCH_CREATED -> FILE_REWRITTEN -> PUSHED -> PROPOSAL_OPENED -> DONE

A failing transition stops that candidate at FAILED and the batch moves on.
Nothing is rolled back: a pushed branch without a merge request stays on the
remote.
"""
import enum
import time
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Awaitable, Callable, Dict, List, Optional, Tuple

import aiofiles

from . import log
from .cancellation import CancelToken
from .errors import APIError, Cancelled, GitError, NothingToCommit, ProposalsCancelled
from .git import GitRepository
from .gitlab import GitLabClient, MergeRequest
from .scanner import UpdateCandidate

BRANCH_PREFIX = "img-upgr"


class Stage(enum.Enum):
    START = "start"
    BRANCH_CREATED = "branch-created"
    FILE_REWRITTEN = "file-rewritten"
    PUSHED = "committed-and-pushed"
    PROPOSAL_OPENED = "proposal-opened"
    DONE = "done"
    FAILED = "failed"


@dataclass(frozen=True)
class BranchProposal:
    branch_name: str
    base_branch: str
    commit_message: str
    title: str
    description: str


@dataclass(frozen=True)
class WorkflowState:
    candidate: UpdateCandidate
    stage: Stage = Stage.START
    proposal: Optional[BranchProposal] = None
    replacements: int = 0
    merge_request: Optional[MergeRequest] = None
    failed_stage: Optional[Stage] = None
    error: Optional[Exception] = None

    @property
    def succeeded(self) -> bool:
        return self.stage is Stage.DONE


@dataclass
class WorkflowSummary:
    outcomes: List[WorkflowState] = field(default_factory=list)

    @property
    def applied(self) -> List[WorkflowState]:
        return [o for o in self.outcomes if o.succeeded]

    @property
    def failed(self) -> List[WorkflowState]:
        return [o for o in self.outcomes if o.stage is Stage.FAILED]


# ----------------- NAMING -----------------


def sanitize_branch_name(name: str) -> str:
    return name.replace("/", "-").replace(":", "-").replace(".", "-")


def generate_branch_name(service_name: str, now: Optional[float] = None) -> str:
    timestamp = time.strftime("%Y%m%d-%H%M%S", time.localtime(now))
    return f"{BRANCH_PREFIX}/{sanitize_branch_name(service_name)}-{timestamp}"


def commit_message(candidate: UpdateCandidate) -> str:
    return f"Update Docker image for {candidate.service_name} in {Path(candidate.file_path).name}"


def proposal_title(candidate: UpdateCandidate) -> str:
    return f"Update {candidate.service_name} from {candidate.old_tag} to {candidate.new_tag}"


def proposal_description(candidate: UpdateCandidate, now: Optional[float] = None) -> str:
    generated = time.strftime("%Y-%m-%dT%H:%M:%S%z", time.localtime(now))
    return (
        "Automated update of Docker image by img-upgr\n\n"
        f"Service: `{candidate.service_name}`\n"
        f"File: `{Path(candidate.file_path).name}`\n"
        f"Update: `{candidate.old_tag}` → `{candidate.new_tag}`\n"
        f"Repository: `{candidate.repository}`\n"
        f"\nGenerated: {generated}"
    )


# ----------------- REWRITE -----------------


def rewrite_image_reference(text: str, old_image: str, new_image: str) -> Tuple[str, int]:
    """
    Replace every literal occurrence of old_image, comments included.

    Returns:
        (new_text, replacements)
    """
    count = text.count(old_image)
    if count == 0:
        return text, 0
    return text.replace(old_image, new_image), count


async def rewrite_manifest(path: Path, old_image: str, new_image: str) -> int:
    async with aiofiles.open(path, "r", encoding="utf-8", newline="") as f:
        text = await f.read()
    new_text, count = rewrite_image_reference(text, old_image, new_image)
    if count:
        async with aiofiles.open(path, "w", encoding="utf-8", newline="") as f:
            await f.write(new_text)
    return count


# ----------------- STATE MACHINE -----------------

Transition = Callable[[WorkflowState], Awaitable[WorkflowState]]


class ChangeWorkflow:
    """
    Turns UpdateCandidates into merge requests, one at a time, over a single
    checkout owned exclusively by this workflow.
    """

    def __init__(
        self,
        git: GitRepository,
        proposals: GitLabClient,
        target_branch: Optional[str] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.git = git
        self.proposals = proposals
        self.target_branch = target_branch
        self.clock = clock
        self._transitions: Dict[Stage, Transition] = {
            Stage.START: self.create_branch,
            Stage.BRANCH_CREATED: self.rewrite_file,
            Stage.FILE_REWRITTEN: self.commit_and_push,
            Stage.PUSHED: self.open_proposal,
            Stage.PROPOSAL_OPENED: self.finish,
        }

    async def base_branch(self) -> str:
        if self.target_branch:
            return self.target_branch
        return await self.git.default_branch()

    async def create_branch(self, state: WorkflowState) -> WorkflowState:
        c = state.candidate
        now = self.clock()
        base = await self.base_branch()
        proposal = BranchProposal(
            branch_name=generate_branch_name(c.service_name, now),
            base_branch=base,
            commit_message=commit_message(c),
            title=proposal_title(c),
            description=proposal_description(c, now),
        )
        log.info(f"Creating branch {proposal.branch_name} for updating {c.service_name} from {base}", indent=1)
        # leftovers of a failed candidate must not leak into this branch
        await self.git.discard_changes()
        await self.git.checkout(base)
        await self.git.pull(base)
        await self.git.create_branch(proposal.branch_name)
        return replace(state, stage=Stage.BRANCH_CREATED, proposal=proposal)

    async def rewrite_file(self, state: WorkflowState) -> WorkflowState:
        c = state.candidate
        log.info(f"Updating {c.service_name}: {c.old_image} -> {c.new_image}", indent=1)
        count = await rewrite_manifest(Path(c.file_path), c.old_image, c.new_image)
        if count == 0:
            log.warn(f"Could not find '{c.old_image}' in {c.file_path}", indent=1)
        return replace(state, stage=Stage.FILE_REWRITTEN, replacements=count)

    async def commit_and_push(self, state: WorkflowState) -> WorkflowState:
        log.info(f"Committing changes to {Path(state.candidate.file_path).name}", indent=1)
        await self.git.add_all()
        await self.git.commit(state.proposal.commit_message)
        await self.git.push()
        return replace(state, stage=Stage.PUSHED)

    async def open_proposal(self, state: WorkflowState) -> WorkflowState:
        source = await self.git.current_branch()
        target = await self.base_branch()
        log.info(f"Creating merge request for {state.candidate.service_name} targeting {target}", indent=1)
        mr = await self.proposals.create_merge_request(
            source, target, state.proposal.title, state.proposal.description
        )
        return replace(state, stage=Stage.PROPOSAL_OPENED, merge_request=mr)

    async def finish(self, state: WorkflowState) -> WorkflowState:
        return replace(state, stage=Stage.DONE)

    async def step(self, state: WorkflowState) -> WorkflowState:
        """Run one transition. Failures are folded into a FAILED state."""
        transition = self._transitions[state.stage]
        try:
            return await transition(state)
        except NothingToCommit as e:
            log.warn(f"No changes to commit for {state.candidate.service_name}", indent=1)
            return replace(state, stage=Stage.FAILED, failed_stage=state.stage, error=e)
        except (GitError, APIError, OSError, UnicodeDecodeError) as e:
            log.error(f"Failed to create merge request for {state.candidate.service_name}", e, indent=1)
            return replace(state, stage=Stage.FAILED, failed_stage=state.stage, error=e)

    async def run(self, candidate: UpdateCandidate, cancel: Optional[CancelToken] = None) -> WorkflowState:
        state = WorkflowState(candidate)
        while state.stage not in (Stage.DONE, Stage.FAILED):
            # an opened proposal is always recorded as done
            if cancel is not None and state.stage is not Stage.PROPOSAL_OPENED:
                cancel.raise_if_cancelled()
            state = await self.step(state)
        return state

    async def run_all(self, candidates: List[UpdateCandidate], cancel: Optional[CancelToken] = None) -> WorkflowSummary:
        """
        Process candidates sequentially; one failure never stops the rest.

        Raises:
            ProposalsCancelled: carrying the outcomes finished before cancellation
        """
        summary = WorkflowSummary()
        for candidate in candidates:
            try:
                state = await self.run(candidate, cancel)
            except Cancelled:
                raise ProposalsCancelled(summary.outcomes)
            summary.outcomes.append(state)
            if state.succeeded:
                log.info(f"Created merge request successfully for {candidate.service_name}")
        return summary

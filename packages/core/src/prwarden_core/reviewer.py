"""Core PR review orchestration.

One run, triggered per push:

    preconditions → reconcile prior threads → load state → pick files
    → summarize (model pool) → consolidate → review (model pool) → post

Stages hand a :class:`RunContext` value to each other instead of mutating a
shared object. Per-file work runs concurrently; each task returns its own
outcome and outcomes are merged only after the whole stage has settled.
A failing file is recorded and never aborts its siblings.
"""

from __future__ import annotations

import asyncio
import logging
import re
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Sequence

from rich.console import Console

from prwarden_core.event import PreconditionAbort, PullRequestContext, check_preconditions
from prwarden_core.gh.pull_request import GitHubClient, get_pull, get_repo
from prwarden_core.markers import COMMENT_TAG, SUMMARIZE_TAG
from prwarden_core.packer import attach_chains, pack_hunks, render_patches
from prwarden_core.patch import FileChange, Hunk, decompose
from prwarden_core.prompts import (
    Inputs,
    load_system_message,
    render_review_file_diff,
    render_summarize,
    render_summarize_changesets,
    render_summarize_file_diff,
    render_summarize_release_notes,
    render_summarize_short,
)
from prwarden_core.providers.anthropic import AnthropicChatModel
from prwarden_core.providers.base import ReviewComment, ReviewResult, Verdict, parse_review
from prwarden_core.providers.openai import OpenAIChatModel
from prwarden_core.state import ReviewState, add_in_progress_status, build_description, remove_in_progress_status
from prwarden_core.threads import (
    CommentThread,
    Reconciler,
    ReconcileResult,
    build_threads,
    describe_existing,
    get_resolve_policy,
    plan_reconciliation,
    threads_in_range,
)
from prwarden_core.tracker import AtBase, ReviewOrigin, choose_origin, select_files
from prwarden_core.utils.code import should_review_path
from prwarden_core.utils.tokens import TokenCounter, count_tokens

console = Console()
logger = logging.getLogger(__name__)

_SUMMARY_BATCH_SIZE = 10
_TRIAGE_RE = re.compile(r"\[TRIAGE\]:\s*(NEEDS_REVIEW|APPROVED)")


@dataclass(frozen=True)
class RunContext:
    """Values threaded through the pipeline; stages return updated copies."""

    pr: PullRequestContext
    inputs: Inputs
    state: ReviewState = field(default_factory=ReviewState)
    origin: ReviewOrigin | None = None


@dataclass(frozen=True)
class FileSummary:
    filename: str
    summary: str
    needs_review: bool = True


@dataclass
class FileReview:
    """Outcome of reviewing one file; exactly one task writes each instance."""

    filename: str
    comments: list[ReviewComment] = field(default_factory=list)
    lgtm_count: int = 0
    failure: str | None = None
    skipped: str | None = None
    partial: str | None = None
    thread_failures: list[str] = field(default_factory=list)


@dataclass
class RunReport:
    """Everything the final status message reports."""

    origin_sha: str = ""
    head_sha: str = ""
    selected: list[FileChange] = field(default_factory=list)
    ignored: list[str] = field(default_factory=list)
    not_processed: list[str] = field(default_factory=list)
    summaries_failed: list[str] = field(default_factory=list)
    reviews_failed: list[str] = field(default_factory=list)
    reviews_skipped: list[str] = field(default_factory=list)
    reviews_partial: list[str] = field(default_factory=list)
    threads_failed: list[str] = field(default_factory=list)
    unsummarized: set[str] = field(default_factory=set)
    unreviewed: set[str] = field(default_factory=set)
    review_count: int = 0
    lgtm_count: int = 0
    reviewed: bool = False


@dataclass
class ReviewSummary:
    """Result returned by run_review, enough for the CLI to report on the run."""

    repo: str
    pr_number: int
    head_sha: str
    reviewed_files: list[str] = field(default_factory=list)
    skipped_files: list[str] = field(default_factory=list)
    failed_files: list[str] = field(default_factory=list)
    unsummarized_files: list[str] = field(default_factory=list)
    total_comments: int = 0
    lgtm_count: int = 0
    comments: list[ReviewComment] = field(default_factory=list)
    reviewed_at: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())


def _get_chat_model(config: dict, model_name: str | None):
    provider = config["model"]
    if provider == "anthropic":
        return AnthropicChatModel(api_key=config["anthropic_api_key"], model=model_name)
    if provider == "openai":
        return OpenAIChatModel(api_key=config["openai_api_key"], model=model_name)
    raise ValueError(f"Unknown model provider: {provider!r}. Choose 'anthropic' or 'openai'.")


async def _bounded(limit: asyncio.Semaphore, coro):
    async with limit:
        return await coro


# ---------------------------------------------------------------------------
# Comment placement (pure)
# ---------------------------------------------------------------------------


def _place(comment: ReviewComment, hunks: Sequence[Hunk]) -> ReviewComment | None:
    """Anchor a comment inside one hunk's new range, or return None.

    GitHub rejects a review whose comments point outside the diff, so a
    comment whose end line is in no hunk is dropped and a start line outside
    that hunk is clamped to the hunk's first line.
    """
    if not comment.anchored:
        return None
    end = comment.end_line or comment.start_line
    start = comment.start_line or end
    if start > end:
        start, end = end, start
    for hunk in hunks:
        if hunk.new.contains(end):
            if not hunk.new.contains(start):
                start = hunk.new.start
            return replace(comment, start_line=start, end_line=end)
    return None


def decide_comments(
    result: ReviewResult,
    hunks: Sequence[Hunk],
    review_comment_lgtm: bool = False,
) -> tuple[list[ReviewComment], int]:
    """Pick the comments to post for one file and count LGTM verdicts.

    Approval-only comments are tallied instead of posted unless
    ``review_comment_lgtm`` is set. A response flagged ``lgtm`` with no
    comments at all counts as one LGTM.
    """
    lgtm = 0
    to_post = []
    if result.lgtm and not result.comments:
        lgtm += 1
    for comment in result.comments:
        if comment.verdict is Verdict.LGTM and not review_comment_lgtm:
            lgtm += 1
            continue
        placed = _place(comment, hunks)
        if placed is None:
            logger.debug(
                "Skipping comment on %s lines %d-%d: not inside the diff",
                comment.path,
                comment.start_line,
                comment.end_line,
            )
            continue
        to_post.append(placed)
    return to_post, lgtm


def _to_api_comment(comment: ReviewComment) -> dict:
    return {
        "path": comment.path,
        "start_line": comment.start_line,
        "line": comment.end_line,
        "body": f"{comment.comment}\n\n{COMMENT_TAG}",
    }


# ---------------------------------------------------------------------------
# Status message (pure)
# ---------------------------------------------------------------------------


def _details(title: str, items: Sequence[str]) -> str:
    if not items:
        return ""
    bullets = "\n* ".join(items)
    return f"<details>\n<summary>{title} ({len(items)})</summary>\n\n* {bullets}\n\n</details>\n"


def _build_status(report: RunReport) -> str:
    """Build the status block listing what was done and what was not."""
    lines = [
        "<details>\n<summary>Commits</summary>\n"
        f"Files that changed from the base of the PR and between {report.origin_sha} "
        f"and {report.head_sha} commits.\n</details>\n",
        _details("Files selected", [f"{c.filename} ({len(c.hunks)})" for c in report.selected]),
        _details("Files ignored due to filter", report.ignored),
        _details("Files not processed due to max files limit", report.not_processed),
        _details("Files not summarized due to errors", report.summaries_failed),
        _details("Threads not reconciled due to errors", report.threads_failed),
    ]
    if report.reviewed:
        lines += [
            _details("Files not reviewed due to errors", report.reviews_failed),
            _details("Files skipped from review", report.reviews_skipped),
            _details("Files partially reviewed (token budget)", report.reviews_partial),
            "<details>\n"
            f"<summary>Review comments generated ({report.review_count + report.lgtm_count})</summary>\n\n"
            f"* Review: {report.review_count}\n* LGTM: {report.lgtm_count}\n\n</details>\n",
            "---\n\n<details>\n<summary>Tips</summary>\n\n"
            "- Reply on a review comment to keep it open across pushes; unanswered bot comments are "
            "regenerated on every run.\n"
            "- Start a comment with `[required]` to pin it: it is never resolved automatically.\n"
            "- Add `/prwarden: ignore` anywhere in the PR description to pause reviews.\n\n</details>\n",
        ]
    return "\n".join(part for part in lines if part)


# ---------------------------------------------------------------------------
# Stages
# ---------------------------------------------------------------------------


async def reconcile_threads(
    client: GitHubClient, reconciler: Reconciler, pr_number: int, resolve_all: bool
) -> tuple[list[CommentThread], ReconcileResult]:
    """Delete stale bot threads, resolve the rest, return the threads still live."""
    try:
        comments = await client.list_review_comments(pr_number)
    except Exception as e:
        logger.warning("Error listing existing review comments: %s", e)
        return [], ReconcileResult(failures=[f"existing review comments ({e})"])

    threads = build_threads(comments)
    plan = plan_reconciliation(threads, resolve_all=resolve_all)
    logger.info(
        "Threads: %d total, %d stale, %d to resolve, %d kept",
        len(threads),
        len(plan.delete),
        len(plan.resolve),
        len(plan.keep),
    )
    result = await reconciler.apply(plan)
    deleted = set(result.deleted)
    return [t for t in threads if t.root.id not in deleted], result


async def load_file_changes(client: GitHubClient, files, base_sha: str) -> list[FileChange]:
    """Fetch base content and decompose each file's patch; drop files with no hunks."""

    async def _load(f) -> FileChange | None:
        hunks = decompose(f.patch)
        if not hunks:
            logger.info("No reviewable hunks in %s", f.filename)
            return None
        try:
            content = await client.get_file_content(f.filename, base_sha)
        except Exception as e:
            logger.warning("Failed to get base content of %s: %s. Reviewing the patch alone.", f.filename, e)
            content = ""
        return FileChange(filename=f.filename, content=content, diff=f.patch or "", hunks=tuple(hunks))

    loaded = await asyncio.gather(*(_load(f) for f in files))
    return [c for c in loaded if c is not None]


async def summarize_file(
    model, inputs: Inputs, change: FileChange, config: dict, counter: TokenCounter = count_tokens
) -> tuple[FileSummary | None, str | None]:
    """Summarize one file. Returns ``(summary, None)`` or ``(None, failure)``."""
    filename = change.filename
    if not change.diff:
        return None, f"{filename} (empty diff)"

    review_simple = config.get("review_simple_changes", False)
    prompt = render_summarize_file_diff(inputs.with_(filename=filename, file_diff=change.diff), review_simple)
    if counter(prompt) > config["light_token_limit"]:
        logger.info("summarize: diff tokens exceed limit, skipping %s", filename)
        return None, f"{filename} (diff tokens exceeds limit)"

    try:
        response = await model.chat(prompt)
    except Exception as e:
        logger.warning("summarize: model error for %s: %s", filename, e)
        return None, f"{filename} (error from model: {e})"
    if not response:
        return None, f"{filename} (nothing obtained from model)"

    if not review_simple:
        match = _TRIAGE_RE.search(response)
        if match is not None:
            summary = _TRIAGE_RE.sub("", response).strip()
            logger.info("%s triaged as %s", filename, match.group(1))
            return FileSummary(filename, summary, needs_review=match.group(1) == "NEEDS_REVIEW"), None
    return FileSummary(filename, response.strip()), None


async def consolidate(
    model, client: GitHubClient, run: RunContext, summaries: Sequence[FileSummary], config: dict
) -> tuple[RunContext, str]:
    """Fold per-file summaries into the running summary; return the final summary text."""
    inputs = run.inputs
    for i in range(0, len(summaries), _SUMMARY_BATCH_SIZE):
        raw = inputs.raw_summary
        for s in summaries[i : i + _SUMMARY_BATCH_SIZE]:
            raw += f"---\n{s.filename}: {s.summary}\n"
        inputs = inputs.with_(raw_summary=raw)
        response = await model.chat(render_summarize_changesets(inputs))
        if response:
            inputs = inputs.with_(raw_summary=response)
        else:
            logger.warning("summarize: nothing obtained when deduplicating changesets")

    final_summary = await model.chat(render_summarize(inputs))
    if not final_summary:
        logger.info("summarize: nothing obtained for the final summary")

    if not config.get("disable_release_notes", False):
        notes = await model.chat(render_summarize_release_notes(inputs))
        if notes:
            try:
                await client.update_description(
                    run.pr.number, build_description(run.pr.body, f"### Summary (generated)\n\n{notes}")
                )
            except Exception as e:
                logger.warning("release notes: error from GitHub: %s", e)
        else:
            logger.info("release notes: nothing obtained from model")

    short = await model.chat(render_summarize_short(inputs)) or inputs.short_summary
    inputs = inputs.with_(short_summary=short)
    state = replace(run.state, raw_summary=inputs.raw_summary, short_summary=short)
    return replace(run, inputs=inputs, state=state), final_summary


async def review_file(
    model,
    reconciler: Reconciler,
    inputs: Inputs,
    change: FileChange,
    threads: Sequence[CommentThread],
    config: dict,
    counter: TokenCounter = count_tokens,
) -> FileReview:
    """Pack, call, parse: the three steps for one file run strictly in order."""
    filename = change.filename
    outcome = FileReview(filename=filename)
    budget = config["heavy_token_limit"]
    ins = inputs.with_(filename=filename)

    plan = pack_hunks(change.hunks, budget, counter(render_review_file_diff(ins)), counter)
    if plan.empty:
        outcome.skipped = f"{filename} (diff too large)"
        return outcome
    if plan.unpacked:
        total = len(plan.packed) + len(plan.unpacked)
        first_left = plan.unpacked[0].new.start
        outcome.partial = f"{filename} ({len(plan.packed)} of {total} hunks, not reviewed from line {first_left})"

    chains = []
    for hunk in plan.packed:
        in_range = threads_in_range(threads, filename, hunk.new)
        if not in_range:
            chains.append("")
            continue
        try:
            await reconciler.resolve_overlapping(in_range, filename, hunk)
        except Exception as e:
            logger.warning("Failed to resolve threads on %s:%d: %s", filename, hunk.new.start, e)
            outcome.thread_failures.append(f"{filename}:{hunk.new.start} ({e})")
        chains.append("\n\n".join(t.chain_text() for t in in_range))
    packed, _ = attach_chains(plan, chains, budget, counter)

    try:
        response = await model.chat(render_review_file_diff(ins.with_(patches=render_patches(packed))), "{")
    except Exception as e:
        logger.warning("Failed to review %s: %s", filename, e)
        outcome.failure = f"{filename} ({e})"
        return outcome
    if not response:
        logger.info("review: nothing obtained from model for %s", filename)
        outcome.failure = f"{filename} (no response)"
        return outcome

    result = parse_review(response, filename)
    outcome.comments, outcome.lgtm_count = decide_comments(
        result, plan.packed, config.get("review_comment_lgtm", False)
    )
    logger.info("%s: %d comment(s), %d LGTM", filename, len(outcome.comments), outcome.lgtm_count)
    return outcome


# ---------------------------------------------------------------------------
# Pipeline
# ---------------------------------------------------------------------------


async def _summarize_and_review(
    run: RunContext,
    config: dict,
    client: GitHubClient,
    reconciler: Reconciler,
    changes: Sequence[FileChange],
    threads: Sequence[CommentThread],
    report: RunReport,
    commit_sha: str,
    light_model,
    heavy_model,
    counter: TokenCounter,
) -> tuple[RunContext, str, list[ReviewComment]]:
    """Summarize, consolidate, then review and submit. Fills ``report`` as it goes."""
    model_limit = asyncio.Semaphore(max(1, config["model_concurrency_limit"]))
    console.print(f"Summarizing {len(changes)} file(s)...")
    summary_outcomes = await asyncio.gather(
        *(_bounded(model_limit, summarize_file(light_model, run.inputs, c, config, counter)) for c in changes)
    )
    summaries = [s for s, _ in summary_outcomes if s is not None]
    report.summaries_failed = [failure for _, failure in summary_outcomes if failure is not None]
    report.unsummarized = {c.filename for c, (s, _) in zip(changes, summary_outcomes) if s is None}

    run, final_summary = await consolidate(heavy_model, client, run, summaries, config)

    all_comments: list[ReviewComment] = []
    if config.get("disable_review", False):
        return run, final_summary, all_comments

    report.reviewed = True
    triaged = {s.filename: s.needs_review for s in summaries}
    to_review = [c for c in changes if triaged.get(c.filename, True)]
    report.reviews_skipped = [
        f"{c.filename} (trivial changes)" for c in changes if not triaged.get(c.filename, True)
    ]

    console.print(f"Reviewing {len(to_review)} file(s)...")
    reviews = await asyncio.gather(
        *(
            _bounded(model_limit, review_file(heavy_model, reconciler, run.inputs, c, threads, config, counter))
            for c in to_review
        )
    )
    for outcome in reviews:
        all_comments.extend(outcome.comments)
        report.lgtm_count += outcome.lgtm_count
        report.threads_failed.extend(outcome.thread_failures)
        if outcome.failure:
            report.reviews_failed.append(outcome.failure)
            report.unreviewed.add(outcome.filename)
        if outcome.skipped:
            report.reviews_skipped.append(outcome.skipped)
        if outcome.partial:
            report.reviews_partial.append(outcome.partial)
        console.print(f"  {outcome.filename}: {len(outcome.comments)} comment(s).")
    report.review_count = len(all_comments)

    try:
        await client.submit_review(
            run.pr.number, commit_sha, _build_status(report), [_to_api_comment(c) for c in all_comments]
        )
    except Exception as e:
        logger.warning("Failed to submit review: %s", e)
        report.reviews_failed.append(f"review submission ({e})")
        return run, final_summary, []
    return replace(run, state=run.state.with_commit(run.pr.head_sha)), final_summary, all_comments


async def run_pipeline(
    pr: PullRequestContext,
    config: dict,
    client: GitHubClient,
    light_model,
    heavy_model,
    counter: TokenCounter = count_tokens,
) -> ReviewSummary | None:
    """Run one incremental review. Returns None when there is nothing to do."""
    try:
        check_preconditions(pr, review_drafts=config.get("review_draft_prs", False))
    except PreconditionAbort as e:
        console.print(f"[yellow]{e}[/yellow]")
        return None

    reconciler = Reconciler(client, pr.number, get_resolve_policy(config.get("resolve_policy", "touched")))
    threads, reconciled = await reconcile_threads(
        client, reconciler, pr.number, config.get("resolve_stale_threads", True)
    )

    system_message = load_system_message(config) + describe_existing(threads)
    existing = await client.find_comment_with_tag(pr.number, SUMMARIZE_TAG)
    existing_body = existing.body if existing is not None else ""
    state = ReviewState.from_comment(existing_body)
    run = RunContext(
        pr=pr,
        inputs=Inputs(
            system_message=system_message,
            title=pr.title,
            description=pr.description,
            raw_summary=state.raw_summary,
            short_summary=state.short_summary,
        ),
        state=state,
    )

    commit_ids = await client.list_commit_ids(pr.number)
    origin = choose_origin(state.reviewed_commit_ids, commit_ids, pr.base_sha, pr.head_sha)
    run = replace(run, origin=origin)
    if isinstance(origin, AtBase):
        console.print(f"[cyan]Will review from the base commit: {origin.sha[:7]}[/cyan]")
    else:
        console.print(f"[cyan]Incremental review: {origin.sha[:7]} → {pr.head_sha[:7]}[/cyan]")

    incremental, target = await asyncio.gather(
        client.compare(origin.sha, pr.head_sha),
        client.compare(pr.base_sha, pr.head_sha),
    )
    files = select_files(incremental.files, target.files)
    if not files or not incremental.commits:
        console.print("[yellow]No changed files since the last review. Nothing to do.[/yellow]")
        return None

    exclude = config.get("exclude", [])
    selected = [f for f in files if should_review_path(f.filename, exclude)]
    report = RunReport(
        origin_sha=origin.sha,
        head_sha=pr.head_sha,
        ignored=[f.filename for f in files if not should_review_path(f.filename, exclude)],
        threads_failed=list(reconciled.failures),
    )
    for name in report.ignored:
        console.print(f"  Skipping: {name}")

    changes = await load_file_changes(client, selected, pr.base_sha)
    if not changes:
        console.print("[yellow]No reviewable hunks in the changed files. Nothing to do.[/yellow]")
        return None

    max_files = config.get("max_files", 0)
    if max_files > 0 and len(changes) > max_files:
        report.not_processed = [c.filename for c in changes[max_files:]]
        changes = changes[:max_files]
    report.selected = changes

    placeholder = add_in_progress_status(existing_body, _build_status(report))
    await client.upsert_comment(pr.number, placeholder, SUMMARIZE_TAG)
    try:
        run, final_summary, all_comments = await _summarize_and_review(
            run,
            config,
            client,
            reconciler,
            changes,
            threads,
            report,
            incremental.commits[-1],
            light_model,
            heavy_model,
            counter,
        )
    except Exception:
        # Do not leave the placeholder behind on a crashed run.
        await client.upsert_comment(pr.number, remove_in_progress_status(placeholder), SUMMARIZE_TAG)
        raise

    summary_body = (
        f"{final_summary}\n"
        f"{run.state.render_summary_blocks()}\n"
        f"{_build_status(report)}\n"
        f"{run.state.render_commit_ids()}"
    )
    await client.upsert_comment(pr.number, summary_body, SUMMARIZE_TAG)
    console.print(f"\n[green]Review posted: {len(all_comments)} comment(s), {report.lgtm_count} LGTM.[/green]")

    return ReviewSummary(
        repo=pr.repo,
        pr_number=pr.number,
        head_sha=pr.head_sha,
        reviewed_files=[c.filename for c in changes if c.filename not in report.unreviewed],
        skipped_files=report.ignored + report.not_processed,
        failed_files=sorted(report.unreviewed),
        unsummarized_files=sorted(report.unsummarized),
        total_comments=len(all_comments),
        lgtm_count=report.lgtm_count,
        comments=all_comments,
    )


def run_review(
    repo: str,
    config: dict,
    pr_number: int | None = None,
    event_name: str | None = None,
    event_path: str | None = None,
    repo_obj=None,
) -> ReviewSummary | None:
    """Synchronous entry point used by the CLI.

    In GitHub Actions the pull request comes from the event payload
    (``event_name``/``event_path``); for a manual run pass ``pr_number``.
    """
    if event_path:
        pr = PullRequestContext.from_event_file(repo, event_name or "", event_path)
        # An aborted run must not touch the network, not even get_repo.
        try:
            check_preconditions(pr, review_drafts=config.get("review_draft_prs", False))
        except PreconditionAbort as e:
            console.print(f"[yellow]{e}[/yellow]")
            return None
        this_repo = repo_obj if repo_obj is not None else get_repo(repo, token=config["github_token"])
    elif pr_number is not None:
        this_repo = repo_obj if repo_obj is not None else get_repo(repo, token=config["github_token"])
        pr = PullRequestContext.from_pull(repo, get_pull(this_repo, pr_number))
    else:
        raise ValueError("Either an event payload or a PR number is required.")

    client = GitHubClient(this_repo, concurrency=config["github_concurrency_limit"])
    light = _get_chat_model(config, config.get("light_model"))
    heavy = _get_chat_model(config, config.get("heavy_model"))
    return asyncio.run(run_pipeline(pr, config, client, light, heavy))

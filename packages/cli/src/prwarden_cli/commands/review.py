"""review command — run an incremental AI review on a pull request."""

from __future__ import annotations

import os

import click
from rich.console import Console

from prwarden_core.reviewer import ReviewSummary, run_review

console = Console()


def _print_summary(summary: ReviewSummary) -> None:
    console.print(
        f"[bold]{summary.repo}#{summary.pr_number}[/bold] at {summary.head_sha[:7]}: "
        f"{len(summary.reviewed_files)} file(s) reviewed, "
        f"{summary.total_comments} comment(s), {summary.lgtm_count} LGTM"
    )
    if summary.skipped_files:
        console.print(f"  Skipped: {', '.join(summary.skipped_files)}")
    if summary.unsummarized_files:
        console.print(f"  [yellow]Not summarized: {', '.join(summary.unsummarized_files)}[/yellow]")
    if summary.failed_files:
        console.print(f"  [red]Not reviewed: {', '.join(summary.failed_files)}[/red]")


@click.command("review")
@click.option(
    "--repo",
    envvar="GITHUB_REPOSITORY",
    required=True,
    help="GitHub repository in owner/name format. Defaults to $GITHUB_REPOSITORY.",
)
@click.option(
    "--pr",
    "pr_number",
    type=int,
    default=None,
    help="Pull request number for a manual run. Omit inside GitHub Actions.",
)
@click.option(
    "--event-name",
    envvar="GITHUB_EVENT_NAME",
    default=None,
    help="Triggering event name. Defaults to $GITHUB_EVENT_NAME.",
)
@click.option(
    "--event-path",
    envvar="GITHUB_EVENT_PATH",
    type=click.Path(exists=True, dir_okay=False),
    default=None,
    help="Path to the event payload JSON. Defaults to $GITHUB_EVENT_PATH.",
)
@click.option(
    "--model",
    type=click.Choice(["anthropic", "openai"]),
    default=None,
    help="AI model provider. Overrides config file.",
)
@click.option(
    "--config",
    "config_path",
    default=".prwarden.yml",
    show_default=True,
    envvar="PRWARDEN_CONFIG",
    help="Path to the configuration file.",
)
@click.option("--disable-review", is_flag=True, help="Only summarize; post no review comments.")
@click.option("--disable-release-notes", is_flag=True, help="Do not write release notes into the PR.")
def review_cmd(
    repo: str,
    pr_number: int | None,
    event_name: str | None,
    event_path: str | None,
    model: str | None,
    config_path: str,
    disable_review: bool,
    disable_release_notes: bool,
):
    """Review the changes pushed to a pull request since the last review.

    \b
    Required environment variables:
      GITHUB_TOKEN         GitHub token (or use gh CLI)
      ANTHROPIC_API_KEY    Required when using --model anthropic
      OPENAI_API_KEY       Required when using --model openai
    """
    from prwarden_cli.auth import resolve_github_token
    from prwarden_core.config import load_config

    config = load_config(
        config_path,
        cli_overrides={
            "model": model,
            # Flags left unset must not override the config file.
            "disable_review": disable_review or None,
            "disable_release_notes": disable_release_notes or None,
        },
    )

    token = resolve_github_token()
    if not token:
        raise click.UsageError(
            "No GitHub token found. Set GITHUB_TOKEN or run `gh auth login` first.\n"
            "Create a token at https://github.com/settings/tokens"
        )
    config["github_token"] = token

    if config["model"] == "anthropic" and not config.get("anthropic_api_key"):
        raise click.UsageError("ANTHROPIC_API_KEY environment variable is not set.")
    if config["model"] == "openai" and not config.get("openai_api_key"):
        raise click.UsageError("OPENAI_API_KEY environment variable is not set.")

    if pr_number is not None:
        # A manual run reviews the given PR even inside Actions.
        event_path = None
    elif not event_path:
        raise click.UsageError("Pass --pr, or run inside GitHub Actions with GITHUB_EVENT_PATH set.")

    summary = run_review(
        repo=repo,
        config=config,
        pr_number=pr_number,
        event_name=event_name or os.environ.get("GITHUB_EVENT_NAME"),
        event_path=event_path,
    )
    if summary is not None:
        _print_summary(summary)

"""Main application entry point for PR Pulse."""

from __future__ import annotations

import argparse
import asyncio
import getpass
import logging
import sys
from datetime import datetime
from pathlib import Path

from config import load_config
from dashboard import Dashboard, QuickAction
from github_client import GitHubAPIClient, GitHubClient, MockGitHubClient
from models import (
    ActivityEvent,
    ActivityEventType,
    Config,
    FilterState,
    PullRequestTab,
    ReadinessKind,
    parse_timestamp,
)
from notifications import (
    MemoryNotificationCenter,
    NotificationCenter,
    NotificationDispatcher,
    SlackNotificationCenter,
)
from scheduler import RefreshScheduler
from secret_store import GhCliSecretStore, SecretStore, SecretStoreError
from store import PullRequestStore
from url_builder import build_tab_search_url

READINESS_ICONS = {
    ReadinessKind.READY: "✅",
    ReadinessKind.PENDING: "⏳",
    ReadinessKind.BLOCKED: "⛔",
    ReadinessKind.CHECKING: "🔄",
}


def setup_logging(log_level: str) -> None:
    """
    Configure logging for the application.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
    """
    logging.basicConfig(
        level=getattr(logging, log_level),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )


def build_dashboard(config: Config, secret_store: SecretStore) -> Dashboard:
    """Wire the store, client, notifier and scheduler into a Dashboard."""
    store = PullRequestStore(config.data_dir)

    center: NotificationCenter
    if config.slack_webhook_url:
        center = SlackNotificationCenter(
            config.slack_webhook_url, timeout=config.api_timeout, store=store
        )
    else:
        center = MemoryNotificationCenter()
    notifier = NotificationDispatcher(store, center)

    # The watched tab reads the dashboard's current settings on every fetch
    dashboard_ref: list[Dashboard] = []

    client: GitHubClient
    if config.use_mock_client:
        client = MockGitHubClient(page_size=config.page_size)
    else:
        client = GitHubAPIClient(
            token_provider=secret_store.get_secret,
            watched_repositories_provider=lambda: (
                dashboard_ref[0].settings.watched_repositories if dashboard_ref else []
            ),
            page_size=config.page_size,
            timeout=config.api_timeout,
        )

    dashboard = Dashboard(
        client=client,
        store=store,
        notifier=notifier,
        scheduler=RefreshScheduler(),
        holidays_country=config.holidays_country,
    )
    dashboard_ref.append(dashboard)
    return dashboard


def print_tabs(dashboard: Dashboard, tabs: list[PullRequestTab]) -> None:
    for tab in tabs:
        state = dashboard.list_states[tab]
        print("\n" + "=" * 80)
        print(f"{tab.title} ({len(state.displayed_items)} shown)")
        if tab is not PullRequestTab.WATCHED:
            print(f"🔗 {build_tab_search_url(tab)}")
        print("=" * 80)
        for item in state.displayed_items:
            status = item.status
            marker = "★" if status.is_actionable else " "
            badge = f" [{item.badge_text}]" if item.badge_text else ""
            print(f"{marker} {READINESS_ICONS[status.readiness.kind]} {item.pull_request.title}{badge}")
            print(
                f"    {item.subtitle} · {status.readiness.label} · "
                f"👍 {status.approvals} · ✋ {status.changes_requested} · id={item.id}"
            )
        if state.has_next_page:
            print("    … more available")

    print(f"\nActionable: {dashboard.badge_count} · {dashboard.connection_status_text}")
    for error in dashboard.connection_errors:
        print(f"  ⚠️  {error}")
    if dashboard.persistence_error:
        print(f"  💾 {dashboard.persistence_error}")


async def run_refresh(dashboard: Dashboard, args: argparse.Namespace) -> int:
    dashboard.set_filters(
        FilterState(
            search_text=args.search or "",
            actionable_only=args.actionable_only,
            hide_reviewed=args.hide_reviewed,
            hide_snoozed=args.hide_snoozed,
            hide_not_applicable=args.hide_not_applicable,
        )
    )

    if args.tab == "all":
        await dashboard.bootstrap()
        await dashboard.refresh_all()
        tabs = list(PullRequestTab)
    else:
        tab = PullRequestTab(args.tab)
        dashboard.selected_tab = tab
        await dashboard.bootstrap()
        # Loads only if refresh-on-launch did not already
        await dashboard.select_tab(tab)
        tabs = [tab]

    if args.watch:
        dashboard.subscribe(lambda d: print_tabs(d, tabs))
        print_tabs(dashboard, tabs)
        logging.getLogger(__name__).info(
            f"Watching; refreshing every {dashboard.settings.refresh_interval:.0f}s (Ctrl-C to stop)"
        )
        try:
            await asyncio.Event().wait()
        finally:
            dashboard.shutdown()
    else:
        dashboard.shutdown()
        print_tabs(dashboard, tabs)

    return 1 if dashboard.connection_errors else 0


async def run_action(dashboard: Dashboard, args: argparse.Namespace) -> int:
    dashboard.settings = await dashboard.store.get_settings()
    until = None
    if args.command == "todo":
        action = QuickAction.MARK_TODO
    elif args.command == "na":
        action = QuickAction.MARK_NOT_APPLICABLE
    elif args.command == "clear":
        action = QuickAction.CLEAR_OVERRIDE
    elif args.business_day:
        action = QuickAction.SNOOZE_NEXT_BUSINESS_DAY
    elif args.until:
        action = QuickAction.SNOOZE_UNTIL
        until = parse_timestamp(args.until)
        if until is None:
            print(f"❌ Invalid --until timestamp '{args.until}'", file=sys.stderr)
            return 2
    else:
        action = QuickAction.SNOOZE_TOMORROW

    override = await dashboard.perform(action, args.pr_id, until=until)
    snoozed = (
        f", snoozed until {override.snoozed_until.astimezone().strftime('%Y-%m-%d %H:%M')}"
        if override.snoozed_until
        else ""
    )
    print(f"{args.pr_id}: {override.state.value}{snoozed}")
    return 1 if dashboard.persistence_error else 0


async def run_digest(dashboard: Dashboard, args: argparse.Namespace) -> int:
    dashboard.settings = await dashboard.store.get_settings()
    if args.record:
        event_type = (
            ActivityEventType.OPENED_MY_PR if args.record == "opened" else ActivityEventType.REVIEWED_PR
        )
        await dashboard.record_activity(ActivityEvent(type=event_type, date=datetime.now().astimezone()))
    else:
        await dashboard.update_digest()
    snapshot = dashboard.digest_snapshot
    print(f"📊 Digest ({snapshot.timeframe_description})")
    print(f"  Opened PRs:   {snapshot.opened_count}")
    print(f"  Reviewed PRs: {snapshot.reviewed_count}")
    return 0


async def run_diagnostics(dashboard: Dashboard, args: argparse.Namespace) -> int:
    dashboard.settings = await dashboard.store.get_settings()
    if args.output:
        path = dashboard.export_diagnostics(args.output)
        print(f"Diagnostics written to {path}")
    else:
        print(dashboard.diagnostics_report())
    return 0


def run_token(secret_store: SecretStore, args: argparse.Namespace) -> int:
    if args.token_command == "set":
        token = sys.stdin.readline().strip() if not sys.stdin.isatty() else getpass.getpass("GitHub token: ")
        secret_store.set_secret(token)
        print("✅ Token saved")
    elif args.token_command == "clear":
        secret_store.clear_secret()
        print("✅ Token cleared")
    else:
        print("Token available" if secret_store.get_secret() else "No token found")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="pr-pulse",
        description="Track your pull requests, triage them locally and get notified",
    )
    parser.add_argument("--mock", action="store_true", help="Use the built-in mock dataset")
    subparsers = parser.add_subparsers(dest="command", required=True)

    refresh = subparsers.add_parser("refresh", help="Fetch and show pull requests")
    refresh.add_argument(
        "--tab",
        choices=["all"] + [tab.value for tab in PullRequestTab],
        default="all",
    )
    refresh.add_argument("--search", help="Filter by title or repository")
    refresh.add_argument("--actionable-only", action="store_true")
    refresh.add_argument("--hide-reviewed", action="store_true")
    refresh.add_argument("--hide-snoozed", action="store_true")
    refresh.add_argument("--hide-not-applicable", action="store_true")
    refresh.add_argument("--watch", action="store_true", help="Keep refreshing on the schedule")

    for name, help_text in (
        ("todo", "Flag a pull request as TODO"),
        ("na", "Mark a pull request as not applicable"),
        ("clear", "Clear the override of a pull request"),
    ):
        sub = subparsers.add_parser(name, help=help_text)
        sub.add_argument("pr_id")

    snooze = subparsers.add_parser("snooze", help="Snooze a pull request")
    snooze.add_argument("pr_id")
    group = snooze.add_mutually_exclusive_group()
    group.add_argument("--until", help="ISO 8601 timestamp")
    group.add_argument("--business-day", action="store_true", help="Until the next business day")

    digest = subparsers.add_parser("digest", help="Show the activity digest")
    digest.add_argument("--record", choices=["opened", "reviewed"], help="Record an activity event")

    diagnostics = subparsers.add_parser("diagnostics", help="Show or export diagnostics")
    diagnostics.add_argument("--output", type=Path, help="Directory to write the report to")

    token = subparsers.add_parser("token", help="Manage the GitHub token")
    token.add_argument("token_command", choices=["set", "clear", "status"])

    return parser


def main(argv: list[str] | None = None) -> int:
    """
    Main entry point for PR Pulse.

    Returns:
        Exit code (0 for success, 1 for error)
    """
    args = build_parser().parse_args(argv)

    try:
        config = load_config()
        if args.mock:
            config.use_mock_client = True
        setup_logging(config.log_level)
        logger = logging.getLogger(__name__)
        logger.debug(f"Configuration: data_dir={config.data_dir}, log_level={config.log_level}")

        secret_store = GhCliSecretStore()
        if args.command == "token":
            return run_token(secret_store, args)

        dashboard = build_dashboard(config, secret_store)
        if args.command == "refresh":
            return asyncio.run(run_refresh(dashboard, args))
        if args.command in ("todo", "na", "clear", "snooze"):
            return asyncio.run(run_action(dashboard, args))
        if args.command == "digest":
            return asyncio.run(run_digest(dashboard, args))
        return asyncio.run(run_diagnostics(dashboard, args))

    except KeyboardInterrupt:
        print("\n⚠️  Interrupted by user", file=sys.stderr)
        return 130

    except (ValueError, SecretStoreError) as e:
        print(f"❌ {e}", file=sys.stderr)
        return 1

    except Exception as e:
        logger = logging.getLogger(__name__)
        logger.error(f"❌ Error: {e}", exc_info=True)
        return 1


if __name__ == "__main__":
    sys.exit(main())

#!/usr/bin/env python3
"""
Command-line entry point for the YOLO dataset curator.

Each subcommand opens the dataset, runs one operation and prints a short
report. Long scans run on a background ScanJob; Ctrl+C cancels them at the
next image and the partial result is still printed.
"""

import argparse
import dataclasses
import logging
import sys

from .. import __version__
from ..config.schemas import (
    BalanceCategory,
    CuratorConfig,
    SelectionStrategy,
    load_config,
)
from ..core.exceptions import CuratorError
from ..core.filtering import FilterCriteria, PlayerCountFilter, TeamFilter
from ..core.session import CurationSession
from ..core.staging import StagingArea
from ..data.layout import Split

logger = logging.getLogger(__name__)


def setup_logging(log_level: object = logging.INFO) -> None:
    """Console logging only; log files are left to the embedding application."""
    handlers = [logging.StreamHandler(sys.stdout)]

    logging.basicConfig(
        level=log_level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        handlers=handlers,
        force=True,
    )
    logger.debug(f"Python version: {sys.version}")


def _add_split(parser, required=True):
    parser.add_argument(
        "--split",
        choices=[s.value for s in Split],
        required=required,
        help="Dataset split to operate on",
    )


def parse_arguments(argv=None) -> argparse.Namespace:
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        description="YOLO dataset curator - clean and balance detection datasets",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  yolo-curator info ./dataset
  yolo-curator near-black ./dataset --split train --stage
  yolo-curator filter ./dataset --split val --team ct-only --count single
  yolo-curator balance ./dataset --split train
  yolo-curator integrity ./dataset --split train --remove
  yolo-curator staging ./dataset --restore
  yolo-curator rebalance ./dataset --strategy oldest-first --execute
  yolo-curator rebalance ./dataset --from train --to val --category background
        """,
    )
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        default="INFO",
        help="Set the logging level (default: INFO)",
    )
    parser.add_argument("--config", type=str, help="YAML configuration file")
    parser.add_argument(
        "--version", action="version", version=f"yolo-curator {__version__}"
    )

    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("info", help="Show split sizes and class names")
    p.add_argument("root", help="Dataset root directory")

    p = sub.add_parser("near-black", help="Find images whose dominant color is black")
    p.add_argument("root", help="Dataset root directory")
    _add_split(p)
    p.add_argument(
        "--stage",
        action="store_true",
        help="Move matches to the staging area (restore with 'staging --restore')",
    )

    p = sub.add_parser("filter", help="List images matching team/player-count filters")
    p.add_argument("root", help="Dataset root directory")
    _add_split(p)
    p.add_argument(
        "--team", choices=[t.value for t in TeamFilter], default=TeamFilter.ALL.value
    )
    p.add_argument(
        "--count",
        choices=[c.value for c in PlayerCountFilter],
        default=PlayerCountFilter.ANY.value,
    )

    p = sub.add_parser("balance", help="Category distribution and recommendations")
    p.add_argument("root", help="Dataset root directory")
    _add_split(p)

    p = sub.add_parser("integrity", help="Find images without labels and vice versa")
    p.add_argument("root", help="Dataset root directory")
    _add_split(p)
    p.add_argument(
        "--remove", action="store_true", help="Permanently delete the orphaned files"
    )

    p = sub.add_parser("staging", help="Inspect files left in the staging area")
    p.add_argument("root", help="Dataset root directory")
    group = p.add_mutually_exclusive_group(required=True)
    group.add_argument("--list", action="store_true", help="List staged files")
    group.add_argument(
        "--restore", action="store_true", help="Move staged files back into the dataset"
    )
    group.add_argument(
        "--purge", action="store_true", help="Permanently delete staged files"
    )

    p = sub.add_parser(
        "rebalance",
        help="Move images between splits toward the target ratios",
        description="Without --from/--to/--category, plan moves between all "
        "splits toward the configured split ratios.",
    )
    p.add_argument("root", help="Dataset root directory")
    p.add_argument("--from", dest="from_split", choices=[s.value for s in Split])
    p.add_argument("--to", dest="to_split", choices=[s.value for s in Split])
    p.add_argument("--category", choices=[_slug(c) for c in BalanceCategory])
    p.add_argument("--strategy", choices=[_slug(s) for s in SelectionStrategy])
    p.add_argument("--seed", type=int, help="Seed for the random strategy")
    p.add_argument(
        "--execute", action="store_true", help="Move the files (default: only show the plan)"
    )

    args = parser.parse_args(argv)
    if args.command == "rebalance":
        given = [args.from_split, args.to_split, args.category]
        if any(given) and not all(given):
            parser.error("rebalance: --from, --to and --category go together")
    return args


def _slug(member) -> str:
    return member.name.lower().replace("_", "-")


def _progress_logger(label: str):
    def report(processed: int, total: int):
        step = max(1, total // 10)
        if processed % step == 0 or processed == total:
            logger.info(f"{label}: {processed}/{total}")

    return report


def _run_job(job):
    """Wait for a ScanJob, turning Ctrl+C into a cooperative cancel."""
    try:
        while job.is_alive():
            job.join(0.2)
    except KeyboardInterrupt:
        logger.warning("Interrupted, cancelling scan...")
        job.cancel()
    return job.wait()


def cmd_info(session: CurationSession, args) -> int:
    splits = session.open_dataset(args.root)
    print(f"Dataset: {session.root_dir}")
    for split in splits:
        entries = session.entries(split)
        warned = sum(1 for e in entries if e.parsed_label.warnings)
        print(f"  {split.value:<6} {len(entries):>7} images ({warned} with label warnings)")
    names = ", ".join(f"{k}={v}" for k, v in sorted(session.config.class_names.items()))
    print(f"Classes: {names}")
    pending = session.staging.pending_records()
    if pending:
        print(f"Staged from a previous run: {len(pending)}")
    return 0


def cmd_near_black(session: CurationSession, args) -> int:
    session.open_dataset(args.root, [args.split])
    job = session.start_near_black_scan(
        args.split, progress_callback=_progress_logger("Near-black scan")
    )
    summary = _run_job(job)

    for entry, result in summary.results:
        print(f"{entry.image_path}  dominant RGB {result.dominant_rgb}")
    print(
        f"{summary.matched} near-black of {summary.processed} processed "
        f"({summary.failed} unreadable){' - cancelled' if summary.cancelled else ''}"
    )

    if args.stage and summary.matched:
        deleted, errors = session.delete_near_black(summary)
        print(f"Staged {deleted} images in {session.staging.root}")
        for path, message in errors:
            print(f"  failed: {path}: {message}")
        return 1 if errors else 0
    return 0


def cmd_filter(session: CurationSession, args) -> int:
    session.open_dataset(args.root, [args.split])
    criteria = FilterCriteria(TeamFilter(args.team), PlayerCountFilter(args.count))
    entries = session.entries(args.split)
    result = session.filter(args.split, criteria)
    for index in result.indices:
        print(entries[index].image_path)
    print(f"{result.count} of {len(entries)} images match")
    return 0


def cmd_balance(session: CurationSession, args) -> int:
    session.open_dataset(args.root, [args.split])
    job = session.start_balance_analysis(
        args.split, progress_callback=_progress_logger("Balance analysis")
    )
    report = _run_job(job)

    print(f"Balance of {args.split} ({report.processed}/{report.total} images)")
    for category, count in report.counts.items():
        print(f"  {category.label:<11} {count:>7}  {report.percentages[category]:5.1f}%")
    print("Recommendations:")
    for line in report.recommendations:
        print(f"  {line}")
    if report.cancelled:
        print("(cancelled - partial counts)")
    return 0


def cmd_integrity(session: CurationSession, args) -> int:
    session.open_dataset(args.root, [args.split])
    report = session.analyze_integrity(args.split)
    for issue in report.issues:
        print(f"{issue.kind.value}: {issue.path} (expected {issue.expected_counterpart})")
    print(
        f"{len(report.images_without_labels)} images without labels, "
        f"{len(report.labels_without_images)} labels without images"
    )
    if args.remove and report.total_issues:
        removed, errors = session.remove_orphans(report.issues)
        print(f"Removed {removed} orphaned files")
        return 1 if errors else 0
    return 0


def cmd_staging(config: CuratorConfig, args) -> int:
    if args.restore:
        session = CurationSession(config)
        session.open_dataset(args.root)
        restored = session.recover_staged()
        print(f"Restored {restored} staged entries")
        return 0

    staging = StagingArea(config.staging_dir_for(args.root))
    records = staging.pending_records()
    if args.list:
        for record in records:
            print(f"[{record.split}] {record.image_path} <- {record.staged_image_path}")
        print(f"{len(records)} staged entries in {staging.root}")
        return 0

    for record in records:
        staging.purge(record)
    print(f"Purged {len(records)} staged entries")
    return 0


def cmd_rebalance(session: CurationSession, args) -> int:
    overrides = {}
    if args.strategy:
        overrides["selection_strategy"] = SelectionStrategy.parse(args.strategy)
    if args.seed is not None:
        overrides["seed"] = args.seed
    if overrides:
        session.config = dataclasses.replace(
            session.config,
            rebalance=dataclasses.replace(session.config.rebalance, **overrides),
        )

    session.open_dataset(args.root)
    if args.category:
        plan = session.plan_rebalance(args.from_split, args.to_split, args.category)
        print(
            f"Move {len(plan)} of {plan.count_to_move} excess "
            f"{plan.category.label} images from {plan.from_split.value} "
            f"to {plan.to_split.value}"
        )
    else:
        plan = session.plan_global_rebalance()
        for group in plan.groups:
            print(f"Move {group.count} images from {group.from_split.value} to {group.to_split.value}")
        if plan.target_sizes:
            targets = ", ".join(f"{s.value}={n}" for s, n in plan.target_sizes.items())
            print(f"Target split sizes: {targets}")
        print(f"{plan.total_moves} moves planned")

    if not args.execute or not plan.actions:
        return 0

    job = session.start_rebalance(plan, progress_callback=_progress_logger("Rebalance"))
    result = _run_job(job)
    for r in result.results:
        if not r.success:
            print(f"  failed: {r.action.image_path}: {r.error}")
    print(
        f"Moved {result.succeeded} of {result.total} images"
        f"{' - cancelled' if result.cancelled else ''}"
    )
    return 1 if result.failed else 0


COMMANDS = {
    "info": cmd_info,
    "near-black": cmd_near_black,
    "filter": cmd_filter,
    "balance": cmd_balance,
    "integrity": cmd_integrity,
    "rebalance": cmd_rebalance,
}


def main(argv=None) -> int:
    """
    Application entry point.

    Returns the process exit code: 0 on success, 1 on failure.
    """
    args = parse_arguments(argv)
    setup_logging(getattr(logging, args.log_level.upper()))

    try:
        config = load_config(args.config) if args.config else CuratorConfig()
        if args.command == "staging":
            return cmd_staging(config, args)
        # No close(): staged files stay recoverable after the CLI exits.
        session = CurationSession(config)
        return COMMANDS[args.command](session, args)
    except (CuratorError, RuntimeError, ValueError, OSError) as e:
        logger.error(f"{args.command} failed: {e}")
        return 1


if __name__ == "__main__":
    sys.exit(main())

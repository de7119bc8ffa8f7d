"""CLI entry point: ``python -m routercam job.json -o output.nc``"""

from __future__ import annotations

import argparse
import sys
from pathlib import Path

from .config.machine_profiles import get_machine, list_machines
from .config.settings import AppSettings
from .core.errors import BatchAbortedError, RouterCamError
from .core.job import export_batch
from .core.project import load_job
from .gcode.post import get_profile, list_profiles
from .gcode.validate import validate_plans


def _build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="routercam",
        description="Generate router G-code from a JSON job file.",
    )
    p.add_argument("job", type=Path, nargs="?", default=None,
                   help="Input job file (.json)")
    p.add_argument(
        "-o", "--output", type=Path, default=None,
        help="Output program (default: <job> with the post's extension)",
    )
    p.add_argument("--post", default=None,
                   help=f"Post-processor preset ({', '.join(list_profiles())})")
    p.add_argument("--machine", default=None,
                   help="Machine preset (overrides the job file)")
    p.add_argument("--best-effort", action="store_true",
                   help="Skip failing toolpaths instead of aborting")
    p.add_argument("--skip-validate", action="store_true",
                   help="Skip machine-limit validation")
    p.add_argument("--list-posts", action="store_true",
                   help="List post-processor presets and exit")
    p.add_argument("--list-machines", action="store_true",
                   help="List machine presets and exit")
    return p


def _print_reports(result) -> None:
    for report in result.reports:
        status = "ok" if report.ok else f"FAILED: {report.error}"
        print(f"  {report.name}: {status}")
        for w in report.warnings:
            print(f"    Warning: {w}")


def main(argv: list[str] | None = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)

    if args.list_posts:
        for name in list_profiles():
            print(f"{name:10s} {get_profile(name).name}")
        return 0
    if args.list_machines:
        for key in list_machines():
            print(f"{key:22s} {get_machine(key)}")
        return 0
    if args.job is None:
        parser.print_usage(sys.stderr)
        return 2

    settings = AppSettings.load()

    try:
        print(f"Loading {args.job} ...")
        job = load_job(args.job, default_post=settings.default_post,
                       default_machine=settings.default_machine)
        if args.post:
            job.profile = get_profile(args.post)
        if args.machine:
            job.machine = get_machine(args.machine)
    except (OSError, RouterCamError) as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1

    print(f"  Machine: {job.machine}")
    print(f"  Post: {job.profile.name} (feeds in {job.profile.units.feed_label()})")
    print(f"  Toolpaths: {sum(1 for t in job.toolpaths if t.enabled)} enabled")

    print("Computing toolpaths ...")
    try:
        result = export_batch(job.toolpaths, job.context(),
                              best_effort=args.best_effort, title=job.name)
    except BatchAbortedError as exc:
        _print_reports(exc.partial)
        print(f"Error: {exc}", file=sys.stderr)
        return 1
    except RouterCamError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1
    _print_reports(result)

    # Validate
    if not args.skip_validate:
        check = validate_plans(result.plans, job.machine.envelope)
        if check.has_errors:
            print("VALIDATION ERRORS:", file=sys.stderr)
            for issue in check.errors():
                print(f"  ERROR: {issue.message}", file=sys.stderr)
            return 1
        for issue in check.warnings():
            print(f"  Warning: {issue.message}")

    output = args.output or args.job.with_suffix("")
    written = result.write(output)
    stats = result.stats
    print(f"  Cutting {stats.cutting_distance:.1f} mm, rapids {stats.rapid_distance:.1f} mm, "
          f"{stats.plunge_count} plunges, est. {stats.format_time()}")
    print(f"Wrote {written}")

    return 0 if result.ok else 1


if __name__ == "__main__":
    sys.exit(main())

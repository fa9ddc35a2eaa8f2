from __future__ import annotations

import argparse
import sys
import time
from dataclasses import replace
from pathlib import Path

from stemrunner.app.config import configure_logging, load_settings
from stemrunner.app.importers import ManifestImporter
from stemrunner.app.jobs import new_job
from stemrunner.app.models import JobState
from stemrunner.app.poller import JobPoller


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Split one audio file into stems with Demucs")
    parser.add_argument("input", help="Audio file to separate")
    parser.add_argument("--work-dir", help="Override STEMRUNNER_WORK_DIR")
    parser.add_argument("--position", type=float, default=0.0, help="Timeline position recorded in the import manifest")
    parser.add_argument("--name", help="Display name (defaults to the input file name)")
    parser.add_argument("--manifest-dir", help="Directory for the import manifest (defaults to the work directory)")
    parser.add_argument("--isolated-env", action="store_true", help="Bootstrap and use an isolated environment")

    args = parser.parse_args(argv)
    settings = load_settings()
    if args.work_dir:
        settings = replace(settings, work_dir=Path(args.work_dir).expanduser())
    if args.isolated_env:
        settings = replace(settings, isolated_env=True)
    configure_logging(settings.log_level)

    input_path = Path(args.input).expanduser().resolve()
    if not input_path.is_file():
        print(f"Input file not found: {input_path}", file=sys.stderr)
        return 2

    job = new_job(
        input_path,
        settings.work_dir,
        settings.platform,
        position=args.position,
        display_name=args.name,
        prefix=settings.file_prefix,
    )
    importer = ManifestImporter(Path(args.manifest_dir) if args.manifest_dir else None)
    poller = JobPoller(job, settings, importer=importer)

    snapshot = poller.submit()
    last_line = ""
    while not poller.is_terminal:
        time.sleep(settings.poll_interval)
        snapshot = poller.tick()
        if snapshot.log_tail and snapshot.log_tail != last_line:
            last_line = snapshot.log_tail
            print(f"[{int(snapshot.elapsed)}s] {last_line}")

    if snapshot.state is JobState.ERROR and snapshot.error is not None:
        print(snapshot.error.message, file=sys.stderr)
        return 1

    if importer.last_path is not None:
        print(f"Wrote import manifest: {importer.last_path}")
    if snapshot.result is not None and snapshot.result.analysis is None:
        print("Analysis unavailable: BPM/key/tuning were not detected.")
    return 0


if __name__ == "__main__":
    sys.exit(main())

#!/usr/bin/env python3
"""
rally_runner.py
Wrapper to run scraper + stats in one command.

Usage:
    python rally_runner.py <club_id> <championship_id> <event_id> [--cookies FILE] [--pdf] [--verbose]

Example:
    python rally_runner.py 180867 421130 448563 --cookies racenet_cookies.txt --pdf
"""

import sys
import argparse
import subprocess
import pathlib

BASE_DIR = pathlib.Path(__file__).parent.resolve()


def run_step(cmd, cwd):
    result = subprocess.run(cmd, capture_output=True, text=True, cwd=cwd)
    stdout_lines = [line.strip() for line in result.stdout.splitlines() if line.strip()]
    stderr_lines = [line.strip() for line in result.stderr.splitlines() if line.strip()]
    return result.returncode, stdout_lines, stderr_lines


def main(argv=None):
    parser = argparse.ArgumentParser(description="Download a Racenet event and write its rally report")
    parser.add_argument("club_id")
    parser.add_argument("championship_id")
    parser.add_argument("event_id")
    parser.add_argument("--cookies", help="Netscape cookie file of a logged-in session")
    parser.add_argument("--pdf", action="store_true", help="Also draw the position chart PDF")
    parser.add_argument("--verbose", action="store_true")
    args = parser.parse_args(argv)

    # Absolute paths to the other scripts
    scraper_path = BASE_DIR / "rally_scraper.py"
    stats_path = BASE_DIR / "rally_stats.py"

    cwd = pathlib.Path.cwd()

    # Step 1: Run scraper
    scraper_cmd = [sys.executable, str(scraper_path), args.club_id, args.championship_id, args.event_id]
    if args.cookies:
        scraper_cmd += ["--cookies", args.cookies]
    if args.verbose:
        scraper_cmd.append("--verbose")
    rc, stdout_lines, stderr_lines = run_step(scraper_cmd, cwd)

    # --- Handle scraper failures ---
    if rc == 2:
        print("⚠️ Event not found in the club's recent results.")
        if stderr_lines:
            print("stderr:\n" + "\n".join(stderr_lines))
        sys.exit(2)

    if rc != 0:
        print("❌ Scraper failed with non-zero exit code.")
        if stderr_lines:
            print("stderr:\n" + "\n".join(stderr_lines))
        sys.exit(1)

    if not stdout_lines:
        print("❌ Scraper did not return an event filename.")
        if stderr_lines:
            print("stderr:\n" + "\n".join(stderr_lines))
        sys.exit(1)

    json_file = stdout_lines[-1]
    print(f"✅ Scraper produced event file: {json_file}")

    # Step 2: Run stats on the event file
    report_path = cwd / pathlib.Path(json_file).with_suffix(".csv").name
    stats_cmd = [sys.executable, str(stats_path), json_file, str(report_path)]
    if args.pdf:
        stats_cmd += ["--pdf", str(report_path.with_suffix(".pdf"))]
    if args.verbose:
        stats_cmd.append("--verbose")

    rc, stdout_lines, stderr_lines = run_step(stats_cmd, cwd)
    if rc != 0:
        print("❌ Stats script failed.")
        if stderr_lines:
            print("stderr:\n" + "\n".join(stderr_lines))
        sys.exit(1)

    if stdout_lines:
        print("\n".join(stdout_lines))

    print("✅ Rally report generation complete.")
    print(f"REPORT_FILE:{report_path.name}")

    return str(report_path)


if __name__ == "__main__":
    main()

#!/usr/bin/env python3

import sys
import os
import re
import copy
import json
import pathlib
import argparse
from collections import Counter
from dataclasses import dataclass, field, replace
from datetime import timedelta
from typing import Dict, List, Optional, Union

import pandas as pd
import logging

# region logging setup
def setup_logging(level=logging.INFO):
    """Configure the global logger once at import time."""
    logging.basicConfig(
        level=level,
        format="%(levelname)s: %(message)s"
    )
    return logging.getLogger(__name__)

logger = setup_logging()
# endregion

class Config:
    """Global configuration constants for rally result processing."""
    # Report formatting
    TIME_FORMAT = "hh:mm:ss.fff"
    DNF_LABEL = "DNF"
    STAGE_PREFIX = "SS"

    # Output
    REPORT_SUFFIX = ".csv"
    ENCODING = "utf-8"


ZERO_TIME = timedelta(0)

# mm:ss.fff or hh:mm:ss.fff, nothing else
TIME_PATTERN = re.compile(r"(?:([01][0-9]|2[0-3]):)?([0-5][0-9]):([0-5][0-9])\.([0-9]{3})")


def parse_time(raw) -> timedelta:
    """Convert '+mm:ss.fff' or 'hh:mm:ss.fff' into a timedelta, ZERO_TIME when it does not parse."""
    if not isinstance(raw, str):
        return ZERO_TIME
    s = raw[1:] if raw.startswith("+") else raw
    m = TIME_PATTERN.fullmatch(s)
    if not m:
        return ZERO_TIME
    hours, minutes, seconds, millis = m.groups()
    return timedelta(
        hours=int(hours or 0),
        minutes=int(minutes),
        seconds=int(seconds),
        milliseconds=int(millis),
    )


def time_diff(a: timedelta, b: timedelta) -> timedelta:
    """Saturating subtraction, never below ZERO_TIME."""
    diff = a - b
    return diff if diff > ZERO_TIME else ZERO_TIME


def format_time(td: timedelta) -> str:
    """Format as 'hh:mm:ss.fff'."""
    if td is None or td < ZERO_TIME:
        td = ZERO_TIME
    total_ms = td // timedelta(milliseconds=1)
    hours, rem = divmod(total_ms, 3_600_000)
    minutes, rem = divmod(rem, 60_000)
    seconds, millis = divmod(rem, 1000)
    return f"{hours % 24:02d}:{minutes:02d}:{seconds:02d}.{millis:03d}"


@dataclass
class DriverTime:
    """A single driver's result on a single stage."""

    # === Raw Data ===
    driver_name: str
    vehicle: str = ""
    is_dnf: bool = False
    stage_time: timedelta = ZERO_TIME
    stage_diff_first: timedelta = ZERO_TIME
    overall_time: timedelta = ZERO_TIME
    overall_diff_first: timedelta = ZERO_TIME
    overall_position: int = 0

    # === Derived by Rally.process_results ===
    stage_position: int = 0
    position_change: int = 0        # previous - current overall position, 0 unless ranked overall on both stages
    stage_diff_previous: timedelta = ZERO_TIME
    overall_diff_previous: timedelta = ZERO_TIME

    @classmethod
    def from_entry(cls, entry: dict) -> 'DriverTime':
        """Factory method to create a DriverTime from one raw leaderboard entry."""
        rank = entry.get("rank")
        return cls(
            driver_name=str(entry.get("name", "")),
            vehicle=str(entry.get("vehicleName", "")),
            is_dnf=bool(entry.get("isDnfEntry", False)),
            stage_time=parse_time(entry.get("stageTime")),
            stage_diff_first=parse_time(entry.get("stageDiff")),
            overall_time=parse_time(entry.get("totalTime")),
            overall_diff_first=parse_time(entry.get("totalDiff")),
            overall_position=rank if isinstance(rank, int) else 0,
        )

    @property
    def has_stage_time(self) -> bool:
        return not self.is_dnf and self.stage_time > ZERO_TIME


@dataclass(frozen=True)
class Absent:
    """Marks a driver seen earlier in the rally who has no record on this stage."""
    driver_name: str


StageEntry = Union[DriverTime, Absent]


@dataclass
class Stage:
    """One timed stage, driver results kept in encounter order."""
    name: str
    driver_times: Dict[str, StageEntry] = field(default_factory=dict)

    def add_driver(self, driver_time: DriverTime):
        # last write wins for a duplicated name
        self.driver_times[driver_time.driver_name] = driver_time

    def records(self) -> List[DriverTime]:
        return [e for e in self.driver_times.values() if isinstance(e, DriverTime)]

    def __len__(self):
        return len(self.driver_times)


@dataclass
class DriverInfo:
    """Rally-wide aggregate for one driver."""
    name: str
    vehicle: str = ""
    overall_position: int = 0
    stages_won: int = 0
    finished: bool = True
    vehicles: List[str] = field(default_factory=list)
    position_history: List[int] = field(default_factory=list)


@dataclass
class RallyResults:
    """Fully derived standings for a rally, built fresh by Rally.process_results."""
    stages: List[Stage]
    driver_info: Dict[str, DriverInfo]
    vehicle_counts: Dict[str, int]

    @property
    def driver_count(self) -> int:
        return len(self.driver_info)

    @property
    def drivers_dnf(self) -> int:
        return sum(1 for d in self.driver_info.values() if not d.finished)

    @property
    def drivers_finished(self) -> int:
        return self.driver_count - self.drivers_dnf

    def __iter__(self):
        return iter(self.stages)

    def position_history(self) -> pd.DataFrame:
        """Overall position per driver (rows) after each stage (columns), 0 = unranked."""
        columns = [f"{Config.STAGE_PREFIX}{i}" for i in range(1, len(self.stages) + 1)]
        rows = {}
        for name, info in self.driver_info.items():
            # history starts at the driver's first appearance
            padding = [0] * (len(columns) - len(info.position_history))
            rows[name] = padding + info.position_history
        df = pd.DataFrame.from_dict(rows, orient="index", columns=columns, dtype=int)
        df.index.name = "Driver"
        return df


def rank_by(entries, key):
    """Assign 1-based ranks in ascending key order, stable on input order.

    Returns a list of (position, entry, diff_first, diff_previous).
    """
    ordered = sorted(entries, key=key)
    ranked = []
    for pos, entry in enumerate(ordered, start=1):
        t = key(entry)
        if pos == 1:
            leader = previous = t
        ranked.append((pos, entry, time_diff(t, leader), time_diff(t, previous)))
        previous = t
    return ranked


class Rally:
    """Ordered stages of one event."""

    def __init__(self, stages: Optional[List[Stage]] = None):
        self.stages: List[Stage] = list(stages) if stages else []

    def add_stage(self, stage: Stage):
        self.stages.append(stage)

    def __iter__(self):
        return iter(self.stages)

    def __len__(self):
        return len(self.stages)

    @classmethod
    def from_event_data(cls, data: dict) -> 'Rally':
        """Rebuild a Rally from a saved event document ({'stages': [{'name', 'entries'}]})."""
        rally = cls()
        for stage_data in data.get("stages", []):
            stage = Stage(str(stage_data.get("name", "")))
            for entry in stage_data.get("entries", []):
                stage.add_driver(DriverTime.from_entry(entry))
            rally.add_stage(stage)
        return rally

    def process_results(self) -> RallyResults:
        """Derive stage/overall ranks, gaps, position changes and driver stats.

        The Rally itself is never modified: every call works on copies and
        returns a new RallyResults, so calling it twice gives the same answer.
        """
        driver_info: Dict[str, DriverInfo] = {}
        cumulative: Dict[str, Optional[timedelta]] = {}   # None = out of overall standings
        last_overall: Dict[str, DriverTime] = {}
        stages: List[Stage] = []
        counted_stages = 0

        for stage_idx, raw_stage in enumerate(self.stages):
            # keyed by the entry's own name, whatever key the caller used
            stage = Stage(raw_stage.name)
            for entry in copy.deepcopy(list(raw_stage.driver_times.values())):
                stage.driver_times[entry.driver_name] = entry

            for name in driver_info:
                if name not in stage.driver_times:
                    stage.driver_times[name] = Absent(name)

            for name in stage.driver_times:
                if name not in driver_info:
                    driver_info[name] = DriverInfo(name=name)
                    if counted_stages:
                        # missed a stage that counted, never enters overall standings
                        cumulative[name] = None
                        driver_info[name].finished = False
                    else:
                        cumulative[name] = ZERO_TIME

            records = stage.records()
            for record in records:
                record.stage_position = 0
                record.stage_diff_first = ZERO_TIME
                record.stage_diff_previous = ZERO_TIME

            # stage standings
            stage_ranking = rank_by([r for r in records if r.has_stage_time], key=lambda r: r.stage_time)
            for pos, record, diff_first, diff_prev in stage_ranking:
                record.stage_position = pos
                record.stage_diff_first = diff_first
                record.stage_diff_previous = diff_prev

            neutralised = not stage_ranking
            if neutralised:
                logger.debug("Stage %d (%s) has no ranked finishers, overall standings carried over",
                             stage_idx + 1, stage.name)
                self._carry_over_overall(stage, last_overall)
                self._carry_over_absent(stage, last_overall)
                for record in records:
                    if record.is_dnf:
                        # standings stand for this stage, the DNF still counts from the next one
                        cumulative[record.driver_name] = None
                        driver_info[record.driver_name].finished = False
            else:
                counted_stages += 1
                winner = stage_ranking[0][1]
                driver_info[winner.driver_name].stages_won += 1
                self._accumulate_overall(stage, cumulative, driver_info)
                self._rank_overall(stage, cumulative, driver_info, last_overall)

            for name, entry in stage.driver_times.items():
                info = driver_info[name]
                if isinstance(entry, DriverTime):
                    info.vehicle = entry.vehicle
                    if entry.vehicle and entry.vehicle not in info.vehicles:
                        info.vehicles.append(entry.vehicle)
                    last_overall[name] = entry
                elif not neutralised:
                    last_overall.pop(name, None)
                prev = last_overall.get(name)
                info.overall_position = prev.overall_position if prev else 0
                info.position_history.append(info.overall_position)

            stages.append(stage)

        vehicle_counts = Counter(v for info in driver_info.values() for v in info.vehicles)
        logger.debug("Processed %d stages, %d drivers", len(stages), len(driver_info))
        return RallyResults(stages=stages, driver_info=driver_info, vehicle_counts=dict(vehicle_counts))

    @staticmethod
    def _accumulate_overall(stage, cumulative, driver_info):
        """Add this stage's time to every driver still in the overall standings."""
        for name, entry in stage.driver_times.items():
            if cumulative[name] is None:
                continue
            if isinstance(entry, DriverTime) and entry.has_stage_time:
                cumulative[name] += entry.stage_time
            else:
                # DNF, missing or unreadable time: out of the overall standings for good
                cumulative[name] = None
                driver_info[name].finished = False

    @staticmethod
    def _rank_overall(stage, cumulative, driver_info, last_overall):
        # driver_info keeps first-appearance order, which settles ties
        contenders = [name for name in driver_info if cumulative[name] is not None]
        overall_ranking = rank_by(contenders, key=lambda name: cumulative[name])

        for record in stage.records():
            record.overall_time = ZERO_TIME
            record.overall_diff_first = ZERO_TIME
            record.overall_diff_previous = ZERO_TIME
            record.overall_position = 0
            record.position_change = 0

        for pos, name, diff_first, diff_prev in overall_ranking:
            record = stage.driver_times[name]
            record.overall_time = cumulative[name]
            record.overall_position = pos
            record.overall_diff_first = diff_first
            record.overall_diff_previous = diff_prev
            prev = last_overall.get(name)
            if prev is not None and prev.overall_position > 0:
                record.position_change = prev.overall_position - pos

    @staticmethod
    def _carry_over_overall(stage, last_overall):
        for record in stage.records():
            prev = last_overall.get(record.driver_name)
            record.position_change = 0
            if prev is None:
                record.overall_time = ZERO_TIME
                record.overall_diff_first = ZERO_TIME
                record.overall_diff_previous = ZERO_TIME
                record.overall_position = 0
                continue
            record.overall_time = prev.overall_time
            record.overall_diff_first = prev.overall_diff_first
            record.overall_diff_previous = prev.overall_diff_previous
            record.overall_position = prev.overall_position

    @staticmethod
    def _carry_over_absent(stage, last_overall):
        """Give drivers still ranked overall their previous overall row on a stage nobody finished."""
        for name, entry in stage.driver_times.items():
            prev = last_overall.get(name)
            if not isinstance(entry, Absent) or prev is None or prev.overall_position == 0:
                continue
            stage.driver_times[name] = replace(
                prev,
                is_dnf=False,
                stage_time=ZERO_TIME,
                stage_diff_first=ZERO_TIME,
                stage_diff_previous=ZERO_TIME,
                stage_position=0,
                position_change=0,
            )


def load_event_data(json_file: str) -> dict:
    """Read a saved event document written by rally_scraper.py."""
    try:
        with open(json_file, encoding=Config.ENCODING) as fh:
            return json.load(fh)
    except FileNotFoundError:
        logger.error("File not found: %s", json_file)
        sys.exit(1)
    except json.JSONDecodeError as e:
        logger.error("Invalid event file %s: %s", json_file, e)
        sys.exit(1)


def main(json_file, report_file=None, pdf_file=None, verbose=False):
    """Main entry point for rally processing and report generation."""
    # imported here, the report module depends on this one
    import rally_report

    if verbose:
        logger.setLevel(logging.DEBUG)
        logger.debug("Debug / Verbose logging enabled")

    logger.info("Loading event data from %s", json_file)
    data = load_event_data(json_file)

    rally = Rally.from_event_data(data)
    logger.info("Processing %d stages...", len(rally))
    results = rally.process_results()

    if report_file:
        report_path = pathlib.Path(report_file)
    else:
        report_path = pathlib.Path(os.path.splitext(os.path.basename(json_file))[0] + Config.REPORT_SUFFIX)

    report = rally_report.build_report(results, data.get("header"))
    rally_report.write_report(report_path, report)
    logger.info("Report written to %s", report_path)

    if pdf_file:
        logger.info("Generating PDF position chart...")
        rally_report.print_pdf_position_chart(results, pdf_file, title=(data.get("header") or {}).get("club_name"))

    logger.info("Processing complete!")
    return report_path


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Generate rally stage/overall report from a saved event JSON")
    parser.add_argument("json_file", help="Input event JSON file")
    parser.add_argument("report_file", nargs="?", help="Output report file (optional)")
    parser.add_argument("--pdf", dest="pdf_file", help="Also draw the position chart to this PDF")
    parser.add_argument("--verbose", action="store_true", help="Enable verbose logging")

    args = parser.parse_args()

    try:
        main(json_file=args.json_file, report_file=args.report_file, pdf_file=args.pdf_file, verbose=args.verbose)
    except KeyboardInterrupt:
        print("\nAborted by user.", file=sys.stderr)
        sys.exit(130)
    except Exception:
        logger.exception("Fatal error:")
        sys.exit(1)

"""Shared fixtures: small hand-built rallies."""
import pytest

from rally_stats import DriverTime, Stage, Rally


def entry(name, time=None, vehicle="Ford Fiesta R5", dnf=False):
    """One raw leaderboard entry the way the API sends it."""
    return {
        "name": name,
        "vehicleName": vehicle,
        "isDnfEntry": dnf,
        "stageTime": time if time is not None else "--",
        "stageDiff": "--",
        "totalTime": "--",
        "totalDiff": "--",
        "rank": 0,
    }


def make_stage(name, *entries):
    stage = Stage(name)
    for e in entries:
        stage.add_driver(DriverTime.from_entry(e))
    return stage


@pytest.fixture
def two_stage_rally():
    """A and B finish both stages; C DNFs stage 1 and wins stage 2."""
    return Rally([
        make_stage(
            "Vinnbergs",
            entry("A", "01:00.000"),
            entry("B", "01:05.000", vehicle="Skoda Fabia R5"),
            entry("C", dnf=True, vehicle="Citroen C3 R5"),
        ),
        make_stage(
            "Hamra",
            entry("A", "01:10.000"),
            entry("B", "01:02.000", vehicle="Skoda Fabia R5"),
            entry("C", "00:59.000", vehicle="Citroen C3 R5"),
        ),
    ])


@pytest.fixture
def event_document():
    return {
        "header": {
            "club_name": "Gravel Club",
            "country_name": "Sweden",
            "location_name": "Värmland",
            "championship_id": "421130",
            "event_id": "448563",
            "event_status": "Finished",
        },
        "stages": [
            {"name": "Vinnbergs", "entries": [
                entry("A", "01:00.000"),
                entry("B", "+01:05.000", vehicle="Skoda Fabia R5"),
                entry("C", dnf=True, vehicle="Citroen C3 R5"),
            ]},
            {"name": "Hamra", "entries": [
                entry("A", "01:10.000"),
                entry("B", "01:02.000", vehicle="Skoda Fabia R5"),
                entry("C", "00:59.000", vehicle="Citroen C3 R5"),
            ]},
        ],
    }

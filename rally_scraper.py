#!/usr/bin/env python3
"""
rally_scraper.py
Downloads one club event from the Racenet API and saves the per-stage
leaderboards as an event JSON document for rally_stats.py.

Usage:
    python rally_scraper.py <club_id> <championship_id> <event_id> [--cookies FILE] [--out FILE]
"""

import os
import re
import sys
import json
import socket
import logging
import argparse
from dataclasses import dataclass, field
from http.cookiejar import MozillaCookieJar
from concurrent.futures import ThreadPoolExecutor

import requests
from requests.exceptions import Timeout, RequestException, SSLError, ConnectionError

from rally_stats import setup_logging

logger = setup_logging()

RACENET_BASE_URL = os.environ.get("RACENET_BASE_URL", "https://dirtrally2.dirtgame.com/api")
TIMEOUT_SECONDS = float(os.environ.get("RACENET_TIMEOUT", "10"))
MAX_WORKERS = int(os.environ.get("RACENET_MAX_WORKERS", "4"))
PAGE_SIZE = int(os.environ.get("RACENET_PAGE_SIZE", "100"))
XSRF_HEADER = "RaceNet.XSRFH"

# exit codes understood by rally_runner.py
EXIT_FETCH_FAILED = 1
EXIT_NOT_FOUND = 2


def safe_fetch(session, method, url, timeout=TIMEOUT_SECONDS, **kwargs):
    """
    Wrapper for session.request() with better diagnostics.
    Returns (json_data, error_msg).
    """
    try:
        resp = session.request(method, url, timeout=timeout, **kwargs)
        resp.raise_for_status()
        return resp.json(), None

    except Timeout:
        return None, f"Timeout: no response from {url}"

    except SSLError as e:
        return None, f"SSL error contacting {url}: {e}"

    except ConnectionError as e:
        # Distinguish DNS errors
        if isinstance(e.__cause__, socket.gaierror):
            return None, f"DNS lookup failed for {url} (hostname not resolved)"
        return None, f"Connection blocked or reset when contacting {url}: {e}"

    except RequestException as e:
        return None, f"Request failed for {url}: {e}"

    except ValueError as e:
        return None, f"Response from {url} is not valid JSON: {e}"


class RacenetClient:
    """Thin client over the Racenet club endpoints."""

    def __init__(self, session=None, base_url=RACENET_BASE_URL, timeout=TIMEOUT_SECONDS):
        self.session = session if session is not None else requests.Session()
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout

    def _get(self, path, **kwargs):
        data, error = safe_fetch(self.session, "GET", f"{self.base_url}/{path}", timeout=self.timeout, **kwargs)
        if error:
            logger.error(error)
        return data

    def _post(self, path, payload):
        data, error = safe_fetch(self.session, "POST", f"{self.base_url}/{path}", timeout=self.timeout, json=payload)
        if error:
            logger.error(error)
        return data

    def get_initial_state(self):
        """Fetch the client state and keep the XSRF token for later requests."""
        state = self._get("ClientStore/GetInitialState")
        if not state:
            return False
        token = (state.get("identity") or {}).get("token") or (state.get("xsrfh") or {}).get("token")
        if token:
            self.session.headers[XSRF_HEADER] = token
        else:
            logger.warning("No XSRF token in initial state, requests may be rejected")
        return True

    def get_club_info(self, club_id):
        return self._get(f"Club/{club_id}")

    def get_championships(self, club_id):
        return self._get(f"Club/{club_id}/championships")

    def get_recent_results(self, club_id):
        return self._get(f"Club/{club_id}/recentResults")

    def get_stage_results(self, challenge_id, event_id, stage_id):
        """All leaderboard entries for one stage, every page collected in rank order."""
        entries = []
        page = 1
        while True:
            payload = {
                "challengeId": challenge_id,
                "selectedEventId": 0,
                "stageId": str(stage_id),
                "page": page,
                "pageSize": PAGE_SIZE,
                "orderByTotalTime": True,
                "platformFilter": "None",
                "playerFilter": "Everyone",
                "filterByAssists": "Unspecified",
                "filterByWheel": "Unspecified",
                "nationalityFilter": "None",
                "eventId": event_id,
            }
            data = self._post("Leaderboard", payload)
            if data is None:
                return None
            entries.extend(data.get("entries", []))
            if page >= int(data.get("pageCount", 1) or 1):
                break
            page += 1
        logger.debug("Stage %s: %d entries", stage_id, len(entries))
        return entries


@dataclass
class ClubInfo:
    """The last fetched club, its championships and recent results."""
    club: dict = field(default_factory=dict)
    championships: list = field(default_factory=list)
    recent_results: dict = field(default_factory=dict)

    @property
    def club_name(self) -> str:
        return (self.club.get("club") or {}).get("name", "")

    def get_championship_metadata(self, championship_id):
        """Metadata for the championship and all its events, None when unknown."""
        for championship in self.championships:
            if str(championship.get("id")) == str(championship_id):
                return championship
        return None

    def get_event_metadata(self, championship_id, event_id):
        championship = self.get_championship_metadata(championship_id)
        if championship is None:
            return None
        for event in championship.get("events", []):
            if str(event.get("id")) == str(event_id):
                return event
        return None

    def find_event_results(self, championship_id, challenge_id):
        """The recent-results event (with its stages) for a challenge id."""
        for championship in self.recent_results.get("championships", []):
            if str(championship.get("id")) != str(championship_id):
                continue
            for event in championship.get("events", []):
                if str(event.get("challengeId")) == str(challenge_id):
                    return event
        return None


def fetch_club_info(client: RacenetClient, club_id):
    """Fetch club, championships and recent results; None if any call fails."""
    club = client.get_club_info(club_id)
    if not club:
        return None
    championships = client.get_championships(club_id)
    if championships is None:
        return None
    recent_results = client.get_recent_results(club_id)
    if not recent_results:
        return None
    return ClubInfo(club=club, championships=championships, recent_results=recent_results)


def fetch_event_stages(client: RacenetClient, event: dict, max_workers=MAX_WORKERS):
    """Fetch every stage leaderboard of an event, returned in running order."""
    stages = event.get("stages", [])

    def fetch(stage_idx):
        return client.get_stage_results(event.get("challengeId"), event.get("id"), stage_idx)

    with ThreadPoolExecutor(max_workers=max_workers) as executor:
        stage_entries = list(executor.map(fetch, range(len(stages))))

    missing = [stages[i].get("name", str(i)) for i, e in enumerate(stage_entries) if e is None]
    if missing:
        logger.error("Failed to fetch stage results for: %s", ", ".join(missing))
        return None

    return [
        {"name": stage.get("name", ""), "entries": entries}
        for stage, entries in zip(stages, stage_entries)
    ]


def build_event_document(club_info: ClubInfo, championship_id, challenge_id, event, stage_data):
    """Header metadata plus raw stage entries, the input format of rally_stats.py."""
    meta = club_info.get_event_metadata(championship_id, challenge_id) or {}
    return {
        "header": {
            "club_name": club_info.club_name,
            "country_name": meta.get("countryName", ""),
            "location_name": meta.get("locationName", ""),
            "championship_id": str(championship_id),
            "event_id": str(event.get("id", "")),
            "event_status": meta.get("eventStatus", ""),
        },
        "stages": stage_data,
    }


def load_cookies(session, cookie_file):
    jar = MozillaCookieJar(cookie_file)
    jar.load(ignore_discard=True, ignore_expires=True)
    session.cookies.update(jar)


def scrape_event(club_id, championship_id, event_id, cookie_file=None, out_file=None, client=None):
    """Fetch one event and save it as JSON. Returns (exit_code, filename)."""
    if client is None:
        session = requests.Session()
        if cookie_file:
            load_cookies(session, cookie_file)
        client = RacenetClient(session)

    logger.info("Fetching club %s from %s...", club_id, client.base_url)
    if not client.get_initial_state():
        return EXIT_FETCH_FAILED, None

    club_info = fetch_club_info(client, club_id)
    if club_info is None:
        logger.error("Could not fetch club info for club %s", club_id)
        return EXIT_FETCH_FAILED, None

    event = club_info.find_event_results(championship_id, event_id)
    if event is None:
        logger.error("Event %s not found in championship %s", event_id, championship_id)
        return EXIT_NOT_FOUND, None

    logger.info("Found event with %d stages", len(event.get("stages", [])))
    stage_data = fetch_event_stages(client, event)
    if stage_data is None:
        return EXIT_FETCH_FAILED, None

    document = build_event_document(club_info, championship_id, event_id, event, stage_data)
    if not out_file:
        clean_club = re.sub(r'[^a-z0-9]+', '_', club_info.club_name.lower()).strip('_') or str(club_id)
        out_file = f"{clean_club}_{championship_id}_{event_id}.json"

    with open(out_file, "w", encoding="utf-8") as fh:
        json.dump(document, fh, indent=2)
    logger.info("Event saved to %s", out_file)
    return 0, out_file


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Download a Racenet club event to JSON")
    parser.add_argument("club_id")
    parser.add_argument("championship_id")
    parser.add_argument("event_id", help="Event challenge id")
    parser.add_argument("--cookies", help="Netscape cookie file of a logged-in session")
    parser.add_argument("--out", help="Output JSON file (optional)")
    parser.add_argument("--verbose", action="store_true", help="Enable verbose logging")
    args = parser.parse_args()

    if args.verbose:
        logger.setLevel(logging.DEBUG)

    rc, filename = scrape_event(args.club_id, args.championship_id, args.event_id,
                                cookie_file=args.cookies, out_file=args.out)
    if filename:
        print(filename, file=sys.stdout)   # clean signal for wrapper script
    sys.exit(rc)

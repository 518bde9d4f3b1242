"""
Re-submits trials that were queued locally because the API was unreachable,
removing each one once the server accepts it.
"""

from __future__ import annotations

import argparse
from typing import Tuple

import requests

from experiments.submission import PendingTrialQueue


def sync(queue: PendingTrialQueue, api_url: str, session_id: str | None = None, timeout: float = 10.0) -> Tuple[int, int]:
    sent = failed = 0
    for submission in queue.load_all(session_id):
        try:
            resp = requests.post(f"{api_url.rstrip('/')}/api/trial", json=submission.wire(), timeout=timeout)
            resp.raise_for_status()
        except requests.RequestException as exc:
            print(f"Failed to sync trial {submission.trial.trial_number} of {submission.session_id}: {exc}")
            failed += 1
            continue
        queue.remove(submission.session_id, submission.trial.trial_number)
        sent += 1
    return sent, failed


def main() -> None:
    parser = argparse.ArgumentParser()
    parser.add_argument("--pending_dir", default="results/pending")
    parser.add_argument("--api_url", default="http://localhost:8000")
    parser.add_argument("--session_id", default=None)
    args = parser.parse_args()

    sent, failed = sync(PendingTrialQueue(args.pending_dir), args.api_url, args.session_id)
    print(f"Synced {sent} trials, {failed} still pending")
    if failed:
        raise SystemExit(1)


if __name__ == "__main__":
    main()

#!/usr/bin/env python3
"""Emit the job API payload that schedules one rss ingestion run."""

from __future__ import annotations

import argparse
import json


def render_payload(*, feed_id: str, url: str, kind: str = "rss") -> str:
    payload = {
        "kind": kind,
        "target_type": "feed",
        "target_id": feed_id,
        "inputs_json": {"feed_id": feed_id, "url": url},
    }
    return json.dumps(payload, indent=2, sort_keys=True)


def main() -> None:
    parser = argparse.ArgumentParser(description="Emit a POST /jobs payload for an rss ingestion job.")
    parser.add_argument("--feed-id", required=True, help="Feed id as stored in the feeds table")
    parser.add_argument("--url", required=True, help="Feed URL to fetch")
    parser.add_argument("--kind", default="rss", help="Job kind the rss worker polls for")
    args = parser.parse_args()

    print(render_payload(feed_id=args.feed_id, url=args.url, kind=args.kind))


if __name__ == "__main__":
    main()

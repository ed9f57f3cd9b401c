"""Push a JSON export of reviews through the bulk embed-and-store endpoint.

Usage: python scripts/seed_reviews.py reviews.json [--batch 50]
"""
import argparse
import json
import os
import sys

import requests

API_URL = os.getenv("SEED_API_URL", "http://localhost:8000/api/v1/reviews")


def load_reviews(path: str):
    with open(path, encoding="utf-8") as f:
        data = json.load(f)
    if isinstance(data, dict):
        data = data.get("reviews") or []
    return [r for r in data if isinstance(r, dict) and r.get("review_body")]


def main() -> int:
    parser = argparse.ArgumentParser()
    parser.add_argument("path")
    parser.add_argument("--batch", type=int, default=50)
    parser.add_argument("--normalize", action="store_true", help="run normalize+dedupe afterwards")
    parser.add_argument("--skip-if-seeded", action="store_true", help="do nothing when a corpus is already loaded")
    args = parser.parse_args()

    if args.skip_if_seeded:
        status = requests.get(f"{API_URL}/status", timeout=30)
        if status.status_code == 200 and status.json().get("seeded"):
            print(f"Already seeded (last upload {status.json().get('last_upload_at')}), skipping")
            return 0

    reviews = load_reviews(args.path)
    print(f"Seeding {len(reviews)} reviews to {API_URL}")
    inserted = 0
    for start in range(0, len(reviews), args.batch):
        batch = reviews[start:start + args.batch]
        r = requests.post(f"{API_URL}/bulk", json={"reviews": batch}, timeout=300)
        if r.status_code != 200:
            print(f"FAIL batch@{start}: {r.status_code} {r.text[:200]}")
            return 1
        inserted += int(r.json().get("inserted") or 0)
        print(f"  inserted {inserted}/{len(reviews)}")

    if args.normalize:
        r = requests.post(f"{API_URL}/normalize", timeout=600)
        print(f"normalize: {r.status_code} {r.text[:200]}")
    return 0


if __name__ == "__main__":
    sys.exit(main())

"""CLI script to load devotionals from a JSON file into the backend DB.
Usage: python scripts/seed_devotionals.py devotionals.json

The file holds a list of objects with `publish_on` (YYYY-MM-DD), `title`,
`verse`, `reference`, `content` and optional `reflection`.
"""
import sys
import json
import argparse
import pathlib
# Ensure `backend/` is on sys.path so `discipleship` package imports work when running this script directly
ROOT = pathlib.Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))
from pydantic import ValidationError
from sqlmodel import Session
from discipleship.database import engine, create_db_and_tables
from discipleship import schemas, services


def main(path: pathlib.Path):
    """Import every devotional in `path`, skipping dates already published.

    Results are printed to stdout for a quick CLI feedback loop.
    """
    items = json.loads(path.read_text(encoding='utf-8'))
    if not isinstance(items, list):
        print('Expected a JSON list of devotionals')
        return 1
    create_db_and_tables()
    created = 0
    skipped = 0
    with Session(engine) as session:
        svc = services.DevotionalService(session)
        for idx, raw in enumerate(items):
            try:
                data = schemas.DevotionalIn.model_validate(raw)
            except ValidationError as e:
                print(f'Item {idx}: invalid ({e.error_count()} errors)')
                skipped += 1
                continue
            try:
                svc.create(data)
                created += 1
            except ValueError as e:
                print(f'Item {idx}: {e}')
                skipped += 1
    print(f'Created {created} devotionals, skipped {skipped}')
    return 0


if __name__ == '__main__':
    parser = argparse.ArgumentParser()
    parser.add_argument('path', type=pathlib.Path, help='JSON file with devotionals')
    args = parser.parse_args()
    sys.exit(main(args.path))

#!/usr/bin/env python
"""
Copy a project's YOLO label files out of object storage.

Writes one <image stem>.txt per annotated image plus a classes.txt listing
the class names in index order.

Usage:
    python scripts/dump_yolo.py <project_id> <output_dir> [--db data/review.db] [--storage data/storage]
"""

import sys
import argparse
from pathlib import Path

# Add parent to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from core.errors import WorkflowError
from core.models import ReviewStatus
from core.storage import LocalObjectStorage, annotation_key
from core.store import ProjectStore
from core.images import ImageStore
from core.stats import StatisticsAggregator


def main():
    parser = argparse.ArgumentParser(description="Dump YOLO label files of a project")
    parser.add_argument("project_id", type=int, help="Project to dump")
    parser.add_argument("output_dir", help="Directory to write label files into")
    parser.add_argument("--db", default="data/review.db", help="Path to the SQLite database")
    parser.add_argument("--storage", default="data/storage", help="Object storage root directory")
    parser.add_argument("--bucket", default="annotations", help="Storage bucket")
    parser.add_argument("--approved-only", action="store_true", help="Only images approved in review")

    args = parser.parse_args()

    store = ProjectStore.open(args.db)
    # Signing is not used for reading, any secret will do
    storage = LocalObjectStorage(args.storage, secret="")
    images = ImageStore(store, storage, StatisticsAggregator(store), args.bucket)

    out_dir = Path(args.output_dir)
    out_dir.mkdir(parents=True, exist_ok=True)

    written = 0
    missing = 0
    try:
        project = store.require_project(args.project_id)
        (out_dir / "classes.txt").write_text("\n".join(cls.name for cls in project.classes))

        page = 1
        while True:
            batch, total = images.list_project_images(project.id, page=page, limit=200)
            for image in batch:
                if args.approved_only and image.review_status != ReviewStatus.APPROVED:
                    continue
                key = annotation_key(project.id, image.id)
                if not storage.exists(args.bucket, key):
                    missing += 1
                    continue
                stem = Path(image.filename).stem
                (out_dir / f"{image.id}_{stem}.txt").write_bytes(storage.get(args.bucket, key))
                written += 1
            if page * 200 >= total:
                break
            page += 1
    except WorkflowError as e:
        print(f"✗ Dump failed: {e.message}")
        sys.exit(1)
    finally:
        store.close()

    print(f"Project: {project.name}")
    print(f"  Label files written: {written}")
    print(f"  Images without labels: {missing}")
    print(f"\n✓ Output in {out_dir}")


if __name__ == "__main__":
    main()

#!/usr/bin/env python
"""
Recompute the derived statistics of one or all projects.

Usage:
    python scripts/recompute_stats.py [--db data/review.db] [--project 3]
"""

import sys
import argparse
from pathlib import Path

# Add parent to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from core.errors import WorkflowError
from core.stats import StatisticsAggregator
from core.store import ProjectStore


def main():
    parser = argparse.ArgumentParser(description="Recompute project statistics from image rows")
    parser.add_argument("--db", default="data/review.db", help="Path to the SQLite database")
    parser.add_argument("--project", type=int, help="Only this project (default: all)")

    args = parser.parse_args()

    if not Path(args.db).exists():
        print(f"✗ Database not found: {args.db}")
        sys.exit(1)

    store = ProjectStore.open(args.db)
    stats = StatisticsAggregator(store)
    try:
        if args.project is not None:
            projects = [store.require_project(args.project)]
        else:
            projects = store.list_projects()

        for project in projects:
            result = stats.recompute(project.id)
            print(
                f"  [{project.id}] {project.name}: {result.approved_images}/{result.total_images} approved "
                f"({result.completion_percentage}%), {result.annotated_images} annotated, "
                f"{result.reviewed_images} reviewed"
            )
    except WorkflowError as e:
        print(f"✗ {e.message}")
        sys.exit(1)
    finally:
        store.close()

    print(f"\n✓ Recomputed {len(projects)} project(s)")


if __name__ == "__main__":
    main()

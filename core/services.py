"""
Service container - wires the workflow components over one database and
one storage backend.
"""

from dataclasses import dataclass

from core.annotations import AnnotationStore
from core.assignments import AssignmentLedger
from core.completion import CompletionEngine
from core.images import ImageStore
from core.stats import StatisticsAggregator
from core.storage import ObjectStorage
from core.store import ProjectStore
from core.submissions import SubmissionWorkflow


@dataclass
class Services:
    store: ProjectStore
    storage: ObjectStorage
    bucket: str
    stats: StatisticsAggregator
    images: ImageStore
    assignments: AssignmentLedger
    annotations: AnnotationStore
    submissions: SubmissionWorkflow
    completion: CompletionEngine

    def close(self):
        self.store.close()


def create_services(db_path: str, storage: ObjectStorage, bucket: str) -> Services:
    """
    Open (creating or migrating) the database and build every service on it.

    Args:
        db_path: Path to the SQLite database file
        storage: Object storage backend
        bucket: Bucket holding images and annotation mirrors
    """
    store = ProjectStore.open(db_path)
    stats = StatisticsAggregator(store)
    images = ImageStore(store, storage, stats, bucket)
    ledger = AssignmentLedger(store, images)
    return Services(
        store=store,
        storage=storage,
        bucket=bucket,
        stats=stats,
        images=images,
        assignments=ledger,
        annotations=AnnotationStore(store, images, ledger, storage, bucket),
        submissions=SubmissionWorkflow(store, images, ledger, stats),
        completion=CompletionEngine(store, stats),
    )

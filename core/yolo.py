"""
YOLO plain-text annotation mirror.

One line per object: "<classIndex> <x> <y> <width> <height>", newline
joined, no trailing newline. The class index is the class's position in
the project's class list.
"""

import logging
from dataclasses import dataclass

from core.models import Project, YoloObject

logger = logging.getLogger(__name__)


@dataclass
class YoloLine:
    class_index: int
    x: float
    y: float
    width: float
    height: float


def resolve_class_index(class_index_map: dict[str, int], class_id: str) -> int:
    """Class id to index; unknown ids fall back to 0."""
    index = class_index_map.get(class_id)
    if index is None:
        logger.warning(f"Unknown class id {class_id!r}, writing class index 0")
        return 0
    return index


def render_yolo(project: Project, objects: list[YoloObject]) -> str:
    """
    Render annotation objects in the project's class-index ordering.

    Args:
        project: Project owning the class list
        objects: Annotation objects

    Returns:
        Mirror file content
    """
    class_index_map = project.class_index_map()
    lines = []
    for obj in objects:
        class_index = resolve_class_index(class_index_map, obj.class_id)
        lines.append(f"{class_index} {obj.x:.6f} {obj.y:.6f} {obj.width:.6f} {obj.height:.6f}")
    return "\n".join(lines)


def parse_yolo(content: str) -> list[YoloLine]:
    """Parse mirror content back into lines. Blank lines are skipped."""
    lines = []
    for lineno, raw in enumerate(content.splitlines(), start=1):
        parts = raw.split()
        if not parts:
            continue
        if len(parts) != 5:
            raise ValueError(f"Line {lineno}: expected 5 values, got {len(parts)}")
        lines.append(YoloLine(
            class_index=int(parts[0]),
            x=float(parts[1]),
            y=float(parts[2]),
            width=float(parts[3]),
            height=float(parts[4]),
        ))
    return lines

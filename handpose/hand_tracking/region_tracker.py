from dataclasses import dataclass, field
from typing import List, Optional

from ..utils.datatypes import Box

# A tracked region is kept when the new box overlaps it by more than this.
UPDATE_REGION_OF_INTEREST_IOU_THRESHOLD = 0.8


@dataclass
class TrackerState:
    """Tracking state of a single hand."""
    regions_of_interest: List[Box] = field(default_factory=list)
    runs_without_hand_detector: int = 0


def intersection_over_union(box: Box, previous_box: Box, legacy: bool = False) -> float:
    """
    Computes the overlap ratio of two axis-aligned boxes.

    Args:
        box: The newly observed box.
        previous_box: The currently tracked box.
        legacy (bool): If True, follows the tfjs handpose tracker exactly: the
                       previous box area uses the new box's start y and the
                       intersection is not clamped, so boxes disjoint on both
                       axes get a positive score.

    Returns:
        float: Intersection area over union area. Without legacy, 0.0 for
               disjoint boxes. 0.0 whenever the union is empty.
    """
    box_start_x, box_start_y = box.start_point
    box_end_x, box_end_y = box.end_point
    previous_start_x, previous_start_y = previous_box.start_point
    previous_end_x, previous_end_y = previous_box.end_point

    x_start_max = max(box_start_x, previous_start_x)
    y_start_max = max(box_start_y, previous_start_y)
    x_end_min = min(box_end_x, previous_end_x)
    y_end_min = min(box_end_y, previous_end_y)
    box_area = (box_end_x - box_start_x) * (box_end_y - box_start_y)
    if legacy:
        intersection = (x_end_min - x_start_max) * (y_end_min - y_start_max)
        previous_box_area = (previous_end_x - previous_start_x) * (previous_end_y - box_start_y)
    else:
        intersection = max(0.0, x_end_min - x_start_max) * max(0.0, y_end_min - y_start_max)
        previous_box_area = (previous_end_x - previous_start_x) * (previous_end_y - previous_start_y)

    union = box_area + previous_box_area - intersection
    if union == 0:
        return 0.0
    return intersection / union


class RegionTracker:
    """
    Owns the region of interest of one tracked hand and decides when the
    full-frame palm detector has to run again.
    """
    max_tracked_regions = 1

    def __init__(self, max_continuous_checks=float('inf'), legacy_iou=False):
        """
        Initializes the RegionTracker.

        Args:
            max_continuous_checks (int | float): Frames tracked from the previous
                region before a full detection is forced. float('inf') never forces one.
            legacy_iou (bool): Use the legacy previous-area term in the IOU test.
        """
        self.max_continuous_checks = max_continuous_checks
        self.legacy_iou = legacy_iou
        self.state = TrackerState()

    @property
    def current_region(self) -> Optional[Box]:
        if not self.state.regions_of_interest:
            return None
        return self.state.regions_of_interest[0]

    @property
    def runs_without_hand_detector(self) -> int:
        return self.state.runs_without_hand_detector

    def should_run_full_detection(self) -> bool:
        """
        Returns True when the palm detector must run on the next frame: no
        region is tracked, or the region was reused for max_continuous_checks frames.
        """
        rois_count = len(self.state.regions_of_interest)
        return (rois_count != self.max_tracked_regions or
                self.state.runs_without_hand_detector >= self.max_continuous_checks)

    def update_region(self, box: Box, force_replace: bool):
        """
        Updates the tracked region with a newly observed box.

        Args:
            box (Box): The new hand box.
            force_replace (bool): True right after a full detection. The region
                                  becomes `box` and the frame counter restarts.
                                  Otherwise the existing region is kept while
                                  it overlaps `box` by more than the IOU threshold.
        """
        if force_replace:
            self.state.regions_of_interest = [box]
            self.state.runs_without_hand_detector = 0
            return

        previous_box = self.current_region
        iou = 0.0
        if previous_box is not None:
            iou = intersection_over_union(box, previous_box, legacy=self.legacy_iou)

        if iou > UPDATE_REGION_OF_INTEREST_IOU_THRESHOLD:
            self.state.regions_of_interest = [previous_box]
        else:
            self.state.regions_of_interest = [box]

    def mark_tracked_frame(self):
        """Counts a frame processed from the tracked region, without the palm detector."""
        self.state.runs_without_hand_detector += 1

    def reset(self):
        """Drops the tracked region so the next frame runs a full detection."""
        self.state.regions_of_interest = []

"""
Debug utilities for Micropad CV Service.

Provides unified debugging interface with visual logging and step tracking.
"""

import logging
import numpy as np
import cv2
from dataclasses import dataclass, field
from typing import Optional, List, Dict, Any, Sequence, Tuple
from utils.visual_logger import VisualLogger

logger = logging.getLogger(__name__)


@dataclass
class DebugStep:
    """Represents a single debug step in the pipeline."""
    step_id: str
    name: str
    description: str
    data: Dict[str, Any] = field(default_factory=dict)


class DebugContext:
    """
    Manages debug state and visual logging for one photograph.

    Each photo gets its own context, so contexts are never shared between
    ingestion workers.

    Usage:
        debug = DebugContext(enabled=True, output_dir="logs", image_name="pad_01.jpg")
        debug.add_step("01_threshold", "Adaptive Threshold", thresh, {"block_size": 35})
        debug.save_log()
    """

    def __init__(
        self,
        enabled: bool = False,
        output_dir: Optional[str] = None,
        image_name: str = "unknown",
        run_name: str = "micropad"
    ):
        """
        Initialize debug context.

        Args:
            enabled: Whether debug mode is enabled
            output_dir: Directory for saving visual logs
            image_name: Name of the image being processed
            run_name: Sub-directory grouping this run's steps
        """
        self.enabled = enabled
        self.image_name = image_name
        self.run_name = run_name
        self.steps: List[DebugStep] = []
        self.visual_logger: Optional[VisualLogger] = None

        if enabled:
            self.visual_logger = VisualLogger(output_dir)
            self.visual_logger.start_log(run_name, image_name)

    def add_step(
        self,
        step_id: str,
        name: str,
        image: Optional[np.ndarray] = None,
        data: Optional[Dict[str, Any]] = None,
        description: str = ""
    ) -> None:
        """
        Add a debug step.

        Args:
            step_id: Unique identifier for the step (e.g., "02_threshold")
            name: Human-readable step name
            image: Optional image to log (numpy array)
            data: Optional metadata dictionary
            description: Optional description of the step
        """
        if not self.enabled:
            return

        clean_data = {key: self._clean_value(value) for key, value in (data or {}).items()}

        self.steps.append(DebugStep(
            step_id=step_id,
            name=name,
            description=description,
            data=clean_data
        ))

        if self.visual_logger and image is not None:
            try:
                self.visual_logger.add_step(step_id, description or name, image, clean_data)
            except Exception as e:
                logger.warning(f"Failed to add visual step {step_id}: {e}")

    def _clean_value(self, value):
        """Recursively clean a value for JSON serialization."""
        if isinstance(value, np.ndarray):
            return value.tolist() if value.size < 100 else f"<ndarray shape={value.shape}>"
        elif isinstance(value, np.bool_):
            return bool(value)
        elif isinstance(value, np.integer):
            return int(value)
        elif isinstance(value, np.floating):
            return float(value)
        elif isinstance(value, (list, tuple)):
            return [self._clean_value(v) for v in value]
        elif isinstance(value, dict):
            return {str(k): self._clean_value(v) for k, v in value.items()}
        elif hasattr(value, 'value') and hasattr(value, 'name'):
            # Enum members
            return value.value
        return value

    def save_log(self, final_image: Optional[np.ndarray] = None) -> Optional[str]:
        """
        Save the debug log.

        Args:
            final_image: Optional final image to save. If None, uses the last step's image.

        Returns:
            Path to saved log, or None if disabled or nothing to save
        """
        if not self.enabled or not self.visual_logger:
            return None

        if final_image is None:
            if not self.visual_logger.steps:
                logger.warning("No steps available to use as final image")
                return None
            final_image = self.visual_logger.steps[-1]['image']

        try:
            return self.visual_logger.save_log(final_image) or None
        except Exception as e:
            logger.warning(f"Failed to save debug log: {e}", exc_info=True)
            return None

    def is_enabled(self) -> bool:
        """Check if debug mode is enabled."""
        return self.enabled

    def visualize_contours(
        self,
        image: np.ndarray,
        contours: Sequence[np.ndarray],
        color: Tuple[int, int, int] = (0, 255, 0)
    ) -> np.ndarray:
        """Draw every contour on a copy of the image."""
        vis = image.copy()
        cv2.drawContours(vis, list(contours), -1, color, 2)
        cv2.putText(vis, f'Contours: {len(contours)}', (10, 30),
                    cv2.FONT_HERSHEY_SIMPLEX, 0.8, (0, 0, 255), 2)
        return vis

    def visualize_calibration(
        self,
        image: np.ndarray,
        squares: Sequence[Any]
    ) -> np.ndarray:
        """Outline the selected calibration swatches with their order."""
        vis = image.copy()
        for i, square in enumerate(squares):
            cv2.drawContours(vis, [square.contour], -1, (0, 255, 0), 2)
            cx, cy = int(square.centroid[0]), int(square.centroid[1])
            cv2.circle(vis, (cx, cy), 3, (0, 0, 255), -1)
            cv2.putText(vis, f'C{i}', (cx + 5, cy - 5),
                        cv2.FONT_HERSHEY_SIMPLEX, 0.6, (0, 0, 255), 2)
        return vis

    def visualize_error(
        self,
        image: np.ndarray,
        error_message: str,
        error_code: Optional[str] = None
    ) -> np.ndarray:
        """Create visualization for error state."""
        vis = image.copy()
        text = error_message
        if error_code:
            text = f"{error_code}: {error_message}"
        cv2.putText(vis, text, (10, 30),
                    cv2.FONT_HERSHEY_SIMPLEX, 0.8, (0, 0, 255), 2)
        return vis

"""
Visual logging utilities for inspecting intermediate micropad buffers.
"""

import cv2
import numpy as np
import logging
import json
import re
from typing import Dict, List, Optional
from datetime import datetime
from pathlib import Path

logger = logging.getLogger(__name__)


class VisualLogger:
    """Collects annotated intermediate images and writes them to disk."""

    def __init__(self, output_dir: Optional[str] = None):
        """
        Initialize visual logger.

        Args:
            output_dir: Base directory for saving logs. If None, uses logs/micropad/
        """
        self.output_dir = output_dir or 'logs/micropad'
        self.steps: List[Dict] = []
        self.run_name: Optional[str] = None
        self.image_name: Optional[str] = None

    def start_log(self, run_name: str, image_name: str):
        """Start a new visual log for one photograph."""
        self.run_name = run_name
        self.image_name = image_name
        self.steps = []

    def add_step(
        self,
        step_name: str,
        description: str,
        image: np.ndarray,
        data: Optional[Dict] = None
    ):
        """
        Add a visualization step to the log.

        Args:
            step_name: Name of the step (used in filename)
            description: Human-readable description
            image: Image for this step (BGR or single channel)
            data: Additional debug data (coordinates, values, etc.)
        """
        self.steps.append({
            'step_name': step_name,
            'description': description,
            'image': image.copy(),
            'data': data or {}
        })

    def get_log_dir(self) -> Optional[Path]:
        """Directory the log is (or will be) written to."""
        if not self.run_name or not self.image_name:
            return None
        # Timestamped run names are used as-is, file names lose their extension
        if re.search(r'_\d{8}_\d{6}', self.image_name):
            image_base = self.image_name
        else:
            image_base = Path(self.image_name).stem
        return Path(self.output_dir) / image_base / self.run_name

    def save_log(self, final_visualization: np.ndarray) -> str:
        """
        Save visual log to disk.

        Steps are written losslessly as PNG so threshold masks stay binary.

        Args:
            final_visualization: Final annotated result image

        Returns:
            Path to saved log directory
        """
        log_dir = self.get_log_dir()
        if log_dir is None:
            logger.warning('Cannot save log: run_name or image_name not set')
            return ''

        log_dir.mkdir(parents=True, exist_ok=True)

        step_files = []
        for idx, step in enumerate(self.steps):
            step_filename = f'step_{idx:02d}_{step["step_name"]}.png'
            cv2.imwrite(str(log_dir / step_filename), step['image'])
            step_files.append(step_filename)

        cv2.imwrite(str(log_dir / 'final_result.png'), final_visualization)

        metadata = {
            'run_name': self.run_name,
            'image_name': self.image_name,
            'timestamp': datetime.now().isoformat(),
            'steps': [
                {
                    'step_name': step['step_name'],
                    'description': step['description'],
                    'image_file': step_file,
                    'data': step['data']
                }
                for step, step_file in zip(self.steps, step_files)
            ],
            'final_image': 'final_result.png'
        }

        with open(log_dir / 'log.json', 'w') as f:
            json.dump(metadata, f, indent=2)

        logger.info(f'Visual log saved to: {log_dir}')
        return str(log_dir)

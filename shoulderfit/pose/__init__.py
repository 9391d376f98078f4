"""
Pose collaborator boundary.

Defines the model-agnostic LandmarkFrame interface and provider adapters
(MediaPipe Pose graph, MediaPipe PoseLandmarker task) so the measurement
engine never depends on a specific pose stack.
"""

from shoulderfit.pose.base import PoseProvider, get_pose_provider
from shoulderfit.pose.types import LEFT_SHOULDER, RIGHT_SHOULDER, TRACKED_LANDMARKS, Keypoint, LandmarkFrame

__all__ = [
	"PoseProvider",
	"get_pose_provider",
	"Keypoint",
	"LandmarkFrame",
	"LEFT_SHOULDER",
	"RIGHT_SHOULDER",
	"TRACKED_LANDMARKS",
]

"""
17-point skeleton topology shared by every stability detector.

Keypoint index is joint identity in the COCO / MoveNet layout, so all
detectors, the mirror engine and the history tracker read their joint
indices from this module instead of repeating literals.
"""

from enum import IntEnum
from typing import Dict, FrozenSet, List, Tuple


class JointId(IntEnum):
    """COCO 17-keypoint joint indices"""
    NOSE = 0
    LEFT_EYE = 1
    RIGHT_EYE = 2
    LEFT_EAR = 3
    RIGHT_EAR = 4
    LEFT_SHOULDER = 5
    RIGHT_SHOULDER = 6
    LEFT_ELBOW = 7
    RIGHT_ELBOW = 8
    LEFT_WRIST = 9
    RIGHT_WRIST = 10
    LEFT_HIP = 11
    RIGHT_HIP = 12
    LEFT_KNEE = 13
    RIGHT_KNEE = 14
    LEFT_ANKLE = 15
    RIGHT_ANKLE = 16


NUM_KEYPOINTS = len(JointId)

JOINT_NAMES: Dict[int, str] = {joint.value: joint.name.lower() for joint in JointId}

# Segments compared frame-to-frame by the banana detector: (joint1, joint2, name)
SEGMENTS_TO_CHECK: List[Tuple[int, int, str]] = [
    (JointId.LEFT_SHOULDER, JointId.LEFT_ELBOW, "Left Upper Arm"),
    (JointId.LEFT_ELBOW, JointId.LEFT_WRIST, "Left Forearm"),
    (JointId.RIGHT_SHOULDER, JointId.RIGHT_ELBOW, "Right Upper Arm"),
    (JointId.RIGHT_ELBOW, JointId.RIGHT_WRIST, "Right Forearm"),
    (JointId.LEFT_HIP, JointId.LEFT_KNEE, "Left Thigh"),
    (JointId.LEFT_KNEE, JointId.LEFT_ANKLE, "Left Shin"),
    (JointId.RIGHT_HIP, JointId.RIGHT_KNEE, "Right Thigh"),
    (JointId.RIGHT_KNEE, JointId.RIGHT_ANKLE, "Right Shin"),
    (JointId.LEFT_SHOULDER, JointId.RIGHT_SHOULDER, "Shoulders"),
    (JointId.LEFT_HIP, JointId.RIGHT_HIP, "Hips"),
]

# Vertex angles checked for per-frame jumps: (joint1, vertex, joint3, name)
ANGLES_TO_CHECK: List[Tuple[int, int, int, str]] = [
    (JointId.LEFT_SHOULDER, JointId.LEFT_ELBOW, JointId.LEFT_WRIST, "Left Elbow"),
    (JointId.RIGHT_SHOULDER, JointId.RIGHT_ELBOW, JointId.RIGHT_WRIST, "Right Elbow"),
    (JointId.LEFT_HIP, JointId.LEFT_KNEE, JointId.LEFT_ANKLE, "Left Knee"),
    (JointId.RIGHT_HIP, JointId.RIGHT_KNEE, JointId.RIGHT_ANKLE, "Right Knee"),
]

# (left, right) contralateral pairs used by the mirror engine
MIRROR_PAIRS: List[Tuple[int, int]] = [
    (JointId.LEFT_SHOULDER, JointId.RIGHT_SHOULDER),
    (JointId.LEFT_ELBOW, JointId.RIGHT_ELBOW),
    (JointId.LEFT_WRIST, JointId.RIGHT_WRIST),
    (JointId.LEFT_HIP, JointId.RIGHT_HIP),
    (JointId.LEFT_KNEE, JointId.RIGHT_KNEE),
    (JointId.LEFT_ANKLE, JointId.RIGHT_ANKLE),
]

LEFT_ARM_JOINTS: Tuple[int, ...] = (JointId.LEFT_SHOULDER, JointId.LEFT_ELBOW, JointId.LEFT_WRIST)
RIGHT_ARM_JOINTS: Tuple[int, ...] = (JointId.RIGHT_SHOULDER, JointId.RIGHT_ELBOW, JointId.RIGHT_WRIST)
LEFT_LEG_JOINTS: Tuple[int, ...] = (JointId.LEFT_HIP, JointId.LEFT_KNEE, JointId.LEFT_ANKLE)
RIGHT_LEG_JOINTS: Tuple[int, ...] = (JointId.RIGHT_HIP, JointId.RIGHT_KNEE, JointId.RIGHT_ANKLE)

LIMB_GROUPS: Dict[str, Tuple[int, ...]] = {
    "left_arm": LEFT_ARM_JOINTS,
    "right_arm": RIGHT_ARM_JOINTS,
    "left_leg": LEFT_LEG_JOINTS,
    "right_leg": RIGHT_LEG_JOINTS,
}

# Face joints sit on the body axis and have no usable contralateral source
MIDLINE_JOINTS: FrozenSet[int] = frozenset(
    {JointId.NOSE, JointId.LEFT_EYE, JointId.RIGHT_EYE, JointId.LEFT_EAR, JointId.RIGHT_EAR}
)

# Angle name -> (limb group, distal joint moved with the vertex)
ANGLE_LIMBS: Dict[str, Tuple[str, int]] = {
    "Left Elbow": ("left_arm", JointId.LEFT_WRIST),
    "Right Elbow": ("right_arm", JointId.RIGHT_WRIST),
    "Left Knee": ("left_leg", JointId.LEFT_ANKLE),
    "Right Knee": ("right_leg", JointId.RIGHT_ANKLE),
}

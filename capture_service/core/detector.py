"""
手部关键点模块
封装 MediaPipe Hands，只给关键点计数器提供第一只手的 21 个关键点
"""

import time
from dataclasses import dataclass, field
from enum import IntEnum
from typing import List, Tuple

import cv2
import numpy as np


class LandmarkIndex(IntEnum):
    """计数用到的关键点索引"""
    WRIST = 0
    THUMB_MCP = 2
    THUMB_TIP = 4
    INDEX_PIP = 6
    INDEX_TIP = 8
    MIDDLE_PIP = 10
    MIDDLE_TIP = 12
    RING_PIP = 14
    RING_TIP = 16
    PINKY_PIP = 18
    PINKY_TIP = 20


NUM_LANDMARKS = 21

# 四指 (指尖, PIP)，大拇指按 x 方向单独判断
FINGER_TIP_PIP = {
    "index": (LandmarkIndex.INDEX_TIP, LandmarkIndex.INDEX_PIP),
    "middle": (LandmarkIndex.MIDDLE_TIP, LandmarkIndex.MIDDLE_PIP),
    "ring": (LandmarkIndex.RING_TIP, LandmarkIndex.RING_PIP),
    "pinky": (LandmarkIndex.PINKY_TIP, LandmarkIndex.PINKY_PIP)
}

FINGER_TIPS = {LandmarkIndex.THUMB_TIP} | {tip for tip, _ in FINGER_TIP_PIP.values()}

# 每根手指从手腕出发的关键点链，用于绘制骨骼
FINGER_CHAINS = [
    (0, 1, 2, 3, 4),
    (0, 5, 6, 7, 8),
    (0, 9, 10, 11, 12),
    (0, 13, 14, 15, 16),
    (0, 17, 18, 19, 20),
    (5, 9, 13, 17),
]


@dataclass
class HandLandmarks:
    """单手关键点"""
    handedness: str                        # "Left" / "Right"
    landmarks: np.ndarray                  # 21x3 归一化坐标
    landmarks_pixel: np.ndarray            # 21x2 像素坐标
    confidence: float


@dataclass
class DetectionResult:
    """一帧的检测结果"""
    hands: List[HandLandmarks] = field(default_factory=list)
    inference_time_ms: float = 0.0

    @property
    def has_hands(self) -> bool:
        return bool(self.hands)


class HandDetector:
    """MediaPipe Hands 检测器"""

    def __init__(
        self,
        max_num_hands: int = 1,
        min_detection_confidence: float = 0.5,
        min_tracking_confidence: float = 0.5,
        model_complexity: int = 1
    ):
        # MediaPipe 较重，只在真正创建检测器时导入
        import mediapipe as mp

        self._hands = mp.solutions.hands.Hands(
            static_image_mode=False,
            max_num_hands=max_num_hands,
            min_detection_confidence=min_detection_confidence,
            min_tracking_confidence=min_tracking_confidence,
            model_complexity=model_complexity
        )

    def detect(self, image: np.ndarray) -> DetectionResult:
        """
        检测一帧 BGR 图像中的手

        Returns:
            DetectionResult，没有手时 hands 为空
        """
        started = time.time()
        height, width = image.shape[:2]

        results = self._hands.process(cv2.cvtColor(image, cv2.COLOR_BGR2RGB))

        hands = []
        for hand, info in zip(results.multi_hand_landmarks or [], results.multi_handedness or []):
            label = info.classification[0]
            points = np.array([[lm.x, lm.y, lm.z] for lm in hand.landmark])
            pixels = (points[:, :2] * (width, height)).astype(int)

            hands.append(HandLandmarks(
                handedness=label.label,
                landmarks=points,
                landmarks_pixel=pixels,
                confidence=label.score
            ))

        return DetectionResult(hands=hands, inference_time_ms=(time.time() - started) * 1000)

    def close(self):
        self._hands.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False


def draw_landmarks(
    image: np.ndarray,
    result: DetectionResult,
    color: Tuple[int, int, int] = (0, 255, 255),
    thickness: int = 2,
    radius: int = 4
) -> np.ndarray:
    """在图像副本上绘制手部骨骼，指尖用绿色加大圆点"""
    output = image.copy()

    for hand in result.hands:
        pts = hand.landmarks_pixel.astype(np.int32)

        for chain in FINGER_CHAINS:
            cv2.polylines(output, [pts[list(chain)]], False, color, thickness)

        for i, (x, y) in enumerate(pts):
            if i in FINGER_TIPS:
                cv2.circle(output, (int(x), int(y)), radius + 2, (0, 255, 0), -1)
            else:
                cv2.circle(output, (int(x), int(y)), radius, color, -1)

    return output

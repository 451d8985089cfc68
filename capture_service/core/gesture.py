"""
手势识别模块
把一帧图像映射为伸出的手指数（0~5），未检测到手时返回 None

提供两种可互换的策略：
1. 基于 MediaPipe 关键点的计数
2. 基于肤色像素的启发式计数（无需模型）
"""

from typing import Optional

import cv2
import numpy as np

from .detector import (
    FINGER_TIP_PIP,
    NUM_LANDMARKS,
    DetectionResult,
    HandDetector,
    LandmarkIndex,
)


def count_extended_fingers(landmarks: np.ndarray) -> int:
    """
    根据 21 个关键点计算伸出的手指数

    大拇指：指尖 x 超过指根关节 x
    其余四指：指尖 y 高于 PIP 关节 y（图像坐标 y 向下增长）

    Args:
        landmarks: 21x2 或 21x3 坐标数组

    Returns:
        0~5 的手指数，关键点不足时返回 0
    """
    lm = np.asarray(landmarks)
    if lm.ndim != 2 or lm.shape[0] < NUM_LANDMARKS or lm.shape[1] < 2:
        return 0

    count = 0

    if lm[LandmarkIndex.THUMB_TIP][0] > lm[LandmarkIndex.THUMB_MCP][0]:
        count += 1

    for tip_idx, pip_idx in FINGER_TIP_PIP.values():
        if lm[tip_idx][1] < lm[pip_idx][1]:
            count += 1

    return count


class FingerCounter:
    """
    手指计数器基类
    子类实现 classify()，调用方只依赖这个接口
    """

    name = "base"

    def classify(self, image: np.ndarray) -> Optional[int]:
        """
        对一帧 BGR 图像计数

        Returns:
            0~5 的手指数；没有检测到手时返回 None
        """
        raise NotImplementedError

    def close(self):
        """释放资源"""

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False


class LandmarkFingerCounter(FingerCounter):
    """
    基于 MediaPipe 手部关键点的计数器
    只统计检测到的第一只手
    """

    name = "landmark"

    def __init__(
        self,
        detector: Optional[HandDetector] = None,
        max_num_hands: int = 1,
        min_detection_confidence: float = 0.5,
        min_tracking_confidence: float = 0.5,
        model_complexity: int = 1
    ):
        self._detector = detector or HandDetector(
            max_num_hands=max_num_hands,
            min_detection_confidence=min_detection_confidence,
            min_tracking_confidence=min_tracking_confidence,
            model_complexity=model_complexity
        )

        # 最近一次检测结果，供预览绘制骨骼
        self.last_result: Optional[DetectionResult] = None

    def classify(self, image: np.ndarray) -> Optional[int]:
        if image is None:
            return None

        result = self._detector.detect(image)
        self.last_result = result

        if not result.has_hands:
            return None

        return count_extended_fingers(result.hands[0].landmarks)

    def close(self):
        self._detector.close()


class SkinToneFingerCounter(FingerCounter):
    """
    肤色像素启发式计数器

    在画面上方区域稀疏采样，按固定 RGB 比例规则判定肤色，
    把肤色点按竖列分桶，统计超过密度阈值的连续"峰"作为手指数
    """

    name = "skin"

    def __init__(
        self,
        analysis_width: int = 320,
        analysis_height: int = 240,
        upper_region_ratio: float = 0.7,
        grid_step: int = 4,
        column_width: int = 10,
        peak_threshold: int = 5,
        max_fingers: int = 5
    ):
        self.analysis_width = analysis_width
        self.analysis_height = analysis_height
        self.upper_region_ratio = upper_region_ratio
        self.grid_step = grid_step
        self.column_width = column_width
        self.peak_threshold = peak_threshold
        self.max_fingers = max_fingers

    @staticmethod
    def skin_mask(pixels: np.ndarray) -> np.ndarray:
        """
        肤色判定：r>95, g>40, b>20, r>g, r>b, |r-g|>15

        Args:
            pixels: (..., 3) 的 BGR 像素

        Returns:
            同形状（去掉通道维）的布尔掩码
        """
        px = pixels.astype(np.int16)
        b, g, r = px[..., 0], px[..., 1], px[..., 2]
        return (
            (r > 95) & (g > 40) & (b > 20) &
            (r > g) & (r > b) &
            (np.abs(r - g) > 15)
        )

    def column_density(self, image: np.ndarray) -> Optional[np.ndarray]:
        """
        计算每一竖列的肤色点数量

        Returns:
            每列计数数组；采样区域内没有任何肤色点时返回 None
        """
        small = cv2.resize(image, (self.analysis_width, self.analysis_height))
        upper_end = int(self.analysis_height * self.upper_region_ratio)

        step = self.grid_step
        sampled = small[0:upper_end:step, 0:self.analysis_width:step]
        mask = self.skin_mask(sampled)

        if not mask.any():
            return None

        # 只有区域上半部分的点参与分列统计
        ys = np.arange(0, upper_end, step)
        xs = np.arange(0, self.analysis_width, step)
        top_counts = mask[ys < upper_end / 2].sum(axis=0)

        num_columns = -(-self.analysis_width // self.column_width)
        return np.bincount(
            xs // self.column_width,
            weights=top_counts,
            minlength=num_columns
        )

    def count_peaks(self, columns: np.ndarray) -> int:
        """统计上升进入阈值以上的列峰（首尾列不参与）"""
        peak_count = 0
        in_peak = False

        for i in range(1, len(columns) - 1):
            if columns[i] > self.peak_threshold:
                if not in_peak and columns[i] > columns[i - 1]:
                    peak_count += 1
                    in_peak = True
            else:
                in_peak = False

        return peak_count

    def classify(self, image: np.ndarray) -> Optional[int]:
        if image is None or image.size == 0:
            return None

        columns = self.column_density(image)
        if columns is None:
            return None

        return min(self.count_peaks(columns), self.max_fingers)


def build_finger_counter(config) -> FingerCounter:
    """
    根据分类器配置创建计数器

    Args:
        config: ClassifierConfig
    """
    if config.strategy == "landmark":
        return LandmarkFingerCounter(
            max_num_hands=config.max_num_hands,
            min_detection_confidence=config.min_detection_confidence,
            min_tracking_confidence=config.min_tracking_confidence,
            model_complexity=config.model_complexity
        )

    if config.strategy == "skin":
        return SkinToneFingerCounter(
            analysis_width=config.analysis_width,
            analysis_height=config.analysis_height,
            upper_region_ratio=config.upper_region_ratio,
            grid_step=config.grid_step,
            column_width=config.column_width,
            peak_threshold=config.peak_threshold,
            max_fingers=config.max_fingers
        )

    raise ValueError(f"未知的分类策略: {config.strategy}")

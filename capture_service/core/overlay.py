"""
预览叠加层模块
在视频帧上绘制拍照界面的反馈：人脸引导圈、检测指示、手指序号徽章、倒计时数字
"""

from typing import Sequence

import cv2
import numpy as np

from .state_machine import CaptureSnapshot, CaptureState

# 颜色 (BGR)
WHITE = (255, 255, 255)
GREEN = (0, 200, 0)
TEAL = (128, 128, 0)
GRAY = (160, 160, 160)
RED = (0, 0, 255)


def draw_face_guide(image: np.ndarray):
    """画面中央的虚线引导圈"""
    h, w = image.shape[:2]
    center = (w // 2, h // 2)
    radius = min(w, h) // 4

    # 用若干短弧模拟虚线
    for start in range(0, 360, 20):
        cv2.ellipse(image, center, (radius, radius), 0, start, start + 10, WHITE, 2)


def draw_finger_badges(image: np.ndarray, target: Sequence[int], progress: int):
    """顶部的目标序列徽章，已完成的前 progress 个点亮"""
    w = image.shape[1]
    radius = 18
    gap = 70
    total = gap * (len(target) - 1)
    x0 = w // 2 - total // 2
    y = 80

    for i, number in enumerate(target):
        x = x0 + i * gap
        lit = i < progress
        cv2.circle(image, (x, y), radius, GREEN if lit else GRAY, -1)
        cv2.putText(image, str(number), (x - 8, y + 8),
                    cv2.FONT_HERSHEY_SIMPLEX, 0.7, WHITE, 2)
        if i < len(target) - 1:
            cv2.arrowedLine(image, (x + radius + 4, y), (x + gap - radius - 4, y),
                            WHITE, 2, tipLength=0.4)


def draw_countdown(image: np.ndarray, countdown: int):
    """画面中央的大号倒计时数字"""
    h, w = image.shape[:2]
    text = str(countdown)
    scale = 6.0
    thickness = 12
    (tw, th), _ = cv2.getTextSize(text, cv2.FONT_HERSHEY_SIMPLEX, scale, thickness)
    cv2.putText(image, text, ((w - tw) // 2, (h + th) // 2),
                cv2.FONT_HERSHEY_SIMPLEX, scale, WHITE, thickness)


def draw_capture_overlay(image: np.ndarray, snapshot: CaptureSnapshot) -> np.ndarray:
    """
    按当前拍照状态绘制完整叠加层

    Returns:
        绘制后的新图像
    """
    output = image.copy()
    h, w = output.shape[:2]

    draw_face_guide(output)

    if snapshot.state == CaptureState.COUNTING_DOWN and snapshot.countdown:
        draw_countdown(output, snapshot.countdown)

    elif snapshot.state == CaptureState.CAPTURED:
        cv2.rectangle(output, (0, 0), (w - 1, h - 1), WHITE, 12)
        cv2.putText(output, "Captured!", (10, 30),
                    cv2.FONT_HERSHEY_SIMPLEX, 0.8, GREEN, 2)

    elif snapshot.detecting:
        cv2.putText(output, "Detecting...", (w - 160, 30),
                    cv2.FONT_HERSHEY_SIMPLEX, 0.6, TEAL, 2)
        draw_finger_badges(output, snapshot.target, snapshot.progress)
        steps = ", ".join(str(n) for n in snapshot.target)
        cv2.putText(output, f"Show {steps} fingers to start countdown",
                    (10, h - 40), cv2.FONT_HERSHEY_SIMPLEX, 0.5, WHITE, 1)

    elif snapshot.state == CaptureState.DETECTING:
        cv2.putText(output, "Gesture capture off", (10, 30),
                    cv2.FONT_HERSHEY_SIMPLEX, 0.6, GRAY, 2)

    elif snapshot.state == CaptureState.TERMINATED:
        cv2.putText(output, "Closed", (10, 30),
                    cv2.FONT_HERSHEY_SIMPLEX, 0.6, RED, 2)

    return output

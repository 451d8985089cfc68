"""
Gesture Capture 核心模块
包含摄像头采集、手指计数、拍照触发状态机和会话调度
"""

from .capture import CameraCapture, CapturedPhoto, Frame, encode_photo
from .detector import HandDetector
from .gesture import (
    FingerCounter,
    LandmarkFingerCounter,
    SkinToneFingerCounter,
    build_finger_counter,
)
from .session import CaptureSession
from .state_machine import CaptureState, CaptureTrigger, GestureSequence, TriggerEvent

__all__ = [
    "CameraCapture",
    "CapturedPhoto",
    "Frame",
    "encode_photo",
    "HandDetector",
    "FingerCounter",
    "LandmarkFingerCounter",
    "SkinToneFingerCounter",
    "build_finger_counter",
    "CaptureSession",
    "CaptureState",
    "CaptureTrigger",
    "GestureSequence",
    "TriggerEvent"
]

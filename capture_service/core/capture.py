"""
摄像头采集模块
负责从摄像头获取视频帧，并把静态帧编码为照片
"""

import base64
import threading
import time
from dataclasses import dataclass
from typing import Any, Dict, Optional

import cv2
import numpy as np


@dataclass
class Frame:
    """视频帧数据结构"""
    image: np.ndarray           # BGR 图像数据
    frame_id: int               # 帧序号
    timestamp: float            # 时间戳（毫秒）
    width: int                  # 图像宽度
    height: int                 # 图像高度


@dataclass
class CapturedPhoto:
    """一次拍照周期产生的照片"""
    jpeg: bytes                 # JPEG 编码数据
    timestamp: float            # 拍照时间戳（毫秒）
    width: int
    height: int

    def to_base64(self) -> str:
        return base64.b64encode(self.jpeg).decode("ascii")

    @property
    def data_url(self) -> str:
        """浏览器可直接使用的 data URL"""
        return f"data:image/jpeg;base64,{self.to_base64()}"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "image": self.data_url,
            "timestamp": self.timestamp,
            "width": self.width,
            "height": self.height
        }


def encode_photo(
    image: Optional[np.ndarray],
    timestamp: float,
    quality: int = 92
) -> Optional[CapturedPhoto]:
    """
    把 BGR 帧编码为 JPEG 照片

    Returns:
        CapturedPhoto，图像为空或编码失败时返回 None
    """
    if image is None or image.size == 0:
        return None

    ret, jpeg = cv2.imencode(".jpg", image, [cv2.IMWRITE_JPEG_QUALITY, quality])
    if not ret:
        return None

    return CapturedPhoto(
        jpeg=jpeg.tobytes(),
        timestamp=timestamp,
        width=image.shape[1],
        height=image.shape[0]
    )


class CameraCapture:
    """
    摄像头采集类
    在后台线程中持续读取，只保留最新一帧，供轮询方随时取用
    """

    def __init__(
        self,
        device_id: int = 0,
        width: int = 640,
        height: int = 480,
        fps: int = 30,
        mirror: bool = True
    ):
        """
        初始化摄像头

        Args:
            device_id: 摄像头设备ID
            width: 分辨率宽度
            height: 分辨率高度
            fps: 目标帧率
            mirror: 是否水平翻转（镜像模式）
        """
        self.device_id = device_id
        self.width = width
        self.height = height
        self.fps = fps
        self.mirror = mirror

        # 内部状态
        self._cap: Optional[cv2.VideoCapture] = None
        self._latest: Optional[Frame] = None
        self._cond = threading.Condition()
        self._running = False
        self._thread: Optional[threading.Thread] = None
        self._frame_count = 0
        self._start_time = 0.0

    def start(self) -> bool:
        """
        启动摄像头采集

        Returns:
            是否成功启动
        """
        if self._running:
            return True

        self._cap = cv2.VideoCapture(self.device_id)
        if not self._cap.isOpened():
            print(f"[ERROR] 无法打开摄像头 {self.device_id}", flush=True)
            self._cap = None
            return False

        self._cap.set(cv2.CAP_PROP_FRAME_WIDTH, self.width)
        self._cap.set(cv2.CAP_PROP_FRAME_HEIGHT, self.height)
        self._cap.set(cv2.CAP_PROP_FPS, self.fps)

        # 读取实际参数（可能与设置不同）
        actual_width = int(self._cap.get(cv2.CAP_PROP_FRAME_WIDTH))
        actual_height = int(self._cap.get(cv2.CAP_PROP_FRAME_HEIGHT))
        actual_fps = self._cap.get(cv2.CAP_PROP_FPS)

        print(f"[INFO] 摄像头已启动: {actual_width}x{actual_height} @ {actual_fps:.1f}fps", flush=True)

        self._running = True
        self._start_time = time.time() * 1000
        self._frame_count = 0
        self._thread = threading.Thread(target=self._capture_loop, daemon=True)
        self._thread.start()

        return True

    def stop(self):
        """停止摄像头采集"""
        self._running = False

        with self._cond:
            self._cond.notify_all()

        if self._thread and self._thread.is_alive():
            self._thread.join(timeout=1.0)

        if self._cap:
            self._cap.release()
            self._cap = None

        with self._cond:
            self._latest = None

        print("[INFO] 摄像头已停止", flush=True)

    def _capture_loop(self):
        """采集线程主循环"""
        while self._running and self._cap and self._cap.isOpened():
            ret, image = self._cap.read()

            if not ret:
                print("[WARN] 读取帧失败", flush=True)
                time.sleep(0.01)
                continue

            if self.mirror:
                image = cv2.flip(image, 1)

            self._frame_count += 1
            timestamp = time.time() * 1000 - self._start_time

            frame = Frame(
                image=image,
                frame_id=self._frame_count,
                timestamp=timestamp,
                width=image.shape[1],
                height=image.shape[0]
            )

            # 只保留最新帧，旧帧直接丢弃
            with self._cond:
                self._latest = frame
                self._cond.notify_all()

    def latest(self) -> Optional[Frame]:
        """获取最新一帧（不等待），尚无帧时返回 None"""
        with self._cond:
            return self._latest

    def read(self, timeout: float = 0.1, after_id: int = 0) -> Optional[Frame]:
        """
        等待一帧比 after_id 更新的图像

        Args:
            timeout: 超时时间（秒）
            after_id: 已处理过的帧序号

        Returns:
            Frame 对象，如果超时则返回 None
        """
        with self._cond:
            ready = self._cond.wait_for(
                lambda: not self._running or (
                    self._latest is not None and self._latest.frame_id > after_id
                ),
                timeout=timeout
            )
            if not ready or self._latest is None or self._latest.frame_id <= after_id:
                return None
            return self._latest

    @property
    def is_running(self) -> bool:
        """是否正在运行"""
        return self._running

    @property
    def actual_fps(self) -> float:
        """计算实际帧率"""
        if self._frame_count == 0 or self._start_time == 0:
            return 0.0
        elapsed = (time.time() * 1000 - self._start_time) / 1000
        return self._frame_count / elapsed if elapsed > 0 else 0.0

    def __enter__(self):
        """支持 with 语句"""
        self.start()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """支持 with 语句"""
        self.stop()
        return False

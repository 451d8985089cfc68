"""
Gesture Capture 配置文件
包含拍照触发状态机参数、手势分类阈值、摄像头与服务器配置等
"""

from dataclasses import dataclass, field
from typing import Tuple


@dataclass
class CaptureConfig:
    """拍照触发状态机配置"""

    # 目标手势序列：依次比出 1、2、3 根手指
    target_sequence: Tuple[int, ...] = (1, 2, 3)
    sequence_capacity: int = 5        # 手势历史最多保留的条目数

    # 有效手指数范围，超出范围的读数会清空序列
    min_valid_count: int = 1
    max_valid_count: int = 3

    # 时间参数（毫秒）
    poll_interval_ms: int = 500       # 手势分类轮询间隔
    tick_interval_ms: int = 1000      # 倒计时每一步的间隔
    debounce_ms: int = 3000           # 两次手势触发之间的最短间隔
    rearm_delay_ms: int = 1000        # 拍照后重新进入检测前的等待时间

    countdown_ticks: int = 3          # 倒计时步数 3 -> 2 -> 1 -> 拍照

    # 拍照后行为：True 为弹窗模式（拍完即关闭），False 为内嵌模式（重新检测）
    close_on_capture: bool = False
    jpeg_quality: int = 92            # 照片 JPEG 质量


@dataclass
class ClassifierConfig:
    """手指计数分类器配置"""

    strategy: str = "landmark"        # "landmark" | "skin"

    # MediaPipe 关键点模型参数
    max_num_hands: int = 1
    min_detection_confidence: float = 0.5
    min_tracking_confidence: float = 0.5
    model_complexity: int = 1

    # 肤色像素启发式参数
    analysis_width: int = 320         # 分析前缩放到的宽度
    analysis_height: int = 240        # 分析前缩放到的高度
    upper_region_ratio: float = 0.7   # 只分析画面上方区域
    grid_step: int = 4                # 像素采样步长
    column_width: int = 10            # 竖向分桶宽度
    peak_threshold: int = 5           # 列密度超过此值视为手指
    max_fingers: int = 5


@dataclass
class ServerConfig:
    """WebSocket 服务器配置"""

    host: str = "127.0.0.1"
    port: int = 8765
    mjpeg_port: int = 8766            # 预览视频流端口

    # 心跳配置
    heartbeat_interval: int = 5000    # 心跳间隔（毫秒）


@dataclass
class CameraConfig:
    """摄像头配置"""

    device_id: int = 0               # 摄像头设备ID
    width: int = 640                 # 分辨率宽度
    height: int = 480                # 分辨率高度
    fps: int = 30                    # 帧率
    mirror: bool = True              # 是否镜像（自拍模式）


@dataclass
class Config:
    """主配置类，整合所有配置"""

    capture: CaptureConfig = field(default_factory=CaptureConfig)
    classifier: ClassifierConfig = field(default_factory=ClassifierConfig)
    server: ServerConfig = field(default_factory=ServerConfig)
    camera: CameraConfig = field(default_factory=CameraConfig)

    # 调试选项
    debug: bool = False
    output_dir: str = "captures"     # 调试模式下照片保存目录


# 创建默认配置实例
default_config = Config()

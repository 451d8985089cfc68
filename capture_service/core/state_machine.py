"""
拍照触发状态机模块
负责手势序列去抖、倒计时状态转换和拍照时机判定

状态机本身不持有定时器，时间戳由调用方传入（毫秒），
定时调度由 CaptureSession 负责
"""

from collections import deque
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence, Tuple


class CaptureState(Enum):
    """拍照状态枚举"""
    DETECTING = "detecting"         # 检测中（空闲）
    COUNTING_DOWN = "counting_down" # 倒计时中
    CAPTURED = "captured"           # 已拍照
    TERMINATED = "terminated"       # 已关闭/取消


class GestureSequence:
    """
    手势历史序列
    只记录相邻去重后的读数，超出容量时先淘汰最旧的条目
    """

    def __init__(self, capacity: int = 5):
        self.capacity = capacity
        self._items: deque = deque(maxlen=capacity)

    def push(self, count: int) -> bool:
        """
        追加一个读数

        Returns:
            是否真正追加（与最后一个相同时不追加）
        """
        if self._items and self._items[-1] == count:
            return False
        self._items.append(count)
        return True

    def matches(self, target: Sequence[int]) -> bool:
        """最后 len(target) 个条目是否与目标序列一致"""
        n = len(target)
        if n == 0 or len(self._items) < n:
            return False
        return list(self._items)[-n:] == list(target)

    def clear(self):
        self._items.clear()

    def to_list(self) -> List[int]:
        return list(self._items)

    def __len__(self) -> int:
        return len(self._items)


@dataclass
class TriggerEvent:
    """状态机事件"""
    event_type: str          # "trigger" | "tick" | "capture" | "capture_failed" | "rearm" | "cancel"
    state: CaptureState      # 事件发生后的状态
    timestamp: float         # 时间戳（毫秒）
    countdown: Optional[int] = None
    meta: Dict[str, Any] = field(default_factory=dict)  # 附加信息（如触发来源）

    def to_dict(self) -> Dict[str, Any]:
        return {
            "event_type": self.event_type,
            "state": self.state.value,
            "timestamp": self.timestamp,
            "countdown": self.countdown,
            "meta": self.meta
        }


@dataclass
class CaptureSnapshot:
    """供界面展示的只读状态"""
    state: CaptureState
    countdown: Optional[int]
    finger_count: Optional[int]
    sequence: List[int]
    enabled: bool
    target: Tuple[int, ...] = (1, 2, 3)

    @property
    def detecting(self) -> bool:
        """是否显示"检测中"指示"""
        return self.enabled and self.state == CaptureState.DETECTING

    @property
    def progress(self) -> int:
        """序列末尾已完成的目标前缀长度"""
        for n in range(min(len(self.target), len(self.sequence)), 0, -1):
            if list(self.sequence[-n:]) == list(self.target[:n]):
                return n
        return 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "state": self.state.value,
            "countdown": self.countdown,
            "finger_count": self.finger_count,
            "sequence": self.sequence,
            "target": list(self.target),
            "progress": self.progress,
            "enabled": self.enabled,
            "detecting": self.detecting
        }


class CaptureTrigger:
    """
    拍照触发状态机

    DETECTING --(手势 1-2-3 / 手动)--> COUNTING_DOWN(3)
    COUNTING_DOWN(n) --tick--> COUNTING_DOWN(n-1)
    COUNTING_DOWN(1) --tick--> CAPTURED
    CAPTURED --rearm--> DETECTING
    任意状态 --cancel--> TERMINATED
    """

    def __init__(
        self,
        target_sequence: Tuple[int, ...] = (1, 2, 3),
        sequence_capacity: int = 5,
        debounce_ms: float = 3000,
        countdown_ticks: int = 3,
        min_valid_count: int = 1,
        max_valid_count: int = 3,
        enabled: bool = True
    ):
        self.target_sequence = tuple(target_sequence)
        self.debounce_ms = debounce_ms
        self.countdown_ticks = countdown_ticks
        self.min_valid_count = min_valid_count
        self.max_valid_count = max_valid_count

        self.sequence = GestureSequence(sequence_capacity)
        self.state = CaptureState.DETECTING
        self.countdown: Optional[int] = None
        self.finger_count: Optional[int] = None
        self.enabled = enabled

        # 上一次手势触发的时间，None 表示尚未触发过
        self._last_trigger_time: Optional[float] = None

    @classmethod
    def from_config(cls, config, enabled: bool = True) -> "CaptureTrigger":
        """从 CaptureConfig 创建"""
        return cls(
            target_sequence=config.target_sequence,
            sequence_capacity=config.sequence_capacity,
            debounce_ms=config.debounce_ms,
            countdown_ticks=config.countdown_ticks,
            min_valid_count=config.min_valid_count,
            max_valid_count=config.max_valid_count,
            enabled=enabled
        )

    @property
    def terminated(self) -> bool:
        return self.state == CaptureState.TERMINATED

    def set_enabled(self, enabled: bool):
        """开关手势检测，任何切换都会重置序列"""
        if self.terminated or enabled == self.enabled:
            return
        self.enabled = enabled
        self.sequence.clear()
        self.finger_count = None

    def observe(self, finger_count: Optional[int], timestamp: float) -> Optional[TriggerEvent]:
        """
        输入一个手势读数

        Args:
            finger_count: 手指数，None 表示未检测到手
            timestamp: 时间戳（毫秒）

        Returns:
            手势序列命中且不在去抖窗口内时返回 trigger 事件
        """
        if self.state != CaptureState.DETECTING or not self.enabled:
            return None

        self.finger_count = finger_count

        # 未检测到手：中性样本，序列不变
        if finger_count is None:
            return None

        if not self.min_valid_count <= finger_count <= self.max_valid_count:
            self.sequence.clear()
            return None

        if not self.sequence.push(finger_count):
            return None

        if not self.sequence.matches(self.target_sequence):
            return None

        if (self._last_trigger_time is not None and
                timestamp - self._last_trigger_time < self.debounce_ms):
            return None

        self._last_trigger_time = timestamp
        return self._start_countdown(timestamp, source="gesture")

    def request_manual(self, timestamp: float) -> Optional[TriggerEvent]:
        """手动拍照请求，只在 DETECTING 状态下生效"""
        if self.state != CaptureState.DETECTING:
            return None
        return self._start_countdown(timestamp, source="manual")

    def _start_countdown(self, timestamp: float, source: str) -> TriggerEvent:
        self.sequence.clear()
        self.state = CaptureState.COUNTING_DOWN
        self.countdown = self.countdown_ticks

        return TriggerEvent(
            event_type="trigger",
            state=self.state,
            timestamp=timestamp,
            countdown=self.countdown,
            meta={"source": source}
        )

    def tick(self, timestamp: float) -> Optional[TriggerEvent]:
        """
        倒计时走一步

        Returns:
            tick 事件；倒计时结束时返回 capture 事件，调用方需立即取帧
        """
        if self.state != CaptureState.COUNTING_DOWN:
            return None

        if self.countdown > 1:
            self.countdown -= 1
            return TriggerEvent(
                event_type="tick",
                state=self.state,
                timestamp=timestamp,
                countdown=self.countdown
            )

        self.countdown = None
        self.state = CaptureState.CAPTURED
        return TriggerEvent(
            event_type="capture",
            state=self.state,
            timestamp=timestamp
        )

    def complete_capture(self, success: bool, timestamp: float) -> Optional[TriggerEvent]:
        """
        报告取帧结果

        取帧失败时回到 DETECTING，界面可以提示重试
        """
        if self.state != CaptureState.CAPTURED or success:
            return None

        self.state = CaptureState.DETECTING
        self.sequence.clear()
        return TriggerEvent(
            event_type="capture_failed",
            state=self.state,
            timestamp=timestamp
        )

    def rearm(self, timestamp: float) -> Optional[TriggerEvent]:
        """拍照完成后重新进入检测"""
        if self.state != CaptureState.CAPTURED:
            return None

        self.state = CaptureState.DETECTING
        self.sequence.clear()
        self.finger_count = None
        return TriggerEvent(
            event_type="rearm",
            state=self.state,
            timestamp=timestamp
        )

    def cancel(self, timestamp: float) -> Optional[TriggerEvent]:
        """终止状态机，之后的所有调用都不再生效"""
        if self.terminated:
            return None

        self.state = CaptureState.TERMINATED
        self.countdown = None
        self.sequence.clear()
        return TriggerEvent(
            event_type="cancel",
            state=self.state,
            timestamp=timestamp
        )

    def snapshot(self) -> CaptureSnapshot:
        return CaptureSnapshot(
            state=self.state,
            countdown=self.countdown,
            finger_count=self.finger_count,
            sequence=self.sequence.to_list(),
            enabled=self.enabled,
            target=self.target_sequence
        )

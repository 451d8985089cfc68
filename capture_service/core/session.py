"""
拍照会话模块
把帧源、手指计数器和拍照触发状态机串起来，负责全部定时调度

整个会话只持有一个 asyncio 定时器句柄：
- DETECTING 时是手势轮询定时器
- COUNTING_DOWN 时是倒计时定时器
- CAPTURED 时是重新检测的延时定时器
"""

import asyncio
from typing import Callable, List, Optional

from ..config.settings import CaptureConfig

from .capture import CapturedPhoto, encode_photo
from .gesture import FingerCounter
from .state_machine import CaptureSnapshot, CaptureState, CaptureTrigger, TriggerEvent

StateCallback = Callable[[CaptureSnapshot, Optional[TriggerEvent]], None]


class CaptureSession:
    """
    拍照会话
    与界面的挂载/卸载一一对应：创建后 start()，关闭时 cancel() 或 close()
    """

    def __init__(
        self,
        frame_source,
        classifier: FingerCounter,
        config: Optional[CaptureConfig] = None,
        on_capture: Optional[Callable[[CapturedPhoto], None]] = None,
        on_cancel: Optional[Callable[[], None]] = None,
        enabled: bool = True,
        debug: bool = False
    ):
        """
        Args:
            frame_source: 提供 latest() -> Frame | None 的对象
            classifier: 手指计数器
            config: 拍照配置
            on_capture: 每个成功的拍照周期调用一次
            on_cancel: 用户主动取消时调用
            enabled: 是否启用手势自动拍照
            debug: 是否打印每次采样
        """
        self.frame_source = frame_source
        self.classifier = classifier
        self.config = config or CaptureConfig()
        self.on_capture = on_capture
        self.on_cancel = on_cancel
        self.debug = debug

        self.trigger = CaptureTrigger.from_config(self.config, enabled=enabled)

        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._timer: Optional[asyncio.TimerHandle] = None
        self._pending: Optional[asyncio.Future] = None
        self._callbacks: List[StateCallback] = []

        self.photos_taken = 0

    # ------------------------------------------------------------------
    # 对外接口
    # ------------------------------------------------------------------

    def register_callback(self, callback: StateCallback):
        """注册状态回调，每次状态或读数变化时调用"""
        self._callbacks.append(callback)

    def start(self):
        """在运行中的事件循环里启动会话"""
        if self._loop is not None:
            return

        self._loop = asyncio.get_running_loop()
        print(f"[SESSION] 会话已启动 (手势检测: {'开' if self.trigger.enabled else '关'})", flush=True)
        self._emit(None)
        self._schedule_poll()

    def set_enabled(self, enabled: bool):
        """开关手势自动拍照，手动拍照始终可用"""
        if self.closed:
            return

        self.trigger.set_enabled(enabled)

        if self.trigger.state == CaptureState.DETECTING:
            if enabled:
                self._schedule_poll()
            else:
                self._clear_timer()
                self._drop_pending()

        print(f"[SESSION] 手势检测{'启用' if enabled else '停用'}", flush=True)
        self._emit(None)

    def manual_capture(self) -> bool:
        """
        手动拍照，立即进入倒计时

        Returns:
            是否成功开始倒计时（倒计时中或已关闭时返回 False）
        """
        if self._loop is None or self.closed:
            return False

        event = self.trigger.request_manual(self._now())
        if event is None:
            return False

        self._begin_countdown(event)
        return True

    def cancel(self) -> bool:
        """用户主动关闭：停止所有定时器并调用 on_cancel"""
        if self.closed:
            return False

        self._teardown()
        event = self.trigger.cancel(self._now())
        print("[SESSION] 会话已取消", flush=True)

        self._emit(event)
        self._callbacks.clear()

        if self.on_cancel:
            try:
                self.on_cancel()
            except Exception as e:
                print(f"[WARN] 取消回调异常: {e}", flush=True)
        return True

    def close(self):
        """静默关闭（界面卸载），不触发任何回调"""
        if self.closed:
            return

        self._teardown()
        self.trigger.cancel(self._now())
        self._callbacks.clear()
        print("[SESSION] 会话已关闭", flush=True)

    @property
    def closed(self) -> bool:
        return self.trigger.terminated

    @property
    def state(self) -> CaptureState:
        return self.trigger.state

    @property
    def snapshot(self) -> CaptureSnapshot:
        return self.trigger.snapshot()

    @property
    def has_timer(self) -> bool:
        """当前是否有挂起的定时器"""
        return self._timer is not None

    # ------------------------------------------------------------------
    # 定时器
    # ------------------------------------------------------------------

    def _now(self) -> float:
        """事件循环时钟（毫秒）"""
        if self._loop is None:
            return 0.0
        return self._loop.time() * 1000

    def _set_timer(self, delay_ms: float, callback: Callable[[], None]):
        """替换唯一的定时器句柄"""
        self._clear_timer()
        self._timer = self._loop.call_later(delay_ms / 1000, callback)

    def _clear_timer(self):
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _drop_pending(self):
        """丢弃正在进行的分类，结果返回后不再处理"""
        if self._pending is not None:
            self._pending.cancel()
            self._pending = None

    def _teardown(self):
        self._clear_timer()
        self._drop_pending()

    # ------------------------------------------------------------------
    # 手势轮询
    # ------------------------------------------------------------------

    def _schedule_poll(self):
        if self._loop is None or self.closed:
            return
        if self.trigger.state != CaptureState.DETECTING or not self.trigger.enabled:
            return
        # 上一次分类还没回来时不重复调度
        if self._pending is not None:
            return
        self._set_timer(self.config.poll_interval_ms, self._poll)

    def _poll(self):
        self._timer = None
        if self.trigger.state != CaptureState.DETECTING or not self.trigger.enabled:
            return

        frame = self.frame_source.latest()
        if frame is None:
            self._handle_sample(None)
            return

        # 分类放到线程池执行，不阻塞事件循环
        future = self._loop.run_in_executor(None, self.classifier.classify, frame.image)
        self._pending = future
        future.add_done_callback(self._on_classified)

    def _on_classified(self, future: asyncio.Future):
        if future is not self._pending:
            return
        self._pending = None

        if future.cancelled():
            return

        exc = future.exception()
        if exc is not None:
            # 分类失败按"未检测到手"处理
            print(f"[WARN] 手势分类异常: {exc}", flush=True)
            self._handle_sample(None)
            return

        self._handle_sample(future.result())

    def _handle_sample(self, finger_count: Optional[int]):
        before = self.trigger.sequence.to_list()
        event = self.trigger.observe(finger_count, self._now())

        if self.debug:
            after = self.trigger.sequence.to_list()
            if after != before:
                print(f"[DEBUG] 手势序列: {after}", flush=True)

        if event is not None:
            self._begin_countdown(event)
            return

        self._emit(None)
        self._schedule_poll()

    # ------------------------------------------------------------------
    # 倒计时与拍照
    # ------------------------------------------------------------------

    def _begin_countdown(self, event: TriggerEvent):
        # 倒计时期间暂停轮询
        self._drop_pending()
        print(f"[EVENT] 触发拍照 ({event.meta.get('source')})，倒计时 {event.countdown}", flush=True)
        self._emit(event)
        self._set_timer(self.config.tick_interval_ms, self._tick)

    def _tick(self):
        self._timer = None
        event = self.trigger.tick(self._now())
        if event is None:
            return

        self._emit(event)

        if event.event_type == "tick":
            self._set_timer(self.config.tick_interval_ms, self._tick)
        elif event.event_type == "capture":
            self._take_photo(event.timestamp)

    def _take_photo(self, timestamp: float):
        frame = self.frame_source.latest()
        photo = encode_photo(
            frame.image if frame is not None else None,
            timestamp,
            quality=self.config.jpeg_quality
        )

        failed = self.trigger.complete_capture(photo is not None, timestamp)
        if failed is not None:
            print("[WARN] 拍照失败：没有可用的帧，返回检测状态", flush=True)
            self._emit(failed)
            self._schedule_poll()
            return

        self.photos_taken += 1
        print(f"[EVENT] 已拍照 {photo.width}x{photo.height} ({len(photo.jpeg)} bytes)", flush=True)

        if self.on_capture:
            try:
                self.on_capture(photo)
            except Exception as e:
                print(f"[WARN] 拍照回调异常: {e}", flush=True)

        # 回调里可能已经关闭了会话
        if self.closed:
            return

        if self.config.close_on_capture:
            self.close()
        else:
            self._set_timer(self.config.rearm_delay_ms, self._rearm)

    def _rearm(self):
        self._timer = None
        event = self.trigger.rearm(self._now())
        if event is None:
            return
        self._emit(event)
        self._schedule_poll()

    def _emit(self, event: Optional[TriggerEvent]):
        """通知所有状态回调"""
        snapshot = self.trigger.snapshot()
        for callback in list(self._callbacks):
            try:
                callback(snapshot, event)
            except Exception as e:
                print(f"[WARN] 状态回调异常: {e}", flush=True)

"""
WebSocket 服务模块
作为拍照界面的宿主：向前端推送拍照状态、倒计时和照片，接收手动拍照/开关/取消指令
"""

import asyncio
import json
import socketserver
import threading
import time
from dataclasses import asdict, dataclass
from http.server import BaseHTTPRequestHandler, HTTPServer
from typing import Any, Dict, Optional, Set

import cv2
import numpy as np
import websockets
from websockets.exceptions import ConnectionClosed

from . import __version__
from .config.settings import Config, default_config
from .core.capture import CameraCapture, CapturedPhoto
from .core.gesture import FingerCounter, build_finger_counter
from .core.overlay import draw_capture_overlay
from .core.session import CaptureSession
from .core.state_machine import CaptureSnapshot, TriggerEvent


# Global reference for MJPEG stream
_current_frame: Optional[np.ndarray] = None
_frame_lock = threading.Lock()


def set_current_frame(frame: np.ndarray):
    """Set current frame for MJPEG streaming"""
    global _current_frame
    with _frame_lock:
        _current_frame = frame.copy()


def get_current_frame() -> Optional[np.ndarray]:
    """Get current frame for MJPEG streaming"""
    with _frame_lock:
        return _current_frame.copy() if _current_frame is not None else None


class ThreadingHTTPServer(socketserver.ThreadingMixIn, HTTPServer):
    """Multi-threaded HTTP server to handle multiple clients"""
    daemon_threads = True
    allow_reuse_address = True


class MJPEGHandler(BaseHTTPRequestHandler):
    """MJPEG stream HTTP handler"""

    def log_message(self, format, *args):
        # Suppress default logging
        pass

    def do_GET(self):
        if self.path == '/stream':
            self.send_response(200)
            self.send_header('Content-Type', 'multipart/x-mixed-replace; boundary=frame')
            self.send_header('Cache-Control', 'no-cache')
            self.send_header('Access-Control-Allow-Origin', '*')
            self.end_headers()

            try:
                while True:
                    frame = get_current_frame()
                    if frame is not None:
                        ret, jpeg = cv2.imencode('.jpg', frame, [cv2.IMWRITE_JPEG_QUALITY, 70])
                        if ret:
                            self.wfile.write(b'--frame\r\n')
                            self.wfile.write(b'Content-Type: image/jpeg\r\n\r\n')
                            self.wfile.write(jpeg.tobytes())
                            self.wfile.write(b'\r\n')
                            self.wfile.flush()
                    time.sleep(0.033)  # ~30 FPS
            except (BrokenPipeError, ConnectionResetError):
                pass
        else:
            self.send_response(404)
            self.end_headers()


def run_mjpeg_server(host: str, port: int):
    """Run MJPEG HTTP server in a separate thread"""
    server = ThreadingHTTPServer((host, port), MJPEGHandler)
    print(f"[MJPEG] Stream available at http://{host}:{port}/stream", flush=True)
    server.serve_forever()


@dataclass
class WebSocketMessage:
    """WebSocket 消息结构"""
    type: str
    timestamp: float
    data: Dict[str, Any]

    def to_json(self) -> str:
        return json.dumps(asdict(self), ensure_ascii=False)

    @classmethod
    def from_json(cls, json_str: str) -> "WebSocketMessage":
        data = json.loads(json_str)
        if not isinstance(data, dict):
            raise ValueError("message must be a JSON object")

        payload = data.get("data") or {}
        if not isinstance(payload, dict):
            raise ValueError("data must be a JSON object")

        return cls(
            type=data.get("type", ""),
            timestamp=data.get("timestamp", time.time() * 1000),
            data=payload
        )


def _message(msg_type: str, data: Optional[Dict[str, Any]] = None) -> WebSocketMessage:
    return WebSocketMessage(type=msg_type, timestamp=time.time() * 1000, data=data or {})


class CaptureServer:
    """
    拍照服务 WebSocket 服务器
    整合摄像头采集、手指计数和拍照会话
    """

    def __init__(
        self,
        config: Optional[Config] = None,
        camera=None,
        classifier: Optional[FingerCounter] = None
    ):
        """
        Args:
            config: 配置
            camera: 帧源，默认按配置创建 CameraCapture
            classifier: 手指计数器，默认按配置创建
        """
        self.config = config or default_config

        self.camera = camera
        self.classifier = classifier
        self.session: Optional[CaptureSession] = None

        # WebSocket 连接
        self._clients: Set[Any] = set()
        self._tasks: Set[asyncio.Task] = set()

        # 运行状态
        self._running = False
        self._render_task: Optional[asyncio.Task] = None

        # 统计信息
        self._photo_count = 0
        self._start_time = 0.0

    async def start(self):
        """启动服务"""
        print("[SERVER] 正在初始化组件...", flush=True)

        if self.camera is None:
            self.camera = CameraCapture(
                device_id=self.config.camera.device_id,
                width=self.config.camera.width,
                height=self.config.camera.height,
                fps=self.config.camera.fps,
                mirror=self.config.camera.mirror
            )

        if not self.camera.start():
            raise RuntimeError("无法启动摄像头")

        if self.classifier is None:
            self.classifier = build_finger_counter(self.config.classifier)

        self._running = True
        self._start_time = time.time()

        print(f"[SERVER] 组件初始化完成 (分类策略: {self.classifier.name})", flush=True)

    async def stop(self):
        """停止服务"""
        print("[SERVER] 正在停止服务...", flush=True)

        self._running = False

        if self.session:
            self.session.close()

        if self._render_task:
            self._render_task.cancel()
            try:
                await self._render_task
            except asyncio.CancelledError:
                pass

        for client in self._clients.copy():
            await client.close()

        if self.camera:
            self.camera.stop()

        if self.classifier:
            self.classifier.close()

        print("[SERVER] 服务已停止", flush=True)

    # ------------------------------------------------------------------
    # 会话管理
    # ------------------------------------------------------------------

    def open_session(self, enabled: bool = True) -> CaptureSession:
        """挂载一个拍照会话，已有活动会话时直接复用"""
        if self.session and not self.session.closed:
            return self.session

        session = CaptureSession(
            frame_source=self.camera,
            classifier=self.classifier,
            config=self.config.capture,
            on_capture=self._on_capture,
            on_cancel=self._on_cancel,
            enabled=enabled,
            debug=self.config.debug
        )
        session.register_callback(self._on_state)
        self.session = session
        session.start()
        return session

    def _spawn(self, coro):
        """在事件循环中执行广播，保留任务引用直到完成"""
        task = asyncio.ensure_future(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    def _on_state(self, snapshot: CaptureSnapshot, event: Optional[TriggerEvent]):
        """会话状态回调"""
        self._spawn(self._broadcast(_message("state", snapshot.to_dict()).to_json()))
        if event is not None:
            self._spawn(self._broadcast(_message("capture_event", event.to_dict()).to_json()))

    def _on_capture(self, photo: CapturedPhoto):
        """拍照回调：把照片交给前端表单"""
        self._photo_count += 1
        self._spawn(self._broadcast(_message("photo_captured", photo.to_dict()).to_json()))

    def _on_cancel(self):
        self._spawn(self._broadcast(_message("cancelled").to_json()))

    # ------------------------------------------------------------------
    # 广播
    # ------------------------------------------------------------------

    async def _broadcast(self, message: str):
        """广播消息到所有客户端"""
        if not self._clients:
            return

        await asyncio.gather(
            *[client.send(message) for client in self._clients.copy()],
            return_exceptions=True
        )

    async def _render_frames(self):
        """预览渲染循环：叠加拍照状态后更新 MJPEG 流"""
        print("[SERVER] 开始渲染预览...", flush=True)
        last_id = 0

        while self._running:
            frame = self.camera.latest()
            if frame is None or frame.frame_id == last_id:
                await asyncio.sleep(0.01)
                continue

            last_id = frame.frame_id
            if self.session:
                output = draw_capture_overlay(frame.image, self.session.snapshot)
            else:
                output = frame.image
            set_current_frame(output)

            await asyncio.sleep(1 / max(self.config.camera.fps, 1))

    # ------------------------------------------------------------------
    # 客户端
    # ------------------------------------------------------------------

    async def handle_client(self, websocket):
        """处理客户端连接"""
        client_id = id(websocket)
        print(f"[SERVER] 客户端已连接: {client_id}", flush=True)

        self._clients.add(websocket)

        welcome = _message("connected", {
            "message": "Welcome to Gesture Capture",
            "version": __version__,
            "config": {
                "camera": {
                    "width": self.config.camera.width,
                    "height": self.config.camera.height
                },
                "target_sequence": list(self.config.capture.target_sequence),
                "countdown_ticks": self.config.capture.countdown_ticks,
                "strategy": self.classifier.name if self.classifier else None
            }
        })
        await websocket.send(welcome.to_json())

        if self.session and not self.session.closed:
            await websocket.send(_message("state", self.session.snapshot.to_dict()).to_json())

        try:
            async for message in websocket:
                await self._handle_message(websocket, message)
        except ConnectionClosed:
            pass
        finally:
            self._clients.discard(websocket)
            print(f"[SERVER] 客户端已断开: {client_id}", flush=True)

    async def _handle_message(self, websocket, message: str):
        """处理客户端消息"""
        try:
            msg = WebSocketMessage.from_json(message)
        except json.JSONDecodeError:
            print(f"[WARN] 无效的 JSON 消息: {message}", flush=True)
            await websocket.send(_message("error", {"message": "invalid json"}).to_json())
            return
        except ValueError as e:
            print(f"[WARN] 消息格式错误: {e}", flush=True)
            await websocket.send(_message("error", {"message": str(e)}).to_json())
            return

        if msg.type == "ping":
            await websocket.send(_message("pong").to_json())

        elif msg.type == "open_session":
            enabled = bool(msg.data.get("enabled", True))
            session = self.open_session(enabled=enabled)
            await websocket.send(_message("state", session.snapshot.to_dict()).to_json())

        elif msg.type in ("set_enabled", "manual_capture", "cancel"):
            if not self.session or self.session.closed:
                await websocket.send(_message("error", {"message": "no active session"}).to_json())
                return

            if msg.type == "set_enabled":
                self.session.set_enabled(bool(msg.data.get("enabled", False)))
            elif msg.type == "manual_capture":
                if not self.session.manual_capture():
                    await websocket.send(_message("error", {"message": "capture in progress"}).to_json())
            else:
                self.session.cancel()

        else:
            print(f"[WARN] 未知消息类型: {msg.type}", flush=True)
            await websocket.send(_message("error", {"message": f"unknown type: {msg.type}"}).to_json())

    async def run(self, host: str = "127.0.0.1", port: int = 8765, mjpeg_port: int = 8766):
        """运行服务器"""
        await self.start()

        mjpeg_thread = threading.Thread(
            target=run_mjpeg_server,
            args=(host, mjpeg_port),
            daemon=True
        )
        mjpeg_thread.start()

        self._render_task = asyncio.create_task(self._render_frames())

        print(f"[SERVER] WebSocket 服务器启动: ws://{host}:{port}", flush=True)

        try:
            async with websockets.serve(self.handle_client, host, port):
                while self._running:
                    await asyncio.sleep(self.config.server.heartbeat_interval / 1000)

                    elapsed = time.time() - self._start_time
                    print(f"[STATS] 运行 {elapsed:.0f}s, 照片: {self._photo_count}, "
                          f"客户端: {len(self._clients)}", flush=True)
        finally:
            await self.stop()

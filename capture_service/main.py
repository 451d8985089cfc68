#!/usr/bin/env python3
"""
Gesture Capture - 手势拍照服务
主入口文件

用法:
    gesture-capture              # 启动 WebSocket 服务器
    gesture-capture --debug      # 启动调试预览窗口
    gesture-capture --test       # 运行自检
"""

import argparse
import asyncio
import time
from pathlib import Path

import cv2

from .config.settings import Config


def _save_photo(photo, output_dir: Path) -> Path:
    """把照片写入输出目录"""
    output_dir.mkdir(parents=True, exist_ok=True)
    path = output_dir / f"capture_{time.strftime('%Y%m%d_%H%M%S')}_{int(photo.timestamp) % 1000:03d}.jpg"
    path.write_bytes(photo.jpeg)
    return path


async def _preview_loop(camera, session, classifier, window: str):
    """预览窗口循环：绘制叠加层并处理按键"""
    from .core.detector import draw_landmarks
    from .core.gesture import LandmarkFingerCounter
    from .core.overlay import draw_capture_overlay

    last_id = 0

    while not session.closed:
        frame = camera.latest()
        if frame is not None and frame.frame_id != last_id:
            last_id = frame.frame_id
            output = frame.image

            if isinstance(classifier, LandmarkFingerCounter) and classifier.last_result:
                output = draw_landmarks(output, classifier.last_result)

            output = draw_capture_overlay(output, session.snapshot)

            info = f"FPS: {camera.actual_fps:.1f} | Photos: {session.photos_taken}"
            cv2.putText(output, info, (10, output.shape[0] - 10),
                        cv2.FONT_HERSHEY_SIMPLEX, 0.5, (200, 200, 200), 1)

            cv2.imshow(window, output)

        # 键盘控制
        key = cv2.waitKey(1) & 0xFF
        if key == ord('q'):
            session.cancel()
            break
        elif key == ord('c'):
            if not session.manual_capture():
                print("[DEBUG] 倒计时进行中，忽略手动拍照", flush=True)
        elif key == ord('g'):
            session.set_enabled(not session.snapshot.enabled)

        await asyncio.sleep(0.01)


async def _run_debug(config: Config):
    from .core.capture import CameraCapture
    from .core.gesture import build_finger_counter
    from .core.session import CaptureSession

    camera = CameraCapture(
        device_id=config.camera.device_id,
        width=config.camera.width,
        height=config.camera.height,
        fps=config.camera.fps,
        mirror=config.camera.mirror
    )

    if not camera.start():
        print("[ERROR] 无法启动摄像头", flush=True)
        return

    classifier = build_finger_counter(config.classifier)
    output_dir = Path(config.output_dir)

    def on_capture(photo):
        path = _save_photo(photo, output_dir)
        print(f"[DEBUG] 照片已保存: {path}", flush=True)

    def on_cancel():
        print("[DEBUG] 用户取消", flush=True)

    session = CaptureSession(
        frame_source=camera,
        classifier=classifier,
        config=config.capture,
        on_capture=on_capture,
        on_cancel=on_cancel,
        debug=config.debug
    )

    try:
        session.start()
        await _preview_loop(camera, session, classifier, "Gesture Capture Debug")
    finally:
        session.close()
        camera.stop()
        classifier.close()
        cv2.destroyAllWindows()
        print("[DEBUG] 调试模式结束", flush=True)


def run_debug_mode(config: Config):
    """
    调试模式：显示预览窗口，不启动 WebSocket 服务器
    用于测试手势拍照效果
    """
    print("=" * 50)
    print("Gesture Capture 调试模式")
    print("=" * 50)
    print("按 'q' 退出")
    print("按 'c' 手动拍照")
    print("按 'g' 开关手势检测")
    print("=" * 50)

    asyncio.run(_run_debug(config))


def run_server_mode(config: Config):
    """
    服务器模式：启动 WebSocket 服务器
    """
    from .server import CaptureServer

    print("=" * 50)
    print("Gesture Capture 服务器模式")
    print("=" * 50)

    server = CaptureServer(config)

    try:
        asyncio.run(server.run(
            host=config.server.host,
            port=config.server.port,
            mjpeg_port=config.server.mjpeg_port
        ))
    except KeyboardInterrupt:
        print("\n[SERVER] 收到中断信号")


def run_test_mode(config: Config):
    """
    测试模式：逐个检查各模块能否工作
    """
    import numpy as np

    print("=" * 50)
    print("Gesture Capture 测试模式")
    print("=" * 50)

    # 测试摄像头
    print("\n[TEST] 测试摄像头模块...")
    from .core.capture import CameraCapture, encode_photo

    camera = CameraCapture(device_id=config.camera.device_id)
    if camera.start():
        frame = camera.read(timeout=2.0)
        if frame:
            print(f"  ✓ 摄像头正常: {frame.width}x{frame.height}")
        else:
            print("  ✗ 无法读取帧")
        camera.stop()
    else:
        print("  ✗ 无法启动摄像头")

    test_image = np.zeros((480, 640, 3), dtype=np.uint8)

    # 测试分类器
    print("\n[TEST] 测试分类器模块...")
    from .core.gesture import LandmarkFingerCounter, SkinToneFingerCounter

    with SkinToneFingerCounter() as counter:
        print(f"  ✓ 肤色分类器正常: 空白画面 -> {counter.classify(test_image)}")

    try:
        with LandmarkFingerCounter() as counter:
            print(f"  ✓ 关键点分类器正常: 空白画面 -> {counter.classify(test_image)}")
    except ImportError as e:
        print(f"  ✗ 关键点分类器不可用（需要 mediapipe）: {e}")

    # 测试状态机
    print("\n[TEST] 测试状态机模块...")
    from .core.state_machine import CaptureTrigger

    trigger = CaptureTrigger.from_config(config.capture)
    event = None
    for i, count in enumerate([None, 1, 1, 2, 3]):
        event = trigger.observe(count, i * config.capture.poll_interval_ms)
    print(f"  ✓ 状态机正常: [None, 1, 1, 2, 3] -> {event.event_type if event else '未触发'}")

    # 测试编码
    print("\n[TEST] 测试照片编码...")
    photo = encode_photo(test_image, 0.0, quality=config.capture.jpeg_quality)
    if photo:
        print(f"  ✓ 编码正常: {len(photo.jpeg)} bytes")
    else:
        print("  ✗ 编码失败")

    print("\n" + "=" * 50)
    print("所有测试完成!")
    print("=" * 50)


def build_config(args: argparse.Namespace) -> Config:
    """根据命令行参数创建配置"""
    config = Config()
    config.server.host = args.host
    config.server.port = args.port
    config.server.mjpeg_port = args.mjpeg_port
    config.camera.device_id = args.camera
    config.classifier.strategy = args.strategy
    config.capture.close_on_capture = args.modal
    config.capture.poll_interval_ms = args.poll_interval
    config.output_dir = args.output
    config.debug = args.verbose
    return config


def build_parser() -> argparse.ArgumentParser:
    """命令行参数定义"""
    parser = argparse.ArgumentParser(
        description="Gesture Capture - 手势拍照服务",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
示例:
    gesture-capture                    启动 WebSocket 服务器
    gesture-capture --debug            启动调试预览窗口
    gesture-capture --test             运行自检
    gesture-capture --strategy skin    使用肤色启发式计数
        """
    )

    parser.add_argument(
        "--debug", "-d",
        action="store_true",
        help="启动调试模式（预览窗口）"
    )

    parser.add_argument(
        "--test", "-t",
        action="store_true",
        help="运行测试模式"
    )

    parser.add_argument(
        "--host",
        type=str,
        default="127.0.0.1",
        help="服务器主机地址 (默认: 127.0.0.1)"
    )

    parser.add_argument(
        "--port", "-p",
        type=int,
        default=8765,
        help="服务器端口 (默认: 8765)"
    )

    parser.add_argument(
        "--mjpeg-port",
        type=int,
        default=8766,
        help="预览视频流端口 (默认: 8766)"
    )

    parser.add_argument(
        "--camera", "-c",
        type=int,
        default=0,
        help="摄像头设备 ID (默认: 0)"
    )

    parser.add_argument(
        "--strategy", "-s",
        choices=["landmark", "skin"],
        default="landmark",
        help="手指计数策略 (默认: landmark)"
    )

    parser.add_argument(
        "--poll-interval",
        type=int,
        default=500,
        help="手势轮询间隔，毫秒 (默认: 500)"
    )

    parser.add_argument(
        "--modal",
        action="store_true",
        help="弹窗模式：拍照后关闭会话"
    )

    parser.add_argument(
        "--output", "-o",
        type=str,
        default="captures",
        help="调试模式照片保存目录 (默认: captures)"
    )

    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="打印手势序列变化"
    )

    return parser


def main(argv=None):
    """主函数"""
    args = build_parser().parse_args(argv)
    config = build_config(args)

    if args.test:
        run_test_mode(config)
    elif args.debug:
        run_debug_mode(config)
    else:
        run_server_mode(config)


if __name__ == "__main__":
    main()

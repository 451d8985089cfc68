"""
Gesture Capture - 手势拍照服务
通过手势 1-2-3 或手动按钮触发倒计时拍照
"""

__version__ = "0.1.0"

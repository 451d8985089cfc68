"""
Gesture Capture 配置
"""

from .settings import Config, default_config

__all__ = ["Config", "default_config"]

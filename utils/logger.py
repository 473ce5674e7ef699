# utils/logger.py
# 作者: proxybench team
import logging
import os
import json
import datetime
from pathlib import Path
from typing import Optional
from rich.logging import RichHandler
from rich.console import Console

LOGGER_NAME = "proxybench"


class DebugLogger:
    """
    增强的调试日志器
    支持debug模式和文件日志
    """

    def __init__(self, debug_mode: bool = False, debug_dir: str = "debug",
                 console: Optional[Console] = None):
        self.debug_mode = debug_mode
        self.debug_dir = Path(debug_dir)
        self.console = console or Console(stderr=True)
        self.log_file: Optional[Path] = None

        # 创建debug目录
        if self.debug_mode:
            self.debug_dir.mkdir(exist_ok=True)

        log_level = logging.DEBUG if debug_mode else logging.INFO

        formatter = logging.Formatter(
            '[%(asctime)s] %(levelname)s - %(name)s - %(message)s',
            datefmt='%Y-%m-%d %H:%M:%S'
        )

        handlers = []

        # Rich控制台handler
        rich_handler = RichHandler(
            console=self.console,
            rich_tracebacks=True,
            show_time=True,
            show_path=debug_mode
        )
        rich_handler.setLevel(log_level)
        handlers.append(rich_handler)

        # 如果是debug模式，添加文件handler
        if self.debug_mode:
            self.log_file = self.debug_dir / f"proxybench_debug_{datetime.datetime.now().strftime('%Y%m%d_%H%M%S')}.log"
            file_handler = logging.FileHandler(self.log_file, encoding='utf-8')
            file_handler.setLevel(logging.DEBUG)
            file_handler.setFormatter(formatter)
            handlers.append(file_handler)

        # 配置根日志器
        logging.basicConfig(
            level=log_level,
            format="%(message)s",
            datefmt="[%X]",
            handlers=handlers,
            force=True
        )
        # aiohttp 自身的噪音只在debug模式下保留
        logging.getLogger("aiohttp").setLevel(logging.DEBUG if debug_mode else logging.WARNING)

        self.logger = logging.getLogger(LOGGER_NAME)

        if debug_mode:
            self.logger.debug(f"🐛 Debug模式已启用 - 日志保存至: {self.debug_dir}")
            self.logger.debug(f"📁 主日志文件: {self.log_file}")

    def save_debug_info(self, info: dict, filename: str = None):
        """
        保存调试信息到文件

        Args:
            info: 要保存的调试信息字典
            filename: 文件名（可选）
        """
        if not self.debug_mode:
            return

        if filename is None:
            filename = f"debug_info_{datetime.datetime.now().strftime('%Y%m%d_%H%M%S')}.json"

        debug_file = self.debug_dir / filename
        try:
            with open(debug_file, 'w', encoding='utf-8') as f:
                json.dump(info, f, indent=2, ensure_ascii=False, default=str)
            self.logger.debug(f"💾 调试信息已保存: {debug_file}")
        except OSError as e:
            self.logger.error(f"❌ 保存调试信息失败: {e}")

    def get_logger(self) -> logging.Logger:
        """获取主日志器"""
        return self.logger


# 全局日志器实例
_debug_logger = None


def setup_logger(debug_mode: bool = False, debug_dir: str = "debug") -> DebugLogger:
    """
    配置日志器

    Args:
        debug_mode: 是否启用debug模式
        debug_dir: debug文件夹路径

    Returns:
        DebugLogger实例
    """
    global _debug_logger

    # 检查环境变量
    if not debug_mode:
        debug_mode = os.getenv('PROXYBENCH_DEBUG', '').lower() in ('true', '1', 'yes')

    _debug_logger = DebugLogger(debug_mode=debug_mode, debug_dir=debug_dir)
    return _debug_logger


def get_logger() -> logging.Logger:
    """获取主日志器实例"""
    # 不在导入时配置根日志器，交给 setup_logger 决定
    return logging.getLogger(LOGGER_NAME)


def get_debug_logger() -> Optional[DebugLogger]:
    """获取调试日志器实例"""
    return _debug_logger


# 默认日志器
log = get_logger()

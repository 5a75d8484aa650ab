"""根目录受限的文件服务器"""

__version__ = "1.0.0"

"""gvm-provision - Greenbone 社区版 (OpenVAS) 源码部署工具"""

__version__ = "0.1.0"

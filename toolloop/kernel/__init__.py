"""
内核模块 - 日志等基础设施
Kernel module - logging and other infrastructure.
"""

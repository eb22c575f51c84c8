# 学业成绩管理服务
__version__ = "1.0.0"

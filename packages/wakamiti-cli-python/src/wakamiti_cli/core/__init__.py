"""核心公共类型（错误分类、取消信号）。"""

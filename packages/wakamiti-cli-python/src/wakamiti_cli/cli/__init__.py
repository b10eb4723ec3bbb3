"""命令行入口（`wakamiti`）。"""

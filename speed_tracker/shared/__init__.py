"""
Общие модели протокола и HTTP API.
"""

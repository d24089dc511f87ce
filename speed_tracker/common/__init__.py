"""
Общие утилиты: константы и логирование.
"""

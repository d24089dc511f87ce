"""
Speed Tracker - realtime хаб присутствия и рассылки по группам.
"""

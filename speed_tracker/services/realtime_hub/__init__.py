"""
Realtime хаб - сервис присутствия и рассылки по группам.

Обеспечивает:
- WebSocket соединения участников и наблюдателей
- Рассылку полного состава группы при каждом изменении
- Очистку участников без обновлений
- Групповой сигнал с ограничением частоты
"""

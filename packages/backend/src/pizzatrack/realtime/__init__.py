"""Real-time infrastructure — WebSocket rooms and order-event fan-out.

Learn: Events flow in one direction:
1. HTTP/WebSocket handlers commit a write, then publish a DomainEvent
2. EventBroadcaster resolves target rooms through the RoomRegistry
3. Every member connection gets a {type, payload} JSON frame

Everything lives in one process on one event loop. Delivery is
best-effort: a missed frame is recovered by the client's own refetch.
"""

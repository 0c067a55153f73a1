"""Real-time infrastructure — RabbitMQ topic relays + WebSocket fan-out.

Learn: Events flow in one direction:
1. Workers → RabbitMQ topic exchange (progress.*, result.*)
2. Event relays → connection registry → per-connection queue → WebSocket

The registry decides who gets an event (job watchers, then the user's tabs,
then everyone); each WebSocket drains its own queue so one slow browser
never delays another.
"""

"""Authentication gate for the WebSocket endpoint.

Learn: Tokens are issued by the accounts service (login/register live
there). This process only verifies them before accepting a connection.
"""

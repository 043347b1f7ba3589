"""File-share wire protocol: event catalogue and WebSocket frame codec."""

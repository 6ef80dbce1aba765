"""
Development server with WebSocket support.
Initializes eventlet before anything else so Socket.IO gets a real async server.
"""
import eventlet
eventlet.monkey_patch()

import logging
import os

logging.basicConfig(
    level=os.environ.get('LOG_LEVEL', 'INFO'),
    format='%(asctime)s %(levelname)s %(name)s: %(message)s',
)

from app import create_app

app = create_app()
socketio = app.extensions['socketio']

if __name__ == "__main__":
    port = int(os.environ.get("PORT", 5000))
    logging.getLogger(__name__).info(f"Starting task server on port {port}")
    socketio.run(
        app,
        host='0.0.0.0',
        port=port,
        debug=app.config.get('ENVIRONMENT') == 'development',
        use_reloader=False,
        log_output=True
    )

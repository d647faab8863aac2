"""
WSGI Entry Point

Module-level `application` for Gunicorn/uWSGI, plus a development server when
run directly.

Usage:
    # Production WSGI deployment
    gunicorn --config gunicorn.conf.py "app:application"

    # Development server
    export FLASK_ENV=development
    python app.py
"""

import os

from src.app import create_app

application = create_app(os.getenv('FLASK_ENV'))
app = application


if __name__ == '__main__':
    try:
        application.run(
            host=os.getenv('FLASK_RUN_HOST', '127.0.0.1'),
            port=int(os.getenv('FLASK_RUN_PORT', '5000')),
            debug=application.config.get('DEBUG', False),
        )
    finally:
        application.extensions['authorization_engine'].audit_sink.close()

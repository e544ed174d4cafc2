"""
WSGI entry point for Micropad CV Service.

Used by Gunicorn and other WSGI servers to run the application.

Usage:
    gunicorn -w 2 -b 0.0.0.0:5000 --timeout 300 wsgi:app
"""

from app import app

# Export app for WSGI servers
application = app

if __name__ == '__main__':
    # Local runs only; use Gunicorn in deployment
    import os
    port = int(os.getenv('PORT', 5000))
    debug = os.getenv('FLASK_DEBUG', 'False').lower() == 'true'
    app.run(host='0.0.0.0', port=port, debug=debug)

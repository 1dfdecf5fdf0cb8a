"""
WSGI entrypoint for the transcript API
"""

import logging
import os

from app import create_app

app = create_app()

# Align with gunicorn handlers if present
_guni = logging.getLogger('gunicorn.error')
if _guni.handlers:
    logging.root.handlers = _guni.handlers
    logging.root.setLevel(_guni.level)

if __name__ == "__main__":
    port = int(os.environ.get("PORT", 8080))
    app.run(host="0.0.0.0", port=port, debug=False)

"""Local development entry point.

Usage:
    python run.py

Production runs the app through a WSGI server (`fulfillment:create_app()`)
and the maintenance jobs through the flask CLI:

    flask reconcile-indexes --apply
    flask retry-webhooks
    flask purge-counters
"""

from dotenv import load_dotenv

load_dotenv()  # Load .env before anything else

from fulfillment import create_app

app = create_app()

if __name__ == "__main__":
    app.run(debug=True, host="0.0.0.0", port=5001)

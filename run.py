"""Local development entry point.

Usage:
    python run.py

Loads .env, then serves the API on port 5001. Point the Stripe CLI at it
to receive webhooks locally:

    stripe listen --forward-to localhost:5001/stripe/webhooks
"""

from dotenv import load_dotenv

load_dotenv()  # Load .env before anything else

from app import create_app  # noqa: E402

app = create_app()

if __name__ == "__main__":
    app.run(debug=True, host="0.0.0.0", port=5001)

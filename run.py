"""
Entry point for Flask.

Usage (from project root):

    flask --app run.py --debug run

First-time setup:

    flask --app run.py db init         # once, creates migrations/
    flask --app run.py db migrate -m "initial schema"
    flask --app run.py db upgrade
    flask --app run.py seed-sub-orgs
    flask --app run.py create-admin admin@example.com "System Admin" change-me-now

"""

from po_tracker import create_app

# WSGI application object. `flask run` looks for this `app` variable.
app = create_app()

if __name__ == "__main__":
    # For direct `python run.py` usage (dev only).
    app.run(debug=True)

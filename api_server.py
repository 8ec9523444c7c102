"""
Biofactor Dashboard - REST API Server
Run with: python api_server.py (reads DB_URI and JWT_SECRET_KEY from .env)
"""

from biofactor.api.app import main

if __name__ == "__main__":
    main()

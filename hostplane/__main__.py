"""
Punto de entrada: python -m hostplane

Misma app que el script 'hostplane' (hostplane.cli.app).
"""

from hostplane.cli.app import app

if __name__ == "__main__":
    app()

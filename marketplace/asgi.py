"""
ASGI entrypoint: expose `app` pour les process managers / déploiements.

- En production, un process manager (ex: gunicorn/uvicorn-workers) importe `marketplace.asgi:app`.
- Toute la configuration FastAPI (routes, middlewares, exceptions) est centralisée dans
  marketplace.app_setup.factory; ce fichier ne fait qu'exposer l'instance `app`.
"""
import logging

from marketplace.app_setup.factory import create_app

logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")

app = create_app()

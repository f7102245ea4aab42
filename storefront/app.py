"""
Instance FastAPI unique de la boutique, construite par la factory.
Les entrypoints (storefront.asgi, python -m storefront) importent `app` depuis ce module.
"""
from storefront.app_setup.factory import create_app

app = create_app()

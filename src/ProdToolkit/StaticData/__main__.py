"""Allow ``python -m ProdToolkit.StaticData``."""

from .cli import app

if __name__ == "__main__":
    app()

from phiscan.api.main import app

__all__ = ["app"]

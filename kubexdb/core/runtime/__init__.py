from .bootstrap import Runtime, RuntimeOptions, bootstrap, get_app_version

__all__ = ["Runtime", "RuntimeOptions", "bootstrap", "get_app_version"]

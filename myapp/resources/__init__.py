from .myapp import MyAppResource

__all__ = ["MyAppResource"]

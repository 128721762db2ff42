from .postgres import PostgresDependency

__all__ = ["PostgresDependency"]

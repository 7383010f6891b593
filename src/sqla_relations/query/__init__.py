from .builder import ModelQueryBuilder, ScopesProxy
from .paginator import Paginator
from .preloader import Preloader


__all__ = ("ModelQueryBuilder", "Paginator", "Preloader", "ScopesProxy")

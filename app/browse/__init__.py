from .canonicalizer import canonicalize, classify
from .nav_shim import generate as generate_nav_shim
from .rewriter import rewrite

__all__ = ["canonicalize", "classify", "generate_nav_shim", "rewrite"]

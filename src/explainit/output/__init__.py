from .mkdocs_site import MkDocsSite, build_nav

__all__ = ["MkDocsSite", "build_nav"]

from .cursor import BatchSource, fetch_page

__all__ = ['BatchSource', 'fetch_page']

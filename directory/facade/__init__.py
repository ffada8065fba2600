from .directory_facade import DirectoryFacade, create_adapter

__all__ = ['DirectoryFacade', 'create_adapter']

from invex.processors.base import ProcessingResult

__all__ = ['ProcessingResult']

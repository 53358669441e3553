from invex.db.connection import Base, Database, get_base

__all__ = ['Base', 'Database', 'get_base']

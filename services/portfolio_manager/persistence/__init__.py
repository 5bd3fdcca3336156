from .memory_repository import InMemoryPortfolioRepository
from .file_repository import JsonFilePortfolioRepository

__all__ = ["InMemoryPortfolioRepository", "JsonFilePortfolioRepository"]

from .search import (
    SearchParams, SearchItem, SearchResponse, CountsResponse, LevelRating, Suggestion, SuggestResponse,
)

__all__ = [
    'SearchParams', 'SearchItem', 'SearchResponse', 'CountsResponse', 'LevelRating', 'Suggestion',
    'SuggestResponse',
]

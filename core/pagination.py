import math

from core.exceptions import InvalidInput

MAX_LIMIT = 100


def paginate(queryset, params, default_limit=50):
    """
    Страничная выборка по параметрам page и limit.
    :return: (элементы страницы, словарь пагинации)
    """
    try:
        page = max(int(params.get('page', 1)), 1)
        limit = min(max(int(params.get('limit', default_limit)), 1), MAX_LIMIT)
    except (TypeError, ValueError):
        raise InvalidInput('page and limit must be integers')

    total = queryset.count()
    offset = (page - 1) * limit
    items = list(queryset[offset:offset + limit])
    return items, {
        'total': total,
        'page': page,
        'limit': limit,
        'total_pages': math.ceil(total / limit) if total else 0,
    }

import threading

from app.services.response_cache import ResponseCache, derive_items_cache_key


def test_value_is_returned_until_its_ttl_elapses(clock):
    cache = ResponseCache(default_ttl=300, timer=clock)
    cache.set('libraries', ['Movies'], 30)

    clock.advance(29.9)
    assert cache.get('libraries') == ['Movies']

    clock.advance(0.2)
    assert cache.get('libraries') is None


def test_ttl_is_per_entry(clock):
    cache = ResponseCache(default_ttl=300, timer=clock)
    cache.set('item_1', {'Id': '1'}, 10)
    cache.set('items_{}', {'Items': []})

    clock.advance(11)
    assert cache.get('item_1') is None
    assert cache.get('items_{}') == {'Items': []}

    clock.advance(290)
    assert cache.get('items_{}') is None


def test_set_overwrites_previous_value(clock):
    cache = ResponseCache(timer=clock)
    cache.set('item_1', {'Name': 'old'}, 10)
    cache.set('item_1', {'Name': 'new'}, 10)
    assert cache.get('item_1') == {'Name': 'new'}


def test_delete_and_flush_all(clock):
    cache = ResponseCache(timer=clock)
    cache.set('a', 1)
    cache.set('b', 2)

    cache.delete('a')
    cache.delete('missing')
    assert cache.get('a') is None
    assert cache.get('b') == 2

    cache.flush_all()
    assert cache.get('b') is None
    assert len(cache) == 0


def test_falsy_values_are_cached(clock):
    cache = ResponseCache(timer=clock)
    cache.set('empty', [])
    assert cache.get('empty', default='absent') == []
    assert cache.get('never-set', default='absent') == 'absent'


def test_read_failure_is_a_miss(clock):
    cache = ResponseCache(timer=clock)
    cache.set('a', 1)

    class BrokenStore:
        maxsize = 1

        def get(self, *args, **kwargs):
            raise RuntimeError('corrupt entry')

    cache._store = BrokenStore()
    assert cache.get('a') is None
    assert cache.misses == 1


def test_stats_counts_hits_and_misses(clock):
    cache = ResponseCache(maxsize=50, timer=clock)
    cache.set('a', 1)
    cache.get('a')
    cache.get('b')
    stats = cache.stats()
    assert stats == {'entries': 1, 'maxEntries': 50, 'hits': 1, 'misses': 1}


def test_hit_and_miss_counts_are_exact_across_threads(clock):
    cache = ResponseCache(timer=clock)
    cache.set('present', 1)

    def reader():
        for _ in range(2000):
            cache.get('present')
            cache.get('absent')

    threads = [threading.Thread(target=reader) for _ in range(8)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    stats = cache.stats()
    assert stats['hits'] == 16000
    assert stats['misses'] == 16000
    assert stats['entries'] == 1


def test_items_key_ignores_cache_busting_parameters():
    assert derive_items_cache_key({'a': 1, '_t': 123}) == derive_items_cache_key({'a': 1, '_t': 456})
    assert derive_items_cache_key({'a': 1, 'bypassCache': 'true'}) == derive_items_cache_key({'a': 1})


def test_items_key_is_independent_of_parameter_order():
    first = derive_items_cache_key({'includeItemTypes': 'Movie', 'limit': 20, 'startIndex': 0})
    second = derive_items_cache_key({'startIndex': 0, 'limit': 20, 'includeItemTypes': 'Movie'})
    assert first == second
    assert first.startswith('items_')


def test_items_key_distinguishes_real_filters():
    assert derive_items_cache_key({'parentId': 'A'}) != derive_items_cache_key({'parentId': 'B'})
    assert derive_items_cache_key(None) == derive_items_cache_key({})

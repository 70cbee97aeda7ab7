import unittest

from linkmedic.errors import FetchError, NetworkFailure, RateLimited
from linkmedic.models import Candidate, SearchContext, SuggestionRequest
from linkmedic.ratelimit import TokenBucket
from linkmedic.suggest import NO_REPLACEMENT, SuggestionCoordinator, build_search_query
from linkmedic.urls import REGIONS

from tests.fakes import FakeClock


DEAD_LINK = 'https://amzn.to/3xK9d2F'

DESCRIPTION = """My desk setup for 2025!

Logitech wireless mouse: https://amzn.to/3xK9d2F
Keyboard https://amzn.to/4abcdEF
"""


class FakeSearcher:
    """Returns fresh copies of the same ranked candidates for every query"""

    def __init__(self, titles=None, error=None):
        self.titles = titles if titles is not None else [
            ('B07FZ8S74R', 'Logitech M185 Wireless Mouse'),
            ('B01N0XPF9C', 'Wireless Mouse, 2.4G Ergonomic Optical'),
            ('B09HMV6K1W', 'Logitech Pebble Wireless Mouse'),
            ('B08XYZ1234', 'Gaming Keyboard with RGB'),
            ('B08ABC9876', 'Logitech Wireless Mouse Silent'),
        ]
        self.error = error
        self.queries = []

    def search(self, query, region=None):
        self.queries.append((query, region))
        if self.error is not None:
            raise self.error
        return [Candidate(title=title, product_id=product_id) for product_id, title in self.titles]


def request(url=DEAD_LINK, title='My desk setup', description=DESCRIPTION, exclude=()):
    return SuggestionRequest(
        original_url=url,
        search_context=SearchContext(title, description),
        affiliate_tag='mychannel-20',
        exclude_product_ids=frozenset(exclude),
    )


class BuildSearchQueryTest(unittest.TestCase):
    def test_uses_line_carrying_the_link(self) -> None:
        query = build_search_query(SearchContext('My desk setup', DESCRIPTION), DEAD_LINK)
        self.assertEqual(query, 'logitech wireless mouse')

    def test_falls_back_to_title(self) -> None:
        context = SearchContext('Best Budget Standing Desk Frame Review 2025', '')
        self.assertEqual(build_search_query(context, DEAD_LINK), 'budget standing desk frame')

        # the link's line carries nothing but the URL
        context = SearchContext('Sony WH-1000XM5 headphones', 'Buy: https://amzn.to/3xK9d2F')
        self.assertEqual(build_search_query(context, DEAD_LINK), 'sony 1000xm5 headphones')

    def test_caps_word_count(self) -> None:
        context = SearchContext('alpha bravo charlie delta foxtrot hotel india juliet', '')
        self.assertEqual(build_search_query(context, DEAD_LINK).split(), ['alpha', 'bravo', 'charlie', 'delta', 'foxtrot'])

    def test_no_usable_context(self) -> None:
        self.assertEqual(build_search_query(SearchContext('', ''), DEAD_LINK), '')


class FindReplacementTest(unittest.TestCase):
    def setUp(self) -> None:
        self.searcher = FakeSearcher()
        self.coordinator = SuggestionCoordinator(self.searcher)

    def test_best_match(self) -> None:
        result = self.coordinator.find_replacement(request())

        self.assertTrue(result.success)
        self.assertEqual(result.search_query, 'logitech wireless mouse')
        self.assertEqual(result.best_match.product_id, 'B08ABC9876')
        self.assertEqual(result.best_match.confidence_score, 95)
        self.assertEqual(result.confidence_level, 'high')
        self.assertEqual(result.suggested_url, 'https://www.amazon.com/dp/B08ABC9876?tag=mychannel-20')
        self.assertLessEqual(len(result.alternatives), 3)
        self.assertNotIn(result.best_match, result.alternatives)
        self.assertIsNone(result.error)

    def test_suggested_url_comes_from_a_parsed_result(self) -> None:
        result = self.coordinator.find_replacement(request())
        parsed_ids = {product_id for product_id, _ in self.searcher.titles}
        self.assertIn(result.best_match.product_id, parsed_ids)
        self.assertIn(result.best_match.product_id, result.suggested_url)

    def test_searches_the_links_region(self) -> None:
        result = self.coordinator.find_replacement(request(url='https://www.amazon.co.uk/dp/B000000001?tag=me-21'))
        self.assertIs(self.searcher.queries[0][1], REGIONS['UK'])
        self.assertTrue(result.suggested_url.startswith('https://www.amazon.co.uk/dp/'))

    def test_excluding_everything_fails(self) -> None:
        every_id = [product_id for product_id, _ in self.searcher.titles]
        result = self.coordinator.find_replacement(request(exclude=every_id))
        self.assertFalse(result.success)
        self.assertIsNone(result.best_match)
        self.assertIsNone(result.suggested_url)
        self.assertEqual(result.error, NO_REPLACEMENT)

    def test_excluded_ids_are_never_returned(self) -> None:
        excluded = {'B08ABC9876', 'b07fz8s74r'}
        result = self.coordinator.find_replacement(request(exclude=excluded))
        self.assertTrue(result.success)
        returned = {result.best_match.product_id} | {c.product_id for c in result.alternatives}
        self.assertFalse(returned & {'B08ABC9876', 'B07FZ8S74R'})

    def test_refresh_returns_a_different_product(self) -> None:
        first = self.coordinator.find_replacement(request())
        second = self.coordinator.refresh(request(), first)
        self.assertTrue(second.success)
        self.assertNotEqual(second.best_match.product_id, first.best_match.product_id)

        lonely = SuggestionCoordinator(FakeSearcher([('B07FZ8S74R', 'Logitech M185 Wireless Mouse')]))
        only = lonely.find_replacement(request())
        again = lonely.refresh(request(), only)
        self.assertFalse(again.success)

    def test_low_confidence_is_not_suggested(self) -> None:
        strict = SuggestionCoordinator(FakeSearcher([('B08XYZ1234', 'Gaming Keyboard with RGB')]), min_confidence=80)
        result = strict.find_replacement(request())
        self.assertFalse(result.success)
        self.assertIsNone(result.suggested_url)
        self.assertTrue(result.error.startswith(NO_REPLACEMENT))

    def test_search_failures(self) -> None:
        cases = [
            (RateLimited('https://www.amazon.com/s?k=x', 'throttled'), True),
            (NetworkFailure('https://www.amazon.com/s?k=x', 'timed out'), True),
            (FetchError('https://www.amazon.com/s?k=x', 'HTTP 403'), False),
        ]
        for error, retryable in cases:
            with self.subTest(error=type(error).__name__):
                result = SuggestionCoordinator(FakeSearcher(error=error)).find_replacement(request())
                self.assertFalse(result.success)
                self.assertEqual(result.retryable, retryable)
                self.assertIsNone(result.best_match)
                self.assertTrue(result.error)

    def test_no_context_skips_search(self) -> None:
        result = self.coordinator.find_replacement(request(title='', description=''))
        self.assertFalse(result.success)
        self.assertEqual(self.searcher.queries, [])


class FindReplacementsTest(unittest.TestCase):
    def test_batch_goes_through_the_limiter_in_order(self) -> None:
        clock = FakeClock()
        limiter = TokenBucket(rate=1.0, clock=clock, sleep=clock.sleep)
        searcher = FakeSearcher()
        coordinator = SuggestionCoordinator(searcher, limiter)

        requests = [
            request(),
            request(title='', description=''),
            request(url='https://amzn.to/4abcdEF'),
        ]
        results = coordinator.find_replacements(requests)

        self.assertEqual(len(results), 3)
        self.assertTrue(results[0].success)
        self.assertFalse(results[1].success)
        self.assertEqual(results[2].search_query, 'keyboard')
        self.assertAlmostEqual(sum(clock.sleeps), 2.0)


if __name__ == '__main__':
    unittest.main()

import unittest

from linkmedic.errors import NetworkFailure, ParseFailure, RateLimited
from linkmedic.search import (
    IMAGE_STRATEGIES,
    PRICE_STRATEGIES,
    TITLE_STRATEGIES,
    Fragment,
    ReplacementSearcher,
    ad_marker,
    clean_title,
    extract_first,
    is_placeholder_id,
    parse_search_results,
)
from linkmedic.urls import REGIONS

from tests.fakes import CAPTCHA_PAGE, FakeFetcher


RESULTS_PAGE = """
<html><body><div class="s-main-slot">
<div data-component-type="s-search-result" data-asin="B0SPONSOR1" class="s-result-item AdHolder">
  <h2><a href="/dp/B0SPONSOR1"><span>Sponsored Gaming Mouse with RGB</span></a></h2>
</div>
<div data-component-type="s-search-result" data-asin="" class="s-result-item">
  <h2><a href="/dp/B0EMPTY000"><span>Placeholder slot for an ad</span></a></h2>
</div>
<div data-component-type="s-search-result" data-asin="B07FZ8S74R" class="s-result-item">
  <img class="s-image" src="https://m.media-amazon.com/images/I/61UxfXTUyvL._AC_UY218_.jpg">
  <h2 class="a-size-mini"><a href="/Logitech-M185/dp/B07FZ8S74R/ref=sr_1_1">
    <span class="a-size-medium a-color-base a-text-normal">Logitech M185 Wireless Mouse &amp; USB Receiver</span>
  </a></h2>
  <span class="a-price"><span class="a-offscreen">$14.99</span><span aria-hidden="true">$14<span>99</span></span></span>
</div>
<div data-component-type="s-search-result" data-asin="B09HMV6K1W" class="s-result-item">
  <div class="puis-label"><span class="s-label-popover-default"><span>Sponsored</span></span></div>
  <h2><a href="/dp/B09HMV6K1W"><span>Another Sponsored Mouse Listing</span></a></h2>
</div>
<div data-component-type="s-search-result" data-asin="B01N0XPF9C" class="s-result-item">
  <h2><a href="/dp/B01N0XPF9C"><span>Wireless Mouse, 2.4G Ergonomic Optical Mouse</span></a></h2>
</div>
<div data-component-type="s-search-result" data-asin="B0SHORTTTL" class="s-result-item">
  <h2><a href="/dp/B0SHORTTTL"><span>Ok</span></a></h2>
</div>
</div></body></html>
"""

# Older markup without result containers, only product id attributes
WINDOW_PAGE = """
<div class="sg-col" data-asin="0000000000"><span class="a-text-normal">Zeroed ad placeholder</span></div>
<div class="sg-col" data-asin="B08XYZ1234">
  <span class="a-size-base-plus a-color-base a-text-normal">Ergonomic Vertical Mouse</span>
  <span>$ 24.99</span>
</div>
<div class="sg-col" data-asin="B08ABC9876">
  <a title="Silent Click Wireless Mouse" href="/dp/B08ABC9876">view</a>
</div>
"""

LINKS_ONLY_PAGE = '<ul><li><a href="/dp/B07FZ8S74R?psc=1">Logitech M185 Wireless Mouse</a></li></ul>'


class ParseResultsTest(unittest.TestCase):
    def test_organic_results_in_page_order(self) -> None:
        candidates = parse_search_results(RESULTS_PAGE)
        self.assertEqual([c.product_id for c in candidates], ['B07FZ8S74R', 'B01N0XPF9C'])

        first = candidates[0]
        self.assertEqual(first.title, 'Logitech M185 Wireless Mouse & USB Receiver')
        self.assertEqual(first.price, '$14.99')
        self.assertEqual(first.image_url, 'https://m.media-amazon.com/images/I/61UxfXTUyvL._AC_UY218_.jpg')
        self.assertIsNone(candidates[1].price)

    def test_max_results(self) -> None:
        self.assertEqual(len(parse_search_results(RESULTS_PAGE, max_results=1)), 1)

    def test_window_fallback(self) -> None:
        candidates = parse_search_results(WINDOW_PAGE)
        self.assertEqual([c.product_id for c in candidates], ['B08XYZ1234', 'B08ABC9876'])
        self.assertEqual(candidates[0].title, 'Ergonomic Vertical Mouse')
        self.assertEqual(candidates[0].price, '$24.99')
        self.assertEqual(candidates[1].title, 'Silent Click Wireless Mouse')

    def test_product_link_fallback(self) -> None:
        candidates = parse_search_results(LINKS_ONLY_PAGE)
        self.assertEqual(len(candidates), 1)
        self.assertEqual(candidates[0].product_id, 'B07FZ8S74R')
        self.assertEqual(candidates[0].title, 'Logitech M185 Wireless Mouse')

    def test_nothing_to_parse(self) -> None:
        self.assertEqual(parse_search_results(''), [])
        self.assertEqual(parse_search_results('<html><body>No results for your search.</body></html>'), [])


class StrategyTest(unittest.TestCase):
    def test_title_strategies_fall_through(self) -> None:
        fragment = Fragment('<div><a aria-label="Compact Travel Mouse" href="/dp/B000000001"></a></div>')
        name, title = extract_first(TITLE_STRATEGIES, fragment, 5)
        self.assertEqual(name, 'aria-label')
        self.assertEqual(title, 'Compact Travel Mouse')

    def test_short_values_are_skipped(self) -> None:
        fragment = Fragment('<h2><a href="/dp/B000000001"><span>Mouse</span></a></h2>'
                            '<span aria-label="Bluetooth Mouse for Laptop"></span>')
        self.assertEqual(extract_first(TITLE_STRATEGIES, fragment, 6)[1], 'Bluetooth Mouse for Laptop')

    def test_no_match_raises(self) -> None:
        with self.assertRaises(ParseFailure):
            extract_first(PRICE_STRATEGIES, Fragment('<div>free</div>'))
        with self.assertRaises(ParseFailure):
            extract_first(IMAGE_STRATEGIES, Fragment('<img src="/local.png">'))

    def test_ad_markers(self) -> None:
        sponsored = [
            '<div data-component-type="sp-sponsored-result"></div>',
            '<span class="s-label-popover-default"><span class="a-color-secondary">Sponsored</span></span>',
            '<div class="s-result-item AdHolder"></div>',
            '<div data-component-type="s-impression-logger" data-component-props=\'{"adId":"123"}\'></div>',
        ]
        for markup in sponsored:
            with self.subTest(markup=markup):
                self.assertIsNotNone(ad_marker(Fragment(markup)))
        self.assertIsNone(ad_marker(Fragment('<div class="s-result-item"><span>Wireless Mouse</span></div>')))

    def test_placeholder_ids(self) -> None:
        for product_id in ('', '0', '0000000000', '00001ABCDE', 'B07FZ8'):
            with self.subTest(product_id=product_id):
                self.assertTrue(is_placeholder_id(product_id))
        self.assertFalse(is_placeholder_id('B07FZ8S74R'))

    def test_clean_title(self) -> None:
        self.assertEqual(clean_title('  Mouse &amp;\n  Pad&#39;s  '), "Mouse & Pad's")


class ReplacementSearcherTest(unittest.TestCase):
    def setUp(self) -> None:
        self.fetcher = FakeFetcher()
        self.searcher = ReplacementSearcher(self.fetcher)

    def test_search_fetches_region_results(self) -> None:
        self.fetcher.add('https://www.amazon.co.uk/s?k=wireless+mouse', text=RESULTS_PAGE)
        candidates = self.searcher.search('wireless mouse', REGIONS['UK'])
        self.assertEqual(len(candidates), 2)
        self.assertEqual(self.fetcher.calls, ['https://www.amazon.co.uk/s?k=wireless+mouse'])

    def test_empty_query_is_rejected(self) -> None:
        for query in ('', '   ', None):
            with self.subTest(query=query):
                with self.assertRaises(ValueError):
                    self.searcher.search(query)
        self.assertEqual(self.fetcher.calls, [])

    def test_failures_propagate(self) -> None:
        with self.assertRaises(NetworkFailure):
            self.searcher.search('gaming keyboard')

        self.fetcher.add('https://www.amazon.com/s?k=desk+lamp', status_code=503, text='')
        with self.assertRaises(NetworkFailure):
            self.searcher.search('desk lamp')

        self.fetcher.add('https://www.amazon.com/s?k=usb+hub', text=CAPTCHA_PAGE)
        with self.assertRaises(RateLimited):
            self.searcher.search('usb hub')


if __name__ == '__main__':
    unittest.main()

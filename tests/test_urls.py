import unittest

from linkmedic.models import LinkKind, Merchant
from linkmedic.urls import (
    REGIONS,
    append_affiliate_tag,
    classify_url,
    detect_region,
    extract_affiliate_tag,
    extract_product_id,
    has_affiliate_tag,
    is_search_results_url,
    normalize_url,
    product_url,
    search_url,
)


class ProductIdTest(unittest.TestCase):
    def test_known_url_shapes(self) -> None:
        urls = [
            'https://www.amazon.com/dp/B07FZ8S74R',
            'https://www.amazon.com/Logitech-Wireless-Mouse/dp/B07FZ8S74R/ref=sr_1_3?keywords=mouse',
            'https://www.amazon.co.uk/gp/product/B07FZ8S74R?tag=me-21',
            'https://www.amazon.com/gp/aw/d/B07FZ8S74R',
            'https://www.amazon.com/exec/obidos/ASIN/B07FZ8S74R/',
            'https://www.amazon.com/o/ASIN/B07FZ8S74R',
            'https://www.amazon.com/product/b07fz8s74r',
            'https://www.amazon.com/gp/offer-listing?asin=B07FZ8S74R',
        ]
        for url in urls:
            with self.subTest(url=url):
                self.assertEqual(extract_product_id(url), 'B07FZ8S74R')

    def test_no_product_id(self) -> None:
        for url in ['https://www.amazon.com/', 'https://amzn.to/3xK9d2F', 'https://www.amazon.com/dp/SHORT', '']:
            with self.subTest(url=url):
                self.assertIsNone(extract_product_id(url))


class NormalizeTest(unittest.TestCase):
    def test_strips_tracking_and_keeps_tag(self) -> None:
        url = ('https://WWW.Amazon.com/dp/B07FZ8S74R?tag=me-20&utm_source=yt&linkCode=ll1'
               '&pd_rd_w=abc&psc=1&ref_=as_li_ss_tl#ref=xyz')
        self.assertEqual(normalize_url(url), 'https://www.amazon.com/dp/B07FZ8S74R?tag=me-20')

    def test_adds_scheme(self) -> None:
        self.assertEqual(normalize_url('amzn.to/3xK9d2F'), 'https://amzn.to/3xK9d2F')

    def test_rejects_non_string(self) -> None:
        with self.assertRaises(TypeError):
            normalize_url(None)


class SearchShapeTest(unittest.TestCase):
    def test_search_shapes(self) -> None:
        urls = [
            'https://www.amazon.com/s?k=wireless+mouse',
            'https://www.amazon.co.uk/s?keywords=mouse',
            'https://www.amazon.com/s?i=electronics&rh=n%3A172282',
            'https://www.amazon.com/s/ref=nb_sb_noss?field-keywords=mouse',
            'https://www.amazon.com/stores/Logitech/page/ABC',
            'https://www.amazon.com/b?node=172282',
            'https://www.amazon.com/b/ref=dp_bc_1?node=172282',
        ]
        for url in urls:
            with self.subTest(url=url):
                self.assertTrue(is_search_results_url(url))

    def test_product_and_other_sites_are_not_search(self) -> None:
        urls = [
            'https://www.amazon.com/dp/B07FZ8S74R',
            'https://www.amazon.com/s',
            'https://example.com/stores/nearby',
            'https://example.com/s?k=shoes',
            'https://shop.example.org/s/ref=nb_sb_noss?field-keywords=shoes',
            'https://example.com/b/hello',
        ]
        for url in urls:
            with self.subTest(url=url):
                self.assertFalse(is_search_results_url(url))


class ClassifyTest(unittest.TestCase):
    def test_regions(self) -> None:
        self.assertEqual(detect_region('https://www.amazon.com.au/dp/B07FZ8S74R').code, 'AU')
        self.assertEqual(detect_region('https://smile.amazon.com/dp/B07FZ8S74R').code, 'US')
        self.assertEqual(detect_region('https://www.amazon.de/dp/B07FZ8S74R').country_code, 'de')
        self.assertEqual(detect_region('https://amzn.to/3xK9d2F').code, 'US')
        self.assertIsNone(detect_region('https://notamazon.com/dp/B07FZ8S74R'))

    def test_kinds(self) -> None:
        cases = [
            ('https://www.amazon.com/dp/B07FZ8S74R?tag=me-20', LinkKind.PRODUCT_PAGE, Merchant.MARKETPLACE),
            ('https://amzn.to/3xK9d2F', LinkKind.SHORT_LINK, Merchant.MARKETPLACE),
            ('https://www.amazon.com/shop/somecreator', LinkKind.MARKETPLACE_OTHER, Merchant.MARKETPLACE),
            ('https://example.com/gear', LinkKind.UNKNOWN_MERCHANT, Merchant.UNKNOWN),
        ]
        for url, kind, merchant in cases:
            with self.subTest(url=url):
                info = classify_url(url)
                self.assertEqual(info.kind, kind)
                self.assertEqual(info.merchant, merchant)

    def test_cache_key_prefers_product_id(self) -> None:
        a = classify_url('https://www.amazon.com/dp/B07FZ8S74R?tag=one-20')
        b = classify_url('https://www.amazon.com/Some-Name/dp/B07FZ8S74R?tag=two-20&utm_source=x')
        self.assertEqual(a.cache_key, 'B07FZ8S74R')
        self.assertEqual(a.cache_key, b.cache_key)
        self.assertEqual(classify_url('https://amzn.to/3xK9d2F').cache_key, 'https://amzn.to/3xK9d2F')


class TagTest(unittest.TestCase):
    def test_tag_helpers(self) -> None:
        url = 'https://www.amazon.com/dp/B07FZ8S74R?tag=Me-20'
        self.assertEqual(extract_affiliate_tag(url), 'Me-20')
        self.assertTrue(has_affiliate_tag(url))
        self.assertTrue(has_affiliate_tag(url, 'me-20'))
        self.assertFalse(has_affiliate_tag(url, 'other-20'))
        self.assertFalse(has_affiliate_tag('https://www.amazon.com/dp/B07FZ8S74R'))

    def test_append_replaces_existing_tag(self) -> None:
        url = append_affiliate_tag('https://www.amazon.com/dp/B07FZ8S74R?tag=old-20&th=1', 'new-20')
        self.assertEqual(extract_affiliate_tag(url), 'new-20')
        self.assertNotIn('old-20', url)

    def test_product_and_search_urls(self) -> None:
        self.assertEqual(product_url('B07FZ8S74R'), 'https://www.amazon.com/dp/B07FZ8S74R')
        self.assertEqual(product_url('B07FZ8S74R', REGIONS['UK'], 'me-21'),
                         'https://www.amazon.co.uk/dp/B07FZ8S74R?tag=me-21')
        self.assertEqual(search_url('wireless mouse'), 'https://www.amazon.com/s?k=wireless+mouse')


if __name__ == '__main__':
    unittest.main()

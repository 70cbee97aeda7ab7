"""
Page signatures used to read a marketplace product page

These are substrings of the lower-cased HTML tied to one marketplace's
current markup. They drift, so they are versioned and every list can be
replaced from the ``signatures:`` section of the config file.
"""

from dataclasses import dataclass, fields, replace
from typing import Dict, Optional, Tuple

from .errors import ConfigError


DEFAULT_VERSION = '2025.1'


@dataclass(frozen=True)
class PageSignatures:
    version: str = DEFAULT_VERSION

    # Bot walls, never a verdict on the product
    captcha: Tuple[str, ...] = (
        'enter the characters you see below',
        'validatecaptcha',
        'id="captchacharacters"',
        'to discuss automated access',
    )

    # The "dog page" and generic error pages
    not_found: Tuple[str, ...] = (
        'looking for something?',
        "sorry, we couldn't find that page",
        'sorry! we couldn\'t find that page',
        'the web address you entered is not a functioning page',
        '<title>page not found</title>',
        'the page you requested could not be found',
    )

    out_of_stock: Tuple[str, ...] = (
        'currently unavailable',
        "we don't know when or if this item will be back in stock",
        'temporarily out of stock',
        'sign up to be notified when this item becomes available',
        'this item is not available',
        'not available for purchase',
        'id="outofstock"',
    )

    third_party: Tuple[str, ...] = (
        'available from these sellers',
        'see all buying options',
        'other sellers on amazon',
        'id="olp-upd-new"',
        'mbc-offer-row',
    )

    buy_box: Tuple[str, ...] = (
        'id="add-to-cart-button"',
        'id="buy-now-button"',
        'name="submit.add-to-cart"',
        'name="submit.addtocart"',
        'id="add-to-cart-button-ubb"',
        'data-action="add-to-cart"',
    )

    price: Tuple[str, ...] = (
        'class="a-price',
        'id="priceblock_ourprice"',
        'id="priceblock_dealprice"',
        'id="corepricedisplay_desktop_feature_div"',
        'id="coreprice_feature_div"',
        'class="a-price-whole"',
    )

    in_stock: Tuple[str, ...] = (
        'in stock',
        'left in stock',
        'ships from',
    )

    def matches(self, name: str, lower_html: str) -> Optional[str]:
        """Return the first signature of the named set found in the page"""
        for needle in getattr(self, name):
            if needle in lower_html:
                return needle
        return None

    @classmethod
    def from_config(cls, data: Optional[Dict]) -> 'PageSignatures':
        """Build a signature set, replacing any list named in the config"""
        if not data:
            return cls()
        if not isinstance(data, dict):
            raise ConfigError("'signatures' must be a mapping")
        known = {f.name for f in fields(cls)}
        overrides = {}
        for key, value in data.items():
            if key not in known:
                raise ConfigError(f"Unknown signature set '{key}'")
            if key == 'version':
                overrides[key] = str(value)
                continue
            if not isinstance(value, (list, tuple)) or not all(isinstance(v, str) for v in value):
                raise ConfigError(f"Signature set '{key}' must be a list of strings")
            overrides[key] = tuple(v.lower() for v in value)
        return replace(cls(), **overrides)

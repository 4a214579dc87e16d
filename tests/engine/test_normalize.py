from __future__ import annotations

import pytest

from leadscrape.normalize import (
    dice_coefficient,
    extract_domain,
    normalize_address,
    normalize_company_name,
    normalize_phone,
)


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        ("(914) 555-0100", "+19145550100"),
        ("914.555.0100", "+19145550100"),
        ("1-914-555-0100", "+19145550100"),
        ("+44 20 7946 0958", "+442079460958"),
        ("555-01", None),
        ("", None),
        (None, None),
    ],
)
def test_normalize_phone(raw, expected) -> None:
    assert normalize_phone(raw) == expected


def test_normalize_company_name_strips_noise() -> None:
    assert normalize_company_name("The Joe's Plumbing & Heating, LLC") == "joes plumbing and heating"
    assert normalize_company_name("Joe’s Plumbing Inc.") == "joes plumbing"
    assert normalize_company_name("ACME Roofing Co") == "acme roofing"
    assert normalize_company_name(None) == ""


def test_normalize_address_abbreviates() -> None:
    assert normalize_address("123 North Main Street, Suite 4") == "123 n main st ste 4"
    assert normalize_address(None) is None


@pytest.mark.parametrize(
    ("url", "expected"),
    [
        ("https://www.Example.com:8080/contact", "example.com"),
        ("example.com/about", "example.com"),
        ("http://shop.example.com", "shop.example.com"),
        ("   ", None),
        ("http://[broken", None),
        ("https://[::1", None),
        (None, None),
    ],
)
def test_extract_domain(url, expected) -> None:
    assert extract_domain(url) == expected


def test_dice_coefficient_bounds() -> None:
    assert dice_coefficient("joes plumbing", "joesplumbing") == 1.0
    assert dice_coefficient("night", "nacht") == pytest.approx(0.25)
    assert dice_coefficient("a", "b") == 0.0
    assert dice_coefficient("", "") == 0.0
    assert 0.0 <= dice_coefficient("acme plumbing", "acme roofing") < 0.7

"""Tests for the training-compatible normalizer."""

import pytest

from guardian.normalizer import normalize, normalize_once


def test_empty_input():
    assert normalize("") == ""
    assert normalize("   \n\t ") == ""


def test_whitespace_is_collapsed():
    assert normalize("  hello   world \n") == "hello world"


def test_nfkc_folds_fullwidth_characters():
    assert normalize("ｈｅｌｌｏ") == "hello"


def test_url_placeholder():
    assert normalize("visit http://bit.ly/abc now") == "visit <URL> now"


def test_phone_placeholder():
    assert normalize("call 012-345 6789 today") == "call <PHONE> today"


def test_money_amount():
    assert normalize("pay RM50 now") == "pay RM <AMOUNT> now"


def test_bank_name_is_case_insensitive():
    assert normalize("Maybank account locked") == "<BANK> account locked"
    assert normalize("MAYBANK account locked") == "<BANK> account locked"


def test_otp_only_with_context():
    assert normalize("Your OTP is 123456") == "Your OTP is <OTP>"
    assert normalize("Meeting at 1234 tomorrow") == "Meeting at 1234 tomorrow"


def test_reference_numbers_with_context():
    assert normalize("Ref 88231 received") == "Ref <NUM> received"


def test_single_pass_is_exposed_separately():
    assert normalize_once("Your OTP is 123456") == "Your OTP is <OTP>"


@pytest.mark.parametrize("text", [
    "URGENT: your account has been suspended, verify now at http://bit.ly/x",
    "Maxis: 0123456789 OTP 5555 ref 1234",
    "maxis1234567",
    "Transfer RM1,200.50 to Public Bank 1234567890 now",
    "J&T parcel held, TAC 8812, call +60 12-345 6789",
    "验证码 482913 请勿分享",
    "Happy birthday! Hope you have a great day.",
    "",
])
def test_normalize_is_idempotent(text):
    once = normalize(text)
    assert normalize(once) == once

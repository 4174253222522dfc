import pytest

from ev_advisor.main import parse_form_args


def test_parse_form_args_coerces_json_scalars() -> None:
    assert parse_form_args(["budget=30", "fast_charge=true", "body=SUV", "note=null", "seats=[5,7]"]) == {
        "budget": 30,
        "fast_charge": True,
        "body": "SUV",
        "note": None,
        "seats": "[5,7]",
    }


def test_parse_form_args_keeps_equals_in_value() -> None:
    assert parse_form_args(["expr=a=b"]) == {"expr": "a=b"}


def test_parse_form_args_invalid_format_raises() -> None:
    with pytest.raises(ValueError, match="Expected key=value"):
        parse_form_args(["budget"])


def test_parse_form_args_missing_key_raises() -> None:
    with pytest.raises(ValueError, match="Missing key"):
        parse_form_args(["=5"])

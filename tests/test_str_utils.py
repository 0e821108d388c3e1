from pytest import raises

from aws_app.str_utils import (
    contains,
    family_letters,
    family_of,
    print_tags,
    space_after,
    tags_to_dict,
    wrap,
)


def test_wrap_no_text():
    with raises(TypeError):
        wrap()


def test_wrap_empty_text():
    assert wrap("") == ""


def test_wrap_with_text():
    assert wrap("foo") == " foo "


def test_wrap_with_before_after():
    assert wrap("foo", before="__", after="__") == "__foo__"


def test_space_after():
    assert space_after("") == ""
    assert space_after("foo") == "foo "


def test_family_of():
    assert family_of("m5.large") == "m5"
    assert family_of("mac2-m2pro.metal") == "mac2-m2pro"
    assert family_of("m5") == "m5"


def test_family_letters():
    assert family_letters("trn1n") == "trn"
    assert family_letters("u-12tb1") == "u"
    assert family_letters("42") == ""


def test_tags():
    tags = [{"Key": "env", "Value": "prod"}, {"Key": "Name", "Value": "web"}]
    assert tags_to_dict(tags) == {"env": "prod", "Name": "web"}
    assert print_tags(tags) == "Name=web, env=prod"
    assert print_tags(None) == ""


def test_contains():
    assert contains("m5.large", "M5")
    assert contains("m5.large", None)
    assert not contains("c5.large", "m5")
    assert not contains("", "m5")
